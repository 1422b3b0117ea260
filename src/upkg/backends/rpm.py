"""Fedora (dnf) and openSUSE (zypper) adapters over rpm-md repositories."""

from __future__ import annotations

import hashlib
import logging
from abc import abstractmethod
from typing import List, Optional, Sequence

from upkg.backends.base import IndexedBackend
from upkg.common import http_client
from upkg.common.cancellation import CancelToken
from upkg.constants import Backends, Constants
from upkg.exceptions import FormatError
from upkg.extract.extractor import ContainerKind
from upkg.models import Ecosystem, PackageRecord
from upkg.registry import rpm

logger = logging.getLogger(__name__)


class RpmMdBackend(IndexedBackend):
    """Shared rpm-md flow: ``repodata/repomd.xml`` -> primary.xml -> records.

    Only packages built for the target arch or ``noarch`` are indexed.
    """

    ecosystem = Ecosystem.RPM

    @abstractmethod
    def repo_base(self, repo: str, arch: str) -> str:
        """Directory holding ``repodata/`` for ``repo``."""

    def load_repository(self, repo: str, arch: str, cancel: Optional[CancelToken] = None) -> List[PackageRecord]:
        base = self.repo_base(repo, arch)
        primary = rpm.primary_location(
            http_client.get_bytes(f"{base}/repodata/repomd.xml", context="index", cancel=cancel)
        )
        logger.debug("%s: primary metadata at %s", repo, primary.href)
        data = http_client.get_bytes(f"{base}/{primary.href}", context="index", cancel=cancel)
        if primary.checksum is not None and primary.checksum.algorithm in hashlib.algorithms_available:
            actual = hashlib.new(primary.checksum.algorithm, data).hexdigest()
            if actual != primary.checksum.value:
                raise FormatError(f"{primary.href} does not match repomd.xml checksum", op="index")
        return rpm.parse_primary(data, filename=primary.href, origin=repo, arches=(arch, "noarch"))

    def artifact_url(self, record: PackageRecord) -> str:
        arch = self.arch if record.arch in ("noarch", "") else record.arch
        return f"{self.repo_base(record.origin, arch)}/{record.locator.lstrip('/')}"

    def container_kind(self, record: PackageRecord) -> ContainerKind:
        return ContainerKind.RPM


class DnfBackend(RpmMdBackend):
    """Fedora ``Everything`` trees; ``release: rawhide`` reads the development tree."""

    name = Backends.DNF.value

    @property
    def mirror(self) -> str:
        return str(self.settings.get("mirror") or Constants.FEDORA_MIRROR).rstrip("/")

    @property
    def release(self) -> str:
        return str(self.settings.get("release") or Constants.FEDORA_RELEASE)

    def repositories(self) -> Sequence[str]:
        if self.release == "rawhide":
            return ["rawhide"]
        return list(self.settings.get("repos") or Constants.FEDORA_REPOS)

    def repo_base(self, repo: str, arch: str) -> str:
        if repo == "rawhide":
            return f"{self.mirror}/development/rawhide/Everything/{arch}/os"
        if repo == "updates":
            return f"{self.mirror}/updates/{self.release}/Everything/{arch}"
        return f"{self.mirror}/{repo}/{self.release}/Everything/{arch}/os"


class ZypperBackend(RpmMdBackend):
    """openSUSE ``<mirror>/<distribution>/<repo>`` trees (arch independent layout)."""

    name = Backends.ZYPPER.value

    @property
    def mirror(self) -> str:
        return str(self.settings.get("mirror") or Constants.OPENSUSE_MIRROR).rstrip("/")

    @property
    def distribution(self) -> str:
        return str(self.settings.get("distribution") or Constants.OPENSUSE_DISTRIBUTION)

    def repositories(self) -> Sequence[str]:
        return list(self.settings.get("repos") or Constants.OPENSUSE_REPOS)

    def repo_base(self, repo: str, arch: str) -> str:
        return f"{self.mirror}/{self.distribution}/{repo}"
