"""Debian (dpkg) and Ubuntu (apt) adapters over ``Packages.gz`` indexes."""

from __future__ import annotations

import hashlib
import logging
from typing import Callable, Dict, List, Optional, Sequence

from upkg.backends.base import IndexedBackend
from upkg.common import http_client
from upkg.common.cancellation import CancelToken
from upkg.constants import Backends, Constants
from upkg.exceptions import FormatError, NetworkError, NotFoundError
from upkg.models import Ecosystem, PackageRecord
from upkg.registry import debian
from upkg.registry.compression import GZIP

logger = logging.getLogger(__name__)


class DpkgBackend(IndexedBackend):
    """Debian archive: ``dists/<release>/<component>/binary-<arch>/Packages.gz``."""

    name = Backends.DPKG.value
    ecosystem = Ecosystem.DEBIAN
    default_mirror = Constants.DEBIAN_MIRROR
    default_release = Constants.DEBIAN_RELEASE
    default_components = Constants.DEBIAN_COMPONENTS

    @property
    def mirror(self) -> str:
        return str(self.settings.get("mirror") or self.default_mirror).rstrip("/")

    @property
    def release(self) -> str:
        return str(self.settings.get("release") or self.default_release)

    def repositories(self) -> Sequence[str]:
        return list(self.settings.get("components") or self.default_components)

    def mirror_for(self, arch: str) -> str:
        return self.mirror

    def index_path(self, component: str, arch: str) -> str:
        return f"{component}/binary-{arch}/Packages.gz"

    def release_table(self, arch: str, cancel: Optional[CancelToken] = None) -> Dict[str, debian.ReleaseFile]:
        """SHA256 table of the release; empty when unavailable or disabled."""
        if not self.settings.get("verify_release", True):
            return {}
        url = f"{self.mirror_for(arch)}/dists/{self.release}/Release"
        try:
            return debian.parse_release(http_client.get_bytes(url, context="release", cancel=cancel))
        except (NotFoundError, NetworkError, FormatError) as exc:
            logger.debug("No usable Release file for %s (%s); index checksums not verified", self.release, exc)
            return {}

    def repository_loader(self, arch: str, cancel: Optional[CancelToken] = None) -> Callable[[str], List[PackageRecord]]:
        table = self.release_table(arch, cancel)
        return lambda repo: self.load_repository(repo, arch, cancel, release=table)

    def load_repository(
        self,
        repo: str,
        arch: str,
        cancel: Optional[CancelToken] = None,
        release: Optional[Dict[str, debian.ReleaseFile]] = None,
    ) -> List[PackageRecord]:
        path = self.index_path(repo, arch)
        url = f"{self.mirror_for(arch)}/dists/{self.release}/{path}"
        data = http_client.get_bytes(url, context="index", cancel=cancel)
        entry = (release or {}).get(path)
        if entry is not None:
            actual = hashlib.sha256(data).hexdigest()
            if actual != entry.sha256:
                raise FormatError(
                    f"{path} does not match the Release file (sha256 {actual}, expected {entry.sha256})",
                    op="index",
                )
        return debian.parse_packages(data, origin=repo, compression=GZIP)

    def artifact_url(self, record: PackageRecord) -> str:
        # Architecture-independent packages share the pool of the host arch
        arch = self.arch if record.arch in ("all", "") else record.arch
        return f"{self.mirror_for(arch)}/{record.locator.lstrip('/')}"


class AptBackend(DpkgBackend):
    """Ubuntu archive; non-x86 architectures live on the ports mirror."""

    name = Backends.APT.value
    default_mirror = Constants.UBUNTU_MIRROR
    default_release = Constants.UBUNTU_RELEASE
    default_components = Constants.UBUNTU_COMPONENTS

    def mirror_for(self, arch: str) -> str:
        if arch in ("amd64", "i386", "all", ""):
            return self.mirror
        ports = str(self.settings.get("ports_mirror") or Constants.UBUNTU_PORTS_MIRROR).rstrip("/")
        logger.debug("Using ports repository for %s", arch)
        return ports
