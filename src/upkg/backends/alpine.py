"""Alpine adapter over ``APKINDEX.tar.gz`` repositories."""

from __future__ import annotations

from typing import List, Optional, Sequence

from upkg.backends.base import IndexedBackend
from upkg.common import http_client
from upkg.common.cancellation import CancelToken
from upkg.constants import Backends, Constants
from upkg.extract.extractor import ContainerKind
from upkg.models import Ecosystem, PackageRecord
from upkg.registry import alpine


class AlpineBackend(IndexedBackend):
    """``<mirror>/<branch>/<repo>/<arch>/APKINDEX.tar.gz``; repos in priority order."""

    name = Backends.ALPINE.value
    ecosystem = Ecosystem.ALPINE
    metadata_filter = "alpine"

    @property
    def mirror(self) -> str:
        return str(self.settings.get("mirror") or Constants.ALPINE_MIRROR).rstrip("/")

    @property
    def branch(self) -> str:
        return str(self.settings.get("branch") or Constants.ALPINE_BRANCH)

    def repositories(self) -> Sequence[str]:
        return list(self.settings.get("repos") or Constants.ALPINE_REPOS)

    def repo_url(self, repo: str, arch: str) -> str:
        return f"{self.mirror}/{self.branch}/{repo}/{arch}"

    def load_repository(self, repo: str, arch: str, cancel: Optional[CancelToken] = None) -> List[PackageRecord]:
        data = http_client.get_bytes(f"{self.repo_url(repo, arch)}/APKINDEX.tar.gz", context="index", cancel=cancel)
        return alpine.parse_apkindex(data, origin=repo)

    def artifact_url(self, record: PackageRecord) -> str:
        # noarch packages are published inside every arch directory
        arch = self.arch if record.arch in ("noarch", "") else record.arch
        return f"{self.repo_url(record.origin, arch)}/{record.locator}"

    def container_kind(self, record: PackageRecord) -> ContainerKind:
        return ContainerKind.APK
