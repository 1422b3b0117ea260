"""Arch Linux adapter over ``<repo>.db`` sync databases."""

from __future__ import annotations

from typing import List, Optional, Sequence

from upkg.backends.base import IndexedBackend
from upkg.common import http_client
from upkg.common.cancellation import CancelToken
from upkg.constants import Backends, Constants
from upkg.extract.extractor import ContainerKind
from upkg.models import Ecosystem, PackageRecord
from upkg.registry import pacman


class PacmanBackend(IndexedBackend):
    name = Backends.PACMAN.value
    ecosystem = Ecosystem.PACMAN
    metadata_filter = "pacman"

    @property
    def mirror(self) -> str:
        return str(self.settings.get("mirror") or Constants.PACMAN_MIRROR).rstrip("/")

    def repositories(self) -> Sequence[str]:
        return list(self.settings.get("repos") or Constants.PACMAN_REPOS)

    def repo_url(self, repo: str, arch: str) -> str:
        return f"{self.mirror}/{repo}/os/{arch}"

    def load_repository(self, repo: str, arch: str, cancel: Optional[CancelToken] = None) -> List[PackageRecord]:
        data = http_client.get_bytes(f"{self.repo_url(repo, arch)}/{repo}.db", context="index", cancel=cancel)
        return pacman.parse_sync_db(data, origin=repo)

    def artifact_url(self, record: PackageRecord) -> str:
        arch = self.arch if record.arch in ("any", "") else record.arch
        return f"{self.repo_url(record.origin, arch)}/{record.locator}"

    def container_kind(self, record: PackageRecord) -> ContainerKind:
        return ContainerKind.TAR
