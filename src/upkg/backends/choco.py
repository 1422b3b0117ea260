"""Chocolatey adapter over the NuGet v2 OData feed."""

from __future__ import annotations

import logging
import os
import re
from typing import List, Optional
from urllib.parse import quote

from upkg.backends.base import LookupBackend, SEARCH
from upkg.common import http_client
from upkg.common.cancellation import CancelToken
from upkg.constants import Backends, Constants
from upkg.extract.extractor import ContainerKind
from upkg.index.depends import Dialect
from upkg.models import DownloadOptions, Ecosystem, PackageInfo, PackageRecord
from upkg.registry import nuget

logger = logging.getLogger(__name__)

_SEARCH_PAGE = 30


class ChocoBackend(LookupBackend):
    """Packages unpack into ``<install>/<id>``; the nupkg plumbing is left out."""

    name = Backends.CHOCO.value
    ecosystem = Ecosystem.NUGET
    metadata_filter = "nupkg"

    @property
    def repository(self) -> str:
        return str(self.settings.get("repository") or Constants.CHOCO_REPOSITORY_URL).rstrip("/")

    def default_arch(self) -> str:
        return "any"

    def target_arch(self, options: Optional[DownloadOptions]) -> str:
        return "any"

    def dialect(self) -> Dialect:
        return Dialect.PLAIN

    def _feed(self, url: str, cancel: Optional[CancelToken]) -> List[PackageRecord]:
        data = http_client.get_bytes(url, context="feed", headers={"Accept": nuget.ACCEPT}, cancel=cancel)
        return nuget.parse_feed(data)

    def lookup(self, name: str, arch: str, cancel: Optional[CancelToken] = None) -> List[PackageRecord]:
        literal = quote(nuget.quote_literal(name.lower()))
        url = f"{self.repository}/Packages()?$filter=(tolower(Id) eq '{literal}') and IsLatestVersion&$top=1"
        best = nuget.highest(self._feed(url, cancel), include_prerelease=True)
        return [best] if best is not None else []

    def lookup_version(self, name: str, version: str, arch: str,
                       cancel: Optional[CancelToken] = None) -> Optional[PackageRecord]:
        pkg_id = quote(nuget.quote_literal(name))
        records = self._feed(f"{self.repository}/Packages(Id='{pkg_id}',Version='{quote(version)}')", cancel)
        return records[0] if records else None

    def artifact_url(self, record: PackageRecord) -> str:
        return record.locator or f"{self.repository}/package/{record.name}/{record.version}"

    def archive_name(self, record: PackageRecord) -> str:
        return f"{record.name}.{record.version}.nupkg"

    def container_kind(self, record: PackageRecord) -> ContainerKind:
        return ContainerKind.ZIP

    def target_root(self, record: PackageRecord, options: DownloadOptions) -> str:
        return os.path.join(self.install_root, re.sub(r"[\\/:]", "_", record.name))

    def search(self, query: str, cancel: Optional[CancelToken] = None, limit: int = _SEARCH_PAGE) -> List[PackageInfo]:
        self._require(SEARCH)
        term = quote(nuget.quote_literal(query))
        url = (
            f"{self.repository}/Search()?$filter=IsLatestVersion&$orderby=Id&searchTerm='{term}'"
            f"&targetFramework=''&includePrerelease=false&$skip=0&$top={limit}&semVerLevel=2.0.0"
        )
        records = self._feed(url, cancel)
        logger.debug("choco search %r: %d result(s)", query, len(records))
        return [PackageInfo.from_record(r, self.name) for r in records]
