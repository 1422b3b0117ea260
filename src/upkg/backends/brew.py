"""Homebrew adapter: formula JSON API plus bottles from the GHCR registry."""

from __future__ import annotations

import dataclasses
import logging
import os
from typing import Any, Dict, List, Optional

from upkg.backends.base import LookupBackend, SEARCH
from upkg.common import http_client
from upkg.common.cancellation import CancelToken
from upkg.constants import Backends, Constants
from upkg.exceptions import FormatError
from upkg.extract.extractor import ContainerKind
from upkg.index.depends import Dialect
from upkg.models import Checksum, DownloadOptions, Ecosystem, InstalledPackage, PackageInfo, PackageRecord
from upkg.registry import brew

logger = logging.getLogger(__name__)

_SUPPORTED_MACHINES = ("x86_64", "aarch64")


class BrewBackend(LookupBackend):
    """Bottles are extracted under ``<install>/Cellar`` as ``<name>/<version>/``.

    The adapter's arch is a bottle platform tag (``arm64_sequoia``,
    ``x86_64_linux``...) rather than a machine name.
    """

    name = Backends.BREW.value
    ecosystem = Ecosystem.BREW

    @property
    def api_url(self) -> str:
        return str(self.settings.get("api_url") or Constants.BREW_API_URL).rstrip("/")

    @property
    def registry_url(self) -> str:
        return str(self.settings.get("registry_url") or Constants.BREW_REGISTRY_URL).rstrip("/")

    def default_arch(self) -> str:
        return str(self.settings.get("platform") or self.host.brew_tag())

    def target_arch(self, options: Optional[DownloadOptions]) -> str:
        if options is not None and options.arch:
            return options.arch
        return self.arch

    def is_available(self) -> bool:
        return self.host.os in ("darwin", "linux") and self.host.machine in _SUPPORTED_MACHINES

    def dialect(self) -> Dialect:
        return Dialect.PLAIN

    def registry_headers(self) -> Dict[str, str]:
        token = self.settings.get("token") or Constants.BREW_ANONYMOUS_TOKEN
        return {"Authorization": f"Bearer {token}"}

    def lookup(self, name: str, arch: str, cancel: Optional[CancelToken] = None) -> List[PackageRecord]:
        data = http_client.get_bytes(f"{self.api_url}/formula/{name}.json", context="formula", cancel=cancel)
        return [brew.parse_formula(data, arch)]

    def with_bottle(self, record: PackageRecord, cancel: Optional[CancelToken] = None) -> PackageRecord:
        """Fill locator and checksum from the OCI image index when the formula has no bottle entry."""
        if record.locator and record.checksum is not None:
            return record
        url = f"{self.registry_url}/{brew.oci_repository(record.name)}/manifests/{record.version}"
        headers = dict(self.registry_headers(), Accept=brew.OCI_INDEX_MEDIA_TYPE)
        manifest = brew.parse_oci_index(
            http_client.get_json(url, context="manifest", headers=headers, cancel=cancel), record.arch
        )
        logger.debug("%s: bottle %s from OCI index (%s)", record.name, manifest.digest, manifest.ref_name)
        return dataclasses.replace(
            record,
            locator=brew.blob_url(self.registry_url, record.name, manifest.digest),
            checksum=Checksum("sha256", manifest.digest),
        )

    def install_record(
        self,
        record: PackageRecord,
        options: DownloadOptions,
        cancel: Optional[CancelToken] = None,
    ) -> InstalledPackage:
        return super().install_record(self.with_bottle(record, cancel), options, cancel)

    def artifact_url(self, record: PackageRecord) -> str:
        return record.locator

    def archive_name(self, record: PackageRecord) -> str:
        return f"{record.name}--{record.version}.{record.arch}.bottle.tar.gz"

    def container_kind(self, record: PackageRecord) -> ContainerKind:
        return ContainerKind.TAR

    def download_headers(self, record: PackageRecord) -> Dict[str, str]:
        if record.locator.startswith(self.registry_url):
            return self.registry_headers()
        return {}

    def target_root(self, record: PackageRecord, options: DownloadOptions) -> str:
        return os.path.join(self.install_root, Constants.BREW_CELLAR)

    def formulae(self, cancel: Optional[CancelToken] = None) -> List[Dict[str, Any]]:
        """Bulk formula listing, cached like a repository index."""
        def load() -> List[Dict[str, Any]]:
            data = http_client.get_json(f"{self.api_url}/formula.json", context="formula", cancel=cancel)
            if not isinstance(data, list):
                raise FormatError("formula listing must be a JSON array", op="search")
            return data
        return self.cache.get_or_load((self.name, "formulae"), load, cancel=cancel)

    def search(self, query: str, cancel: Optional[CancelToken] = None, limit: int = 50) -> List[PackageInfo]:
        self._require(SEARCH)
        return [
            PackageInfo.from_record(brew.parse_formula(doc, self.arch), self.name)
            for doc in brew.search_formulae(self.formulae(cancel), query, limit)
        ]
