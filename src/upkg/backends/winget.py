"""WinGet adapter over the winget.run API.

Zip installers are unpacked into ``<install>/<id>``; every other installer
type is copied into the install root as ``<id>-<version>.<ext>``.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
from typing import List, Optional
from urllib.parse import quote

from upkg.backends.base import LookupBackend, SEARCH
from upkg.common import http_client
from upkg.common.cancellation import CancelToken
from upkg.constants import Backends, Constants
from upkg.exceptions import NotFoundError
from upkg.extract.extractor import ContainerKind
from upkg.index.depends import Dialect
from upkg.models import DownloadOptions, Ecosystem, InstalledPackage, PackageInfo, PackageRecord
from upkg.registry import winget

logger = logging.getLogger(__name__)


def sanitize(name: str) -> str:
    """Make a package id usable as a file name."""
    return re.sub(r"[\\/:]", "_", name)


class WingetBackend(LookupBackend):
    name = Backends.WINGET.value
    ecosystem = Ecosystem.WINGET

    @property
    def api_url(self) -> str:
        return str(self.settings.get("api_url") or Constants.WINGET_API_URL).rstrip("/")

    def dialect(self) -> Dialect:
        return Dialect.PLAIN

    def package_entry(self, package_id: str, cancel: Optional[CancelToken] = None) -> winget.WingetEntry:
        """Entry for ``Publisher.Name``; bare names go through search."""
        publisher, sep, rest = package_id.partition(".")
        if sep and rest:
            url = f"{self.api_url}/packages/{quote(publisher)}/{quote(rest)}"
            return winget.parse_package(http_client.get_bytes(url, context="package", cancel=cancel))
        entry = winget.best_match(self.search_entries(package_id, cancel), package_id)
        if entry is None:
            raise NotFoundError(f"no winget package matches {package_id}", op="winget", package=package_id)
        return entry

    def search_entries(self, query: str, cancel: Optional[CancelToken] = None, limit: int = 20) -> List[winget.WingetEntry]:
        url = f"{self.api_url}/packages?query={quote(query)}&take={limit}"
        return winget.parse_search(http_client.get_bytes(url, context="search", cancel=cancel))

    def manifest(self, package_id: str, version: str, cancel: Optional[CancelToken] = None) -> winget.Manifest:
        url = f"{self.api_url}/manifests/{quote(package_id)}/{quote(version)}"
        return winget.parse_manifest(http_client.get_bytes(url, context="manifest", cancel=cancel))

    def _record(self, manifest: winget.Manifest, arch: str) -> PackageRecord:
        return winget.manifest_record(manifest, winget.select_installer(manifest, arch))

    def lookup(self, name: str, arch: str, cancel: Optional[CancelToken] = None) -> List[PackageRecord]:
        entry = self.package_entry(name, cancel)
        for version in entry.candidate_versions() + ["latest"]:
            try:
                return [self._record(self.manifest(entry.id, version, cancel), arch)]
            except NotFoundError:
                logger.debug("No manifest for %s %s", entry.id, version)
        raise NotFoundError(f"no manifest available for {entry.id}", op="winget", package=entry.id)

    def lookup_version(self, name: str, version: str, arch: str,
                       cancel: Optional[CancelToken] = None) -> Optional[PackageRecord]:
        package_id = name if "." in name else self.package_entry(name, cancel).id
        return self._record(self.manifest(package_id, version, cancel), arch)

    def installer(self, record: PackageRecord) -> winget.Installer:
        return winget.Installer(
            architecture=record.arch,
            url=record.locator,
            sha256=record.checksum.value if record.checksum else "",
            type=str(record.extra.get("installer_type", "")),
        )

    def artifact_url(self, record: PackageRecord) -> str:
        return record.locator

    def archive_name(self, record: PackageRecord) -> str:
        return f"{sanitize(record.name)}-{record.version}.{self.installer(record).extension()}"

    def container_kind(self, record: PackageRecord) -> ContainerKind:
        return ContainerKind.ZIP

    def target_root(self, record: PackageRecord, options: DownloadOptions) -> str:
        return os.path.join(self.install_root, sanitize(record.name))

    def install_record(
        self,
        record: PackageRecord,
        options: DownloadOptions,
        cancel: Optional[CancelToken] = None,
    ) -> InstalledPackage:
        installer = self.installer(record)
        if installer.is_archive:
            return super().install_record(record, options, cancel)

        # Not an archive: the installer itself is the artifact
        installed = super().install_record(record, DownloadOptions(
            version=options.version, arch=options.arch, extract=False, keep_archive=True,
            verify_hash=options.verify_hash, force=options.force,
        ), cancel)
        dest = os.path.join(self.install_root, self.archive_name(record))
        if options.extract:
            os.makedirs(self.install_root, exist_ok=True)
            shutil.copyfile(installed.archive_path, dest)
            if installer.type in winget.EXECUTABLE_TYPES:
                os.chmod(dest, 0o755)
            if not options.keep_archive:
                os.unlink(installed.archive_path)
            logger.info("Copied %s installer to %s", installer.type or installer.extension(), dest)
        return InstalledPackage(
            record=record,
            archive_path=installed.archive_path,
            target_root=self.install_root,
            extracted=False,
            downloaded_bytes=installed.downloaded_bytes,
        )

    def search(self, query: str, cancel: Optional[CancelToken] = None, limit: int = 20) -> List[PackageInfo]:
        self._require(SEARCH)
        return [
            PackageInfo(
                name=entry.id,
                version=entry.latest_version,
                backend=self.name,
                description=entry.description,
                homepage=entry.homepage,
                license=entry.license,
            )
            for entry in self.search_entries(query, cancel, limit)
        ]
