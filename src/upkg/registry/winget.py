"""winget.run API payloads: package entries and installer manifests."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlparse

from upkg.exceptions import FormatError, NotFoundError
from upkg.models import Checksum, Ecosystem, PackageRecord

logger = logging.getLogger(__name__)

ARCHIVE_TYPES = frozenset({"zip"})
EXECUTABLE_TYPES = frozenset({"exe", "portable"})
_KNOWN_EXTENSIONS = ("zip", "msix", "msi", "exe")


def _json(data: Union[bytes, str, Dict[str, Any]]) -> Any:
    if isinstance(data, (dict, list)):
        return data
    try:
        return json.loads(data)
    except ValueError as exc:
        raise FormatError(f"invalid JSON: {exc}", op="parse") from exc


@dataclass
class WingetEntry:
    """Package summary from the search or package endpoint."""
    id: str
    latest_version: str = ""
    versions: List[str] = field(default_factory=list)
    name: str = ""
    publisher: str = ""
    description: str = ""
    homepage: str = ""
    license: str = ""

    def candidate_versions(self) -> List[str]:
        """Latest first, then the listed versions, deduplicated."""
        ordered: List[str] = []
        for ver in [self.latest_version] + self.versions:
            if ver and ver not in ordered:
                ordered.append(ver)
        return ordered


def _entry(doc: Dict[str, Any]) -> Optional[WingetEntry]:
    package_id = doc.get("Id") or ""
    if not package_id:
        return None
    latest = doc.get("Latest") or {}
    versions = []
    for item in doc.get("Versions") or []:
        if isinstance(item, str):
            versions.append(item)
        elif isinstance(item, dict) and item.get("Version"):
            versions.append(item["Version"])
    return WingetEntry(
        id=package_id,
        latest_version=latest.get("Version") or "",
        versions=versions,
        name=latest.get("Name") or "",
        publisher=latest.get("Publisher") or "",
        description=latest.get("Description") or "",
        homepage=latest.get("Homepage") or "",
        license=latest.get("License") or "",
    )


def parse_package(data: Union[bytes, str, Dict[str, Any]]) -> WingetEntry:
    """Parse ``/packages/<publisher>/<name>``, wrapped in ``Package`` or not.

    Raises:
        FormatError: no package Id in the payload.
    """
    doc = _json(data)
    if isinstance(doc, dict) and isinstance(doc.get("Package"), dict):
        doc = doc["Package"]
    entry = _entry(doc) if isinstance(doc, dict) else None
    if entry is None:
        raise FormatError("package response lacks Id", op="parse")
    return entry


def parse_search(data: Union[bytes, str, Dict[str, Any]]) -> List[WingetEntry]:
    """Parse ``/packages?query=`` results; entries without Id are skipped."""
    doc = _json(data)
    if not isinstance(doc, dict):
        raise FormatError("search response must be an object", op="parse")
    items = doc.get("Packages")
    if items is None:
        items = doc.get("Data") or []
    return [e for e in (_entry(i) for i in items if isinstance(i, dict)) if e is not None]


def best_match(entries: List[WingetEntry], query: str) -> Optional[WingetEntry]:
    """Exact Id, then exact name, then ``.<query>`` Id suffix, then first result."""
    if not entries:
        return None
    q = query.lower()
    for entry in entries:
        if entry.id.lower() == q:
            return entry
    for entry in entries:
        if entry.name.lower() == q:
            return entry
    for entry in entries:
        if entry.id.lower().endswith("." + q):
            return entry
    return entries[0]


@dataclass
class Installer:
    architecture: str
    url: str
    sha256: str = ""
    type: str = ""
    scope: str = ""

    @property
    def is_archive(self) -> bool:
        return self.type.lower() in ARCHIVE_TYPES or urlparse(self.url).path.lower().endswith(".zip")

    def extension(self) -> str:
        path = urlparse(self.url).path.lower()
        for ext in _KNOWN_EXTENSIONS:
            if path.endswith("." + ext):
                return ext
        kind = self.type.lower()
        return kind if kind in _KNOWN_EXTENSIONS else "bin"


@dataclass
class Manifest:
    package_id: str
    version: str
    name: str = ""
    publisher: str = ""
    license: str = ""
    description: str = ""
    installers: List[Installer] = field(default_factory=list)


def parse_manifest(data: Union[bytes, str, Dict[str, Any]]) -> Manifest:
    """Parse ``/manifests/<id>/<version>``.

    Raises:
        FormatError: PackageIdentifier or PackageVersion missing.
    """
    doc = _json(data)
    if not isinstance(doc, dict) or not doc.get("PackageIdentifier") or not doc.get("PackageVersion"):
        raise FormatError("manifest lacks PackageIdentifier/PackageVersion", op="parse")
    installers = [
        Installer(
            architecture=(item.get("Architecture") or "").lower(),
            url=item.get("InstallerUrl") or "",
            sha256=(item.get("InstallerSha256") or "").lower(),
            type=(item.get("InstallerType") or doc.get("InstallerType") or "").lower(),
            scope=item.get("Scope") or "",
        )
        for item in doc.get("Installers") or []
        if isinstance(item, dict) and item.get("InstallerUrl")
    ]
    return Manifest(
        package_id=doc["PackageIdentifier"],
        version=doc["PackageVersion"],
        name=doc.get("PackageName") or "",
        publisher=doc.get("Publisher") or "",
        license=doc.get("License") or "",
        description=doc.get("ShortDescription") or "",
        installers=installers,
    )


def select_installer(manifest: Manifest, arch: str) -> Installer:
    """Exact architecture, then x86 on x64 hosts, then ``neutral``, then the first installer.

    Raises:
        NotFoundError: the manifest lists no installer.
    """
    if not manifest.installers:
        raise NotFoundError("manifest lists no installers", op="winget", package=manifest.package_id)
    arch = arch.lower()
    fallbacks = [arch]
    if arch == "x64":
        fallbacks.append("x86")
    fallbacks.append("neutral")
    for wanted in fallbacks:
        for installer in manifest.installers:
            if installer.architecture == wanted:
                if wanted != arch:
                    logger.debug("Using %s installer for %s host", wanted, arch)
                return installer
    return manifest.installers[0]


def manifest_record(manifest: Manifest, installer: Installer) -> PackageRecord:
    return PackageRecord(
        name=manifest.package_id,
        version=manifest.version,
        ecosystem=Ecosystem.WINGET,
        arch=installer.architecture,
        checksum=Checksum("sha256", installer.sha256) if installer.sha256 else None,
        locator=installer.url,
        description=manifest.description,
        license=manifest.license,
        extra={"installer_type": installer.type, "display_name": manifest.name, "publisher": manifest.publisher},
    )
