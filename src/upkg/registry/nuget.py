"""NuGet V2 OData (Atom) feed parsing, as served by Chocolatey repositories."""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from typing import Iterable, List, Optional, Union

import semantic_version

from upkg.exceptions import FormatError
from upkg.models import Checksum, Ecosystem, PackageRecord

logger = logging.getLogger(__name__)

ATOM = "{http://www.w3.org/2005/Atom}"
DATA = "{http://schemas.microsoft.com/ado/2007/08/dataservices}"
METADATA = "{http://schemas.microsoft.com/ado/2007/08/dataservices/metadata}"

ACCEPT = "application/atom+xml,application/xml"


def _prop(props: ET.Element, name: str) -> str:
    elem = props.find(f"{DATA}{name}")
    if elem is None or elem.text is None:
        return ""
    return elem.text.strip()


def dependency_ids(value: str) -> List[str]:
    """``id:range:framework|id2:range`` -> ``[id, id2]`` (duplicates dropped)."""
    ids: List[str] = []
    for part in value.split("|"):
        dep_id = part.split(":", 1)[0].strip()
        if dep_id and dep_id not in ids:
            ids.append(dep_id)
    return ids


def _int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        return 0


def _entry_record(entry: ET.Element) -> Optional[PackageRecord]:
    props = entry.find(f"{METADATA}properties")
    if props is None:
        # Some servers place properties under content
        props = entry.find(f".//{METADATA}properties")
    if props is None:
        return None

    package_id = _prop(props, "Id")
    if not package_id:
        title = entry.find(f"{ATOM}title")
        package_id = (title.text or "").strip() if title is not None else ""
    version = _prop(props, "Version")
    if not package_id or not version:
        return None

    content = entry.find(f"{ATOM}content")
    locator = content.get("src", "") if content is not None else ""

    deps = _prop(props, "Dependencies")
    return PackageRecord(
        name=package_id,
        version=version,
        ecosystem=Ecosystem.NUGET,
        arch="any",
        size=_int(_prop(props, "PackageSize")),
        checksum=Checksum.from_nuget(_prop(props, "PackageHash"), _prop(props, "PackageHashAlgorithm") or "SHA512"),
        locator=locator,
        depends=tuple(dependency_ids(deps)),
        description=_prop(props, "Summary") or _prop(props, "Description"),
        homepage=_prop(props, "ProjectUrl"),
        license=_prop(props, "LicenseUrl"),
        extra={
            k: v for k, v in (
                ("title", _prop(props, "Title")),
                ("authors", _prop(props, "Authors")),
                ("tags", _prop(props, "Tags")),
                ("dependencies", deps),
                ("is_latest", _prop(props, "IsLatestVersion").lower() == "true"),
            ) if v
        },
    )


def parse_feed(data: Union[bytes, str]) -> List[PackageRecord]:
    """Parse an Atom feed or a single Atom entry document.

    Returns:
        One record per ``<entry>`` with an Id and a Version. A feed without
        entries yields an empty list (no match on the server).

    Raises:
        FormatError: malformed XML, or entries present but none usable.
    """
    try:
        root = ET.fromstring(data)
    except ET.ParseError as exc:
        raise FormatError(f"OData feed: {exc}", op="parse") from exc

    entries = [root] if root.tag == f"{ATOM}entry" else root.findall(f"{ATOM}entry")
    records = []
    for entry in entries:
        record = _entry_record(entry)
        if record is not None:
            records.append(record)
    if entries and not records:
        raise FormatError("OData feed entries carry no Id/Version", op="parse")
    if len(records) < len(entries):
        logger.debug("Skipped %d feed entries without Id/Version", len(entries) - len(records))
    return records


def parse_version(value: str) -> Optional[semantic_version.Version]:
    """Coerce NuGet's up-to-four-part versions; None when unparseable."""
    try:
        return semantic_version.Version.coerce(value)
    except ValueError:
        return None


def highest(records: Iterable[PackageRecord], include_prerelease: bool = False) -> Optional[PackageRecord]:
    """Record with the highest version; prereleases only when asked or when nothing else exists."""
    parsed = [(parse_version(r.version), r) for r in records]
    parsed = [(v, r) for v, r in parsed if v is not None]
    if not parsed:
        return None
    stable = [(v, r) for v, r in parsed if not v.prerelease]
    pool = parsed if include_prerelease or not stable else stable
    return max(pool, key=lambda pair: pair[0])[1]


def quote_literal(value: str) -> str:
    """OData string literal body: single quotes doubled."""
    return value.replace("'", "''")
