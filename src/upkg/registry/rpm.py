"""RPM repository metadata: ``repomd.xml`` and streamed ``primary.xml``.

``primary.xml`` runs to hundreds of megabytes for Fedora Everything, so it is
walked with ``iterparse`` and each ``<package>`` element is cleared once
converted.
"""

from __future__ import annotations

import io
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import BinaryIO, Iterator, List, Optional, Sequence, Union

from upkg.exceptions import FormatError
from upkg.models import Checksum, Ecosystem, PackageRecord
from upkg.registry.compression import kind_from_suffix, open_decompressed

logger = logging.getLogger(__name__)

NS_REPO = "{http://linux.duke.edu/metadata/repo}"
NS_COMMON = "{http://linux.duke.edu/metadata/common}"
NS_RPM = "{http://linux.duke.edu/metadata/rpm}"

_FLAG_OPS = {"EQ": "=", "GE": ">=", "LE": "<=", "GT": ">", "LT": "<"}


@dataclass
class RepomdData:
    """One ``<data>`` entry of repomd.xml."""
    type: str
    href: str
    checksum: Optional[Checksum] = None
    size: int = 0


def parse_repomd(data: Union[bytes, str]) -> List[RepomdData]:
    """Parse repomd.xml into its data entries.

    Raises:
        FormatError: the document is not well-formed XML.
    """
    try:
        root = ET.fromstring(data)
    except ET.ParseError as exc:
        raise FormatError(f"repomd.xml: {exc}", op="parse") from exc

    entries: List[RepomdData] = []
    for node in root.iter(f"{NS_REPO}data"):
        location = node.find(f"{NS_REPO}location")
        if location is None or not location.get("href"):
            continue
        checksum = None
        csum = node.find(f"{NS_REPO}checksum")
        if csum is not None and csum.text:
            checksum = Checksum(csum.get("type", "sha256").lower(), csum.text.strip().lower())
        size_node = node.find(f"{NS_REPO}size")
        size = int(size_node.text) if size_node is not None and (size_node.text or "").isdigit() else 0
        entries.append(RepomdData(node.get("type", ""), location.get("href"), checksum, size))
    return entries


def primary_location(data: Union[bytes, str]) -> RepomdData:
    """Return the ``primary`` entry of repomd.xml.

    Raises:
        FormatError: no primary entry is present.
    """
    for entry in parse_repomd(data):
        if entry.type == "primary":
            return entry
    raise FormatError("primary metadata not found in repomd.xml", op="parse")


def _entry_token(entry: ET.Element) -> Optional[str]:
    name = entry.get("name")
    if not name:
        return None
    flags = entry.get("flags")
    if not flags:
        return name
    evr = entry.get("ver") or ""
    if entry.get("epoch") and entry.get("epoch") != "0":
        evr = f"{entry.get('epoch')}:{evr}"
    if entry.get("rel"):
        evr = f"{evr}-{entry.get('rel')}"
    return f"{name} {_FLAG_OPS.get(flags, flags)} {evr}".strip()


def _entries(fmt: Optional[ET.Element], tag: str) -> List[str]:
    if fmt is None:
        return []
    block = fmt.find(f"{NS_RPM}{tag}")
    if block is None:
        return []
    tokens = []
    for entry in block.findall(f"{NS_RPM}entry"):
        token = _entry_token(entry)
        if token is None:
            continue
        if tag == "requires" and token.startswith("rpmlib("):
            continue
        tokens.append(token)
    return tokens


def _text(node: ET.Element, tag: str) -> str:
    child = node.find(f"{NS_COMMON}{tag}")
    return (child.text or "").strip() if child is not None else ""


def _int(value: Optional[str]) -> int:
    try:
        return int(value or 0)
    except ValueError:
        return 0


def _package(node: ET.Element, origin: str) -> Optional[PackageRecord]:
    if node.get("type", "rpm") != "rpm":
        return None
    name = _text(node, "name")
    version = node.find(f"{NS_COMMON}version")
    if not name or version is None or not version.get("ver"):
        return None

    checksum = None
    csum = node.find(f"{NS_COMMON}checksum")
    if csum is not None and csum.text:
        checksum = Checksum(csum.get("type", "sha256").lower(), csum.text.strip().lower())

    location = node.find(f"{NS_COMMON}location")
    size = node.find(f"{NS_COMMON}size")
    fmt = node.find(f"{NS_COMMON}format")

    provides = _entries(fmt, "provides")
    if fmt is not None:
        # primary.xml lists the commonly required paths (/usr/bin/*, /etc/*)
        provides.extend(f.text.strip() for f in fmt.findall(f"{NS_COMMON}file") if f.text)
    license_node = fmt.find(f"{NS_RPM}license") if fmt is not None else None

    return PackageRecord(
        name=name,
        version=version.get("ver", ""),
        release=version.get("rel", ""),
        epoch=version.get("epoch", "0") or "0",
        ecosystem=Ecosystem.RPM,
        arch=_text(node, "arch"),
        size=_int(size.get("package")) if size is not None else 0,
        installed_size=_int(size.get("installed")) if size is not None else 0,
        checksum=checksum,
        locator=location.get("href", "") if location is not None else "",
        depends=tuple(_entries(fmt, "requires")),
        provides=tuple(provides),
        origin=origin,
        description=_text(node, "summary"),
        homepage=_text(node, "url"),
        license=(license_node.text or "").strip() if license_node is not None else "",
        extra={"packager": _text(node, "packager")} if _text(node, "packager") else {},
    )


def iter_primary(
    stream: BinaryIO,
    *,
    origin: str = "",
    arches: Optional[Sequence[str]] = None,
) -> Iterator[PackageRecord]:
    """Stream records out of an uncompressed primary.xml byte stream.

    Args:
        stream: primary.xml bytes.
        origin: Repository tag.
        arches: When given, only packages with one of these arches are kept.

    Raises:
        FormatError: the XML is not well-formed.
    """
    wanted = set(arches) if arches else None
    try:
        for _event, node in ET.iterparse(stream, events=("end",)):
            if node.tag != f"{NS_COMMON}package":
                continue
            record = _package(node, origin)
            node.clear()
            if record is None:
                continue
            if wanted is not None and record.arch not in wanted:
                continue
            yield record
    except ET.ParseError as exc:
        raise FormatError(f"primary.xml: {exc}", op="parse") from exc
    except (OSError, EOFError) as exc:
        raise FormatError(f"primary.xml decompression: {exc}", op="parse") from exc


def parse_primary(
    data: bytes,
    *,
    filename: str = "primary.xml",
    origin: str = "",
    arches: Optional[Sequence[str]] = None,
) -> List[PackageRecord]:
    """Parse primary.xml, decompressing according to ``filename``'s suffix.

    When the suffix is unknown the compression is sniffed from magic bytes.
    """
    kind = kind_from_suffix(filename)
    stream = open_decompressed(io.BytesIO(data), None if kind == "none" else kind)
    try:
        return list(iter_primary(stream, origin=origin, arches=arches))
    except Exception as exc:  # pylint: disable=broad-exception-caught
        # zstandard and lzma raise their own error types from inside iterparse
        if isinstance(exc, FormatError):
            raise
        raise FormatError(f"primary.xml: {exc}", op="parse") from exc
