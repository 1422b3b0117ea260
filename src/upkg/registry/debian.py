"""Debian/Ubuntu repository feeds: ``Packages`` indexes and ``Release`` files.

Stanza splitting, continuation lines and field names follow deb822 and are
handled by python-debian; this module maps paragraphs onto PackageRecord.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from debian import deb822

from upkg.exceptions import FormatError
from upkg.models import Checksum, Ecosystem, PackageRecord
from upkg.registry.compression import decompress_bytes

logger = logging.getLogger(__name__)

# Strongest digest first.
_DIGEST_FIELDS = (("SHA512", "sha512"), ("SHA256", "sha256"), ("SHA1", "sha1"), ("MD5sum", "md5"))
_DEPENDS_FIELDS = ("Pre-Depends", "Depends")
_META_FIELDS = ("Section", "Priority", "Maintainer", "Source", "Recommends", "Suggests",
                "Conflicts", "Breaks", "Replaces", "Multi-Arch")


def _text(data: Union[bytes, str], compression: Optional[str]) -> str:
    if isinstance(data, str):
        return data
    raw = decompress_bytes(data, compression)
    return raw.decode("utf-8", errors="replace")


def split_relations(value: str) -> List[str]:
    """Split a comma separated relationship field into raw tokens."""
    return [part.strip() for part in value.replace("\n", " ").split(",") if part.strip()]


def split_version(version: str):
    """Return ``(epoch, rest)`` for ``[epoch:]upstream[-revision]``."""
    if ":" in version:
        epoch, rest = version.split(":", 1)
        if epoch.isdigit():
            return epoch, rest
    return "", version


def _int(value: Optional[str]) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return 0


def _record(para, origin: str) -> Optional[PackageRecord]:
    name = (para.get("Package") or "").strip()
    version = (para.get("Version") or "").strip()
    if not name or not version:
        return None

    checksum = None
    for field_name, algo in _DIGEST_FIELDS:
        value = (para.get(field_name) or "").strip()
        if value:
            checksum = Checksum(algo, value.lower())
            break

    depends: List[str] = []
    for field_name in _DEPENDS_FIELDS:
        depends.extend(split_relations(para.get(field_name) or ""))

    provides = split_relations(para.get("Provides") or "")
    description = (para.get("Description") or "").split("\n", 1)[0].strip()
    epoch, rest = split_version(version)

    return PackageRecord(
        name=name,
        version=rest,
        epoch=epoch,
        ecosystem=Ecosystem.DEBIAN,
        arch=(para.get("Architecture") or "").strip(),
        size=_int(para.get("Size")),
        installed_size=_int(para.get("Installed-Size")) * 1024,
        checksum=checksum,
        locator=(para.get("Filename") or "").strip(),
        depends=tuple(depends),
        provides=tuple(provides),
        origin=origin,
        description=description,
        homepage=(para.get("Homepage") or "").strip(),
        extra={k.lower(): para[k] for k in _META_FIELDS if para.get(k)},
    )


def parse_packages(
    data: Union[bytes, str],
    *,
    origin: str = "",
    compression: Optional[str] = None,
) -> List[PackageRecord]:
    """Parse a (possibly compressed) ``Packages`` index.

    Args:
        data: Raw feed bytes or already decoded text.
        origin: Component tag stamped on every record (e.g. ``main``).
        compression: Compression kind; sniffed from magic bytes when None.

    Returns:
        One record per stanza carrying at least Package and Version.

    Raises:
        FormatError: undecompressable data, or a non-empty feed without a
            single usable stanza.
    """
    text = _text(data, compression)
    records: List[PackageRecord] = []
    skipped = 0
    for para in deb822.Packages.iter_paragraphs(text.splitlines(True), use_apt_pkg=False):
        record = _record(para, origin)
        if record is None:
            skipped += 1
            continue
        records.append(record)

    if skipped:
        logger.debug("Skipped %d Packages stanza(s) without Package/Version", skipped)
    if not records and text.strip():
        raise FormatError("Packages index contains no usable stanza", op="parse")
    return records


@dataclass
class ReleaseFile:
    """Entry from a ``Release`` checksum table."""
    name: str
    size: int
    sha256: str


def parse_release(data: Union[bytes, str]) -> Dict[str, ReleaseFile]:
    """Parse a ``Release`` (or clear-signed ``InRelease``) file.

    Returns:
        Mapping of index path (``main/binary-amd64/Packages.gz``) to its
        SHA256 entry.
    """
    text = data.decode("utf-8", errors="replace") if isinstance(data, bytes) else data
    if "-----BEGIN PGP SIGNED MESSAGE-----" in text:
        body = text.split("\n\n", 1)[1] if "\n\n" in text else text
        text = body.split("-----BEGIN PGP SIGNATURE-----", 1)[0]
    release = deb822.Release(text)
    if not release:
        raise FormatError("Release file is empty or malformed", op="parse")
    files: Dict[str, ReleaseFile] = {}
    for item in release.get("SHA256", []) or []:
        try:
            files[item["name"]] = ReleaseFile(item["name"], int(item["size"]), item["sha256"].lower())
        except (KeyError, TypeError, ValueError):
            continue
    return files
