"""Arch Linux sync database (``<repo>.db``) parsing.

The database is a compressed tar with one ``<name>-<version>/desc`` file per
package. A ``desc`` file is a sequence of ``%HEADER%`` lines, each followed
by one value per line and terminated by a blank line.
"""

from __future__ import annotations

import io
import logging
import tarfile
from typing import Dict, List, Optional

from upkg.exceptions import FormatError
from upkg.models import Checksum, Ecosystem, PackageRecord
from upkg.registry.compression import open_decompressed

logger = logging.getLogger(__name__)


def parse_desc(text: str) -> Dict[str, List[str]]:
    """Split a ``desc`` file into ``{HEADER: [values...]}``.

    Lines before the first header and unknown junk are ignored.
    """
    fields: Dict[str, List[str]] = {}
    current: Optional[str] = None
    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            current = None
            continue
        if line.startswith("%") and line.endswith("%") and len(line) > 2:
            current = line[1:-1]
            fields.setdefault(current, [])
            continue
        if current is not None:
            fields[current].append(line)
    return fields


def _first(fields: Dict[str, List[str]], key: str) -> str:
    values = fields.get(key) or []
    return values[0] if values else ""


def _int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        return 0


def _split_version(version: str):
    """``[epoch:]pkgver-pkgrel`` -> (epoch, pkgver, pkgrel)."""
    epoch = ""
    if ":" in version:
        epoch, version = version.split(":", 1)
    pkgver, sep, pkgrel = version.rpartition("-")
    if not sep:
        return epoch, version, ""
    return epoch, pkgver, pkgrel


def record_from_desc(fields: Dict[str, List[str]], origin: str = "") -> Optional[PackageRecord]:
    """Build a record from parsed ``desc`` fields; None without NAME/VERSION."""
    name = _first(fields, "NAME")
    version = _first(fields, "VERSION")
    if not name or not version:
        return None
    epoch, pkgver, pkgrel = _split_version(version)
    arch = _first(fields, "ARCH")

    checksum = None
    if _first(fields, "SHA256SUM"):
        checksum = Checksum("sha256", _first(fields, "SHA256SUM").lower())
    elif _first(fields, "MD5SUM"):
        checksum = Checksum("md5", _first(fields, "MD5SUM").lower())

    filename = _first(fields, "FILENAME") or f"{name}-{version}-{arch or 'any'}.pkg.tar.zst"
    extra = {
        key.lower(): list(fields[key])
        for key in ("GROUPS", "OPTDEPENDS", "MAKEDEPENDS", "CHECKDEPENDS", "CONFLICTS", "REPLACES")
        if fields.get(key)
    }
    for key in ("BASE", "PACKAGER", "BUILDDATE"):
        if _first(fields, key):
            extra[key.lower()] = _first(fields, key)

    return PackageRecord(
        name=name,
        version=pkgver,
        release=pkgrel,
        epoch=epoch,
        ecosystem=Ecosystem.PACMAN,
        arch=arch,
        size=_int(_first(fields, "CSIZE")),
        installed_size=_int(_first(fields, "ISIZE") or _first(fields, "SIZE")),
        checksum=checksum,
        locator=filename,
        depends=tuple(fields.get("DEPENDS", ())),
        provides=tuple(fields.get("PROVIDES", ())),
        origin=origin,
        description=_first(fields, "DESC"),
        homepage=_first(fields, "URL"),
        license=" ".join(fields.get("LICENSE", ())),
        extra=extra,
    )


def parse_sync_db(data: bytes, *, origin: str = "") -> List[PackageRecord]:
    """Parse a compressed sync database.

    Args:
        data: ``<repo>.db`` bytes (gzip or zstd tar, sniffed).
        origin: Repository tag (``core``, ``extra``...).

    Raises:
        FormatError: the archive cannot be read, or holds no usable desc file.
    """
    records: List[PackageRecord] = []
    skipped = 0
    try:
        stream = open_decompressed(io.BytesIO(data))
        with tarfile.open(fileobj=stream, mode="r|") as tar:
            for member in tar:
                if not member.isfile() or not member.name.endswith("/desc"):
                    continue
                fh = tar.extractfile(member)
                if fh is None:
                    continue
                record = record_from_desc(parse_desc(fh.read().decode("utf-8", errors="replace")), origin)
                if record is None:
                    skipped += 1
                    continue
                records.append(record)
    except FormatError:
        raise
    except Exception as exc:  # pylint: disable=broad-exception-caught
        # tarfile, gzip and zstandard each raise their own error types
        raise FormatError(f"reading sync database: {exc}", op="parse") from exc

    if skipped:
        logger.debug("Skipped %d desc file(s) without NAME/VERSION", skipped)
    if not records:
        raise FormatError("sync database contains no packages", op="parse")
    return records
