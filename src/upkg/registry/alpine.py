"""Alpine ``APKINDEX`` parsing.

``APKINDEX.tar.gz`` is a gzip tar whose member ``APKINDEX`` holds stanzas of
single-letter ``X:value`` lines. ``P`` opens a stanza and a blank line (or
the next ``P``) closes it.
"""

from __future__ import annotations

import io
import logging
import tarfile
from typing import Dict, List, Optional, Union

from upkg.exceptions import FormatError
from upkg.models import Checksum, Ecosystem, PackageRecord

logger = logging.getLogger(__name__)

# Field tag -> attribute consumed by _build.
FIELD_TAGS = {
    "P": "name",
    "V": "version",
    "A": "arch",
    "S": "size",
    "I": "installed_size",
    "T": "description",
    "U": "homepage",
    "L": "license",
    "o": "origin_pkg",
    "m": "maintainer",
    "t": "build_time",
    "c": "commit",
    "D": "depends",
    "p": "provides",
    "i": "install_if",
    "C": "checksum",
    "k": "provider_priority",
}


def extract_index(data: bytes) -> str:
    """Pull the ``APKINDEX`` member out of ``APKINDEX.tar.gz``.

    Raises:
        FormatError: the archive is unreadable or has no APKINDEX member.
    """
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as tar:
            for member in tar:
                if member.isfile() and member.name.lstrip("./") == "APKINDEX":
                    fh = tar.extractfile(member)
                    if fh is None:
                        break
                    return fh.read().decode("utf-8", errors="replace")
    except (tarfile.TarError, OSError, EOFError) as exc:
        raise FormatError(f"reading APKINDEX archive: {exc}", op="parse") from exc
    raise FormatError("APKINDEX member not found in archive", op="parse")


def _int(value: Optional[str]) -> int:
    try:
        return int(value or 0)
    except ValueError:
        return 0


def _split_version(version: str):
    """``1.2.3-r4`` -> (``1.2.3``, ``r4``)."""
    if "-r" in version:
        upstream, _, rel = version.rpartition("-")
        if rel.startswith("r") and rel[1:].isdigit():
            return upstream, rel
    return version, ""


def _build(fields: Dict[str, str], repo: str) -> Optional[PackageRecord]:
    name = fields.get("name")
    version = fields.get("version")
    if not name or not version:
        return None
    upstream, rel = _split_version(version)
    checksum = Checksum.from_apk(fields["checksum"]) if fields.get("checksum") else None
    extra = {k: fields[k] for k in ("origin_pkg", "maintainer", "build_time", "commit", "install_if",
                                    "provider_priority") if fields.get(k)}
    return PackageRecord(
        name=name,
        version=upstream,
        release=rel,
        ecosystem=Ecosystem.ALPINE,
        arch=fields.get("arch", ""),
        size=_int(fields.get("size")),
        installed_size=_int(fields.get("installed_size")),
        checksum=checksum,
        locator=f"{name}-{version}.apk",
        depends=tuple(fields.get("depends", "").split()),
        provides=tuple(fields.get("provides", "").split()),
        origin=repo,
        description=fields.get("description", ""),
        homepage=fields.get("homepage", ""),
        license=fields.get("license", ""),
        extra=extra,
    )


def parse_apkindex(data: Union[bytes, str], *, origin: str = "") -> List[PackageRecord]:
    """Parse APKINDEX text, or the ``APKINDEX.tar.gz`` archive holding it.

    Args:
        data: Archive bytes or index text.
        origin: Repository tag (``main``, ``community``...).

    Returns:
        Records in index order.

    Raises:
        FormatError: unreadable archive, or non-empty text with no stanza.
    """
    if isinstance(data, bytes):
        text = extract_index(data) if data[:2] == b"\x1f\x8b" else data.decode("utf-8", errors="replace")
    else:
        text = data

    records: List[PackageRecord] = []
    fields: Dict[str, str] = {}
    in_stanza = False
    malformed = 0

    def flush():
        nonlocal fields, in_stanza
        if in_stanza:
            record = _build(fields, origin)
            if record is not None:
                records.append(record)
        fields = {}
        in_stanza = False

    for line in text.splitlines():
        if not line.strip():
            flush()
            continue
        if len(line) < 2 or line[1] != ":":
            malformed += 1
            continue
        tag, value = line[0], line[2:].strip()
        if tag == "P" and "name" in fields:
            flush()
        attr = FIELD_TAGS.get(tag)
        if attr is None:
            continue
        fields[attr] = value
        in_stanza = True
    flush()

    if malformed:
        logger.debug("Skipped %d malformed APKINDEX line(s)", malformed)
    if not records and text.strip():
        raise FormatError("APKINDEX contains no usable stanza", op="parse")
    return records
