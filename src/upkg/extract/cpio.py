"""SVR4 ``newc`` cpio reader (RPM payloads).

Header: 6 byte magic (``070701``, or ``070702`` with checksums) followed by
thirteen 8-digit hex fields. The name follows, NUL terminated, and both name
and data are padded to 4-byte boundaries. ``TRAILER!!!`` ends the archive.

Hard-linked files share an inode; only the last link carries the data, the
earlier ones have size 0. Those are held back until the data arrives and are
then emitted as hard links to it.
"""

from __future__ import annotations

import logging
import stat
from typing import BinaryIO, Dict, List, Tuple

from upkg.exceptions import FormatError
from upkg.extract.entries import ArchiveEntry, BoundedReader, EntryStream, EntryType, read_exact

logger = logging.getLogger(__name__)

MAGICS = (b"070701", b"070702")
HEADER_SIZE = 110
TRAILER = "TRAILER!!!"
_FIELDS = ("ino", "mode", "uid", "gid", "nlink", "mtime", "filesize",
           "devmajor", "devminor", "rdevmajor", "rdevminor", "namesize", "check")


def _pad(offset: int) -> int:
    return (4 - offset % 4) % 4


def _header(raw: bytes) -> Dict[str, int]:
    if raw[:6] not in MAGICS:
        raise FormatError(f"bad cpio magic {raw[:6]!r}", op="extract")
    fields = {}
    for idx, name in enumerate(_FIELDS):
        chunk = raw[6 + idx * 8: 14 + idx * 8]
        try:
            fields[name] = int(chunk, 16)
        except ValueError as exc:
            raise FormatError(f"bad cpio header field {name}: {chunk!r}", op="extract") from exc
    return fields


def iter_cpio(stream: BinaryIO) -> EntryStream:
    """Yield entries from a decompressed newc stream.

    Raises:
        FormatError: bad magic, malformed header, or truncation.
    """
    pending: Dict[Tuple[int, int, int], List[Tuple[str, int]]] = {}
    while True:
        hdr = _header(read_exact(stream, HEADER_SIZE))
        name_raw = read_exact(stream, hdr["namesize"])
        read_exact(stream, _pad(HEADER_SIZE + hdr["namesize"]))
        name = name_raw.rstrip(b"\x00").decode("utf-8", errors="surrogateescape")
        if name == TRAILER:
            break

        size = hdr["filesize"]
        mode = hdr["mode"]
        perm = mode & 0o7777
        kind = stat.S_IFMT(mode)
        key = (hdr["devmajor"], hdr["devminor"], hdr["ino"])

        if kind == stat.S_IFDIR:
            read_exact(stream, size + _pad(size))
            yield ArchiveEntry(name, EntryType.DIRECTORY, perm or 0o755), None
        elif kind == stat.S_IFLNK:
            target = read_exact(stream, size).decode("utf-8", errors="surrogateescape")
            read_exact(stream, _pad(size))
            yield ArchiveEntry(name, EntryType.SYMLINK, perm, linkname=target), None
        elif kind == stat.S_IFREG:
            if hdr["nlink"] > 1 and size == 0:
                pending.setdefault(key, []).append((name, perm))
                continue
            reader = BoundedReader(stream, size)
            yield ArchiveEntry(name, EntryType.FILE, perm or 0o644, size), reader
            reader.drain()
            read_exact(stream, _pad(size))
            for link_name, link_perm in pending.pop(key, []):
                yield ArchiveEntry(link_name, EntryType.HARDLINK, link_perm, linkname=name), None
        else:
            logger.debug("Skipping special cpio member %s (mode %o)", name, mode)
            read_exact(stream, size + _pad(size))

    # Links whose data-bearing member never showed up are empty files
    for links in pending.values():
        first, first_perm = links[0]
        yield ArchiveEntry(first, EntryType.FILE, first_perm or 0o644, 0), BoundedReader(stream, 0)
        for link_name, link_perm in links[1:]:
            yield ArchiveEntry(link_name, EntryType.HARDLINK, link_perm, linkname=first), None
