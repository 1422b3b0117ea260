"""Format-neutral archive entries and path normalization."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO, Iterator, Optional, Tuple

from upkg.exceptions import ExtractionError, FormatError


class EntryType(Enum):
    FILE = "file"
    DIRECTORY = "directory"
    SYMLINK = "symlink"
    HARDLINK = "hardlink"


@dataclass
class ArchiveEntry:
    """One member as seen by the extractor.

    ``path`` is the raw member name; ``linkname`` is the symlink target or,
    for hard links, the member name of the linked file.
    """
    path: str
    type: EntryType
    mode: int = 0o644
    size: int = 0
    linkname: str = ""


# What every reader yields: the entry plus a stream for FILE entries. The
# stream must be consumed before the generator is advanced.
EntryStream = Iterator[Tuple[ArchiveEntry, Optional[BinaryIO]]]


def normalize_entry_path(name: str) -> str:
    """Return a clean relative POSIX path for a member name.

    ``./`` prefixes, leading slashes, duplicate separators and ``.``
    components are dropped; an empty result means the archive root.

    Raises:
        ExtractionError: the name contains a NUL byte or a ``..`` component.
    """
    if "\x00" in name:
        raise ExtractionError(f"member name contains NUL: {name!r}")
    parts = []
    for part in name.replace("\\", "/").split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            raise ExtractionError(f"member escapes the target root: {name!r}")
        parts.append(part)
    return "/".join(parts)


class BoundedReader:
    """Read at most ``size`` bytes from a shared stream."""

    def __init__(self, stream: BinaryIO, size: int):
        self._stream = stream
        self.remaining = size

    def read(self, n: int = -1) -> bytes:
        if self.remaining <= 0:
            return b""
        if n is None or n < 0 or n > self.remaining:
            n = self.remaining
        data = self._stream.read(n)
        if not data:
            raise FormatError("archive truncated inside member data", op="extract")
        self.remaining -= len(data)
        return data

    def drain(self) -> None:
        while self.remaining > 0:
            if not self.read(min(self.remaining, 1 << 16)):
                break


def read_exact(stream: BinaryIO, size: int) -> bytes:
    """Read exactly ``size`` bytes or raise FormatError."""
    chunks = []
    left = size
    while left > 0:
        data = stream.read(left)
        if not data:
            raise FormatError(f"unexpected end of archive ({left} of {size} bytes missing)", op="extract")
        chunks.append(data)
        left -= len(data)
    return b"".join(chunks)
