"""Nix ARchive (NAR) reader.

Every token is a string: a little-endian u64 length, the bytes, then zero
padding to a multiple of 8. Grammar::

    nar       = "nix-archive-1" node
    node      = "(" "type" ( regular | symlink | directory ) ")"
    regular   = "regular" [ "executable" "" ] "contents" <u64 size> <bytes+pad>
    symlink   = "symlink" "target" <string>
    directory = "directory" { "entry" "(" "name" <string> "node" node ")" }

Directory entries appear in strictly increasing name order.
"""

from __future__ import annotations

import struct
from typing import BinaryIO, Optional

from upkg.exceptions import FormatError
from upkg.extract.entries import ArchiveEntry, BoundedReader, EntryStream, EntryType, read_exact
from upkg.registry.compression import open_decompressed

MAGIC = "nix-archive-1"
MAX_TOKEN = 1 << 16


def _int(stream: BinaryIO) -> int:
    return struct.unpack("<Q", read_exact(stream, 8))[0]


def _skip_padding(stream: BinaryIO, size: int) -> None:
    pad = (8 - size % 8) % 8
    if pad and read_exact(stream, pad).strip(b"\x00"):
        raise FormatError("non-zero NAR padding", op="extract")


def _bytes(stream: BinaryIO, limit: int = MAX_TOKEN) -> bytes:
    size = _int(stream)
    if size > limit:
        raise FormatError(f"NAR string of {size} bytes exceeds limit", op="extract")
    data = read_exact(stream, size)
    _skip_padding(stream, size)
    return data


def _str(stream: BinaryIO) -> str:
    return _bytes(stream).decode("utf-8", errors="surrogateescape")


def _expect(stream: BinaryIO, token: str) -> None:
    got = _str(stream)
    if got != token:
        raise FormatError(f"expected NAR token {token!r}, got {got!r}", op="extract")


def _check_name(name: str, previous: Optional[str]) -> None:
    if not name or name in (".", "..") or "/" in name or "\x00" in name:
        raise FormatError(f"invalid NAR entry name {name!r}", op="extract")
    if previous is not None and name <= previous:
        raise FormatError(f"NAR entries out of order: {previous!r} then {name!r}", op="extract")


def _node(stream: BinaryIO, path: str) -> EntryStream:
    _expect(stream, "(")
    _expect(stream, "type")
    kind = _str(stream)
    if kind == "regular":
        tag = _str(stream)
        executable = False
        if tag == "executable":
            _expect(stream, "")
            executable = True
            tag = _str(stream)
        if tag != "contents":
            raise FormatError(f"expected NAR token 'contents', got {tag!r}", op="extract")
        size = _int(stream)
        reader = BoundedReader(stream, size)
        yield ArchiveEntry(path, EntryType.FILE, 0o755 if executable else 0o644, size), reader
        reader.drain()
        _skip_padding(stream, size)
        _expect(stream, ")")
    elif kind == "symlink":
        _expect(stream, "target")
        target = _str(stream)
        _expect(stream, ")")
        yield ArchiveEntry(path, EntryType.SYMLINK, 0o777, linkname=target), None
    elif kind == "directory":
        if path:
            yield ArchiveEntry(path, EntryType.DIRECTORY, 0o755), None
        previous = None
        while True:
            tag = _str(stream)
            if tag == ")":
                break
            if tag != "entry":
                raise FormatError(f"expected NAR token 'entry', got {tag!r}", op="extract")
            _expect(stream, "(")
            _expect(stream, "name")
            name = _str(stream)
            _check_name(name, previous)
            previous = name
            _expect(stream, "node")
            yield from _node(stream, f"{path}/{name}" if path else name)
            _expect(stream, ")")
    else:
        raise FormatError(f"unknown NAR node type {kind!r}", op="extract")


def iter_nar(fileobj: BinaryIO, *, root_name: str = "out", compression: Optional[str] = None) -> EntryStream:
    """Yield entries of a (compressed) NAR.

    A directory root maps onto the extraction root; a file or symlink root
    is emitted as ``root_name``.

    Raises:
        FormatError: bad magic, framing errors, or truncation.
    """
    stream = open_decompressed(fileobj, compression)
    try:
        magic = _str(stream)
    except FormatError as exc:
        raise FormatError(f"not a NAR archive: {exc.message}", op="extract") from exc
    if magic != MAGIC:
        raise FormatError(f"not a NAR archive (magic {magic!r})", op="extract")
    for entry, reader in _node(stream, ""):
        if not entry.path:
            entry.path = root_name
        yield entry, reader
