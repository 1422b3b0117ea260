"""Compression detection and streaming decompression.

Feeds announce compression through their filename suffix; payloads embedded
in binary containers carry no name and are identified by magic bytes.
"""
from __future__ import annotations

import bz2
import gzip
import io
import lzma
import zlib
from typing import BinaryIO, Optional

import zstandard

from upkg.exceptions import FormatError

GZIP = "gzip"
XZ = "xz"
BZIP2 = "bzip2"
ZSTD = "zstd"
LZMA = "lzma"
NONE = "none"

# Ordered longest first so xz is not mistaken for anything shorter.
MAGIC = (
    (b"\xfd7zXZ\x00", XZ),
    (b"\x28\xb5\x2f\xfd", ZSTD),
    (b"\x1f\x8b", GZIP),
    (b"BZh", BZIP2),
    (b"\x5d\x00\x00", LZMA),
)

_SUFFIXES = {
    ".gz": GZIP,
    ".tgz": GZIP,
    ".xz": XZ,
    ".txz": XZ,
    ".bz2": BZIP2,
    ".zst": ZSTD,
    ".zstd": ZSTD,
    ".lzma": LZMA,
}

_ALIASES = {
    "gz": GZIP, "gzip": GZIP,
    "xz": XZ,
    "bz2": BZIP2, "bzip2": BZIP2,
    "zst": ZSTD, "zstd": ZSTD,
    "lzma": LZMA,
    "": NONE, "none": NONE,
}


def normalize_kind(kind: Optional[str]) -> str:
    """Map user/feed spellings (``gz``, ``bzip2``, ``zst``...) to a kind."""
    try:
        return _ALIASES[(kind or "").strip().lower()]
    except KeyError as exc:
        raise FormatError(f"unsupported compression {kind!r}") from exc


def kind_from_suffix(name: str) -> str:
    """Compression kind from a filename; ``none`` when unrecognised."""
    lower = name.lower().split("?", 1)[0]
    for suffix, kind in _SUFFIXES.items():
        if lower.endswith(suffix):
            return kind
    return NONE


def sniff(head: bytes) -> str:
    """Compression kind from the leading bytes; ``none`` when unrecognised."""
    for magic, kind in MAGIC:
        if head.startswith(magic):
            return kind
    return NONE


class _PeekReader(io.RawIOBase):
    """Re-inject already consumed bytes in front of a stream."""

    def __init__(self, head: bytes, raw: BinaryIO):
        super().__init__()
        self._head = head
        self._raw = raw

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        if self._head:
            n = min(len(b), len(self._head))
            b[:n] = self._head[:n]
            self._head = self._head[n:]
            return n
        data = self._raw.read(len(b))
        if not data:
            return 0
        n = len(data)
        b[:n] = data
        return n


def peek_stream(fileobj: BinaryIO, size: int = 8):
    """Return ``(head, stream)`` where ``stream`` still yields ``head`` first."""
    head = fileobj.read(size)
    return head, io.BufferedReader(_PeekReader(head, fileobj))


def open_decompressed(fileobj: BinaryIO, kind: Optional[str] = None) -> BinaryIO:
    """Wrap ``fileobj`` in a streaming decompressor.

    Args:
        fileobj: Compressed byte stream.
        kind: Compression kind or alias; sniffed from the first bytes when None.

    Returns:
        A readable binary stream of decompressed bytes.
    """
    if kind is None:
        head, fileobj = peek_stream(fileobj)
        kind = sniff(head)
    kind = normalize_kind(kind)
    if kind == GZIP:
        return gzip.GzipFile(fileobj=fileobj, mode="rb")
    if kind == XZ:
        return lzma.LZMAFile(fileobj, mode="rb", format=lzma.FORMAT_XZ)
    if kind == LZMA:
        return lzma.LZMAFile(fileobj, mode="rb", format=lzma.FORMAT_ALONE)
    if kind == BZIP2:
        return bz2.BZ2File(fileobj, mode="rb")
    if kind == ZSTD:
        dctx = zstandard.ZstdDecompressor()
        return dctx.stream_reader(fileobj, read_across_frames=True, closefd=False)
    return fileobj


def decompress_bytes(data: bytes, kind: Optional[str] = None) -> bytes:
    """Decompress a whole buffer; ``kind`` defaults to sniffing.

    Raises:
        FormatError: the data is truncated or not in the declared format.
    """
    kind = normalize_kind(kind) if kind is not None else sniff(data[:8])
    try:
        if kind == GZIP:
            return gzip.decompress(data)
        if kind == XZ:
            return lzma.decompress(data, format=lzma.FORMAT_XZ)
        if kind == LZMA:
            return lzma.decompress(data, format=lzma.FORMAT_ALONE)
        if kind == BZIP2:
            return bz2.decompress(data)
        if kind == ZSTD:
            with zstandard.ZstdDecompressor().stream_reader(io.BytesIO(data), read_across_frames=True) as reader:
                return reader.read()
    except (OSError, EOFError, lzma.LZMAError, zlib.error, zstandard.ZstdError, ValueError) as exc:
        raise FormatError(f"{kind} decompression failed: {exc}") from exc
    return data
