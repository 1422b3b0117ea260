"""RPM reader: locate the compressed cpio payload behind the lead and headers.

Layout: 96-byte lead (magic ``ed ab ee db``), signature header padded to 8
bytes, main header, payload. The payload compressor is not recorded anywhere
cheap to reach, so the file is scanned for compression magics after the
headers and each hit is accepted only if it decompresses to a cpio magic.
"""

from __future__ import annotations

import logging
import struct
from typing import BinaryIO, Iterator, Optional, Tuple

from upkg.exceptions import FormatError
from upkg.extract.cpio import MAGICS as CPIO_MAGICS
from upkg.extract.cpio import iter_cpio
from upkg.extract.entries import EntryStream
from upkg.registry import compression

logger = logging.getLogger(__name__)

LEAD_MAGIC = b"\xed\xab\xee\xdb"
LEAD_SIZE = 96
HEADER_MAGIC = b"\x8e\xad\xe8"

# Longest first so a zstd hit is not shadowed by anything shorter
PAYLOAD_MAGICS = (
    (b"\xfd7zXZ\x00", compression.XZ),
    (b"070701", compression.NONE),
    (b"070702", compression.NONE),
    (b"\x28\xb5\x2f\xfd", compression.ZSTD),
    (b"\x1f\x8b\x08", compression.GZIP),
    (b"BZh", compression.BZIP2),
)
_MAX_MAGIC = max(len(m) for m, _ in PAYLOAD_MAGICS)
_SCAN_CHUNK = 1 << 20


def _header_end(fh: BinaryIO, offset: int, align: bool) -> Optional[int]:
    fh.seek(offset)
    raw = fh.read(16)
    if len(raw) < 16 or raw[:3] != HEADER_MAGIC:
        return None
    nindex, hsize = struct.unpack(">II", raw[8:16])
    end = offset + 16 + nindex * 16 + hsize
    if align:
        end += (8 - end % 8) % 8
    return end


def _scan_start(fh: BinaryIO) -> int:
    """Offset right after both headers; falls back to the end of the lead."""
    sig_end = _header_end(fh, LEAD_SIZE, align=True)
    if sig_end is None:
        return LEAD_SIZE
    main_end = _header_end(fh, sig_end, align=False)
    return main_end if main_end is not None else sig_end


def _candidates(fh: BinaryIO, start: int) -> Iterator[Tuple[int, str]]:
    """Yield ``(offset, compression)`` for every payload magic at or after ``start``."""
    base = start
    read_pos = start
    buf = b""
    idx = 0
    eof = False
    while True:
        hits = []
        for magic, kind in PAYLOAD_MAGICS:
            pos = buf.find(magic, idx)
            if pos >= 0 and (eof or pos + _MAX_MAGIC <= len(buf)):
                hits.append((pos, kind))
        if hits:
            pos, kind = min(hits, key=lambda h: h[0])
            idx = pos + 1
            yield base + pos, kind
            continue
        if eof:
            return
        cut = max(idx, len(buf) - (_MAX_MAGIC - 1))
        base += cut
        buf = buf[cut:]
        idx = 0
        fh.seek(read_pos)
        data = fh.read(_SCAN_CHUNK)
        read_pos += len(data)
        if not data:
            eof = True
        buf += data


def _payload_is_cpio(fh: BinaryIO, offset: int, kind: str) -> bool:
    fh.seek(offset)
    try:
        head = compression.open_decompressed(fh, kind).read(6)
    except Exception:  # pylint: disable=broad-exception-caught
        # A false magic hit fails inside whichever decompressor it selected
        return False
    return head in CPIO_MAGICS


def find_payload(fh: BinaryIO) -> Tuple[int, str]:
    """Return ``(offset, compression)`` of the cpio payload.

    Raises:
        FormatError: bad lead magic, or no candidate decompresses to cpio.
    """
    fh.seek(0)
    if fh.read(4) != LEAD_MAGIC:
        raise FormatError("not an RPM package (bad lead magic)", op="extract")
    start = _scan_start(fh)
    for offset, kind in _candidates(fh, start):
        if _payload_is_cpio(fh, offset, kind):
            logger.debug("RPM payload at offset %d (%s)", offset, kind)
            return offset, kind
    raise FormatError("RPM payload not found", op="extract")


def iter_rpm(fh: BinaryIO) -> EntryStream:
    """Yield the cpio payload entries of a seekable RPM file."""
    offset, kind = find_payload(fh)
    fh.seek(offset)
    yield from iter_cpio(compression.open_decompressed(fh, kind))
