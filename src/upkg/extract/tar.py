"""Tar reader over any supported compression (sniffed from magic bytes)."""

from __future__ import annotations

import logging
import tarfile
from typing import BinaryIO, Optional

from upkg.extract.entries import ArchiveEntry, EntryStream, EntryType
from upkg.registry.compression import open_decompressed

logger = logging.getLogger(__name__)


def iter_tar(fileobj: BinaryIO, *, compression: Optional[str] = None, ignore_zeros: bool = False) -> EntryStream:
    """Stream entries out of a (compressed) tar.

    Args:
        fileobj: Archive bytes.
        compression: Kind from ``upkg.registry.compression``; sniffed when None.
        ignore_zeros: Read past end-of-archive blocks, for concatenated tars
            such as apk segments.
    """
    stream = open_decompressed(fileobj, compression)
    with tarfile.open(fileobj=stream, mode="r|", ignore_zeros=ignore_zeros) as tar:
        for member in tar:
            mode = member.mode & 0o7777
            if member.isdir():
                yield ArchiveEntry(member.name, EntryType.DIRECTORY, mode or 0o755), None
            elif member.issym():
                yield ArchiveEntry(member.name, EntryType.SYMLINK, mode, linkname=member.linkname), None
            elif member.islnk():
                yield ArchiveEntry(member.name, EntryType.HARDLINK, mode, linkname=member.linkname), None
            elif member.isreg():
                yield ArchiveEntry(member.name, EntryType.FILE, mode or 0o644, member.size), tar.extractfile(member)
            else:
                logger.debug("Skipping special tar member %s", member.name)
