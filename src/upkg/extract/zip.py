"""Zip reader (nupkg, winget portable installers)."""

from __future__ import annotations

import stat
import zipfile
from typing import BinaryIO

from upkg.extract.entries import ArchiveEntry, EntryStream, EntryType


def _unix_mode(info: zipfile.ZipInfo) -> int:
    # Only archives created on Unix (create_system 3) carry st_mode bits
    return (info.external_attr >> 16) & 0xFFFF if info.create_system == 3 else 0


def iter_zip(fileobj: BinaryIO) -> EntryStream:
    """Yield zip members; Unix symlinks are recognised from ``external_attr``."""
    with zipfile.ZipFile(fileobj) as archive:
        for info in archive.infolist():
            mode = _unix_mode(info)
            perm = stat.S_IMODE(mode)
            if info.is_dir():
                yield ArchiveEntry(info.filename, EntryType.DIRECTORY, perm or 0o755), None
            elif stat.S_ISLNK(mode):
                target = archive.read(info).decode("utf-8", errors="surrogateescape")
                yield ArchiveEntry(info.filename, EntryType.SYMLINK, perm, linkname=target), None
            else:
                with archive.open(info) as member:
                    yield ArchiveEntry(info.filename, EntryType.FILE, perm or 0o644, info.file_size), member
