"""Debian ``.deb`` reader: an ar envelope around ``data.tar[.gz|.xz|.zst|.bz2]``."""

from __future__ import annotations

import logging
from typing import BinaryIO

from debian.arfile import ArError, ArFile

from upkg.exceptions import FormatError
from upkg.extract.entries import EntryStream
from upkg.extract.tar import iter_tar
from upkg.registry.compression import kind_from_suffix

logger = logging.getLogger(__name__)


def iter_deb(fileobj: BinaryIO) -> EntryStream:
    """Yield the entries of the package's data member.

    Raises:
        FormatError: not an ar archive, or no ``data.tar*`` member.
    """
    try:
        archive = ArFile(fileobj=fileobj)
    except ArError as exc:
        raise FormatError(f"not a Debian package: {exc}", op="extract") from exc

    names = archive.getnames()
    if names and names[0] != "debian-binary":
        logger.debug("Unexpected first ar member %s", names[0])
    for member in archive.getmembers():
        if member.name.startswith("data.tar"):
            member.seek(0)
            yield from iter_tar(member, compression=kind_from_suffix(member.name))
            return
    raise FormatError(f"no data.tar member in package (members: {', '.join(names)})", op="extract")
