"""Unpack package archives under a target root.

Safety policy applied to every entry, whatever the container:
- member names are normalized; ``..`` members are skipped with a warning
  and absolute names are re-rooted under the target;
- the real path of the entry's parent must stay inside the target root,
  which stops writes through symlinks planted by earlier members;
- hard links may only point at files already inside the root;
- an existing file, link or directory at the destination is replaced;
- file data is staged in a temporary sibling and renamed into place only
  once complete, so cancellation or a truncated archive leaves nothing
  half-written under the final name.

A PermissionError (typically read-only directories left by a previous
extraction of a Nix store path) triggers one pass granting ``u+w`` on files
and ``u+rwx`` on directories below the root, then a single retry.
"""

from __future__ import annotations

import gzip
import logging
import lzma
import os
import shutil
import tarfile
import tempfile
import zipfile
import zlib
from dataclasses import dataclass, field
from enum import Enum
from typing import BinaryIO, Callable, List, Optional, Union

import zstandard
from debian.arfile import ArError

from upkg.common.cancellation import CancelToken, check
from upkg.common.logging_utils import extra_context, Timer
from upkg.constants import Constants
from upkg.exceptions import ExtractionError, FormatError
from upkg.extract.deb import iter_deb
from upkg.extract.entries import ArchiveEntry, EntryStream, EntryType, normalize_entry_path
from upkg.extract.nar import iter_nar
from upkg.extract.rpm import iter_rpm
from upkg.extract.tar import iter_tar
from upkg.extract.zip import iter_zip

logger = logging.getLogger(__name__)

SkipFilter = Callable[[str], bool]

_CORRUPT_ARCHIVE_ERRORS = (
    tarfile.TarError,
    zipfile.BadZipFile,
    gzip.BadGzipFile,
    lzma.LZMAError,
    zlib.error,
    zstandard.ZstdError,
    ArError,
    EOFError,
)


class ContainerKind(Enum):
    """Archive container formats the extractor understands."""
    DEB = "deb"
    TAR = "tar"
    APK = "apk"
    RPM = "rpm"
    ZIP = "zip"
    NAR = "nar"

    @classmethod
    def from_filename(cls, name: str) -> "ContainerKind":
        """Guess the container from an artifact filename.

        Raises:
            ExtractionError: the suffix is not recognised.
        """
        lower = name.lower()
        if lower.endswith(".deb") or lower.endswith(".udeb"):
            return cls.DEB
        if lower.endswith(".rpm"):
            return cls.RPM
        if lower.endswith(".apk"):
            return cls.APK
        if lower.endswith((".zip", ".nupkg")):
            return cls.ZIP
        if ".nar" in os.path.basename(lower):
            return cls.NAR
        if ".tar" in lower or lower.endswith((".tgz", ".txz", ".tbz2")):
            return cls.TAR
        raise ExtractionError(f"cannot tell archive format of {name!r}", op="extract")


@dataclass
class ExtractionReport:
    """What an extraction wrote under ``target_root``."""
    target_root: str
    files: int = 0
    directories: int = 0
    symlinks: int = 0
    hardlinks: int = 0
    bytes_written: int = 0
    filtered: int = 0
    skipped: List[str] = field(default_factory=list)
    paths: List[str] = field(default_factory=list)
    retried: bool = False

    @property
    def entries(self) -> int:
        return self.files + self.directories + self.symlinks + self.hardlinks


def _inside(root: str, path: str) -> bool:
    return path == root or os.path.commonpath([root, path]) == root


def _remove(path: str) -> None:
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    else:
        os.unlink(path)


def relax_permissions(root: str) -> int:
    """Grant ``u+rwx`` on directories and ``u+w`` on files below ``root``.

    Symlinks are left alone. Returns the number of modes changed.
    """
    changed = 0

    def _grant(path: str, bits: int) -> None:
        nonlocal changed
        mode = os.lstat(path).st_mode
        if mode & bits != bits:
            os.chmod(path, (mode | bits) & 0o7777)
            changed += 1

    if not os.path.isdir(root):
        return 0
    _grant(root, 0o700)
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames:
            path = os.path.join(dirpath, name)
            if not os.path.islink(path):
                _grant(path, 0o700)
        for name in filenames:
            path = os.path.join(dirpath, name)
            if not os.path.islink(path):
                _grant(path, 0o200)
    return changed


class ArchiveExtractor:
    """Extracts deb, tar, apk, rpm, zip and NAR archives safely."""

    def __init__(self, *, chunk_size: int = Constants.DOWNLOAD_CHUNK_SIZE):
        self.chunk_size = chunk_size

    def extract(
        self,
        archive_path: str,
        kind: Union[ContainerKind, str],
        target_root: str,
        cancel: Optional[CancelToken] = None,
        skip: Optional[SkipFilter] = None,
    ) -> ExtractionReport:
        """Extract ``archive_path`` into ``target_root``.

        Args:
            archive_path: Local archive file.
            kind: Container format.
            target_root: Destination root, created when missing.
            cancel: Checked between entries and data chunks.
            skip: Predicate on normalized member paths; True drops the member.

        Returns:
            Counts of what was written and skipped.

        Raises:
            FormatError: the archive is corrupt or not of the given kind.
            ExtractionError: an entry cannot be materialised.
            PermissionError: still denied after the remediation retry.
        """
        kind = ContainerKind(kind) if not isinstance(kind, ContainerKind) else kind
        os.makedirs(target_root, exist_ok=True)
        with Timer() as t:
            try:
                report = self._extract_once(archive_path, kind, target_root, cancel, skip)
            except PermissionError as exc:
                logger.warning(
                    "Permission denied while extracting into %s (%s); fixing permissions and retrying once",
                    target_root,
                    exc,
                    extra=extra_context(event="extract", component="extractor", outcome="permission_retry"),
                )
                relax_permissions(target_root)
                report = self._extract_once(archive_path, kind, target_root, cancel, skip)
                report.retried = True

        logger.info(
            "Extracted %d entries (%d bytes) from %s into %s",
            report.entries,
            report.bytes_written,
            os.path.basename(archive_path),
            target_root,
            extra=extra_context(
                event="extract", component="extractor", outcome="ok",
                archive_kind=kind.value, duration_ms=t.duration_ms(),
            ),
        )
        return report

    def _entries(self, fh: BinaryIO, kind: ContainerKind, archive_path: str) -> EntryStream:
        if kind is ContainerKind.DEB:
            return iter_deb(fh)
        if kind is ContainerKind.RPM:
            return iter_rpm(fh)
        if kind is ContainerKind.ZIP:
            return iter_zip(fh)
        if kind is ContainerKind.APK:
            return iter_tar(fh, ignore_zeros=True)
        if kind is ContainerKind.NAR:
            stem = os.path.basename(archive_path).split(".nar", 1)[0]
            return iter_nar(fh, root_name=stem or "out")
        return iter_tar(fh)

    def _extract_once(
        self,
        archive_path: str,
        kind: ContainerKind,
        target_root: str,
        cancel: Optional[CancelToken],
        skip: Optional[SkipFilter],
    ) -> ExtractionReport:
        root = os.path.realpath(target_root)
        report = ExtractionReport(target_root=target_root)
        check(cancel, "extract")
        with open(archive_path, "rb") as fh:
            try:
                for entry, reader in self._entries(fh, kind, archive_path):
                    check(cancel, "extract")
                    self._apply(entry, reader, root, report, skip, cancel)
            except _CORRUPT_ARCHIVE_ERRORS as exc:
                raise FormatError(f"corrupt {kind.value} archive {archive_path}: {exc}", op="extract") from exc
        return report

    def _apply(
        self,
        entry: ArchiveEntry,
        reader: Optional[BinaryIO],
        root: str,
        report: ExtractionReport,
        skip: Optional[SkipFilter],
        cancel: Optional[CancelToken],
    ) -> None:
        try:
            rel = normalize_entry_path(entry.path)
        except ExtractionError as exc:
            logger.warning("Skipping unsafe archive member: %s", exc.message)
            report.skipped.append(entry.path)
            return
        if not rel:
            return
        if skip is not None and skip(rel):
            report.filtered += 1
            return

        dest = os.path.join(root, *rel.split("/"))
        parent = os.path.dirname(dest)
        if not _inside(root, os.path.realpath(parent)):
            logger.warning("Skipping %s: parent directory resolves outside %s", rel, root)
            report.skipped.append(rel)
            return
        try:
            os.makedirs(parent, exist_ok=True)
        except (FileExistsError, NotADirectoryError) as exc:
            raise ExtractionError(f"cannot create parent of {rel}: {exc}", op="extract") from exc

        if entry.type is EntryType.DIRECTORY:
            if os.path.lexists(dest) and (os.path.islink(dest) or not os.path.isdir(dest)):
                os.unlink(dest)
            os.makedirs(dest, exist_ok=True)
            os.chmod(dest, (entry.mode & 0o777) | 0o700)
            report.directories += 1
        elif entry.type is EntryType.SYMLINK:
            if os.path.lexists(dest):
                _remove(dest)
            os.symlink(entry.linkname, dest)
            report.symlinks += 1
        elif entry.type is EntryType.HARDLINK:
            if not self._hardlink(entry, rel, dest, root, report):
                return
            report.hardlinks += 1
        else:
            written = self._write_file(reader, dest, entry, cancel)
            report.files += 1
            report.bytes_written += written
        report.paths.append(rel)

    def _hardlink(self, entry: ArchiveEntry, rel: str, dest: str, root: str, report: ExtractionReport) -> bool:
        try:
            target_rel = normalize_entry_path(entry.linkname)
        except ExtractionError:
            target_rel = ""
        target = os.path.realpath(os.path.join(root, *target_rel.split("/"))) if target_rel else ""
        if not target_rel or not _inside(root, target) or not os.path.isfile(target):
            logger.warning("Skipping hard link %s -> %s: target not extracted inside the root", rel, entry.linkname)
            report.skipped.append(rel)
            return False
        if os.path.lexists(dest):
            if not os.path.islink(dest) and os.path.samefile(dest, target):
                return True
            _remove(dest)
        try:
            os.link(target, dest)
        except PermissionError:
            raise
        except OSError:
            shutil.copyfile(target, dest)
            shutil.copymode(target, dest)
        return True

    def _write_file(self, reader: Optional[BinaryIO], dest: str, entry: ArchiveEntry,
                    cancel: Optional[CancelToken]) -> int:
        # Staged next to the destination; os.replace also breaks existing hard links
        fd, tmp_path = tempfile.mkstemp(prefix=".upkg-", suffix=".part", dir=os.path.dirname(dest))
        written = 0
        try:
            with os.fdopen(fd, "wb") as out:
                while reader is not None:
                    check(cancel, "extract")
                    chunk = reader.read(self.chunk_size)
                    if not chunk:
                        break
                    out.write(chunk)
                    written += len(chunk)
            if entry.size and written != entry.size:
                raise ExtractionError(
                    f"{entry.path}: wrote {written} bytes, archive declares {entry.size}", op="extract"
                )
            os.chmod(tmp_path, entry.mode & 0o777)
            if os.path.lexists(dest) and os.path.isdir(dest) and not os.path.islink(dest):
                _remove(dest)
            os.replace(tmp_path, dest)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        return written
