"""Streaming digest computation and verification against declared checksums."""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import zlib
from typing import Optional

from upkg.common.cancellation import CancelToken, check
from upkg.common.logging_utils import extra_context, Timer
from upkg.constants import Constants
from upkg.exceptions import FormatError, HashMismatchError
from upkg.fetch import nixbase32
from upkg.models import Checksum

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = ("md5", "sha1", "sha256", "sha512")
_TAR_NAME_LEN = 100


def _hasher(algorithm: str):
    algo = algorithm.lower().replace("-", "")
    if algo not in SUPPORTED_ALGORITHMS:
        raise FormatError(f"unsupported digest algorithm {algorithm!r}", op="verify")
    return hashlib.new(algo)


def file_digest(path: str, algorithm: str, cancel: Optional[CancelToken] = None) -> bytes:
    """Raw digest of the whole file, read in fixed-size chunks."""
    hasher = _hasher(algorithm)
    with open(path, "rb") as fh:
        while True:
            check(cancel, "verify")
            chunk = fh.read(Constants.DOWNLOAD_CHUNK_SIZE)
            if not chunk:
                break
            hasher.update(chunk)
    return hasher.digest()


def _member_name(header: bytes) -> bytes:
    name = header[:_TAR_NAME_LEN].split(b"\0", 1)[0]
    return name[2:] if name.startswith(b"./") else name


def apk_control_digest(path: str, algorithm: str, cancel: Optional[CancelToken] = None) -> bytes:
    """Digest over the compressed control segment of an ``.apk``.

    An apk is a concatenation of gzip members: an optional signature tar,
    the control tar starting with ``.PKGINFO``, then the data tar. APKINDEX
    ``Q1``/``Q2`` values hash the control member's compressed bytes.

    Raises:
        FormatError: the file is not a sequence of gzip members, or no
            member starts with ``.PKGINFO``.
    """
    with open(path, "rb") as fh:
        pending = b""
        for _member in range(3):
            hasher = _hasher(algorithm)
            stream = zlib.decompressobj(wbits=31)
            head = b""
            while not stream.eof:
                check(cancel, "verify")
                chunk = pending or fh.read(Constants.DOWNLOAD_CHUNK_SIZE)
                pending = b""
                if not chunk:
                    raise FormatError("truncated gzip member in apk", op="verify")
                try:
                    out = stream.decompress(chunk)
                except zlib.error as exc:
                    raise FormatError(f"apk is not a gzip stream: {exc}", op="verify") from exc
                if len(head) < _TAR_NAME_LEN:
                    head += out[: _TAR_NAME_LEN - len(head)]
                if stream.eof:
                    pending = stream.unused_data
                    hasher.update(chunk[: len(chunk) - len(pending)])
                else:
                    hasher.update(chunk)
            name = _member_name(head)
            if name == b".PKGINFO":
                return hasher.digest()
            if not name.startswith(b".SIGN."):
                break
    raise FormatError("apk has no .PKGINFO control segment", op="verify")


def encode_digest(digest: bytes, encoding: str) -> str:
    if encoding == "hex":
        return digest.hex()
    if encoding == "base64":
        return base64.b64encode(digest).decode("ascii")
    if encoding == "nix32":
        return nixbase32.encode(digest)
    raise FormatError(f"unknown digest encoding {encoding!r}", op="verify")


def _decode_expected(checksum: Checksum) -> Optional[bytes]:
    value = checksum.value.strip()
    try:
        if checksum.encoding == "hex":
            return bytes.fromhex(value)
        if checksum.encoding == "base64":
            return base64.b64decode(value + "=" * (-len(value) % 4))
        if checksum.encoding == "nix32":
            return nixbase32.decode(value)
    except (ValueError, binascii.Error):
        return None
    raise FormatError(f"unknown digest encoding {checksum.encoding!r}", op="verify")


def _digest(path: str, checksum: Checksum, cancel: Optional[CancelToken]) -> bytes:
    if checksum.scope == "apk-control":
        return apk_control_digest(path, checksum.algorithm, cancel)
    return file_digest(path, checksum.algorithm, cancel)


def compute_checksum(path: str, checksum: Checksum, cancel: Optional[CancelToken] = None) -> str:
    """Digest of ``path`` in the algorithm, scope and encoding of ``checksum``."""
    return encode_digest(_digest(path, checksum, cancel), checksum.encoding)


def verify(path: str, checksum: Checksum, cancel: Optional[CancelToken] = None, *, package: Optional[str] = None) -> str:
    """Verify ``path`` against ``checksum``.

    Returns:
        The computed digest in the checksum's encoding.

    Raises:
        HashMismatchError: the digests differ (or the declared value is not
            decodable in its encoding).
        FormatError: unsupported algorithm or encoding.
    """
    with Timer() as t:
        digest = _digest(path, checksum, cancel)
    actual = encode_digest(digest, checksum.encoding)
    expected = _decode_expected(checksum)
    if expected != digest:
        logger.warning(
            "Checksum mismatch for %s",
            path,
            extra=extra_context(
                event="verify", component="checksum", outcome="mismatch",
                algorithm=checksum.algorithm, package=package,
            ),
        )
        raise HashMismatchError(
            f"{checksum.algorithm} mismatch: expected {checksum.value}, got {actual}",
            expected=checksum.value,
            actual=actual,
            algorithm=checksum.algorithm,
            op="verify",
            package=package,
        )
    logger.debug(
        "Checksum verified for %s",
        path,
        extra=extra_context(
            event="verify", component="checksum", outcome="ok",
            algorithm=checksum.algorithm, duration_ms=t.duration_ms(),
        ),
    )
    return actual
