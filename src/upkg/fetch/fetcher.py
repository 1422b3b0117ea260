"""Artifact download with an exists-check short circuit and atomic placement."""

from __future__ import annotations

import logging
import os
import tempfile
import time
from typing import Dict, Optional
from urllib.parse import unquote, urlsplit

import requests

from upkg.common import http_client
from upkg.common.cancellation import CancelToken, check
from upkg.common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer
from upkg.constants import Constants
from upkg.exceptions import NetworkError

logger = logging.getLogger(__name__)


class ArchiveFetcher:
    """Streams a locator to a destination path.

    An existing destination counts as already fetched (0 bytes, no network
    traffic) unless ``force`` is set. Data lands in a sibling temporary file
    renamed into place on success, so a failed or cancelled transfer never
    leaves a partial artifact under the final name.
    """

    def __init__(
        self,
        *,
        force: bool = False,
        headers: Optional[Dict[str, str]] = None,
        chunk_size: int = Constants.DOWNLOAD_CHUNK_SIZE,
        retries: int = Constants.HTTP_RETRY_MAX,
    ):
        self.force = force
        self.headers = dict(headers or {})
        self.chunk_size = chunk_size
        self.retries = max(1, retries)

    def fetch(
        self,
        locator: str,
        dest_path: str,
        cancel: Optional[CancelToken] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> int:
        """Download ``locator`` to ``dest_path``.

        Args:
            locator: ``http(s)://`` URL or ``file://`` URL.
            dest_path: Final artifact path; parent directories are created.
            cancel: Checked before the transfer and between chunks.
            headers: Extra request headers for this call.

        Returns:
            Bytes written; 0 when ``dest_path`` already existed.

        Raises:
            NetworkError: transfer failed after retries.
            NotFoundError: the server answered 404.
            OperationCancelledError: cancelled mid-transfer (temp file removed).
        """
        check(cancel, "fetch")
        if os.path.exists(dest_path) and not self.force:
            logger.debug(
                "Artifact already present, skipping download",
                extra=extra_context(event="fetch", component="fetcher", outcome="cached", target=dest_path),
            )
            return 0

        parent = os.path.dirname(os.path.abspath(dest_path))
        os.makedirs(parent, exist_ok=True)
        merged = dict(self.headers)
        if headers:
            merged.update(headers)

        fd, tmp_path = tempfile.mkstemp(prefix=".upkg-", suffix=".part", dir=parent)
        os.close(fd)
        try:
            with Timer() as t:
                if locator.startswith("file://"):
                    written = self._copy_local(locator, tmp_path, cancel)
                else:
                    written = self._download(locator, tmp_path, merged, cancel)
            os.replace(tmp_path, dest_path)
        except BaseException:
            # Covers KeyboardInterrupt and cancellation as well as I/O errors
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        logger.info(
            "Downloaded %s (%d bytes)",
            safe_url(locator),
            written,
            extra=extra_context(
                event="fetch", component="fetcher", outcome="downloaded",
                bytes=written, duration_ms=t.duration_ms(),
            ),
        )
        return written

    def _download(self, url: str, tmp_path: str, headers: Dict[str, str], cancel: Optional[CancelToken]) -> int:
        last_error: Optional[Exception] = None
        for attempt in range(self.retries):
            check(cancel, "fetch")
            res = http_client.open_stream(url, context="fetch", headers=headers, cancel=cancel)
            written = 0
            try:
                with open(tmp_path, "wb") as out:
                    for chunk in res.iter_content(chunk_size=self.chunk_size):
                        check(cancel, "fetch")
                        if chunk:
                            out.write(chunk)
                            written += len(chunk)
                return written
            except (requests.ConnectionError, requests.Timeout, requests.exceptions.ChunkedEncodingError) as exc:
                last_error = exc
                if is_debug_enabled(logger):
                    logger.debug(
                        "Transfer interrupted",
                        extra=extra_context(
                            event="fetch", component="fetcher", outcome="interrupted",
                            attempt=attempt + 1, target=safe_url(url),
                        ),
                    )
            finally:
                res.close()
            if attempt + 1 < self.retries:
                time.sleep(Constants.HTTP_RETRY_BASE_DELAY_SEC * (2 ** attempt))
        raise NetworkError(f"transfer of {safe_url(url)} failed: {last_error}", url=url, op="fetch")

    def _copy_local(self, locator: str, tmp_path: str, cancel: Optional[CancelToken]) -> int:
        source = unquote(urlsplit(locator).path)
        written = 0
        with open(source, "rb") as src, open(tmp_path, "wb") as out:
            while True:
                check(cancel, "fetch")
                chunk = src.read(self.chunk_size)
                if not chunk:
                    break
                out.write(chunk)
                written += len(chunk)
        return written


def fetch(locator: str, dest_path: str, cancel: Optional[CancelToken] = None, **kwargs) -> int:
    """Module-level convenience around ``ArchiveFetcher().fetch``."""
    headers = kwargs.pop("headers", None)
    return ArchiveFetcher(**kwargs).fetch(locator, dest_path, cancel=cancel, headers=headers)

