"""Shared HTTP helpers used by registry clients, backends and the fetcher.

Encapsulates retry, timeout and error translation so callers avoid
duplicating try/except blocks. Transport failures surface as NetworkError,
HTTP 404 as NotFoundError; nothing here exits the process.
"""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Optional

import requests

from upkg.common.cancellation import CancelToken, check
from upkg.common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer
from upkg.constants import Constants
from upkg.exceptions import FormatError, NetworkError, NotFoundError

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def _headers(headers: Optional[Dict[str, str]]) -> Dict[str, str]:
    merged = {"User-Agent": Constants.USER_AGENT}
    if headers:
        merged.update(headers)
    return merged


def _request(
    method: str,
    url: str,
    *,
    context: str,
    headers: Optional[Dict[str, str]] = None,
    cancel: Optional[CancelToken] = None,
    stream: bool = False,
    **kwargs: Any,
) -> requests.Response:
    """Issue a request with retries on transient failures.

    Args:
        method: HTTP method name.
        url: Target URL.
        context: Short label used in log records and error messages.
        headers: Extra request headers.
        cancel: Optional cancellation token; caps the timeout and is checked
            before every attempt.
        stream: Leave the body unread for streaming consumers.

    Returns:
        The successful (2xx/3xx) response.

    Raises:
        NotFoundError: upstream answered 404.
        NetworkError: timeouts, connection errors, or a non-retryable status,
            after the retry budget is spent.
    """
    safe_target = safe_url(url)
    last_error = "unknown error"
    last_status: Optional[int] = None

    for attempt in range(Constants.HTTP_RETRY_MAX):
        check(cancel, context)
        timeout = cancel.timeout(Constants.REQUEST_TIMEOUT) if cancel else Constants.REQUEST_TIMEOUT
        with Timer() as t:
            if is_debug_enabled(logger):
                logger.debug(
                    "HTTP request",
                    extra=extra_context(
                        event="http_request",
                        component="http_client",
                        action=method,
                        target=safe_target,
                        context=context,
                        attempt=attempt + 1,
                    ),
                )
            try:
                res = requests.request(
                    method, url, headers=_headers(headers), timeout=timeout, stream=stream, **kwargs
                )
            except requests.Timeout:
                last_error = f"timed out after {timeout} seconds"
                last_status = None
                if is_debug_enabled(logger):
                    logger.debug(
                        "HTTP timeout",
                        extra=extra_context(
                            event="http_exception",
                            component="http_client",
                            action=method,
                            outcome="timeout",
                            attempt=attempt + 1,
                            target=safe_target,
                        ),
                    )
            except requests.RequestException as exc:  # includes ConnectionError
                last_error = str(exc)
                last_status = None
                if is_debug_enabled(logger):
                    logger.debug(
                        "HTTP request exception",
                        extra=extra_context(
                            event="http_exception",
                            component="http_client",
                            action=method,
                            outcome="request_exception",
                            attempt=attempt + 1,
                            target=safe_target,
                        ),
                    )
            else:
                if is_debug_enabled(logger):
                    logger.debug(
                        "HTTP response",
                        extra=extra_context(
                            event="http_response",
                            component="http_client",
                            action=method,
                            status_code=res.status_code,
                            duration_ms=t.duration_ms(),
                            target=safe_target,
                        ),
                    )
                if res.status_code == 404:
                    res.close()
                    raise NotFoundError(f"{safe_target} returned 404", op=context)
                if res.status_code < 400:
                    return res
                last_status = res.status_code
                last_error = f"unexpected status {res.status_code}"
                res.close()
                if res.status_code not in _RETRYABLE_STATUS:
                    break

        if attempt + 1 < Constants.HTTP_RETRY_MAX:
            time.sleep(Constants.HTTP_RETRY_BASE_DELAY_SEC * (2 ** attempt))

    logger.error("%s request to %s failed: %s", context, safe_target, last_error)
    raise NetworkError(
        f"{last_error} for {safe_target}", status_code=last_status, url=url, op=context
    )


def safe_get(url: str, *, context: str, **kwargs: Any) -> requests.Response:
    """Perform a GET request with consistent error handling and DEBUG traces."""
    return _request("GET", url, context=context, **kwargs)


def get_bytes(url: str, *, context: str, **kwargs: Any) -> bytes:
    """GET ``url`` and return the full body."""
    res = safe_get(url, context=context, **kwargs)
    try:
        return res.content
    finally:
        res.close()


def get_text(url: str, *, context: str, **kwargs: Any) -> str:
    """GET ``url`` and return the decoded body."""
    res = safe_get(url, context=context, **kwargs)
    try:
        return res.text
    finally:
        res.close()


def get_json(url: str, *, context: str, **kwargs: Any) -> Any:
    """GET ``url`` and decode a JSON body.

    Raises:
        FormatError: the body is not valid JSON.
    """
    text = get_text(url, context=context, **kwargs)
    try:
        return json.loads(text)
    except ValueError as exc:
        raise FormatError(f"invalid JSON from {safe_url(url)}: {exc}", op=context) from exc


def post_json(url: str, payload: Any, *, context: str, **kwargs: Any) -> Any:
    """POST a JSON payload and decode the JSON answer."""
    headers = dict(kwargs.pop("headers", None) or {})
    headers.setdefault("Content-Type", "application/json")
    res = _request("POST", url, context=context, headers=headers, data=json.dumps(payload), **kwargs)
    try:
        return res.json()
    except ValueError as exc:
        raise FormatError(f"invalid JSON from {safe_url(url)}: {exc}", op=context) from exc
    finally:
        res.close()


def open_stream(url: str, *, context: str, **kwargs: Any) -> requests.Response:
    """GET ``url`` with ``stream=True``; the caller must close the response."""
    return _request("GET", url, context=context, stream=True, **kwargs)
