"""Exception taxonomy shared by parsers, resolver, fetcher, extractor and backends."""

from __future__ import annotations

from typing import Optional


class UpkgError(Exception):
    """Base error carrying the failed operation and package, when known."""

    def __init__(self, message: str, *, op: Optional[str] = None, package: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.op = op
        self.package = package

    def __str__(self) -> str:
        if self.op and self.package:
            return f"{self.op} {self.package}: {self.message}"
        if self.op:
            return f"{self.op}: {self.message}"
        return self.message


class FormatError(UpkgError):
    """A feed or archive header could not be parsed or decompressed."""


class NotFoundError(UpkgError):
    """No record or provider satisfies the request."""


class NetworkError(UpkgError):
    """A transient transport failure; safe to retry."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, url: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.url = url


class HashMismatchError(UpkgError):
    """Downloaded artifact does not match its declared digest."""

    def __init__(self, message: str, *, expected: str = "", actual: str = "", algorithm: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.expected = expected
        self.actual = actual
        self.algorithm = algorithm


class ExtractionError(UpkgError):
    """Archive is corrupt, carries an unsupported entry, or cannot be written."""


class UnsupportedOperationError(UpkgError):
    """The backend does not implement the requested operation."""

    def __init__(self, backend: str, operation: str):
        super().__init__(f"{operation} not supported by {backend} backend")
        self.backend = backend
        self.operation = operation


class OperationCancelledError(UpkgError):
    """The caller cancelled the operation or its deadline passed."""


class ConfigError(UpkgError):
    """Configuration file is unreadable or malformed."""
