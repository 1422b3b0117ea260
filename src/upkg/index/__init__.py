"""Dependency cleaning, provider indexes, resolution and the index cache."""

from .cache import IndexCache
from .depends import Dialect, clean_dependencies
from .provider import LazyRecordSource, ProviderIndex, RecordSource
from .resolver import DependencyResolver

__all__ = [
    "IndexCache",
    "Dialect",
    "clean_dependencies",
    "LazyRecordSource",
    "ProviderIndex",
    "RecordSource",
    "DependencyResolver",
]
