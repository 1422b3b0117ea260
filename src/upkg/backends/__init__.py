"""Backend adapters: one uniform facade per package ecosystem."""

from .base import BackendAdapter, IndexedBackend, LookupBackend
from .registry import available_backends, create_adapter, detect_default

__all__ = [
    "BackendAdapter",
    "IndexedBackend",
    "LookupBackend",
    "available_backends",
    "create_adapter",
    "detect_default",
]
