"""Archive readers and the safe extractor."""

from .entries import ArchiveEntry, EntryType, normalize_entry_path
from .extractor import ArchiveExtractor, ContainerKind, ExtractionReport

__all__ = [
    "ArchiveEntry",
    "EntryType",
    "normalize_entry_path",
    "ArchiveExtractor",
    "ContainerKind",
    "ExtractionReport",
]
