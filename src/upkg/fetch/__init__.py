"""Artifact download and digest verification."""

from .checksum import compute_checksum, verify
from .fetcher import ArchiveFetcher

__all__ = ["ArchiveFetcher", "compute_checksum", "verify"]
