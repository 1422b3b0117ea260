"""Canonical package names mapped to per-backend package names.

The catalog lives under ``<cache_path>/deps``; each canonical name has a
directory holding an ``index.toml``::

    name = "sqlite3"
    libs = ["libsqlite3.so.0"]

    [backends]
    apt = "libsqlite3-dev"
    dnf = "sqlite-devel"
    brew = "sqlite"

Adapters created without an explicit backend consult it so callers can ask
for ``sqlite3`` whatever ecosystem the host uses.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List

from upkg.exceptions import FormatError, NotFoundError

logger = logging.getLogger(__name__)

CATALOG_DIR = "deps"
ENTRY_FILE = "index.toml"


@dataclass
class CatalogEntry:
    """One ``deps/<name>/index.toml`` file."""
    name: str
    libs: List[str] = field(default_factory=list)
    backends: Dict[str, str] = field(default_factory=dict)


def _load_toml(path: str) -> dict:
    try:
        import tomllib as toml  # type: ignore
    except ImportError:
        import tomli as toml  # type: ignore
    with open(path, "rb") as fh:
        try:
            return toml.load(fh) or {}
        except toml.TOMLDecodeError as exc:
            raise FormatError(f"invalid catalog entry {path}: {exc}", op="catalog") from exc


def parse_entry(data: dict, default_name: str) -> CatalogEntry:
    """Build a CatalogEntry from decoded TOML, validating field types."""
    libs = data.get("libs") or []
    backends = data.get("backends") or {}
    if not isinstance(libs, list) or not all(isinstance(lib, str) for lib in libs):
        raise FormatError(f"catalog entry {default_name!r}: libs must be a list of strings", op="catalog")
    if not isinstance(backends, dict) or not all(isinstance(v, str) for v in backends.values()):
        raise FormatError(f"catalog entry {default_name!r}: backends must map names to strings", op="catalog")
    return CatalogEntry(
        name=str(data.get("name") or default_name),
        libs=list(libs),
        backends={str(k): v for k, v in backends.items()},
    )


class NameCatalog:
    """Lookup into a cached ``deps`` directory."""

    def __init__(self, cache_path: str):
        self.deps_dir = os.path.join(os.path.expanduser(cache_path), CATALOG_DIR)

    def __repr__(self) -> str:
        return f"<NameCatalog {self.deps_dir}>"

    def load(self, name: str) -> CatalogEntry:
        """Read the entry for canonical ``name``.

        Raises:
            NotFoundError: the catalog or the entry is missing.
            FormatError: the entry is not valid TOML or has bad field types.
        """
        if not os.path.isdir(self.deps_dir):
            raise NotFoundError(f"no package catalog at {self.deps_dir}", op="catalog", package=name)
        if not name or name in (".", "..") or "/" in name or "\\" in name:
            raise NotFoundError(f"invalid catalog name {name!r}", op="catalog", package=name)
        entry_dir = os.path.join(self.deps_dir, name)
        path = os.path.join(entry_dir, ENTRY_FILE)
        if not os.path.isfile(path):
            if os.path.isdir(entry_dir):
                raise NotFoundError(f"catalog directory for {name!r} has no {ENTRY_FILE}", op="catalog", package=name)
            raise NotFoundError(f"{name!r} is not in the package catalog", op="catalog", package=name)
        return parse_entry(_load_toml(path), name)

    def resolve(self, name: str, backend: str) -> str:
        """Backend-specific package name for canonical ``name``.

        Raises:
            NotFoundError: no entry, or the entry has no mapping for ``backend``.
        """
        entry = self.load(name)
        mapped = entry.backends.get(backend)
        if not mapped:
            raise NotFoundError(
                f"catalog entry {name!r} has no package for backend {backend!r}", op="catalog", package=name
            )
        logger.debug("Catalog resolved %s -> %s (%s)", name, mapped, backend)
        return mapped

    def resolve_or_keep(self, name: str, backend: str) -> str:
        """Like resolve, but fall back to ``name`` when there is no mapping."""
        try:
            return self.resolve(name, backend)
        except NotFoundError as exc:
            logger.debug("Catalog lookup for %s skipped: %s", name, exc.message)
            return name

