"""Predicates selecting package-manager metadata members to leave out.

Each takes a normalized member path and returns True to skip it.
"""

from __future__ import annotations

from typing import Callable, Dict, Optional

_PACMAN_METADATA = frozenset({".PKGINFO", ".BUILDINFO", ".MTREE", ".INSTALL", ".CHANGELOG"})
_NUPKG_PREFIXES = ("_rels/", "package/")


def alpine_metadata(path: str) -> bool:
    return (
        path == ".PKGINFO"
        or path == ".trigger"
        or path.startswith(".SIGN.")
        or path.startswith(".pre-")
        or path.startswith(".post-")
    )


def pacman_metadata(path: str) -> bool:
    return path in _PACMAN_METADATA


def nupkg_metadata(path: str) -> bool:
    return path == "[Content_Types].xml" or path in ("_rels", "package") or path.startswith(_NUPKG_PREFIXES)


FILTERS: Dict[str, Callable[[str], bool]] = {
    "alpine": alpine_metadata,
    "pacman": pacman_metadata,
    "nupkg": nupkg_metadata,
}


def for_name(name: Optional[str]) -> Optional[Callable[[str], bool]]:
    return FILTERS.get(name or "")
