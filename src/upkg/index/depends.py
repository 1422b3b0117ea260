"""Dependency token cleaning and classification.

Each ecosystem writes dependency and provide tokens differently: Debian uses
``name (>= 1.0) | alt``, Alpine ``so:libc.musl-x86_64.so.1`` and ``name>=1``,
RPM keeps capability names such as ``libc.so.6(GLIBC_2.34)(64bit)`` intact
and puts the constraint after a space, pacman writes ``glibc>=2.38``.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import List, Optional

from upkg.models import DependencyKind, Ecosystem, PackageRecord


class Dialect(Enum):
    """Token syntax family."""
    DEBIAN = "debian"
    ALPINE = "alpine"
    RPM = "rpm"
    PACMAN = "pacman"
    PLAIN = "plain"

    @classmethod
    def for_ecosystem(cls, ecosystem: Ecosystem) -> "Dialect":
        return _ECOSYSTEM_DIALECT.get(ecosystem, cls.PLAIN)


_ECOSYSTEM_DIALECT = {
    Ecosystem.DEBIAN: Dialect.DEBIAN,
    Ecosystem.ALPINE: Dialect.ALPINE,
    Ecosystem.RPM: Dialect.RPM,
    Ecosystem.PACMAN: Dialect.PACMAN,
}

_DEBIAN_QUALIFIERS = re.compile(r"\([^)]*\)|\[[^\]]*\]|<[^>]*>")
_OPERATOR_CUT = re.compile(r"[<>=~]")
_SONAME = re.compile(r"\.so(\.|\(|$)")


def split_alternatives(token: str, dialect: Dialect) -> List[str]:
    """Split ``a | b`` alternatives (Debian only); other dialects pass through."""
    if dialect is Dialect.DEBIAN:
        return [part.strip() for part in token.split("|") if part.strip()]
    token = token.strip()
    return [token] if token else []


def bare_name(token: str, dialect: Dialect) -> Optional[str]:
    """Strip version constraints and qualifiers from one alternative.

    Returns None for tokens that never name an installable capability
    (conflicts, rpmlib features, empty strings).
    """
    token = token.strip()
    if not token:
        return None

    if dialect is Dialect.DEBIAN:
        name = _DEBIAN_QUALIFIERS.sub("", token).strip()
        name = name.split()[0] if name else ""
        name = name.split(":", 1)[0]
        return name or None

    if dialect is Dialect.ALPINE:
        if token.startswith("!"):
            return None
        match = _OPERATOR_CUT.search(token)
        name = token[:match.start()] if match else token
        return name.strip() or None

    if dialect is Dialect.RPM:
        if token.startswith("rpmlib("):
            return None
        if token.startswith("("):
            # rich dependency, e.g. "(foo >= 1 if bar)": first operand names it
            inner = token.lstrip("(").split()
            return inner[0].rstrip(")") if inner else None
        return token.split()[0]

    if dialect is Dialect.PACMAN:
        name = token.split(":", 1)[0]
        match = _OPERATOR_CUT.search(name)
        if match:
            name = name[:match.start()]
        return name.strip() or None

    return token.split()[0]


def provided_name(token: str, dialect: Dialect) -> Optional[str]:
    """Capability key declared by a provides token (version suffix removed)."""
    token = token.strip()
    if not token:
        return None
    if dialect is Dialect.ALPINE:
        return token.split("=", 1)[0] or None
    if dialect is Dialect.PACMAN:
        return token.split("=", 1)[0] or None
    return bare_name(token, dialect)


def classify(name: str) -> DependencyKind:
    """Classify a cleaned capability name."""
    if name.startswith("/"):
        return DependencyKind.FILE
    if name.startswith("so:") or _SONAME.search(name):
        return DependencyKind.SONAME
    if "(" in name or name.startswith(("cmd:", "pc:", "py3.", "ocaml4-intf:")):
        return DependencyKind.VIRTUAL
    return DependencyKind.PACKAGE


def clean_dependencies(record: PackageRecord, dialect: Dialect) -> List[List[str]]:
    """Cleaned dependency groups of ``record``.

    Each group lists alternatives in preference order; any one satisfies the
    group. Groups satisfied by the record itself, by name or by one of its own
    provides, are dropped, so the result never contains the record.
    """
    own = {record.name}
    for token in record.provides:
        cap = provided_name(token, dialect)
        if cap:
            own.add(cap)

    groups: List[List[str]] = []
    seen = set()
    for raw in record.depends:
        alts = []
        for alt in split_alternatives(raw, dialect):
            name = bare_name(alt, dialect)
            if name and name not in alts:
                alts.append(name)
        if not alts or any(a in own for a in alts):
            continue
        key = tuple(alts)
        if key in seen:
            continue
        seen.add(key)
        groups.append(alts)
    return groups
