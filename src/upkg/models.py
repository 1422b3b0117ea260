"""Data models shared by parsers, the resolver, the fetcher and backends."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple


class Ecosystem(Enum):
    """Enum for supported package ecosystems."""
    DEBIAN = "debian"
    ALPINE = "alpine"
    RPM = "rpm"
    PACMAN = "pacman"
    BREW = "brew"
    NIX = "nix"
    NUGET = "nuget"
    WINGET = "winget"


# Architecture tags meaning "installable everywhere" across ecosystems.
ARCH_INDEPENDENT = frozenset({"all", "noarch", "any"})


class DependencyKind(Enum):
    """Classification of a dependency token after cleaning."""
    PACKAGE = "package"
    SONAME = "soname"
    VIRTUAL = "virtual"
    FILE = "file"


@dataclass(frozen=True)
class Checksum:
    """Declared digest of an artifact.

    ``encoding`` says how ``value`` is written: ``hex``, ``base64`` or
    ``nix32``. ``scope`` is ``file`` for a digest over the whole artifact or
    ``apk-control`` for Alpine digests taken over the control segment only.
    """
    algorithm: str
    value: str
    encoding: str = "hex"
    scope: str = "file"

    @classmethod
    def from_apk(cls, token: str) -> Optional["Checksum"]:
        """Parse an APKINDEX ``C:`` token (``Q1`` sha1 / ``Q2`` sha256, base64)."""
        token = token.strip()
        if token.startswith("Q1") and len(token) > 2:
            return cls("sha1", token[2:], "base64", "apk-control")
        if token.startswith("Q2") and len(token) > 2:
            return cls("sha256", token[2:], "base64", "apk-control")
        if len(token) == 40:
            return cls("sha1", token.lower(), "hex", "apk-control")
        return None

    @classmethod
    def from_nix(cls, token: str) -> Optional["Checksum"]:
        """Parse ``sha256:<digest>`` or SRI ``sha256-<base64>`` hash strings."""
        token = token.strip()
        if not token:
            return None
        if "-" in token and ":" not in token:
            algo, _, digest = token.partition("-")
            return cls(algo.lower(), digest, "base64")
        algo, sep, digest = token.partition(":")
        if not sep:
            algo, digest = "sha256", token
        algo = algo.lower()
        if algo == "sha256" and len(digest) == 64:
            return cls(algo, digest.lower(), "hex")
        if algo == "sha256" and len(digest) == 52:
            return cls(algo, digest, "nix32")
        if algo == "sha512" and len(digest) == 103:
            return cls(algo, digest, "nix32")
        return cls(algo, digest, "base64")

    @classmethod
    def from_nuget(cls, value: str, algorithm: str = "SHA512") -> Optional["Checksum"]:
        """NuGet feeds publish base64 digests tagged with an algorithm name."""
        if not value:
            return None
        return cls(algorithm.strip().lower() or "sha512", value.strip(), "base64")

    def __str__(self) -> str:
        return f"{self.algorithm}:{self.value}"


@dataclass(frozen=True)
class PackageRecord:
    """Ecosystem-agnostic description of one resolvable package.

    Immutable once parsed. ``depends`` and ``provides`` hold the raw tokens as
    written in the feed; cleaning happens in ``upkg.index.depends``.
    """
    name: str
    version: str
    ecosystem: Ecosystem
    arch: str = ""
    release: str = ""
    epoch: str = ""
    size: int = 0
    installed_size: int = 0
    checksum: Optional[Checksum] = None
    locator: str = ""
    depends: Tuple[str, ...] = ()
    provides: Tuple[str, ...] = ()
    origin: str = ""
    description: str = ""
    homepage: str = ""
    license: str = ""
    extra: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def full_version(self) -> str:
        """``epoch:version-release`` with empty parts and a zero epoch dropped."""
        ver = self.version
        if self.release:
            ver = f"{ver}-{self.release}"
        if self.epoch and self.epoch != "0":
            ver = f"{self.epoch}:{ver}"
        return ver

    @property
    def nvra(self) -> str:
        """name-version.arch, the conventional artifact stem."""
        base = f"{self.name}-{self.full_version}"
        return f"{base}.{self.arch}" if self.arch else base

    def matches_version(self, wanted: str) -> bool:
        """True when ``wanted`` names this record's version in any common form."""
        wanted = wanted.strip()
        candidates = {self.version, self.full_version}
        if self.release:
            candidates.add(f"{self.version}-{self.release}")
        return wanted in candidates


@dataclass
class DownloadOptions:
    """Per-request policy. Pure configuration, no behavior."""
    version: Optional[str] = None
    arch: Optional[str] = None
    output: Optional[str] = None
    extract: bool = True
    keep_archive: bool = False
    verify_hash: bool = True
    force: bool = False
    with_dependencies: bool = True


@dataclass
class ResolutionWarning:
    """A transitive dependency that could not be resolved."""
    token: str
    requested_by: str
    kind: DependencyKind
    reason: str

    def __str__(self) -> str:
        return f"{self.requested_by}: cannot resolve {self.kind.value} dependency {self.token!r} ({self.reason})"


@dataclass
class InstallPlan:
    """Ordered, deduplicated records to install; dependencies come first."""
    requested: str
    records: List[PackageRecord] = field(default_factory=list)
    warnings: List[ResolutionWarning] = field(default_factory=list)

    def __iter__(self) -> Iterator[PackageRecord]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def __contains__(self, name: object) -> bool:
        return any(r.name == name for r in self.records)

    def names(self) -> List[str]:
        return [r.name for r in self.records]

    @property
    def primary(self) -> Optional[PackageRecord]:
        """The record satisfying the original request (always last)."""
        return self.records[-1] if self.records else None


@dataclass
class InstalledPackage:
    """Outcome for one plan node."""
    record: PackageRecord
    archive_path: str
    target_root: str
    extracted: bool
    downloaded_bytes: int = 0


@dataclass
class InstallResult:
    """Outcome of ``resolve_and_install``."""
    requested: str
    backend: str
    plan: InstallPlan
    installed: List[InstalledPackage] = field(default_factory=list)

    @property
    def warnings(self) -> List[ResolutionWarning]:
        return self.plan.warnings


@dataclass
class PackageInfo:
    """Human-facing package metadata returned by info and search."""
    name: str
    version: str
    backend: str
    description: str = ""
    homepage: str = ""
    license: str = ""
    platforms: List[str] = field(default_factory=list)
    outputs: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: PackageRecord, backend: str) -> "PackageInfo":
        platforms = [record.arch] if record.arch else []
        return cls(
            name=record.name,
            version=record.full_version,
            backend=backend,
            description=record.description,
            homepage=record.homepage,
            license=record.license,
            platforms=platforms,
            outputs=dict(record.extra.get("outputs", {})),
        )
