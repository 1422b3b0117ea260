"""Backend adapter contract and the shared fetch/verify/extract pipeline.

An adapter composes, for one ecosystem, the pieces selected once at
construction: a record source (a cached ProviderIndex built from repository
feeds, or a lazily queried API), a dependency dialect, a container kind and a
metadata filter. ``resolve_and_install`` then runs one sequential pipeline:
resolve the plan, and for every node fetch, verify and extract.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple

from upkg.catalog import NameCatalog
from upkg.common.cancellation import CancelToken, check
from upkg.common.logging_utils import extra_context, safe_url, Timer
from upkg.config import UpkgConfig
from upkg.constants import Constants
from upkg.exceptions import HashMismatchError, NotFoundError, UnsupportedOperationError
from upkg.extract.extractor import ArchiveExtractor, ContainerKind
from upkg.extract.filters import for_name
from upkg.fetch import checksum
from upkg.fetch.fetcher import ArchiveFetcher
from upkg.index.cache import IndexCache
from upkg.index.depends import Dialect
from upkg.index.provider import LazyRecordSource, ProviderIndex, RecordSource
from upkg.index.resolver import DependencyResolver
from upkg.models import (
    DownloadOptions,
    Ecosystem,
    InstalledPackage,
    InstallPlan,
    InstallResult,
    PackageInfo,
    PackageRecord,
)
from upkg.platform import arch_for, canonical_machine, HostPlatform

logger = logging.getLogger(__name__)

RESOLVE = "resolve"
INSTALL = "install"
INFO = "info"
SEARCH = "search"
UPDATE = "update"
LIST_INSTALLED = "list_installed"
REMOVE = "remove"

OPERATIONS = (RESOLVE, INSTALL, INFO, SEARCH, UPDATE, LIST_INSTALLED, REMOVE)


class BackendAdapter(ABC):
    """Uniform facade over one ecosystem.

    Subclasses declare ``name``, ``ecosystem`` and ``capabilities`` and supply
    ``record_source``, ``artifact_url`` and ``container_kind``. Operations not
    listed in ``capabilities`` raise UnsupportedOperationError.

    The only mutable state is the owned IndexCache; an adapter can be reused
    across calls and threads.
    """

    name: str = ""
    ecosystem: Ecosystem = Ecosystem.DEBIAN
    capabilities: FrozenSet[str] = frozenset({RESOLVE, INSTALL, INFO})
    # Key into upkg.extract.filters.FILTERS
    metadata_filter: Optional[str] = None
    # Ecosystem column of the platform arch table
    arch_family: str = ""

    def __init__(
        self,
        config: Optional[UpkgConfig] = None,
        *,
        cache: Optional[IndexCache] = None,
        extractor: Optional[ArchiveExtractor] = None,
        host: Optional[HostPlatform] = None,
        catalog: Optional[NameCatalog] = None,
    ):
        self.config = config or UpkgConfig()
        self.catalog = catalog
        self.settings = self.config.backend_settings(self.name)
        self.cache = cache if cache is not None else IndexCache(
            default_ttl=float(self.settings.get("index_ttl", Constants.INDEX_CACHE_TTL_SEC)),
        )
        self.extractor = extractor or ArchiveExtractor()
        self.host = host or HostPlatform.detect()
        self.install_root = os.path.expanduser(
            str(self.settings.get("install_path") or os.path.join(self.config.install_path, self.name))
        )
        self.cache_dir = os.path.expanduser(
            str(self.settings.get("cache_path") or self.config.backend_cache_path(self.name))
        )
        self.arch = str(self.settings.get("arch") or self.default_arch())

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} arch={self.arch}>"

    # capability handling

    def supports(self, operation: str) -> bool:
        return operation in self.capabilities

    def _require(self, operation: str) -> None:
        if not self.supports(operation):
            raise UnsupportedOperationError(self.name, operation)

    # platform

    def default_arch(self) -> str:
        return arch_for(self.arch_family or self.ecosystem.value, self.host.machine)

    def target_arch(self, options: Optional[DownloadOptions]) -> str:
        """Arch for this request: the option (normalised) or the adapter default."""
        if options is not None and options.arch:
            return arch_for(self.arch_family or self.ecosystem.value, canonical_machine(options.arch))
        return self.arch

    def is_available(self) -> bool:
        """True when this backend can serve the detected host."""
        return True

    def package_name(self, name: str, strict: bool = True) -> str:
        """Map a canonical name through the catalog, when one is attached.

        Strict lookups raise NotFoundError for names the catalog cannot map;
        otherwise the name is used as given.
        """
        if self.catalog is None:
            return name
        if strict:
            return self.catalog.resolve(name, self.name)
        return self.catalog.resolve_or_keep(name, self.name)

    # hooks

    @abstractmethod
    def record_source(self, arch: str, cancel: Optional[CancelToken] = None) -> RecordSource:
        """Where the resolver looks names up for ``arch``."""

    @abstractmethod
    def artifact_url(self, record: PackageRecord) -> str:
        """Absolute download URL of ``record``'s artifact."""

    def container_kind(self, record: PackageRecord) -> ContainerKind:
        return ContainerKind.from_filename(self.archive_name(record))

    def dialect(self) -> Dialect:
        return Dialect.for_ecosystem(self.ecosystem)

    def archive_name(self, record: PackageRecord) -> str:
        return os.path.basename(record.locator.split("?", 1)[0]) or f"{record.nvra}.pkg"

    def archive_path(self, record: PackageRecord) -> str:
        return os.path.join(self.cache_dir, "downloads", self.archive_name(record))

    def target_root(self, record: PackageRecord, options: DownloadOptions) -> str:
        """Directory ``record`` is extracted into."""
        return self.install_root

    def download_headers(self, record: PackageRecord) -> Dict[str, str]:
        return {}

    def skip_filter(self) -> Optional[Callable[[str], bool]]:
        return for_name(self.metadata_filter)

    # operations

    def resolver(self, arch: str, cancel: Optional[CancelToken] = None) -> DependencyResolver:
        return DependencyResolver(self.record_source(arch, cancel), self.dialect(), arch)

    def resolve(
        self,
        name: str,
        options: Optional[DownloadOptions] = None,
        cancel: Optional[CancelToken] = None,
    ) -> InstallPlan:
        """Resolve ``name`` into an ordered install plan.

        Raises:
            NotFoundError: nothing provides ``name``.
            FormatError, NetworkError: the index could not be loaded.
        """
        self._require(RESOLVE)
        options = options or DownloadOptions()
        arch = self.target_arch(options)
        return self.resolver(arch, cancel).resolve(
            name, options.version, cancel=cancel, with_dependencies=options.with_dependencies
        )

    def resolve_and_install(
        self,
        name: str,
        options: Optional[DownloadOptions] = None,
        cancel: Optional[CancelToken] = None,
    ) -> InstallResult:
        """Resolve ``name`` and install every node of the plan in order.

        Resolution failures of transitive dependencies come back as warnings
        on the result; any failure on a node being installed is fatal.
        With a catalog attached, ``name`` is a canonical name and must map to
        a package of this backend.
        """
        self._require(INSTALL)
        options = options or DownloadOptions()
        name = self.package_name(name)
        with Timer() as t:
            plan = self.resolve(name, options, cancel)
            result = InstallResult(requested=name, backend=self.name, plan=plan)
            for record in plan:
                check(cancel, "install")
                result.installed.append(self.install_record(record, options, cancel))
        logger.info(
            "Installed %s with %s: %d package(s), %d warning(s)",
            name, self.name, len(result.installed), len(result.warnings),
            extra=extra_context(
                event="install", component="backend", backend=self.name,
                outcome="ok", duration_ms=t.duration_ms(),
            ),
        )
        return result

    def install(
        self,
        name: str,
        options: Optional[DownloadOptions] = None,
        cancel: Optional[CancelToken] = None,
    ) -> InstallResult:
        """Alias of resolve_and_install."""
        return self.resolve_and_install(name, options, cancel)

    def install_record(
        self,
        record: PackageRecord,
        options: DownloadOptions,
        cancel: Optional[CancelToken] = None,
    ) -> InstalledPackage:
        """Fetch, verify and extract one plan node."""
        url = self.artifact_url(record)
        archive = self.archive_path(record)
        fetcher = ArchiveFetcher(force=options.force, headers=self.download_headers(record))
        written = fetcher.fetch(url, archive, cancel=cancel)
        if options.verify_hash:
            self.verify_artifact(record, archive, cancel)

        target = self.target_root(record, options)
        extracted = False
        if options.extract:
            self.extractor.extract(archive, self.container_kind(record), target, cancel=cancel,
                                   skip=self.skip_filter())
            extracted = True
            if not options.keep_archive:
                os.unlink(archive)
        logger.debug(
            "Installed %s %s from %s", record.name, record.full_version, safe_url(url),
            extra=extra_context(event="install_record", component="backend", backend=self.name,
                                package=record.name, bytes=written),
        )
        return InstalledPackage(
            record=record,
            archive_path=archive,
            target_root=target,
            extracted=extracted,
            downloaded_bytes=written,
        )

    def verify_artifact(self, record: PackageRecord, archive: str, cancel: Optional[CancelToken] = None) -> None:
        """Check ``archive`` against the record's digest.

        A mismatching artifact is deleted before the error propagates so the
        next attempt downloads it again.
        """
        if record.checksum is None:
            logger.warning("%s %s declares no checksum; skipping verification", record.name, record.full_version)
            return
        try:
            checksum.verify(archive, record.checksum, cancel, package=record.name)
        except HashMismatchError:
            if os.path.exists(archive):
                os.unlink(archive)
            raise

    def info(self, name: str, cancel: Optional[CancelToken] = None) -> PackageInfo:
        """Metadata of the record ``name`` resolves to (no dependency walk)."""
        self._require(INFO)
        name = self.package_name(name, strict=False)
        plan = self.resolve(name, DownloadOptions(with_dependencies=False), cancel)
        return PackageInfo.from_record(plan.records[-1], self.name)

    def search(self, query: str, cancel: Optional[CancelToken] = None, limit: int = 50) -> List[PackageInfo]:
        raise UnsupportedOperationError(self.name, SEARCH)

    def update(self, cancel: Optional[CancelToken] = None) -> int:
        raise UnsupportedOperationError(self.name, UPDATE)

    def list_installed(self) -> List[PackageInfo]:
        raise UnsupportedOperationError(self.name, LIST_INSTALLED)

    def remove(self, name: str, cancel: Optional[CancelToken] = None) -> None:
        raise UnsupportedOperationError(self.name, REMOVE)


class IndexedBackend(BackendAdapter):
    """Adapter over repositories that publish a complete index feed.

    Every configured repository is downloaded and parsed, in priority order,
    into one ProviderIndex cached under ``(ecosystem, arch)``.
    """

    capabilities = frozenset({RESOLVE, INSTALL, INFO, SEARCH, UPDATE})

    @abstractmethod
    def repositories(self) -> Sequence[str]:
        """Repository or component names, highest priority first."""

    @abstractmethod
    def load_repository(self, repo: str, arch: str, cancel: Optional[CancelToken] = None) -> List[PackageRecord]:
        """Download and parse one repository feed."""

    def repository_loader(self, arch: str, cancel: Optional[CancelToken] = None) -> Callable[[str], List[PackageRecord]]:
        """Per-build loader; override to share state between repositories of one build."""
        return lambda repo: self.load_repository(repo, arch, cancel)

    def cache_key(self, arch: str) -> Tuple[str, str]:
        return (self.name, arch)

    def build_index(self, arch: str, cancel: Optional[CancelToken] = None) -> ProviderIndex:
        """Load all repositories for ``arch`` into a fresh snapshot."""
        records: List[PackageRecord] = []
        repos = list(self.repositories())
        load = self.repository_loader(arch, cancel)
        with Timer() as t:
            for repo in repos:
                check(cancel, "index")
                loaded = load(repo)
                logger.debug("%s: %d record(s) from %s", self.name, len(loaded), repo)
                records.extend(loaded)
        logger.info(
            "Loaded %s index for %s: %d record(s) from %d repositories",
            self.name, arch, len(records), len(repos),
            extra=extra_context(event="index_load", component="backend", backend=self.name,
                                duration_ms=t.duration_ms()),
        )
        return ProviderIndex(records, self.dialect(), origin_priority=repos)

    def index(self, arch: Optional[str] = None, cancel: Optional[CancelToken] = None,
              force: bool = False) -> ProviderIndex:
        arch = arch or self.arch
        return self.cache.get_or_load(
            self.cache_key(arch), lambda: self.build_index(arch, cancel), cancel=cancel, force=force
        )

    def record_source(self, arch: str, cancel: Optional[CancelToken] = None) -> RecordSource:
        return self.index(arch, cancel)

    def search(self, query: str, cancel: Optional[CancelToken] = None, limit: int = 50) -> List[PackageInfo]:
        self._require(SEARCH)
        return [PackageInfo.from_record(r, self.name) for r in self.index(cancel=cancel).search(query, limit)]

    def update(self, cancel: Optional[CancelToken] = None) -> int:
        """Force a refresh of the index for the adapter's arch; returns the record count."""
        self._require(UPDATE)
        return len(self.index(cancel=cancel, force=True))


class LookupBackend(BackendAdapter):
    """Adapter over per-package APIs without a bulk index.

    Names are looked up on demand through a LazyRecordSource that lives for
    one request, so repeated dependencies cost one query each.
    """

    capabilities = frozenset({RESOLVE, INSTALL, INFO, SEARCH})

    @abstractmethod
    def lookup(self, name: str, arch: str, cancel: Optional[CancelToken] = None) -> List[PackageRecord]:
        """Latest record(s) for ``name``; NotFoundError or an empty list on a miss."""

    def lookup_version(self, name: str, version: str, arch: str,
                       cancel: Optional[CancelToken] = None) -> Optional[PackageRecord]:
        """Record for a pinned version; None when the API cannot answer that."""
        return None

    def _lookup_or_empty(self, name: str, arch: str, cancel: Optional[CancelToken]) -> List[PackageRecord]:
        try:
            return self.lookup(name, arch, cancel)
        except NotFoundError:
            logger.debug("%s: no package named %s", self.name, name)
            return []

    def record_source(self, arch: str, cancel: Optional[CancelToken] = None) -> LazyRecordSource:
        return LazyRecordSource(lambda name: self._lookup_or_empty(name, arch, cancel))

    def resolve(
        self,
        name: str,
        options: Optional[DownloadOptions] = None,
        cancel: Optional[CancelToken] = None,
    ) -> InstallPlan:
        self._require(RESOLVE)
        options = options or DownloadOptions()
        arch = self.target_arch(options)
        source = self.record_source(arch, cancel)
        if options.version:
            try:
                pinned = self.lookup_version(name, options.version, arch, cancel)
            except NotFoundError:
                pinned = None
            if pinned is not None:
                source.seed(pinned, name)
        resolver = DependencyResolver(source, self.dialect(), arch)
        return resolver.resolve(name, options.version, cancel=cancel, with_dependencies=options.with_dependencies)
