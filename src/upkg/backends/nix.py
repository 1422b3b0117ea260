"""Nix adapter: attribute -> store paths -> narinfo -> NAR from a binary cache.

All selected outputs of a package are merged into ``<install>/<name-version>``.
With ``follow_references`` the runtime closure (narinfo ``References``) is
installed too, one directory per store path.
"""

from __future__ import annotations

import logging
import os
from typing import Dict, List, Optional, Set

from upkg.backends.base import INFO, INSTALL, LookupBackend, RESOLVE, SEARCH
from upkg.common import http_client
from upkg.common.cancellation import CancelToken
from upkg.constants import Backends, Constants
from upkg.exceptions import FormatError, NetworkError, NotFoundError
from upkg.extract.extractor import ContainerKind
from upkg.index.depends import Dialect
from upkg.index.provider import LazyRecordSource
from upkg.index.resolver import DependencyResolver
from upkg.models import DownloadOptions, Ecosystem, InstallPlan, PackageInfo, PackageRecord
from upkg.platform import arch_for, canonical_machine
from upkg.registry import nix

logger = logging.getLogger(__name__)

_SUPPORTED_MACHINES = ("x86_64", "aarch64")


def _wanted_outputs(selector: Optional[str]) -> List[str]:
    return [part.strip() for part in (selector or "").split(",") if part.strip()]


class NixBackend(LookupBackend):
    """Resolves attributes through a static index, search.nixos.org or Hydra.

    The adapter's arch is a Nix system double such as ``x86_64-linux``.
    Plan records are named after their store path basename
    (``<hash>-<name>``), which is unique per build.
    """

    name = Backends.NIX.value
    ecosystem = Ecosystem.NIX
    capabilities = frozenset({RESOLVE, INSTALL, INFO, SEARCH})

    @property
    def cache_url(self) -> str:
        return str(self.settings.get("cache_url") or Constants.NIX_CACHE_URL).rstrip("/")

    @property
    def search_url(self) -> str:
        base = str(self.settings.get("search_url") or Constants.NIX_SEARCH_URL).rstrip("/")
        channel = self.settings.get("channel") or Constants.NIX_SEARCH_CHANNEL
        return f"{base}/{channel}/_search"

    @property
    def follow_references(self) -> bool:
        return bool(self.settings.get("follow_references", False))

    def default_arch(self) -> str:
        return str(self.settings.get("system") or self.host.nix_system())

    def target_arch(self, options: Optional[DownloadOptions]) -> str:
        if options is None or not options.arch:
            return self.arch
        if "-" in options.arch:
            return options.arch
        return f"{arch_for('nix', canonical_machine(options.arch))}-{self.host.os}"

    def is_available(self) -> bool:
        return self.host.os in ("linux", "darwin") and self.host.machine in _SUPPORTED_MACHINES

    def dialect(self) -> Dialect:
        return Dialect.PLAIN

    # attribute resolution

    def static_index(self, cancel: Optional[CancelToken] = None) -> Optional[Dict[str, nix.NixPackage]]:
        """The configured static index (path or URL), or None when not configured."""
        location = self.settings.get("index")
        if not location:
            return None
        location = str(location)

        def load() -> Dict[str, nix.NixPackage]:
            if location.startswith(("http://", "https://")):
                return nix.parse_static_index(http_client.get_bytes(location, context="index", cancel=cancel))
            try:
                with open(os.path.expanduser(location), "rb") as fh:
                    return nix.parse_static_index(fh.read())
            except OSError as exc:
                raise FormatError(f"reading static index {location}: {exc}", op="index") from exc

        return self.cache.get_or_load((self.name, "static", location), load, cancel=cancel)

    def from_search(self, attribute: str, system: str, cancel: Optional[CancelToken] = None) -> nix.NixPackage:
        hits = nix.parse_search_hits(
            http_client.post_json(self.search_url, nix.search_query(attribute, system, size=5),
                                  context="search", cancel=cancel)
        )
        for pkg in hits:
            if pkg.attribute == attribute:
                return pkg
        if not hits:
            raise NotFoundError(f"no search hit for {attribute} on {system}", op="nix", package=attribute)
        return hits[0]

    def from_hydra(self, attribute: str, system: str, cancel: Optional[CancelToken] = None) -> nix.NixPackage:
        hydra = str(self.settings.get("hydra_url") or Constants.NIX_HYDRA_URL).rstrip("/")
        jobset = self.settings.get("jobset") or Constants.NIX_HYDRA_JOBSET
        url = f"{hydra}/job/{jobset}/{attribute}.{system}/latest"
        data = http_client.get_json(url, context="hydra", headers={"Accept": "application/json"}, cancel=cancel)
        return nix.parse_hydra_build(data, attribute)

    def find_package(self, attribute: str, system: str, cancel: Optional[CancelToken] = None) -> nix.NixPackage:
        """Map an attribute to its outputs.

        The static index is authoritative when configured; otherwise
        search.nixos.org is asked first and Hydra second.

        Raises:
            NotFoundError: no source knows the attribute.
            NetworkError, FormatError: a source failed and none answered.
        """
        index = self.static_index(cancel)
        if index is not None:
            if attribute in index:
                return index[attribute]
            raise NotFoundError(f"{attribute} is not in the static index", op="nix", package=attribute)

        failure: Optional[Exception] = None
        for source in (self.from_search, self.from_hydra):
            try:
                pkg = source(attribute, system, cancel)
            except NotFoundError as exc:
                logger.debug("%s: %s", source.__name__, exc)
                continue
            except (NetworkError, FormatError) as exc:
                logger.debug("%s failed: %s", source.__name__, exc)
                failure = exc
                continue
            logger.info("Resolved %s to %s (%d outputs)", attribute, pkg.name_version, len(pkg.outputs))
            return pkg
        if failure is not None:
            raise failure
        raise NotFoundError(f"no package for attribute {attribute} on {system}", op="nix", package=attribute)

    # narinfo -> records

    def narinfo(self, digest: str, cancel: Optional[CancelToken] = None) -> nix.NarInfo:
        data = http_client.get_bytes(f"{self.cache_url}/{digest}.narinfo", context="narinfo", cancel=cancel)
        return nix.parse_narinfo(data)

    def store_record(self, info: nix.NarInfo, system: str, *, output: str = "", folder: str = "",
                     version: str = "") -> PackageRecord:
        basename = f"{info.hash}-{info.name}"
        _, parsed_version = nix.split_name_version(info.name)
        checksum = info.file_hash
        if checksum is None and info.compression == "none":
            checksum = info.nar_hash
        return PackageRecord(
            name=basename,
            version=version or parsed_version,
            ecosystem=Ecosystem.NIX,
            arch=system,
            size=info.file_size,
            installed_size=info.nar_size,
            checksum=checksum,
            locator=info.url,
            depends=tuple(ref for ref in info.references if ref != basename) if self.follow_references else (),
            origin=self.cache_url,
            extra={
                "store_path": info.store_path,
                "compression": info.compression,
                "output": output,
                "folder": folder or info.name,
            },
        )

    def lookup(self, name: str, arch: str, cancel: Optional[CancelToken] = None) -> List[PackageRecord]:
        """Store path basename -> its narinfo record."""
        return [self.store_record(self.narinfo(nix.store_hash(name), cancel), arch)]

    def resolve(
        self,
        name: str,
        options: Optional[DownloadOptions] = None,
        cancel: Optional[CancelToken] = None,
    ) -> InstallPlan:
        """Plan the selected outputs of attribute ``name`` (and their closure when enabled).

        Raises:
            NotFoundError: unknown attribute, unknown output, or a pinned
                version other than the one the sources resolve to.
        """
        self._require(RESOLVE)
        options = options or DownloadOptions()
        system = self.target_arch(options)
        package = self.find_package(name, system, cancel)
        if options.version and package.version and options.version != package.version:
            raise NotFoundError(
                f"{name} resolves to version {package.version}, not {options.version}", op="resolve", package=name
            )
        folder = f"{name}-{options.version}" if options.version else package.name_version
        outputs = nix.select_outputs(package, _wanted_outputs(options.output))

        source = LazyRecordSource(lambda basename: self._lookup_or_empty(basename, system, cancel))
        roots = []
        for output, path in outputs.items():
            info = self.narinfo(nix.store_hash(path), cancel)
            record = self.store_record(info, system, output=output, folder=folder, version=package.version)
            source.seed(record)
            roots.append(record.name)

        resolver = DependencyResolver(source, self.dialect(), system)
        plan = InstallPlan(requested=name)
        visited: Set[str] = set()
        for root in roots:
            sub = resolver.resolve(root, cancel=cancel, visited=visited,
                                   with_dependencies=options.with_dependencies and self.follow_references)
            plan.records.extend(sub.records)
            plan.warnings.extend(sub.warnings)
        return plan

    # install hooks

    def artifact_url(self, record: PackageRecord) -> str:
        return f"{self.cache_url}/{record.locator.lstrip('/')}"

    def archive_name(self, record: PackageRecord) -> str:
        folder = record.extra.get("folder") or record.name
        output = record.extra.get("output")
        stem = f"{folder}-{output}" if output else folder
        compression = record.extra.get("compression") or "none"
        return f"{stem}.nar" if compression == "none" else f"{stem}.nar.{compression}"

    def container_kind(self, record: PackageRecord) -> ContainerKind:
        return ContainerKind.NAR

    def target_root(self, record: PackageRecord, options: DownloadOptions) -> str:
        return os.path.join(self.install_root, str(record.extra.get("folder") or record.name))

    def info(self, name: str, cancel: Optional[CancelToken] = None) -> PackageInfo:
        self._require(INFO)
        name = self.package_name(name, strict=False)
        package = self.find_package(name, self.arch, cancel)
        return PackageInfo(
            name=package.attribute,
            version=package.version,
            backend=self.name,
            description=package.description,
            homepage=package.homepage,
            license=package.license,
            platforms=[package.system or self.arch],
            outputs=package.output_hashes(),
        )

    def search(self, query: str, cancel: Optional[CancelToken] = None, limit: int = 50) -> List[PackageInfo]:
        self._require(SEARCH)
        hits = nix.parse_search_hits(
            http_client.post_json(self.search_url, nix.search_query(query, self.arch, size=limit),
                                  context="search", cancel=cancel)
        )
        return [
            PackageInfo(
                name=pkg.attribute,
                version=pkg.version,
                backend=self.name,
                description=pkg.description,
                homepage=pkg.homepage,
                license=pkg.license,
                platforms=[pkg.system] if pkg.system else [],
                outputs=pkg.output_hashes(),
            )
            for pkg in hits
        ]
