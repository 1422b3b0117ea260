"""Backend name -> adapter class table."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Type

from upkg.backends.alpine import AlpineBackend
from upkg.backends.base import BackendAdapter
from upkg.backends.brew import BrewBackend
from upkg.backends.choco import ChocoBackend
from upkg.backends.debian import AptBackend, DpkgBackend
from upkg.backends.nix import NixBackend
from upkg.backends.pacman import PacmanBackend
from upkg.backends.rpm import DnfBackend, ZypperBackend
from upkg.backends.winget import WingetBackend
from upkg.catalog import NameCatalog
from upkg.config import UpkgConfig
from upkg.exceptions import ConfigError
from upkg.platform import HostPlatform

logger = logging.getLogger(__name__)

ADAPTERS: Dict[str, Type[BackendAdapter]] = {
    cls.name: cls
    for cls in (
        DpkgBackend, AptBackend, AlpineBackend, DnfBackend, ZypperBackend,
        PacmanBackend, BrewBackend, NixBackend, ChocoBackend, WingetBackend,
    )
}

AUTO = "auto"

ALIASES = {
    "debian": "dpkg",
    "ubuntu": "apt",
    "apk": "alpine",
    "fedora": "dnf",
    "opensuse": "zypper",
    "arch": "pacman",
    "homebrew": "brew",
    "chocolatey": "choco",
}


def canonical_name(name: str) -> str:
    """Resolve aliases; raises ConfigError for unknown backends."""
    key = name.strip().lower()
    key = ALIASES.get(key, key)
    if key not in ADAPTERS:
        raise ConfigError(
            f"unknown backend {name!r} (known: {', '.join(available_backends())})", op="backend"
        )
    return key


def available_backends() -> List[str]:
    return sorted(ADAPTERS)


def is_auto(name: Optional[str]) -> bool:
    return not name or name.strip().lower() == AUTO


def detect_default(config: Optional[UpkgConfig] = None, host: Optional[HostPlatform] = None) -> str:
    """Configured default backend, else the host's natural one."""
    if config is not None and not is_auto(config.default_backend):
        return canonical_name(config.default_backend)
    return (host or HostPlatform.detect()).preferred_backend()


def create_adapter(name: Optional[str] = None, config: Optional[UpkgConfig] = None, **kwargs) -> BackendAdapter:
    """Instantiate the adapter for ``name`` (or the default backend).

    Keyword arguments (``cache``, ``extractor``, ``host``) go to the adapter.
    When ``name`` (or, without one, the configured default) is empty or
    ``auto``, the host's backend is detected and the adapter
    maps canonical names through the catalog under the cache path.

    Raises:
        ConfigError: ``name`` is not a known backend or alias.
    """
    config = config or UpkgConfig()
    requested = name or config.default_backend
    if not is_auto(requested):
        key = canonical_name(requested)
    else:
        key = (kwargs.get("host") or HostPlatform.detect()).preferred_backend()
        kwargs.setdefault("catalog", NameCatalog(config.cache_path))
    adapter = ADAPTERS[key](config, **kwargs)
    logger.debug("Created %r", adapter)
    return adapter
