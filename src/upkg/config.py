"""Engine configuration: YAML file, environment overrides and caller overrides.

Precedence, lowest to highest: built-in defaults, the YAML file, environment
variables, then values passed to ``apply_overrides``.

Example ``~/.config/upkg/config.yaml``::

    default_backend: dpkg
    install_path: ~/.upkg
    debug: false
    backends:
      dpkg:
        mirror: http://ftp.de.debian.org/debian
        release: trixie
      nix:
        follow_references: true
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

import yaml

from upkg.constants import Constants
from upkg.exceptions import ConfigError

logger = logging.getLogger(__name__)


def default_config_path() -> str:
    return os.path.join(os.path.expanduser(Constants.CONFIG_DIR), Constants.CONFIG_FILE)


def _truthy(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class UpkgConfig:
    """Resolved configuration handed to backend adapters."""
    default_backend: str = ""
    install_path: str = field(default_factory=lambda: os.path.expanduser(Constants.DEFAULT_INSTALL_PATH))
    cache_path: str = field(default_factory=lambda: os.path.expanduser(Constants.DEFAULT_CACHE_PATH))
    timeout: float = Constants.REQUEST_TIMEOUT
    debug: bool = False
    backends: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def backend_settings(self, name: str) -> Dict[str, Any]:
        """Return the per-backend section (empty when absent)."""
        section = self.backends.get(name) or {}
        if not isinstance(section, dict):
            raise ConfigError(f"backends.{name} must be a mapping", op="config")
        return dict(section)

    def backend_cache_path(self, name: str) -> str:
        """Cache directory for one backend: ``<cache_path>/<name>``."""
        return os.path.join(self.cache_path, name)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _from_mapping(data: Dict[str, Any]) -> UpkgConfig:
    cfg = UpkgConfig()
    if "default_backend" in data and data["default_backend"] is not None:
        cfg.default_backend = str(data["default_backend"])
    if data.get("install_path"):
        cfg.install_path = os.path.expanduser(str(data["install_path"]))
    if data.get("cache_path"):
        cfg.cache_path = os.path.expanduser(str(data["cache_path"]))
    if data.get("timeout") is not None:
        try:
            cfg.timeout = float(data["timeout"])
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"timeout must be a number, got {data['timeout']!r}", op="config") from exc
    if "debug" in data:
        cfg.debug = bool(data["debug"])
    backends = data.get("backends") or {}
    if not isinstance(backends, dict):
        raise ConfigError("backends must be a mapping", op="config")
    cfg.backends = {str(k): (v or {}) for k, v in backends.items()}
    return cfg


def _apply_env(cfg: UpkgConfig) -> UpkgConfig:
    install = os.environ.get(Constants.ENV_INSTALL_PATH)
    if install:
        cfg.install_path = os.path.expanduser(install)
    cache = os.environ.get(Constants.ENV_CACHE_PATH)
    if cache:
        cfg.cache_path = os.path.expanduser(cache)
    debug = os.environ.get(Constants.ENV_DEBUG)
    if debug:
        cfg.debug = _truthy(debug)
    return cfg


def load_config(path: Optional[str] = None) -> UpkgConfig:
    """Load configuration from YAML.

    Args:
        path: Explicit file; defaults to ``$UPKG_CONFIG`` or
            ``~/.config/upkg/config.yaml``.

    Returns:
        The merged configuration. A missing file yields defaults.

    Raises:
        ConfigError: the file exists but is unreadable or not a mapping.
    """
    path = path or os.environ.get(Constants.ENV_CONFIG) or default_config_path()
    if not os.path.isfile(path):
        logger.debug("Config file not found: %s; using defaults", path)
        return _apply_env(UpkgConfig())

    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except OSError as exc:
        raise ConfigError(f"reading {path}: {exc}", op="config") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"parsing {path}: {exc}", op="config") from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping", op="config")
    return _apply_env(_from_mapping(data))


def save_config(cfg: UpkgConfig, path: Optional[str] = None) -> str:
    """Write ``cfg`` as YAML, creating the parent directory. Returns the path."""
    path = path or default_config_path()
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        yaml.safe_dump(cfg.to_dict(), fh, default_flow_style=False, sort_keys=True)
    return path


def apply_overrides(cfg: UpkgConfig, **values: Any) -> UpkgConfig:
    """Apply caller overrides with the highest precedence.

    Unknown keys and None values are ignored. ``backend_<name>`` keyword
    arguments carrying a mapping are merged into that backend's section.
    """
    for key, value in values.items():
        if value is None:
            continue
        if key.startswith("backend_") and isinstance(value, dict):
            name = key[len("backend_"):]
            section = dict(cfg.backends.get(name) or {})
            section.update(value)
            cfg.backends[name] = section
        elif key in ("install_path", "cache_path"):
            setattr(cfg, key, os.path.expanduser(str(value)))
        elif key == "timeout":
            cfg.timeout = float(value)
        elif key == "debug":
            cfg.debug = bool(value)
        elif key == "default_backend":
            cfg.default_backend = str(value)
        else:
            logger.debug("Ignoring unknown config override %s", key)
    return cfg
