"""Host platform detection and per-ecosystem architecture names."""

from __future__ import annotations

import platform as _platform
import sys
from dataclasses import dataclass
from typing import Dict, Optional

# Canonical machine name -> ecosystem-specific architecture tag.
_ARCH_TABLE: Dict[str, Dict[str, str]] = {
    "x86_64": {
        "debian": "amd64", "alpine": "x86_64", "rpm": "x86_64", "pacman": "x86_64",
        "nix": "x86_64", "winget": "x64", "oci": "amd64",
    },
    "aarch64": {
        "debian": "arm64", "alpine": "aarch64", "rpm": "aarch64", "pacman": "aarch64",
        "nix": "aarch64", "winget": "arm64", "oci": "arm64",
    },
    "i686": {
        "debian": "i386", "alpine": "x86", "rpm": "i686", "pacman": "i686",
        "nix": "i686", "winget": "x86", "oci": "386",
    },
    "armv7l": {
        "debian": "armhf", "alpine": "armv7", "rpm": "armv7hl", "pacman": "armv7h",
        "nix": "armv7l", "winget": "arm", "oci": "arm",
    },
}

_MACHINE_ALIASES = {
    "amd64": "x86_64", "x64": "x86_64", "x86_64": "x86_64",
    "arm64": "aarch64", "aarch64": "aarch64",
    "i386": "i686", "i486": "i686", "i586": "i686", "i686": "i686", "x86": "i686",
    "armv7l": "armv7l", "armv7": "armv7l", "armhf": "armv7l",
}


def canonical_machine(machine: Optional[str] = None) -> str:
    """Normalise ``platform.machine()`` style names to x86_64/aarch64/i686/armv7l."""
    raw = (machine or _platform.machine() or "x86_64").lower()
    return _MACHINE_ALIASES.get(raw, raw)


def arch_for(ecosystem: str, machine: Optional[str] = None) -> str:
    """Architecture tag ``ecosystem`` uses for ``machine`` (host by default)."""
    canon = canonical_machine(machine)
    table = _ARCH_TABLE.get(canon)
    if table is None:
        return canon
    return table.get(ecosystem, canon)


@dataclass
class HostPlatform:
    """Detected operating system and machine."""
    os: str
    machine: str

    @classmethod
    def detect(cls) -> "HostPlatform":
        os_name = sys.platform
        if os_name.startswith("linux"):
            os_name = "linux"
        elif os_name == "win32":
            os_name = "windows"
        return cls(os=os_name, machine=canonical_machine())

    def nix_system(self) -> str:
        """Nix system double, e.g. ``x86_64-linux``."""
        return f"{arch_for('nix', self.machine)}-{self.os}"

    def brew_tag(self) -> str:
        """Homebrew bottle tag for this host."""
        if self.os == "darwin":
            return "arm64_sequoia" if self.machine == "aarch64" else "sequoia"
        if self.machine == "aarch64":
            return "aarch64_linux"
        return "x86_64_linux"

    def preferred_backend(self) -> str:
        """Backend used when the configuration names none."""
        if self.os == "darwin":
            return "brew"
        if self.os == "windows":
            return "choco"
        return "nix"


def brew_tag_to_oci_arch(tag: str) -> str:
    """``arm64_*`` and ``aarch64_*`` tags are arm64, everything else amd64."""
    if tag.startswith("arm64") or tag.startswith("aarch64"):
        return "arm64"
    return "amd64"


def brew_tag_to_oci_os(tag: str) -> str:
    return "linux" if tag.endswith("_linux") else "darwin"
