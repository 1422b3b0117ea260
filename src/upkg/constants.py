"""Constants used in the project."""

from enum import Enum


class Backends(Enum):
    """Backends supported by the engine.

    Args:
        Enum (string): Canonical backend names.
    """

    DPKG = "dpkg"
    APT = "apt"
    ALPINE = "alpine"
    DNF = "dnf"
    ZYPPER = "zypper"
    PACMAN = "pacman"
    BREW = "brew"
    NIX = "nix"
    CHOCO = "choco"
    WINGET = "winget"


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    LOG_FORMAT = "[%(levelname)s] %(message)s"
    ENV_LOG_LEVEL = "UPKG_LOG_LEVEL"
    ENV_INSTALL_PATH = "UPKG_INSTALL_PATH"
    ENV_CACHE_PATH = "UPKG_CACHE_PATH"
    ENV_DEBUG = "UPKG_DEBUG"
    ENV_CONFIG = "UPKG_CONFIG"
    USER_AGENT = "upkg/0.3"

    REQUEST_TIMEOUT = 120  # Timeout in seconds for all HTTP requests
    HTTP_RETRY_MAX = 3
    HTTP_RETRY_BASE_DELAY_SEC = 0.3
    DOWNLOAD_CHUNK_SIZE = 64 * 1024
    INDEX_CACHE_TTL_SEC = 30 * 60
    INDEX_CACHE_MAX_STALE_SEC = 24 * 60 * 60

    CONFIG_DIR = "~/.config/upkg"
    CONFIG_FILE = "config.yaml"
    DEFAULT_INSTALL_PATH = "~/.upkg"
    DEFAULT_CACHE_PATH = "~/.cache/upkg"

    # Debian
    DEBIAN_MIRROR = "http://deb.debian.org/debian"
    DEBIAN_RELEASE = "bookworm"
    DEBIAN_COMPONENTS = ["main", "contrib", "non-free", "non-free-firmware"]

    # Ubuntu
    UBUNTU_MIRROR = "http://archive.ubuntu.com/ubuntu"
    UBUNTU_PORTS_MIRROR = "http://ports.ubuntu.com/ubuntu-ports"
    UBUNTU_RELEASE = "noble"
    UBUNTU_COMPONENTS = ["main", "universe", "restricted", "multiverse"]

    # Alpine
    ALPINE_MIRROR = "https://dl-cdn.alpinelinux.org/alpine"
    ALPINE_BRANCH = "v3.19"
    ALPINE_REPOS = ["main", "community"]

    # Fedora / openSUSE
    FEDORA_MIRROR = "https://dl.fedoraproject.org/pub/fedora/linux"
    FEDORA_RELEASE = "39"
    FEDORA_REPOS = ["releases", "updates"]
    OPENSUSE_MIRROR = "http://download.opensuse.org"
    OPENSUSE_DISTRIBUTION = "tumbleweed"
    OPENSUSE_REPOS = ["repo/oss"]

    # Arch
    PACMAN_MIRROR = "https://geo.mirror.pkgbuild.com"
    PACMAN_REPOS = ["core", "extra"]

    # Homebrew
    BREW_API_URL = "https://formulae.brew.sh/api"
    BREW_REGISTRY_URL = "https://ghcr.io/v2/homebrew/core"
    BREW_ANONYMOUS_TOKEN = "QQ=="
    BREW_CELLAR = "Cellar"

    # Nix
    NIX_CACHE_URL = "https://cache.nixos.org"
    NIX_SEARCH_URL = "https://search.nixos.org/backend"
    NIX_SEARCH_CHANNEL = "nixos-unstable"
    NIX_HYDRA_URL = "https://hydra.nixos.org"
    NIX_HYDRA_JOBSET = "nixpkgs/trunk"
    NIX_STORE_DIR = "/nix/store"

    # Chocolatey / WinGet
    CHOCO_REPOSITORY_URL = "https://community.chocolatey.org/api/v2"
    WINGET_API_URL = "https://api.winget.run/v2"
