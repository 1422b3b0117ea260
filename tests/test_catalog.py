"""Tests for the canonical package name catalog."""

import pytest

from upkg.catalog import CatalogEntry, NameCatalog, parse_entry
from upkg.exceptions import FormatError, NotFoundError

SQLITE = b"""
name = "sqlite3"
libs = ["libsqlite3.so.0"]

[backends]
apt = "libsqlite3-dev"
dnf = "sqlite-devel"
brew = "sqlite"
"""


@pytest.fixture
def catalog(tmp_path):
    entry = tmp_path / "deps" / "sqlite3"
    entry.mkdir(parents=True)
    (entry / "index.toml").write_bytes(SQLITE)
    return NameCatalog(str(tmp_path))


class TestNameCatalog:
    """Tests for NameCatalog."""

    def test_load(self, catalog):
        """Entries carry the name, libraries and backend table."""
        entry = catalog.load("sqlite3")
        assert entry == CatalogEntry(
            name="sqlite3",
            libs=["libsqlite3.so.0"],
            backends={"apt": "libsqlite3-dev", "dnf": "sqlite-devel", "brew": "sqlite"},
        )

    def test_resolve(self, catalog):
        """Canonical names map to the backend's package name."""
        assert catalog.resolve("sqlite3", "apt") == "libsqlite3-dev"
        assert catalog.resolve("sqlite3", "brew") == "sqlite"

    def test_resolve_missing_backend(self, catalog):
        """An entry without the backend is NotFoundError."""
        with pytest.raises(NotFoundError, match="pacman"):
            catalog.resolve("sqlite3", "pacman")

    def test_resolve_or_keep(self, catalog):
        """The lenient lookup returns the name unchanged when unmapped."""
        assert catalog.resolve_or_keep("sqlite3", "dnf") == "sqlite-devel"
        assert catalog.resolve_or_keep("sqlite3", "pacman") == "sqlite3"
        assert catalog.resolve_or_keep("zlib", "apt") == "zlib"

    def test_missing_catalog(self, tmp_path):
        """Without a deps directory every lookup fails."""
        with pytest.raises(NotFoundError, match="no package catalog"):
            NameCatalog(str(tmp_path / "empty")).load("sqlite3")

    def test_unknown_name(self, catalog):
        """Names without a directory are not in the catalog."""
        with pytest.raises(NotFoundError, match="not in the package catalog"):
            catalog.load("zlib")

    def test_directory_without_index(self, catalog, tmp_path):
        """A directory missing index.toml gets its own message."""
        (tmp_path / "deps" / "zlib").mkdir()
        with pytest.raises(NotFoundError, match="has no index.toml"):
            catalog.load("zlib")

    @pytest.mark.parametrize("name", ["", "..", "../etc", "a/b"])
    def test_path_like_names_rejected(self, catalog, name):
        """Names cannot point outside the deps directory."""
        with pytest.raises(NotFoundError):
            catalog.load(name)

    def test_invalid_toml(self, catalog, tmp_path):
        """Undecodable entries are a FormatError."""
        bad = tmp_path / "deps" / "broken"
        bad.mkdir()
        (bad / "index.toml").write_bytes(b"name = \n[backends")
        with pytest.raises(FormatError):
            catalog.load("broken")


class TestParseEntry:
    """Tests for parse_entry."""

    def test_defaults(self):
        """Missing fields fall back to the directory name and empty tables."""
        assert parse_entry({}, "zlib") == CatalogEntry(name="zlib")

    @pytest.mark.parametrize("data", [
        {"libs": "libz.so"},
        {"libs": [1]},
        {"backends": ["apt"]},
        {"backends": {"apt": 3}},
    ])
    def test_bad_types(self, data):
        """Wrong field types are a FormatError."""
        with pytest.raises(FormatError):
            parse_entry(data, "zlib")
