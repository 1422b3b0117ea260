"""Shared fixtures."""

import pytest

from upkg.config import UpkgConfig
from upkg.exceptions import NotFoundError
from upkg.platform import HostPlatform


@pytest.fixture
def linux_host():
    return HostPlatform(os="linux", machine="x86_64")


@pytest.fixture
def make_config(tmp_path):
    """Config rooted in ``tmp_path`` with per-backend settings."""
    def _make(**backends):
        return UpkgConfig(
            install_path=str(tmp_path / "install"),
            cache_path=str(tmp_path / "cache"),
            backends=backends,
        )
    return _make


@pytest.fixture
def url_map():
    """Stand-in for ``http_client.get_bytes`` serving a dict of URL -> bytes."""
    class UrlMap(dict):
        def __init__(self):
            super().__init__()
            self.calls = []

        def __call__(self, url, **kwargs):
            self.calls.append(url)
            if url not in self:
                raise NotFoundError(f"{url} returned 404", op=kwargs.get("context"))
            return self[url]

    return UrlMap()
