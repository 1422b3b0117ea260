"""Tests for Nix narinfo, Hydra, search and static index parsing."""

import json

import pytest

from upkg.exceptions import FormatError, NotFoundError
from upkg.registry.nix import (
    NixPackage,
    parse_hydra_build,
    parse_narinfo,
    parse_search_hits,
    parse_static_index,
    parse_store_paths,
    search_query,
    select_outputs,
    split_name_version,
    split_store_path,
)

HELLO_HASH = "0c7c0b4wv6bk9w3qzxy3pbqk5axfmzsp"
GLIBC_HASH = "aw2fw9ag10wr9pf0qk4nk5sxi0q0bn56"
NIX32_DIGEST = "1b8m03r63zqhnjf7l5wnldhh7c134ap5vpj0850ymkq1iyzicy5s"

NARINFO = f"""\
StorePath: /nix/store/{HELLO_HASH}-hello-2.12.1
URL: nar/{NIX32_DIGEST}.nar.xz
Compression: xz
FileHash: sha256:{NIX32_DIGEST}
FileSize: 50088
NarHash: sha256:{NIX32_DIGEST}
NarSize: 226560
References: {GLIBC_HASH}-glibc-2.39-52 {HELLO_HASH}-hello-2.12.1
Deriver: 9hyl3ffwm6x4a8y7ylafyzbb9v05i5m0-hello-2.12.1.drv
Sig: cache.nixos.org-1:abc==
Sig: other-1:def==
"""


class TestStorePaths:
    """Tests for store path helpers."""

    def test_split_full_path(self):
        """Full store paths split into hash and name."""
        assert split_store_path(f"/nix/store/{HELLO_HASH}-hello-2.12.1") == (HELLO_HASH, "hello-2.12.1")

    def test_split_basename_and_subpath(self):
        """Bare basenames and paths below the store entry are accepted."""
        assert split_store_path(f"{HELLO_HASH}-hello-2.12.1/bin/hello")[0] == HELLO_HASH

    def test_bad_hash_length_raises(self):
        """A hash that is not 32 characters is a FormatError."""
        with pytest.raises(FormatError):
            split_store_path("/nix/store/abc-hello")

    def test_parse_store_paths(self):
        """Named outputs are split; a bare path is ``out``."""
        assert parse_store_paths("out=/nix/store/a-x; dev=/nix/store/b-x-dev") == {
            "out": "/nix/store/a-x", "dev": "/nix/store/b-x-dev",
        }
        assert parse_store_paths("/nix/store/a-x") == {"out": "/nix/store/a-x"}

    @pytest.mark.parametrize("value,expected", [
        ("hello-2.12.1", ("hello", "2.12.1")),
        ("python3-3.11.9", ("python3", "3.11.9")),
        ("gnome-shell-extensions-46.1", ("gnome-shell-extensions", "46.1")),
        ("unversioned", ("unversioned", "")),
    ])
    def test_split_name_version(self, value, expected):
        """The version starts at the first dash followed by a digit."""
        assert split_name_version(value) == expected


class TestNarInfo:
    """Tests for parse_narinfo."""

    def test_fields(self):
        """All narinfo keys are mapped."""
        info = parse_narinfo(NARINFO.encode())
        assert info.hash == HELLO_HASH
        assert info.name == "hello-2.12.1"
        assert info.url.endswith(".nar.xz")
        assert info.compression == "xz"
        assert info.file_size == 50088
        assert info.nar_size == 226560
        assert info.file_hash.algorithm == "sha256"
        assert info.file_hash.encoding == "nix32"
        assert info.references == [f"{GLIBC_HASH}-glibc-2.39-52", f"{HELLO_HASH}-hello-2.12.1"]
        assert info.signatures == ["cache.nixos.org-1:abc==", "other-1:def=="]

    def test_compression_defaults_to_bzip2(self):
        """Old narinfos without Compression are bzip2."""
        info = parse_narinfo(f"StorePath: /nix/store/{HELLO_HASH}-hello\nURL: nar/x.nar.bz2\n")
        assert info.compression == "bzip2"
        assert info.file_hash is None

    def test_hex_file_hash(self):
        """64 character hashes are hex encoded."""
        info = parse_narinfo(f"StorePath: /nix/store/{HELLO_HASH}-hello\nFileHash: sha256:{'AB' * 32}\n")
        assert info.file_hash.encoding == "hex"
        assert info.file_hash.value == "ab" * 32

    def test_missing_store_path_raises(self):
        """StorePath is mandatory."""
        with pytest.raises(FormatError):
            parse_narinfo("URL: nar/x.nar.xz\n")


class TestHydra:
    """Tests for parse_hydra_build."""

    def test_build_outputs(self):
        """Outputs, name and attribute come from the build JSON."""
        doc = {
            "job": "hello.x86_64-linux",
            "system": "x86_64-linux",
            "nixname": "hello-2.12.1",
            "buildoutputs": {"out": {"path": f"/nix/store/{HELLO_HASH}-hello-2.12.1"}},
        }
        pkg = parse_hydra_build(json.dumps(doc))
        assert pkg.attribute == "hello"
        assert pkg.version == "2.12.1"
        assert pkg.outputs == {"out": f"/nix/store/{HELLO_HASH}-hello-2.12.1"}
        assert pkg.output_hashes() == {"out": HELLO_HASH}

    def test_no_outputs_raises(self):
        """A build without outputs is a FormatError."""
        with pytest.raises(FormatError):
            parse_hydra_build({"job": "hello.x86_64-linux", "buildoutputs": {}})


class TestSearch:
    """Tests for search response parsing."""

    def test_hits_become_packages(self):
        """Hits with outputs are kept, meta-only hits dropped."""
        response = {"hits": {"hits": [
            {"_source": {
                "package_attr_name": "hello",
                "package_pname": "hello",
                "package_version": "2.12.1",
                "package_outputs": {"out": f"/nix/store/{HELLO_HASH}-hello-2.12.1"},
                "package_description": "A program that produces a familiar, friendly greeting",
                "package_homepage": ["https://www.gnu.org/software/hello/manual/"],
                "package_license_set": ["GPL-3.0-or-later"],
                "package_system": "x86_64-linux",
            }},
            {"_source": {"package_attr_name": "meta-only", "package_outputs": {}}},
        ]}}
        packages = parse_search_hits(json.dumps(response))
        assert len(packages) == 1
        hello = packages[0]
        assert hello.name_version == "hello-2.12.1"
        assert hello.homepage.startswith("https://www.gnu.org")
        assert hello.license == "GPL-3.0-or-later"
        assert hello.system == "x86_64-linux"

    def test_missing_hits_raises(self):
        """A response without hits is a FormatError."""
        with pytest.raises(FormatError):
            parse_search_hits({"took": 3})

    def test_query_filters_system(self):
        """The query pins type and system."""
        query = search_query("hello", "aarch64-linux", size=5)
        assert query["size"] == 5
        assert {"term": {"package_system": "aarch64-linux"}} in query["query"]["bool"]["must"]


class TestStaticIndex:
    """Tests for the static JSON index."""

    def test_list_form(self):
        """List entries are keyed by attribute; first wins."""
        doc = [
            {"Attribute": "hello", "NameVersion": "hello-2.12.1",
             "StorePath": f"/nix/store/{HELLO_HASH}-hello-2.12.1"},
            {"Attribute": "hello", "NameVersion": "hello-0.1", "StorePath": "/nix/store/x-hello-0.1"},
            {"NameVersion": "orphan-1"},
        ]
        index = parse_static_index(json.dumps(doc))
        assert list(index) == ["hello"]
        assert index["hello"].version == "2.12.1"
        assert index["hello"].outputs["out"].endswith("hello-2.12.1")

    def test_mapping_form(self):
        """A mapping uses its keys as attributes."""
        index = parse_static_index({"jq": {"NameVersion": "jq-1.7.1", "StorePath": "bin=/nix/store/a-jq-bin"}})
        assert index["jq"].outputs == {"bin": "/nix/store/a-jq-bin"}
        assert index["jq"].pname == "jq"

    def test_no_usable_entry_raises(self):
        """A non-empty index with nothing usable is a FormatError."""
        with pytest.raises(FormatError):
            parse_static_index([{"Attribute": "x"}])

    def test_scalar_document_raises(self):
        """A JSON scalar is not an index."""
        with pytest.raises(FormatError):
            parse_static_index("42")


class TestSelectOutputs:
    """Tests for select_outputs."""

    PKG = NixPackage(attribute="openssl", name_version="openssl-3.0.13",
                     outputs={"out": "/nix/store/a-openssl", "dev": "/nix/store/b-openssl-dev"})

    def test_all_outputs_by_default(self):
        """No selection returns every output."""
        assert select_outputs(self.PKG) == self.PKG.outputs

    def test_selected_outputs(self):
        """Requested outputs are returned in request order."""
        assert list(select_outputs(self.PKG, ["dev", "out"])) == ["dev", "out"]

    def test_missing_output_raises(self):
        """Unknown outputs are NotFoundError."""
        with pytest.raises(NotFoundError):
            select_outputs(self.PKG, ["man"])
