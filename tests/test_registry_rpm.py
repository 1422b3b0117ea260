"""Tests for repomd.xml and primary.xml parsing."""

import gzip
import lzma

import pytest
import zstandard

from upkg.exceptions import FormatError
from upkg.models import Ecosystem
from upkg.registry.rpm import parse_primary, parse_repomd, primary_location

REPOMD = b"""<?xml version="1.0" encoding="UTF-8"?>
<repomd xmlns="http://linux.duke.edu/metadata/repo" xmlns:rpm="http://linux.duke.edu/metadata/rpm">
  <revision>1700000000</revision>
  <data type="primary">
    <checksum type="sha256">AABBCC</checksum>
    <open-checksum type="sha256">ddeeff</open-checksum>
    <location href="repodata/aabbcc-primary.xml.gz"/>
    <size>1234</size>
  </data>
  <data type="filelists">
    <checksum type="sha256">112233</checksum>
    <location href="repodata/112233-filelists.xml.gz"/>
  </data>
</repomd>
"""

PRIMARY = b"""<?xml version="1.0" encoding="UTF-8"?>
<metadata xmlns="http://linux.duke.edu/metadata/common" xmlns:rpm="http://linux.duke.edu/metadata/rpm" packages="4">
<package type="rpm">
  <name>openssl</name>
  <arch>x86_64</arch>
  <version epoch="1" ver="3.1.1" rel="4.fc39"/>
  <checksum type="sha256" pkgid="YES">9F86D081884C7D659A2FEAA0C55AD015A3BF4F1B2B0B822CD15D6C15B0F00A08</checksum>
  <summary>Utilities from the general purpose cryptography library with TLS implementation</summary>
  <description>The OpenSSL toolkit provides support for secure communications.</description>
  <packager>Fedora Project</packager>
  <url>http://www.openssl.org/</url>
  <size package="1200000" installed="2400000" archive="2500000"/>
  <location href="Packages/o/openssl-3.1.1-4.fc39.x86_64.rpm"/>
  <format>
    <rpm:license>Apache-2.0</rpm:license>
    <rpm:provides>
      <rpm:entry name="openssl" flags="EQ" epoch="1" ver="3.1.1" rel="4.fc39"/>
      <rpm:entry name="openssl(x86-64)" flags="EQ" epoch="1" ver="3.1.1" rel="4.fc39"/>
    </rpm:provides>
    <rpm:requires>
      <rpm:entry name="libcrypto.so.3()(64bit)"/>
      <rpm:entry name="openssl-libs(x86-64)" flags="EQ" epoch="1" ver="3.1.1" rel="4.fc39"/>
      <rpm:entry name="rpmlib(CompressedFileNames)" flags="LE" epoch="0" ver="3.0.4" rel="1"/>
      <rpm:entry name="/bin/sh"/>
    </rpm:requires>
    <file>/usr/bin/openssl</file>
  </format>
</package>
<package type="rpm">
  <name>openssl-libs</name>
  <arch>x86_64</arch>
  <version epoch="1" ver="3.1.1" rel="4.fc39"/>
  <checksum type="sha256" pkgid="YES">aa</checksum>
  <summary>A general purpose cryptography library with TLS implementation</summary>
  <size package="2000000" installed="6000000"/>
  <location href="Packages/o/openssl-libs-3.1.1-4.fc39.x86_64.rpm"/>
  <format>
    <rpm:provides>
      <rpm:entry name="libcrypto.so.3()(64bit)"/>
      <rpm:entry name="openssl-libs(x86-64)" flags="EQ" epoch="1" ver="3.1.1" rel="4.fc39"/>
    </rpm:provides>
  </format>
</package>
<package type="rpm">
  <name>openssl-libs</name>
  <arch>i686</arch>
  <version epoch="1" ver="3.1.1" rel="4.fc39"/>
  <location href="Packages/o/openssl-libs-3.1.1-4.fc39.i686.rpm"/>
</package>
<package type="rpm">
  <name>ca-certificates</name>
  <arch>noarch</arch>
  <version epoch="0" ver="2023.2.60" rel="1.0.fc39"/>
  <location href="Packages/c/ca-certificates-2023.2.60-1.0.fc39.noarch.rpm"/>
</package>
</metadata>
"""


class TestRepomd:
    """Tests for repomd.xml."""

    def test_lists_data_entries(self):
        """Every data entry with a location is returned."""
        entries = parse_repomd(REPOMD)
        assert [e.type for e in entries] == ["primary", "filelists"]
        assert entries[0].size == 1234

    def test_primary_location(self):
        """The primary entry carries href and lower-cased checksum."""
        primary = primary_location(REPOMD)
        assert primary.href == "repodata/aabbcc-primary.xml.gz"
        assert primary.checksum.algorithm == "sha256"
        assert primary.checksum.value == "aabbcc"

    def test_missing_primary_raises(self):
        """repomd without primary is a FormatError."""
        doc = REPOMD.replace(b'type="primary"', b'type="other"')
        with pytest.raises(FormatError):
            primary_location(doc)

    def test_malformed_xml_raises(self):
        """Broken XML is a FormatError."""
        with pytest.raises(FormatError):
            parse_repomd(b"<repomd><data>")


class TestPrimary:
    """Tests for primary.xml."""

    def test_parses_packages(self):
        """All rpm packages are returned in order."""
        records = parse_primary(PRIMARY, origin="releases")
        assert [r.name for r in records] == ["openssl", "openssl-libs", "openssl-libs", "ca-certificates"]
        assert all(r.ecosystem is Ecosystem.RPM for r in records)
        assert records[0].origin == "releases"

    def test_version_fields_and_metadata(self):
        """EVR, sizes, locator and license are mapped."""
        openssl = parse_primary(PRIMARY)[0]
        assert (openssl.epoch, openssl.version, openssl.release) == ("1", "3.1.1", "4.fc39")
        assert openssl.full_version == "1:3.1.1-4.fc39"
        assert openssl.size == 1200000
        assert openssl.installed_size == 2400000
        assert openssl.locator == "Packages/o/openssl-3.1.1-4.fc39.x86_64.rpm"
        assert openssl.license == "Apache-2.0"
        assert openssl.checksum.value.startswith("9f86d0")
        assert openssl.extra["packager"] == "Fedora Project"

    def test_requires_keep_capability_names_and_drop_rpmlib(self):
        """Capabilities stay intact, constraints are rendered, rpmlib() is dropped."""
        openssl = parse_primary(PRIMARY)[0]
        assert openssl.depends == (
            "libcrypto.so.3()(64bit)",
            "openssl-libs(x86-64) = 1:3.1.1-4.fc39",
            "/bin/sh",
        )

    def test_provides_include_listed_files(self):
        """Primary file entries count as provides."""
        openssl = parse_primary(PRIMARY)[0]
        assert "/usr/bin/openssl" in openssl.provides
        assert "openssl(x86-64) = 1:3.1.1-4.fc39" in openssl.provides

    def test_arch_filter(self):
        """Only requested architectures are kept."""
        records = parse_primary(PRIMARY, arches=("x86_64", "noarch"))
        assert [(r.name, r.arch) for r in records] == [
            ("openssl", "x86_64"), ("openssl-libs", "x86_64"), ("ca-certificates", "noarch"),
        ]

    @pytest.mark.parametrize("filename,compressor", [
        ("primary.xml.gz", gzip.compress),
        ("primary.xml.xz", lzma.compress),
        ("primary.xml.zst", lambda data: zstandard.ZstdCompressor().compress(data)),
    ])
    def test_compressed_primary(self, filename, compressor):
        """Compression follows the href suffix."""
        assert len(parse_primary(compressor(PRIMARY), filename=filename)) == 4

    def test_unknown_suffix_is_sniffed(self):
        """Without a known suffix the compression is sniffed."""
        assert len(parse_primary(gzip.compress(PRIMARY), filename="primary")) == 4

    def test_truncated_primary_raises(self):
        """Truncated data is a FormatError."""
        with pytest.raises(FormatError):
            parse_primary(gzip.compress(PRIMARY)[:200], filename="primary.xml.gz")

    def test_malformed_primary_raises(self):
        """Broken XML is a FormatError."""
        with pytest.raises(FormatError):
            parse_primary(b"<metadata><package>", filename="primary.xml")
