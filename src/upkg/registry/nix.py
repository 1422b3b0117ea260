"""Nix metadata: narinfo files, Hydra build JSON, search hits and store paths.

A store path is ``/nix/store/<32 char nix32 hash>-<name>``; binary caches
serve ``<hash>.narinfo`` describing the compressed NAR for that path.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from upkg.constants import Constants
from upkg.exceptions import FormatError, NotFoundError
from upkg.models import Checksum

logger = logging.getLogger(__name__)

STORE_HASH_LENGTH = 32


def _text(data: Union[bytes, str]) -> str:
    return data.decode("utf-8", errors="replace") if isinstance(data, bytes) else data


def _json(data: Union[bytes, str, Dict[str, Any], List[Any]]):
    if isinstance(data, (dict, list)):
        return data
    try:
        return json.loads(data)
    except ValueError as exc:
        raise FormatError(f"invalid JSON: {exc}", op="parse") from exc


def split_store_path(path: str, store_dir: str = Constants.NIX_STORE_DIR) -> Tuple[str, str]:
    """``/nix/store/<hash>-<name>`` -> (hash, name).

    Bare ``<hash>-<name>`` basenames are accepted too.

    Raises:
        FormatError: the hash part is not 32 characters long.
    """
    base = path.strip()
    prefix = store_dir.rstrip("/") + "/"
    if base.startswith(prefix):
        base = base[len(prefix):]
    base = base.split("/", 1)[0]
    digest, _, name = base.partition("-")
    if len(digest) != STORE_HASH_LENGTH:
        raise FormatError(f"not a store path: {path!r}", op="parse")
    return digest, name


def store_hash(path: str) -> str:
    return split_store_path(path)[0]


@dataclass
class NarInfo:
    """Parsed ``.narinfo``."""
    store_path: str
    url: str = ""
    compression: str = "xz"
    file_hash: Optional[Checksum] = None
    file_size: int = 0
    nar_hash: Optional[Checksum] = None
    nar_size: int = 0
    references: List[str] = field(default_factory=list)
    deriver: str = ""
    signatures: List[str] = field(default_factory=list)
    ca: str = ""

    @property
    def hash(self) -> str:
        return store_hash(self.store_path)

    @property
    def name(self) -> str:
        return split_store_path(self.store_path)[1]


def _int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        return 0


def parse_narinfo(data: Union[bytes, str]) -> NarInfo:
    """Parse ``Key: value`` narinfo text.

    Unknown keys and lines without a colon are ignored. ``Compression``
    defaults to ``bzip2`` when absent, as the Nix cache format does.

    Raises:
        FormatError: StorePath is missing.
    """
    values: Dict[str, str] = {}
    sigs: List[str] = []
    for raw in _text(data).splitlines():
        key, sep, value = raw.partition(":")
        if not sep:
            continue
        key, value = key.strip(), value.strip()
        if key == "Sig":
            sigs.append(value)
        else:
            values[key] = value

    if not values.get("StorePath"):
        raise FormatError("missing StorePath in narinfo", op="parse")

    return NarInfo(
        store_path=values["StorePath"],
        url=values.get("URL", ""),
        compression=values.get("Compression") or "bzip2",
        file_hash=Checksum.from_nix(values.get("FileHash", "")),
        file_size=_int(values.get("FileSize", "0")),
        nar_hash=Checksum.from_nix(values.get("NarHash", "")),
        nar_size=_int(values.get("NarSize", "0")),
        references=values.get("References", "").split(),
        deriver=values.get("Deriver", ""),
        signatures=sigs,
        ca=values.get("CA", ""),
    )


@dataclass
class NixPackage:
    """A resolved attribute: ``pname-version`` plus output name -> store path."""
    attribute: str
    name_version: str
    outputs: Dict[str, str]
    pname: str = ""
    version: str = ""
    description: str = ""
    homepage: str = ""
    license: str = ""
    system: str = ""

    def output_hashes(self) -> Dict[str, str]:
        return {name: store_hash(path) for name, path in self.outputs.items()}


def split_name_version(name_version: str) -> Tuple[str, str]:
    """``hello-2.12.1`` -> (``hello``, ``2.12.1``); the version starts at the first ``-<digit>``."""
    parts = name_version.split("-")
    for idx in range(1, len(parts)):
        if parts[idx][:1].isdigit():
            return "-".join(parts[:idx]), "-".join(parts[idx:])
    return name_version, ""


def parse_hydra_build(data: Union[bytes, str, Dict[str, Any]], attribute: str = "") -> NixPackage:
    """Parse Hydra ``/job/<jobset>/<attr>.<system>/latest`` JSON.

    Raises:
        FormatError: no ``buildoutputs`` are present.
    """
    doc = _json(data)
    if not isinstance(doc, dict):
        raise FormatError("Hydra build JSON must be an object", op="parse")
    outputs = {
        name: (out or {}).get("path", "")
        for name, out in (doc.get("buildoutputs") or {}).items()
        if (out or {}).get("path")
    }
    if not outputs:
        raise FormatError("Hydra build has no buildoutputs", op="parse")
    nixname = doc.get("nixname") or ""
    job = doc.get("job") or ""
    system = doc.get("system") or ""
    if not attribute and job:
        attribute = job[: -len(system) - 1] if system and job.endswith("." + system) else job
    pname, version = split_name_version(nixname)
    return NixPackage(
        attribute=attribute or pname,
        name_version=nixname or attribute,
        outputs=outputs,
        pname=pname,
        version=version,
        system=system,
    )


def _hit_package(source: Dict[str, Any]) -> Optional[NixPackage]:
    outputs = {
        name: path for name, path in (source.get("package_outputs") or {}).items()
        if isinstance(path, str) and path
    }
    pname = source.get("package_pname") or ""
    version = source.get("package_version") or ""
    attribute = source.get("package_attr_name") or pname
    if not outputs or not attribute:
        return None
    licenses = source.get("package_license_set") or []
    homepages = source.get("package_homepage") or []
    return NixPackage(
        attribute=attribute,
        name_version=f"{pname}-{version}" if version else pname,
        outputs=outputs,
        pname=pname,
        version=version,
        description=source.get("package_description") or "",
        homepage=homepages[0] if isinstance(homepages, list) and homepages else "",
        license=", ".join(licenses) if isinstance(licenses, list) else str(licenses),
        system=source.get("package_system") or "",
    )


def parse_search_hits(data: Union[bytes, str, Dict[str, Any]]) -> List[NixPackage]:
    """Parse a search.nixos.org Elasticsearch response.

    Hits without outputs (meta-only attributes) are dropped.

    Raises:
        FormatError: the response lacks ``hits.hits``.
    """
    doc = _json(data)
    hits = (doc.get("hits") or {}).get("hits") if isinstance(doc, dict) else None
    if not isinstance(hits, list):
        raise FormatError("search response lacks hits", op="parse")
    packages = []
    for hit in hits:
        pkg = _hit_package((hit or {}).get("_source") or {})
        if pkg is not None:
            packages.append(pkg)
    return packages


def search_query(name: str, system: str, size: int = 1) -> Dict[str, Any]:
    """Elasticsearch query ranking attribute name over pname for one system."""
    return {
        "query": {
            "bool": {
                "must": [
                    {"term": {"type": "package"}},
                    {"term": {"package_system": system}},
                ],
                "should": [
                    {"match": {"package_attr_name": {"query": name, "boost": 3}}},
                    {"match": {"package_pname": {"query": name, "boost": 2}}},
                ],
                "minimum_should_match": 1,
            }
        },
        "size": size,
    }


def parse_store_paths(value: str) -> Dict[str, str]:
    """``out=/nix/store/a-x;dev=/nix/store/b-x-dev`` -> output map.

    A bare path (no ``name=``) is the ``out`` output.
    """
    outputs: Dict[str, str] = {}
    for part in value.split(";"):
        part = part.strip()
        if not part:
            continue
        name, sep, path = part.partition("=")
        if not sep:
            name, path = "out", part
        outputs[name.strip()] = path.strip()
    return outputs


def parse_static_index(data: Union[bytes, str, List[Any], Dict[str, Any]]) -> Dict[str, NixPackage]:
    """Parse the static JSON index into ``attribute -> NixPackage``.

    Accepts a list of ``{Attribute, NameVersion, StorePath}`` objects or a
    mapping keyed by attribute. Entries lacking Attribute or StorePath are
    skipped.

    Raises:
        FormatError: malformed JSON, or a non-empty index with no usable entry.
    """
    doc = _json(data)
    if isinstance(doc, dict):
        items = [dict(value, Attribute=value.get("Attribute") or key) for key, value in doc.items()
                 if isinstance(value, dict)]
    elif isinstance(doc, list):
        items = [item for item in doc if isinstance(item, dict)]
    else:
        raise FormatError("static index must be a list or an object", op="parse")

    index: Dict[str, NixPackage] = {}
    skipped = 0
    for item in items:
        attribute = item.get("Attribute") or ""
        outputs = parse_store_paths(item.get("StorePath") or "")
        if not attribute or not outputs:
            skipped += 1
            continue
        name_version = item.get("NameVersion") or ""
        pname, version = split_name_version(name_version)
        index.setdefault(attribute, NixPackage(
            attribute=attribute,
            name_version=name_version or attribute,
            outputs=outputs,
            pname=pname or attribute,
            version=version,
        ))
    if skipped:
        logger.debug("Skipped %d static index entries without Attribute/StorePath", skipped)
    if not index and doc:
        raise FormatError("static index contains no usable entry", op="parse")
    return index


def select_outputs(package: NixPackage, wanted: Optional[List[str]] = None) -> Dict[str, str]:
    """Restrict ``package.outputs`` to ``wanted`` (all outputs when empty).

    Raises:
        NotFoundError: a requested output does not exist.
    """
    if not wanted:
        return dict(package.outputs)
    missing = [name for name in wanted if name not in package.outputs]
    if missing:
        raise NotFoundError(
            f"output(s) {', '.join(missing)} not available (have {', '.join(sorted(package.outputs))})",
            op="nix",
            package=package.attribute,
        )
    return {name: package.outputs[name] for name in wanted}
