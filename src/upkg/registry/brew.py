"""Homebrew formula JSON and GHCR OCI image index parsing."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from upkg.exceptions import FormatError, NotFoundError
from upkg.models import Checksum, Ecosystem, PackageRecord
from upkg.platform import brew_tag_to_oci_arch, brew_tag_to_oci_os

logger = logging.getLogger(__name__)

BOTTLE_DIGEST_ANNOTATION = "sh.brew.bottle.digest"
REF_NAME_ANNOTATION = "org.opencontainers.image.ref.name"
OCI_INDEX_MEDIA_TYPE = "application/vnd.oci.image.index.v1+json"


def _load(data: Union[bytes, str, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(data, dict):
        return data
    try:
        doc = json.loads(data)
    except ValueError as exc:
        raise FormatError(f"invalid JSON: {exc}", op="parse") from exc
    if not isinstance(doc, dict):
        raise FormatError("expected a JSON object", op="parse")
    return doc


def oci_repository(name: str) -> str:
    """GHCR repository path for a formula: ``openssl@3`` -> ``openssl/3``."""
    return name.replace("@", "/").replace("+", "x")


def pkg_version(stable: str, revision: int) -> str:
    """Keg directory name: ``1.2.3`` or ``1.2.3_1`` when revised."""
    return f"{stable}_{revision}" if revision else stable


def parse_formula(data: Union[bytes, str, Dict[str, Any]], platform: str) -> PackageRecord:
    """Build a record for ``platform`` from formula JSON.

    The locator and checksum come from ``bottle.stable.files[platform]``
    (or the ``all`` bottle). When the formula has no bottle for the
    platform, locator and checksum stay empty and the OCI index decides.

    Raises:
        FormatError: missing ``name`` or ``versions.stable``.
    """
    doc = _load(data)
    name = doc.get("name")
    stable = (doc.get("versions") or {}).get("stable")
    if not name or not stable:
        raise FormatError("formula JSON lacks name or versions.stable", op="parse")

    revision = int(doc.get("revision") or 0)
    bottle = ((doc.get("bottle") or {}).get("stable")) or {}
    files = bottle.get("files") or {}
    chosen_tag = platform if platform in files else ("all" if "all" in files else "")
    entry = files.get(chosen_tag) or {}

    checksum = Checksum("sha256", entry["sha256"].lower()) if entry.get("sha256") else None
    license_value = doc.get("license") or ""
    if isinstance(license_value, dict):
        license_value = json.dumps(license_value, sort_keys=True)

    return PackageRecord(
        name=name,
        version=pkg_version(stable, revision),
        ecosystem=Ecosystem.BREW,
        arch=chosen_tag or platform,
        checksum=checksum,
        locator=entry.get("url", ""),
        depends=tuple(doc.get("dependencies") or ()),
        provides=tuple(a for a in doc.get("aliases") or () if isinstance(a, str)),
        origin="homebrew/core" if doc.get("tap") in (None, "homebrew/core") else str(doc.get("tap")),
        description=doc.get("desc") or "",
        homepage=doc.get("homepage") or "",
        license=license_value,
        extra={
            "full_name": doc.get("full_name") or name,
            "stable": stable,
            "rebuild": int(bottle.get("rebuild") or 0),
            "cellar": entry.get("cellar", ""),
            "bottle_platforms": sorted(files),
            "oci_repository": oci_repository(name),
        },
    )


@dataclass
class BottleManifest:
    """Platform entry selected from an OCI image index."""
    digest: str
    ref_name: str
    architecture: str
    os: str
    size: int = 0


def parse_oci_index(data: Union[bytes, str, Dict[str, Any]], platform: str) -> BottleManifest:
    """Select the manifest for a Homebrew platform tag.

    Preference: a manifest whose ref name ends with ``.<platform>``, then the
    first manifest matching OCI architecture and OS.

    Raises:
        FormatError: no ``manifests`` list.
        NotFoundError: nothing matches the platform or it lacks a digest.
    """
    doc = _load(data)
    manifests = doc.get("manifests")
    if not isinstance(manifests, list):
        raise FormatError("OCI index lacks manifests", op="parse")

    arch = brew_tag_to_oci_arch(platform)
    os_name = brew_tag_to_oci_os(platform)
    by_ref = None
    by_arch = None
    for item in manifests:
        annotations = item.get("annotations") or {}
        plat = item.get("platform") or {}
        ref = annotations.get(REF_NAME_ANNOTATION, "")
        if by_ref is None and ref.endswith(f".{platform}"):
            by_ref = item
        if by_arch is None and plat.get("architecture") == arch and plat.get("os", os_name) == os_name:
            by_arch = item

    chosen = by_ref or by_arch
    if chosen is None:
        raise NotFoundError(f"no bottle manifest for platform {platform}", op="brew")
    annotations = chosen.get("annotations") or {}
    digest = annotations.get(BOTTLE_DIGEST_ANNOTATION, "")
    if not digest:
        raise NotFoundError(f"bottle manifest for {platform} has no {BOTTLE_DIGEST_ANNOTATION}", op="brew")
    plat = chosen.get("platform") or {}
    return BottleManifest(
        digest=digest.split(":", 1)[-1].lower(),
        ref_name=annotations.get(REF_NAME_ANNOTATION, ""),
        architecture=plat.get("architecture", arch),
        os=plat.get("os", os_name),
        size=int(chosen.get("size") or 0),
    )


def blob_url(registry: str, name: str, digest: str) -> str:
    """Bottle blob URL; GHCR answers with a redirect to the storage backend."""
    return f"{registry.rstrip('/')}/{oci_repository(name)}/blobs/sha256:{digest}"


def search_formulae(formulae: List[Dict[str, Any]], query: str, limit: int = 50) -> List[Dict[str, Any]]:
    """Filter the bulk ``formula.json`` listing by name, alias or description."""
    q = query.lower()
    hits = []
    for doc in formulae:
        names = [doc.get("name") or ""] + list(doc.get("aliases") or ())
        if any(q in n.lower() for n in names) or q in (doc.get("desc") or "").lower():
            hits.append(doc)
            if len(hits) >= limit:
                break
    return hits
