"""Manifest hashing and cache keys."""

from __future__ import annotations

import hashlib
from typing import Any

from .canonical_json import canonical_dumps


def manifest_hash(manifest_obj: Any) -> str:
    """Return the canonical SHA-256 content hash for a manifest object."""
    data = canonical_dumps(manifest_obj).encode("utf-8")
    return "sha256:" + hashlib.sha256(data).hexdigest()


def manifest_key(manifest_obj: dict) -> tuple[str, str]:
    """(id, version) pair manifests are cached and stored under."""
    if not isinstance(manifest_obj, dict):
        raise TypeError("manifest must be an object")
    manifest_id = manifest_obj.get("id")
    version = manifest_obj.get("version")
    if not isinstance(manifest_id, str) or not manifest_id:
        raise ValueError("manifest.id is required")
    if not isinstance(version, str) or not version:
        raise ValueError("manifest.version is required")
    return manifest_id, version
