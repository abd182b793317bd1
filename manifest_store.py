"""In-memory manifest store keyed by (id, version), plus the patch-op pipeline."""

from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Tuple

from component_registry import is_unversioned, version_sort_key
from pagekit.manifest_hash import manifest_hash, manifest_key
from pagekit.selector_path import SelectorPathError, has_selector, resolve_selector_path, split_pointer, decode_segment


logger = logging.getLogger("pagekit.store")

Issue = Dict[str, Any]

OPS = {"add", "remove", "replace", "move", "copy", "test"}


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {"code": code, "message": message, "path": path, "detail": detail}


@dataclass
class ManifestPatchError(Exception):
    code: str
    message: str
    path: str | None = None

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return f"{self.code}: {self.message}"

    def to_issue(self) -> Issue:
        return _issue(self.code, self.message, self.path)


def _parse_pointer(pointer: str) -> List[str]:
    return [decode_segment(p) for p in split_pointer(pointer)]


def _list_index(container: list, token: str, *, allow_end: bool = False) -> int:
    if not token.isdigit():
        raise IndexError("Invalid list index")
    idx = int(token)
    limit = len(container) if allow_end else len(container) - 1
    if idx < 0 or idx > limit:
        raise IndexError("List index out of range")
    return idx


def _walk(doc: Any, tokens: List[str]) -> Any:
    current = doc
    for token in tokens:
        if isinstance(current, dict):
            if token not in current:
                raise KeyError("Missing object key")
            current = current[token]
        elif isinstance(current, list):
            current = current[_list_index(current, token)]
        else:
            raise TypeError("Cannot traverse into non-container")
    return current


def _get_container_and_token(doc: Any, pointer: str) -> Tuple[Any, str]:
    tokens = _parse_pointer(pointer)
    if not tokens:
        raise ValueError("Operation on document root is not supported")
    return _walk(doc, tokens[:-1]), tokens[-1]


def _apply_add(doc: Any, path: str, value: Any) -> None:
    container, token = _get_container_and_token(doc, path)
    if isinstance(container, dict):
        container[token] = value
    elif isinstance(container, list):
        if token == "-":
            container.append(value)
        else:
            container.insert(_list_index(container, token, allow_end=True), value)
    else:
        raise TypeError("Cannot add into non-container")


def _apply_remove(doc: Any, path: str) -> Any:
    container, token = _get_container_and_token(doc, path)
    if isinstance(container, dict):
        if token not in container:
            raise KeyError("Missing object key")
        return container.pop(token)
    if isinstance(container, list):
        return container.pop(_list_index(container, token))
    raise TypeError("Cannot remove from non-container")


def _apply_replace(doc: Any, path: str, value: Any) -> None:
    container, token = _get_container_and_token(doc, path)
    if isinstance(container, dict):
        if token not in container:
            raise KeyError("Missing object key")
        container[token] = value
    elif isinstance(container, list):
        container[_list_index(container, token)] = value
    else:
        raise TypeError("Cannot replace in non-container")


def _resolve_path(doc: Any, path: Any, *, leaf_may_be_new: bool) -> str:
    if not isinstance(path, str) or (path and not path.startswith("/")):
        raise ValueError("path must be a JSON Pointer string")
    if not has_selector(path):
        return path
    return resolve_selector_path(doc, path, allow_missing_leaf=leaf_may_be_new)


def resolve_ops(doc: Any, ops: List[dict]) -> List[dict]:
    """Replace ``@[id=...]`` selector segments with numeric indices.

    Each op resolves against the document as left by the previous ops.
    """
    work = copy.deepcopy(doc)
    resolved = []
    for op in ops:
        item = _resolve_op(work, op)
        _apply_one(work, item)
        resolved.append(item)
    return resolved


def _resolve_op(doc: Any, op: Any) -> dict:
    if not isinstance(op, dict):
        raise ValueError("op must be an object")
    name = op.get("op")
    if name not in OPS:
        raise ValueError(f"Unsupported op: {name!r}")
    item = dict(op)
    item["path"] = _resolve_path(doc, op.get("path"), leaf_may_be_new=name in ("add", "move", "copy"))
    if name in ("move", "copy"):
        item["from"] = _resolve_path(doc, op.get("from"), leaf_may_be_new=False)
    elif name in ("add", "replace", "test") and "value" not in op:
        raise ValueError(f"{name} requires value")
    return item


def _apply_one(doc: Any, op: dict) -> None:
    name = op["op"]
    if name == "add":
        _apply_add(doc, op["path"], copy.deepcopy(op["value"]))
    elif name == "remove":
        _apply_remove(doc, op["path"])
    elif name == "replace":
        _apply_replace(doc, op["path"], copy.deepcopy(op["value"]))
    elif name == "move":
        if op["path"].startswith(op["from"] + "/"):
            raise ValueError("Cannot move a value into itself")
        _apply_add(doc, op["path"], _apply_remove(doc, op["from"]))
    elif name == "copy":
        _apply_add(doc, op["path"], copy.deepcopy(_walk(doc, _parse_pointer(op["from"]))))
    elif name == "test":
        if _walk(doc, _parse_pointer(op["path"])) != op["value"]:
            raise ValueError("Test operation failed")


def apply_ops(manifest: dict, ops: List[dict]) -> dict:
    """Return a new manifest with ``ops`` applied; ``manifest`` is untouched.

    Raises ``ManifestPatchError`` naming the failing op index.
    """
    if not isinstance(ops, list):
        raise ManifestPatchError("PATCH_INVALID", "ops must be a list", "ops")
    doc = copy.deepcopy(manifest)
    for idx, op in enumerate(ops):
        try:
            item = _resolve_op(doc, op)
        except SelectorPathError as exc:
            raise ManifestPatchError("PATCH_SELECTOR_FAILED", str(exc), f"ops[{idx}]") from exc
        except ValueError as exc:
            raise ManifestPatchError("PATCH_INVALID", str(exc), f"ops[{idx}]") from exc
        try:
            _apply_one(doc, item)
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            message = exc.args[0] if exc.args else type(exc).__name__
            raise ManifestPatchError("PATCH_APPLY_FAILED", str(message), f"ops[{idx}]") from exc
    return doc


def preview_ops(manifest: dict, ops: List[dict]) -> dict:
    """Non-raising form of ``apply_ops`` with the resolved op list."""
    try:
        new_manifest = apply_ops(manifest, ops)
        resolved = resolve_ops(manifest, ops)
    except ManifestPatchError as exc:
        return {"ok": False, "errors": [exc.to_issue()], "warnings": [], "manifest": None, "resolved_ops": None}
    return {"ok": True, "errors": [], "warnings": [], "manifest": new_manifest, "resolved_ops": resolved}


class ManifestStore:
    """Storage collaborator: ``get(id, version)`` and ``put(manifest)``.

    Stored manifests are deep copies; callers never share state with the
    store. Re-putting an identical document is a no-op.
    """

    def __init__(self) -> None:
        self._records: Dict[str, Dict[str, dict]] = {}
        self._audit: Dict[str, List[dict]] = {}

    def get(self, manifest_id: str, version: str | None = None) -> dict | None:
        if is_unversioned(version):
            version = self.latest(manifest_id)
            if version is None:
                return None
        record = self._records.get(manifest_id, {}).get(version)
        if record is None:
            return None
        return copy.deepcopy(record["manifest"])

    def put(self, manifest: dict, actor: dict | None = None, reason: str | None = None) -> str:
        manifest_id, version = manifest_key(manifest)
        manifest_copy = copy.deepcopy(manifest)
        new_hash = manifest_hash(manifest_copy)
        versions = self._records.setdefault(manifest_id, {})
        existing = versions.get(version)
        if existing is not None and existing["manifest_hash"] == new_hash:
            return manifest_id
        versions[version] = {
            "manifest_id": manifest_id,
            "version": version,
            "manifest_hash": new_hash,
            "manifest": manifest_copy,
            "created_at": _now(),
            "created_by": actor,
            "reason": reason,
        }
        action = "replace" if existing is not None else "put"
        self._audit.setdefault(manifest_id, []).insert(
            0,
            {
                "audit_id": str(uuid.uuid4()),
                "manifest_id": manifest_id,
                "version": version,
                "action": action,
                "from_hash": existing["manifest_hash"] if existing else None,
                "to_hash": new_hash,
                "actor": actor,
                "reason": reason,
                "at": _now(),
            },
        )
        logger.info("manifest_stored id=%s version=%s action=%s hash=%s", manifest_id, version, action, new_hash)
        return manifest_id

    def versions(self, manifest_id: str) -> list[str]:
        return sorted(self._records.get(manifest_id, {}), key=version_sort_key)

    def latest(self, manifest_id: str) -> str | None:
        versions = self.versions(manifest_id)
        return versions[-1] if versions else None

    def get_hash(self, manifest_id: str, version: str) -> str | None:
        record = self._records.get(manifest_id, {}).get(version)
        return record["manifest_hash"] if record else None

    def history(self, manifest_id: str) -> list[dict]:
        return list(self._audit.get(manifest_id, []))

    def list_manifests(self) -> list[dict]:
        items = []
        for manifest_id in sorted(self._records):
            items.append({"id": manifest_id, "versions": self.versions(manifest_id), "latest": self.latest(manifest_id)})
        return items
