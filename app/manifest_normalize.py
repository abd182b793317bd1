"""Manifest normalization for legacy shapes (camelCase keys, owner aliases)."""

from __future__ import annotations

from typing import Any


OWNER_ALIASES = ("owner_id", "tenant_id", "ownerId", "tenantId")
THEME_KEYS = {"brand_id", "tokens"}
# deepest nesting the validator accepts; deeper children are left as given
MAX_NODE_DEPTH = 12


def _normalize_theme(theme: Any) -> Any:
    if not isinstance(theme, dict):
        return theme
    item = dict(theme)
    if "brandId" in item and "brand_id" not in item:
        item["brand_id"] = item.pop("brandId")
    if "tokens" not in item:
        loose = {k: v for k, v in item.items() if k not in THEME_KEYS}
        if loose:
            item = {k: v for k, v in item.items() if k in THEME_KEYS}
            item["tokens"] = loose
    return item


def _normalize_nodes(nodes: Any, depth: int = 1) -> Any:
    if not isinstance(nodes, list) or depth > MAX_NODE_DEPTH + 1:
        return nodes
    normalized = []
    for node in nodes:
        if not isinstance(node, dict):
            normalized.append(node)
            continue
        item = dict(node)
        if "type" not in item:
            kind = item.get("kind") or item.get("component")
            if kind is not None:
                item["type"] = kind
        item.pop("kind", None)
        item.pop("component", None)
        if "props" not in item and isinstance(item.get("properties"), dict):
            item["props"] = item.pop("properties")
        if "theme" in item:
            item["theme"] = _normalize_theme(item["theme"])
        if "children" in item:
            item["children"] = _normalize_nodes(item["children"], depth + 1)
        normalized.append(item)
    return normalized


def normalize_manifest(raw: Any) -> Any:
    """Return a normalized copy of ``raw``; non-objects pass through unchanged.

    The first present owner alias wins. Node ``kind``/``component`` become
    ``type``; a theme without a ``tokens`` block gets its loose keys moved
    into one.
    """
    if not isinstance(raw, dict):
        return raw

    normalized = {k: v for k, v in raw.items() if k not in OWNER_ALIASES}
    for alias in OWNER_ALIASES:
        if raw.get(alias) is not None:
            normalized["owner_id"] = raw[alias]
            break
    if "components" in raw:
        normalized["components"] = _normalize_nodes(raw["components"])
    if "theme" in raw:
        normalized["theme"] = _normalize_theme(raw["theme"])
    return normalized
