"""Manifest validation: structure, node identity, registry and cross-field checks."""

from __future__ import annotations

import difflib
import re
from typing import Any, Dict, List, Tuple

from app.manifest_normalize import MAX_NODE_DEPTH, normalize_manifest
from component_registry import ComponentRegistry, RegistryEntry, is_unversioned
from render_errors import StructuralError


Issue = Dict[str, Any]

ALLOWED_TOP_KEYS = {"id", "name", "description", "version", "owner_id", "components", "theme", "metadata", "features"}
ALLOWED_NODE_KEYS = {"id", "type", "version", "props", "theme", "children"}
ALLOWED_THEME_KEYS = {"brand_id", "tokens"}
ALLOWED_METADATA_KEYS = {"title", "description", "keywords", "slug", "og_image", "favicon", "locale"}

_SEMVER_STRICT_RE = re.compile(r"^\d+\.\d+\.\d+(?:-[0-9A-Za-z.-]+)?(?:\+[0-9A-Za-z.-]+)?$")
_TYPE_KEY_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_.:-]*$")

_PROP_CHECKS = {
    "string": lambda v: isinstance(v, str),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "object": lambda v: isinstance(v, dict),
    "array": lambda v: isinstance(v, list),
}


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {"code": code, "message": message, "path": path, "detail": detail}


def _get(obj: dict, key: str, default=None):
    return obj.get(key, default) if isinstance(obj, dict) else default


def _reject_unknown_keys(warnings: list[Issue], obj: dict, allowed: set[str], path: str) -> None:
    if not isinstance(obj, dict):
        return
    for key in obj.keys():
        if key not in allowed:
            target = f"{path}.{key}" if path != "$" else key
            warnings.append(_issue("MANIFEST_UNKNOWN_KEY", f"Unknown key: {key}", target))


def _result(errors: list[Issue], warnings: list[Issue], suggestions: list[str]) -> dict:
    return {"is_valid": not errors, "errors": errors, "warnings": warnings, "suggestions": suggestions}


def _check_required(manifest: dict, errors: list[Issue]) -> None:
    manifest_id = _get(manifest, "id")
    if not isinstance(manifest_id, str) or not manifest_id.strip():
        errors.append(_issue("MANIFEST_ID_MISSING", "id is required", "id"))
    owner_id = _get(manifest, "owner_id")
    if not isinstance(owner_id, str):
        errors.append(_issue("MANIFEST_OWNER_ID_MISSING", "owner_id is required", "owner_id", {"aliases": ["tenant_id", "ownerId", "tenantId"]}))
    version = _get(manifest, "version")
    if not isinstance(version, str) or not version.strip():
        errors.append(_issue("MANIFEST_VERSION_MISSING", "version is required", "version"))
    components = _get(manifest, "components")
    if components is None:
        errors.append(_issue("MANIFEST_COMPONENTS_MISSING", "components is required", "components"))
    elif not isinstance(components, list):
        errors.append(_issue("MANIFEST_COMPONENTS_MISSING", "components must be a list", "components"))


def _validate_nodes(
    nodes: list,
    path: str,
    errors: list[Issue],
    warnings: list[Issue],
    seen: dict[str, str],
    collected: list[Tuple[str, dict]],
    depth: int = 1,
) -> None:
    if depth > MAX_NODE_DEPTH:
        errors.append(_issue("MANIFEST_NODE_DEPTH", f"components are nested deeper than {MAX_NODE_DEPTH} levels", path))
        return
    for idx, node in enumerate(nodes):
        npath = f"{path}[{idx}]"
        if not isinstance(node, dict):
            errors.append(_issue("MANIFEST_NODE_INVALID", "component node must be an object", npath))
            continue
        node_id = _get(node, "id")
        if not isinstance(node_id, str) or not node_id.strip():
            errors.append(_issue("MANIFEST_NODE_ID_INVALID", "node.id is required", f"{npath}.id"))
        elif node_id in seen:
            errors.append(
                _issue(
                    "MANIFEST_NODE_ID_DUPLICATE",
                    f"Duplicate node id: {node_id}",
                    f"{npath}.id",
                    {"id": node_id, "first_path": seen[node_id]},
                )
            )
        else:
            seen[node_id] = npath
        node_type = _get(node, "type")
        if not isinstance(node_type, str) or not _TYPE_KEY_RE.match(node_type):
            errors.append(_issue("MANIFEST_NODE_TYPE_INVALID", "node.type must be a component type key", f"{npath}.type"))
        version = _get(node, "version")
        if version is not None and not isinstance(version, str):
            errors.append(_issue("MANIFEST_NODE_VERSION_INVALID", "node.version must be a string", f"{npath}.version"))
        props = _get(node, "props")
        if props is not None and not isinstance(props, dict):
            errors.append(_issue("MANIFEST_NODE_PROPS_INVALID", "node.props must be an object", f"{npath}.props"))
        theme = _get(node, "theme")
        if theme is not None and not isinstance(theme, dict):
            warnings.append(_issue("MANIFEST_NODE_THEME_INVALID", "node.theme should be an object of token overrides", f"{npath}.theme"))
        _reject_unknown_keys(warnings, node, ALLOWED_NODE_KEYS, npath)
        collected.append((npath, node))
        children = _get(node, "children")
        if children is None:
            continue
        if not isinstance(children, list):
            errors.append(_issue("MANIFEST_NODE_CHILDREN_INVALID", "node.children must be a list", f"{npath}.children"))
            continue
        _validate_nodes(children, f"{npath}.children", errors, warnings, seen, collected, depth + 1)


def _check_props(entry: RegistryEntry, props: dict, npath: str, warnings: list[Issue]) -> None:
    for prop in entry.prop_schema:
        name = prop["name"]
        value = props.get(name)
        if value is None:
            if prop["required"] and "default" not in prop and name not in entry.default_props:
                warnings.append(_issue("COMPONENT_PROP_REQUIRED", f"{entry.type} requires prop '{name}'", f"{npath}.props.{name}"))
            continue
        check = _PROP_CHECKS.get(prop["type"])
        if check is not None and not check(value):
            warnings.append(
                _issue(
                    "COMPONENT_PROP_TYPE",
                    f"{entry.type}.{name} should be {prop['type']}",
                    f"{npath}.props.{name}",
                    {"expected": prop["type"], "actual": type(value).__name__},
                )
            )
            continue
        options = entry.option_values(name)
        if options is not None and value not in options:
            warnings.append(
                _issue(
                    "COMPONENT_PROP_OPTION",
                    f"{entry.type}.{name} must be one of the allowed options",
                    f"{npath}.props.{name}",
                    {"allowed": options, "actual": value},
                )
            )


def _check_registry(
    collected: list[Tuple[str, dict]],
    registry: ComponentRegistry,
    warnings: list[Issue],
    suggestions: list[str],
) -> None:
    known_types = registry.types()
    unpinned: list[str] = []
    for npath, node in collected:
        node_type = _get(node, "type")
        if not isinstance(node_type, str):
            continue
        version = _get(node, "version")
        if version is not None and not isinstance(version, str):
            continue
        if not registry.has(node_type):
            close = difflib.get_close_matches(node_type, known_types, n=1, cutoff=0.6)
            detail = {"type": node_type, "did_you_mean": close[0] if close else None}
            warnings.append(
                _issue("COMPONENT_TYPE_UNKNOWN", f"Component type not registered, will render as fallback: {node_type}", f"{npath}.type", detail)
            )
            if close:
                suggestions.append(f"Component type '{node_type}' is not registered. Did you mean '{close[0]}'?")
            continue
        if not is_unversioned(version) and not registry.has(node_type, version):
            warnings.append(
                _issue(
                    "COMPONENT_VERSION_UNKNOWN",
                    f"{node_type} has no registered version {version}, will render as fallback",
                    f"{npath}.version",
                    {"type": node_type, "version": version, "registered": registry.versions(node_type)},
                )
            )
            continue
        if is_unversioned(version) and len(registry.versions(node_type)) > 1:
            unpinned.append(node_type)
        entry = registry.get_entry(node_type, version)
        if entry.deprecated:
            warnings.append(
                _issue(
                    "COMPONENT_DEPRECATED",
                    entry.deprecated_message or f"{node_type}@{entry.version} is deprecated",
                    f"{npath}.type",
                    {"type": node_type, "version": entry.version},
                )
            )
        props = _get(node, "props")
        _check_props(entry, props if isinstance(props, dict) else {}, npath, warnings)
        children = _get(node, "children")
        if isinstance(children, list) and children and not entry.container:
            warnings.append(
                _issue("COMPONENT_CHILDREN_IGNORED", f"{node_type} is not a container; children are rendered but not placed by the component", f"{npath}.children")
            )
    for node_type in sorted(set(unpinned)):
        suggestions.append(f"Pin a version for '{node_type}' components; several versions are registered.")


def _check_cross_fields(manifest: dict, errors: list[Issue], warnings: list[Issue], suggestions: list[str]) -> None:
    owner_id = _get(manifest, "owner_id")
    if isinstance(owner_id, str) and not owner_id.strip():
        errors.append(_issue("MANIFEST_OWNER_ID_EMPTY", "owner_id must not be empty", "owner_id"))
    version = _get(manifest, "version")
    if isinstance(version, str) and version.strip() and not _SEMVER_STRICT_RE.match(version):
        warnings.append(_issue("MANIFEST_VERSION_FORMAT", "version should be a semantic version (major.minor.patch)", "version"))
    if _get(manifest, "name") is None:
        suggestions.append("Add a human-readable name to the manifest.")

    theme = _get(manifest, "theme")
    if theme is not None:
        if not isinstance(theme, dict):
            warnings.append(_issue("MANIFEST_THEME_INVALID", "theme should be an object", "theme"))
        else:
            _reject_unknown_keys(warnings, theme, ALLOWED_THEME_KEYS, "theme")
            brand_id = _get(theme, "brand_id")
            if brand_id is not None and not isinstance(brand_id, str):
                warnings.append(_issue("MANIFEST_THEME_INVALID", "theme.brand_id should be a string", "theme.brand_id"))
            tokens = _get(theme, "tokens")
            if tokens is not None and not isinstance(tokens, dict):
                warnings.append(_issue("MANIFEST_THEME_INVALID", "theme.tokens should be an object", "theme.tokens"))

    metadata = _get(manifest, "metadata")
    if metadata is None:
        suggestions.append("Add metadata.title and metadata.description for search engines and link previews.")
    elif not isinstance(metadata, dict):
        warnings.append(_issue("MANIFEST_METADATA_INVALID", "metadata should be an object", "metadata"))
    else:
        _reject_unknown_keys(warnings, metadata, ALLOWED_METADATA_KEYS, "metadata")
        if not _get(metadata, "title"):
            suggestions.append("Add metadata.title for search engines and link previews.")
        keywords = _get(metadata, "keywords")
        if keywords is not None and (not isinstance(keywords, list) or not all(isinstance(k, str) for k in keywords)):
            warnings.append(_issue("MANIFEST_METADATA_INVALID", "metadata.keywords should be a list of strings", "metadata.keywords"))

    features = _get(manifest, "features")
    if features is not None:
        if not isinstance(features, dict):
            warnings.append(_issue("MANIFEST_FEATURES_INVALID", "features should be an object of flags", "features"))
        else:
            for key, value in features.items():
                if not isinstance(value, bool):
                    warnings.append(_issue("MANIFEST_FEATURES_INVALID", "feature flags should be booleans", f"features.{key}"))

    _reject_unknown_keys(warnings, manifest, ALLOWED_TOP_KEYS, "$")


def validate_manifest(manifest: Any, registry: ComponentRegistry | None = None) -> dict:
    """Validate a normalized manifest. Never raises.

    Errors block rendering. Registry findings are warnings only: unknown
    types and versions render as fallback nodes.
    """
    errors: list[Issue] = []
    warnings: list[Issue] = []
    suggestions: list[str] = []

    if not isinstance(manifest, dict):
        errors.append(_issue("MANIFEST_INVALID", "manifest must be an object", None))
        return _result(errors, warnings, suggestions)

    _check_required(manifest, errors)

    collected: list[Tuple[str, dict]] = []
    components = _get(manifest, "components")
    if isinstance(components, list):
        _validate_nodes(components, "components", errors, warnings, {}, collected)
        if not components:
            warnings.append(_issue("MANIFEST_COMPONENTS_EMPTY", "manifest has no components", "components"))

    if registry is not None:
        _check_registry(collected, registry, warnings, suggestions)

    _check_cross_fields(manifest, errors, warnings, suggestions)
    return _result(errors, warnings, suggestions)


def validate_manifest_raw(raw: Any, registry: ComponentRegistry | None = None) -> tuple[Any, dict]:
    normalized = normalize_manifest(raw)
    return normalized, validate_manifest(normalized, registry=registry)


def ensure_valid(manifest: Any, registry: ComponentRegistry | None = None) -> dict:
    result = validate_manifest(manifest, registry=registry)
    if not result["is_valid"]:
        raise StructuralError("Manifest failed validation", issues=result["errors"])
    return result
