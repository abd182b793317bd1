"""Manifest exchange format: deterministic JSON text.

Exported text has sorted keys, two-space indentation, UTF-8 characters kept
as-is and a trailing newline, so ``export_manifest(import_manifest(s)) == s``
for every exported document.
"""

from __future__ import annotations

import json
from typing import Any

from app.manifest_normalize import normalize_manifest
from app.manifest_validate import ensure_valid, validate_manifest
from component_registry import ComponentRegistry
from pagekit.canonical_json import canonical_dumps, pretty_dumps
from render_errors import StructuralError, make_issue


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid in a manifest document")


def _parse_error(message: str, detail: dict | None = None) -> StructuralError:
    return StructuralError("Manifest document could not be parsed", issues=[make_issue("MANIFEST_PARSE_ERROR", message, None, detail)])


def export_manifest(manifest: dict, *, minify: bool = False, registry: ComponentRegistry | None = None) -> str:
    """Serialize a valid manifest; raises ``StructuralError`` when invalid."""
    normalized = normalize_manifest(manifest)
    ensure_valid(normalized, registry=registry)
    try:
        return canonical_dumps(normalized) if minify else pretty_dumps(normalized)
    except (TypeError, ValueError) as exc:
        raise StructuralError("Manifest is not JSON-compatible", issues=[make_issue("MANIFEST_NOT_SERIALIZABLE", str(exc))]) from exc


def import_manifest(text: str | bytes, *, validate: bool = False, registry: ComponentRegistry | None = None) -> dict:
    """Parse exchange text back into a manifest dict.

    With ``validate`` the parsed document must also pass validation.
    """
    if isinstance(text, (bytes, bytearray)):
        try:
            text = bytes(text).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise _parse_error(f"document is not UTF-8: {exc.reason}") from exc
    if not isinstance(text, str):
        raise _parse_error("document must be text")
    try:
        data = json.loads(text, parse_constant=_reject_constant)
    except json.JSONDecodeError as exc:
        raise _parse_error(f"{exc.msg} at line {exc.lineno} column {exc.colno}", {"line": exc.lineno, "column": exc.colno}) from exc
    except ValueError as exc:
        raise _parse_error(str(exc)) from exc
    if not isinstance(data, dict):
        raise _parse_error("document root must be an object")
    if validate:
        result = validate_manifest(normalize_manifest(data), registry=registry)
        if not result["is_valid"]:
            raise StructuralError("Imported manifest failed validation", issues=result["errors"])
    return data
