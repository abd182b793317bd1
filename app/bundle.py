"""Bundle export: manifest + local assets + generated component docs in one zip.

Building a bundle is a pure data transform. Remote asset URLs are listed in
``export-info.json`` but never fetched.
"""

from __future__ import annotations

import io
import json
import posixpath
import zipfile
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Tuple

from app.manifest_codec import import_manifest
from app.manifest_normalize import normalize_manifest
from app.manifest_validate import ensure_valid
from app.template_render import render_template
from component_registry import ComponentRegistry, is_unversioned
from pagekit.canonical_json import pretty_dumps
from pagekit.manifest_hash import manifest_hash
from pagekit.selector_path import iter_node_pointers
from render_errors import StructuralError, make_issue


BUNDLE_FORMAT = "pagekit-bundle"
BUNDLE_FORMAT_VERSION = "1"
MANIFEST_NAME = "manifest.json"
INFO_NAME = "export-info.json"
README_NAME = "README.md"
ASSET_DIR = "assets/"

# fixed so identical inputs produce identical archives
_ZIP_DATE = (1980, 1, 1, 0, 0, 0)

ASSET_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp", ".ico", ".avif", ".css", ".js", ".woff", ".woff2", ".ttf", ".pdf", ".mp4", ".webm"}
METADATA_ASSET_KEYS = ("og_image", "favicon")

README_TEMPLATE = """# {{ name }}

- Manifest id: `{{ manifest_id }}`
- Version: `{{ version }}`
- Owner: `{{ owner_id }}`
- Content hash: `{{ hash }}`
- Exported at: {{ exported_at }}
{% if description %}

{{ description }}
{% endif %}

## Components used

| Type | Version | Name | Category | Count |
| --- | --- | --- | --- | --- |
{% for comp in components %}
| `{{ comp['type'] }}` | {{ comp['version'] }} | {{ comp['name'] }} | {{ comp['category'] }} | {{ comp['count'] }} |
{% endfor %}
{% for comp in components %}

### {{ comp['name'] }} (`{{ comp['type'] }}`)
{% if not comp['registered'] %}

Not registered at export time; it renders as a fallback placeholder.
{% else %}
{% if comp['description'] %}

{{ comp['description'] }}
{% endif %}
{% if comp['deprecated'] %}

**Deprecated.** {{ comp['deprecated_message'] | default('', true) }}
{% endif %}
{% if comp['props'] %}

| Prop | Type | Required | Default |
| --- | --- | --- | --- |
{% for prop in comp['props'] %}
| `{{ prop['name'] }}` | {{ prop['type'] }} | {{ 'yes' if prop['required'] else 'no' }} | {{ prop['default'] }} |
{% endfor %}
{% endif %}
{% endif %}
{% endfor %}

## Assets

{% if assets['included'] %}
Included under `assets/`:
{% for ref in assets['included'] %}
- `{{ ref }}`
{% endfor %}
{% else %}
No local assets included.
{% endif %}
{% if assets['missing'] %}

Referenced but not supplied:
{% for ref in assets['missing'] %}
- `{{ ref }}`
{% endfor %}
{% endif %}
{% if assets['remote'] %}

Remote references (not bundled):
{% for ref in assets['remote'] %}
- {{ ref }}
{% endfor %}
{% endif %}
"""


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _looks_like_asset(value: Any) -> bool:
    if not isinstance(value, str) or not value or len(value) > 2048:
        return False
    path = value.split("?", 1)[0].split("#", 1)[0]
    return posixpath.splitext(path)[1].lower() in ASSET_EXTENSIONS


def _is_remote(ref: str) -> bool:
    return ref.startswith(("http://", "https://", "//", "data:"))


def _local_ref(ref: str) -> str | None:
    cleaned = posixpath.normpath(ref.split("?", 1)[0].split("#", 1)[0].lstrip("/"))
    if cleaned in ("", ".") or cleaned.startswith(".."):
        return None
    return cleaned


def _walk_strings(value: Any) -> Iterator[str]:
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from _walk_strings(item)
    elif isinstance(value, list):
        for item in value:
            yield from _walk_strings(item)


def collect_asset_refs(manifest: dict) -> Tuple[list[str], list[str]]:
    """(local, remote) asset references found in props and metadata."""
    found: list[str] = []
    for _, node in iter_node_pointers(manifest.get("components")):
        found.extend(s for s in _walk_strings(node.get("props")) if _looks_like_asset(s))
    metadata = manifest.get("metadata") if isinstance(manifest.get("metadata"), dict) else {}
    for key in METADATA_ASSET_KEYS:
        if _looks_like_asset(metadata.get(key)):
            found.append(metadata[key])
    local: set[str] = set()
    remote: set[str] = set()
    for ref in found:
        if _is_remote(ref):
            remote.add(ref)
            continue
        cleaned = _local_ref(ref)
        if cleaned is not None:
            local.add(cleaned)
    return sorted(local), sorted(remote)


def components_used(manifest: dict, registry: ComponentRegistry | None = None) -> list[dict]:
    counts: Dict[Tuple[str, str], int] = {}
    for _, node in iter_node_pointers(manifest.get("components")):
        ctype = node.get("type")
        version = node.get("version")
        entry = registry.get_entry(ctype, version) if registry is not None and isinstance(ctype, str) else None
        if entry is not None:
            version = entry.version
        elif is_unversioned(version):
            version = "latest"
        key = (ctype, version)
        counts[key] = counts.get(key, 0) + 1
    items = []
    for (ctype, version), count in sorted(counts.items()):
        entry = registry.get_entry(ctype, version) if registry is not None and version != "latest" else None
        described = entry.describe() if entry is not None else {}
        items.append(
            {
                "type": ctype,
                "version": version,
                "count": count,
                "registered": entry is not None,
                "name": described.get("name") or ctype,
                "description": described.get("description"),
                "category": described.get("category") or "unknown",
                "deprecated": described.get("deprecated", False),
                "deprecated_message": described.get("deprecated_message"),
                "props": [
                    {"name": p["name"], "type": p["type"], "required": p["required"], "default": json.dumps(p.get("default")) if "default" in p else ""}
                    for p in described.get("props", [])
                ],
            }
        )
    return items


def _write(zf: zipfile.ZipFile, name: str, data: bytes) -> None:
    info = zipfile.ZipInfo(name, date_time=_ZIP_DATE)
    info.compress_type = zipfile.ZIP_DEFLATED
    info.external_attr = 0o644 << 16
    zf.writestr(info, data)


def build_bundle(
    manifest: dict,
    *,
    registry: ComponentRegistry | None = None,
    assets: Dict[str, bytes] | None = None,
    exported_at: str | None = None,
) -> bytes:
    """Zip archive with the manifest, export info, README and supplied assets.

    ``assets`` maps a reference as it appears in the manifest to its bytes.
    Raises ``StructuralError`` when the manifest is invalid.
    """
    normalized = normalize_manifest(manifest)
    ensure_valid(normalized, registry=registry)
    exported_at = exported_at or _now()
    supplied = {}
    for ref, content in (assets or {}).items():
        cleaned = _local_ref(ref) if isinstance(ref, str) else None
        if cleaned is None:
            raise ValueError(f"Invalid asset reference: {ref!r}")
        if not isinstance(content, (bytes, bytearray)):
            raise ValueError(f"Asset content must be bytes: {ref}")
        supplied[cleaned] = bytes(content)

    local, remote = collect_asset_refs(normalized)
    included = sorted(ref for ref in local if ref in supplied)
    missing = sorted(ref for ref in local if ref not in supplied)
    components = components_used(normalized, registry)
    asset_info = {"included": included, "missing": missing, "remote": remote}
    info = {
        "format": BUNDLE_FORMAT,
        "format_version": BUNDLE_FORMAT_VERSION,
        "manifest_id": normalized["id"],
        "manifest_version": normalized["version"],
        "manifest_hash": manifest_hash(normalized),
        "exported_at": exported_at,
        "components": [{k: comp[k] for k in ("type", "version", "count", "registered")} for comp in components],
        "assets": asset_info,
    }
    readme = render_template(
        README_TEMPLATE,
        {
            "name": normalized.get("name") or normalized["id"],
            "manifest_id": normalized["id"],
            "version": normalized["version"],
            "owner_id": normalized["owner_id"],
            "hash": info["manifest_hash"],
            "exported_at": exported_at,
            "description": normalized.get("description"),
            "components": components,
            "assets": asset_info,
        },
        strict=False,
    )

    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        _write(zf, MANIFEST_NAME, pretty_dumps(normalized).encode("utf-8"))
        _write(zf, INFO_NAME, pretty_dumps(info).encode("utf-8"))
        _write(zf, README_NAME, readme.encode("utf-8"))
        for ref in included:
            _write(zf, ASSET_DIR + ref, supplied[ref])
    return buf.getvalue()


def read_bundle(data: bytes) -> dict:
    """Inverse of ``build_bundle``: manifest, info, readme and assets."""
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            names = set(zf.namelist())
            for required in (MANIFEST_NAME, INFO_NAME):
                if required not in names:
                    raise StructuralError("Bundle is incomplete", issues=[make_issue("BUNDLE_INVALID", f"missing {required}", required)])
            manifest = import_manifest(zf.read(MANIFEST_NAME))
            info = json.loads(zf.read(INFO_NAME).decode("utf-8"))
            readme = zf.read(README_NAME).decode("utf-8") if README_NAME in names else ""
            assets = {name[len(ASSET_DIR):]: zf.read(name) for name in sorted(names) if name.startswith(ASSET_DIR)}
    except zipfile.BadZipFile as exc:
        raise StructuralError("Bundle is not a zip archive", issues=[make_issue("BUNDLE_INVALID", str(exc))]) from exc
    return {"manifest": manifest, "info": info, "readme": readme, "assets": assets}
