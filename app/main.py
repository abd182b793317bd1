"""FastAPI boundary for the PageKit rendering engine."""

from __future__ import annotations

import os
import sys
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import HTMLResponse, JSONResponse, Response

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


_load_env_file(ROOT / "app" / ".env")

import base64
import binascii
import logging

from app.bundle import build_bundle
from app.components import register_default_components
from app.manifest_codec import export_manifest, import_manifest
from app.manifest_render import render_manifest
from app.manifest_validate import validate_manifest_raw
from app.page_html import output_to_html
from component_registry import ComponentRegistry
from manifest_store import ManifestStore
from pagekit.manifest_hash import manifest_hash
from render_errors import StructuralError
from theme_resolver import THEME_TIMEOUT_S, HttpThemeSource, ThemeResolver


logger = logging.getLogger("pagekit.api")
logging.basicConfig(level=logging.INFO)

THEME_SOURCE_URL = os.getenv("PAGEKIT_THEME_SOURCE_URL", "").strip()


def _error_response(code: str, message: str, path: str | None = None, detail: dict | None = None, status: int = 400) -> JSONResponse:
    body = {
        "ok": False,
        "errors": [{"code": code, "message": message, "path": path, "detail": detail}],
        "warnings": [],
    }
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _ok_response(payload: dict, warnings: list | None = None, status: int = 200) -> JSONResponse:
    body = {"ok": True, **payload, "errors": [], "warnings": warnings or []}
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _validation_response(errors: list, warnings: list, status: int = 400, data: dict | None = None) -> JSONResponse:
    body = {"ok": False, "errors": errors, "warnings": warnings, "data": data}
    return JSONResponse(jsonable_encoder(body), status_code=status)


async def _safe_json(request: Request) -> dict | None:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _manifest_from(body: dict) -> object:
    return body.get("manifest") if "manifest" in body else body


def _query_flag(request: Request, name: str) -> bool:
    return request.query_params.get(name, "").strip().lower() in ("1", "true", "yes")


def _default_theme_resolver() -> ThemeResolver:
    source = HttpThemeSource(THEME_SOURCE_URL, timeout=THEME_TIMEOUT_S) if THEME_SOURCE_URL else None
    return ThemeResolver(source)


def create_app(
    registry: ComponentRegistry | None = None,
    theme_resolver: ThemeResolver | None = None,
    store: ManifestStore | None = None,
) -> FastAPI:
    if registry is None:
        registry = ComponentRegistry()
        register_default_components(registry)
    theme_resolver = theme_resolver or _default_theme_resolver()
    store = store or ManifestStore()

    app = FastAPI(title="PageKit")
    app.state.registry = registry
    app.state.theme_resolver = theme_resolver
    app.state.store = store

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("request_failed path=%s", request.url.path)
        return _error_response("INTERNAL_ERROR", "Unexpected server error", detail={"error": str(exc)}, status=500)

    @app.get("/health")
    async def health() -> dict:
        return {"ok": True}

    @app.get("/components")
    async def list_components(request: Request):
        category = request.query_params.get("category")
        items = registry.by_category(category) if category else registry.list_components()
        return _ok_response({"data": {"components": items, "stats": registry.stats()}})

    @app.post("/manifests/validate")
    async def validate_route(request: Request):
        body = await _safe_json(request)
        if body is None:
            return _error_response("INVALID_JSON", "Request body must be a JSON object", status=400)
        normalized, result = validate_manifest_raw(_manifest_from(body), registry=registry)
        data = {"is_valid": result["is_valid"], "suggestions": result["suggestions"]}
        if not result["is_valid"]:
            return _validation_response(result["errors"], result["warnings"], status=200, data=data)
        if _query_flag(request, "include_normalized"):
            data["normalized"] = normalized
        return _ok_response({"data": data}, result["warnings"])

    @app.post("/manifests/render")
    async def render_route(request: Request):
        body = await _safe_json(request)
        if body is None:
            return _error_response("INVALID_JSON", "Request body must be a JSON object", status=400)
        manifest = _manifest_from(body)
        generation = body.get("generation") if isinstance(body.get("generation"), int) else 0
        output = await render_manifest(manifest, registry, theme_resolver, generation=generation)
        if request.query_params.get("format") == "html":
            metadata = manifest.get("metadata") if isinstance(manifest, dict) else None
            status = 422 if output["blocked"] else 200
            return HTMLResponse(output_to_html(output, metadata), status_code=status)
        if output["blocked"]:
            return _validation_response(output["errors"], output["warnings"], status=422, data={"output": output})
        return _ok_response({"data": output}, output["warnings"])

    @app.post("/manifests/export")
    async def export_route(request: Request):
        body = await _safe_json(request)
        if body is None:
            return _error_response("INVALID_JSON", "Request body must be a JSON object", status=400)
        manifest = _manifest_from(body)
        try:
            text = export_manifest(manifest, minify=_query_flag(request, "minify"), registry=registry)
        except StructuralError as exc:
            return _validation_response(exc.issues, [], status=400)
        filename = f"{manifest.get('id')}-{manifest.get('version')}.json"
        headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
        return Response(content=text.encode("utf-8"), media_type="application/json", headers=headers)

    @app.post("/manifests/import")
    async def import_route(request: Request):
        raw = await request.body()
        try:
            manifest = import_manifest(raw, validate=True, registry=registry)
        except StructuralError as exc:
            return _validation_response(exc.issues, [], status=400)
        return _ok_response({"data": {"manifest": manifest, "manifest_hash": manifest_hash(manifest)}})

    @app.post("/manifests/bundle")
    async def bundle_route(request: Request):
        body = await _safe_json(request)
        if body is None:
            return _error_response("INVALID_JSON", "Request body must be a JSON object", status=400)
        manifest = _manifest_from(body)
        raw_assets = body.get("assets") or {}
        if not isinstance(raw_assets, dict):
            return _error_response("BUNDLE_ASSETS_INVALID", "assets must map references to base64 content", "assets")
        assets = {}
        for ref, encoded in raw_assets.items():
            try:
                assets[ref] = base64.b64decode(encoded, validate=True)
            except (TypeError, binascii.Error):
                return _error_response("BUNDLE_ASSETS_INVALID", "asset content must be base64", f"assets.{ref}")
        try:
            data = build_bundle(manifest, registry=registry, assets=assets, exported_at=body.get("exported_at"))
        except StructuralError as exc:
            return _validation_response(exc.issues, [], status=400)
        except ValueError as exc:
            return _error_response("BUNDLE_ASSETS_INVALID", str(exc), "assets")
        filename = f"{manifest.get('id')}-{manifest.get('version')}.zip"
        headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
        return Response(content=data, media_type="application/zip", headers=headers)

    @app.put("/manifests")
    async def put_manifest(request: Request):
        body = await _safe_json(request)
        if body is None:
            return _error_response("INVALID_JSON", "Request body must be a JSON object", status=400)
        normalized, result = validate_manifest_raw(_manifest_from(body), registry=registry)
        if not result["is_valid"]:
            return _validation_response(result["errors"], result["warnings"], status=400)
        manifest_id = store.put(normalized, reason=body.get("reason") if isinstance(body.get("reason"), str) else None)
        version = normalized["version"]
        data = {"id": manifest_id, "version": version, "manifest_hash": store.get_hash(manifest_id, version)}
        return _ok_response({"data": data}, result["warnings"], status=201)

    @app.get("/manifests/{manifest_id}")
    async def manifest_versions(manifest_id: str):
        versions = store.versions(manifest_id)
        if not versions:
            return _error_response("MANIFEST_NOT_FOUND", "Manifest not found", "manifest_id", status=404)
        data = {"id": manifest_id, "versions": versions, "latest": store.latest(manifest_id), "history": store.history(manifest_id)}
        return _ok_response({"data": data})

    @app.get("/manifests/{manifest_id}/{version}")
    async def get_manifest(manifest_id: str, version: str):
        manifest = store.get(manifest_id, version)
        if manifest is None:
            return _error_response("MANIFEST_NOT_FOUND", "Manifest not found", "version", {"id": manifest_id, "version": version}, status=404)
        return _ok_response({"data": {"manifest": manifest}})

    logger.info("app_created components=%s theme_source=%s", registry.stats()["component_count"], "http" if THEME_SOURCE_URL else "none")
    return app


app = create_app()
