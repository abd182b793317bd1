"""Theme token resolution.

Tokens resolve through the chain node override -> manifest theme -> brand
default -> global default. The first defined value wins; a token undefined
everywhere resolves to ``None`` so callers fall back to built-in defaults.
Brand tokens may come from a remote source, which is the only place theme
resolution suspends.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List
from urllib.parse import quote

import httpx

from render_errors import ThemeResolutionError, make_issue


logger = logging.getLogger("pagekit.theme")

THEME_TIMEOUT_S = float(os.getenv("PAGEKIT_THEME_TIMEOUT_S", "5"))

GLOBAL_DEFAULT_TOKENS: Dict[str, Any] = {
    "colors": {
        "primary": "#2563eb",
        "secondary": "#7c3aed",
        "accent": "#f59e0b",
        "background": "#ffffff",
        "surface": "#f8fafc",
        "text": "#0f172a",
        "muted": "#64748b",
        "success": "#16a34a",
        "error": "#dc2626",
    },
    "typography": {
        "font_family": "Inter, system-ui, sans-serif",
        "heading_font_family": "Inter, system-ui, sans-serif",
        "font_size_base": "16px",
        "line_height": "1.5",
    },
    "spacing": {"xs": "4px", "sm": "8px", "md": "16px", "lg": "24px", "xl": "48px"},
    "radius": {"sm": "4px", "md": "8px", "lg": "16px"},
}


class ThemeSourceError(RuntimeError):
    pass


def lookup_token(tokens: Any, key: str) -> Any:
    """Find ``key`` in a token map, as a flat key or a dotted path."""
    if not isinstance(tokens, dict) or not isinstance(key, str) or not key:
        return None
    if key in tokens:
        value = tokens[key]
        return None if isinstance(value, dict) else value
    current: Any = tokens
    for part in key.split("."):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return None if isinstance(current, dict) else current


def flatten_tokens(tokens: Any, prefix: str = "") -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if not isinstance(tokens, dict):
        return out
    for key, value in tokens.items():
        name = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict):
            out.update(flatten_tokens(value, name))
        elif value is not None:
            out[name] = value
    return out


def manifest_tokens(manifest_theme: Any) -> Dict[str, Any]:
    if not isinstance(manifest_theme, dict):
        return {}
    tokens = manifest_theme.get("tokens")
    return tokens if isinstance(tokens, dict) else {}


def css_variable_name(key: str) -> str:
    return "--" + key.replace(".", "-").replace("_", "-")


class ThemeSource:
    """Brand token collaborator."""

    async def fetch_brand(self, brand_id: str) -> dict | None:
        raise NotImplementedError

    def resolve_token(self, key: str, brand_id: str) -> Any:
        raise NotImplementedError


class MemoryThemeSource(ThemeSource):
    def __init__(self, brands: Dict[str, dict] | None = None) -> None:
        self._brands: Dict[str, dict] = copy.deepcopy(brands or {})

    def set_brand(self, brand_id: str, tokens: dict) -> None:
        self._brands[brand_id] = copy.deepcopy(tokens)

    async def fetch_brand(self, brand_id: str) -> dict | None:
        tokens = self._brands.get(brand_id)
        return copy.deepcopy(tokens) if tokens is not None else None

    def resolve_token(self, key: str, brand_id: str) -> Any:
        return lookup_token(self._brands.get(brand_id), key)


class HttpThemeSource(ThemeSource):
    """Fetches ``GET {base_url}/brands/{brand_id}/tokens``.

    The response body is either the token map or ``{"tokens": {...}}``.
    A 404 means the brand has no tokens; other error statuses raise.
    """

    def __init__(self, base_url: str, *, timeout: float = THEME_TIMEOUT_S, client: httpx.AsyncClient | None = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client
        self._cache: Dict[str, dict] = {}

    async def _get(self, url: str) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(url, timeout=self._timeout)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.get(url)

    async def fetch_brand(self, brand_id: str) -> dict | None:
        url = f"{self._base_url}/brands/{quote(brand_id, safe='')}/tokens"
        resp = await self._get(url)
        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise ThemeSourceError(f"Theme source error: {resp.status_code} {resp.text[:200]}")
        data = resp.json()
        if not isinstance(data, dict):
            raise ThemeSourceError("Theme source returned a non-object body")
        tokens = data.get("tokens") if isinstance(data.get("tokens"), dict) else data
        self._cache[brand_id] = tokens
        return copy.deepcopy(tokens)

    def resolve_token(self, key: str, brand_id: str) -> Any:
        return lookup_token(self._cache.get(brand_id), key)


@dataclass
class ResolvedTheme:
    """Effective theme for one render pass, layers in priority order."""

    brand_id: str | None
    layers: List[dict]
    warnings: List[dict] = field(default_factory=list)

    def token(self, key: str, node_overrides: dict | None = None) -> Any:
        chain = [node_overrides] + self.layers if node_overrides else self.layers
        for layer in chain:
            value = lookup_token(layer, key)
            if value is not None:
                return value
        return None

    @property
    def tokens(self) -> Dict[str, Any]:
        merged: Dict[str, Any] = {}
        for layer in reversed(self.layers):
            merged.update(flatten_tokens(layer))
        return merged

    def to_css_variables(self, selector: str = ":root") -> str:
        lines = [f"  {css_variable_name(key)}: {value};" for key, value in sorted(self.tokens.items())]
        return selector + " {\n" + "\n".join(lines) + "\n}\n"

    def describe(self) -> dict:
        return {"brand_id": self.brand_id, "tokens": self.tokens, "css": self.to_css_variables()}


class ThemeResolver:
    def __init__(
        self,
        source: ThemeSource | None = None,
        global_defaults: Dict[str, Any] | None = None,
        *,
        fetch_timeout: float = THEME_TIMEOUT_S,
    ) -> None:
        self._source = source
        self._fetch_timeout = fetch_timeout
        self._global = copy.deepcopy(global_defaults if global_defaults is not None else GLOBAL_DEFAULT_TOKENS)
        self._brands: Dict[str, dict] = {}
        self._brand_status: Dict[str, str] = {}
        self._inflight: Dict[str, asyncio.Future] = {}

    @property
    def global_defaults(self) -> Dict[str, Any]:
        return copy.deepcopy(self._global)

    def set_brand_tokens(self, brand_id: str, tokens: dict) -> None:
        self._brands[brand_id] = copy.deepcopy(tokens)
        self._brand_status[brand_id] = "loaded"

    def brand_status(self, brand_id: str) -> str | None:
        return self._brand_status.get(brand_id)

    async def _fetch(self, brand_id: str) -> dict:
        try:
            try:
                tokens = await asyncio.wait_for(self._source.fetch_brand(brand_id), self._fetch_timeout)
            except asyncio.TimeoutError:
                logger.warning("theme_brand_fetch_timeout brand_id=%s timeout_s=%s", brand_id, self._fetch_timeout)
                self._brand_status[brand_id] = "failed"
                return {}
            except Exception as exc:
                logger.warning("theme_brand_fetch_failed brand_id=%s error=%s", brand_id, exc)
                self._brand_status[brand_id] = "failed"
                return {}
            if not isinstance(tokens, dict):
                logger.info("theme_brand_missing brand_id=%s", brand_id)
                self._brand_status[brand_id] = "missing"
                return {}
            self._brands[brand_id] = tokens
            self._brand_status[brand_id] = "loaded"
            return tokens
        finally:
            if self._inflight.get(brand_id) is asyncio.current_task():
                del self._inflight[brand_id]

    async def load_brand(self, brand_id: str | None) -> dict:
        """Brand tokens, fetched once; concurrent callers share one fetch.

        Failed fetches are not cached so the next render pass retries.
        """
        if not brand_id or not isinstance(brand_id, str):
            return {}
        if brand_id in self._brands:
            return self._brands[brand_id]
        if self._source is None:
            return {}
        future = self._inflight.get(brand_id)
        if future is None:
            future = asyncio.ensure_future(self._fetch(brand_id))
            self._inflight[brand_id] = future
        return await asyncio.shield(future)

    def _brand_token(self, key: str, brand_id: str | None) -> Any:
        if not brand_id or not isinstance(brand_id, str):
            return None
        value = lookup_token(self._brands.get(brand_id), key)
        if value is not None or self._source is None:
            return value
        try:
            return self._source.resolve_token(key, brand_id)
        except NotImplementedError:
            return None
        except Exception as exc:
            logger.warning("theme_source_lookup_failed brand_id=%s key=%s error=%s", brand_id, key, exc)
            return None

    def resolve_token(
        self,
        key: str,
        node_overrides: dict | None = None,
        manifest_theme: dict | None = None,
        brand_id: str | None = None,
    ) -> Any:
        if not brand_id and isinstance(manifest_theme, dict):
            brand_id = manifest_theme.get("brand_id")
        for layer in (node_overrides, manifest_tokens(manifest_theme)):
            value = lookup_token(layer, key)
            if value is not None:
                return value
        value = self._brand_token(key, brand_id)
        if value is not None:
            return value
        return lookup_token(self._global, key)

    def require_token(
        self,
        key: str,
        node_overrides: dict | None = None,
        manifest_theme: dict | None = None,
        brand_id: str | None = None,
    ) -> Any:
        value = self.resolve_token(key, node_overrides, manifest_theme, brand_id)
        if value is None:
            raise ThemeResolutionError(f"Theme token undefined at every level: {key}", key=key)
        return value

    async def resolve_theme(self, manifest_theme: dict | None, brand_id: str | None = None) -> ResolvedTheme:
        theme = manifest_theme if isinstance(manifest_theme, dict) else {}
        brand_id = brand_id or theme.get("brand_id") or None
        warnings: List[dict] = []
        if brand_id is not None and not isinstance(brand_id, str):
            # non-string ids render with the manifest and global layers only
            warnings.append(make_issue("THEME_BRAND_INVALID", "theme.brand_id must be a string", "theme.brand_id", {"actual": type(brand_id).__name__}))
            brand_id = None
        brand_tokens = await self.load_brand(brand_id) if brand_id else {}
        status = self._brand_status.get(brand_id) if brand_id else None
        if status == "failed":
            warnings.append(make_issue("THEME_BRAND_UNAVAILABLE", "brand tokens could not be fetched", "theme.brand_id", {"brand_id": brand_id}))
        elif status == "missing":
            warnings.append(make_issue("THEME_BRAND_UNKNOWN", "brand has no tokens", "theme.brand_id", {"brand_id": brand_id}))
        return ResolvedTheme(brand_id=brand_id, layers=[manifest_tokens(theme), brand_tokens, self._global], warnings=warnings)
