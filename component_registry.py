"""Component registry: (type, version) -> factory, with single-flight lazy loads."""

from __future__ import annotations

import asyncio
import copy
import inspect
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Tuple

from render_errors import ResolutionError


logger = logging.getLogger("pagekit.registry")

Factory = Callable[..., Any]
Loader = Callable[[], Any]
Key = Tuple[str, str]

LATEST = "latest"
CATEGORIES = {"layout", "content", "interactive", "data"}
PROP_TYPES = {"string", "number", "boolean", "object", "array"}

_TYPE_KEY_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_.:-]*$")
_SEMVER_RE = re.compile(r"^v?(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:-([0-9A-Za-z.-]+))?(?:\+[0-9A-Za-z.-]+)?$")


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def is_unversioned(version: str | None) -> bool:
    return version is None or version == "" or (isinstance(version, str) and version.lower() == LATEST)


def version_sort_key(version: str) -> tuple:
    """Ordering used to pick the highest version of a type.

    Semantic versions compare numerically and a pre-release sorts below its
    release. Strings that do not parse sort below every semantic version.
    """
    match = _SEMVER_RE.match(version)
    if not match:
        return (0, version)
    major, minor, patch, pre = match.groups()
    numbers = (int(major), int(minor or 0), int(patch or 0))
    if pre is None:
        pre_key: tuple = (1, ())
    else:
        parts = tuple((0, int(p), "") if p.isdigit() else (1, 0, p) for p in pre.split("."))
        pre_key = (0, parts)
    return (1, numbers, pre_key, version)


def _callable_name(obj: Any) -> str:
    return getattr(obj, "__qualname__", None) or getattr(obj, "__name__", None) or type(obj).__name__


def _retrieve_exception(task: asyncio.Future) -> None:
    # a load can outlive every waiter that timed out on it
    if not task.cancelled():
        task.exception()


def _validate_prop_schema(prop_schema: Any) -> List[dict]:
    if prop_schema is None:
        return []
    if not isinstance(prop_schema, list):
        raise ValueError("prop_schema must be a list of prop definitions")
    out = []
    for idx, prop in enumerate(prop_schema):
        if not isinstance(prop, dict):
            raise ValueError(f"prop_schema[{idx}] must be an object")
        name = prop.get("name")
        if not isinstance(name, str) or not name:
            raise ValueError(f"prop_schema[{idx}].name is required")
        ptype = prop.get("type", "string")
        if ptype not in PROP_TYPES:
            raise ValueError(f"prop_schema[{idx}].type must be one of {sorted(PROP_TYPES)}")
        options = prop.get("options")
        if options is not None and not isinstance(options, list):
            raise ValueError(f"prop_schema[{idx}].options must be a list")
        item = copy.deepcopy(prop)
        item["type"] = ptype
        item["required"] = bool(prop.get("required", False))
        out.append(item)
    return out


@dataclass
class RegistryEntry:
    type: str
    version: str
    factory: Factory | None = None
    loader: Loader | None = None
    prop_schema: List[dict] = field(default_factory=list)
    default_props: Dict[str, Any] = field(default_factory=dict)
    theme_props: Dict[str, str] = field(default_factory=dict)
    name: str | None = None
    description: str | None = None
    category: str = "content"
    container: bool = False
    deprecated: bool = False
    deprecated_message: str | None = None
    registered_at: str = ""

    @property
    def key(self) -> Key:
        return (self.type, self.version)

    @property
    def lazy(self) -> bool:
        return self.loader is not None

    def same_target(self, factory: Factory | None, loader: Loader | None) -> bool:
        return self.factory is factory and self.loader is loader

    def defaults(self) -> dict:
        """Schema defaults overlaid with explicit default props."""
        props = {p["name"]: copy.deepcopy(p["default"]) for p in self.prop_schema if "default" in p}
        props.update(copy.deepcopy(self.default_props))
        return props

    def option_values(self, prop_name: str) -> list | None:
        for prop in self.prop_schema:
            if prop["name"] != prop_name or prop.get("options") is None:
                continue
            return [opt.get("value") if isinstance(opt, dict) else opt for opt in prop["options"]]
        return None

    def describe(self) -> dict:
        return {
            "type": self.type,
            "version": self.version,
            "name": self.name or self.type,
            "description": self.description,
            "category": self.category,
            "container": self.container,
            "lazy": self.lazy,
            "deprecated": self.deprecated,
            "deprecated_message": self.deprecated_message,
            "props": copy.deepcopy(self.prop_schema),
            "default_props": self.defaults(),
            "theme_props": dict(self.theme_props),
        }


@dataclass(frozen=True)
class ResolvedComponent:
    entry: RegistryEntry
    factory: Factory


class ComponentRegistry:
    """Authoritative (type, version) -> factory map.

    Instances are constructed explicitly and passed to the renderer, the
    preview harness and the validator. Registration is expected at bootstrap;
    resolution is safe to call from many concurrent render passes.
    """

    def __init__(self) -> None:
        self._entries: Dict[Key, RegistryEntry] = {}
        self._loaded: Dict[Key, Factory] = {}
        self._inflight: Dict[Key, asyncio.Future] = {}
        self._audit: List[dict] = []
        self._deprecation_logged: set[Key] = set()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        component_type: str,
        version: str,
        factory: Factory | None = None,
        prop_schema: List[dict] | None = None,
        *,
        loader: Loader | None = None,
        default_props: Dict[str, Any] | None = None,
        theme_props: Dict[str, str] | None = None,
        name: str | None = None,
        description: str | None = None,
        category: str = "content",
        container: bool = False,
        deprecated: bool = False,
        deprecated_message: str | None = None,
    ) -> RegistryEntry:
        """Register a factory (or lazy loader) under ``(type, version)``.

        Registering the same factory or loader again is a no-op that keeps the
        first registration's metadata; use a new target to change it.
        """
        if not isinstance(component_type, str) or not _TYPE_KEY_RE.match(component_type):
            raise ValueError(f"Invalid component type key: {component_type!r}")
        if not isinstance(version, str) or not version or is_unversioned(version):
            raise ValueError(f"Invalid component version for {component_type}: {version!r}")
        if (factory is None) == (loader is None):
            raise ValueError("Exactly one of factory or loader is required")
        target = factory if factory is not None else loader
        if not callable(target):
            raise ValueError("factory/loader must be callable")
        if category not in CATEGORIES:
            raise ValueError(f"category must be one of {sorted(CATEGORIES)}")
        if default_props is not None and not isinstance(default_props, dict):
            raise ValueError("default_props must be an object")
        if theme_props is not None and not isinstance(theme_props, dict):
            raise ValueError("theme_props must be an object")
        schema = _validate_prop_schema(prop_schema)

        key = (component_type, version)
        existing = self._entries.get(key)
        if existing is not None and existing.same_target(factory, loader):
            ignored = [
                name
                for name, value in (
                    ("prop_schema", schema),
                    ("default_props", default_props or {}),
                    ("theme_props", theme_props or {}),
                )
                if getattr(existing, name) != value
            ]
            logger.debug(
                "component_register_noop type=%s version=%s ignored=%s",
                component_type,
                version,
                ",".join(ignored) or "-",
            )
            return existing
        if existing is not None:
            previous = existing.factory if existing.factory is not None else existing.loader
            logger.warning(
                "component_collision type=%s version=%s previous=%s replacement=%s",
                component_type,
                version,
                _callable_name(previous),
                _callable_name(target),
            )

        entry = RegistryEntry(
            type=component_type,
            version=version,
            factory=factory,
            loader=loader,
            prop_schema=schema,
            default_props=copy.deepcopy(default_props or {}),
            theme_props=dict(theme_props or {}),
            name=name,
            description=description,
            category=category,
            container=container,
            deprecated=deprecated,
            deprecated_message=deprecated_message,
            registered_at=_now(),
        )
        self._entries[key] = entry
        # results of a load started for the replaced entry are never cached
        self._loaded.pop(key, None)
        self._inflight.pop(key, None)
        self._deprecation_logged.discard(key)
        self._audit.insert(
            0,
            {
                "audit_id": str(uuid.uuid4()),
                "action": "replace" if existing is not None else "register",
                "type": component_type,
                "version": version,
                "target": _callable_name(target),
                "lazy": loader is not None,
                "at": entry.registered_at,
            },
        )
        logger.info("component_registered type=%s version=%s lazy=%s", component_type, version, loader is not None)
        return entry

    def register_many(self, definitions: Iterable[dict]) -> list[RegistryEntry]:
        entries = []
        for definition in definitions:
            item = dict(definition)
            component_type = item.pop("type")
            version = item.pop("version")
            entries.append(self.register(component_type, version, **item))
        return entries

    def clear(self) -> None:
        self._entries.clear()
        self._loaded.clear()
        self._inflight.clear()
        self._deprecation_logged.clear()
        self._audit.clear()

    # ------------------------------------------------------------------
    # Lookups (pure, no loading)
    # ------------------------------------------------------------------

    def versions(self, component_type: str) -> list[str]:
        found = [version for (ctype, version) in self._entries if ctype == component_type]
        return sorted(found, key=version_sort_key)

    def types(self) -> list[str]:
        return sorted({ctype for (ctype, _) in self._entries})

    def has(self, component_type: str, version: str | None = None) -> bool:
        if is_unversioned(version):
            return any(ctype == component_type for (ctype, _) in self._entries)
        return (component_type, version) in self._entries

    def get_entry(self, component_type: str, version: str | None = None) -> RegistryEntry | None:
        if is_unversioned(version):
            versions = self.versions(component_type)
            if not versions:
                return None
            return self._entries[(component_type, versions[-1])]
        return self._entries.get((component_type, version))

    def list_components(self) -> list[dict]:
        latest = [self.get_entry(ctype) for ctype in self.types()]
        items = [entry.describe() for entry in latest if entry is not None]
        return sorted(items, key=lambda item: (item["name"].lower(), item["type"]))

    def by_category(self, category: str) -> list[dict]:
        return [item for item in self.list_components() if item["category"] == category]

    def history(self) -> list[dict]:
        return [dict(item) for item in self._audit]

    def stats(self) -> dict:
        return {
            "component_count": len(self._entries),
            "type_count": len(self.types()),
            "lazy_count": sum(1 for entry in self._entries.values() if entry.lazy),
            "loaded_count": len(self._loaded),
            "inflight_count": len(self._inflight),
        }

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def _select_key(self, component_type: str, version: str | None) -> Key:
        versions = self.versions(component_type)
        if is_unversioned(version):
            if not versions:
                raise ResolutionError(
                    f"Component type not registered: {component_type}",
                    code="COMPONENT_NOT_FOUND",
                    component_type=component_type,
                )
            return (component_type, versions[-1])
        key = (component_type, version)
        if key in self._entries:
            return key
        if versions:
            raise ResolutionError(
                f"Component {component_type} has no version {version} (registered: {', '.join(versions)})",
                code="COMPONENT_VERSION_NOT_FOUND",
                component_type=component_type,
                version=version,
            )
        raise ResolutionError(
            f"Component type not registered: {component_type}",
            code="COMPONENT_NOT_FOUND",
            component_type=component_type,
            version=version,
        )

    def _log_deprecated(self, entry: RegistryEntry) -> None:
        if not entry.deprecated or entry.key in self._deprecation_logged:
            return
        self._deprecation_logged.add(entry.key)
        logger.warning(
            "component_deprecated type=%s version=%s message=%s",
            entry.type,
            entry.version,
            entry.deprecated_message or "",
        )

    async def _load(self, key: Key, entry: RegistryEntry) -> Factory:
        try:
            try:
                result = entry.loader()
                if inspect.isawaitable(result):
                    result = await result
            except Exception as exc:
                logger.warning("component_load_failed type=%s version=%s error=%s", key[0], key[1], exc)
                raise ResolutionError(
                    f"Loader for {key[0]}@{key[1]} failed: {exc}",
                    code="COMPONENT_LOAD_FAILED",
                    component_type=key[0],
                    version=key[1],
                ) from exc
            if not callable(result):
                raise ResolutionError(
                    f"Loader for {key[0]}@{key[1]} did not return a callable factory",
                    code="COMPONENT_LOAD_FAILED",
                    component_type=key[0],
                    version=key[1],
                )
            if self._entries.get(key) is entry:
                self._loaded[key] = result
                logger.info("component_loaded type=%s version=%s", key[0], key[1])
            return result
        finally:
            if self._inflight.get(key) is asyncio.current_task():
                del self._inflight[key]

    async def resolve_component(self, component_type: str, version: str | None = None) -> ResolvedComponent:
        """Resolve to the entry and its factory, raising ``ResolutionError``.

        Concurrent calls for a key whose loader is still running await the
        same load; the loader never runs twice in parallel for one key.
        """
        key = self._select_key(component_type, version)
        entry = self._entries[key]
        self._log_deprecated(entry)
        if entry.loader is None:
            return ResolvedComponent(entry, entry.factory)
        cached = self._loaded.get(key)
        if cached is not None:
            return ResolvedComponent(entry, cached)
        future = self._inflight.get(key)
        if future is None:
            future = asyncio.ensure_future(self._load(key, entry))
            future.add_done_callback(_retrieve_exception)
            self._inflight[key] = future
        factory = await asyncio.shield(future)
        return ResolvedComponent(entry, factory)

    async def resolve(self, component_type: str, version: str | None = None) -> Factory | None:
        try:
            resolved = await self.resolve_component(component_type, version)
        except ResolutionError as exc:
            logger.warning("component_unresolved type=%s version=%s code=%s", component_type, version, exc.code)
            return None
        return resolved.factory
