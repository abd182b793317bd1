"""Manifest renderer: validated manifest -> ordered output tree.

Every sibling resolves in its own task and writes into the slot reserved by
its index, so output order equals manifest order whatever order the
resolutions finish in. A node that cannot be resolved becomes a ``fallback``
node; a factory that raises becomes an ``error`` node. Only a failed
validation stops a pass.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import logging
import os
import time
from typing import Any, Callable, Dict, List

from app.manifest_validate import validate_manifest_raw
from component_registry import ComponentRegistry, ResolvedComponent
from render_errors import RenderError, ResolutionError, ThemeResolutionError, make_issue
from theme_resolver import ResolvedTheme, ThemeResolver, manifest_tokens


logger = logging.getLogger("pagekit.render")

RESOLVE_TIMEOUT_S = float(os.getenv("PAGEKIT_RESOLVE_TIMEOUT_S", "10"))

STATUS_OK = "ok"
STATUS_FALLBACK = "fallback"
STATUS_ERROR = "error"

Issue = Dict[str, Any]


def _empty_output(generation: int, manifest: Any) -> dict:
    manifest = manifest if isinstance(manifest, dict) else {}
    manifest_id = manifest.get("id")
    version = manifest.get("version")
    return {
        "ok": True,
        "blocked": False,
        "stale": False,
        "generation": generation,
        "manifest_id": manifest_id if isinstance(manifest_id, str) else None,
        "manifest_version": version if isinstance(version, str) else None,
        "nodes": [],
        "counts": {STATUS_OK: 0, STATUS_FALLBACK: 0, STATUS_ERROR: 0},
        "issues": [],
        "errors": [],
        "warnings": [],
        "theme": None,
    }


def _reason(issue: Issue) -> dict:
    return {"code": issue["code"], "message": issue["message"]}


class _RenderPass:
    def __init__(
        self,
        registry: ComponentRegistry,
        theme: ResolvedTheme,
        generation: int,
        is_current: Callable[[], bool] | None,
        timeout: float,
    ) -> None:
        self.registry = registry
        self.theme = theme
        self.generation = generation
        self.is_current = is_current
        self.timeout = timeout
        self.counts = {STATUS_OK: 0, STATUS_FALLBACK: 0, STATUS_ERROR: 0}
        self.issues: List[Issue] = []
        self.warnings: List[Issue] = []
        self.dropped = 0
        self._stale = False

    def current(self) -> bool:
        if not self._stale and self.is_current is not None and not self.is_current():
            self._stale = True
            logger.info("render_pass_superseded generation=%s", self.generation)
        return not self._stale

    async def render_nodes(self, nodes: list, path: str) -> list:
        slots: List[dict | None] = [None] * len(nodes)

        async def fill(idx: int, node: dict) -> None:
            result = await self.render_node(node, f"{path}[{idx}]")
            if result is None or not self.current():
                self.dropped += 1
                return
            slots[idx] = result
            self.counts[result["status"]] += 1

        await asyncio.gather(*(fill(idx, node) for idx, node in enumerate(nodes)))
        return slots

    async def _resolve(self, node: dict, path: str) -> ResolvedComponent | Issue:
        ctype = node.get("type")
        version = node.get("version")
        try:
            return await asyncio.wait_for(self.registry.resolve_component(ctype, version), self.timeout)
        except ResolutionError as exc:
            return exc.to_issue(f"{path}.type")
        except asyncio.TimeoutError:
            logger.warning("component_resolve_timeout type=%s version=%s timeout_s=%s", ctype, version, self.timeout)
            return make_issue(
                "COMPONENT_RESOLVE_TIMEOUT",
                f"Resolving {ctype} did not finish within {self.timeout}s",
                f"{path}.type",
                {"type": ctype, "version": version},
            )

    def _merge_props(self, resolved: ResolvedComponent, node: dict, path: str) -> dict:
        entry = resolved.entry
        props = entry.defaults()
        node_theme = node.get("theme") if isinstance(node.get("theme"), dict) else {}
        overrides = manifest_tokens(node_theme) or node_theme or None
        for prop_name, token_key in entry.theme_props.items():
            value = self.theme.token(token_key, overrides)
            if value is None:
                err = ThemeResolutionError(f"Theme token undefined, using built-in default for {prop_name}: {token_key}", key=token_key)
                self.warnings.append(err.to_issue(f"{path}.props.{prop_name}"))
                continue
            props[prop_name] = value
        explicit = node.get("props")
        if isinstance(explicit, dict):
            props.update(copy.deepcopy(explicit))
        return props

    def _node(self, node: dict, status: str, version: Any, props: dict, children: list, output: Any, reason: dict | None) -> dict:
        return {
            "id": node.get("id"),
            "type": node.get("type"),
            "version": version,
            "props": props,
            "children": [child for child in children if child is not None],
            "status": status,
            "output": output,
            "reason": reason,
        }

    async def render_node(self, node: dict, path: str) -> dict | None:
        child_nodes = node.get("children") if isinstance(node.get("children"), list) else []
        resolved, children = await asyncio.gather(
            self._resolve(node, path),
            self.render_nodes(child_nodes, f"{path}.children"),
        )
        if not self.current():
            return None

        if not isinstance(resolved, ResolvedComponent):
            self.issues.append(resolved)
            logger.info("component_fallback node_id=%s type=%s code=%s", node.get("id"), node.get("type"), resolved["code"])
            explicit = node.get("props") if isinstance(node.get("props"), dict) else {}
            return self._node(node, STATUS_FALLBACK, node.get("version"), copy.deepcopy(explicit), children, None, _reason(resolved))

        version = resolved.entry.version
        props = self._merge_props(resolved, node, path)
        live_children = [child for child in children if child is not None]
        try:
            result = resolved.factory(props, live_children)
            if inspect.isawaitable(result):
                result = await asyncio.wait_for(result, self.timeout)
        except Exception as exc:
            if isinstance(exc, asyncio.TimeoutError):
                message = f"Factory for {node.get('type')} did not finish within {self.timeout}s"
            else:
                message = str(exc) or type(exc).__name__
            err = RenderError(message, node_id=node.get("id"), exc_type=type(exc).__name__)
            issue = err.to_issue(path)
            self.issues.append(issue)
            logger.warning("component_render_failed node_id=%s type=%s error=%s", node.get("id"), node.get("type"), message)
            return self._node(node, STATUS_ERROR, version, props, children, None, _reason(issue))
        if not self.current():
            return None
        return self._node(node, STATUS_OK, version, props, children, result, None)


async def _render(
    manifest: Any,
    registry: ComponentRegistry,
    theme_resolver: ThemeResolver,
    generation: int,
    is_current: Callable[[], bool] | None,
    timeout: float,
) -> dict:
    started = time.monotonic()
    normalized, validation = validate_manifest_raw(manifest, registry=registry)
    output = _empty_output(generation, normalized)
    output["warnings"] = list(validation["warnings"])
    if not validation["is_valid"]:
        output.update(ok=False, blocked=True, errors=list(validation["errors"]))
        logger.info(
            "render_blocked generation=%s manifest_id=%s codes=%s",
            generation,
            output["manifest_id"],
            ",".join(issue["code"] for issue in validation["errors"]),
        )
        return output

    theme = await theme_resolver.resolve_theme(normalized.get("theme"))
    output["theme"] = theme.describe()
    output["warnings"].extend(theme.warnings)

    render_pass = _RenderPass(registry, theme, generation, is_current, timeout)
    nodes = await render_pass.render_nodes(normalized["components"], "components") if render_pass.current() else []
    if not render_pass.current():
        output.update(ok=False, stale=True)
        logger.info("render_stale generation=%s manifest_id=%s dropped=%s", generation, output["manifest_id"], render_pass.dropped)
        return output

    output["nodes"] = nodes
    output["counts"] = dict(render_pass.counts)
    output["issues"] = render_pass.issues
    output["warnings"].extend(render_pass.warnings)
    logger.info(
        "render_complete generation=%s manifest_id=%s ok=%s fallback=%s error=%s elapsed_ms=%s",
        generation,
        output["manifest_id"],
        render_pass.counts[STATUS_OK],
        render_pass.counts[STATUS_FALLBACK],
        render_pass.counts[STATUS_ERROR],
        int((time.monotonic() - started) * 1000),
    )
    return output


async def render_manifest(
    manifest: Any,
    registry: ComponentRegistry,
    theme_resolver: ThemeResolver,
    *,
    generation: int = 0,
    is_current: Callable[[], bool] | None = None,
    resolve_timeout: float | None = None,
) -> dict:
    """Render one pass. Never raises for manifest or component problems.

    ``is_current`` is polled as results arrive; once it returns false the
    pass drops its results and returns ``stale=True`` with no nodes.
    """
    timeout = RESOLVE_TIMEOUT_S if resolve_timeout is None else resolve_timeout
    try:
        return await _render(manifest, registry, theme_resolver, generation, is_current, timeout)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        logger.exception("render_failed generation=%s", generation)
        output = _empty_output(generation, manifest)
        output.update(ok=False, errors=[make_issue("RENDER_FAILED", str(exc) or type(exc).__name__)])
        return output


def iter_output_nodes(nodes: list):
    """Yield output nodes depth-first in document order."""
    for node in nodes or []:
        yield node
        yield from iter_output_nodes(node.get("children"))
