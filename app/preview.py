"""Preview harness: debounced re-render with generation-tagged passes.

Every pass carries a generation number. Only the newest generation may
replace the displayed output; results of older passes are counted and
dropped when they arrive. Nothing in flight is aborted.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import os
from typing import Any, Callable, List

from app.manifest_render import render_manifest
from component_registry import ComponentRegistry
from interaction_log import Handler, Interaction, InteractionLog
from manifest_store import apply_ops as apply_manifest_ops
from theme_resolver import ThemeResolver


logger = logging.getLogger("pagekit.preview")

PREVIEW_DEBOUNCE_MS = int(os.getenv("PAGEKIT_PREVIEW_DEBOUNCE_MS", "300"))
MODES = ("split", "modal", "hidden")

RenderCallback = Callable[[dict], None]


class PreviewHarness:
    def __init__(
        self,
        registry: ComponentRegistry,
        theme_resolver: ThemeResolver,
        *,
        debounce_ms: int | None = None,
        mode: str = "split",
        on_render: RenderCallback | None = None,
        on_interaction: Handler | None = None,
        resolve_timeout: float | None = None,
    ) -> None:
        if mode not in MODES:
            raise ValueError(f"mode must be one of {', '.join(MODES)}")
        self._registry = registry
        self._theme_resolver = theme_resolver
        self._debounce_ms = PREVIEW_DEBOUNCE_MS if debounce_ms is None else debounce_ms
        self._mode = mode
        self._on_render = on_render
        self._resolve_timeout = resolve_timeout
        self._generation = 0
        self._output: dict | None = None
        self._draft: dict | None = None
        self._pending: asyncio.Task | None = None
        self._passes: set[asyncio.Task] = set()
        self._discarded = 0
        self._closed = False
        self._interactions = InteractionLog()
        if on_interaction is not None:
            self._interactions.subscribe(on_interaction)

    @property
    def mode(self) -> str:
        return self._mode

    def set_mode(self, mode: str) -> None:
        if mode not in MODES:
            raise ValueError(f"mode must be one of {', '.join(MODES)}")
        if mode != self._mode:
            logger.info("preview_mode_changed from=%s to=%s", self._mode, mode)
        self._mode = mode

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def output(self) -> dict | None:
        return self._output

    @property
    def draft(self) -> dict | None:
        return copy.deepcopy(self._draft)

    @property
    def discarded(self) -> int:
        return self._discarded

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("preview harness is closed")

    # ------------------------------------------------------------------
    # Render scheduling
    # ------------------------------------------------------------------

    def submit(self, manifest: dict) -> None:
        """Schedule a render after the debounce window.

        A submission inside the window replaces the pending one. Must be
        called from a running event loop.
        """
        self._ensure_open()
        self._draft = copy.deepcopy(manifest)
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
            logger.debug("preview_debounce_reset generation=%s", self._generation)
        self._pending = asyncio.ensure_future(self._debounced(self._draft))

    async def _debounced(self, manifest: dict) -> None:
        await asyncio.sleep(self._debounce_ms / 1000)
        if self._pending is asyncio.current_task():
            self._pending = None
        self._start_pass(manifest)

    def apply_ops(self, ops: List[dict]) -> dict:
        """Apply patch ops to the current draft and submit the result.

        Raises ``ManifestPatchError`` when an op does not apply; the draft is
        left unchanged in that case.
        """
        self._ensure_open()
        if self._draft is None:
            raise ValueError("no draft to apply ops to; submit a manifest first")
        updated = apply_manifest_ops(self._draft, ops)
        self.submit(updated)
        return copy.deepcopy(updated)

    def _start_pass(self, manifest: dict) -> asyncio.Task:
        self._generation += 1
        generation = self._generation
        logger.info("preview_pass_started generation=%s", generation)
        task = asyncio.ensure_future(self._run_pass(copy.deepcopy(manifest), generation))
        self._passes.add(task)
        task.add_done_callback(self._passes.discard)
        return task

    def _is_current(self, generation: int) -> bool:
        return not self._closed and generation == self._generation

    async def _run_pass(self, manifest: dict, generation: int) -> dict:
        output = await render_manifest(
            manifest,
            self._registry,
            self._theme_resolver,
            generation=generation,
            is_current=lambda: self._is_current(generation),
            resolve_timeout=self._resolve_timeout,
        )
        if output["stale"] or not self._is_current(generation):
            self._discarded += 1
            logger.info("preview_pass_discarded generation=%s current=%s", generation, self._generation)
            if not output["stale"]:
                output = dict(output, ok=False, stale=True, nodes=[])
            return output
        self._output = output
        if self._on_render is not None:
            try:
                self._on_render(output)
            except Exception:
                logger.exception("preview_on_render_failed generation=%s", generation)
        return output

    async def render_now(self, manifest: dict) -> dict:
        """Start a pass immediately and return its output.

        The output is displayed only if no newer pass started meanwhile;
        otherwise it comes back with ``stale=True``.
        """
        self._ensure_open()
        self._draft = copy.deepcopy(manifest)
        task = self._start_pass(self._draft)
        return await asyncio.shield(task)

    async def settle(self) -> dict | None:
        """Wait until no debounce timer or pass is outstanding."""
        while True:
            waiting = [task for task in [self._pending, *self._passes] if task is not None and not task.done()]
            if not waiting:
                return self._output
            await asyncio.wait(waiting)

    async def close(self) -> None:
        self._closed = True
        tasks = [task for task in [self._pending, *self._passes] if task is not None and not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._pending = None
        logger.info("preview_closed generation=%s discarded=%s", self._generation, self._discarded)

    # ------------------------------------------------------------------
    # Interaction capture
    # ------------------------------------------------------------------

    def record_interaction(self, component_id: str, action_type: str, payload: dict | None = None) -> Interaction:
        return self._interactions.record(component_id, action_type, payload)

    def interactions(self) -> list[Interaction]:
        return self._interactions.events()

    def subscribe_interactions(self, handler: Handler, action_type: str | None = None) -> None:
        self._interactions.subscribe(handler, action_type)

    def describe(self) -> dict[str, Any]:
        return {
            "mode": self._mode,
            "generation": self._generation,
            "discarded": self._discarded,
            "pending": self.pending,
            "in_flight": len(self._passes),
            "interactions": len(self._interactions),
        }
