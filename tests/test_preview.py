import asyncio
import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.preview import PreviewHarness
from component_registry import ComponentRegistry
from interaction_log import InteractionValidationError
from manifest_store import ManifestPatchError
from theme_resolver import ThemeResolver


def echo_factory(props, children):
    return {"props": props}


def _manifest(components, version="1.0.0"):
    return {"id": "landing", "version": version, "owner_id": "tenant-1", "components": components}


class TestPreviewHarness(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.registry = ComponentRegistry()
        self.registry.register("header", "1.0.0", echo_factory)
        self.rendered = []
        self.harness = PreviewHarness(
            self.registry,
            ThemeResolver(),
            debounce_ms=20,
            on_render=self.rendered.append,
        )

    async def asyncTearDown(self) -> None:
        await self.harness.close()

    async def test_newer_pass_wins_over_slower_older_pass(self) -> None:
        release = asyncio.Event()

        async def slow_loader():
            await release.wait()
            return echo_factory

        self.registry.register("slow", "1.0.0", loader=slow_loader)
        first = asyncio.ensure_future(self.harness.render_now(_manifest([{"id": "a", "type": "slow"}])))
        await asyncio.sleep(0.1)
        second = await self.harness.render_now(_manifest([{"id": "b", "type": "header"}], version="1.0.1"))
        self.assertEqual(second["generation"], 2)
        self.assertFalse(second["stale"])

        release.set()
        first_output = await first
        self.assertTrue(first_output["stale"])
        self.assertEqual(first_output["nodes"], [])
        self.assertEqual(self.harness.output["generation"], 2)
        self.assertEqual(self.harness.output["manifest_version"], "1.0.1")
        self.assertEqual(self.harness.discarded, 1)
        self.assertEqual([output["generation"] for output in self.rendered], [2])

    async def test_submissions_inside_debounce_window_coalesce(self) -> None:
        for idx in range(4):
            self.harness.submit(_manifest([{"id": "a", "type": "header", "props": {"n": idx}}]))
            await asyncio.sleep(0.005)
        self.assertTrue(self.harness.pending)
        output = await self.harness.settle()
        self.assertEqual(self.harness.generation, 1)
        self.assertEqual(output["nodes"][0]["props"]["n"], 3)
        self.assertEqual(len(self.rendered), 1)
        self.assertFalse(self.harness.pending)

    async def test_separate_windows_render_separately(self) -> None:
        self.harness.submit(_manifest([{"id": "a", "type": "header"}]))
        await self.harness.settle()
        self.harness.submit(_manifest([{"id": "a", "type": "header"}], version="1.0.1"))
        await self.harness.settle()
        self.assertEqual(self.harness.generation, 2)
        self.assertEqual(self.harness.output["manifest_version"], "1.0.1")

    async def test_apply_ops_with_selector(self) -> None:
        await self.harness.render_now(_manifest([{"id": "hero", "type": "header", "props": {"title": "Old"}}]))
        updated = self.harness.apply_ops([{"op": "replace", "path": "/components/@[id=hero]/props/title", "value": "New"}])
        self.assertEqual(updated["components"][0]["props"]["title"], "New")
        output = await self.harness.settle()
        self.assertEqual(output["nodes"][0]["props"]["title"], "New")
        self.assertEqual(self.harness.draft["components"][0]["props"]["title"], "New")

    async def test_failed_ops_leave_draft_unchanged(self) -> None:
        await self.harness.render_now(_manifest([{"id": "hero", "type": "header"}]))
        with self.assertRaises(ManifestPatchError) as ctx:
            self.harness.apply_ops([{"op": "remove", "path": "/components/@[id=missing]"}])
        self.assertEqual(ctx.exception.code, "PATCH_SELECTOR_FAILED")
        self.assertEqual(self.harness.draft["components"][0]["id"], "hero")
        self.assertFalse(self.harness.pending)

    async def test_apply_ops_without_draft(self) -> None:
        with self.assertRaises(ValueError):
            self.harness.apply_ops([])

    async def test_modes(self) -> None:
        self.assertEqual(self.harness.mode, "split")
        with self.assertLogs("pagekit.preview", level="INFO"):
            self.harness.set_mode("modal")
        self.assertEqual(self.harness.mode, "modal")
        with self.assertRaises(ValueError):
            self.harness.set_mode("fullscreen")
        with self.assertRaises(ValueError):
            PreviewHarness(self.registry, ThemeResolver(), mode="floating")

    async def test_interactions_recorded_in_order(self) -> None:
        seen = []
        clicks = []
        harness = PreviewHarness(self.registry, ThemeResolver(), on_interaction=seen.append)
        harness.subscribe_interactions(clicks.append, "click")
        harness.record_interaction("cta", "click", {"x": 1})
        harness.record_interaction("signup", "submit", {"email": "a@example.com"})
        harness.record_interaction("cta", "click")
        self.assertEqual([event["seq"] for event in seen], [1, 2, 3])
        self.assertEqual([event["seq"] for event in clicks], [1, 3])
        self.assertEqual([event["action_type"] for event in harness.interactions()], ["click", "submit", "click"])
        self.assertEqual(harness.describe()["interactions"], 3)
        with self.assertRaises(InteractionValidationError):
            harness.record_interaction("", "click")
        await harness.close()

    async def test_render_callback_failure_is_logged(self) -> None:
        def boom(output):
            raise RuntimeError("host crashed")

        harness = PreviewHarness(self.registry, ThemeResolver(), on_render=boom)
        with self.assertLogs("pagekit.preview", level="ERROR"):
            output = await harness.render_now(_manifest([{"id": "a", "type": "header"}]))
        self.assertTrue(output["ok"])
        self.assertIs(harness.output, output)
        await harness.close()

    async def test_close_cancels_pending_and_rejects_new_work(self) -> None:
        self.harness.submit(_manifest([{"id": "a", "type": "header"}]))
        await self.harness.close()
        self.assertFalse(self.harness.pending)
        self.assertEqual(self.harness.generation, 0)
        with self.assertRaises(RuntimeError):
            self.harness.submit(_manifest([]))
        self.assertEqual(self.harness.describe()["in_flight"], 0)


if __name__ == "__main__":
    unittest.main()
