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

from app.manifest_render import iter_output_nodes, render_manifest
from component_registry import ComponentRegistry
from theme_resolver import MemoryThemeSource, ThemeResolver, ThemeSource


def echo_factory(props, children):
    return {"props": props, "children": [child["id"] for child in children]}


def _manifest(components, **extra):
    manifest = {"id": "landing", "version": "1.0.0", "owner_id": "tenant-1", "components": components}
    manifest.update(extra)
    return manifest


class TestRenderManifest(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.registry = ComponentRegistry()
        self.registry.register("header", "1.0.0", echo_factory)
        self.registry.register("footer", "1.0.0", echo_factory)
        self.themes = ThemeResolver(global_defaults={"colors": {"primary": "#111111"}})

    async def test_unknown_type_renders_fallback_in_place(self) -> None:
        manifest = _manifest(
            [
                {"id": "a", "type": "header"},
                {"id": "b", "type": "banner-x"},
                {"id": "c", "type": "footer"},
            ]
        )
        output = await render_manifest(manifest, self.registry, self.themes)
        self.assertTrue(output["ok"])
        self.assertFalse(output["blocked"])
        self.assertEqual([node["id"] for node in output["nodes"]], ["a", "b", "c"])
        self.assertEqual([node["status"] for node in output["nodes"]], ["ok", "fallback", "ok"])
        self.assertEqual(output["nodes"][1]["reason"]["code"], "COMPONENT_NOT_FOUND")
        self.assertEqual(output["counts"], {"ok": 2, "fallback": 1, "error": 0})
        self.assertEqual(output["issues"][0]["path"], "components[1].type")

    async def test_order_preserved_when_resolutions_finish_out_of_order(self) -> None:
        finished = []

        def slow_loader(name, delay):
            async def loader():
                await asyncio.sleep(delay)
                finished.append(name)
                return echo_factory

            return loader

        self.registry.register("slow", "1.0.0", loader=slow_loader("slow", 0.05))
        self.registry.register("fast", "1.0.0", loader=slow_loader("fast", 0))
        self.registry.register("medium", "1.0.0", loader=slow_loader("medium", 0.02))
        manifest = _manifest([{"id": "1", "type": "slow"}, {"id": "2", "type": "fast"}, {"id": "3", "type": "medium"}])
        output = await render_manifest(manifest, self.registry, self.themes)
        self.assertEqual(finished, ["fast", "medium", "slow"])
        self.assertEqual([node["id"] for node in output["nodes"]], ["1", "2", "3"])
        self.assertTrue(all(node["status"] == "ok" for node in output["nodes"]))

    async def test_factory_exception_becomes_error_node(self) -> None:
        def broken(props, children):
            raise KeyError("title")

        self.registry.register("broken", "1.0.0", broken)
        manifest = _manifest([{"id": "a", "type": "broken"}, {"id": "b", "type": "footer"}])
        with self.assertLogs("pagekit.render", level="WARNING"):
            output = await render_manifest(manifest, self.registry, self.themes)
        self.assertTrue(output["ok"])
        self.assertEqual([node["status"] for node in output["nodes"]], ["error", "ok"])
        self.assertEqual(output["issues"][0]["code"], "COMPONENT_RENDER_FAILED")
        self.assertEqual(output["issues"][0]["detail"]["exc_type"], "KeyError")

    async def test_async_factory(self) -> None:
        async def async_factory(props, children):
            await asyncio.sleep(0)
            return "<p>async</p>"

        self.registry.register("async_text", "1.0.0", async_factory)
        output = await render_manifest(_manifest([{"id": "a", "type": "async_text"}]), self.registry, self.themes)
        self.assertEqual(output["nodes"][0]["output"], "<p>async</p>")

    async def test_invalid_manifest_blocks(self) -> None:
        manifest = _manifest([{"id": "a", "type": "header"}])
        del manifest["owner_id"]
        output = await render_manifest(manifest, self.registry, self.themes)
        self.assertFalse(output["ok"])
        self.assertTrue(output["blocked"])
        self.assertEqual(output["nodes"], [])
        self.assertIn("MANIFEST_OWNER_ID_MISSING", [e["code"] for e in output["errors"]])

    async def test_theme_props_merge_with_explicit_winning(self) -> None:
        self.registry.register(
            "banner",
            "1.0.0",
            echo_factory,
            [{"name": "size", "type": "string", "default": "large"}],
            theme_props={"background": "colors.primary", "accent": "colors.accent"},
            default_props={"accent": "#fallback"},
        )
        manifest = _manifest(
            [
                {"id": "a", "type": "banner"},
                {"id": "b", "type": "banner", "props": {"background": "#explicit"}},
                {"id": "c", "type": "banner", "theme": {"colors.primary": "#node"}},
            ]
        )
        output = await render_manifest(manifest, self.registry, self.themes)
        props = [node["props"] for node in output["nodes"]]
        self.assertEqual(props[0], {"size": "large", "background": "#111111", "accent": "#fallback"})
        self.assertEqual(props[1]["background"], "#explicit")
        self.assertEqual(props[2]["background"], "#node")
        undefined = [w for w in output["warnings"] if w["code"] == "THEME_TOKEN_UNDEFINED"]
        self.assertEqual(len(undefined), 3)
        self.assertEqual(undefined[0]["detail"], {"key": "colors.accent"})

    async def test_manifest_theme_tokens_apply(self) -> None:
        self.registry.register("banner", "1.0.0", echo_factory, theme_props={"background": "colors.primary"})
        manifest = _manifest([{"id": "a", "type": "banner"}], theme={"tokens": {"colors": {"primary": "#222222"}}})
        output = await render_manifest(manifest, self.registry, self.themes)
        self.assertEqual(output["nodes"][0]["props"]["background"], "#222222")
        self.assertIn("--colors-primary: #222222;", output["theme"]["css"])

    async def test_non_string_brand_id_still_renders(self) -> None:
        themes = ThemeResolver(MemoryThemeSource({"acme": {"colors": {"primary": "#333333"}}}))
        for brand_id in (["acme"], {"id": "acme"}, 7):
            with self.subTest(brand_id=brand_id):
                manifest = _manifest([{"id": "a", "type": "header"}], theme={"brand_id": brand_id})
                output = await render_manifest(manifest, self.registry, themes)
                self.assertTrue(output["ok"])
                self.assertEqual(output["errors"], [])
                self.assertEqual([node["status"] for node in output["nodes"]], ["ok"])
                codes = [w["code"] for w in output["warnings"]]
                self.assertIn("MANIFEST_THEME_INVALID", codes)
                self.assertIn("THEME_BRAND_INVALID", codes)

    async def test_hanging_brand_source_does_not_block_render(self) -> None:
        class HangingSource(ThemeSource):
            async def fetch_brand(self, brand_id):
                await asyncio.Event().wait()

        themes = ThemeResolver(HangingSource(), fetch_timeout=0.01)
        manifest = _manifest([{"id": "a", "type": "header"}], theme={"brand_id": "acme"})
        with self.assertLogs("pagekit.theme", level="WARNING"):
            output = await asyncio.wait_for(render_manifest(manifest, self.registry, themes), 1)
        self.assertTrue(output["ok"])
        self.assertEqual([node["status"] for node in output["nodes"]], ["ok"])
        self.assertIn("THEME_BRAND_UNAVAILABLE", [w["code"] for w in output["warnings"]])

    async def test_children_rendered_under_parent(self) -> None:
        manifest = _manifest(
            [
                {
                    "id": "outer",
                    "type": "header",
                    "children": [{"id": "inner1", "type": "footer"}, {"id": "inner2", "type": "footer"}],
                }
            ]
        )
        output = await render_manifest(manifest, self.registry, self.themes)
        outer = output["nodes"][0]
        self.assertEqual(outer["output"]["children"], ["inner1", "inner2"])
        self.assertEqual([node["id"] for node in iter_output_nodes(output["nodes"])], ["outer", "inner1", "inner2"])
        self.assertEqual(output["counts"]["ok"], 3)

    async def test_fallback_keeps_children(self) -> None:
        manifest = _manifest([{"id": "outer", "type": "missing", "children": [{"id": "inner", "type": "footer"}]}])
        output = await render_manifest(manifest, self.registry, self.themes)
        outer = output["nodes"][0]
        self.assertEqual(outer["status"], "fallback")
        self.assertEqual([child["status"] for child in outer["children"]], ["ok"])

    async def test_resolve_timeout_becomes_fallback(self) -> None:
        async def hanging_loader():
            await asyncio.sleep(5)
            return echo_factory

        self.registry.register("hanging", "1.0.0", loader=hanging_loader)
        with self.assertLogs("pagekit.render", level="WARNING"):
            output = await render_manifest(_manifest([{"id": "a", "type": "hanging"}]), self.registry, self.themes, resolve_timeout=0.01)
        self.assertEqual(output["nodes"][0]["status"], "fallback")
        self.assertEqual(output["nodes"][0]["reason"]["code"], "COMPONENT_RESOLVE_TIMEOUT")

    async def test_superseded_pass_returns_stale(self) -> None:
        current = {"value": True}

        async def loader():
            await asyncio.sleep(0.01)
            current["value"] = False
            return echo_factory

        self.registry.register("lazy", "1.0.0", loader=loader)
        output = await render_manifest(
            _manifest([{"id": "a", "type": "lazy"}]),
            self.registry,
            self.themes,
            generation=4,
            is_current=lambda: current["value"],
        )
        self.assertTrue(output["stale"])
        self.assertFalse(output["ok"])
        self.assertEqual(output["nodes"], [])
        self.assertEqual(output["generation"], 4)

    async def test_unexpected_failure_is_reported(self) -> None:
        class BrokenThemes(ThemeResolver):
            async def resolve_theme(self, manifest_theme, brand_id=None):
                raise RuntimeError("theme store down")

        with self.assertLogs("pagekit.render", level="ERROR"):
            output = await render_manifest(_manifest([{"id": "a", "type": "header"}]), self.registry, BrokenThemes())
        self.assertFalse(output["ok"])
        self.assertEqual(output["errors"][0]["code"], "RENDER_FAILED")


if __name__ == "__main__":
    unittest.main()
