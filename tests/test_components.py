import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.components import DEFAULT_COMPONENTS, TemplateFactory, register_default_components
from app.manifest_render import render_manifest
from app.page_html import node_html, output_to_html
from component_registry import ComponentRegistry
from theme_resolver import ThemeResolver


class TestTemplateFactory(unittest.TestCase):
    def test_props_are_escaped(self) -> None:
        factory = TemplateFactory("<p>{{ text }}</p>", "para")
        self.assertEqual(factory({"text": "<b>hi</b>"}, []), "<p>&lt;b&gt;hi&lt;/b&gt;</p>")

    def test_children_html_is_not_escaped(self) -> None:
        factory = TemplateFactory("<div>{{ children }}</div>", "box")
        child = {"id": "c", "type": "text", "status": "ok", "output": "<p>child</p>"}
        self.assertEqual(factory({}, [child]), "<div><p>child</p></div>")

    def test_bad_template_rejected(self) -> None:
        with self.assertRaises(ValueError):
            TemplateFactory("{% if %}", "broken")


class TestDefaultComponents(unittest.TestCase):
    def test_registration_is_idempotent(self) -> None:
        registry = ComponentRegistry()
        register_default_components(registry)
        with self.assertNoLogs("pagekit.registry", level="WARNING"):
            register_default_components(registry)
        self.assertEqual(registry.stats()["component_count"], len(DEFAULT_COMPONENTS))
        self.assertEqual(registry.stats()["lazy_count"], 3)

    def test_templates_only_read_declared_props(self) -> None:
        for definition in DEFAULT_COMPONENTS:
            with self.subTest(type=definition["type"]):
                declared = {prop["name"] for prop in definition["prop_schema"]}
                declared |= set(definition.get("theme_props", {}))
                declared |= set(definition.get("default_props", {}))
                declared |= {"children", "props"}
                factory = TemplateFactory(definition["template"], definition["type"])
                self.assertEqual(factory.variables - declared, set())

    def test_categories(self) -> None:
        registry = ComponentRegistry()
        register_default_components(registry)
        layout = [item["type"] for item in registry.by_category("layout")]
        self.assertIn("hero", layout)
        self.assertNotIn("button", layout)


class TestPageHtml(unittest.IsolatedAsyncioTestCase):
    async def test_full_page(self) -> None:
        registry = ComponentRegistry()
        register_default_components(registry)
        manifest = {
            "id": "landing",
            "version": "1.0.0",
            "owner_id": "tenant-1",
            "theme": {"tokens": {"colors": {"primary": "#ff0000"}}},
            "components": [
                {"id": "hero", "type": "hero", "props": {"title": "Launch <now>"}, "children": [{"id": "cta", "type": "button", "props": {"text": "Go", "url": "/go"}}]},
                {"id": "x", "type": "banner-x", "children": [{"id": "t", "type": "text", "props": {"content": "kept"}}]},
                {"id": "pic", "type": "image", "props": {"src": "a.png", "alt": "A"}},
            ],
        }
        output = await render_manifest(manifest, registry, ThemeResolver())
        self.assertEqual([node["status"] for node in output["nodes"]], ["ok", "fallback", "ok"])
        hero = output["nodes"][0]
        self.assertEqual(hero["props"]["background_color"], "#ff0000")
        self.assertIn("Launch &lt;now&gt;", hero["output"])
        self.assertIn('data-action="click"', hero["output"])

        html = output_to_html(output, {"title": "Launch", "keywords": ["a", "b"]})
        self.assertIn("<title>Launch</title>", html)
        self.assertIn('content="a, b"', html)
        self.assertIn("--colors-primary: #ff0000;", html)
        self.assertIn("Component unavailable: banner-x (COMPONENT_NOT_FOUND)", html)
        self.assertIn("kept", html)
        self.assertIn('<img src="a.png" alt="A">', html)

    def test_error_placeholder(self) -> None:
        node = {"id": "n1", "type": "chart", "status": "error", "reason": {"code": "COMPONENT_RENDER_FAILED", "message": "bad <data>"}}
        html = str(node_html(node))
        self.assertIn('class="pk-placeholder pk-error"', html)
        self.assertIn('data-node-id="n1"', html)
        self.assertIn("Component failed: chart: bad &lt;data&gt;", html)

    def test_blocked_page(self) -> None:
        output = {"blocked": True, "errors": [{"code": "MANIFEST_OWNER_ID_MISSING", "message": "owner_id is required"}], "nodes": []}
        html = output_to_html(output)
        self.assertIn("Manifest failed validation", html)
        self.assertIn("MANIFEST_OWNER_ID_MISSING: owner_id is required", html)
        self.assertIn("<title>Preview</title>", html)


if __name__ == "__main__":
    unittest.main()
