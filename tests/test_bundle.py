import io
import json
import os
import sys
import unittest
import zipfile


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.bundle import build_bundle, collect_asset_refs, components_used, read_bundle
from app.components import register_default_components
from component_registry import ComponentRegistry
from pagekit.manifest_hash import manifest_hash
from render_errors import StructuralError


EXPORTED_AT = "2024-05-01T12:00:00Z"


def _manifest():
    return {
        "id": "landing",
        "name": "Spring Launch",
        "version": "1.2.0",
        "owner_id": "tenant-1",
        "components": [
            {"id": "hero", "type": "hero", "props": {"title": "Hi", "background_image": "/img/hero.jpg"}},
            {
                "id": "body",
                "type": "section",
                "children": [
                    {"id": "pic", "type": "image", "props": {"src": "img/team.png?v=2", "alt": "Team"}},
                    {"id": "ext", "type": "image", "props": {"src": "https://cdn.example.com/a.webp", "alt": "Remote"}},
                ],
            },
            {"id": "promo", "type": "banner-x"},
        ],
        "metadata": {"title": "Spring", "favicon": "favicon.ico"},
    }


class TestAssetRefs(unittest.TestCase):
    def test_collect(self) -> None:
        local, remote = collect_asset_refs(_manifest())
        self.assertEqual(local, ["favicon.ico", "img/hero.jpg", "img/team.png"])
        self.assertEqual(remote, ["https://cdn.example.com/a.webp"])

    def test_parent_paths_are_ignored(self) -> None:
        manifest = _manifest()
        manifest["components"][0]["props"]["background_image"] = "../../etc/secret.png"
        local, _ = collect_asset_refs(manifest)
        self.assertNotIn("../../etc/secret.png", local)

    def test_components_used(self) -> None:
        registry = ComponentRegistry()
        register_default_components(registry)
        used = {item["type"]: item for item in components_used(_manifest(), registry)}
        self.assertEqual(used["image"]["count"], 2)
        self.assertEqual(used["image"]["version"], "1.0.0")
        self.assertTrue(used["hero"]["registered"])
        self.assertFalse(used["banner-x"]["registered"])
        self.assertEqual(used["banner-x"]["version"], "latest")


class TestBuildBundle(unittest.TestCase):
    def setUp(self) -> None:
        self.registry = ComponentRegistry()
        register_default_components(self.registry)

    def _build(self, **kwargs):
        return build_bundle(
            _manifest(),
            registry=self.registry,
            assets={"img/hero.jpg": b"jpeg-bytes"},
            exported_at=EXPORTED_AT,
            **kwargs,
        )

    def test_deterministic(self) -> None:
        self.assertEqual(self._build(), self._build())

    def test_contents(self) -> None:
        with zipfile.ZipFile(io.BytesIO(self._build())) as zf:
            names = zf.namelist()
            info = json.loads(zf.read("export-info.json"))
            readme = zf.read("README.md").decode("utf-8")
        self.assertEqual(names, ["manifest.json", "export-info.json", "README.md", "assets/img/hero.jpg"])
        self.assertEqual(info["format"], "pagekit-bundle")
        self.assertEqual(info["manifest_hash"], manifest_hash(_manifest()))
        self.assertEqual(info["exported_at"], EXPORTED_AT)
        self.assertEqual(info["assets"]["included"], ["img/hero.jpg"])
        self.assertEqual(info["assets"]["missing"], ["favicon.ico", "img/team.png"])
        self.assertEqual(info["assets"]["remote"], ["https://cdn.example.com/a.webp"])
        self.assertIn("# Spring Launch", readme)
        self.assertIn("| `hero` | 1.0.0 | Hero Section | layout | 1 |", readme)
        self.assertIn("Not registered at export time", readme)

    def test_read_bundle_round_trip(self) -> None:
        bundle = read_bundle(self._build())
        self.assertEqual(bundle["manifest"], _manifest())
        self.assertEqual(bundle["assets"], {"img/hero.jpg": b"jpeg-bytes"})
        self.assertEqual(bundle["info"]["manifest_id"], "landing")
        self.assertTrue(bundle["readme"].startswith("# Spring Launch"))

    def test_invalid_manifest(self) -> None:
        manifest = _manifest()
        del manifest["owner_id"]
        with self.assertRaises(StructuralError):
            build_bundle(manifest, exported_at=EXPORTED_AT)

    def test_invalid_asset_reference(self) -> None:
        with self.assertRaises(ValueError):
            build_bundle(_manifest(), assets={"../escape.png": b"x"}, exported_at=EXPORTED_AT)
        with self.assertRaises(ValueError):
            build_bundle(_manifest(), assets={"ok.png": "not bytes"}, exported_at=EXPORTED_AT)

    def test_read_bundle_rejects_garbage(self) -> None:
        with self.assertRaises(StructuralError) as ctx:
            read_bundle(b"not a zip")
        self.assertEqual(ctx.exception.issues[0]["code"], "BUNDLE_INVALID")

        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w") as zf:
            zf.writestr("README.md", "hi")
        with self.assertRaises(StructuralError) as ctx:
            read_bundle(buf.getvalue())
        self.assertEqual(ctx.exception.issues[0]["path"], "manifest.json")


if __name__ == "__main__":
    unittest.main()
