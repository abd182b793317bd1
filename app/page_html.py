"""HTML assembly for render output trees."""

from __future__ import annotations

import json
from typing import Any

from markupsafe import Markup, escape

from app.template_render import render_template


BASE_CSS = """
body { margin: 0; font-family: var(--typography-font-family); color: var(--colors-text); background: var(--colors-background); line-height: var(--typography-line-height); }
.pk-placeholder { border: 2px dashed var(--colors-muted); border-radius: var(--radius-md); padding: var(--spacing-md); margin: var(--spacing-sm); color: var(--colors-muted); font-size: 14px; }
.pk-error { border-color: var(--colors-error); color: var(--colors-error); }
.pk-blocked { border-color: var(--colors-error); color: var(--colors-error); }
""".strip()

DOCUMENT_TEMPLATE = """<!DOCTYPE html>
<html lang="{{ locale }}">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{{ title }}</title>
{% if description %}
<meta name="description" content="{{ description }}">
{% endif %}
{% if keywords %}
<meta name="keywords" content="{{ keywords | join(', ') }}">
{% endif %}
{% if og_image %}
<meta property="og:image" content="{{ og_image }}">
{% endif %}
<style>
{{ css }}
{{ base_css }}
</style>
</head>
<body data-manifest-id="{{ manifest_id }}" data-generation="{{ generation }}">
{{ body }}
</body>
</html>
"""


def _placeholder(node: dict, css_class: str, label: str) -> Markup:
    reason = node.get("reason") or {}
    return Markup(
        '<div class="pk-placeholder {cls}" data-node-id="{id}" data-type="{type}" data-status="{status}" title="{code}">{label}</div>'
    ).format(
        cls=css_class,
        id=node.get("id") or "",
        type=node.get("type") or "",
        status=node.get("status") or "",
        code=reason.get("code") or "",
        label=label,
    )


def _output_html(output: Any) -> Markup:
    if output is None:
        return Markup("")
    if isinstance(output, Markup):
        return output
    if isinstance(output, str):
        return Markup(output)
    if isinstance(output, dict) and isinstance(output.get("html"), str):
        return Markup(output["html"])
    return Markup("<pre>{}</pre>").format(json.dumps(output, default=str, indent=2))


def children_html(children: Any) -> Markup:
    if not isinstance(children, list):
        return Markup("")
    return Markup("").join(node_html(child) for child in children if isinstance(child, dict))


def node_html(node: dict) -> Markup:
    """HTML for one output node; fallback and error nodes become labeled placeholders."""
    status = node.get("status")
    if status == "ok":
        return _output_html(node.get("output"))
    reason = node.get("reason") or {}
    if status == "fallback":
        label = f"Component unavailable: {node.get('type')} ({reason.get('code') or 'COMPONENT_NOT_FOUND'})"
        return _placeholder(node, "pk-fallback", label) + children_html(node.get("children"))
    label = f"Component failed: {node.get('type')}: {reason.get('message') or 'render error'}"
    return _placeholder(node, "pk-error", label)


def _blocked_html(output: dict) -> Markup:
    items = Markup("").join(
        Markup("<li>{}: {}</li>").format(issue.get("code"), issue.get("message")) for issue in output.get("errors") or []
    )
    return Markup('<div class="pk-placeholder pk-blocked">Manifest failed validation<ul>{}</ul></div>').format(items)


def output_to_html(output: dict, metadata: dict | None = None) -> str:
    """Full HTML document for one render output."""
    metadata = metadata if isinstance(metadata, dict) else {}
    theme = output.get("theme") or {}
    css = str(theme.get("css") or "").replace("</", "<\\/")
    if output.get("blocked"):
        body = _blocked_html(output)
    else:
        body = Markup("\n").join(node_html(node) for node in output.get("nodes") or [])
    keywords = metadata.get("keywords")
    context = {
        "locale": metadata.get("locale") or "en",
        "title": metadata.get("title") or output.get("manifest_id") or "Preview",
        "description": metadata.get("description"),
        "keywords": keywords if isinstance(keywords, list) else None,
        "og_image": metadata.get("og_image"),
        "css": Markup(css),
        "base_css": Markup(BASE_CSS),
        "manifest_id": output.get("manifest_id") or "",
        "generation": output.get("generation", 0),
        "body": body,
    }
    return render_template(DOCUMENT_TEMPLATE, context, strict=False, html=True)
