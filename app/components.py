"""Built-in component library rendered from sandboxed jinja2 snippets."""

from __future__ import annotations

import logging
from typing import Any

from component_registry import ComponentRegistry
from app.page_html import children_html
from app.template_render import check_template, compile_template, render_compiled, template_variables


logger = logging.getLogger("pagekit.components")

DEFAULT_VERSION = "1.0.0"


class TemplateFactory:
    """Component factory backed by a jinja2 snippet.

    Props are exposed as top-level template variables and as ``props``;
    ``children`` holds the rendered children HTML.
    """

    def __init__(self, template: str, name: str | None = None) -> None:
        errors = check_template(template, name or "component")
        if errors:
            raise ValueError(errors[0]["message"])
        self.name = name or "component"
        self.__name__ = f"TemplateFactory[{self.name}]"
        self.template_text = template
        self.variables = template_variables(template)
        self._compiled = compile_template(template)

    def __call__(self, props: dict, children: list | None = None) -> str:
        context: dict[str, Any] = dict(props or {})
        context["props"] = dict(props or {})
        context["children"] = children_html(children or [])
        return str(render_compiled(self._compiled, context))


def _options(*values: Any) -> list[dict]:
    return [{"value": value, "label": str(value).replace("-", " ").title()} for value in values]


HERO_TEMPLATE = """<section class="pk-hero pk-hero--{{ layout }} pk-hero--{{ height }}" style="background:{{ background_color }};color:{{ text_color }};padding:{{ padding }}{% if background_image %};background-image:url('{{ background_image }}'){% endif %}">
<h1 style="font-family:{{ heading_font }}">{{ title }}</h1>
{% if subtitle %}<p>{{ subtitle }}</p>{% endif %}
{% if cta_text %}<a class="pk-button" href="{{ cta_url | default('#') }}" data-action="cta">{{ cta_text }}</a>{% endif %}
{{ children }}
</section>"""

TEXT_TEMPLATE = """<div class="pk-text pk-text--{{ font_size }}" style="text-align:{{ alignment }};color:{{ text_color }}">{{ content }}</div>"""

BUTTON_TEMPLATE = """<a class="pk-button pk-button--{{ style }} pk-button--{{ size }}" href="{{ url }}" style="background:{{ background_color }};border-radius:{{ radius }}"{% if open_in_new_tab %} target="_blank" rel="noopener"{% endif %} data-action="click">{{ text }}</a>"""

IMAGE_TEMPLATE = """<figure class="pk-image pk-image--{{ width }}" style="text-align:{{ alignment }}">
<img src="{{ src }}" alt="{{ alt }}">
{% if caption %}<figcaption>{{ caption }}</figcaption>{% endif %}
</figure>"""

FORM_TEMPLATE = """<form class="pk-form pk-form--{{ layout }}" data-form-id="{{ form_id }}" data-action="submit">
{% if show_title and title %}<h2>{{ title }}</h2>{% endif %}
{% for field in fields %}
<label>{{ field['label'] | default(field['name']) }}<input name="{{ field['name'] }}" type="{{ field['input'] | default('text') }}"{% if field['required'] %} required{% endif %}></label>
{% endfor %}
<button type="submit" style="background:{{ button_color }}">{{ submit_text }}</button>
</form>"""

SECTION_TEMPLATE = """<section class="pk-section pk-section--{{ padding }}" style="background:{{ background_color }}">
{% if title %}<h2>{{ title }}</h2>{% endif %}
{% if subtitle %}<p>{{ subtitle }}</p>{% endif %}
{% if content %}<div>{{ content }}</div>{% endif %}
{{ children }}
</section>"""

COLUMNS_TEMPLATE = """<div class="pk-columns" style="display:grid;grid-template-columns:repeat({{ columns }},1fr);gap:{{ gap }}">{{ children }}</div>"""

HEADER_TEMPLATE = """<header class="pk-header pk-header--{{ background }}"{% if sticky %} style="position:sticky;top:0"{% endif %}>
<span class="pk-logo">{{ logo }}</span>
<nav>{% for item in navigation %}<a href="{{ item['url'] | default('#') }}" data-action="navigate">{{ item['label'] }}</a>{% endfor %}</nav>
</header>"""

FOOTER_TEMPLATE = """<footer class="pk-footer" style="background:{{ background_color }};color:{{ text_color }}">
<p>{{ text }}</p>
{% if links %}<nav>{% for link in links %}<a href="{{ link['url'] | default('#') }}">{{ link['label'] }}</a>{% endfor %}</nav>{% endif %}
</footer>"""

SPACER_TEMPLATE = """<div class="pk-spacer" style="height:{{ height }}"></div>"""

FEATURE_GRID_TEMPLATE = """<section class="pk-feature-grid pk-feature-grid--{{ layout }}">
{% if title %}<h2>{{ title }}</h2>{% endif %}
{% if description %}<p>{{ description }}</p>{% endif %}
<div style="display:grid;grid-template-columns:repeat({{ columns }},1fr);gap:{{ gap }}">
{% for feature in features %}<div class="pk-feature"><h3>{{ feature['title'] }}</h3><p>{{ feature['description'] }}</p></div>{% endfor %}
</div>
</section>"""


def _lazy(template: str, name: str):
    def loader() -> TemplateFactory:
        return TemplateFactory(template, name)

    loader.__name__ = f"load_{name}"
    return loader


DEFAULT_COMPONENTS: list[dict] = [
    {
        "type": "hero",
        "name": "Hero Section",
        "description": "Large banner with headline and call-to-action",
        "category": "layout",
        "container": True,
        "template": HERO_TEMPLATE,
        "prop_schema": [
            {"name": "title", "type": "string", "required": True, "description": "Main headline"},
            {"name": "subtitle", "type": "string", "description": "Supporting text"},
            {"name": "cta_text", "type": "string", "description": "Call-to-action button text"},
            {"name": "cta_url", "type": "string", "description": "Call-to-action URL"},
            {"name": "background_image", "type": "string", "description": "Background image URL"},
            {"name": "layout", "type": "string", "default": "centered", "options": _options("centered", "left", "split")},
            {"name": "height", "type": "string", "default": "large", "options": _options("small", "medium", "large", "full")},
        ],
        "theme_props": {
            "background_color": "colors.primary",
            "text_color": "colors.background",
            "heading_font": "typography.heading_font_family",
            "padding": "spacing.xl",
        },
        "default_props": {"background_color": "#2563eb", "text_color": "#ffffff", "padding": "48px", "heading_font": "sans-serif"},
    },
    {
        "type": "text",
        "name": "Text Content",
        "description": "Paragraph of text",
        "category": "content",
        "template": TEXT_TEMPLATE,
        "prop_schema": [
            {"name": "content", "type": "string", "required": True, "description": "Text content"},
            {"name": "alignment", "type": "string", "default": "left", "options": _options("left", "center", "right")},
            {"name": "font_size", "type": "string", "default": "medium", "options": _options("small", "medium", "large")},
        ],
        "theme_props": {"text_color": "colors.text"},
        "default_props": {"text_color": "inherit"},
    },
    {
        "type": "button",
        "name": "Button",
        "description": "Link styled as a button",
        "category": "interactive",
        "template": BUTTON_TEMPLATE,
        "prop_schema": [
            {"name": "text", "type": "string", "required": True, "description": "Button text"},
            {"name": "url", "type": "string", "required": True, "description": "Link URL"},
            {"name": "style", "type": "string", "default": "primary", "options": _options("primary", "secondary", "outline")},
            {"name": "size", "type": "string", "default": "medium", "options": _options("small", "medium", "large")},
            {"name": "open_in_new_tab", "type": "boolean", "default": False},
        ],
        "theme_props": {"background_color": "colors.primary", "radius": "radius.md"},
        "default_props": {"background_color": "#2563eb", "radius": "8px"},
    },
    {
        "type": "image",
        "name": "Image",
        "description": "Image with optional caption",
        "category": "content",
        "template": IMAGE_TEMPLATE,
        "lazy": True,
        "prop_schema": [
            {"name": "src", "type": "string", "required": True, "description": "Image URL"},
            {"name": "alt", "type": "string", "required": True, "description": "Alt text for accessibility"},
            {"name": "caption", "type": "string", "description": "Image caption"},
            {"name": "width", "type": "string", "default": "full", "options": _options("small", "medium", "large", "full")},
            {"name": "alignment", "type": "string", "default": "center", "options": _options("left", "center", "right")},
        ],
    },
    {
        "type": "form",
        "name": "Form",
        "description": "Lead capture form",
        "category": "interactive",
        "template": FORM_TEMPLATE,
        "lazy": True,
        "prop_schema": [
            {"name": "form_id", "type": "string", "required": True, "description": "Form identifier"},
            {"name": "title", "type": "string", "description": "Form title"},
            {"name": "show_title", "type": "boolean", "default": True},
            {"name": "fields", "type": "array", "default": [], "description": "Field objects with name, label, input, required"},
            {"name": "submit_text", "type": "string", "default": "Submit"},
            {"name": "layout", "type": "string", "default": "vertical", "options": _options("vertical", "horizontal", "inline")},
        ],
        "theme_props": {"button_color": "colors.primary"},
        "default_props": {"button_color": "#2563eb"},
    },
    {
        "type": "section",
        "name": "Section",
        "description": "Container section with optional title",
        "category": "layout",
        "container": True,
        "template": SECTION_TEMPLATE,
        "prop_schema": [
            {"name": "title", "type": "string", "description": "Section title"},
            {"name": "subtitle", "type": "string", "description": "Section subtitle"},
            {"name": "content", "type": "string", "description": "Section content"},
            {"name": "padding", "type": "string", "default": "medium", "options": _options("none", "small", "medium", "large")},
        ],
        "theme_props": {"background_color": "colors.surface"},
        "default_props": {"background_color": "transparent"},
    },
    {
        "type": "columns",
        "name": "Columns",
        "description": "Grid of child components",
        "category": "layout",
        "container": True,
        "template": COLUMNS_TEMPLATE,
        "prop_schema": [
            {"name": "columns", "type": "number", "default": 2, "options": _options(1, 2, 3, 4)},
        ],
        "theme_props": {"gap": "spacing.md"},
        "default_props": {"gap": "16px"},
    },
    {
        "type": "header",
        "name": "Header",
        "description": "Site header with logo and navigation",
        "category": "layout",
        "template": HEADER_TEMPLATE,
        "prop_schema": [
            {"name": "logo", "type": "string", "required": True, "description": "Logo text or image URL"},
            {"name": "navigation", "type": "array", "default": [], "description": "Navigation items with label and url"},
            {"name": "sticky", "type": "boolean", "default": False},
            {"name": "background", "type": "string", "default": "transparent", "options": _options("transparent", "white", "dark")},
        ],
    },
    {
        "type": "footer",
        "name": "Footer",
        "description": "Site footer",
        "category": "layout",
        "template": FOOTER_TEMPLATE,
        "prop_schema": [
            {"name": "text", "type": "string", "default": ""},
            {"name": "links", "type": "array", "default": []},
        ],
        "theme_props": {"background_color": "colors.surface", "text_color": "colors.muted"},
        "default_props": {"background_color": "#f8fafc", "text_color": "#64748b"},
    },
    {
        "type": "spacer",
        "name": "Spacer",
        "description": "Vertical whitespace",
        "category": "layout",
        "template": SPACER_TEMPLATE,
        "prop_schema": [{"name": "height", "type": "string", "default": "32px"}],
    },
    {
        "type": "feature_grid",
        "name": "Feature Grid",
        "description": "Grid of feature highlights",
        "category": "content",
        "template": FEATURE_GRID_TEMPLATE,
        "lazy": True,
        "prop_schema": [
            {"name": "title", "type": "string"},
            {"name": "description", "type": "string"},
            {"name": "features", "type": "array", "required": True, "description": "Feature objects with title and description"},
            {"name": "columns", "type": "number", "default": 3, "options": _options(2, 3, 4)},
            {"name": "layout", "type": "string", "default": "cards", "options": _options("cards", "list", "minimal")},
        ],
        "theme_props": {"gap": "spacing.lg"},
        "default_props": {"gap": "24px"},
    },
]


# one factory/loader object per type so repeated registration is a no-op
_TARGETS: dict[str, Any] = {}


def _target(definition: dict) -> Any:
    ctype = definition["type"]
    if ctype not in _TARGETS:
        if definition.get("lazy"):
            _TARGETS[ctype] = _lazy(definition["template"], ctype)
        else:
            _TARGETS[ctype] = TemplateFactory(definition["template"], ctype)
    return _TARGETS[ctype]


def register_default_components(registry: ComponentRegistry, version: str = DEFAULT_VERSION) -> list:
    entries = []
    for definition in DEFAULT_COMPONENTS:
        item = {k: v for k, v in definition.items() if k not in ("template", "lazy")}
        if definition.get("lazy"):
            item["loader"] = _target(definition)
        else:
            item["factory"] = _target(definition)
        item["version"] = version
        entries.append(item)
    registered = registry.register_many(entries)
    logger.info("default_components_registered count=%s version=%s", len(registered), version)
    return registered
