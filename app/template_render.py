"""Sandboxed jinja2 rendering for component snippets, pages and bundle docs.

Templates receive data only: attribute access and calls are refused and the
filter set is limited to formatting helpers.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Mapping

from jinja2 import StrictUndefined, Template, TemplateSyntaxError, Undefined, meta
from jinja2.sandbox import ImmutableSandboxedEnvironment
from markupsafe import Markup

SAFE_FILTERS = frozenset(
    ("default", "e", "escape", "float", "int", "join", "length", "lower", "replace", "round", "safe", "title", "trim", "truncate", "upper")
)
SAFE_TESTS = frozenset(("defined", "undefined", "none", "equalto"))


class ComponentSandbox(ImmutableSandboxedEnvironment):
    def is_safe_attribute(self, obj: Any, attr: str, value: Any) -> bool:
        return False

    def is_safe_callable(self, obj: Any) -> bool:
        return False


@lru_cache(maxsize=None)
def sandbox(*, strict: bool = False, html: bool = True) -> ComponentSandbox:
    env = ComponentSandbox(
        autoescape=html,
        undefined=StrictUndefined if strict else Undefined,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.globals.clear()
    env.filters = {name: fn for name, fn in env.filters.items() if name in SAFE_FILTERS}
    env.tests = {name: fn for name, fn in env.tests.items() if name in SAFE_TESTS}
    return env


def to_template_data(value: Any) -> Any:
    """Plain data for a template context. Markup survives; other objects become text."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Mapping):
        return {str(key): to_template_data(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_template_data(item) for item in value]
    return str(value)


def template_variables(text: str | None) -> set[str]:
    """Names a template reads from its context."""
    if not text:
        return set()
    return set(meta.find_undeclared_variables(sandbox().parse(text)))


def check_template(text: str, label: str = "template") -> list[dict]:
    try:
        sandbox().parse(text or "")
    except TemplateSyntaxError as exc:
        return [{"message": f"{label}: {exc.message}", "line": exc.lineno or 1}]
    return []


def compile_template(text: str, *, strict: bool = False, html: bool = True) -> Template:
    return sandbox(strict=strict, html=html).from_string(text or "")


def render_compiled(template: Template, context: Mapping[str, Any] | None) -> Markup:
    return Markup(template.render(to_template_data(context or {})))


def render_template(text: str | None, context: Mapping[str, Any] | None, strict: bool = True, html: bool = False) -> str:
    return compile_template(text or "", strict=strict, html=html).render(to_template_data(context or {}))
