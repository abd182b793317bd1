"""Error taxonomy for the manifest rendering engine.

Only ``StructuralError`` stops a render. The others are captured per node and
surface in the render output as ``fallback``/``error`` nodes or warnings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List


Issue = Dict[str, Any]


def make_issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {"code": code, "message": message, "path": path, "detail": detail}


@dataclass
class EngineError(Exception):
    message: str

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return self.message

    def to_issue(self, path: str | None = None) -> Issue:
        return make_issue("ENGINE_ERROR", self.message, path)


@dataclass
class StructuralError(EngineError):
    issues: List[Issue] = field(default_factory=list)

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        codes = ", ".join(issue.get("code", "?") for issue in self.issues)
        return f"{self.message} ({codes})" if codes else self.message

    def to_issue(self, path: str | None = None) -> Issue:
        first = self.issues[0] if self.issues else None
        if first:
            return dict(first)
        return make_issue("MANIFEST_INVALID", self.message, path)


@dataclass
class ResolutionError(EngineError):
    code: str = "COMPONENT_NOT_FOUND"
    component_type: str | None = None
    version: str | None = None

    def to_issue(self, path: str | None = None) -> Issue:
        return make_issue(
            self.code,
            self.message,
            path,
            {"type": self.component_type, "version": self.version},
        )


@dataclass
class RenderError(EngineError):
    node_id: str | None = None
    exc_type: str | None = None

    def to_issue(self, path: str | None = None) -> Issue:
        return make_issue("COMPONENT_RENDER_FAILED", self.message, path, {"node_id": self.node_id, "exc_type": self.exc_type})


@dataclass
class ThemeResolutionError(EngineError):
    key: str = ""

    def to_issue(self, path: str | None = None) -> Issue:
        return make_issue("THEME_TOKEN_UNDEFINED", self.message, path, {"key": self.key})
