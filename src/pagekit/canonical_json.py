"""Deterministic JSON serialization for manifests and exchange documents."""

from __future__ import annotations

import json
import math
from typing import Any


class CanonicalJsonTypeError(TypeError):
    """Raised when a value has no JSON representation."""


def check_json_value(obj: Any, path: str = "$") -> None:
    """Walk ``obj`` and raise on anything JSON cannot carry losslessly."""
    if obj is None or isinstance(obj, (str, bool, int)):
        return
    if isinstance(obj, float):
        if not math.isfinite(obj):
            raise ValueError(f"Non-finite float at {path}: {obj!r}")
        return
    if isinstance(obj, list):
        for idx, item in enumerate(obj):
            check_json_value(item, f"{path}[{idx}]")
        return
    if isinstance(obj, dict):
        for key, value in obj.items():
            if not isinstance(key, str):
                raise CanonicalJsonTypeError(f"Unsupported key type at {path}: {type(key).__name__}")
            check_json_value(value, f"{path}.{key}")
        return
    raise CanonicalJsonTypeError(f"Unsupported type at {path}: {type(obj).__name__}")


def canonical_dumps(obj: Any) -> str:
    """Compact form used for hashing: sorted keys, no whitespace, UTF-8 kept."""
    check_json_value(obj)
    return json.dumps(obj, sort_keys=True, ensure_ascii=False, separators=(",", ":"), allow_nan=False)


def pretty_dumps(obj: Any, indent: int = 2) -> str:
    """Human-readable form of the same document.

    Key order is sorted so two exports of equal documents are byte-identical,
    list order is preserved and the text always ends with a newline.
    """
    check_json_value(obj)
    text = json.dumps(obj, sort_keys=True, ensure_ascii=False, indent=indent, allow_nan=False)
    return text + "\n"
