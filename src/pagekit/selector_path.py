"""Selector paths: JSON Pointers whose list segments may be ``@[id=...]``.

``/components/@[id=hero]/props/title`` resolves to ``/components/0/props/title``
when the node with id ``hero`` sits at index 0. ``find_node_pointer`` locates a
component node anywhere in the tree, including nested ``children``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, List


@dataclass
class SelectorPathError(Exception):
    message: str
    segment: str
    pointer_so_far: str

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return f"{self.message} (segment={self.segment!r}, pointer={self.pointer_so_far!r})"


class PointerResolveError(SelectorPathError):
    pass


class SelectorTypeError(SelectorPathError):
    pass


class SelectorNotFound(SelectorPathError):
    pass


class SelectorNotUnique(SelectorPathError):
    pass


_SELECTOR_PREFIX = "@[id="


def decode_segment(segment: str) -> str:
    return segment.replace("~1", "/").replace("~0", "~")


def encode_segment(segment: str) -> str:
    return segment.replace("~", "~0").replace("/", "~1")


def split_pointer(pointer: str) -> List[str]:
    if pointer == "":
        return []
    parts = pointer.split("/")
    if parts and parts[0] == "":
        parts = parts[1:]
    return parts


def is_selector(segment: str) -> bool:
    return segment.startswith(_SELECTOR_PREFIX) and segment.endswith("]") and len(segment) > len(_SELECTOR_PREFIX) + 1


def has_selector(path: str) -> bool:
    return isinstance(path, str) and _SELECTOR_PREFIX in path


def _match_selector(current: Any, raw_segment: str, pointer_so_far: str) -> int:
    if not isinstance(current, list):
        raise SelectorTypeError("Selector segment used on non-list", raw_segment, pointer_so_far)
    target_id = raw_segment[len(_SELECTOR_PREFIX) : -1]
    matches = [
        idx
        for idx, item in enumerate(current)
        if isinstance(item, dict) and isinstance(item.get("id"), str) and item.get("id") == target_id
    ]
    if not matches:
        raise SelectorNotFound("Selector did not match any element", raw_segment, pointer_so_far)
    if len(matches) > 1:
        raise SelectorNotUnique("Selector matched multiple elements", raw_segment, pointer_so_far)
    return matches[0]


def _step(current: Any, raw_segment: str, pointer_so_far: str) -> tuple[Any, str]:
    segment = decode_segment(raw_segment)
    if isinstance(current, dict):
        if segment not in current:
            raise PointerResolveError("Missing object key", raw_segment, pointer_so_far)
        return current[segment], encode_segment(segment)
    if isinstance(current, list):
        if not segment.isdigit():
            raise PointerResolveError("Invalid list index", raw_segment, pointer_so_far)
        idx = int(segment)
        if idx >= len(current):
            raise PointerResolveError("List index out of range", raw_segment, pointer_so_far)
        return current[idx], str(idx)
    raise PointerResolveError("Cannot traverse into non-container", raw_segment, pointer_so_far)


def resolve_selector_path(doc: Any, selector_path: str, *, allow_missing_leaf: bool = False) -> str:
    """Resolve selector segments to numeric indices and return a JSON Pointer.

    With ``allow_missing_leaf`` the final segment is passed through untouched so
    paths used by ``add`` (``/components/-`` or a new key) can be resolved.
    """
    segments = split_pointer(selector_path)
    if not segments:
        return ""
    current = doc
    out: List[str] = []
    for pos, raw_segment in enumerate(segments):
        pointer_so_far = "/" + "/".join(out) if out else ""
        last = pos == len(segments) - 1
        if is_selector(raw_segment):
            idx = _match_selector(current, raw_segment, pointer_so_far)
            current = current[idx]
            out.append(str(idx))
            continue
        if last and allow_missing_leaf:
            out.append(raw_segment)
            break
        current, resolved = _step(current, raw_segment, pointer_so_far)
        out.append(resolved)
    return "/" + "/".join(out)


def iter_node_pointers(nodes: Any, base: str = "/components") -> Iterator[tuple[str, dict]]:
    """Yield ``(pointer, node)`` depth-first in document order."""
    if not isinstance(nodes, list):
        return
    for idx, node in enumerate(nodes):
        if not isinstance(node, dict):
            continue
        pointer = f"{base}/{idx}"
        yield pointer, node
        yield from iter_node_pointers(node.get("children"), f"{pointer}/children")


def find_node_pointer(manifest: Any, node_id: str) -> str:
    """Return the JSON Pointer of the component node with ``node_id``."""
    components = manifest.get("components") if isinstance(manifest, dict) else None
    matches = [pointer for pointer, node in iter_node_pointers(components) if node.get("id") == node_id]
    segment = f"{_SELECTOR_PREFIX}{node_id}]"
    if not matches:
        raise SelectorNotFound("No component node with this id", segment, "/components")
    if len(matches) > 1:
        raise SelectorNotUnique("Component node id is not unique", segment, "/components")
    return matches[0]
