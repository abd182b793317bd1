"""Ordered log of (component_id, action_type, payload) interaction events.

The log records and forwards events for host tooling. It never interprets
them.
"""

from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Tuple

from pagekit.canonical_json import canonical_dumps


logger = logging.getLogger("pagekit.interactions")

Interaction = Dict[str, Any]
Handler = Callable[[Interaction], None]


@dataclass
class InteractionValidationError(Exception):
    code: str
    message: str
    path: str | None = None

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        base = f"{self.code}: {self.message}"
        return f"{base} (path={self.path})" if self.path else base


def _raise(code: str, message: str, path: str | None = None) -> None:
    raise InteractionValidationError(code=code, message=message, path=path)


def _validate_payload(payload: Any) -> None:
    if not isinstance(payload, dict):
        _raise("INTERACTION_PAYLOAD_INVALID", "payload must be an object", "payload")
    try:
        canonical_dumps(payload)
    except (TypeError, ValueError) as exc:
        _raise("INTERACTION_PAYLOAD_INVALID", str(exc), "payload")


def make_interaction(component_id: str, action_type: str, payload: dict | None, seq: int) -> Interaction:
    if not isinstance(component_id, str) or not component_id.strip():
        _raise("INTERACTION_COMPONENT_ID_INVALID", "component_id must be non-empty string", "component_id")
    if not isinstance(action_type, str) or not action_type.strip():
        _raise("INTERACTION_ACTION_TYPE_INVALID", "action_type must be non-empty string", "action_type")
    payload = {} if payload is None else payload
    _validate_payload(payload)
    return {
        "event_id": str(uuid.uuid4()),
        "seq": seq,
        "component_id": component_id,
        "action_type": action_type,
        "payload": copy.deepcopy(payload),
        "occurred_at": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
    }


class InteractionLog:
    def __init__(self) -> None:
        self._events: List[Interaction] = []
        self._subs: List[Tuple[Handler, str | None]] = []
        self._seq = 0

    def subscribe(self, handler: Handler, action_type: str | None = None) -> None:
        self._subs.append((handler, action_type))

    def unsubscribe(self, handler: Handler) -> bool:
        before = len(self._subs)
        self._subs = [(h, a) for (h, a) in self._subs if h is not handler]
        return len(self._subs) != before

    def record(self, component_id: str, action_type: str, payload: dict | None = None) -> Interaction:
        event = make_interaction(component_id, action_type, payload, self._seq + 1)
        self._seq += 1
        self._events.append(event)
        logger.debug("interaction_recorded seq=%s component_id=%s action_type=%s", event["seq"], component_id, action_type)
        for handler, wanted in list(self._subs):
            if wanted is not None and wanted != action_type:
                continue
            try:
                handler(copy.deepcopy(event))
            except Exception:
                logger.exception("interaction_handler_failed seq=%s action_type=%s", event["seq"], action_type)
        return copy.deepcopy(event)

    def events(self, component_id: str | None = None) -> list[Interaction]:
        items = self._events
        if component_id is not None:
            items = [event for event in items if event["component_id"] == component_id]
        return copy.deepcopy(items)

    def __len__(self) -> int:
        return len(self._events)

    def clear(self) -> None:
        self._events.clear()
