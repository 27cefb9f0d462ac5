# File: admingen/events.py
"""
AdminGen - Event Bus
=====================
Explicit subscription registry for model lifecycle and field-change events.

Handlers are subscribed during boot, the bus is frozen with the rest of
the registries, and runtime records dispatch into it from their save and
destroy hooks. Handler exceptions propagate to the caller of ``save``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from admingen.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("admingen.events")


@dataclass(frozen=True)
class EventContext:
    """What a handler receives."""

    record: Any
    event: str
    changes: Dict[str, Tuple[Any, Any]] = field(default_factory=dict)
    field: Optional[str] = None

    @property
    def model_name(self) -> str:
        return self.record.__schema__.model_name

    def old_value(self) -> Any:
        if self.field is None or self.field not in self.changes:
            return None
        return self.changes[self.field][0]

    def new_value(self) -> Any:
        if self.field is None or self.field not in self.changes:
            return None
        return self.changes[self.field][1]


Handler = Callable[[EventContext], None]


class EventBus:
    """(model, event) -> handlers."""

    def __init__(self) -> None:
        self._handlers: Dict[Tuple[str, str], List[Handler]] = {}
        self._frozen: bool = False

    def subscribe(self, model: str, event: str, handler: Handler) -> None:
        if self._frozen:
            raise ConfigurationError(
                f"Event bus is frozen; cannot subscribe to '{model}.{event}'"
            )
        self._handlers.setdefault((model, event), []).append(handler)

    def freeze(self) -> "EventBus":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def handlers(self, model: str, event: str) -> List[Handler]:
        return list(self._handlers.get((model, event), []))

    def dispatch(
        self,
        record: Any,
        event: str,
        changes: Optional[Dict[str, Tuple[Any, Any]]] = None,
        field: Optional[str] = None,
    ) -> int:
        """Call every handler of ``(record's model, event)``; returns how many ran."""
        model: str = record.__schema__.model_name
        handlers: List[Handler] = self._handlers.get((model, event), [])
        if not handlers:
            return 0
        context: EventContext = EventContext(
            record=record, event=event, changes=dict(changes or {}), field=field
        )
        logger.debug("Dispatching %s.%s to %d handler(s)", model, event, len(handlers))
        for handler in handlers:
            handler(context)
        return len(handlers)

    def __repr__(self) -> str:
        return f"<EventBus subscriptions={len(self._handlers)}{' frozen' if self._frozen else ''}>"


__all__: List[str] = ["EventBus", "EventContext", "Handler"]
