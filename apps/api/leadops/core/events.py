from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger("leadops.events")


@dataclass(frozen=True, slots=True)
class InternalEvent:
    name: str
    payload: dict[str, Any]

    @property
    def tenant_id(self) -> str | None:
        value = self.payload.get("tenant_id")
        return str(value) if value else None


EventHandler = Callable[[InternalEvent], None]


class InProcessEventBus:
    """Synchronous fan-out of published envelopes to in-process consumers.

    Events are published after the producing transaction committed, so a failing
    consumer is logged and skipped instead of failing the producer.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        self._subscribers[event_name].append(handler)

    def unsubscribe(self, event_name: str, handler: EventHandler) -> None:
        handlers = self._subscribers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event_name: str, payload: dict[str, Any]) -> int:
        event = InternalEvent(name=event_name, payload=payload)
        delivered = 0
        for handler in list(self._subscribers.get(event_name, [])):
            try:
                handler(event)
            except Exception as exc:
                logger.exception(
                    "events.handler_failed",
                    extra={"event_type": event_name, "tenant_id": event.tenant_id, "error": str(exc)},
                )
                continue
            delivered += 1
        return delivered


event_bus = InProcessEventBus()
