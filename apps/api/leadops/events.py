from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from leadops.context import get_correlation_id
from leadops.core.events import event_bus

# every envelope published in this process, newest last
published_events: list[dict[str, Any]] = []


def publish(event_type: str, tenant_id: str, data: dict[str, Any]) -> dict[str, Any]:
    """Stamp ``data`` with the envelope keys and fan it out to in-process subscribers."""
    envelope: dict[str, Any] = {
        **data,
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "tenant_id": tenant_id,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "correlation_id": get_correlation_id(),
    }
    published_events.append(envelope)
    event_bus.publish(event_type, envelope)
    return envelope
