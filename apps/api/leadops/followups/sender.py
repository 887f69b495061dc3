from __future__ import annotations

import logging
from typing import Protocol

from opentelemetry import trace

from leadops.context import get_correlation_id


logger = logging.getLogger("leadops.followups.sender")
tracer = trace.get_tracer("leadops.followups.sender")


class MessageDeliveryError(Exception):
    """Raised by a sender when the provider refused or failed the delivery."""


class MessageSender(Protocol):
    def send(self, *, tenant_id: str, phone: str, body: str) -> None: ...


class LoggingMessageSender:
    """Sender used when no delivery provider is wired; records the message in the log only."""

    def send(self, *, tenant_id: str, phone: str, body: str) -> None:
        with tracer.start_as_current_span("followups.send") as span:
            span.set_attribute("tenant_id", tenant_id)
            span.set_attribute("correlation_id", get_correlation_id() or "")
            logger.info("followups.message_sent", extra={"tenant_id": tenant_id, "provider": "log"})
