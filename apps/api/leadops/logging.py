from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from leadops.context import get_correlation_id
from leadops.core.config import Settings, get_settings


_BASE_RECORD_KEYS = set(logging.makeLogRecord({}).__dict__.keys()) | {"correlation_id"}
# emitted beside ``msg`` instead of inside ``fields``
_TOP_LEVEL_FIELDS = ("tenant_id",)
_KNOWN_FIELDS = frozenset(
    {
        "method",
        "path",
        "surface",
        "status_code",
        "duration_ms",
        "job_type",
        "status",
        "contact_id",
        "change_id",
        "job_id",
        "action",
        "provider",
        "event_type",
        "result",
        "error",
    }
)
_ERROR_MAX_LENGTH = 500

_DEFAULT_RECORD_FACTORY = logging.getLogRecordFactory()


def _record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _DEFAULT_RECORD_FACTORY(*args, **kwargs)
    record.correlation_id = get_correlation_id()
    return record


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line: envelope keys plus the whitelisted ``extra`` fields."""

    def __init__(self, service: str = "leadops-api", environment: str = "local") -> None:
        super().__init__()
        self.service = service
        self.environment = environment

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service,
            "env": self.environment,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
        }
        for key in _TOP_LEVEL_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value

        fields: dict[str, Any] = {
            key: value
            for key, value in record.__dict__.items()
            if key in _KNOWN_FIELDS and key not in _BASE_RECORD_KEYS
        }
        if isinstance(fields.get("error"), str):
            fields["error"] = fields["error"][:_ERROR_MAX_LENGTH]
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        payload["fields"] = fields
        return json.dumps(payload, default=str)


def configure_logging(settings: Settings | None = None) -> None:
    root_logger = logging.getLogger()
    if getattr(root_logger, "_leadops_configured", False):
        return

    settings = settings or get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JsonLogFormatter(service=settings.otel_service_name, environment=settings.app_env))

    root_logger.handlers.clear()
    root_logger.setLevel(level)
    logging.setLogRecordFactory(_record_factory)
    root_logger.addHandler(handler)
    root_logger._leadops_configured = True  # type: ignore[attr-defined]
