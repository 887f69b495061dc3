from __future__ import annotations

import re
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token

# matches the width of every correlation_id column
CORRELATION_ID_MAX_LENGTH = 128
_CORRELATION_ID_RE = re.compile(r"^[A-Za-z0-9._:\-]+$")

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def new_correlation_id(prefix: str | None = None) -> str:
    value = str(uuid.uuid4())
    return f"{prefix}-{value}" if prefix else value


def normalize_correlation_id(raw: str | bytes | None) -> str | None:
    """Return an inbound correlation id if it is safe to store and echo back, else ``None``."""
    if isinstance(raw, bytes):
        raw = raw.decode("latin-1")
    if not raw:
        return None
    value = raw.strip()
    if len(value) > CORRELATION_ID_MAX_LENGTH or not _CORRELATION_ID_RE.match(value):
        return None
    return value


def set_correlation_id(value: str | None) -> Token[str | None]:
    return correlation_id_var.set(value)


def reset_correlation_id(token: Token[str | None]) -> None:
    correlation_id_var.reset(token)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


@contextmanager
def correlation_scope(value: str | None) -> Iterator[str | None]:
    token = set_correlation_id(value)
    try:
        yield value
    finally:
        reset_correlation_id(token)
