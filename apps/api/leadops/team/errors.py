from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from leadops.platform.errors import BusinessRuleError, DomainError, NotFoundError, UnknownStoreError, ValidationFailure

TeamBusinessErrorCode = Literal[
    "broker_seat_limit_reached",
    "invite_already_pending",
    "not_found",
    "validation_error",
    "unknown",
]

SEAT_LIMIT_MESSAGE = "Broker seat limit reached for the current plan."
INVITE_PENDING_MESSAGE = "There is already a pending invite for this email."


@dataclass(frozen=True, slots=True)
class TeamBusinessError:
    code: TeamBusinessErrorCode
    message: str


def map_team_business_error(message: str | None, details: str | None = None) -> TeamBusinessError:
    """Classify a store error by the signatures our constraints and triggers emit."""
    text = (message or "").strip()
    detail = (details or "").strip()
    lowered = text.lower()

    if "broker_seat_limit_reached" in detail or "broker seat limit reached" in lowered:
        return TeamBusinessError("broker_seat_limit_reached", text or SEAT_LIMIT_MESSAGE)
    if "already_pending" in detail or "pending invite" in lowered:
        return TeamBusinessError("invite_already_pending", text or INVITE_PENDING_MESSAGE)
    if "not found" in lowered:
        return TeamBusinessError("not_found", text or "Record not found.")
    if "validation_error" in detail:
        return TeamBusinessError("validation_error", text or "Invalid data.")
    if not text:
        return TeamBusinessError("unknown", "Unexpected error.")
    return TeamBusinessError("unknown", text)


def store_error_details(exc: SQLAlchemyError) -> tuple[str, str | None]:
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        orig = exc.orig
        diag = getattr(orig, "diag", None)
        details = getattr(diag, "message_detail", None) if diag is not None else None
        return str(orig), details
    return str(exc), None


def to_domain_error(exc: SQLAlchemyError) -> DomainError:
    message, details = store_error_details(exc)
    mapped = map_team_business_error(message, details)
    if mapped.code == "not_found":
        return NotFoundError(mapped.message)
    if mapped.code == "validation_error":
        return ValidationFailure(mapped.message)
    if mapped.code == "unknown":
        return UnknownStoreError(mapped.message)
    return BusinessRuleError(mapped.code, mapped.message)
