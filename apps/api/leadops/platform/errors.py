from __future__ import annotations


class DomainError(Exception):
    """Base class for errors rendered as ``{"ok": false, "code", "message"}``."""

    status_code = 400
    default_code = "unknown"

    def __init__(self, message: str, code: str | None = None) -> None:
        self.message = message
        self.code = code or self.default_code
        super().__init__(message)


class ValidationFailure(DomainError):
    status_code = 400
    default_code = "validation_error"


class BusinessRuleError(DomainError):
    status_code = 409

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message, code=code)


class NotFoundError(DomainError):
    status_code = 404
    default_code = "not_found"


class UnknownStoreError(DomainError):
    status_code = 500
    default_code = "unknown"
