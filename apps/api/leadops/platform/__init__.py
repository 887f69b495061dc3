from leadops.platform.errors import (
    BusinessRuleError,
    DomainError,
    NotFoundError,
    UnknownStoreError,
    ValidationFailure,
)

__all__ = [
    "DomainError",
    "ValidationFailure",
    "BusinessRuleError",
    "NotFoundError",
    "UnknownStoreError",
]
