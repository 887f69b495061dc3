from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    OWNER = "owner"
    MANAGER = "manager"
    ASSISTANT = "assistant"
    BROKER = "broker"


_MANAGEMENT_ROLES = frozenset({Role.OWNER, Role.MANAGER})


def parse_role(value: str | None) -> Role | None:
    if not value:
        return None
    try:
        return Role(value.strip().lower())
    except ValueError:
        return None


def can_manage_team(role: Role | None) -> bool:
    return role in _MANAGEMENT_ROLES


def can_manage_billing(role: Role | None) -> bool:
    return role in _MANAGEMENT_ROLES


def can_run_automation(role: Role | None) -> bool:
    return role in _MANAGEMENT_ROLES


def consumes_seat(role: Role | str | None) -> bool:
    resolved = role if isinstance(role, Role) else parse_role(role)
    return resolved is Role.BROKER
