"""Seat capacity arithmetic: billing-cycle windows, upgrade proration, capacity alerts."""

from __future__ import annotations

import calendar
import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

from leadops.platform.timeutils import as_utc, utcnow

BillingInterval = Literal["monthly", "yearly"]
AlertLevel = Literal["warning", "limit"]

MAX_CYCLE_STEPS = 600
SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True, slots=True)
class SeatUsage:
    used: int
    seat_limit: int
    available: int

    def as_dict(self) -> dict[str, int]:
        return {"used": self.used, "seat_limit": self.seat_limit, "available": self.available}


@dataclass(frozen=True, slots=True)
class BillingCycle:
    start: datetime
    end: datetime
    total_days: int
    remaining_days: int
    interval: BillingInterval


@dataclass(frozen=True, slots=True)
class UpgradeProration:
    seats_delta: int
    unit_price_cents: int
    prorated_amount_cents: int
    total_days: int
    remaining_days: int


@dataclass(frozen=True, slots=True)
class SeatCapacityAlert:
    level: AlertLevel
    threshold: int
    message: str


def compute_seat_usage(used: int, seat_limit: int) -> SeatUsage:
    return SeatUsage(used=used, seat_limit=seat_limit, available=max(0, seat_limit - used))


def normalize_interval(value: str | None) -> BillingInterval:
    return "yearly" if value == "yearly" else "monthly"


def add_interval(value: datetime, interval: BillingInterval, steps: int = 1) -> datetime:
    months = steps * (12 if interval == "yearly" else 1)
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _ceil_days(seconds: float) -> int:
    return math.ceil(seconds / SECONDS_PER_DAY)


def compute_current_billing_cycle(
    anchor: datetime | None,
    interval: str | None,
    now: datetime | None = None,
) -> BillingCycle:
    """Return the cycle window containing ``now``.

    Boundaries are whole calendar months (or years) counted from the anchor
    itself, with the day clamped to the target month length, so a month-end
    anchor keeps landing on month ends. The offset is capped at
    ``MAX_CYCLE_STEPS`` in each direction.
    """
    resolved_interval = normalize_interval(interval)
    current = as_utc(now) if now is not None else utcnow()
    base = as_utc(anchor) if isinstance(anchor, datetime) else current

    offset = 0
    while offset > -MAX_CYCLE_STEPS and add_interval(base, resolved_interval, offset) > current:
        offset -= 1
    while offset < MAX_CYCLE_STEPS and add_interval(base, resolved_interval, offset + 1) <= current:
        offset += 1

    start = add_interval(base, resolved_interval, offset)
    end = add_interval(base, resolved_interval, offset + 1)
    total_days = max(1, _ceil_days((end - start).total_seconds()))
    remaining_days = max(0, min(total_days, _ceil_days((end - current).total_seconds())))
    return BillingCycle(
        start=start,
        end=end,
        total_days=total_days,
        remaining_days=remaining_days,
        interval=resolved_interval,
    )


def calculate_upgrade_proration(
    *,
    old_limit: int,
    new_limit: int,
    unit_price_cents: int,
    cycle_total_days: int,
    cycle_remaining_days: int,
) -> UpgradeProration:
    seats_delta = max(0, new_limit - old_limit)
    unit_price = max(0, unit_price_cents)
    total_days = max(1, cycle_total_days)
    remaining_days = max(0, min(total_days, cycle_remaining_days))

    if seats_delta <= 0 or unit_price <= 0:
        prorated = 0
    else:
        numerator = seats_delta * unit_price * remaining_days
        # integer round-half-up
        prorated = (2 * numerator + total_days) // (2 * total_days)

    return UpgradeProration(
        seats_delta=seats_delta,
        unit_price_cents=unit_price,
        prorated_amount_cents=prorated,
        total_days=total_days,
        remaining_days=remaining_days,
    )


def _finite(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def get_seat_capacity_alert(
    usage: SeatUsage | Mapping[str, Any] | None,
    threshold: Any = 1,
) -> SeatCapacityAlert | None:
    if usage is None:
        return None
    snapshot: Mapping[str, Any] = usage.as_dict() if isinstance(usage, SeatUsage) else usage
    if not isinstance(snapshot, Mapping):
        return None

    used = _finite(snapshot.get("used"))
    seat_limit = _finite(snapshot.get("seat_limit"))
    available = _finite(snapshot.get("available"))
    threshold_value = _finite(threshold)
    if used is None or seat_limit is None or available is None:
        return None
    resolved_threshold = max(0, int(threshold_value)) if threshold_value is not None else 1

    if seat_limit <= 0 or used <= 0:
        return None
    if available <= 0:
        return SeatCapacityAlert(
            level="limit",
            threshold=resolved_threshold,
            message="Broker seat limit reached. Upgrade seats to avoid blocked invites and activations.",
        )
    if available <= resolved_threshold:
        seats_word = "seat" if available == 1 else "seats"
        return SeatCapacityAlert(
            level="warning",
            threshold=resolved_threshold,
            message=f"Capacity almost exhausted: {int(available)} {seats_word} left. Consider upgrading ahead of time.",
        )
    return None
