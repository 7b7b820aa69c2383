"""Clock and duration helpers shared by the ledger and the decay scheduler.

All datetimes handled by the engine are timezone-aware UTC. Anything coming
from storage or from a client is normalised through ``ensure_utc``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol

UNIT_MINUTES = "minutes"
UNIT_HOURS = "hours"
UNIT_DAYS = "days"

DURATION_UNITS: dict[str, timedelta] = {
    UNIT_MINUTES: timedelta(minutes=1),
    UNIT_HOURS: timedelta(hours=1),
    UNIT_DAYS: timedelta(days=1),
}

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock (UTC)."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Manually advanced clock for tests and simulations."""

    def __init__(self, start: datetime | None = None):
        self._now = ensure_utc(start) if start else datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set(self, when: datetime) -> datetime:
        self._now = ensure_utc(when)
        return self._now

    def advance(self, delta: timedelta | None = None, **kwargs) -> datetime:
        self._now = self._now + (delta if delta is not None else timedelta(**kwargs))
        return self._now


def ensure_utc(value: datetime) -> datetime:
    # Naive values are treated as UTC (legacy rows were written with utcnow()).
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    return ensure_utc(value).isoformat().replace("+00:00", "Z")


def parse_timestamp(raw) -> datetime:
    """Parse an ISO-8601 string or epoch milliseconds into an aware datetime."""
    if isinstance(raw, datetime):
        return ensure_utc(raw)
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return _EPOCH + timedelta(milliseconds=raw)
    text = str(raw).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def epoch_millis(value: datetime) -> int:
    return (ensure_utc(value) - _EPOCH) // timedelta(milliseconds=1)


def unit_duration(value: int, unit: str) -> timedelta:
    return DURATION_UNITS[unit] * int(value)


def split_duration(delta: timedelta) -> tuple[int, int, int]:
    """Decompose a non-negative duration into whole (days, hours, minutes)."""
    total_minutes = max(0, int(delta.total_seconds()) // 60)
    days, rest = divmod(total_minutes, 24 * 60)
    hours, minutes = divmod(rest, 60)
    return days, hours, minutes
