"""Decay setting and countdown shapes."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Mapping

from stat_keys import StatKey
from timeutil import DURATION_UNITS, UNIT_DAYS, parse_timestamp, split_duration, to_iso, unit_duration

DEFAULT_DECAY_POINTS = 1
DEFAULT_DECAY_TIME_VALUE = 3
DEFAULT_DECAY_TIME_UNIT = UNIT_DAYS
# A new setting starts switched off until the user enables it.
DEFAULT_DECAY_ENABLED = False

# Countdown urgency bands (hours left on the last day).
URGENCY_IMMINENT = "imminent"
URGENCY_APPROACHING = "approaching"
URGENCY_SAFE = "safe"
IMMINENT_HOURS = 3
APPROACHING_HOURS = 12

# Fields a client may merge into an existing setting.
SETTING_FIELDS = ("points", "time_value", "time_unit", "enabled")


@dataclass(frozen=True)
class DecaySetting:
    category_id: str
    stat_name: str
    points: int
    time_value: int
    time_unit: str
    enabled: bool
    last_decay_at: datetime

    @property
    def key(self) -> StatKey:
        return StatKey(self.category_id, self.stat_name)

    @property
    def interval(self) -> timedelta:
        return unit_duration(self.time_value, self.time_unit)

    def to_dict(self) -> dict[str, Any]:
        return {
            "categoryId": self.category_id,
            "statName": self.stat_name,
            "points": self.points,
            "timeValue": self.time_value,
            "timeUnit": self.time_unit,
            "enabled": self.enabled,
            "lastDecayAt": to_iso(self.last_decay_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DecaySetting":
        unit = str(data.get("timeUnit") or DEFAULT_DECAY_TIME_UNIT)
        if unit not in DURATION_UNITS:
            raise ValueError(f"Unknown decay time unit: {unit!r}")
        # Early builds stored the reference time as epoch millis under lastDecayTime.
        last = data.get("lastDecayAt", data.get("lastDecayTime"))
        return cls(
            category_id=str(data["categoryId"]),
            stat_name=str(data["statName"]),
            points=int(data["points"]),
            time_value=int(data["timeValue"]),
            time_unit=unit,
            enabled=bool(data.get("enabled", True)),
            last_decay_at=parse_timestamp(last),
        )


@dataclass(frozen=True)
class DecayCountdown:
    days: int
    hours: int
    minutes: int
    overdue: bool = False

    @classmethod
    def from_remaining(cls, remaining: timedelta) -> "DecayCountdown":
        if remaining <= timedelta(0):
            return cls(0, 0, 0, overdue=True)
        days, hours, minutes = split_duration(remaining)
        return cls(days, hours, minutes)

    @property
    def urgency(self) -> str:
        if self.overdue or (self.days == 0 and self.hours < IMMINENT_HOURS):
            return URGENCY_IMMINENT
        if self.days == 0 and self.hours < APPROACHING_HOURS:
            return URGENCY_APPROACHING
        return URGENCY_SAFE

    def format(self) -> str:
        """Human readable remainder, e.g. ``2 days, 3 hrs, 1 min``."""
        if self.overdue:
            return "due now"
        parts = []
        if self.days > 0:
            parts.append(f"{self.days} day{'s' if self.days != 1 else ''}")
        parts.append(f"{self.hours} hr{'s' if self.hours != 1 else ''}")
        parts.append(f"{self.minutes} min{'s' if self.minutes != 1 else ''}")
        return ", ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "days": self.days,
            "hours": self.hours,
            "minutes": self.minutes,
            "overdue": self.overdue,
            "urgency": self.urgency,
            "label": self.format(),
        }


@dataclass(frozen=True)
class DecayResult:
    """Outcome of one catch-up evaluation for a single setting."""

    key: StatKey
    periods: int
    points_removed: int
    last_decay_at: datetime
    applied: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "categoryId": self.key.category_id,
            "statName": self.key.stat_name,
            "periods": self.periods,
            "pointsRemoved": self.points_removed,
            "lastDecayAt": to_iso(self.last_decay_at),
            "applied": self.applied,
        }
