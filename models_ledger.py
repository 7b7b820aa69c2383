"""Ledger data shapes: categories, stats and the activity log.

Everything here is immutable. The ledger swaps whole snapshots instead of
mutating objects that a reader might be holding.

Storage uses the camelCase field names of the persisted snapshot
(``characterSheet`` / ``activityLog``). ``ActivityLogEntry.from_dict`` also
reads rows written by the first mobile release (``date``/``activity``/
``category``/``stat``).
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from timeutil import parse_timestamp, to_iso

DEFAULT_GRADIENT: tuple[str, str] = ("#6366F1", "#8B5CF6")

# Fields a client may merge into an existing category.
CATEGORY_FIELDS = ("name", "description", "score", "icon", "gradient", "stats")


def _as_gradient(value) -> tuple[str, str]:
    if not value:
        return DEFAULT_GRADIENT
    colors = [str(c) for c in value]
    if len(colors) == 1:
        colors.append(colors[0])
    return colors[0], colors[1]


def normalize_target_stats(value) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


@dataclass(frozen=True)
class Stat:
    name: str
    value: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "value": self.value}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Stat":
        return cls(name=str(data["name"]), value=int(data.get("value") or 0))


def build_stats(items: Iterable) -> tuple[Stat, ...]:
    """Ordered set of stats, unique by name (first occurrence wins)."""
    out: list[Stat] = []
    seen: set[str] = set()
    for item in items or ():
        stat = item if isinstance(item, Stat) else Stat.from_dict(item)
        if stat.name in seen:
            continue
        seen.add(stat.name)
        out.append(stat)
    return tuple(out)


@dataclass(frozen=True)
class StatCategory:
    id: str
    name: str
    description: str = ""
    score: int = 0
    icon: str = ""
    gradient: tuple[str, str] = DEFAULT_GRADIENT
    stats: tuple[Stat, ...] = ()

    @property
    def stat_names(self) -> tuple[str, ...]:
        return tuple(s.name for s in self.stats)

    def get_stat(self, name: str) -> Stat | None:
        for stat in self.stats:
            if stat.name == name:
                return stat
        return None

    def stat_total(self) -> int:
        return sum(s.value for s in self.stats)

    def with_stat_delta(self, name: str, delta: int) -> "StatCategory | None":
        """Return a copy with ``delta`` added to one stat and to the score.

        The score moves by the same delta instead of being re-summed, so points
        logged against the category as a whole are kept alongside stat points.
        """
        if self.get_stat(name) is None:
            return None
        stats = tuple(replace(s, value=s.value + delta) if s.name == name else s for s in self.stats)
        return replace(self, stats=stats, score=self.score + delta)

    def with_score_delta(self, delta: int) -> "StatCategory":
        return replace(self, score=self.score + delta)

    def merged(self, updates: Mapping[str, Any]) -> "StatCategory":
        changes: dict[str, Any] = {}
        for key in CATEGORY_FIELDS:
            if key not in updates:
                continue
            value = updates[key]
            if key == "stats":
                value = build_stats(value)
            elif key == "gradient":
                value = _as_gradient(value)
            elif key == "score":
                value = int(value)
            else:
                value = "" if value is None else str(value)
            changes[key] = value
        return replace(self, **changes) if changes else self

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "score": self.score,
            "icon": self.icon,
            "gradient": list(self.gradient),
            "stats": [s.to_dict() for s in self.stats],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], category_id: str | None = None) -> "StatCategory":
        return cls(
            id=str(category_id if category_id is not None else data["id"]),
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            score=int(data.get("score") or 0),
            icon=str(data.get("icon") or ""),
            gradient=_as_gradient(data.get("gradient")),
            stats=build_stats(data.get("stats") or ()),
        )


@dataclass(frozen=True)
class ActivityLogEntry:
    id: str
    timestamp: datetime
    description: str
    category_id: str
    target_stats: tuple[str, ...]
    points: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": to_iso(self.timestamp),
            "description": self.description,
            "categoryId": self.category_id,
            "targetStats": list(self.target_stats),
            "points": self.points,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ActivityLogEntry":
        return cls(
            id=str(data["id"]),
            timestamp=parse_timestamp(data.get("timestamp") or data.get("date")),
            description=str(data.get("description", data.get("activity")) or ""),
            category_id=str(data.get("categoryId", data.get("category"))),
            target_stats=normalize_target_stats(data.get("targetStats", data.get("stat"))),
            points=int(data.get("points") or 0),
        )


@dataclass(frozen=True)
class LedgerSnapshot:
    """Point-in-time view of the whole ledger."""

    categories: Mapping[str, StatCategory] = field(default_factory=lambda: MappingProxyType({}))
    activity_log: tuple[ActivityLogEntry, ...] = ()

    @classmethod
    def build(cls, categories: Mapping[str, StatCategory], activity_log: Iterable[ActivityLogEntry]) -> "LedgerSnapshot":
        return cls(categories=MappingProxyType(dict(categories)), activity_log=tuple(activity_log))

    def character_sheet_dict(self) -> dict[str, Any]:
        return {"categories": {cid: c.to_dict() for cid, c in self.categories.items()}}

    def activity_log_list(self) -> list[dict[str, Any]]:
        return [e.to_dict() for e in self.activity_log]
