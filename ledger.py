"""Stat ledger: categories, stats and the activity log.

Attribution rule
----------------
An activity whose ``target_stats`` is empty, or is exactly ``[category.name]``,
is a category-level entry: its points go straight into ``category.score``.
Otherwise every named stat receives the full ``points`` value, and the category
score moves by the same amount per stat. A category with no category-level
entries therefore keeps score equal to its stat sum; category-level points are
carried on top of it.

Every mutation builds a new ``LedgerSnapshot`` (cloning only the categories it
touches) and swaps it in with a single assignment, so readers only ever see
complete states. Missing categories, stats or entries are tolerated: the
operation does nothing and reports it through its return value.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from models_ledger import (
    ActivityLogEntry,
    LedgerSnapshot,
    Stat,
    StatCategory,
    build_stats,
    normalize_target_stats,
)
from timeutil import Clock, SystemClock, epoch_millis

logger = logging.getLogger(__name__)

# Fields editActivity may change; id, timestamp and category stay fixed.
EDITABLE_ACTIVITY_FIELDS = ("description", "target_stats", "points")


def _highest_numeric_id(snapshot: LedgerSnapshot) -> int:
    best = 0
    ids = list(snapshot.categories.keys()) + [e.id for e in snapshot.activity_log]
    for raw in ids:
        try:
            best = max(best, int(raw))
        except (TypeError, ValueError):
            continue
    return best


def is_category_level(category: StatCategory | None, target_stats: Iterable[str]) -> bool:
    targets = tuple(target_stats)
    if not targets:
        return True
    return category is not None and len(targets) == 1 and targets[0] == category.name


class StatLedger:
    def __init__(self, clock: Clock | None = None, snapshot: LedgerSnapshot | None = None):
        self._clock = clock or SystemClock()
        self._snapshot = snapshot or LedgerSnapshot()
        self._last_id = _highest_numeric_id(self._snapshot)

    # ---- reads ----

    @property
    def snapshot(self) -> LedgerSnapshot:
        return self._snapshot

    def get_category(self, category_id: str) -> StatCategory | None:
        return self._snapshot.categories.get(category_id)

    def get_activity(self, activity_id: str) -> ActivityLogEntry | None:
        for entry in self._snapshot.activity_log:
            if entry.id == activity_id:
                return entry
        return None

    def list_activities(self, category_id: str | None = None, newest_first: bool = True) -> list[ActivityLogEntry]:
        entries = [e for e in self._snapshot.activity_log if category_id is None or e.category_id == category_id]
        if newest_first:
            entries.reverse()
        return entries

    def attributed_stats(self, category_id: str, target_stats: Iterable[str]) -> tuple[str, ...]:
        """Stat names an activity would write to; empty for category-level entries."""
        targets = normalize_target_stats(target_stats)
        if is_category_level(self.get_category(category_id), targets):
            return ()
        return targets

    # ---- lifecycle ----

    def load(self, snapshot: LedgerSnapshot) -> None:
        self._snapshot = snapshot
        self._last_id = max(self._last_id, _highest_numeric_id(snapshot))

    def _allocate_id(self) -> str:
        # Millisecond timestamps, bumped past the last issued id so two calls
        # in the same millisecond (or a clock step backwards) never collide.
        candidate = max(epoch_millis(self._clock.now()), self._last_id + 1)
        self._last_id = candidate
        return str(candidate)

    def _swap(self, categories: Mapping[str, StatCategory] | None = None,
              activity_log: Iterable[ActivityLogEntry] | None = None) -> None:
        current = self._snapshot
        self._snapshot = LedgerSnapshot.build(
            categories if categories is not None else current.categories,
            activity_log if activity_log is not None else current.activity_log,
        )

    # ---- categories & stats ----

    def add_category(self, data: Mapping[str, Any]) -> str:
        category_id = self._allocate_id()
        category = StatCategory.from_dict(dict(data), category_id=category_id)
        categories = dict(self._snapshot.categories)
        categories[category_id] = category
        self._swap(categories=categories)
        logger.debug("Added category %s (%s)", category_id, category.name)
        return category_id

    def update_category(self, category_id: str, updates: Mapping[str, Any]) -> bool:
        current = self.get_category(category_id)
        if current is None:
            logger.debug("update_category: no category %s", category_id)
            return False
        categories = dict(self._snapshot.categories)
        categories[category_id] = current.merged(updates)
        self._swap(categories=categories)
        return True

    def delete_category(self, category_id: str) -> bool:
        if category_id not in self._snapshot.categories:
            logger.debug("delete_category: no category %s", category_id)
            return False
        categories = dict(self._snapshot.categories)
        del categories[category_id]
        self._swap(categories=categories)
        return True

    def add_stat(self, category_id: str, name: str, value: int = 0) -> bool:
        current = self.get_category(category_id)
        if current is None or current.get_stat(name) is not None:
            return False
        stats = build_stats(current.stats + (Stat(name=name, value=int(value)),))
        return self.update_category(category_id, {"stats": stats, "score": current.score + int(value)})

    def delete_stat(self, category_id: str, name: str) -> bool:
        current = self.get_category(category_id)
        stat = current.get_stat(name) if current else None
        if stat is None:
            return False
        stats = tuple(s for s in current.stats if s.name != name)
        return self.update_category(category_id, {"stats": stats, "score": current.score - stat.value})

    def update_stat(self, category_id: str, stat_name: str, delta: int) -> bool:
        categories = dict(self._snapshot.categories)
        if not self._apply_stat_delta(categories, category_id, stat_name, int(delta)):
            logger.debug("update_stat: no stat %s/%s", category_id, stat_name)
            return False
        self._swap(categories=categories)
        return True

    @staticmethod
    def _apply_stat_delta(categories: dict[str, StatCategory], category_id: str, stat_name: str, delta: int) -> bool:
        current = categories.get(category_id)
        if current is None:
            return False
        updated = current.with_stat_delta(stat_name, delta)
        if updated is None:
            return False
        categories[category_id] = updated
        return True

    def _apply_attribution(self, categories: dict[str, StatCategory], category_id: str,
                           target_stats: tuple[str, ...], points: int) -> tuple[str, ...]:
        """Apply ``points`` to a working copy of ``categories`` using the attribution rule.

        Returns the stat names that actually received points.
        """
        category = categories.get(category_id)
        if category is None:
            return ()
        if is_category_level(category, target_stats):
            categories[category_id] = category.with_score_delta(points)
            return ()
        touched = []
        for name in target_stats:
            if self._apply_stat_delta(categories, category_id, name, points):
                touched.append(name)
        return tuple(touched)

    # ---- activity log ----

    def log_activity(self, description: str, category_id: str, target_stats, points: int) -> ActivityLogEntry | None:
        if self.get_category(category_id) is None:
            logger.debug("log_activity: no category %s", category_id)
            return None
        entry = ActivityLogEntry(
            id=self._allocate_id(),
            timestamp=self._clock.now(),
            description=description,
            category_id=category_id,
            target_stats=normalize_target_stats(target_stats),
            points=int(points),
        )
        categories = dict(self._snapshot.categories)
        self._apply_attribution(categories, category_id, entry.target_stats, entry.points)
        self._swap(categories=categories, activity_log=self._snapshot.activity_log + (entry,))
        return entry

    def edit_activity(self, activity_id: str, updates: Mapping[str, Any]) -> ActivityLogEntry | None:
        log = list(self._snapshot.activity_log)
        index = next((i for i, e in enumerate(log) if e.id == activity_id), None)
        if index is None:
            logger.debug("edit_activity: no entry %s", activity_id)
            return None
        original = log[index]

        changes: dict[str, Any] = {}
        if "description" in updates:
            changes["description"] = str(updates["description"])
        if "target_stats" in updates:
            changes["target_stats"] = normalize_target_stats(updates["target_stats"])
        if "points" in updates:
            changes["points"] = int(updates["points"])

        categories = dict(self._snapshot.categories)
        if "target_stats" in changes or "points" in changes:
            # Undo what the original entry contributed, then apply the new attribution.
            self._apply_attribution(categories, original.category_id, original.target_stats, -original.points)
            self._apply_attribution(
                categories,
                original.category_id,
                changes.get("target_stats", original.target_stats),
                changes.get("points", original.points),
            )

        updated = ActivityLogEntry(
            id=original.id,
            timestamp=original.timestamp,
            description=changes.get("description", original.description),
            category_id=original.category_id,
            target_stats=changes.get("target_stats", original.target_stats),
            points=changes.get("points", original.points),
        )
        log[index] = updated
        self._swap(categories=categories, activity_log=log)
        return updated

    def delete_activity(self, activity_id: str) -> bool:
        # Removing a log entry does not reverse the points it applied.
        log = [e for e in self._snapshot.activity_log if e.id != activity_id]
        if len(log) == len(self._snapshot.activity_log):
            logger.debug("delete_activity: no entry %s", activity_id)
            return False
        self._swap(activity_log=log)
        return True
