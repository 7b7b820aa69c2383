"""Per-stat decay scheduling.

Each enabled ``DecaySetting`` removes ``points`` from one stat for every whole
``interval`` that passes without activity on that stat. Evaluation is catch-up:
all elapsed periods are applied in one step and ``last_decay_at`` moves forward
by exact interval multiples, never to "now", so evaluation jitter does not
accumulate as drift. Stat values are allowed to go negative.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from ledger import StatLedger
from models_decay import (
    DEFAULT_DECAY_ENABLED,
    DEFAULT_DECAY_POINTS,
    DEFAULT_DECAY_TIME_UNIT,
    DEFAULT_DECAY_TIME_VALUE,
    DecayCountdown,
    DecayResult,
    DecaySetting,
)
from stat_keys import StatKey, setting_key
from timeutil import Clock, SystemClock, ensure_utc

logger = logging.getLogger(__name__)


class DecayScheduler:
    def __init__(self, ledger: StatLedger, clock: Clock | None = None,
                 settings: Iterable[DecaySetting] | None = None):
        self._ledger = ledger
        self._clock = clock or SystemClock()
        self._settings: Mapping[StatKey, DecaySetting] = MappingProxyType({})
        if settings is not None:
            self.load(settings)

    @staticmethod
    def get_setting_key(category_id: str, stat_name: str) -> StatKey:
        return setting_key(category_id, stat_name)

    @property
    def settings(self) -> Mapping[StatKey, DecaySetting]:
        return self._settings

    def load(self, settings: Iterable[DecaySetting]) -> None:
        self._settings = MappingProxyType({s.key: s for s in settings})

    def _now(self, now: datetime | None) -> datetime:
        return ensure_utc(now) if now is not None else self._clock.now()

    def _put(self, setting: DecaySetting) -> None:
        updated = dict(self._settings)
        updated[setting.key] = setting
        self._settings = MappingProxyType(updated)

    # ---- settings CRUD ----

    def add_decay_setting(self, config: Mapping[str, Any]) -> DecaySetting:
        """Create the setting for ``(category_id, stat_name)``; its timer starts now.

        If a setting already exists for the key it is updated instead, so there
        is never more than one per stat.
        """
        key = self.get_setting_key(config["category_id"], config["stat_name"])
        if key in self._settings:
            return self.update_decay_setting(key, config)
        setting = DecaySetting(
            category_id=key.category_id,
            stat_name=key.stat_name,
            points=int(config.get("points", DEFAULT_DECAY_POINTS)),
            time_value=int(config.get("time_value", DEFAULT_DECAY_TIME_VALUE)),
            time_unit=str(config.get("time_unit", DEFAULT_DECAY_TIME_UNIT)),
            enabled=bool(config.get("enabled", DEFAULT_DECAY_ENABLED)),
            last_decay_at=self._clock.now(),
        )
        self._put(setting)
        logger.info("Decay setting created for %s/%s", key.category_id, key.stat_name)
        return setting

    def update_decay_setting(self, key: StatKey, updates: Mapping[str, Any]) -> DecaySetting | None:
        current = self._settings.get(key)
        if current is None:
            logger.debug("update_decay_setting: no setting %s", key)
            return None
        changes: dict[str, Any] = {}
        if "points" in updates:
            changes["points"] = int(updates["points"])
        if "time_value" in updates:
            changes["time_value"] = int(updates["time_value"])
        if "time_unit" in updates:
            changes["time_unit"] = str(updates["time_unit"])
        if "enabled" in updates:
            changes["enabled"] = bool(updates["enabled"])
            if changes["enabled"] and not current.enabled:
                # Time spent disabled never decays retroactively.
                changes["last_decay_at"] = self._clock.now()
        setting = replace(current, **changes)
        self._put(setting)
        return setting

    def remove_decay_setting(self, key: StatKey) -> bool:
        if key not in self._settings:
            return False
        updated = dict(self._settings)
        del updated[key]
        self._settings = MappingProxyType(updated)
        logger.info("Decay setting removed for %s/%s", key.category_id, key.stat_name)
        return True

    def get_decay_setting_for_stat(self, category_id: str, stat_name: str) -> DecaySetting | None:
        return self._settings.get(self.get_setting_key(category_id, stat_name))

    # ---- timing ----

    def get_time_until_next_decay(self, category_id: str, stat_name: str,
                                  now: datetime | None = None) -> DecayCountdown | None:
        """Countdown to the next decay, or None when there is no enabled setting."""
        setting = self.get_decay_setting_for_stat(category_id, stat_name)
        if setting is None or not setting.enabled:
            return None
        elapsed = self._now(now) - setting.last_decay_at
        return DecayCountdown.from_remaining(setting.interval - elapsed)

    def next_due_in(self, now: datetime | None = None) -> timedelta | None:
        """Shortest wait until any enabled setting becomes due (zero if one is overdue)."""
        current = self._now(now)
        waits = [
            max(timedelta(0), s.last_decay_at + s.interval - current)
            for s in self._settings.values()
            if s.enabled
        ]
        return min(waits) if waits else None

    def reset_timer(self, category_id: str, stat_name: str, now: datetime | None = None) -> bool:
        """Restart the interval after activity on the stat (enabled settings only)."""
        setting = self.get_decay_setting_for_stat(category_id, stat_name)
        if setting is None or not setting.enabled:
            return False
        self._put(replace(setting, last_decay_at=self._now(now)))
        return True

    # ---- evaluation ----

    def evaluate(self, category_id: str, stat_name: str, now: datetime | None = None) -> DecayResult | None:
        setting = self.get_decay_setting_for_stat(category_id, stat_name)
        if setting is None or not setting.enabled:
            return None
        current = self._now(now)
        periods = (current - setting.last_decay_at) // setting.interval
        if periods < 1:
            return None

        removed = setting.points * periods
        applied = self._ledger.update_stat(category_id, stat_name, -removed)
        advanced = setting.last_decay_at + setting.interval * periods
        self._put(replace(setting, last_decay_at=advanced))

        if applied:
            logger.info(
                "Decay applied to %s/%s: %d period(s), -%d points, next reference %s",
                category_id, stat_name, periods, removed, advanced.isoformat(),
            )
        else:
            # Category or stat was deleted; keep the timer moving so a stat
            # re-created under the same key starts without a backlog.
            logger.debug("Decay for missing stat %s/%s skipped (%d periods)", category_id, stat_name, periods)
        return DecayResult(key=setting.key, periods=periods, points_removed=removed,
                           last_decay_at=advanced, applied=applied)

    def evaluate_all(self, now: datetime | None = None) -> list[DecayResult]:
        current = self._now(now)
        results = []
        for key in list(self._settings.keys()):
            result = self.evaluate(key.category_id, key.stat_name, current)
            if result is not None:
                results.append(result)
        return results
