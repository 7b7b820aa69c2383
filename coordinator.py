"""StatEngine: the single service object that owns ledger + scheduler state.

Built once by ``create_app`` (or the standalone worker) and handed to
consumers; nothing reaches it through module globals. Responsibilities:
- load persisted state at ``start()`` and run one catch-up evaluation;
- serialise every mutation through one lock (ledger and scheduler share it,
  since decay evaluation and activity logging both write stat values);
- restart per-stat decay timers when activity touches a stat;
- persist all three state keys after every effective mutation.

Save failures are logged and swallowed: the in-memory mutation stands.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Mapping

from decay import DecayScheduler
from ledger import StatLedger
from models_decay import DecayCountdown, DecayResult, DecaySetting
from models_ledger import ActivityLogEntry, LedgerSnapshot
from persistence import PersistenceGateway, load_state, save_state
from stat_keys import StatKey
from timeutil import Clock, SystemClock

logger = logging.getLogger(__name__)


class StatEngine:
    def __init__(self, gateway: PersistenceGateway, clock: Clock | None = None, async_saves: bool = False):
        self.clock = clock or SystemClock()
        self.gateway = gateway
        self.ledger = StatLedger(self.clock)
        self.scheduler = DecayScheduler(self.ledger, self.clock)
        self._lock = threading.RLock()
        self._save_lock = threading.Lock()
        # One worker keeps fire-and-forget saves in submission order.
        self._saver = ThreadPoolExecutor(max_workers=1, thread_name_prefix="state-save") if async_saves else None
        self._started = False

    # ---- lifecycle ----

    def start(self, catch_up: bool = True) -> list[DecayResult]:
        with self._lock:
            loaded = load_state(self.gateway)
            self.ledger.load(loaded.snapshot)
            self.scheduler.load(loaded.settings)
            self._started = True
            results = self.scheduler.evaluate_all() if catch_up else []
            if results:
                logger.info("Startup catch-up applied decay to %d stat(s)", len(results))
                self._persist()
            return results

    def close(self) -> None:
        if self._saver is not None:
            self._saver.shutdown(wait=True)
            self._saver = None
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    # ---- persistence ----

    def _persist(self) -> None:
        snapshot = self.ledger.snapshot
        settings = self.scheduler.settings
        if self._saver is not None:
            self._saver.submit(self._write, snapshot, settings)
        else:
            self._write(snapshot, settings)

    def _write(self, snapshot: LedgerSnapshot, settings: Mapping[StatKey, DecaySetting]) -> bool:
        with self._save_lock:
            return save_state(self.gateway, snapshot, settings)

    def _reset_timers(self, category_id: str, stat_names) -> None:
        now = self.clock.now()
        for name in stat_names:
            self.scheduler.reset_timer(category_id, name, now)

    # ---- reads ----

    def snapshot(self) -> LedgerSnapshot:
        return self.ledger.snapshot

    def decay_settings(self) -> Mapping[StatKey, DecaySetting]:
        return self.scheduler.settings

    def get_category(self, category_id: str):
        return self.ledger.get_category(category_id)

    def get_activity(self, activity_id: str) -> ActivityLogEntry | None:
        return self.ledger.get_activity(activity_id)

    def list_activities(self, category_id: str | None = None) -> list[ActivityLogEntry]:
        return self.ledger.list_activities(category_id)

    def get_decay_setting_for_stat(self, category_id: str, stat_name: str) -> DecaySetting | None:
        return self.scheduler.get_decay_setting_for_stat(category_id, stat_name)

    def get_time_until_next_decay(self, category_id: str, stat_name: str) -> DecayCountdown | None:
        return self.scheduler.get_time_until_next_decay(category_id, stat_name, self.clock.now())

    def seconds_until_next_decay(self) -> float | None:
        wait = self.scheduler.next_due_in(self.clock.now())
        return wait.total_seconds() if wait is not None else None

    # ---- ledger mutations ----

    def add_category(self, data: Mapping[str, Any]) -> str:
        with self._lock:
            category_id = self.ledger.add_category(data)
            self._persist()
            return category_id

    def update_category(self, category_id: str, updates: Mapping[str, Any]) -> bool:
        with self._lock:
            changed = self.ledger.update_category(category_id, updates)
            if changed:
                self._persist()
            return changed

    def delete_category(self, category_id: str) -> bool:
        # Log entries and decay settings for the category are kept (tolerant lookups).
        with self._lock:
            changed = self.ledger.delete_category(category_id)
            if changed:
                self._persist()
            return changed

    def add_stat(self, category_id: str, name: str, value: int = 0) -> bool:
        with self._lock:
            changed = self.ledger.add_stat(category_id, name, value)
            if changed:
                self._persist()
            return changed

    def delete_stat(self, category_id: str, name: str) -> bool:
        with self._lock:
            changed = self.ledger.delete_stat(category_id, name)
            if changed:
                self._persist()
            return changed

    def update_stat(self, category_id: str, stat_name: str, delta: int) -> bool:
        with self._lock:
            changed = self.ledger.update_stat(category_id, stat_name, delta)
            if changed:
                self._persist()
            return changed

    def log_activity(self, description: str, category_id: str, target_stats, points: int) -> ActivityLogEntry | None:
        with self._lock:
            entry = self.ledger.log_activity(description, category_id, target_stats, points)
            if entry is None:
                return None
            self._reset_timers(category_id, self.ledger.attributed_stats(category_id, entry.target_stats))
            self._persist()
            return entry

    def edit_activity(self, activity_id: str, updates: Mapping[str, Any]) -> ActivityLogEntry | None:
        with self._lock:
            original = self.ledger.get_activity(activity_id)
            entry = self.ledger.edit_activity(activity_id, updates)
            if entry is None:
                return None
            if "target_stats" in updates or "points" in updates:
                # Both the reversed and the re-applied stats received points.
                touched = dict.fromkeys(self.ledger.attributed_stats(original.category_id, original.target_stats))
                touched.update(dict.fromkeys(self.ledger.attributed_stats(entry.category_id, entry.target_stats)))
                self._reset_timers(entry.category_id, touched)
            self._persist()
            return entry

    def delete_activity(self, activity_id: str) -> bool:
        with self._lock:
            changed = self.ledger.delete_activity(activity_id)
            if changed:
                self._persist()
            return changed

    # ---- decay settings ----

    def add_decay_setting(self, config: Mapping[str, Any]) -> DecaySetting:
        with self._lock:
            setting = self.scheduler.add_decay_setting(config)
            self._persist()
            return setting

    def update_decay_setting(self, key: StatKey, updates: Mapping[str, Any]) -> DecaySetting | None:
        with self._lock:
            setting = self.scheduler.update_decay_setting(key, updates)
            if setting is not None:
                self._persist()
            return setting

    def save_decay_setting(self, category_id: str, stat_name: str, config: Mapping[str, Any]) -> DecaySetting:
        """Create or update the setting for a stat (settings form save)."""
        return self.add_decay_setting({**config, "category_id": category_id, "stat_name": stat_name})

    def remove_decay_setting(self, key: StatKey) -> bool:
        with self._lock:
            changed = self.scheduler.remove_decay_setting(key)
            if changed:
                self._persist()
            return changed

    # ---- evaluation ----

    def evaluate_now(self, category_id: str | None = None, stat_name: str | None = None,
                     now: datetime | None = None) -> list[DecayResult]:
        """On-demand evaluation of one stat, or of every setting when no stat is given."""
        with self._lock:
            if category_id is not None and stat_name is not None:
                result = self.scheduler.evaluate(category_id, stat_name, now)
                results = [result] if result is not None else []
            else:
                results = self.scheduler.evaluate_all(now)
            if results:
                self._persist()
            return results

    def tick(self) -> list[DecayResult]:
        """Periodic evaluation entry point for the ticker."""
        return self.evaluate_now()

    def tick_interval(self, default: float, minimum: float = 1.0) -> float:
        """Seconds to sleep before the next tick: never longer than ``default``."""
        wait = self.seconds_until_next_decay()
        if wait is None:
            return default
        return max(minimum, min(default, wait))
