"""Tests for the StatEngine: timer resets, persistence after mutations, restart catch-up"""

import json
from datetime import timedelta

from coordinator import StatEngine
from decay_worker import DecayTicker
from persistence import ACTIVITY_LOG_KEY, CHARACTER_SHEET_KEY, DECAY_SETTINGS_KEY, MemoryBlobGateway
from stat_keys import StatKey


def _strength(engine, cid):
    return engine.get_category(cid).get_stat("Strength").value


def test_fitness_scenario(engine, fitness, clock):
    t0 = clock.now()
    entry = engine.log_activity("Deadlifts", fitness, ["Strength"], 3)
    assert _strength(engine, fitness) == 13
    assert engine.get_category(fitness).score == 13

    engine.save_decay_setting(fitness, "Strength", {"points": 1, "time_value": 3, "time_unit": "days", "enabled": True})
    clock.advance(days=7)
    results = engine.tick()

    assert [r.periods for r in results] == [2]
    assert _strength(engine, fitness) == 11
    assert engine.get_decay_setting_for_stat(fitness, "Strength").last_decay_at == t0 + timedelta(days=6)

    # Reversal and re-application operate on the live (already decayed) value
    engine.edit_activity(entry.id, {"points": 5})
    assert _strength(engine, fitness) == 13
    assert engine.get_category(fitness).score == 13


def test_logging_activity_resets_overdue_timer(engine, fitness, clock):
    engine.save_decay_setting(fitness, "Strength", {"points": 2, "time_value": 1, "time_unit": "days", "enabled": True})
    clock.advance(days=4, hours=3)

    engine.log_activity("Bench press", fitness, ["Strength"], 1)

    setting = engine.get_decay_setting_for_stat(fitness, "Strength")
    assert setting.last_decay_at == clock.now()
    # The overdue backlog is forgiven, not applied
    assert engine.tick() == []
    assert _strength(engine, fitness) == 11


def test_category_level_activity_does_not_reset_stat_timer(engine, fitness, clock):
    setting = engine.save_decay_setting(fitness, "Strength", {"points": 1, "time_value": 1, "time_unit": "days", "enabled": True})
    clock.advance(hours=20)
    engine.log_activity("General training", fitness, ["Fitness"], 2)
    engine.log_activity("General training", fitness, [], 2)
    assert engine.get_decay_setting_for_stat(fitness, "Strength").last_decay_at == setting.last_decay_at


def test_editing_attribution_resets_new_stat_timers(engine, fitness, clock):
    entry = engine.log_activity("Warmup", fitness, [], 1)
    engine.save_decay_setting(fitness, "Strength", {"points": 1, "time_value": 1, "time_unit": "days", "enabled": True})
    clock.advance(hours=10)
    engine.edit_activity(entry.id, {"target_stats": ["Strength"]})
    assert engine.get_decay_setting_for_stat(fitness, "Strength").last_decay_at == clock.now()


def test_every_mutation_is_persisted(engine, gateway, fitness):
    entry = engine.log_activity("Squats", fitness, ["Strength"], 2)
    engine.save_decay_setting(fitness, "Strength", {"points": 1, "time_value": 2, "time_unit": "hours", "enabled": True})

    sheet = json.loads(gateway.get(CHARACTER_SHEET_KEY))
    log = json.loads(gateway.get(ACTIVITY_LOG_KEY))
    settings = json.loads(gateway.get(DECAY_SETTINGS_KEY))

    assert sheet["categories"][fitness]["stats"] == [{"name": "Strength", "value": 12}]
    assert [e["id"] for e in log] == [entry.id]
    assert list(settings) == [StatKey(fitness, "Strength").encode()]


def test_noop_mutations_do_not_write(gateway, clock):
    engine = StatEngine(gateway, clock=clock)
    engine.start()
    assert engine.update_category("missing", {"name": "x"}) is False
    assert engine.delete_activity("missing") is False
    assert engine.log_activity("x", "missing", [], 1) is None
    assert gateway.get(CHARACTER_SHEET_KEY) is None


def test_restart_catches_up_time_spent_closed(gateway, clock, fitness, engine):
    t0 = clock.now()
    engine.save_decay_setting(fitness, "Strength", {"points": 2, "time_value": 1, "time_unit": "days", "enabled": True})
    engine.close()

    clock.advance(days=5, hours=6)
    reopened = StatEngine(gateway, clock=clock)
    results = reopened.start()

    assert [r.periods for r in results] == [5]
    assert _strength(reopened, fitness) == 0
    assert reopened.get_decay_setting_for_stat(fitness, "Strength").last_decay_at == t0 + timedelta(days=5)
    # The catch-up result was itself persisted
    again = StatEngine(gateway, clock=clock)
    assert again.start() == []
    assert _strength(again, fitness) == 0


def test_ids_continue_after_restart(gateway, clock, engine, fitness):
    engine.close()
    clock.advance(minutes=-5)
    reopened = StatEngine(gateway, clock=clock)
    reopened.start()
    new_id = reopened.add_category({"name": "Later"})
    assert int(new_id) > int(fitness)


class FailingGateway(MemoryBlobGateway):
    def set_many(self, items):
        raise IOError("disk full")


def test_save_failure_keeps_in_memory_mutation(clock):
    engine = StatEngine(FailingGateway(), clock=clock)
    engine.start()
    cid = engine.add_category({"name": "Music", "stats": [{"name": "Rhythm", "value": 1}], "score": 1})
    engine.log_activity("Drums", cid, ["Rhythm"], 2)
    assert engine.get_category(cid).get_stat("Rhythm").value == 3


def test_async_saves_are_flushed_on_close(clock):
    gateway = MemoryBlobGateway()
    engine = StatEngine(gateway, clock=clock, async_saves=True)
    engine.start()
    cid = engine.add_category({"name": "Art"})
    for i in range(20):
        engine.log_activity(f"Sketch {i}", cid, [], 1)
    engine.close()

    sheet = json.loads(gateway.get(CHARACTER_SHEET_KEY))
    log = json.loads(gateway.get(ACTIVITY_LOG_KEY))
    # Saves land in order, so the last write is the final state
    assert sheet["categories"][cid]["score"] == 20
    assert len(log) == 20


def test_tick_interval_is_capped_by_next_due(engine, fitness, clock):
    assert engine.tick_interval(60) == 60
    engine.save_decay_setting(fitness, "Strength", {"points": 1, "time_value": 1, "time_unit": "minutes", "enabled": True})
    clock.advance(seconds=30)
    assert engine.tick_interval(60) == 30
    clock.advance(minutes=5)
    assert engine.tick_interval(60) == 1.0


def test_ticker_run_once_reports_applied_settings(engine, fitness, clock):
    ticker = DecayTicker(engine, interval=60)
    engine.save_decay_setting(fitness, "Strength", {"points": 1, "time_value": 1, "time_unit": "hours", "enabled": True})
    assert ticker.run_once() == 0
    clock.advance(hours=3)
    assert ticker.run_once() == 1
    assert _strength(engine, fitness) == 7
    assert not ticker.running


def test_ticker_survives_a_failing_tick(engine):
    def boom():
        raise RuntimeError("store down")

    engine.tick = boom
    assert DecayTicker(engine).run_once() == 0


def test_editing_attribution_resets_reversed_stat_timers(engine, fitness, clock):
    engine.add_stat(fitness, "Stamina", 4)
    entry = engine.log_activity("Jog", fitness, ["Stamina"], 2)
    engine.save_decay_setting(fitness, "Stamina", {"points": 1, "time_value": 1, "time_unit": "days", "enabled": True})
    clock.advance(hours=20)

    engine.edit_activity(entry.id, {"target_stats": ["Strength"]})

    assert engine.get_category(fitness).get_stat("Stamina").value == 4
    assert engine.get_decay_setting_for_stat(fitness, "Stamina").last_decay_at == clock.now()


def test_description_edit_leaves_timers_alone(engine, fitness, clock):
    entry = engine.log_activity("Jog", fitness, ["Strength"], 2)
    setting = engine.save_decay_setting(fitness, "Strength", {"points": 1, "time_value": 1, "time_unit": "days", "enabled": True})
    clock.advance(hours=5)
    engine.edit_activity(entry.id, {"description": "Long jog"})
    assert engine.get_decay_setting_for_stat(fitness, "Strength").last_decay_at == setting.last_decay_at
