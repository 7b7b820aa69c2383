"""Tests for decay scheduling: catch-up, timers, countdowns"""

from datetime import timedelta

import pytest

from decay import DecayScheduler
from ledger import StatLedger
from models_decay import DecayCountdown
from stat_keys import StatKey


@pytest.fixture
def ledger(clock):
    return StatLedger(clock)


@pytest.fixture
def scheduler(ledger, clock):
    return DecayScheduler(ledger, clock)


@pytest.fixture
def cid(ledger):
    return ledger.add_category({"name": "Fitness", "stats": [{"name": "Strength", "value": 10}], "score": 10})


def _enable(scheduler, cid, points=2, time_value=1, time_unit="days", enabled=True):
    return scheduler.add_decay_setting({
        "category_id": cid,
        "stat_name": "Strength",
        "points": points,
        "time_value": time_value,
        "time_unit": time_unit,
        "enabled": enabled,
    })


def _strength(ledger, cid):
    return ledger.get_category(cid).get_stat("Strength").value


def test_setting_key_is_structural():
    assert DecayScheduler.get_setting_key("1", "a_b") == StatKey("1", "a_b")
    # Underscores in ids or names cannot make two different stats collide
    assert DecayScheduler.get_setting_key("1_a", "b") != DecayScheduler.get_setting_key("1", "a_b")
    key = StatKey("1_a", "b")
    assert StatKey.decode(key.encode()) == key


def test_new_setting_starts_timer_now(scheduler, cid, clock):
    setting = _enable(scheduler, cid)
    assert setting.last_decay_at == clock.now()
    assert setting.interval == timedelta(days=1)
    assert scheduler.get_decay_setting_for_stat(cid, "Strength") == setting
    assert scheduler.get_decay_setting_for_stat(cid, "Other") is None


def test_catch_up_is_interval_exact(scheduler, ledger, cid, clock):
    t0 = clock.now()
    _enable(scheduler, cid, points=2)
    clock.advance(days=3, hours=12)

    result = scheduler.evaluate(cid, "Strength")

    assert result.periods == 3
    assert result.points_removed == 6
    assert _strength(ledger, cid) == 4
    assert ledger.get_category(cid).score == 4
    assert scheduler.get_decay_setting_for_stat(cid, "Strength").last_decay_at == t0 + timedelta(days=3)


def test_reevaluation_without_time_advance_is_idempotent(scheduler, ledger, cid, clock):
    _enable(scheduler, cid)
    clock.advance(days=2, hours=5)
    scheduler.evaluate(cid, "Strength")
    value = _strength(ledger, cid)
    reference = scheduler.get_decay_setting_for_stat(cid, "Strength").last_decay_at

    assert scheduler.evaluate(cid, "Strength") is None
    assert scheduler.evaluate_all() == []
    assert _strength(ledger, cid) == value
    assert scheduler.get_decay_setting_for_stat(cid, "Strength").last_decay_at == reference


def test_frequent_ticks_do_not_drift(scheduler, ledger, cid, clock):
    t0 = clock.now()
    _enable(scheduler, cid, points=1, time_value=1, time_unit="hours")
    # Tick every 7 minutes for 10 hours
    for _ in range(86):
        clock.advance(minutes=7)
        scheduler.evaluate_all()
    assert _strength(ledger, cid) == 0
    assert scheduler.get_decay_setting_for_stat(cid, "Strength").last_decay_at == t0 + timedelta(hours=10)


def test_stat_may_go_negative(scheduler, ledger, cid, clock):
    _enable(scheduler, cid, points=3)
    clock.advance(days=5)
    scheduler.evaluate(cid, "Strength")
    assert _strength(ledger, cid) == -5


def test_disabled_setting_never_decays(scheduler, ledger, cid, clock):
    _enable(scheduler, cid, enabled=False)
    clock.advance(days=10)
    assert scheduler.evaluate(cid, "Strength") is None
    assert _strength(ledger, cid) == 10
    assert scheduler.get_time_until_next_decay(cid, "Strength") is None


def test_reenabling_restarts_timer_without_backlog(scheduler, ledger, cid, clock):
    setting = _enable(scheduler, cid)
    scheduler.update_decay_setting(setting.key, {"enabled": False})
    clock.advance(days=4)
    updated = scheduler.update_decay_setting(setting.key, {"enabled": True})
    assert updated.last_decay_at == clock.now()
    assert scheduler.evaluate(cid, "Strength") is None
    assert _strength(ledger, cid) == 10


def test_update_keeps_timer_when_already_enabled(scheduler, cid, clock):
    setting = _enable(scheduler, cid)
    clock.advance(hours=5)
    updated = scheduler.update_decay_setting(setting.key, {"points": 4, "enabled": True})
    assert updated.points == 4
    assert updated.last_decay_at == setting.last_decay_at


def test_add_for_existing_key_updates_instead_of_duplicating(scheduler, cid, clock):
    first = _enable(scheduler, cid, points=1)
    clock.advance(hours=3)
    second = _enable(scheduler, cid, points=5)
    assert len(scheduler.settings) == 1
    assert second.points == 5
    assert second.last_decay_at == first.last_decay_at


def test_update_and_remove_missing_setting_are_noops(scheduler):
    key = StatKey("nope", "nothing")
    assert scheduler.update_decay_setting(key, {"points": 2}) is None
    assert scheduler.remove_decay_setting(key) is False


def test_remove_setting_leaves_ledger_alone(scheduler, ledger, cid, clock):
    setting = _enable(scheduler, cid)
    clock.advance(days=3)
    assert scheduler.remove_decay_setting(setting.key)
    assert scheduler.evaluate(cid, "Strength") is None
    assert _strength(ledger, cid) == 10


def test_countdown_before_and_after_due(scheduler, cid, clock):
    _enable(scheduler, cid, time_value=3, time_unit="days")
    clock.advance(days=1, hours=2, minutes=30)
    countdown = scheduler.get_time_until_next_decay(cid, "Strength")
    assert countdown == DecayCountdown(days=1, hours=21, minutes=30)
    assert countdown.urgency == "safe"

    clock.advance(days=2)
    overdue = scheduler.get_time_until_next_decay(cid, "Strength")
    assert overdue.overdue
    assert (overdue.days, overdue.hours, overdue.minutes) == (0, 0, 0)


@pytest.mark.parametrize("remaining, urgency, label", [
    (timedelta(hours=2, minutes=5), "imminent", "2 hrs, 5 mins"),
    (timedelta(hours=11, minutes=1), "approaching", "11 hrs, 1 min"),
    (timedelta(days=1, hours=1), "safe", "1 day, 1 hr, 0 mins"),
    (timedelta(days=3), "safe", "3 days, 0 hrs, 0 mins"),
    (timedelta(0), "imminent", "due now"),
])
def test_countdown_urgency_and_label(remaining, urgency, label):
    countdown = DecayCountdown.from_remaining(remaining)
    assert countdown.urgency == urgency
    assert countdown.format() == label


def test_reset_timer_restarts_interval(scheduler, ledger, cid, clock):
    _enable(scheduler, cid)
    clock.advance(days=6)
    assert scheduler.reset_timer(cid, "Strength")
    assert scheduler.get_decay_setting_for_stat(cid, "Strength").last_decay_at == clock.now()
    assert scheduler.evaluate(cid, "Strength") is None
    assert _strength(ledger, cid) == 10


def test_reset_timer_ignores_disabled_or_missing(scheduler, cid, clock):
    setting = _enable(scheduler, cid, enabled=False)
    clock.advance(days=1)
    assert scheduler.reset_timer(cid, "Strength") is False
    assert scheduler.get_decay_setting_for_stat(cid, "Strength").last_decay_at == setting.last_decay_at
    assert scheduler.reset_timer(cid, "Missing") is False


def test_orphaned_setting_advances_without_touching_ledger(scheduler, ledger, cid, clock):
    t0 = clock.now()
    _enable(scheduler, cid)
    ledger.delete_category(cid)
    clock.advance(days=2, hours=1)

    result = scheduler.evaluate(cid, "Strength")

    assert result.applied is False
    assert result.periods == 2
    assert scheduler.get_decay_setting_for_stat(cid, "Strength").last_decay_at == t0 + timedelta(days=2)


def test_next_due_in_picks_soonest_enabled_setting(scheduler, ledger, cid, clock):
    ledger.add_stat(cid, "Endurance", 5)
    _enable(scheduler, cid, time_value=2, time_unit="hours")
    scheduler.add_decay_setting({"category_id": cid, "stat_name": "Endurance", "points": 1,
                                 "time_value": 30, "time_unit": "minutes", "enabled": True})
    clock.advance(minutes=10)
    assert scheduler.next_due_in() == timedelta(minutes=20)
    clock.advance(hours=1)
    assert scheduler.next_due_in() == timedelta(0)


def test_next_due_in_without_enabled_settings(scheduler, cid):
    assert scheduler.next_due_in() is None
    _enable(scheduler, cid, enabled=False)
    assert scheduler.next_due_in() is None
