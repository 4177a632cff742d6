import inspect
from datetime import timedelta

import pytest

from halloo.reminders.recovery import MissedJobRecoverer
from halloo.reminders.recurrence_models import Custom, Once
from halloo.reminders.schemas import AttemptOutcome, DeliveryAttempt, ErrorKind

from conftest import make_schedule, utc


@pytest.fixture
def recoverer(store, ledger, error_sink, clock, sleep, reminder_settings):
    return MissedJobRecoverer(store, ledger, error_sink, clock=clock, sleep=sleep, settings=reminder_settings)


def test_stuck_schedule_is_fast_forwarded_without_violation(recoverer, store, error_sink, clock):
    clock.now = utc(2025, 1, 1, 12, 0)  # three hours after the 09:00 slot

    summary = recoverer.sweep()

    assert summary.examined == 1
    assert summary.recovered == 1
    assert summary.violations == 0
    assert store.get_schedule("sched-1").next_fire_time == utc(2025, 1, 2, 9, 0)
    assert error_sink.records == []


def test_recoverer_has_no_gateway():
    assert "gateway" not in inspect.signature(MissedJobRecoverer).parameters


def test_attempted_but_not_advanced_is_a_correctness_violation(recoverer, store, ledger, error_sink, clock):
    clock.now = utc(2025, 1, 1, 12, 0)
    ledger.record_attempt(
        DeliveryAttempt(
            schedule_id="sched-1",
            scheduled_fire_time=utc(2025, 1, 1, 9, 0),
            outcome=AttemptOutcome.SENT,
            latency_seconds=2.0,
            created_at=utc(2025, 1, 1, 9, 0, 2),
        )
    )

    summary = recoverer.sweep()

    assert summary.violations == 1
    assert summary.recovered == 1
    assert error_sink.kinds() == [ErrorKind.CORRECTNESS_VIOLATION]
    assert store.get_schedule("sched-1").next_fire_time == utc(2025, 1, 2, 9, 0)


def test_recently_due_schedules_are_left_to_the_scanner(recoverer, store, clock, reminder_settings):
    clock.now = utc(2025, 1, 1, 9, 0) + timedelta(seconds=reminder_settings.STUCK_THRESHOLD_SECONDS - 1)

    summary = recoverer.sweep()

    assert summary.examined == 0
    assert store.get_schedule("sched-1").next_fire_time == utc(2025, 1, 1, 9, 0)


def test_once_schedules_are_never_fast_forwarded(recoverer, store, clock):
    store.schedules = {}
    store.add(make_schedule(id="once-1", frequency=Once()))
    clock.now = utc(2025, 1, 5, 0, 0)

    assert recoverer.sweep().examined == 0
    assert store.get_schedule("once-1").next_fire_time == utc(2025, 1, 1, 9, 0)


def test_weeks_behind_custom_schedule_lands_on_next_matching_day(recoverer, store, clock):
    store.schedules = {}
    store.add(make_schedule(id="custom-1", frequency=Custom.of(["tuesday", "thursday"]), next_fire_time=utc(2024, 11, 5, 9, 0)))
    clock.now = utc(2025, 1, 10, 10, 0)  # Friday

    recoverer.sweep()

    assert store.get_schedule("custom-1").next_fire_time == utc(2025, 1, 14, 9, 0)


def test_persist_failure_is_recorded_after_retries(recoverer, store, sleep, error_sink, clock):
    clock.now = utc(2025, 1, 1, 12, 0)
    store.update_failures = 3

    summary = recoverer.sweep()

    assert summary.failures == 1
    assert summary.recovered == 0
    assert sleep.delays == pytest.approx([0.1, 0.2])
    assert len(error_sink.records) == 1
    assert error_sink.records[0].kind == ErrorKind.RECOVERY_PERSIST_FAILED
    assert error_sink.records[0].retries_exhausted is True
