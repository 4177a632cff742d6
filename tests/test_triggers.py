from datetime import time, timedelta

import pytest

from halloo.reminders import cli, triggers
from halloo.reminders.celery_app import build_beat_schedule, celery_app
from halloo.reminders.diagnostics import explain_schedule
from halloo.reminders.ledger import SqlDeliveryLedger
from halloo.reminders.models import HabitSchedule, RecipientProfileRecord
from halloo.reminders.recurrence_models import Once
from halloo.reminders.repository import SqlScheduleStore

from conftest import FakeGateway, make_schedule, utc

FIRE = utc(2025, 1, 1, 9, 0)


@pytest.fixture
def seeded(db_session, monkeypatch):
    db_session.add(
        RecipientProfileRecord(id="recipient-1", owner_id="owner-1", name="Rose", phone_number="+14155550123", confirmed=True)
    )
    db_session.add(
        HabitSchedule(
            id="sched-1",
            owner_id="owner-1",
            recipient_id="recipient-1",
            title="Evening pills",
            frequency_kind="daily",
            anchor_time=time(9, 0),
            timezone="UTC",
            next_fire_time=FIRE,
            status="active",
        )
    )
    db_session.commit()
    monkeypatch.setattr(triggers, "SessionLocal", lambda: db_session)
    return db_session


def test_beat_schedule_covers_every_job():
    schedule = build_beat_schedule()

    assert {entry["task"] for entry in schedule.values()} == {
        "reminders.scan_due",
        "reminders.recover_missed",
        "reminders.health_check",
    }
    assert schedule["reminders-scan"]["schedule"] == 60
    assert schedule["reminders-recover"]["schedule"] == 3600
    assert schedule["reminders-health"]["schedule"] == 900
    assert celery_app.conf.beat_schedule == schedule
    assert celery_app.conf.task_acks_late is True


def test_scan_job_end_to_end(seeded):
    gateway = FakeGateway()

    summary = triggers.run_job("scan", now=FIRE + timedelta(seconds=30), gateway=gateway)

    assert summary["sent"] == 1
    assert summary["advanced"] == 1
    assert len(gateway.sent) == 1
    assert SqlDeliveryLedger(seeded).has_attempt("sched-1", FIRE)
    assert SqlScheduleStore(seeded).get_schedule("sched-1").next_fire_time == FIRE + timedelta(days=1)


def test_recovery_job_never_sends(seeded):
    summary = triggers.run_job("recover", now=FIRE + timedelta(hours=3))

    assert summary["recovered"] == 1
    assert not SqlDeliveryLedger(seeded).has_attempt("sched-1", FIRE)
    assert SqlScheduleStore(seeded).get_schedule("sched-1").next_fire_time == FIRE + timedelta(days=1)


def test_health_job_returns_snapshot_dict(seeded):
    snapshot = triggers.run_job("health", now=FIRE + timedelta(hours=2))

    assert snapshot["stuck_schedule_count"] == 1
    assert snapshot["overall_status"] == "warning"


def test_unknown_job_raises():
    with pytest.raises(KeyError):
        triggers.run_job("compact")


def test_cli_run_prints_summary(seeded, monkeypatch, capsys):
    monkeypatch.setattr(cli, "configure_logging", lambda level=None: None)

    assert cli.main(["run", "recover", "--now", "2025-01-01T12:00:00Z"]) == 0

    assert '"recovered": 1' in capsys.readouterr().out


def test_cli_rejects_bad_timestamp():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["run", "scan", "--now", "yesterday"])


def test_diagnostics_reasons():
    now = utc(2025, 1, 1, 12, 0)
    behind = explain_schedule(make_schedule(next_fire_time=now - timedelta(hours=1)), now, 300)
    once_behind = explain_schedule(make_schedule(frequency=Once(), next_fire_time=now - timedelta(hours=1)), now, 300)
    due = explain_schedule(make_schedule(next_fire_time=now - timedelta(seconds=10)), now, 300)

    assert behind["would_match_window"] is False
    assert "recovery will fast-forward" in behind["reason"]
    assert once_behind["reason"].startswith("one-time schedule")
    assert due["would_match_window"] is True
    assert due["reason"] == "due"
