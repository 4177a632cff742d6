import dataclasses
from datetime import datetime, time, timezone
from typing import Dict, List, Optional, Tuple

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from halloo.db.base import Base
from halloo.reminders import models  # noqa: F401  (registers tables)
from halloo.reminders.config import ReminderSettings
from halloo.reminders.exceptions import DuplicateAttemptError, GatewaySendError
from halloo.reminders.recurrence_models import Daily
from halloo.reminders.schemas import (
    AttemptOutcome,
    GatewayReceipt,
    RecipientProfile,
    Schedule,
    ScheduleStatus,
)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def make_schedule(**overrides) -> Schedule:
    values = dict(
        id="sched-1",
        owner_id="owner-1",
        recipient_ref="recipient-1",
        frequency=Daily(),
        anchor_time=time(9, 0),
        next_fire_time=utc(2025, 1, 1, 9, 0),
        title="Take blood pressure pills",
        timezone="UTC",
    )
    values.update(overrides)
    return Schedule(**values)


def make_recipient(**overrides) -> RecipientProfile:
    values = dict(
        id="recipient-1",
        contact_address="+14155550123",
        opt_out=False,
        confirmed=True,
        name="Grandma Rose",
    )
    values.update(overrides)
    return RecipientProfile(**values)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class InMemoryScheduleStore:
    def __init__(self, schedules=(), recipients=()):
        self.schedules: Dict[str, Schedule] = {s.id: s for s in schedules}
        self.recipients: Dict[str, RecipientProfile] = {r.id: r for r in recipients}
        self.update_failures = 0
        self.update_calls = 0

    def add(self, schedule: Schedule) -> None:
        self.schedules[schedule.id] = schedule

    def _active(self):
        return [s for s in self.schedules.values() if s.status == ScheduleStatus.ACTIVE]

    def get_active_schedules_in_window(self, start, end, limit=500):
        due = [s for s in self._active() if start <= s.next_fire_time <= end]
        return sorted(due, key=lambda s: s.next_fire_time)[:limit]

    def get_stuck_schedules(self, before, limit=500):
        stuck = [s for s in self._active() if s.is_recurring and s.next_fire_time < before]
        return sorted(stuck, key=lambda s: s.next_fire_time)[:limit]

    def count_stuck_schedules(self, before):
        return len(self.get_stuck_schedules(before, limit=10_000))

    def get_schedule(self, schedule_id):
        return self.schedules.get(schedule_id)

    def _cas(self, schedule_id, expected_fire_time, **changes) -> bool:
        self.update_calls += 1
        if self.update_failures > 0:
            self.update_failures -= 1
            raise RuntimeError("database unavailable")
        current = self.schedules.get(schedule_id)
        if current is None or current.next_fire_time != expected_fire_time:
            return False
        self.schedules[schedule_id] = dataclasses.replace(current, **changes)
        return True

    def update_schedule_next_fire_time(self, schedule_id, next_fire_time, expected_fire_time, attempted_at):
        return self._cas(
            schedule_id,
            expected_fire_time,
            next_fire_time=next_fire_time,
            last_fire_attempt_at=attempted_at,
        )

    def complete_schedule(self, schedule_id, expected_fire_time, attempted_at):
        return self._cas(
            schedule_id,
            expected_fire_time,
            status=ScheduleStatus.ARCHIVED,
            last_fire_attempt_at=attempted_at,
        )

    def get_recipient(self, recipient_id):
        return self.recipients.get(recipient_id)


class InMemoryLedger:
    def __init__(self):
        self.attempts = []
        self.fail_writes = False

    def _exists(self, schedule_id, fire_time) -> bool:
        return any(a.schedule_id == schedule_id and a.scheduled_fire_time == fire_time for a in self.attempts)

    def has_attempt(self, schedule_id, fire_time) -> bool:
        return self._exists(schedule_id, fire_time)

    def record_attempt(self, attempt) -> None:
        if self.fail_writes:
            raise RuntimeError("ledger unavailable")
        if self._exists(attempt.schedule_id, attempt.scheduled_fire_time):
            raise DuplicateAttemptError(attempt.schedule_id, attempt.scheduled_fire_time)
        self.attempts.append(attempt)

    def count_outcomes(self, since) -> Tuple[int, int]:
        recent = [a for a in self.attempts if a.created_at >= since]
        sent = sum(1 for a in recent if a.outcome == AttemptOutcome.SENT)
        return sent, len(recent) - sent


class FakeGateway:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[Tuple[str, str]] = []

    def send(self, to_address, body) -> GatewayReceipt:
        if self.fail:
            raise GatewaySendError("Carrier rejected message", status_code=400, error_code="30003")
        self.sent.append((to_address, body))
        return GatewayReceipt(gateway_message_id=f"SM{len(self.sent):04d}", status="queued")


class InMemoryErrorSink:
    def __init__(self):
        self.records = []

    def record(self, entry) -> None:
        self.records.append(entry)

    def count_since(self, since) -> int:
        return sum(1 for r in self.records if r.created_at >= since)

    def kinds(self):
        return [r.kind for r in self.records]


class InMemoryMetricsSink:
    def __init__(self):
        self.snapshots = []

    def record(self, snapshot) -> None:
        self.snapshots.append(snapshot)

    def latest(self):
        return self.snapshots[-1] if self.snapshots else None


class FakeUsage:
    def __init__(self, limit: Optional[int] = None):
        self.limit = limit
        self.used: Dict[str, int] = {}

    def has_quota(self, owner_id, now) -> bool:
        return self.limit is None or self.used.get(owner_id, 0) < self.limit

    def increment(self, owner_id) -> None:
        self.used[owner_id] = self.used.get(owner_id, 0) + 1


@pytest.fixture
def reminder_settings():
    return ReminderSettings(_env_file=None)


@pytest.fixture
def clock():
    return FakeClock(utc(2025, 1, 1, 9, 0, 30))


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def store():
    return InMemoryScheduleStore(schedules=[make_schedule()], recipients=[make_recipient()])


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def error_sink():
    return InMemoryErrorSink()


@pytest.fixture
def metrics_sink():
    return InMemoryMetricsSink()


@pytest.fixture
def usage():
    return FakeUsage()


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    db = Session()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
