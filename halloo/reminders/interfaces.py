"""
Collaborator interfaces injected into the scheduler components.

The SQLAlchemy repositories and the Twilio gateway implement these; tests
substitute in-memory versions.
"""
from datetime import datetime
from typing import Callable, List, Optional, Protocol, Tuple

from .schemas import (
    DeliveryAttempt,
    ErrorRecord,
    GatewayReceipt,
    HealthSnapshot,
    RecipientProfile,
    Schedule,
)

Clock = Callable[[], datetime]
Sleeper = Callable[[float], None]


class ScheduleStore(Protocol):
    def get_active_schedules_in_window(self, start: datetime, end: datetime, limit: int) -> List[Schedule]: ...

    def get_stuck_schedules(self, before: datetime, limit: int) -> List[Schedule]: ...

    def count_stuck_schedules(self, before: datetime) -> int: ...

    def get_schedule(self, schedule_id: str) -> Optional[Schedule]: ...

    def update_schedule_next_fire_time(
        self,
        schedule_id: str,
        next_fire_time: datetime,
        expected_fire_time: datetime,
        attempted_at: datetime,
    ) -> bool:
        """Compare-and-set; False when next_fire_time no longer equals expected_fire_time."""
        ...

    def complete_schedule(self, schedule_id: str, expected_fire_time: datetime, attempted_at: datetime) -> bool: ...

    def get_recipient(self, recipient_id: str) -> Optional[RecipientProfile]: ...


class DeliveryLedger(Protocol):
    def has_attempt(self, schedule_id: str, fire_time: datetime) -> bool: ...

    def record_attempt(self, attempt: DeliveryAttempt) -> None:
        """Raises DuplicateAttemptError when the key already exists."""
        ...

    def count_outcomes(self, since: datetime) -> Tuple[int, int]:
        """(sent, failed) attempts created at or after ``since``."""
        ...


class ErrorSink(Protocol):
    def record(self, entry: ErrorRecord) -> None: ...

    def count_since(self, since: datetime) -> int: ...


class MetricsSink(Protocol):
    def record(self, snapshot: HealthSnapshot) -> None: ...

    def latest(self) -> Optional[HealthSnapshot]: ...


class UsageTracker(Protocol):
    def has_quota(self, owner_id: str, now: datetime) -> bool: ...

    def increment(self, owner_id: str) -> None: ...


class MessagingGateway(Protocol):
    def send(self, to_address: str, body: str) -> GatewayReceipt:
        """Raises GatewaySendError on failure."""
        ...
