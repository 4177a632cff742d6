"""
Typed records exchanged between the scheduler components
"""
from dataclasses import asdict, dataclass, field
from datetime import datetime, time
from enum import Enum
from typing import Any, Dict, Optional
import uuid

from halloo.utils.timezone import isoformat_utc
from .recurrence_models import Frequency, frequency_to_dict, is_recurring


class ScheduleStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


class AttemptOutcome(str, Enum):
    SENT = "sent"
    FAILED = "failed"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


class ErrorKind(str, Enum):
    ADVANCE_PERSIST_FAILED = "advance_persist_failed"
    RECOVERY_PERSIST_FAILED = "recovery_persist_failed"
    RECURRENCE_INVALID = "recurrence_invalid"
    CORRECTNESS_VIOLATION = "correctness_violation"
    DUPLICATE_DELIVERY = "duplicate_delivery"
    LEDGER_WRITE_FAILED = "ledger_write_failed"


@dataclass
class Schedule:
    """A habit reminder schedule (one recipient, one timing rule)"""
    id: str
    owner_id: str
    recipient_ref: str
    frequency: Frequency
    anchor_time: time
    next_fire_time: datetime
    status: ScheduleStatus = ScheduleStatus.ACTIVE
    last_fire_attempt_at: Optional[datetime] = None
    title: str = ""
    requires_photo: bool = False
    requires_text: bool = False
    timezone: Optional[str] = None

    @property
    def is_recurring(self) -> bool:
        return is_recurring(self.frequency)

    @property
    def is_active(self) -> bool:
        return self.status == ScheduleStatus.ACTIVE


@dataclass
class RecipientProfile:
    id: str
    contact_address: Optional[str]
    opt_out: bool = False
    confirmed: bool = False
    name: str = ""


@dataclass
class GatewayReceipt:
    gateway_message_id: Optional[str]
    status: str


@dataclass
class DeliveryAttempt:
    """Ledger entry; (schedule_id, scheduled_fire_time) is the idempotency key"""
    schedule_id: str
    scheduled_fire_time: datetime
    outcome: AttemptOutcome
    latency_seconds: float
    created_at: datetime
    gateway_message_id: Optional[str] = None
    owner_id: Optional[str] = None
    to_address: Optional[str] = None
    error_message: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass
class ErrorRecord:
    kind: ErrorKind
    detail: str
    created_at: datetime
    schedule_id: Optional[str] = None
    retries_exhausted: bool = False


@dataclass
class HealthSnapshot:
    timestamp: datetime
    stuck_schedule_count: int
    recent_error_count: int
    delivery_success_rate_percent: float
    overall_status: HealthStatus

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = isoformat_utc(self.timestamp)
        data["overall_status"] = self.overall_status.value
        return data


class DispatchOutcome(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    SKIPPED_INELIGIBLE = "skipped_ineligible"


@dataclass
class DispatchResult:
    outcome: DispatchOutcome
    reason: Optional[str] = None
    attempt: Optional[DeliveryAttempt] = None


class AdvanceOutcome(str, Enum):
    ADVANCED = "advanced"
    COMPLETED = "completed"
    CONFLICT = "conflict"
    INVALID = "invalid"
    PERSIST_FAILED = "persist_failed"


@dataclass
class AdvanceResult:
    outcome: AdvanceOutcome
    next_fire_time: Optional[datetime] = None
    detail: Optional[str] = None


@dataclass
class CycleSummary:
    """Returned to the trigger after one scan cycle"""
    started_at: datetime
    found: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    duplicates: int = 0
    advanced: int = 0
    advance_failures: int = 0
    errors: int = 0
    deferred: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["started_at"] = isoformat_utc(self.started_at)
        return data


@dataclass
class SweepSummary:
    started_at: datetime
    examined: int = 0
    recovered: int = 0
    violations: int = 0
    failures: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["started_at"] = isoformat_utc(self.started_at)
        return data


def schedule_to_dict(schedule: Schedule) -> Dict[str, Any]:
    return {
        "id": schedule.id,
        "owner_id": schedule.owner_id,
        "recipient_ref": schedule.recipient_ref,
        "title": schedule.title,
        "frequency": frequency_to_dict(schedule.frequency),
        "anchor_time": schedule.anchor_time.isoformat(),
        "timezone": schedule.timezone,
        "next_fire_time": isoformat_utc(schedule.next_fire_time),
        "status": schedule.status.value,
        "last_fire_attempt_at": isoformat_utc(schedule.last_fire_attempt_at) or None,
    }
