"""
Habit reminder tables: schedules, recipients, delivery ledger, error log, health snapshots, SMS usage
"""
from halloo.utils.timezone import utc_now
from sqlalchemy import Column, String, DateTime, Boolean, Integer, Float, Index, JSON, Time, Text, UniqueConstraint
import uuid

from halloo.db.base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class HabitSchedule(Base):
    """Recurring (or one-time) habit reminder owned by a family account"""
    __tablename__ = "habit_schedules"

    id = Column(String(36), primary_key=True, default=_uuid)
    owner_id = Column(String, nullable=False, index=True)
    recipient_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False, default="")
    requires_photo = Column(Boolean, nullable=False, default=False)
    requires_text = Column(Boolean, nullable=False, default=False)

    frequency_kind = Column(String, nullable=False)  # once, daily, weekdays, weekly, custom
    custom_days = Column(JSON, nullable=True)  # ["monday", "wednesday"] for custom
    anchor_time = Column(Time, nullable=False)
    timezone = Column(String, nullable=True)

    next_fire_time = Column(DateTime(timezone=True), nullable=False)
    status = Column(String, nullable=False, default="active")
    last_fire_attempt_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    __table_args__ = (
        Index("ix_habit_schedules_status_next_fire", "status", "next_fire_time"),
        Index("ix_habit_schedules_kind_status", "frequency_kind", "status"),
    )


class RecipientProfileRecord(Base):
    """Person receiving reminders by SMS"""
    __tablename__ = "recipient_profiles"

    id = Column(String(36), primary_key=True, default=_uuid)
    owner_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False, default="")
    phone_number = Column(String, nullable=True)
    confirmed = Column(Boolean, nullable=False, default=False)
    sms_opted_out = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)


class DeliveryAttemptRecord(Base):
    """Append-only ledger of delivery attempts"""
    __tablename__ = "delivery_attempts"

    id = Column(String(36), primary_key=True, default=_uuid)
    schedule_id = Column(String(36), nullable=False)
    scheduled_fire_time = Column(DateTime(timezone=True), nullable=False)
    outcome = Column(String, nullable=False)  # sent, failed
    gateway_message_id = Column(String, nullable=True)
    latency_seconds = Column(Float, nullable=False, default=0.0)
    owner_id = Column(String, nullable=True)
    to_address = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint("schedule_id", "scheduled_fire_time", name="uq_delivery_attempts_schedule_fire_time"),
        Index("ix_delivery_attempts_created_outcome", "created_at", "outcome"),
    )


class SchedulerErrorRecord(Base):
    """Structured error log consumed by health checks and alerting"""
    __tablename__ = "scheduler_errors"

    id = Column(String(36), primary_key=True, default=_uuid)
    schedule_id = Column(String(36), nullable=True, index=True)
    kind = Column(String, nullable=False)
    detail = Column(Text, nullable=False, default="")
    retries_exhausted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False, index=True)


class HealthSnapshotRecord(Base):
    __tablename__ = "health_snapshots"

    id = Column(String(36), primary_key=True, default=_uuid)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    stuck_schedule_count = Column(Integer, nullable=False)
    recent_error_count = Column(Integer, nullable=False)
    delivery_success_rate_percent = Column(Float, nullable=False)
    overall_status = Column(String, nullable=False)


class OwnerUsage(Base):
    """SMS quota usage per owning account"""
    __tablename__ = "owner_usage"

    owner_id = Column(String, primary_key=True)
    sms_used = Column(Integer, nullable=False, default=0)
    sms_limit = Column(Integer, nullable=True)  # NULL = unlimited
    period_end = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)
