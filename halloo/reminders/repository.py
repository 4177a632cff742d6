import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from halloo.utils.timezone import to_utc_aware, utc_now
from .models import (
    HabitSchedule,
    HealthSnapshotRecord,
    OwnerUsage,
    RecipientProfileRecord,
    SchedulerErrorRecord,
)
from .recurrence_models import Once, frequency_from_dict
from .schemas import (
    ErrorRecord,
    HealthSnapshot,
    HealthStatus,
    RecipientProfile,
    Schedule,
    ScheduleStatus,
)

logger = logging.getLogger(__name__)


def row_to_schedule(row: HabitSchedule) -> Schedule:
    return Schedule(
        id=str(row.id),
        owner_id=row.owner_id,
        recipient_ref=row.recipient_id,
        frequency=frequency_from_dict({"kind": row.frequency_kind, "days": row.custom_days or []}),
        anchor_time=row.anchor_time,
        next_fire_time=to_utc_aware(row.next_fire_time),
        status=ScheduleStatus(row.status),
        last_fire_attempt_at=to_utc_aware(row.last_fire_attempt_at),
        title=row.title or "",
        requires_photo=bool(row.requires_photo),
        requires_text=bool(row.requires_text),
        timezone=row.timezone,
    )


def _rows_to_schedules(rows: Iterable[HabitSchedule]) -> List[Schedule]:
    schedules: List[Schedule] = []
    for row in rows:
        try:
            schedules.append(row_to_schedule(row))
        except ValueError as e:
            # Skip the row, keep the batch
            logger.warning(f"⚠️ [Store] Skipping malformed schedule {row.id}: {e}")
    return schedules


class SqlScheduleStore:
    """Schedule and recipient access backed by SQLAlchemy"""

    def __init__(self, db: Session):
        self.db = db

    def get_active_schedules_in_window(self, start: datetime, end: datetime, limit: int = 500) -> List[Schedule]:
        stmt = (
            select(HabitSchedule)
            .where(HabitSchedule.status == ScheduleStatus.ACTIVE.value)
            .where(HabitSchedule.next_fire_time >= to_utc_aware(start))
            .where(HabitSchedule.next_fire_time <= to_utc_aware(end))
            .order_by(HabitSchedule.next_fire_time.asc())
            .limit(limit)
        )
        return _rows_to_schedules(self.db.execute(stmt).scalars())

    def _stuck_filter(self, stmt, before: datetime):
        return (
            stmt.where(HabitSchedule.status == ScheduleStatus.ACTIVE.value)
            .where(HabitSchedule.frequency_kind != Once.kind)
            .where(HabitSchedule.next_fire_time < to_utc_aware(before))
        )

    def get_stuck_schedules(self, before: datetime, limit: int = 500) -> List[Schedule]:
        stmt = self._stuck_filter(select(HabitSchedule), before).order_by(HabitSchedule.next_fire_time.asc()).limit(limit)
        return _rows_to_schedules(self.db.execute(stmt).scalars())

    def count_stuck_schedules(self, before: datetime) -> int:
        stmt = self._stuck_filter(select(func.count(HabitSchedule.id)), before)
        return int(self.db.execute(stmt).scalar() or 0)

    def list_schedules(self, limit: int = 200) -> List[Schedule]:
        stmt = select(HabitSchedule).order_by(HabitSchedule.next_fire_time.asc()).limit(limit)
        return _rows_to_schedules(self.db.execute(stmt).scalars())

    def get_schedule(self, schedule_id: str) -> Optional[Schedule]:
        row = self.db.get(HabitSchedule, schedule_id)
        return row_to_schedule(row) if row else None

    def _compare_and_set(self, schedule_id: str, expected_fire_time: datetime, **values) -> bool:
        stmt = (
            update(HabitSchedule)
            .where(HabitSchedule.id == schedule_id)
            .where(HabitSchedule.next_fire_time == to_utc_aware(expected_fire_time))
            .values(updated_at=utc_now(), **values)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        # Bulk UPDATE bypasses the identity map
        self.db.expire_all()
        return result.rowcount == 1

    def update_schedule_next_fire_time(
        self,
        schedule_id: str,
        next_fire_time: datetime,
        expected_fire_time: datetime,
        attempted_at: datetime,
    ) -> bool:
        return self._compare_and_set(
            schedule_id,
            expected_fire_time,
            next_fire_time=to_utc_aware(next_fire_time),
            last_fire_attempt_at=to_utc_aware(attempted_at),
        )

    def complete_schedule(self, schedule_id: str, expected_fire_time: datetime, attempted_at: datetime) -> bool:
        return self._compare_and_set(
            schedule_id,
            expected_fire_time,
            status=ScheduleStatus.ARCHIVED.value,
            last_fire_attempt_at=to_utc_aware(attempted_at),
        )

    def get_recipient(self, recipient_id: str) -> Optional[RecipientProfile]:
        row = self.db.get(RecipientProfileRecord, recipient_id)
        if not row:
            return None
        return RecipientProfile(
            id=str(row.id),
            contact_address=row.phone_number,
            opt_out=bool(row.sms_opted_out),
            confirmed=bool(row.confirmed),
            name=row.name or "",
        )


class SqlErrorSink:
    """Structured scheduler error log"""

    def __init__(self, db: Session):
        self.db = db

    def record(self, entry: ErrorRecord) -> None:
        self.db.add(
            SchedulerErrorRecord(
                schedule_id=entry.schedule_id,
                kind=entry.kind.value,
                detail=entry.detail,
                retries_exhausted=entry.retries_exhausted,
                created_at=to_utc_aware(entry.created_at),
            )
        )
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def count_since(self, since: datetime) -> int:
        stmt = select(func.count(SchedulerErrorRecord.id)).where(SchedulerErrorRecord.created_at >= to_utc_aware(since))
        return int(self.db.execute(stmt).scalar() or 0)


class SqlHealthSnapshotStore:
    """Persists health snapshots for dashboards"""

    def __init__(self, db: Session):
        self.db = db

    def record(self, snapshot: HealthSnapshot) -> None:
        self.db.add(
            HealthSnapshotRecord(
                timestamp=to_utc_aware(snapshot.timestamp),
                stuck_schedule_count=snapshot.stuck_schedule_count,
                recent_error_count=snapshot.recent_error_count,
                delivery_success_rate_percent=snapshot.delivery_success_rate_percent,
                overall_status=snapshot.overall_status.value,
            )
        )
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def latest(self) -> Optional[HealthSnapshot]:
        row = (
            self.db.execute(select(HealthSnapshotRecord).order_by(HealthSnapshotRecord.timestamp.desc()).limit(1))
            .scalars()
            .first()
        )
        if not row:
            return None
        return HealthSnapshot(
            timestamp=to_utc_aware(row.timestamp),
            stuck_schedule_count=row.stuck_schedule_count,
            recent_error_count=row.recent_error_count,
            delivery_success_rate_percent=row.delivery_success_rate_percent,
            overall_status=HealthStatus(row.overall_status),
        )


class SqlUsageTracker:
    """Per-owner SMS quota (limit per period, unlimited when no row or no limit)"""

    def __init__(self, db: Session, period_days: int = 30):
        self.db = db
        self.period = timedelta(days=period_days)

    def has_quota(self, owner_id: str, now: Optional[datetime] = None) -> bool:
        now = to_utc_aware(now) if now else utc_now()
        usage = self.db.get(OwnerUsage, owner_id)
        if usage is None:
            return True

        period_end = to_utc_aware(usage.period_end)
        if period_end and now > period_end:
            # Start a new quota period
            usage.sms_used = 0
            usage.period_end = now + self.period
            try:
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
            logger.info(f"🔄 [Usage] Quota period reset for owner {owner_id}")

        return usage.sms_limit is None or usage.sms_used < usage.sms_limit

    def increment(self, owner_id: str) -> None:
        stmt = (
            update(OwnerUsage)
            .where(OwnerUsage.owner_id == owner_id)
            .values(sms_used=OwnerUsage.sms_used + 1, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
            if result.rowcount == 0:
                self.db.add(OwnerUsage(owner_id=owner_id, sms_used=1))
            self.db.commit()
        except IntegrityError:
            # Concurrent first increment created the row; bump it instead
            self.db.rollback()
            self.db.execute(stmt)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.expire_all()
