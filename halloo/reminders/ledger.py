"""
Delivery ledger: append-only record of every send attempt.

The (schedule_id, scheduled_fire_time) pair is unique, which is what makes
the dispatcher's dedup check idempotent and lets a racing duplicate send
surface as a DuplicateAttemptError instead of a silent second row.
"""
from datetime import datetime
from typing import Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from halloo.utils.timezone import to_utc_aware
from .exceptions import DuplicateAttemptError
from .models import DeliveryAttemptRecord
from .schemas import AttemptOutcome, DeliveryAttempt


class SqlDeliveryLedger:
    def __init__(self, db: Session):
        self.db = db

    def has_attempt(self, schedule_id: str, fire_time: datetime) -> bool:
        stmt = (
            select(DeliveryAttemptRecord.id)
            .where(DeliveryAttemptRecord.schedule_id == schedule_id)
            .where(DeliveryAttemptRecord.scheduled_fire_time == to_utc_aware(fire_time))
            .limit(1)
        )
        return self.db.execute(stmt).first() is not None

    def record_attempt(self, attempt: DeliveryAttempt) -> None:
        self.db.add(
            DeliveryAttemptRecord(
                id=attempt.id,
                schedule_id=attempt.schedule_id,
                scheduled_fire_time=to_utc_aware(attempt.scheduled_fire_time),
                outcome=attempt.outcome.value,
                gateway_message_id=attempt.gateway_message_id,
                latency_seconds=attempt.latency_seconds,
                owner_id=attempt.owner_id,
                to_address=attempt.to_address,
                error_message=attempt.error_message,
                created_at=to_utc_aware(attempt.created_at),
            )
        )
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateAttemptError(attempt.schedule_id, attempt.scheduled_fire_time) from e
        except Exception:
            self.db.rollback()
            raise

    def count_outcomes(self, since: datetime) -> Tuple[int, int]:
        stmt = (
            select(DeliveryAttemptRecord.outcome, func.count(DeliveryAttemptRecord.id))
            .where(DeliveryAttemptRecord.created_at >= to_utc_aware(since))
            .group_by(DeliveryAttemptRecord.outcome)
        )
        counts = {outcome: count for outcome, count in self.db.execute(stmt).all()}
        return (
            int(counts.get(AttemptOutcome.SENT.value, 0)),
            int(counts.get(AttemptOutcome.FAILED.value, 0)),
        )
