import logging
import time
from datetime import datetime
from typing import Callable, Optional

from halloo.utils.timezone import to_utc_aware, utc_now
from .config import ReminderSettings, settings as default_settings
from .error_log import report_error
from .exceptions import RecurrenceComputationError
from .interfaces import Clock, ErrorSink, ScheduleStore, Sleeper
from .metrics import schedule_advance_failures_total
from .recurrence_models import RecurrenceCalculator
from .schemas import AdvanceOutcome, AdvanceResult, ErrorKind, Schedule

logger = logging.getLogger(__name__)


def persist_with_retry(
    operation: Callable[[], bool],
    max_attempts: int,
    base_delay: float,
    sleep: Sleeper = time.sleep,
    label: str = "Persist",
) -> bool:
    """Run a compare-and-set write, retrying raised errors with exponential backoff.

    Returns the operation's result (False means the CAS missed and is not
    retried). The last exception is re-raised once attempts are exhausted.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            return operation()
        except Exception as e:
            if attempt >= max_attempts:
                logger.error(f"❌ [{label}] Giving up after {attempt} attempts: {e!r}")
                raise
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(f"🔁 [{label}] Attempt {attempt}/{max_attempts} failed: {e!r}; retrying in {delay:.2f}s")
            sleep(delay)
    return False


class ScheduleAdvancer:
    """Moves a schedule to its next occurrence after a dispatch, whatever the outcome."""

    def __init__(
        self,
        store: ScheduleStore,
        error_sink: ErrorSink,
        calculator: Optional[RecurrenceCalculator] = None,
        clock: Clock = utc_now,
        sleep: Sleeper = time.sleep,
        settings: ReminderSettings = default_settings,
    ):
        self.store = store
        self.error_sink = error_sink
        self.calculator = calculator or RecurrenceCalculator()
        self.clock = clock
        self.sleep = sleep
        self.settings = settings

    def advance(self, schedule: Schedule, now: Optional[datetime] = None) -> AdvanceResult:
        now = to_utc_aware(now) if now else self.clock()
        if not schedule.is_recurring:
            return self.complete_once(schedule, now)

        previous = schedule.next_fire_time
        try:
            candidate = self.calculator.compute_next(schedule, previous)
            if candidate <= now or candidate <= previous:
                raise RecurrenceComputationError(
                    schedule.id,
                    f"next fire time {candidate.isoformat()} is not after now ({now.isoformat()})",
                )
        except RecurrenceComputationError as e:
            logger.error(f"❌ [Advance] Invalid recurrence for schedule {schedule.id}: {e.detail}")
            report_error(self.error_sink, ErrorKind.RECURRENCE_INVALID, e.detail, created_at=now, schedule_id=schedule.id)
            return AdvanceResult(AdvanceOutcome.INVALID, detail=e.detail)

        try:
            updated = persist_with_retry(
                lambda: self.store.update_schedule_next_fire_time(schedule.id, candidate, previous, now),
                max_attempts=self.settings.ADVANCE_MAX_ATTEMPTS,
                base_delay=self.settings.ADVANCE_BACKOFF_BASE_SECONDS,
                sleep=self.sleep,
                label="Advance",
            )
        except Exception as e:
            return self._persist_failed(schedule, now, f"advance to {candidate.isoformat()} failed: {e!r}")

        if not updated:
            logger.info(
                f"🔀 [Advance] Schedule {schedule.id} already moved past {previous.isoformat()} by another writer"
            )
            return AdvanceResult(AdvanceOutcome.CONFLICT)

        logger.info(f"⏭️ [Advance] Schedule {schedule.id} next fire at {candidate.isoformat()}")
        return AdvanceResult(AdvanceOutcome.ADVANCED, next_fire_time=candidate)

    def complete_once(self, schedule: Schedule, now: Optional[datetime] = None) -> AdvanceResult:
        """Archive a one-time schedule after its single attempt."""
        now = to_utc_aware(now) if now else self.clock()
        try:
            updated = persist_with_retry(
                lambda: self.store.complete_schedule(schedule.id, schedule.next_fire_time, now),
                max_attempts=self.settings.ADVANCE_MAX_ATTEMPTS,
                base_delay=self.settings.ADVANCE_BACKOFF_BASE_SECONDS,
                sleep=self.sleep,
                label="Complete",
            )
        except Exception as e:
            return self._persist_failed(schedule, now, f"archiving one-time schedule failed: {e!r}")

        if not updated:
            logger.info(f"🔀 [Advance] One-time schedule {schedule.id} was already changed by another writer")
            return AdvanceResult(AdvanceOutcome.CONFLICT)

        logger.info(f"🏁 [Advance] One-time schedule {schedule.id} archived")
        return AdvanceResult(AdvanceOutcome.COMPLETED)

    def _persist_failed(self, schedule: Schedule, now: datetime, detail: str) -> AdvanceResult:
        schedule_advance_failures_total.inc()
        report_error(
            self.error_sink,
            ErrorKind.ADVANCE_PERSIST_FAILED,
            detail,
            created_at=now,
            schedule_id=schedule.id,
            retries_exhausted=True,
        )
        return AdvanceResult(AdvanceOutcome.PERSIST_FAILED, detail=detail)
