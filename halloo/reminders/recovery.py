"""
Missed-job recovery.

Schedules whose next fire time fell behind (worker outage, crashed cycle,
failed advance) are fast-forwarded to their next future slot. Missed slots
are skipped: the recoverer has no gateway and never sends anything.
"""
import logging
import time
from datetime import datetime, timedelta
from typing import Optional

from halloo.utils.timezone import to_utc_aware, utc_now
from .advancer import persist_with_retry
from .config import ReminderSettings, settings as default_settings
from .error_log import report_error
from .exceptions import RecurrenceComputationError
from .interfaces import Clock, DeliveryLedger, ErrorSink, ScheduleStore, Sleeper
from .metrics import correctness_violations_total, recovered_schedules_total, recovery_sweeps_total
from .recurrence_models import RecurrenceCalculator
from .schemas import ErrorKind, Schedule, SweepSummary

logger = logging.getLogger(__name__)


class MissedJobRecoverer:
    def __init__(
        self,
        store: ScheduleStore,
        ledger: DeliveryLedger,
        error_sink: ErrorSink,
        calculator: Optional[RecurrenceCalculator] = None,
        clock: Clock = utc_now,
        sleep: Sleeper = time.sleep,
        settings: ReminderSettings = default_settings,
    ):
        self.store = store
        self.ledger = ledger
        self.error_sink = error_sink
        self.calculator = calculator or RecurrenceCalculator()
        self.clock = clock
        self.sleep = sleep
        self.settings = settings

    def sweep(self, now: Optional[datetime] = None) -> SweepSummary:
        now = to_utc_aware(now) if now else self.clock()
        summary = SweepSummary(started_at=now)
        recovery_sweeps_total.inc()

        cutoff = now - timedelta(seconds=self.settings.STUCK_THRESHOLD_SECONDS)
        stuck = self.store.get_stuck_schedules(cutoff, self.settings.SCHEDULER_BATCH_SIZE)
        summary.examined = len(stuck)
        if stuck:
            logger.warning(f"🧭 [Recovery] {len(stuck)} schedule(s) stuck before {cutoff.isoformat()}")

        for schedule in stuck:
            try:
                self._recover(schedule, now, summary)
            except Exception:
                summary.failures += 1
                logger.exception(f"❌ [Recovery] Unexpected error recovering schedule {schedule.id}")

        logger.info(f"📊 [Recovery] Sweep complete: {summary.to_dict()}")
        return summary

    def _recover(self, schedule: Schedule, now: datetime, summary: SweepSummary) -> None:
        stuck_at = schedule.next_fire_time

        if self.ledger.has_attempt(schedule.id, stuck_at):
            # The slot was attempted but the advance never landed
            summary.violations += 1
            correctness_violations_total.inc()
            detail = f"attempt recorded for {stuck_at.isoformat()} but schedule was never advanced"
            logger.critical(f"🚨 [Recovery] Correctness violation on schedule {schedule.id}: {detail}")
            report_error(
                self.error_sink,
                ErrorKind.CORRECTNESS_VIOLATION,
                detail,
                created_at=now,
                schedule_id=schedule.id,
            )

        try:
            target = self.calculator.next_future(schedule, now)
        except RecurrenceComputationError as e:
            summary.failures += 1
            logger.error(f"❌ [Recovery] Cannot fast-forward schedule {schedule.id}: {e.detail}")
            report_error(self.error_sink, ErrorKind.RECURRENCE_INVALID, e.detail, created_at=now, schedule_id=schedule.id)
            return

        try:
            updated = persist_with_retry(
                lambda: self.store.update_schedule_next_fire_time(schedule.id, target, stuck_at, now),
                max_attempts=self.settings.ADVANCE_MAX_ATTEMPTS,
                base_delay=self.settings.ADVANCE_BACKOFF_BASE_SECONDS,
                sleep=self.sleep,
                label="Recovery",
            )
        except Exception as e:
            summary.failures += 1
            report_error(
                self.error_sink,
                ErrorKind.RECOVERY_PERSIST_FAILED,
                f"fast-forward to {target.isoformat()} failed: {e!r}",
                created_at=now,
                schedule_id=schedule.id,
                retries_exhausted=True,
            )
            return

        if not updated:
            logger.info(f"🔀 [Recovery] Schedule {schedule.id} moved by another writer; leaving it")
            return

        summary.recovered += 1
        recovered_schedules_total.inc()
        logger.info(
            f"⏩ [Recovery] Schedule {schedule.id} fast-forwarded {stuck_at.isoformat()} -> {target.isoformat()}"
        )
