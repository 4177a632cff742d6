import logging
import time
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from halloo.utils.timezone import to_utc_aware, utc_now
from .advancer import ScheduleAdvancer
from .config import ReminderSettings, settings as default_settings
from .dispatcher import DeliveryDispatcher
from .interfaces import Clock, ScheduleStore
from .metrics import scheduler_scans_total
from .schemas import AdvanceOutcome, CycleSummary, DispatchOutcome, Schedule

logger = logging.getLogger(__name__)


class DueJobScanner:
    """Finds schedules due in the trailing window and runs dispatch + advance for each."""

    def __init__(
        self,
        store: ScheduleStore,
        dispatcher: DeliveryDispatcher,
        advancer: ScheduleAdvancer,
        clock: Clock = utc_now,
        settings: ReminderSettings = default_settings,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.advancer = advancer
        self.clock = clock
        self.settings = settings
        self.monotonic = monotonic

    def scan(self, now: datetime) -> List[Schedule]:
        now = to_utc_aware(now)
        window_start = now - timedelta(seconds=self.settings.scan_window_seconds)
        due = self.store.get_active_schedules_in_window(window_start, now, self.settings.SCHEDULER_BATCH_SIZE)
        logger.info(
            f"🔍 [Scanner] {len(due)} schedule(s) due between {window_start.isoformat()} and {now.isoformat()}"
        )
        return due

    def run_cycle(self, now: Optional[datetime] = None) -> CycleSummary:
        pinned = now is not None
        now = to_utc_aware(now) if pinned else self.clock()
        summary = CycleSummary(started_at=now)
        scheduler_scans_total.inc()

        due = self.scan(now)
        summary.found = len(due)
        budget = self.settings.SCAN_TIME_BUDGET_SECONDS
        started = self.monotonic()

        for index, schedule in enumerate(due):
            if budget is not None and self.monotonic() - started > budget:
                summary.deferred = len(due) - index
                logger.warning(
                    f"⏳ [Scanner] Time budget of {budget}s used up; {summary.deferred} schedule(s) left for the next cycle"
                )
                break
            # Lateness is measured per job unless the cycle time is pinned
            self._process(schedule, now if pinned else self.clock(), summary)

        logger.info(f"📊 [Scanner] Cycle complete: {summary.to_dict()}")
        return summary

    def _process(self, schedule: Schedule, now: datetime, summary: CycleSummary) -> None:
        try:
            result = self.dispatcher.dispatch(schedule, now)
        except Exception:
            # Advance still runs below
            summary.errors += 1
            logger.exception(f"❌ [Scanner] Dispatch crashed for schedule {schedule.id}")
        else:
            if result.outcome == DispatchOutcome.SENT:
                summary.sent += 1
            elif result.outcome == DispatchOutcome.FAILED:
                summary.failed += 1
            elif result.outcome == DispatchOutcome.SKIPPED_DUPLICATE:
                summary.duplicates += 1
            else:
                summary.skipped += 1

        try:
            if schedule.is_recurring:
                advanced = self.advancer.advance(schedule, now)
            else:
                advanced = self.advancer.complete_once(schedule, now)
        except Exception:
            summary.errors += 1
            logger.exception(f"❌ [Scanner] Advance crashed for schedule {schedule.id}")
            return

        if advanced.outcome in (AdvanceOutcome.ADVANCED, AdvanceOutcome.COMPLETED):
            summary.advanced += 1
        elif advanced.outcome in (AdvanceOutcome.PERSIST_FAILED, AdvanceOutcome.INVALID):
            summary.advance_failures += 1
