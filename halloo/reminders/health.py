import logging
from datetime import datetime, timedelta
from typing import Optional

from halloo.utils.timezone import to_utc_aware, utc_now
from .config import ReminderSettings, settings as default_settings
from .interfaces import Clock, DeliveryLedger, ErrorSink, MetricsSink, ScheduleStore
from .metrics import (
    health_delivery_success_rate,
    health_recent_errors,
    health_status_level,
    health_stuck_schedules,
)
from .schemas import HealthSnapshot, HealthStatus

logger = logging.getLogger(__name__)

_STATUS_LEVELS = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.WARNING: 1,
    HealthStatus.CRITICAL: 2,
}


def success_rate_percent(sent: int, failed: int) -> float:
    total = sent + failed
    if total == 0:
        return 100.0
    return sent * 100.0 / total


def evaluate_status(
    stuck: int,
    errors: int,
    success_rate: float,
    settings: ReminderSettings = default_settings,
) -> HealthStatus:
    if (
        stuck >= settings.HEALTH_STUCK_CRITICAL
        or errors >= settings.HEALTH_ERRORS_CRITICAL
        or success_rate < settings.HEALTH_SUCCESS_RATE_CRITICAL
    ):
        return HealthStatus.CRITICAL
    if (
        stuck >= settings.HEALTH_STUCK_WARNING
        or errors >= settings.HEALTH_ERRORS_WARNING
        or success_rate < settings.HEALTH_SUCCESS_RATE_WARNING
    ):
        return HealthStatus.WARNING
    return HealthStatus.HEALTHY


class HealthMonitor:
    """Aggregates scheduler health into a snapshot (stuck schedules, errors, delivery rate)."""

    def __init__(
        self,
        store: ScheduleStore,
        ledger: DeliveryLedger,
        error_sink: ErrorSink,
        metrics_sink: MetricsSink,
        clock: Clock = utc_now,
        settings: ReminderSettings = default_settings,
    ):
        self.store = store
        self.ledger = ledger
        self.error_sink = error_sink
        self.metrics_sink = metrics_sink
        self.clock = clock
        self.settings = settings

    def check(self, now: Optional[datetime] = None) -> HealthSnapshot:
        now = to_utc_aware(now) if now else self.clock()
        s = self.settings

        stuck = self.store.count_stuck_schedules(now - timedelta(seconds=s.HEALTH_STUCK_AGE_SECONDS))
        errors = self.error_sink.count_since(now - timedelta(seconds=s.HEALTH_ERROR_WINDOW_SECONDS))
        sent, failed = self.ledger.count_outcomes(now - timedelta(seconds=s.HEALTH_DELIVERY_WINDOW_SECONDS))
        rate = success_rate_percent(sent, failed)

        snapshot = HealthSnapshot(
            timestamp=now,
            stuck_schedule_count=stuck,
            recent_error_count=errors,
            delivery_success_rate_percent=round(rate, 2),
            overall_status=evaluate_status(stuck, errors, rate, s),
        )

        try:
            self.metrics_sink.record(snapshot)
        except Exception as e:
            logger.error(f"❌ [Health] Could not persist health snapshot: {e!r}")

        health_stuck_schedules.set(stuck)
        health_recent_errors.set(errors)
        health_delivery_success_rate.set(rate)
        health_status_level.set(_STATUS_LEVELS[snapshot.overall_status])

        message = (
            f"[Health] status={snapshot.overall_status.value} stuck={stuck} "
            f"errors={errors} success_rate={rate:.2f}% ({sent} sent / {failed} failed)"
        )
        if snapshot.overall_status == HealthStatus.CRITICAL:
            logger.error(f"🚨 {message}")
        elif snapshot.overall_status == HealthStatus.WARNING:
            logger.warning(f"⚠️ {message}")
        else:
            logger.info(f"✅ {message}")
        return snapshot
