"""
Per-invocation wiring of the scheduler components.

Every trigger (Celery task, CLI run) builds a fresh runtime around its own
database session; nothing here is a module-level singleton.
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from .advancer import ScheduleAdvancer
from .config import ReminderSettings, settings as default_settings
from .dispatcher import DeliveryDispatcher
from .gateway import build_gateway
from .health import HealthMonitor
from .interfaces import MessagingGateway
from .ledger import SqlDeliveryLedger
from .recovery import MissedJobRecoverer
from .repository import SqlErrorSink, SqlHealthSnapshotStore, SqlScheduleStore, SqlUsageTracker
from .scanner import DueJobScanner


@dataclass
class Runtime:
    settings: ReminderSettings
    store: SqlScheduleStore
    ledger: SqlDeliveryLedger
    error_sink: SqlErrorSink
    metrics_sink: SqlHealthSnapshotStore
    usage: SqlUsageTracker
    gateway: Optional[MessagingGateway] = None

    def scanner(self) -> DueJobScanner:
        # Only the scan job needs gateway credentials
        if self.gateway is None:
            self.gateway = build_gateway(self.settings)
        dispatcher = DeliveryDispatcher(
            store=self.store,
            ledger=self.ledger,
            gateway=self.gateway,
            usage=self.usage,
            error_sink=self.error_sink,
            settings=self.settings,
        )
        advancer = ScheduleAdvancer(store=self.store, error_sink=self.error_sink, settings=self.settings)
        return DueJobScanner(store=self.store, dispatcher=dispatcher, advancer=advancer, settings=self.settings)

    def recoverer(self) -> MissedJobRecoverer:
        return MissedJobRecoverer(
            store=self.store,
            ledger=self.ledger,
            error_sink=self.error_sink,
            settings=self.settings,
        )

    def monitor(self) -> HealthMonitor:
        return HealthMonitor(
            store=self.store,
            ledger=self.ledger,
            error_sink=self.error_sink,
            metrics_sink=self.metrics_sink,
            settings=self.settings,
        )


def build_runtime(
    db: Session,
    gateway: Optional[MessagingGateway] = None,
    settings: Optional[ReminderSettings] = None,
) -> Runtime:
    settings = settings or default_settings
    return Runtime(
        settings=settings,
        store=SqlScheduleStore(db),
        ledger=SqlDeliveryLedger(db),
        error_sink=SqlErrorSink(db),
        metrics_sink=SqlHealthSnapshotStore(db),
        usage=SqlUsageTracker(db, period_days=settings.SMS_QUOTA_PERIOD_DAYS),
        gateway=gateway,
    )
