"""
The three periodic jobs, independent of what fires them.

Celery beat (celery_app.py) and the CLI (cli.py) both read TRIGGERS; any
other timer only needs to call ``run_job(key)`` on the matching interval.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from halloo.db.session import SessionLocal
from .config import ReminderSettings, settings as default_settings
from .interfaces import MessagingGateway
from .runtime import Runtime, build_runtime

JobFn = Callable[[Runtime, Optional[datetime]], Dict[str, Any]]


@dataclass(frozen=True)
class TriggerSpec:
    key: str
    task_name: str
    interval_seconds: int
    job: JobFn


def run_scan(runtime: Runtime, now: Optional[datetime] = None) -> Dict[str, Any]:
    return runtime.scanner().run_cycle(now).to_dict()


def run_recovery(runtime: Runtime, now: Optional[datetime] = None) -> Dict[str, Any]:
    return runtime.recoverer().sweep(now).to_dict()


def run_health_check(runtime: Runtime, now: Optional[datetime] = None) -> Dict[str, Any]:
    return runtime.monitor().check(now).to_dict()


def build_triggers(settings: ReminderSettings = default_settings) -> List[TriggerSpec]:
    return [
        TriggerSpec("scan", "reminders.scan_due", settings.SCAN_INTERVAL_SECONDS, run_scan),
        TriggerSpec("recover", "reminders.recover_missed", settings.RECOVERY_INTERVAL_SECONDS, run_recovery),
        TriggerSpec("health", "reminders.health_check", settings.HEALTH_CHECK_INTERVAL_SECONDS, run_health_check),
    ]


TRIGGERS = {spec.key: spec for spec in build_triggers()}


def run_job(
    key: str,
    now: Optional[datetime] = None,
    gateway: Optional[MessagingGateway] = None,
    settings: Optional[ReminderSettings] = None,
) -> Dict[str, Any]:
    """Run one job in its own session. Raises KeyError for an unknown job."""
    spec = TRIGGERS[key]
    db = SessionLocal()
    try:
        runtime = build_runtime(db, gateway=gateway, settings=settings)
        return spec.job(runtime, now)
    finally:
        db.close()
