import logging

from celery import shared_task

from .triggers import run_job

logger = logging.getLogger(__name__)


@shared_task(name="reminders.scan_due")
def scan_due_task() -> dict:
    """Dispatch and advance every schedule due in the trailing window."""
    summary = run_job("scan")
    logger.info(f"🔍 [Reminders] Scan summary: {summary}")
    return summary


@shared_task(name="reminders.recover_missed")
def recover_missed_task() -> dict:
    """Fast-forward schedules stuck in the past without sending."""
    summary = run_job("recover")
    logger.info(f"🧭 [Reminders] Recovery summary: {summary}")
    return summary


@shared_task(name="reminders.health_check")
def health_check_task() -> dict:
    return run_job("health")
