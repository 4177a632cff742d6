import logging
from datetime import datetime
from typing import Optional

from halloo.utils.timezone import to_utc_aware, utc_now
from .config import ReminderSettings, settings as default_settings
from .error_log import report_error
from .exceptions import DuplicateAttemptError, GatewaySendError
from .gateway import is_e164
from .interfaces import Clock, DeliveryLedger, ErrorSink, MessagingGateway, ScheduleStore, UsageTracker
from .messages import compose_reminder_message
from .metrics import (
    reminder_lateness_seconds,
    reminders_dispatch_failed_total,
    reminders_dispatch_skipped_total,
    reminders_dispatch_success_total,
)
from .schemas import (
    AttemptOutcome,
    DeliveryAttempt,
    DispatchOutcome,
    DispatchResult,
    ErrorKind,
    RecipientProfile,
    Schedule,
)

logger = logging.getLogger(__name__)

# Skip reasons (counted, not errors)
RECIPIENT_MISSING = "recipient_missing"
RECIPIENT_UNCONFIRMED = "recipient_unconfirmed"
RECIPIENT_OPTED_OUT = "recipient_opted_out"
RECIPIENT_NO_ADDRESS = "recipient_no_address"
RECIPIENT_INVALID_ADDRESS = "recipient_invalid_address"
QUOTA_EXHAUSTED = "quota_exhausted"


def lateness_tier(lateness_seconds: float, settings: ReminderSettings = default_settings) -> str:
    if lateness_seconds < settings.LATENESS_MINOR_SECONDS:
        return "on_time"
    if lateness_seconds <= settings.LATENESS_WARNING_SECONDS:
        return "minor"
    return "warning"


class DeliveryDispatcher:
    """Sends one due reminder: dedup check, recipient checks, send, ledger write."""

    def __init__(
        self,
        store: ScheduleStore,
        ledger: DeliveryLedger,
        gateway: MessagingGateway,
        usage: UsageTracker,
        error_sink: ErrorSink,
        clock: Clock = utc_now,
        settings: ReminderSettings = default_settings,
    ):
        self.store = store
        self.ledger = ledger
        self.gateway = gateway
        self.usage = usage
        self.error_sink = error_sink
        self.clock = clock
        self.settings = settings

    def dispatch(self, schedule: Schedule, now: Optional[datetime] = None) -> DispatchResult:
        now = to_utc_aware(now) if now else self.clock()
        fire_time = schedule.next_fire_time

        if self.ledger.has_attempt(schedule.id, fire_time):
            logger.info(f"✅ [Dispatch] Already processed schedule {schedule.id} at {fire_time.isoformat()}")
            return DispatchResult(DispatchOutcome.SKIPPED_DUPLICATE, reason="already_processed")

        recipient = self.store.get_recipient(schedule.recipient_ref)
        reason = self.ineligibility_reason(schedule, recipient, now)
        if reason:
            reminders_dispatch_skipped_total.labels(reason=reason).inc()
            logger.warning(f"⚠️ [Dispatch] Skipping schedule {schedule.id} ({schedule.title!r}): {reason}")
            return DispatchResult(DispatchOutcome.SKIPPED_INELIGIBLE, reason=reason)

        lateness = max((now - fire_time).total_seconds(), 0.0)
        self._log_lateness(schedule, lateness)

        body = compose_reminder_message(schedule, recipient)
        gateway_message_id = None
        error_message = None
        try:
            receipt = self.gateway.send(recipient.contact_address, body)
            gateway_message_id = receipt.gateway_message_id
            outcome = AttemptOutcome.SENT
            reminders_dispatch_success_total.inc()
            logger.info(f"✅ [Dispatch] SMS sent: {gateway_message_id} for schedule {schedule.id} to {recipient.name}")
        except GatewaySendError as e:
            outcome = AttemptOutcome.FAILED
            error_message = str(e)
            reminders_dispatch_failed_total.inc()
            logger.error(f"❌ [Dispatch] Gateway rejected schedule {schedule.id}: {e} (code={e.error_code})")
        except Exception as e:
            outcome = AttemptOutcome.FAILED
            error_message = repr(e)
            reminders_dispatch_failed_total.inc()
            logger.exception(f"❌ [Dispatch] Gateway call failed for schedule {schedule.id}")

        attempt = DeliveryAttempt(
            schedule_id=schedule.id,
            scheduled_fire_time=fire_time,
            outcome=outcome,
            latency_seconds=lateness,
            created_at=now,
            gateway_message_id=gateway_message_id,
            owner_id=schedule.owner_id,
            to_address=recipient.contact_address,
            error_message=error_message,
        )
        self._record_attempt(attempt, now)

        if outcome == AttemptOutcome.SENT:
            try:
                self.usage.increment(schedule.owner_id)
            except Exception as e:
                logger.error(f"❌ [Dispatch] Could not increment SMS usage for owner {schedule.owner_id}: {e!r}")
            return DispatchResult(DispatchOutcome.SENT, attempt=attempt)
        return DispatchResult(DispatchOutcome.FAILED, reason=error_message, attempt=attempt)

    def ineligibility_reason(
        self,
        schedule: Schedule,
        recipient: Optional[RecipientProfile],
        now: datetime,
    ) -> Optional[str]:
        if recipient is None:
            return RECIPIENT_MISSING
        if not recipient.confirmed:
            return RECIPIENT_UNCONFIRMED
        if recipient.opt_out:
            return RECIPIENT_OPTED_OUT
        if not recipient.contact_address:
            return RECIPIENT_NO_ADDRESS
        if not is_e164(recipient.contact_address):
            return RECIPIENT_INVALID_ADDRESS
        if not self.usage.has_quota(schedule.owner_id, now):
            return QUOTA_EXHAUSTED
        return None

    def _log_lateness(self, schedule: Schedule, lateness: float) -> None:
        reminder_lateness_seconds.set(lateness)
        tier = lateness_tier(lateness, self.settings)
        if tier == "on_time":
            logger.info(f"⏰ [Dispatch] Schedule {schedule.id} on time ({lateness:.0f}s)")
        elif tier == "minor":
            logger.info(f"🕐 [Dispatch] Schedule {schedule.id} slightly late ({lateness:.0f}s)")
        else:
            logger.warning(f"🐢 [Dispatch] Schedule {schedule.id} is {lateness:.0f}s late")

    def _record_attempt(self, attempt: DeliveryAttempt, now: datetime) -> None:
        try:
            self.ledger.record_attempt(attempt)
        except DuplicateAttemptError as e:
            logger.critical(f"🚨 [Dispatch] Duplicate delivery detected: {e}")
            report_error(
                self.error_sink,
                ErrorKind.DUPLICATE_DELIVERY,
                str(e),
                created_at=now,
                schedule_id=attempt.schedule_id,
            )
        except Exception as e:
            logger.error(f"❌ [Dispatch] Ledger write failed for schedule {attempt.schedule_id}: {e!r}")
            report_error(
                self.error_sink,
                ErrorKind.LEDGER_WRITE_FAILED,
                f"{attempt.outcome.value} attempt not recorded: {e!r}",
                created_at=now,
                schedule_id=attempt.schedule_id,
            )
