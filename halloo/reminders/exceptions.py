from typing import Optional


class ReminderError(Exception):
    """Base class for reminder scheduling errors."""


class RecurrenceComputationError(ReminderError):
    """The next fire time is not strictly in the future; needs manual repair."""

    def __init__(self, schedule_id: str, detail: str):
        super().__init__(f"schedule {schedule_id}: {detail}")
        self.schedule_id = schedule_id
        self.detail = detail


class GatewaySendError(ReminderError):
    """The messaging gateway rejected or failed to accept a message."""

    def __init__(self, message: str, status_code: Optional[int] = None, error_code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class GatewayConfigurationError(ReminderError):
    """Gateway credentials are missing."""


class DuplicateAttemptError(ReminderError):
    """A ledger entry already exists for (schedule_id, scheduled_fire_time)."""

    def __init__(self, schedule_id: str, scheduled_fire_time):
        super().__init__(f"attempt already recorded for schedule {schedule_id} at {scheduled_fire_time}")
        self.schedule_id = schedule_id
        self.scheduled_fire_time = scheduled_fire_time
