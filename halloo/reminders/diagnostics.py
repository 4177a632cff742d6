from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List

from halloo.utils.timezone import to_utc_aware
from .schemas import Schedule, schedule_to_dict


def explain_schedule(schedule: Schedule, now: datetime, window_seconds: int) -> Dict[str, Any]:
    """Would the next scan pick this schedule up, and if not, why."""
    now = to_utc_aware(now)
    window_start = now - timedelta(seconds=window_seconds)
    fire = schedule.next_fire_time
    seconds_until = (fire - now).total_seconds()

    if not schedule.is_active:
        reason = f"status is {schedule.status.value}"
    elif fire > now:
        reason = f"not due yet ({int(seconds_until)}s from now)"
    elif fire < window_start:
        reason = f"behind the scan window by {int((window_start - fire).total_seconds())}s; recovery will fast-forward"
        if not schedule.is_recurring:
            reason = f"one-time schedule behind the scan window by {int((window_start - fire).total_seconds())}s"
    else:
        reason = "due"

    data = schedule_to_dict(schedule)
    data.update(
        {
            "would_match_window": reason == "due",
            "seconds_until_fire": int(seconds_until),
            "reason": reason,
        }
    )
    return data


def describe_schedules(schedules: Iterable[Schedule], now: datetime, window_seconds: int) -> List[Dict[str, Any]]:
    return [explain_schedule(s, now, window_seconds) for s in schedules]
