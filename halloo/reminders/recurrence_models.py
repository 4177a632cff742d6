"""
Recurrence rules for habit schedules and the calculator that advances them
"""
from datetime import date, datetime, time, timedelta, timezone as dt_timezone
from typing import Any, ClassVar, Dict, FrozenSet, Iterable, Union, TYPE_CHECKING
from enum import Enum
from dataclasses import dataclass, field

from halloo.utils.timezone import get_zoneinfo, to_utc_aware
from .exceptions import RecurrenceComputationError

if TYPE_CHECKING:  # pragma: no cover
    from .schemas import Schedule


CUSTOM_SEARCH_DAYS = 14
MAX_FAST_FORWARD_STEPS = 64


class Weekday(Enum):
    """Days of the week (datetime.weekday() numbering)"""
    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @classmethod
    def parse(cls, value: Union[str, int, "Weekday"]) -> "Weekday":
        if isinstance(value, Weekday):
            return value
        if isinstance(value, int):
            return cls(value)
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown weekday: {value!r}") from None


@dataclass(frozen=True)
class Once:
    kind: ClassVar[str] = "once"


@dataclass(frozen=True)
class Daily:
    kind: ClassVar[str] = "daily"


@dataclass(frozen=True)
class Weekdays:
    kind: ClassVar[str] = "weekdays"


@dataclass(frozen=True)
class Weekly:
    kind: ClassVar[str] = "weekly"


@dataclass(frozen=True)
class Custom:
    days: FrozenSet[Weekday] = field(default_factory=frozenset)
    kind: ClassVar[str] = "custom"

    @classmethod
    def of(cls, days: Iterable[Union[str, int, Weekday]]) -> "Custom":
        return cls(days=frozenset(Weekday.parse(d) for d in days))


Frequency = Union[Once, Daily, Weekdays, Weekly, Custom]

_SIMPLE_KINDS = {cls.kind: cls for cls in (Once, Daily, Weekdays, Weekly)}


def frequency_to_dict(frequency: Frequency) -> Dict[str, Any]:
    data: Dict[str, Any] = {"kind": frequency.kind}
    if isinstance(frequency, Custom):
        data["days"] = sorted(d.name.lower() for d in frequency.days)
    return data


def frequency_from_dict(data: Dict[str, Any]) -> Frequency:
    kind = str(data.get("kind", "")).strip().lower()
    if kind == Custom.kind:
        return Custom.of(data.get("days") or [])
    if kind in _SIMPLE_KINDS:
        return _SIMPLE_KINDS[kind]()
    raise ValueError(f"Unknown frequency kind: {kind!r}")


def is_recurring(frequency: Frequency) -> bool:
    return not isinstance(frequency, Once)


class RecurrenceCalculator:
    """Calculates the next fire time for a schedule.

    Day arithmetic happens on local calendar dates in the schedule's timezone
    and the hour/minute/second always come from the anchor time-of-day, so a
    9:00 habit stays at 9:00 across DST changes and late processing.
    """

    def compute_next(self, schedule: "Schedule", from_time: datetime) -> datetime:
        """Next occurrence strictly after ``from_time`` (``from_time`` itself for Once)."""
        frequency = schedule.frequency
        from_utc = to_utc_aware(from_time)
        if isinstance(frequency, Once):
            return from_utc

        tz = get_zoneinfo(schedule.timezone)
        local_date = from_utc.astimezone(tz).date()
        next_date = self._next_date(frequency, local_date)
        candidate = self._at_anchor(next_date, schedule.anchor_time, tz)

        if candidate <= from_utc:
            raise RecurrenceComputationError(
                schedule.id,
                f"computed {candidate.isoformat()} is not after {from_utc.isoformat()}",
            )
        return candidate

    def next_future(self, schedule: "Schedule", now: datetime) -> datetime:
        """First occurrence strictly after ``now``, starting from the schedule's next_fire_time.

        Missed slots are skipped. All supported rules repeat weekly, so large
        gaps are first shortened by whole calendar weeks.
        """
        if isinstance(schedule.frequency, Once):
            raise RecurrenceComputationError(schedule.id, "one-time schedules are never fast-forwarded")

        now_utc = to_utc_aware(now)
        current = to_utc_aware(schedule.next_fire_time)
        tz = get_zoneinfo(schedule.timezone)

        gap = now_utc - current
        if gap > timedelta(days=2 * 7):
            weeks = gap.days // 7 - 1
            local_current = current.astimezone(tz)
            shifted_date = local_current.date() + timedelta(weeks=weeks)
            current = self._at_anchor(shifted_date, local_current.time(), tz)

        for _ in range(MAX_FAST_FORWARD_STEPS):
            current = self.compute_next(schedule, current)
            if current > now_utc:
                return current

        raise RecurrenceComputationError(
            schedule.id,
            f"no future occurrence found within {MAX_FAST_FORWARD_STEPS} steps of {now_utc.isoformat()}",
        )

    @staticmethod
    def _next_date(frequency: Frequency, local_date: date) -> date:
        if isinstance(frequency, Daily):
            return local_date + timedelta(days=1)

        if isinstance(frequency, Weekdays):
            candidate = local_date + timedelta(days=1)
            while candidate.weekday() >= Weekday.SATURDAY.value:
                candidate += timedelta(days=1)
            return candidate

        if isinstance(frequency, Weekly):
            return local_date + timedelta(days=7)

        if isinstance(frequency, Custom):
            if not frequency.days:
                # Empty day-set would never match; behave like daily
                return local_date + timedelta(days=1)
            targets = {d.value for d in frequency.days}
            for offset in range(1, CUSTOM_SEARCH_DAYS + 1):
                candidate = local_date + timedelta(days=offset)
                if candidate.weekday() in targets:
                    return candidate
            return local_date + timedelta(days=1)

        raise ValueError(f"Unsupported frequency: {frequency!r}")

    @staticmethod
    def _at_anchor(local_date: date, anchor: time, tz) -> datetime:
        local = datetime.combine(local_date, anchor.replace(tzinfo=None, microsecond=0), tzinfo=tz)
        return local.astimezone(dt_timezone.utc)
