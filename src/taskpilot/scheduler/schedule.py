"""Schedule strategy — turn a TaskSchedule into fire times and APScheduler triggers.

Everything here is pure: no timers are started and nothing is persisted.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from taskpilot.config import settings
from taskpilot.scheduler.errors import ScheduleParseError
from taskpilot.scheduler.models import CronSchedule, IntervalSchedule

if TYPE_CHECKING:
    from apscheduler.triggers.base import BaseTrigger

    from taskpilot.scheduler.models import Interval, TaskSchedule

_UNIT_MILLISECONDS = {
    "minutes": 60 * 1000,
    "hours": 60 * 60 * 1000,
    "days": 24 * 60 * 60 * 1000,
    "weeks": 7 * 24 * 60 * 60 * 1000,
}

# POSIX cron weekday numbers; 7 is an alias for Sunday.
_WEEKDAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun")


def unit_to_milliseconds(unit: str) -> int:
    try:
        return _UNIT_MILLISECONDS[unit]
    except KeyError:
        msg = f"Unknown interval unit: {unit!r}"
        raise ScheduleParseError(msg) from None


def interval_delta(interval: Interval) -> timedelta:
    return timedelta(milliseconds=interval.value * unit_to_milliseconds(interval.unit))


def normalize_cron(expression: str) -> str:
    """Return the 6-field (seconds-first) form of a cron expression.

    5-field input gets a ``0`` seconds field prepended, so ``"0 9 * * *"``
    becomes ``"0 0 9 * * *"``. Raises ``ScheduleParseError`` for any other
    field count.
    """
    fields = expression.split()
    if len(fields) == 5:
        fields.insert(0, "0")
    elif len(fields) != 6:
        msg = f"Cron expression must have 5 or 6 fields, got {len(fields)}: {expression!r}"
        raise ScheduleParseError(msg)
    return " ".join(fields)


def _weekday(token: str) -> str:
    if token.isdigit() and int(token) < len(_WEEKDAY_NAMES):
        return _WEEKDAY_NAMES[int(token)]
    return token


def _expand_weekday_step(expr: str, step: str) -> str | None:
    """Expand a stepped weekday field (``*/2``, ``0-6/2``, ``1/3``) into day names.

    Steps count from the POSIX start of the range. Returns None when the
    field is not numeric, leaving it for APScheduler to accept or reject.
    """
    if not step.isdigit() or int(step) == 0:
        return None
    if expr == "*":
        first, last = 0, 6
    else:
        start, dash, end = expr.partition("-")
        if not start.isdigit() or (dash and not end.isdigit()):
            return None
        first = int(start)
        last = int(end) if dash else len(_WEEKDAY_NAMES) - 1
    if last >= len(_WEEKDAY_NAMES) or first > last:
        return None

    names: list[str] = []
    for day in range(first, last + 1, int(step)):
        if _WEEKDAY_NAMES[day] not in names:
            names.append(_WEEKDAY_NAMES[day])
    return ",".join(names)


def _translate_day_of_week(field: str) -> str:
    """Rewrite POSIX numeric weekdays as names.

    APScheduler numbers weekdays from Monday, so ``1`` would otherwise mean
    Tuesday. A range starting at Sunday (``0-5``) is split into ``sun`` plus a
    Monday-based range because APScheduler ranges cannot wrap. Stepped fields
    are expanded into an explicit list of days.
    """
    translated: list[str] = []
    for part in field.split(","):
        expr, slash, step = part.partition("/")
        if slash:
            expanded = _expand_weekday_step(expr, step)
            if expanded is not None:
                translated.append(expanded)
                continue
        start, dash, end = expr.partition("-")
        if dash and not slash and start == "0" and end.isdigit():
            translated.append("sun")
            if int(end) >= 1:
                translated.append(f"mon-{_weekday(end)}")
            continue
        expr = f"{_weekday(start)}-{_weekday(end)}" if dash else _weekday(start)
        translated.append(f"{expr}{slash}{step}")
    return ",".join(translated)


def resolve_timezone(name: str | None) -> ZoneInfo:
    """Return the zone for *name*, falling back to the configured default."""
    key = name or settings.scheduler_timezone
    try:
        return ZoneInfo(key)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        msg = f"Unknown timezone: {key!r}"
        raise ScheduleParseError(msg) from exc


def cron_trigger(schedule: CronSchedule, default_timezone: str | None = None) -> CronTrigger:
    """Build the APScheduler trigger for a cron schedule."""
    second, minute, hour, day, month, day_of_week = normalize_cron(schedule.cron).split()
    tz = resolve_timezone(schedule.timezone or default_timezone)
    try:
        return CronTrigger(
            second=second,
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=_translate_day_of_week(day_of_week),
            timezone=tz,
        )
    except (ValueError, TypeError) as exc:
        msg = f"Invalid cron expression {schedule.cron!r}: {exc}"
        raise ScheduleParseError(msg) from exc


def compute_next_run(
    schedule: TaskSchedule,
    now: datetime,
    default_timezone: str | None = None,
) -> datetime | None:
    """Return the next fire time after *now*, or None if the schedule never fires again.

    Raises ``ScheduleParseError`` for a malformed cron schedule.
    """
    if isinstance(schedule, IntervalSchedule):
        return now + interval_delta(schedule.interval)
    if isinstance(schedule, CronSchedule):
        fire_time = cron_trigger(schedule, default_timezone).get_next_fire_time(None, now)
        return fire_time.astimezone(UTC) if fire_time else None
    if schedule.execute_at > now:
        return schedule.execute_at
    return None


def build_trigger(
    schedule: TaskSchedule,
    now: datetime,
    default_timezone: str | None = None,
) -> BaseTrigger | None:
    """Convert a schedule into an APScheduler trigger.

    Returns None for a one-time schedule whose time is not in the future.
    The first fire of an interval trigger is exactly
    ``compute_next_run(schedule, now)``.
    """
    if isinstance(schedule, IntervalSchedule):
        interval = schedule.interval
        return IntervalTrigger(
            **{interval.unit: interval.value},
            start_date=now + interval_delta(interval),
            timezone=UTC,
        )
    if isinstance(schedule, CronSchedule):
        return cron_trigger(schedule, default_timezone)
    if schedule.execute_at <= now:
        return None
    return DateTrigger(run_date=schedule.execute_at, timezone=UTC)
