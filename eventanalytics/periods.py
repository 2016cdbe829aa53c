"""Calendar windows for summaries and named query periods.

All windows are inclusive at both ends: `end` is the last microsecond of the
window, matching how stores evaluate `find_by_window`.
"""
from datetime import datetime, timedelta
from typing import Literal
import structlog
from .models import PeriodKind, ensure_utc

log = structlog.get_logger()

WeekStart = Literal["monday", "sunday"]

_ONE_MICROSECOND = timedelta(microseconds=1)

DEFAULT_TIME_PERIOD = "last_7_days"


def start_of_day(ts: datetime) -> datetime:
    return ensure_utc(ts).replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_week(ts: datetime, week_start: WeekStart = "sunday") -> datetime:
    day = start_of_day(ts)
    # weekday(): Monday == 0
    offset = day.weekday() if week_start == "monday" else (day.weekday() + 1) % 7
    return day - timedelta(days=offset)


def start_of_month(ts: datetime) -> datetime:
    return start_of_day(ts).replace(day=1)


def _next_month(month_start: datetime) -> datetime:
    if month_start.month == 12:
        return month_start.replace(year=month_start.year + 1, month=1)
    return month_start.replace(month=month_start.month + 1)


def period_window(
    kind: PeriodKind | str,
    now: datetime,
    week_start: WeekStart = "sunday",
) -> tuple[datetime, datetime]:
    """
    Compute the calendar window containing `now`.

    Args:
        kind: daily, weekly or monthly
        now: Reference time
        week_start: First day of a calendar week

    Returns:
        (period_start, period_end) with period_end the last microsecond
    """
    kind = PeriodKind(kind)
    if kind == PeriodKind.DAILY:
        start = start_of_day(now)
        return start, start + timedelta(days=1) - _ONE_MICROSECOND
    if kind == PeriodKind.WEEKLY:
        start = start_of_week(now, week_start)
        return start, start + timedelta(days=7) - _ONE_MICROSECOND
    start = start_of_month(now)
    return start, _next_month(start) - _ONE_MICROSECOND


def resolve_time_period(
    name: str | None,
    now: datetime,
    week_start: WeekStart = "sunday",
) -> tuple[datetime, datetime]:
    """
    Resolve a named query period into an inclusive window.

    Unknown names fall back to last_7_days.
    """
    now = ensure_utc(now)
    if name == "today":
        return period_window(PeriodKind.DAILY, now)
    if name == "yesterday":
        return period_window(PeriodKind.DAILY, now - timedelta(days=1))
    if name == "last_30_days":
        return now - timedelta(days=30), now
    if name == "this_week":
        return period_window(PeriodKind.WEEKLY, now, week_start)
    if name == "last_week":
        return period_window(PeriodKind.WEEKLY, now - timedelta(days=7), week_start)
    if name == "this_month":
        return period_window(PeriodKind.MONTHLY, now)
    if name == "last_month":
        return period_window(PeriodKind.MONTHLY, start_of_month(now) - _ONE_MICROSECOND)
    if name not in (None, DEFAULT_TIME_PERIOD):
        log.debug("time_period.fallback", requested=name, actual=DEFAULT_TIME_PERIOD)
    return now - timedelta(days=7), now
