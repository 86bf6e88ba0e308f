"""Resolve temporal hints in chat prompts ("today", "last month") to date ranges."""

import calendar
from dataclasses import dataclass
from datetime import datetime, time


@dataclass(frozen=True)
class TimeWindow:
    """Inclusive [start, end] datetime range."""
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


def month_window(moment: datetime) -> TimeWindow:
    """First to last instant of the calendar month containing `moment`."""
    last_day = calendar.monthrange(moment.year, moment.month)[1]
    return TimeWindow(
        start=datetime(moment.year, moment.month, 1),
        end=datetime.combine(
            moment.replace(day=last_day).date(), time.max
        ),
    )


def previous_month_window(moment: datetime) -> TimeWindow:
    """Window of the calendar month before the one containing `moment`."""
    if moment.month == 1:
        anchor = datetime(moment.year - 1, 12, 1)
    else:
        anchor = datetime(moment.year, moment.month - 1, 1)
    return month_window(anchor)


def resolve_timeframe(text: str, now: datetime) -> TimeWindow:
    """
    Map a free-text prompt to the time window it refers to.

    Checked in order: "today" (midnight until `now`), "this month",
    "last month". Anything else falls back to the current month.
    """
    lowered = text.lower()

    if "today" in lowered:
        return TimeWindow(start=datetime.combine(now.date(), time.min), end=now)

    if "this month" in lowered:
        return month_window(now)

    if "last month" in lowered:
        return previous_month_window(now)

    return month_window(now)
