"""Named date-range presets for filtering appointments.

Ranges are computed on the viewer's local calendar. ``local_today`` takes the
date part of an aware local datetime, so the result never depends on a UTC
rendering of the current instant.
"""

from __future__ import annotations

import calendar
import enum
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from clinicdesk.core.config import settings


class DatePreset(str, enum.Enum):
    TODAY = "today"
    THIS_WEEK = "this_week"
    THIS_MONTH = "this_month"
    ALL = "all"


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar-date bounds; ``None`` means unbounded on that side."""

    start: date | None = None
    end: date | None = None

    @property
    def is_empty(self) -> bool:
        return self.start is None and self.end is None

    def as_params(self) -> dict[str, str]:
        return {"startDate": format_date(self.start), "endDate": format_date(self.end)}


@dataclass(frozen=True)
class FilterState:
    preset: DatePreset = DatePreset.ALL
    start: date | None = None
    end: date | None = None

    @classmethod
    def from_preset(cls, preset: DatePreset | str, today: date) -> "FilterState":
        preset = DatePreset(preset)
        bounds = resolve_preset(preset, today)
        return cls(preset=preset, start=bounds.start, end=bounds.end)

    @property
    def date_range(self) -> DateRange:
        return DateRange(self.start, self.end)

    def as_dict(self) -> dict[str, str]:
        return {
            "preset": self.preset.value,
            "start": format_date(self.start),
            "end": format_date(self.end),
        }


def format_date(value: date | None) -> str:
    """Render a date as ``YYYY-MM-DD``, or an empty string when absent."""

    if value is None:
        return ""
    return f"{value.year:04d}-{value.month:02d}-{value.day:02d}"


def local_today(tz_name: str | None = None) -> date:
    """Return today's date on the configured local calendar."""

    tz = ZoneInfo(tz_name or settings.timezone)
    return datetime.now(tz).date()


def week_bounds(day: date) -> DateRange:
    # weeks run Sunday..Saturday; date.weekday() counts from Monday
    start = day - timedelta(days=(day.weekday() + 1) % 7)
    return DateRange(start, start + timedelta(days=6))


def month_bounds(year: int, month: int) -> DateRange:
    last_day = calendar.monthrange(year, month)[1]
    return DateRange(date(year, month, 1), date(year, month, last_day))


def resolve_preset(preset: DatePreset | str, today: date) -> DateRange:
    """Translate a preset into concrete bounds relative to ``today``."""

    preset = DatePreset(preset)
    if preset is DatePreset.TODAY:
        # an empty end tells the ledger to match the start date only
        return DateRange(today, None)
    if preset is DatePreset.THIS_WEEK:
        return week_bounds(today)
    if preset is DatePreset.THIS_MONTH:
        return month_bounds(today.year, today.month)
    return DateRange()
