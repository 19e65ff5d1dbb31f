"""Date-range presets and small formatting helpers shared by retrieval code."""

from __future__ import annotations

import calendar
from datetime import date, timedelta

from fin_crag.models.domain import DateRange

PRESETS = (
    "today",
    "yesterday",
    "this_week",
    "last_week",
    "this_month",
    "last_month",
    "this_quarter",
    "this_year",
    "last_year",
    "ytd",
)


def month_label(year: int, month: int) -> str:
    return f"{calendar.month_name[month]} {year}"


def month_range(year: int, month: int) -> DateRange:
    last_day = calendar.monthrange(year, month)[1]
    return DateRange(
        start=date(year, month, 1),
        end=date(year, month, last_day),
        label=month_label(year, month),
    )


def date_range_preset(preset: str, today: date | None = None) -> DateRange:
    """Resolve a named preset relative to ``today``. Unknown presets mean this month."""
    today = today or date.today()
    year, month = today.year, today.month
    # Weeks start on Sunday.
    week_start = today - timedelta(days=(today.weekday() + 1) % 7)

    if preset == "today":
        return DateRange(start=today, end=today, label="Today")
    if preset == "yesterday":
        day = today - timedelta(days=1)
        return DateRange(start=day, end=day, label="Yesterday")
    if preset == "this_week":
        return DateRange(start=week_start, end=today, label="This Week")
    if preset == "last_week":
        return DateRange(
            start=week_start - timedelta(days=7),
            end=week_start - timedelta(days=1),
            label="Last Week",
        )
    if preset == "last_month":
        prev_year, prev_month = (year - 1, 12) if month == 1 else (year, month - 1)
        return month_range(prev_year, prev_month)
    if preset == "this_quarter":
        quarter = (month - 1) // 3
        return DateRange(
            start=date(year, quarter * 3 + 1, 1),
            end=today,
            label=f"Q{quarter + 1} {year}",
        )
    if preset == "this_year":
        return DateRange(start=date(year, 1, 1), end=date(year, 12, 31), label=str(year))
    if preset == "last_year":
        return DateRange(
            start=date(year - 1, 1, 1), end=date(year - 1, 12, 31), label=str(year - 1)
        )
    if preset == "ytd":
        return DateRange(start=date(year, 1, 1), end=today, label=f"YTD {year}")
    return DateRange(start=date(year, month, 1), end=today, label=month_label(year, month))


def format_currency(amount: float, currency: str = "MYR") -> str:
    prefix = "RM" if currency == "MYR" else f"{currency} "
    sign = "-" if amount < 0 else ""
    return f"{sign}{prefix}{abs(amount):,.2f}"
