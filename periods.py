from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def _month_end(first: date) -> date:
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return next_month - timedelta(days=1)


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or date.today()
    if period == "last_month":
        last_month_end = today.replace(day=1) - timedelta(days=1)
        return Period("last_month", last_month_end.replace(day=1), last_month_end)
    if period == "this_year":
        return Period("this_year", date(today.year, 1, 1), date(today.year, 12, 31))
    if period == "last_12_weeks":
        return Period("last_12_weeks", today - timedelta(weeks=12), today)
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)

    first = today.replace(day=1)
    return Period("this_month", first, _month_end(first))
