from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from config import get_settings
from models import IntervalUnit, RecurringTransaction, SplitDetail, Transaction


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _add_months(base: date, months: int, *, desired_day: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(desired_day, days_in_month(year, month)))


def calculate_next_date(recurring: RecurringTransaction, from_date: date) -> date:
    """Date of the occurrence following ``from_date``.

    Monthly and yearly intervals keep the day of month of the start date and
    snap to the last day of shorter months, so Jan 31 is followed by Feb 28
    and then Mar 31.
    """
    if recurring.interval_unit == IntervalUnit.day:
        return from_date + timedelta(days=recurring.interval)
    if recurring.interval_unit == IntervalUnit.week:
        return from_date + timedelta(weeks=recurring.interval)
    months = recurring.interval
    if recurring.interval_unit == IntervalUnit.year:
        months = 12 * recurring.interval
    return _add_months(from_date, months, desired_day=recurring.start_date.day)


def schedule_from(recurring: RecurringTransaction, candidate: date) -> None:
    if recurring.end_date is not None and candidate > recurring.end_date:
        recurring.next_occurrence = None
        recurring.finished = True
    else:
        recurring.next_occurrence = candidate
        recurring.finished = False


def reschedule(recurring: RecurringTransaction) -> None:
    """Recompute the next occurrence from the last created instance."""
    if recurring.last_occurrence is None:
        schedule_from(recurring, recurring.start_date)
    else:
        schedule_from(
            recurring, calculate_next_date(recurring, recurring.last_occurrence)
        )


def create_occurrence(recurring: RecurringTransaction) -> Transaction:
    """Build the instance for the next occurrence and advance the schedule."""
    if recurring.finished or recurring.next_occurrence is None:
        raise ValueError("Recurring transaction has no next occurrence")
    occurrence_date = recurring.next_occurrence
    instance = Transaction(
        description=recurring.description,
        type=recurring.type,
        date=occurrence_date,
        amount_cents=recurring.amount_cents,
        account_id=recurring.account_id,
        receiving_account_id=recurring.receiving_account_id,
        category_id=recurring.category_id,
        processed=False,
        needs_confirmation=recurring.needs_confirmation,
        is_confirmed=False if recurring.needs_confirmation else None,
        split_details=[
            SplitDetail(
                splitwise_user_id=detail.splitwise_user_id,
                splitwise_user_name=detail.splitwise_user_name,
                amount_cents=detail.amount_cents,
            )
            for detail in recurring.split_details
        ],
    )
    instance.recurring_transaction = recurring
    recurring.last_occurrence = occurrence_date
    schedule_from(recurring, calculate_next_date(recurring, occurrence_date))
    return instance
