"""Next-occurrence date arithmetic for recurring tasks."""

from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta

from blueslash.domain.task import RecurrenceConfig, RecurrenceType


DAYS_PER_WEEK = 7


def _next_listed_weekday(*, base: datetime, days_of_week: list[int], interval: int) -> datetime:
    """Next date after ``base`` landing on a listed weekday.

    Within the current week the next listed day is used; past the last listed
    day the cycle skips ``interval - 1`` weeks.
    """
    weekdays = sorted(set(days_of_week))
    current = base.weekday()

    later_this_week = [d for d in weekdays if d > current]
    if later_this_week:
        return base + timedelta(days=later_this_week[0] - current)

    days_to_first = DAYS_PER_WEEK - current + weekdays[0]
    return base + timedelta(days=days_to_first + DAYS_PER_WEEK * (interval - 1))


def calculate_next_due_date(*, recurrence: RecurrenceConfig, from_date: datetime) -> datetime:
    """Calculate the due date following ``from_date`` under a recurrence config."""
    interval = recurrence.interval

    if recurrence.type == RecurrenceType.DAILY:
        return from_date + timedelta(days=interval)

    if recurrence.type == RecurrenceType.WEEKLY:
        if recurrence.days_of_week:
            return _next_listed_weekday(base=from_date, days_of_week=recurrence.days_of_week, interval=interval)
        return from_date + timedelta(weeks=interval)

    if recurrence.type == RecurrenceType.MONTHLY:
        return from_date + relativedelta(months=interval)

    # CUSTOM: interval counted in days
    return from_date + timedelta(days=interval)
