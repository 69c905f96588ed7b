"""Working-day calendar arithmetic.

Courses run Monday to Friday. A course of N days starting on day S occupies
S plus the next N-1 weekdays.
"""

from datetime import date, timedelta

from django.utils import timezone

from .exceptions import ValidationError

SATURDAY = 5
SUNDAY = 6


def is_weekend(day: date) -> bool:
    return day.weekday() in (SATURDAY, SUNDAY)


def calculate_end_date(start_date: date, duration_days: int) -> date:
    """Return the last day of a course that starts on ``start_date``.

    The start day counts as day one whatever day of the week it is; each
    remaining day advances to the next weekday.

    Example:
        >>> calculate_end_date(date(2024, 1, 5), 3)  # Friday
        datetime.date(2024, 1, 9)
    """
    if duration_days < 1:
        raise ValidationError(
            f"Duration must be at least one day, got {duration_days}",
            field='duration_days',
        )

    end_date = start_date
    remaining = duration_days - 1
    while remaining > 0:
        end_date += timedelta(days=1)
        if not is_weekend(end_date):
            remaining -= 1
    return end_date


def working_days_between(start_date: date, end_date: date) -> int:
    """Count weekdays in the inclusive range [start_date, end_date]."""
    if end_date < start_date:
        return 0
    count = 0
    day = start_date
    while day <= end_date:
        if not is_weekend(day):
            count += 1
        day += timedelta(days=1)
    return count


def validate_start_date(start_date: date, today: date | None = None) -> None:
    """Reject a course start in the past or on a weekend."""
    if today is None:
        today = timezone.localdate()
    if start_date < today:
        raise ValidationError(
            f"Start date {start_date} is in the past", field='start_date'
        )
    if is_weekend(start_date):
        raise ValidationError(
            f"Start date {start_date} falls on a weekend", field='start_date'
        )
