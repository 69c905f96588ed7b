"""Course number allocation.

Course numbers are ``<prefix><counter>``, for example ``D-007`` or ``I-112``.
The counter is kept per (course_type, year) and restarts at 1 every calendar
year. Numbers are allocated inside the caller's transaction: a booking that
rolls back also rolls back its number, so the sequence has no gaps.
"""

import logging

from django.db import IntegrityError, transaction
from django.utils import timezone

from . import conf
from .models import CourseNumberSequence, CourseType

logger = logging.getLogger(__name__)


def format_course_number(course_type: str, number: int) -> str:
    prefix = conf.course_number_prefix(course_type)
    return f"{prefix}{str(number).zfill(conf.course_number_pad_width())}"


def _locked_sequence(course_type: str, year: int, using: str):
    qs = CourseNumberSequence.objects.using(using).select_for_update()
    try:
        return qs.get(course_type=course_type, year=year)
    except CourseNumberSequence.DoesNotExist:
        pass

    # Two callers may both miss the row; the loser of the insert re-reads it
    try:
        with transaction.atomic(using=using):
            CourseNumberSequence.objects.using(using).create(
                course_type=course_type,
                year=year,
                last_number=0,
            )
    except IntegrityError:
        logger.debug(f"Sequence row {course_type}/{year} created concurrently")
    return qs.get(course_type=course_type, year=year)


def next_course_number(course_type: str, year: int | None = None, using: str = 'default') -> str:
    """Allocate the next course number for ``course_type``.

    Must run inside ``transaction.atomic``; the sequence row stays locked
    until the surrounding transaction ends.

    Args:
        course_type: 'domestic' or 'international'
        year: Calendar year of the counter, defaults to the current local year
        using: Database alias

    Returns:
        The formatted course number (e.g. "D-001")
    """
    if course_type not in CourseType.values:
        raise ValueError(f"Unknown course type: {course_type}")
    if year is None:
        year = timezone.localdate().year

    with transaction.atomic(using=using):
        seq = _locked_sequence(course_type, year, using)
        seq.last_number += 1
        seq.save(using=using, update_fields=['last_number', 'updated_at'])

    return format_course_number(course_type, seq.last_number)
