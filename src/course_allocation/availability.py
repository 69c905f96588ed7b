"""Instructor calendar conflicts.

Two inclusive date ranges [s1, e1] and [s2, e2] overlap iff
s1 <= e2 and s2 <= e1. An instructor is busy for a range when they hold the
actual or the document role on any live, not yet finished booking whose
range overlaps it.
"""

from dataclasses import dataclass
from datetime import date

from django.db.models import Q

from .exceptions import ValidationError
from .models import CourseBooking, CourseCategoryLevel, Instructor


@dataclass(frozen=True)
class AvailabilityResult:
    available: bool
    conflict_count: int = 0


def ranges_overlap(start1: date, end1: date, start2: date, end2: date) -> bool:
    return start1 <= end2 and start2 <= end1


class InstructorAvailabilityChecker:
    """Answers "is this instructor free for these dates?". Never writes."""

    def __init__(self, using: str = 'default'):
        self.using = using

    def _conflicting_bookings(self, start_date, end_date, exclude_booking_id=None):
        qs = (
            CourseBooking.objects.using(self.using)
            .active()
            .overlapping(start_date, end_date)
        )
        if exclude_booking_id is not None:
            qs = qs.exclude(pk=exclude_booking_id)
        return qs

    def is_available(
        self,
        instructor_id,
        start_date: date,
        end_date: date,
        exclude_booking_id=None,
    ) -> AvailabilityResult:
        """Check one instructor in both roles against active bookings.

        ``exclude_booking_id`` lets a booking re-validate its own dates
        without conflicting with itself.
        """
        if end_date < start_date:
            raise ValidationError(
                f"End date {end_date} is before start date {start_date}",
                field='end_date',
            )
        conflict_count = (
            self._conflicting_bookings(start_date, end_date, exclude_booking_id)
            .with_instructor(instructor_id)
            .count()
        )
        return AvailabilityResult(available=conflict_count == 0, conflict_count=conflict_count)

    def busy_instructor_ids(self, start_date: date, end_date: date) -> set:
        """IDs of every instructor holding a conflicting booking in the range."""
        busy = set()
        rows = self._conflicting_bookings(start_date, end_date).values_list(
            'actual_instructor_id', 'document_instructor_id',
        )
        for actual_id, document_id in rows:
            busy.add(actual_id)
            busy.add(document_id)
        return busy

    def list_available(
        self,
        category_id,
        start_date: date,
        end_date: date,
        scope=None,
        level_id=None,
    ) -> list[Instructor]:
        """Qualified, active and free instructors visible under ``scope``.

        Without ``level_id`` any live qualification for the category counts;
        with it, the instructor must be qualified at or above that level.
        """
        qualification = Q(
            qualifications__category_id=category_id,
            qualifications__is_active=True,
            qualifications__deleted_at__isnull=True,
        )
        if level_id is not None:
            level_number = (
                CourseCategoryLevel.objects.using(self.using)
                .filter(pk=level_id, category_id=category_id)
                .values_list('level_number', flat=True)
                .first()
            )
            if level_number is None:
                return []
            qualification &= Q(qualifications__highest_level_qualified__gte=level_number)

        qs = Instructor.objects.using(self.using).filter(
            qualification,
            is_active=True,
            status=Instructor.Status.ACTIVE,
        )

        if scope is not None and not scope.sees_all_centers:
            qs = qs.filter(
                Q(primary_center_id=scope.center_id)
                | Q(
                    center_assignments__center_id=scope.center_id,
                    center_assignments__is_active=True,
                    center_assignments__deleted_at__isnull=True,
                )
            )

        busy = self.busy_instructor_ids(start_date, end_date)
        if busy:
            qs = qs.exclude(pk__in=busy)

        return list(qs.distinct().order_by('first_name', 'last_name'))
