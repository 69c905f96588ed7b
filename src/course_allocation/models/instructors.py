"""Instructor models."""

from django.db import models

from .base import AllocationModel


class Instructor(AllocationModel):
    """A course instructor.

    An instructor takes part in a booking either as the actual instructor
    (delivers the course) or as the document instructor (signs the
    paperwork). Both roles block the instructor's calendar.
    """

    class Status(models.TextChoices):
        ACTIVE = 'active', 'Active'
        INACTIVE = 'inactive', 'Inactive'

    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100, blank=True, default='')
    email = models.EmailField(blank=True, default='')
    phone = models.CharField(max_length=50, blank=True, default='')
    primary_center = models.ForeignKey(
        'course_allocation.Center',
        on_delete=models.PROTECT,
        related_name='primary_instructors',
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.ACTIVE,
    )
    is_active = models.BooleanField(default=True)

    class Meta:
        app_label = 'course_allocation'
        ordering = ['first_name', 'last_name']

    def __str__(self):
        return self.full_name

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class InstructorQualification(AllocationModel):
    """Qualifies an instructor for a category up to a level number."""

    instructor = models.ForeignKey(
        Instructor,
        on_delete=models.CASCADE,
        related_name='qualifications',
    )
    category = models.ForeignKey(
        'course_allocation.CourseCategory',
        on_delete=models.PROTECT,
        related_name='qualifications',
    )
    highest_level_qualified = models.PositiveSmallIntegerField(default=1)
    is_active = models.BooleanField(default=True)

    class Meta:
        app_label = 'course_allocation'
        constraints = [
            models.UniqueConstraint(
                fields=['instructor', 'category'],
                condition=models.Q(deleted_at__isnull=True),
                name='instructor_one_live_qualification_per_category',
            ),
        ]

    def __str__(self):
        return f"{self.instructor} - {self.category} (up to level {self.highest_level_qualified})"


class InstructorCenterAssignment(AllocationModel):
    """Secondary assignment of an instructor to a center other than their primary."""

    instructor = models.ForeignKey(
        Instructor,
        on_delete=models.CASCADE,
        related_name='center_assignments',
    )
    center = models.ForeignKey(
        'course_allocation.Center',
        on_delete=models.CASCADE,
        related_name='instructor_assignments',
    )
    is_active = models.BooleanField(default=True)

    class Meta:
        app_label = 'course_allocation'
        constraints = [
            models.UniqueConstraint(
                fields=['instructor', 'center'],
                name='instructor_center_assignment_unique',
            ),
        ]

    def __str__(self):
        return f"{self.instructor} @ {self.center}"
