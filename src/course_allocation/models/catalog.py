"""Course category and level models."""

from django.db import models

from .base import AllocationModel


class CourseCategory(AllocationModel):
    """A course category.

    ``duration_days`` and ``max_participants`` are copied onto each booking
    at creation time, so editing a category never changes existing bookings.
    """

    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default='')
    duration_days = models.PositiveSmallIntegerField(
        help_text="Course length in weekdays, including the start day",
    )
    max_participants = models.PositiveIntegerField(
        help_text="Seat capacity of one course instance",
    )
    total_levels = models.PositiveSmallIntegerField(default=1)
    enable_lpo_integration = models.BooleanField(default=True)
    is_active = models.BooleanField(default=True)

    class Meta:
        app_label = 'course_allocation'
        ordering = ['name']
        verbose_name_plural = 'course categories'
        constraints = [
            models.CheckConstraint(
                condition=models.Q(duration_days__gt=0),
                name='course_category_duration_positive',
            ),
            models.CheckConstraint(
                condition=models.Q(max_participants__gt=0),
                name='course_category_capacity_positive',
            ),
        ]

    def __str__(self):
        return self.name


class CourseCategoryLevel(AllocationModel):
    """One level in a category's ordered level chain."""

    category = models.ForeignKey(
        CourseCategory,
        on_delete=models.PROTECT,
        related_name='levels',
    )
    level_number = models.PositiveSmallIntegerField()
    level_name = models.CharField(max_length=255, blank=True, default='')
    level_description = models.TextField(blank=True, default='')
    requires_prerequisite = models.BooleanField(default=False)
    prerequisite_level_number = models.PositiveSmallIntegerField(null=True, blank=True)
    is_active = models.BooleanField(default=True)

    class Meta:
        app_label = 'course_allocation'
        ordering = ['category', 'level_number']
        constraints = [
            models.UniqueConstraint(
                fields=['category', 'level_number'],
                name='course_level_unique_number_per_category',
            ),
        ]

    def __str__(self):
        return f"{self.category.name} - {self.level_name or f'Level {self.level_number}'}"

    def save(self, *args, **kwargs):
        # Level N > 1 requires level N-1 unless told otherwise
        if self._state.adding and self.level_number and self.level_number > 1:
            if self.prerequisite_level_number is None:
                self.requires_prerequisite = True
                self.prerequisite_level_number = self.level_number - 1
        if not self.level_name:
            self.level_name = f"Level {self.level_number}"
        super().save(*args, **kwargs)
