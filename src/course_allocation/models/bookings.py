"""Booking models.

Contains:
- CourseBooking: a scheduled course instance with instructors and a date range
- BookingCustomer: one customer's seat allocation within a booking
- BookingCandidate: an individual trainee registered against a customer's seats
- CourseNumberSequence: per (course_type, year) counter behind course numbers
"""

from django.db import models
from django.db.models import F, Q

from .base import AllocationModel, LiveManager, LiveQuerySet


class CourseType(models.TextChoices):
    DOMESTIC = 'domestic', 'Domestic'
    INTERNATIONAL = 'international', 'International'


class BookingStatus(models.TextChoices):
    NOT_STARTED = 'not_started', 'Not Started'
    IN_PROGRESS = 'in_progress', 'In Progress'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'


# Statuses that occupy instructors and can still be cancelled
ACTIVE_BOOKING_STATUSES = (BookingStatus.NOT_STARTED, BookingStatus.IN_PROGRESS)

ALLOWED_TRANSITIONS = {
    BookingStatus.NOT_STARTED: frozenset({BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED}),
    BookingStatus.IN_PROGRESS: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}


class CourseBookingQuerySet(LiveQuerySet):
    """Custom queryset for CourseBooking."""

    def active(self):
        """Bookings that still occupy their instructors."""
        return self.filter(booking_status__in=ACTIVE_BOOKING_STATUSES)

    def overlapping(self, start_date, end_date):
        """Bookings whose [start_date, end_date] intersects the given range."""
        return self.filter(start_date__lte=end_date, end_date__gte=start_date)

    def with_instructor(self, instructor_id):
        """Bookings where the instructor holds either role."""
        return self.filter(
            Q(actual_instructor_id=instructor_id) | Q(document_instructor_id=instructor_id)
        )

    def visible_to(self, scope):
        """Restrict to bookings the center context may see."""
        if scope is None or scope.sees_all_centers:
            return self
        return self.filter(created_by_center_id=scope.center_id)


class CourseBooking(AllocationModel):
    """A scheduled instance of a course category/level.

    ``duration_days`` and ``max_participants`` are snapshots of the category
    taken when the booking was created.
    """

    class DeliveryType(models.TextChoices):
        ONSITE = 'onsite', 'Onsite'
        OFFSITE = 'offsite', 'Offsite'

    course_number = models.CharField(max_length=20, unique=True)
    course_type = models.CharField(max_length=20, choices=CourseType.choices)
    center = models.ForeignKey(
        'course_allocation.Center',
        on_delete=models.PROTECT,
        related_name='hosted_bookings',
        help_text="Center where the course is delivered",
    )
    category = models.ForeignKey(
        'course_allocation.CourseCategory',
        on_delete=models.PROTECT,
        related_name='bookings',
    )
    level = models.ForeignKey(
        'course_allocation.CourseCategoryLevel',
        on_delete=models.PROTECT,
        related_name='bookings',
    )
    start_date = models.DateField()
    end_date = models.DateField()
    duration_days = models.PositiveSmallIntegerField()
    max_participants = models.PositiveIntegerField()
    delivery_type = models.CharField(max_length=20, choices=DeliveryType.choices)
    actual_instructor = models.ForeignKey(
        'course_allocation.Instructor',
        on_delete=models.PROTECT,
        related_name='bookings_as_actual',
    )
    document_instructor = models.ForeignKey(
        'course_allocation.Instructor',
        on_delete=models.PROTECT,
        related_name='bookings_as_document',
    )
    booking_status = models.CharField(
        max_length=20,
        choices=BookingStatus.choices,
        default=BookingStatus.NOT_STARTED,
    )
    created_by_center = models.ForeignKey(
        'course_allocation.Center',
        on_delete=models.PROTECT,
        related_name='created_bookings',
    )
    created_by = models.CharField(max_length=255, blank=True, default='')
    notes = models.TextField(blank=True, default='')
    cancelled_at = models.DateTimeField(null=True, blank=True)

    objects = LiveManager.from_queryset(CourseBookingQuerySet)()

    class Meta:
        app_label = 'course_allocation'
        ordering = ['-created_at']
        constraints = [
            models.CheckConstraint(
                condition=Q(end_date__gte=F('start_date')),
                name='course_booking_end_not_before_start',
            ),
        ]
        indexes = [
            models.Index(fields=['booking_status', 'start_date', 'end_date']),
            models.Index(fields=['created_by_center']),
        ]

    def __str__(self):
        return f"{self.course_number} ({self.start_date} - {self.end_date})"

    @property
    def is_active(self) -> bool:
        return self.booking_status in ACTIVE_BOOKING_STATUSES

    def can_transition_to(self, new_status: str) -> bool:
        return new_status in ALLOWED_TRANSITIONS.get(self.booking_status, frozenset())

    @property
    def total_participants(self) -> int:
        return sum(c.participants_count for c in self.customers.all())


class BookingCustomer(AllocationModel):
    """A customer's declared seat allocation within a booking.

    When ``lpo_line_item`` is set, the seats were paid for from that LPO
    line item and are credited back if the booking is cancelled.
    """

    booking = models.ForeignKey(
        CourseBooking,
        on_delete=models.PROTECT,
        related_name='customers',
    )
    customer = models.ForeignKey(
        'course_allocation.Customer',
        on_delete=models.PROTECT,
        related_name='booking_allocations',
    )
    participants_count = models.PositiveIntegerField()
    lpo_line_item = models.ForeignKey(
        'course_allocation.LPOLineItem',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='booking_allocations',
    )
    customer_notes = models.TextField(blank=True, default='')
    reconciled_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When attendance was reconciled against the LPO after completion",
    )

    class Meta:
        app_label = 'course_allocation'
        ordering = ['booking', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['booking', 'customer'],
                name='booking_customer_unique',
            ),
            models.CheckConstraint(
                condition=Q(participants_count__gt=0),
                name='booking_customer_participants_positive',
            ),
        ]

    def __str__(self):
        return f"{self.customer} x{self.participants_count} on {self.booking.course_number}"


class BookingCandidate(AllocationModel):
    """An individual trainee registered against a customer's seats."""

    booking_customer = models.ForeignKey(
        BookingCustomer,
        on_delete=models.PROTECT,
        related_name='candidates',
    )
    full_name = models.CharField(max_length=255)
    identifier = models.CharField(
        max_length=100,
        blank=True,
        default='',
        help_text="Passport / national ID or employee number",
    )

    class Meta:
        app_label = 'course_allocation'
        ordering = ['booking_customer', 'id']

    def __str__(self):
        return self.full_name


class CourseNumberSequence(models.Model):
    """Counter behind course numbers, one row per (course_type, year).

    Rows are only touched under ``select_for_update()`` inside the booking
    transaction, so a rolled-back booking also rolls back its number.
    """

    course_type = models.CharField(max_length=20, choices=CourseType.choices)
    year = models.PositiveSmallIntegerField()
    last_number = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        app_label = 'course_allocation'
        constraints = [
            models.UniqueConstraint(
                fields=['course_type', 'year'],
                name='course_number_sequence_unique_type_year',
            ),
        ]

    def __str__(self):
        return f"{self.course_type}/{self.year}: {self.last_number}"
