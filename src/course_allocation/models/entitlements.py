"""LPO (prepaid seat voucher) models.

Contains:
- LPOOrder: a customer's purchase order, scoped to the head center
- LPOLineItem: one (category, level, quantity) entitlement inside an order
- LPOUsageRecord: append-only audit trail of consumption and credit-back
- LPONotificationLog: per-day notification attempts, used for scan idempotency

Line item quantities are only changed by the ledger through conditional
UPDATE statements; the check constraints below back that up at the database.
"""

from decimal import Decimal

from django.db import models
from django.db.models import F, Q

from .base import AllocationModel, LiveManager, LiveQuerySet


class OrderStatus(models.TextChoices):
    CONFIRMED = 'confirmed', 'Confirmed'
    PARTIALLY_USED = 'partially_used', 'Partially Used'
    FULLY_USED = 'fully_used', 'Fully Used'
    CANCELLED = 'cancelled', 'Cancelled'


# Orders whose line items can still be drawn down
USABLE_ORDER_STATUSES = (OrderStatus.CONFIRMED, OrderStatus.PARTIALLY_USED)


class LPOOrderQuerySet(LiveQuerySet):
    """Custom queryset for LPOOrder."""

    def usable(self):
        return self.filter(order_status__in=USABLE_ORDER_STATUSES)

    def valid_on(self, as_of):
        return self.filter(valid_until__gte=as_of)

    def visible_to(self, scope):
        """Only the head center sees LPOs; every other scope sees nothing."""
        if scope is None or scope.can_access_lpo:
            return self
        return self.none()


class LPOOrder(AllocationModel):
    """A customer's prepaid training voucher.

    ``order_status`` is a cached value derived from the line items by the
    ledger; it is never set directly except when the order is cancelled.
    """

    class LPOType(models.TextChoices):
        CORPORATE = 'corporate', 'Corporate'
        INDIVIDUAL = 'individual', 'Individual'

    lpo_number = models.CharField(max_length=100)
    customer = models.ForeignKey(
        'course_allocation.Customer',
        on_delete=models.PROTECT,
        related_name='lpo_orders',
    )
    lpo_type = models.CharField(
        max_length=20,
        choices=LPOType.choices,
        default=LPOType.CORPORATE,
    )
    order_date = models.DateField()
    valid_until = models.DateField()
    total_amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        default=Decimal('0.00'),
    )
    currency = models.CharField(max_length=3, default='AED')
    order_status = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
        default=OrderStatus.CONFIRMED,
    )
    created_by_center = models.ForeignKey(
        'course_allocation.Center',
        on_delete=models.PROTECT,
        related_name='lpo_orders',
    )
    created_by = models.CharField(max_length=255, blank=True, default='')
    notes = models.TextField(blank=True, default='')

    objects = LiveManager.from_queryset(LPOOrderQuerySet)()

    class Meta:
        app_label = 'course_allocation'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['lpo_number'],
                condition=Q(deleted_at__isnull=True),
                name='lpo_order_unique_live_number',
            ),
            models.CheckConstraint(
                condition=Q(valid_until__gt=F('order_date')),
                name='lpo_order_valid_after_order_date',
            ),
        ]
        indexes = [
            models.Index(fields=['order_status', 'valid_until']),
        ]

    def __str__(self):
        return f"LPO {self.lpo_number} ({self.order_status})"

    def days_to_expiry(self, as_of) -> int:
        return (self.valid_until - as_of).days


class LPOLineItem(AllocationModel):
    """One (category, level) seat entitlement inside an LPO order.

    Invariant: quantity_remaining + quantity_used == quantity_ordered.
    """

    order = models.ForeignKey(
        LPOOrder,
        on_delete=models.PROTECT,
        related_name='line_items',
    )
    category = models.ForeignKey(
        'course_allocation.CourseCategory',
        on_delete=models.PROTECT,
        related_name='lpo_line_items',
    )
    level = models.ForeignKey(
        'course_allocation.CourseCategoryLevel',
        on_delete=models.PROTECT,
        related_name='lpo_line_items',
    )
    quantity_ordered = models.PositiveIntegerField()
    quantity_remaining = models.PositiveIntegerField()
    quantity_used = models.PositiveIntegerField(default=0)
    unit_price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
    )
    line_total = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        default=Decimal('0.00'),
    )
    currency = models.CharField(max_length=3, default='AED')

    class Meta:
        app_label = 'course_allocation'
        ordering = ['order', 'category', 'level']
        constraints = [
            models.CheckConstraint(
                condition=Q(quantity_ordered__gt=0),
                name='lpo_line_item_ordered_positive',
            ),
            models.CheckConstraint(
                condition=Q(quantity_remaining__gte=0),
                name='lpo_line_item_remaining_non_negative',
            ),
            models.CheckConstraint(
                condition=Q(quantity_used__gte=0),
                name='lpo_line_item_used_non_negative',
            ),
            models.CheckConstraint(
                condition=Q(quantity_remaining=F('quantity_ordered') - F('quantity_used')),
                name='lpo_line_item_quantities_balance',
            ),
        ]

    def __str__(self):
        return (
            f"{self.order.lpo_number}: {self.category} L{self.level.level_number} "
            f"{self.quantity_remaining}/{self.quantity_ordered}"
        )

    @property
    def usage_state(self) -> str:
        """'active', 'partially_used' or 'fully_used', computed from quantities."""
        if self.quantity_remaining == 0:
            return 'fully_used'
        if self.quantity_remaining < self.quantity_ordered:
            return 'partially_used'
        return 'active'

    @property
    def is_balanced(self) -> bool:
        return self.quantity_remaining + self.quantity_used == self.quantity_ordered


class UsageEvent(models.TextChoices):
    USAGE = 'usage', 'Usage'
    CREDIT_BACK = 'credit_back', 'Credit Back'
    COMPLETION = 'completion', 'Course Completion'


class LPOUsageRecord(models.Model):
    """Append-only audit row for one consumption or credit-back event.

    Rows are inserted by the ledger and never updated.
    """

    line_item = models.ForeignKey(
        LPOLineItem,
        on_delete=models.PROTECT,
        related_name='usage_records',
    )
    booking = models.ForeignKey(
        'course_allocation.CourseBooking',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='lpo_usage_records',
    )
    event_type = models.CharField(max_length=20, choices=UsageEvent.choices)
    quantity_booked = models.PositiveIntegerField(default=0)
    quantity_attended = models.PositiveIntegerField(default=0)
    quantity_passed = models.PositiveIntegerField(default=0)
    quantity_failed = models.PositiveIntegerField(default=0)
    quantity_no_show = models.PositiveIntegerField(default=0)
    quantity_credited_back = models.PositiveIntegerField(default=0)
    completion_date = models.DateField(null=True, blank=True)
    booking_reference = models.CharField(max_length=100, blank=True, default='')
    notes = models.TextField(blank=True, default='')
    recorded_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        app_label = 'course_allocation'
        ordering = ['recorded_at', 'id']
        indexes = [
            models.Index(fields=['line_item', 'event_type']),
        ]

    def __str__(self):
        return f"{self.event_type} on line item {self.line_item_id} ({self.booking_reference})"

    def save(self, *args, **kwargs):
        """Reject updates to an existing usage record."""
        if self.pk is not None and not self._state.adding:
            raise ValueError(
                f"LPOUsageRecord {self.pk} is immutable. Record a new event instead."
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError(f"LPOUsageRecord {self.pk} is immutable and cannot be deleted.")


class LPONotificationLog(models.Model):
    """One notification attempt for an order on a given day."""

    class Status(models.TextChoices):
        SENT = 'sent', 'Sent'
        FAILED = 'failed', 'Failed'

    order = models.ForeignKey(
        LPOOrder,
        on_delete=models.PROTECT,
        related_name='notifications',
    )
    notification_type = models.CharField(max_length=50)
    sent_on = models.DateField()
    status = models.CharField(max_length=10, choices=Status.choices)
    recipients = models.TextField(blank=True, default='')
    error_message = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        app_label = 'course_allocation'
        ordering = ['-created_at']
        constraints = [
            # At most one successful notice per order, type and day
            models.UniqueConstraint(
                fields=['order', 'notification_type', 'sent_on'],
                condition=Q(status='sent'),
                name='lpo_notification_one_sent_per_day',
            ),
        ]

    def __str__(self):
        return f"{self.notification_type} for {self.order_id} on {self.sent_on}: {self.status}"
