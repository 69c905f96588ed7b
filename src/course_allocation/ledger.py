"""LPO entitlement ledger.

Owns every change to LPO orders and line items. Line item quantities move
only through conditional UPDATE statements:

    use:         remaining -= n, used += n   WHERE remaining >= n
    credit back: remaining += n, used -= n   WHERE used >= n

so two concurrent consumers can never drive a balance negative, whatever
the isolation level. The affected-row count tells us whether the guard held.
Every movement appends an LPOUsageRecord, and the order status is re-derived
from the line items afterwards.
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation

from django.db import IntegrityError, transaction
from django.db.models import F, Sum
from django.utils import timezone

from . import conf
from .catalog import CourseCatalog
from .db import atomic
from .exceptions import (
    CenterPermissionError,
    ExpiredEntitlementError,
    InsufficientEntitlementError,
    NotFoundError,
    ValidationError,
)
from .models import (
    Customer,
    LPOLineItem,
    LPONotificationLog,
    LPOOrder,
    LPOUsageRecord,
    OrderStatus,
    UsageEvent,
)

logger = logging.getLogger(__name__)


def expiry_notification_type(days: int) -> str:
    return f"expiry_{days}_days"


@dataclass
class CompletionResult:
    """Outcome of reconciling one line item after a course finished."""

    line_item_id: int
    quantity_booked: int
    quantity_attended: int
    quantity_passed: int
    quantity_failed: int
    quantity_no_show: int
    quantity_credited_back: int


def _positive_int(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field} must be a positive integer, got {value!r}", field=field)
    return value


def _non_negative_int(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{field} must be a non-negative integer, got {value!r}", field=field)
    return value


class EntitlementLedger:
    """Lifecycle of LPO orders and their line items."""

    def __init__(self, using: str = 'default'):
        self.using = using

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _orders(self):
        return LPOOrder.objects.using(self.using)

    def _line_items(self):
        return LPOLineItem.objects.using(self.using)

    def _require_lpo_access(self, scope):
        if scope is None or not scope.can_access_lpo:
            raise CenterPermissionError(
                scope.center_id if scope is not None else None,
                'access_lpo',
            )

    def get_order(self, order_id, scope=None) -> LPOOrder:
        try:
            return self._orders().visible_to(scope).get(pk=order_id)
        except LPOOrder.DoesNotExist:
            raise NotFoundError('LPO order', order_id)

    def get_line_item(self, line_item_id) -> LPOLineItem:
        try:
            return self._line_items().select_related('order').get(pk=line_item_id)
        except LPOLineItem.DoesNotExist:
            raise NotFoundError('LPO line item', line_item_id)

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    def create_order(
        self,
        scope,
        lpo_number: str,
        customer_id,
        lpo_type: str,
        order_date: date,
        valid_until: date,
        line_items: list[dict],
        currency: str | None = None,
        notes: str = '',
        created_by: str = '',
    ) -> LPOOrder:
        """Create a confirmed LPO order with its line items.

        Each entry of ``line_items`` is a dict with ``category_id``,
        ``level_id``, ``quantity`` and optionally ``unit_price``.
        """
        self._require_lpo_access(scope)

        lpo_number = (lpo_number or '').strip()
        if not lpo_number:
            raise ValidationError("LPO number is required", field='lpo_number')
        if lpo_type not in LPOOrder.LPOType.values:
            raise ValidationError(f"Invalid LPO type: {lpo_type}", field='lpo_type')
        if not order_date or not valid_until:
            raise ValidationError("Order date and valid until date are required", field='valid_until')
        if valid_until <= order_date:
            raise ValidationError("Valid until date must be after order date", field='valid_until')
        if not line_items:
            raise ValidationError("At least one line item is required", field='line_items')
        if lpo_type == LPOOrder.LPOType.INDIVIDUAL and len(line_items) != 1:
            raise ValidationError(
                "Individual LPOs must have exactly one line item", field='line_items'
            )
        if self._orders().filter(lpo_number=lpo_number).exists():
            raise ValidationError(f"LPO number {lpo_number} already exists", field='lpo_number')
        if not Customer.objects.using(self.using).filter(pk=customer_id).exists():
            raise NotFoundError('Customer', customer_id)

        currency = currency or conf.default_currency()
        try:
            with atomic(self.using):
                order = self._orders().create(
                    lpo_number=lpo_number,
                    customer_id=customer_id,
                    lpo_type=lpo_type,
                    order_date=order_date,
                    valid_until=valid_until,
                    currency=currency,
                    order_status=OrderStatus.CONFIRMED,
                    created_by_center_id=scope.center_id,
                    created_by=created_by or scope.user,
                    notes=notes,
                )
                for item in line_items:
                    self.allocate_line_item(
                        order.pk,
                        item.get('category_id'),
                        item.get('level_id'),
                        item.get('quantity'),
                        item.get('unit_price', Decimal('0.00')),
                        currency=currency,
                    )
        except IntegrityError as exc:
            if 'lpo_number' in str(exc) or 'lpo_order_unique_live_number' in str(exc):
                raise ValidationError(
                    f"LPO number {lpo_number} already exists", field='lpo_number'
                ) from exc
            raise

        order.refresh_from_db(using=self.using)
        logger.info(
            f"LPO {order.lpo_number} created for customer {customer_id} "
            f"with {len(line_items)} line item(s), total {order.total_amount} {order.currency}"
        )
        return order

    def cancel_order(self, order_id, scope) -> LPOOrder:
        self._require_lpo_access(scope)
        with atomic(self.using):
            try:
                order = self._orders().select_for_update().get(pk=order_id)
            except LPOOrder.DoesNotExist:
                raise NotFoundError('LPO order', order_id)
            if order.order_status == OrderStatus.CANCELLED:
                raise ValidationError(
                    f"LPO {order.lpo_number} is already cancelled", field='order_status'
                )
            order.order_status = OrderStatus.CANCELLED
            order.save(using=self.using, update_fields=['order_status', 'updated_at'])
        logger.info(f"LPO {order.lpo_number} cancelled by center {scope.center_id}")
        return order

    def update_order(
        self,
        order_id,
        scope,
        lpo_number: str | None = None,
        valid_until: date | None = None,
        notes: str | None = None,
    ) -> LPOOrder:
        """Edit the order header; arguments left as None are unchanged.

        Fully used and cancelled orders cannot be edited. Moving
        ``valid_until`` changes when line items expire and when the expiry
        notice is sent.
        """
        self._require_lpo_access(scope)
        if lpo_number is not None:
            lpo_number = lpo_number.strip()
            if not lpo_number:
                raise ValidationError("LPO number is required", field='lpo_number')

        try:
            with atomic(self.using):
                try:
                    order = self._orders().select_for_update().get(pk=order_id)
                except LPOOrder.DoesNotExist:
                    raise NotFoundError('LPO order', order_id)
                if order.order_status in (OrderStatus.FULLY_USED, OrderStatus.CANCELLED):
                    raise ValidationError(
                        f"Cannot update LPO {order.lpo_number} with status {order.order_status}",
                        field='order_status',
                    )

                changed = []
                if lpo_number is not None and lpo_number != order.lpo_number:
                    taken = self._orders().filter(lpo_number=lpo_number).exclude(pk=order.pk)
                    if taken.exists():
                        raise ValidationError(
                            f"LPO number {lpo_number} already exists", field='lpo_number'
                        )
                    order.lpo_number = lpo_number
                    changed.append('lpo_number')
                if valid_until is not None and valid_until != order.valid_until:
                    if valid_until <= order.order_date:
                        raise ValidationError(
                            "Valid until date must be after order date", field='valid_until'
                        )
                    order.valid_until = valid_until
                    changed.append('valid_until')
                if notes is not None and notes != order.notes:
                    order.notes = notes
                    changed.append('notes')

                if changed:
                    order.save(using=self.using, update_fields=changed + ['updated_at'])
        except IntegrityError as exc:
            raise ValidationError(
                f"LPO number {lpo_number} already exists", field='lpo_number'
            ) from exc

        if changed:
            logger.info(
                f"LPO {order.lpo_number} updated by center {scope.center_id}: {', '.join(changed)}"
            )
        return order

    def derive_order_status(self, order_id) -> str:
        """Recompute and store the order status from its line items.

        Cancelled orders keep their status.
        """
        order = self.get_order(order_id)
        if order.order_status == OrderStatus.CANCELLED:
            return order.order_status

        totals = self._line_items().filter(order_id=order_id).aggregate(
            ordered=Sum('quantity_ordered'),
            remaining=Sum('quantity_remaining'),
        )
        ordered = totals['ordered'] or 0
        remaining = totals['remaining'] or 0

        if ordered and remaining == 0:
            status = OrderStatus.FULLY_USED
        elif remaining < ordered:
            status = OrderStatus.PARTIALLY_USED
        else:
            status = OrderStatus.CONFIRMED

        if status != order.order_status:
            self._orders().filter(pk=order_id).exclude(
                order_status=OrderStatus.CANCELLED,
            ).update(order_status=status, updated_at=timezone.now())
        return status

    # -------------------------------------------------------------------------
    # Line items
    # -------------------------------------------------------------------------

    def allocate_line_item(
        self,
        order_id,
        category_id,
        level_id,
        quantity,
        unit_price,
        currency: str | None = None,
    ) -> LPOLineItem:
        """Add a line item with its full quantity available.

        The order total grows by ``quantity * unit_price``.
        """
        _positive_int(quantity, 'quantity')
        try:
            unit_price = Decimal(str(unit_price))
        except (InvalidOperation, ValueError):
            raise ValidationError(f"Invalid unit price: {unit_price!r}", field='unit_price')
        if unit_price < 0:
            raise ValidationError("Unit price cannot be negative", field='unit_price')

        level = CourseCatalog(using=self.using).get_level_details(category_id, level_id)

        with atomic(self.using):
            try:
                order = self._orders().select_for_update().get(pk=order_id)
            except LPOOrder.DoesNotExist:
                raise NotFoundError('LPO order', order_id)
            if order.order_status == OrderStatus.CANCELLED:
                raise ValidationError(
                    f"Cannot add line items to cancelled LPO {order.lpo_number}",
                    field='order_status',
                )
            if (
                order.lpo_type == LPOOrder.LPOType.INDIVIDUAL
                and self._line_items().filter(order_id=order_id).exists()
            ):
                raise ValidationError(
                    "Individual LPOs must have exactly one line item", field='line_items'
                )

            line_total = unit_price * quantity
            item = self._line_items().create(
                order=order,
                category_id=level.category_id,
                level=level,
                quantity_ordered=quantity,
                quantity_remaining=quantity,
                quantity_used=0,
                unit_price=unit_price,
                line_total=line_total,
                currency=currency or order.currency,
            )
            self._orders().filter(pk=order_id).update(
                total_amount=F('total_amount') + line_total,
                updated_at=timezone.now(),
            )
            self.derive_order_status(order_id)
        return item

    def remove_line_item(self, line_item_id, scope=None) -> None:
        """Remove a line item that was never drawn down."""
        if scope is not None:
            self._require_lpo_access(scope)
        with atomic(self.using):
            try:
                item = self._line_items().select_for_update().get(pk=line_item_id)
            except LPOLineItem.DoesNotExist:
                raise NotFoundError('LPO line item', line_item_id)
            if item.quantity_used > 0 or item.usage_records.exists():
                raise ValidationError(
                    f"Line item {line_item_id} has usage history and cannot be removed",
                    field='line_item',
                )
            item.delete(using=self.using)
            self._orders().filter(pk=item.order_id).update(
                total_amount=F('total_amount') - item.line_total,
                updated_at=timezone.now(),
            )
            self.derive_order_status(item.order_id)

    def use_quantity(
        self,
        line_item_id,
        quantity: int,
        booking=None,
        booking_reference: str = '',
        notes: str = '',
    ) -> LPOLineItem:
        """Consume ``quantity`` seats from a line item.

        Raises:
            InsufficientEntitlementError: Fewer than ``quantity`` seats remain;
                nothing is changed.
        """
        _positive_int(quantity, 'quantity')
        if booking is not None and not booking_reference:
            booking_reference = booking.course_number

        with atomic(self.using):
            updated = self._line_items().filter(
                pk=line_item_id,
                quantity_remaining__gte=quantity,
            ).update(
                quantity_remaining=F('quantity_remaining') - quantity,
                quantity_used=F('quantity_used') + quantity,
                updated_at=timezone.now(),
            )
            if not updated:
                item = self.get_line_item(line_item_id)
                logger.warning(
                    f"Rejected use of {quantity} seats on line item {line_item_id}: "
                    f"{item.quantity_remaining} remaining"
                )
                raise InsufficientEntitlementError(line_item_id, quantity, item.quantity_remaining)

            item = self.get_line_item(line_item_id)
            LPOUsageRecord.objects.using(self.using).create(
                line_item=item,
                booking=booking,
                event_type=UsageEvent.USAGE,
                quantity_booked=quantity,
                booking_reference=booking_reference,
                notes=notes,
            )
            self.derive_order_status(item.order_id)
        return item

    def credit_back(
        self,
        line_item_id,
        quantity: int,
        booking=None,
        reason: str = '',
        booking_reference: str = '',
    ) -> LPOLineItem:
        """Return ``quantity`` previously used seats to a line item."""
        _positive_int(quantity, 'quantity')
        if booking is not None and not booking_reference:
            booking_reference = booking.course_number

        with atomic(self.using):
            updated = self._line_items().filter(
                pk=line_item_id,
                quantity_used__gte=quantity,
            ).update(
                quantity_remaining=F('quantity_remaining') + quantity,
                quantity_used=F('quantity_used') - quantity,
                updated_at=timezone.now(),
            )
            if not updated:
                item = self.get_line_item(line_item_id)
                logger.warning(
                    f"Rejected credit back of {quantity} seats on line item {line_item_id}: "
                    f"only {item.quantity_used} used"
                )
                raise ValidationError(
                    f"Cannot credit back {quantity} seats on line item {line_item_id}: "
                    f"only {item.quantity_used} used",
                    field='quantity',
                )

            item = self.get_line_item(line_item_id)
            LPOUsageRecord.objects.using(self.using).create(
                line_item=item,
                booking=booking,
                event_type=UsageEvent.CREDIT_BACK,
                quantity_credited_back=quantity,
                booking_reference=booking_reference,
                notes=reason,
            )
            self.derive_order_status(item.order_id)
        return item

    def check_entitlement(
        self,
        line_item_id,
        quantity: int,
        category_id,
        level_id,
        as_of: date,
        customer_id=None,
    ) -> LPOLineItem:
        """Verify a line item can cover ``quantity`` seats without changing it.

        When ``customer_id`` is given the line item must belong to an order
        of that customer.
        """
        item = self.get_line_item(line_item_id)
        order = item.order

        if customer_id is not None and order.customer_id != customer_id:
            raise ValidationError(
                f"LPO line item {line_item_id} does not belong to customer {customer_id}",
                field='lpo_line_item',
            )
        if item.category_id != category_id or item.level_id != level_id:
            raise ValidationError(
                f"LPO line item {line_item_id} does not match the course category and level",
                field='lpo_line_item',
            )
        if order.order_status == OrderStatus.CANCELLED or order.is_deleted:
            raise ValidationError(
                f"LPO {order.lpo_number} is cancelled", field='lpo_line_item'
            )
        if order.valid_until < as_of:
            raise ExpiredEntitlementError(order.pk, order.valid_until, as_of)
        if item.quantity_remaining < quantity:
            raise InsufficientEntitlementError(line_item_id, quantity, item.quantity_remaining)
        return item

    def process_course_completion(
        self,
        line_item_id,
        quantity_booked: int,
        quantity_attended: int,
        quantity_passed: int,
        booking=None,
        completion_date: date | None = None,
        notes: str = '',
    ) -> CompletionResult:
        """Reconcile attendance after a course.

        No-shows (booked but not attended) are credited back. Failed
        candidates attended, so their seats stay consumed.
        """
        _non_negative_int(quantity_booked, 'quantity_booked')
        _non_negative_int(quantity_attended, 'quantity_attended')
        _non_negative_int(quantity_passed, 'quantity_passed')
        if quantity_attended > quantity_booked:
            raise ValidationError(
                "Attended quantity cannot exceed booked quantity", field='quantity_attended'
            )
        if quantity_passed > quantity_attended:
            raise ValidationError(
                "Passed quantity cannot exceed attended quantity", field='quantity_passed'
            )

        no_show = quantity_booked - quantity_attended
        failed = quantity_attended - quantity_passed
        booking_reference = booking.course_number if booking is not None else ''

        with atomic(self.using):
            item = self.get_line_item(line_item_id)
            if no_show:
                self.credit_back(
                    line_item_id,
                    no_show,
                    booking=booking,
                    reason='No-show credit back',
                )
            LPOUsageRecord.objects.using(self.using).create(
                line_item=item,
                booking=booking,
                event_type=UsageEvent.COMPLETION,
                quantity_booked=quantity_booked,
                quantity_attended=quantity_attended,
                quantity_passed=quantity_passed,
                quantity_failed=failed,
                quantity_no_show=no_show,
                quantity_credited_back=no_show,
                completion_date=completion_date or timezone.localdate(),
                booking_reference=booking_reference,
                notes=notes,
            )

        logger.info(
            f"Completion recorded on line item {line_item_id}: booked {quantity_booked}, "
            f"attended {quantity_attended}, passed {quantity_passed}, credited back {no_show}"
        )
        return CompletionResult(
            line_item_id=item.pk,
            quantity_booked=quantity_booked,
            quantity_attended=quantity_attended,
            quantity_passed=quantity_passed,
            quantity_failed=failed,
            quantity_no_show=no_show,
            quantity_credited_back=no_show,
        )

    # -------------------------------------------------------------------------
    # Expiry
    # -------------------------------------------------------------------------

    def scan_expiring(self, as_of: date, threshold_days: int | None = None, scope=None) -> list[LPOOrder]:
        """Orders expiring exactly ``threshold_days`` after ``as_of``.

        Only confirmed or partially used orders qualify, and orders already
        notified successfully on ``as_of`` are skipped. Read-only.
        """
        if threshold_days is None:
            threshold_days = conf.expiry_notice_days()
        notified = LPONotificationLog.objects.using(self.using).filter(
            notification_type=expiry_notification_type(threshold_days),
            sent_on=as_of,
            status=LPONotificationLog.Status.SENT,
        ).values('order_id')

        return list(
            self._orders()
            .visible_to(scope)
            .usable()
            .filter(valid_until=as_of + timedelta(days=threshold_days))
            .exclude(pk__in=notified)
            .select_related('customer', 'created_by_center')
            .order_by('valid_until', 'lpo_number')
        )

    def record_notification(
        self,
        order,
        notification_type: str,
        as_of: date,
        recipients,
        sent: bool,
        error: str = '',
    ) -> LPONotificationLog:
        """Log one notification attempt so later scans on the same day skip it."""
        status = LPONotificationLog.Status.SENT if sent else LPONotificationLog.Status.FAILED
        try:
            with transaction.atomic(using=self.using):
                return LPONotificationLog.objects.using(self.using).create(
                    order=order,
                    notification_type=notification_type,
                    sent_on=as_of,
                    status=status,
                    recipients=', '.join(recipients),
                    error_message=error,
                )
        except IntegrityError:
            logger.warning(
                f"{notification_type} for LPO {order.lpo_number} already logged as sent on {as_of}"
            )
            return LPONotificationLog.objects.using(self.using).get(
                order=order,
                notification_type=notification_type,
                sent_on=as_of,
                status=LPONotificationLog.Status.SENT,
            )
