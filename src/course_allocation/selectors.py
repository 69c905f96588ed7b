"""Scoped read-only queries for bookings and LPOs.

Every function takes the acting ``CenterContext``; branch centers see only
the bookings they created and no LPO data at all.
"""

from datetime import date

from django.db.models import Count, F, Q, Sum
from django.utils import timezone

from .exceptions import NotFoundError
from .models import (
    ACTIVE_BOOKING_STATUSES,
    BookingCustomer,
    CourseBooking,
    Customer,
    LPOLineItem,
    LPOOrder,
)


def list_bookings(scope, status: str | None = None, using: str = 'default'):
    qs = (
        CourseBooking.objects.using(using)
        .visible_to(scope)
        .select_related('category', 'level', 'actual_instructor', 'document_instructor')
    )
    if status:
        qs = qs.filter(booking_status=status)
    return qs.order_by('-start_date', 'course_number')


def get_booking(booking_id, scope, using: str = 'default') -> CourseBooking:
    try:
        return list_bookings(scope, using=using).get(pk=booking_id)
    except CourseBooking.DoesNotExist:
        raise NotFoundError('Course booking', booking_id)


def search_bookings(scope, term: str, using: str = 'default'):
    """Match course number, category name or instructor names."""
    term = (term or '').strip()
    qs = list_bookings(scope, using=using)
    if not term:
        return qs
    return qs.filter(
        Q(course_number__icontains=term)
        | Q(category__name__icontains=term)
        | Q(actual_instructor__first_name__icontains=term)
        | Q(actual_instructor__last_name__icontains=term)
        | Q(document_instructor__first_name__icontains=term)
        | Q(document_instructor__last_name__icontains=term)
    ).distinct()


def upcoming_bookings(scope, as_of: date | None = None, limit: int = 10, using: str = 'default'):
    """Active bookings starting on or after ``as_of``, soonest first."""
    if as_of is None:
        as_of = timezone.localdate()
    return list(
        CourseBooking.objects.using(using)
        .visible_to(scope)
        .filter(booking_status__in=ACTIVE_BOOKING_STATUSES, start_date__gte=as_of)
        .order_by('start_date', 'course_number')[:limit]
    )


def list_orders(scope, status: str | None = None, using: str = 'default'):
    qs = LPOOrder.objects.using(using).visible_to(scope).select_related('customer')
    if status:
        qs = qs.filter(order_status=status)
    return qs


def get_order(order_id, scope, using: str = 'default') -> LPOOrder:
    try:
        return list_orders(scope, using=using).get(pk=order_id)
    except LPOOrder.DoesNotExist:
        raise NotFoundError('LPO order', order_id)


def available_line_items(scope, customer_id, category_id, level_id, as_of: date | None = None, using: str = 'default'):
    """Line items a customer can still draw on for a category and level."""
    if as_of is None:
        as_of = timezone.localdate()
    if scope is None or not scope.can_access_lpo:
        return []
    orders = LPOOrder.objects.using(using).usable().valid_on(as_of).filter(customer_id=customer_id)
    return list(
        LPOLineItem.objects.using(using)
        .select_related('order')
        .filter(
            order__in=orders,
            category_id=category_id,
            level_id=level_id,
            quantity_remaining__gt=0,
        )
        .order_by('order__valid_until', 'pk')
    )


def candidate_overflow(booking_id, using: str = 'default') -> list[BookingCustomer]:
    """Booking customers with more registered candidates than declared seats.

    Each returned row is annotated with ``candidate_count``.
    """
    return list(
        BookingCustomer.objects.using(using)
        .filter(booking_id=booking_id)
        .annotate(
            candidate_count=Count('candidates', filter=Q(candidates__deleted_at__isnull=True)),
        )
        .filter(candidate_count__gt=F('participants_count'))
        .select_related('customer')
    )


def available_lpo_customers(scope, category_id, level_id, as_of: date | None = None, using: str = 'default'):
    """Customers holding usable LPO seats for a category and level.

    Feeds the booking form before a customer is picked. Each customer is
    annotated with ``available_seats``, the seats left across all of its
    matching line items.
    """
    if as_of is None:
        as_of = timezone.localdate()
    if scope is None or not scope.can_access_lpo:
        return []
    line_items = LPOLineItem.objects.using(using).filter(
        order__in=LPOOrder.objects.using(using).usable().valid_on(as_of),
        category_id=category_id,
        level_id=level_id,
        quantity_remaining__gt=0,
    )
    # filter() before annotate() limits the Sum to the matching line items
    return list(
        Customer.objects.using(using)
        .filter(is_active=True, lpo_orders__line_items__in=line_items)
        .annotate(
            available_seats=Sum('lpo_orders__line_items__quantity_remaining'),
        )
        .order_by('name', 'pk')
    )
