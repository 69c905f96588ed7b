"""Booking orchestration.

``BookingOrchestrator`` is the only entry point for booking writes. It
validates the request, consults the catalog, the availability checker and
the entitlement ledger, and then writes the booking, its customers and the
LPO usage in a single transaction.

Usage:
    from course_allocation.scope import CenterContext
    from course_allocation.services import BookingOrchestrator

    orchestrator = BookingOrchestrator()
    booking = orchestrator.create_booking(
        {
            'category_id': category.pk,
            'level_id': level.pk,
            'start_date': date(2024, 1, 8),
            'actual_instructor_id': instructor.pk,
            'document_instructor_id': instructor.pk,
            'delivery_type': 'onsite',
            'course_type': 'domestic',
        },
        [{'customer_id': customer.pk, 'participants_count': 4, 'lpo_line_item_id': item.pk}],
        CenterContext.for_center(head_center),
    )
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from functools import partial

from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_date

from . import conf
from .availability import InstructorAvailabilityChecker
from .catalog import CourseCatalog
from .dates import calculate_end_date, validate_start_date
from .db import atomic
from .exceptions import (
    CapacityExceededError,
    CenterPermissionError,
    InstructorConflictError,
    InvalidStatusTransitionError,
    NotFoundError,
    ValidationError,
)
from .ledger import CompletionResult, EntitlementLedger, expiry_notification_type
from .models import (
    ACTIVE_BOOKING_STATUSES,
    BookingCandidate,
    BookingCustomer,
    BookingStatus,
    Center,
    CourseBooking,
    CourseType,
    Customer,
    Instructor,
)
from .notifications import booking_recipients, expiry_recipients, get_dispatcher
from .sequences import next_course_number

logger = logging.getLogger(__name__)


@dataclass
class ExpiryCheckResult:
    """Outcome of one expiry check run."""

    as_of: date
    threshold_days: int
    candidates: list = field(default_factory=list)
    notified: list = field(default_factory=list)
    failed: list = field(default_factory=list)
    dry_run: bool = False

    @property
    def candidate_count(self) -> int:
        return len(self.candidates)


def _coerce_date(value, field_name: str) -> date:
    if isinstance(value, date):
        return value
    parsed = parse_date(value) if isinstance(value, str) else None
    if parsed is None:
        raise ValidationError(f"Invalid date for {field_name}: {value!r}", field=field_name)
    return parsed


class BookingOrchestrator:
    """Creates, transitions and cancels course bookings."""

    def __init__(
        self,
        catalog: CourseCatalog | None = None,
        availability: InstructorAvailabilityChecker | None = None,
        ledger: EntitlementLedger | None = None,
        dispatcher=None,
        using: str = 'default',
    ):
        self.using = using
        self.catalog = catalog or CourseCatalog(using=using)
        self.availability = availability or InstructorAvailabilityChecker(using=using)
        self.ledger = ledger or EntitlementLedger(using=using)
        self.dispatcher = dispatcher if dispatcher is not None else get_dispatcher()

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def _validate_request(self, booking_data: dict, customers: list[dict]) -> None:
        required = (
            'category_id',
            'level_id',
            'start_date',
            'actual_instructor_id',
            'document_instructor_id',
            'delivery_type',
            'course_type',
        )
        for name in required:
            if booking_data.get(name) in (None, ''):
                raise ValidationError(f"{name} is required", field=name)

        if booking_data['delivery_type'] not in CourseBooking.DeliveryType.values:
            raise ValidationError(
                f"Invalid delivery type: {booking_data['delivery_type']}", field='delivery_type'
            )
        if booking_data['course_type'] not in CourseType.values:
            raise ValidationError(
                f"Invalid course type: {booking_data['course_type']}", field='course_type'
            )

        if not customers:
            raise ValidationError("At least one customer is required", field='customers')

        seen = set()
        for entry in customers:
            customer_id = entry.get('customer_id')
            if customer_id in (None, ''):
                raise ValidationError("Each customer needs a customer_id", field='customers')
            count = entry.get('participants_count')
            if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
                raise ValidationError(
                    f"Participants count for customer {customer_id} must be a positive integer",
                    field='participants_count',
                )
            if customer_id in seen:
                raise ValidationError(
                    f"Customer {customer_id} is listed more than once", field='customers'
                )
            seen.add(customer_id)

    def _check_center_policy(self, course_type: str, center_context) -> None:
        if center_context is None:
            raise ValidationError("Center context is required", field='center_context')
        if course_type == CourseType.DOMESTIC and not center_context.can_create_domestic:
            raise CenterPermissionError(center_context.center_id, 'create_domestic_courses')
        if course_type == CourseType.INTERNATIONAL and not center_context.can_create_international:
            raise CenterPermissionError(center_context.center_id, 'create_international_courses')

    def _check_instructors(self, actual_id, document_id, start_date, end_date) -> None:
        for role, instructor_id in (('actual', actual_id), ('document', document_id)):
            if role == 'document' and instructor_id == actual_id:
                continue
            result = self.availability.is_available(instructor_id, start_date, end_date)
            if not result.available:
                raise InstructorConflictError(
                    instructor_id, role, start_date, end_date, result.conflict_count
                )

    def _check_entitlements(self, customers, course_type, category, level, center_context, today):
        """Validate every LPO-backed customer against its own line item."""
        lpo_entries = [
            entry for entry in customers
            if entry.get('lpo_line_item_id') not in (None, '')
        ]
        if not lpo_entries:
            return
        if course_type != CourseType.DOMESTIC:
            raise ValidationError(
                "LPO line items can only be used on domestic courses",
                field='lpo_line_item_id',
            )
        if not center_context.can_access_lpo:
            raise CenterPermissionError(center_context.center_id, 'access_lpo')

        # Customers are unique per booking and a line item belongs to one
        # customer, so each line item is requested at most once.
        for entry in lpo_entries:
            self.ledger.check_entitlement(
                entry['lpo_line_item_id'],
                entry['participants_count'],
                category.pk,
                level.pk,
                today,
                customer_id=entry['customer_id'],
            )

    def _resolve_center(self, booking_data: dict, center_context) -> int:
        center_id = booking_data.get('center_id') or center_context.center_id
        if center_id != center_context.center_id and not center_context.is_head:
            raise CenterPermissionError(center_context.center_id, 'host_at_other_center')
        if not Center.objects.using(self.using).filter(pk=center_id).exists():
            raise NotFoundError('Center', center_id)
        return center_id

    def create_booking(self, booking_data: dict, customers: list[dict], center_context) -> CourseBooking:
        """Validate and create a booking with its customers.

        All business rules are checked before the first write. The course
        number, the booking rows and the LPO usage are then written in one
        transaction. The booking-created notification goes out only after
        that transaction commits.

        Args:
            booking_data: category_id, level_id, start_date, actual_instructor_id,
                document_instructor_id, delivery_type, course_type and optionally
                center_id and notes
            customers: One dict per customer with customer_id, participants_count
                and optionally lpo_line_item_id and customer_notes
            center_context: The acting CenterContext

        Returns:
            The created CourseBooking
        """
        self._validate_request(booking_data, customers)
        course_type = booking_data['course_type']
        self._check_center_policy(course_type, center_context)
        center_id = self._resolve_center(booking_data, center_context)

        category = self.catalog.get_category(booking_data['category_id'])
        level = self.catalog.get_level_details(category.pk, booking_data['level_id'])

        today = timezone.localdate()
        start_date = _coerce_date(booking_data['start_date'], 'start_date')
        validate_start_date(start_date, today=today)
        end_date = calculate_end_date(start_date, category.duration_days)

        actual_id = booking_data['actual_instructor_id']
        document_id = booking_data['document_instructor_id']
        instructor_ids = {actual_id, document_id}
        known_instructors = set(
            Instructor.objects.using(self.using)
            .filter(pk__in=instructor_ids)
            .values_list('pk', flat=True)
        )
        for instructor_id in (actual_id, document_id):
            if instructor_id not in known_instructors:
                raise NotFoundError('Instructor', instructor_id)
        self._check_instructors(actual_id, document_id, start_date, end_date)

        total = sum(entry['participants_count'] for entry in customers)
        if total > category.max_participants:
            raise CapacityExceededError(total, category.max_participants)

        customer_ids = [entry['customer_id'] for entry in customers]
        known = set(
            Customer.objects.using(self.using)
            .filter(pk__in=customer_ids)
            .values_list('pk', flat=True)
        )
        for customer_id in customer_ids:
            if customer_id not in known:
                raise NotFoundError('Customer', customer_id)

        self._check_entitlements(customers, course_type, category, level, center_context, today)

        with atomic(self.using):
            # Serialize bookings that share an instructor, then re-check under the lock
            list(
                Instructor.objects.using(self.using)
                .select_for_update()
                .filter(pk__in=instructor_ids)
                .order_by('pk')
            )
            self._check_instructors(actual_id, document_id, start_date, end_date)

            booking = CourseBooking.objects.using(self.using).create(
                course_number=next_course_number(course_type, year=today.year, using=self.using),
                course_type=course_type,
                center_id=center_id,
                category=category,
                level=level,
                start_date=start_date,
                end_date=end_date,
                duration_days=category.duration_days,
                max_participants=category.max_participants,
                delivery_type=booking_data['delivery_type'],
                actual_instructor_id=actual_id,
                document_instructor_id=document_id,
                booking_status=BookingStatus.NOT_STARTED,
                created_by_center_id=center_context.center_id,
                created_by=booking_data.get('created_by') or center_context.user,
                notes=booking_data.get('notes', ''),
            )

            for entry in customers:
                line_item_id = entry.get('lpo_line_item_id') or None
                BookingCustomer.objects.using(self.using).create(
                    booking=booking,
                    customer_id=entry['customer_id'],
                    participants_count=entry['participants_count'],
                    lpo_line_item_id=line_item_id,
                    customer_notes=entry.get('customer_notes', ''),
                )
                if line_item_id is not None:
                    self.ledger.use_quantity(
                        line_item_id,
                        entry['participants_count'],
                        booking=booking,
                    )

            transaction.on_commit(
                partial(self._notify_booking_created, booking.pk),
                using=self.using,
            )

        logger.info(
            f"Booking {booking.course_number} created by center {center_context.center_id}: "
            f"{start_date} - {end_date}, {total} participant(s)"
        )
        return booking

    def _notify_booking_created(self, booking_id) -> None:
        try:
            booking = (
                CourseBooking.objects.using(self.using)
                .select_related('actual_instructor', 'document_instructor')
                .get(pk=booking_id)
            )
            self.dispatcher.send_booking_created(booking, booking_recipients(booking))
        except Exception:
            logger.exception(f"Booking-created notification failed for booking {booking_id}")

    # -------------------------------------------------------------------------
    # Status changes
    # -------------------------------------------------------------------------

    def _locked_booking(self, booking_id, center_context=None) -> CourseBooking:
        try:
            return (
                CourseBooking.objects.using(self.using)
                .select_for_update()
                .visible_to(center_context)
                .get(pk=booking_id)
            )
        except CourseBooking.DoesNotExist:
            raise NotFoundError('Course booking', booking_id)

    def update_status(self, booking_id, new_status: str, center_context=None) -> CourseBooking:
        """Move a booking along the status transition table."""
        if new_status not in BookingStatus.values:
            raise ValidationError(f"Invalid booking status: {new_status}", field='booking_status')
        if new_status == BookingStatus.CANCELLED:
            return self.cancel_booking(booking_id, center_context)

        with atomic(self.using):
            booking = self._locked_booking(booking_id, center_context)
            if not booking.can_transition_to(new_status):
                raise InvalidStatusTransitionError(booking.pk, booking.booking_status, new_status)
            previous = booking.booking_status
            booking.booking_status = new_status
            booking.save(using=self.using, update_fields=['booking_status', 'updated_at'])

        logger.info(f"Booking {booking.course_number} moved from {previous} to {new_status}")
        return booking

    def cancel_booking(self, booking_id, center_context=None) -> CourseBooking:
        """Cancel a booking and credit back its LPO seats.

        Each LPO-backed customer gets exactly its ``participants_count``
        back. Cancelling twice raises and credits nothing the second time.
        """
        with atomic(self.using):
            booking = self._locked_booking(booking_id, center_context)
            if booking.booking_status not in ACTIVE_BOOKING_STATUSES:
                raise InvalidStatusTransitionError(
                    booking.pk, booking.booking_status, BookingStatus.CANCELLED
                )

            credited = 0
            lpo_customers = booking.customers.filter(lpo_line_item__isnull=False)
            for allocation in lpo_customers:
                self.ledger.credit_back(
                    allocation.lpo_line_item_id,
                    allocation.participants_count,
                    booking=booking,
                    reason='Booking cancelled',
                )
                credited += allocation.participants_count

            booking.booking_status = BookingStatus.CANCELLED
            booking.cancelled_at = timezone.now()
            booking.save(
                using=self.using,
                update_fields=['booking_status', 'cancelled_at', 'updated_at'],
            )

        logger.info(f"Booking {booking.course_number} cancelled, {credited} LPO seat(s) credited back")
        return booking

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_available_instructors(self, category_id, start_date, end_date, scope, level_id=None):
        return self.availability.list_available(
            category_id, start_date, end_date, scope=scope, level_id=level_id,
        )

    def calculate_end_date(self, start_date, duration_days: int) -> date:
        """Accepts a date or an ISO ``YYYY-MM-DD`` string, as create_booking does."""
        return calculate_end_date(_coerce_date(start_date, 'start_date'), duration_days)

    # -------------------------------------------------------------------------
    # After the course
    # -------------------------------------------------------------------------

    def record_completion(
        self,
        booking_id,
        attendance: dict,
        center_context=None,
        completion_date: date | None = None,
    ) -> list[CompletionResult]:
        """Reconcile LPO seats against attendance for a completed booking.

        ``attendance`` maps customer id to ``(attended, passed)``. Customers
        already reconciled are skipped.
        """
        results = []
        with atomic(self.using):
            booking = self._locked_booking(booking_id, center_context)
            if booking.booking_status != BookingStatus.COMPLETED:
                raise ValidationError(
                    f"Booking {booking.course_number} is {booking.booking_status}, not completed",
                    field='booking_status',
                )

            allocations = booking.customers.select_for_update().filter(
                lpo_line_item__isnull=False,
                reconciled_at__isnull=True,
            )
            for allocation in allocations:
                if allocation.customer_id not in attendance:
                    continue
                attended, passed = attendance[allocation.customer_id]
                results.append(self.ledger.process_course_completion(
                    allocation.lpo_line_item_id,
                    allocation.participants_count,
                    attended,
                    passed,
                    booking=booking,
                    completion_date=completion_date,
                ))
                allocation.reconciled_at = timezone.now()
                allocation.save(using=self.using, update_fields=['reconciled_at', 'updated_at'])

        return results

    def register_candidate(
        self,
        booking_id,
        customer_id,
        full_name: str,
        identifier: str = '',
        center_context=None,
    ) -> BookingCandidate:
        """Attach a named trainee to a customer's seats on a booking.

        The booking as a whole never holds more candidates than its
        ``max_participants``. The count per customer is not checked against
        the declared participants_count; see ``selectors.candidate_overflow``.

        Raises:
            CapacityExceededError: The booking is already at full capacity
        """
        full_name = (full_name or '').strip()
        if not full_name:
            raise ValidationError("Candidate name is required", field='full_name')

        with atomic(self.using):
            booking = self._locked_booking(booking_id, center_context)
            if booking.booking_status == BookingStatus.CANCELLED:
                raise ValidationError(
                    f"Booking {booking.course_number} is cancelled", field='booking_status'
                )

            try:
                allocation = booking.customers.get(customer_id=customer_id)
            except BookingCustomer.DoesNotExist:
                raise NotFoundError('Booking customer', customer_id)

            registered = (
                BookingCandidate.objects.using(self.using)
                .filter(booking_customer__booking=booking)
                .count()
            )
            if registered >= booking.max_participants:
                raise CapacityExceededError(registered + 1, booking.max_participants)

            candidate = BookingCandidate.objects.using(self.using).create(
                booking_customer=allocation,
                full_name=full_name,
                identifier=identifier,
            )

        logger.info(
            f"Candidate {candidate.pk} registered on booking {booking.course_number} "
            f"({registered + 1}/{booking.max_participants})"
        )
        return candidate

    # -------------------------------------------------------------------------
    # Expiry
    # -------------------------------------------------------------------------

    def run_expiry_check(
        self,
        as_of: date | None = None,
        threshold_days: int | None = None,
        scope=None,
        dry_run: bool = False,
    ) -> ExpiryCheckResult:
        """Send expiry notices for orders expiring ``threshold_days`` after ``as_of``.

        Safe to run more than once a day: orders notified successfully on
        ``as_of`` are skipped, failed attempts are retried.
        """
        if as_of is None:
            as_of = timezone.localdate()
        if threshold_days is None:
            threshold_days = conf.expiry_notice_days()
        notification_type = expiry_notification_type(threshold_days)

        candidates = self.ledger.scan_expiring(as_of, threshold_days, scope=scope)
        result = ExpiryCheckResult(
            as_of=as_of,
            threshold_days=threshold_days,
            candidates=candidates,
            dry_run=dry_run,
        )
        if dry_run:
            return result

        for order in candidates:
            recipients = expiry_recipients(order)
            error = ''
            try:
                outcome = self.dispatcher.send_entitlement_expiry(order, recipients, threshold_days)
                if outcome is not None and not outcome.success:
                    error = outcome.error or 'dispatcher reported failure'
            except Exception as exc:
                logger.exception(f"Expiry notification failed for LPO {order.lpo_number}")
                error = str(exc) or exc.__class__.__name__

            self.ledger.record_notification(
                order,
                notification_type,
                as_of,
                recipients,
                sent=not error,
                error=error,
            )
            (result.failed if error else result.notified).append(order)

        logger.info(
            f"Expiry check as of {as_of}: {len(candidates)} candidate(s), "
            f"{len(result.notified)} notified, {len(result.failed)} failed"
        )
        return result
