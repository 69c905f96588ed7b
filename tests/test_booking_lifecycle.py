"""Tests for booking status changes, cancellation and completion."""

from datetime import date

import pytest

from course_allocation.exceptions import (
    CapacityExceededError,
    InvalidStatusTransitionError,
    NotFoundError,
    ValidationError,
)
from course_allocation.models import (
    BookingCandidate,
    BookingStatus,
    Customer,
    LPOUsageRecord,
    OrderStatus,
    UsageEvent,
)
from course_allocation.selectors import candidate_overflow


@pytest.fixture
def lpo_booking(orchestrator, booking_data, customer, other_customer, line_item, head_scope):
    """4 LPO seats for Acme plus 2 directly paid seats for Globex."""
    return orchestrator.create_booking(
        booking_data,
        [
            {'customer_id': customer.pk, 'participants_count': 4, 'lpo_line_item_id': line_item.pk},
            {'customer_id': other_customer.pk, 'participants_count': 2},
        ],
        head_scope,
    )


@pytest.mark.django_db
class TestUpdateStatus:
    """Tests for update_status."""

    def test_forward_transitions(self, orchestrator, lpo_booking):
        booking = orchestrator.update_status(lpo_booking.pk, BookingStatus.IN_PROGRESS)
        assert booking.booking_status == BookingStatus.IN_PROGRESS

        booking = orchestrator.update_status(lpo_booking.pk, BookingStatus.COMPLETED)
        assert booking.booking_status == BookingStatus.COMPLETED

    @pytest.mark.parametrize('path,illegal', [
        ([], BookingStatus.COMPLETED),
        ([], BookingStatus.NOT_STARTED),
        ([BookingStatus.IN_PROGRESS], BookingStatus.NOT_STARTED),
        ([BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED], BookingStatus.IN_PROGRESS),
        ([BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED], BookingStatus.CANCELLED),
    ])
    def test_illegal_transitions(self, orchestrator, lpo_booking, path, illegal):
        for status in path:
            orchestrator.update_status(lpo_booking.pk, status)

        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            orchestrator.update_status(lpo_booking.pk, illegal)
        assert exc_info.value.requested == illegal

    def test_unknown_status(self, orchestrator, lpo_booking):
        with pytest.raises(ValidationError):
            orchestrator.update_status(lpo_booking.pk, 'postponed')

    def test_cancel_through_update_status_credits_back(self, orchestrator, lpo_booking, line_item):
        orchestrator.update_status(lpo_booking.pk, BookingStatus.CANCELLED)

        line_item.refresh_from_db()
        assert line_item.quantity_remaining == 10

    def test_branch_cannot_touch_head_booking(self, orchestrator, lpo_booking, branch_scope):
        with pytest.raises(NotFoundError):
            orchestrator.update_status(lpo_booking.pk, BookingStatus.IN_PROGRESS, branch_scope)

    def test_unknown_booking(self, orchestrator, db):
        with pytest.raises(NotFoundError):
            orchestrator.update_status(999, BookingStatus.IN_PROGRESS)


@pytest.mark.django_db
class TestCancelBooking:
    """Tests for cancel_booking."""

    def test_cancel_restores_lpo_seats(self, orchestrator, lpo_booking, line_item):
        booking = orchestrator.cancel_booking(lpo_booking.pk)

        assert booking.booking_status == BookingStatus.CANCELLED
        assert booking.cancelled_at is not None
        line_item.refresh_from_db()
        assert line_item.quantity_remaining == 10
        assert line_item.quantity_used == 0
        credit = LPOUsageRecord.objects.get(event_type=UsageEvent.CREDIT_BACK)
        assert credit.quantity_credited_back == 4
        assert credit.booking_id == lpo_booking.pk
        line_item.order.refresh_from_db()
        assert line_item.order.order_status == OrderStatus.CONFIRMED

    def test_cancel_in_progress(self, orchestrator, lpo_booking, line_item):
        orchestrator.update_status(lpo_booking.pk, BookingStatus.IN_PROGRESS)
        orchestrator.cancel_booking(lpo_booking.pk)

        line_item.refresh_from_db()
        assert line_item.quantity_remaining == 10

    def test_second_cancel_rejected_without_double_credit(self, orchestrator, ledger, lpo_booking, line_item):
        # Another booking draws on the same line item so a double credit would show
        ledger.use_quantity(line_item.pk, 3)
        orchestrator.cancel_booking(lpo_booking.pk)

        with pytest.raises(InvalidStatusTransitionError):
            orchestrator.cancel_booking(lpo_booking.pk)

        line_item.refresh_from_db()
        assert line_item.quantity_remaining == 7
        assert LPOUsageRecord.objects.filter(event_type=UsageEvent.CREDIT_BACK).count() == 1

    def test_completed_booking_cannot_be_cancelled(self, orchestrator, lpo_booking):
        orchestrator.update_status(lpo_booking.pk, BookingStatus.IN_PROGRESS)
        orchestrator.update_status(lpo_booking.pk, BookingStatus.COMPLETED)

        with pytest.raises(InvalidStatusTransitionError):
            orchestrator.cancel_booking(lpo_booking.pk)

    def test_cancel_without_lpo_customers(self, orchestrator, booking_data, customer, head_scope):
        booking = orchestrator.create_booking(
            booking_data, [{'customer_id': customer.pk, 'participants_count': 2}], head_scope,
        )

        cancelled = orchestrator.cancel_booking(booking.pk, head_scope)

        assert cancelled.booking_status == BookingStatus.CANCELLED
        assert not LPOUsageRecord.objects.exists()


@pytest.mark.django_db
class TestRecordCompletion:
    """Tests for record_completion."""

    def complete(self, orchestrator, booking):
        orchestrator.update_status(booking.pk, BookingStatus.IN_PROGRESS)
        orchestrator.update_status(booking.pk, BookingStatus.COMPLETED)

    def test_no_shows_returned_to_lpo(self, orchestrator, lpo_booking, customer, line_item):
        self.complete(orchestrator, lpo_booking)

        results = orchestrator.record_completion(
            lpo_booking.pk, {customer.pk: (3, 2)}, completion_date=date(2024, 1, 10),
        )

        assert len(results) == 1
        assert results[0].quantity_no_show == 1
        assert results[0].quantity_failed == 1
        line_item.refresh_from_db()
        assert line_item.quantity_used == 3
        assert lpo_booking.customers.get(customer=customer).reconciled_at is not None

    def test_reconciled_only_once(self, orchestrator, lpo_booking, customer, line_item):
        self.complete(orchestrator, lpo_booking)
        orchestrator.record_completion(lpo_booking.pk, {customer.pk: (2, 2)})

        assert orchestrator.record_completion(lpo_booking.pk, {customer.pk: (0, 0)}) == []

        line_item.refresh_from_db()
        assert line_item.quantity_used == 2

    def test_direct_customers_ignored(self, orchestrator, lpo_booking, other_customer):
        self.complete(orchestrator, lpo_booking)

        assert orchestrator.record_completion(lpo_booking.pk, {other_customer.pk: (1, 1)}) == []

    def test_requires_completed_booking(self, orchestrator, lpo_booking, customer):
        with pytest.raises(ValidationError):
            orchestrator.record_completion(lpo_booking.pk, {customer.pk: (4, 4)})


@pytest.mark.django_db
class TestRegisterCandidate:
    """Tests for register_candidate."""

    def test_register(self, orchestrator, lpo_booking, customer):
        candidate = orchestrator.register_candidate(
            lpo_booking.pk, customer.pk, "  Sam Worker ", identifier="P1234567",
        )

        assert candidate.full_name == "Sam Worker"
        assert candidate.booking_customer.customer == customer

    def test_name_required(self, orchestrator, lpo_booking, customer):
        with pytest.raises(ValidationError):
            orchestrator.register_candidate(lpo_booking.pk, customer.pk, " ")

    def test_customer_not_on_booking(self, orchestrator, lpo_booking, head_center):
        stranger = Customer.objects.create(name="Initech", created_by_center=head_center)
        with pytest.raises(NotFoundError):
            orchestrator.register_candidate(lpo_booking.pk, stranger.pk, "Pat")

    def test_cancelled_booking_rejected(self, orchestrator, lpo_booking, customer):
        orchestrator.cancel_booking(lpo_booking.pk)

        with pytest.raises(ValidationError):
            orchestrator.register_candidate(lpo_booking.pk, customer.pk, "Pat")

    def test_candidates_beyond_declared_seats_are_accepted(self, orchestrator, lpo_booking, other_customer):
        """Registration does not cap candidates at participants_count.

        Whether it should is undecided; overflow is reported instead.
        """
        for name in ("Ann", "Ben", "Cal"):
            orchestrator.register_candidate(lpo_booking.pk, other_customer.pk, name)

        overflow = candidate_overflow(lpo_booking.pk)
        assert [row.customer_id for row in overflow] == [other_customer.pk]
        assert overflow[0].candidate_count == 3
        assert overflow[0].participants_count == 2

    def test_booking_capacity_caps_candidates(self, orchestrator, lpo_booking, customer, other_customer):
        """Ten seats on the course means ten candidates, however they are split."""
        for number in range(6):
            orchestrator.register_candidate(lpo_booking.pk, customer.pk, f"Acme {number}")
        for number in range(4):
            orchestrator.register_candidate(lpo_booking.pk, other_customer.pk, f"Globex {number}")

        with pytest.raises(CapacityExceededError) as exc_info:
            orchestrator.register_candidate(lpo_booking.pk, customer.pk, "One Too Many")

        assert exc_info.value.requested == 11
        assert exc_info.value.capacity == 10
        assert BookingCandidate.objects.filter(booking_customer__booking=lpo_booking).count() == 10

    def test_removed_candidate_frees_a_place(self, orchestrator, lpo_booking, customer):
        candidates = [
            orchestrator.register_candidate(lpo_booking.pk, customer.pk, f"Trainee {number}")
            for number in range(10)
        ]
        candidates[0].delete()

        replacement = orchestrator.register_candidate(lpo_booking.pk, customer.pk, "Replacement")
        assert replacement.full_name == "Replacement"
