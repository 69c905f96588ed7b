"""Shared fixtures for course allocation tests.

Dates are pinned with freezegun: 2024-01-01 is a Monday, so
2024-01-08 (Mon) to 2024-01-10 (Wed) is a three-day course in the next week.
"""

from datetime import date
from decimal import Decimal
from unittest import mock

import pytest
from freezegun import freeze_time

from course_allocation.ledger import EntitlementLedger
from course_allocation.models import (
    Center,
    CourseCategory,
    CourseCategoryLevel,
    Customer,
    Instructor,
    InstructorQualification,
)
from course_allocation.notifications import DispatchResult, NotificationDispatcher
from course_allocation.scope import CenterContext
from course_allocation.services import BookingOrchestrator


@pytest.fixture
def today():
    """Freeze the clock on Monday 2024-01-01."""
    with freeze_time("2024-01-01 09:00:00"):
        yield date(2024, 1, 1)


@pytest.fixture
def head_center(db):
    return Center.objects.create(
        name="Head Office",
        center_type=Center.CenterType.MAIN,
        contact_email="head@example.com",
        can_create_domestic_courses=True,
    )


@pytest.fixture
def branch_center(db):
    return Center.objects.create(
        name="North Branch",
        center_type=Center.CenterType.BRANCH,
        contact_email="north@example.com",
    )


@pytest.fixture
def head_scope(head_center):
    return CenterContext.for_center(head_center, user="head-admin")


@pytest.fixture
def branch_scope(branch_center):
    return CenterContext.for_center(branch_center, user="branch-admin")


@pytest.fixture
def category(db):
    return CourseCategory.objects.create(
        name="Scaffolding Inspection",
        duration_days=3,
        max_participants=10,
        total_levels=2,
    )


@pytest.fixture
def level1(category):
    return CourseCategoryLevel.objects.create(category=category, level_number=1)


@pytest.fixture
def level2(category):
    return CourseCategoryLevel.objects.create(category=category, level_number=2)


def make_instructor(first_name, center, category=None, highest_level=1, **kwargs):
    instructor = Instructor.objects.create(
        first_name=first_name,
        last_name="Trainer",
        email=f"{first_name.lower()}@example.com",
        primary_center=center,
        **kwargs,
    )
    if category is not None:
        InstructorQualification.objects.create(
            instructor=instructor,
            category=category,
            highest_level_qualified=highest_level,
        )
    return instructor


@pytest.fixture
def instructor_a(head_center, category):
    return make_instructor("Alice", head_center, category, highest_level=2)


@pytest.fixture
def instructor_b(head_center, category):
    return make_instructor("Bob", head_center, category, highest_level=1)


@pytest.fixture
def customer(head_center):
    return Customer.objects.create(
        name="Acme Contracting",
        email="training@acme.example.com",
        created_by_center=head_center,
    )


@pytest.fixture
def other_customer(head_center):
    return Customer.objects.create(
        name="Globex Engineering",
        email="hr@globex.example.com",
        created_by_center=head_center,
    )


@pytest.fixture
def ledger(db):
    return EntitlementLedger()


@pytest.fixture
def lpo_order(ledger, head_scope, customer, category, level1, today):
    """A confirmed LPO for 10 level-1 seats, valid until mid-year."""
    return ledger.create_order(
        head_scope,
        lpo_number="LPO-2024-001",
        customer_id=customer.pk,
        lpo_type="corporate",
        order_date=date(2023, 12, 15),
        valid_until=date(2024, 6, 30),
        line_items=[{
            'category_id': category.pk,
            'level_id': level1.pk,
            'quantity': 10,
            'unit_price': Decimal('250.00'),
        }],
    )


@pytest.fixture
def line_item(lpo_order):
    return lpo_order.line_items.get()


@pytest.fixture
def dispatcher():
    dispatcher = mock.Mock(spec=NotificationDispatcher)
    dispatcher.send_booking_created.return_value = DispatchResult.ok([])
    dispatcher.send_entitlement_expiry.return_value = DispatchResult.ok([])
    return dispatcher


@pytest.fixture
def orchestrator(db, dispatcher, today):
    return BookingOrchestrator(dispatcher=dispatcher)


@pytest.fixture
def booking_data(category, level1, instructor_a):
    return {
        'category_id': category.pk,
        'level_id': level1.pk,
        'start_date': date(2024, 1, 8),
        'actual_instructor_id': instructor_a.pk,
        'document_instructor_id': instructor_a.pk,
        'delivery_type': 'onsite',
        'course_type': 'domestic',
    }


@pytest.fixture
def instructor_factory(db):
    return make_instructor
