"""Models for django-course-allocation."""

from .base import AllocationModel, LiveManager, LiveQuerySet
from .bookings import (
    ACTIVE_BOOKING_STATUSES,
    ALLOWED_TRANSITIONS,
    BookingCandidate,
    BookingCustomer,
    BookingStatus,
    CourseBooking,
    CourseNumberSequence,
    CourseType,
)
from .catalog import CourseCategory, CourseCategoryLevel
from .centers import Center, Customer
from .entitlements import (
    USABLE_ORDER_STATUSES,
    LPOLineItem,
    LPONotificationLog,
    LPOOrder,
    LPOUsageRecord,
    OrderStatus,
    UsageEvent,
)
from .instructors import Instructor, InstructorCenterAssignment, InstructorQualification

__all__ = [
    'AllocationModel',
    'LiveManager',
    'LiveQuerySet',
    'Center',
    'Customer',
    'CourseCategory',
    'CourseCategoryLevel',
    'Instructor',
    'InstructorQualification',
    'InstructorCenterAssignment',
    'CourseType',
    'BookingStatus',
    'ACTIVE_BOOKING_STATUSES',
    'ALLOWED_TRANSITIONS',
    'CourseBooking',
    'BookingCustomer',
    'BookingCandidate',
    'CourseNumberSequence',
    'OrderStatus',
    'UsageEvent',
    'USABLE_ORDER_STATUSES',
    'LPOOrder',
    'LPOLineItem',
    'LPOUsageRecord',
    'LPONotificationLog',
]
