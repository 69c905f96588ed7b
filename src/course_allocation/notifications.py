"""Notification dispatch for bookings and LPO expiry.

The allocation core only calls the two methods of ``NotificationDispatcher``.
Projects plug in their own delivery (email, chat) by pointing
``COURSE_ALLOCATION_NOTIFICATION_DISPATCHER`` at a subclass.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from django.utils.module_loading import import_string

from . import conf

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    """Result of a dispatch."""

    success: bool
    recipients: list[str] = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def ok(cls, recipients) -> "DispatchResult":
        return cls(success=True, recipients=list(recipients))

    @classmethod
    def fail(cls, recipients, error: str) -> "DispatchResult":
        return cls(success=False, recipients=list(recipients), error=error)


class NotificationDispatcher(ABC):
    """Abstract notification sink.

    Implementations may raise; callers log dispatch failures and carry on.
    """

    @abstractmethod
    def send_booking_created(self, booking, recipients: list[str]) -> DispatchResult:
        raise NotImplementedError

    @abstractmethod
    def send_entitlement_expiry(self, order, recipients: list[str], days_left: int) -> DispatchResult:
        raise NotImplementedError


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Dispatcher that logs notifications instead of delivering them (for development)."""

    def send_booking_created(self, booking, recipients: list[str]) -> DispatchResult:
        logger.info(
            f"Booking created: {booking.course_number} "
            f"{booking.start_date} - {booking.end_date} -> {', '.join(recipients) or '(no recipients)'}"
        )
        return DispatchResult.ok(recipients)

    def send_entitlement_expiry(self, order, recipients: list[str], days_left: int) -> DispatchResult:
        logger.info(
            f"LPO {order.lpo_number} expires in {days_left} days ({order.valid_until}) "
            f"-> {', '.join(recipients) or '(no recipients)'}"
        )
        return DispatchResult.ok(recipients)


def get_dispatcher(path: str | None = None) -> NotificationDispatcher:
    """Instantiate the configured dispatcher."""
    dispatcher_class = import_string(path or conf.get_setting('NOTIFICATION_DISPATCHER'))
    return dispatcher_class()


def _unique(addresses):
    seen = []
    for address in addresses:
        if address and address not in seen:
            seen.append(address)
    return seen


def booking_recipients(booking) -> list[str]:
    """Both instructors, every booked customer, then the admin address."""
    addresses = [
        booking.actual_instructor.email,
        booking.document_instructor.email,
    ]
    addresses.extend(
        bc.customer.email for bc in booking.customers.select_related('customer')
    )
    addresses.append(conf.admin_email())
    return _unique(addresses)


def expiry_recipients(order) -> list[str]:
    """The customer, the issuing center, then the admin address."""
    return _unique([
        order.customer.email,
        order.created_by_center.contact_email,
        conf.admin_email(),
    ])
