"""Exceptions for django-course-allocation.

Every business-rule violation is raised before any write. Each exception
carries the offending values as attributes so callers can render an
actionable message without re-reading domain state.
"""


class AllocationError(Exception):
    """Base exception for allocation errors."""
    pass


class ValidationError(AllocationError):
    """Raised when input is malformed or missing."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class CenterPermissionError(ValidationError):
    """Raised when the center context lacks the capability for an operation."""

    def __init__(self, center_id, capability: str):
        super().__init__(
            f"Center {center_id} does not have permission: {capability}",
            field='center_context',
        )
        self.center_id = center_id
        self.capability = capability


class NotFoundError(AllocationError):
    """Raised when a record does not exist or is not visible in scope."""

    def __init__(self, entity: str, identifier):
        super().__init__(f"{entity} {identifier} not found or access denied")
        self.entity = entity
        self.identifier = identifier


class CapacityExceededError(AllocationError):
    """Raised when requested participants exceed course capacity."""

    def __init__(self, requested: int, capacity: int):
        super().__init__(
            f"Total participants ({requested}) exceeds course capacity ({capacity})"
        )
        self.requested = requested
        self.capacity = capacity


class InstructorConflictError(AllocationError):
    """Raised when an instructor already holds an overlapping booking."""

    def __init__(self, instructor_id, role: str, start_date, end_date, conflict_count: int):
        super().__init__(
            f"{role.capitalize()} instructor {instructor_id} is not available "
            f"between {start_date} and {end_date} "
            f"({conflict_count} conflicting booking(s))"
        )
        self.instructor_id = instructor_id
        self.role = role
        self.start_date = start_date
        self.end_date = end_date
        self.conflict_count = conflict_count


class InsufficientEntitlementError(AllocationError):
    """Raised when an LPO line item cannot cover the requested seats."""

    def __init__(self, line_item_id, requested: int, remaining: int):
        super().__init__(
            f"Insufficient LPO quantity on line item {line_item_id}: "
            f"requested {requested} seats, {remaining} remaining"
        )
        self.line_item_id = line_item_id
        self.requested = requested
        self.remaining = remaining


class ExpiredEntitlementError(AllocationError):
    """Raised when the LPO order backing a line item has expired."""

    def __init__(self, order_id, valid_until, as_of):
        super().__init__(
            f"LPO {order_id} expired on {valid_until} (checked as of {as_of})"
        )
        self.order_id = order_id
        self.valid_until = valid_until
        self.as_of = as_of


class InvalidStatusTransitionError(AllocationError):
    """Raised when a booking status change is not in the transition table."""

    def __init__(self, booking_id, current: str, requested: str):
        super().__init__(
            f"Cannot change status of booking {booking_id} from {current} to {requested}"
        )
        self.booking_id = booking_id
        self.current = current
        self.requested = requested


class ConcurrencyConflictError(AllocationError):
    """Raised when a row lock cannot be acquired (timeout or deadlock).

    The whole operation may be retried by the caller; nothing was committed.
    """
    pass
