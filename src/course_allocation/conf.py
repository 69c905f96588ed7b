"""Django Course Allocation configuration.

All settings can be overridden in your Django settings.py.

Example:
    # settings.py
    COURSE_ALLOCATION_ADMIN_EMAIL = 'bookings@example.com'
    COURSE_ALLOCATION_EXPIRY_NOTICE_DAYS = 15
    COURSE_ALLOCATION_NOTIFICATION_DISPATCHER = 'myapp.notify.EmailDispatcher'
"""

from django.conf import settings


DEFAULTS = {
    # Days before valid_until at which the expiry notice goes out
    'EXPIRY_NOTICE_DAYS': 15,
    # Extra recipient for booking and expiry notifications
    'ADMIN_EMAIL': None,
    # Dotted path to a NotificationDispatcher subclass
    'NOTIFICATION_DISPATCHER': 'course_allocation.notifications.LoggingNotificationDispatcher',
    # Course number prefix per course type, counter resets each calendar year
    'COURSE_NUMBER_PREFIXES': {
        'domestic': 'D-',
        'international': 'I-',
    },
    'COURSE_NUMBER_PAD_WIDTH': 3,
    'DEFAULT_CURRENCY': 'AED',
}


def get_setting(name: str, default=None):
    """Get a setting with COURSE_ALLOCATION_ prefix.

    Falls back to the package default, then to ``default``.
    """
    if default is None:
        default = DEFAULTS.get(name)
    return getattr(settings, f"COURSE_ALLOCATION_{name}", default)


def expiry_notice_days() -> int:
    return int(get_setting('EXPIRY_NOTICE_DAYS'))


def admin_email():
    return get_setting('ADMIN_EMAIL') or None


def course_number_prefix(course_type: str) -> str:
    prefixes = get_setting('COURSE_NUMBER_PREFIXES')
    return prefixes.get(course_type, f"{course_type[:1].upper()}-")


def course_number_pad_width() -> int:
    return int(get_setting('COURSE_NUMBER_PAD_WIDTH'))


def default_currency() -> str:
    return get_setting('DEFAULT_CURRENCY')


# =============================================================================
# DEFAULT SETTINGS REFERENCE
# =============================================================================

# COURSE_ALLOCATION_EXPIRY_NOTICE_DAYS = 15
# COURSE_ALLOCATION_ADMIN_EMAIL = None
# COURSE_ALLOCATION_NOTIFICATION_DISPATCHER = 'course_allocation.notifications.LoggingNotificationDispatcher'
# COURSE_ALLOCATION_COURSE_NUMBER_PREFIXES = {'domestic': 'D-', 'international': 'I-'}
# COURSE_ALLOCATION_COURSE_NUMBER_PAD_WIDTH = 3
# COURSE_ALLOCATION_DEFAULT_CURRENCY = 'AED'
