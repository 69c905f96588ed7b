"""Transaction helpers."""

import logging
from contextlib import contextmanager

from django.db import OperationalError, transaction

from .exceptions import ConcurrencyConflictError

logger = logging.getLogger(__name__)


@contextmanager
def atomic(using=None):
    """``transaction.atomic`` that reports lock failures as ConcurrencyConflictError.

    Lock wait timeouts and deadlocks surface from the backend as
    OperationalError. The transaction is rolled back before the domain
    error reaches the caller.
    """
    try:
        with transaction.atomic(using=using):
            yield
    except OperationalError as exc:
        logger.warning(f"Lock conflict on database '{using or 'default'}': {exc}")
        raise ConcurrencyConflictError(str(exc)) from exc
