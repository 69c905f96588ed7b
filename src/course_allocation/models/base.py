"""Abstract base model for allocation records.

Bookings, orders and line items are never hard-deleted: cancellation is the
terminal path for a booking, and ledger rows must stay around to reconcile
usage history. Soft deletion only hides a row from the default manager.

Usage:
    from course_allocation.models.base import AllocationModel

    class Center(AllocationModel):
        name = models.CharField(max_length=100)

        class Meta:
            app_label = 'course_allocation'
"""

from django.db import models
from django.utils import timezone


class LiveQuerySet(models.QuerySet):
    """QuerySet aware of the soft-delete column."""

    def live(self):
        return self.filter(deleted_at__isnull=True)

    def deleted(self):
        return self.filter(deleted_at__isnull=False)


class LiveManager(models.Manager.from_queryset(LiveQuerySet)):
    """Manager that hides soft-deleted rows.

    Use ``Model.all_objects`` to reach deleted rows.
    """

    def get_queryset(self):
        return super().get_queryset().live()


class AllocationModel(models.Model):
    """Timestamps plus soft delete.

    Attributes:
        created_at: When the record was created
        updated_at: When the record was last modified
        deleted_at: Soft delete timestamp, None while the record is live
    """

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    deleted_at = models.DateTimeField(null=True, blank=True)

    objects = LiveManager()
    all_objects = models.Manager.from_queryset(LiveQuerySet)()

    class Meta:
        abstract = True

    def delete(self, using=None, keep_parents=False):
        """Soft delete the object by setting deleted_at."""
        self.deleted_at = timezone.now()
        self.save(using=using, update_fields=['deleted_at', 'updated_at'])

    def restore(self):
        self.deleted_at = None
        self.save(update_fields=['deleted_at', 'updated_at'])

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
