"""Training centers and customers."""

from django.db import models

from .base import AllocationModel


class Center(AllocationModel):
    """A training center.

    Exactly one center is expected to be the head ("main") center; it sees
    every center's data and is the only one with access to the LPO system.
    """

    class CenterType(models.TextChoices):
        MAIN = 'main', 'Main'
        BRANCH = 'branch', 'Branch'

    name = models.CharField(max_length=255)
    center_type = models.CharField(
        max_length=20,
        choices=CenterType.choices,
        default=CenterType.BRANCH,
    )
    city = models.CharField(max_length=100, blank=True, default='')
    country = models.CharField(max_length=100, blank=True, default='')
    contact_email = models.EmailField(blank=True, default='')
    can_create_domestic_courses = models.BooleanField(
        default=False,
        help_text="Whether this center may create domestic course bookings",
    )
    can_create_international_courses = models.BooleanField(
        default=True,
        help_text="Whether this center may create international course bookings",
    )
    is_active = models.BooleanField(default=True)

    class Meta:
        app_label = 'course_allocation'
        ordering = ['name']

    def __str__(self):
        return f"{self.name} ({self.center_type})"

    @property
    def is_head(self) -> bool:
        return self.center_type == self.CenterType.MAIN


class Customer(AllocationModel):
    """A corporate or individual customer booking seats on courses."""

    class CustomerType(models.TextChoices):
        CORPORATE = 'corporate', 'Corporate'
        INDIVIDUAL = 'individual', 'Individual'

    name = models.CharField(max_length=255)
    customer_type = models.CharField(
        max_length=20,
        choices=CustomerType.choices,
        default=CustomerType.CORPORATE,
    )
    company_name = models.CharField(max_length=255, blank=True, default='')
    contact_person = models.CharField(max_length=255, blank=True, default='')
    email = models.EmailField(blank=True, default='')
    phone = models.CharField(max_length=50, blank=True, default='')
    created_by_center = models.ForeignKey(
        Center,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='customers',
    )
    is_active = models.BooleanField(default=True)

    class Meta:
        app_label = 'course_allocation'
        ordering = ['name']

    def __str__(self):
        return self.name
