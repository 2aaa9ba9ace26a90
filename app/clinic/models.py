"""
Appointment models.

Appointment is the unit of work billed by an invoice. The services
performed during an appointment are recorded as AppointmentServiceLine
rows whose unit price is captured at the time of the visit, so later
catalogue price changes do not alter past bills.

Usage:
    from clinic.models import Appointment, AppointmentStatus

    appointment = Appointment.objects.create(
        owner_name="Nguyen Van A",
        owner_email="owner@example.com",
        pet_name="Milo",
        scheduled_at=timezone.now(),
    )
    appointment.service_lines.create(
        service=checkup, quantity=1, unit_price=checkup.price
    )
"""

from __future__ import annotations

from decimal import Decimal

from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class AppointmentStatus(models.TextChoices):
    """
    Appointment lifecycle.

    Only COMPLETED appointments can be invoiced.
    """

    PENDING = "pending", "Pending"
    CONFIRMED = "confirmed", "Confirmed"
    IN_PROGRESS = "in_progress", "In Progress"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


class ClinicService(UUIDPrimaryKeyMixin, BaseModel):
    """Catalogue entry for a billable service (checkup, vaccination, grooming)."""

    name = models.CharField(max_length=200, unique=True)
    price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Current catalogue price",
    )
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["name"]
        verbose_name = "Clinic Service"
        verbose_name_plural = "Clinic Services"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(price__gte=0),
                name="clinic_service_price_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return self.name


class Appointment(UUIDPrimaryKeyMixin, BaseModel):
    """
    A visit booked for a pet.

    Fields:
        owner_name/owner_email: Contact used for billing emails
        pet_name: Patient name shown on the invoice
        scheduled_at: Booked start time
        status: Lifecycle status (see AppointmentStatus)
    """

    owner_name = models.CharField(max_length=200)
    owner_email = models.EmailField()
    pet_name = models.CharField(max_length=100)
    scheduled_at = models.DateTimeField()
    status = models.CharField(
        max_length=20,
        choices=AppointmentStatus.choices,
        default=AppointmentStatus.PENDING,
        db_index=True,
    )

    class Meta:
        ordering = ["-scheduled_at"]
        indexes = [
            models.Index(fields=["status", "scheduled_at"], name="clinic_appt_status_sched_idx"),
        ]

    def __str__(self) -> str:
        return f"Appointment({self.id}, {self.pet_name}, {self.status})"

    @property
    def is_completed(self) -> bool:
        return self.status == AppointmentStatus.COMPLETED


class AppointmentServiceLine(UUIDPrimaryKeyMixin, BaseModel):
    """A service performed during an appointment, priced at visit time."""

    appointment = models.ForeignKey(
        Appointment,
        on_delete=models.CASCADE,
        related_name="service_lines",
    )
    service = models.ForeignKey(
        ClinicService,
        on_delete=models.PROTECT,
        related_name="appointment_lines",
    )
    quantity = models.PositiveIntegerField(default=1)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)

    class Meta:
        ordering = ["created_at"]
        verbose_name = "Appointment Service Line"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gt=0),
                name="service_line_quantity_positive",
            ),
            models.CheckConstraint(
                condition=models.Q(unit_price__gte=0),
                name="service_line_unit_price_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.service} x{self.quantity}"

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity
