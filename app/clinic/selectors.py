"""
Read-only appointment queries used by other apps.

Other apps go through these functions instead of touching clinic models
directly, which keeps the billing side read-only with respect to
appointments.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from clinic.models import Appointment

if TYPE_CHECKING:
    import uuid

    from clinic.models import AppointmentServiceLine


def get_appointment(appointment_id: uuid.UUID | str, *, for_update: bool = False) -> Appointment | None:
    """Return the appointment or None. for_update locks the row (needs a transaction)."""
    queryset = Appointment.objects.all()
    if for_update:
        queryset = queryset.select_for_update()
    return queryset.filter(pk=appointment_id).first()


def get_service_lines(appointment: Appointment) -> list[AppointmentServiceLine]:
    return list(appointment.service_lines.select_related("service").all())
