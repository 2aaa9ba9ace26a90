"""
Tests for the read-only appointment queries used by billing.
"""

import uuid
from decimal import Decimal

import pytest

from clinic.models import AppointmentStatus
from clinic.selectors import get_appointment, get_service_lines
from clinic.tests.factories import AppointmentFactory, AppointmentServiceLineFactory


class TestGetAppointment:
    """Tests for get_appointment."""

    def test_returns_appointment(self, db):
        """Should return the appointment with the given id."""
        appointment = AppointmentFactory()

        assert get_appointment(appointment.id) == appointment

    def test_returns_none_for_unknown_id(self, db):
        """Should return None when no appointment matches."""
        assert get_appointment(uuid.uuid4()) is None

    def test_is_completed(self, db):
        """Should report completion from status."""
        assert AppointmentFactory(status=AppointmentStatus.COMPLETED).is_completed
        assert not AppointmentFactory(status=AppointmentStatus.IN_PROGRESS).is_completed


class TestGetServiceLines:
    """Tests for get_service_lines."""

    def test_returns_lines_with_totals(self, db):
        """Should return every line of the appointment with its total."""
        appointment = AppointmentFactory()
        AppointmentServiceLineFactory(
            appointment=appointment, quantity=2, unit_price=Decimal("50000.00")
        )
        AppointmentServiceLineFactory(
            appointment=appointment, quantity=1, unit_price=Decimal("25000.50")
        )
        AppointmentServiceLineFactory()  # other appointment

        lines = get_service_lines(appointment)

        assert len(lines) == 2
        assert sum(line.line_total for line in lines) == Decimal("125000.50")
