"""
Invoice queries and staff edits.

Invoice creation and every status change go through PaymentOrchestrator;
this service covers lookups (by id, appointment or number, and the
overdue list) and the two edits staff may make to an unpaid invoice
(discount and notes).
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from django.db import transaction

from core.exceptions import ValidationError
from core.services import BaseService

from billing.exceptions import InvoiceNotFoundError
from billing.locks import check_version
from billing.models import Invoice
from billing.state_machines import InvoiceStatus

if TYPE_CHECKING:
    from decimal import Decimal

    from django.db.models import QuerySet


class InvoiceService(BaseService):
    @classmethod
    def get_invoice(cls, invoice_id: uuid.UUID | str) -> Invoice:
        """
        Raises:
            InvoiceNotFoundError: Unknown invoice
        """
        invoice = cls._queryset().filter(pk=cls._parse_id(invoice_id, "invoice_id")).first()
        if invoice is None:
            raise InvoiceNotFoundError(
                f"Invoice {invoice_id} not found",
                details={"invoice_id": str(invoice_id)},
            )
        return invoice

    @classmethod
    def get_invoice_by_appointment(cls, appointment_id: uuid.UUID | str) -> Invoice:
        """
        Raises:
            InvoiceNotFoundError: Appointment has no invoice
        """
        invoice = (
            cls._queryset()
            .filter(appointment_id=cls._parse_id(appointment_id, "appointment_id"))
            .first()
        )
        if invoice is None:
            raise InvoiceNotFoundError(
                f"No invoice for appointment {appointment_id}",
                details={"appointment_id": str(appointment_id)},
            )
        return invoice

    @classmethod
    def get_invoice_by_number(cls, invoice_number: str) -> Invoice:
        """
        Raises:
            InvoiceNotFoundError: No invoice carries this number
        """
        number = (invoice_number or "").strip()
        invoice = cls._queryset().filter(invoice_number=number).first() if number else None
        if invoice is None:
            raise InvoiceNotFoundError(
                f"Invoice with number {invoice_number} not found",
                details={"invoice_number": str(invoice_number)},
            )
        return invoice

    @classmethod
    def list_invoices(cls, status: str | None = None) -> QuerySet[Invoice]:
        """
        Invoices newest first, optionally filtered by status.

        Raises:
            ValidationError: status is not an InvoiceStatus value
        """
        queryset = cls._queryset()
        if status:
            if status not in InvoiceStatus.values:
                raise ValidationError(
                    f"Unknown invoice status '{status}'",
                    details={"status": status, "allowed": list(InvoiceStatus.values)},
                )
            queryset = queryset.filter(status=status)
        return queryset

    @classmethod
    def list_overdue_invoices(cls) -> QuerySet[Invoice]:
        """Unpaid invoices issued more than BILLING_INVOICE_DUE_DAYS ago, oldest first."""
        return (
            cls._queryset()
            .exclude(status=InvoiceStatus.PAID)
            .filter(issue_date__lt=Invoice.overdue_cutoff())
            .order_by("issue_date")
        )

    @classmethod
    def update_invoice(
        cls,
        invoice_id: uuid.UUID | str,
        discount: Decimal | int | str | None = None,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> Invoice:
        """
        Change the discount and/or notes of an invoice.

        When expected_version is given the edit is rejected if someone else
        saved the invoice in between.

        Raises:
            InvoiceNotFoundError: Unknown invoice
            StaleRecordError: expected_version is out of date
            InvalidStateTransitionError: Discount on a non-PENDING invoice,
                or notes on a PAID one
            InvalidAmountError: Negative discount or discount above subtotal + tax
        """
        invoice_uuid = cls._parse_id(invoice_id, "invoice_id")
        with transaction.atomic():
            if expected_version is not None:
                invoice = check_version(Invoice, invoice_uuid, expected_version)
            else:
                invoice = Invoice.objects.select_for_update().filter(pk=invoice_uuid).first()
                if invoice is None:
                    raise InvoiceNotFoundError(
                        f"Invoice {invoice_id} not found",
                        details={"invoice_id": str(invoice_id)},
                    )

            if discount is not None:
                invoice.apply_discount(discount)
            if notes is not None:
                invoice.update_notes(notes)
            invoice.save()

        cls.get_logger().info(
            "Invoice updated",
            extra={
                "invoice_id": str(invoice.id),
                "version": invoice.version,
                "discount_changed": discount is not None,
                "notes_changed": notes is not None,
            },
        )
        return invoice

    @staticmethod
    def _queryset() -> QuerySet[Invoice]:
        return Invoice.objects.select_related("appointment").prefetch_related("items")

    @staticmethod
    def _parse_id(value: uuid.UUID | str, field: str) -> uuid.UUID:
        if isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(str(value))
        except ValueError as exc:
            raise InvoiceNotFoundError(
                f"Invoice {value} not found",
                details={field: str(value)},
            ) from exc
