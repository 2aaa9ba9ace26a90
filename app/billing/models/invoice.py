"""
Invoice model: the bill for one completed appointment.

Usage:
    from billing.models import Invoice
    from billing.state_machines import InvoiceStatus

    invoice = Invoice.create_for_appointment(appointment, subtotal=Decimal("150000"))
    invoice.save()

    invoice.pay_by_cash()  # pending -> paid
    invoice.save()
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from django_fsm import FSMField, can_proceed, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel

from billing.exceptions import InvalidStateTransitionError
from billing.money import compute_total, ensure_non_negative
from billing.state_machines import (
    GuardedTransitionsMixin,
    InvoiceStatus,
    guarded_transition,
)

if TYPE_CHECKING:
    from clinic.models import Appointment


def generate_invoice_number() -> str:
    """INV-20261019-9F2C1A style number; uniqueness is enforced by the column."""
    prefix = settings.BILLING_INVOICE_NUMBER_PREFIX
    return f"{prefix}-{timezone.now():%Y%m%d}-{secrets.token_hex(3).upper()}"


class Invoice(GuardedTransitionsMixin, UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    Financial record for one appointment's charges.

    State Flow (Cash):
        PENDING -> PAID

    State Flow (Online):
        PENDING -> PROCESSING_ONLINE -> PAID
        PENDING -> PROCESSING_ONLINE -> FAILED -> PROCESSING_ONLINE (retry)

    Fields:
        appointment: The invoiced appointment (one invoice per appointment)
        invoice_number: Unique human-readable number
        subtotal/discount/tax/total_amount: total = subtotal - discount + tax
        status: Current FSM state (protected, change via transitions only)
        paid_at: Set once, when the invoice becomes PAID
        version: Optimistic locking version

    Note:
        Invoices are never deleted; payments reference them with PROTECT.
    """

    # ==========================================================================
    # Relationships & Identity
    # ==========================================================================

    appointment = models.OneToOneField(
        "clinic.Appointment",
        on_delete=models.PROTECT,
        related_name="invoice",
        help_text="Appointment this invoice bills",
    )

    invoice_number = models.CharField(
        max_length=32,
        unique=True,
        help_text="Human-readable invoice number",
    )

    issue_date = models.DateTimeField(default=timezone.now)

    # ==========================================================================
    # Amounts
    # ==========================================================================

    subtotal = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    discount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    tax = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    total_amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="subtotal - discount + tax",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=InvoiceStatus.PENDING,
        choices=InvoiceStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the invoice (managed by FSM)",
    )

    paid_at = models.DateTimeField(null=True, blank=True)

    notes = models.TextField(blank=True, default="")

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-issue_date"]
        indexes = [
            models.Index(fields=["status", "issue_date"], name="billing_inv_status_issued_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(subtotal__gte=0) & Q(discount__gte=0) & Q(tax__gte=0) & Q(total_amount__gte=0),
                name="invoice_amounts_non_negative",
            ),
            models.CheckConstraint(
                condition=Q(total_amount=F("subtotal") - F("discount") + F("tax")),
                name="invoice_total_matches_components",
            ),
        ]

    def __str__(self) -> str:
        return f"Invoice({self.invoice_number}, {self.status}, {self.total_amount})"

    @classmethod
    def create_for_appointment(
        cls,
        appointment: Appointment,
        subtotal: Decimal,
        discount: Decimal | int = 0,
        tax: Decimal | int = 0,
        notes: str = "",
        invoice_number: str | None = None,
    ) -> Invoice:
        """
        Build a new PENDING invoice with a consistent total.

        Note: Does not save - caller must save after calling.

        Raises:
            InvalidAmountError: If an amount is negative or the discount
                exceeds subtotal + tax
        """
        total = compute_total(subtotal, discount, tax)
        return cls(
            appointment=appointment,
            invoice_number=invoice_number or generate_invoice_number(),
            subtotal=ensure_non_negative(subtotal, "subtotal"),
            discount=ensure_non_negative(discount, "discount"),
            tax=ensure_non_negative(tax, "tax"),
            total_amount=total,
            notes=notes or "",
        )

    # ==========================================================================
    # Guards
    # ==========================================================================

    def can_pay_by_cash(self) -> bool:
        return can_proceed(self.pay_by_cash)

    def can_start_online_payment(self) -> bool:
        return can_proceed(self.start_online_payment)

    @property
    def is_paid(self) -> bool:
        return self.status == InvoiceStatus.PAID

    @staticmethod
    def overdue_cutoff() -> datetime:
        return timezone.now() - timedelta(days=settings.BILLING_INVOICE_DUE_DAYS)

    @property
    def is_overdue(self) -> bool:
        """Unpaid and issued more than BILLING_INVOICE_DUE_DAYS ago."""
        return not self.is_paid and self.issue_date < self.overdue_cutoff()

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @guarded_transition()
    @transition(
        field=status,
        source=InvoiceStatus.PENDING,
        target=InvoiceStatus.PAID,
    )
    def pay_by_cash(self):
        """
        Settle the invoice at the front desk.

        Transition: PENDING -> PAID
        """
        self.paid_at = timezone.now()

    @guarded_transition()
    @transition(
        field=status,
        source=[InvoiceStatus.PENDING, InvoiceStatus.FAILED],
        target=InvoiceStatus.PROCESSING_ONLINE,
    )
    def start_online_payment(self):
        """
        Hand the invoice over to an online gateway.

        Transition: PENDING/FAILED -> PROCESSING_ONLINE

        FAILED is accepted so a customer can retry after a declined
        online attempt.
        """

    @guarded_transition()
    @transition(
        field=status,
        source=InvoiceStatus.PROCESSING_ONLINE,
        target=InvoiceStatus.PAID,
    )
    def mark_paid(self):
        """
        Gateway confirmed the payment.

        Transition: PROCESSING_ONLINE -> PAID
        """
        self.paid_at = timezone.now()

    @guarded_transition()
    @transition(
        field=status,
        source=InvoiceStatus.PROCESSING_ONLINE,
        target=InvoiceStatus.FAILED,
    )
    def mark_failed(self):
        """
        Gateway reported a failed payment.

        Transition: PROCESSING_ONLINE -> FAILED
        """

    # ==========================================================================
    # Guarded Mutations
    # ==========================================================================

    def apply_discount(self, amount: Decimal | int | str) -> None:
        """
        Replace the discount and recompute the total.

        Tax is charged on the subtotal and does not change with the discount.

        Only PENDING invoices can be discounted; an invoice that is being
        paid online must keep the amount the gateway was given.

        Raises:
            InvalidStateTransitionError: If status is not PENDING
            InvalidAmountError: If amount is negative or exceeds subtotal + tax
        """
        if self.status != InvoiceStatus.PENDING:
            raise InvalidStateTransitionError(
                action="apply_discount",
                current_state=self.status,
                expected_state=InvoiceStatus.PENDING,
            )
        discount = ensure_non_negative(amount, "discount")
        self.total_amount = compute_total(self.subtotal, discount, self.tax)
        self.discount = discount

    def update_notes(self, text: str) -> None:
        """
        Replace the free-text notes.

        Raises:
            InvalidStateTransitionError: If the invoice is PAID
        """
        if self.status == InvoiceStatus.PAID:
            raise InvalidStateTransitionError(
                action="update_notes",
                current_state=self.status,
                expected_state=", ".join(
                    state for state in InvoiceStatus.values if state != InvoiceStatus.PAID
                ),
            )
        self.notes = text or ""
