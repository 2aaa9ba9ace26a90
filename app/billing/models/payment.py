"""
Payment model: one attempt to settle an invoice.

Usage:
    from billing.models import Payment

    # Cash at the front desk
    payment = Payment.create_cash(invoice, amount=invoice.total_amount, received_by=staff)
    payment.process_cash()  # pending -> success
    payment.save()

    # Online through a gateway
    payment = Payment.create_online(
        invoice,
        amount=invoice.total_amount,
        payment_method=PaymentMethod.VNPAY,
        idempotency_key=key,
    )
    payment.save()
    payment.start_online_payment()  # pending -> processing
    payment.save()
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from django_fsm import FSMField, can_proceed, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel

from billing.exceptions import (
    InvalidAmountError,
    InvalidRefundAmountError,
    PaymentValidationError,
)
from billing.money import ZERO, ensure_positive, to_money
from billing.state_machines import (
    GuardedTransitionsMixin,
    PaymentMethod,
    PaymentStatus,
    guarded_transition,
)

if TYPE_CHECKING:
    from typing import Any

    from billing.models.invoice import Invoice


def _is_cash(payment: Payment) -> bool:
    return payment.payment_method == PaymentMethod.CASH


def _is_online(payment: Payment) -> bool:
    return payment.payment_method != PaymentMethod.CASH


class Payment(GuardedTransitionsMixin, UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    A single cash or online payment attempt against an invoice.

    State Flow (Cash):
        PENDING -> SUCCESS -> REFUNDED

    State Flow (Online):
        PENDING -> PROCESSING -> SUCCESS -> REFUNDED
        PENDING -> PROCESSING -> FAILED

    Fields:
        invoice: Invoice this payment settles
        payment_method: cash or one of the online gateways
        amount: Fixed at creation; changing it on a saved row raises
        transaction_id: Gateway transaction number, set only by mark_success
        idempotency_key: Required and unique for online payments, null for cash
        status: Current FSM state (protected)
        received_by: Staff member who took a cash payment
        gateway_response: Raw gateway payload of the settling callback
        refund_*: Populated by refund()

    Note:
        The payment id (hex) is the order reference sent to the gateway
        (vnp_TxnRef), so callbacks resolve back to exactly one row.
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    invoice = models.ForeignKey(
        "billing.Invoice",
        on_delete=models.PROTECT,
        related_name="payments",
    )

    received_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="received_payments",
        help_text="Staff member who received a cash payment",
    )

    # ==========================================================================
    # Amount & Method
    # ==========================================================================

    payment_method = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
    )

    amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        help_text="Amount charged; immutable once saved",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=PaymentStatus.PENDING,
        choices=PaymentStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the payment (managed by FSM)",
    )

    paid_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Gateway Integration
    # ==========================================================================

    transaction_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Gateway transaction number (vnp_TransactionNo)",
    )

    idempotency_key = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Client or server generated key preventing duplicate online payments",
    )

    gateway_response = models.JSONField(null=True, blank=True)

    # ==========================================================================
    # Refund
    # ==========================================================================

    refund_amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        default=Decimal("0.00"),
    )
    refund_date = models.DateTimeField(null=True, blank=True)
    refund_reason = models.TextField(blank=True, default="")

    notes = models.TextField(blank=True, default="")

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["invoice", "status"], name="billing_pay_invoice_status_idx"),
            models.Index(fields=["status", "updated_at"], name="billing_pay_status_updated_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name="payment_amount_positive",
            ),
            models.CheckConstraint(
                condition=Q(refund_amount__gte=0) & Q(refund_amount__lte=F("amount")),
                name="payment_refund_within_amount",
            ),
            models.CheckConstraint(
                condition=(
                    Q(payment_method=PaymentMethod.CASH, idempotency_key__isnull=True)
                    | (~Q(payment_method=PaymentMethod.CASH) & Q(idempotency_key__isnull=False))
                ),
                name="payment_idempotency_key_online_only",
            ),
        ]

    def __str__(self) -> str:
        return f"Payment({self.id}, {self.payment_method}, {self.status}, {self.amount})"

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._persisted_amount = instance.__dict__.get("amount")
        return instance

    def save(self, *args, **kwargs):
        """
        Save, refusing any change to a persisted amount.

        Raises:
            PaymentValidationError: If amount differs from the stored value
        """
        persisted = getattr(self, "_persisted_amount", None)
        if persisted is not None and to_money(self.amount) != persisted:
            raise PaymentValidationError(
                "Payment amount cannot be changed after creation",
                details={"payment_id": str(self.id), "amount": str(persisted)},
            )
        super().save(*args, **kwargs)
        self._persisted_amount = to_money(self.amount)

    # ==========================================================================
    # Factories
    # ==========================================================================

    @classmethod
    def create_cash(
        cls,
        invoice: Invoice,
        amount: Decimal | int | str,
        received_by: Any = None,
        notes: str = "",
    ) -> Payment:
        """
        Build a PENDING cash payment.

        Note: Does not save - caller must save after calling.
        """
        return cls(
            invoice=invoice,
            payment_method=PaymentMethod.CASH,
            amount=ensure_positive(amount),
            received_by=received_by,
            notes=notes or "",
        )

    @classmethod
    def create_online(
        cls,
        invoice: Invoice,
        amount: Decimal | int | str,
        payment_method: str,
        idempotency_key: str,
        notes: str = "",
    ) -> Payment:
        """
        Build a PENDING online payment.

        Note: Does not save - caller must save after calling.

        Raises:
            PaymentValidationError: If the method is CASH or the key is empty
        """
        if payment_method not in PaymentMethod.online_methods():
            raise PaymentValidationError(
                f"'{payment_method}' is not an online payment method",
                details={"payment_method": payment_method},
            )
        if not idempotency_key or not idempotency_key.strip():
            raise PaymentValidationError("Online payments require an idempotency key")
        return cls(
            invoice=invoice,
            payment_method=payment_method,
            amount=ensure_positive(amount),
            idempotency_key=idempotency_key.strip(),
            notes=notes or "",
        )

    # ==========================================================================
    # Properties & Guards
    # ==========================================================================

    @property
    def is_cash(self) -> bool:
        return _is_cash(self)

    @property
    def is_online(self) -> bool:
        return _is_online(self)

    @property
    def order_reference(self) -> str:
        """Order id sent to the gateway."""
        return self.id.hex

    def can_refund(self) -> bool:
        return can_proceed(self.refund)

    def validate_refund_amount(self, amount: Decimal | int | str) -> Decimal:
        """
        Check 0 < amount <= self.amount.

        Raises:
            InvalidRefundAmountError: If the amount is outside that range
        """
        try:
            refund = to_money(amount)
        except InvalidAmountError as exc:
            raise InvalidRefundAmountError(exc.message, details=exc.details) from exc
        if refund <= ZERO or refund > self.amount:
            raise InvalidRefundAmountError(
                f"Refund amount must be greater than 0 and at most {self.amount}",
                details={
                    "payment_id": str(self.id),
                    "refund_amount": str(refund),
                    "payment_amount": str(self.amount),
                },
            )
        return refund

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @guarded_transition(condition_error="Only cash payments can be processed at the desk")
    @transition(
        field=status,
        source=PaymentStatus.PENDING,
        target=PaymentStatus.SUCCESS,
        conditions=[_is_cash],
    )
    def process_cash(self):
        """
        Record a cash payment as received.

        Transition: PENDING -> SUCCESS (CASH only)
        """
        self.paid_at = timezone.now()

    @guarded_transition(condition_error="Cash payments cannot be sent to an online gateway")
    @transition(
        field=status,
        source=PaymentStatus.PENDING,
        target=PaymentStatus.PROCESSING,
        conditions=[_is_online],
    )
    def start_online_payment(self):
        """
        Customer has been redirected to the gateway.

        Transition: PENDING -> PROCESSING (online methods only)
        """

    @guarded_transition()
    @transition(
        field=status,
        source=PaymentStatus.PROCESSING,
        target=PaymentStatus.SUCCESS,
    )
    def mark_success(self, transaction_id: str, gateway_response: dict | None = None):
        """
        Gateway confirmed the payment.

        Transition: PROCESSING -> SUCCESS

        This is the only place transaction_id is assigned.
        """
        if not transaction_id:
            raise PaymentValidationError(
                "A gateway transaction id is required to mark a payment successful",
                details={"payment_id": str(self.id)},
            )
        self.transaction_id = transaction_id
        self.gateway_response = gateway_response
        self.paid_at = timezone.now()

    @guarded_transition()
    @transition(
        field=status,
        source=PaymentStatus.PROCESSING,
        target=PaymentStatus.FAILED,
    )
    def mark_failed(self, gateway_response: dict | None = None):
        """
        Gateway reported failure (declined, cancelled, expired).

        Transition: PROCESSING -> FAILED
        """
        self.gateway_response = gateway_response

    @guarded_transition()
    @transition(
        field=status,
        source=PaymentStatus.SUCCESS,
        target=PaymentStatus.REFUNDED,
    )
    def refund(self, amount: Decimal | int | str, reason: str = ""):
        """
        Refund all or part of a successful payment.

        Transition: SUCCESS -> REFUNDED

        Raises:
            InvalidRefundAmountError: If amount <= 0 or amount > self.amount
        """
        self.refund_amount = self.validate_refund_amount(amount)
        self.refund_date = timezone.now()
        self.refund_reason = reason or ""
