"""
Tests for the Invoice and Payment state machines.

Transitions run on unsaved-or-saved instances; guard violations must
surface as InvalidStateTransitionError with the states involved.
"""

from decimal import Decimal

import pytest

from billing.exceptions import (
    InvalidRefundAmountError,
    InvalidStateTransitionError,
    PaymentValidationError,
)
from billing.state_machines import InvoiceStatus, PaymentStatus
from billing.tests.factories import CashPaymentFactory, InvoiceFactory, OnlinePaymentFactory


class TestInvoiceTransitions:
    """Tests for Invoice FSM."""

    def test_pay_by_cash_from_pending(self, pending_invoice):
        """Should move PENDING -> PAID and stamp paid_at."""
        pending_invoice.pay_by_cash()

        assert pending_invoice.status == InvoiceStatus.PAID
        assert pending_invoice.paid_at is not None

    def test_pay_by_cash_while_processing_online_rejected(self, processing_invoice):
        """Should refuse cash while an online payment is in flight."""
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            processing_invoice.pay_by_cash()

        error = exc_info.value
        assert error.action == "pay_by_cash"
        assert error.current_state == InvoiceStatus.PROCESSING_ONLINE
        assert error.expected_state == InvoiceStatus.PENDING
        assert processing_invoice.status == InvoiceStatus.PROCESSING_ONLINE

    @pytest.mark.parametrize("source", [InvoiceStatus.PENDING, InvoiceStatus.FAILED])
    def test_start_online_payment_sources(self, db, source):
        """Should allow online payment from PENDING and from FAILED (retry)."""
        invoice = InvoiceFactory(status=source)

        assert invoice.can_start_online_payment()
        invoice.start_online_payment()

        assert invoice.status == InvoiceStatus.PROCESSING_ONLINE

    def test_start_online_payment_on_paid_rejected(self, paid_invoice):
        """Should refuse to restart payment for a paid invoice."""
        assert not paid_invoice.can_start_online_payment()

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            paid_invoice.start_online_payment()

        assert "pending" in exc_info.value.expected_state
        assert "failed" in exc_info.value.expected_state

    def test_mark_paid_from_processing(self, processing_invoice):
        """Should move PROCESSING_ONLINE -> PAID."""
        processing_invoice.mark_paid()

        assert processing_invoice.status == InvoiceStatus.PAID
        assert processing_invoice.paid_at is not None

    def test_mark_paid_from_pending_rejected(self, pending_invoice):
        """Should refuse to mark a PENDING invoice paid."""
        with pytest.raises(InvalidStateTransitionError):
            pending_invoice.mark_paid()

        assert pending_invoice.paid_at is None

    def test_mark_failed_from_processing(self, processing_invoice):
        """Should move PROCESSING_ONLINE -> FAILED."""
        processing_invoice.mark_failed()

        assert processing_invoice.status == InvoiceStatus.FAILED

    def test_paid_is_terminal(self, paid_invoice):
        """Should allow no transition out of PAID."""
        for action in ("pay_by_cash", "start_online_payment", "mark_paid", "mark_failed"):
            with pytest.raises(InvalidStateTransitionError):
                getattr(paid_invoice, action)()

    def test_status_cannot_be_assigned_directly(self, pending_invoice):
        """Should protect the status field from direct writes."""
        with pytest.raises(AttributeError):
            pending_invoice.status = InvoiceStatus.PAID


class TestPaymentTransitions:
    """Tests for Payment FSM."""

    def test_process_cash(self, pending_invoice):
        """Should move a cash payment PENDING -> SUCCESS."""
        payment = CashPaymentFactory(invoice=pending_invoice)

        payment.process_cash()

        assert payment.status == PaymentStatus.SUCCESS
        assert payment.paid_at is not None

    def test_process_cash_on_online_payment_rejected(self, pending_online_payment):
        """Should report the failed condition with its message."""
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            pending_online_payment.process_cash()

        assert "Only cash payments" in exc_info.value.message
        assert exc_info.value.details["condition_failed"] is True
        assert pending_online_payment.status == PaymentStatus.PENDING

    def test_start_online_payment_on_cash_rejected(self, pending_invoice):
        """Should keep cash payments away from the gateway."""
        payment = CashPaymentFactory(invoice=pending_invoice)

        with pytest.raises(InvalidStateTransitionError):
            payment.start_online_payment()

    def test_mark_success_sets_transaction(self, processing_online_payment):
        """Should record transaction id, raw response and paid_at."""
        processing_online_payment.mark_success("14123456", {"vnp_ResponseCode": "00"})

        assert processing_online_payment.status == PaymentStatus.SUCCESS
        assert processing_online_payment.transaction_id == "14123456"
        assert processing_online_payment.gateway_response == {"vnp_ResponseCode": "00"}
        assert processing_online_payment.paid_at is not None

    def test_mark_success_requires_transaction_id(self, processing_online_payment):
        """Should refuse success without a gateway transaction id."""
        with pytest.raises(PaymentValidationError):
            processing_online_payment.mark_success("")

        assert processing_online_payment.status == PaymentStatus.PROCESSING

    def test_mark_success_from_pending_rejected(self, pending_online_payment):
        """Should require PROCESSING."""
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            pending_online_payment.mark_success("1")

        assert exc_info.value.current_state == PaymentStatus.PENDING
        assert exc_info.value.expected_state == PaymentStatus.PROCESSING

    def test_mark_failed(self, processing_online_payment):
        """Should move PROCESSING -> FAILED keeping the gateway response."""
        processing_online_payment.mark_failed({"vnp_ResponseCode": "24"})

        assert processing_online_payment.status == PaymentStatus.FAILED
        assert processing_online_payment.gateway_response == {"vnp_ResponseCode": "24"}

    def test_refund_partial(self, success_online_payment):
        """Should move SUCCESS -> REFUNDED with amount and reason."""
        success_online_payment.refund(Decimal("50000"), "Overcharged")

        assert success_online_payment.status == PaymentStatus.REFUNDED
        assert success_online_payment.refund_amount == Decimal("50000.00")
        assert success_online_payment.refund_reason == "Overcharged"
        assert success_online_payment.refund_date is not None

    @pytest.mark.parametrize("amount", ["0", "-1", "200000.01"])
    def test_refund_amount_out_of_range(self, success_online_payment, amount):
        """Should reject refunds outside (0, amount] and stay SUCCESS."""
        with pytest.raises(InvalidRefundAmountError):
            success_online_payment.refund(amount)

        assert success_online_payment.status == PaymentStatus.SUCCESS

    def test_refund_twice_rejected(self, success_online_payment):
        """Should allow a single refund per payment."""
        success_online_payment.refund(Decimal("1000"))

        with pytest.raises(InvalidStateTransitionError):
            success_online_payment.refund(Decimal("1000"))

    def test_refund_of_failed_payment_rejected(self, processing_online_payment):
        """Should only refund successful payments."""
        processing_online_payment.mark_failed()

        assert not processing_online_payment.can_refund()
        with pytest.raises(InvalidStateTransitionError):
            processing_online_payment.refund(Decimal("1000"))

    def test_ensure_can_proceed(self, pending_online_payment):
        """Should pre-check a transition without running it."""
        pending_online_payment.ensure_can_proceed("start_online_payment")

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            pending_online_payment.ensure_can_proceed("refund")

        assert exc_info.value.action == "refund"
        assert pending_online_payment.status == PaymentStatus.PENDING


class TestOnlinePaymentFactory:
    def test_factory_builds_consistent_rows(self, db):
        """Should default the amount to the invoice total."""
        payment = OnlinePaymentFactory()

        assert payment.amount == payment.invoice.total_amount
        assert payment.idempotency_key
