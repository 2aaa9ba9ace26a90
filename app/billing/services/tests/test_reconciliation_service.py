"""
Tests for ReconciliationService.
"""

import uuid
from datetime import timedelta
from decimal import Decimal

from django.utils import timezone
from freezegun import freeze_time

from billing.exceptions import GatewayUnavailableError
from billing.gateways import STATUS_FAILED, TransactionQueryResult
from billing.models import Invoice, Payment, PaymentGatewayArchive
from billing.services import ReconciliationAction, ReconciliationService
from billing.state_machines import GatewayInteraction, InvoiceStatus, PaymentStatus
from billing.tests.factories import OnlinePaymentFactory


def query_result(status, found=True, amount=Decimal("200000.00"), code="00"):
    return TransactionQueryResult(
        found=found,
        transaction_id="14123456" if found else None,
        amount=amount if found else None,
        status=status,
        raw_data={"vnp_ResponseCode": code},
        response_code=code,
    )


class TestReconcilePayment:
    """Tests for reconcile_payment."""

    def test_gateway_success_settles(self, processing_online_payment, fake_gateway):
        """Should settle the payment and its invoice as paid."""
        fake_gateway.query_transaction.return_value = query_result("SUCCESS")

        result = ReconciliationService.reconcile_payment(processing_online_payment.id)

        assert result.success
        assert result.data.action == ReconciliationAction.SETTLED_SUCCESS
        payment = Payment.objects.get(pk=processing_online_payment.pk)
        assert payment.status == PaymentStatus.SUCCESS
        assert payment.transaction_id == "14123456"
        assert Invoice.objects.get(pk=payment.invoice_id).status == InvoiceStatus.PAID
        assert PaymentGatewayArchive.objects.get().interaction == GatewayInteraction.QUERY

        order_id, transaction_date = fake_gateway.query_transaction.call_args.args
        assert order_id == processing_online_payment.order_reference
        assert transaction_date == processing_online_payment.created_at

    def test_gateway_failure_settles_failed(self, processing_online_payment, fake_gateway):
        fake_gateway.query_transaction.return_value = query_result(STATUS_FAILED, code="00")

        result = ReconciliationService.reconcile_payment(processing_online_payment.id)

        assert result.data.action == ReconciliationAction.SETTLED_FAILED
        assert Payment.objects.get(pk=processing_online_payment.pk).status == PaymentStatus.FAILED

    def test_amount_mismatch_flagged_only(self, processing_online_payment, fake_gateway):
        """Should leave the payment PROCESSING when the gateway amount differs."""
        fake_gateway.query_transaction.return_value = query_result("SUCCESS", amount=Decimal("1.00"))

        result = ReconciliationService.reconcile_payment(processing_online_payment.id)

        assert result.data.action == ReconciliationAction.AMOUNT_MISMATCH
        assert Payment.objects.get(pk=processing_online_payment.pk).status == PaymentStatus.PROCESSING

    def test_gateway_pending_no_change(self, processing_online_payment, fake_gateway):
        fake_gateway.query_transaction.return_value = query_result("PENDING")

        result = ReconciliationService.reconcile_payment(processing_online_payment.id)

        assert result.data.action == ReconciliationAction.NO_CHANGE

    def test_missing_and_expired_payment_failed(self, processing_online_payment, fake_gateway):
        """Should expire a payment the gateway never saw once its URL lapsed."""
        fake_gateway.query_transaction.return_value = query_result("NOT_FOUND", found=False, code="91")

        with freeze_time(timezone.now() + timedelta(minutes=20)):
            result = ReconciliationService.reconcile_payment(
                processing_online_payment.id, expire_if_missing=True
            )

        assert result.data.action == ReconciliationAction.EXPIRED
        payment = Payment.objects.get(pk=processing_online_payment.pk)
        assert payment.status == PaymentStatus.FAILED
        assert payment.gateway_response == {"reconciliation": "expired"}
        assert Invoice.objects.get(pk=payment.invoice_id).status == InvoiceStatus.FAILED

    def test_missing_but_url_still_valid(self, processing_online_payment, fake_gateway):
        """Should wait while the customer may still be on the payment page."""
        fake_gateway.query_transaction.return_value = query_result("NOT_FOUND", found=False, code="91")

        result = ReconciliationService.reconcile_payment(
            processing_online_payment.id, expire_if_missing=True
        )

        assert result.data.action == ReconciliationAction.NO_CHANGE
        assert Payment.objects.get(pk=processing_online_payment.pk).status == PaymentStatus.PROCESSING

    def test_missing_without_expiry_flag(self, processing_online_payment, fake_gateway):
        fake_gateway.query_transaction.return_value = query_result("NOT_FOUND", found=False, code="91")

        with freeze_time(timezone.now() + timedelta(hours=2)):
            result = ReconciliationService.reconcile_payment(processing_online_payment.id)

        assert result.data.action == ReconciliationAction.NO_CHANGE

    def test_already_settled_skips_gateway(self, success_online_payment, fake_gateway):
        result = ReconciliationService.reconcile_payment(success_online_payment.id)

        assert result.data.action == ReconciliationAction.ALREADY_SETTLED
        fake_gateway.query_transaction.assert_not_called()

    def test_gateway_unavailable_is_retryable(self, processing_online_payment, fake_gateway):
        """Should return a retryable failure without touching the payment."""
        fake_gateway.query_transaction.side_effect = GatewayUnavailableError("VNPay querydr request failed")

        result = ReconciliationService.reconcile_payment(processing_online_payment.id)

        assert not result
        assert result.retryable
        assert result.error_code == "GATEWAY_UNAVAILABLE"
        assert not PaymentGatewayArchive.objects.exists()

    def test_unknown_payment(self, db, fake_gateway):
        result = ReconciliationService.reconcile_payment(uuid.uuid4())

        assert not result
        assert not result.retryable
        assert result.error_code == "PAYMENT_NOT_FOUND"


class TestFindStalePayments:
    def test_only_old_processing_online_payments(self, db):
        """Should skip fresh, settled and pending payments."""
        stale = OnlinePaymentFactory(status=PaymentStatus.PROCESSING)
        OnlinePaymentFactory(status=PaymentStatus.PROCESSING)
        old_pending = OnlinePaymentFactory()
        Payment.objects.filter(pk__in=[stale.pk, old_pending.pk]).update(
            updated_at=timezone.now() - timedelta(hours=1)
        )

        assert ReconciliationService.find_stale_payments(30) == [stale]
