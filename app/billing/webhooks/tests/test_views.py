"""
Tests for the VNPay return URL and IPN endpoints.

Payloads are signed with the test hash secret through vnpay_callback_params,
so the real VNPayGateway verification runs end to end.
"""

import uuid
from decimal import Decimal

from django.urls import reverse

from billing.models import Payment, PaymentGatewayArchive
from billing.state_machines import InvoiceStatus, PaymentStatus
from billing.tests.helpers import vnpay_callback_params


class TestVnpayReturn:
    """Tests for GET /api/v1/billing/vnpay/return/."""

    def test_success(self, client, processing_online_payment, vnpay_gateway):
        """Settles the payment and reports success to the frontend."""
        response = client.get(
            reverse("billing:vnpay_return"), vnpay_callback_params(processing_online_payment)
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["status"] == PaymentStatus.SUCCESS
        assert body["action"] == "paid"
        assert body["transaction_id"] == "14123456"
        assert body["payment_id"] == str(processing_online_payment.id)
        assert body["message"] == "Transaction successful"

    def test_declined(self, client, processing_online_payment, vnpay_gateway):
        response = client.get(
            reverse("billing:vnpay_return"),
            vnpay_callback_params(processing_online_payment, response_code="24"),
        )

        body = response.json()
        assert response.status_code == 200
        assert body["success"] is False
        assert body["status"] == PaymentStatus.FAILED
        assert body["message"] == "Customer cancelled transaction"

    def test_invalid_signature(self, client, processing_online_payment, vnpay_gateway):
        """Returns 400 without revealing verification details."""
        params = vnpay_callback_params(processing_online_payment)
        params["vnp_TransactionNo"] = "99999999"

        response = client.get(reverse("billing:vnpay_return"), params)

        assert response.status_code == 400
        assert response.json() == {
            "error": "GATEWAY_SIGNATURE_INVALID",
            "message": "Invalid payment signature",
        }
        assert Payment.objects.get(pk=processing_online_payment.pk).status == PaymentStatus.PROCESSING

    def test_unknown_order(self, client, processing_online_payment, vnpay_gateway):
        params = vnpay_callback_params(processing_online_payment, vnp_TxnRef=uuid.uuid4().hex)

        response = client.get(reverse("billing:vnpay_return"), params)

        assert response.status_code == 404
        assert response.json()["error_code"] == "PAYMENT_NOT_FOUND"

    def test_amount_mismatch(self, client, processing_online_payment, vnpay_gateway):
        params = vnpay_callback_params(processing_online_payment, amount=Decimal("10"))

        response = client.get(reverse("billing:vnpay_return"), params)

        assert response.status_code == 400
        assert response.json()["error_code"] == "GATEWAY_AMOUNT_MISMATCH"

    def test_post_not_allowed(self, client, db):
        response = client.post(reverse("billing:vnpay_return"))

        assert response.status_code == 405


class TestVnpayIpn:
    """Tests for /api/v1/billing/vnpay/ipn/."""

    def test_confirm_via_get(self, client, processing_online_payment, vnpay_gateway):
        """Answers 00 and settles the invoice."""
        response = client.get(
            reverse("billing:vnpay_ipn"), vnpay_callback_params(processing_online_payment)
        )

        assert response.status_code == 200
        assert response.json() == {"RspCode": "00", "Message": "Confirm Success"}
        payment = Payment.objects.get(pk=processing_online_payment.pk)
        assert payment.status == PaymentStatus.SUCCESS
        assert payment.invoice.status == InvoiceStatus.PAID

    def test_confirm_via_form_post(self, client, processing_online_payment, vnpay_gateway):
        """Accepts a form-encoded POST without a CSRF token."""
        response = client.post(
            reverse("billing:vnpay_ipn"), vnpay_callback_params(processing_online_payment)
        )

        assert response.json()["RspCode"] == "00"

    def test_replay(self, client, processing_online_payment, vnpay_gateway):
        params = vnpay_callback_params(processing_online_payment)
        client.get(reverse("billing:vnpay_ipn"), params)

        response = client.get(reverse("billing:vnpay_ipn"), params)

        assert response.status_code == 200
        assert response.json()["RspCode"] == "02"

    def test_bad_signature_still_http_200(self, client, processing_online_payment, vnpay_gateway):
        """Always answers HTTP 200; the verdict is in RspCode."""
        params = vnpay_callback_params(processing_online_payment)
        params["vnp_SecureHash"] = "deadbeef"

        response = client.get(reverse("billing:vnpay_ipn"), params)

        assert response.status_code == 200
        assert response.json()["RspCode"] == "97"
        assert PaymentGatewayArchive.objects.count() == 1

    def test_empty_request(self, client, db, vnpay_gateway):
        response = client.get(reverse("billing:vnpay_ipn"))

        assert response.status_code == 200
        assert response.json()["RspCode"] == "97"
