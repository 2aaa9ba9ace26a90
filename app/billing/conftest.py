"""
Pytest fixtures shared by all billing tests.

Provides invoices and payments in each state, a Redis stand-in for
DistributedLock, and a gateway/notifier pair installed on
PaymentOrchestrator for the duration of a test.

Usage:
    def test_refund(success_online_payment, fake_gateway, mock_redis):
        PaymentOrchestrator.process_refund(success_online_payment.id, Decimal("1000"))
        fake_gateway.initiate_refund.assert_called_once()
"""

from decimal import Decimal

import pytest
from django.test import override_settings
from rest_framework.test import APIClient

from billing.gateways import (
    STATUS_SUCCESS,
    PaymentGateway,
    PaymentUrlResult,
    RefundResult,
    TransactionQueryResult,
)
from billing.gateways.vnpay import VNPayGateway
from billing.notifications import PaymentNotifier
from billing.services import PaymentOrchestrator
from billing.state_machines import InvoiceStatus, PaymentStatus
from billing.tests.factories import (
    CashPaymentFactory,
    InvoiceFactory,
    OnlinePaymentFactory,
    UserFactory,
)
from billing.tests.helpers import VNPAY_TEST_SETTINGS
from clinic.tests.factories import AppointmentFactory, AppointmentServiceLineFactory


# =============================================================================
# Settings & Infrastructure
# =============================================================================


@pytest.fixture
def vnpay_settings():
    """Deterministic VNPay credentials."""
    with override_settings(**VNPAY_TEST_SETTINGS):
        yield VNPAY_TEST_SETTINGS


@pytest.fixture
def mock_redis(mocker):
    """Mock Redis connection used by DistributedLock."""
    redis_instance = mocker.MagicMock()
    redis_instance.set.return_value = True
    redis_instance.eval.return_value = 1
    mocker.patch("billing.locks.get_redis_connection", return_value=redis_instance)
    return redis_instance


@pytest.fixture
def fake_gateway(mocker):
    """
    Gateway double installed on PaymentOrchestrator.

    URL generation, refunds and queries succeed by default; verification
    methods are left for each test to configure.
    """
    gateway = mocker.create_autospec(PaymentGateway, instance=True)
    gateway.get_gateway_name.return_value = "VNPAY"
    gateway.generate_payment_url.side_effect = lambda params: PaymentUrlResult(
        payment_url=f"https://pay.example.com/?order={params.order_id}",
        order_id=params.order_id,
    )
    gateway.initiate_refund.return_value = RefundResult(
        success=True,
        refund_transaction_id="R-1",
        message="Request successful",
        raw_data={"vnp_ResponseCode": "00"},
        response_code="00",
    )
    gateway.query_transaction.return_value = TransactionQueryResult(
        found=True,
        transaction_id="14123456",
        amount=None,
        status=STATUS_SUCCESS,
        raw_data={"vnp_ResponseCode": "00", "vnp_TransactionStatus": "00"},
        response_code="00",
    )
    PaymentOrchestrator.set_gateway(gateway)
    yield gateway
    PaymentOrchestrator.set_gateway(None)


@pytest.fixture
def vnpay_gateway(vnpay_settings):
    """Real VNPayGateway installed on PaymentOrchestrator (no merchant API calls)."""
    gateway = VNPayGateway()
    PaymentOrchestrator.set_gateway(gateway)
    yield gateway
    PaymentOrchestrator.set_gateway(None)


@pytest.fixture
def notifier(mocker):
    """Notifier double installed on PaymentOrchestrator."""
    double = mocker.create_autospec(PaymentNotifier, instance=True)
    PaymentOrchestrator.set_notifier(double)
    yield double
    PaymentOrchestrator.set_notifier(None)


# =============================================================================
# Clinic & API Fixtures
# =============================================================================


@pytest.fixture
def staff_user(db):
    return UserFactory()


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def authenticated_client(api_client, staff_user):
    """API client logged in as a front-desk staff member."""
    api_client.force_authenticate(user=staff_user)
    return api_client


@pytest.fixture
def admin_api_client(admin_user):
    client = APIClient()
    client.force_authenticate(user=admin_user)
    return client


@pytest.fixture
def completed_appointment(db):
    """Completed visit with two service lines totalling 250,000."""
    appointment = AppointmentFactory()
    AppointmentServiceLineFactory(appointment=appointment, unit_price=Decimal("150000.00"))
    AppointmentServiceLineFactory(appointment=appointment, quantity=2, unit_price=Decimal("50000.00"))
    return appointment


# =============================================================================
# Invoice Fixtures
# =============================================================================


@pytest.fixture
def pending_invoice(db):
    return InvoiceFactory(subtotal=Decimal("200000.00"))


@pytest.fixture
def processing_invoice(db):
    return InvoiceFactory(subtotal=Decimal("200000.00"), status=InvoiceStatus.PROCESSING_ONLINE)


@pytest.fixture
def failed_invoice(db):
    return InvoiceFactory(subtotal=Decimal("200000.00"), status=InvoiceStatus.FAILED)


@pytest.fixture
def paid_invoice(db):
    return InvoiceFactory(subtotal=Decimal("200000.00"), status=InvoiceStatus.PAID)


# =============================================================================
# Payment Fixtures
# =============================================================================


@pytest.fixture
def pending_online_payment(pending_invoice):
    return OnlinePaymentFactory(invoice=pending_invoice)


@pytest.fixture
def processing_online_payment(processing_invoice):
    return OnlinePaymentFactory(invoice=processing_invoice, status=PaymentStatus.PROCESSING)


@pytest.fixture
def success_online_payment(paid_invoice):
    return OnlinePaymentFactory(
        invoice=paid_invoice,
        status=PaymentStatus.SUCCESS,
        transaction_id="14123456",
    )


@pytest.fixture
def success_cash_payment(paid_invoice):
    return CashPaymentFactory(invoice=paid_invoice, status=PaymentStatus.SUCCESS)
