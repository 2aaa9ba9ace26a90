"""
Factory Boy factories for billing test data.

Factories build rows directly in a given state; they bypass the FSM
transitions, so use them for setup and drive state changes through the
models or PaymentOrchestrator in the test body.

Usage:
    from billing.tests.factories import InvoiceFactory, OnlinePaymentFactory

    invoice = InvoiceFactory(subtotal=Decimal("200000"))
    payment = OnlinePaymentFactory(invoice=invoice, status=PaymentStatus.PROCESSING)
"""

from decimal import Decimal

import factory
from django.contrib.auth import get_user_model

from billing.models import Invoice, Payment
from billing.state_machines import InvoiceStatus, PaymentMethod, PaymentStatus
from clinic.tests.factories import AppointmentFactory


class UserFactory(factory.django.DjangoModelFactory):
    """Staff member recording payments."""

    class Meta:
        model = get_user_model()
        skip_postgeneration_save = True

    username = factory.Sequence(lambda n: f"staff{n}")
    email = factory.Sequence(lambda n: f"staff{n}@clinic.example.com")
    password = factory.PostGenerationMethodCall("set_password", "testpass123")
    is_active = True


class InvoiceFactory(factory.django.DjangoModelFactory):
    """
    Factory for invoices.

    total_amount follows subtotal - discount + tax unless given.
    """

    class Meta:
        model = Invoice
        skip_postgeneration_save = True

    appointment = factory.SubFactory(AppointmentFactory)
    invoice_number = factory.Sequence(lambda n: f"INV-20261019-{n:06X}")
    subtotal = Decimal("150000.00")
    discount = Decimal("0.00")
    tax = Decimal("0.00")
    total_amount = factory.LazyAttribute(lambda o: o.subtotal - o.discount + o.tax)
    status = InvoiceStatus.PENDING


class CashPaymentFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Payment
        skip_postgeneration_save = True

    invoice = factory.SubFactory(InvoiceFactory)
    payment_method = PaymentMethod.CASH
    amount = factory.LazyAttribute(lambda o: o.invoice.total_amount)
    status = PaymentStatus.PENDING


class OnlinePaymentFactory(factory.django.DjangoModelFactory):
    """Factory for VNPay payments; idempotency_key is unique per row."""

    class Meta:
        model = Payment
        skip_postgeneration_save = True

    invoice = factory.SubFactory(InvoiceFactory)
    payment_method = PaymentMethod.VNPAY
    amount = factory.LazyAttribute(lambda o: o.invoice.total_amount)
    status = PaymentStatus.PENDING
    idempotency_key = factory.Sequence(lambda n: f"online_payment:test:{n}")
