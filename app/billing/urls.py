"""
URL configuration for the billing app.

Routes:
    - GET        /vnpay/return/                              - VNPay return URL
    - GET, POST  /vnpay/ipn/                                 - VNPay IPN
    - POST       /appointments/{id}/invoice/                 - Generate invoice
    - GET        /invoices/                                  - List invoices
    - GET        /invoices/number/{number}/                  - Invoice by number
    - GET, PATCH /invoices/{id}/                             - Invoice detail/edit
    - POST       /invoices/{id}/payments/cash/               - Cash payment
    - POST       /invoices/{id}/payments/online/             - Start online payment
    - GET        /payments/                                  - Payment history
    - POST       /payments/{id}/refund/                      - Refund (admin)
    - POST       /payments/{id}/verify/                      - Gateway verification (admin)
    - GET        /payments/{id}/receipt/                     - Receipt

All routes are prefixed with /api/v1/billing/ when included in the main URLconf.
"""

from django.urls import path

from billing.views import (
    AppointmentInvoiceView,
    CashPaymentView,
    InvoiceByNumberView,
    InvoiceDetailView,
    InvoiceListView,
    OnlinePaymentView,
    PaymentHistoryView,
    PaymentReceiptView,
    PaymentRefundView,
    PaymentVerifyView,
)
from billing.webhooks.views import vnpay_ipn, vnpay_return

app_name = "billing"

urlpatterns = [
    # Gateway callbacks
    path("vnpay/return/", vnpay_return, name="vnpay_return"),
    path("vnpay/ipn/", vnpay_ipn, name="vnpay_ipn"),
    # Invoices
    path(
        "appointments/<uuid:appointment_id>/invoice/",
        AppointmentInvoiceView.as_view(),
        name="appointment_invoice",
    ),
    path("invoices/", InvoiceListView.as_view(), name="invoice_list"),
    path(
        "invoices/number/<str:invoice_number>/",
        InvoiceByNumberView.as_view(),
        name="invoice_by_number",
    ),
    path("invoices/<uuid:invoice_id>/", InvoiceDetailView.as_view(), name="invoice_detail"),
    path(
        "invoices/<uuid:invoice_id>/payments/cash/",
        CashPaymentView.as_view(),
        name="invoice_cash_payment",
    ),
    path(
        "invoices/<uuid:invoice_id>/payments/online/",
        OnlinePaymentView.as_view(),
        name="invoice_online_payment",
    ),
    # Payments
    path("payments/", PaymentHistoryView.as_view(), name="payment_history"),
    path("payments/<uuid:payment_id>/refund/", PaymentRefundView.as_view(), name="payment_refund"),
    path("payments/<uuid:payment_id>/verify/", PaymentVerifyView.as_view(), name="payment_verify"),
    path("payments/<uuid:payment_id>/receipt/", PaymentReceiptView.as_view(), name="payment_receipt"),
]
