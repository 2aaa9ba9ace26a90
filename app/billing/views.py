"""
API views for staff billing actions.

Provides:
- AppointmentInvoiceView: Generate the invoice for a completed appointment
- InvoiceListView: List invoices, optionally by status or overdue only
- InvoiceByNumberView: Invoice lookup by printed number
- InvoiceDetailView: Invoice detail and discount/notes edits
- CashPaymentView: Record a cash payment at the desk
- OnlinePaymentView: Start an online payment and get the redirect URL
- PaymentHistoryView: Payments in a date range
- PaymentRefundView: Refund a settled payment (admin)
- PaymentVerifyView: Ask the gateway about a payment (admin)
- PaymentReceiptView: Receipt for a settled payment

Gateway callbacks (return URL, IPN) live in billing.webhooks.
"""

from __future__ import annotations

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import BaseApplicationError
from core.helpers import get_client_ip

from billing.serializers import (
    CashPaymentSerializer,
    GenerateInvoiceSerializer,
    InvoiceListQuerySerializer,
    InvoiceSerializer,
    InvoiceUpdateSerializer,
    OnlinePaymentSerializer,
    OnlinePaymentSessionSerializer,
    PaymentHistoryQuerySerializer,
    PaymentSerializer,
    PaymentVerificationSerializer,
    ReceiptSerializer,
    RefundSerializer,
)
from billing.services import InvoiceService, PaymentOrchestrator


def error_response(exc: BaseApplicationError) -> Response:
    return Response(exc.to_dict(), status=exc.http_status)


# =============================================================================
# Invoices
# =============================================================================


class AppointmentInvoiceView(APIView):
    """
    Generate the invoice for an appointment.

    POST /api/v1/billing/appointments/{appointment_id}/invoice/

    Response:
        201 Created: Invoice generated
        404 Not Found: Unknown appointment
        409 Conflict: Appointment not completed, or already invoiced
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="generate_invoice",
        summary="Generate invoice",
        description=(
            "Create the invoice for a completed appointment. Subtotal is the sum "
            "of the appointment's service lines; tax uses the configured rate."
        ),
        request=GenerateInvoiceSerializer,
        responses={
            201: OpenApiResponse(response=InvoiceSerializer, description="Invoice generated"),
            400: OpenApiResponse(description="Invalid discount"),
            404: OpenApiResponse(description="Appointment not found"),
            409: OpenApiResponse(description="Appointment not completed or already invoiced"),
        },
        tags=["Billing - Invoices"],
    )
    def post(self, request, appointment_id):
        serializer = GenerateInvoiceSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            invoice = PaymentOrchestrator.generate_invoice(
                appointment_id,
                discount=serializer.validated_data["discount"],
                notes=serializer.validated_data["notes"] or None,
            )
        except BaseApplicationError as e:
            return error_response(e)

        return Response(InvoiceSerializer(invoice).data, status=status.HTTP_201_CREATED)


class InvoiceListView(APIView):
    """
    List invoices, newest first.

    GET /api/v1/billing/invoices/?status=pending
    GET /api/v1/billing/invoices/?overdue=true  (unpaid past due, oldest first)
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_invoices",
        summary="List invoices",
        parameters=[
            OpenApiParameter(
                name="status",
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                required=False,
                description="Filter by status (pending, processing_online, paid, failed)",
            ),
            OpenApiParameter(
                name="overdue",
                type=OpenApiTypes.BOOL,
                location=OpenApiParameter.QUERY,
                required=False,
                description="Only unpaid invoices past their due date",
            ),
        ],
        responses={
            200: OpenApiResponse(response=InvoiceSerializer(many=True), description="Invoices"),
            400: OpenApiResponse(description="Unknown status"),
        },
        tags=["Billing - Invoices"],
    )
    def get(self, request):
        query = InvoiceListQuerySerializer(data=request.query_params)
        if not query.is_valid():
            return Response(query.errors, status=status.HTTP_400_BAD_REQUEST)

        if query.validated_data["overdue"]:
            invoices = InvoiceService.list_overdue_invoices()
            if query.validated_data.get("status"):
                invoices = invoices.filter(status=query.validated_data["status"])
            return Response(InvoiceSerializer(invoices, many=True).data)

        try:
            invoices = InvoiceService.list_invoices(status=query.validated_data.get("status"))
        except BaseApplicationError as e:
            return error_response(e)

        return Response(InvoiceSerializer(invoices, many=True).data)


class InvoiceByNumberView(APIView):
    """
    Look up an invoice by its printed number.

    GET /api/v1/billing/invoices/number/{invoice_number}/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_invoice_by_number",
        summary="Get invoice by number",
        responses={
            200: OpenApiResponse(response=InvoiceSerializer, description="Invoice details"),
            404: OpenApiResponse(description="Invoice not found"),
        },
        tags=["Billing - Invoices"],
    )
    def get(self, request, invoice_number):
        try:
            invoice = InvoiceService.get_invoice_by_number(invoice_number)
        except BaseApplicationError as e:
            return error_response(e)

        return Response(InvoiceSerializer(invoice).data)


class InvoiceDetailView(APIView):
    """
    Invoice detail and staff edits.

    GET /api/v1/billing/invoices/{invoice_id}/
    PATCH /api/v1/billing/invoices/{invoice_id}/
        Change discount (PENDING only) and/or notes (not once PAID).
        Send expected_version to reject edits based on a stale read.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_invoice",
        summary="Get invoice",
        responses={
            200: OpenApiResponse(response=InvoiceSerializer, description="Invoice details"),
            404: OpenApiResponse(description="Invoice not found"),
        },
        tags=["Billing - Invoices"],
    )
    def get(self, request, invoice_id):
        try:
            invoice = InvoiceService.get_invoice(invoice_id)
        except BaseApplicationError as e:
            return error_response(e)

        return Response(InvoiceSerializer(invoice).data)

    @extend_schema(
        operation_id="update_invoice",
        summary="Update invoice discount or notes",
        request=InvoiceUpdateSerializer,
        responses={
            200: OpenApiResponse(response=InvoiceSerializer, description="Invoice updated"),
            400: OpenApiResponse(description="Invalid discount"),
            404: OpenApiResponse(description="Invoice not found"),
            409: OpenApiResponse(description="Invoice state or version conflict"),
        },
        tags=["Billing - Invoices"],
    )
    def patch(self, request, invoice_id):
        serializer = InvoiceUpdateSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        data = serializer.validated_data
        try:
            invoice = InvoiceService.update_invoice(
                invoice_id,
                discount=data.get("discount"),
                notes=data.get("notes"),
                expected_version=data.get("expected_version"),
            )
        except BaseApplicationError as e:
            return error_response(e)

        return Response(InvoiceSerializer(invoice).data)


# =============================================================================
# Payments
# =============================================================================


class CashPaymentView(APIView):
    """
    Record a cash payment for the full invoice total.

    POST /api/v1/billing/invoices/{invoice_id}/payments/cash/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="pay_invoice_cash",
        summary="Pay invoice in cash",
        request=CashPaymentSerializer,
        responses={
            201: OpenApiResponse(response=PaymentSerializer, description="Payment recorded"),
            400: OpenApiResponse(description="Amount differs from invoice total"),
            404: OpenApiResponse(description="Invoice not found"),
            409: OpenApiResponse(description="Invoice cannot be paid in cash"),
        },
        tags=["Billing - Payments"],
    )
    def post(self, request, invoice_id):
        serializer = CashPaymentSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            payment = PaymentOrchestrator.process_cash_payment(
                invoice_id,
                serializer.validated_data["amount"],
                received_by=request.user,
                notes=serializer.validated_data["notes"] or None,
            )
        except BaseApplicationError as e:
            return error_response(e)

        return Response(PaymentSerializer(payment).data, status=status.HTTP_201_CREATED)


class OnlinePaymentView(APIView):
    """
    Start an online payment.

    POST /api/v1/billing/invoices/{invoice_id}/payments/online/

    Sending the same idempotency_key again resumes the earlier attempt
    instead of creating a second payment.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="start_online_payment",
        summary="Start online payment",
        description="Create or resume an online payment and return the gateway redirect URL.",
        request=OnlinePaymentSerializer,
        responses={
            201: OpenApiResponse(
                response=OnlinePaymentSessionSerializer,
                description="Payment URL generated",
            ),
            400: OpenApiResponse(description="Invalid amount or payment method"),
            404: OpenApiResponse(description="Invoice not found"),
            409: OpenApiResponse(description="Invoice state conflict or reused idempotency key"),
            503: OpenApiResponse(description="Gateway unavailable, retry later"),
        },
        tags=["Billing - Payments"],
    )
    def post(self, request, invoice_id):
        serializer = OnlinePaymentSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        data = serializer.validated_data
        try:
            session = PaymentOrchestrator.initiate_online_payment(
                invoice_id,
                amount=data.get("amount"),
                payment_method=data["payment_method"],
                idempotency_key=data.get("idempotency_key"),
                client_ip=get_client_ip(request),
                return_url=data.get("return_url"),
                locale=data["locale"],
            )
        except BaseApplicationError as e:
            return error_response(e)

        return Response(
            OnlinePaymentSessionSerializer(session).data,
            status=status.HTTP_201_CREATED,
        )


class PaymentHistoryView(APIView):
    """
    Payments created in a date range, newest first.

    GET /api/v1/billing/payments/?start=...&end=...
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_payments",
        summary="Payment history",
        parameters=[
            OpenApiParameter(
                name="start",
                type=OpenApiTypes.DATETIME,
                location=OpenApiParameter.QUERY,
                required=False,
            ),
            OpenApiParameter(
                name="end",
                type=OpenApiTypes.DATETIME,
                location=OpenApiParameter.QUERY,
                required=False,
            ),
        ],
        responses={
            200: OpenApiResponse(response=PaymentSerializer(many=True), description="Payments"),
            400: OpenApiResponse(description="Invalid date range"),
        },
        tags=["Billing - Payments"],
    )
    def get(self, request):
        query = PaymentHistoryQuerySerializer(data=request.query_params)
        if not query.is_valid():
            return Response(query.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            payments = PaymentOrchestrator.get_payment_history(
                start=query.validated_data.get("start"),
                end=query.validated_data.get("end"),
            )
        except BaseApplicationError as e:
            return error_response(e)

        return Response(PaymentSerializer(payments, many=True).data)


class PaymentRefundView(APIView):
    """
    Refund part or all of a settled payment.

    POST /api/v1/billing/payments/{payment_id}/refund/

    Authentication:
        Staff only.
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="refund_payment",
        summary="Refund payment",
        request=RefundSerializer,
        responses={
            200: OpenApiResponse(response=PaymentSerializer, description="Payment refunded"),
            400: OpenApiResponse(description="Invalid refund amount"),
            404: OpenApiResponse(description="Payment not found"),
            409: OpenApiResponse(description="Payment cannot be refunded or is locked"),
            502: OpenApiResponse(description="Gateway rejected the refund"),
            503: OpenApiResponse(description="Gateway unavailable, retry later"),
        },
        tags=["Billing - Refunds"],
    )
    def post(self, request, payment_id):
        serializer = RefundSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            payment = PaymentOrchestrator.process_refund(
                payment_id,
                serializer.validated_data["amount"],
                reason=serializer.validated_data["reason"],
                requested_by=request.user.get_username(),
            )
        except BaseApplicationError as e:
            return error_response(e)

        return Response(PaymentSerializer(payment).data)


class PaymentVerifyView(APIView):
    """
    Query the gateway for a payment's transaction. Read-only.

    POST /api/v1/billing/payments/{payment_id}/verify/
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="verify_payment",
        summary="Verify payment with gateway",
        request=None,
        responses={
            200: OpenApiResponse(
                response=PaymentVerificationSerializer,
                description="Gateway verification result",
            ),
            404: OpenApiResponse(description="Payment not found"),
            503: OpenApiResponse(description="Gateway unavailable"),
        },
        tags=["Billing - Payments"],
    )
    def post(self, request, payment_id):
        try:
            verification = PaymentOrchestrator.verify_payment(payment_id)
        except BaseApplicationError as e:
            return error_response(e)

        return Response(PaymentVerificationSerializer(verification).data)


class PaymentReceiptView(APIView):
    """
    Receipt for a successful or refunded payment.

    GET /api/v1/billing/payments/{payment_id}/receipt/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_payment_receipt",
        summary="Get payment receipt",
        responses={
            200: OpenApiResponse(response=ReceiptSerializer, description="Receipt"),
            404: OpenApiResponse(description="Payment not found"),
            409: OpenApiResponse(description="Payment not settled"),
        },
        tags=["Billing - Payments"],
    )
    def get(self, request, payment_id):
        try:
            receipt = PaymentOrchestrator.generate_receipt(payment_id)
        except BaseApplicationError as e:
            return error_response(e)

        return Response(ReceiptSerializer(receipt).data)
