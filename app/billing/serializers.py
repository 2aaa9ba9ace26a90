"""
DRF serializers for the billing API.

Input serializers validate request shape only; business rules (state
guards, amount checks) live in the models and PaymentOrchestrator.

Related files:
    - views.py: Billing API views
    - services/: PaymentOrchestrator, InvoiceService
"""

from __future__ import annotations

from rest_framework import serializers

from billing.models import Invoice, InvoiceItem, Payment
from billing.state_machines import InvoiceStatus, PaymentMethod

MONEY_FIELD_KWARGS = {"max_digits": 14, "decimal_places": 2}
LOCALE_CHOICES = [("vn", "Vietnamese"), ("en", "English")]


# =============================================================================
# Output
# =============================================================================


class InvoiceItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = InvoiceItem
        fields = ["id", "description", "item_type", "quantity", "unit_price", "amount"]
        read_only_fields = fields


class InvoiceSerializer(serializers.ModelSerializer):
    appointment_id = serializers.UUIDField(read_only=True)
    items = InvoiceItemSerializer(many=True, read_only=True)
    is_overdue = serializers.BooleanField(read_only=True)

    class Meta:
        model = Invoice
        fields = [
            "id",
            "invoice_number",
            "appointment_id",
            "issue_date",
            "subtotal",
            "discount",
            "tax",
            "total_amount",
            "items",
            "status",
            "is_overdue",
            "paid_at",
            "notes",
            "version",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class PaymentSerializer(serializers.ModelSerializer):
    invoice_id = serializers.UUIDField(read_only=True)
    invoice_number = serializers.CharField(source="invoice.invoice_number", read_only=True)

    class Meta:
        model = Payment
        fields = [
            "id",
            "invoice_id",
            "invoice_number",
            "payment_method",
            "amount",
            "status",
            "paid_at",
            "transaction_id",
            "refund_amount",
            "refund_date",
            "refund_reason",
            "notes",
            "created_at",
        ]
        read_only_fields = fields


class OnlinePaymentSessionSerializer(serializers.Serializer):
    payment = PaymentSerializer(read_only=True)
    payment_url = serializers.URLField(read_only=True)
    order_id = serializers.CharField(read_only=True)


class ReceiptLineSerializer(serializers.Serializer):
    description = serializers.CharField()
    quantity = serializers.IntegerField()
    unit_price = serializers.CharField()
    amount = serializers.CharField()


class ReceiptSerializer(serializers.Serializer):
    receipt_number = serializers.CharField()
    payment_id = serializers.CharField()
    invoice_number = serializers.CharField()
    owner_name = serializers.CharField()
    pet_name = serializers.CharField()
    payment_method = serializers.CharField()
    status = serializers.CharField()
    amount = serializers.CharField()
    refund_amount = serializers.CharField()
    paid_at = serializers.DateTimeField(allow_null=True)
    transaction_id = serializers.CharField(allow_null=True)
    subtotal = serializers.CharField()
    discount = serializers.CharField()
    tax = serializers.CharField()
    total = serializers.CharField()
    lines = ReceiptLineSerializer(many=True)


class PaymentVerificationSerializer(serializers.Serializer):
    payment_id = serializers.UUIDField(source="payment.id")
    payment_status = serializers.CharField(source="payment.status")
    verified = serializers.BooleanField()
    gateway_status = serializers.CharField()
    gateway_amount = serializers.DecimalField(allow_null=True, **MONEY_FIELD_KWARGS)
    message = serializers.CharField(allow_blank=True)


# =============================================================================
# Input
# =============================================================================


class GenerateInvoiceSerializer(serializers.Serializer):
    discount = serializers.DecimalField(required=False, default=0, min_value=0, **MONEY_FIELD_KWARGS)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class InvoiceUpdateSerializer(serializers.Serializer):
    discount = serializers.DecimalField(required=False, min_value=0, **MONEY_FIELD_KWARGS)
    notes = serializers.CharField(required=False, allow_blank=True)
    expected_version = serializers.IntegerField(required=False, min_value=1)

    def validate(self, attrs):
        if "discount" not in attrs and "notes" not in attrs:
            raise serializers.ValidationError("Provide discount and/or notes")
        return attrs


class InvoiceListQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=InvoiceStatus.choices, required=False)
    overdue = serializers.BooleanField(required=False, default=False)


class CashPaymentSerializer(serializers.Serializer):
    amount = serializers.DecimalField(**MONEY_FIELD_KWARGS)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class OnlinePaymentSerializer(serializers.Serializer):
    amount = serializers.DecimalField(required=False, **MONEY_FIELD_KWARGS)
    payment_method = serializers.ChoiceField(
        choices=[(method, label) for method, label in PaymentMethod.choices if method != PaymentMethod.CASH],
        default=PaymentMethod.VNPAY,
    )
    idempotency_key = serializers.CharField(required=False, max_length=255)
    return_url = serializers.URLField(required=False)
    locale = serializers.ChoiceField(choices=LOCALE_CHOICES, default="vn")


class RefundSerializer(serializers.Serializer):
    amount = serializers.DecimalField(**MONEY_FIELD_KWARGS)
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class PaymentHistoryQuerySerializer(serializers.Serializer):
    start = serializers.DateTimeField(required=False)
    end = serializers.DateTimeField(required=False)
