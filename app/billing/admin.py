"""
Billing admin configuration.

Invoices and payments are visible but never deleted; status changes go
through the service layer, so status fields are read-only here. The
gateway archive is fully read-only.
"""

from django.contrib import admin

from billing.money import format_money
from billing.models import Invoice, InvoiceItem, Payment, PaymentGatewayArchive

__all__ = [
    "InvoiceAdmin",
    "PaymentAdmin",
    "PaymentGatewayArchiveAdmin",
]


class InvoiceItemInline(admin.TabularInline):
    model = InvoiceItem
    fields = ["description", "item_type", "quantity", "unit_price", "amount"]
    readonly_fields = fields
    extra = 0
    can_delete = False

    def has_add_permission(self, request, obj=None) -> bool:
        return False


class PaymentInline(admin.TabularInline):
    model = Payment
    fields = ["id", "payment_method", "amount", "status", "transaction_id", "created_at"]
    readonly_fields = fields
    extra = 0
    can_delete = False
    show_change_link = True

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    """
    Admin configuration for Invoice.

    Only notes are editable; amounts follow from the appointment and
    the discount, which staff change through the API.
    """

    list_display = [
        "invoice_number",
        "appointment",
        "total_display",
        "status",
        "issue_date",
        "paid_at",
    ]
    list_filter = ["status", "issue_date"]
    search_fields = ["id", "invoice_number", "appointment__pet_name", "appointment__owner_name"]
    readonly_fields = [
        "id",
        "appointment",
        "invoice_number",
        "issue_date",
        "subtotal",
        "discount",
        "tax",
        "total_amount",
        "status",
        "paid_at",
        "version",
        "created_at",
        "updated_at",
    ]
    ordering = ["-issue_date"]
    inlines = [InvoiceItemInline, PaymentInline]

    fieldsets = (
        (None, {"fields": ("id", "invoice_number", "appointment", "issue_date")}),
        ("Amounts", {"fields": ("subtotal", "discount", "tax", "total_amount")}),
        ("Status", {"fields": ("status", "paid_at", "notes")}),
        ("Metadata", {"fields": ("version", "created_at", "updated_at"), "classes": ("collapse",)}),
    )

    def total_display(self, obj: Invoice) -> str:
        return format_money(obj.total_amount)

    total_display.short_description = "Total"

    def has_add_permission(self, request) -> bool:
        """Invoices are generated from completed appointments only."""
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for invoices (audit trail)."""
        return False


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "invoice",
        "payment_method",
        "amount_display",
        "status",
        "transaction_id",
        "created_at",
    ]
    list_filter = ["status", "payment_method", "created_at"]
    search_fields = ["id", "transaction_id", "idempotency_key", "invoice__invoice_number"]
    readonly_fields = [
        "id",
        "invoice",
        "received_by",
        "payment_method",
        "amount",
        "status",
        "paid_at",
        "transaction_id",
        "idempotency_key",
        "gateway_response",
        "refund_amount",
        "refund_date",
        "refund_reason",
        "version",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]

    def amount_display(self, obj: Payment) -> str:
        return format_money(obj.amount)

    amount_display.short_description = "Amount"

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for payments (audit trail)."""
        return False


@admin.register(PaymentGatewayArchive)
class PaymentGatewayArchiveAdmin(admin.ModelAdmin):
    """Append-only log of raw gateway payloads."""

    list_display = ["id", "payment", "gateway_name", "interaction", "order_reference", "archived_at"]
    list_filter = ["gateway_name", "interaction", "archived_at"]
    search_fields = ["id", "order_reference", "payment__id"]
    readonly_fields = [
        "id",
        "payment",
        "order_reference",
        "gateway_name",
        "interaction",
        "gateway_response",
        "transaction_timestamp",
        "archived_at",
    ]
    ordering = ["-archived_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False
