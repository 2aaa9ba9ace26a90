"""
Invoice line items.

Items are copied from the appointment's service lines when the invoice
is generated. They belong to billing, so later edits to the appointment
never change what was billed; receipts are built from them.

Usage:
    from billing.models import InvoiceItem

    InvoiceItem.objects.bulk_create(
        InvoiceItem.from_service_line(invoice, line) for line in lines
    )
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from django.db import models
from django.db.models import Q

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from billing.money import ensure_non_negative, to_money

if TYPE_CHECKING:
    from clinic.models import AppointmentServiceLine

    from billing.models.invoice import Invoice


class InvoiceItemType(models.TextChoices):
    SERVICE = "service", "Service"
    PRODUCT = "product", "Product"
    FEE = "fee", "Fee"


class InvoiceItem(UUIDPrimaryKeyMixin, BaseModel):
    """
    One billed line: description, quantity, unit price and line amount.

    Fields:
        invoice: Invoice the line belongs to
        service: Catalogue service the line was copied from, if any
        amount: quantity * unit_price, fixed when the item is created
    """

    invoice = models.ForeignKey(
        "billing.Invoice",
        on_delete=models.CASCADE,
        related_name="items",
    )
    service = models.ForeignKey(
        "clinic.ClinicService",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="invoice_items",
    )
    description = models.CharField(max_length=255)
    item_type = models.CharField(
        max_length=20,
        choices=InvoiceItemType.choices,
        default=InvoiceItemType.SERVICE,
    )
    quantity = models.PositiveIntegerField(default=1)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    amount = models.DecimalField(max_digits=14, decimal_places=2)

    class Meta:
        ordering = ["created_at"]
        verbose_name = "Invoice Item"
        constraints = [
            models.CheckConstraint(
                condition=Q(quantity__gt=0),
                name="invoice_item_quantity_positive",
            ),
            models.CheckConstraint(
                condition=Q(unit_price__gte=0) & Q(amount__gte=0),
                name="invoice_item_amounts_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.description} x{self.quantity}"

    @classmethod
    def build(
        cls,
        invoice: Invoice,
        description: str,
        unit_price: Decimal | int | str,
        quantity: int = 1,
        item_type: str = InvoiceItemType.SERVICE,
        service=None,
    ) -> InvoiceItem:
        """Unsaved item with amount = quantity * unit_price."""
        price = ensure_non_negative(unit_price, "unit_price")
        return cls(
            invoice=invoice,
            service=service,
            description=description,
            item_type=item_type,
            quantity=quantity,
            unit_price=price,
            amount=to_money(price * quantity),
        )

    @classmethod
    def from_service_line(cls, invoice: Invoice, line: AppointmentServiceLine) -> InvoiceItem:
        return cls.build(
            invoice,
            description=line.service.name,
            unit_price=line.unit_price,
            quantity=line.quantity,
            service=line.service,
        )
