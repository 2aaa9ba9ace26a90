"""
Billing models.

Usage:
    from billing.models import Invoice, InvoiceItem, Payment, PaymentGatewayArchive
"""

from billing.models.gateway_archive import PaymentGatewayArchive
from billing.models.invoice import Invoice, generate_invoice_number
from billing.models.invoice_item import InvoiceItem, InvoiceItemType
from billing.models.payment import Payment

__all__ = [
    "Invoice",
    "InvoiceItem",
    "InvoiceItemType",
    "Payment",
    "PaymentGatewayArchive",
    "generate_invoice_number",
]
