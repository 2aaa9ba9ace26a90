"""
Billing services.

Usage:
    from billing.services import PaymentOrchestrator, InvoiceService, ReconciliationService
"""

from billing.services.invoice_service import InvoiceService
from billing.services.payment_orchestrator import (
    ALREADY_PROCESSED,
    SETTLED_FAILED,
    SETTLED_SUCCESS,
    OnlinePaymentSession,
    PaymentOrchestrator,
    PaymentVerification,
    Receipt,
    SettlementOutcome,
)
from billing.services.reconciliation_service import (
    ReconciliationAction,
    ReconciliationOutcome,
    ReconciliationService,
)

__all__ = [
    "ALREADY_PROCESSED",
    "SETTLED_FAILED",
    "SETTLED_SUCCESS",
    "InvoiceService",
    "OnlinePaymentSession",
    "PaymentOrchestrator",
    "PaymentVerification",
    "Receipt",
    "ReconciliationAction",
    "ReconciliationOutcome",
    "ReconciliationService",
    "SettlementOutcome",
]
