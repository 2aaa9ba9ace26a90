"""
Billing app - invoices, payments and the VNPay gateway.

Key components:
    - money.py: Fixed-precision Decimal helpers
    - models/: Invoice and Payment state machines, gateway archive
    - gateways/: PaymentGateway port and the VNPay adapter
    - services/: PaymentOrchestrator, InvoiceService, ReconciliationService
    - webhooks/: VNPay return URL and IPN endpoints
    - tasks.py: Email dispatch, reconciliation and the stale-payment sweep
"""
