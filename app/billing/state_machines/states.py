"""
State and choice enums for billing models.

These are Django TextChoices for database storage and admin integration.
The FSM-managed fields on Invoice and Payment use the *Status enums.

State Machines Overview:

Invoice:
    pending → paid (cash)
    pending → processing_online → paid / failed
    failed → processing_online (retry)

Payment:
    pending → success (cash)
    pending → processing → success / failed (online)
    success → refunded
"""

from django.db import models


class InvoiceStatus(models.TextChoices):
    """
    States for the Invoice lifecycle.

    Terminal states: PAID. FAILED only re-opens through a new online attempt.
    """

    PENDING = "pending", "Pending"
    PROCESSING_ONLINE = "processing_online", "Processing Online"
    PAID = "paid", "Paid"
    FAILED = "failed", "Failed"


class PaymentStatus(models.TextChoices):
    """
    States for a single Payment attempt.

    Terminal states: FAILED, REFUNDED.
    CASH payments go straight from PENDING to SUCCESS.
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    SUCCESS = "success", "Success"
    FAILED = "failed", "Failed"
    REFUNDED = "refunded", "Refunded"


class PaymentMethod(models.TextChoices):
    """Settlement channel. Everything except CASH goes through a gateway."""

    CASH = "cash", "Cash"
    VNPAY = "vnpay", "VNPay"
    MOMO = "momo", "MoMo"
    ZALOPAY = "zalopay", "ZaloPay"
    BANK_TRANSFER = "bank_transfer", "Bank Transfer"

    @classmethod
    def online_methods(cls) -> list[str]:
        return [method for method in cls.values if method != cls.CASH]


class GatewayInteraction(models.TextChoices):
    """Kind of exchange recorded in the gateway archive."""

    CALLBACK = "callback", "Return URL Callback"
    IPN = "ipn", "Instant Payment Notification"
    REFUND = "refund", "Refund"
    QUERY = "query", "Transaction Query"
