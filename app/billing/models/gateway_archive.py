"""
Append-only archive of raw payment gateway payloads.

Every exchange with a gateway (return-URL callback, IPN, refund, status
query) is stored verbatim, including payloads that failed signature
checks or referenced unknown orders, for audit and dispute handling.
Rows can be inserted but never updated or deleted.

Usage:
    from billing.models import PaymentGatewayArchive
    from billing.state_machines import GatewayInteraction

    PaymentGatewayArchive.archive(
        payment=payment,
        gateway_name="VNPAY",
        interaction=GatewayInteraction.IPN,
        gateway_response=raw_params,
        order_reference=raw_params.get("vnp_TxnRef", ""),
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin

from billing.exceptions import ImmutableRecordError
from billing.state_machines import GatewayInteraction

if TYPE_CHECKING:
    import uuid
    from datetime import datetime
    from typing import Any

    from billing.models.payment import Payment


VNPAY_GATEWAY_NAME = "VNPAY"
VNPAY_SUCCESS_CODE = "00"


class PaymentGatewayArchiveQuerySet(models.QuerySet):
    """QuerySet that refuses bulk writes to archived rows."""

    def update(self, **kwargs):
        raise ImmutableRecordError("Gateway archive entries cannot be updated")

    def delete(self):
        raise ImmutableRecordError("Gateway archive entries cannot be deleted")

    def for_payment(self, payment_id: uuid.UUID | str):
        return self.filter(payment_id=payment_id)


class PaymentGatewayArchive(UUIDPrimaryKeyMixin, models.Model):
    """
    Immutable copy of one gateway response.

    Fields:
        payment: Payment the payload refers to (null for unknown orders)
        order_reference: Order id exactly as it appeared in the payload
        gateway_name: e.g. "VNPAY"
        interaction: callback / ipn / refund / query
        gateway_response: Raw payload
        transaction_timestamp: Time the gateway reports for the transaction
        archived_at: Insert time
    """

    payment = models.ForeignKey(
        "billing.Payment",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="gateway_archives",
    )
    order_reference = models.CharField(max_length=64, blank=True, default="", db_index=True)
    gateway_name = models.CharField(max_length=32)
    interaction = models.CharField(max_length=20, choices=GatewayInteraction.choices)
    gateway_response = models.JSONField(default=dict)
    transaction_timestamp = models.DateTimeField(null=True, blank=True)
    archived_at = models.DateTimeField(auto_now_add=True, db_index=True)

    objects = PaymentGatewayArchiveQuerySet.as_manager()

    class Meta:
        ordering = ["-archived_at"]
        verbose_name = "Payment Gateway Archive"
        verbose_name_plural = "Payment Gateway Archive"
        indexes = [
            models.Index(fields=["payment", "archived_at"], name="billing_archive_payment_idx"),
        ]

    def __str__(self) -> str:
        return f"PaymentGatewayArchive({self.gateway_name}, {self.interaction}, {self.order_reference})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ImmutableRecordError(
                "Gateway archive entries cannot be updated",
                details={"archive_id": str(self.pk)},
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ImmutableRecordError(
            "Gateway archive entries cannot be deleted",
            details={"archive_id": str(self.pk)},
        )

    @classmethod
    def archive(
        cls,
        *,
        payment: Payment | None,
        gateway_name: str,
        interaction: str,
        gateway_response: dict[str, Any] | None,
        order_reference: str = "",
        transaction_timestamp: datetime | None = None,
    ) -> PaymentGatewayArchive:
        return cls.objects.create(
            payment=payment,
            gateway_name=gateway_name,
            interaction=interaction,
            gateway_response=dict(gateway_response or {}),
            order_reference=(order_reference or "")[:64],
            transaction_timestamp=transaction_timestamp,
        )

    # ==========================================================================
    # Helpers
    # ==========================================================================

    def is_for_payment(self, payment_id: uuid.UUID | str) -> bool:
        return self.payment_id is not None and str(self.payment_id) == str(payment_id)

    def is_vnpay(self) -> bool:
        return self.gateway_name.upper() == VNPAY_GATEWAY_NAME

    def get_vnpay_response_code(self) -> str | None:
        if not self.is_vnpay():
            return None
        response = self.gateway_response or {}
        return response.get("vnp_ResponseCode")

    def is_success_response(self) -> bool:
        return self.get_vnpay_response_code() == VNPAY_SUCCESS_CODE
