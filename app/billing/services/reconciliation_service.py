"""
Reconciliation of online payments whose callback never arrived.

A payment stays PROCESSING until the gateway tells us how it ended. When
both the return-URL callback and the IPN are lost, this service asks the
gateway directly (query_transaction) and settles the payment through the
orchestrator's locked settlement path.

Healing Strategy:
    - Gateway SUCCESS / FAILED with matching amount: settle
    - Gateway amount differs: flag only, never applied
    - Gateway has no record and the payment URL has expired: mark FAILED
      with {"reconciliation": "expired"} (only when expire_if_missing)
    - Anything else: leave PROCESSING for the next sweep

Usage:
    from billing.services import ReconciliationService

    result = ReconciliationService.reconcile_payment(payment_id)
    if result:
        print(result.data.action)
    elif result.retryable:
        ...  # gateway unavailable, try later
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils import timezone

from core.exceptions import BaseApplicationError
from core.services import BaseService, ServiceResult

from billing.gateways import STATUS_FAILED, STATUS_SUCCESS
from billing.models import Payment, PaymentGatewayArchive
from billing.services.payment_orchestrator import PaymentOrchestrator
from billing.state_machines import GatewayInteraction, PaymentMethod, PaymentStatus

if TYPE_CHECKING:
    import uuid

    from billing.gateways import TransactionQueryResult


EXPIRED_MARKER = {"reconciliation": "expired"}


class ReconciliationAction(str, Enum):
    SETTLED_SUCCESS = "settled_success"
    SETTLED_FAILED = "settled_failed"
    EXPIRED = "expired"
    ALREADY_SETTLED = "already_settled"
    AMOUNT_MISMATCH = "amount_mismatch"
    NO_CHANGE = "no_change"


@dataclass
class ReconciliationOutcome:
    payment: Payment
    action: ReconciliationAction
    gateway_status: str | None = None
    message: str = ""


class ReconciliationService(BaseService):
    @classmethod
    def reconcile_payment(
        cls,
        payment_id: uuid.UUID | str,
        expire_if_missing: bool = False,
    ) -> ServiceResult[ReconciliationOutcome]:
        """
        Bring one payment in line with the gateway.

        Returns:
            ServiceResult with a ReconciliationOutcome; a failed result is
            retryable when the gateway was unreachable
        """
        try:
            payment = PaymentOrchestrator.get_payment(payment_id)
        except BaseApplicationError as exc:
            return cls.handle_exception(exc, "Reconciliation lookup", logging.WARNING)

        if payment.status != PaymentStatus.PROCESSING or payment.payment_method == PaymentMethod.CASH:
            return ServiceResult.success(
                ReconciliationOutcome(payment=payment, action=ReconciliationAction.ALREADY_SETTLED)
            )

        gateway = PaymentOrchestrator.get_gateway(payment.payment_method)
        try:
            result = gateway.query_transaction(payment.order_reference, payment.created_at)
        except BaseApplicationError as exc:
            return cls.handle_exception(exc, f"Reconciliation query for payment {payment.id}", logging.WARNING)

        PaymentGatewayArchive.archive(
            payment=payment,
            gateway_name=gateway.get_gateway_name(),
            interaction=GatewayInteraction.QUERY,
            gateway_response=result.raw_data,
            order_reference=payment.order_reference,
        )

        try:
            outcome = cls._apply(payment, result, expire_if_missing)
        except BaseApplicationError as exc:
            return cls.handle_exception(exc, f"Reconciliation settlement for payment {payment.id}")

        cls.get_logger().info(
            "Payment reconciled",
            extra={
                "payment_id": str(payment.id),
                "action": outcome.action.value,
                "gateway_status": result.status,
                "response_code": result.response_code,
            },
        )
        return ServiceResult.success(outcome)

    @classmethod
    def _apply(
        cls,
        payment: Payment,
        result: TransactionQueryResult,
        expire_if_missing: bool,
    ) -> ReconciliationOutcome:
        if result.found and result.status in (STATUS_SUCCESS, STATUS_FAILED):
            if result.amount is not None and result.amount != payment.amount:
                cls.get_logger().error(
                    "Gateway amount differs from payment, flagged for review",
                    extra={
                        "payment_id": str(payment.id),
                        "expected": str(payment.amount),
                        "received": str(result.amount),
                    },
                )
                return ReconciliationOutcome(
                    payment=payment,
                    action=ReconciliationAction.AMOUNT_MISMATCH,
                    gateway_status=result.status,
                    message="Gateway amount differs from the payment amount",
                )

            settled = PaymentOrchestrator.settle_online_payment(
                payment.id,
                success=result.status == STATUS_SUCCESS,
                transaction_id=result.transaction_id,
                gateway_response=result.raw_data,
            )
            if settled.already_processed:
                action = ReconciliationAction.ALREADY_SETTLED
            elif result.status == STATUS_SUCCESS:
                action = ReconciliationAction.SETTLED_SUCCESS
            else:
                action = ReconciliationAction.SETTLED_FAILED
            return ReconciliationOutcome(
                payment=settled.payment,
                action=action,
                gateway_status=result.status,
                message=result.message,
            )

        if result.status == "NOT_FOUND" and expire_if_missing and cls._url_expired(payment):
            settled = PaymentOrchestrator.settle_online_payment(
                payment.id,
                success=False,
                gateway_response=dict(EXPIRED_MARKER),
            )
            return ReconciliationOutcome(
                payment=settled.payment,
                action=(
                    ReconciliationAction.ALREADY_SETTLED
                    if settled.already_processed
                    else ReconciliationAction.EXPIRED
                ),
                gateway_status=result.status,
                message="Payment URL expired without a gateway transaction",
            )

        return ReconciliationOutcome(
            payment=payment,
            action=ReconciliationAction.NO_CHANGE,
            gateway_status=result.status,
            message=result.message,
        )

    @staticmethod
    def _url_expired(payment: Payment) -> bool:
        expiry = payment.created_at + timedelta(minutes=settings.VNPAY_PAYMENT_TIMEOUT_MINUTES)
        return timezone.now() > expiry

    @classmethod
    def find_stale_payments(cls, older_than_minutes: int) -> list[Payment]:
        """Online payments PROCESSING and untouched for older_than_minutes."""
        cutoff = timezone.now() - timedelta(minutes=older_than_minutes)
        return list(
            Payment.objects.filter(status=PaymentStatus.PROCESSING, updated_at__lt=cutoff)
            .exclude(payment_method=PaymentMethod.CASH)
            .order_by("updated_at")
        )
