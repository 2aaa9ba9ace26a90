"""
Payment email notifications.

PaymentNotifier turns a settled Payment into a pre-formatted email
context and queues the delivery task. Delivery itself happens in Celery
(billing.tasks) with bounded retry; failing to queue never affects the
payment that triggered it.

The orchestrator calls the notifier from transaction.on_commit, so a
rolled-back settlement never produces an email.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils import timezone

from billing.gateways.vnpay import get_response_message
from billing.money import format_money
from billing.tasks import send_payment_confirmation_email, send_payment_failed_email

if TYPE_CHECKING:
    from typing import Any

    from billing.models import Payment

logger = logging.getLogger(__name__)

DATE_DISPLAY_FORMAT = "%d/%m/%Y %H:%M"


class PaymentNotifier:
    """Queues customer emails for payment outcomes."""

    def payment_confirmed(self, payment: Payment) -> None:
        appointment = payment.invoice.appointment
        paid_at = timezone.localtime(payment.paid_at or timezone.now())
        context = {
            "owner_name": appointment.owner_name,
            "pet_name": appointment.pet_name,
            "invoice_number": payment.invoice.invoice_number,
            "amount": format_money(payment.amount),
            "payment_method": payment.get_payment_method_display(),
            "transaction_id": payment.transaction_id or "",
            "payment_date": paid_at.strftime(DATE_DISPLAY_FORMAT),
        }
        self._queue(send_payment_confirmation_email, appointment.owner_email, context, payment)

    def payment_failed(self, payment: Payment) -> None:
        appointment = payment.invoice.appointment
        response = payment.gateway_response or {}
        context = {
            "owner_name": appointment.owner_name,
            "pet_name": appointment.pet_name,
            "invoice_number": payment.invoice.invoice_number,
            "amount": format_money(payment.amount),
            "failure_reason": self.failure_reason(response),
            "retry_url": settings.BILLING_PAYMENT_RETRY_URL.format(invoice_id=payment.invoice_id),
        }
        self._queue(send_payment_failed_email, appointment.owner_email, context, payment)

    @staticmethod
    def failure_reason(gateway_response: dict[str, Any]) -> str:
        if gateway_response.get("reconciliation") == "expired":
            return "Payment session expired"
        return get_response_message(gateway_response.get("vnp_ResponseCode", "99"))

    def _queue(self, task, to: str, context: dict[str, Any], payment: Payment) -> None:
        if not to:
            logger.warning(
                "No owner email for payment notification",
                extra={"payment_id": str(payment.id), "task": task.name},
            )
            return
        try:
            task.delay(to, context)
        except Exception:
            logger.exception(
                "Failed to queue payment notification",
                extra={"payment_id": str(payment.id), "task": task.name},
            )
