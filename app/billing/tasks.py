"""
Celery tasks for billing.

This module provides async tasks for:
- Payment confirmation and payment failed emails
- Reconciling a single PROCESSING payment against the gateway
- Periodic sweep of stale PROCESSING payments (celery-beat)

Usage:
    from billing.tasks import reconcile_payment_task

    reconcile_payment_task.delay(str(payment.id))
"""

from __future__ import annotations

import logging

from celery import shared_task
from django.conf import settings

from toolkit.services.email import EmailService

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

MAX_EMAIL_RETRIES = 3
MAX_RECONCILE_RETRIES = 5
RECONCILE_RETRY_BASE_SECONDS = 60

CONFIRMATION_TEMPLATE = "billing/email/payment_confirmation"
FAILED_TEMPLATE = "billing/email/payment_failed"

# smtplib.SMTPException and socket errors are both OSError
EMAIL_RETRY_ERRORS = (OSError,)


# =============================================================================
# Email Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=EMAIL_RETRY_ERRORS,
    retry_backoff=True,
    retry_kwargs={"max_retries": MAX_EMAIL_RETRIES},
)
def send_payment_confirmation_email(self, to: str, context: dict) -> bool:
    """
    Send the payment receipt email.

    Args:
        to: Pet owner email
        context: Pre-formatted values (owner_name, invoice_number, amount,
            payment_method, transaction_id, payment_date)
    """
    logger.info(
        "Sending payment confirmation email",
        extra={"invoice_number": context.get("invoice_number"), "attempt": self.request.retries},
    )
    return EmailService.send(
        to=to,
        subject=f"Payment received for invoice {context.get('invoice_number', '')}",
        template_name=CONFIRMATION_TEMPLATE,
        context=context,
    )


@shared_task(
    bind=True,
    autoretry_for=EMAIL_RETRY_ERRORS,
    retry_backoff=True,
    retry_kwargs={"max_retries": MAX_EMAIL_RETRIES},
)
def send_payment_failed_email(self, to: str, context: dict) -> bool:
    """Send the payment failed email with the failure reason and a retry link."""
    logger.info(
        "Sending payment failed email",
        extra={"invoice_number": context.get("invoice_number"), "attempt": self.request.retries},
    )
    return EmailService.send(
        to=to,
        subject=f"Payment for invoice {context.get('invoice_number', '')} was not completed",
        template_name=FAILED_TEMPLATE,
        context=context,
    )


# =============================================================================
# Reconciliation Tasks
# =============================================================================


@shared_task(bind=True, max_retries=MAX_RECONCILE_RETRIES)
def reconcile_payment_task(self, payment_id: str, expire_if_missing: bool = False) -> dict:
    """
    Reconcile one payment with the gateway.

    Retries with exponential backoff while the gateway is unavailable.

    Returns:
        Dict with the outcome action or the error code
    """
    # Import here to avoid circular imports
    from billing.services import ReconciliationService

    result = ReconciliationService.reconcile_payment(payment_id, expire_if_missing=expire_if_missing)
    if result:
        return {"payment_id": payment_id, "action": result.data.action}

    if result.retryable:
        countdown = RECONCILE_RETRY_BASE_SECONDS * (2**self.request.retries)
        logger.warning(
            "Reconciliation deferred, gateway unavailable",
            extra={"payment_id": payment_id, "countdown": countdown},
        )
        raise self.retry(countdown=countdown)

    return {"payment_id": payment_id, "error_code": result.error_code, "error": result.error}


@shared_task
def sweep_stale_payments() -> dict:
    """
    Queue reconciliation for payments stuck in PROCESSING.

    Scheduled every 15 minutes by celery-beat (see migration 0002).
    Stale payments with no gateway record are expired to FAILED.
    """
    from billing.services import ReconciliationService

    stale = ReconciliationService.find_stale_payments(settings.BILLING_STALE_PAYMENT_MINUTES)
    for payment in stale:
        reconcile_payment_task.delay(str(payment.id), expire_if_missing=True)

    if stale:
        logger.info("Queued stale payment reconciliation", extra={"count": len(stale)})
    return {"queued": len(stale)}
