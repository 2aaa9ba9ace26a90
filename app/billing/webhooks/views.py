"""
Gateway-facing endpoints for VNPay.

Two channels carry the same signed payload:
1. Return URL: the customer's browser is redirected here after paying.
   We settle the payment and answer with a JSON summary for the frontend.
2. IPN: VNPay calls this server-to-server. The answer must always be
   HTTP 200 with {"RspCode", "Message"}; VNPay retries on anything else.

Both paths are idempotent: whichever arrives second finds the payment
already settled and is acknowledged without side effects.

Usage:
    # In urls.py
    from billing.webhooks.views import vnpay_ipn, vnpay_return

    urlpatterns = [
        path("vnpay/return/", vnpay_return, name="vnpay_return"),
        path("vnpay/ipn/", vnpay_ipn, name="vnpay_ipn"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_http_methods

from core.exceptions import BaseApplicationError

from billing.exceptions import GatewaySignatureInvalidError
from billing.services import PaymentOrchestrator
from billing.state_machines import PaymentStatus


logger = logging.getLogger(__name__)

INVALID_SIGNATURE_MESSAGE = "Invalid payment signature"


@require_GET
def vnpay_return(request: HttpRequest) -> JsonResponse:
    """
    Settle a payment from the browser redirect.

    Returns:
        JsonResponse with status:
        - 200: Payment settled, or already settled by the IPN
        - 400: Invalid signature or amount mismatch
        - 404: Unknown order reference
    """
    params = dict(request.GET.items())
    order_id = params.get("vnp_TxnRef")

    try:
        outcome = PaymentOrchestrator.handle_gateway_callback(params)
    except GatewaySignatureInvalidError:
        logger.warning("Return URL signature rejected", extra={"order_id": order_id})
        return JsonResponse(
            {"error": "GATEWAY_SIGNATURE_INVALID", "message": INVALID_SIGNATURE_MESSAGE},
            status=400,
        )
    except BaseApplicationError as e:
        logger.warning(
            f"Return URL rejected: {e.error_code}",
            extra={"order_id": order_id},
        )
        return JsonResponse(e.to_dict(), status=e.http_status)

    payment = outcome.payment
    verification = outcome.verification
    return JsonResponse(
        {
            "payment_id": str(payment.id),
            "invoice_id": str(payment.invoice_id),
            "status": payment.status,
            "action": outcome.action,
            "success": payment.status == PaymentStatus.SUCCESS,
            "transaction_id": payment.transaction_id,
            "message": verification.message if verification else "",
        },
        status=200,
    )


@csrf_exempt
@require_http_methods(["GET", "POST"])
def vnpay_ipn(request: HttpRequest) -> JsonResponse:
    """
    Receive a VNPay IPN.

    VNPay sends the parameters in the query string; a form-encoded POST is
    accepted too. The response is always HTTP 200 and the verdict travels
    in RspCode (00, 01, 02, 04, 97, 99).
    """
    params = dict(request.GET.items()) or dict(request.POST.items())

    logger.info(
        "Received VNPay IPN",
        extra={
            "order_id": params.get("vnp_TxnRef"),
            "response_code": params.get("vnp_ResponseCode"),
        },
    )

    response = PaymentOrchestrator.handle_ipn(params)
    return JsonResponse(response, status=200)
