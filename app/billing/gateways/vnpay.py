"""
VNPay payment gateway.

Redirect flow (pay) is a signed query string; refunds and status queries
go through the merchant web API as signed JSON POSTs.

Signing:
- Redirect / callback / IPN: parameters sorted by key, empty values
  dropped, form-urlencoded, HMAC-SHA512 (hex) with VNPAY_HASH_SECRET.
- Merchant API: HMAC-SHA512 over a fixed, pipe-joined list of fields.

Configuration (via settings):
- VNPAY_TMN_CODE: Merchant terminal code
- VNPAY_HASH_SECRET: Shared signing secret
- VNPAY_PAYMENT_URL: Redirect endpoint (vpcpay.html)
- VNPAY_API_URL: Merchant API endpoint (querydr / refund)
- VNPAY_RETURN_URL: Default return URL
- VNPAY_API_TIMEOUT: Merchant API timeout in seconds (default: 10)
- VNPAY_PAYMENT_TIMEOUT_MINUTES: Payment URL lifetime (default: 15)
- VNPAY_SERVER_IP: IP reported on merchant API calls
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode
from zoneinfo import ZoneInfo

import httpx
from django.conf import settings
from django.utils import timezone

from billing.exceptions import GatewayUnavailableError, InvalidAmountError
from billing.gateways.base import (
    STATUS_FAILED,
    STATUS_SUCCESS,
    CallbackVerification,
    PaymentGateway,
    PaymentUrlParams,
    PaymentUrlResult,
    RefundRequest,
    RefundResult,
    TransactionQueryResult,
)
from billing.money import from_minor_units, to_minor_units

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

VNPAY_TIMEZONE = ZoneInfo("Asia/Ho_Chi_Minh")
DATE_FORMAT = "%Y%m%d%H%M%S"

API_VERSION = "2.1.0"
CURRENCY_CODE = "VND"
ORDER_TYPE = "other"
SUCCESS_CODE = "00"

SIGNATURE_FIELDS = ("vnp_SecureHash", "vnp_SecureHashType")

RESPONSE_MESSAGES = {
    "00": "Transaction successful",
    "07": "Transaction suspicious (locked)",
    "09": "Customer card not registered for online payment",
    "10": "Customer authentication failed",
    "11": "Transaction timeout",
    "12": "Customer account locked",
    "13": "Invalid OTP",
    "24": "Customer cancelled transaction",
    "51": "Insufficient account balance",
    "65": "Customer exceeded daily transaction limit",
    "75": "Payment bank under maintenance",
    "79": "Transaction failed (multiple retries)",
    "99": "Unknown error",
}

# Merchant API (querydr / refund) response codes
API_RESPONSE_MESSAGES = {
    "00": "Request successful",
    "02": "Invalid merchant terminal code",
    "03": "Invalid request format",
    "91": "Transaction not found",
    "94": "Duplicate request",
    "95": "Transaction failed at VNPay, refund not allowed",
    "97": "Invalid checksum",
    "99": "Unknown error",
}
API_NOT_FOUND_CODE = "91"

# vnp_TransactionStatus returned by querydr
TRANSACTION_STATUS = {
    "00": STATUS_SUCCESS,
    "01": "PENDING",
    "02": STATUS_FAILED,
    "04": STATUS_FAILED,
    "07": "PENDING",
    "09": STATUS_FAILED,
}

REFUND_FULL = "02"
REFUND_PARTIAL = "03"

QUERY_HASH_FIELDS = (
    "vnp_RequestId",
    "vnp_Version",
    "vnp_Command",
    "vnp_TmnCode",
    "vnp_TxnRef",
    "vnp_TransactionDate",
    "vnp_CreateDate",
    "vnp_IpAddr",
    "vnp_OrderInfo",
)
REFUND_HASH_FIELDS = (
    "vnp_RequestId",
    "vnp_Version",
    "vnp_Command",
    "vnp_TmnCode",
    "vnp_TransactionType",
    "vnp_TxnRef",
    "vnp_Amount",
    "vnp_TransactionNo",
    "vnp_TransactionDate",
    "vnp_CreateBy",
    "vnp_CreateDate",
    "vnp_IpAddr",
    "vnp_OrderInfo",
)
RESPONSE_HASH_FIELDS = (
    "vnp_ResponseId",
    "vnp_Command",
    "vnp_ResponseCode",
    "vnp_Message",
    "vnp_TmnCode",
    "vnp_TxnRef",
    "vnp_Amount",
    "vnp_BankCode",
    "vnp_PayDate",
    "vnp_TransactionNo",
    "vnp_TransactionType",
    "vnp_TransactionStatus",
    "vnp_OrderInfo",
)


# =============================================================================
# Helpers
# =============================================================================


def format_vnpay_date(value: datetime) -> str:
    """yyyyMMddHHmmss in Vietnam local time."""
    if timezone.is_naive(value):
        value = timezone.make_aware(value)
    return value.astimezone(VNPAY_TIMEZONE).strftime(DATE_FORMAT)


def parse_vnpay_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.strptime(value, DATE_FORMAT).replace(tzinfo=VNPAY_TIMEZONE)
    except (TypeError, ValueError):
        return None


def sign(data: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), data.encode("utf-8"), hashlib.sha512).hexdigest()


def build_query(params: Mapping[str, Any]) -> str:
    """Sorted, empty-free, form-urlencoded query string."""
    items = sorted(
        (key, str(value)) for key, value in params.items() if value not in ("", None)
    )
    return urlencode(items)


def get_response_message(code: str | None) -> str:
    return RESPONSE_MESSAGES.get(code or "", f"Error code: {code}")


# =============================================================================
# Gateway
# =============================================================================


class VNPayGateway(PaymentGateway):
    """
    VNPay implementation of the payment gateway port.

    Args:
        transport: Optional httpx transport for the merchant API
            (tests pass httpx.MockTransport)
    """

    gateway_name = "VNPAY"

    def __init__(self, transport: httpx.BaseTransport | None = None) -> None:
        self.tmn_code = settings.VNPAY_TMN_CODE
        self.hash_secret = settings.VNPAY_HASH_SECRET
        self.payment_url = settings.VNPAY_PAYMENT_URL
        self.api_url = settings.VNPAY_API_URL
        self.return_url = settings.VNPAY_RETURN_URL
        self.timeout = settings.VNPAY_API_TIMEOUT
        self.payment_timeout = timedelta(minutes=settings.VNPAY_PAYMENT_TIMEOUT_MINUTES)
        self.server_ip = settings.VNPAY_SERVER_IP
        self._transport = transport

    def get_gateway_name(self) -> str:
        return self.gateway_name

    def get_response_message(self, code: str | None) -> str:
        return get_response_message(code)

    # ==========================================================================
    # Redirect
    # ==========================================================================

    def generate_payment_url(self, params: PaymentUrlParams) -> PaymentUrlResult:
        created_at = params.created_at or timezone.now()
        vnp_params = {
            "vnp_Version": API_VERSION,
            "vnp_Command": "pay",
            "vnp_TmnCode": self.tmn_code,
            "vnp_Locale": params.locale or "vn",
            "vnp_CurrCode": CURRENCY_CODE,
            "vnp_TxnRef": params.order_id,
            "vnp_OrderInfo": params.description,
            "vnp_OrderType": ORDER_TYPE,
            "vnp_Amount": to_minor_units(params.amount),
            "vnp_ReturnUrl": params.return_url or self.return_url,
            "vnp_IpAddr": params.client_ip,
            "vnp_CreateDate": format_vnpay_date(created_at),
            "vnp_ExpireDate": format_vnpay_date(created_at + self.payment_timeout),
        }
        query = build_query(vnp_params)
        secure_hash = sign(query, self.hash_secret)

        logger.info(
            "Generated VNPay payment URL",
            extra={"order_id": params.order_id, "amount": str(params.amount)},
        )
        return PaymentUrlResult(
            payment_url=f"{self.payment_url}?{query}&vnp_SecureHash={secure_hash}",
            order_id=params.order_id,
        )

    # ==========================================================================
    # Callback / IPN
    # ==========================================================================

    def verify_callback(self, raw_params: dict[str, Any]) -> CallbackVerification:
        return self._verify(raw_params)

    def verify_ipn(self, raw_params: dict[str, Any]) -> CallbackVerification:
        return self._verify(raw_params)

    def _verify(self, raw_params: Mapping[str, Any] | None) -> CallbackVerification:
        raw = {str(key): str(value) for key, value in dict(raw_params or {}).items()}
        received_hash = raw.get("vnp_SecureHash", "")
        unsigned = {key: value for key, value in raw.items() if key not in SIGNATURE_FIELDS}
        expected_hash = sign(build_query(unsigned), self.hash_secret)

        order_id = raw.get("vnp_TxnRef") or None
        response_code = raw.get("vnp_ResponseCode") or None
        is_success = (
            response_code == SUCCESS_CODE and raw.get("vnp_TransactionStatus") == SUCCESS_CODE
        )
        is_valid = bool(received_hash) and hmac.compare_digest(
            expected_hash.lower(), received_hash.lower()
        )
        message = get_response_message(response_code)

        amount = None
        if is_valid:
            try:
                amount = from_minor_units(raw.get("vnp_Amount", ""))
            except InvalidAmountError:
                is_valid = False
                message = "Malformed amount"

        if not is_valid:
            logger.warning(
                "VNPay payload failed verification",
                extra={"order_id": order_id, "response_code": response_code},
            )

        return CallbackVerification(
            is_valid=is_valid,
            transaction_id=(raw.get("vnp_TransactionNo") or None) if is_valid else None,
            amount=amount,
            status=STATUS_SUCCESS if is_success else STATUS_FAILED,
            message=message,
            raw_data=raw,
            order_id=order_id,
            response_code=response_code,
            transaction_time=parse_vnpay_date(raw.get("vnp_PayDate")),
        )

    # ==========================================================================
    # Merchant API
    # ==========================================================================

    def initiate_refund(self, request: RefundRequest) -> RefundResult:
        payload = {
            "vnp_RequestId": uuid.uuid4().hex,
            "vnp_Version": API_VERSION,
            "vnp_Command": "refund",
            "vnp_TmnCode": self.tmn_code,
            "vnp_TransactionType": REFUND_FULL if request.is_full_refund else REFUND_PARTIAL,
            "vnp_TxnRef": request.order_id,
            "vnp_Amount": str(to_minor_units(request.amount)),
            "vnp_TransactionNo": request.transaction_id,
            "vnp_TransactionDate": format_vnpay_date(request.transaction_date),
            "vnp_CreateBy": request.requested_by or "system",
            "vnp_CreateDate": format_vnpay_date(timezone.now()),
            "vnp_IpAddr": self.server_ip,
            "vnp_OrderInfo": request.reason or f"Refund {request.order_id}",
        }
        payload["vnp_SecureHash"] = self._sign_fields(payload, REFUND_HASH_FIELDS)

        data = self._post(payload)
        code = data.get("vnp_ResponseCode")
        if not self._response_signature_ok(data):
            return RefundResult(
                success=False,
                refund_transaction_id=None,
                message="Invalid response signature",
                raw_data=data,
                response_code=code,
            )

        success = code == SUCCESS_CODE
        logger.info(
            "VNPay refund %s",
            "accepted" if success else "rejected",
            extra={"order_id": request.order_id, "response_code": code},
        )
        return RefundResult(
            success=success,
            refund_transaction_id=(data.get("vnp_TransactionNo") or None) if success else None,
            message=data.get("vnp_Message") or API_RESPONSE_MESSAGES.get(code, f"Error code: {code}"),
            raw_data=data,
            response_code=code,
        )

    def query_transaction(self, order_id: str, transaction_date: datetime) -> TransactionQueryResult:
        payload = {
            "vnp_RequestId": uuid.uuid4().hex,
            "vnp_Version": API_VERSION,
            "vnp_Command": "querydr",
            "vnp_TmnCode": self.tmn_code,
            "vnp_TxnRef": order_id,
            "vnp_TransactionDate": format_vnpay_date(transaction_date),
            "vnp_CreateDate": format_vnpay_date(timezone.now()),
            "vnp_IpAddr": self.server_ip,
            "vnp_OrderInfo": f"Query transaction {order_id}",
        }
        payload["vnp_SecureHash"] = self._sign_fields(payload, QUERY_HASH_FIELDS)

        data = self._post(payload)
        code = data.get("vnp_ResponseCode")
        message = data.get("vnp_Message") or API_RESPONSE_MESSAGES.get(code, f"Error code: {code}")

        if not self._response_signature_ok(data):
            return TransactionQueryResult(
                found=False,
                transaction_id=None,
                amount=None,
                status="UNVERIFIED",
                raw_data=data,
                response_code=code,
                message="Invalid response signature",
            )
        if code == API_NOT_FOUND_CODE:
            return TransactionQueryResult(
                found=False,
                transaction_id=None,
                amount=None,
                status="NOT_FOUND",
                raw_data=data,
                response_code=code,
                message=message,
            )
        if code != SUCCESS_CODE:
            return TransactionQueryResult(
                found=False,
                transaction_id=None,
                amount=None,
                status="ERROR",
                raw_data=data,
                response_code=code,
                message=message,
            )

        try:
            amount = from_minor_units(data.get("vnp_Amount", ""))
        except InvalidAmountError:
            amount = None
        return TransactionQueryResult(
            found=True,
            transaction_id=data.get("vnp_TransactionNo") or None,
            amount=amount,
            status=TRANSACTION_STATUS.get(data.get("vnp_TransactionStatus"), "PENDING"),
            raw_data=data,
            response_code=code,
            message=message,
        )

    # ==========================================================================
    # Internals
    # ==========================================================================

    def _sign_fields(self, data: Mapping[str, Any], fields: tuple[str, ...]) -> str:
        return sign("|".join(str(data.get(name, "")) for name in fields), self.hash_secret)

    def _response_signature_ok(self, data: Mapping[str, Any]) -> bool:
        received = str(data.get("vnp_SecureHash", ""))
        if not received:
            return False
        return hmac.compare_digest(
            self._sign_fields(data, RESPONSE_HASH_FIELDS).lower(), received.lower()
        )

    def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        """
        POST a JSON request to the merchant API.

        Raises:
            GatewayUnavailableError: Transport error, timeout, 5xx or non-JSON body
        """
        command = payload.get("vnp_Command")
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(self.api_url, json=payload)
        except (httpx.TransportError, httpx.TimeoutException) as exc:
            logger.warning(
                "VNPay %s request failed: %s",
                command,
                type(exc).__name__,
                extra={"order_id": payload.get("vnp_TxnRef")},
            )
            raise GatewayUnavailableError(
                f"VNPay {command} request failed",
                details={"order_id": payload.get("vnp_TxnRef")},
            ) from exc

        if response.status_code >= 500:
            logger.warning(
                "VNPay %s returned HTTP %s",
                command,
                response.status_code,
                extra={"order_id": payload.get("vnp_TxnRef")},
            )
            raise GatewayUnavailableError(
                f"VNPay {command} returned HTTP {response.status_code}",
                details={"status_code": response.status_code},
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise GatewayUnavailableError(
                f"VNPay {command} returned a non-JSON body",
                details={"status_code": response.status_code},
            ) from exc
        if not isinstance(data, dict):
            raise GatewayUnavailableError(f"VNPay {command} returned an unexpected body")
        return data
