"""
Payment gateway port and implementations.

Usage:
    from billing.gateways import get_gateway, PaymentUrlParams
"""

from billing.gateways.base import (
    STATUS_FAILED,
    STATUS_SUCCESS,
    CallbackVerification,
    IpnResponseCode,
    PaymentGateway,
    PaymentUrlParams,
    PaymentUrlResult,
    RefundRequest,
    RefundResult,
    TransactionQueryResult,
    get_gateway,
    ipn_response,
)

__all__ = [
    "STATUS_FAILED",
    "STATUS_SUCCESS",
    "CallbackVerification",
    "IpnResponseCode",
    "PaymentGateway",
    "PaymentUrlParams",
    "PaymentUrlResult",
    "RefundRequest",
    "RefundResult",
    "TransactionQueryResult",
    "get_gateway",
    "ipn_response",
]
