"""
Payment gateway port.

Each online processor (VNPay, MoMo, ZaloPay, ...) is one PaymentGateway
subclass. The orchestrator never talks to a processor directly; it asks
get_gateway() for the implementation configured for a payment method.

Configuration (via settings):
- BILLING_GATEWAYS: {"vnpay": "billing.gateways.vnpay.VNPayGateway", ...}

Usage:
    from billing.gateways import PaymentUrlParams, get_gateway

    gateway = get_gateway(PaymentMethod.VNPAY)
    result = gateway.generate_payment_url(
        PaymentUrlParams(
            order_id=payment.order_reference,
            amount=payment.amount,
            description=f"Invoice {invoice.invoice_number}",
            return_url=settings.VNPAY_RETURN_URL,
            client_ip="203.0.113.7",
        )
    )
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.utils.module_loading import import_string

from billing.exceptions import GatewayConfigurationError
from billing.state_machines import PaymentMethod

if TYPE_CHECKING:
    from datetime import datetime


STATUS_SUCCESS = "SUCCESS"
STATUS_FAILED = "FAILED"


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class PaymentUrlParams:
    """
    Input for building a redirect URL.

    Attributes:
        order_id: Order reference echoed back by the gateway (payment id hex)
        amount: Amount in major units (VND)
        description: Order info shown to the customer
        return_url: Where the gateway sends the customer afterwards
        client_ip: Customer IP address
        locale: Gateway UI language ("vn" or "en")
        created_at: Order creation time (defaults to now)
    """

    order_id: str
    amount: Decimal
    description: str
    return_url: str
    client_ip: str
    locale: str = "vn"
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        if not self.order_id:
            raise ValueError("order_id is required")
        if self.amount is None or Decimal(self.amount) <= 0:
            raise ValueError("amount must be positive")
        if not self.client_ip:
            raise ValueError("client_ip is required")


@dataclass
class PaymentUrlResult:
    payment_url: str
    order_id: str


@dataclass
class CallbackVerification:
    """
    Outcome of checking a return-URL callback or IPN payload.

    transaction_id and amount are only populated when is_valid is True.
    order_id and response_code are always read from the payload so that
    rejected payloads can still be archived against the right order.
    """

    is_valid: bool
    transaction_id: str | None
    amount: Decimal | None
    status: str
    message: str
    raw_data: dict[str, Any] = field(default_factory=dict)
    order_id: str | None = None
    response_code: str | None = None
    transaction_time: datetime | None = None

    @property
    def is_success(self) -> bool:
        return self.is_valid and self.status == STATUS_SUCCESS


@dataclass
class RefundRequest:
    """
    Attributes:
        order_id: Original order reference
        transaction_id: Gateway transaction number of the original payment
        amount: Amount to refund in major units
        original_amount: Amount of the original payment (full vs partial)
        reason: Free text sent to the gateway
        transaction_date: When the original payment was created
        requested_by: Username recorded by the gateway
    """

    order_id: str
    transaction_id: str
    amount: Decimal
    original_amount: Decimal
    reason: str
    transaction_date: datetime
    requested_by: str = "system"

    def __post_init__(self) -> None:
        if Decimal(self.amount) <= 0:
            raise ValueError("amount must be positive")
        if not self.transaction_id:
            raise ValueError("transaction_id is required")

    @property
    def is_full_refund(self) -> bool:
        return Decimal(self.amount) >= Decimal(self.original_amount)


@dataclass
class RefundResult:
    success: bool
    refund_transaction_id: str | None
    message: str
    raw_data: dict[str, Any] = field(default_factory=dict)
    response_code: str | None = None


@dataclass
class TransactionQueryResult:
    """
    Gateway view of one order.

    status is SUCCESS, FAILED, PENDING or NOT_FOUND.
    """

    found: bool
    transaction_id: str | None
    amount: Decimal | None
    status: str
    raw_data: dict[str, Any] = field(default_factory=dict)
    response_code: str | None = None
    message: str = ""


# =============================================================================
# IPN Acknowledgement
# =============================================================================


class IpnResponseCode:
    CONFIRMED = "00"
    ORDER_NOT_FOUND = "01"
    ALREADY_CONFIRMED = "02"
    INVALID_AMOUNT = "04"
    INVALID_SIGNATURE = "97"
    UNKNOWN_ERROR = "99"

    MESSAGES = {
        CONFIRMED: "Confirm Success",
        ORDER_NOT_FOUND: "Order not found",
        ALREADY_CONFIRMED: "Order already confirmed",
        INVALID_AMOUNT: "Invalid amount",
        INVALID_SIGNATURE: "Invalid signature",
        UNKNOWN_ERROR: "Unknown error",
    }


def ipn_response(code: str) -> dict[str, str]:
    """Body the gateway expects back from an IPN endpoint."""
    return {
        "RspCode": code,
        "Message": IpnResponseCode.MESSAGES.get(code, IpnResponseCode.MESSAGES["99"]),
    }


# =============================================================================
# Port
# =============================================================================


class PaymentGateway(ABC):
    """Interface every online payment processor implements."""

    @abstractmethod
    def generate_payment_url(self, params: PaymentUrlParams) -> PaymentUrlResult:
        """Build the signed redirect URL. Performs no I/O."""

    @abstractmethod
    def verify_callback(self, raw_params: dict[str, Any]) -> CallbackVerification:
        """Check a return-URL payload. Never raises on malformed input."""

    @abstractmethod
    def verify_ipn(self, raw_params: dict[str, Any]) -> CallbackVerification:
        """Check a server-to-server notification. Never raises on malformed input."""

    @abstractmethod
    def initiate_refund(self, request: RefundRequest) -> RefundResult:
        """
        Ask the processor to refund a settled payment.

        Raises:
            GatewayUnavailableError: Processor unreachable or 5xx
        """

    @abstractmethod
    def query_transaction(self, order_id: str, transaction_date: datetime) -> TransactionQueryResult:
        """
        Look up an order at the processor.

        Raises:
            GatewayUnavailableError: Processor unreachable or 5xx
        """

    @abstractmethod
    def get_gateway_name(self) -> str:
        """Upper-case processor name stored in the archive, e.g. "VNPAY"."""

    def get_response_message(self, code: str | None) -> str:
        return f"Error code: {code}"


def get_gateway(payment_method: str) -> PaymentGateway:
    """
    Instantiate the gateway configured for a payment method.

    Raises:
        GatewayConfigurationError: For CASH or a method with no gateway
    """
    if payment_method == PaymentMethod.CASH:
        raise GatewayConfigurationError(
            "Cash payments do not use a payment gateway",
            details={"payment_method": payment_method},
        )
    dotted_path = getattr(settings, "BILLING_GATEWAYS", {}).get(payment_method)
    if not dotted_path:
        raise GatewayConfigurationError(
            f"No payment gateway configured for '{payment_method}'",
            details={"payment_method": payment_method},
        )
    return import_string(dotted_path)()
