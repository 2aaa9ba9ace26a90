"""
Billing-specific exceptions.

Exception Hierarchy:
    ValidationError (400)
    ├── InvalidAmountError - Negative/float/over-limit money amounts
    ├── InvalidRefundAmountError - Refund outside 0 < amount <= paid amount
    └── PaymentValidationError - Malformed payment requests
    NotFoundError (404)
    ├── InvoiceNotFoundError
    ├── PaymentNotFoundError
    └── AppointmentNotFoundError
    ConflictError (409)
    ├── InvalidStateTransitionError - Guard violation on Invoice/Payment
    ├── InvoiceAlreadyExistsError - One invoice per appointment
    ├── AppointmentNotCompletedError - Appointment cannot be invoiced yet
    ├── DuplicatePaymentError - Idempotency key already used
    ├── StaleRecordError - Optimistic locking conflict
    ├── LockAcquisitionError - Distributed lock timeout
    └── ImmutableRecordError - Write to an append-only archive row
    ExternalServiceError (502)
    └── GatewayError - Base for payment gateway failures
        ├── GatewaySignatureInvalidError - Bad HMAC on a gateway payload
        ├── GatewayAmountMismatchError - Payload amount differs from the payment
        ├── GatewayRefundRejectedError - Gateway declined a refund (permanent)
        ├── GatewayConfigurationError - Missing credentials / unknown gateway
        └── GatewayUnavailableError - Network, timeout or 5xx (transient, retry)

Usage:
    from billing.exceptions import InvalidStateTransitionError

    raise InvalidStateTransitionError(
        action="mark_paid",
        current_state="pending",
        expected_state="processing_online",
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Validation Errors
# =============================================================================


class InvalidAmountError(ValidationError):
    """Raised for a money amount that is negative, non-decimal or out of range."""

    default_error_code: str = "INVALID_AMOUNT"


class InvalidRefundAmountError(ValidationError):
    """
    Raised when a refund amount is not within (0, payment amount].

    The payment is left untouched; the caller can retry with a valid amount.
    """

    default_error_code: str = "INVALID_REFUND_AMOUNT"


class PaymentValidationError(ValidationError):
    """Raised when a payment request is malformed (wrong method, bad key, ...)."""

    default_error_code: str = "PAYMENT_VALIDATION_ERROR"


# =============================================================================
# Not Found Errors
# =============================================================================


class InvoiceNotFoundError(NotFoundError):
    default_error_code: str = "INVOICE_NOT_FOUND"


class PaymentNotFoundError(NotFoundError):
    default_error_code: str = "PAYMENT_NOT_FOUND"


class AppointmentNotFoundError(NotFoundError):
    default_error_code: str = "APPOINTMENT_NOT_FOUND"


# =============================================================================
# Conflict Errors
# =============================================================================


class InvalidStateTransitionError(ConflictError):
    """
    Raised when a state machine transition is not allowed.

    Wraps django-fsm's TransitionNotAllowed with the attempted action and
    the current and expected states, so API clients can tell what to do
    next.

    Attributes:
        action: Transition the caller attempted
        current_state: State the entity is in
        expected_state: State(s) the transition requires
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"

    def __init__(
        self,
        message: str | None = None,
        *,
        action: str,
        current_state: str,
        expected_state: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.action = action
        self.current_state = str(current_state)
        self.expected_state = str(expected_state)
        message = message or (
            f"Cannot {action}: current status is '{self.current_state}', "
            f"expected '{self.expected_state}'"
        )
        super().__init__(
            message,
            error_code=error_code,
            details={
                "action": action,
                "current_state": self.current_state,
                "expected_state": self.expected_state,
                **(details or {}),
            },
        )


class InvoiceAlreadyExistsError(ConflictError):
    default_error_code: str = "INVOICE_ALREADY_EXISTS"


class AppointmentNotCompletedError(ConflictError):
    default_error_code: str = "APPOINTMENT_NOT_COMPLETED"


class DuplicatePaymentError(ConflictError):
    """
    Raised when an idempotency key has already produced a payment.

    The existing payment stays authoritative; its id is in details.
    """

    default_error_code: str = "DUPLICATE_PAYMENT"


class StaleRecordError(ConflictError):
    """
    Raised when optimistic locking detects a concurrent modification.

    Details carry expected_version and current_version; callers reload
    and retry.
    """

    default_error_code: str = "STALE_RECORD"


class LockAcquisitionError(ConflictError):
    """Raised when a distributed lock cannot be acquired in time."""

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


class ImmutableRecordError(ConflictError):
    """Raised on an attempt to update or delete an append-only record."""

    default_error_code: str = "IMMUTABLE_RECORD"


# =============================================================================
# Gateway Errors
# =============================================================================


class GatewayError(ExternalServiceError):
    """
    Base exception for payment gateway failures.

    Attributes:
        is_retryable: Whether the same call may succeed later

    Example:
        try:
            gateway.initiate_refund(request)
        except GatewayError as e:
            if e.is_retryable:
                # Leave the payment untouched and retry later
                ...
    """

    default_error_code: str = "GATEWAY_ERROR"
    is_retryable: bool = False


class GatewaySignatureInvalidError(GatewayError):
    """
    Gateway payload failed signature verification.

    The message is deliberately generic; verification details go to the
    logs and the archive only.
    """

    default_error_code: str = "GATEWAY_SIGNATURE_INVALID"
    http_status: int = 400


class GatewayAmountMismatchError(GatewayError):
    """
    Gateway reported an amount that differs from the stored payment.

    Treated as fraud-suspect. Nothing is mutated.
    """

    default_error_code: str = "GATEWAY_AMOUNT_MISMATCH"
    http_status: int = 400


class GatewayRefundRejectedError(GatewayError):
    """Gateway answered but declined the refund (permanent)."""

    default_error_code: str = "GATEWAY_REFUND_REJECTED"


class GatewayConfigurationError(GatewayError):
    """No gateway configured for a payment method, or missing credentials."""

    default_error_code: str = "GATEWAY_NOT_CONFIGURED"
    http_status: int = 400


class GatewayUnavailableError(GatewayError):
    """
    Gateway could not be reached: network error, timeout or 5xx.

    Entities are left in their retryable PENDING/PROCESSING state.
    """

    default_error_code: str = "GATEWAY_UNAVAILABLE"
    http_status: int = 503
    is_retryable: bool = True


__all__ = [
    "AppointmentNotCompletedError",
    "AppointmentNotFoundError",
    "DuplicatePaymentError",
    "GatewayAmountMismatchError",
    "GatewayConfigurationError",
    "GatewayError",
    "GatewayRefundRejectedError",
    "GatewaySignatureInvalidError",
    "GatewayUnavailableError",
    "ImmutableRecordError",
    "InvalidAmountError",
    "InvalidRefundAmountError",
    "InvalidStateTransitionError",
    "InvoiceAlreadyExistsError",
    "InvoiceNotFoundError",
    "LockAcquisitionError",
    "PaymentNotFoundError",
    "PaymentValidationError",
    "StaleRecordError",
]
