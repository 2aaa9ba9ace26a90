"""
Payment orchestrator: the single entry point that mutates invoices and payments.

The orchestrator:
- Generates invoices for completed appointments
- Records cash payments at the front desk
- Starts online payments and hands out the gateway redirect URL
- Applies return-URL callbacks and IPNs idempotently
- Drives refunds through the gateway
- Archives every gateway payload it sees

Every mutation re-reads the Invoice/Payment rows with select_for_update()
inside transaction.atomic() and re-checks state under the lock. Gateway
I/O for refunds runs outside the database transaction, serialized per
payment by a Redis DistributedLock.

Usage:
    from billing.services import PaymentOrchestrator

    invoice = PaymentOrchestrator.generate_invoice(appointment.id)

    session = PaymentOrchestrator.initiate_online_payment(
        invoice.id,
        client_ip=request.META["REMOTE_ADDR"],
    )
    redirect(session.payment_url)

    # From the IPN endpoint
    body = PaymentOrchestrator.handle_ipn(dict(request.GET.items()))
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.db import IntegrityError, transaction

from core.exceptions import ValidationError
from core.services import BaseService

from billing.exceptions import (
    AppointmentNotCompletedError,
    AppointmentNotFoundError,
    DuplicatePaymentError,
    GatewayAmountMismatchError,
    GatewayError,
    GatewayRefundRejectedError,
    GatewaySignatureInvalidError,
    GatewayUnavailableError,
    InvalidAmountError,
    InvalidRefundAmountError,
    InvalidStateTransitionError,
    InvoiceAlreadyExistsError,
    InvoiceNotFoundError,
    PaymentNotFoundError,
    PaymentValidationError,
)
from billing.gateways import (
    STATUS_SUCCESS,
    IpnResponseCode,
    PaymentUrlParams,
    RefundRequest,
    ipn_response,
)
from billing.gateways import get_gateway as resolve_gateway
from billing.idempotency import IdempotencyKeyGenerator
from billing.locks import DistributedLock
from billing.models import Invoice, InvoiceItem, Payment, PaymentGatewayArchive
from billing.money import ZERO, compute_tax, ensure_non_negative, format_money, sum_money, to_money
from billing.notifications import PaymentNotifier
from billing.state_machines import GatewayInteraction, PaymentMethod, PaymentStatus
from clinic.selectors import get_appointment, get_service_lines

if TYPE_CHECKING:
    from datetime import datetime

    from django.db.models import QuerySet

    from billing.gateways import CallbackVerification, PaymentGateway


REFUND_LOCK_TTL = 60
REFUND_LOCK_TIMEOUT = 5.0

SETTLED_SUCCESS = "paid"
SETTLED_FAILED = "failed"
ALREADY_PROCESSED = "already_processed"


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class OnlinePaymentSession:
    """Payment moved to PROCESSING and the URL the customer is redirected to."""

    payment: Payment
    payment_url: str

    @property
    def order_id(self) -> str:
        return self.payment.order_reference


@dataclass
class SettlementOutcome:
    """
    Result of applying a gateway verdict to a payment.

    action is one of "paid", "failed" or "already_processed".
    """

    payment: Payment
    action: str
    verification: CallbackVerification | None = None

    @property
    def already_processed(self) -> bool:
        return self.action == ALREADY_PROCESSED


@dataclass
class Receipt:
    receipt_number: str
    payment_id: str
    invoice_number: str
    owner_name: str
    pet_name: str
    payment_method: str
    status: str
    amount: str
    refund_amount: str
    paid_at: datetime | None
    transaction_id: str | None
    subtotal: str
    discount: str
    tax: str
    total: str
    lines: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class PaymentVerification:
    payment: Payment
    verified: bool
    gateway_status: str
    gateway_amount: Decimal | None = None
    message: str = ""


def _as_uuid(value: uuid.UUID | str | None) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None


# =============================================================================
# Payment Orchestrator
# =============================================================================


class PaymentOrchestrator(BaseService):
    """
    Coordinates Invoice, Payment, the gateway port and the archive.

    All methods are class methods. The gateway and the notifier can be
    swapped for tests with set_gateway() / set_notifier().
    """

    _gateway: PaymentGateway | None = None
    _notifier: PaymentNotifier | None = None

    @classmethod
    def get_gateway(cls, payment_method: str = PaymentMethod.VNPAY) -> PaymentGateway:
        return cls._gateway or resolve_gateway(payment_method)

    @classmethod
    def set_gateway(cls, gateway: PaymentGateway | None) -> None:
        cls._gateway = gateway

    @classmethod
    def get_notifier(cls) -> PaymentNotifier:
        return cls._notifier or PaymentNotifier()

    @classmethod
    def set_notifier(cls, notifier: PaymentNotifier | None) -> None:
        cls._notifier = notifier

    # =========================================================================
    # Invoices
    # =========================================================================

    @classmethod
    def generate_invoice(
        cls,
        appointment_id: uuid.UUID | str,
        discount: Decimal | int | str = 0,
        notes: str | None = None,
    ) -> Invoice:
        """
        Bill a completed appointment.

        The service lines are copied into invoice items and summed into the
        subtotal. Tax is BILLING_TAX_RATE on the subtotal, before any
        discount, so a discount given now or later through apply_discount
        yields the same total.

        Raises:
            AppointmentNotFoundError: Unknown appointment
            AppointmentNotCompletedError: Appointment is not COMPLETED
            InvoiceAlreadyExistsError: Appointment already has an invoice
            InvalidAmountError: Negative discount or discount above subtotal + tax
        """
        appointment_uuid = _as_uuid(appointment_id)
        discount = ensure_non_negative(discount, "discount")

        with transaction.atomic():
            appointment = get_appointment(appointment_uuid, for_update=True) if appointment_uuid else None
            if appointment is None:
                raise AppointmentNotFoundError(
                    f"Appointment {appointment_id} not found",
                    details={"appointment_id": str(appointment_id)},
                )
            if not appointment.is_completed:
                raise AppointmentNotCompletedError(
                    "Only completed appointments can be invoiced",
                    details={"appointment_id": str(appointment.id), "status": appointment.status},
                )
            if Invoice.objects.filter(appointment=appointment).exists():
                raise InvoiceAlreadyExistsError(
                    f"Appointment {appointment.id} already has an invoice",
                    details={"appointment_id": str(appointment.id)},
                )

            lines = get_service_lines(appointment)
            subtotal = sum_money(line.line_total for line in lines)
            invoice = Invoice.create_for_appointment(
                appointment,
                subtotal=subtotal,
                discount=discount,
                tax=compute_tax(subtotal),
                notes=notes or "",
            )
            try:
                with transaction.atomic():
                    invoice.save()
            except IntegrityError as exc:
                if Invoice.objects.filter(appointment=appointment).exists():
                    raise InvoiceAlreadyExistsError(
                        f"Appointment {appointment.id} already has an invoice",
                        details={"appointment_id": str(appointment.id)},
                    ) from exc
                raise
            InvoiceItem.objects.bulk_create(
                InvoiceItem.from_service_line(invoice, line) for line in lines
            )

        cls.get_logger().info(
            "Invoice generated",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "appointment_id": str(appointment.id),
                "total_amount": str(invoice.total_amount),
            },
        )
        return invoice

    # =========================================================================
    # Cash
    # =========================================================================

    @classmethod
    def process_cash_payment(
        cls,
        invoice_id: uuid.UUID | str,
        amount: Decimal | int | str,
        received_by: Any = None,
        notes: str | None = None,
    ) -> Payment:
        """
        Record a cash payment covering the whole invoice.

        Raises:
            InvoiceNotFoundError: Unknown invoice
            InvalidStateTransitionError: Invoice is not PENDING
            PaymentValidationError: Amount differs from the invoice total
        """
        amount = to_money(amount)

        with transaction.atomic():
            invoice = cls._lock_invoice(invoice_id)
            invoice.ensure_can_proceed("pay_by_cash")
            if amount != invoice.total_amount:
                raise PaymentValidationError(
                    "Cash payment must equal the invoice total",
                    details={"amount": str(amount), "total_amount": str(invoice.total_amount)},
                )

            payment = Payment.create_cash(invoice, amount, received_by=received_by, notes=notes or "")
            payment.process_cash()
            payment.save()

            invoice.pay_by_cash()
            invoice.save()

            notifier = cls.get_notifier()
            transaction.on_commit(lambda: notifier.payment_confirmed(payment))

        cls.get_logger().info(
            "Cash payment recorded",
            extra={
                "payment_id": str(payment.id),
                "invoice_id": str(invoice.id),
                "amount": str(amount),
            },
        )
        return payment

    # =========================================================================
    # Online Payment Initiation
    # =========================================================================

    @classmethod
    def initiate_online_payment(
        cls,
        invoice_id: uuid.UUID | str,
        amount: Decimal | int | str | None = None,
        payment_method: str = PaymentMethod.VNPAY,
        idempotency_key: str | None = None,
        *,
        client_ip: str,
        return_url: str | None = None,
        locale: str = "vn",
    ) -> OnlinePaymentSession:
        """
        Start an online payment and return the gateway redirect URL.

        Phase one commits a PENDING payment (or finds the PENDING payment a
        previous attempt left behind). Phase two, in one transaction, moves
        invoice and payment forward and asks the gateway for the URL; any
        gateway error rolls phase two back so the payment stays PENDING and
        the invoice keeps its status.

        Raises:
            InvoiceNotFoundError: Unknown invoice
            DuplicatePaymentError: idempotency_key already used by another payment
            InvalidStateTransitionError: Invoice cannot start an online payment
            PaymentValidationError: Bad method, missing client IP, or amount
                different from the invoice total
            GatewayConfigurationError: No gateway configured for payment_method;
                raised before anything is saved
            GatewayUnavailableError: Gateway could not produce a URL
        """
        if payment_method not in PaymentMethod.online_methods():
            raise PaymentValidationError(
                f"'{payment_method}' is not an online payment method",
                details={"payment_method": payment_method},
            )
        if not client_ip:
            raise PaymentValidationError("Client IP address is required for online payments")
        key = idempotency_key.strip() if idempotency_key else None
        gateway = cls.get_gateway(payment_method)

        # Phase 1: persist a PENDING payment
        with transaction.atomic():
            invoice = cls._lock_invoice(invoice_id)
            payment = cls._find_resumable_payment(invoice, key, payment_method)
            if payment is None:
                invoice.ensure_can_proceed("start_online_payment")
                charge = cls._online_amount(invoice, amount)
                key = key or IdempotencyKeyGenerator.generate(
                    "online_payment", invoice.id, attempt=invoice.payments.count() + 1
                )
                payment = Payment.create_online(invoice, charge, payment_method, key)
                try:
                    with transaction.atomic():
                        payment.save()
                except IntegrityError as exc:
                    raise DuplicatePaymentError(
                        "A payment with this idempotency key already exists",
                        details={"idempotency_key": key},
                    ) from exc
                created = True
            else:
                invoice.ensure_can_proceed("start_online_payment")
                if amount is not None and to_money(amount) != payment.amount:
                    raise PaymentValidationError(
                        "Amount differs from the pending payment being resumed",
                        details={"payment_id": str(payment.id), "amount": str(payment.amount)},
                    )
                created = False

        cls.get_logger().info(
            "Online payment created" if created else "Resuming pending online payment",
            extra={
                "payment_id": str(payment.id),
                "invoice_id": str(invoice.id),
                "payment_method": payment.payment_method,
            },
        )

        # Phase 2: transitions + URL, all or nothing
        try:
            with transaction.atomic():
                invoice = cls._lock_invoice(invoice.id)
                payment = Payment.objects.select_for_update().get(pk=payment.pk)
                if payment.status != PaymentStatus.PENDING:
                    raise DuplicatePaymentError(
                        "This payment is already in progress",
                        details={"payment_id": str(payment.id), "status": payment.status},
                    )
                if payment.amount != invoice.total_amount:
                    raise PaymentValidationError(
                        "Invoice total changed while the payment was being started",
                        details={"payment_id": str(payment.id), "total_amount": str(invoice.total_amount)},
                    )

                invoice.start_online_payment()
                invoice.save()
                payment.start_online_payment()
                payment.save()

                url_result = cls._generate_payment_url(
                    gateway,
                    PaymentUrlParams(
                        order_id=payment.order_reference,
                        amount=payment.amount,
                        description=f"Payment for invoice {invoice.invoice_number}",
                        return_url=return_url or settings.VNPAY_RETURN_URL,
                        client_ip=client_ip,
                        locale=locale or "vn",
                        created_at=payment.created_at,
                    ),
                )
        except GatewayError as exc:
            cls.get_logger().warning(
                "Gateway failed during payment initiation, payment left PENDING",
                extra={
                    "payment_id": str(payment.id),
                    "invoice_id": str(invoice.id),
                    "error_code": exc.error_code,
                },
            )
            raise

        cls.get_logger().info(
            "Online payment started",
            extra={
                "payment_id": str(payment.id),
                "invoice_id": str(invoice.id),
                "gateway": gateway.get_gateway_name(),
            },
        )
        return OnlinePaymentSession(payment=payment, payment_url=url_result.payment_url)

    @classmethod
    def _find_resumable_payment(
        cls,
        invoice: Invoice,
        key: str | None,
        payment_method: str,
    ) -> Payment | None:
        """
        PENDING online payment to reuse for this attempt, if any.

        Only a payment for the same method and for the current invoice total
        is resumed; one created before a discount changed the total is left
        behind and a new payment is made instead.

        Raises:
            DuplicatePaymentError: key belongs to a payment that cannot be resumed
            PaymentValidationError: key belongs to a PENDING payment for another
                method or for an outdated invoice total
        """
        if key:
            existing = Payment.objects.select_for_update().filter(idempotency_key=key).first()
            if existing is None:
                return None
            if existing.invoice_id == invoice.id and existing.status == PaymentStatus.PENDING:
                if existing.payment_method != payment_method or existing.amount != invoice.total_amount:
                    raise PaymentValidationError(
                        "The payment for this idempotency key no longer matches the invoice",
                        details={
                            "idempotency_key": key,
                            "payment_id": str(existing.id),
                            "payment_method": existing.payment_method,
                            "amount": str(existing.amount),
                            "total_amount": str(invoice.total_amount),
                        },
                    )
                return existing
            raise DuplicatePaymentError(
                "A payment with this idempotency key already exists",
                details={
                    "idempotency_key": key,
                    "payment_id": str(existing.id),
                    "status": existing.status,
                },
            )
        return (
            invoice.payments.select_for_update()
            .filter(
                status=PaymentStatus.PENDING,
                payment_method=payment_method,
                amount=invoice.total_amount,
            )
            .order_by("created_at")
            .first()
        )

    @staticmethod
    def _online_amount(invoice: Invoice, amount: Decimal | int | str | None) -> Decimal:
        if amount is None:
            return invoice.total_amount
        charge = to_money(amount)
        if charge != invoice.total_amount:
            raise PaymentValidationError(
                "Online payment must equal the invoice total",
                details={"amount": str(charge), "total_amount": str(invoice.total_amount)},
            )
        return charge

    @staticmethod
    def _generate_payment_url(gateway: PaymentGateway, params: PaymentUrlParams):
        try:
            return gateway.generate_payment_url(params)
        except GatewayError:
            raise
        except Exception as exc:
            raise GatewayUnavailableError(
                f"{gateway.get_gateway_name()} could not build a payment URL",
                details={"order_id": params.order_id},
            ) from exc

    # =========================================================================
    # Callbacks & IPN
    # =========================================================================

    @classmethod
    def handle_gateway_callback(cls, raw_params: dict[str, Any]) -> SettlementOutcome:
        """
        Apply the browser return-URL callback.

        Raises:
            GatewaySignatureInvalidError: Signature check failed
            PaymentNotFoundError: Order reference matches no payment
            GatewayAmountMismatchError: Amount differs from the payment
        """
        return cls._process_notification(raw_params, GatewayInteraction.CALLBACK)

    @classmethod
    def handle_ipn(cls, raw_params: dict[str, Any]) -> dict[str, str]:
        """
        Apply a server-to-server IPN and build the acknowledgement.

        Never raises; every outcome maps to an RspCode the gateway understands.
        """
        try:
            outcome = cls._process_notification(raw_params, GatewayInteraction.IPN)
        except GatewaySignatureInvalidError:
            return ipn_response(IpnResponseCode.INVALID_SIGNATURE)
        except PaymentNotFoundError:
            return ipn_response(IpnResponseCode.ORDER_NOT_FOUND)
        except GatewayAmountMismatchError:
            return ipn_response(IpnResponseCode.INVALID_AMOUNT)
        except Exception:
            cls.get_logger().exception(
                "Unexpected error while processing IPN",
                extra={"order_id": (raw_params or {}).get("vnp_TxnRef")},
            )
            cls._archive_unprocessed(raw_params, GatewayInteraction.IPN)
            return ipn_response(IpnResponseCode.UNKNOWN_ERROR)

        if outcome.already_processed:
            return ipn_response(IpnResponseCode.ALREADY_CONFIRMED)
        return ipn_response(IpnResponseCode.CONFIRMED)

    @classmethod
    def _process_notification(cls, raw_params: dict[str, Any], interaction: str) -> SettlementOutcome:
        gateway = cls.get_gateway()
        gateway_name = gateway.get_gateway_name()
        raw = dict(raw_params or {})
        if interaction == GatewayInteraction.IPN:
            verification = gateway.verify_ipn(raw)
        else:
            verification = gateway.verify_callback(raw)

        log_extra = {
            "order_id": verification.order_id,
            "gateway": gateway_name,
            "interaction": interaction,
            "response_code": verification.response_code,
        }

        if not verification.is_valid:
            cls.get_logger().warning("Rejected gateway payload with invalid signature", extra=log_extra)
            PaymentGatewayArchive.archive(
                payment=cls._find_payment(verification.order_id),
                gateway_name=gateway_name,
                interaction=interaction,
                gateway_response=raw,
                order_reference=verification.order_id or "",
                transaction_timestamp=verification.transaction_time,
            )
            raise GatewaySignatureInvalidError(
                "Invalid gateway signature",
                details={"order_id": verification.order_id},
            )

        rejection = None
        outcome = None
        with transaction.atomic():
            payment = cls._find_payment(verification.order_id, for_update=True)
            if payment is None:
                rejection = PaymentNotFoundError(
                    f"No payment for order {verification.order_id}",
                    details={"order_id": verification.order_id},
                )
            elif verification.amount != payment.amount:
                rejection = GatewayAmountMismatchError(
                    "Gateway amount does not match the payment amount",
                    details={
                        "payment_id": str(payment.id),
                        "expected": str(payment.amount),
                        "received": str(verification.amount),
                    },
                )
            else:
                outcome = cls._settle_locked(
                    payment,
                    success=verification.status == STATUS_SUCCESS,
                    transaction_id=verification.transaction_id,
                    gateway_response=raw,
                )
                outcome.verification = verification

            PaymentGatewayArchive.archive(
                payment=payment,
                gateway_name=gateway_name,
                interaction=interaction,
                gateway_response=raw,
                order_reference=verification.order_id or "",
                transaction_timestamp=verification.transaction_time,
            )

        if rejection is not None:
            cls.get_logger().warning(
                "Rejected gateway payload: %s",
                rejection.error_code,
                extra={**log_extra, **rejection.details},
            )
            raise rejection

        cls.get_logger().info(
            "Gateway notification applied",
            extra={**log_extra, "payment_id": str(outcome.payment.id), "action": outcome.action},
        )
        return outcome

    @classmethod
    def settle_online_payment(
        cls,
        payment_id: uuid.UUID | str,
        *,
        success: bool,
        transaction_id: str | None = None,
        gateway_response: dict[str, Any] | None = None,
    ) -> SettlementOutcome:
        """
        Apply a gateway verdict obtained outside a callback (reconciliation).

        Raises:
            PaymentNotFoundError: Unknown payment
            InvalidStateTransitionError: Payment is still PENDING
        """
        with transaction.atomic():
            payment = cls._find_payment(payment_id, for_update=True)
            if payment is None:
                raise PaymentNotFoundError(
                    f"Payment {payment_id} not found",
                    details={"payment_id": str(payment_id)},
                )
            return cls._settle_locked(
                payment,
                success=success,
                transaction_id=transaction_id,
                gateway_response=gateway_response,
            )

    @classmethod
    def _settle_locked(
        cls,
        payment: Payment,
        *,
        success: bool,
        transaction_id: str | None,
        gateway_response: dict[str, Any] | None,
    ) -> SettlementOutcome:
        """Apply a verdict to a payment row already locked by the caller."""
        if payment.status != PaymentStatus.PROCESSING:
            if payment.status == PaymentStatus.PENDING:
                raise InvalidStateTransitionError(
                    action="settle_online_payment",
                    current_state=payment.status,
                    expected_state=PaymentStatus.PROCESSING,
                )
            if success and payment.status == PaymentStatus.FAILED:
                cls.get_logger().error(
                    "Gateway reports success for a payment already marked failed",
                    extra={"payment_id": str(payment.id), "transaction_id": transaction_id},
                )
            return SettlementOutcome(payment=payment, action=ALREADY_PROCESSED)

        invoice = Invoice.objects.select_for_update().get(pk=payment.invoice_id)
        notifier = cls.get_notifier()

        if success:
            payment.mark_success(transaction_id, gateway_response)
            payment.save()
            invoice.mark_paid()
            invoice.save()
            transaction.on_commit(lambda: notifier.payment_confirmed(payment))
            action = SETTLED_SUCCESS
        else:
            payment.mark_failed(gateway_response)
            payment.save()
            invoice.mark_failed()
            invoice.save()
            transaction.on_commit(lambda: notifier.payment_failed(payment))
            action = SETTLED_FAILED

        payment.invoice = invoice
        return SettlementOutcome(payment=payment, action=action)

    @classmethod
    def _archive_unprocessed(cls, raw_params: dict[str, Any] | None, interaction: str) -> None:
        raw = dict(raw_params or {})
        try:
            PaymentGatewayArchive.archive(
                payment=None,
                gateway_name=cls.get_gateway().get_gateway_name(),
                interaction=interaction,
                gateway_response=raw,
                order_reference=str(raw.get("vnp_TxnRef", "")),
            )
        except Exception:
            cls.get_logger().exception(
                "Could not archive unprocessed gateway payload",
                extra={"order_id": raw.get("vnp_TxnRef"), "interaction": interaction},
            )

    # =========================================================================
    # Refunds
    # =========================================================================

    @classmethod
    def process_refund(
        cls,
        payment_id: uuid.UUID | str,
        amount: Decimal | int | str,
        reason: str = "",
        requested_by: str | None = None,
    ) -> Payment:
        """
        Refund all or part of a successful payment.

        Phase 1 (locked row): validate state and amount.
        Phase 2 (no transaction): gateway refund for online payments, archived.
        Phase 3 (locked row): payment.refund().

        Raises:
            PaymentNotFoundError: Unknown payment
            InvalidRefundAmountError: amount <= 0 or above the payment amount
            InvalidStateTransitionError: Payment is not SUCCESS
            GatewayRefundRejectedError: Gateway declined the refund
            GatewayUnavailableError: Gateway unreachable; nothing changed
            LockAcquisitionError: Another refund for this payment is running
        """
        try:
            refund_amount = to_money(amount)
        except InvalidAmountError as exc:
            raise InvalidRefundAmountError(exc.message, details=exc.details) from exc
        if refund_amount <= ZERO:
            raise InvalidRefundAmountError(
                "Refund amount must be greater than 0",
                details={"refund_amount": str(refund_amount)},
            )

        payment_uuid = _as_uuid(payment_id)
        if payment_uuid is None:
            raise PaymentNotFoundError(
                f"Payment {payment_id} not found",
                details={"payment_id": str(payment_id)},
            )

        with DistributedLock(f"billing:refund:{payment_uuid}", ttl=REFUND_LOCK_TTL, timeout=REFUND_LOCK_TIMEOUT):
            with transaction.atomic():
                payment = cls._find_payment(payment_uuid, for_update=True)
                if payment is None:
                    raise PaymentNotFoundError(
                        f"Payment {payment_id} not found",
                        details={"payment_id": str(payment_id)},
                    )
                payment.ensure_can_proceed("refund")
                payment.validate_refund_amount(refund_amount)

            if payment.is_online:
                cls._request_gateway_refund(payment, refund_amount, reason, requested_by)

            with transaction.atomic():
                payment = Payment.objects.select_for_update().get(pk=payment_uuid)
                payment.refund(refund_amount, reason)
                payment.save()

        cls.get_logger().info(
            "Payment refunded",
            extra={
                "payment_id": str(payment.id),
                "invoice_id": str(payment.invoice_id),
                "refund_amount": str(refund_amount),
                "payment_method": payment.payment_method,
            },
        )
        return payment

    @classmethod
    def _request_gateway_refund(
        cls,
        payment: Payment,
        amount: Decimal,
        reason: str,
        requested_by: str | None,
    ) -> None:
        gateway = cls.get_gateway(payment.payment_method)
        result = gateway.initiate_refund(
            RefundRequest(
                order_id=payment.order_reference,
                transaction_id=payment.transaction_id or "",
                amount=amount,
                original_amount=payment.amount,
                reason=reason or f"Refund for payment {payment.id}",
                transaction_date=payment.created_at,
                requested_by=requested_by or "system",
            )
        )
        PaymentGatewayArchive.archive(
            payment=payment,
            gateway_name=gateway.get_gateway_name(),
            interaction=GatewayInteraction.REFUND,
            gateway_response=result.raw_data,
            order_reference=payment.order_reference,
        )
        if not result.success:
            cls.get_logger().warning(
                "Gateway rejected refund",
                extra={
                    "payment_id": str(payment.id),
                    "gateway": gateway.get_gateway_name(),
                    "response_code": result.response_code,
                },
            )
            raise GatewayRefundRejectedError(
                result.message or "Refund rejected by the payment gateway",
                details={"payment_id": str(payment.id), "response_code": result.response_code},
            )

    # =========================================================================
    # Queries
    # =========================================================================

    @classmethod
    def get_payment(cls, payment_id: uuid.UUID | str) -> Payment:
        """
        Raises:
            PaymentNotFoundError: Unknown payment
        """
        payment = cls._find_payment(payment_id)
        if payment is None:
            raise PaymentNotFoundError(
                f"Payment {payment_id} not found",
                details={"payment_id": str(payment_id)},
            )
        return payment

    @classmethod
    def get_payment_history(
        cls,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> QuerySet[Payment]:
        """
        Payments created in [start, end], newest first.

        Raises:
            ValidationError: start is after end
        """
        if start and end and start > end:
            raise ValidationError(
                "start must not be after end",
                details={"start": start.isoformat(), "end": end.isoformat()},
            )
        queryset = Payment.objects.select_related("invoice")
        if start:
            queryset = queryset.filter(created_at__gte=start)
        if end:
            queryset = queryset.filter(created_at__lte=end)
        return queryset.order_by("-created_at")

    @classmethod
    def generate_receipt(cls, payment_id: uuid.UUID | str) -> Receipt:
        """
        Build a receipt for a settled payment.

        Raises:
            PaymentNotFoundError: Unknown payment
            InvalidStateTransitionError: Payment is not SUCCESS or REFUNDED
        """
        payment = cls.get_payment(payment_id)
        if payment.status not in (PaymentStatus.SUCCESS, PaymentStatus.REFUNDED):
            raise InvalidStateTransitionError(
                action="generate_receipt",
                current_state=payment.status,
                expected_state=f"{PaymentStatus.SUCCESS}, {PaymentStatus.REFUNDED}",
            )

        invoice = payment.invoice
        appointment = invoice.appointment
        lines = [
            {
                "description": item.description,
                "quantity": item.quantity,
                "unit_price": format_money(item.unit_price),
                "amount": format_money(item.amount),
            }
            for item in invoice.items.all()
        ]
        return Receipt(
            receipt_number=f"RCP-{payment.id}",
            payment_id=str(payment.id),
            invoice_number=invoice.invoice_number,
            owner_name=appointment.owner_name,
            pet_name=appointment.pet_name,
            payment_method=payment.get_payment_method_display(),
            status=payment.status,
            amount=format_money(payment.amount),
            refund_amount=format_money(payment.refund_amount),
            paid_at=payment.paid_at,
            transaction_id=payment.transaction_id,
            subtotal=format_money(invoice.subtotal),
            discount=format_money(invoice.discount),
            tax=format_money(invoice.tax),
            total=format_money(invoice.total_amount),
            lines=lines,
        )

    @classmethod
    def verify_payment(cls, payment_id: uuid.UUID | str) -> PaymentVerification:
        """
        Ask the gateway whether it holds a successful transaction for a payment.

        Read-only: the query response is archived but no state changes.

        Raises:
            PaymentNotFoundError: Unknown payment
            GatewayUnavailableError: Gateway unreachable
        """
        payment = cls.get_payment(payment_id)
        if payment.is_cash:
            return PaymentVerification(
                payment=payment,
                verified=payment.status in (PaymentStatus.SUCCESS, PaymentStatus.REFUNDED),
                gateway_status="CASH",
                gateway_amount=payment.amount,
                message="Cash payments are verified at the desk",
            )

        gateway = cls.get_gateway(payment.payment_method)
        result = gateway.query_transaction(payment.order_reference, payment.created_at)
        PaymentGatewayArchive.archive(
            payment=payment,
            gateway_name=gateway.get_gateway_name(),
            interaction=GatewayInteraction.QUERY,
            gateway_response=result.raw_data,
            order_reference=payment.order_reference,
        )
        verified = (
            result.found
            and result.status == STATUS_SUCCESS
            and result.amount == payment.amount
        )
        return PaymentVerification(
            payment=payment,
            verified=verified,
            gateway_status=result.status,
            gateway_amount=result.amount,
            message=result.message,
        )

    # =========================================================================
    # Lookups
    # =========================================================================

    @staticmethod
    def _lock_invoice(invoice_id: uuid.UUID | str) -> Invoice:
        invoice_uuid = _as_uuid(invoice_id)
        invoice = (
            Invoice.objects.select_for_update().filter(pk=invoice_uuid).first()
            if invoice_uuid
            else None
        )
        if invoice is None:
            raise InvoiceNotFoundError(
                f"Invoice {invoice_id} not found",
                details={"invoice_id": str(invoice_id)},
            )
        return invoice

    @staticmethod
    def _find_payment(reference: uuid.UUID | str | None, for_update: bool = False) -> Payment | None:
        """Payment by id or by gateway order reference (id hex)."""
        payment_uuid = _as_uuid(reference)
        if payment_uuid is None:
            return None
        queryset = Payment.objects.select_for_update() if for_update else Payment.objects.all()
        return queryset.filter(pk=payment_uuid).first()
