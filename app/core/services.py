"""
Base service layer patterns for business logic encapsulation.

- ServiceResult: result wrapper for operations whose failure is an expected
  outcome the caller branches on (reconciliation, background jobs)
- BaseService: base class with a per-service logger and transaction helper

Pattern Comparison:
    - ServiceResult: Use for expected failures the caller must inspect
    - Exceptions: Use for guard violations and unexpected failures

Usage:
    from core.services import BaseService, ServiceResult

    class InvoiceService(BaseService):
        @classmethod
        def update_notes(cls, invoice_id, notes):
            with cls.atomic():
                invoice = Invoice.objects.select_for_update().get(pk=invoice_id)
                invoice.update_notes(notes)
                invoice.save()
            cls.get_logger().info("Updated notes", extra={"invoice_id": str(invoice_id)})
            return invoice
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Callable, Generator
    from typing import Any

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful
        error: Error message if failed
        error_code: Machine-readable error code
        retryable: Whether repeating the operation later may succeed

    Usage:
        result = ReconciliationService.reconcile_payment(payment_id)
        if result:
            outcome = result.data
        elif result.retryable:
            raise self.retry()
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    retryable: bool = False

    @classmethod
    def ok(cls, data: T) -> ServiceResult[T]:
        """Alias for success(); use whichever reads better in context."""
        return cls(success=True, data=data)

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        retryable: bool = False,
        data: T | None = None,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Args:
            error: Human-readable error message
            error_code: Machine-readable error code for client handling
            retryable: True when the failure is transient
            data: Optional partial data describing the failure
        """
        return cls(
            success=False,
            data=data,
            error=error,
            error_code=error_code,
            retryable=retryable,
        )

    @classmethod
    def from_exception(cls, exc: Exception, error_code: str | None = None) -> ServiceResult[T]:
        """
        Create a failed result from an exception.

        Application errors keep their own error code and retry hint.
        """
        return cls(
            success=False,
            error=getattr(exc, "message", str(exc)),
            error_code=error_code or getattr(exc, "error_code", exc.__class__.__name__.upper()),
            retryable=bool(getattr(exc, "is_retryable", False)),
        )

    def to_response(self) -> dict[str, Any]:
        """Convert to API response format."""
        if self.success:
            return {"success": True, "data": self.data}

        response: dict[str, Any] = {
            "success": False,
            "error": self.error,
        }
        if self.error_code:
            response["error_code"] = self.error_code
        return response

    def map(self, func: Callable[[T], Any]) -> ServiceResult:
        """Transform the data if successful; failures pass through unchanged."""
        if self.success and self.data is not None:
            return ServiceResult.success(func(self.data))
        return self

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Base class for service layer classes.

    Design Notes:
        - Use @classmethod (no instance state)
        - Raise application errors for guard violations
        - Use ServiceResult where the caller branches on the outcome
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """
        Get logger for this service.

        Returns a logger named after the service class for easy
        filtering in logs.
        """
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls, savepoint: bool = True) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        Thin wrapper around transaction.atomic() that makes transaction
        boundaries explicit in service code. Nested use creates a
        savepoint unless savepoint=False.

        Example:
            with cls.atomic():
                invoice = Invoice.objects.select_for_update().get(pk=invoice_id)
                invoice.pay_by_cash()
                invoice.save()
        """
        with transaction.atomic(savepoint=savepoint):
            yield

    @classmethod
    def handle_exception(
        cls,
        exc: Exception,
        context: str = "",
        log_level: int = logging.ERROR,
    ) -> ServiceResult:
        """
        Log an exception and convert it to a failed ServiceResult.

        Example:
            try:
                gateway.query_transaction(order_id, created_at)
            except GatewayUnavailableError as e:
                return cls.handle_exception(e, "transaction query", logging.WARNING)
        """
        message = f"{context}: {exc}" if context else str(exc)
        cls.get_logger().log(log_level, message, exc_info=log_level >= logging.ERROR)
        return ServiceResult.from_exception(exc)
