"""
Concurrency control for billing operations.

Two mechanisms are used side by side:

1. DistributedLock: a Redis key held for the length of a multi-step
   operation that cannot run inside one database transaction, such as a
   refund that calls the gateway between two local writes.

2. check_version: optimistic locking for single-row edits coming from
   the API, where a client sends back the version it last read.

Usage:
    from billing.locks import DistributedLock, check_version

    with DistributedLock(f"billing:refund:{payment.id}", ttl=60):
        ...

    with transaction.atomic():
        invoice = check_version(Invoice, invoice_id, expected_version=2)
        invoice.apply_discount(Decimal("10000"))
        invoice.save()
"""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING, TypeVar

from django.db import models, transaction

from django_redis import get_redis_connection

from core.exceptions import NotFoundError

from billing.exceptions import LockAcquisitionError, StaleRecordError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis

ModelT = TypeVar("ModelT", bound=models.Model)

LOCK_PREFIX = "lock:"
RETRY_INTERVAL = 0.05


# =============================================================================
# Distributed Locks
# =============================================================================


class DistributedLock:
    """
    Redis mutex with a TTL and an owner token.

    The value stored under the key is a random token, and release only
    deletes the key when it still holds that token, so a lock that expired
    and was taken by another worker is never released by the old owner.

    Args:
        key: Lock name, stored as "lock:<key>"
        ttl: Seconds until Redis drops the key on its own
        blocking: Poll until acquired (or timeout) instead of failing fast
        timeout: Maximum seconds to poll when blocking

    Raises:
        LockAcquisitionError: From acquire()/__enter__ when the lock is held
    """

    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self,
        key: str,
        ttl: int = 30,
        blocking: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.key = f"{LOCK_PREFIX}{key}"
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self._token: str | None = None
        self._client: Redis | None = None

    @property
    def client(self) -> Redis:
        if self._client is None:
            self._client = get_redis_connection("default")
        return self._client

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def _set_if_absent(self, token: str) -> bool:
        return bool(self.client.set(self.key, token, nx=True, ex=self.ttl))

    def acquire(self) -> bool:
        token = uuid.uuid4().hex
        deadline = time.monotonic() + (self.timeout if self.blocking else 0)

        while True:
            if self._set_if_absent(token):
                self._token = token
                return True
            if time.monotonic() >= deadline:
                break
            time.sleep(RETRY_INTERVAL)

        if self.blocking:
            message = f"Could not acquire lock '{self.key}' within {self.timeout}s"
        else:
            message = f"Lock '{self.key}' is already held"
        raise LockAcquisitionError(
            message,
            details={"key": self.key, "timeout": self.timeout, "blocking": self.blocking},
        )

    def release(self) -> bool:
        """Delete the key if this instance still owns it. Safe to call twice."""
        if self._token is None:
            return False
        released = self.client.eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(released)

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False


# =============================================================================
# Optimistic Locking
# =============================================================================


def check_version(model_class: type[ModelT], pk: Any, expected_version: int) -> ModelT:
    """
    Lock a row for update, but only if it is still at expected_version.

    Must run inside the caller's transaction for the row lock to
    outlive this call.

    Returns:
        The locked instance

    Raises:
        NotFoundError: If no row has that primary key
        StaleRecordError: If the row moved past expected_version
    """
    model_name = model_class.__name__
    with transaction.atomic():
        instance = (
            model_class.objects.select_for_update()
            .filter(pk=pk, version=expected_version)
            .first()
        )
        if instance is not None:
            return instance

        current_version = (
            model_class.objects.filter(pk=pk).values_list("version", flat=True).first()
        )
        if current_version is None:
            raise NotFoundError(
                f"{model_name} {pk} not found",
                error_code=f"{model_name.upper()}_NOT_FOUND",
                details={"pk": str(pk)},
            )
        raise StaleRecordError(
            f"{model_name} {pk} was modified by someone else "
            f"(expected version {expected_version}, current {current_version})",
            details={
                "pk": str(pk),
                "expected_version": expected_version,
                "current_version": current_version,
            },
        )


__all__ = [
    "DistributedLock",
    "check_version",
]
