"""
Server-side idempotency keys for online payment attempts.

Clients may send their own key with initiate_online_payment; when they
don't, one is derived from the invoice and the attempt number so that
a retry of the same attempt maps onto the same Payment row.
"""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

from django.conf import settings

if TYPE_CHECKING:
    import uuid


class IdempotencyKeyGenerator:
    """
    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    Example:
        IdempotencyKeyGenerator.generate("online_payment", invoice.id, attempt=2)
        # "online_payment:3f0c...:2:9b1d04ee"
    """

    HASH_LENGTH = 8

    @classmethod
    def generate(
        cls,
        operation: str,
        entity_id: uuid.UUID | str,
        attempt: int = 1,
    ) -> str:
        entity = str(entity_id)
        digest = hashlib.sha256(
            f"{operation}:{entity}:{attempt}:{settings.SECRET_KEY}".encode()
        ).hexdigest()
        return f"{operation}:{entity}:{attempt}:{digest[: cls.HASH_LENGTH]}"
