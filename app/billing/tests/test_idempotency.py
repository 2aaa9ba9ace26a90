"""
Tests for IdempotencyKeyGenerator.
"""

import uuid

from django.test import override_settings

from billing.idempotency import IdempotencyKeyGenerator


class TestIdempotencyKeyGenerator:
    def test_format(self):
        """Should produce operation:entity:attempt:hash."""
        entity = uuid.UUID("3f0c2a8e-1111-4222-8333-444455556666")

        key = IdempotencyKeyGenerator.generate("online_payment", entity, attempt=2)

        operation, entity_id, attempt, digest = key.split(":")
        assert operation == "online_payment"
        assert entity_id == str(entity)
        assert attempt == "2"
        assert len(digest) == IdempotencyKeyGenerator.HASH_LENGTH

    def test_deterministic_per_attempt(self):
        """Should map the same attempt to the same key."""
        first = IdempotencyKeyGenerator.generate("online_payment", "inv-1", attempt=1)
        again = IdempotencyKeyGenerator.generate("online_payment", "inv-1", attempt=1)
        retry = IdempotencyKeyGenerator.generate("online_payment", "inv-1", attempt=2)

        assert first == again
        assert first != retry

    def test_hash_depends_on_secret(self):
        """Should not be guessable without the server secret."""
        with override_settings(SECRET_KEY="one"):
            first = IdempotencyKeyGenerator.generate("online_payment", "inv-1")
        with override_settings(SECRET_KEY="two"):
            second = IdempotencyKeyGenerator.generate("online_payment", "inv-1")

        assert first != second
