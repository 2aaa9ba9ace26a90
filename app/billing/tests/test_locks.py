"""
Tests for DistributedLock and check_version.
"""

import pytest

from core.exceptions import NotFoundError

from billing.exceptions import LockAcquisitionError, StaleRecordError
from billing.locks import DistributedLock, check_version
from billing.models import Invoice


class TestDistributedLock:
    """Tests for the Redis-backed lock."""

    def test_acquire_sets_key_with_ttl(self, mock_redis):
        """Should SET NX with expiry under the lock: prefix."""
        lock = DistributedLock("billing:refund:abc", ttl=60)

        assert lock.acquire() is True

        assert lock.is_held
        args, kwargs = mock_redis.set.call_args
        assert args[0] == "lock:billing:refund:abc"
        assert kwargs == {"nx": True, "ex": 60}

    def test_non_blocking_raises_when_held(self, mock_redis):
        """Should fail fast when another owner holds the key."""
        mock_redis.set.return_value = False
        lock = DistributedLock("busy", blocking=False)

        with pytest.raises(LockAcquisitionError) as exc_info:
            lock.acquire()

        assert "already held" in exc_info.value.message
        assert not lock.is_held
        mock_redis.set.assert_called_once()

    def test_blocking_retries_until_free(self, mock_redis, mocker):
        """Should poll until SET NX succeeds."""
        sleep = mocker.patch("billing.locks.time.sleep")
        mock_redis.set.side_effect = [False, False, True]

        lock = DistributedLock("contended", timeout=5)
        lock.acquire()

        assert lock.is_held
        assert mock_redis.set.call_count == 3
        assert sleep.call_count == 2

    def test_blocking_times_out(self, mock_redis, mocker):
        """Should raise once the timeout has passed."""
        mocker.patch("billing.locks.time.sleep")
        mock_redis.set.return_value = False

        with pytest.raises(LockAcquisitionError) as exc_info:
            DistributedLock("contended", timeout=0).acquire()

        assert exc_info.value.details["blocking"] is True

    def test_release_uses_owner_token(self, mock_redis):
        """Should delete only through the compare-and-delete script."""
        lock = DistributedLock("owned")
        lock.acquire()
        token = mock_redis.set.call_args.args[1]

        assert lock.release() is True

        mock_redis.eval.assert_called_once_with(
            DistributedLock.RELEASE_SCRIPT, 1, "lock:owned", token
        )
        assert not lock.is_held

    def test_release_twice_is_noop(self, mock_redis):
        lock = DistributedLock("owned")
        lock.acquire()
        lock.release()

        assert lock.release() is False
        assert mock_redis.eval.call_count == 1

    def test_context_manager_releases_on_error(self, mock_redis):
        """Should release the key when the body raises."""
        with pytest.raises(RuntimeError):
            with DistributedLock("scoped"):
                raise RuntimeError("boom")

        mock_redis.eval.assert_called_once()


class TestCheckVersion:
    """Tests for optimistic locking."""

    def test_returns_instance_at_expected_version(self, pending_invoice):
        invoice = check_version(Invoice, pending_invoice.pk, expected_version=1)

        assert invoice.pk == pending_invoice.pk

    def test_stale_version_raises(self, pending_invoice):
        """Should report expected and current versions."""
        pending_invoice.update_notes("edited")
        pending_invoice.save()

        with pytest.raises(StaleRecordError) as exc_info:
            check_version(Invoice, pending_invoice.pk, expected_version=1)

        assert exc_info.value.details["current_version"] == 2
        assert exc_info.value.details["expected_version"] == 1

    def test_missing_row_raises_not_found(self, db):
        """Should raise NotFoundError with a model-specific code."""
        with pytest.raises(NotFoundError) as exc_info:
            check_version(Invoice, "00000000-0000-0000-0000-000000000000", expected_version=1)

        assert exc_info.value.error_code == "INVOICE_NOT_FOUND"
