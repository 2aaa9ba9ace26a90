"""
Typed guard errors for django-fsm transitions.

django-fsm raises a bare TransitionNotAllowed when a transition's source
state or one of its conditions does not match. guarded_transition wraps a
@transition method so callers get InvalidStateTransitionError with the
attempted action and the current and expected states instead.

Usage:
    @guarded_transition(condition_error="Only cash payments can be processed at the desk")
    @transition(field=status, source=PaymentStatus.PENDING, target=PaymentStatus.SUCCESS,
                conditions=[is_cash])
    def process_cash(self):
        ...
"""

from __future__ import annotations

import functools
from typing import TYPE_CHECKING

from django_fsm import TransitionNotAllowed, can_proceed

from billing.exceptions import InvalidStateTransitionError

if TYPE_CHECKING:
    from collections.abc import Callable


def _field_name(meta) -> str:
    field = meta.field
    return field if isinstance(field, str) else field.name


def expected_states(func) -> str:
    """Comma-separated source states of a @transition method."""
    return ", ".join(str(state) for state in func._django_fsm.transitions)


def guarded_transition(
    action: str | None = None,
    condition_error: str | None = None,
) -> Callable:
    """
    Re-raise TransitionNotAllowed as InvalidStateTransitionError.

    Must be applied on top of @transition. functools.wraps copies the
    _django_fsm metadata, so can_proceed() and FSMField's transition
    discovery keep working on the wrapped method.

    Args:
        action: Name reported in the error (defaults to the method name)
        condition_error: Message used when the state matched but a
            transition condition failed
    """

    def decorator(func):
        action_name = action or func.__name__

        @functools.wraps(func)
        def wrapper(instance, *args, **kwargs):
            try:
                return func(instance, *args, **kwargs)
            except TransitionNotAllowed as exc:
                meta = func._django_fsm
                current = getattr(instance, _field_name(meta))
                state_allowed = meta.has_transition(current)
                raise InvalidStateTransitionError(
                    condition_error if state_allowed and condition_error else None,
                    action=action_name,
                    current_state=current,
                    expected_state=expected_states(func),
                    details={"condition_failed": state_allowed},
                ) from exc

        return wrapper

    return decorator


class GuardedTransitionsMixin:
    """
    Pre-flight checks for transitions that run later in the same unit of work.

    Used when a transition must be validated before an external call but
    applied only after it (e.g. start_online_payment around URL generation).
    """

    def ensure_can_proceed(self, method_name: str) -> None:
        """Raise InvalidStateTransitionError unless the named transition is allowed now."""
        bound = getattr(self, method_name)
        if can_proceed(bound):
            return
        meta = bound._django_fsm
        raise InvalidStateTransitionError(
            action=method_name,
            current_state=getattr(self, _field_name(meta)),
            expected_state=expected_states(bound),
        )
