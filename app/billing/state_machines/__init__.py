"""
State machine enums and guard helpers for billing models.
"""

from billing.state_machines.guards import GuardedTransitionsMixin, guarded_transition
from billing.state_machines.states import (
    GatewayInteraction,
    InvoiceStatus,
    PaymentMethod,
    PaymentStatus,
)

__all__ = [
    "GatewayInteraction",
    "GuardedTransitionsMixin",
    "InvoiceStatus",
    "PaymentMethod",
    "PaymentStatus",
    "guarded_transition",
]
