"""
Gateway callback endpoints (return URL and IPN).

Usage:
    from billing.webhooks import vnpay_ipn, vnpay_return
"""

from billing.webhooks.views import vnpay_ipn, vnpay_return

__all__ = [
    "vnpay_ipn",
    "vnpay_return",
]
