"""
Fixed-precision money helpers.

Every monetary value in billing is a Decimal quantized to two places with
ROUND_HALF_UP. Floats are rejected outright: 0.1 + 0.2 style drift has no
place on an invoice. Gateways that work in minor units (VNPay sends
amount * 100) convert through to_minor_units / from_minor_units.

Usage:
    from billing.money import to_money, compute_total, to_minor_units

    subtotal = to_money("150000")
    total = compute_total(subtotal, discount=to_money(0), tax=to_money("15000"))
    to_minor_units(total)  # 16500000
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING

from django.conf import settings

from billing.exceptions import InvalidAmountError

if TYPE_CHECKING:
    from collections.abc import Iterable

MONEY_PLACES = Decimal("0.01")
MINOR_UNITS_PER_MAJOR = 100
ZERO = Decimal("0.00")

MoneyInput = Decimal | int | str


def to_money(value: MoneyInput) -> Decimal:
    """
    Convert a Decimal, int or numeric string to a quantized Decimal.

    Raises:
        InvalidAmountError: For floats, booleans, NaN/Infinity or unparsable input
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidAmountError(
            "Monetary amounts must be Decimal, int or str, not float",
            details={"value": repr(value)},
        )
    try:
        amount = Decimal(value) if not isinstance(value, Decimal) else value
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise InvalidAmountError(
            f"Invalid monetary amount: {value!r}",
            details={"value": repr(value)},
        ) from exc
    if not amount.is_finite():
        raise InvalidAmountError(
            f"Invalid monetary amount: {value!r}",
            details={"value": repr(value)},
        )
    return amount.quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def ensure_non_negative(value: MoneyInput, field: str = "amount") -> Decimal:
    amount = to_money(value)
    if amount < ZERO:
        raise InvalidAmountError(
            f"{field} must not be negative",
            details={field: str(amount)},
        )
    return amount


def ensure_positive(value: MoneyInput, field: str = "amount") -> Decimal:
    amount = to_money(value)
    if amount <= ZERO:
        raise InvalidAmountError(
            f"{field} must be greater than zero",
            details={field: str(amount)},
        )
    return amount


def compute_total(subtotal: MoneyInput, discount: MoneyInput, tax: MoneyInput) -> Decimal:
    """
    total = subtotal - discount + tax, all non-negative.

    Raises:
        InvalidAmountError: If any component is negative or the discount
            exceeds subtotal + tax
    """
    subtotal = ensure_non_negative(subtotal, "subtotal")
    discount = ensure_non_negative(discount, "discount")
    tax = ensure_non_negative(tax, "tax")
    total = subtotal - discount + tax
    if total < ZERO:
        raise InvalidAmountError(
            "Discount cannot exceed subtotal plus tax",
            details={
                "subtotal": str(subtotal),
                "discount": str(discount),
                "tax": str(tax),
            },
        )
    return total


def compute_tax(taxable: MoneyInput, rate: MoneyInput | None = None) -> Decimal:
    """Tax on a taxable base. rate defaults to settings.BILLING_TAX_RATE (e.g. "0.08")."""
    if rate is None:
        rate = settings.BILLING_TAX_RATE
    try:
        rate = Decimal(str(rate))
    except InvalidOperation as exc:
        raise InvalidAmountError(f"Invalid tax rate: {rate!r}") from exc
    if rate < 0:
        raise InvalidAmountError("Tax rate must not be negative", details={"rate": str(rate)})
    return to_money(ensure_non_negative(taxable, "taxable") * rate)


def sum_money(values: Iterable[MoneyInput]) -> Decimal:
    total = ZERO
    for value in values:
        total += to_money(value)
    return to_money(total)


def to_minor_units(value: MoneyInput) -> int:
    """Convert to the integer smallest currency unit used on the wire (x100)."""
    return int((to_money(value) * MINOR_UNITS_PER_MAJOR).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(value: int | str) -> Decimal:
    """
    Convert a wire amount in minor units back to a money Decimal.

    Raises:
        InvalidAmountError: If value is not an integer
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidAmountError(f"Invalid minor-unit amount: {value!r}")
    try:
        minor = int(str(value).strip())
    except ValueError as exc:
        raise InvalidAmountError(f"Invalid minor-unit amount: {value!r}") from exc
    return to_money(Decimal(minor) / MINOR_UNITS_PER_MAJOR)


def format_money(value: MoneyInput, currency: str | None = None) -> str:
    """
    Human-readable amount for emails and receipts.

    VND has no minor unit in practice, so whole amounts drop the decimals:
    "150,000 VND", "12.50 USD".
    """
    amount = to_money(value)
    currency = currency or settings.BILLING_CURRENCY
    if amount == amount.to_integral_value():
        text = f"{int(amount):,}"
    else:
        text = f"{amount:,.2f}"
    return f"{text} {currency}"
