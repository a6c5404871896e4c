"""
Integer money arithmetic in minor currency units (paise).

Every amount handled by the order engine is a plain ``int``. Floats, Decimals
and bools are rejected outright so that no rounding drift can enter a stored
aggregate. Values are bounded to the signed 64-bit range used by the database
columns; leaving it raises ``OverflowError``.
"""
from __future__ import annotations

from typing import Iterable, List

MAX_AMOUNT = 2 ** 63 - 1
MIN_AMOUNT = -(2 ** 63)

# 1 basis point = 0.01%
BPS_DENOMINATOR = 10_000


def _require_int(value, name: str) -> int:
    # bool is an int subclass; True paise is never meaningful
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an integer number of minor units, got {type(value).__name__}")
    return value


def _bounded(value: int, name: str = "amount") -> int:
    if value > MAX_AMOUNT or value < MIN_AMOUNT:
        raise OverflowError(f"{name} {value} is outside the signed 64-bit range")
    return value


def ensure_amount(value, name: str = "amount") -> int:
    """Return ``value`` if it is a representable minor-unit amount."""
    return _bounded(_require_int(value, name), name)


def add(*amounts: int) -> int:
    total = 0
    for amount in amounts:
        total = _bounded(total + ensure_amount(amount))
    return total


def subtract(amount: int, other: int) -> int:
    return _bounded(ensure_amount(amount) - ensure_amount(other, "other"))


def multiply_qty(amount: int, qty: int) -> int:
    """Line subtotal: unit price times quantity."""
    return _bounded(ensure_amount(amount, "unit price") * ensure_amount(qty, "quantity"), "line subtotal")


def multiply_rate(amount: int, rate_bps: int) -> int:
    """
    Apply a basis-point rate to ``amount`` and round to the nearest minor unit.

    The exact rational ``amount * rate_bps / 10000`` is rounded half-up on its
    magnitude, so ``multiply_rate(-a, r) == -multiply_rate(a, r)``. Nothing is
    rounded before the final division.

    >>> multiply_rate(10000, 500)
    500
    >>> multiply_rate(10, 250)   # 0.25 -> 0
    0
    >>> multiply_rate(10, 500)   # 0.5 -> 1
    1
    """
    ensure_amount(amount)
    rate_bps = _require_int(rate_bps, "rate_bps")
    if rate_bps < 0:
        raise ValueError("rate_bps cannot be negative")

    product = _bounded(abs(amount) * rate_bps, "intermediate product")
    quotient, remainder = divmod(product, BPS_DENOMINATOR)
    if remainder * 2 >= BPS_DENOMINATOR:
        quotient += 1
    return -quotient if amount < 0 else quotient


def split_even(amount: int, parts: int) -> List[int]:
    """
    Split ``amount`` into ``parts`` integers that sum exactly to ``amount``.

    The first ``amount mod parts`` shares receive ``floor(amount / parts) + 1``
    and the remainder receive ``floor(amount / parts)``.

    >>> split_even(501, 2)
    [251, 250]
    >>> split_even(-5, 2)
    [-2, -3]
    """
    ensure_amount(amount)
    parts = _require_int(parts, "parts")
    if parts < 1:
        raise ValueError("parts must be at least 1")

    base, remainder = divmod(amount, parts)
    return [base + 1 if i < remainder else base for i in range(parts)]


def total(amounts: Iterable[int]) -> int:
    return add(*list(amounts))


def format_minor(amount: int, symbol: str = "Rs") -> str:
    """Human readable rendering for logs and messages, e.g. ``Rs 105.00``."""
    ensure_amount(amount)
    sign = "-" if amount < 0 else ""
    major, minor = divmod(abs(amount), 100)
    return f"{sign}{symbol} {major:,}.{minor:02d}"
