"""Exact conversion between BTC display amounts and integer satoshis."""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal, InvalidOperation

SATS_PER_BTC = 100_000_000
_EIGHT_PLACES = Decimal("0.00000001")


def _as_decimal(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    if isinstance(amount, bool):
        raise TypeError("amount must be numeric, not bool")
    if isinstance(amount, float):
        # str() gives the shortest repr, which is what the node printed.
        return Decimal(str(amount))
    try:
        return Decimal(amount)
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {amount!r}") from exc


def to_satoshi(amount: Decimal | int | float | str) -> int:
    """Return ``floor(amount * 1e8)`` as an integer."""

    value = _as_decimal(amount)
    if not value.is_finite():
        raise ValueError(f"invalid amount: {amount!r}")
    return int((value * SATS_PER_BTC).to_integral_value(rounding=ROUND_FLOOR))


def to_btc(satoshi: int) -> Decimal:
    """Return the exact display amount for ``satoshi``."""

    return (Decimal(int(satoshi)) / SATS_PER_BTC).quantize(_EIGHT_PLACES)


def format_btc(satoshi: int) -> str:
    """Format ``satoshi`` as a fixed eight-decimal BTC string."""

    return f"{to_btc(satoshi):.8f}"
