"""
Fixed-point constants and helpers for StakeLedger.

Every token amount is a non-negative ``int`` counted in the token's
smallest indivisible unit.  Every rate is an ``int`` in basis points:

    10_000 bps = 100 %

Arithmetic always rounds toward zero (floor for non-negative values),
so the pool never pays out a fraction it does not hold.
"""

from __future__ import annotations

# 100 % expressed in basis points.
BPS_SCALE: int = 10_000

# Default accrual granularity: one day
SECONDS_PER_DAY: int = 86_400


def apply_bps(amount: int, bps: int) -> int:
    """Return ``floor(amount * bps / BPS_SCALE)``.

    >>> apply_bps(1000, 200)
    20
    >>> apply_bps(999, 1)
    0
    """
    return amount * bps // BPS_SCALE


def is_amount(value: object) -> bool:
    """True for a non-negative ``int`` (``bool`` is rejected)."""
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def format_amount(value: int, symbol: str = "LEAD") -> str:
    """Human-readable amount with thousands separators."""
    return f"{value:,} {symbol}"


def format_bps(bps: int) -> str:
    """Render a basis-point rate as a percentage string.

    >>> format_bps(250)
    '2.50%'
    """
    return f"{bps / 100:.2f}%"
