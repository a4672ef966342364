"""
Lazy, pull-based reward accrual for StakeLedger.

Reward is credited only for *whole* elapsed accrual units:

    elapsed_units  = floor((now - last_accrual_time) / unit)
    pending_reward = floor(principal * reward_rate * elapsed_units / BPS_SCALE)

``realize`` moves the pending reward into ``stake_reward`` and advances
``last_accrual_time`` by ``elapsed_units * unit`` (never straight to
``now``), so the partial unit since the last boundary carries over to
the next call.  Calling ``realize`` again before another boundary is a
no-op.

There is no scheduled distribution job; every mutating ledger operation
realizes the caller's record before touching it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from stakeledger_core.precision import BPS_SCALE, SECONDS_PER_DAY

if TYPE_CHECKING:
    from stakeledger_core.registry import StakeRecord


def elapsed_units(
    record: StakeRecord,
    now: float,
    unit_seconds: int = SECONDS_PER_DAY,
) -> int:
    """Whole accrual units since ``record.last_accrual_time`` (0 if clock went back)."""
    if unit_seconds <= 0:
        raise ValueError("unit_seconds must be positive")
    delta = now - record.last_accrual_time
    if delta <= 0:
        return 0
    return int(delta // unit_seconds)


def pending_reward(
    record: StakeRecord,
    now: float,
    reward_rate: int,
    unit_seconds: int = SECONDS_PER_DAY,
) -> int:
    """Reward earned but not yet realized, as of *now*.  Pure."""
    if record.principal <= 0:
        return 0
    units = elapsed_units(record, now, unit_seconds)
    return record.principal * reward_rate * units // BPS_SCALE


def realize(
    record: StakeRecord,
    now: float,
    reward_rate: int,
    unit_seconds: int = SECONDS_PER_DAY,
) -> int:
    """Fold pending reward into ``record.stake_reward``; return the amount added."""
    units = elapsed_units(record, now, unit_seconds)
    if units == 0:
        return 0
    reward = pending_reward(record, now, reward_rate, unit_seconds)
    record.stake_reward += reward
    record.last_accrual_time += units * unit_seconds
    return reward
