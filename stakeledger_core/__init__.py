"""
StakeLedger - a single-token staking ledger with lazy reward accrual.

Key features:
- Registration with a flat registration tax and a one-level referral bonus
- Stake / unstake with basis-point staking and unstaking taxes
- Pull-based, whole-unit reward accrual (no distribution job)
- Owner-governed parameters with bound checks
- All-or-nothing operations with post-operation invariant checks
- SQLite persistence and an aiohttp API
"""

__version__ = "1.0.0"
__all__ = [
    "accrual",
    "api",
    "config",
    "errors",
    "invariants",
    "ledger",
    "logging_config",
    "params",
    "precision",
    "referral",
    "registry",
    "storage",
    "token",
]
