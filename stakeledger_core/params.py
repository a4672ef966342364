"""
Owner-governed economic parameters for StakeLedger.

All rates are basis points (see ``precision.BPS_SCALE``).  The registration
tax and the minimum stake are absolute token amounts.  The referral
allocation is a share of the registration tax, so bounding it at 100 %
is the only cross-field rule.

The owner identity lives on the ``ParameterSet`` itself and is checked on
every write; there is no module-level owner.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields
from typing import Any

from stakeledger_core.errors import InvalidParameter, NotOwner
from stakeledger_core.precision import BPS_SCALE, is_amount

logger = logging.getLogger("stakeledger_params")

# Fields bounded to 0..BPS_SCALE
RATE_FIELDS: frozenset[str] = frozenset({
    "staking_tax_rate",
    "unstaking_tax_rate",
    "reward_rate",
    "referral_tax_allocation",
})

# Fields that are plain token amounts (>= 0)
AMOUNT_FIELDS: frozenset[str] = frozenset({
    "registration_tax",
    "minimum_stake_value",
    "pool_reserve_threshold",
})

MUTABLE_FIELDS: frozenset[str] = RATE_FIELDS | AMOUNT_FIELDS | {"active"}


@dataclass
class ParameterSet:
    """Process-wide economics; defaults are the launch economics."""
    owner: str
    staking_tax_rate: int = 200          # 2 % of every stake
    unstaking_tax_rate: int = 400        # 4 % of every unstake
    reward_rate: int = 100               # 1 % of principal per accrual unit
    registration_tax: int = 200          # flat, deducted from the deposit
    referral_tax_allocation: int = 5_000  # 50 % of registration_tax
    minimum_stake_value: int = 1_000
    pool_reserve_threshold: int = 0
    active: bool = True

    def __post_init__(self) -> None:
        if not self.owner:
            raise InvalidParameter("owner must be a non-empty identity")
        for name in MUTABLE_FIELDS:
            _check_bound(name, getattr(self, name))

    # ── access control ──────────────────────────────────────────────

    def is_owner(self, caller: str) -> bool:
        return caller == self.owner

    def require_owner(self, caller: str) -> None:
        if not self.is_owner(caller):
            raise NotOwner(f"{caller} is not the owner")

    # ── writes ──────────────────────────────────────────────────────

    def update(self, caller: str, name: str, value: Any) -> None:
        """Owner-gated, bound-checked write of a single parameter."""
        self.require_owner(caller)
        if name not in MUTABLE_FIELDS:
            raise InvalidParameter(f"Unknown parameter: {name}")
        _check_bound(name, value)
        old = getattr(self, name)
        setattr(self, name, value)
        logger.info(f"Parameter {name}: {old} -> {value}")

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        self.require_owner(caller)
        if not new_owner:
            raise InvalidParameter("new owner must be a non-empty identity")
        logger.info(f"Ownership transferred: {self.owner} -> {new_owner}")
        self.owner = new_owner

    # ── derived ─────────────────────────────────────────────────────

    def referral_bonus(self) -> int:
        """Share of ``registration_tax`` routed to a referrer."""
        return self.registration_tax * self.referral_tax_allocation // BPS_SCALE

    # ── serialisation ───────────────────────────────────────────────

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ParameterSet:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


def _check_bound(name: str, value: Any) -> None:
    if name == "active":
        if not isinstance(value, bool):
            raise InvalidParameter("active must be a bool")
        return
    if not is_amount(value):
        raise InvalidParameter(f"{name} must be a non-negative integer")
    if name in RATE_FIELDS and value > BPS_SCALE:
        raise InvalidParameter(f"{name} must be at most {BPS_SCALE} bps")
