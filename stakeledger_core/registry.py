"""
Stakeholder registry for StakeLedger.

One ``StakeRecord`` per identity.  A record is created the first time an
identity registers (or is named as a referrer) and is never deleted:
reward and referral balances outlive deregistration.

Alongside the records the registry keeps an insertion-ordered index of
the identities that are *currently* registered, so enumerating
stakeholders costs O(registered) rather than O(ever seen).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass


@dataclass
class StakeRecord:
    """Per-identity staking state."""
    address: str
    principal: int = 0
    registered: bool = False
    # set by the first registration, never cleared
    ever_registered: bool = False
    last_accrual_time: float = 0.0
    stake_reward: int = 0
    referral_count: int = 0
    referral_reward: int = 0

    @property
    def owed(self) -> int:
        """Realized, unwithdrawn reward (stake + referral)."""
        return self.stake_reward + self.referral_reward

    def to_dict(self) -> dict:
        d = asdict(self)
        d["owed"] = self.owed
        return d


class StakeholderRegistry:
    """
    Owns all ``StakeRecord``s and the registered-identity index.

    Entry points called from the ledger:
      ``activate()``             — on successful registration
      ``deregister_if_empty()``  — after every unstake
    """

    def __init__(self) -> None:
        self.records: dict[str, StakeRecord] = {}
        # dict used as an ordered set: address -> None
        self._registered: dict[str, None] = {}

    # ── lookups ─────────────────────────────────────────────────────

    def get(self, address: str) -> StakeRecord | None:
        return self.records.get(address)

    def get_or_create(self, address: str) -> StakeRecord:
        record = self.records.get(address)
        if record is None:
            record = StakeRecord(address=address)
            self.records[address] = record
        return record

    def is_registered(self, address: str) -> bool:
        record = self.records.get(address)
        return record is not None and record.registered

    def stakeholders(self) -> list[str]:
        """Currently registered identities in registration order."""
        return list(self._registered)

    def __len__(self) -> int:
        return len(self._registered)

    def __contains__(self, address: object) -> bool:
        return address in self._registered

    def total_principal(self) -> int:
        return sum(r.principal for r in self.records.values())

    # ── lifecycle ───────────────────────────────────────────────────

    def activate(self, address: str, principal: int, now: float) -> StakeRecord:
        """Mark *address* registered with its initial principal."""
        record = self.get_or_create(address)
        if record.registered:
            raise ValueError(f"{address} is already registered")
        if principal <= 0:
            raise ValueError("initial principal must be positive")
        record.registered = True
        record.ever_registered = True
        record.principal = principal
        record.last_accrual_time = max(record.last_accrual_time, now)
        self._registered[address] = None
        return record

    def deregister_if_empty(self, address: str) -> bool:
        """Deregister *address* once its principal is drained.

        Reward and referral fields are left untouched.  Returns True when
        the identity was deregistered by this call.
        """
        record = self.records.get(address)
        if record is None or not record.registered or record.principal > 0:
            return False
        record.registered = False
        self._registered.pop(address, None)
        return True

    # ── persistence ─────────────────────────────────────────────────

    def restore(self, record: StakeRecord) -> None:
        """Insert a record loaded from storage, rebuilding the index."""
        record.ever_registered = record.ever_registered or record.registered
        self.records[record.address] = record
        if record.registered:
            self._registered[record.address] = None
        else:
            self._registered.pop(record.address, None)

    def clear(self) -> None:
        self.records.clear()
        self._registered.clear()
