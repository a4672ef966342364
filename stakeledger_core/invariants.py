"""
Post-operation invariant checks for StakeLedger.

  - Sum of all principals equals ``total_staked``
  - Registered ⇔ principal > 0, registered ⇒ ever_registered, and the
    registered index matches the flags
  - No negative amounts or counters
  - ``last_accrual_time`` never moves backwards
  - Reward balances only grow, except when a withdrawal zeroes them
  - Running totals never decrease

These checks run after every mutating ledger operation.  If any invariant
fails, the operation is rolled back and rejected.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class LedgerSnapshot:
    """Snapshot of key ledger fields before an operation."""
    total_staked: int = 0
    total_rewards_paid: int = 0
    total_tax_collected: int = 0
    accrual_times: dict[str, float] = field(default_factory=dict)
    stake_rewards: dict[str, int] = field(default_factory=dict)
    referral_rewards: dict[str, int] = field(default_factory=dict)


class InvariantChecker:
    """
    Captures a pre-operation snapshot of the ledger state and validates
    invariants after the operation is applied.
    """

    def __init__(self):
        self._snapshot: LedgerSnapshot | None = None

    def capture(self, ledger) -> None:
        """Take a snapshot of the ledger state before an operation."""
        snap = LedgerSnapshot(
            total_staked=ledger.total_staked,
            total_rewards_paid=ledger.total_rewards_paid,
            total_tax_collected=ledger.total_tax_collected,
        )
        for addr, rec in ledger.registry.records.items():
            snap.accrual_times[addr] = rec.last_accrual_time
            snap.stake_rewards[addr] = rec.stake_reward
            snap.referral_rewards[addr] = rec.referral_reward
        self._snapshot = snap

    def verify(self, ledger) -> tuple[bool, str]:
        """
        Verify all invariants against the current ledger state.
        Returns (passed, error_message).
        """
        errors: list[str] = []
        for check in (
            self._check_total_staked,
            self._check_registration_flags,
            self._check_non_negative,
            self._check_accrual_monotonic,
            self._check_rewards_monotonic,
            self._check_totals_monotonic,
        ):
            ok, msg = check(ledger)
            if not ok:
                errors.append(msg)

        self._snapshot = None
        if errors:
            return False, "; ".join(errors)
        return True, ""

    def _check_total_staked(self, ledger) -> tuple[bool, str]:
        """sum(principal) == total_staked."""
        principal_sum = ledger.registry.total_principal()
        if principal_sum != ledger.total_staked:
            return (False,
                    f"Total staked mismatch: total_staked={ledger.total_staked} "
                    f"but principal sum={principal_sum}")
        return True, ""

    def _check_registration_flags(self, ledger) -> tuple[bool, str]:
        """Registered iff principal > 0, and the index agrees with the flags."""
        registry = ledger.registry
        for addr, rec in registry.records.items():
            if rec.registered and rec.principal <= 0:
                return False, f"Registered {addr} has no principal"
            if not rec.registered and rec.principal != 0:
                return False, f"Unregistered {addr} holds principal {rec.principal}"
            if rec.registered and not rec.ever_registered:
                return False, f"Registered {addr} lacks the ever_registered mark"
            if rec.registered != (addr in registry):
                return False, f"Registered index out of sync for {addr}"
        return True, ""

    def _check_non_negative(self, ledger) -> tuple[bool, str]:
        if ledger.total_staked < 0:
            return False, f"total_staked is negative: {ledger.total_staked}"
        for addr, rec in ledger.registry.records.items():
            for name in ("principal", "stake_reward", "referral_reward", "referral_count"):
                value = getattr(rec, name)
                if value < 0:
                    return False, f"Negative {name} on {addr}: {value}"
        return True, ""

    def _check_accrual_monotonic(self, ledger) -> tuple[bool, str]:
        if self._snapshot is None:
            return True, ""
        for addr, rec in ledger.registry.records.items():
            old = self._snapshot.accrual_times.get(addr)
            if old is not None and rec.last_accrual_time < old:
                return (False,
                        f"last_accrual_time moved back on {addr}: "
                        f"{old} -> {rec.last_accrual_time}")
        return True, ""

    def _check_rewards_monotonic(self, ledger) -> tuple[bool, str]:
        """Rewards shrink only by being zeroed together (a withdrawal)."""
        if self._snapshot is None:
            return True, ""
        snap = self._snapshot
        for addr, rec in ledger.registry.records.items():
            old_stake = snap.stake_rewards.get(addr, 0)
            old_ref = snap.referral_rewards.get(addr, 0)
            decreased = rec.stake_reward < old_stake or rec.referral_reward < old_ref
            if decreased and (rec.stake_reward != 0 or rec.referral_reward != 0):
                return (False,
                        f"Reward decreased without withdrawal on {addr}: "
                        f"stake {old_stake} -> {rec.stake_reward}, "
                        f"referral {old_ref} -> {rec.referral_reward}")
        return True, ""

    def _check_totals_monotonic(self, ledger) -> tuple[bool, str]:
        if self._snapshot is None:
            return True, ""
        snap = self._snapshot
        if ledger.total_rewards_paid < snap.total_rewards_paid:
            return False, "total_rewards_paid decreased"
        if ledger.total_tax_collected < snap.total_tax_collected:
            return False, "total_tax_collected decreased"
        return True, ""
