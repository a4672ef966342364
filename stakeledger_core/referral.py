"""
One-level referral ledger for StakeLedger.

When a new stakeholder registers naming a referrer, a share of the
registration tax is credited to the referrer's ``referral_reward``.
``referral_count`` counts distinct referees per referrer.  A missing or
self-referral earns nothing.  The referrer does not need to be registered
itself; its record is created on demand so the bonus is still owed.
"""

from __future__ import annotations

from stakeledger_core.registry import StakeholderRegistry


class ReferralLedger:
    """Referee → referrer relationships plus bonus crediting."""

    def __init__(self, registry: StakeholderRegistry):
        self.registry = registry
        # referee -> referrer named at its first referred registration
        self.referrer_by_referee: dict[str, str] = {}
        # (referrer, referee) pairs already counted
        self._counted: set[tuple[str, str]] = set()

    def credit(self, referrer: str | None, referee: str, bonus: int) -> bool:
        """
        Credit *bonus* to *referrer* for *referee*'s registration.

        Returns False (and changes nothing) for a null or self referrer.
        """
        if not referrer or referrer == referee:
            return False
        record = self.registry.get_or_create(referrer)
        record.referral_reward += bonus
        pair = (referrer, referee)
        if pair not in self._counted:
            self._counted.add(pair)
            record.referral_count += 1
        self.referrer_by_referee.setdefault(referee, referrer)
        return True

    def referrer_of(self, referee: str) -> str | None:
        return self.referrer_by_referee.get(referee)

    def referees_of(self, referrer: str) -> list[str]:
        return [ee for (er, ee) in sorted(self._counted) if er == referrer]

    # ── persistence ─────────────────────────────────────────────────

    def pairs(self) -> list[tuple[str, str]]:
        """All counted ``(referrer, referee)`` pairs."""
        return sorted(self._counted)

    def restore(
        self,
        pairs: list[tuple[str, str]],
        first_referrers: dict[str, str],
    ) -> None:
        self._counted = set(pairs)
        self.referrer_by_referee = dict(first_referrers)

    def clear(self) -> None:
        self._counted.clear()
        self.referrer_by_referee.clear()
