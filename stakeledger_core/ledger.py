"""
Transaction orchestrator for StakeLedger.

``StakingLedger`` is the public operation surface.  Every mutating call
follows the same sequence:

  1. precondition checks (raise before anything is touched)
  2. realize the caller's pending reward
  3. apply the operation's own effect and update totals
  4. run the invariant checker
  5. perform the token transfer, always the last step

Steps 2-5 run inside an atomic section.  If any of them raises, the
registry, referral ledger, parameters and totals are restored to their
pre-call values before the exception propagates, so a refused transfer
never leaves principal decremented without a payout.

Usage:
    token = InMemoryToken(pool_address="pool")
    ledger = StakingLedger(token, ParameterSet(owner="rOwner"))
    ledger.register("rAlice", referrer="rBob", deposit=1200)
"""

from __future__ import annotations

import copy
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

from stakeledger_core.accrual import pending_reward, realize
from stakeledger_core.errors import (
    AlreadyRegistered,
    BelowMinimumStake,
    ContractPaused,
    InsufficientBalance,
    InsufficientStake,
    InvalidParameter,
    InvariantViolation,
    LedgerError,
    NothingToWithdraw,
    NotRegistered,
    PoolReserveSufficient,
    TransferFailed,
)
from stakeledger_core.invariants import InvariantChecker
from stakeledger_core.params import ParameterSet
from stakeledger_core.precision import SECONDS_PER_DAY, apply_bps, is_amount
from stakeledger_core.referral import ReferralLedger
from stakeledger_core.registry import StakeholderRegistry, StakeRecord
from stakeledger_core.token import TokenCollaborator

logger = logging.getLogger("stakeledger_ledger")


@dataclass
class _Transfer:
    """A token movement deferred until the operation is otherwise complete."""
    direction: str              # "in" (holder -> pool) or "out" (pool -> holder)
    address: str
    amount: int
    error: type[LedgerError]


def _require_positive(value: object, name: str) -> int:
    if not is_amount(value) or value == 0:
        raise InvalidParameter(f"{name} must be a positive integer")
    return value  # type: ignore[return-value]


def _require_identity(value: object, name: str = "caller") -> str:
    if not isinstance(value, str) or not value:
        raise InvalidParameter(f"{name} must be a non-empty identity")
    return value


class StakingLedger:
    """Single-token staking ledger with lazy accrual and one-level referrals."""

    def __init__(
        self,
        token: TokenCollaborator,
        params: ParameterSet,
        *,
        unit_seconds: int = SECONDS_PER_DAY,
        clock: Callable[[], float] = time.time,
        check_invariants: bool = True,
    ):
        if unit_seconds <= 0:
            raise InvalidParameter("unit_seconds must be positive")
        self.token = token
        self.params = params
        self.unit_seconds = unit_seconds
        self.clock = clock
        self.check_invariants = check_invariants

        self.registry = StakeholderRegistry()
        self.referrals = ReferralLedger(self.registry)
        self.total_staked: int = 0
        self.total_rewards_paid: int = 0
        self.total_tax_collected: int = 0
        self.invariant_checker = InvariantChecker()

    # ── atomic section ──────────────────────────────────────────────

    def _now(self, now: Optional[float]) -> float:
        return self.clock() if now is None else now

    def _state(self) -> tuple:
        return (
            self.registry, self.referrals, self.params,
            self.total_staked, self.total_rewards_paid, self.total_tax_collected,
        )

    def _restore(self, saved: tuple) -> None:
        (self.registry, self.referrals, self.params,
         self.total_staked, self.total_rewards_paid, self.total_tax_collected) = saved

    @contextmanager
    def _atomic(self, op: str) -> Iterator[list[_Transfer]]:
        """
        All-or-nothing section.

        The body appends at most one ``_Transfer``; it is executed after the
        invariant check, and a refused transfer rolls everything back.
        """
        # one deepcopy keeps referrals.registry pointing at the copied registry
        saved = copy.deepcopy(self._state())
        if self.check_invariants:
            self.invariant_checker.capture(self)
        transfers: list[_Transfer] = []
        try:
            yield transfers
            if self.check_invariants:
                ok, msg = self.invariant_checker.verify(self)
                if not ok:
                    logger.error(
                        f"{op} rejected, invariant violated: {msg}",
                        extra={"op": op, "code": InvariantViolation.code},
                    )
                    raise InvariantViolation(msg)
            for t in transfers:
                self._execute(t)
        except Exception as exc:
            self._restore(saved)
            if isinstance(exc, LedgerError):
                logger.debug(f"{op} rolled back: {exc}", extra={"op": op, "code": exc.code})
            else:
                logger.exception(f"{op} rolled back after unexpected error", extra={"op": op})
            raise

    def _execute(self, t: _Transfer) -> None:
        if t.amount == 0:
            return
        if t.direction == "in":
            ok = self.token.transfer_in(t.address, t.amount)
        else:
            ok = self.token.transfer_out(t.address, t.amount)
        if not ok:
            logger.warning(
                f"Token transfer {t.direction} refused",
                extra={"account": t.address, "amount": t.amount},
            )
            raise t.error(f"Token transfer of {t.amount} for {t.address} failed")

    def _realize(self, record: StakeRecord, now: float) -> int:
        return realize(record, now, self.params.reward_rate, self.unit_seconds)

    def _require_holder(self, value: object, name: str = "caller") -> str:
        """A non-empty identity other than the pool, which cannot pay itself."""
        _require_identity(value, name)
        if value == self.token.pool_address:
            raise InvalidParameter(f"{name} cannot be the pool address")
        return value  # type: ignore[return-value]

    # ── stakeholder operations ──────────────────────────────────────

    def register(
        self,
        caller: str,
        referrer: Optional[str],
        deposit: int,
        now: Optional[float] = None,
    ) -> StakeRecord:
        """
        Register *caller* with an initial *deposit*.

        ``registration_tax`` comes off the deposit first and the rest must
        reach ``minimum_stake_value``; ``staking_tax_rate`` then applies to
        that remainder.  The referrer's share of the registration tax is
        credited unless the referrer is missing or the caller itself.
        """
        self._require_holder(caller)
        if referrer:
            self._require_holder(referrer, "referrer")
        now = self._now(now)
        p = self.params
        if self.registry.is_registered(caller):
            raise AlreadyRegistered(f"{caller} is already registered")
        if not p.active:
            raise ContractPaused("Registration is paused")
        _require_positive(deposit, "deposit")
        net = deposit - p.registration_tax
        if net < p.minimum_stake_value or net <= 0:
            raise BelowMinimumStake(
                f"Deposit after registration tax is {net}, "
                f"minimum is {p.minimum_stake_value}"
            )
        staking_tax = apply_bps(net, p.staking_tax_rate)
        principal = net - staking_tax
        if principal <= 0:
            raise BelowMinimumStake("Deposit leaves no principal after tax")

        with self._atomic("register") as transfers:
            record = self.registry.activate(caller, principal, now)
            self.total_staked += principal
            bonus = p.referral_bonus()
            credited = self.referrals.credit(referrer, caller, bonus)
            retained = p.registration_tax - (bonus if credited else 0)
            self.total_tax_collected += retained + staking_tax
            transfers.append(_Transfer("in", caller, deposit, InsufficientBalance))

        logger.info(
            f"Registered {caller}: deposit={deposit} principal={principal} "
            f"referrer={referrer if credited else None}"
        )
        return record

    def stake(self, caller: str, amount: int, now: Optional[float] = None) -> int:
        """Add *amount* (less staking tax) to the caller's principal.

        Returns the principal added.
        """
        self._require_holder(caller)
        now = self._now(now)
        p = self.params
        record = self.registry.get(caller)
        if record is None or not record.registered:
            raise NotRegistered(f"{caller} must be registered to stake")
        if not p.active:
            raise ContractPaused("Staking is paused")
        _require_positive(amount, "amount")
        if amount < p.minimum_stake_value:
            raise BelowMinimumStake(
                f"Amount {amount} is below minimum stake value {p.minimum_stake_value}"
            )
        tax = apply_bps(amount, p.staking_tax_rate)
        added = amount - tax

        with self._atomic("stake") as transfers:
            self._realize(record, now)
            record.principal += added
            self.total_staked += added
            self.total_tax_collected += tax
            transfers.append(_Transfer("in", caller, amount, InsufficientBalance))

        logger.info(
            f"Stake {caller}: tax={tax} principal={record.principal}",
            extra={"op": "stake", "account": caller, "amount": amount},
        )
        return added

    def unstake(self, caller: str, amount: int, now: Optional[float] = None) -> int:
        """Withdraw *amount* of principal; the caller receives it less unstaking tax.

        Available while paused.  Returns the payout.
        """
        self._require_holder(caller)
        now = self._now(now)
        record = self.registry.get(caller)
        if record is None or not record.registered:
            raise NotRegistered(f"{caller} must be registered to unstake")
        _require_positive(amount, "amount")
        if amount > record.principal:
            raise InsufficientStake(
                f"Insufficient balance to unstake: {amount} > {record.principal}"
            )
        tax = apply_bps(amount, self.params.unstaking_tax_rate)
        payout = amount - tax

        with self._atomic("unstake") as transfers:
            self._realize(record, now)
            record.principal -= amount
            self.total_staked -= amount
            self.total_tax_collected += tax
            deregistered = self.registry.deregister_if_empty(caller)
            transfers.append(_Transfer("out", caller, payout, TransferFailed))

        logger.info(
            f"Unstake {caller}: amount={amount} payout={payout}"
            + (" (deregistered)" if deregistered else "")
        )
        return payout

    def withdraw_earnings(self, caller: str, now: Optional[float] = None) -> int:
        """
        Pay out all realized stake and referral reward.

        The caller must be registered, or have been registered before and
        still be owed reward; otherwise ``NotRegistered``.  A referrer that
        never registered keeps its bonus until it does.  A caller with
        nothing owed after realization gets ``NothingToWithdraw``.
        Available while paused.  Returns the amount paid.
        """
        _require_identity(caller)
        now = self._now(now)
        record = self.registry.get(caller)
        if record is None or not (
            record.registered or (record.ever_registered and record.owed > 0)
        ):
            raise NotRegistered(f"{caller} must be registered to withdraw")

        with self._atomic("withdraw_earnings") as transfers:
            if record.registered:
                self._realize(record, now)
            owed = record.owed
            if owed == 0:
                raise NothingToWithdraw("No reward to withdraw")
            record.stake_reward = 0
            record.referral_reward = 0
            record.referral_count = 0
            self.total_rewards_paid += owed
            transfers.append(_Transfer("out", caller, owed, TransferFailed))

        logger.info(
            f"Withdrew earnings {caller}",
            extra={"op": "withdraw_earnings", "account": caller, "amount": owed},
        )
        return owed

    def calculate_earnings(self, address: str, now: Optional[float] = None) -> int:
        """Pending (unrealized) reward for *address*.  Read-only."""
        record = self.registry.get(address)
        if record is None:
            return 0
        return pending_reward(
            record, self._now(now), self.params.reward_rate, self.unit_seconds,
        )

    # ── admin operations ────────────────────────────────────────────

    def _set(self, caller: str, name: str, value: object) -> None:
        with self._atomic(f"set {name}"):
            self.params.update(caller, name, value)

    def set_staking_tax_rate(self, caller: str, bps: int) -> None:
        self._set(caller, "staking_tax_rate", bps)

    def set_unstaking_tax_rate(self, caller: str, bps: int) -> None:
        self._set(caller, "unstaking_tax_rate", bps)

    def set_reward_rate(self, caller: str, bps: int) -> None:
        self._set(caller, "reward_rate", bps)

    def set_registration_tax(self, caller: str, amount: int) -> None:
        self._set(caller, "registration_tax", amount)

    def set_referral_tax_allocation(self, caller: str, bps: int) -> None:
        self._set(caller, "referral_tax_allocation", bps)

    def set_minimum_stake_value(self, caller: str, amount: int) -> None:
        self._set(caller, "minimum_stake_value", amount)

    def set_pool_reserve_threshold(self, caller: str, amount: int) -> None:
        self._set(caller, "pool_reserve_threshold", amount)

    def set_active(self, caller: str, active: bool) -> None:
        self._set(caller, "active", active)

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        with self._atomic("transfer_ownership"):
            self.params.transfer_ownership(caller, new_owner)

    def supply_pool(self, caller: str, amount: Optional[int] = None) -> int:
        """
        Move tokens from the owner's reserve into the pool.

        Rejected while the pool holds more than ``pool_reserve_threshold``.
        Without *amount* the pool is topped up to the threshold.
        Returns the amount supplied.
        """
        self.params.require_owner(caller)
        balance = self.pool_balance()
        threshold = self.params.pool_reserve_threshold
        if balance > threshold:
            raise PoolReserveSufficient(
                f"Pool holds {balance}, threshold is {threshold}"
            )
        if amount is None:
            amount = threshold - balance
            if amount == 0:
                raise PoolReserveSufficient(f"Pool already at threshold {threshold}")
        _require_positive(amount, "amount")

        with self._atomic("supply_pool") as transfers:
            transfers.append(_Transfer("in", caller, amount, InsufficientBalance))

        logger.info(f"Pool supplied by {caller}: {amount}")
        return amount

    def admin_withdraw(self, caller: str, to: str, amount: int) -> None:
        """Owner sweep of pool funds.  No check against outstanding obligations."""
        self.params.require_owner(caller)
        self._require_holder(to, "to")
        _require_positive(amount, "amount")

        with self._atomic("admin_withdraw") as transfers:
            transfers.append(_Transfer("out", to, amount, TransferFailed))

        logger.warning(f"Admin withdrawal of {amount} from pool to {to}")

    # ── queries ─────────────────────────────────────────────────────

    def get_record(self, address: str) -> StakeRecord | None:
        return self.registry.get(address)

    def is_registered(self, address: str) -> bool:
        return self.registry.is_registered(address)

    def stakeholders(self) -> list[str]:
        return self.registry.stakeholders()

    def pool_balance(self) -> int:
        return self.token.balance_of(self.token.pool_address)

    def total_obligations(self) -> int:
        """Principal plus realized reward the pool currently owes."""
        owed = sum(r.owed for r in self.registry.records.values())
        return self.total_staked + owed

    def get_stakeholder_summary(self, address: str, now: Optional[float] = None) -> dict:
        record = self.registry.get(address)
        if record is None:
            record = StakeRecord(address=address)
        d = record.to_dict()
        d["pending_reward"] = self.calculate_earnings(address, now)
        d["referrer"] = self.referrals.referrer_of(address)
        return d

    def get_state_summary(self, now: Optional[float] = None) -> dict:
        now = self._now(now)
        pending = sum(
            self.calculate_earnings(addr, now) for addr in self.registry.stakeholders()
        )
        return {
            "total_staked": self.total_staked,
            "total_rewards_paid": self.total_rewards_paid,
            "total_tax_collected": self.total_tax_collected,
            "total_pending_reward": pending,
            "total_obligations": self.total_obligations(),
            "pool_balance": self.pool_balance(),
            "stakeholders": len(self.registry),
            "records": len(self.registry.records),
            "unit_seconds": self.unit_seconds,
            "active": self.params.active,
        }
