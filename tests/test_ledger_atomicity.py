"""
Tests for all-or-nothing ledger operations.

A refused token transfer, a failed invariant check or an unexpected error
inside an operation must leave the registry, referral ledger, parameters,
totals and token balances exactly as they were.
"""

import pytest

from conftest import DAY, OWNER
from stakeledger_core.errors import (
    InsufficientBalance,
    InvalidParameter,
    InvariantViolation,
    TransferFailed,
)
from stakeledger_core.ledger import StakingLedger
from stakeledger_core.token import InMemoryToken


class RefusingToken(InMemoryToken):
    """Refuses every outbound transfer while ``refuse_out`` is set."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.refuse_out = False

    def transfer_out(self, recipient, amount):
        if self.refuse_out:
            return False
        return super().transfer_out(recipient, amount)


class ExplodingToken(InMemoryToken):
    def transfer_in(self, sender, amount):
        raise RuntimeError("token backend unavailable")


def _state(ledger):
    return (
        {a: r.to_dict() for a, r in ledger.registry.records.items()},
        ledger.registry.stakeholders(),
        ledger.referrals.pairs(),
        ledger.params.to_dict(),
        ledger.total_staked,
        ledger.total_rewards_paid,
        ledger.total_tax_collected,
        dict(ledger.token.balances),
    )


@pytest.fixture
def refusing_ledger(params, clock):
    token = RefusingToken(pool_address="rPool")
    token.mint("rPool", 10_000)
    for holder in ("rAlice", "rBob"):
        token.mint(holder, 10_000)
    return StakingLedger(token, params, clock=clock)


class TestRefusedTransfer:
    def test_unstake_refused_restores_principal(self, refusing_ledger, clock):
        ledger = refusing_ledger
        ledger.register("rAlice", "rBob", 1200)
        clock.advance(2 * DAY)
        before = _state(ledger)
        ledger.token.refuse_out = True
        with pytest.raises(TransferFailed):
            ledger.unstake("rAlice", 980)
        assert _state(ledger) == before
        alice = ledger.get_record("rAlice")
        assert alice.registered
        # the realize step was rolled back as well
        assert alice.stake_reward == 0
        assert ledger.calculate_earnings("rAlice") == 19

    def test_withdraw_refused_restores_rewards(self, refusing_ledger, clock):
        ledger = refusing_ledger
        ledger.register("rBob", None, 2000)
        ledger.register("rAlice", "rBob", 1200)
        clock.advance(DAY)
        before = _state(ledger)
        ledger.token.refuse_out = True
        with pytest.raises(TransferFailed):
            ledger.withdraw_earnings("rBob")
        assert _state(ledger) == before

    def test_retry_after_refusal_succeeds(self, refusing_ledger):
        ledger = refusing_ledger
        ledger.register("rAlice", None, 1200)
        ledger.token.refuse_out = True
        with pytest.raises(TransferFailed):
            ledger.unstake("rAlice", 500)
        ledger.token.refuse_out = False
        assert ledger.unstake("rAlice", 500) == 480
        assert ledger.get_record("rAlice").principal == 480

    def test_register_refused_leaves_no_referrer_record(self, ledger):
        before = _state(ledger)
        with pytest.raises(InsufficientBalance):
            ledger.register("rAlice", "rZed", 50_000)
        assert _state(ledger) == before
        assert ledger.get_record("rZed") is None
        assert ledger.referrals.referrer_of("rAlice") is None


class TestInvariantViolation:
    def test_corrupted_total_rejects_operation(self, ledger, token):
        ledger.register("rAlice", None, 1200)
        ledger.total_staked += 1
        balance = token.balance_of("rAlice")
        with pytest.raises(InvariantViolation, match="Total staked mismatch"):
            ledger.stake("rAlice", 1000)
        assert ledger.get_record("rAlice").principal == 980
        assert ledger.total_staked == 981
        # the transfer never ran
        assert token.balance_of("rAlice") == balance

    def test_checks_can_be_disabled(self, token, params, clock):
        ledger = StakingLedger(token, params, clock=clock, check_invariants=False)
        ledger.register("rAlice", None, 1200)
        ledger.total_staked += 1
        assert ledger.stake("rAlice", 1000) == 980


class TestUnexpectedError:
    def test_backend_error_rolls_back_and_propagates(self, params, clock):
        token = ExplodingToken(pool_address="rPool")
        token.mint("rAlice", 10_000)
        ledger = StakingLedger(token, params, clock=clock)
        before = _state(ledger)
        with pytest.raises(RuntimeError):
            ledger.register("rAlice", "rBob", 1200)
        assert _state(ledger) == before
        assert not ledger.is_registered("rAlice")


class TestAdminAtomicity:
    def test_rejected_setter_keeps_params(self, ledger):
        before = ledger.params.to_dict()
        with pytest.raises(InvalidParameter):
            ledger.set_staking_tax_rate(OWNER, -1)
        assert ledger.params.to_dict() == before
