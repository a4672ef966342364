"""
Shared pytest fixtures for the StakeLedger test suite.
"""

import pytest

from stakeledger_core.ledger import StakingLedger
from stakeledger_core.params import ParameterSet
from stakeledger_core.precision import SECONDS_PER_DAY
from stakeledger_core.token import InMemoryToken

T0 = 1_700_000_000.0
DAY = SECONDS_PER_DAY
OWNER = "rOwner"


class FakeClock:
    """Settable clock so accrual tests control time explicitly."""

    def __init__(self, start: float = T0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def token():
    """In-memory token: pool seeded with 10, three holders with 10k each."""
    t = InMemoryToken(pool_address="rPool")
    t.mint("rPool", 10)
    t.mint(OWNER, 1_000_000)
    for holder in ("rAlice", "rBob", "rCarol"):
        t.mint(holder, 10_000)
    return t


@pytest.fixture
def params():
    """Launch economics (2 %, 4 %, 200, 50 %, 1000)."""
    return ParameterSet(owner=OWNER)


@pytest.fixture
def ledger(token, params, clock):
    return StakingLedger(token, params, clock=clock)


@pytest.fixture
def flat_ledger(token, clock):
    """No taxes, 1 %/day reward, minimum stake 1000."""
    p = ParameterSet(
        owner=OWNER,
        staking_tax_rate=0,
        unstaking_tax_rate=0,
        registration_tax=0,
        referral_tax_allocation=0,
    )
    return StakingLedger(token, p, clock=clock)
