"""
Token collaborator for StakeLedger.

The ledger never touches token balances itself.  It only calls the three
primitives of ``TokenCollaborator`` and treats a ``False`` return as a
refused transfer.  ``InMemoryToken`` is the reference implementation used
by the service runner and the test suite.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from stakeledger_core.precision import is_amount

logger = logging.getLogger("stakeledger_token")


@runtime_checkable
class TokenCollaborator(Protocol):
    """Atomic debit/credit primitives between holders and the pool."""

    pool_address: str

    def transfer_in(self, sender: str, amount: int) -> bool:
        """Move *amount* from *sender* into the pool."""
        ...

    def transfer_out(self, recipient: str, amount: int) -> bool:
        """Move *amount* from the pool to *recipient*."""
        ...

    def balance_of(self, address: str) -> int:
        ...


class InMemoryToken:
    """Balance map with a distinguished pool account."""

    def __init__(self, pool_address: str = "pool", symbol: str = "LEAD"):
        self.pool_address = pool_address
        self.symbol = symbol
        self.balances: dict[str, int] = {}
        self.total_supply: int = 0

    def mint(self, address: str, amount: int) -> None:
        if not is_amount(amount):
            raise ValueError("mint amount must be a non-negative int")
        self.balances[address] = self.balances.get(address, 0) + amount
        self.total_supply += amount

    def balance_of(self, address: str) -> int:
        return self.balances.get(address, 0)

    def _move(self, sender: str, recipient: str, amount: int) -> bool:
        if not is_amount(amount):
            return False
        have = self.balances.get(sender, 0)
        if have < amount:
            logger.debug(f"Transfer refused: {sender} holds {have}, needs {amount}")
            return False
        self.balances[sender] = have - amount
        self.balances[recipient] = self.balances.get(recipient, 0) + amount
        return True

    def transfer_in(self, sender: str, amount: int) -> bool:
        return self._move(sender, self.pool_address, amount)

    def transfer_out(self, recipient: str, amount: int) -> bool:
        return self._move(self.pool_address, recipient, amount)

    def to_dict(self) -> dict:
        return {
            "pool_address": self.pool_address,
            "symbol": self.symbol,
            "total_supply": self.total_supply,
            "balances": dict(self.balances),
        }
