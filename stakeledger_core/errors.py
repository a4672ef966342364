"""
Error taxonomy for StakeLedger.

Every rejected operation raises a ``LedgerError`` subclass.  The ledger
restores its pre-call state before the exception reaches the caller, so
catching one of these never leaves a partially applied operation behind.
Nothing here is retried automatically.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    code = "ledger_error"


class NotRegistered(LedgerError):
    """The operation needs a registered stakeholder and the caller is not one."""
    code = "not_registered"


class AlreadyRegistered(LedgerError):
    """The caller tried to register while already registered."""
    code = "already_registered"


class ContractPaused(LedgerError):
    """``register`` or ``stake`` while the ledger is inactive."""
    code = "contract_paused"


class BelowMinimumStake(LedgerError):
    """Amount falls below ``minimum_stake_value``."""
    code = "below_minimum_stake"


class InsufficientBalance(LedgerError):
    """The token refused to move the caller's deposit into the pool."""
    code = "insufficient_balance"


class InsufficientStake(LedgerError):
    """Unstake amount exceeds the caller's principal."""
    code = "insufficient_stake"


class NothingToWithdraw(LedgerError):
    """No realized stake or referral reward is owed."""
    code = "nothing_to_withdraw"


class TransferFailed(LedgerError):
    """The token refused to pay out of the pool."""
    code = "transfer_failed"


class NotOwner(LedgerError):
    """An owner-gated operation was called by someone else."""
    code = "not_owner"


class PoolReserveSufficient(LedgerError):
    """The pool already holds more than ``pool_reserve_threshold``."""
    code = "pool_reserve_sufficient"


class InvalidParameter(LedgerError):
    """A value is malformed or outside its allowed bound."""
    code = "invalid_parameter"


class InvariantViolation(LedgerError):
    """A post-operation invariant check failed; the operation was rolled back."""
    code = "invariant_violation"
