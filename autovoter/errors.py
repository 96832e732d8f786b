"""
Exception types raised by the auto-voter.
"""

from typing import Optional


class AutoVoterError(Exception):
    """Base class for all auto-voter errors."""


class PreconditionError(AutoVoterError):
    """A request cannot run in the current state (no accounts, no snapshot, bad input)."""


class ChainError(AutoVoterError):
    """A read against the chain adapter failed."""


class TransactionFailed(AutoVoterError):
    """A submitted transaction reverted or could not be submitted."""

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash
