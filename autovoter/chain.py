"""
Chain adapter contract.

The scanner, executor and compounder only talk to the chain through this
interface; `autovoter.web3_chain` implements it against a live RPC.
"""

import abc
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .models import RewardAmount, Target, TxStatus, VoterAccount


class TxHandle(abc.ABC):
    """A submitted transaction that can be awaited to a terminal state."""

    tx_hash: str

    @abc.abstractmethod
    async def wait(self) -> TxStatus:
        """Block until the transaction is final; returns CONFIRMED or FAILED."""


@dataclass
class CompletedTx(TxHandle):
    """Handle for a transaction whose outcome is already known (dry-run, tests)."""

    tx_hash: str
    status: TxStatus = TxStatus.CONFIRMED

    async def wait(self) -> TxStatus:
        return self.status


@dataclass(frozen=True)
class TargetInfo:
    """Per-target chain reads gathered in one discovery cycle."""

    address: str
    name: str
    weight: int
    fee_contract: str
    incentive_contract: str
    fees: Dict[str, RewardAmount] = field(default_factory=dict)
    incentives: Dict[str, RewardAmount] = field(default_factory=dict)


@dataclass(frozen=True)
class EarnedReward:
    """Claimable balance of one token on one reward contract."""

    reward_contract: str
    token: str
    amount: int
    incentive: bool


class ChainAdapter(abc.ABC):
    """Read-only queries plus the write operations the bot needs."""

    @abc.abstractmethod
    async def current_epoch_close(self, now: int) -> int:
        ...

    @abc.abstractmethod
    async def total_weight(self) -> int:
        ...

    @abc.abstractmethod
    async def weekly_emission(self) -> int:
        ...

    @abc.abstractmethod
    async def target_count(self) -> int:
        ...

    @abc.abstractmethod
    async def target_at(self, index: int) -> str:
        ...

    @abc.abstractmethod
    async def weight(self, target: str) -> int:
        ...

    @abc.abstractmethod
    async def target_info(self, target: str, epoch_start: int) -> Optional[TargetInfo]:
        """Full reads for one target, or None when it has no live gauge."""

    @abc.abstractmethod
    async def voting_power_at(self, account: VoterAccount, timestamp: int) -> int:
        ...

    @abc.abstractmethod
    def governance_token(self) -> str:
        ...

    @abc.abstractmethod
    async def token_balance(self, token: str, owner: Optional[str] = None) -> int:
        ...

    @abc.abstractmethod
    async def earned_rewards(self, account: VoterAccount, targets: Sequence[Target]) -> List[EarnedReward]:
        """Non-zero earned balances for `account` on the reward contracts of `targets`."""

    @abc.abstractmethod
    async def claimable_rebase(self, account: VoterAccount) -> int:
        ...

    @abc.abstractmethod
    async def submit_vote(
        self, account: VoterAccount, targets: Sequence[str], weights: Sequence[int]
    ) -> TxHandle:
        ...

    @abc.abstractmethod
    async def submit_claim(self, account: VoterAccount, rewards: Sequence[EarnedReward]) -> TxHandle:
        """Claim rewards of a single class (all fee-class or all incentive-class)."""

    @abc.abstractmethod
    async def submit_rebase_claim(self, account: VoterAccount) -> TxHandle:
        ...

    @abc.abstractmethod
    async def submit_reward_lock(self, account: VoterAccount, amount: int) -> TxHandle:
        ...
