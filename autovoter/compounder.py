"""
Auto-compound loop: claim earned rewards, claim the rebase and lock the
governance tokens back into each account.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Callable, Dict, List, Optional, Sequence

from config.settings import ONE_E18, WEEK

from .chain import ChainAdapter, EarnedReward, TxHandle
from .errors import PreconditionError, TransactionFailed
from .events import EventBus, SwapStatusEvent
from .ledger import OutcomeLedger
from .models import ExecutionRecord, Snapshot, TxStatus, VoterAccount
from .state import SnapshotStore

logger = logging.getLogger(__name__)


@dataclass
class CompoundOutcome:
    record: Optional[ExecutionRecord] = None
    claimed_usd: float = 0.0
    tx_hashes: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def _reward_decimals(snapshot: Snapshot) -> Dict[str, int]:
    decimals: Dict[str, int] = {}
    for target in snapshot.targets:
        for token, reward in list(target.fees.items()) + list(target.incentives.items()):
            decimals[token.lower()] = reward.decimals
    return decimals


def earned_value_usd(rewards: Sequence[EarnedReward], snapshot: Snapshot) -> float:
    """USD value of earned rewards at snapshot prices; unknown tokens count as zero."""
    decimals = _reward_decimals(snapshot)
    total = 0.0
    for reward in rewards:
        price = snapshot.price(reward.token)
        if price:
            total += float(Fraction(reward.amount, 10 ** decimals.get(reward.token.lower(), 18))) * price
    return total


async def _confirm(handle: TxHandle, what: str) -> str:
    if await handle.wait() != TxStatus.CONFIRMED:
        raise TransactionFailed(f"{what} reverted", tx_hash=handle.tx_hash)
    return handle.tx_hash


class AutoCompounder:
    """Re-armable periodic claim + lock sequence over every account."""

    def __init__(
        self,
        chain: ChainAdapter,
        store: SnapshotStore,
        ledger: OutcomeLedger,
        accounts: Sequence[VoterAccount],
        events: EventBus,
        clock: Callable[[], float] = time.time,
    ):
        self.chain = chain
        self.store = store
        self.ledger = ledger
        self.accounts = list(accounts)
        self.events = events
        self.clock = clock
        self.interval_hours: Optional[float] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False

    def _status(self, message: str) -> None:
        logger.info(message)
        self.events.publish(SwapStatusEvent(message))

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, interval_hours: float) -> None:
        """(Re)arm the loop; a previous timer is cancelled first."""
        if interval_hours <= 0:
            raise PreconditionError("Auto-compound interval must be positive")
        self.stop()
        self.interval_hours = interval_hours
        self._task = asyncio.get_running_loop().create_task(self._loop(interval_hours))
        self._status(f"Auto-Pilot Activated: every {interval_hours} hours")

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
            self._status("Auto-Pilot Stopped.")

    async def _loop(self, interval_hours: float) -> None:
        while True:
            try:
                await self.run_once()
            except PreconditionError as e:
                self._status(f"Error: {e}")
            except Exception as e:
                logger.exception(f"Auto-compound run crashed: {e}")
                self._status(f"Error: {e}")
            self._status(f"Sleeping for {interval_hours} hours...")
            await asyncio.sleep(interval_hours * 3600)

    async def _claim_rewards(self, account: VoterAccount, snapshot: Snapshot, outcome: CompoundOutcome) -> None:
        self._status(f"Scanning rewards for ID {account.token_id}...")
        earned = await self.chain.earned_rewards(account, snapshot.targets)
        if not earned:
            logger.info(f"ID {account.token_id}: no rewards found")
            return

        incentives = [r for r in earned if r.incentive]
        fees = [r for r in earned if not r.incentive]
        if incentives:
            self._status(f"Claiming bribes for ID {account.token_id}...")
            handle = await self.chain.submit_claim(account, incentives)
            outcome.tx_hashes.append(await _confirm(handle, "Bribe claim"))
            outcome.claimed_usd += earned_value_usd(incentives, snapshot)
        if fees:
            self._status(f"Claiming fees for ID {account.token_id}...")
            handle = await self.chain.submit_claim(account, fees)
            outcome.tx_hashes.append(await _confirm(handle, "Fee claim"))
            outcome.claimed_usd += earned_value_usd(fees, snapshot)

    async def _rebase_and_lock(self, account: VoterAccount, snapshot: Snapshot, outcome: CompoundOutcome) -> None:
        claimable = await self.chain.claimable_rebase(account)
        if claimable <= 0:
            logger.info(f"ID {account.token_id}: nothing to rebase")
            return

        self._status(f"Claiming rebase for ID {account.token_id}...")
        handle = await self.chain.submit_rebase_claim(account)
        outcome.tx_hashes.append(await _confirm(handle, "Rebase claim"))
        outcome.claimed_usd += float(Fraction(claimable, ONE_E18)) * snapshot.summary.governance_price

        balance = await self.chain.token_balance(self.chain.governance_token())
        if balance > 0:
            self._status(f"Compounding into ID {account.token_id}...")
            handle = await self.chain.submit_reward_lock(account, balance)
            outcome.tx_hashes.append(await _confirm(handle, "Lock"))

    async def _total_power_usd(self, snapshot: Snapshot) -> float:
        # Power half an epoch back reflects what the claimed rewards were earned with.
        at = int(self.clock()) - WEEK // 2
        total = 0
        for account in self.accounts:
            try:
                total += await self.chain.voting_power_at(account, at)
            except Exception as e:
                logger.warning(f"Voting power lookup failed for {account}: {e}")
        return float(Fraction(total, ONE_E18)) * snapshot.summary.governance_price

    async def run_once(self) -> CompoundOutcome:
        """
        One claim + lock pass over every account, sequentially.

        Per-account failures are reported and do not stop the other accounts.

        Raises:
            PreconditionError: no accounts configured, or a pass already in flight
        """
        if not self.accounts:
            raise PreconditionError("No voter accounts configured")
        if self._running:
            raise PreconditionError("Auto-compound already running")

        self._running = True
        try:
            self._status("Auto-Pilot Running...")
            snapshot = self.store.current()
            outcome = CompoundOutcome()
            for account in self.accounts:
                try:
                    await self._claim_rewards(account, snapshot, outcome)
                    await self._rebase_and_lock(account, snapshot, outcome)
                except Exception as e:
                    logger.error(f"Auto-compound failed for {account}: {e}")
                    outcome.errors.append(f"{account}: {e}")
                    self._status(f"Claim Error ID {account.token_id}: {e}")

            if outcome.tx_hashes:
                self.ledger.record_realized(outcome.claimed_usd, await self._total_power_usd(snapshot))
                tx_hash = outcome.tx_hashes[-1] if len(outcome.tx_hashes) == 1 else "Multiple-Txs"
                outcome.record = self.ledger.append(
                    kind="Auto-Claim",
                    tx_hash=tx_hash,
                    targets=[str(a) for a in self.accounts],
                    value_usd=outcome.claimed_usd,
                    status=TxStatus.CONFIRMED,
                )
                self._status(f"Rewards Claimed (${outcome.claimed_usd:.2f})")
            elif outcome.errors:
                outcome.record = self.ledger.append(
                    kind="Auto-Claim",
                    tx_hash="Failed",
                    targets=[str(a) for a in self.accounts],
                    value_usd=0.0,
                    status=TxStatus.FAILED,
                    error="; ".join(outcome.errors),
                )
            else:
                self._status("No new rewards found.")
            return outcome
        finally:
            self._running = False
