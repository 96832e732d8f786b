"""
Vote execution.

`VoteExecutor` turns the current snapshot into vote transactions, one per
configured account, and records the outcome in the ledger. `Sniper` is the
fixed-tick timer that fires the executor once per epoch, shortly before the
voting period closes.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import Callable, List, Optional, Sequence, Tuple

from config import Config
from config.settings import BASIS_POINTS, SNIPER_TICK, WEEK

from .chain import ChainAdapter
from .errors import PreconditionError, TransactionFailed
from .events import EventBus, StatusEvent, VoteStatusEvent
from .ledger import OutcomeLedger
from .models import (
    Allocation,
    ExecutionRecord,
    Snapshot,
    TxStatus,
    VoterAccount,
    committed_weight,
    to_percentage,
)
from .optimizer import VoteOptimizer, project_target
from .state import SnapshotStore, StrategyStore
from .utils import truncate_address

logger = logging.getLogger(__name__)

MULTIPLE_ACCOUNTS_HASH = "Multiple-NFTs"
FAILED_HASH = "Failed"


@dataclass
class VoteOutcome:
    """Result of one vote attempt across every configured account."""

    record: ExecutionRecord
    allocation: Optional[Allocation] = None
    succeeded: List[Tuple[VoterAccount, str]] = field(default_factory=list)
    failed: List[Tuple[VoterAccount, str]] = field(default_factory=list)
    skipped: List[VoterAccount] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return bool(self.succeeded)


def _ledger_hash(hashes: Sequence[str]) -> str:
    if len(hashes) == 1:
        return hashes[0]
    return MULTIPLE_ACCOUNTS_HASH if hashes else FAILED_HASH


def _is_non_positive(percent) -> bool:
    try:
        return Decimal(str(percent)) <= 0
    except InvalidOperation:
        return False


def manual_weight(power: int, percent) -> int:
    """Weight for `percent` of `power`; percent is floored to basis points."""
    bp = int((to_percentage(percent) * 100).to_integral_value(rounding=ROUND_FLOOR))
    return power * bp // BASIS_POINTS


class VoteExecutor:
    """Submits vote transactions for every configured account."""

    def __init__(
        self,
        chain: ChainAdapter,
        store: SnapshotStore,
        strategy: StrategyStore,
        ledger: OutcomeLedger,
        accounts: Sequence[VoterAccount],
        events: EventBus,
        clock: Callable[[], float] = time.time,
    ):
        self.chain = chain
        self.store = store
        self.strategy = strategy
        self.ledger = ledger
        self.accounts = list(accounts)
        self.events = events
        self.clock = clock

    def _require_snapshot(self) -> Snapshot:
        if not self.accounts:
            raise PreconditionError("No voter accounts configured")
        snapshot = self.store.current()
        if not snapshot.targets:
            raise PreconditionError("No pool data available yet")
        if snapshot.summary.governance_price <= 0:
            raise PreconditionError("Governance token price unavailable")
        return snapshot

    def _target_name(self, snapshot: Snapshot, address: str) -> str:
        target = snapshot.target(address)
        return target.name if target else truncate_address(address)

    async def _vote_account(self, account: VoterAccount, targets: List[str], weights: List[int]) -> str:
        """Submit one account's vote and wait for it to be final; returns the tx hash."""
        handle = await self.chain.submit_vote(account, targets, weights)
        logger.info(f"Vote sent for {account}: {handle.tx_hash}")
        status = await handle.wait()
        if status != TxStatus.CONFIRMED:
            raise TransactionFailed(f"Vote reverted for {account}", tx_hash=handle.tx_hash)
        return handle.tx_hash

    async def execute_vote(self) -> VoteOutcome:
        """
        Vote with every configured account using the current strategy.

        The allocation is computed once, with the first account that has
        voting power; each account then votes its own power split equally
        across the chosen targets. A failing account never stops the others,
        and the whole attempt collapses into a single "Auto-Vote" ledger record.

        Raises:
            PreconditionError: no accounts, no snapshot, no governance price
                or no voting power on any account
        """
        snapshot = self._require_snapshot()
        strategy = self.strategy.get()
        now = int(self.clock())

        # A zero budget projects nothing; plan with the first account that has power
        budget = 0
        for account in self.accounts:
            budget = committed_weight(await self.chain.voting_power_at(account, now), strategy.percentage_bp)
            if budget > 0:
                break
            logger.info(f"NFT {account} has no voting power; planning with the next account")
        if budget <= 0:
            raise PreconditionError("Zero voting power on every configured account")
        allocation = VoteOptimizer(snapshot).allocate(strategy, budget)
        if not allocation.projections:
            raise PreconditionError("No eligible targets to vote for")

        addresses = [t.address for t in allocation.targets]
        logger.info(f"Executing {strategy.kind.value} vote on: {', '.join(allocation.names)}")
        self.events.publish(StatusEvent(f"Voting for {', '.join(allocation.names)}..."))

        outcome_ok: List[Tuple[VoterAccount, str]] = []
        outcome_failed: List[Tuple[VoterAccount, str]] = []
        skipped: List[VoterAccount] = []

        for account in self.accounts:
            try:
                power = await self.chain.voting_power_at(account, now)
                per_target = committed_weight(power, strategy.percentage_bp) // len(addresses)
                if per_target <= 0:
                    logger.info(f"Skipping {account}: no voting power")
                    skipped.append(account)
                    continue
                tx_hash = await self._vote_account(account, addresses, [per_target] * len(addresses))
            except Exception as e:
                logger.error(f"Vote failed for {account}: {e}")
                outcome_failed.append((account, str(e)))
                self.events.publish(VoteStatusEvent(success=False, message=f"Vote failed for NFT {account}: {e}"))
                continue
            outcome_ok.append((account, tx_hash))
            self.events.publish(VoteStatusEvent(success=True, message=f"NFT {account} voted: {tx_hash}"))

        hashes = [tx_hash for _, tx_hash in outcome_ok]
        error = None
        if not outcome_ok:
            error = "; ".join(f"{a}: {msg}" for a, msg in outcome_failed) or "No account had voting power"
        record = self.ledger.append(
            kind="Auto-Vote",
            tx_hash=_ledger_hash(hashes),
            targets=allocation.names,
            value_usd=allocation.projected_reward_usd,
            status=TxStatus.CONFIRMED if outcome_ok else TxStatus.FAILED,
            error=error,
        )
        if outcome_ok and snapshot.summary.epoch_close:
            self.ledger.record_participation(snapshot.summary.epoch_close, len(addresses))

        return VoteOutcome(
            record=record,
            allocation=allocation,
            succeeded=outcome_ok,
            failed=outcome_failed,
            skipped=skipped,
        )

    def record_failed_vote(self, error: str) -> ExecutionRecord:
        """Ledger entry for an automatic vote that died before any account voted."""
        return self.ledger.append(
            kind="Auto-Vote",
            tx_hash=FAILED_HASH,
            targets=[],
            value_usd=0.0,
            status=TxStatus.FAILED,
            error=f"Failed: {error}",
        )

    async def _recorded_vote(self, kind: str, votes: List[Tuple[str, int]]) -> ExecutionRecord:
        """Vote with the first account, recording the tx as Pending until final."""
        snapshot = self.store.current()
        account = self.accounts[0]
        addresses = [address for address, _ in votes]
        weights = [weight for _, weight in votes]
        value = 0.0
        for address, weight in votes:
            target = snapshot.target(address)
            if target is not None:
                value += project_target(target, weight, snapshot.summary.governance_price).projected_reward_usd

        handle = await self.chain.submit_vote(account, addresses, weights)
        record = self.ledger.append(
            kind=kind,
            tx_hash=handle.tx_hash,
            targets=[self._target_name(snapshot, a) for a in addresses],
            value_usd=value,
            status=TxStatus.PENDING,
        )
        try:
            status = await handle.wait()
        except Exception as e:
            self.ledger.update_status(handle.tx_hash, TxStatus.FAILED, str(e))
            raise TransactionFailed(f"{kind} failed: {e}", tx_hash=handle.tx_hash)
        if status != TxStatus.CONFIRMED:
            self.ledger.update_status(handle.tx_hash, TxStatus.FAILED, "Transaction reverted")
            raise TransactionFailed(f"{kind} reverted", tx_hash=handle.tx_hash)

        self.ledger.update_status(handle.tx_hash, TxStatus.CONFIRMED)
        if snapshot.targets:
            self.ledger.track_index(snapshot)
        return record

    async def _first_account_power(self) -> int:
        if not self.accounts:
            raise PreconditionError("No voter accounts configured")
        power = await self.chain.voting_power_at(self.accounts[0], int(self.clock()))
        if power <= 0:
            raise PreconditionError(f"NFT {self.accounts[0]} has no voting power")
        return power

    async def manual_vote(self, votes: Sequence[Tuple[str, object]]) -> ExecutionRecord:
        """
        Vote explicit percentages of the first account's power.

        Args:
            votes: (target address, percent) pairs; percent in (0, 100],
                entries at or below zero are dropped
        """
        votes = [(address, p) for address, p in votes if not _is_non_positive(p)]
        if not votes:
            raise PreconditionError("No votes given")
        percents = [to_percentage(p) for _, p in votes]
        if sum(percents) > 100:
            raise PreconditionError(f"Vote percentages add up to {sum(percents)}%")
        power = await self._first_account_power()
        weighted = [(address, manual_weight(power, p)) for (address, _), p in zip(votes, percents)]
        if any(w <= 0 for _, w in weighted):
            raise PreconditionError("A vote percentage rounds to zero weight")
        return await self._recorded_vote("Manual-Vote", weighted)

    async def test_vote(self, address: str) -> ExecutionRecord:
        """Vote 1% of the first account's power (at least one unit) on one target."""
        power = await self._first_account_power()
        weight = max(1, power // 100)
        return await self._recorded_vote("Test-Vote", [(address, weight)])


class Sniper:
    """Fires the executor once per epoch inside the lead window."""

    def __init__(
        self,
        executor: VoteExecutor,
        store: SnapshotStore,
        strategy: StrategyStore,
        events: EventBus,
        clock: Callable[[], float] = time.time,
        lead_time: int = Config.VOTE_LEAD_TIME,
        tick: float = SNIPER_TICK,
    ):
        self.executor = executor
        self.store = store
        self.strategy = strategy
        self.events = events
        self.clock = clock
        self.lead_time = lead_time
        self.tick = tick
        # Epoch start of the last fired epoch. In memory only: a restart
        # inside the lead window can fire a second time.
        self.last_voted_epoch: Optional[int] = None
        self._firing = False

    def idempotency_key(self) -> Optional[int]:
        close = self.store.epoch_close
        return close - WEEK if close else None

    def armed(self) -> bool:
        close = self.store.epoch_close
        if not close:
            return False
        remaining = close - int(self.clock())
        return 0 < remaining <= self.lead_time

    async def fire(self) -> Optional[VoteOutcome]:
        """
        Run the vote unless this epoch already voted or a vote is in flight.

        Returns:
            VoteOutcome, or None when the key was already used

        A failure after the key is claimed is written to the ledger as a
        Failed "Auto-Vote" record before it propagates.

        Raises:
            PreconditionError: from the executor
        """
        key = self.idempotency_key()
        if key is None:
            raise PreconditionError("Epoch close time unknown")
        if self._firing or key == self.last_voted_epoch:
            logger.info(f"Vote for epoch {key} already executed; skipping")
            return None
        # Claimed before the first await so overlapping ticks see it.
        self.last_voted_epoch = key
        self._firing = True
        try:
            return await self.executor.execute_vote()
        except Exception as e:
            # The key stays used, so this record is the only trace of the epoch
            self.executor.record_failed_vote(str(e))
            raise
        finally:
            self._firing = False

    async def check(self) -> Optional[VoteOutcome]:
        """One tick: fire when the strategy is enabled and the window is open."""
        if not self.strategy.get().enabled or not self.armed():
            return None
        if self._firing or self.idempotency_key() == self.last_voted_epoch:
            return None

        remaining = self.store.epoch_close - int(self.clock())
        logger.info(f"SNIPER TRIGGERED: {remaining}s left. Executing vote...")
        self.events.publish(StatusEvent(f"Sniper triggered: {remaining}s left"))
        try:
            outcome = await self.fire()
        except PreconditionError as e:
            logger.warning(f"Auto-vote skipped: {e}")
            self.events.publish(VoteStatusEvent(success=False, message=str(e), terminal=True))
            return None
        except Exception as e:
            logger.exception(f"Auto-vote crashed: {e}")
            self.events.publish(VoteStatusEvent(success=False, message=f"Auto-vote failed: {e}", terminal=True))
            return None

        if outcome is not None:
            self.events.publish(
                VoteStatusEvent(
                    success=outcome.success,
                    message=f"Auto-vote {outcome.record.status.value}: {outcome.record.tx_hash}",
                    terminal=True,
                )
            )
        return outcome

    async def run(self) -> None:
        logger.info(f"Sniper armed: checking every {self.tick}s, firing {self.lead_time}s before close")
        while True:
            try:
                await self.check()
            except Exception as e:
                logger.exception(f"Sniper tick failed: {e}")
            await asyncio.sleep(self.tick)
