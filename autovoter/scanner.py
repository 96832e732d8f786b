"""
Discovery/refresh scanner.

Keeps the SnapshotStore fresh. A full discovery walks every target the voter
knows about; afterwards only the most rewarding targets are refreshed until
something goes wrong or a new full pass is forced. In scheduled mode the
scanner stays asleep until the epoch close is near.
"""

import asyncio
import logging
import time
from enum import Enum
from fractions import Fraction
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Union

from config import Config
from config.settings import (
    ONE_E18,
    PRIORITY_POOL_COUNT,
    RECOVER_PAUSE,
    SCAN_BATCH_DELAY,
    SCAN_BATCH_SIZE,
    SCHEDULED_TICK,
    WAKE_UP_WINDOW,
    WEEK,
    WEEKS_PER_YEAR,
)

from .chain import ChainAdapter, TargetInfo
from .events import EventBus, ScanningProgressEvent, StatusEvent, SummaryEvent, TargetsEvent
from .ledger import OutcomeLedger
from .models import ProtocolSummary, RefreshMode, RewardAmount, Snapshot, Target
from .price_feed import MarketData
from .state import SnapshotStore, StrategyStore
from .utils import epoch_start

logger = logging.getLogger(__name__)


class ScanState(str, Enum):
    COLD_START = "cold_start"
    SLEEPING = "sleeping"
    FULL_SCAN = "full_scan"
    TARGETED_SCAN = "targeted_scan"
    RECOVER = "recover"


def usd_value(rewards: Dict[str, RewardAmount], prices: Dict[str, float]) -> float:
    total = 0.0
    for token, reward in rewards.items():
        price = prices.get(token.lower(), 0.0)
        if price:
            total += float(Fraction(reward.amount, 10**reward.decimals)) * price
    return total


def priority_list(targets: Iterable[Target], size: int = PRIORITY_POOL_COUNT) -> List[str]:
    """Addresses of the `size` targets with the highest total reward value."""
    ranked = sorted(targets, key=lambda t: t.total_rewards_usd, reverse=True)
    return [t.address for t in ranked[:size]]


class SnapshotBuilder:
    """Reads targets from the chain in rate-limited batches and values them."""

    def __init__(
        self,
        chain: ChainAdapter,
        market: MarketData,
        events: EventBus,
        clock: Callable[[], float] = time.time,
        batch_size: int = SCAN_BATCH_SIZE,
        batch_delay: float = SCAN_BATCH_DELAY,
    ):
        self.chain = chain
        self.market = market
        self.events = events
        self.clock = clock
        self.batch_size = batch_size
        self.batch_delay = batch_delay

    async def _read_target(self, item: Union[int, str], start: int) -> Optional[TargetInfo]:
        try:
            address = await self.chain.target_at(item) if isinstance(item, int) else item
            return await self.chain.target_info(address, start)
        except Exception as e:
            logger.warning(f"Skipping target {item}: {e}")
            return None

    async def _market(self, tokens: Set[str], pools: List[str]):
        async def soft(coro, label):
            try:
                return await coro
            except Exception as e:
                logger.warning(f"{label} lookup failed, treating as empty: {e}")
                return {}

        return await asyncio.gather(
            soft(self.market.prices_for(tokens), "Price"),
            soft(self.market.liquidity_for(pools), "Liquidity"),
        )

    async def build(self, addresses: Optional[Sequence[str]] = None) -> Snapshot:
        """
        Build a snapshot of every target (addresses=None) or of the given ones.

        Args:
            addresses: Optional priority list for a targeted refresh

        Returns:
            New Snapshot (possibly without targets)
        """
        now = int(self.clock())
        start = epoch_start(now)
        total_weight, emission, epoch_close, count = await asyncio.gather(
            self.chain.total_weight(),
            self.chain.weekly_emission(),
            self.chain.current_epoch_close(now),
            self.chain.target_count(),
        )

        items: List[Union[int, str]] = list(addresses) if addresses else list(range(count))
        logger.info(f"Fetching data for {len(items)} pools...")
        self.events.publish(StatusEvent(f"Scanning {len(items)} pools..."))

        infos: List[TargetInfo] = []
        for offset in range(0, len(items), self.batch_size):
            batch = items[offset : offset + self.batch_size]
            results = await asyncio.gather(*(self._read_target(item, start) for item in batch))
            infos.extend(info for info in results if info is not None)
            scanned = offset + len(batch)
            self.events.publish(ScanningProgressEvent(scanned=scanned, total=len(items), active=len(infos)))
            if scanned < len(items) and self.batch_delay:
                await asyncio.sleep(self.batch_delay)

        governance = self.chain.governance_token().lower()
        tokens = {governance}
        for info in infos:
            tokens.update(t.lower() for t in info.fees)
            tokens.update(t.lower() for t in info.incentives)
        prices, liquidity = await self._market(tokens, [i.address for i in infos])
        governance_price = prices.get(governance, 0.0)

        emission_tokens = float(Fraction(emission, ONE_E18))
        targets = []
        for info in infos:
            fees_usd = usd_value(info.fees, prices)
            incentives_usd = usd_value(info.incentives, prices)
            weight_usd = float(Fraction(info.weight, ONE_E18)) * governance_price
            rewards_usd = fees_usd + incentives_usd
            apr = (rewards_usd / weight_usd) * WEEKS_PER_YEAR * 100 if weight_usd > 1 else 0.0
            vote_share = float(Fraction(info.weight, total_weight)) if total_weight > 0 else 0.0
            targets.append(
                Target(
                    address=info.address,
                    name=info.name,
                    weight=info.weight,
                    fees=dict(info.fees),
                    incentives=dict(info.incentives),
                    fees_usd=fees_usd,
                    incentives_usd=incentives_usd,
                    liquidity_usd=liquidity.get(info.address.lower(), 0.0),
                    apr=apr,
                    emissions_share=emission_tokens * vote_share,
                    emissions_usd=emission_tokens * vote_share * governance_price,
                    fee_contract=info.fee_contract,
                    incentive_contract=info.incentive_contract,
                )
            )

        total_fees = sum(t.fees_usd for t in targets)
        total_incentives = sum(t.incentives_usd for t in targets)
        summary = ProtocolSummary(
            total_weight=total_weight,
            weekly_emission=emission,
            epoch_close=epoch_close,
            total_fees_usd=total_fees,
            total_incentives_usd=total_incentives,
            total_rewards_usd=total_fees + total_incentives + emission_tokens * governance_price,
            total_pools=count,
            active_pools=len(targets),
            governance_price=governance_price,
        )
        return Snapshot(targets=tuple(targets), summary=summary, prices=prices)


class Scanner:
    """Long-running discovery/refresh loop; never exits on error."""

    def __init__(
        self,
        chain: ChainAdapter,
        market: MarketData,
        store: SnapshotStore,
        strategy: StrategyStore,
        events: EventBus,
        ledger: Optional[OutcomeLedger] = None,
        clock: Callable[[], float] = time.time,
        fetch_interval: float = Config.FETCH_INTERVAL,
        batch_delay: float = SCAN_BATCH_DELAY,
    ):
        self.chain = chain
        self.store = store
        self.strategy = strategy
        self.events = events
        self.ledger = ledger
        self.clock = clock
        self.fetch_interval = fetch_interval
        self.builder = SnapshotBuilder(chain, market, events, clock=clock, batch_delay=batch_delay)
        self.state = ScanState.COLD_START
        self.priority: Optional[List[str]] = None
        self._forced = False
        self._wake: Optional[asyncio.Event] = None  # created by run() on its loop
        self._running = False
        self._ledger_tasks: Set[asyncio.Task] = set()

    def request_scan(self) -> None:
        """Wake the scanner now, even when scheduled mode would keep sleeping."""
        self._forced = True
        if self._wake is not None:
            self._wake.set()

    def stop(self) -> None:
        self._running = False
        if self._wake is not None:
            self._wake.set()

    async def _sync_epoch_close(self, now: int) -> None:
        self.state = ScanState.COLD_START
        logger.info("Cold start: syncing epoch timer...")
        try:
            close = await self.chain.current_epoch_close(now)
        except Exception as e:
            logger.warning(f"Epoch sync failed, will try a full scan: {e}")
            return
        self.store.set_epoch_close(close)
        logger.info(f"Synced! Epoch ends at {close}")

    async def _should_sleep(self) -> bool:
        now = int(self.clock())
        if self.store.epoch_close is None:
            await self._sync_epoch_close(now)

        close = self.store.epoch_close
        if close is None:
            return False

        remaining = close - now
        if remaining <= 0:
            close += WEEK
            self.store.set_epoch_close(close)
            remaining = close - now
            logger.info(f"Current epoch has passed; next target {close}")

        if remaining <= WAKE_UP_WINDOW:
            return False
        if self._forced:
            logger.info("Scan requested; leaving scheduled sleep")
            return False

        hours = (remaining - WAKE_UP_WINDOW) / 3600
        if self.state != ScanState.SLEEPING:
            logger.info(f"[Scheduled Mode] Standing by. Wake up in ~{hours:.1f} hours.")
        self.state = ScanState.SLEEPING
        self.events.publish(StatusEvent(f"Scheduled Mode: Sleeping ({hours:.1f}h until scan)..."))
        return True

    async def _update_ledger(self, snapshot: Snapshot) -> None:
        try:
            await self.ledger.refresh_index(snapshot)
        except Exception as e:
            logger.warning(f"Index yield update failed: {e}")

    def _spawn_ledger_update(self, snapshot: Snapshot) -> None:
        if self.ledger is None:
            return
        task = asyncio.get_running_loop().create_task(self._update_ledger(snapshot))
        self._ledger_tasks.add(task)
        task.add_done_callback(self._ledger_tasks.discard)

    async def ledger_updates_done(self) -> None:
        """Wait for background index updates spawned by earlier cycles."""
        if self._ledger_tasks:
            await asyncio.gather(*list(self._ledger_tasks))

    async def scan_once(self) -> Optional[Snapshot]:
        """Run one full or targeted cycle and publish the result."""
        full = self.priority is None
        self.state = ScanState.FULL_SCAN if full else ScanState.TARGETED_SCAN
        self._forced = False
        logger.info("Starting full discovery scan..." if full else "Starting targeted scan...")

        snapshot = await self.builder.build(None if full else self.priority)
        if not snapshot.targets:
            logger.warning("Scan returned no active targets; next cycle is a full discovery")
            self.priority = None
            return None

        self.store.publish(snapshot)
        current = self.store.current()
        self.events.publish(SummaryEvent(current.summary))
        self.events.publish(TargetsEvent(current.targets))
        self.events.publish(StatusEvent("Full Scan Complete" if full else "Targeted Update Complete"))
        if full:
            self.priority = priority_list(current.targets)
        self._spawn_ledger_update(current)
        return current

    async def step(self) -> float:
        """
        Run one iteration of the state machine.

        Returns:
            Seconds to pause before the next iteration
        """
        try:
            immediate = self.strategy.get().refresh_mode == RefreshMode.IMMEDIATE
            if not immediate and await self._should_sleep():
                return SCHEDULED_TICK
            await self.scan_once()
            return self.fetch_interval if immediate else SCHEDULED_TICK
        except Exception as e:
            logger.exception(f"Scanner cycle crashed: {e}")
            self.state = ScanState.RECOVER
            self.priority = None
            self.events.publish(StatusEvent("Fetch failed. Retrying..."))
            return RECOVER_PAUSE

    async def _pause(self, delay: float) -> None:
        if self._wake is None:
            self._wake = asyncio.Event()
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass
        self._wake.clear()

    async def run(self) -> None:
        if self._running:
            logger.warning("Scanner is already running")
            return
        self._running = True
        self._wake = asyncio.Event()
        logger.info("Smart scanner started")
        try:
            while self._running:
                delay = await self.step()
                if self._running:
                    await self._pause(delay)
        finally:
            self._running = False
            await self.ledger_updates_done()
