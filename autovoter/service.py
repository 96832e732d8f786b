"""
Wires the scanner, sniper, compounder and ledger into one process.
"""

import asyncio
import dataclasses
import logging
import time
from typing import Callable, Optional, Sequence

from config import Config

from .chain import ChainAdapter
from .compounder import AutoCompounder
from .controller import Controller
from .database import LedgerDatabase
from .events import EventBus
from .executor import Sniper, VoteExecutor
from .ledger import OutcomeLedger
from .models import RefreshMode, StrategyConfig, VoterAccount
from .price_feed import MarketData, PriceFeed
from .scanner import Scanner
from .state import SnapshotStore, StrategyStore

logger = logging.getLogger(__name__)


class AutoVoterService:
    """Owns the shared state and the three control loops."""

    def __init__(
        self,
        chain: ChainAdapter,
        market: MarketData,
        database: LedgerDatabase,
        accounts: Sequence[VoterAccount],
        strategy: StrategyConfig,
        events: Optional[EventBus] = None,
        clock: Callable[[], float] = time.time,
        compound_interval_hours: float = 0.0,
    ):
        self.events = events or EventBus()
        self.store = SnapshotStore()
        self.strategy = StrategyStore(strategy)
        self.ledger = OutcomeLedger(database, self.events, clock=clock)
        self.scanner = Scanner(chain, market, self.store, self.strategy, self.events, ledger=self.ledger, clock=clock)
        self.executor = VoteExecutor(chain, self.store, self.strategy, self.ledger, accounts, self.events, clock=clock)
        self.sniper = Sniper(self.executor, self.store, self.strategy, self.events, clock=clock)
        self.compounder = AutoCompounder(chain, self.store, self.ledger, accounts, self.events, clock=clock)
        self.controller = Controller(
            self.strategy, self.store, self.executor, self.sniper, self.scanner, self.compounder, self.events
        )
        self.compound_interval_hours = compound_interval_hours

    @classmethod
    def from_config(cls, dry_run: bool = False, immediate: bool = False, events: Optional[EventBus] = None):
        """Build the live service from environment configuration."""
        from .web3_chain import Web3ChainAdapter, load_wallet

        wallet = load_wallet(Config.PRIVATE_KEY_SOURCE) if Config.PRIVATE_KEY_SOURCE else None
        chain = Web3ChainAdapter(Config.RPC_URL, wallet=wallet, dry_run=dry_run or Config.DRY_RUN)
        strategy = Config.strategy()
        if immediate:
            strategy = dataclasses.replace(strategy, refresh_mode=RefreshMode.IMMEDIATE)
        return cls(
            chain=chain,
            market=PriceFeed(Config.COINGECKO_API_KEY),
            database=LedgerDatabase(Config.DATABASE_PATH),
            accounts=[VoterAccount(token_id) for token_id in Config.TOKEN_IDS],
            strategy=strategy,
            events=events,
            compound_interval_hours=Config.COMPOUND_INTERVAL_HOURS,
        )

    async def run(self) -> None:
        """Run until cancelled."""
        strategy = self.strategy.get()
        logger.info(
            f"Auto-voter starting: strategy={strategy.kind.value}, mode={strategy.refresh_mode.value}, "
            f"enabled={strategy.enabled}"
        )
        if self.compound_interval_hours > 0:
            self.compounder.start(self.compound_interval_hours)
        try:
            await asyncio.gather(self.scanner.run(), self.sniper.run())
        finally:
            self.scanner.stop()
            self.compounder.stop()
