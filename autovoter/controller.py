"""
Command surface for externally triggered actions.

Every action ends with exactly one terminal VoteStatusEvent, success or
failure. Request-level problems (bad input, missing data) are reported the
same way instead of being raised to the caller.
"""

import logging
from typing import Any, List, Optional, Sequence, Tuple

from . import balances
from .balances import BalanceReport
from .compounder import AutoCompounder
from .errors import AutoVoterError, PreconditionError
from .events import EventBus, SwapStatusEvent, VoteStatusEvent, WalletBalancesEvent
from .executor import Sniper, VoteExecutor
from .models import StrategyConfig, VoteProjection, committed_weight, to_percentage
from .optimizer import VoteOptimizer
from .scanner import Scanner
from .state import SnapshotStore, StrategyStore
from .utils import format_token_amount

logger = logging.getLogger(__name__)


class Controller:
    def __init__(
        self,
        strategy: StrategyStore,
        store: SnapshotStore,
        executor: VoteExecutor,
        sniper: Sniper,
        scanner: Scanner,
        compounder: AutoCompounder,
        events: EventBus,
    ):
        self.strategy = strategy
        self.store = store
        self.executor = executor
        self.sniper = sniper
        self.scanner = scanner
        self.compounder = compounder
        self.events = events

    def _done(self, success: bool, message: str) -> bool:
        if success:
            logger.info(message)
        else:
            logger.warning(message)
        self.events.publish(VoteStatusEvent(success=success, message=message, terminal=True))
        return success

    def update_strategy(self, **changes: Any) -> Optional[StrategyConfig]:
        """Validate and atomically replace the strategy configuration."""
        try:
            updated = self.strategy.update(**changes)
        except (AutoVoterError, ValueError, TypeError) as e:
            self._done(False, f"Invalid strategy settings: {e}")
            return None
        self._done(True, f"Strategy updated: {updated.kind.value}, {updated.percentage}%, enabled={updated.enabled}")
        return updated

    async def trigger_vote(self) -> bool:
        try:
            outcome = await self.sniper.fire()
        except PreconditionError as e:
            return self._done(False, str(e))
        except Exception as e:
            logger.exception(f"Manual trigger failed: {e}")
            return self._done(False, f"Vote failed: {e}")
        if outcome is None:
            return self._done(False, "Vote already executed for this epoch")
        return self._done(outcome.success, f"Vote {outcome.record.status.value}: {outcome.record.tx_hash}")

    async def manual_vote(self, votes: Sequence[Tuple[str, Any]]) -> bool:
        """
        Args:
            votes: (target address, percent) pairs for the first account
        """
        try:
            record = await self.executor.manual_vote(votes)
        except AutoVoterError as e:
            return self._done(False, f"Manual vote failed: {e}")
        except Exception as e:
            logger.exception(f"Manual vote crashed: {e}")
            return self._done(False, f"Manual vote failed: {e}")
        return self._done(True, f"Manual vote confirmed: {record.tx_hash}")

    async def test_vote(self, address: str) -> bool:
        try:
            record = await self.executor.test_vote(address)
        except AutoVoterError as e:
            return self._done(False, f"Test vote failed: {e}")
        except Exception as e:
            logger.exception(f"Test vote crashed: {e}")
            return self._done(False, f"Test vote failed: {e}")
        return self._done(True, f"Test vote confirmed: {record.tx_hash}")

    async def claim_rewards(self) -> bool:
        try:
            outcome = await self.compounder.run_once()
        except AutoVoterError as e:
            return self._done(False, f"Claim failed: {e}")
        except Exception as e:
            logger.exception(f"Claim crashed: {e}")
            return self._done(False, f"Claim failed: {e}")
        if outcome.record is None:
            return self._done(True, "No rewards to claim")
        return self._done(
            not outcome.errors or bool(outcome.tx_hashes),
            f"Claimed ${outcome.claimed_usd:.2f} in {len(outcome.tx_hashes)} transactions",
        )

    def request_scan(self) -> None:
        self.scanner.request_scan()
        self.events.status("Scan requested")

    async def scan_balances(self) -> Optional[BalanceReport]:
        """Wallet token balances plus the voting power of every account."""
        self.events.publish(SwapStatusEvent("Scanning wallet tokens..."))
        try:
            report = await balances.scan_balances(
                self.executor.chain, self.store.current(), self.executor.accounts, int(self.executor.clock())
            )
        except Exception as e:
            logger.exception(f"Balance scan crashed: {e}")
            self._done(False, f"Balance scan failed: {e}")
            return None
        self.events.publish(WalletBalancesEvent(tokens=report.tokens, voting_power=dict(report.voting_power)))
        self._done(
            True,
            f"Found {len(report.tokens)} tokens; voting power "
            f"{format_token_amount(report.total_voting_power):,.2f} across {len(report.voting_power)} NFTs",
        )
        return report

    async def project(self, percentage: Any = None) -> List[VoteProjection]:
        """Projections for the first account's power, best first."""
        if not self.executor.accounts:
            raise PreconditionError("No voter accounts configured")
        snapshot = self.store.current()
        if not snapshot.targets:
            raise PreconditionError("No pool data available yet")
        pct = to_percentage(percentage) if percentage is not None else self.strategy.get().percentage
        power = await self.executor.chain.voting_power_at(self.executor.accounts[0], int(self.executor.clock()))
        weight = committed_weight(power, int(pct * 100))
        return VoteOptimizer(snapshot).project(weight)
