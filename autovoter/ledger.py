"""
Outcome ledger: executed transactions plus per-epoch performance.

Every mutation is persisted immediately and the full ledger is broadcast.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Iterable, List, Optional

from config.settings import (
    INDEX_MIN_LIQUIDITY_USD,
    INDEX_TOP_POOLS,
    LEDGER_CAP,
    WEEKS_PER_YEAR,
)

from .database import LedgerDatabase
from .events import EpochHistoryUpdateEvent, EventBus, TransactionUpdateEvent
from .models import EpochRecord, ExecutionRecord, Snapshot, Target, TxStatus
from .utils import epoch_id

logger = logging.getLogger(__name__)


def index_yield(targets: Iterable[Target]) -> float:
    """Average yield of the top targets among those above the liquidity floor."""
    eligible = [t for t in targets if t.liquidity_usd >= INDEX_MIN_LIQUIDITY_USD]
    top = sorted(eligible, key=lambda t: t.apr, reverse=True)[:INDEX_TOP_POOLS]
    if not top:
        return 0.0
    return sum(t.apr for t in top) / len(top)


class OutcomeLedger:
    """Append-only execution history and per-epoch records."""

    def __init__(
        self,
        database: LedgerDatabase,
        events: Optional[EventBus] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.database = database
        self.events = events or EventBus()
        self.clock = clock
        self.records: List[ExecutionRecord] = database.load_transactions()
        self.epochs: Dict[int, EpochRecord] = database.load_epochs()
        logger.info(
            f"Loaded {len(self.records)} transactions and history for {len(self.epochs)} epochs"
        )

    # ═══ Execution records ═══

    @property
    def total_earnings(self) -> float:
        return sum(r.value_usd for r in self.records)

    def _publish_transactions(self) -> None:
        self.database.save_transactions(self.records)
        self.events.publish(TransactionUpdateEvent(history=tuple(self.records), total_earnings=self.total_earnings))

    def append(
        self,
        kind: str,
        tx_hash: str,
        targets: List[str],
        value_usd: float,
        status: TxStatus,
        error: Optional[str] = None,
    ) -> ExecutionRecord:
        record = ExecutionRecord(
            timestamp=int(self.clock()),
            kind=kind,
            tx_hash=tx_hash,
            targets=list(targets),
            value_usd=value_usd or 0.0,
            status=status,
            error=error,
        )
        self.records.insert(0, record)
        del self.records[LEDGER_CAP:]
        self._publish_transactions()
        logger.info(f"Ledger: {kind} {tx_hash} {status.value} (${record.value_usd:.2f})")
        return record

    def update_status(self, tx_hash: str, status: TxStatus, error: Optional[str] = None) -> bool:
        for record in self.records:
            if record.tx_hash == tx_hash:
                record.status = status
                record.error = error
                self._publish_transactions()
                return True
        return False

    # ═══ Epoch records ═══

    def _epoch(self, eid: int) -> EpochRecord:
        record = self.epochs.get(eid)
        if record is None:
            record = EpochRecord(epoch_id=eid, timestamp=int(self.clock()))
            self.epochs[eid] = record
        return record

    def _publish_epochs(self) -> None:
        self.database.save_epochs(self.epochs)
        self.events.publish(EpochHistoryUpdateEvent(history=dict(self.epochs)))

    def _set_index(self, snapshot: Snapshot) -> Optional[EpochRecord]:
        close = snapshot.summary.epoch_close
        if not close:
            return None
        record = self._epoch(epoch_id(close))
        record.index_apr = round(index_yield(snapshot.targets), 2)
        return record

    def track_index(self, snapshot: Snapshot) -> Optional[EpochRecord]:
        """Recompute the index yield of the snapshot's epoch."""
        record = self._set_index(snapshot)
        if record is not None:
            self._publish_epochs()
        return record

    async def refresh_index(self, snapshot: Snapshot) -> Optional[EpochRecord]:
        """Like `track_index`, with the database write moved off the event loop."""
        record = self._set_index(snapshot)
        if record is None:
            return None
        await asyncio.to_thread(self.database.save_epochs, self.epochs)
        self.events.publish(EpochHistoryUpdateEvent(history=dict(self.epochs)))
        return record

    def record_participation(self, epoch_close: int, pools_voted: int) -> EpochRecord:
        record = self._epoch(epoch_id(epoch_close))
        record.pools_voted = pools_voted
        self._publish_epochs()
        return record

    def record_realized(self, usd_amount: float, total_power_usd: float) -> Optional[EpochRecord]:
        """
        Add claimed USD to the epoch the claim pays out for (the previous one).

        Args:
            usd_amount: USD value just claimed
            total_power_usd: USD value of the operator's total voting power

        Returns:
            The updated EpochRecord, or None when nothing was claimed
        """
        if usd_amount <= 0:
            return None
        record = self._epoch(epoch_id(int(self.clock())) - 1)
        record.earnings += usd_amount
        if total_power_usd > 0:
            record.user_apr = round(record.earnings / total_power_usd * WEEKS_PER_YEAR * 100, 2)
        self._publish_epochs()
        logger.info(
            f"Realized earnings recorded: epoch {record.epoch_id}, +${usd_amount:.2f}, "
            f"total ${record.earnings:.2f}, APR {record.user_apr}%"
        )
        return record
