"""
Durable storage for the outcome ledger.
Uses SQLite with SQLAlchemy ORM. Both documents (execution records and epoch
records) are overwritten whole on every save.
"""

import json
import logging
import threading
from typing import Dict, List

from sqlalchemy import Column, Float, Integer, String, Text, create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import EpochRecord, ExecutionRecord, TxStatus

logger = logging.getLogger(__name__)

Base = declarative_base()


class ExecutionRow(Base):
    """One executed transaction; position 0 is the newest."""

    __tablename__ = "execution_records"

    position = Column(Integer, primary_key=True)
    timestamp = Column(Integer)
    kind = Column(String)
    tx_hash = Column(String)
    targets = Column(Text)  # JSON list of target names
    value_usd = Column(Float, default=0.0)
    status = Column(String)
    error = Column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<ExecutionRow(kind={self.kind}, tx={self.tx_hash}, status={self.status})>"


class EpochRow(Base):
    """Per-epoch index and realized performance."""

    __tablename__ = "epoch_records"

    epoch_id = Column(Integer, primary_key=True)
    index_apr = Column(Float, default=0.0)
    user_apr = Column(Float, default=0.0)
    earnings = Column(Float, default=0.0)
    pools_voted = Column(Integer, default=0)
    timestamp = Column(Integer)

    def __repr__(self) -> str:
        return f"<EpochRow(epoch_id={self.epoch_id}, earnings=${self.earnings})>"


class LedgerDatabase:
    """Database interface for the outcome ledger."""

    def __init__(self, db_path: str):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file (":memory:" for a throwaway store)
        """
        if db_path == ":memory:":
            # One shared connection, so saves from worker threads hit the same store
            self.engine = create_engine(
                "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
            )
        else:
            self.engine = create_engine(f"sqlite:///{db_path}")
        self._write_lock = threading.Lock()
        self.Session = sessionmaker(bind=self.engine)
        Base.metadata.create_all(self.engine)
        logger.info(f"Ledger database initialized: {db_path}")

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.Session()

    def save_transactions(self, records: List[ExecutionRecord]) -> None:
        """Replace the stored execution records (newest first)."""
        with self._write_lock, self.get_session() as session:
            session.query(ExecutionRow).delete()
            for position, record in enumerate(records):
                session.add(
                    ExecutionRow(
                        position=position,
                        timestamp=record.timestamp,
                        kind=record.kind,
                        tx_hash=record.tx_hash,
                        targets=json.dumps(list(record.targets)),
                        value_usd=record.value_usd,
                        status=record.status.value,
                        error=record.error,
                    )
                )
            session.commit()

    def load_transactions(self) -> List[ExecutionRecord]:
        with self.get_session() as session:
            rows = session.query(ExecutionRow).order_by(ExecutionRow.position).all()
            return [
                ExecutionRecord(
                    timestamp=row.timestamp,
                    kind=row.kind,
                    tx_hash=row.tx_hash,
                    targets=json.loads(row.targets or "[]"),
                    value_usd=row.value_usd or 0.0,
                    status=TxStatus(row.status),
                    error=row.error,
                )
                for row in rows
            ]

    def save_epochs(self, epochs: Dict[int, EpochRecord]) -> None:
        """
        Replace the stored epoch records.

        Safe to call from a worker thread: the values are read under the write
        lock, so the last save to commit always carries the newest state.
        """
        with self._write_lock, self.get_session() as session:
            session.query(EpochRow).delete()
            for record in list(epochs.values()):
                session.add(EpochRow(**record.to_dict()))
            session.commit()

    def load_epochs(self) -> Dict[int, EpochRecord]:
        with self.get_session() as session:
            rows = session.query(EpochRow).order_by(EpochRow.epoch_id).all()
            return {
                row.epoch_id: EpochRecord(
                    epoch_id=row.epoch_id,
                    index_apr=row.index_apr or 0.0,
                    user_apr=row.user_apr or 0.0,
                    earnings=row.earnings or 0.0,
                    pools_voted=row.pools_voted or 0,
                    timestamp=row.timestamp or 0,
                )
                for row in rows
            }
