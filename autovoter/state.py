"""
Versioned state cells shared by the control loops.

Writers publish a whole new value; readers get an immutable reference and
never observe a half-updated snapshot.
"""

import dataclasses
import logging
import threading
from typing import Generic, Optional, TypeVar

from .models import Snapshot, StrategyConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


class VersionedCell(Generic[T]):
    """Single-value cell; every publish bumps the version."""

    def __init__(self, initial: T):
        self._lock = threading.Lock()
        self._value = initial
        self._version = 0

    def get(self) -> T:
        return self._value

    @property
    def version(self) -> int:
        return self._version

    def publish(self, value: T) -> int:
        with self._lock:
            self._version += 1
            self._value = value
            return self._version


class SnapshotStore(VersionedCell[Snapshot]):
    """Holds the current Snapshot. Only the scanner writes here."""

    def __init__(self):
        super().__init__(Snapshot())

    def current(self) -> Snapshot:
        return self.get()

    def publish(self, snapshot: Snapshot) -> int:
        with self._lock:
            self._version += 1
            self._value = dataclasses.replace(snapshot, version=self._version)
            return self._version

    @property
    def epoch_close(self) -> Optional[int]:
        return self.get().summary.epoch_close

    def set_epoch_close(self, epoch_close: int) -> None:
        """Publish a copy of the current snapshot with a new epoch-close time."""
        snapshot = self.get()
        summary = dataclasses.replace(snapshot.summary, epoch_close=int(epoch_close))
        self.publish(dataclasses.replace(snapshot, summary=summary))
        logger.debug(f"Epoch close set to {epoch_close}")

    def has_targets(self) -> bool:
        return bool(self.get().targets)


class StrategyStore(VersionedCell[StrategyConfig]):
    """Holds the StrategyConfig. Only the control channel writes here."""

    def update(self, **changes) -> StrategyConfig:
        with self._lock:
            updated = dataclasses.replace(self._value, **changes)
            self._version += 1
            self._value = updated
            return updated


__all__ = ["VersionedCell", "SnapshotStore", "StrategyStore"]
