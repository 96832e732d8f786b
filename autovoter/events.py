"""
Status events pushed to the control channel.

Every event kind is its own frozen dataclass with a `kind` tag; `Event` is the
closed union of them. Transport framing is left to subscribers, which can use
`to_payload` to get a JSON-safe dict.
"""

import logging
from dataclasses import asdict, dataclass, field, is_dataclass
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, List, Mapping, Tuple, Union

from .balances import TokenBalance
from .models import EpochRecord, ExecutionRecord, ProtocolSummary, Target

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusEvent:
    kind: ClassVar[str] = "status"
    message: str


@dataclass(frozen=True)
class ScanningProgressEvent:
    kind: ClassVar[str] = "scanning_progress"
    scanned: int
    total: int
    active: int


@dataclass(frozen=True)
class SummaryEvent:
    kind: ClassVar[str] = "summary"
    summary: ProtocolSummary


@dataclass(frozen=True)
class TargetsEvent:
    kind: ClassVar[str] = "targets"
    targets: Tuple[Target, ...]


@dataclass(frozen=True)
class VoteStatusEvent:
    kind: ClassVar[str] = "vote_status"
    success: bool
    message: str
    terminal: bool = False


@dataclass(frozen=True)
class SwapStatusEvent:
    kind: ClassVar[str] = "swap_status"
    message: str


@dataclass(frozen=True)
class EpochHistoryUpdateEvent:
    kind: ClassVar[str] = "epoch_history_update"
    history: Mapping[int, EpochRecord]


@dataclass(frozen=True)
class TransactionUpdateEvent:
    kind: ClassVar[str] = "transaction_update"
    history: Tuple[ExecutionRecord, ...]
    total_earnings: float = 0.0


@dataclass(frozen=True)
class WalletBalancesEvent:
    kind: ClassVar[str] = "wallet_balances"
    tokens: Tuple[TokenBalance, ...]
    voting_power: Mapping[int, int]


Event = Union[
    StatusEvent,
    ScanningProgressEvent,
    SummaryEvent,
    TargetsEvent,
    VoteStatusEvent,
    SwapStatusEvent,
    EpochHistoryUpdateEvent,
    TransactionUpdateEvent,
    WalletBalancesEvent,
]

Handler = Callable[[Event], Any]


def _jsonable(value: Any) -> Any:
    # Big integers (weights, raw amounts) travel as decimal strings.
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value) if abs(value) > 2**53 else value
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        return _jsonable(asdict(value))
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if hasattr(value, "numerator") and hasattr(value, "denominator"):
        return float(value)
    return value


def to_payload(event: Event) -> Dict[str, Any]:
    """Render an event as {"type": kind, "data": {...}}."""
    return {"type": event.kind, "data": _jsonable(asdict(event))}


class EventBus:
    """Fan-out of events to subscribers. A failing subscriber never affects the publisher."""

    def __init__(self):
        self._handlers: List[Handler] = []

    def subscribe(self, handler: Handler) -> Handler:
        self._handlers.append(handler)
        return handler

    def unsubscribe(self, handler: Handler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def publish(self, event: Event) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as e:
                logger.warning(f"Event handler {handler!r} failed on {event.kind}: {e}")

    def status(self, message: str) -> None:
        self.publish(StatusEvent(message))


@dataclass
class EventRecorder:
    """Subscriber that keeps every event it sees; handy for the CLI and tests."""

    events: List[Event] = field(default_factory=list)

    def __call__(self, event: Event) -> None:
        self.events.append(event)

    def of(self, event_type) -> List[Event]:
        return [e for e in self.events if isinstance(e, event_type)]
