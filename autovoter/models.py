"""
Data model shared by the scanner, optimizer, executor and ledger.

On-chain amounts (weights, voting power, raw reward amounts) are plain Python
ints throughout. Floats only appear for USD-denominated values.
"""

from dataclasses import asdict, dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from fractions import Fraction
from typing import Any, Dict, Mapping, Optional, Tuple

from config.settings import BASIS_POINTS, ZERO_ADDRESS

from .errors import PreconditionError


class StrategyKind(str, Enum):
    SINGLE = "single"
    DIVERSIFIED = "diversified"
    OPTIMIZED = "optimized"


class RefreshMode(str, Enum):
    SCHEDULED = "scheduled"
    IMMEDIATE = "immediate"


class TxStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    FAILED = "Failed"


@dataclass(frozen=True)
class RewardAmount:
    """Raw amount of one reward token accrued on a target."""

    amount: int
    decimals: int = 18
    symbol: str = "UNKNOWN"

    def normalized(self) -> float:
        return self.amount / (10**self.decimals)


@dataclass(frozen=True)
class Target:
    """A votable pool and the rewards it currently offers to voters."""

    address: str
    name: str
    weight: int
    fees: Mapping[str, RewardAmount] = field(default_factory=dict)
    incentives: Mapping[str, RewardAmount] = field(default_factory=dict)
    fees_usd: float = 0.0
    incentives_usd: float = 0.0
    liquidity_usd: float = 0.0
    apr: float = 0.0
    emissions_share: float = 0.0
    emissions_usd: float = 0.0
    fee_contract: str = ZERO_ADDRESS
    incentive_contract: str = ZERO_ADDRESS

    def __post_init__(self):
        if self.weight < 0:
            raise ValueError(f"Target {self.address} has negative weight {self.weight}")

    @property
    def total_rewards_usd(self) -> float:
        return self.fees_usd + self.incentives_usd


@dataclass(frozen=True)
class ProtocolSummary:
    total_weight: int = 0
    weekly_emission: int = 0
    epoch_close: Optional[int] = None
    total_fees_usd: float = 0.0
    total_incentives_usd: float = 0.0
    total_rewards_usd: float = 0.0
    total_pools: int = 0
    active_pools: int = 0
    governance_price: float = 0.0


@dataclass(frozen=True)
class Snapshot:
    """Immutable view of every active target plus the protocol summary."""

    targets: Tuple[Target, ...] = ()
    summary: ProtocolSummary = field(default_factory=ProtocolSummary)
    prices: Mapping[str, float] = field(default_factory=dict)
    version: int = 0

    def target(self, address: str) -> Optional[Target]:
        address = address.lower()
        for target in self.targets:
            if target.address.lower() == address:
                return target
        return None

    def price(self, token: str) -> float:
        return self.prices.get(token.lower(), 0.0)


@dataclass(frozen=True)
class VoterAccount:
    """A veNFT owned by the operator; voting power is queried per timestamp."""

    token_id: int

    def __str__(self) -> str:
        return f"#{self.token_id}"


def to_percentage(value: Any) -> Decimal:
    """Parse a vote percentage with at most two decimals."""
    try:
        percentage = Decimal(str(value))
    except InvalidOperation:
        raise PreconditionError(f"Invalid vote percentage: {value!r}")
    if not percentage.is_finite() or percentage <= 0 or percentage > 100:
        raise PreconditionError(f"Vote percentage must be in (0, 100], got {value}")
    if percentage != percentage.quantize(Decimal("0.01")):
        raise PreconditionError(f"Vote percentage supports two decimals, got {value}")
    return percentage


@dataclass(frozen=True)
class StrategyConfig:
    enabled: bool = False
    kind: StrategyKind = StrategyKind.OPTIMIZED
    diversification_count: int = 3
    percentage: Decimal = Decimal("100")
    refresh_mode: RefreshMode = RefreshMode.SCHEDULED

    def __post_init__(self):
        object.__setattr__(self, "percentage", to_percentage(self.percentage))
        object.__setattr__(self, "kind", StrategyKind(self.kind))
        object.__setattr__(self, "refresh_mode", RefreshMode(self.refresh_mode))
        if self.diversification_count < 1:
            raise PreconditionError("Diversification needs at least one pool")

    @property
    def percentage_bp(self) -> int:
        """Percentage in basis points (100% == 10000)."""
        return int(self.percentage * 100)


def committed_weight(power: int, percentage_bp: int) -> int:
    return (power * percentage_bp) // BASIS_POINTS


@dataclass(frozen=True)
class VoteProjection:
    """Hypothetical outcome of adding `added_weight` to one target."""

    target: Target
    added_weight: int
    share: Fraction
    projected_reward_usd: float
    projected_apr: float


@dataclass(frozen=True)
class Allocation:
    strategy: StrategyKind
    projections: Tuple[VoteProjection, ...]
    projected_reward_usd: float

    @property
    def targets(self) -> Tuple[Target, ...]:
        return tuple(p.target for p in self.projections)

    @property
    def names(self) -> list:
        return [p.target.name for p in self.projections]


@dataclass
class ExecutionRecord:
    timestamp: int
    kind: str
    tx_hash: str
    targets: list
    value_usd: float
    status: TxStatus
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExecutionRecord":
        return cls(
            timestamp=int(data["timestamp"]),
            kind=str(data["kind"]),
            tx_hash=str(data["tx_hash"]),
            targets=list(data.get("targets") or []),
            value_usd=float(data.get("value_usd") or 0.0),
            status=TxStatus(data["status"]),
            error=data.get("error"),
        )


@dataclass
class EpochRecord:
    epoch_id: int
    index_apr: float = 0.0
    user_apr: float = 0.0
    earnings: float = 0.0
    pools_voted: int = 0
    timestamp: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
