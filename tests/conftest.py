"""Shared fakes: an in-memory chain, canned market data and a settable clock."""

from decimal import Decimal
from typing import Dict, List, Optional, Sequence

import pytest

from autovoter.chain import ChainAdapter, CompletedTx, EarnedReward, TargetInfo, TxHandle
from autovoter.database import LedgerDatabase
from autovoter.events import EventBus, EventRecorder
from autovoter.ledger import OutcomeLedger
from autovoter.models import (
    ProtocolSummary,
    RewardAmount,
    Snapshot,
    StrategyConfig,
    StrategyKind,
    Target,
    TxStatus,
    VoterAccount,
)
from autovoter.price_feed import MarketData
from autovoter.state import SnapshotStore, StrategyStore

ONE = 10**18
GOV = "0x940181a94a35a4569e4529a3cdfb74e38fd98631"
USDC = "0x833589fcd6edb6e08f4c7c32d4f71b54bda02913"
EPOCH_CLOSE = 1_700_000_000 + 604800  # arbitrary Thursday-aligned close


class FakeClock:
    def __init__(self, now: float):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeChain(ChainAdapter):
    """Scriptable chain: pools are dicts, writes are recorded and succeed unless told otherwise."""

    def __init__(self, epoch_close: int = EPOCH_CLOSE):
        self.epoch_close = epoch_close
        self.pools: List[TargetInfo] = []
        self.power: Dict[int, int] = {}
        self.failing_votes: set = set()
        self.reverting_votes: set = set()
        self.broken_targets: set = set()
        self.votes: List[tuple] = []
        self.claims: List[tuple] = []
        self.rebase: Dict[int, int] = {}
        self.rebase_claims: List[int] = []
        self.locks: List[tuple] = []
        self.earned: Dict[int, List[EarnedReward]] = {}
        self.wallet_balance = 0
        self.token_balances: Dict[str, int] = {}
        self.broken_balances: set = set()
        self.reads = 0
        self.fail_reads = False
        self.weekly = 10_000 * ONE

    def add_pool(self, address, name, weight, fees=None, incentives=None):
        self.pools.append(
            TargetInfo(
                address=address,
                name=name,
                weight=weight,
                fee_contract=f"{address}-fees",
                incentive_contract=f"{address}-bribes",
                fees={USDC: RewardAmount(fees * 10**6, 6, "USDC")} if fees else {},
                incentives={USDC: RewardAmount(incentives * 10**6, 6, "USDC")} if incentives else {},
            )
        )

    async def current_epoch_close(self, now: int) -> int:
        if self.fail_reads:
            raise RuntimeError("rpc down")
        return self.epoch_close

    async def total_weight(self) -> int:
        if self.fail_reads:
            raise RuntimeError("rpc down")
        return sum(p.weight for p in self.pools)

    async def weekly_emission(self) -> int:
        return self.weekly

    async def target_count(self) -> int:
        return len(self.pools)

    async def target_at(self, index: int) -> str:
        return self.pools[index].address

    async def weight(self, target: str) -> int:
        return next(p.weight for p in self.pools if p.address == target)

    async def target_info(self, target: str, epoch_start: int) -> Optional[TargetInfo]:
        self.reads += 1
        if target in self.broken_targets:
            raise RuntimeError(f"read failed for {target}")
        return next((p for p in self.pools if p.address == target), None)

    async def voting_power_at(self, account: VoterAccount, timestamp: int) -> int:
        return self.power.get(account.token_id, 0)

    def governance_token(self) -> str:
        return GOV

    async def token_balance(self, token: str, owner: Optional[str] = None) -> int:
        if token in self.broken_balances:
            raise RuntimeError(f"balanceOf reverted for {token}")
        if token == GOV:
            return self.wallet_balance
        return self.token_balances.get(token, 0)

    async def earned_rewards(self, account: VoterAccount, targets: Sequence[Target]) -> List[EarnedReward]:
        return list(self.earned.get(account.token_id, []))

    async def claimable_rebase(self, account: VoterAccount) -> int:
        return self.rebase.get(account.token_id, 0)

    async def submit_vote(self, account: VoterAccount, targets: Sequence[str], weights: Sequence[int]) -> TxHandle:
        if account.token_id in self.failing_votes:
            raise RuntimeError("insufficient gas")
        self.votes.append((account.token_id, list(targets), list(weights)))
        status = TxStatus.FAILED if account.token_id in self.reverting_votes else TxStatus.CONFIRMED
        return CompletedTx(tx_hash=f"0xvote{len(self.votes)}", status=status)

    async def submit_claim(self, account: VoterAccount, rewards: Sequence[EarnedReward]) -> TxHandle:
        self.claims.append((account.token_id, list(rewards)))
        return CompletedTx(tx_hash=f"0xclaim{len(self.claims)}")

    async def submit_rebase_claim(self, account: VoterAccount) -> TxHandle:
        self.rebase_claims.append(account.token_id)
        self.wallet_balance += self.rebase.pop(account.token_id, 0)
        return CompletedTx(tx_hash=f"0xrebase{len(self.rebase_claims)}")

    async def submit_reward_lock(self, account: VoterAccount, amount: int) -> TxHandle:
        self.locks.append((account.token_id, amount))
        self.wallet_balance -= amount
        return CompletedTx(tx_hash=f"0xlock{len(self.locks)}")


class FakeMarket(MarketData):
    def __init__(self, prices=None, liquidity=None):
        self.prices = prices if prices is not None else {GOV: 1.0, USDC: 1.0}
        self.liquidity = liquidity or {}

    async def prices_for(self, tokens):
        return {t: self.prices[t] for t in tokens if t in self.prices}

    async def liquidity_for(self, pools):
        return {p.lower(): self.liquidity[p.lower()] for p in pools if p.lower() in self.liquidity}


def make_target(address, weight, rewards_usd, name=None, liquidity=0.0, apr=0.0) -> Target:
    return Target(
        address=address,
        name=name or address.upper(),
        weight=weight,
        fees_usd=rewards_usd,
        liquidity_usd=liquidity,
        apr=apr,
    )


def make_snapshot(targets, governance_price=1.0, epoch_close=EPOCH_CLOSE) -> Snapshot:
    return Snapshot(
        targets=tuple(targets),
        summary=ProtocolSummary(
            total_weight=sum(t.weight for t in targets),
            epoch_close=epoch_close,
            governance_price=governance_price,
            active_pools=len(targets),
        ),
        prices={GOV: governance_price, USDC: 1.0},
    )


def scenario_targets():
    """A(100 votes, $200), B(50, $150), C(10, $50); weights in whole tokens."""
    return [
        make_target("a", 100 * ONE, 200.0),
        make_target("b", 50 * ONE, 150.0),
        make_target("c", 10 * ONE, 50.0),
    ]


@pytest.fixture
def clock():
    return FakeClock(EPOCH_CLOSE - 3 * 86400)


@pytest.fixture
def events():
    bus = EventBus()
    return bus


@pytest.fixture
def recorder(events):
    rec = EventRecorder()
    events.subscribe(rec)
    return rec


@pytest.fixture
def database(tmp_path):
    return LedgerDatabase(str(tmp_path / "ledger.db"))


@pytest.fixture
def ledger(database, events, clock):
    return OutcomeLedger(database, events, clock=clock)


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def store():
    return SnapshotStore()


@pytest.fixture
def strategy():
    return StrategyStore(
        StrategyConfig(enabled=True, kind=StrategyKind.SINGLE, percentage=Decimal("100"))
    )
