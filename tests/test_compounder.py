"""Tests for the claim + lock sequence."""

import asyncio

import pytest

from autovoter.chain import EarnedReward
from autovoter.compounder import AutoCompounder, earned_value_usd
from autovoter.errors import PreconditionError
from autovoter.events import SwapStatusEvent
from autovoter.models import RewardAmount, Target, TxStatus, VoterAccount
from autovoter.utils import epoch_id

from conftest import GOV, ONE, USDC, make_snapshot


def _snapshot():
    target = Target(
        address="0xa",
        name="vAMM-A/USDC",
        weight=100 * ONE,
        fees={USDC: RewardAmount(100 * 10**6, 6, "USDC")},
        incentives={GOV: RewardAmount(10 * ONE, 18, "AERO")},
    )
    return make_snapshot([target], governance_price=2.0)


@pytest.fixture
def compounder(chain, store, ledger, events, clock):
    store.publish(_snapshot())
    return AutoCompounder(chain, store, ledger, [VoterAccount(1), VoterAccount(2)], events, clock=clock)


def test_earned_value_uses_snapshot_decimals_and_prices():
    rewards = [
        EarnedReward("0xa-fees", USDC, 25 * 10**6, incentive=False),
        EarnedReward("0xa-bribes", GOV, 3 * ONE, incentive=True),
        EarnedReward("0xa-bribes", "0xunknown", 10**30, incentive=True),
    ]
    assert earned_value_usd(rewards, _snapshot()) == pytest.approx(25.0 + 6.0)


class TestRunOnce:
    def test_claims_then_rebases_and_locks(self, compounder, chain, ledger, clock):
        chain.earned = {
            1: [
                EarnedReward("0xa-fees", USDC, 25 * 10**6, incentive=False),
                EarnedReward("0xa-bribes", GOV, 3 * ONE, incentive=True),
            ]
        }
        chain.rebase = {1: 2 * ONE}
        chain.power = {1: 500 * ONE, 2: 500 * ONE}

        outcome = asyncio.run(compounder.run_once())

        # incentives and fees go in separate claims
        assert [[r.incentive for r in rewards] for _, rewards in chain.claims] == [[True], [False]]
        assert chain.rebase_claims == [1]
        assert chain.locks == [(1, 2 * ONE)]
        assert outcome.claimed_usd == pytest.approx(25.0 + 6.0 + 4.0)

        record = ledger.records[0]
        assert (record.kind, record.status, record.tx_hash) == ("Auto-Claim", TxStatus.CONFIRMED, "Multiple-Txs")
        epoch = ledger.epochs[epoch_id(int(clock())) - 1]
        assert epoch.earnings == pytest.approx(35.0)
        assert epoch.user_apr == pytest.approx(round(35.0 / 2000.0 * 52 * 100, 2))

    def test_failing_account_does_not_stop_the_next(self, compounder, chain, ledger, recorder):
        async def broken(account):
            if account.token_id == 1:
                raise RuntimeError("rpc timeout")
            return ONE

        chain.claimable_rebase = broken
        asyncio.run(compounder.run_once())
        assert chain.rebase_claims == [2]
        assert any("rpc timeout" in e.message for e in recorder.of(SwapStatusEvent))
        assert ledger.records[0].status == TxStatus.CONFIRMED

    def test_nothing_to_do_appends_nothing(self, compounder, ledger):
        outcome = asyncio.run(compounder.run_once())
        assert outcome.record is None
        assert ledger.records == []

    def test_no_accounts(self, chain, store, ledger, events):
        with pytest.raises(PreconditionError):
            asyncio.run(AutoCompounder(chain, store, ledger, [], events).run_once())


class TestScheduling:
    def test_start_is_rearmable_and_stop_cancels(self, compounder):
        async def scenario():
            compounder.start(24)
            first = compounder._task
            compounder.start(12)
            await asyncio.sleep(0)
            assert first.cancelled()
            assert compounder.active and compounder.interval_hours == 12
            compounder.stop()
            await asyncio.sleep(0)
            assert not compounder.active

        asyncio.run(scenario())

    def test_rejects_non_positive_interval(self, compounder):
        async def scenario():
            compounder.start(0)

        with pytest.raises(PreconditionError):
            asyncio.run(scenario())
