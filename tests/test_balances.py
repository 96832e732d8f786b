"""Tests for the wallet and veNFT balance scan."""

import asyncio
from dataclasses import replace

import pytest

from autovoter.balances import known_tokens, scan_balances
from autovoter.models import RewardAmount, Target, VoterAccount

from conftest import EPOCH_CLOSE, GOV, ONE, USDC, make_snapshot

BRIBE = "0xb1b1"
DUST = "0xd057"


@pytest.fixture
def snapshot():
    target = Target(
        address="0xa",
        name="vAMM-A/USDC",
        weight=ONE,
        fees={USDC: RewardAmount(5 * 10**6, 6, "USDC")},
        incentives={BRIBE: RewardAmount(ONE, 18, "BRIBE"), DUST: RewardAmount(ONE, 18, "DUST")},
    )
    base = make_snapshot([target], governance_price=0.5)
    return replace(base, prices={GOV: 0.5, USDC: 1.0, BRIBE: 2.0, DUST: 0.01})


def test_known_tokens_cover_governance_stable_and_rewards(snapshot):
    tokens = known_tokens(snapshot, GOV)
    assert tokens[GOV] == ("AERO", 18)
    assert tokens[USDC] == ("USDC", 6)
    assert tokens[BRIBE] == ("BRIBE", 18)


def test_holdings_are_valued_filtered_and_sorted(chain, snapshot):
    chain.wallet_balance = 10 * ONE  # $5.00
    chain.token_balances = {USDC: 3 * 10**6, BRIBE: 4 * ONE, DUST: 5 * ONE}
    chain.power = {1: 7 * ONE, 2: 3 * ONE}

    report = asyncio.run(scan_balances(chain, snapshot, [VoterAccount(1), VoterAccount(2)], EPOCH_CLOSE - 100))

    assert [b.symbol for b in report.tokens] == ["BRIBE", "AERO", "USDC"]
    assert [b.usd_value for b in report.tokens] == pytest.approx([8.0, 5.0, 3.0])
    assert report.tokens[0].normalized() == pytest.approx(4.0)
    assert report.total_usd == pytest.approx(16.0)
    assert report.voting_power == {1: 7 * ONE, 2: 3 * ONE}
    assert report.total_voting_power == 10 * ONE


def test_unreadable_token_is_skipped(chain, snapshot):
    chain.token_balances = {USDC: 2 * 10**6, BRIBE: ONE}
    chain.broken_balances = {BRIBE}
    report = asyncio.run(scan_balances(chain, snapshot, [], EPOCH_CLOSE - 100))
    assert [b.token for b in report.tokens] == [USDC]
    assert report.voting_power == {}


def test_governance_falls_back_to_summary_price(chain, snapshot):
    chain.wallet_balance = 4 * ONE
    report = asyncio.run(scan_balances(chain, replace(snapshot, prices={}), [], EPOCH_CLOSE - 100))
    assert [(b.symbol, b.usd_value) for b in report.tokens] == [("AERO", pytest.approx(2.0))]
