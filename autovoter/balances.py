"""
Wallet and veNFT balance scan.

Reports the signer wallet's holdings of the governance token, the stable
token and every reward token seen in the current snapshot, valued at
snapshot prices, plus the voting power of each configured account.
"""

import logging
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Dict, Mapping, Sequence, Tuple

from config.settings import BALANCE_MIN_USD, GOVERNANCE_SYMBOL, STABLE_TOKEN

from .chain import ChainAdapter
from .models import Snapshot, VoterAccount

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenBalance:
    token: str
    symbol: str
    amount: int
    decimals: int
    usd_value: float

    def normalized(self) -> float:
        return self.amount / (10**self.decimals)


@dataclass(frozen=True)
class BalanceReport:
    tokens: Tuple[TokenBalance, ...] = ()
    voting_power: Mapping[int, int] = field(default_factory=dict)

    @property
    def total_voting_power(self) -> int:
        return sum(self.voting_power.values())

    @property
    def total_usd(self) -> float:
        return sum(b.usd_value for b in self.tokens)


def known_tokens(snapshot: Snapshot, governance_token: str) -> Dict[str, Tuple[str, int]]:
    """Token address -> (symbol, decimals) for every token worth checking."""
    tokens = {governance_token.lower(): (GOVERNANCE_SYMBOL, 18), STABLE_TOKEN: ("USDC", 6)}
    for target in snapshot.targets:
        for token, reward in list(target.fees.items()) + list(target.incentives.items()):
            tokens.setdefault(token.lower(), (reward.symbol, reward.decimals))
    return tokens


async def scan_balances(
    chain: ChainAdapter,
    snapshot: Snapshot,
    accounts: Sequence[VoterAccount],
    now: int,
) -> BalanceReport:
    """
    Read wallet balances and per-account voting power.

    A token whose balance read fails is skipped. Holdings worth less than
    BALANCE_MIN_USD are dropped and the rest is sorted by USD value.

    Raises:
        Exception: from the chain adapter when a voting power read fails
    """
    governance = chain.governance_token().lower()
    holdings = []
    for token, (symbol, decimals) in known_tokens(snapshot, governance).items():
        try:
            amount = await chain.token_balance(token)
        except Exception as e:
            logger.debug(f"Balance read failed for {token}: {e}")
            continue
        if amount <= 0:
            continue

        price = snapshot.price(token)
        if not price and token == governance:
            price = snapshot.summary.governance_price
        usd_value = float(Fraction(amount, 10**decimals)) * price
        if usd_value < BALANCE_MIN_USD:
            continue
        holdings.append(TokenBalance(token, symbol, amount, decimals, usd_value))

    holdings.sort(key=lambda b: b.usd_value, reverse=True)

    power = {}
    for account in accounts:
        power[account.token_id] = await chain.voting_power_at(account, now)

    logger.info(f"Balance scan: {len(holdings)} tokens worth ${sum(b.usd_value for b in holdings):,.2f}")
    return BalanceReport(tokens=tuple(holdings), voting_power=power)
