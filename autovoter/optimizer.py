"""
Vote allocation optimizer.

Given a snapshot and a voting-weight budget, proposes the set of targets to
vote for and splits the weight equally among them. Share math is exact
(integers and Fractions); floats only appear once USD values are produced.
"""

import logging
from fractions import Fraction
from typing import List, Sequence

from config.settings import MAX_OPTIMIZED_POOLS, ONE_E18, WEEKS_PER_YEAR

from .models import Allocation, Snapshot, StrategyConfig, StrategyKind, Target, VoteProjection

logger = logging.getLogger(__name__)


def vote_share(current_weight: int, added_weight: int) -> Fraction:
    """Share of a target's rewards earned by adding `added_weight` to it."""
    if added_weight <= 0:
        return Fraction(0)
    return Fraction(added_weight, current_weight + added_weight)


def weight_value_usd(weight: int, governance_price: float) -> float:
    return float(Fraction(weight, ONE_E18)) * governance_price


def project_target(target: Target, added_weight: int, governance_price: float) -> VoteProjection:
    """
    Project the weekly reward and yield of adding `added_weight` to one target.

    Args:
        target: Target being evaluated
        added_weight: Hypothetical vote weight (raw units)
        governance_price: USD price of the token backing voting power

    Returns:
        VoteProjection for the target
    """
    share = vote_share(target.weight, added_weight)
    reward = float(share) * target.total_rewards_usd
    committed_usd = weight_value_usd(added_weight, governance_price)
    apr = (reward / committed_usd) * WEEKS_PER_YEAR * 100 if committed_usd > 0 else 0.0
    return VoteProjection(
        target=target,
        added_weight=added_weight,
        share=share,
        projected_reward_usd=reward,
        projected_apr=apr,
    )


class VoteOptimizer:
    """Chooses vote targets for a fixed weight budget."""

    def __init__(self, snapshot: Snapshot):
        self.snapshot = snapshot
        self.governance_price = snapshot.summary.governance_price

    def project(self, added_weight: int) -> List[VoteProjection]:
        """
        Project every target independently with the full `added_weight`,
        best first.

        The committed value is the same for every target, so ranking by
        projected reward is the same as ranking by projected yield; it also
        stays meaningful when no governance price is known. Ties keep
        snapshot order.
        """
        projections = [project_target(t, added_weight, self.governance_price) for t in self.snapshot.targets]
        return sorted(projections, key=lambda p: p.projected_reward_usd, reverse=True)

    def _split(self, ranked: Sequence[VoteProjection], weight: int) -> List[VoteProjection]:
        per_target = weight // len(ranked) if ranked else 0
        return [project_target(p.target, per_target, self.governance_price) for p in ranked]

    def _allocation(self, kind: StrategyKind, projections: List[VoteProjection]) -> Allocation:
        total = sum(p.projected_reward_usd for p in projections)
        return Allocation(strategy=kind, projections=tuple(projections), projected_reward_usd=total)

    def single(self, weight: int) -> Allocation:
        ranked = self.project(weight)
        return self._allocation(StrategyKind.SINGLE, ranked[:1])

    def diversified(self, weight: int, count: int) -> Allocation:
        ranked = self.project(weight)
        chosen = ranked[: max(1, min(count, len(ranked)))]
        return self._allocation(StrategyKind.DIVERSIFIED, self._split(chosen, weight))

    def optimized(self, weight: int, max_pools: int = MAX_OPTIMIZED_POOLS) -> Allocation:
        """
        Greedy expanding search over the ranked list.

        Starting from the best target, try the top 2, 3, ... targets with the
        weight split equally and keep growing while the summed projected
        reward increases. Stops at the first addition that does not improve.
        """
        ranked = self.project(weight)
        if not ranked:
            return self._allocation(StrategyKind.OPTIMIZED, [])

        best = ranked[:1]
        best_total = best[0].projected_reward_usd

        for n in range(2, min(max_pools, len(ranked)) + 1):
            candidate = self._split(ranked[:n], weight)
            total = sum(p.projected_reward_usd for p in candidate)
            if total > best_total:
                best, best_total = candidate, total
            else:
                break

        logger.info(f"Optimal strategy found: diversify across {len(best)} pools")
        return self._allocation(StrategyKind.OPTIMIZED, best)

    def allocate(self, strategy: StrategyConfig, weight: int) -> Allocation:
        if strategy.kind == StrategyKind.OPTIMIZED:
            return self.optimized(weight)
        if strategy.kind == StrategyKind.DIVERSIFIED:
            return self.diversified(weight, strategy.diversification_count)
        return self.single(weight)
