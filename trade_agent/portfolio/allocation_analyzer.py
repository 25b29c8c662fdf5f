"""Current vs. target allocation analysis.

Algorithm:
1. Validate the snapshot and targets (no network involved)
2. current% = asset USD value / total USD value * 100 (0 when total is 0)
3. difference = current% - target%, for every mint held or targeted

The analyzer is a pure function of its inputs; running it twice on the
same snapshot yields identical deviations.
"""

import math
from typing import Dict, List, Sequence

from trade_agent.portfolio.base import (
    AllocationDeviation,
    PortfolioSnapshot,
    TargetAllocation,
)
from trade_agent.utils.exceptions import ValidationError
from trade_agent.utils.logging import get_logger

logger = get_logger(__name__)

# Rounding tolerance for the sum of current percentages
PERCENT_SUM_EPSILON = 1e-6


class AllocationAnalyzer:
    """Computes per-asset deviations from target allocation.

    Example:
        >>> analyzer = AllocationAnalyzer()
        >>> deviations = analyzer.analyze(snapshot, config.target_allocations)
        >>> [(d.symbol, round(d.difference, 1)) for d in deviations]
        [('SOL', 20.0), ('USDC', -20.0)]
    """

    def analyze(
        self,
        snapshot: PortfolioSnapshot,
        targets: Sequence[TargetAllocation],
    ) -> List[AllocationDeviation]:
        """Compare current holdings with target allocation.

        Held assets come first in snapshot order, then targeted mints that
        are not held (current% = 0, difference = -target%).

        Args:
            snapshot: Current holdings
            targets: Configured target allocation

        Returns:
            One AllocationDeviation per mint held or targeted

        Raises:
            ValidationError: On negative balances, non-finite prices,
                out-of-range or duplicated targets
        """
        self.validate(snapshot, targets)

        total_value = snapshot.total_value
        target_by_mint: Dict[str, TargetAllocation] = {t.mint: t for t in targets}

        deviations: List[AllocationDeviation] = []
        seen = set()

        for asset in snapshot.assets:
            current = self._percentage(asset.usd_value, total_value)
            target = target_by_mint.get(asset.mint)
            target_pct = target.target_percentage if target else 0.0
            deviations.append(
                AllocationDeviation(
                    mint=asset.mint,
                    symbol=asset.symbol,
                    current_percentage=current,
                    target_percentage=target_pct,
                    difference=current - target_pct,
                    max_deviation=target.max_deviation if target else None,
                )
            )
            seen.add(asset.mint)

        for target in targets:
            if target.mint in seen:
                continue
            deviations.append(
                AllocationDeviation(
                    mint=target.mint,
                    symbol=target.symbol or target.mint[:4],
                    current_percentage=0.0,
                    target_percentage=target.target_percentage,
                    difference=-target.target_percentage,
                    max_deviation=target.max_deviation,
                )
            )

        if total_value > 0:
            percent_sum = sum(d.current_percentage for d in deviations)
            if abs(percent_sum - 100.0) > PERCENT_SUM_EPSILON:
                logger.warning(
                    "Current percentages sum to %.6f for wallet %s",
                    percent_sum,
                    snapshot.wallet,
                )

        logger.debug(
            "Analyzed %d assets (total $%.2f) against %d targets",
            len(snapshot.assets),
            total_value,
            len(targets),
        )
        return deviations

    def needs_rebalancing(
        self,
        deviations: Sequence[AllocationDeviation],
        threshold: float,
    ) -> bool:
        """True if any deviation exceeds its tolerance."""
        return any(
            abs(d.difference) > self._tolerance(d, threshold) for d in deviations
        )

    @staticmethod
    def _tolerance(deviation: AllocationDeviation, threshold: float) -> float:
        if deviation.max_deviation is not None:
            return deviation.max_deviation
        return threshold

    @staticmethod
    def _percentage(value: float, total: float) -> float:
        if total <= 0:
            return 0.0
        return value / total * 100.0

    def validate(
        self,
        snapshot: PortfolioSnapshot,
        targets: Sequence[TargetAllocation],
    ) -> None:
        """Reject malformed snapshots and targets.

        Raises:
            ValidationError: Describing the first problem found
        """
        mints = set()
        for asset in snapshot.assets:
            if asset.raw_balance < 0:
                raise ValidationError(
                    f"Negative balance for {asset.symbol}: {asset.raw_balance}"
                )
            if asset.decimals < 0:
                raise ValidationError(
                    f"Negative decimals for {asset.symbol}: {asset.decimals}"
                )
            if not math.isfinite(asset.price) or asset.price < 0:
                raise ValidationError(f"Invalid price for {asset.symbol}: {asset.price}")
            if asset.mint in mints:
                raise ValidationError(f"Duplicate asset in snapshot: {asset.mint}")
            mints.add(asset.mint)

        target_mints = set()
        for target in targets:
            pct = target.target_percentage
            if not math.isfinite(pct) or not 0 <= pct <= 100:
                raise ValidationError(
                    f"Target percentage for {target.mint} must be in [0, 100], got {pct}"
                )
            if target.max_deviation is not None and target.max_deviation < 0:
                raise ValidationError(
                    f"max_deviation for {target.mint} must be >= 0, got {target.max_deviation}"
                )
            if target.mint in target_mints:
                raise ValidationError(f"Duplicate target allocation: {target.mint}")
            target_mints.add(target.mint)

        total_target = sum(t.target_percentage for t in targets)
        if total_target > 100.0 + PERCENT_SUM_EPSILON:
            raise ValidationError(
                f"Target percentages sum to {total_target:.2f}, more than 100"
            )
