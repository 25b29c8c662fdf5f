"""Unit tests for RebalancePlanner."""

import pytest

from conftest import JUP_MINT, jup, make_snapshot, sol, usdc, usdt
from trade_agent.data.base import SOL_MINT, USDC_MINT, USDT_MINT, TokenInfo
from trade_agent.portfolio.allocation_analyzer import AllocationAnalyzer
from trade_agent.portfolio.base import ActionStatus, RebalanceOperation, TargetAllocation
from trade_agent.portfolio.rebalance_planner import RebalancePlanner, plan_decimals
from trade_agent.utils.exceptions import NoIntermediaryAssetError, ValidationError


@pytest.fixture
def planner() -> RebalancePlanner:
    return RebalancePlanner()


def plan_for(planner, snapshot, targets, threshold=5.0):
    deviations = AllocationAnalyzer().analyze(snapshot, targets)
    return planner.plan(deviations, threshold, snapshot)


class TestSelectIntermediary:
    """Test cases for select_intermediary."""

    def test_prefers_stablecoin(self, planner, sol_heavy_snapshot) -> None:
        assert planner.select_intermediary(sol_heavy_snapshot).mint == USDC_MINT

    def test_largest_stablecoin_wins(self, planner) -> None:
        snapshot = make_snapshot(sol(1.0), usdc(100.0), usdt(400.0))
        assert planner.select_intermediary(snapshot).mint == USDT_MINT

    def test_falls_back_to_native(self, planner) -> None:
        snapshot = make_snapshot(jup(100.0), sol(2.0))
        assert planner.select_intermediary(snapshot).mint == SOL_MINT

    def test_ignores_empty_and_unpriced_stables(self, planner) -> None:
        snapshot = make_snapshot(usdc(0.0), usdt(50.0, price=0.0), sol(2.0))
        assert planner.select_intermediary(snapshot).mint == SOL_MINT

    def test_no_intermediary(self, planner) -> None:
        snapshot = make_snapshot(jup(100.0))
        with pytest.raises(NoIntermediaryAssetError):
            planner.select_intermediary(snapshot)


class TestPlan:
    """Test cases for plan."""

    def test_sol_heavy_portfolio_single_sell(self, planner, sol_heavy_snapshot, even_targets) -> None:
        """70% SOL / 30% USDC against 50/50 sells SOL x 20/70."""
        plan = plan_for(planner, sol_heavy_snapshot, even_targets)

        assert len(plan) == 1
        action = plan.actions[0]
        assert action.operation == RebalanceOperation.SELL
        assert (action.from_mint, action.to_mint) == (SOL_MINT, USDC_MINT)
        assert action.amount == pytest.approx(70.0 * (20.0 / 70.0))
        assert action.status == ActionStatus.PLANNED
        assert plan.intermediary_mint == USDC_MINT
        assert plan.total_value == pytest.approx(10_000.0)

    def test_sells_before_buys(self, planner) -> None:
        snapshot = make_snapshot(sol(10.0, 100.0), usdc(1000.0))
        targets = [
            TargetAllocation(SOL_MINT, 40.0),
            TargetAllocation(USDC_MINT, 30.0),
            TargetAllocation(JUP_MINT, 30.0, symbol="JUP"),
        ]
        plan = plan_for(planner, snapshot, targets)

        assert [a.describe() for a in plan] == ["sell SOL to USDC", "buy USDC to JUP"]
        sell, buy = plan.actions
        assert sell.amount == pytest.approx(10.0 * 10.0 / 50.0)
        # 30% of $2000 in USDC at $1
        assert buy.amount == pytest.approx(600.0)
        assert [a.index for a in plan] == [0, 1]

    def test_most_over_allocated_first(self, planner) -> None:
        snapshot = make_snapshot(usdc(1000.0), sol(10.0, 100.0), jup(4000.0, 0.5))
        targets = [
            TargetAllocation(SOL_MINT, 10.0),
            TargetAllocation(JUP_MINT, 20.0),
            TargetAllocation(USDC_MINT, 70.0),
        ]
        plan = plan_for(planner, snapshot, targets)

        assert [a.from_mint for a in plan] == [JUP_MINT, SOL_MINT]

    def test_most_under_allocated_first(self, planner) -> None:
        snapshot = make_snapshot(usdc(1000.0))
        targets = [
            TargetAllocation(SOL_MINT, 20.0, symbol="SOL"),
            TargetAllocation(JUP_MINT, 60.0, symbol="JUP"),
            TargetAllocation(USDC_MINT, 20.0),
        ]
        plan = plan_for(planner, snapshot, targets)

        assert [a.to_mint for a in plan] == [JUP_MINT, SOL_MINT]
        assert plan.actions[0].amount == pytest.approx(600.0)

    def test_deviation_at_threshold_ignored(self, planner, sol_heavy_snapshot, even_targets) -> None:
        """Action iff |difference| > threshold."""
        assert len(plan_for(planner, sol_heavy_snapshot, even_targets, threshold=20.0)) == 0
        assert len(plan_for(planner, sol_heavy_snapshot, even_targets, threshold=19.9)) == 1

    def test_max_deviation_overrides_threshold(self, planner, sol_heavy_snapshot) -> None:
        targets = [
            TargetAllocation(SOL_MINT, 50.0, max_deviation=25.0),
            TargetAllocation(USDC_MINT, 50.0),
        ]
        assert len(plan_for(planner, sol_heavy_snapshot, targets)) == 0

    def test_intermediary_never_traded_against_itself(self, planner) -> None:
        snapshot = make_snapshot(sol(10.0, 100.0), usdc(1000.0), jup(1000.0, 1.0))
        targets = [
            TargetAllocation(SOL_MINT, 10.0),
            TargetAllocation(USDC_MINT, 10.0),
            TargetAllocation(JUP_MINT, 80.0),
        ]
        plan = plan_for(planner, snapshot, targets)

        assert len(plan) > 0
        for action in plan:
            assert action.from_mint != action.to_mint
            assert USDC_MINT in (action.from_mint, action.to_mint)

    def test_native_intermediary(self, planner) -> None:
        snapshot = make_snapshot(sol(5.0, 100.0), jup(1500.0, 1.0))
        targets = [TargetAllocation(SOL_MINT, 50.0), TargetAllocation(JUP_MINT, 50.0)]
        plan = plan_for(planner, snapshot, targets)

        assert [a.describe() for a in plan] == ["sell JUP to SOL"]
        assert plan.actions[0].amount == pytest.approx(1500.0 * 25.0 / 75.0)

    def test_negative_threshold(self, planner, sol_heavy_snapshot, even_targets) -> None:
        deviations = AllocationAnalyzer().analyze(sol_heavy_snapshot, even_targets)
        with pytest.raises(ValidationError, match="threshold"):
            planner.plan(deviations, -1.0, sol_heavy_snapshot)

    def test_no_intermediary_propagates(self, planner) -> None:
        snapshot = make_snapshot(jup(100.0))
        with pytest.raises(NoIntermediaryAssetError):
            plan_for(planner, snapshot, [TargetAllocation(JUP_MINT, 50.0)])


class TestPlanDecimals:
    """Test cases for plan_decimals."""

    def test_precedence(self, sol_heavy_snapshot) -> None:
        targets = [
            TargetAllocation(SOL_MINT, 50.0, decimals=6),
            TargetAllocation(JUP_MINT, 20.0, decimals=6),
        ]
        registry = {
            JUP_MINT: TokenInfo(JUP_MINT, "JUP", 8),
            "Other111": TokenInfo("Other111", "OTH", 4),
        }
        decimals = plan_decimals(sol_heavy_snapshot, targets, registry)

        assert decimals[SOL_MINT] == 9
        assert decimals[USDC_MINT] == 6
        assert decimals[JUP_MINT] == 6
        assert decimals["Other111"] == 4
