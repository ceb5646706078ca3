"""
Tests for TradePlanner.

Invariants:
- Deltas strictly inside the no-trade band produce no trade
- Reductions inside the minimum holding period become HOLD
- Sells are listed before buys
"""

import logging
from datetime import date, timedelta

import pytest

from smta.logger import DecisionLogger
from smta.portfolio import Holding
from smta.trade_planner import RebalancePlan, TradeAction, TradePlanner

AS_OF = date(2024, 3, 1)


@pytest.fixture
def planner():
    return TradePlanner(no_trade_pct=5.0, min_hold_days=10)


class TestNoTradeBand:
    """Test the no-trade threshold boundary."""

    def test_delta_equal_to_threshold_trades(self, planner):
        plan = planner.build_plan({"A": 0.05}, {"A": 10.0}, [], 100000, AS_OF)

        assert len(plan.trades) == 1
        trade = plan.trades[0]
        assert trade.action == TradeAction.BUY
        assert trade.shares == 500
        assert trade.estimated_value == pytest.approx(5000.0)

    def test_delta_below_threshold_skipped(self, planner):
        plan = planner.build_plan({"A": 0.0499}, {"A": 10.0}, [], 100000, AS_OF)
        assert plan.trades == []

    def test_zero_threshold_trades_everything(self):
        planner = TradePlanner(no_trade_pct=0.0, min_hold_days=0)
        plan = planner.build_plan({"A": 0.001}, {"A": 10.0}, [], 100000, AS_OF)

        assert [t.shares for t in plan.trades] == [10]

    @pytest.mark.parametrize("no_trade_pct", [0.0, 5.0])
    def test_position_at_target_produces_no_trade(self, no_trade_pct):
        """A zero delta yields no entry, even when the band is zero."""
        planner = TradePlanner(no_trade_pct=no_trade_pct, min_hold_days=10)
        plan = planner.build_plan({"A": 1.0}, {"A": 10.0}, [Holding("A", 100, 10.0)], 0, AS_OF)

        assert plan.trades == []
        assert plan.current_value == pytest.approx(1000.0)

    def test_reason_mentions_delta_and_threshold(self, planner):
        plan = planner.build_plan({"A": 0.25}, {"A": 10.0}, [], 100000, AS_OF)
        assert plan.trades[0].reason == "Rebalance delta 25.0% (no-trade threshold 5%)."


class TestHoldingPeriod:
    """Test minimum holding period enforcement."""

    def test_recent_reduction_becomes_hold(self, planner):
        holdings = [Holding("A", 100, 10.0, AS_OF - timedelta(days=3))]
        plan = planner.build_plan({}, {"A": 10.0}, holdings, 0, AS_OF)

        assert len(plan.trades) == 1
        trade = plan.trades[0]
        assert trade.action == TradeAction.HOLD
        assert trade.shares == 0
        assert trade.estimated_value == 0.0
        assert trade.reason == "Min holding period (10d) not met (held ~3d)."

    def test_old_position_can_be_sold(self, planner):
        holdings = [Holding("A", 100, 10.0, AS_OF - timedelta(days=30))]
        plan = planner.build_plan({}, {"A": 10.0}, holdings, 0, AS_OF)

        assert plan.trades[0].action == TradeAction.SELL
        assert plan.trades[0].shares == 100

    def test_no_trade_date_can_be_sold(self, planner):
        holdings = [Holding("A", 100, 10.0, None)]
        plan = planner.build_plan({}, {"A": 10.0}, holdings, 0, AS_OF)

        assert plan.trades[0].action == TradeAction.SELL

    def test_holding_period_does_not_block_buys(self, planner):
        holdings = [Holding("A", 10, 10.0, AS_OF - timedelta(days=1)), Holding("B", 90, 10.0, None)]
        plan = planner.build_plan({"A": 0.5, "B": 0.5}, {"A": 10.0, "B": 10.0}, holdings, 0, AS_OF)

        actions = {t.ticker: t.action for t in plan.trades}
        assert actions == {"A": TradeAction.BUY, "B": TradeAction.SELL}


class TestPlanConstruction:
    """Test weights, capital and ordering."""

    def test_sells_before_buys(self, planner):
        holdings = [Holding("B", 10, 20.0), Holding("A", 80, 10.0)]
        plan = planner.build_plan({"B": 1.0}, {"A": 10.0, "B": 20.0}, holdings, 0, AS_OF)

        assert [(t.action, t.ticker) for t in plan.trades] == [
            (TradeAction.SELL, "A"),
            (TradeAction.BUY, "B"),
        ]
        assert plan.trades[0].shares == 80
        assert plan.trades[1].shares == 40

    def test_effective_capital_is_max(self, planner):
        holdings = [Holding("A", 100, 10.0)]
        plan = planner.build_plan({"A": 1.0}, {"A": 10.0}, holdings, 500, AS_OF)

        assert plan.current_value == pytest.approx(1000.0)
        assert plan.effective_capital == pytest.approx(1000.0)

        plan = planner.build_plan({"A": 1.0}, {"A": 10.0}, holdings, 5000, AS_OF)
        assert plan.effective_capital == pytest.approx(5000.0)

    def test_current_weights_relative_to_holdings(self, planner):
        holdings = [Holding("A", 30, 10.0), Holding("B", 70, 10.0)]
        plan = planner.build_plan({"A": 0.5, "B": 0.5}, {"A": 10.0, "B": 10.0}, holdings, 10000, AS_OF)

        by_ticker = {t.ticker: t for t in plan.trades}
        assert by_ticker["A"].current_weight == pytest.approx(0.3)
        assert by_ticker["A"].shares == 200
        assert by_ticker["B"].current_weight == pytest.approx(0.7)
        assert by_ticker["B"].shares == 200

    def test_duplicate_holdings_last_wins(self, planner):
        holdings = [Holding("A", 10, 10.0), Holding("A", 20, 10.0)]
        plan = planner.build_plan({}, {"A": 10.0}, holdings, 0, AS_OF)

        assert plan.current_value == pytest.approx(200.0)
        assert plan.trades[0].shares == 20

    def test_unpriceable_target_skipped(self, planner):
        plan = planner.build_plan({"A": 0.5, "B": 0.5}, {"A": 10.0}, [], 1000, AS_OF)

        assert [t.ticker for t in plan.trades] == ["A"]
        assert any("B" in w for w in plan.warnings)

    def test_unpriceable_holding_excluded(self, planner):
        holdings = [Holding("OLD", 5, 10.0), Holding("A", 10, 10.0)]
        plan = planner.build_plan({"A": 1.0}, {"A": 10.0}, holdings, 0, AS_OF)

        assert plan.current_value == pytest.approx(100.0)
        assert all(t.ticker != "OLD" for t in plan.trades)
        assert any("OLD" in w for w in plan.warnings)

    def test_zero_share_trade_dropped(self, planner):
        plan = planner.build_plan({"A": 0.06}, {"A": 1_000_000.0}, [], 1000, AS_OF)
        assert plan.trades == []

    def test_empty_target_and_holdings(self, planner):
        plan = planner.build_plan({}, {}, [], 100000, AS_OF)

        assert isinstance(plan, RebalancePlan)
        assert plan.trades == []
        assert plan.effective_capital == 100000

    def test_plan_totals(self, planner):
        holdings = [Holding("B", 10, 20.0), Holding("A", 80, 10.0)]
        plan = planner.build_plan({"B": 1.0}, {"A": 10.0, "B": 20.0}, holdings, 0, AS_OF)

        assert plan.total_sell_value == pytest.approx(800.0)
        assert plan.total_buy_value == pytest.approx(800.0)
        assert len(plan.sell_trades) == 1
        assert len(plan.buy_trades) == 1

    def test_decision_logger_records_trades(self, caplog):
        planner = TradePlanner(5.0, 10, DecisionLogger(logging.getLogger("smta.test")))
        with caplog.at_level(logging.INFO, logger="smta.test"):
            planner.build_plan({"A": 1.0}, {"A": 10.0}, [], 1000, AS_OF)

        assert any("TRADE | BUY | A" in r.message for r in caplog.records)

    def test_to_dict(self, planner):
        plan = planner.build_plan({"A": 1.0}, {"A": 10.0}, [], 1000, AS_OF)
        data = plan.trades[0].to_dict()

        assert data["action"] == "BUY"
        assert data["shares"] == 100
        assert data["est_value"] == pytest.approx(1000.0)
