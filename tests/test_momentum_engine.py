"""
Tests for MomentumEngine selection and sizing.

Selection rules are exercised on hand-built feature lists; allocate() runs
end to end on synthetic price frames.
"""

from datetime import date

import numpy as np
import pandas as pd
import pytest

from smta.config import Config
from smta.indicators import MarketRegime, MomentumResult, RegimeResult
from smta.momentum_engine import (
    RATIONALE_CAUTION,
    RATIONALE_GATE,
    RATIONALE_RISK_OFF,
    RATIONALE_RISK_ON,
    AllocationParams,
    AllocationResult,
    FeatureRecord,
    MomentumEngine,
    calculate_vol_scale,
    estimate_portfolio_volatility,
    inverse_volatility_weights,
)


def _frame(values, start="2022-01-03") -> pd.DataFrame:
    dates = pd.bdate_range(start=start, periods=len(values))
    values = np.asarray(values, dtype=float)
    return pd.DataFrame({"close": values, "raw_close": values, "volume": 0.0}, index=dates)


def _feat(ticker: str, score: float, vol: float = 0.2) -> FeatureRecord:
    momentum = MomentumResult(score=score, r21=0.0, r63=0.0, r126=0.0, r252=0.0, accel=0.0)
    return FeatureRecord(ticker=ticker, momentum=momentum, volatility=vol, seasonality=0.0, score=score)


def _regime(regime: MarketRegime) -> RegimeResult:
    return RegimeResult(regime=regime, detail="test", vol_20=0.1, vol_spike=regime == MarketRegime.CAUTION)


@pytest.fixture
def engine():
    return MomentumEngine(Config())


@pytest.fixture
def ranked():
    """Five instruments by score; T and G are defensive."""
    return [_feat("X", 0.5), _feat("T", 0.4), _feat("Y", 0.3), _feat("G", 0.2), _feat("Z", 0.1)]


@pytest.fixture
def params():
    return AllocationParams(top_n=3, min_momentum=0.0, defensive_tickers=("T", "G"))


@pytest.fixture
def ab_store():
    """A trends with daily whipsaw, B is flat, SPY rises smoothly."""
    t = np.arange(300)
    return {
        "A": _frame(100 * np.exp(0.001 * t + 0.01 * (-1.0) ** t)),
        "B": _frame(np.full(300, 50.0)),
        "SPY": _frame(100 * np.exp(0.0005 * t)),
    }


class TestSelection:
    """Test regime-dependent selection and the momentum gate."""

    def test_risk_on_takes_top_n(self, engine, ranked, params):
        selected, rationale, gate = engine.select(ranked, _regime(MarketRegime.RISK_ON), params)

        assert [f.ticker for f in selected] == ["X", "T", "Y"]
        assert rationale == RATIONALE_RISK_ON
        assert not gate

    def test_unknown_behaves_like_risk_on(self, engine, ranked, params):
        selected, rationale, _ = engine.select(ranked, _regime(MarketRegime.UNKNOWN), params)

        assert [f.ticker for f in selected] == ["X", "T", "Y"]
        assert rationale == RATIONALE_RISK_ON

    def test_risk_off_defensive_only(self, engine, ranked, params):
        selected, rationale, _ = engine.select(ranked, _regime(MarketRegime.RISK_OFF), params)

        assert [f.ticker for f in selected] == ["T", "G"]
        assert rationale == RATIONALE_RISK_OFF

    def test_caution_blends(self, engine, ranked, params):
        """top_n=3: one defensive leader, then two risk assets."""
        selected, rationale, _ = engine.select(ranked, _regime(MarketRegime.CAUTION), params)

        assert [f.ticker for f in selected] == ["T", "X", "Y"]
        assert rationale == RATIONALE_CAUTION

    def test_caution_top_one_keeps_defensive(self, engine, ranked):
        params = AllocationParams(top_n=1, defensive_tickers=("T", "G"))
        selected, _, _ = engine.select(ranked, _regime(MarketRegime.CAUTION), params)

        assert [f.ticker for f in selected] == ["T"]

    def test_caution_top_four(self, engine, ranked):
        params = AllocationParams(top_n=4, defensive_tickers=("T", "G"))
        selected, _, _ = engine.select(ranked, _regime(MarketRegime.CAUTION), params)

        assert [f.ticker for f in selected] == ["T", "G", "X", "Y"]

    def test_gate_shifts_to_defensive(self, engine, ranked):
        params = AllocationParams(top_n=3, min_momentum=0.35, defensive_tickers=("T", "G"))
        selected, rationale, gate = engine.select(ranked, _regime(MarketRegime.RISK_ON), params)

        assert [f.ticker for f in selected] == ["T", "G"]
        assert gate
        assert rationale == RATIONALE_RISK_ON + RATIONALE_GATE

    def test_gate_without_defensive_keeps_selection(self, engine, ranked):
        params = AllocationParams(top_n=3, min_momentum=0.35, defensive_tickers=())
        selected, rationale, gate = engine.select(ranked, _regime(MarketRegime.RISK_ON), params)

        assert [f.ticker for f in selected] == ["X", "T", "Y"]
        assert not gate
        assert rationale == RATIONALE_RISK_ON

    def test_risk_off_without_defensive_is_empty(self, engine, ranked):
        params = AllocationParams(top_n=3, defensive_tickers=())
        selected, _, _ = engine.select(ranked, _regime(MarketRegime.RISK_OFF), params)
        assert selected == []


class TestSizing:
    """Test inverse-volatility weights and the vol scale."""

    def test_inverse_vol(self):
        weights = inverse_volatility_weights([0.1, 0.2])
        assert weights == pytest.approx([2 / 3, 1 / 3])

    def test_inverse_vol_clamps(self):
        assert inverse_volatility_weights([0.0, 0.05]) == pytest.approx([0.5, 0.5])
        assert inverse_volatility_weights([3.0, 1.5]) == pytest.approx([0.5, 0.5])

    def test_inverse_vol_empty(self):
        assert inverse_volatility_weights([]) == []

    def test_portfolio_vol(self):
        assert estimate_portfolio_volatility([0.5, 0.5], [0.2, 0.2]) == pytest.approx(np.sqrt(0.02))

    def test_vol_scale_bounds(self):
        assert calculate_vol_scale(0.12, 0.06) == 1.25
        assert calculate_vol_scale(0.12, 0.48) == 0.5
        assert calculate_vol_scale(0.12, 0.12) == pytest.approx(1.0)

    def test_vol_scale_degenerate(self):
        assert calculate_vol_scale(0.12, 0.0) == 1.0
        assert calculate_vol_scale(0.0, 0.2) == 1.0

    def test_size_positions_sums_to_one(self, engine):
        weights, port_vol, scale = engine.size_positions([_feat("A", 0.1, 0.3), _feat("B", 0.1, 0.1)], 0.12)

        assert sum(weights) == pytest.approx(1.0)
        assert weights[1] > weights[0]
        assert port_vol > 0
        assert 0.5 <= scale <= 1.25


class TestAllocate:
    """End-to-end allocation on synthetic frames."""

    def test_low_vol_asset_gets_larger_weight(self, engine, ab_store):
        params = AllocationParams(top_n=2, defensive_tickers=("B",))
        result = engine.allocate(ab_store, ["A", "B"], ab_store["SPY"], params)

        assert result.regime.regime == MarketRegime.RISK_ON
        assert [p.ticker for p in result.target] == ["A", "B"]
        assert result.weights["B"] > 0.5
        assert result.selected[0].score > result.selected[1].score

    def test_weights_rounded_and_sum_to_one(self, engine, ab_store):
        params = AllocationParams(top_n=2, defensive_tickers=("B",))
        result = engine.allocate(ab_store, ["A", "B"], ab_store["SPY"], params)

        assert sum(result.weights.values()) == pytest.approx(1.0, abs=1e-6)
        for weight in result.weights.values():
            assert weight >= 0
            assert round(weight, 4) == weight
        assert sum(result.raw_weights.values()) == pytest.approx(1.0)

    def test_rationale_on_every_position(self, engine, ab_store):
        params = AllocationParams(top_n=2, defensive_tickers=("B",))
        result = engine.allocate(ab_store, ["A", "B"], ab_store["SPY"], params)

        assert all(p.rationale == RATIONALE_RISK_ON for p in result.target)

    def test_short_history_filtered(self, engine, ab_store):
        store = dict(ab_store)
        store["C"] = _frame(np.linspace(10, 20, 200))
        params = AllocationParams(top_n=3, defensive_tickers=("B",))
        result = engine.allocate(store, ["A", "B", "C"], store["SPY"], params)

        assert "C" not in result.weights

    def test_empty_universe(self, engine, ab_store):
        result = engine.allocate(ab_store, [], ab_store["SPY"], AllocationParams())

        assert result.is_empty
        assert result.weights == {}
        assert result.selected == []

    def test_compute_features_stable_ties(self, engine):
        t = np.arange(300)
        series = _frame(100 * np.exp(0.001 * t))
        store = {"Q": series, "P": series.copy()}
        features = engine.compute_features(store, ["Q", "P"], date(2023, 2, 1))

        assert [f.ticker for f in features] == ["Q", "P"]

    def test_missing_ticker_skipped(self, engine, ab_store):
        features = engine.compute_features(ab_store, ["A", "MISSING"], date(2023, 2, 1))
        assert [f.ticker for f in features] == ["A"]


class TestHoldEstimate:
    """Test the holding-period heuristic."""

    def _allocation(self, selected):
        return AllocationResult(regime=_regime(MarketRegime.RISK_ON), selected=selected)

    def test_no_selection(self, engine):
        assert engine.estimate_hold_days(self._allocation([])) == 21

    def test_scaled_by_top_score(self, engine):
        assert engine.estimate_hold_days(self._allocation([_feat("A", 0.1)])) == 30

    def test_clamped(self, engine):
        assert engine.estimate_hold_days(self._allocation([_feat("A", 0.5)])) == 90
        assert engine.estimate_hold_days(self._allocation([_feat("A", -1.0)])) == 10
