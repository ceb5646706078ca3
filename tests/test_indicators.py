"""
Tests for indicators module.

Momentum, realized volatility, seasonality tilt and regime detection are
checked against closed-form values on synthetic series.
"""

from datetime import date

import numpy as np
import pandas as pd
import pytest

from smta.config import RegimeConfig
from smta.indicators import (
    MarketRegime,
    MomentumResult,
    calculate_log_returns,
    calculate_max_drawdown,
    calculate_momentum_score,
    calculate_realized_volatility,
    calculate_seasonality_tilt,
    calculate_sharpe_ratio,
    calculate_sma,
    detect_market_regime,
)


def _series(values, start="2022-01-03") -> pd.Series:
    dates = pd.bdate_range(start=start, periods=len(values))
    return pd.Series(np.asarray(values, dtype=float), index=dates)


@pytest.fixture
def exp_trend():
    """300 closes growing 0.1% (log) per session."""
    t = np.arange(300)
    return _series(100 * np.exp(0.001 * t))


@pytest.fixture
def march_rally():
    """Flat prices except a 1%/session rally every March, 2019-2021."""
    dates = pd.bdate_range("2019-01-01", "2021-12-31")
    price = 100.0
    values = []
    for d in dates:
        if d.month == 3:
            price *= 1.01
        values.append(price)
    return pd.Series(values, index=dates)


class TestMomentumScore:
    """Test multi-horizon momentum score."""

    def test_returns_result(self, exp_trend):
        result = calculate_momentum_score(exp_trend)
        assert isinstance(result, MomentumResult)

    def test_components_on_log_linear_trend(self, exp_trend):
        """Each r_d equals 0.001 * d on an exponential trend."""
        result = calculate_momentum_score(exp_trend)

        assert result.r21 == pytest.approx(0.021)
        assert result.r63 == pytest.approx(0.063)
        assert result.r126 == pytest.approx(0.126)
        assert result.r252 == pytest.approx(0.252)
        assert result.accel == pytest.approx(-0.042)

    def test_composite_formula(self, exp_trend):
        """0.10 r21 + 0.20 r63 + 0.30 r126 + 0.40 r252 + 0.15 accel."""
        result = calculate_momentum_score(exp_trend)
        assert result.score == pytest.approx(0.147)

    def test_scale_invariant(self, exp_trend):
        """Multiplying all closes by a constant leaves the score unchanged."""
        base = calculate_momentum_score(exp_trend)
        scaled = calculate_momentum_score(exp_trend * 37.5)
        assert scaled.score == pytest.approx(base.score, abs=1e-12)

    def test_short_history_contributes_zero(self):
        """Lookbacks longer than the series contribute 0."""
        t = np.arange(50)
        result = calculate_momentum_score(_series(100 * np.exp(0.001 * t)))

        assert result.r21 == pytest.approx(0.021)
        assert result.r63 == 0.0
        assert result.r126 == 0.0
        assert result.r252 == 0.0
        assert result.score == pytest.approx(0.10 * 0.021 + 0.15 * 0.021)

    def test_non_positive_base_contributes_zero(self):
        values = np.full(30, 100.0)
        values[-22] = 0.0
        result = calculate_momentum_score(_series(values))
        assert result.r21 == 0.0
        assert np.isfinite(result.score)


class TestRealizedVolatility:
    """Test annualized realized volatility."""

    def test_constant_growth_has_zero_vol(self, exp_trend):
        assert calculate_realized_volatility(exp_trend) == pytest.approx(0.0, abs=1e-12)

    def test_alternating_series(self):
        """Alternating +/-1% log moves annualize to ln(1.01) * sqrt(252)."""
        values = [100.0 if i % 2 == 0 else 101.0 for i in range(100)]
        vol = calculate_realized_volatility(_series(values), lookback=62)
        assert vol == pytest.approx(np.log(1.01) * np.sqrt(252), rel=1e-9)

    def test_fewer_than_two_returns(self):
        assert calculate_realized_volatility(_series([100.0, 101.0])) == 0.0
        assert calculate_realized_volatility(_series([100.0])) == 0.0

    def test_non_positive_closes_skipped(self):
        """Pairs touching a zero close are skipped, leaving one return."""
        assert calculate_realized_volatility(_series([100.0, 0.0, 100.0, 101.0])) == 0.0

    def test_log_returns_skip_invalid_pairs(self):
        returns = calculate_log_returns(_series([100.0, 0.0, 100.0, 110.0, -5.0]))
        assert len(returns) == 1
        assert returns.iloc[0] == pytest.approx(np.log(1.1))


class TestSeasonalityTilt:
    """Test month-of-year seasonality tilt."""

    def test_strong_month_clamped_high(self, march_rally):
        assert calculate_seasonality_tilt(march_rally, date(2021, 3, 15)) == pytest.approx(0.01)

    def test_quiet_month_clamped_low(self, march_rally):
        assert calculate_seasonality_tilt(march_rally, date(2021, 6, 15)) == pytest.approx(-0.01)

    def test_custom_cap(self, march_rally):
        assert calculate_seasonality_tilt(march_rally, date(2021, 3, 15), cap=0.005) == pytest.approx(0.005)

    def test_flat_series_is_zero(self):
        flat = pd.Series(50.0, index=pd.bdate_range("2020-01-01", "2021-12-31"))
        assert calculate_seasonality_tilt(flat, date(2021, 7, 1)) == 0.0

    def test_single_month_is_zero(self):
        series = pd.Series([1.0, 2.0, 3.0], index=pd.bdate_range("2021-02-01", periods=3))
        assert calculate_seasonality_tilt(series, date(2021, 2, 3)) == 0.0

    def test_bounded(self, exp_trend):
        tilt = calculate_seasonality_tilt(exp_trend, date(2022, 5, 1))
        assert -0.01 <= tilt <= 0.01


class TestRegimeDetection:
    """Test benchmark regime classification."""

    def test_not_enough_history(self):
        closes = _series(np.linspace(100, 120, 150))
        result = detect_market_regime(closes)

        assert result.regime == MarketRegime.UNKNOWN
        assert result.detail == "Not enough history"
        assert result.sma_200 is None

    def test_risk_on(self, exp_trend):
        result = detect_market_regime(exp_trend)

        assert result.regime == MarketRegime.RISK_ON
        assert result.detail == "Benchmark > SMA200 and SMA50 > SMA200"
        assert result.above_sma200
        assert result.sma50_above_sma200
        assert not result.vol_spike

    def test_risk_off_below_trend(self):
        closes = _series([100.0] * 250 + [80.0] * 50)
        result = detect_market_regime(closes)

        assert result.regime == MarketRegime.RISK_OFF
        assert result.detail == "Benchmark under long-term trend"
        assert not result.above_sma200

    def test_caution_on_volatility_spike(self):
        """Uptrend with a +/-5% whipsaw over the last 20 sessions."""
        t = np.arange(300)
        values = 100 * np.exp(0.002 * t)
        values[279:] *= np.where(t[279:] % 2 == 0, 1.05, 1.0)
        result = detect_market_regime(_series(values))

        assert result.regime == MarketRegime.CAUTION
        assert result.detail == "Risk-on trend but volatility spike"
        assert result.vol_spike
        assert result.vol_20 == pytest.approx(np.log(1.05) * np.sqrt(252), rel=1e-6)

    def test_threshold_configurable(self):
        t = np.arange(300)
        values = 100 * np.exp(0.002 * t)
        values[279:] *= np.where(t[279:] % 2 == 0, 1.05, 1.0)
        relaxed = RegimeConfig(vol_spike_threshold=0.95)

        assert detect_market_regime(_series(values), relaxed).regime == MarketRegime.RISK_ON

    def test_pure_function(self, exp_trend):
        """Repeated calls give identical results."""
        assert detect_market_regime(exp_trend) == detect_market_regime(exp_trend)


class TestSummaryStats:
    """Test drawdown, SMA and Sharpe helpers."""

    def test_max_drawdown(self):
        assert calculate_max_drawdown([1.0, 2.0, 1.0, 3.0]) == pytest.approx(0.5)

    def test_max_drawdown_monotonic(self):
        assert calculate_max_drawdown([1.0, 1.1, 1.2]) == 0.0

    def test_max_drawdown_empty(self):
        assert calculate_max_drawdown([]) == 0.0

    def test_sma(self):
        assert calculate_sma(_series([1.0, 2.0, 3.0, 4.0]), 2) == pytest.approx(3.5)
        assert calculate_sma(_series([1.0, 2.0]), 3) is None

    def test_sharpe_zero_vol(self):
        assert calculate_sharpe_ratio([0.001] * 50) == 0.0

    def test_sharpe_sign(self):
        returns = [0.01, -0.005] * 50
        assert calculate_sharpe_ratio(returns) > 0
