"""
Technical indicators for the SMTA signal engine.

Multi-horizon log momentum, realized volatility and month-of-year seasonality
per instrument, plus trend/volatility regime detection on the benchmark.
Every function is pure over a close series; none of them keeps state between
calls.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Iterable, Optional, Sequence

import numpy as np
import pandas as pd

from .config import RegimeConfig

TRADING_DAYS_YEAR = 252


class MarketRegime(Enum):
    """
    Benchmark regime classification.

    Trend is price vs 200-day SMA and 50/200 crossover; a volatility spike
    downgrades a risk-on trend to caution.
    """

    RISK_ON = "risk_on"      # Uptrend, calm volatility
    CAUTION = "caution"      # Uptrend, 20-day vol spike
    RISK_OFF = "risk_off"    # Trend broken
    UNKNOWN = "unknown"      # Fewer than 200 observations


@dataclass
class RegimeResult:
    """Detected regime plus the signals that produced it."""

    regime: MarketRegime
    detail: str
    vol_20: float                  # 20-day annualized vol of log returns
    vol_spike: bool
    sma_50: Optional[float] = None
    sma_200: Optional[float] = None
    last_close: float = 0.0
    above_sma200: bool = False
    sma50_above_sma200: bool = False

    def __str__(self) -> str:
        return f"{self.regime.value.upper()} (vol20={self.vol_20:.1%}): {self.detail}"

    def to_dict(self) -> dict:
        return {
            "regime": self.regime.value,
            "detail": self.detail,
            "vol20": self.vol_20,
            "vol_spike": self.vol_spike,
            "sma50": self.sma_50,
            "sma200": self.sma_200,
            "last_close": self.last_close,
            "above_sma200": self.above_sma200,
            "sma50_above_sma200": self.sma50_above_sma200,
        }


@dataclass
class MomentumResult:
    """
    Multi-horizon momentum breakdown.

    Each r_d is ln(close_t / close_{t-d}); accel = r21 - r63 rewards
    short-term acceleration over medium-term momentum.
    """

    score: float
    r21: float
    r63: float
    r126: float
    r252: float
    accel: float

    def to_dict(self) -> dict:
        return {
            "r21": self.r21,
            "r63": self.r63,
            "r126": self.r126,
            "r252": self.r252,
            "accel": self.accel,
        }


def calculate_log_returns(closes: pd.Series) -> pd.Series:
    """
    Daily log returns between consecutive positive closes.

    Pairs where either close is non-positive or missing are skipped, not
    zero-filled.
    """
    closes = closes.astype(float)
    prev = closes.shift(1)
    valid = (prev > 0) & (closes > 0)
    return np.log(closes[valid] / prev[valid])


def _log_ratio(values: np.ndarray, lookback: int) -> float:
    """ln(last / value lookback sessions earlier), 0 when history is too short."""
    n = len(values)
    if n <= lookback:
        return 0.0
    last = values[-1]
    base = values[-1 - lookback]
    if not (last > 0 and base > 0):
        return 0.0
    ratio = float(np.log(last / base))
    return ratio if np.isfinite(ratio) else 0.0


def calculate_momentum_score(
    closes: pd.Series,
    lookbacks: Sequence[int] = (21, 63, 126, 252),
    weights: Sequence[float] = (0.10, 0.20, 0.30, 0.40),
    acceleration_weight: float = 0.15,
) -> MomentumResult:
    """
    Calculate the composite multi-horizon momentum score.

    Formula:
        score = 0.10 r21 + 0.20 r63 + 0.30 r126 + 0.40 r252 + 0.15 (r21 - r63)

    Log ratios make the score invariant to rescaling the whole series.

    Args:
        closes: Close prices, ascending
        lookbacks: 1/3/6/12-month lookbacks in sessions
        weights: Weight for each lookback
        acceleration_weight: Weight on r1m - r3m

    Returns:
        MomentumResult with the score and its components
    """
    values = closes.to_numpy(dtype=float)
    r21, r63, r126, r252 = (_log_ratio(values, d) for d in lookbacks)
    accel = r21 - r63

    w21, w63, w126, w252 = weights
    score = (w21 * r21 + w63 * r63 + w126 * r126 + w252 * r252) + acceleration_weight * accel

    return MomentumResult(score=score, r21=r21, r63=r63, r126=r126, r252=r252, accel=accel)


def calculate_realized_volatility(
    closes: pd.Series,
    lookback: int = 63,
    trading_days_year: int = TRADING_DAYS_YEAR,
) -> float:
    """
    Annualized standard deviation of the most recent daily log returns.

    Uses the population standard deviation of up to `lookback` returns.
    Returns 0.0 when fewer than two returns exist.
    """
    returns = calculate_log_returns(closes).iloc[-lookback:]
    if len(returns) < 2:
        return 0.0
    vol = float(np.std(returns.to_numpy(), ddof=0) * np.sqrt(trading_days_year))
    return vol if np.isfinite(vol) else 0.0


def calculate_seasonality_tilt(closes: pd.Series, as_of: date, cap: float = 0.01) -> float:
    """
    Month-of-year seasonality tilt.

    Month-over-month log returns are measured between the first close of
    consecutive calendar months and attributed to the earlier month. The tilt
    is the mean return of as_of's calendar month minus the mean over all
    months, clamped to [-cap, cap].

    Args:
        closes: Close prices with a DatetimeIndex
        as_of: Date whose calendar month is scored
        cap: Absolute clamp for the tilt

    Returns:
        Tilt in [-cap, cap]; 0.0 on insufficient or degenerate data
    """
    if len(closes) < 2:
        return 0.0

    month_firsts = closes.groupby(closes.index.to_period("M")).first()
    if len(month_firsts) < 2:
        return 0.0

    values = month_firsts.to_numpy(dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        returns = np.log(values[1:] / values[:-1])
    months = np.asarray(month_firsts.index[:-1].month)

    overall = returns.mean()
    current = returns[months == as_of.month]
    current_mean = current.mean() if len(current) else 0.0

    tilt = float(np.clip(current_mean - overall, -cap, cap))
    return tilt if np.isfinite(tilt) else 0.0


def calculate_sma(closes: pd.Series, period: int) -> Optional[float]:
    """Simple moving average of the last `period` closes, None if too short."""
    if len(closes) < period:
        return None
    return float(closes.iloc[-period:].mean())


def detect_market_regime(
    closes: pd.Series,
    config: Optional[RegimeConfig] = None,
) -> RegimeResult:
    """
    Classify the benchmark regime from trend and short-term volatility.

    - UNKNOWN: fewer than sma_long observations
    - RISK_ON: last > SMA200 and SMA50 > SMA200, no vol spike
    - CAUTION: same trend with 20-day vol above the spike threshold
    - RISK_OFF: otherwise

    Args:
        closes: Benchmark close prices (full or windowed to an as-of date)
        config: Regime parameters

    Returns:
        RegimeResult with the regime and its diagnostics
    """
    config = config or RegimeConfig()

    sma_long = calculate_sma(closes, config.sma_long)
    sma_short = calculate_sma(closes, config.sma_short)
    last_close = float(closes.iloc[-1]) if len(closes) else 0.0

    vol_20 = calculate_realized_volatility(closes, config.volatility_lookback)
    vol_spike = vol_20 > config.vol_spike_threshold

    if sma_long is None or sma_short is None:
        return RegimeResult(
            regime=MarketRegime.UNKNOWN,
            detail="Not enough history",
            vol_20=vol_20,
            vol_spike=vol_spike,
            sma_50=sma_short,
            sma_200=sma_long,
            last_close=last_close,
        )

    above_sma200 = last_close > sma_long
    sma50_above_sma200 = sma_short > sma_long
    risk_on = above_sma200 and sma50_above_sma200

    if risk_on and not vol_spike:
        regime, detail = MarketRegime.RISK_ON, "Benchmark > SMA200 and SMA50 > SMA200"
    elif risk_on:
        regime, detail = MarketRegime.CAUTION, "Risk-on trend but volatility spike"
    else:
        regime, detail = MarketRegime.RISK_OFF, "Benchmark under long-term trend"

    return RegimeResult(
        regime=regime,
        detail=detail,
        vol_20=vol_20,
        vol_spike=vol_spike,
        sma_50=sma_short,
        sma_200=sma_long,
        last_close=last_close,
        above_sma200=above_sma200,
        sma50_above_sma200=sma50_above_sma200,
    )


def calculate_max_drawdown(equity: Iterable[float]) -> float:
    """
    Largest peak-to-trough fractional decline of an equity curve.

    Returns:
        Drawdown as a positive fraction (0.5 = halved from peak)
    """
    values = np.asarray(list(equity), dtype=float)
    if values.size == 0:
        return 0.0

    peaks = np.maximum.accumulate(values)
    with np.errstate(divide="ignore", invalid="ignore"):
        drawdowns = np.where(peaks > 0, (peaks - values) / peaks, 0.0)
    return float(max(0.0, np.nanmax(drawdowns)))


def calculate_sharpe_ratio(
    returns: Sequence[float],
    risk_free_rate: float = 0.0,
    trading_days_year: int = TRADING_DAYS_YEAR,
) -> float:
    """
    Annualized Sharpe ratio of daily simple returns.

    Uses the population standard deviation; 0.0 when volatility is zero.
    """
    arr = np.asarray(list(returns), dtype=float)
    if arr.size < 2:
        return 0.0

    annualized_vol = float(arr.std(ddof=0) * np.sqrt(trading_days_year))
    if annualized_vol <= 0 or not np.isfinite(annualized_vol):
        return 0.0

    daily_rf = risk_free_rate / trading_days_year
    annualized_return = float((arr - daily_rf).mean() * trading_days_year)
    return annualized_return / annualized_vol
