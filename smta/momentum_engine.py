"""
Momentum allocation engine for the SMTA signal engine.

Turns a SeriesStore into a target allocation:
- Per-instrument features (momentum, realized vol, seasonality tilt)
- Regime-dependent selection (defensive / blended / top momentum)
- Minimum-momentum gate with defensive fallback
- Inverse-volatility sizing with a target-vol scale

The same engine serves the live plan and every historical rebalance in the
backtest, so both paths share one selection rule.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .config import AllocationConfig, Config
from .indicators import (
    MarketRegime,
    MomentumResult,
    RegimeResult,
    calculate_momentum_score,
    calculate_realized_volatility,
    calculate_seasonality_tilt,
    detect_market_regime,
)
from .utils import clamp, normalize_weights, round_half_up, round_weights

logger = logging.getLogger(__name__)

RATIONALE_RISK_OFF = "Risk-off: allocate into defensive leaders (momentum + vol)."
RATIONALE_CAUTION = "Caution: blend defensive + top risk assets due to volatility spike."
RATIONALE_RISK_ON = "Risk-on: allocate into top momentum assets (with vol sizing)."
RATIONALE_GATE = " Minimum-momentum gate tripped; shifted to defensive."


@dataclass
class FeatureRecord:
    """Computed features for one instrument at one as-of date."""

    ticker: str
    momentum: MomentumResult
    volatility: float   # Annualized realized vol
    seasonality: float  # Month-of-year tilt in [-cap, cap]
    score: float        # momentum.score + seasonality_weight * seasonality


@dataclass
class TargetPosition:
    """One line of the target allocation."""

    ticker: str
    weight: float
    volatility: float
    score: float
    momentum: MomentumResult
    seasonality: float
    rationale: str

    def to_dict(self) -> dict:
        return {
            "ticker": self.ticker,
            "weight": self.weight,
            "vol": self.volatility,
            "score": self.score,
            "mom": self.momentum.to_dict(),
            "seasonality": self.seasonality,
            "rationale": self.rationale,
        }


@dataclass
class AllocationResult:
    """
    Output of one allocation pass.

    raw_weights are unrounded and used by the backtest; target carries the
    rounded weights shown to the caller.
    """

    regime: RegimeResult
    selected: List[FeatureRecord] = field(default_factory=list)
    target: List[TargetPosition] = field(default_factory=list)
    raw_weights: Dict[str, float] = field(default_factory=dict)
    rationale: str = ""
    gate_tripped: bool = False
    portfolio_volatility: float = 0.0
    vol_scale: float = 1.0

    @property
    def weights(self) -> Dict[str, float]:
        """Rounded target weights by ticker."""
        return {p.ticker: p.weight for p in self.target}

    @property
    def is_empty(self) -> bool:
        return not self.target


@dataclass(frozen=True)
class AllocationParams:
    """Caller-controlled selection knobs for one allocation."""

    top_n: int = 3
    min_momentum: float = 0.0
    target_vol: float = 0.12
    seasonality_weight: float = 0.05
    defensive_tickers: Tuple[str, ...] = ()


def inverse_volatility_weights(
    volatilities: Sequence[float],
    min_vol: float = 0.05,
    max_vol: float = 1.5,
) -> List[float]:
    """
    Weights proportional to 1 / clamp(vol, min_vol, max_vol), summing to 1.

    Args:
        volatilities: Annualized volatility per instrument
        min_vol: Floor applied before inversion
        max_vol: Cap applied before inversion

    Returns:
        Normalized weights in input order (empty for empty input)
    """
    inverse = [1.0 / clamp(v, min_vol, max_vol) for v in volatilities]
    total = sum(inverse) or 1.0
    return [x / total for x in inverse]


def estimate_portfolio_volatility(weights: Sequence[float], volatilities: Sequence[float]) -> float:
    """sqrt(sum((w * vol)^2)), i.e. zero-correlation portfolio volatility."""
    total = sum((w * v) ** 2 for w, v in zip(weights, volatilities))
    result = float(np.sqrt(total))
    return result if np.isfinite(result) else 0.0


def calculate_vol_scale(
    target_vol: float,
    portfolio_vol: float,
    floor: float = 0.5,
    cap: float = 1.25,
) -> float:
    """
    Exposure scale toward the target volatility.

    Returns clamp(target_vol / portfolio_vol, floor, cap), or 1.0 when either
    input is non-positive.
    """
    if portfolio_vol <= 0 or target_vol <= 0:
        return 1.0
    return clamp(target_vol / portfolio_vol, floor, cap)


class MomentumEngine:
    """
    Feature computation, regime-aware selection and position sizing.

    Stateless between calls: every method reads only its arguments and the
    configuration captured at construction.
    """

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config()
        self.features_config = self.config.features
        self.allocation_config: AllocationConfig = self.config.allocation

    # ------------------------------------------------------------------
    # Features
    # ------------------------------------------------------------------

    def calculate_features(
        self,
        ticker: str,
        prices: pd.DataFrame,
        as_of: date,
        seasonality_weight: float = 0.05,
    ) -> Optional[FeatureRecord]:
        """
        Compute features for one instrument.

        Returns:
            FeatureRecord, or None if the series is shorter than min_history
        """
        fc = self.features_config
        if prices is None or len(prices) < fc.min_history:
            return None

        closes = prices["close"]
        momentum = calculate_momentum_score(
            closes,
            lookbacks=(fc.lookback_1m, fc.lookback_3m, fc.lookback_6m, fc.lookback_12m),
            weights=(fc.weight_1m, fc.weight_3m, fc.weight_6m, fc.weight_12m),
            acceleration_weight=fc.acceleration_weight,
        )
        volatility = calculate_realized_volatility(
            closes, fc.volatility_lookback, fc.trading_days_year
        )
        seasonality = calculate_seasonality_tilt(closes, as_of, fc.seasonality_cap)

        return FeatureRecord(
            ticker=ticker,
            momentum=momentum,
            volatility=volatility,
            seasonality=seasonality,
            score=momentum.score + seasonality_weight * seasonality,
        )

    def compute_features(
        self,
        store: Dict[str, pd.DataFrame],
        tickers: Sequence[str],
        as_of: date,
        seasonality_weight: float = 0.05,
    ) -> List[FeatureRecord]:
        """
        Compute features for every eligible ticker, ranked by score.

        Tickers missing from the store or with short history are skipped.
        The sort is stable, so ties keep universe order.
        """
        features = []
        for ticker in tickers:
            record = self.calculate_features(ticker, store.get(ticker), as_of, seasonality_weight)
            if record is None:
                logger.debug(f"{ticker}: insufficient history, skipped")
                continue
            features.append(record)

        features.sort(key=lambda f: f.score, reverse=True)
        return features

    def detect_regime(self, benchmark: pd.DataFrame) -> RegimeResult:
        """Classify the benchmark regime from its close series."""
        return detect_market_regime(benchmark["close"], self.config.regime)

    # ------------------------------------------------------------------
    # Selection and sizing
    # ------------------------------------------------------------------

    def select(
        self,
        ranked: List[FeatureRecord],
        regime: RegimeResult,
        params: AllocationParams,
    ) -> Tuple[List[FeatureRecord], str, bool]:
        """
        Pick instruments for the regime, then apply the momentum gate.

        Args:
            ranked: Features sorted by score descending
            regime: Benchmark regime
            params: Selection knobs

        Returns:
            Tuple of (selected features, rationale, gate_tripped)
        """
        top_n = params.top_n
        defensive_set = set(params.defensive_tickers)
        defensive = [f for f in ranked if f.ticker in defensive_set]

        if regime.regime == MarketRegime.RISK_OFF:
            selected = defensive[:top_n]
            rationale = RATIONALE_RISK_OFF
        elif regime.regime == MarketRegime.CAUTION:
            def_pick = defensive[: max(1, top_n // 2)]
            risk = [f for f in ranked if f.ticker not in defensive_set]
            risk_pick = risk[: max(1, top_n - len(def_pick))]
            selected = (def_pick + risk_pick)[:top_n]
            rationale = RATIONALE_CAUTION
        else:
            # risk_on and unknown both rank the whole universe
            selected = ranked[:top_n]
            rationale = RATIONALE_RISK_ON

        gate_tripped = False
        if any(f.score < params.min_momentum for f in selected):
            fallback = defensive[:top_n]
            if fallback:
                selected = fallback
                rationale += RATIONALE_GATE
                gate_tripped = True

        return selected, rationale, gate_tripped

    def size_positions(
        self,
        selected: List[FeatureRecord],
        target_vol: float,
    ) -> Tuple[List[float], float, float]:
        """
        Inverse-vol weights scaled toward the target volatility.

        Returns:
            Tuple of (weights in selection order, portfolio vol, vol scale)
        """
        ac = self.allocation_config
        vols = [f.volatility for f in selected]

        base = inverse_volatility_weights(vols, ac.min_volatility, ac.max_volatility)
        portfolio_vol = estimate_portfolio_volatility(base, vols)
        scale = calculate_vol_scale(target_vol, portfolio_vol, ac.vol_scale_floor, ac.vol_scale_cap)

        # Fully invested: the scale is renormalized away and only reported
        scaled = [w * scale for w in base]
        total = sum(scaled) or 1.0
        return [w / total for w in scaled], portfolio_vol, scale

    def allocate(
        self,
        store: Dict[str, pd.DataFrame],
        universe: Sequence[str],
        benchmark: pd.DataFrame,
        params: AllocationParams,
        as_of: Optional[date] = None,
    ) -> AllocationResult:
        """
        Run features, regime, selection and sizing for one as-of date.

        Args:
            store: Ticker -> price frame, already windowed to as_of
            universe: Tradable tickers (benchmark excluded)
            benchmark: Benchmark price frame, windowed to as_of
            params: Selection knobs
            as_of: Date whose calendar month drives seasonality
                   (defaults to the benchmark's last date)

        Returns:
            AllocationResult; empty target when nothing qualifies
        """
        if as_of is None:
            as_of = benchmark.index[-1].date()

        regime = self.detect_regime(benchmark)
        ranked = self.compute_features(store, universe, as_of, params.seasonality_weight)
        selected, rationale, gate_tripped = self.select(ranked, regime, params)

        if not selected:
            return AllocationResult(regime=regime, rationale=rationale)

        weights, portfolio_vol, scale = self.size_positions(selected, params.target_vol)
        raw_weights = {f.ticker: w for f, w in zip(selected, weights)}
        rounded = round_weights(normalize_weights(raw_weights), self.allocation_config.weight_decimals)

        target = [
            TargetPosition(
                ticker=f.ticker,
                weight=rounded[f.ticker],
                volatility=round(f.volatility, 4),
                score=round(f.score, 6),
                momentum=f.momentum,
                seasonality=round(f.seasonality, 6),
                rationale=rationale,
            )
            for f in selected
        ]

        return AllocationResult(
            regime=regime,
            selected=selected,
            target=target,
            raw_weights=raw_weights,
            rationale=rationale,
            gate_tripped=gate_tripped,
            portfolio_volatility=portfolio_vol,
            vol_scale=scale,
        )

    def estimate_hold_days(self, allocation: AllocationResult) -> int:
        """
        Heuristic holding period from the top-ranked selection's score.

        round(clamp(12 + score * 180, 10, 90)), or 21 with no selection.
        """
        ac = self.allocation_config
        if not allocation.selected:
            return ac.hold_fallback_days

        days = ac.hold_base_days + allocation.selected[0].score * ac.hold_score_multiplier
        return round_half_up(clamp(days, ac.hold_min_days, ac.hold_max_days))
