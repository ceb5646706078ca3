"""
Walk-forward backtest for the SMTA signal engine.

Enforces:
- No look-ahead: every rebalance sees only rows dated on or before it
- Backtest and live plan use the same MomentumEngine.allocate
- Deterministic for identical inputs

Replays the strategy on common trading dates, charging slippage on turnover,
and compares it with a buy-and-hold of the benchmark.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .config import Config, validate_cadence
from .indicators import calculate_max_drawdown, calculate_sharpe_ratio
from .logger import DecisionLogger
from .momentum_engine import AllocationParams, MomentumEngine
from .utils import population_std

logger = logging.getLogger(__name__)

MIN_REBALANCE_DATES = 10


@dataclass
class BacktestConfig:
    """Configuration for a backtest run."""

    cadence: str = "weekly"
    slippage_bps: float = 5.0
    warmup_days: int = 260
    active_turnover_threshold: float = 0.0001
    feature_window: int = 900
    benchmark_window: int = 400
    window_padding: int = 20
    benchmark: str = "SPY"
    trading_days_year: int = 252

    def __post_init__(self):
        self.cadence = validate_cadence(self.cadence)

    @classmethod
    def from_config(
        cls,
        config: Config,
        cadence: Optional[str] = None,
        slippage_bps: Optional[float] = None,
    ) -> "BacktestConfig":
        """Build from app config; explicit arguments win over config values."""
        wf = config.backtest
        return cls(
            cadence=cadence or config.rebalancing.cadence,
            slippage_bps=config.costs.slippage_bps if slippage_bps is None else slippage_bps,
            warmup_days=wf.warmup_days,
            active_turnover_threshold=wf.active_turnover_threshold,
            feature_window=wf.feature_window,
            benchmark_window=wf.benchmark_window,
            window_padding=wf.window_padding,
            benchmark=config.universe.benchmark,
            trading_days_year=config.features.trading_days_year,
        )


@dataclass
class DailyPoint:
    """Strategy and benchmark equity at the close of one day."""

    date: date
    strategy: float
    benchmark: float


@dataclass
class PerformanceStats:
    """Summary statistics for one equity curve."""

    total_return: float = 0.0
    cagr: float = 0.0
    volatility: float = 0.0
    sharpe: float = 0.0
    max_drawdown: float = 0.0

    def to_dict(self) -> dict:
        return {
            "total_return": self.total_return,
            "cagr": self.cagr,
            "vol": self.volatility,
            "sharpe": self.sharpe,
            "max_drawdown": self.max_drawdown,
        }


@dataclass
class BacktestPeriod:
    start: Optional[date] = None
    end: Optional[date] = None
    years: float = 0.0

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "years": self.years,
        }


@dataclass
class ActivitySummary:
    """Rebalance activity over the run."""

    rebalances: int = 0      # Rebalances with turnover above the threshold
    avg_turnover: float = 0.0
    slippage_bps: float = 0.0

    def to_dict(self) -> dict:
        return {
            "rebalances": self.rebalances,
            "avg_turnover": self.avg_turnover,
            "slippage_bps": self.slippage_bps,
        }


@dataclass
class BacktestMetrics:
    period: BacktestPeriod
    strategy: PerformanceStats
    benchmark: PerformanceStats
    activity: ActivitySummary

    def to_dict(self) -> dict:
        return {
            "period": self.period.to_dict(),
            "strategy": self.strategy.to_dict(),
            "benchmark": self.benchmark.to_dict(),
            "activity": self.activity.to_dict(),
        }


@dataclass
class RebalanceRecord:
    """Record of a single rebalance decision for the trail log."""

    date: date
    regime: str
    weights: Dict[str, float]
    turnover: float
    slippage_cost: float
    active: bool

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "regime": self.regime,
            "weights": {t: round(w, 6) for t, w in self.weights.items()},
            "turnover": self.turnover,
            "slippage_cost": self.slippage_cost,
            "active": self.active,
        }


@dataclass
class BacktestResult:
    """Results of a backtest run."""

    daily: List[DailyPoint]
    metrics: BacktestMetrics
    rebalance_trail: List[RebalanceRecord] = field(default_factory=list)

    @property
    def equity_curve(self) -> pd.DataFrame:
        """Strategy and benchmark equity indexed by date."""
        return pd.DataFrame(
            {
                "strategy": [p.strategy for p in self.daily],
                "benchmark": [p.benchmark for p in self.daily],
            },
            index=pd.DatetimeIndex([pd.Timestamp(p.date) for p in self.daily], name="date"),
        )

    def to_dict(self) -> dict:
        return {
            "daily": [
                {"date": p.date.isoformat(), "strategy": p.strategy, "benchmark": p.benchmark}
                for p in self.daily
            ],
            "metrics": self.metrics.to_dict(),
            "rebalance_trail": [r.to_dict() for r in self.rebalance_trail],
        }


def align_series(
    store: Dict[str, pd.DataFrame],
    tickers: Sequence[str],
) -> Tuple[pd.DatetimeIndex, pd.DataFrame]:
    """
    Intersect trading dates across tickers.

    Args:
        store: Ticker -> price frame
        tickers: Tickers to align (a missing ticker empties the result)

    Returns:
        Tuple of (common dates ascending, closes frame on those dates)
    """
    common: Optional[pd.DatetimeIndex] = None
    for ticker in tickers:
        df = store.get(ticker)
        index = df.index if df is not None else pd.DatetimeIndex([])
        common = index if common is None else common.intersection(index)

    if common is None:
        common = pd.DatetimeIndex([])
    common = common.sort_values()

    closes = pd.DataFrame(
        {t: store[t]["close"].reindex(common) if t in store else np.nan for t in tickers},
        index=common,
    )
    return common, closes


def pick_rebalance_dates(dates: pd.DatetimeIndex, cadence: str) -> List[pd.Timestamp]:
    """
    Last trading date of each calendar month or ISO week.

    The final date is always included. Fewer than 10 dates yields none.

    Args:
        dates: Trading dates
        cadence: 'weekly' or 'monthly'

    Returns:
        Rebalance dates ascending
    """
    dates = pd.DatetimeIndex(dates).sort_values()
    if len(dates) < MIN_REBALANCE_DATES:
        return []

    if cadence == "monthly":
        keys = np.asarray(dates.year * 100 + dates.month, dtype=np.int64)
    else:
        iso = dates.isocalendar()
        keys = iso["year"].to_numpy(dtype="int64") * 100 + iso["week"].to_numpy(dtype="int64")

    # Last date of every key run, plus the final date
    is_last = np.append(keys[1:] != keys[:-1], True)
    return list(dates[is_last])


def window_series(
    df: pd.DataFrame,
    end: pd.Timestamp,
    lookback: int,
    padding: int = 20,
) -> pd.DataFrame:
    """
    Rows up to and including `end`, at most lookback + padding + 1 of them.

    Rows after `end` are never returned; an `end` before the first row gives
    an empty frame.
    """
    end_idx = int(df.index.searchsorted(pd.Timestamp(end), side="right")) - 1
    if end_idx < 0:
        return df.iloc[0:0]
    start_idx = max(0, end_idx - (lookback + padding))
    return df.iloc[start_idx : end_idx + 1]


class BacktestEngine:
    """
    Walk-forward replay of the allocation rule.

    At each rebalance date the engine re-runs MomentumEngine.allocate on
    series windowed to that date, charges slippage on half the absolute
    weight change, then holds the weights until the next rebalance.
    """

    def __init__(
        self,
        engine: MomentumEngine,
        historical_data: Dict[str, pd.DataFrame],
        universe: Sequence[str],
        params: AllocationParams,
        config: Optional[BacktestConfig] = None,
        decision_logger: Optional[DecisionLogger] = None,
    ):
        """
        Initialize backtest engine.

        Args:
            engine: Allocation engine shared with the live plan
            historical_data: SeriesStore including the benchmark
            universe: Tradable tickers (benchmark excluded)
            params: Selection knobs, as for the live plan
            config: Replay parameters
            decision_logger: Optional audit logger
        """
        self.engine = engine
        self.data = historical_data
        self.universe = list(universe)
        self.params = params
        self.config = config or BacktestConfig()
        self.decision_logger = decision_logger

    def _allocate_at(self, as_of: pd.Timestamp):
        """Allocation using only data available at as_of."""
        cfg = self.config
        benchmark = window_series(
            self.data[cfg.benchmark], as_of, cfg.benchmark_window, cfg.window_padding
        )
        windowed = {
            t: window_series(self.data[t], as_of, cfg.feature_window, cfg.window_padding)
            for t in self.universe
            if t in self.data
        }
        return self.engine.allocate(windowed, self.universe, benchmark, self.params, as_of.date())

    def run(self) -> BacktestResult:
        """
        Run the backtest simulation.

        Returns:
            BacktestResult with daily equity, metrics and rebalance trail
        """
        cfg = self.config
        tickers = list(dict.fromkeys([cfg.benchmark, *self.universe]))
        common, closes = align_series(self.data, tickers)

        dates = common[cfg.warmup_days:]
        rebalance_dates = set(pick_rebalance_dates(dates, cfg.cadence))
        logger.info(
            f"Backtest: {len(dates)} dates after warm-up, "
            f"{len(rebalance_dates)} {cfg.cadence} rebalance dates"
        )

        prices = closes.loc[dates].to_numpy(dtype=float) if len(dates) else np.empty((0, len(tickers)))
        column = {t: i for i, t in enumerate(tickers)}
        bench_col = column[cfg.benchmark]

        equity = 1.0
        bench_equity = 1.0
        weights: Dict[str, float] = {}
        daily: List[DailyPoint] = []
        trail: List[RebalanceRecord] = []
        turnover_sum = 0.0
        active_count = 0

        for i in range(1, len(dates)):
            d = dates[i]

            if d in rebalance_dates:
                allocation = self._allocate_at(d)
                new_weights = allocation.raw_weights

                changed = set(weights) | set(new_weights)
                turnover = 0.5 * sum(abs(new_weights.get(t, 0.0) - weights.get(t, 0.0)) for t in changed)
                active = bool(turnover > cfg.active_turnover_threshold)
                turnover_sum += turnover
                if active:
                    active_count += 1

                slippage = (cfg.slippage_bps / 10000) * turnover
                equity *= 1 - slippage

                trail.append(
                    RebalanceRecord(
                        date=d.date(),
                        regime=allocation.regime.regime.value,
                        weights=dict(new_weights),
                        turnover=turnover,
                        slippage_cost=slippage,
                        active=active,
                    )
                )
                if self.decision_logger:
                    self.decision_logger.log_rebalance(d.date(), turnover, new_weights)

                weights = new_weights

            prev_row = prices[i - 1]
            row = prices[i]

            day_return = 0.0
            for ticker, weight in weights.items():
                col = column[ticker]
                if prev_row[col] > 0 and row[col] > 0:
                    day_return += weight * (row[col] / prev_row[col] - 1)
            equity *= 1 + day_return

            if prev_row[bench_col] > 0 and row[bench_col] > 0:
                bench_equity *= row[bench_col] / prev_row[bench_col]

            daily.append(DailyPoint(date=d.date(), strategy=equity, benchmark=bench_equity))

        metrics = self._calculate_metrics(daily, turnover_sum, active_count)
        if self.decision_logger:
            self.decision_logger.log_backtest(metrics)

        return BacktestResult(daily=daily, metrics=metrics, rebalance_trail=trail)

    def _performance(self, equity: List[float], years: float) -> PerformanceStats:
        """Stats for one equity curve starting from 1.0."""
        tdy = self.config.trading_days_year
        final = equity[-1] if equity else 1.0

        if final > 0:
            cagr = final ** (1 / max(years, 1e-4)) - 1
        else:
            cagr = -1.0

        returns = [cur / prev - 1 for prev, cur in zip(equity, equity[1:]) if prev > 0]
        vol = population_std(returns) * np.sqrt(tdy)
        sharpe = calculate_sharpe_ratio(returns, trading_days_year=tdy)

        return PerformanceStats(
            total_return=final - 1,
            cagr=float(cagr),
            volatility=float(vol),
            sharpe=float(sharpe),
            max_drawdown=calculate_max_drawdown(equity),
        )

    def _calculate_metrics(
        self,
        daily: List[DailyPoint],
        turnover_sum: float,
        active_count: int,
    ) -> BacktestMetrics:
        """Calculate performance metrics."""
        years = (len(daily) or 1) / self.config.trading_days_year

        period = BacktestPeriod(
            start=daily[0].date if daily else None,
            end=daily[-1].date if daily else None,
            years=round(years, 2),
        )
        activity = ActivitySummary(
            rebalances=active_count,
            avg_turnover=turnover_sum / active_count if active_count else turnover_sum,
            slippage_bps=self.config.slippage_bps,
        )

        return BacktestMetrics(
            period=period,
            strategy=self._performance([p.strategy for p in daily], years),
            benchmark=self._performance([p.benchmark for p in daily], years),
            activity=activity,
        )
