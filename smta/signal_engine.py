"""
Plan orchestration for the SMTA signal engine.

One invocation: fetch history -> allocate for the latest session -> plan
trades against current holdings -> walk-forward backtest. Nothing is kept
between invocations.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

import pandas as pd
from pydantic import BaseModel, Field, field_validator, model_validator

from .backtest import BacktestConfig, BacktestEngine, BacktestResult
from .config import Config, validate_cadence
from .indicators import RegimeResult
from .logger import DecisionLogger
from .market_data import TiingoClient, UpstreamDataError, fetch_price_history, latest_closes
from .momentum_engine import AllocationParams, MomentumEngine, TargetPosition
from .portfolio import Holding
from .trade_planner import PlannedTrade, TradePlanner
from .universe import (
    default_top_n,
    normalize_tickers,
    resolve_defensive_tickers,
    resolve_universe,
)
from .utils import next_rebalance_date

logger = logging.getLogger(__name__)


class PlanRequest(BaseModel):
    """Validated inputs for one plan."""

    universe: List[str] = Field(min_length=1, description="Resolved tradable tickers")
    defensive_tickers: List[str] = Field(default_factory=list)
    benchmark: str = Field(default="SPY")
    cadence: str = Field(default="weekly")
    top_n: int = Field(default=3, ge=1, le=8)
    min_momentum: float = Field(default=0.0)
    target_vol: float = Field(default=0.12, ge=0.05, le=0.30)
    seasonality_weight: float = Field(default=0.05, ge=0.0, le=0.20)
    slippage_bps: float = Field(default=5.0, ge=0, le=50)
    no_trade_pct: float = Field(default=5.0, ge=0, le=25)
    min_hold_days: int = Field(default=10, ge=0, le=90)
    capital: float = Field(default=100000, ge=0, le=1e9)
    holdings: List[Holding] = Field(default_factory=list)

    model_config = {"frozen": True}

    @field_validator("universe", "defensive_tickers")
    @classmethod
    def clean_tickers(cls, v: List[str]) -> List[str]:
        return normalize_tickers(v)

    @field_validator("benchmark")
    @classmethod
    def upper_benchmark(cls, v: str) -> str:
        return v.upper().strip()

    @field_validator("cadence")
    @classmethod
    def check_cadence(cls, v: str) -> str:
        return validate_cadence(v)

    @model_validator(mode="before")
    @classmethod
    def resolve_defensive(cls, data: Any) -> Any:
        """Filter defensive tickers to the universe, defaulting when none survive."""
        if isinstance(data, dict) and data.get("universe"):
            universe = normalize_tickers(data["universe"])
            defensive = resolve_defensive_tickers(universe, data.get("defensive_tickers"))
            data = {**data, "defensive_tickers": defensive}
        return data

    @model_validator(mode="after")
    def check_membership(self) -> "PlanRequest":
        if self.benchmark in self.universe:
            raise ValueError(f"benchmark {self.benchmark} is reserved and cannot be in the universe")
        return self

    @classmethod
    def from_config(
        cls,
        config: Config,
        holdings: Optional[List[Holding]] = None,
        universe_mode: Optional[str] = None,
        custom_tickers: Optional[List[str]] = None,
        **overrides: Any,
    ) -> "PlanRequest":
        """
        Merge config defaults, caller overrides and holdings.

        Overrides set to None are ignored, so CLI options can be passed
        through unconditionally.

        Raises:
            ConfigurationError: Unknown universe mode or empty universe
            pydantic.ValidationError: Out-of-range values
        """
        mode = universe_mode or config.universe.mode
        benchmark = config.universe.benchmark
        universe = resolve_universe(mode, custom_tickers or config.universe.custom_tickers, benchmark)
        defensive = resolve_defensive_tickers(universe, config.universe.defensive_tickers)

        values: Dict[str, Any] = {
            "universe": universe,
            "defensive_tickers": defensive,
            "benchmark": benchmark,
            "cadence": config.rebalancing.cadence,
            "top_n": config.strategy.top_n or default_top_n(mode),
            "min_momentum": config.strategy.min_momentum,
            "target_vol": config.strategy.target_vol,
            "seasonality_weight": config.strategy.seasonality_weight,
            "slippage_bps": config.costs.slippage_bps,
            "no_trade_pct": config.rebalancing.no_trade_pct,
            "min_hold_days": config.rebalancing.min_hold_days,
            "capital": config.portfolio.capital,
            "holdings": list(holdings or []),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def allocation_params(self) -> AllocationParams:
        return AllocationParams(
            top_n=self.top_n,
            min_momentum=self.min_momentum,
            target_vol=self.target_vol,
            seasonality_weight=self.seasonality_weight,
            defensive_tickers=tuple(self.defensive_tickers),
        )


@dataclass
class PlanResult:
    """Everything one plan invocation produces."""

    as_of: date
    regime: RegimeResult
    next_rebalance: date
    hold_estimate_days: int
    universe: List[str]
    defensive_tickers: List[str]
    target: List[TargetPosition]
    trades: List[PlannedTrade]
    effective_capital: float
    current_holdings_value: float
    backtest: Optional[BacktestResult] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "as_of": self.as_of.isoformat(),
            "next_rebalance": self.next_rebalance.isoformat(),
            "hold_estimate_days": self.hold_estimate_days,
            "regime": self.regime.to_dict(),
            "universe": list(self.universe),
            "defensive_tickers": list(self.defensive_tickers),
            "target": [p.to_dict() for p in self.target],
            "trades": [t.to_dict() for t in self.trades],
            "effective_capital": self.effective_capital,
            "current_holdings_value": self.current_holdings_value,
            "backtest": self.backtest.to_dict() if self.backtest else None,
            "warnings": list(self.warnings),
        }


class SignalEngine:
    """Runs allocation, trade planning and backtest for one request."""

    def __init__(
        self,
        config: Optional[Config] = None,
        decision_logger: Optional[DecisionLogger] = None,
    ):
        self.config = config or Config()
        self.engine = MomentumEngine(self.config)
        self.decision_logger = decision_logger

    def fetch(
        self,
        request: PlanRequest,
        client: TiingoClient,
        today: Optional[date] = None,
    ) -> Dict[str, pd.DataFrame]:
        """Fetch universe plus benchmark history ending today."""
        today = today or date.today()
        start = today - timedelta(days=self.config.tiingo.history_days)
        tickers = [*request.universe, request.benchmark]
        return fetch_price_history(client, tickers, start, today, self.config.tiingo.max_workers)

    def run(
        self,
        request: PlanRequest,
        store: Dict[str, pd.DataFrame],
        include_backtest: bool = True,
    ) -> PlanResult:
        """
        Build the plan from an already-fetched SeriesStore.

        Args:
            request: Validated plan inputs
            store: Ticker -> price frame, must contain the benchmark
            include_backtest: Run the walk-forward backtest as well

        Returns:
            PlanResult

        Raises:
            UpstreamDataError: Benchmark history missing
        """
        benchmark = store.get(request.benchmark)
        if benchmark is None or benchmark.empty:
            raise UpstreamDataError(
                f"No benchmark data for {request.benchmark}.", request.benchmark, 404
            )

        as_of = benchmark.index[-1].date()
        params = request.allocation_params()

        allocation = self.engine.allocate(store, request.universe, benchmark, params, as_of)
        if self.decision_logger:
            self.decision_logger.log_regime(allocation.regime, as_of)
            self.decision_logger.log_selection(allocation)
            self.decision_logger.log_allocation(
                allocation.weights, allocation.vol_scale, allocation.portfolio_volatility
            )

        prices = latest_closes(store, request.universe)
        planner = TradePlanner(request.no_trade_pct, request.min_hold_days, self.decision_logger)
        plan = planner.build_plan(allocation.weights, prices, request.holdings, request.capital, as_of)

        backtest = None
        if include_backtest:
            bt_config = BacktestConfig.from_config(
                self.config, cadence=request.cadence, slippage_bps=request.slippage_bps
            )
            bt_config.benchmark = request.benchmark
            backtest = BacktestEngine(
                self.engine, store, request.universe, params, bt_config, self.decision_logger
            ).run()

        return PlanResult(
            as_of=as_of,
            regime=allocation.regime,
            next_rebalance=next_rebalance_date(as_of, request.cadence),
            hold_estimate_days=self.engine.estimate_hold_days(allocation),
            universe=list(request.universe),
            defensive_tickers=list(request.defensive_tickers),
            target=allocation.target,
            trades=plan.trades,
            effective_capital=plan.effective_capital,
            current_holdings_value=plan.current_value,
            backtest=backtest,
            warnings=plan.warnings,
        )

    def generate(
        self,
        request: PlanRequest,
        client: TiingoClient,
        today: Optional[date] = None,
        include_backtest: bool = True,
    ) -> PlanResult:
        """Fetch history and build the plan. The client is closed afterwards."""
        with client:
            store = self.fetch(request, client, today)
        return self.run(request, store, include_backtest)

    def current_regime(
        self,
        client: TiingoClient,
        benchmark: Optional[str] = None,
        today: Optional[date] = None,
    ) -> RegimeResult:
        """Fetch the benchmark and classify its regime. The client is closed afterwards."""
        benchmark = benchmark or self.config.universe.benchmark
        today = today or date.today()
        start = today - timedelta(days=self.config.tiingo.history_days)
        with client:
            prices = client.get_daily_prices(benchmark, start, today)
        return self.engine.detect_regime(prices)
