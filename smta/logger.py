"""
Structured logging for the SMTA signal engine.

Every regime call, selection, trade and backtest summary is written as one
pipe-delimited line so a plan can be reconstructed from the log alone.
"""

import logging
from datetime import date, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional

from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from .backtest import BacktestMetrics
    from .indicators import RegimeResult
    from .momentum_engine import AllocationResult
    from .trade_planner import RebalancePlan


def setup_logger(
    name: str = "smta",
    log_dir: str = "logs",
    level: int = logging.INFO,
    console_output: bool = True,
    file_output: bool = True,
) -> logging.Logger:
    """
    Configure structured logging with file and console output.

    Args:
        name: Logger name
        log_dir: Directory for log files
        level: Logging level
        console_output: Whether to output to console
        file_output: Whether to write a dated log file

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Clear existing handlers
    logger.handlers.clear()

    if file_output:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        today = datetime.now().strftime("%Y-%m-%d")
        file_handler = logging.FileHandler(
            log_path / f"smta_{today}.log",
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_format = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        file_handler.setFormatter(file_format)
        logger.addHandler(file_handler)

    # Console handler with Rich
    if console_output:
        console = Console(stderr=True)
        console_handler = RichHandler(
            console=console,
            rich_tracebacks=True,
            show_time=True,
            show_path=False,
        )
        console_handler.setLevel(level)
        logger.addHandler(console_handler)

    return logger


def get_logger(name: str = "smta") -> logging.Logger:
    """Get existing logger by name."""
    return logging.getLogger(name)


class DecisionLogger:
    """Logs plan decisions with full context for audit."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or get_logger()

    def log_regime(self, regime: "RegimeResult", as_of: date) -> None:
        """Log benchmark regime classification."""
        self.logger.info(
            f"REGIME | date={as_of} | {regime.regime.value} | "
            f"vol20={regime.vol_20:.2%} | spike={regime.vol_spike} | {regime.detail}"
        )

    def log_selection(self, allocation: "AllocationResult") -> None:
        """Log which instruments were selected and why."""
        self.logger.info(
            f"SELECTION | regime={allocation.regime.regime.value} | "
            f"selected={[f.ticker for f in allocation.selected]} | "
            f"gate_tripped={allocation.gate_tripped}"
        )
        for ticker, weight in allocation.weights.items():
            self.logger.debug(f"  {ticker:<8} weight={weight:.4f}")

    def log_allocation(self, weights: Dict[str, float], vol_scale: float, portfolio_vol: float) -> None:
        """Log final target weights."""
        rounded = {t: round(w, 4) for t, w in weights.items()}
        self.logger.info(
            f"ALLOCATION | port_vol={portfolio_vol:.2%} | vol_scale={vol_scale:.2f} | "
            f"weights={rounded}"
        )

    def log_plan(self, plan: "RebalancePlan") -> None:
        """Log trade plan summary and each trade."""
        self.logger.info(
            f"REBALANCE | effective_capital={plan.effective_capital:,.0f} | "
            f"holdings_value={plan.current_value:,.0f} | "
            f"sells={len(plan.sell_trades)} | buys={len(plan.buy_trades)} | "
            f"holds={len(plan.hold_trades)}"
        )
        for trade in plan.trades:
            self.logger.info(
                f"TRADE | {trade.action.value} | {trade.ticker} | qty={trade.shares} | "
                f"price={trade.price:.2f} | {trade.reason}"
            )

    def log_rebalance(self, as_of: date, turnover: float, weights: Dict[str, float]) -> None:
        """Log a simulated rebalance inside the backtest."""
        self.logger.debug(
            f"BT_REBALANCE | date={as_of} | turnover={turnover:.4f} | "
            f"tickers={sorted(weights)}"
        )

    def log_backtest(self, metrics: "BacktestMetrics") -> None:
        """Log backtest summary statistics."""
        self.logger.info(
            f"BACKTEST | {metrics.period.start} -> {metrics.period.end} | "
            f"strategy_cagr={metrics.strategy.cagr:.2%} | "
            f"benchmark_cagr={metrics.benchmark.cagr:.2%} | "
            f"rebalances={metrics.activity.rebalances}"
        )

    def log_warnings(self, warnings: List[str]) -> None:
        """Log non-fatal plan warnings."""
        for warning in warnings:
            self.logger.warning(f"WARNING | {warning}")
