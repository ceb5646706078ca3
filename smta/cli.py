"""
Command-line interface for the SMTA signal engine.

Analytics only: prints the target allocation, trade list and backtest. Trades
are executed manually by the user.
"""

import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import click
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .backtest import BacktestResult
from .config import Config, ConfigurationError, load_config
from .indicators import MarketRegime, RegimeResult
from .logger import DecisionLogger, setup_logger
from .market_data import TiingoClient, UpstreamDataError
from .portfolio import Holding, load_holdings_csv
from .signal_engine import PlanRequest, PlanResult, SignalEngine
from .trade_planner import TradeAction
from .utils import format_currency, format_percentage

console = Console()

REGIME_STYLES = {
    MarketRegime.RISK_ON: "bright_green",
    MarketRegime.CAUTION: "yellow",
    MarketRegime.RISK_OFF: "bright_red",
    MarketRegime.UNKNOWN: "dim",
}

ACTION_STYLES = {
    TradeAction.SELL: "bright_red",
    TradeAction.BUY: "bright_green",
    TradeAction.HOLD: "yellow",
}


class SmtaApp:
    """Shared state and rendering for CLI commands."""

    def __init__(self, config_path: str = "config.yaml", verbose: bool = False):
        self.config_path = config_path
        self.verbose = verbose
        self.config: Optional[Config] = None
        self.decision_logger: Optional[DecisionLogger] = None

    def load(self) -> None:
        """Load configuration and logging, exiting on invalid config."""
        try:
            self.config = load_config(self.config_path, allow_missing=True)
        except (ValidationError, ValueError, yaml.YAMLError) as e:
            console.print(f"[red]Failed to load config: {e}[/red]")
            sys.exit(1)

        level = logging.DEBUG if self.verbose else logging.INFO
        log = setup_logger(log_dir=self.config.paths.log_dir, level=level)
        self.decision_logger = DecisionLogger(log)

    def client(self) -> TiingoClient:
        return TiingoClient.from_config(self.config.tiingo)

    def signal_engine(self) -> SignalEngine:
        return SignalEngine(self.config, self.decision_logger)

    def build_request(
        self,
        holdings: List[Holding],
        universe_mode: Optional[str] = None,
        tickers: Optional[List[str]] = None,
        **overrides,
    ) -> PlanRequest:
        if tickers and not universe_mode:
            universe_mode = "custom"
        return PlanRequest.from_config(
            self.config,
            holdings=holdings,
            universe_mode=universe_mode,
            custom_tickers=tickers,
            **overrides,
        )

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def show_regime(self, regime: RegimeResult) -> None:
        style = REGIME_STYLES[regime.regime]
        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_row("Regime", f"[{style}]{regime.regime.value.upper()}[/{style}]")
        table.add_row("Detail", regime.detail)
        table.add_row("20d Vol", format_percentage(regime.vol_20))
        table.add_row("Vol Spike", "yes" if regime.vol_spike else "no")
        if regime.sma_200 is not None:
            table.add_row("Last / SMA50 / SMA200", f"{regime.last_close:.2f} / {regime.sma_50:.2f} / {regime.sma_200:.2f}")
        console.print(table)

    def show_target(self, result: PlanResult) -> None:
        if not result.target:
            console.print("[yellow]No eligible instruments; target allocation is empty.[/yellow]")
            return

        table = Table(title="Target Allocation", show_header=True, header_style="bold")
        table.add_column("Ticker", style="cyan")
        table.add_column("Weight", justify="right")
        table.add_column("Score", justify="right")
        table.add_column("Vol", justify="right")
        table.add_column("Seasonality", justify="right")
        for pos in result.target:
            table.add_row(
                pos.ticker,
                f"{pos.weight:.2%}",
                f"{pos.score:+.4f}",
                f"{pos.volatility:.1%}",
                f"{pos.seasonality:+.4f}",
            )
        console.print(table)
        console.print(f"[dim]{result.target[0].rationale}[/dim]")

    def show_trades(self, result: PlanResult) -> None:
        if not result.trades:
            console.print("[green]No trades needed (all deltas inside the no-trade band).[/green]")
            return

        table = Table(title="Trades", show_header=True, header_style="bold")
        table.add_column("Action")
        table.add_column("Ticker", style="cyan")
        table.add_column("Shares", justify="right")
        table.add_column("Price", justify="right")
        table.add_column("Value", justify="right")
        table.add_column("Reason")
        for trade in result.trades:
            style = ACTION_STYLES[trade.action]
            table.add_row(
                f"[{style}]{trade.action.value}[/{style}]",
                trade.ticker,
                str(trade.shares),
                f"{trade.price:,.2f}",
                format_currency(trade.estimated_value),
                trade.reason,
            )
        console.print(table)

    def show_backtest(self, backtest: BacktestResult) -> None:
        metrics = backtest.metrics
        if not backtest.daily:
            console.print("[yellow]Not enough common history to backtest.[/yellow]")
            return

        table = Table(title=f"Backtest {metrics.period.start} -> {metrics.period.end} ({metrics.period.years:.2f}y)")
        table.add_column("Metric", style="cyan")
        table.add_column("Strategy", justify="right")
        table.add_column("Benchmark", justify="right")

        s, b = metrics.strategy, metrics.benchmark
        cagr_color = "bright_green" if s.cagr > b.cagr else "yellow"
        table.add_row("Total Return", format_percentage(s.total_return), format_percentage(b.total_return))
        table.add_row("CAGR", f"[{cagr_color}]{format_percentage(s.cagr)}[/{cagr_color}]", format_percentage(b.cagr))
        table.add_row("Volatility", format_percentage(s.volatility), format_percentage(b.volatility))
        table.add_row("Sharpe", f"{s.sharpe:.2f}", f"{b.sharpe:.2f}")
        table.add_row("Max Drawdown", format_percentage(-s.max_drawdown), format_percentage(-b.max_drawdown))
        console.print(table)

        activity = metrics.activity
        console.print(
            f"[dim]{activity.rebalances} rebalances, avg turnover {activity.avg_turnover:.1%}, "
            f"slippage {activity.slippage_bps:g} bps[/dim]"
        )

    def show_plan(self, result: PlanResult) -> None:
        console.print(Panel(f"SMTA Plan as of {result.as_of}", style="bright_blue"))
        self.show_regime(result.regime)

        summary = Table(show_header=False, box=None, padding=(0, 2))
        summary.add_row("Next Rebalance", str(result.next_rebalance))
        summary.add_row("Hold Estimate", f"~{result.hold_estimate_days} days")
        summary.add_row("Effective Capital", format_currency(result.effective_capital))
        summary.add_row("Holdings Value", format_currency(result.current_holdings_value))
        summary.add_row("Defensive", ", ".join(result.defensive_tickers))
        console.print(summary)

        self.show_target(result)
        self.show_trades(result)
        for warning in result.warnings:
            console.print(f"[yellow]Warning: {warning}[/yellow]")
        if result.backtest:
            self.show_backtest(result.backtest)


def _split_tickers(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    return [t for t in value.replace(" ", ",").split(",") if t]


def _fail(message: str) -> None:
    console.print(f"[red]{message}[/red]")
    sys.exit(1)


@click.group()
@click.option("--config", "-c", default="config.yaml", help="Config file path")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx, config, verbose):
    """SMTA Signal Engine - momentum allocation, trade plan and backtest."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose


def _plan_options(func):
    """Options shared by plan and backtest."""
    options = [
        click.option("--universe", "universe_mode", type=click.Choice(["etf", "stocks", "custom"]), help="Universe preset"),
        click.option("--tickers", help="Comma-separated tickers for the custom universe"),
        click.option("--cadence", type=click.Choice(["weekly", "monthly"]), help="Rebalance cadence"),
        click.option("--top-n", type=int, help="Number of holdings (1-8)"),
        click.option("--slippage-bps", type=float, help="Slippage per unit turnover, in bps"),
        click.option("--defensive", help="Comma-separated defensive tickers (filtered to the universe)"),
        click.option("--min-momentum", type=float, help="Score below which selection falls back to defensive"),
        click.option("--target-vol", type=float, help="Target annualized volatility (0.05-0.30)"),
        click.option("--seasonality-weight", type=float, help="Weight of the seasonality tilt (0-0.20)"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@cli.command()
@_plan_options
@click.option("--holdings", "holdings_path", type=click.Path(exists=True, dir_okay=False), help="Holdings CSV")
@click.option("--capital", type=float, help="Capital to allocate")
@click.option("--no-trade-pct", type=float, help="Weight delta, in percent, below which no trade is planned")
@click.option("--min-hold-days", type=int, help="Calendar days before a position may be reduced")
@click.option("--no-backtest", is_flag=True, help="Skip the walk-forward backtest")
@click.option("--json", "json_path", type=click.Path(dir_okay=False), help="Also write the plan as JSON")
@click.pass_context
def plan(ctx, universe_mode, tickers, defensive, holdings_path, no_backtest, json_path, **overrides):
    """Build the target allocation and trade list."""
    app = SmtaApp(ctx.obj["config_path"], ctx.obj["verbose"])
    app.load()

    holdings = load_holdings_csv(holdings_path) if holdings_path else []
    try:
        request = app.build_request(
            holdings,
            universe_mode=universe_mode,
            tickers=_split_tickers(tickers),
            defensive_tickers=_split_tickers(defensive),
            **overrides,
        )
        with console.status("[cyan]Fetching price history...[/cyan]"):
            result = app.signal_engine().generate(request, app.client(), include_backtest=not no_backtest)
    except (ConfigurationError, UpstreamDataError) as e:
        _fail(str(e))
    except ValidationError as e:
        _fail(f"Invalid plan parameters: {e}")

    app.show_plan(result)

    if json_path:
        Path(json_path).write_text(json.dumps(result.to_dict(), indent=2))
        console.print(f"[dim]Plan written to {json_path}[/dim]")


@cli.command()
@_plan_options
@click.pass_context
def backtest(ctx, universe_mode, tickers, defensive, **overrides):
    """Run the walk-forward backtest only."""
    app = SmtaApp(ctx.obj["config_path"], ctx.obj["verbose"])
    app.load()

    try:
        request = app.build_request(
            [],
            universe_mode=universe_mode,
            tickers=_split_tickers(tickers),
            defensive_tickers=_split_tickers(defensive),
            **overrides,
        )
        with console.status("[cyan]Fetching price history...[/cyan]"):
            result = app.signal_engine().generate(request, app.client())
    except (ConfigurationError, UpstreamDataError) as e:
        _fail(str(e))
    except ValidationError as e:
        _fail(f"Invalid plan parameters: {e}")

    console.print(Panel(f"Backtest ({request.cadence}, top {request.top_n})", style="bright_blue"))
    app.show_backtest(result.backtest)


@cli.command()
@click.pass_context
def regime(ctx):
    """Show the current benchmark regime."""
    app = SmtaApp(ctx.obj["config_path"], ctx.obj["verbose"])
    app.load()

    try:
        result = app.signal_engine().current_regime(app.client())
    except (ConfigurationError, UpstreamDataError) as e:
        _fail(str(e))

    console.print(Panel(f"Regime ({app.config.universe.benchmark})", style="bright_blue"))
    app.show_regime(result)


@cli.command()
@click.pass_context
def health(ctx):
    """Show configuration status."""
    app = SmtaApp(ctx.obj["config_path"], ctx.obj["verbose"])
    app.load()

    cfg = app.config
    table = Table(show_header=False, box=None, padding=(0, 2))
    token_status = "[green]configured[/green]" if cfg.has_token else "[red]missing[/red]"
    table.add_row("Tiingo token", token_status)
    table.add_row("Universe", cfg.universe.mode)
    table.add_row("Benchmark", cfg.universe.benchmark)
    table.add_row("Cadence", cfg.rebalancing.cadence)
    table.add_row("Log dir", cfg.paths.log_dir)
    console.print(table)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
