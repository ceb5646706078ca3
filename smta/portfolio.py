"""
Holdings input for the SMTA signal engine.

Holdings arrive as CSV text: ticker,shares,avg_cost,last_trade_date with an
optional header row. Parsing is lenient: unusable rows are dropped, never
raised on.
"""

import csv
import io
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional, Union

logger = logging.getLogger(__name__)

HEADER_MARKERS = ("ticker", "shares")


@dataclass(frozen=True)
class Holding:
    """A current position as reported by the caller."""

    ticker: str
    shares: float
    average_cost: float = 0.0
    last_trade_date: Optional[date] = None

    def market_value(self, price: float) -> float:
        """Value at the given price."""
        return self.shares * price

    def to_dict(self) -> dict:
        return {
            "ticker": self.ticker,
            "shares": self.shares,
            "avg_cost": self.average_cost,
            "last_trade_date": self.last_trade_date.isoformat() if self.last_trade_date else None,
        }


def _to_float(value: str) -> Optional[float]:
    """Parse a number; empty means 0, garbage means None."""
    value = (value or "").strip()
    if not value:
        return 0.0
    try:
        result = float(value)
    except ValueError:
        return None
    return result if math.isfinite(result) else None


def _to_date(value: str, ticker: str) -> Optional[date]:
    value = (value or "").strip()[:10]
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        logger.warning(f"{ticker}: unparseable last_trade_date '{value}', ignoring")
        return None


def parse_holdings_csv(text: str) -> List[Holding]:
    """
    Parse holdings CSV text.

    Format per line: ticker,shares,avg_cost,last_trade_date. A header is
    detected when the first row contains 'ticker' or 'shares'. Blank lines
    are skipped, tickers upper-cased, rows with non-numeric shares dropped.

    Args:
        text: Raw CSV content

    Returns:
        Holdings in file order (duplicates kept; later rows win downstream)
    """
    lines = [line.strip() for line in (text or "").splitlines() if line.strip()]
    if not lines:
        return []

    rows = [[cell.strip() for cell in row] for row in csv.reader(io.StringIO("\n".join(lines)))]
    first = [cell.lower() for cell in rows[0]]
    if any(marker in first for marker in HEADER_MARKERS):
        rows = rows[1:]

    holdings = []
    for row in rows:
        row = row + [""] * (4 - len(row))
        ticker = row[0].upper()
        if not ticker:
            continue

        shares = _to_float(row[1])
        if shares is None:
            logger.warning(f"{ticker}: non-numeric shares '{row[1]}', row dropped")
            continue

        average_cost = _to_float(row[2]) or 0.0
        holdings.append(
            Holding(
                ticker=ticker,
                shares=shares,
                average_cost=average_cost,
                last_trade_date=_to_date(row[3], ticker),
            )
        )

    return holdings


def load_holdings_csv(path: Union[str, Path]) -> List[Holding]:
    """Read and parse a holdings CSV file."""
    with open(path, encoding="utf-8") as f:
        return parse_holdings_csv(f.read())
