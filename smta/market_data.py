"""
Market data provider for the SMTA signal engine.

Fetches end-of-day price history from the Tiingo REST API and normalizes it
into price frames (DatetimeIndex, columns close / raw_close / volume).

Enforces:
- Adjusted close preferred, raw close as fallback
- Dates unique and ascending
- First failing ticker aborts the whole batch
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import date
from typing import Any, Dict, Iterable, Optional, Sequence
from urllib.parse import quote

import numpy as np
import pandas as pd
import requests

from .config import ConfigurationError, TiingoConfig
from .utils import rate_limit

logger = logging.getLogger(__name__)

PRICE_COLUMNS = ["close", "raw_close", "volume"]
MIN_TOKEN_LENGTH = 8


class UpstreamDataError(Exception):
    """Raised when the price source fails or returns no usable data."""

    def __init__(self, message: str, ticker: Optional[str] = None, status: int = 502):
        super().__init__(message)
        self.ticker = ticker
        self.status = status


def prices_from_records(records: Iterable[Dict[str, Any]]) -> pd.DataFrame:
    """
    Build a price frame from Tiingo daily rows.

    Rows without a date or a finite close are dropped; duplicate dates keep
    the last row.

    Args:
        records: Dicts with date, adjClose, close, volume

    Returns:
        DataFrame indexed by date with close, raw_close, volume
    """
    df = pd.DataFrame(list(records))
    if df.empty or "date" not in df.columns:
        return pd.DataFrame(columns=PRICE_COLUMNS, index=pd.DatetimeIndex([], name="date"))

    for col in ("adjClose", "close", "volume"):
        if col not in df.columns:
            df[col] = np.nan

    raw_close = pd.to_numeric(df["close"], errors="coerce")
    adj_close = pd.to_numeric(df["adjClose"], errors="coerce")

    out = pd.DataFrame(
        {
            "date": pd.to_datetime(df["date"].astype(str).str[:10], errors="coerce"),
            "close": adj_close.where(np.isfinite(adj_close), raw_close),
            "raw_close": raw_close,
            "volume": pd.to_numeric(df["volume"], errors="coerce").fillna(0.0),
        }
    )
    out = out[out["date"].notna() & np.isfinite(out["close"])]

    out = out.set_index("date").sort_index()
    out = out[~out.index.duplicated(keep="last")]
    return out[PRICE_COLUMNS]


class TiingoClient:
    """
    Tiingo end-of-day price client.

    The API token is passed in explicitly; this class never reads the
    environment.
    """

    def __init__(
        self,
        api_token: str,
        base_url: str = "https://api.tiingo.com",
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the client.

        Raises:
            ConfigurationError: If the token is missing or too short
        """
        if not api_token or len(api_token.strip()) < MIN_TOKEN_LENGTH:
            raise ConfigurationError(
                "Missing Tiingo API token. Set TIINGO_TOKEN or tiingo.api_token in config.yaml."
            )
        self.api_token = api_token.strip()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})

    @classmethod
    def from_config(cls, config: TiingoConfig, session: Optional[requests.Session] = None) -> "TiingoClient":
        return cls(config.api_token, config.base_url, config.timeout, session=session)

    def close(self) -> None:
        """Release pooled HTTP connections."""
        self.session.close()

    def __enter__(self) -> "TiingoClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @rate_limit(calls=5, period=1.0)
    def get_daily_prices(self, ticker: str, start: date, end: date) -> pd.DataFrame:
        """
        Fetch daily price history for one ticker.

        Args:
            ticker: Instrument symbol
            start: First date (inclusive)
            end: Last date (inclusive)

        Returns:
            Price frame with at least one row

        Raises:
            UpstreamDataError: HTTP failure, non-JSON body or empty series
        """
        url = f"{self.base_url}/tiingo/daily/{quote(ticker)}/prices"
        params = {
            "startDate": start.isoformat(),
            "endDate": end.isoformat(),
            "token": self.api_token,
            "resampleFreq": "daily",
            "columns": "date,adjClose,close,volume",
        }

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise UpstreamDataError(f"Tiingo request failed for {ticker}: {e}", ticker, 502) from e

        if not response.ok:
            raise UpstreamDataError(
                f"Tiingo error for {ticker}: HTTP {response.status_code} - {response.text[:200]}",
                ticker,
                502,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamDataError(f"Tiingo returned non-JSON for {ticker}", ticker, 502) from e

        if not isinstance(payload, list) or not payload:
            raise UpstreamDataError(f"No Tiingo data for {ticker}.", ticker, 404)

        prices = prices_from_records(payload)
        if prices.empty:
            raise UpstreamDataError(f"No Tiingo data for {ticker}.", ticker, 404)

        logger.debug(f"{ticker}: {len(prices)} rows {prices.index[0].date()} -> {prices.index[-1].date()}")
        return prices


def fetch_price_history(
    client: TiingoClient,
    tickers: Sequence[str],
    start: date,
    end: date,
    max_workers: int = 4,
) -> Dict[str, pd.DataFrame]:
    """
    Fetch price history for many tickers with bounded concurrency.

    Args:
        client: Price client
        tickers: Tickers to fetch (duplicates fetched once)
        start: First date
        end: Last date
        max_workers: Maximum concurrent requests

    Returns:
        SeriesStore (ticker -> price frame) in input ticker order

    Raises:
        UpstreamDataError: From the first ticker that fails
    """
    unique = list(dict.fromkeys(tickers))
    fetched: Dict[str, pd.DataFrame] = {}

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        futures = {
            executor.submit(client.get_daily_prices, ticker, start, end): ticker
            for ticker in unique
        }
        try:
            for future in as_completed(futures):
                ticker = futures[future]
                fetched[ticker] = future.result()
        except Exception:
            for pending in futures:
                pending.cancel()
            raise

    logger.info(f"Fetched price history for {len(fetched)} tickers ({start} -> {end})")
    return {ticker: fetched[ticker] for ticker in unique}


def latest_closes(store: Dict[str, pd.DataFrame], tickers: Iterable[str]) -> Dict[str, float]:
    """Last close per ticker, skipping tickers without data."""
    prices = {}
    for ticker in tickers:
        df = store.get(ticker)
        if df is None or df.empty:
            continue
        prices[ticker] = float(df["close"].iloc[-1])
    return prices

