"""
Trade Setups — Yahoo Finance Candle Source

Fetches OHLCV history through yfinance and converts it to Candle models.
Bare B3 tickers (PETR4, VALE3...) get the ".SA" suffix Yahoo expects.
Failures are logged and reported as None so batch jobs can keep going.
"""

from __future__ import annotations

import math
from typing import Optional, Protocol

import structlog
import yfinance as yf

from tradesetups.models import Candle

log = structlog.get_logger(__name__)

# timeframe → (yfinance interval, bars per year used to size the period)
_INTERVALS: dict[str, tuple[str, int]] = {
    "1d": ("1d", 252),
    "1wk": ("1wk", 52),
    "1mo": ("1mo", 12),
    "60m": ("60m", 252 * 7),
    "1h": ("60m", 252 * 7),
}

# Yahoo only serves hourly bars for the last ~730 days.
_INTRADAY_MAX_PERIOD = "730d"


class CandleSource(Protocol):
    def get_candles(self, ticker: str, limit: int = 500, timeframe: str = "1d") -> Optional[list[Candle]]:
        ...


def to_yahoo_symbol(ticker: str) -> str:
    """PETR4 → PETR4.SA; symbols that already carry a suffix pass through."""
    normalized = ticker.upper().strip()
    if "." in normalized:
        return normalized
    return f"{normalized}.SA"


def _period_for(timeframe: str, limit: int) -> str:
    interval, per_year = _INTERVALS[timeframe]
    if interval == "60m":
        return _INTRADAY_MAX_PERIOD
    years = math.ceil(limit / per_year) + 1
    return "max" if years > 10 else f"{years}y"


def _valid(value) -> bool:
    return value is not None and not math.isnan(value) and value != 0


class YahooCandleSource:
    """CandleSource backed by yfinance."""

    def get_candles(self, ticker: str, limit: int = 500, timeframe: str = "1d") -> Optional[list[Candle]]:
        if timeframe not in _INTERVALS:
            log.warning("yahoo_candles.unsupported_timeframe", ticker=ticker, timeframe=timeframe)
            return None

        symbol = to_yahoo_symbol(ticker)
        interval, _ = _INTERVALS[timeframe]

        try:
            df = yf.Ticker(symbol).history(period=_period_for(timeframe, limit), interval=interval)
        except Exception as exc:
            log.error("yahoo_candles.fetch_failed", ticker=symbol, error=str(exc))
            return None

        if df is None or df.empty:
            log.warning("yahoo_candles.empty", ticker=symbol, timeframe=timeframe)
            return None

        candles: list[Candle] = []
        for idx, row in df.sort_index().iterrows():
            close = row.get("Close")
            if not _valid(close):
                continue
            # Today's partial bar can arrive with empty open/high/low.
            volume = row.get("Volume")
            candles.append(
                Candle(
                    time=idx.to_pydatetime(),
                    open=row["Open"] if _valid(row.get("Open")) else close,
                    high=row["High"] if _valid(row.get("High")) else close,
                    low=row["Low"] if _valid(row.get("Low")) else close,
                    close=close,
                    volume=float(volume) if volume is not None and not math.isnan(volume) else 0.0,
                )
            )

        if not candles:
            log.warning("yahoo_candles.empty", ticker=symbol, timeframe=timeframe)
            return None

        candles = candles[-limit:]
        log.info(
            "yahoo_candles.fetched",
            ticker=symbol, timeframe=timeframe, count=len(candles),
            first=candles[0].time.isoformat(), last=candles[-1].time.isoformat(),
        )
        return candles
