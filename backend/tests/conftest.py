"""
Shared candle builders.

The 123 fixtures use accelerating trends so the MACD histogram keeps a clear
sign; a straight line would settle the MACD line on a constant and leave the
histogram at float noise.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from tradesetups.config import get_settings
from tradesetups.models import Candle

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _bar(i: int, close: float, high: float, low: float, volume: float = 1_000_000.0) -> Candle:
    return Candle(
        time=BASE_TIME + timedelta(days=i),
        open=close,
        high=high,
        low=low,
        close=close,
        volume=volume,
    )


def growth(i: int) -> float:
    return 100 * 1.01 ** i


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def make_candles():
    """Candles from closes with a symmetric high/low spread."""
    def _make(closes, spread: float = 1.0, volumes=None):
        return [
            _bar(i, c, c + spread, c - spread, volumes[i] if volumes else 1_000_000.0)
            for i, c in enumerate(closes)
        ]
    return _make


@pytest.fixture
def buy_123_candles():
    """Exponential uptrend whose only low-V sits at P1=84, P2=85, P3=86.

    `dips` adds more V bottoms (low = 0.97 x close), `overrides` replaces bars
    with (close, high, low).
    """
    def _make(n: int = 100, dips=(85,), overrides=None):
        bars = []
        for i in range(n):
            c = growth(i)
            low = c * (0.97 if i in dips else 0.995)
            bars.append(_bar(i, c, c * 1.005, low))
        for i, (close, high, low) in (overrides or {}).items():
            bars[i] = _bar(i, close, high, low)
        return bars[:n]
    return _make


@pytest.fixture
def sell_123_candles():
    """Accelerating decline whose only high-peak sits at P1=84, P2=85, P3=86."""
    def _make(n: int = 90):
        bars = []
        for i in range(n):
            c = 300 - growth(i)
            high = c + (5.0 if i == 85 else 0.5)
            bars.append(_bar(i, c, high, c - 0.5))
        return bars
    return _make
