"""
Trade Setups — Indicator Library

Pure functions computing technical indicators over candle sequences.
Every indicator is available as a point value (latest bar) and as an
IndicatorSeries aligned 1:1 with the input, None-padded during warm-up.

Short input never raises: point forms return None, series forms are
all-None. Nothing is cached between calls.

Indicators:
  Trend:      SMA, EMA (SMA-seeded), MACD (line / signal / histogram)
  Volatility: True Range, ATR (rolling mean of TR), ATR%
  Volume:     Volume ratio vs. trailing average
  Momentum:   RSI, Mystic Pulse (DI+/DI- persistence counters with gamma intensity)
"""

from __future__ import annotations

import math
from collections import deque
from itertools import accumulate
from typing import Callable, NamedTuple, Optional, Sequence, TypeVar, Union, overload

import numpy as np
import pandas as pd

from tradesetups.models import Candle, MACDPoint, MysticPulseResult

T = TypeVar("T")


# ──────────────────────────────────────────────
# Series container
# ──────────────────────────────────────────────

class IndicatorSeries(Sequence[T]):
    """Indicator values aligned with the input bars.

    Values are computed on first access and can be iterated any number of
    times. The input is snapshotted by the producing function, so later
    mutation of the caller's list does not leak in.
    """

    def __init__(self, compute: Callable[[], list[T]]):
        self._compute = compute
        self._values: Optional[list[T]] = None

    def _materialize(self) -> list[T]:
        if self._values is None:
            self._values = self._compute()
        return self._values

    @overload
    def __getitem__(self, index: int) -> T: ...

    @overload
    def __getitem__(self, index: slice) -> list[T]: ...

    def __getitem__(self, index: Union[int, slice]):
        return self._materialize()[index]

    def __len__(self) -> int:
        return len(self._materialize())

    def __iter__(self):
        return iter(self._materialize())

    def __eq__(self, other) -> bool:
        if isinstance(other, IndicatorSeries):
            return self._materialize() == other._materialize()
        if isinstance(other, list):
            return self._materialize() == other
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"IndicatorSeries({self._materialize()!r})"

    def last(self) -> Optional[T]:
        values = self._materialize()
        return values[-1] if values else None

    def to_list(self) -> list[T]:
        return list(self._materialize())


def _nan_to_none(arr) -> list[Optional[float]]:
    return [None if np.isnan(v) else float(v) for v in arr]


# ──────────────────────────────────────────────
# Moving Averages
# ──────────────────────────────────────────────

def sma_series(values: Sequence[float], period: int) -> IndicatorSeries[Optional[float]]:
    """Simple moving average. None for indices < period - 1."""
    data = np.asarray(values, dtype=float)

    def compute() -> list[Optional[float]]:
        if period <= 0 or len(data) < period:
            return [None] * len(data)
        return _nan_to_none(pd.Series(data).rolling(period).mean().to_numpy())

    return IndicatorSeries(compute)


def sma(values: Sequence[float], period: int) -> Optional[float]:
    if period <= 0 or len(values) < period:
        return None
    return float(np.mean(np.asarray(values[-period:], dtype=float)))


def ema_series(values: Sequence[float], period: int) -> IndicatorSeries[Optional[float]]:
    """Exponential moving average seeded with the SMA of the first `period` values.

    ema[i] = value[i] * k + ema[i-1] * (1 - k), k = 2 / (period + 1).
    """
    data = [float(v) for v in values]

    def compute() -> list[Optional[float]]:
        if period <= 0 or len(data) < period:
            return [None] * len(data)

        k = 2 / (period + 1)
        result: list[Optional[float]] = [None] * (period - 1)
        current = sum(data[:period]) / period
        result.append(current)
        for value in data[period:]:
            current = value * k + current * (1 - k)
            result.append(current)
        return result

    return IndicatorSeries(compute)


def ema(values: Sequence[float], period: int) -> Optional[float]:
    return ema_series(values, period).last()


# ──────────────────────────────────────────────
# MACD
# ──────────────────────────────────────────────

def macd_series(
    values: Sequence[float],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> IndicatorSeries[MACDPoint]:
    """MACD line, signal line and histogram per bar.

    The signal EMA runs over the defined part of the MACD line only and is
    mapped back onto the original indices.
    """
    data = [float(v) for v in values]

    def compute() -> list[MACDPoint]:
        if len(data) < slow:
            return [MACDPoint() for _ in data]

        fast_ema = ema_series(data, fast)
        slow_ema = ema_series(data, slow)
        line = [
            f - s if f is not None and s is not None else None
            for f, s in zip(fast_ema, slow_ema)
        ]

        signal_values = iter(ema_series([m for m in line if m is not None], signal))

        points: list[MACDPoint] = []
        for m in line:
            if m is None:
                points.append(MACDPoint())
                continue
            sig = next(signal_values)
            points.append(MACDPoint(
                macd=m,
                signal=sig,
                histogram=None if sig is None else m - sig,
            ))
        return points

    return IndicatorSeries(compute)


def macd(
    values: Sequence[float],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> MACDPoint:
    return macd_series(values, fast, slow, signal).last() or MACDPoint()


# ──────────────────────────────────────────────
# Volatility
# ──────────────────────────────────────────────

def true_range(current: Candle, previous: Optional[Candle]) -> float:
    """max(high - low, |high - prev close|, |low - prev close|)."""
    high_low = current.high - current.low
    if previous is None:
        return high_low
    return max(
        high_low,
        abs(current.high - previous.close),
        abs(current.low - previous.close),
    )


def atr_series(candles: Sequence[Candle], period: int = 14) -> IndicatorSeries[Optional[float]]:
    """Rolling mean of the true range over `period` samples.

    True range needs a previous close, so the first defined value sits at
    index `period`.
    """
    bars = list(candles)

    def compute() -> list[Optional[float]]:
        if period <= 0 or len(bars) < period + 1:
            return [None] * len(bars)

        h = np.array([b.high for b in bars], dtype=float)
        l = np.array([b.low for b in bars], dtype=float)
        c = np.array([b.close for b in bars], dtype=float)

        prev_close = np.roll(c, 1)
        tr = np.maximum.reduce([h - l, np.abs(h - prev_close), np.abs(l - prev_close)])
        tr[0] = np.nan

        return _nan_to_none(pd.Series(tr).rolling(period).mean().to_numpy())

    return IndicatorSeries(compute)


def atr(candles: Sequence[Candle], period: int = 14) -> Optional[float]:
    return atr_series(candles, period).last()


def atr_percent(candles: Sequence[Candle], period: int = 14) -> Optional[float]:
    """ATR as a percentage of the last close, comparable across price levels."""
    value = atr(candles, period)
    if value is None:
        return None
    last_close = candles[-1].close
    if last_close == 0:
        return None
    return value / last_close * 100


# ──────────────────────────────────────────────
# Volume
# ──────────────────────────────────────────────

def average_volume(candles: Sequence[Candle], period: int = 20) -> Optional[float]:
    if period <= 0 or len(candles) < period:
        return None
    return float(np.mean([c.volume for c in candles[-period:]]))


def volume_ratio(candles: Sequence[Candle], period: int = 20) -> Optional[float]:
    """Current volume over the average of the `period` bars before it."""
    if not candles:
        return None
    avg = average_volume(candles[:-1], period)
    if avg is None or avg == 0:
        return None
    return candles[-1].volume / avg


# ──────────────────────────────────────────────
# RSI
# ──────────────────────────────────────────────

def rsi(values: Sequence[float], period: int = 14) -> Optional[float]:
    """Relative Strength Index over the last `period` changes (simple averages).

    100 when there are no losses in the window.
    """
    if period <= 0 or len(values) < period + 1:
        return None

    changes = np.diff(np.asarray(values, dtype=float))[-period:]
    avg_gain = changes[changes > 0].sum() / period
    avg_loss = -changes[changes < 0].sum() / period

    if avg_loss == 0:
        return 100.0
    return float(100 - 100 / (1 + avg_gain / avg_loss))


# ──────────────────────────────────────────────
# Mystic Pulse
# ──────────────────────────────────────────────

class _PulseState(NamedTuple):
    prev_di_plus: Optional[float]
    prev_di_minus: Optional[float]
    positive_count: int
    negative_count: int


_INITIAL_PULSE = _PulseState(None, None, 0, 0)


def _not_falling(current: float, previous: float) -> bool:
    # A DI pinned at a constant level by a steady trend keeps counting.
    return current > previous or math.isclose(current, previous, rel_tol=1e-9, abs_tol=1e-12)


def directional_indices(candles: Sequence[Candle], adx_length: int = 9) -> list[tuple[float, float]]:
    """(DI+, DI-) for every bar after the first, Wilder-smoothed over `adx_length`.

    Smoothing uses the running-sum RMA form seeded with the first sample:
    s = s - s / n + x.
    """
    smooth_tr: Optional[float] = None
    smooth_dm_plus = 0.0
    smooth_dm_minus = 0.0
    result: list[tuple[float, float]] = []

    for prev, cur in zip(candles, candles[1:]):
        up_move = cur.high - prev.high
        down_move = prev.low - cur.low
        tr = true_range(cur, prev)
        dm_plus = up_move if up_move > down_move and up_move > 0 else 0.0
        dm_minus = down_move if down_move > up_move and down_move > 0 else 0.0

        if smooth_tr is None:
            smooth_tr, smooth_dm_plus, smooth_dm_minus = tr, dm_plus, dm_minus
        else:
            smooth_tr = smooth_tr - smooth_tr / adx_length + tr
            smooth_dm_plus = smooth_dm_plus - smooth_dm_plus / adx_length + dm_plus
            smooth_dm_minus = smooth_dm_minus - smooth_dm_minus / adx_length + dm_minus

        if smooth_tr == 0:
            result.append((0.0, 0.0))
        else:
            result.append((smooth_dm_plus / smooth_tr * 100, smooth_dm_minus / smooth_tr * 100))

    return result


def _count_step(state: _PulseState, di: tuple[float, float]) -> _PulseState:
    di_plus, di_minus = di
    positive, negative = state.positive_count, state.negative_count

    if state.prev_di_plus is not None and state.prev_di_minus is not None:
        if _not_falling(di_plus, state.prev_di_plus) and di_plus > di_minus:
            positive, negative = positive + 1, 0
        elif _not_falling(di_minus, state.prev_di_minus) and di_minus > di_plus:
            positive, negative = 0, negative + 1

    return _PulseState(di_plus, di_minus, positive, negative)


def _is_bullish(score: int, di_plus: float, di_minus: float) -> bool:
    # A zero score (no persistent run either way) falls back to the dominant DI.
    if score != 0:
        return score > 0
    return di_plus >= di_minus


def gamma_intensity(value: float, lo: float, hi: float, gamma: float) -> float:
    """Min-max normalise `value` into [0, 1] and apply gamma correction."""
    if hi == lo:
        return 0.0
    norm = min(1.0, max(0.0, (value - lo) / (hi - lo)))
    return norm ** gamma


def mystic_pulse_series(
    candles: Sequence[Candle],
    adx_length: int = 9,
    collect_length: int = 100,
    gamma: float = 0.7,
) -> IndicatorSeries[Optional[MysticPulseResult]]:
    """Mystic Pulse state at every bar.

    Element i equals mystic_pulse(candles[:i + 1], ...); bars with fewer than
    adx_length + 2 candles of history are None.
    """
    bars = list(candles)

    def compute() -> list[Optional[MysticPulseResult]]:
        results: list[Optional[MysticPulseResult]] = [None] * len(bars)
        if len(bars) < 2:
            return results

        states = accumulate(directional_indices(bars, adx_length), _count_step, initial=_INITIAL_PULSE)
        next(states)  # initial accumulator

        window: deque[int] = deque(maxlen=max(1, collect_length))
        for bar_index, state in enumerate(states, start=1):
            score = state.positive_count - state.negative_count
            window.append(abs(score))
            if bar_index + 1 < adx_length + 2:
                continue

            results[bar_index] = MysticPulseResult(
                di_plus=state.prev_di_plus,
                di_minus=state.prev_di_minus,
                positive_count=state.positive_count,
                negative_count=state.negative_count,
                trend_score=score,
                intensity=gamma_intensity(abs(score), min(window), max(window), gamma),
                is_bullish=_is_bullish(score, state.prev_di_plus, state.prev_di_minus),
            )
        return results

    return IndicatorSeries(compute)


def mystic_pulse(
    candles: Sequence[Candle],
    adx_length: int = 9,
    collect_length: int = 100,
    gamma: float = 0.7,
) -> Optional[MysticPulseResult]:
    """Mystic Pulse at the latest bar, or None with fewer than adx_length + 2 candles."""
    if len(candles) < adx_length + 2:
        return None
    return mystic_pulse_series(candles, adx_length, collect_length, gamma).last()
