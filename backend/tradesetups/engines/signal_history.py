"""
Trade Setups — Signal History Engine

Walks a full candle history, treats every bar as a candidate P3 of a 123
pattern and resolves each signal against the bars that follow it:

  1. Entry window  the breakout level must be touched within
                   `backtest_entry_window` bars after P3, otherwise the signal
                   EXPIRES untriggered (PENDING if the series ends first).
  2. Resolution    from the trigger bar on, the stop is checked before the
                   target on every bar, so a bar touching both is a FAILURE.
  3. Horizon       unresolved after `backtest_resolution_horizon` bars counted
                   from the trigger bar inclusive → EXPIRED; series ends first
                   → PENDING. A P3+1 trigger expires at P3 + horizon.

With single-position enabled, a triggered signal blocks new signals until the
bar after it resolves; untriggered signals free the next bar immediately.

Usage::

    signals = detect_all_setup_123("PETR4", candles)
    stats = calculate_signal_stats(signals)
"""

from __future__ import annotations

from concurrent.futures import Executor, ProcessPoolExecutor
from typing import Iterable, NamedTuple, Optional, Sequence

import structlog

from tradesetups.config import Settings, get_settings
from tradesetups.engines.indicators import ema_series, macd_series
from tradesetups.engines.setup_123 import matches_pattern_123
from tradesetups.models import (
    Candle,
    HistoricalSignal,
    PatternType,
    SetupType,
    SignalOutcome,
    SignalStats,
)

log = structlog.get_logger(__name__)


class _Resolution(NamedTuple):
    outcome: SignalOutcome
    resolved_index: Optional[int]
    resolved_price: Optional[float]
    triggered: bool


def _evaluate(
    candles: Sequence[Candle],
    p3_index: int,
    is_buy: bool,
    entry: float,
    stop: float,
    target: float,
    entry_window: int,
    horizon: int,
) -> _Resolution:
    n = len(candles)

    trigger = None
    for j in range(p3_index + 1, p3_index + max(1, entry_window) + 1):
        if j >= n:
            return _Resolution(SignalOutcome.PENDING, None, None, False)
        bar = candles[j]
        if (bar.high >= entry) if is_buy else (bar.low <= entry):
            trigger = j
            break

    if trigger is None:
        return _Resolution(SignalOutcome.EXPIRED, p3_index + max(1, entry_window), None, False)

    # The trigger bar is the first of the `horizon` bars inspected.
    last_bar = trigger + max(1, horizon) - 1
    for j in range(trigger, min(n - 1, last_bar) + 1):
        bar = candles[j]
        if (bar.low <= stop) if is_buy else (bar.high >= stop):
            return _Resolution(SignalOutcome.FAILURE, j, stop, True)
        if (bar.high >= target) if is_buy else (bar.low <= target):
            return _Resolution(SignalOutcome.SUCCESS, j, target, True)

    if last_bar < n:
        return _Resolution(SignalOutcome.EXPIRED, last_bar, None, True)
    return _Resolution(SignalOutcome.PENDING, None, None, True)


def _build_signal(
    ticker: str,
    candles: Sequence[Candle],
    p1_index: int,
    pattern_type: PatternType,
    timeframe: str,
    s: Settings,
) -> tuple[HistoricalSignal, int]:
    """Resolved signal plus the first P1 index allowed afterwards."""
    p3_index = p1_index + 2
    c1, c2, c3 = candles[p1_index], candles[p1_index + 1], candles[p3_index]
    is_buy = pattern_type == PatternType.BUY

    if is_buy:
        prices = (c1.low, c2.low, c3.low)
        entry, stop = c3.high, c2.low
        target = entry + (entry - stop) * s.backtest_target_r_multiple
    else:
        prices = (c1.high, c2.high, c3.high)
        entry, stop = c3.low, c2.high
        target = entry - (stop - entry) * s.backtest_target_r_multiple

    res = _evaluate(
        candles, p3_index, is_buy, entry, stop, target,
        s.backtest_entry_window, s.backtest_resolution_horizon,
    )

    signal = HistoricalSignal(
        ticker=ticker.upper(),
        setup_type=SetupType.SETUP_123_BUY if is_buy else SetupType.SETUP_123_SELL,
        timeframe=timeframe,
        signal_time=c3.time,
        direction=pattern_type,
        p1_index=p1_index,
        p2_index=p1_index + 1,
        p3_index=p3_index,
        p1_price=prices[0],
        p2_price=prices[1],
        p3_price=prices[2],
        entry_price=entry,
        stop_price=stop,
        target_price=target,
        outcome=res.outcome,
        resolved_index=res.resolved_index,
        resolved_at=candles[res.resolved_index].time if res.resolved_index is not None else None,
        resolved_price=res.resolved_price,
        candles_to_resolve=res.resolved_index - p3_index if res.resolved_index is not None else None,
    )

    if not res.triggered and res.outcome == SignalOutcome.EXPIRED:
        next_allowed = p3_index + 1
    elif res.resolved_index is not None:
        next_allowed = res.resolved_index + 1
    else:
        next_allowed = len(candles)

    return signal, next_allowed


def detect_all_setup_123(
    ticker: str,
    candles: Sequence[Candle],
    timeframe: str = "1d",
    settings: Optional[Settings] = None,
) -> list[HistoricalSignal]:
    """Every 123 signal in the history, in P3 order, each with its outcome.

    Needs EMA-long defined at P1, so fewer than ema_long_period + 3 candles
    yields [].
    """
    s = settings or get_settings()
    first_p1 = s.ema_long_period - 1
    if len(candles) < s.ema_long_period + 3:
        return []

    closes = [c.close for c in candles]
    ema_short = ema_series(closes, s.ema_short_period)
    ema_long = ema_series(closes, s.ema_long_period)
    macd_points = macd_series(closes, s.macd_fast_period, s.macd_slow_period, s.macd_signal_period)

    signals: list[HistoricalSignal] = []
    next_allowed = 0

    for p1 in range(first_p1, len(candles) - 2):
        if p1 < next_allowed:
            continue

        for pattern_type in (PatternType.BUY, PatternType.SELL):
            if not matches_pattern_123(candles, ema_short, ema_long, macd_points, p1, pattern_type):
                continue
            signal, allowed = _build_signal(ticker, candles, p1, pattern_type, timeframe, s)
            signals.append(signal)
            if s.backtest_single_position:
                next_allowed = allowed
            break

    log.debug(
        "signal_history.scanned",
        ticker=ticker.upper(), timeframe=timeframe,
        candles=len(candles), signals=len(signals),
    )
    return signals


def calculate_signal_stats(signals: Iterable[HistoricalSignal]) -> SignalStats:
    """Tally outcomes. success_rate counts only SUCCESS and FAILURE."""
    counts = {outcome: 0 for outcome in SignalOutcome}
    total = 0
    resolve_sum = 0
    resolve_count = 0

    for signal in signals:
        total += 1
        counts[signal.outcome] += 1
        if signal.candles_to_resolve is not None:
            resolve_sum += signal.candles_to_resolve
            resolve_count += 1

    success = counts[SignalOutcome.SUCCESS]
    failure = counts[SignalOutcome.FAILURE]
    resolved = success + failure

    return SignalStats(
        total=total,
        success=success,
        failure=failure,
        pending=counts[SignalOutcome.PENDING],
        expired=counts[SignalOutcome.EXPIRED],
        success_rate=success / resolved * 100 if resolved else 0.0,
        avg_candles_to_resolve=resolve_sum / resolve_count if resolve_count else 0.0,
    )


def detect_many(
    histories: dict[str, Sequence[Candle]],
    timeframe: str = "1d",
    settings: Optional[Settings] = None,
    executor: Optional[Executor] = None,
    max_workers: Optional[int] = None,
) -> dict[str, list[HistoricalSignal]]:
    """Run detect_all_setup_123 for several tickers in parallel.

    Each worker returns its own list; results are merged per ticker.
    A process pool is used unless an executor is supplied.
    """
    s = settings or get_settings()
    if not histories:
        return {}

    owns_executor = executor is None
    pool = executor or ProcessPoolExecutor(max_workers=max_workers)
    try:
        futures = {
            ticker: pool.submit(detect_all_setup_123, ticker, list(candles), timeframe, s)
            for ticker, candles in histories.items()
        }
        results = {ticker: future.result() for ticker, future in futures.items()}
    finally:
        if owns_executor:
            pool.shutdown()

    log.info(
        "signal_history.batch_done",
        tickers=len(results),
        signals=sum(len(v) for v in results.values()),
    )
    return results
