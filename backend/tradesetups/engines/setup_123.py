"""
Trade Setups — Setup 123 Detector

Three consecutive candles forming a reversal in the direction of the trend:

  BUY  (EMA8 > EMA80 at P3): low[P2] < low[P1] and low[P3] > low[P2],
       MACD histogram at P3 > 0. Entry on the break of high[P3], stop low[P2].
  SELL (EMA8 < EMA80 at P3): high[P2] > high[P1] and high[P3] < high[P2],
       MACD histogram at P3 < 0. Entry on the break of low[P3], stop high[P2].

The live detector prefers the most recent pattern matching the current trend
and falls back to the opposite side. The same match rule drives the
historical scan in signal_history.
"""

from __future__ import annotations

from typing import Optional, Sequence

from tradesetups.config import Settings, get_settings
from tradesetups.engines.indicators import ema_series, macd_series
from tradesetups.models import (
    Candle,
    MACDPoint,
    Pattern123,
    PatternType,
    RiskLevel,
    SetupResult,
    SetupStatus,
)


def matches_pattern_123(
    candles: Sequence[Candle],
    ema_short: Sequence[Optional[float]],
    ema_long: Sequence[Optional[float]],
    macd_points: Sequence[MACDPoint],
    p1_index: int,
    pattern_type: PatternType,
) -> bool:
    """True when candles p1..p1+2 form a confirmed 123 of the given type."""
    p3_index = p1_index + 2
    short, long = ema_short[p3_index], ema_long[p3_index]
    if short is None or long is None:
        return False

    c1, c2, c3 = candles[p1_index], candles[p1_index + 1], candles[p3_index]
    hist = macd_points[p3_index].histogram

    if pattern_type == PatternType.BUY:
        return (
            short > long
            and c2.low < c1.low
            and c3.low > c2.low
            and hist is not None
            and hist > 0
        )

    return (
        short < long
        and c2.high > c1.high
        and c3.high < c2.high
        and hist is not None
        and hist < 0
    )


def find_pattern_123(
    candles: Sequence[Candle],
    ema_short: Sequence[Optional[float]],
    ema_long: Sequence[Optional[float]],
    macd_points: Sequence[MACDPoint],
    last_index: int,
    pattern_type: PatternType,
    lookback: int = 100,
) -> Optional[Pattern123]:
    """Most recent pattern of `pattern_type`, scanning P1 from last_index - 2
    back to last_index - lookback."""
    start = max(0, last_index - lookback)
    for p1 in range(last_index - 2, start - 1, -1):
        if matches_pattern_123(candles, ema_short, ema_long, macd_points, p1, pattern_type):
            return Pattern123(p1_index=p1, p2_index=p1 + 1, p3_index=p1 + 2, type=pattern_type)
    return None


def detect_setup_123(
    ticker: str,
    candles: Sequence[Candle],
    settings: Optional[Settings] = None,
) -> Optional[SetupResult]:
    """Latest 123 pattern graded against the current close, or None."""
    s = settings or get_settings()
    if len(candles) < s.setup_123_min_candles:
        return None

    closes = [c.close for c in candles]
    ema_short = ema_series(closes, s.ema_short_period)
    ema_long = ema_series(closes, s.ema_long_period)
    macd_points = macd_series(closes, s.macd_fast_period, s.macd_slow_period, s.macd_signal_period)

    last_index = len(candles) - 1
    current_short, current_long = ema_short[last_index], ema_long[last_index]
    if current_short is None or current_long is None:
        return None

    preferred = PatternType.BUY if current_short > current_long else PatternType.SELL
    alternate = PatternType.SELL if preferred == PatternType.BUY else PatternType.BUY

    pattern = None
    for pattern_type in (preferred, alternate):
        pattern = find_pattern_123(
            candles, ema_short, ema_long, macd_points,
            last_index, pattern_type, s.setup_123_lookback_window,
        )
        if pattern:
            break

    if pattern is None:
        return None

    return _build_setup(candles, pattern, candles[last_index].close)


# ──────────────────────────────────────────────
# Result assembly
# ──────────────────────────────────────────────

def _grade(current: float, entry: float, stop: float, is_buy: bool) -> SetupStatus:
    if (current < stop) if is_buy else (current > stop):
        return SetupStatus.INVALIDO
    if (current > entry) if is_buy else (current < entry):
        return SetupStatus.ATIVO
    return SetupStatus.EM_FORMACAO


def _build_setup(candles: Sequence[Candle], pattern: Pattern123, current_price: float) -> SetupResult:
    c1 = candles[pattern.p1_index]
    c2 = candles[pattern.p2_index]
    c3 = candles[pattern.p3_index]
    is_buy = pattern.type == PatternType.BUY

    if is_buy:
        p1, p2, p3 = c1.low, c2.low, c3.low
        entry, stop = c3.high, c2.low
    else:
        p1, p2, p3 = c1.high, c2.high, c3.high
        entry, stop = c3.low, c2.high
    target = entry + (entry - stop)

    status = _grade(current_price, entry, stop, is_buy)
    invalid = status == SetupStatus.INVALIDO

    if is_buy:
        explanation = (
            f"Tendencia de Alta (EMA8 > EMA80) no momento do padrao. "
            f"Padrao 1-2-3 com 3 candles consecutivos. "
            f"Minima P1: {p1:.2f}, Minima P2 (mais baixa): {p2:.2f}, Minima P3 (ascendente): {p3:.2f}. "
            f"Entrada no rompimento da maxima de P3 ({entry:.2f})."
        )
        if invalid:
            explanation += " SETUP INVALIDO - preco abaixo do stop."
    else:
        explanation = (
            f"Tendencia de Baixa (EMA8 < EMA80) no momento do padrao. "
            f"Padrao 1-2-3 com 3 candles consecutivos. "
            f"Maxima P1: {p1:.2f}, Maxima P2 (mais alta): {p2:.2f}, Maxima P3 (descendente): {p3:.2f}. "
            f"Entrada no rompimento da minima de P3 ({entry:.2f})."
        )
        if invalid:
            explanation += " SETUP INVALIDO - preco acima do stop."

    if invalid:
        signals = ["Setup Invalido"]
    elif status == SetupStatus.ATIVO:
        signals = ["Compra Confirmada" if is_buy else "Venda Confirmada"]
    else:
        signals = ["Aguardando Rompimento"]

    return SetupResult(
        id="123-compra" if is_buy else "123-venda",
        title="123 de Compra" if is_buy else "123 de Venda",
        status=status,
        success_rate=0.0,
        risk=RiskLevel.MODERADO,
        stop_suggestion=f"{stop:.2f}",
        target_note=f"Alvo 1: {target:.2f}",
        explanation=explanation,
        signals=signals,
        meta={
            "p1": p1,
            "p2": p2,
            "p3": p3,
            "entry": entry,
            "stop": stop,
            "target": target,
            "p1Index": pattern.p1_index,
            "p2Index": pattern.p2_index,
            "p3Index": pattern.p3_index,
            "entryIndex": pattern.p3_index,
        },
    )
