"""
Trade Setups — Market Context Engine

Classifies the latest bar of a candle series into trend, volume and
volatility buckets. The Mystic Pulse detector and the analysis service use
these labels to grade status and risk.
"""

from __future__ import annotations

from typing import Optional, Sequence

from tradesetups.config import Settings, get_settings
from tradesetups.engines.indicators import atr_percent, ema, volume_ratio
from tradesetups.models import Candle, MarketContext, Trend, VolatilityLevel, VolumeLevel


def _closes(candles: Sequence[Candle]) -> list[float]:
    return [c.close for c in candles]


def calculate_trend(candles: Sequence[Candle], settings: Optional[Settings] = None) -> Trend:
    """EMA short vs EMA long. Lateral while either is undefined or they are equal."""
    s = settings or get_settings()
    closes = _closes(candles)

    short = ema(closes, s.ema_short_period)
    long = ema(closes, s.ema_long_period)

    if short is None or long is None:
        return Trend.LATERAL
    if short > long:
        return Trend.ALTA
    if short < long:
        return Trend.BAIXA
    return Trend.LATERAL


def calculate_volume_level(candles: Sequence[Candle], settings: Optional[Settings] = None) -> VolumeLevel:
    s = settings or get_settings()
    ratio = volume_ratio(candles, s.volume_period)

    if ratio is None:
        return VolumeLevel.NORMAL
    if ratio < s.volume_low_threshold:
        return VolumeLevel.ABAIXO
    if ratio > s.volume_high_threshold:
        return VolumeLevel.ACIMA
    return VolumeLevel.NORMAL


def calculate_volatility_level(candles: Sequence[Candle], settings: Optional[Settings] = None) -> VolatilityLevel:
    """ATR% buckets: below the low threshold Baixa, above the high one Alta."""
    s = settings or get_settings()
    pct = atr_percent(candles, s.atr_period)

    if pct is None:
        return VolatilityLevel.MEDIA
    if pct < s.volatility_low_threshold:
        return VolatilityLevel.BAIXA
    if pct > s.volatility_high_threshold:
        return VolatilityLevel.ALTA
    return VolatilityLevel.MEDIA


def calculate_context(candles: Sequence[Candle], settings: Optional[Settings] = None) -> MarketContext:
    return MarketContext(
        trend=calculate_trend(candles, settings),
        volume=calculate_volume_level(candles, settings),
        volatility=calculate_volatility_level(candles, settings),
    )


def get_context_meta(candles: Sequence[Candle], settings: Optional[Settings] = None) -> dict[str, float]:
    """Raw numbers behind the context labels, 0 where undefined."""
    s = settings or get_settings()
    closes = _closes(candles)

    return {
        "ema8": ema(closes, s.ema_short_period) or 0.0,
        "ema80": ema(closes, s.ema_long_period) or 0.0,
        "atrPercent": atr_percent(candles, s.atr_period) or 0.0,
        "volumeRatio": volume_ratio(candles, s.volume_period) or 0.0,
        "currentClose": closes[-1] if closes else 0.0,
        "currentVolume": candles[-1].volume if candles else 0.0,
    }
