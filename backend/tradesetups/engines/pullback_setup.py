"""
Trade Setups — Pullback SMA20 Detector

Only valid in an uptrend. ATIVO when the bar's low touches the SMA20 and the
close holds above it, EM_FORMACAO while the close is within half an ATR of
the average.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from tradesetups.config import Settings, get_settings
from tradesetups.engines.indicators import atr, sma
from tradesetups.models import (
    Candle,
    RiskLevel,
    SetupResult,
    SetupStatus,
    Trend,
    VolatilityLevel,
    VolumeLevel,
)


@dataclass(frozen=True)
class _PullbackAnalysis:
    sma_value: float
    current_close: float
    atr_value: float
    status: SetupStatus


def _analyze(candles: Sequence[Candle], trend: Trend, s: Settings) -> Optional[_PullbackAnalysis]:
    if len(candles) < s.sma_short_period + s.atr_period:
        return None

    sma_value = sma([c.close for c in candles], s.sma_short_period)
    atr_value = atr(candles, s.atr_period)
    if sma_value is None or atr_value is None:
        return None

    last = candles[-1]
    distance = abs(last.close - sma_value)

    if trend != Trend.ALTA:
        status = SetupStatus.INVALIDO
    elif last.low <= sma_value * s.pullback_touch_multiplier and last.close > sma_value:
        status = SetupStatus.ATIVO
    elif distance <= atr_value * s.pullback_proximity_atr_multiplier:
        status = SetupStatus.EM_FORMACAO
    else:
        status = SetupStatus.INVALIDO

    return _PullbackAnalysis(sma_value, last.close, atr_value, status)


def determine_risk(volume: VolumeLevel, volatility: VolatilityLevel) -> RiskLevel:
    if volume == VolumeLevel.ABAIXO or volatility == VolatilityLevel.ALTA:
        return RiskLevel.ALTO
    if volatility == VolatilityLevel.MEDIA:
        return RiskLevel.MODERADO
    return RiskLevel.BAIXO


def detect_pullback_sma20(
    ticker: str,
    candles: Sequence[Candle],
    trend: Trend,
    volume: VolumeLevel,
    volatility: VolatilityLevel,
    success_rate: float,
    settings: Optional[Settings] = None,
) -> Optional[SetupResult]:
    s = settings or get_settings()
    a = _analyze(candles, trend, s)
    if a is None:
        return None

    margin = s.pullback_proximity_atr_multiplier
    stop_level = a.sma_value - a.atr_value * margin

    signals: list[str] = []
    if a.status == SetupStatus.ATIVO:
        signals += ["Preco testou a SMA20 e reagiu", "Tendencia de alta confirmada"]
        explanation = (
            f"Preco recuou ate a SMA20 em R$ {a.sma_value:.2f} e mostrou reacao positiva. "
            f"Em tendencias de alta, pullbacks na media de 20 periodos historicamente "
            f"oferecem pontos de entrada com boa relacao risco/retorno."
        )
    elif a.status == SetupStatus.EM_FORMACAO:
        signals += ["Preco se aproximando da SMA20", "Aguardando reacao na media"]
        explanation = (
            f"Preco se aproximando da SMA20 em R$ {a.sma_value:.2f}. "
            f"Aguardando teste da media com reacao positiva para ativacao do setup."
        )
    elif trend != Trend.ALTA:
        signals.append("Tendencia nao e de alta")
        explanation = f"Setup requer tendencia de alta. Tendencia atual: {trend.value}."
    else:
        explanation = f"Preco distante da SMA20 em R$ {a.sma_value:.2f}. Setup inativo."

    return SetupResult(
        id=f"pullback-sma20-{ticker.lower()}",
        title="Pullback na SMA20",
        status=a.status,
        success_rate=success_rate,
        risk=determine_risk(volume, volatility),
        stop_suggestion=f"R$ {stop_level:.2f} (abaixo da SMA20 com folga de {margin:g}x ATR)",
        target_note=(
            f"Taxa historica de {success_rate:g}% em contextos similares. "
            f"Nao constitui garantia de resultado futuro."
        ),
        explanation=explanation,
        signals=signals,
        meta={
            "sma20": round(a.sma_value, 2),
            "currentClose": round(a.current_close, 2),
            "atr": round(a.atr_value, 2),
            "stopLevel": round(stop_level, 2),
        },
    )


def was_pullback_active(
    candles: Sequence[Candle],
    index: int,
    trend: Trend,
    settings: Optional[Settings] = None,
) -> bool:
    s = settings or get_settings()
    if index < s.sma_short_period + s.atr_period or index >= len(candles):
        return False
    a = _analyze(candles[: index + 1], trend, s)
    return a is not None and a.status == SetupStatus.ATIVO
