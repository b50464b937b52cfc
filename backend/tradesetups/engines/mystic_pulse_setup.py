"""
Trade Setups — Mystic Pulse Setup Detector

Turns the Mystic Pulse momentum accumulator into a gradeable setup:
  ATIVO        strong score + high intensity, aligned with the trend
               (a Lateral trend accepts either direction)
  EM_FORMACAO  strong but counter-trend, or any non-zero score below the bar
  INVALIDO     score 0

Risk is Alto against a non-lateral trend, otherwise mapped from volatility.
Stop is the current close -/+ a multiple of ATR.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from tradesetups.config import Settings, get_settings
from tradesetups.engines.indicators import atr, mystic_pulse
from tradesetups.models import (
    Candle,
    MysticPulseResult,
    PulseDirection,
    RiskLevel,
    SetupResult,
    SetupStatus,
    Trend,
    VolatilityLevel,
)

_VOLATILITY_RISK = {
    VolatilityLevel.ALTA: RiskLevel.ALTO,
    VolatilityLevel.MEDIA: RiskLevel.MODERADO,
    VolatilityLevel.BAIXA: RiskLevel.BAIXO,
}


@dataclass(frozen=True)
class _PulseAnalysis:
    pulse: MysticPulseResult
    atr_value: float
    current_close: float
    status: SetupStatus
    direction: PulseDirection


def _is_counter_trend(is_bullish: bool, trend: Trend) -> bool:
    return (is_bullish and trend == Trend.BAIXA) or (not is_bullish and trend == Trend.ALTA)


def _analyze(candles: Sequence[Candle], trend: Trend, s: Settings) -> Optional[_PulseAnalysis]:
    if len(candles) < s.mystic_pulse_adx_length + 2:
        return None

    pulse = mystic_pulse(
        candles,
        s.mystic_pulse_adx_length,
        s.mystic_pulse_collect_length,
        s.mystic_pulse_gamma,
    )
    if pulse is None:
        return None

    atr_value = atr(candles, s.atr_period)
    if atr_value is None:
        return None

    direction = PulseDirection.LONG if pulse.is_bullish else PulseDirection.SHORT
    abs_score = abs(pulse.trend_score)

    if abs_score >= s.mystic_pulse_strong_threshold and pulse.intensity >= s.mystic_pulse_intensity_threshold:
        if _is_counter_trend(pulse.is_bullish, trend):
            status = SetupStatus.EM_FORMACAO
        else:
            status = SetupStatus.ATIVO
    elif abs_score >= 1:
        status = SetupStatus.EM_FORMACAO
    else:
        status = SetupStatus.INVALIDO

    return _PulseAnalysis(
        pulse=pulse,
        atr_value=atr_value,
        current_close=candles[-1].close,
        status=status,
        direction=direction,
    )


def determine_risk(volatility: VolatilityLevel, trend: Trend, is_bullish: bool) -> RiskLevel:
    """Counter-trend overrides volatility."""
    if _is_counter_trend(is_bullish, trend):
        return RiskLevel.ALTO
    return _VOLATILITY_RISK[volatility]


def _signals(a: _PulseAnalysis) -> list[str]:
    p = a.pulse
    if a.status == SetupStatus.ATIVO:
        if a.direction == PulseDirection.LONG:
            lines = [
                "Momentum de alta confirmado",
                f"DI+ dominante ({p.di_plus:.1f} > {p.di_minus:.1f})",
            ]
        else:
            lines = [
                "Momentum de baixa confirmado",
                f"DI- dominante ({p.di_minus:.1f} > {p.di_plus:.1f})",
            ]
        return lines + [
            f"Score de tendencia: {p.trend_score}",
            f"Intensidade: {p.intensity * 100:.0f}%",
        ]

    if a.status == SetupStatus.EM_FORMACAO:
        lines = ["Momentum em desenvolvimento"]
        if p.trend_score != 0:
            lines.append(f"Direcao atual: {a.direction.value}")
        lines.append(f"Score: {p.trend_score}")
        return lines

    return []


def _explanation(a: _PulseAnalysis) -> str:
    p = a.pulse
    if a.status == SetupStatus.ATIVO:
        side = "alta" if a.direction == PulseDirection.LONG else "baixa"
        sign = "+" if a.direction == PulseDirection.LONG else "-"
        return (
            f"Mystic Pulse detectou momentum forte de {side}. "
            f"O indicador DI{sign} esta dominante com score acumulado de {p.trend_score}. "
            f"Intensidade de {p.intensity * 100:.0f}% indica forca do movimento."
        )
    if a.status == SetupStatus.EM_FORMACAO:
        return (
            f"Mystic Pulse em formacao com score de {p.trend_score}. "
            f"Aguardando confirmacao de momentum mais forte para ativacao completa."
        )
    return (
        f"Mystic Pulse inativo. Score neutro ({p.trend_score}) "
        f"indica ausencia de momentum direcional claro."
    )


def detect_mystic_pulse(
    ticker: str,
    candles: Sequence[Candle],
    trend: Trend,
    volatility: VolatilityLevel,
    success_rate: float,
    settings: Optional[Settings] = None,
) -> Optional[SetupResult]:
    """Grade the current Mystic Pulse state. None without enough history or ATR."""
    s = settings or get_settings()
    analysis = _analyze(candles, trend, s)
    if analysis is None:
        return None

    pulse = analysis.pulse
    is_long = analysis.direction == PulseDirection.LONG
    multiplier = s.mystic_pulse_stop_atr_multiplier
    stop_distance = multiplier * analysis.atr_value
    stop_level = analysis.current_close - stop_distance if is_long else analysis.current_close + stop_distance

    return SetupResult(
        id=f"mystic-pulse-{ticker.lower()}",
        title="Mystic Pulse (Alta)" if is_long else "Mystic Pulse (Baixa)",
        status=analysis.status,
        success_rate=success_rate,
        risk=determine_risk(volatility, trend, pulse.is_bullish),
        stop_suggestion=(
            f"R$ {stop_level:.2f} ({'abaixo' if is_long else 'acima'} do preco atual, {multiplier:g}x ATR)"
        ),
        target_note=(
            f"Taxa historica de {success_rate:g}% em movimentos similares. "
            f"Nao constitui garantia de resultado futuro."
        ),
        explanation=_explanation(analysis),
        signals=_signals(analysis),
        meta={
            "trendScore": pulse.trend_score,
            "positiveCount": pulse.positive_count,
            "negativeCount": pulse.negative_count,
            "intensity": round(pulse.intensity, 2),
            "diPlus": round(pulse.di_plus, 2),
            "diMinus": round(pulse.di_minus, 2),
            "atr": round(analysis.atr_value, 2),
            "currentClose": round(analysis.current_close, 2),
            "stopLevel": round(stop_level, 2),
        },
    )


def was_mystic_pulse_active(
    candles: Sequence[Candle],
    index: int,
    trend: Trend,
    settings: Optional[Settings] = None,
) -> bool:
    """Whether the setup graded ATIVO at bar `index`, using only bars up to it."""
    s = settings or get_settings()
    if index < s.mystic_pulse_adx_length + 2 or index >= len(candles):
        return False

    analysis = _analyze(candles[: index + 1], trend, s)
    return analysis is not None and analysis.status == SetupStatus.ATIVO
