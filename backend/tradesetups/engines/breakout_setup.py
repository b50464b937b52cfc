"""
Trade Setups — Breakout / Breakdown Detectors

Price against the range of the previous `lookback` bars (current bar excluded):

  Breakout   resistance = highest high. ATIVO when the close is above it with
             volume > multiplier x average, EM_FORMACAO within 0.5% below it.
  Breakdown  support = lowest low. ATIVO when the close is below it with
             volume, EM_FORMACAO within 0.5% above it. A risk signal, never
             a buy opportunity, so its risk is never Baixo.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from tradesetups.config import Settings, get_settings
from tradesetups.engines.indicators import atr, average_volume, volume_ratio
from tradesetups.models import Candle, RiskLevel, SetupResult, SetupStatus, VolatilityLevel

_VOLATILITY_RISK = {
    VolatilityLevel.ALTA: RiskLevel.ALTO,
    VolatilityLevel.MEDIA: RiskLevel.MODERADO,
    VolatilityLevel.BAIXA: RiskLevel.BAIXO,
}


@dataclass(frozen=True)
class _LevelAnalysis:
    level: float                # resistance for breakouts, support for breakdowns
    current_close: float
    volume_ratio: float
    atr_value: float
    status: SetupStatus


def _analyze_level(
    candles: Sequence[Candle],
    lookback: int,
    proximity: float,
    volume_multiplier: float,
    atr_period: int,
    upside: bool,
) -> Optional[_LevelAnalysis]:
    if len(candles) < lookback + 1:
        return None

    window = candles[-lookback - 1:-1]
    level = max(c.high for c in window) if upside else min(c.low for c in window)

    avg_vol = average_volume(candles[:-1], lookback)
    atr_value = atr(candles, atr_period)
    if avg_vol is None or atr_value is None:
        return None

    ratio = volume_ratio(candles, lookback) or 0.0
    close = candles[-1].close

    broke = close > level if upside else close < level
    near = close >= level * proximity if upside else close <= level * proximity

    if broke and ratio > volume_multiplier:
        status = SetupStatus.ATIVO
    elif near:
        status = SetupStatus.EM_FORMACAO
    else:
        status = SetupStatus.INVALIDO

    return _LevelAnalysis(level, close, ratio, atr_value, status)


def _analyze_breakout(candles: Sequence[Candle], s: Settings) -> Optional[_LevelAnalysis]:
    return _analyze_level(
        candles, s.breakout_lookback, s.breakout_proximity,
        s.breakout_volume_multiplier, s.atr_period, upside=True,
    )


def _analyze_breakdown(candles: Sequence[Candle], s: Settings) -> Optional[_LevelAnalysis]:
    return _analyze_level(
        candles, s.breakdown_lookback, s.breakdown_proximity,
        s.breakdown_volume_multiplier, s.atr_period, upside=False,
    )


# ──────────────────────────────────────────────
# Breakout
# ──────────────────────────────────────────────

def detect_breakout(
    ticker: str,
    candles: Sequence[Candle],
    volatility: VolatilityLevel,
    success_rate: float,
    settings: Optional[Settings] = None,
) -> Optional[SetupResult]:
    """Resistance breakout graded at the current bar, or None without enough history."""
    s = settings or get_settings()
    a = _analyze_breakout(candles, s)
    if a is None:
        return None

    resistance = a.level
    stop_level = resistance - 0.5 * a.atr_value

    signals: list[str] = []
    if a.status == SetupStatus.ATIVO:
        signals.append("Rompimento de resistencia confirmado")
        signals.append(f"Volume {a.volume_ratio:.1f}x acima da media")
        explanation = (
            f"Preco rompeu a resistencia em R$ {resistance:.2f} com volume "
            f"{a.volume_ratio:.1f}x acima da media. Historicamente, "
            f"rompimentos com volume tem apresentado continuidade."
        )
    elif a.status == SetupStatus.EM_FORMACAO:
        signals += ["Preco proximo da resistencia", "Aguardando confirmacao de volume"]
        explanation = (
            f"Preco testando resistencia em R$ {resistance:.2f}. "
            f"Aguardando fechamento acima com confirmacao de volume para ativacao."
        )
    else:
        explanation = f"Preco distante da resistencia em R$ {resistance:.2f}. Setup inativo."

    return SetupResult(
        id=f"breakout-{ticker.lower()}",
        title="Rompimento de Resistencia",
        status=a.status,
        success_rate=success_rate,
        risk=_VOLATILITY_RISK[volatility],
        stop_suggestion=f"R$ {stop_level:.2f} (abaixo da resistencia rompida, com folga de 0.5x ATR)",
        target_note=(
            f"Taxa historica de {success_rate:g}% em movimentos similares. "
            f"Nao constitui garantia de resultado futuro."
        ),
        explanation=explanation,
        signals=signals,
        meta={
            "resistance": round(resistance, 2),
            "currentClose": round(a.current_close, 2),
            "atr": round(a.atr_value, 2),
            "volumeRatio": round(a.volume_ratio, 2),
            "stopLevel": round(stop_level, 2),
        },
    )


def was_breakout_active(candles: Sequence[Candle], index: int, settings: Optional[Settings] = None) -> bool:
    s = settings or get_settings()
    if index < s.breakout_lookback + 1 or index >= len(candles):
        return False
    a = _analyze_breakout(candles[: index + 1], s)
    return a is not None and a.status == SetupStatus.ATIVO


# ──────────────────────────────────────────────
# Breakdown
# ──────────────────────────────────────────────

def detect_breakdown(
    ticker: str,
    candles: Sequence[Candle],
    volatility: VolatilityLevel,
    success_rate: float,
    settings: Optional[Settings] = None,
) -> Optional[SetupResult]:
    """Support breakdown graded at the current bar, or None without enough history."""
    s = settings or get_settings()
    a = _analyze_breakdown(candles, s)
    if a is None:
        return None

    support = a.level
    invalidation = support + 0.5 * a.atr_value

    signals: list[str] = []
    if a.status == SetupStatus.ATIVO:
        signals += [
            "Rompimento de suporte confirmado",
            "ALERTA: Momento de cautela",
            f"Volume {a.volume_ratio:.1f}x acima da media",
        ]
        explanation = (
            f"ATENCAO: Preco rompeu o suporte em R$ {support:.2f} com volume "
            f"{a.volume_ratio:.1f}x acima da media. Historicamente, "
            f"rompimentos de suporte com volume indicam continuidade do movimento de queda. "
            f"Momento de cautela e protecao de capital."
        )
        stop_suggestion = f"Invalidacao do setup: acima de R$ {invalidation:.2f}"
    else:
        if a.status == SetupStatus.EM_FORMACAO:
            signals += ["Preco testando suporte", "Atencao ao risco de rompimento"]
            explanation = (
                f"Preco testando suporte em R$ {support:.2f}. "
                f"Rompimento com volume pode indicar aceleracao da queda. Momento de atencao."
            )
        else:
            explanation = f"Preco acima do suporte em R$ {support:.2f}. Sem sinal de breakdown."
        stop_suggestion = f"Suporte em R$ {support:.2f}. Perda pode acelerar queda."

    return SetupResult(
        id=f"breakdown-{ticker.lower()}",
        title="Quebra de Suporte",
        status=a.status,
        success_rate=success_rate,
        risk=RiskLevel.ALTO if volatility == VolatilityLevel.ALTA else RiskLevel.MODERADO,
        stop_suggestion=stop_suggestion,
        target_note=(
            f"Este e um sinal de RISCO, nao de oportunidade. "
            f"Taxa de continuidade de queda: {success_rate:g}% historicamente."
        ),
        explanation=explanation,
        signals=signals,
        meta={
            "support": round(support, 2),
            "currentClose": round(a.current_close, 2),
            "atr": round(a.atr_value, 2),
            "volumeRatio": round(a.volume_ratio, 2),
            "invalidationLevel": round(invalidation, 2),
        },
    )


def was_breakdown_active(candles: Sequence[Candle], index: int, settings: Optional[Settings] = None) -> bool:
    s = settings or get_settings()
    if index < s.breakdown_lookback + 1 or index >= len(candles):
        return False
    a = _analyze_breakdown(candles[: index + 1], s)
    return a is not None and a.status == SetupStatus.ATIVO
