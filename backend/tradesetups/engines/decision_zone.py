"""
Trade Setups — Decision Zone

Folds the market context and the active setups into a single reading:
FAVORAVEL, NEUTRA or RISCO, with the reasons behind it. Rules are checked in
order and the first match wins. A support breakdown always means RISCO.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Sequence

from tradesetups.models import (
    DecisionZone,
    DecisionZoneType,
    MarketContext,
    SetupResult,
    SetupStatus,
    SetupType,
    Trend,
    VolatilityLevel,
    VolumeLevel,
)

ZONE_MESSAGES: dict[DecisionZoneType, tuple[str, ...]] = {
    DecisionZoneType.FAVORAVEL: (
        "Contexto apresenta caracteristicas favoraveis. Tendencia e volume alinhados.",
        "Condicoes de mercado parecem propicias para operacoes alinhadas com a tendencia.",
        "Indicadores apontam momento potencialmente oportuno. Avalie os setups disponiveis.",
    ),
    DecisionZoneType.NEUTRA: (
        "Mercado em consolidacao. Aguardar definicao pode ser prudente.",
        "Contexto sem direcao clara. Momento de observacao e planejamento.",
        "Sinais mistos no momento. Considere cautela ate melhor definicao.",
    ),
    DecisionZoneType.RISCO: (
        "ATENCAO: Contexto indica momento de risco elevado. Priorize protecao do capital.",
        "Cautela recomendada. Indicadores sugerem aumento de risco.",
        "Momento desfavoravel para novas posicoes. Avalie exposicao atual.",
    ),
}

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def zone_message(zone: DecisionZoneType, now: Optional[datetime] = None) -> str:
    """Message rotates once a day so repeated reads stay stable within the day."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    messages = ZONE_MESSAGES[zone]
    return messages[(now - _EPOCH).days % len(messages)]


def _is_active(setups: Sequence[SetupResult], setup_type: SetupType) -> bool:
    prefix = f"{setup_type.value}-"
    return any(s.id.startswith(prefix) and s.status == SetupStatus.ATIVO for s in setups)


def calculate_decision_zone(
    context: MarketContext,
    setups: Sequence[SetupResult],
    now: Optional[datetime] = None,
) -> DecisionZone:
    def zone(kind: DecisionZoneType, reasons: list[str]) -> DecisionZone:
        return DecisionZone(zone=kind, message=zone_message(kind, now), reasons=reasons)

    active_count = sum(1 for s in setups if s.status == SetupStatus.ATIVO)

    if _is_active(setups, SetupType.BREAKDOWN):
        reasons = ["Quebra de suporte detectada", "Momento de protecao de capital"]
        if context.volatility == VolatilityLevel.ALTA:
            reasons.append("Volatilidade elevada aumenta o risco")
        return zone(DecisionZoneType.RISCO, reasons)

    if (
        _is_active(setups, SetupType.BREAKOUT)
        and context.trend == Trend.ALTA
        and context.volume == VolumeLevel.ACIMA
    ):
        return zone(
            DecisionZoneType.FAVORAVEL,
            ["Rompimento de resistencia confirmado", "Tendencia de alta", "Volume acima da media"],
        )

    if _is_active(setups, SetupType.PULLBACK_SMA20) and context.trend == Trend.ALTA:
        reasons = ["Pullback em tendencia de alta", "Teste de suporte dinamico na SMA20"]
        if context.volume != VolumeLevel.ABAIXO:
            reasons.append("Volume adequado")
        return zone(DecisionZoneType.FAVORAVEL, reasons)

    if context.volatility == VolatilityLevel.ALTA and active_count == 0:
        return zone(
            DecisionZoneType.NEUTRA,
            [
                "Volatilidade elevada",
                "Nenhum setup ativo no momento",
                "Aguardar reducao de volatilidade pode ser prudente",
            ],
        )

    if context.trend == Trend.BAIXA:
        if context.volume == VolumeLevel.ACIMA:
            return zone(
                DecisionZoneType.RISCO,
                ["Tendencia de baixa", "Volume elevado pode indicar continuidade da queda"],
            )
        return zone(DecisionZoneType.NEUTRA, ["Tendencia de baixa", "Momento de cautela"])

    reasons = [
        f"Tendencia: {context.trend.value}",
        f"Volume: {context.volume.value}",
        f"Volatilidade: {context.volatility.value}",
    ]
    if active_count > 0:
        reasons.append(f"{active_count} setup(s) ativo(s)")
    return zone(DecisionZoneType.NEUTRA, reasons)
