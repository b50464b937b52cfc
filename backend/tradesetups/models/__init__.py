"""
Trade Setups — Pydantic Models

All I/O schemas for the setup engine. Indicators and detectors consume Candles,
detectors return SetupResults, the history engine returns HistoricalSignals and
the signal store persists them.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ──────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────

class SetupStatus(str, Enum):
    """Lifecycle of a live setup at the current bar."""
    ATIVO = "ATIVO"
    EM_FORMACAO = "EM_FORMACAO"
    INVALIDO = "INVALIDO"


class RiskLevel(str, Enum):
    BAIXO = "Baixo"
    MODERADO = "Moderado"
    ALTO = "Alto"


class Trend(str, Enum):
    """Trend classification supplied by the context engine."""
    ALTA = "Alta"
    BAIXA = "Baixa"
    LATERAL = "Lateral"


class VolatilityLevel(str, Enum):
    BAIXA = "Baixa"
    MEDIA = "Media"
    ALTA = "Alta"


class VolumeLevel(str, Enum):
    ABAIXO = "Abaixo"
    NORMAL = "Normal"
    ACIMA = "Acima"


class PatternType(str, Enum):
    """Trade side of a 123 pattern."""
    BUY = "BUY"
    SELL = "SELL"


class PulseDirection(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class SignalOutcome(str, Enum):
    """Resolution of a historical signal."""
    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"
    EXPIRED = "expired"


class SetupType(str, Enum):
    SETUP_123_BUY = "123-compra"
    SETUP_123_SELL = "123-venda"
    MYSTIC_PULSE = "mystic-pulse"
    BREAKOUT = "breakout"
    PULLBACK_SMA20 = "pullback-sma20"
    BREAKDOWN = "breakdown"


class DecisionZoneType(str, Enum):
    FAVORAVEL = "FAVORAVEL"
    NEUTRA = "NEUTRA"
    RISCO = "RISCO"


# ──────────────────────────────────────────────
# Market Data Models
# ──────────────────────────────────────────────

class Candle(BaseModel):
    """Single OHLCV bar. Sequences are expected time-ascending, one per period."""
    model_config = ConfigDict(frozen=True)

    time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


# ──────────────────────────────────────────────
# Indicator Models
# ──────────────────────────────────────────────

class MACDPoint(BaseModel):
    """MACD values at one bar. Fields stay None until warmed up."""
    model_config = ConfigDict(frozen=True)

    macd: Optional[float] = None
    signal: Optional[float] = None
    histogram: Optional[float] = None


class MysticPulseResult(BaseModel):
    """DI+/DI- momentum accumulator state at one bar."""
    model_config = ConfigDict(frozen=True)

    di_plus: float = Field(ge=0)
    di_minus: float = Field(ge=0)
    positive_count: int = 0
    negative_count: int = 0
    trend_score: int = 0           # positive_count - negative_count
    intensity: float = Field(default=0.0, ge=0, le=1)
    is_bullish: bool = True


class Pattern123(BaseModel):
    """Three consecutive candles forming a 123 reversal."""
    model_config = ConfigDict(frozen=True)

    p1_index: int
    p2_index: int
    p3_index: int
    type: PatternType


# ──────────────────────────────────────────────
# Setup Models
# ──────────────────────────────────────────────

class SetupResult(BaseModel):
    """Point-in-time setup detection, serialised with camelCase keys."""
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    id: str
    title: str
    status: SetupStatus
    success_rate: float = 0.0
    risk: RiskLevel
    stop_suggestion: str
    target_note: str
    explanation: str
    signals: list[str] = []
    meta: dict[str, float] = {}


class MarketContext(BaseModel):
    """Trend / volume / volatility classification of the latest bar."""
    model_config = ConfigDict(frozen=True)

    trend: Trend
    volume: VolumeLevel
    volatility: VolatilityLevel


class DecisionZone(BaseModel):
    """Overall reading of context plus active setups."""
    model_config = ConfigDict(frozen=True)

    zone: DecisionZoneType
    message: str
    reasons: list[str] = []


class AnalysisResult(BaseModel):
    """Everything a caller needs to render the live setups of one asset."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    ticker: str
    price: float
    updated_at: datetime
    context: MarketContext
    context_meta: dict[str, float] = {}
    decision_zone: DecisionZone
    setups: list[SetupResult] = []


# ──────────────────────────────────────────────
# Signal History Models
# ──────────────────────────────────────────────

class HistoricalSignal(BaseModel):
    """A 123 occurrence mined from history and resolved against later bars."""
    model_config = ConfigDict(frozen=True)

    ticker: str
    setup_type: SetupType
    timeframe: str
    signal_time: datetime          # time of the P3 candle
    direction: PatternType
    p1_index: int
    p2_index: int
    p3_index: int
    p1_price: float
    p2_price: float
    p3_price: float
    entry_price: float
    stop_price: float
    target_price: float
    outcome: SignalOutcome = SignalOutcome.PENDING
    resolved_index: Optional[int] = None
    resolved_at: Optional[datetime] = None
    resolved_price: Optional[float] = None
    candles_to_resolve: Optional[int] = None


class SignalStats(BaseModel):
    """Aggregate outcome counts. Always derived from a signal set."""
    total: int = 0
    success: int = 0
    failure: int = 0
    pending: int = 0
    expired: int = 0
    success_rate: float = 0.0
    avg_candles_to_resolve: float = 0.0


class SyncResult(BaseModel):
    """Outcome of syncing one ticker's historical signals."""
    ticker: str
    success: bool
    signals_found: int = 0
    persisted: int = 0
    stats: Optional[SignalStats] = None
    error: Optional[str] = None
