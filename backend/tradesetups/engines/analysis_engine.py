"""
Trade Setups — Analysis Engine

Assembles the live view of one asset: market context, every setup the
detectors currently see (each stamped with the historical success rate the
signal store holds for its setup type) and the decision zone derived from both.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

import structlog

from tradesetups.config import Settings, get_settings
from tradesetups.data.signal_repository import SignalRepository, SignalStoreError
from tradesetups.engines.breakout_setup import detect_breakdown, detect_breakout
from tradesetups.engines.context_engine import calculate_context, get_context_meta
from tradesetups.engines.decision_zone import calculate_decision_zone
from tradesetups.engines.mystic_pulse_setup import detect_mystic_pulse
from tradesetups.engines.pullback_setup import detect_pullback_sma20
from tradesetups.engines.setup_123 import detect_setup_123
from tradesetups.models import AnalysisResult, Candle, SetupResult, SetupType

log = structlog.get_logger(__name__)


class AnalysisEngine:
    """Live setup analysis backed by persisted signal statistics.

    Usage::

        engine = AnalysisEngine(InMemorySignalRepository())
        result = engine.analyze("PETR4", candles)
    """

    def __init__(self, repository: SignalRepository, settings: Optional[Settings] = None):
        self._repository = repository
        self._settings = settings or get_settings()

    def _success_rate(self, ticker: str, setup_type: SetupType) -> float:
        try:
            return self._repository.get_signal_stats(ticker, setup_type).success_rate
        except SignalStoreError as exc:
            log.warning(
                "analysis.stats_unavailable",
                ticker=ticker, setup_type=setup_type.value, error=str(exc),
            )
            return 0.0

    def analyze(
        self,
        ticker: str,
        candles: Optional[Sequence[Candle]],
        now: Optional[datetime] = None,
    ) -> Optional[AnalysisResult]:
        """None when the series is too short to classify the context."""
        s = self._settings
        if not candles or len(candles) < s.analysis_min_candles:
            log.info(
                "analysis.insufficient_data",
                ticker=ticker, candles=len(candles or []), required=s.analysis_min_candles,
            )
            return None

        ticker = ticker.upper().strip()
        context = calculate_context(candles, s)
        candidates: list[Optional[SetupResult]] = [
            detect_breakout(
                ticker, candles, context.volatility,
                self._success_rate(ticker, SetupType.BREAKOUT), s,
            ),
            detect_pullback_sma20(
                ticker, candles, context.trend, context.volume, context.volatility,
                self._success_rate(ticker, SetupType.PULLBACK_SMA20), s,
            ),
            detect_breakdown(
                ticker, candles, context.volatility,
                self._success_rate(ticker, SetupType.BREAKDOWN), s,
            ),
        ]

        setup_123 = detect_setup_123(ticker, candles, s)
        if setup_123 is not None:
            rate = self._success_rate(ticker, SetupType(setup_123.id))
            setup_123 = setup_123.model_copy(update={"success_rate": rate})
        candidates.append(setup_123)

        candidates.append(
            detect_mystic_pulse(
                ticker, candles, context.trend, context.volatility,
                self._success_rate(ticker, SetupType.MYSTIC_PULSE), s,
            )
        )

        setups = [x for x in candidates if x is not None]
        decision_zone = calculate_decision_zone(context, setups, now)

        last = candles[-1]
        log.debug(
            "analysis.done",
            ticker=ticker, setups=[x.id for x in setups], zone=decision_zone.zone.value,
        )

        return AnalysisResult(
            ticker=ticker,
            price=last.close,
            updated_at=last.time,
            context=context,
            context_meta=get_context_meta(candles, s),
            decision_zone=decision_zone,
            setups=setups,
        )
