"""
Trade Setups — Signal Sync Tasks

Rebuilds the historical 123 signal set for each configured ticker:
fetch candles → detect_all_setup_123 → replace the ticker's rows in the
signal store. A failing ticker is reported in its SyncResult and the batch
moves on.

Usage:
    python -m tradesetups.tasks.signal_tasks
    python -m tradesetups.tasks.signal_tasks PETR4 VALE3 --timeframe 1d
"""

from __future__ import annotations

import argparse
import sys
import time
from typing import Callable, Optional, Sequence

import structlog

from tradesetups.config import Settings, get_settings
from tradesetups.data.signal_repository import (
    PostgresSignalRepository,
    SignalRepository,
    SignalStoreError,
)
from tradesetups.data.yahoo_candles import CandleSource, YahooCandleSource
from tradesetups.engines.signal_history import calculate_signal_stats, detect_all_setup_123
from tradesetups.models import SyncResult
from tradesetups.tasks.celery_app import celery_app

log = structlog.get_logger(__name__)


def sync_signals_for_ticker(
    ticker: str,
    source: CandleSource,
    repository: SignalRepository,
    settings: Optional[Settings] = None,
    timeframe: Optional[str] = None,
) -> SyncResult:
    """Detect and persist every historical signal of one ticker."""
    s = settings or get_settings()
    ticker = ticker.upper().strip()
    timeframe = timeframe or s.sync_timeframe

    candles = source.get_candles(ticker, s.sync_candles_to_fetch, timeframe)
    if not candles or len(candles) < s.sync_min_candles:
        log.warning("signal_sync.insufficient_data", ticker=ticker, candles=len(candles or []))
        return SyncResult(ticker=ticker, success=False, error="insufficient data")

    signals = detect_all_setup_123(ticker, candles, timeframe, s)
    stats = calculate_signal_stats(signals)
    log.info(
        "signal_sync.detected",
        ticker=ticker,
        candles=len(candles),
        signals=stats.total,
        success=stats.success,
        failure=stats.failure,
        pending=stats.pending,
        expired=stats.expired,
        success_rate=round(stats.success_rate, 1),
    )

    try:
        # Replace rather than merge so resolutions from older runs never linger.
        # Runs with no signals too, which clears rows a previous run left behind.
        persisted = repository.replace_signals(ticker, signals)
    except SignalStoreError as exc:
        log.error("signal_sync.persist_failed", ticker=ticker, error=str(exc))
        return SyncResult(
            ticker=ticker, success=False, signals_found=len(signals), stats=stats, error=str(exc),
        )

    log.info("signal_sync.ticker_done", ticker=ticker, persisted=persisted)
    return SyncResult(
        ticker=ticker, success=True, signals_found=len(signals), persisted=persisted, stats=stats,
    )


def sync_all_signals(
    tickers: Optional[Sequence[str]] = None,
    source: Optional[CandleSource] = None,
    repository: Optional[SignalRepository] = None,
    settings: Optional[Settings] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> list[SyncResult]:
    """Sync every ticker in turn, pausing between them to spare the data provider."""
    s = settings or get_settings()
    source = source or YahooCandleSource()
    repository = repository or PostgresSignalRepository(s.postgres_dsn)
    selected = [t.upper().strip() for t in tickers] if tickers else s.sync_ticker_list

    if not selected:
        log.info("signal_sync.nothing_to_sync")
        return []

    log.info(
        "signal_sync.started",
        tickers=selected, timeframe=s.sync_timeframe, candles=s.sync_candles_to_fetch,
    )

    results: list[SyncResult] = []
    for i, ticker in enumerate(selected, 1):
        log.info("signal_sync.ticker_started", ticker=ticker, progress=f"{i}/{len(selected)}")
        results.append(sync_signals_for_ticker(ticker, source, repository, s))
        if i < len(selected) and s.sync_delay_seconds > 0:
            sleep(s.sync_delay_seconds)

    _report(results, repository)
    return results


def _report(results: list[SyncResult], repository: SignalRepository) -> None:
    failed = [r for r in results if not r.success]
    log.info(
        "signal_sync.summary",
        processed=len(results),
        succeeded=len(results) - len(failed),
        failed=len(failed),
        signals=sum(r.signals_found for r in results),
    )
    for r in failed:
        log.warning("signal_sync.ticker_failed", ticker=r.ticker, error=r.error)

    try:
        log.info("signal_sync.store_total", signals=repository.count_all_signals())
        for r in results:
            if r.success and r.signals_found:
                stats = repository.get_signal_stats(r.ticker)
                log.info(
                    "signal_sync.store_stats",
                    ticker=r.ticker,
                    success=stats.success,
                    failure=stats.failure,
                    pending=stats.pending,
                    expired=stats.expired,
                    success_rate=round(stats.success_rate, 1),
                )
    except SignalStoreError as exc:
        log.error("signal_sync.stats_failed", error=str(exc))


@celery_app.task(bind=True, max_retries=1, default_retry_delay=300)
def sync_all_signals_task(self, tickers: Optional[list[str]] = None) -> dict:
    """Daily beat entry point. Returns a JSON-friendly summary."""
    repository = PostgresSignalRepository()
    try:
        repository.ensure_table()
        results = sync_all_signals(tickers, repository=repository)
    except SignalStoreError as exc:
        log.error("signal_sync.task_failed", error=str(exc))
        raise self.retry(exc=exc)
    finally:
        repository.close()

    return {
        "processed": len(results),
        "failed": [r.ticker for r in results if not r.success],
        "signals": sum(r.signals_found for r in results),
    }


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Rebuild historical 123 signals in the signal store")
    parser.add_argument(
        "tickers",
        nargs="*",
        help="Tickers to sync (default: SYNC_TICKERS from settings)",
    )
    parser.add_argument(
        "--timeframe",
        default=None,
        choices=["1d", "1wk", "1mo", "60m", "1h"],
        help="Candle timeframe (default: SYNC_TIMEFRAME from settings)",
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    if args.timeframe:
        settings = settings.model_copy(update={"sync_timeframe": args.timeframe})

    repository = PostgresSignalRepository(settings.postgres_dsn)
    try:
        repository.ensure_table()
        results = sync_all_signals(args.tickers, repository=repository, settings=settings)
    except SignalStoreError as exc:
        log.error("signal_sync.job_failed", error=str(exc))
        return 1
    finally:
        repository.close()

    log.info("signal_sync.job_done", failed=sum(1 for r in results if not r.success))
    return 0


if __name__ == "__main__":
    sys.exit(main())
