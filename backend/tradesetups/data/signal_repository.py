"""
Trade Setups — Signal Repository

Stores historical 123 signals and serves per-ticker outcome statistics.
Signals are keyed by (ticker, setup_type, timeframe, signal_time), so
re-running the history scan over the same bars overwrites instead of
duplicating.

Two implementations share the SignalRepository protocol:
  InMemorySignalRepository  tests and single-process runs
  PostgresSignalRepository  psycopg2 against the setup_signals table
"""

from __future__ import annotations

from collections import Counter
from typing import Iterable, Optional, Protocol

import psycopg2
import structlog

from tradesetups.config import get_settings
from tradesetups.models import HistoricalSignal, SetupType, SignalOutcome, SignalStats

log = structlog.get_logger(__name__)


class SignalStoreError(Exception):
    """Raised when the signal store cannot be reached or a query fails."""


class SignalRepository(Protocol):
    def upsert_signals(self, signals: Iterable[HistoricalSignal]) -> int: ...

    def delete_signals_by_ticker(self, ticker: str) -> int: ...

    def replace_signals(self, ticker: str, signals: Iterable[HistoricalSignal]) -> int: ...

    def get_signal_stats(self, ticker: str, setup_type: Optional[SetupType] = None) -> SignalStats: ...

    def get_signals(
        self, ticker: str, timeframe: Optional[str] = None, limit: int = 100
    ) -> list[HistoricalSignal]: ...

    def count_all_signals(self) -> int: ...


def stats_from_counts(
    counts: Counter,
    resolve_sum: float = 0.0,
    resolve_count: int = 0,
) -> SignalStats:
    """Build SignalStats from per-outcome counts (keys are SignalOutcome values)."""
    success = counts.get(SignalOutcome.SUCCESS.value, 0)
    failure = counts.get(SignalOutcome.FAILURE.value, 0)
    resolved = success + failure
    return SignalStats(
        total=sum(counts.values()),
        success=success,
        failure=failure,
        pending=counts.get(SignalOutcome.PENDING.value, 0),
        expired=counts.get(SignalOutcome.EXPIRED.value, 0),
        success_rate=success / resolved * 100 if resolved else 0.0,
        avg_candles_to_resolve=resolve_sum / resolve_count if resolve_count else 0.0,
    )


def _key(signal: HistoricalSignal) -> tuple:
    return (signal.ticker.upper(), signal.setup_type.value, signal.timeframe, signal.signal_time)


# ──────────────────────────────────────────────
# In-memory
# ──────────────────────────────────────────────

class InMemorySignalRepository:
    """Dict-backed store with the same upsert key as the database table."""

    def __init__(self):
        self._rows: dict[tuple, HistoricalSignal] = {}

    def upsert_signals(self, signals: Iterable[HistoricalSignal]) -> int:
        count = 0
        for signal in signals:
            self._rows[_key(signal)] = signal.model_copy(update={"ticker": signal.ticker.upper()})
            count += 1
        return count

    def delete_signals_by_ticker(self, ticker: str) -> int:
        doomed = [k for k in self._rows if k[0] == ticker.upper()]
        for k in doomed:
            del self._rows[k]
        return len(doomed)

    def replace_signals(self, ticker: str, signals: Iterable[HistoricalSignal]) -> int:
        """Swap the ticker's rows for `signals`. Old rows stay if the new set cannot be read."""
        fresh = {_key(s): s.model_copy(update={"ticker": s.ticker.upper()}) for s in signals}
        self.delete_signals_by_ticker(ticker)
        self._rows.update(fresh)
        return len(fresh)

    def _select(self, ticker: str, setup_type: Optional[SetupType] = None, timeframe: Optional[str] = None):
        return [
            s for (t, st, tf, _), s in self._rows.items()
            if t == ticker.upper()
            and (setup_type is None or st == setup_type.value)
            and (timeframe is None or tf == timeframe)
        ]

    def get_signal_stats(self, ticker: str, setup_type: Optional[SetupType] = None) -> SignalStats:
        rows = self._select(ticker, setup_type)
        resolved = [s.candles_to_resolve for s in rows if s.candles_to_resolve is not None]
        return stats_from_counts(
            Counter(s.outcome.value for s in rows),
            resolve_sum=sum(resolved),
            resolve_count=len(resolved),
        )

    def get_signals(self, ticker: str, timeframe: Optional[str] = None, limit: int = 100) -> list[HistoricalSignal]:
        rows = sorted(self._select(ticker, timeframe=timeframe), key=lambda s: s.signal_time, reverse=True)
        return rows[:limit]

    def count_all_signals(self) -> int:
        return len(self._rows)


# ──────────────────────────────────────────────
# PostgreSQL
# ──────────────────────────────────────────────

_COLUMNS = (
    "ticker", "setup_type", "timeframe", "signal_time", "direction",
    "p1_index", "p2_index", "p3_index", "p1_price", "p2_price", "p3_price",
    "entry_price", "stop_price", "target_price", "outcome",
    "resolved_index", "resolved_at", "resolved_price", "candles_to_resolve",
)

_CONFLICT_KEY = ("ticker", "setup_type", "timeframe", "signal_time")


def _row(signal: HistoricalSignal) -> tuple:
    data = signal.model_dump(mode="json")
    data["ticker"] = signal.ticker.upper()
    data["signal_time"] = signal.signal_time
    data["resolved_at"] = signal.resolved_at
    return tuple(data[c] for c in _COLUMNS)


class PostgresSignalRepository:
    """Signal store on PostgreSQL.

    Usage::

        repo = PostgresSignalRepository()
        repo.ensure_table()
        repo.upsert_signals(signals)
        stats = repo.get_signal_stats("PETR4")
    """

    TABLE_NAME = "setup_signals"

    def __init__(self, dsn: Optional[str] = None, connection=None):
        self._dsn = dsn or get_settings().postgres_dsn
        self._conn = connection

    def _get_conn(self):
        """Get or create a psycopg2 connection."""
        if self._conn is None or self._conn.closed:
            try:
                self._conn = psycopg2.connect(self._dsn, connect_timeout=5)
                self._conn.autocommit = True
                log.info("signal_repository.connected")
            except psycopg2.Error as exc:
                log.error("signal_repository.connection_failed", error=str(exc))
                self._conn = None
                raise SignalStoreError(f"cannot connect to signal store: {exc}") from exc
        return self._conn

    def close(self):
        if self._conn is not None and not self._conn.closed:
            self._conn.close()

    def _execute(self, action: str, sql: str, params=None, many: bool = False, fetch: bool = False):
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            if many:
                cur.executemany(sql, params)
            else:
                cur.execute(sql, params)
            result = cur.fetchall() if fetch else cur.rowcount
            cur.close()
            return result
        except psycopg2.Error as exc:
            log.error(f"signal_repository.{action}_failed", error=str(exc))
            raise SignalStoreError(f"{action} failed: {exc}") from exc

    # ──────────────────────────────────────────────
    # Schema
    # ──────────────────────────────────────────────

    def ensure_table(self) -> None:
        """Create the setup_signals table if it doesn't exist (idempotent)."""
        self._execute("ensure_table", f"""
            CREATE TABLE IF NOT EXISTS {self.TABLE_NAME} (
                id BIGSERIAL PRIMARY KEY,
                ticker TEXT NOT NULL,
                setup_type TEXT NOT NULL,
                timeframe TEXT NOT NULL,
                signal_time TIMESTAMPTZ NOT NULL,
                direction TEXT NOT NULL,
                p1_index INTEGER NOT NULL,
                p2_index INTEGER NOT NULL,
                p3_index INTEGER NOT NULL,
                p1_price DOUBLE PRECISION NOT NULL,
                p2_price DOUBLE PRECISION NOT NULL,
                p3_price DOUBLE PRECISION NOT NULL,
                entry_price DOUBLE PRECISION NOT NULL,
                stop_price DOUBLE PRECISION NOT NULL,
                target_price DOUBLE PRECISION NOT NULL,
                outcome TEXT NOT NULL,
                resolved_index INTEGER,
                resolved_at TIMESTAMPTZ,
                resolved_price DOUBLE PRECISION,
                candles_to_resolve INTEGER,
                created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                UNIQUE ({", ".join(_CONFLICT_KEY)})
            );
        """)
        log.info("signal_repository.table_ensured")

    # ──────────────────────────────────────────────
    # Writes
    # ──────────────────────────────────────────────

    def _upsert_sql(self) -> str:
        updates = ", ".join(f"{c} = EXCLUDED.{c}" for c in _COLUMNS if c not in _CONFLICT_KEY)
        return f"""
            INSERT INTO {self.TABLE_NAME} ({", ".join(_COLUMNS)})
            VALUES ({", ".join(["%s"] * len(_COLUMNS))})
            ON CONFLICT ({", ".join(_CONFLICT_KEY)}) DO UPDATE SET {updates};
            """

    def _delete_sql(self) -> str:
        return f"DELETE FROM {self.TABLE_NAME} WHERE ticker = %s;"

    def upsert_signals(self, signals: Iterable[HistoricalSignal]) -> int:
        rows = [_row(s) for s in signals]
        if not rows:
            return 0

        self._execute("upsert", self._upsert_sql(), rows, many=True)
        log.info("signal_repository.upserted", count=len(rows), ticker=rows[0][0])
        return len(rows)

    def delete_signals_by_ticker(self, ticker: str) -> int:
        deleted = self._execute("delete", self._delete_sql(), (ticker.upper(),))
        log.info("signal_repository.deleted", ticker=ticker.upper(), count=deleted)
        return deleted

    def replace_signals(self, ticker: str, signals: Iterable[HistoricalSignal]) -> int:
        """Delete the ticker's rows and insert `signals` in a single transaction.

        Any driver error rolls the delete back, so a failed sync leaves the
        previous signal set in place. An empty `signals` just clears the ticker.
        """
        ticker = ticker.upper()
        rows = [_row(s) for s in signals]
        conn = self._get_conn()
        conn.autocommit = False
        try:
            with conn:  # commit on success, rollback on error
                cur = conn.cursor()
                cur.execute(self._delete_sql(), (ticker,))
                deleted = cur.rowcount
                if rows:
                    cur.executemany(self._upsert_sql(), rows)
                cur.close()
        except psycopg2.Error as exc:
            log.error("signal_repository.replace_failed", ticker=ticker, error=str(exc))
            raise SignalStoreError(f"replace failed: {exc}") from exc
        finally:
            conn.autocommit = True

        log.info("signal_repository.replaced", ticker=ticker, deleted=deleted, inserted=len(rows))
        return len(rows)

    # ──────────────────────────────────────────────
    # Queries
    # ──────────────────────────────────────────────

    def get_signal_stats(self, ticker: str, setup_type: Optional[SetupType] = None) -> SignalStats:
        where = ["ticker = %s"]
        params: list = [ticker.upper()]
        if setup_type is not None:
            where.append("setup_type = %s")
            params.append(setup_type.value)

        rows = self._execute(
            "stats",
            f"""
            SELECT outcome, count(*), coalesce(sum(candles_to_resolve), 0), count(candles_to_resolve)
            FROM {self.TABLE_NAME}
            WHERE {" AND ".join(where)}
            GROUP BY outcome;
            """,
            params,
            fetch=True,
        )

        counts: Counter = Counter()
        resolve_sum = 0
        resolve_count = 0
        for outcome, n, total_candles, n_resolved in rows:
            counts[outcome] += n
            resolve_sum += total_candles
            resolve_count += n_resolved
        return stats_from_counts(counts, resolve_sum, resolve_count)

    def get_signals(self, ticker: str, timeframe: Optional[str] = None, limit: int = 100) -> list[HistoricalSignal]:
        where = ["ticker = %s"]
        params: list = [ticker.upper()]
        if timeframe is not None:
            where.append("timeframe = %s")
            params.append(timeframe)
        params.append(limit)

        rows = self._execute(
            "get_signals",
            f"""
            SELECT {", ".join(_COLUMNS)}
            FROM {self.TABLE_NAME}
            WHERE {" AND ".join(where)}
            ORDER BY signal_time DESC
            LIMIT %s;
            """,
            params,
            fetch=True,
        )
        return [HistoricalSignal(**dict(zip(_COLUMNS, row))) for row in rows]

    def count_all_signals(self) -> int:
        rows = self._execute("count", f"SELECT count(*) FROM {self.TABLE_NAME};", fetch=True)
        return rows[0][0] if rows else 0
