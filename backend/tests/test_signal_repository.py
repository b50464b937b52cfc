"""
Signal Repository Tests — in-memory store and PostgreSQL adapter (fake driver)
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest


def _signal(ticker="PETR4", outcome="success", day=0, setup_type="123-compra", timeframe="1d", ctr=3):
    from tradesetups.models import HistoricalSignal

    buy = setup_type != "123-venda"
    return HistoricalSignal(
        ticker=ticker,
        setup_type=setup_type,
        timeframe=timeframe,
        signal_time=datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(days=day),
        direction="BUY" if buy else "SELL",
        p1_index=day, p2_index=day + 1, p3_index=day + 2,
        p1_price=10.0, p2_price=9.0, p3_price=9.5,
        entry_price=10.5, stop_price=9.0, target_price=12.0,
        outcome=outcome,
        candles_to_resolve=ctr if outcome != "pending" else None,
    )


# ──────────────────────────────────────────────
# In-memory
# ──────────────────────────────────────────────

class TestInMemorySignalRepository:
    def test_upsert_is_keyed(self):
        from tradesetups.data.signal_repository import InMemorySignalRepository
        from tradesetups.models import SignalOutcome

        repo = InMemorySignalRepository()
        assert repo.upsert_signals([_signal(outcome="pending")]) == 1
        assert repo.upsert_signals([_signal(outcome="failure")]) == 1
        assert repo.count_all_signals() == 1
        assert repo.get_signals("petr4")[0].outcome == SignalOutcome.FAILURE

    def test_ticker_normalised(self):
        from tradesetups.data.signal_repository import InMemorySignalRepository

        repo = InMemorySignalRepository()
        repo.upsert_signals([_signal(ticker="petr4")])
        assert repo.get_signals("PETR4")[0].ticker == "PETR4"

    def test_delete_by_ticker(self):
        from tradesetups.data.signal_repository import InMemorySignalRepository

        repo = InMemorySignalRepository()
        repo.upsert_signals([_signal(day=0), _signal(day=1), _signal(ticker="VALE3")])
        assert repo.delete_signals_by_ticker("petr4") == 2
        assert repo.count_all_signals() == 1

    def test_replace_swaps_ticker_rows(self):
        from tradesetups.data.signal_repository import InMemorySignalRepository

        repo = InMemorySignalRepository()
        repo.upsert_signals([_signal(day=0), _signal(day=1), _signal(ticker="VALE3")])
        assert repo.replace_signals("petr4", [_signal(day=5, outcome="failure")]) == 1
        assert [s.p1_index for s in repo.get_signals("PETR4")] == [5]
        assert repo.count_all_signals() == 2

        assert repo.replace_signals("PETR4", []) == 0
        assert repo.get_signals("PETR4") == []
        assert repo.count_all_signals() == 1

    def test_replace_keeps_rows_when_new_set_fails(self):
        from tradesetups.data.signal_repository import InMemorySignalRepository

        repo = InMemorySignalRepository()
        repo.upsert_signals([_signal(day=0), _signal(day=1)])

        def interrupted():
            yield _signal(day=7)
            raise RuntimeError("history scan aborted")

        with pytest.raises(RuntimeError):
            repo.replace_signals("PETR4", interrupted())
        assert [s.p1_index for s in repo.get_signals("PETR4")] == [1, 0]

    def test_stats_by_setup_type(self):
        from tradesetups.data.signal_repository import InMemorySignalRepository
        from tradesetups.models import SetupType

        repo = InMemorySignalRepository()
        repo.upsert_signals([
            _signal(outcome="success", day=0),
            _signal(outcome="failure", day=1),
            _signal(outcome="success", day=2, setup_type="123-venda"),
            _signal(outcome="pending", day=3),
        ])

        all_stats = repo.get_signal_stats("PETR4")
        assert all_stats.total == 4
        assert all_stats.success_rate == pytest.approx(200 / 3)

        buy_stats = repo.get_signal_stats("PETR4", SetupType.SETUP_123_BUY)
        assert (buy_stats.total, buy_stats.success, buy_stats.failure, buy_stats.pending) == (3, 1, 1, 1)
        assert buy_stats.success_rate == pytest.approx(50.0)

        assert repo.get_signal_stats("PETR4", SetupType.MYSTIC_PULSE).total == 0

    def test_get_signals_newest_first(self):
        from tradesetups.data.signal_repository import InMemorySignalRepository

        repo = InMemorySignalRepository()
        repo.upsert_signals([_signal(day=d) for d in range(5)] + [_signal(day=9, timeframe="1wk")])

        daily = repo.get_signals("PETR4", "1d", limit=3)
        assert [s.p1_index for s in daily] == [4, 3, 2]
        assert len(repo.get_signals("PETR4")) == 6


# ──────────────────────────────────────────────
# PostgreSQL (fake psycopg2 connection)
# ──────────────────────────────────────────────

class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.rowcount = 0

    def execute(self, sql, params=None):
        if self.conn.error:
            raise self.conn.error
        self.conn.calls.append(("execute", sql, params))
        self.rowcount = self.conn.rowcount

    def executemany(self, sql, params):
        if self.conn.error or self.conn.many_error:
            raise self.conn.error or self.conn.many_error
        params = list(params)
        self.conn.calls.append(("executemany", sql, params))
        self.rowcount = len(params)

    def fetchall(self):
        return self.conn.rows

    def close(self):
        pass


class FakeConnection:
    def __init__(self, rows=None, rowcount=0, error=None, many_error=None):
        self.rows = rows or []
        self.rowcount = rowcount
        self.error = error
        self.many_error = many_error
        self.calls = []
        self.closed = 0
        self.autocommit = False

    def cursor(self):
        return FakeCursor(self)

    def __enter__(self):
        self.calls.append(("begin", None, self.autocommit))
        return self

    def __exit__(self, exc_type, exc, tb):
        self.calls.append(("rollback" if exc_type else "commit", None, None))
        return False

    def close(self):
        self.closed = 1


class TestPostgresSignalRepository:
    def test_ensure_table(self):
        from tradesetups.data.signal_repository import PostgresSignalRepository

        conn = FakeConnection()
        PostgresSignalRepository(dsn="postgresql://x", connection=conn).ensure_table()
        sql = conn.calls[0][1]
        assert "CREATE TABLE IF NOT EXISTS setup_signals" in sql
        assert "UNIQUE (ticker, setup_type, timeframe, signal_time)" in sql

    def test_upsert(self):
        from tradesetups.data.signal_repository import PostgresSignalRepository

        conn = FakeConnection()
        repo = PostgresSignalRepository(dsn="postgresql://x", connection=conn)
        assert repo.upsert_signals([_signal(ticker="petr4", day=0), _signal(day=1)]) == 2

        kind, sql, rows = conn.calls[0]
        assert kind == "executemany"
        assert "ON CONFLICT (ticker, setup_type, timeframe, signal_time) DO UPDATE" in sql
        assert "outcome = EXCLUDED.outcome" in sql
        assert rows[0][:3] == ("PETR4", "123-compra", "1d")
        assert isinstance(rows[0][3], datetime)
        assert rows[0][14] == "success"

    def test_upsert_empty_skips_database(self):
        from tradesetups.data.signal_repository import PostgresSignalRepository

        conn = FakeConnection()
        assert PostgresSignalRepository(dsn="postgresql://x", connection=conn).upsert_signals([]) == 0
        assert conn.calls == []

    def test_delete(self):
        from tradesetups.data.signal_repository import PostgresSignalRepository

        conn = FakeConnection(rowcount=7)
        repo = PostgresSignalRepository(dsn="postgresql://x", connection=conn)
        assert repo.delete_signals_by_ticker("vale3") == 7
        assert conn.calls[0][2] == ("VALE3",)

    def test_replace_in_one_transaction(self):
        from tradesetups.data.signal_repository import PostgresSignalRepository

        conn = FakeConnection(rowcount=3)
        conn.autocommit = True
        repo = PostgresSignalRepository(dsn="postgresql://x", connection=conn)
        assert repo.replace_signals("petr4", [_signal(day=0), _signal(day=1)]) == 2

        assert [c[0] for c in conn.calls] == ["begin", "execute", "executemany", "commit"]
        assert conn.calls[0][2] is False  # autocommit off inside the transaction
        assert conn.calls[1][1].startswith("DELETE FROM setup_signals")
        assert conn.calls[1][2] == ("PETR4",)
        assert "ON CONFLICT" in conn.calls[2][1]
        assert conn.autocommit is True

    def test_replace_with_no_signals_still_deletes(self):
        from tradesetups.data.signal_repository import PostgresSignalRepository

        conn = FakeConnection(rowcount=4)
        repo = PostgresSignalRepository(dsn="postgresql://x", connection=conn)
        assert repo.replace_signals("PETR4", []) == 0
        assert [c[0] for c in conn.calls] == ["begin", "execute", "commit"]

    def test_replace_rolls_back_delete_on_insert_error(self):
        import psycopg2
        from tradesetups.data.signal_repository import PostgresSignalRepository, SignalStoreError

        conn = FakeConnection(many_error=psycopg2.DataError("value out of range"))
        repo = PostgresSignalRepository(dsn="postgresql://x", connection=conn)
        with pytest.raises(SignalStoreError, match="replace failed"):
            repo.replace_signals("PETR4", [_signal()])

        assert [c[0] for c in conn.calls] == ["begin", "execute", "rollback"]
        assert conn.autocommit is True

    def test_stats(self):
        from tradesetups.data.signal_repository import PostgresSignalRepository
        from tradesetups.models import SetupType

        conn = FakeConnection(rows=[("success", 3, 12, 3), ("failure", 1, 2, 1), ("pending", 2, 0, 0)])
        repo = PostgresSignalRepository(dsn="postgresql://x", connection=conn)
        stats = repo.get_signal_stats("petr4", SetupType.SETUP_123_BUY)

        assert stats.total == 6
        assert (stats.success, stats.failure, stats.pending, stats.expired) == (3, 1, 2, 0)
        assert stats.success_rate == pytest.approx(75.0)
        assert stats.avg_candles_to_resolve == pytest.approx(3.5)
        assert conn.calls[0][2] == ["PETR4", "123-compra"]

    def test_get_signals_maps_rows(self):
        from tradesetups.data.signal_repository import PostgresSignalRepository, _row
        from tradesetups.models import SignalOutcome

        original = _signal(outcome="expired", day=4)
        conn = FakeConnection(rows=[_row(original)])
        repo = PostgresSignalRepository(dsn="postgresql://x", connection=conn)

        [loaded] = repo.get_signals("PETR4", "1d", limit=10)
        assert loaded == original
        assert loaded.outcome == SignalOutcome.EXPIRED
        assert conn.calls[0][2] == ["PETR4", "1d", 10]

    def test_count(self):
        from tradesetups.data.signal_repository import PostgresSignalRepository

        repo = PostgresSignalRepository(dsn="postgresql://x", connection=FakeConnection(rows=[(42,)]))
        assert repo.count_all_signals() == 42

    def test_driver_error_wrapped(self):
        import psycopg2
        from tradesetups.data.signal_repository import PostgresSignalRepository, SignalStoreError

        conn = FakeConnection(error=psycopg2.OperationalError("server closed the connection"))
        repo = PostgresSignalRepository(dsn="postgresql://x", connection=conn)
        with pytest.raises(SignalStoreError, match="stats failed"):
            repo.get_signal_stats("PETR4")

    def test_connection_error_wrapped(self, monkeypatch):
        import psycopg2
        from tradesetups.data import signal_repository
        from tradesetups.data.signal_repository import PostgresSignalRepository, SignalStoreError

        def refuse(*args, **kwargs):
            raise psycopg2.OperationalError("connection refused")

        monkeypatch.setattr(signal_repository.psycopg2, "connect", refuse)
        with pytest.raises(SignalStoreError, match="cannot connect"):
            PostgresSignalRepository(dsn="postgresql://nowhere").count_all_signals()

    def test_reconnects_when_closed(self, monkeypatch):
        from tradesetups.data import signal_repository
        from tradesetups.data.signal_repository import PostgresSignalRepository

        fresh = FakeConnection(rows=[(1,)])
        monkeypatch.setattr(signal_repository.psycopg2, "connect", lambda *a, **k: fresh)

        stale = FakeConnection()
        stale.closed = 1
        repo = PostgresSignalRepository(dsn="postgresql://x", connection=stale)
        assert repo.count_all_signals() == 1
        assert fresh.autocommit is True

    def test_close(self):
        from tradesetups.data.signal_repository import PostgresSignalRepository

        conn = FakeConnection()
        PostgresSignalRepository(dsn="postgresql://x", connection=conn).close()
        assert conn.closed == 1
