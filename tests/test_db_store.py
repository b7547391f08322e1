from __future__ import annotations

import unittest

from arb_backtest.config import EngineConfig
from arb_backtest.db import RUN_COLUMNS, PostgresStore
from arb_backtest.engine.simulator import simulate_trades
from arb_backtest.models import Window


class _FakeCursor:
    def __init__(self, conn: "_FakeConnection") -> None:
        self.conn = conn

    def __enter__(self) -> "_FakeCursor":
        return self

    def __exit__(self, *exc: object) -> None:
        return None

    def execute(self, query: str, params: tuple = ()) -> None:
        if self.conn.fail_on is not None and self.conn.fail_on in query:
            raise RuntimeError("insert failed")
        self.conn.executed.append((" ".join(query.split()), params))

    def fetchone(self):
        return self.conn.rows.pop(0) if self.conn.rows else None

    def fetchall(self):
        rows, self.conn.rows = self.conn.rows, []
        return rows


class _FakeConnection:
    def __init__(self, rows: list[tuple] | None = None, fail_on: str | None = None) -> None:
        self.rows = rows or []
        self.fail_on = fail_on
        self.executed: list[tuple[str, tuple]] = []
        self.commits = 0
        self.rollbacks = 0

    def cursor(self) -> _FakeCursor:
        return _FakeCursor(self)

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1


def _store(conn: _FakeConnection) -> PostgresStore:
    store = PostgresStore.__new__(PostgresStore)
    store.database_url = "postgresql://localhost/test"
    store.conn = conn
    return store


def _windows() -> list[Window]:
    return [
        Window(
            start_time=start,
            end_time=start + 20,
            duration=20,
            entry_combined_price=0.98,
            min_combined_price=0.97,
            exit_combined_price=0.99,
            tick_count=5,
            market_id="m1",
        )
        for start in (0, 100)
    ]


class PostgresStoreTests(unittest.TestCase):
    def test_store_results_writes_window_then_trade(self) -> None:
        conn = _FakeConnection()
        windows = _windows()
        trades = simulate_trades(windows, 100, EngineConfig())
        self.assertEqual(_store(conn).store_results("run-1", windows, trades), 2)

        inserts = [row for row in conn.executed if row[0].startswith("INSERT")]
        self.assertEqual(len(inserts), 4)
        window_sql, window_params = inserts[0]
        trade_sql, trade_params = inserts[1]
        self.assertIn("INSERT INTO windows", window_sql)
        self.assertIn("INSERT INTO trades_sim", trade_sql)
        self.assertEqual(trade_params[2], window_params[0])
        self.assertEqual(trade_params[3], "completed")
        self.assertNotEqual(inserts[2][1][0], window_params[0])
        self.assertEqual((conn.commits, conn.rollbacks), (1, 0))

    def test_store_results_replaces_previous_results_of_run(self) -> None:
        conn = _FakeConnection()
        store = _store(conn)
        windows = _windows()[:1]
        trades = simulate_trades(windows, 100, EngineConfig())
        store.store_results("r1", windows, trades)
        store.store_results("r1", windows, trades)

        # each call clears the run before inserting, inside its own commit
        statements = [sql.split(" WHERE")[0].split(" (")[0] for sql, _ in conn.executed]
        one_pass = [
            "DELETE FROM trades_sim",
            "DELETE FROM windows",
            "INSERT INTO windows",
            "INSERT INTO trades_sim",
        ]
        self.assertEqual(statements, one_pass * 2)
        self.assertEqual(conn.executed[0][1], ("r1",))
        self.assertEqual(conn.executed[1][1], ("r1",))
        self.assertEqual(conn.commits, 2)

    def test_store_results_rolls_back_on_error(self) -> None:
        conn = _FakeConnection(fail_on="INSERT INTO trades_sim")
        windows = _windows()
        trades = simulate_trades(windows, 100, EngineConfig())
        with self.assertRaises(RuntimeError):
            _store(conn).store_results("run-1", windows, trades)
        self.assertEqual((conn.commits, conn.rollbacks), (0, 1))

    def test_store_results_requires_one_trade_per_window(self) -> None:
        with self.assertRaises(ValueError):
            _store(_FakeConnection()).store_results("run-1", _windows(), [])

    def test_get_run_missing(self) -> None:
        self.assertIsNone(_store(_FakeConnection()).get_run("nope"))

    def test_load_snapshots_applies_period_filter(self) -> None:
        conn = _FakeConnection(rows=[("m1", 5, "UP", 0.48, None, True)])
        rows = _store(conn).load_snapshots("m1", start_time=0, end_time=10)
        self.assertEqual(rows[0].mid_price, 0.48)
        self.assertIsNone(rows[0].last_price)
        sql, params = conn.executed[0]
        self.assertIn("ts >= %s AND ts <= %s", sql)
        self.assertEqual(params, ("m1", 0, 10))

    def test_top_windows_ordered_by_lowest_price(self) -> None:
        conn = _FakeConnection()
        _store(conn).get_top_windows("run-1", limit=3)
        sql, params = conn.executed[0]
        self.assertIn("ORDER BY min_combined_price ASC", sql)
        self.assertEqual(params, ("run-1", 3))

    def test_get_runs_keeps_requested_order(self) -> None:
        width = len(RUN_COLUMNS)
        conn = _FakeConnection(rows=[("b",) + (None,) * (width - 1), ("a",) + (None,) * (width - 1)])
        runs = _store(conn).get_runs(["a", "b", "missing"])
        self.assertEqual([run["id"] for run in runs], ["a", "b"])


if __name__ == "__main__":
    unittest.main()
