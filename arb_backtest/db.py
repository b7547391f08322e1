from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable
from urllib.parse import urlsplit
import uuid

import psycopg

from .models import RunStats, Snapshot, Trade, Window

RUN_COLUMNS = [
    "id",
    "name",
    "market_id",
    "asset",
    "trade_size",
    "status",
    "stage",
    "progress_pct",
    "analysis_start",
    "analysis_end",
    "parameters_json",
    "windows_detected",
    "trades_completed",
    "fill_success_rate",
    "avg_execution_adjusted_edge",
    "data_coverage_pct",
    "windows_per_analysis_hour",
    "duration_p50",
    "total_paired_ticks",
    "expected_ticks",
    "total_profit",
    "total_capital_deployed",
    "created_at",
    "completed_at",
    "error_message",
]

WINDOW_COLUMNS = [
    "id",
    "run_id",
    "market_id",
    "start_time",
    "end_time",
    "duration",
    "entry_combined_price",
    "min_combined_price",
    "exit_combined_price",
    "tick_count",
]


def _row_to_dict(columns: list[str], row: Iterable[Any]) -> dict[str, object]:
    return dict(zip(columns, row))


class PostgresStore:
    def __init__(self, database_url: str) -> None:
        self.database_url = database_url
        try:
            self.conn = psycopg.connect(database_url, connect_timeout=15)
        except psycopg.OperationalError as exc:
            host = urlsplit(database_url).hostname or "unknown-host"
            raise RuntimeError(
                f"Postgres connection failed for host '{host}'. "
                "Verify DATABASE_URL or the PG* variables."
            ) from exc

    def close(self) -> None:
        self.conn.close()

    def ensure_schema(self) -> None:
        schema_sql = Path(__file__).with_name("schema.sql").read_text(encoding="utf-8")
        with self.conn.cursor() as cur:
            cur.execute(schema_sql)
        self.conn.commit()

    def create_run(
        self,
        *,
        analysis_start: int,
        analysis_end: int,
        trade_size: float,
        market_id: str | None = None,
        asset: str | None = None,
        name: str | None = None,
        parameters: dict[str, Any] | None = None,
    ) -> str:
        run_id = str(uuid.uuid4())
        with self.conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO backtests (
                    id, name, market_id, asset, trade_size, status, stage,
                    analysis_start, analysis_end, parameters_json
                )
                VALUES (%s, %s, %s, %s, %s, 'queued', 'queued', %s, %s, %s)
                """,
                (
                    run_id,
                    name,
                    market_id,
                    asset,
                    trade_size,
                    analysis_start,
                    analysis_end,
                    psycopg.types.json.Jsonb(parameters or {}),
                ),
            )
        self.conn.commit()
        return run_id

    def get_run(self, run_id: str) -> dict[str, object] | None:
        with self.conn.cursor() as cur:
            cur.execute(
                f"SELECT {', '.join(RUN_COLUMNS)} FROM backtests WHERE id = %s",
                (run_id,),
            )
            row = cur.fetchone()
        if row is None:
            return None
        payload = _row_to_dict(RUN_COLUMNS, row)
        if not isinstance(payload.get("parameters_json"), dict):
            payload["parameters_json"] = {}
        return payload

    def list_runs(self, *, limit: int = 50) -> list[dict[str, object]]:
        with self.conn.cursor() as cur:
            cur.execute(
                f"SELECT {', '.join(RUN_COLUMNS)} FROM backtests ORDER BY created_at DESC LIMIT %s",
                (limit,),
            )
            rows = cur.fetchall()
        return [_row_to_dict(RUN_COLUMNS, row) for row in rows]

    def get_runs(self, run_ids: list[str]) -> list[dict[str, object]]:
        if not run_ids:
            return []
        with self.conn.cursor() as cur:
            cur.execute(
                f"SELECT {', '.join(RUN_COLUMNS)} FROM backtests WHERE id = ANY(%s)",
                (list(run_ids),),
            )
            rows = cur.fetchall()
        by_id = {row[0]: _row_to_dict(RUN_COLUMNS, row) for row in rows}
        return [by_id[run_id] for run_id in run_ids if run_id in by_id]

    def update_progress(self, run_id: str, progress_pct: float, status: str, stage: str) -> None:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                UPDATE backtests
                SET progress_pct = %s, status = %s, stage = %s
                WHERE id = %s
                """,
                (progress_pct, status, stage, run_id),
            )
        self.conn.commit()

    def insert_snapshots(self, snapshots: list[Snapshot]) -> int:
        inserted_count = 0
        with self.conn.cursor() as cur:
            for snapshot in snapshots:
                cur.execute(
                    """
                    INSERT INTO snapshots (market_id, ts, side, mid, last, is_tradable)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    ON CONFLICT (market_id, ts, side)
                    DO NOTHING
                    RETURNING ts
                    """,
                    (
                        snapshot.market_id,
                        snapshot.timestamp,
                        snapshot.side,
                        snapshot.mid_price,
                        snapshot.last_price,
                        snapshot.is_tradable,
                    ),
                )
                if cur.fetchone() is not None:
                    inserted_count += 1
        self.conn.commit()
        return inserted_count

    def load_snapshots(
        self,
        market_id: str,
        *,
        start_time: int | None = None,
        end_time: int | None = None,
    ) -> list[Snapshot]:
        query = """
            SELECT market_id, ts, side, mid, last, is_tradable
            FROM snapshots
            WHERE market_id = %s
        """
        params: list[object] = [market_id]
        if start_time is not None:
            query += " AND ts >= %s"
            params.append(start_time)
        if end_time is not None:
            query += " AND ts <= %s"
            params.append(end_time)
        query += " ORDER BY ts ASC, side ASC"
        with self.conn.cursor() as cur:
            cur.execute(query, tuple(params))
            rows = cur.fetchall()
        return [
            Snapshot(
                market_id=str(row[0]),
                timestamp=int(row[1]),
                side=str(row[2]),
                mid_price=float(row[3]),
                last_price=float(row[4]) if row[4] is not None else None,
                is_tradable=bool(row[5]),
            )
            for row in rows
        ]

    def store_results(
        self, run_id: str, windows: list[Window], trades: list[Trade]
    ) -> int:
        if len(windows) != len(trades):
            raise ValueError("every validated window needs exactly one trade")
        try:
            with self.conn.cursor() as cur:
                # Reprocessing replaces the run's previous results.
                cur.execute("DELETE FROM trades_sim WHERE run_id = %s", (run_id,))
                cur.execute("DELETE FROM windows WHERE run_id = %s", (run_id,))
                for window, trade in zip(windows, trades):
                    window_id = str(uuid.uuid4())
                    cur.execute(
                        """
                        INSERT INTO windows (
                            id, run_id, market_id, start_time, end_time, duration,
                            entry_combined_price, min_combined_price, exit_combined_price,
                            tick_count
                        )
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                        """,
                        (
                            window_id,
                            run_id,
                            window.market_id,
                            window.start_time,
                            window.end_time,
                            window.duration,
                            window.entry_combined_price,
                            window.min_combined_price,
                            window.exit_combined_price,
                            window.tick_count,
                        ),
                    )
                    cur.execute(
                        """
                        INSERT INTO trades_sim (id, run_id, window_id, result, profit, fees)
                        VALUES (%s, %s, %s, %s, %s, %s)
                        """,
                        (
                            str(uuid.uuid4()),
                            run_id,
                            window_id,
                            trade.result,
                            trade.profit,
                            trade.fees,
                        ),
                    )
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()
        return len(windows)

    def complete_run(self, run_id: str, stats: RunStats) -> None:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                UPDATE backtests
                SET status = 'completed',
                    stage = 'Completed',
                    progress_pct = 100,
                    windows_detected = %s,
                    trades_completed = %s,
                    fill_success_rate = %s,
                    avg_execution_adjusted_edge = %s,
                    data_coverage_pct = %s,
                    windows_per_analysis_hour = %s,
                    duration_p50 = %s,
                    total_paired_ticks = %s,
                    expected_ticks = %s,
                    total_profit = %s,
                    total_capital_deployed = %s,
                    completed_at = NOW(),
                    error_message = NULL
                WHERE id = %s
                """,
                (
                    stats.windows_detected,
                    stats.trades_completed,
                    stats.fill_success_rate,
                    stats.avg_execution_adjusted_edge,
                    stats.data_coverage_pct,
                    stats.windows_per_analysis_hour,
                    stats.duration_p50,
                    stats.total_paired_ticks,
                    stats.expected_ticks,
                    stats.total_profit,
                    stats.total_capital_deployed,
                    run_id,
                ),
            )
        self.conn.commit()

    def fail_run(self, run_id: str, error_message: str) -> None:
        # A failed statement leaves the transaction aborted until rolled back.
        self.conn.rollback()
        with self.conn.cursor() as cur:
            cur.execute(
                """
                UPDATE backtests
                SET status = 'failed', error_message = %s, completed_at = NOW()
                WHERE id = %s
                """,
                (error_message, run_id),
            )
        self.conn.commit()

    def delete_run(self, run_id: str) -> bool:
        with self.conn.cursor() as cur:
            cur.execute("DELETE FROM backtests WHERE id = %s RETURNING id", (run_id,))
            deleted = cur.fetchone() is not None
        self.conn.commit()
        return deleted

    def get_top_windows(self, run_id: str, *, limit: int = 10) -> list[dict[str, object]]:
        with self.conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {', '.join(WINDOW_COLUMNS)}
                FROM windows
                WHERE run_id = %s
                ORDER BY min_combined_price ASC, start_time ASC
                LIMIT %s
                """,
                (run_id, limit),
            )
            rows = cur.fetchall()
        return [_row_to_dict(WINDOW_COLUMNS, row) for row in rows]

    def get_trade_export_rows(self, run_id: str) -> list[dict[str, object]]:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT t.id, t.result, t.profit, t.fees,
                       w.start_time, w.end_time, w.duration,
                       w.entry_combined_price, w.min_combined_price
                FROM trades_sim t
                LEFT JOIN windows w ON t.window_id = w.id
                WHERE t.run_id = %s
                ORDER BY w.start_time
                """,
                (run_id,),
            )
            rows = cur.fetchall()
        return [
            {
                "trade_id": row[0],
                "result": row[1],
                "profit": row[2],
                "fees": row[3],
                "window_start": row[4],
                "window_end": row[5],
                "duration": row[6],
                "entry_price": row[7],
                "min_price": row[8],
            }
            for row in rows
        ]
