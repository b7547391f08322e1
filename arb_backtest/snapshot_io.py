from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from .config import EngineConfig
from .models import Snapshot, Trade

SNAPSHOT_FIELDS = ["market_id", "timestamp", "side", "mid_price", "last_price", "is_tradable"]
TRADE_EXPORT_FIELDS = [
    "trade_id",
    "result",
    "profit",
    "fees",
    "window_start",
    "window_end",
    "duration",
    "entry_price",
    "min_price",
]


def snapshots_from_rows(
    rows: Iterable[Mapping[str, Any]], config: EngineConfig | None = None
) -> list[Snapshot]:
    engine_config = config or EngineConfig()
    return [
        Snapshot.from_row(row, side_a=engine_config.side_a, side_b=engine_config.side_b)
        for row in rows
    ]


def read_snapshots(path: str | Path, config: EngineConfig | None = None) -> list[Snapshot]:
    source = Path(path)
    if source.suffix.lower() == ".csv":
        with source.open("r", newline="", encoding="utf-8") as handle:
            return snapshots_from_rows(csv.DictReader(handle), config)
    payload = json.loads(source.read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("snapshots", [])
    if not isinstance(payload, list):
        raise ValueError(f"unsupported snapshot payload in {source}")
    return snapshots_from_rows(payload, config)


def write_snapshots(path: str | Path, snapshots: Sequence[Snapshot]) -> int:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    if target.suffix.lower() == ".csv":
        with target.open("w", newline="", encoding="utf-8") as handle:
            writer = csv.DictWriter(handle, fieldnames=SNAPSHOT_FIELDS)
            writer.writeheader()
            for snapshot in snapshots:
                row = snapshot.to_dict()
                row["is_tradable"] = int(snapshot.is_tradable)
                writer.writerow(row)
    else:
        target.write_text(
            json.dumps([snapshot.to_dict() for snapshot in snapshots], indent=2),
            encoding="utf-8",
        )
    return len(snapshots)


def trade_export_row(trade: Trade, trade_id: str | None = None) -> dict[str, Any]:
    return {
        "trade_id": trade_id or "",
        "result": trade.result,
        "profit": trade.profit,
        "fees": trade.fees,
        "window_start": trade.window.start_time,
        "window_end": trade.window.end_time,
        "duration": trade.window.duration,
        "entry_price": trade.window.entry_combined_price,
        "min_price": trade.window.min_combined_price,
    }


def write_trades_csv(handle, rows: Iterable[Mapping[str, Any]]) -> int:
    writer = csv.DictWriter(handle, fieldnames=TRADE_EXPORT_FIELDS, extrasaction="ignore")
    writer.writeheader()
    count = 0
    for row in rows:
        writer.writerow(row)
        count += 1
    return count
