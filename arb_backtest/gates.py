from __future__ import annotations

from typing import Any, Mapping, Sequence

from .config import Settings
from .models import RunStats

COMPARISON_METRICS = [
    "windows_detected",
    "windows_per_analysis_hour",
    "duration_p50",
    "trades_completed",
    "fill_success_rate",
    "avg_execution_adjusted_edge",
    "data_coverage_pct",
    "total_profit",
]


def _metric(stats: RunStats | Mapping[str, Any], name: str) -> float:
    value = stats.get(name) if isinstance(stats, Mapping) else getattr(stats, name, None)
    if value is None:
        return 0.0
    return float(value)


def check_go_no_go_gates(
    stats: RunStats | Mapping[str, Any], settings: Settings
) -> dict[str, bool]:
    return {
        "min_windows_per_hour": _metric(stats, "windows_per_analysis_hour")
        >= settings.gate_min_windows_per_hour,
        "min_duration_p50": _metric(stats, "duration_p50")
        >= settings.gate_min_duration_p50_seconds,
        "min_fill_success_rate": _metric(stats, "fill_success_rate")
        >= settings.gate_min_fill_success_rate,
        "min_avg_edge": _metric(stats, "avg_execution_adjusted_edge")
        >= settings.gate_min_avg_edge_pct,
        "min_data_coverage": _metric(stats, "data_coverage_pct")
        >= settings.gate_min_data_coverage_pct,
    }


def is_go(gates: Mapping[str, bool]) -> bool:
    return bool(gates) and all(gates.values())


def compare_runs(
    runs: Sequence[Mapping[str, Any]], settings: Settings
) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for run in runs:
        gates = check_go_no_go_gates(run, settings)
        row: dict[str, Any] = {
            "id": run.get("id"),
            "name": run.get("name"),
            "status": run.get("status"),
        }
        for metric in COMPARISON_METRICS:
            row[metric] = _metric(run, metric)
        row["gates"] = gates
        row["go"] = is_go(gates)
        rows.append(row)
    return rows
