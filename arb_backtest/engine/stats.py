from __future__ import annotations

import math
from typing import Sequence

from ..config import EngineConfig
from ..models import PricedTick, RunStats, Trade, Window
from .grid import expected_tick_count


def nearest_rank_percentile(sorted_values: Sequence[float], q: float) -> float:
    if not sorted_values:
        return 0.0
    # nearest rank, no interpolation
    idx = min(len(sorted_values) - 1, max(0, int(math.floor(len(sorted_values) * q))))
    return sorted_values[idx]


def _ratio(numerator: float, denominator: float, scale: float = 1.0) -> float:
    if denominator == 0:
        return 0.0
    value = numerator / denominator * scale
    if not math.isfinite(value):
        return 0.0
    return value


def _capital_deployed(trade: Trade) -> float | None:
    if trade.raw_edge == 0:
        return None
    capital = trade.profit / trade.raw_edge
    if not math.isfinite(capital):
        return None
    return capital


def compute_run_stats(
    priced_ticks: Sequence[PricedTick],
    windows: Sequence[Window],
    trades: Sequence[Trade],
    analysis_start: int,
    analysis_end: int,
    config: EngineConfig,
) -> RunStats:
    total_paired_ticks = sum(1 for tick in priced_ticks if tick.is_valid)
    expected_ticks = expected_tick_count(
        analysis_start, analysis_end, config.tick_interval_seconds
    )
    durations = sorted(window.duration for window in windows)
    analysis_hours = (analysis_end - analysis_start) / 3600

    completed = [trade for trade in trades if trade.is_completed]
    total_profit = sum(trade.profit for trade in completed)

    # Capital is backed out of profit and edge; zero-edge trades cannot be
    # inverted and are left out of both sides of the edge ratio.
    edge_profit = 0.0
    total_capital_deployed = 0.0
    for trade in completed:
        capital = _capital_deployed(trade)
        if capital is None:
            continue
        edge_profit += trade.profit
        total_capital_deployed += capital

    return RunStats(
        total_paired_ticks=total_paired_ticks,
        expected_ticks=expected_ticks,
        data_coverage_pct=_ratio(total_paired_ticks, expected_ticks, 100.0),
        windows_detected=len(windows),
        duration_p50=nearest_rank_percentile(durations, 0.5),
        windows_per_analysis_hour=_ratio(len(windows), analysis_hours),
        trades_completed=len(completed),
        fill_success_rate=_ratio(len(completed), len(windows), 100.0),
        total_profit=total_profit,
        total_capital_deployed=total_capital_deployed,
        avg_execution_adjusted_edge=(
            _ratio(edge_profit, total_capital_deployed, 100.0)
            if total_capital_deployed > 0
            else 0.0
        ),
    )
