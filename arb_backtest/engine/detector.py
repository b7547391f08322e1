from __future__ import annotations

import logging
from typing import Iterable

from ..config import EngineConfig
from ..models import RunResult, Snapshot
from .classifier import classify_ticks
from .grid import build_anchor_grid
from .pairing import pair_ticks, split_sides
from .simulator import simulate_trades, summarize_trade_profits
from .stats import compute_run_stats
from .windows import stitch_windows, validate_windows

logger = logging.getLogger(__name__)


def _market_id_for(snapshots: list[Snapshot]) -> str | None:
    market_ids = {row.market_id for row in snapshots if row.market_id}
    if len(market_ids) == 1:
        return next(iter(market_ids))
    return None


def detect_and_simulate(
    snapshots: Iterable[Snapshot],
    analysis_start: int,
    analysis_end: int,
    trade_size: float,
    config: EngineConfig | None = None,
) -> RunResult:
    """Detect arbitrage windows in a two-sided price series and simulate one trade per window.

    Pure and deterministic: no I/O, no shared state, identical input gives an
    identical result. Raises ValueError when `analysis_end <= analysis_start`,
    when `trade_size` is not positive, or when `config` is invalid. Input does
    not need to be sorted; each side is sorted by timestamp before pairing.
    """
    engine_config = config or EngineConfig()
    engine_config.validate()
    if analysis_end <= analysis_start:
        raise ValueError(
            f"analysis_end ({analysis_end}) must be greater than analysis_start ({analysis_start})"
        )
    if trade_size <= 0:
        raise ValueError("trade_size must be positive")

    rows = list(snapshots)
    market_id = _market_id_for(rows)
    anchors = build_anchor_grid(analysis_start, analysis_end, engine_config.tick_interval_seconds)
    side_a, side_b = split_sides(rows, engine_config)
    paired = pair_ticks(anchors, side_a, side_b, engine_config.max_pairing_delta_seconds)
    priced = classify_ticks(paired, engine_config)

    raw_windows = list(stitch_windows(priced))
    windows = validate_windows(raw_windows, engine_config, market_id=market_id)
    logger.debug(
        "windows_filtered market_id=%s raw=%s kept=%s",
        market_id,
        len(raw_windows),
        len(windows),
    )

    trades = simulate_trades(windows, trade_size, engine_config)
    stats = compute_run_stats(
        priced, windows, trades, analysis_start, analysis_end, engine_config
    )
    logger.info(
        "detection_complete market_id=%s anchors=%s paired=%s windows=%s trades_completed=%s coverage_pct=%.2f",
        market_id,
        len(anchors),
        stats.total_paired_ticks,
        stats.windows_detected,
        stats.trades_completed,
        stats.data_coverage_pct,
    )
    return RunResult(
        windows=tuple(windows),
        trades=tuple(trades),
        stats=stats,
        profit_summary=summarize_trade_profits(trades),
        priced_ticks=tuple(priced),
    )
