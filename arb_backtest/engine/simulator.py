from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Sequence

from ..config import EngineConfig
from ..models import TRADE_COMPLETED, TRADE_FAILED, Trade, TradeProfitSummary, Window
from .classifier import to_decimal
from .stats import nearest_rank_percentile


def is_fill_feasible(window: Window, config: EngineConfig) -> bool:
    # Only standing time matters here; how low the price went is irrelevant.
    required = to_decimal(config.latency_seconds) + to_decimal(config.min_fill_time_seconds)
    return to_decimal(window.duration) >= required


def simulate_trade(window: Window, trade_size: float, config: EngineConfig) -> Trade:
    if not is_fill_feasible(window, config):
        return Trade(window=window, result=TRADE_FAILED, profit=0.0, fees=0.0, raw_edge=0.0)

    size = to_decimal(trade_size)
    # Entry price, not the window minimum: the best print is not guaranteed.
    raw_edge = to_decimal(config.payout) - to_decimal(window.entry_combined_price)
    fees = size * to_decimal(config.fee_bps) / Decimal(10000)
    profit = size * raw_edge - fees
    return Trade(
        window=window,
        result=TRADE_COMPLETED,
        profit=float(profit),
        fees=float(fees),
        raw_edge=float(raw_edge),
    )


def simulate_trades(
    windows: Iterable[Window], trade_size: float, config: EngineConfig
) -> list[Trade]:
    if trade_size <= 0:
        raise ValueError("trade_size must be positive")
    return [simulate_trade(window, trade_size, config) for window in windows]


def summarize_trade_profits(trades: Sequence[Trade]) -> TradeProfitSummary:
    profits = sorted(trade.profit for trade in trades if trade.is_completed)
    if not profits:
        return TradeProfitSummary(
            avg_profit=0.0,
            max_profit=0.0,
            min_profit=0.0,
            total_profit=0.0,
            profit_p50=0.0,
            profit_p90=0.0,
        )
    total = sum(profits)
    return TradeProfitSummary(
        avg_profit=total / len(profits),
        max_profit=profits[-1],
        min_profit=profits[0],
        total_profit=total,
        profit_p50=nearest_rank_percentile(profits, 0.5),
        profit_p90=nearest_rank_percentile(profits, 0.9),
    )
