from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Mapping

TRADE_COMPLETED = "completed"
TRADE_FAILED = "failed"

_YES_ALIASES = {"YES"}
_NO_ALIASES = {"NO"}


def _first_present(row: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = row.get(key)
        if value is not None and value != "":
            return value
    return None


def _as_tradable(value: Any) -> bool:
    if value is None or value == "":
        return True
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


@dataclass(frozen=True)
class Snapshot:
    market_id: str
    timestamp: int
    side: str
    mid_price: float
    last_price: float | None = None
    is_tradable: bool = True

    @classmethod
    def from_row(
        cls,
        row: Mapping[str, Any],
        *,
        side_a: str = "UP",
        side_b: str = "DOWN",
    ) -> "Snapshot":
        side = str(row.get("side") or "").strip().upper()
        # Plain YES/NO feeds map onto the configured outcome labels.
        if side in _YES_ALIASES and side_a not in _YES_ALIASES:
            side = side_a
        elif side in _NO_ALIASES and side_b not in _NO_ALIASES:
            side = side_b
        mid = _first_present(row, "mid_price", "mid", "price", "p")
        last = _first_present(row, "last_price", "last")
        timestamp = _first_present(row, "timestamp", "ts", "t")
        if mid is None or timestamp is None:
            raise ValueError(f"snapshot row missing timestamp or mid price: {dict(row)!r}")
        return cls(
            market_id=str(row.get("market_id") or ""),
            timestamp=int(float(timestamp)),
            side=side,
            mid_price=float(mid),
            last_price=float(last) if last is not None else None,
            is_tradable=_as_tradable(row.get("is_tradable")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PairedTick:
    anchor: int
    side_a: Snapshot | None
    side_b: Snapshot | None
    is_missing: bool
    is_stale_pair: bool

    @property
    def is_valid(self) -> bool:
        return not self.is_missing and not self.is_stale_pair


@dataclass(frozen=True)
class PricedTick:
    anchor: int
    side_a: Snapshot | None
    side_b: Snapshot | None
    is_missing: bool
    is_stale_pair: bool
    combined_price: float | None
    is_arbitrage_opportunity: bool

    @property
    def is_valid(self) -> bool:
        return not self.is_missing and not self.is_stale_pair

    @property
    def qualifies(self) -> bool:
        return self.is_valid and self.is_arbitrage_opportunity

    def to_dict(self) -> dict[str, Any]:
        return {
            "anchor": self.anchor,
            "side_a_timestamp": self.side_a.timestamp if self.side_a else None,
            "side_a_mid": self.side_a.mid_price if self.side_a else None,
            "side_b_timestamp": self.side_b.timestamp if self.side_b else None,
            "side_b_mid": self.side_b.mid_price if self.side_b else None,
            "is_missing": self.is_missing,
            "is_stale_pair": self.is_stale_pair,
            "is_valid": self.is_valid,
            "combined_price": self.combined_price,
            "is_arbitrage_opportunity": self.is_arbitrage_opportunity,
        }


@dataclass(frozen=True)
class Window:
    start_time: int
    end_time: int
    duration: float
    entry_combined_price: float
    min_combined_price: float
    exit_combined_price: float
    tick_count: int
    ticks: tuple[PricedTick, ...] = ()
    market_id: str | None = None

    def to_dict(self, include_ticks: bool = False) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "market_id": self.market_id,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration": self.duration,
            "entry_combined_price": self.entry_combined_price,
            "min_combined_price": self.min_combined_price,
            "exit_combined_price": self.exit_combined_price,
            "tick_count": self.tick_count,
        }
        if include_ticks:
            payload["ticks"] = [tick.to_dict() for tick in self.ticks]
        return payload


@dataclass(frozen=True)
class Trade:
    window: Window
    result: str
    profit: float
    fees: float
    raw_edge: float

    @property
    def is_completed(self) -> bool:
        return self.result == TRADE_COMPLETED

    def to_dict(self) -> dict[str, Any]:
        return {
            "window_start": self.window.start_time,
            "window_end": self.window.end_time,
            "result": self.result,
            "profit": self.profit,
            "fees": self.fees,
            "raw_edge": self.raw_edge,
        }


@dataclass(frozen=True)
class RunStats:
    total_paired_ticks: int
    expected_ticks: int
    data_coverage_pct: float
    windows_detected: int
    duration_p50: float
    windows_per_analysis_hour: float
    trades_completed: int
    fill_success_rate: float
    total_profit: float
    total_capital_deployed: float
    avg_execution_adjusted_edge: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TradeProfitSummary:
    avg_profit: float
    max_profit: float
    min_profit: float
    total_profit: float
    profit_p50: float
    profit_p90: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RunResult:
    windows: tuple[Window, ...]
    trades: tuple[Trade, ...]
    stats: RunStats
    profit_summary: TradeProfitSummary
    priced_ticks: tuple[PricedTick, ...] = ()

    def to_dict(self, include_ticks: bool = False) -> dict[str, Any]:
        return {
            "windows": [window.to_dict(include_ticks=include_ticks) for window in self.windows],
            "trades": [trade.to_dict() for trade in self.trades],
            "stats": self.stats.to_dict(),
            "profit_summary": self.profit_summary.to_dict(),
        }
