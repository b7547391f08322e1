from __future__ import annotations

from decimal import Decimal
import math
from typing import Iterable

from ..config import EngineConfig
from ..models import PairedTick, PricedTick


def to_decimal(value: float) -> Decimal:
    # repr() is the shortest round-tripping form, so 0.998 stays 0.998.
    return Decimal(repr(float(value)))


def combined_ask_price(mid_a: float, mid_b: float, spread_proxy: float) -> Decimal | None:
    if not all(math.isfinite(value) for value in (mid_a, mid_b, spread_proxy)):
        return None
    spread = to_decimal(spread_proxy)
    return (to_decimal(mid_a) + spread) + (to_decimal(mid_b) + spread)


def _unpriced(paired: PairedTick) -> PricedTick:
    return PricedTick(
        anchor=paired.anchor,
        side_a=paired.side_a,
        side_b=paired.side_b,
        is_missing=paired.is_missing,
        is_stale_pair=paired.is_stale_pair,
        combined_price=None,
        is_arbitrage_opportunity=False,
    )


def classify_tick(paired: PairedTick, config: EngineConfig) -> PricedTick:
    if not paired.is_valid or paired.side_a is None or paired.side_b is None:
        return _unpriced(paired)
    combined = combined_ask_price(
        paired.side_a.mid_price, paired.side_b.mid_price, config.spread_proxy
    )
    if combined is None:
        return _unpriced(paired)
    return PricedTick(
        anchor=paired.anchor,
        side_a=paired.side_a,
        side_b=paired.side_b,
        is_missing=paired.is_missing,
        is_stale_pair=paired.is_stale_pair,
        combined_price=float(combined),
        is_arbitrage_opportunity=combined < to_decimal(config.arbitrage_threshold),
    )


def classify_ticks(paired_ticks: Iterable[PairedTick], config: EngineConfig) -> list[PricedTick]:
    return [classify_tick(paired, config) for paired in paired_ticks]
