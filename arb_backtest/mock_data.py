from __future__ import annotations

import random
from typing import Iterator

from .config import EngineConfig
from .models import Snapshot


def _seeded_random(seed: str) -> random.Random:
    return random.Random(seed)


def synthetic_market_id(asset: str, start_time: int) -> str:
    return f"synthetic_{asset.upper()}_{int(start_time)}"


def iter_synthetic_snapshots(
    asset: str,
    start_time: int,
    end_time: int,
    *,
    config: EngineConfig | None = None,
    tick_interval_seconds: int | None = None,
    discount_probability: float = 0.05,
) -> Iterator[Snapshot]:
    # Side A drifts back toward 0.5 and side B is its complement; occasional
    # joint markdowns open a sub-payout combined price.
    engine_config = config or EngineConfig()
    step = tick_interval_seconds or engine_config.tick_interval_seconds
    rng = _seeded_random(f"{asset.upper()}_{int(start_time)}_{int(end_time)}")
    market_id = synthetic_market_id(asset, start_time)

    base_price = 0.5
    current = int(start_time)
    while current <= end_time:
        drift = (0.5 - base_price) * 0.01
        base_price += drift + (rng.random() - 0.5) * 0.002
        base_price = max(0.3, min(0.7, base_price))

        mid_a = base_price
        mid_b = 1 - base_price
        if rng.random() < discount_probability:
            discount = 0.003 + rng.random() * 0.007
            mid_a = base_price - discount / 2
            mid_b = (1 - base_price) - discount / 2

        mid_a = round(mid_a, 6)
        mid_b = round(mid_b, 6)
        yield Snapshot(
            market_id=market_id,
            timestamp=current,
            side=engine_config.side_a,
            mid_price=mid_a,
            last_price=mid_a,
        )
        yield Snapshot(
            market_id=market_id,
            timestamp=current,
            side=engine_config.side_b,
            mid_price=mid_b,
            last_price=mid_b,
        )
        current += step


def generate_synthetic_snapshots(
    asset: str,
    start_time: int,
    end_time: int,
    *,
    config: EngineConfig | None = None,
    tick_interval_seconds: int | None = None,
) -> list[Snapshot]:
    return list(
        iter_synthetic_snapshots(
            asset,
            start_time,
            end_time,
            config=config,
            tick_interval_seconds=tick_interval_seconds,
        )
    )
