from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator

from ..config import EngineConfig
from ..models import PricedTick, Window


class StitchState(Enum):
    NO_WINDOW = "no_window"
    IN_WINDOW = "in_window"


@dataclass(frozen=True)
class RawWindow:
    start_time: int
    end_time: int
    duration: int
    entry_combined_price: float
    exit_combined_price: float
    ticks: tuple[PricedTick, ...]

    @property
    def tick_count(self) -> int:
        return len(self.ticks)


def _close(ticks: list[PricedTick]) -> RawWindow:
    first = ticks[0]
    last = ticks[-1]
    return RawWindow(
        start_time=first.anchor,
        end_time=last.anchor,
        duration=last.anchor - first.anchor,
        entry_combined_price=first.combined_price,
        exit_combined_price=last.combined_price,
        ticks=tuple(ticks),
    )


def stitch_windows(priced_ticks: Iterable[PricedTick]) -> Iterator[RawWindow]:
    state = StitchState.NO_WINDOW
    open_ticks: list[PricedTick] = []
    for tick in priced_ticks:
        if tick.qualifies:
            if state is StitchState.NO_WINDOW:
                state = StitchState.IN_WINDOW
                open_ticks = [tick]
            else:
                open_ticks.append(tick)
            continue
        if state is StitchState.IN_WINDOW:
            yield _close(open_ticks)
            state = StitchState.NO_WINDOW
            open_ticks = []
    if state is StitchState.IN_WINDOW:
        yield _close(open_ticks)


def validate_window(raw: RawWindow, config: EngineConfig, market_id: str | None = None) -> Window | None:
    if raw.duration < config.min_window_duration_seconds:
        return None
    if raw.tick_count < config.min_tick_count:
        return None
    if any(not tick.is_valid or tick.combined_price is None for tick in raw.ticks):
        return None
    return Window(
        start_time=raw.start_time,
        end_time=raw.end_time,
        duration=raw.duration,
        entry_combined_price=raw.entry_combined_price,
        min_combined_price=min(tick.combined_price for tick in raw.ticks),
        exit_combined_price=raw.exit_combined_price,
        tick_count=raw.tick_count,
        ticks=raw.ticks,
        market_id=market_id,
    )


def validate_windows(
    raw_windows: Iterable[RawWindow], config: EngineConfig, market_id: str | None = None
) -> list[Window]:
    validated: list[Window] = []
    for raw in raw_windows:
        window = validate_window(raw, config, market_id=market_id)
        if window is not None:
            validated.append(window)
    return validated
