from __future__ import annotations

from bisect import bisect_left
from typing import Iterable, Sequence

from ..config import EngineConfig
from ..models import PairedTick, Snapshot


def split_sides(
    snapshots: Iterable[Snapshot], config: EngineConfig
) -> tuple[list[Snapshot], list[Snapshot]]:
    side_a: list[Snapshot] = []
    side_b: list[Snapshot] = []
    for snapshot in snapshots:
        if snapshot.side == config.side_a:
            side_a.append(snapshot)
        elif snapshot.side == config.side_b:
            side_b.append(snapshot)
    # stable sort: duplicate timestamps keep input order
    side_a.sort(key=lambda row: row.timestamp)
    side_b.sort(key=lambda row: row.timestamp)
    return side_a, side_b


def find_closest_snapshot(
    anchor: int,
    snapshots: Sequence[Snapshot],
    max_delta: int,
    timestamps: Sequence[int] | None = None,
) -> Snapshot | None:
    if not snapshots:
        return None
    keys = timestamps if timestamps is not None else [row.timestamp for row in snapshots]
    idx = bisect_left(keys, anchor)

    best: Snapshot | None = None
    best_distance: int | None = None
    if idx > 0:
        left_ts = keys[idx - 1]
        best = snapshots[bisect_left(keys, left_ts)]
        best_distance = anchor - left_ts
    if idx < len(keys):
        right_distance = keys[idx] - anchor
        # strict: a tie keeps the earlier (left) candidate
        if best_distance is None or right_distance < best_distance:
            best = snapshots[idx]
            best_distance = right_distance

    if best is None or best_distance is None or best_distance > max_delta:
        return None
    return best


def pair_ticks(
    anchors: Iterable[int],
    side_a: Sequence[Snapshot],
    side_b: Sequence[Snapshot],
    max_delta: int,
) -> list[PairedTick]:
    side_a_keys = [row.timestamp for row in side_a]
    side_b_keys = [row.timestamp for row in side_b]
    paired: list[PairedTick] = []
    for anchor in anchors:
        match_a = find_closest_snapshot(anchor, side_a, max_delta, side_a_keys)
        match_b = find_closest_snapshot(anchor, side_b, max_delta, side_b_keys)
        is_missing = match_a is None or match_b is None
        # Sides are matched to the anchor independently, so they can still sit
        # more than one delta apart from each other.
        is_stale_pair = (
            not is_missing and abs(match_a.timestamp - match_b.timestamp) > max_delta
        )
        paired.append(
            PairedTick(
                anchor=anchor,
                side_a=match_a,
                side_b=match_b,
                is_missing=is_missing,
                is_stale_pair=is_stale_pair,
            )
        )
    return paired
