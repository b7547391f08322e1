from __future__ import annotations


def build_anchor_grid(analysis_start: int, analysis_end: int, interval: int) -> list[int]:
    if analysis_end <= analysis_start:
        raise ValueError(
            f"analysis_end ({analysis_end}) must be greater than analysis_start ({analysis_start})"
        )
    if interval <= 0:
        raise ValueError("interval must be positive")
    return list(range(int(analysis_start), int(analysis_end), int(interval)))


def expected_tick_count(analysis_start: int, analysis_end: int, interval: int) -> int:
    if interval <= 0 or analysis_end <= analysis_start:
        return 0
    return (int(analysis_end) - int(analysis_start)) // int(interval)
