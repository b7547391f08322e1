from __future__ import annotations

import json
import random
import unittest

from arb_backtest.config import EngineConfig
from arb_backtest.engine.detector import detect_and_simulate
from arb_backtest.models import TRADE_COMPLETED, Snapshot

START = 1_700_000_000
INTERVAL = 5
ANCHORS = 20


def _series(
    low_indexes: set[int],
    low_mid: float = 0.488,
    market_id: str = "m1",
    high_mid: float = 0.5,
    drop_b: set[int] | None = None,
) -> list[Snapshot]:
    rows: list[Snapshot] = []
    for idx in range(ANCHORS):
        ts = START + idx * INTERVAL
        mid = low_mid if idx in low_indexes else high_mid
        rows.append(Snapshot(market_id=market_id, timestamp=ts, side="UP", mid_price=mid))
        if drop_b and idx in drop_b:
            continue
        rows.append(Snapshot(market_id=market_id, timestamp=ts, side="DOWN", mid_price=mid))
    return rows


class DetectAndSimulateTests(unittest.TestCase):
    def setUp(self) -> None:
        self.config = EngineConfig()
        self.end = START + ANCHORS * INTERVAL

    def test_single_window_end_to_end(self) -> None:
        # Non-window anchors price at 1.01; side B is absent around anchors 3 and 16.
        rows = _series({8, 9, 10, 11, 12}, high_mid=0.503, drop_b={2, 3, 4, 15, 16, 17})
        result = detect_and_simulate(rows, START, self.end, 100, self.config)
        self.assertEqual(len(result.windows), 1)
        window = result.windows[0]
        self.assertEqual(window.start_time, START + 8 * INTERVAL)
        self.assertEqual(window.end_time, START + 12 * INTERVAL)
        self.assertEqual(window.duration, 20)
        self.assertEqual(window.tick_count, 5)
        self.assertEqual(window.market_id, "m1")
        self.assertAlmostEqual(window.entry_combined_price, 0.98)
        self.assertAlmostEqual(window.min_combined_price, 0.98)
        self.assertAlmostEqual(window.exit_combined_price, 0.98)

        self.assertEqual(len(result.trades), 1)
        trade = result.trades[0]
        self.assertEqual(trade.result, TRADE_COMPLETED)
        self.assertAlmostEqual(trade.profit, 100 * 0.02)

        missing = [tick.anchor for tick in result.priced_ticks if tick.is_missing]
        self.assertEqual(missing, [START + 3 * INTERVAL, START + 16 * INTERVAL])
        others = [
            tick
            for tick in result.priced_ticks
            if tick.is_valid and not START + 8 * INTERVAL <= tick.anchor <= START + 12 * INTERVAL
        ]
        self.assertTrue(all(tick.combined_price == 1.01 for tick in others))

        stats = result.stats
        self.assertEqual(stats.total_paired_ticks, 18)
        self.assertEqual(stats.expected_ticks, 20)
        self.assertAlmostEqual(stats.data_coverage_pct, 90.0)
        self.assertEqual(stats.windows_detected, 1)
        self.assertEqual(stats.duration_p50, 20)
        self.assertAlmostEqual(stats.windows_per_analysis_hour, 36.0)
        self.assertAlmostEqual(stats.fill_success_rate, 100.0)
        self.assertAlmostEqual(stats.avg_execution_adjusted_edge, 2.0)
        self.assertEqual(len(result.priced_ticks), 20)

    def test_windows_hold_only_qualifying_ticks_on_mixed_series(self) -> None:
        rng = random.Random("mixed-series")
        anchors = 400
        stale = {idx for idx in range(anchors) if idx % 37 == 20}
        near_stale = {idx + offset for idx in stale for offset in (-1, 0, 1)}
        gaps = {idx + offset for idx in range(anchors) if idx % 41 == 10 for offset in (-1, 0, 1)}
        rows: list[Snapshot] = []
        for idx in range(anchors):
            ts = START + idx * INTERVAL
            mid = 0.488 if rng.random() < 0.7 else 0.503
            if idx in stale:
                # sides sit 8s apart around the anchor
                rows.append(Snapshot(market_id="m1", timestamp=ts - 4, side="UP", mid_price=mid))
                rows.append(Snapshot(market_id="m1", timestamp=ts + 4, side="DOWN", mid_price=mid))
                continue
            rows.append(Snapshot(market_id="m1", timestamp=ts, side="UP", mid_price=mid))
            if idx not in near_stale and (idx in gaps or rng.random() < 0.1):
                continue
            rows.append(Snapshot(market_id="m1", timestamp=ts, side="DOWN", mid_price=mid))
        end = START + anchors * INTERVAL
        result = detect_and_simulate(rows, START, end, 100, self.config)

        self.assertTrue(any(tick.is_stale_pair for tick in result.priced_ticks))
        self.assertTrue(any(tick.is_missing for tick in result.priced_ticks))
        self.assertTrue(result.windows)
        by_anchor = {tick.anchor: tick for tick in result.priced_ticks}
        for window in result.windows:
            self.assertTrue(
                all(tick.is_valid and tick.is_arbitrage_opportunity for tick in window.ticks)
            )
            self.assertEqual(
                [tick.anchor for tick in window.ticks],
                list(range(window.start_time, window.end_time + 1, INTERVAL)),
            )
            self.assertGreaterEqual(window.tick_count, self.config.min_tick_count)
            before = by_anchor.get(window.start_time - INTERVAL)
            after = by_anchor.get(window.end_time + INTERVAL)
            self.assertFalse(before is not None and before.qualifies)
            self.assertFalse(after is not None and after.qualifies)

    def test_no_discount_gives_no_windows(self) -> None:
        result = detect_and_simulate(_series(set()), START, self.end, 100, self.config)
        self.assertEqual(result.windows, ())
        self.assertEqual(result.trades, ())
        self.assertEqual(result.stats.fill_success_rate, 0.0)
        self.assertEqual(result.profit_summary.total_profit, 0.0)

    def test_identical_input_gives_identical_output(self) -> None:
        rows = _series({2, 3, 4, 10, 11, 12, 13})
        first = detect_and_simulate(rows, START, self.end, 100, self.config)
        second = detect_and_simulate(rows, START, self.end, 100, self.config)
        self.assertEqual(
            json.dumps(first.to_dict(include_ticks=True), sort_keys=True),
            json.dumps(second.to_dict(include_ticks=True), sort_keys=True),
        )

    def test_unsorted_input_matches_sorted(self) -> None:
        rows = _series({8, 9, 10, 11, 12})
        shuffled = list(rows)
        random.Random("shuffle").shuffle(shuffled)
        expected = detect_and_simulate(rows, START, self.end, 100, self.config)
        actual = detect_and_simulate(shuffled, START, self.end, 100, self.config)
        self.assertEqual(expected.to_dict(), actual.to_dict())

    def test_invalid_period_rejected(self) -> None:
        with self.assertRaises(ValueError):
            detect_and_simulate(_series(set()), START, START, 100, self.config)

    def test_invalid_trade_size_rejected(self) -> None:
        with self.assertRaises(ValueError):
            detect_and_simulate(_series(set()), START, self.end, -1, self.config)

    def test_invalid_config_rejected(self) -> None:
        with self.assertRaises(ValueError):
            detect_and_simulate(
                _series(set()), START, self.end, 100, EngineConfig(tick_interval_seconds=0)
            )

    def test_empty_input(self) -> None:
        result = detect_and_simulate([], START, self.end, 100, self.config)
        self.assertEqual(result.stats.total_paired_ticks, 0)
        self.assertEqual(result.stats.expected_ticks, 20)
        self.assertEqual(result.stats.data_coverage_pct, 0.0)

    def test_sparse_side_lowers_coverage(self) -> None:
        rows = [row for row in _series(set()) if row.side == "UP" or row.timestamp < START + 50]
        result = detect_and_simulate(rows, START, self.end, 100, self.config)
        # anchors 0..9 match directly, anchor 10 reaches back one interval
        self.assertEqual(result.stats.total_paired_ticks, 11)
        self.assertAlmostEqual(result.stats.data_coverage_pct, 55.0)


if __name__ == "__main__":
    unittest.main()
