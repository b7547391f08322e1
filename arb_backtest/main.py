from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import sys

from .batch import BatchJob, run_batch
from .config import Settings, redact_database_url
from .engine.detector import detect_and_simulate
from .gates import check_go_no_go_gates, compare_runs, is_go
from .mock_data import generate_synthetic_snapshots
from .snapshot_io import read_snapshots, trade_export_row, write_snapshots, write_trades_csv


def _parse_param(raw: str) -> tuple[str, str]:
    key, sep, value = raw.partition("=")
    if not sep or not key.strip():
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {raw!r}")
    return key.strip(), value.strip()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Binary market arbitrage window backtester")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create database schema")

    detect_cmd = subparsers.add_parser("detect", help="Run detection on a snapshot file, no database")
    detect_cmd.add_argument("input", help="Snapshot file (.csv or .json)")
    detect_cmd.add_argument("--start", type=int, default=None, help="Analysis start (unix seconds)")
    detect_cmd.add_argument("--end", type=int, default=None, help="Analysis end (unix seconds)")
    detect_cmd.add_argument("--trade-size", type=float, default=None)
    detect_cmd.add_argument("--include-ticks", action="store_true")
    detect_cmd.add_argument("--trades-csv", default=None, help="Also write simulated trades as CSV")

    batch_cmd = subparsers.add_parser("batch", help="Run detection over several snapshot files in parallel")
    batch_cmd.add_argument("inputs", nargs="+", help="One snapshot file per market")
    batch_cmd.add_argument("--start", type=int, default=None)
    batch_cmd.add_argument("--end", type=int, default=None)
    batch_cmd.add_argument("--trade-size", type=float, default=None)
    batch_cmd.add_argument("--workers", type=int, default=None)

    synthetic_cmd = subparsers.add_parser("synthetic", help="Write deterministic synthetic snapshots")
    synthetic_cmd.add_argument("--asset", required=True)
    synthetic_cmd.add_argument("--start", type=int, required=True)
    synthetic_cmd.add_argument("--end", type=int, required=True)
    synthetic_cmd.add_argument("--output", required=True)

    fetch_cmd = subparsers.add_parser("fetch", help="Download Polymarket price history to a file")
    fetch_cmd.add_argument("--market-id", required=True)
    fetch_cmd.add_argument("--token-ids", nargs=2, required=True, metavar=("TOKEN_A", "TOKEN_B"))
    fetch_cmd.add_argument("--start", type=int, required=True)
    fetch_cmd.add_argument("--end", type=int, required=True)
    fetch_cmd.add_argument("--fidelity", type=int, default=1, help="Minutes per history point")
    fetch_cmd.add_argument("--output", required=True)

    create_cmd = subparsers.add_parser("create-run", help="Queue a backtest run")
    create_cmd.add_argument("--start", type=int, required=True)
    create_cmd.add_argument("--end", type=int, required=True)
    create_cmd.add_argument("--market-id", default=None)
    create_cmd.add_argument("--asset", default=None)
    create_cmd.add_argument("--name", default=None)
    create_cmd.add_argument("--trade-size", type=float, default=None)
    create_cmd.add_argument("--param", type=_parse_param, action="append", default=[])
    create_cmd.add_argument("--process", action="store_true", help="Process immediately")

    process_cmd = subparsers.add_parser("process-run", help="Process a queued run")
    process_cmd.add_argument("run_id")

    subparsers.add_parser("list-runs", help="List recent runs").add_argument(
        "--limit", type=int, default=20
    )

    show_cmd = subparsers.add_parser("show-run", help="Show a run with its gate results")
    show_cmd.add_argument("run_id")

    delete_cmd = subparsers.add_parser("delete-run", help="Delete a run and its results")
    delete_cmd.add_argument("run_id")

    top_cmd = subparsers.add_parser("top-windows", help="Lowest combined price windows of a run")
    top_cmd.add_argument("run_id")
    top_cmd.add_argument("--limit", type=int, default=10)

    export_cmd = subparsers.add_parser("export-trades", help="Export simulated trades as CSV")
    export_cmd.add_argument("run_id")
    export_cmd.add_argument("--output", default=None)

    compare_cmd = subparsers.add_parser("compare", help="Compare runs side by side")
    compare_cmd.add_argument("run_ids", nargs="+")
    return parser


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _run_detect(args: argparse.Namespace, settings: Settings) -> int:
    snapshots = read_snapshots(args.input, settings.engine)
    if not snapshots:
        _print_json({"error": f"no snapshots in {args.input}"})
        return 1
    start = args.start if args.start is not None else min(row.timestamp for row in snapshots)
    end = args.end if args.end is not None else max(row.timestamp for row in snapshots)
    trade_size = args.trade_size if args.trade_size is not None else settings.default_trade_size
    try:
        result = detect_and_simulate(snapshots, start, end, trade_size, settings.engine)
    except ValueError as exc:
        _print_json({"error": str(exc)})
        return 1
    if args.trades_csv:
        target = Path(args.trades_csv)
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("w", newline="", encoding="utf-8") as handle:
            write_trades_csv(
                handle,
                [trade_export_row(trade, trade_id=str(idx)) for idx, trade in enumerate(result.trades, 1)],
            )
    gates = check_go_no_go_gates(result.stats, settings)
    payload = result.to_dict(include_ticks=args.include_ticks)
    payload["analysis_start"] = start
    payload["analysis_end"] = end
    payload["gates"] = gates
    payload["go"] = is_go(gates)
    _print_json(payload)
    return 0


def _run_batch(args: argparse.Namespace, settings: Settings) -> int:
    trade_size = args.trade_size if args.trade_size is not None else settings.default_trade_size
    jobs: list[BatchJob] = []
    for path in args.inputs:
        snapshots = read_snapshots(path, settings.engine)
        if not snapshots:
            continue
        market_ids = {row.market_id for row in snapshots if row.market_id}
        market_id = next(iter(market_ids)) if len(market_ids) == 1 else Path(path).stem
        jobs.append(
            BatchJob(
                market_id=market_id,
                snapshots=tuple(snapshots),
                analysis_start=(
                    args.start if args.start is not None else min(row.timestamp for row in snapshots)
                ),
                analysis_end=(
                    args.end if args.end is not None else max(row.timestamp for row in snapshots)
                ),
                trade_size=trade_size,
            )
        )
    outcome = run_batch(
        jobs,
        settings.engine,
        max_workers=args.workers if args.workers is not None else settings.batch_max_workers,
    )
    markets: dict[str, dict[str, object]] = {}
    for market_id, result in sorted(outcome.results.items()):
        gates = check_go_no_go_gates(result.stats, settings)
        markets[market_id] = {
            "stats": result.stats.to_dict(),
            "profit_summary": result.profit_summary.to_dict(),
            "gates": gates,
            "go": is_go(gates),
        }
    _print_json({"markets": markets, "errors": dict(sorted(outcome.errors.items()))})
    return 0 if not outcome.errors else 1


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    logger = logging.getLogger(__name__)
    logger.info(
        "startup command=%s database_source=%s database_target=%s tick_interval=%s max_pairing_delta=%s spread_proxy=%s fee_bps=%s",
        args.command,
        settings.database_url_source,
        redact_database_url(settings.database_url),
        settings.engine.tick_interval_seconds,
        settings.engine.max_pairing_delta_seconds,
        settings.engine.spread_proxy,
        settings.engine.fee_bps,
    )

    if args.command == "detect":
        return _run_detect(args, settings)

    if args.command == "batch":
        return _run_batch(args, settings)

    if args.command == "synthetic":
        snapshots = generate_synthetic_snapshots(
            args.asset, args.start, args.end, config=settings.engine
        )
        count = write_snapshots(args.output, snapshots)
        _print_json({"output": args.output, "snapshots": count})
        return 0

    if args.command == "fetch":
        from .polymarket_client import PolymarketClient

        client = PolymarketClient(settings)
        snapshots = client.fetch_snapshots(
            args.market_id,
            list(args.token_ids),
            args.start,
            args.end,
            fidelity_minutes=args.fidelity,
        )
        count = write_snapshots(args.output, snapshots)
        _print_json({"output": args.output, "snapshots": count})
        return 0

    from .db import PostgresStore
    from .processor import BacktestProcessor

    store = PostgresStore(settings.database_url)
    try:
        if args.command == "init-db":
            store.ensure_schema()
            print("Schema initialized")
            return 0

        store.ensure_schema()

        if args.command == "create-run":
            if not args.market_id and not args.asset:
                _print_json({"error": "create-run needs --market-id or --asset"})
                return 1
            run_id = store.create_run(
                analysis_start=args.start,
                analysis_end=args.end,
                trade_size=(
                    args.trade_size
                    if args.trade_size is not None
                    else settings.default_trade_size
                ),
                market_id=args.market_id,
                asset=args.asset,
                name=args.name,
                parameters=dict(args.param),
            )
            if not args.process:
                _print_json({"run_id": run_id, "status": "queued"})
                return 0
            outcome = BacktestProcessor(settings, store).process_run(run_id)
            _print_json(outcome)
            return 0 if outcome["success"] else 1

        if args.command == "process-run":
            outcome = BacktestProcessor(settings, store).process_run(args.run_id)
            _print_json(outcome)
            return 0 if outcome["success"] else 1

        if args.command == "list-runs":
            _print_json(store.list_runs(limit=args.limit))
            return 0

        if args.command == "show-run":
            run = store.get_run(args.run_id)
            if run is None:
                _print_json({"error": f"run {args.run_id} not found"})
                return 1
            if run.get("status") == "completed":
                gates = check_go_no_go_gates(run, settings)
                run["gates"] = gates
                run["go"] = is_go(gates)
            _print_json(run)
            return 0

        if args.command == "delete-run":
            deleted = store.delete_run(args.run_id)
            _print_json({"run_id": args.run_id, "deleted": deleted})
            return 0 if deleted else 1

        if args.command == "top-windows":
            _print_json(store.get_top_windows(args.run_id, limit=args.limit))
            return 0

        if args.command == "export-trades":
            rows = store.get_trade_export_rows(args.run_id)
            if args.output:
                target = Path(args.output)
                target.parent.mkdir(parents=True, exist_ok=True)
                with target.open("w", newline="", encoding="utf-8") as handle:
                    count = write_trades_csv(handle, rows)
                logger.info("trades_exported run_id=%s rows=%s output=%s", args.run_id, count, target)
            else:
                write_trades_csv(sys.stdout, rows)
            return 0

        if args.command == "compare":
            runs = store.get_runs(args.run_ids)
            missing = sorted(set(args.run_ids) - {str(run["id"]) for run in runs})
            _print_json({"runs": compare_runs(runs, settings), "missing": missing})
            return 0
    finally:
        store.close()

    return 1


if __name__ == "__main__":
    sys.exit(main())
