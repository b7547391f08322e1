from __future__ import annotations

from dataclasses import fields, replace
import logging
import time
from typing import Any, Callable, Protocol

from .config import EngineConfig, Settings
from .engine.detector import detect_and_simulate
from .mock_data import generate_synthetic_snapshots, synthetic_market_id
from .models import RunResult, RunStats, Snapshot, Trade, Window

logger = logging.getLogger(__name__)

STAGE_INITIALIZING = ("Initializing", 0)
STAGE_LOADING = ("Loading snapshots", 10)
STAGE_STORING_SNAPSHOTS = ("Storing snapshots", 20)
STAGE_DETECTING = ("Detecting windows", 50)
STAGE_STORING_RESULTS = ("Storing results", 85)
STAGE_COMPLETED = ("Completed", 100)


class RunStore(Protocol):
    def get_run(self, run_id: str) -> dict[str, object] | None: ...

    def update_progress(self, run_id: str, progress_pct: float, status: str, stage: str) -> None: ...

    def insert_snapshots(self, snapshots: list[Snapshot]) -> int: ...

    def load_snapshots(
        self, market_id: str, *, start_time: int | None = None, end_time: int | None = None
    ) -> list[Snapshot]: ...

    def store_results(self, run_id: str, windows: list[Window], trades: list[Trade]) -> int: ...

    def complete_run(self, run_id: str, stats: RunStats) -> None: ...

    def fail_run(self, run_id: str, error_message: str) -> None: ...


class RunTimeoutError(RuntimeError):
    pass


def engine_config_from_parameters(base: EngineConfig, parameters: dict[str, Any] | None) -> EngineConfig:
    if not parameters:
        return base
    overrides: dict[str, Any] = {}
    for config_field in fields(EngineConfig):
        if config_field.name not in parameters:
            continue
        current = getattr(base, config_field.name)
        raw = parameters[config_field.name]
        if isinstance(current, str):
            overrides[config_field.name] = str(raw).strip().upper()
        elif isinstance(current, int):
            overrides[config_field.name] = int(raw)
        else:
            overrides[config_field.name] = float(raw)
    merged = replace(base, **overrides)
    merged.validate()
    return merged


class BacktestProcessor:
    def __init__(
        self,
        settings: Settings,
        store: RunStore,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.store = store
        self.clock = clock

    def _stage(self, run_id: str, stage: tuple[str, int], status: str = "running") -> None:
        name, pct = stage
        self.store.update_progress(run_id, pct, status, name)
        logger.info("run_stage run_id=%s stage=%s progress_pct=%s", run_id, name, pct)

    def _check_runtime(self, started_at: float, during: str) -> None:
        elapsed = self.clock() - started_at
        if elapsed > self.settings.max_run_seconds:
            raise RunTimeoutError(f"Maximum runtime exceeded during {during}")

    def _load_snapshots(
        self, run: dict[str, object], config: EngineConfig
    ) -> tuple[list[Snapshot], bool]:
        start = int(run["analysis_start"])
        end = int(run["analysis_end"])
        market_id = run.get("market_id")
        asset = run.get("asset")
        if market_id:
            # Anchors near the period edges may pair with snapshots just outside it.
            delta = config.max_pairing_delta_seconds
            snapshots = self.store.load_snapshots(
                str(market_id), start_time=start - delta, end_time=end + delta
            )
            if snapshots or not asset:
                return snapshots, False
            logger.warning(
                "stored_snapshots_missing market_id=%s falling_back=synthetic asset=%s",
                market_id,
                asset,
            )
        if asset:
            generated = generate_synthetic_snapshots(str(asset), start, end, config=config)
            return generated, True
        raise ValueError("run has neither market_id nor asset to source snapshots from")

    def process_run(self, run_id: str) -> dict[str, Any]:
        started_at = self.clock()
        try:
            run = self.store.get_run(run_id)
            if run is None:
                raise LookupError(f"Backtest run {run_id} not found")

            self._stage(run_id, STAGE_INITIALIZING)
            parameters = run.get("parameters_json")
            config = engine_config_from_parameters(
                self.settings.engine, parameters if isinstance(parameters, dict) else None
            )

            self._stage(run_id, STAGE_LOADING)
            snapshots, generated = self._load_snapshots(run, config)
            self._check_runtime(started_at, "snapshot load")

            self._stage(run_id, STAGE_STORING_SNAPSHOTS)
            if generated and self.settings.store_snapshots:
                inserted = self.store.insert_snapshots(snapshots)
                logger.info(
                    "snapshots_stored run_id=%s market_id=%s inserted=%s",
                    run_id,
                    synthetic_market_id(str(run["asset"]), int(run["analysis_start"])),
                    inserted,
                )

            self._stage(run_id, STAGE_DETECTING)
            result: RunResult = detect_and_simulate(
                snapshots,
                int(run["analysis_start"]),
                int(run["analysis_end"]),
                float(run["trade_size"]),
                config,
            )
            self._check_runtime(started_at, "window detection")

            self._stage(run_id, STAGE_STORING_RESULTS)
            self.store.store_results(run_id, list(result.windows), list(result.trades))

            self.store.complete_run(run_id, result.stats)
            self._stage(run_id, STAGE_COMPLETED, status="completed")
            return {
                "run_id": run_id,
                "success": True,
                "stats": result.stats.to_dict(),
                "profit_summary": result.profit_summary.to_dict(),
            }
        except Exception as exc:
            logger.exception("run_failed run_id=%s", run_id)
            self.store.fail_run(run_id, str(exc))
            return {"run_id": run_id, "success": False, "error": str(exc)}
