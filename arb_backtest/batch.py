from __future__ import annotations

from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
import logging
from typing import Iterable

from .config import EngineConfig
from .engine.detector import detect_and_simulate
from .models import RunResult, Snapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchJob:
    market_id: str
    snapshots: tuple[Snapshot, ...]
    analysis_start: int
    analysis_end: int
    trade_size: float


@dataclass
class BatchResult:
    results: dict[str, RunResult] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> int:
        return len(self.errors)


def _run_job(job: BatchJob, config: EngineConfig) -> RunResult:
    return detect_and_simulate(
        job.snapshots, job.analysis_start, job.analysis_end, job.trade_size, config
    )


def run_batch(
    jobs: Iterable[BatchJob],
    config: EngineConfig | None = None,
    max_workers: int = 1,
) -> BatchResult:
    engine_config = config or EngineConfig()
    pending = list(jobs)
    market_ids = [job.market_id for job in pending]
    if len(set(market_ids)) != len(market_ids):
        raise ValueError("batch jobs must have distinct market ids")
    outcome = BatchResult()
    if not pending:
        return outcome

    if max_workers <= 1:
        for job in pending:
            try:
                outcome.results[job.market_id] = _run_job(job, engine_config)
            except Exception as exc:
                logger.warning("batch_job_failed market_id=%s error=%s", job.market_id, exc)
                outcome.errors[job.market_id] = str(exc)
    else:
        with ProcessPoolExecutor(max_workers=min(max_workers, len(pending))) as executor:
            future_to_market = {
                executor.submit(_run_job, job, engine_config): job.market_id for job in pending
            }
            for future in as_completed(future_to_market):
                market_id = future_to_market[future]
                try:
                    outcome.results[market_id] = future.result()
                except Exception as exc:
                    logger.warning("batch_job_failed market_id=%s error=%s", market_id, exc)
                    outcome.errors[market_id] = str(exc)

    logger.info(
        "batch_complete jobs=%s succeeded=%s failed=%s workers=%s",
        len(pending),
        outcome.succeeded,
        outcome.failed,
        max_workers,
    )
    return outcome
