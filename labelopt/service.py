from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

from prometheus_client import Counter, Histogram

from labelopt.config import OptimizerConfig
from labelopt.engine.optimizer import run_optimization
from labelopt.engine.regional import RegionMatcher
from labelopt.models import OptimizationResult
from labelopt.storage import PersistenceError, Store

logger = logging.getLogger(__name__)

OPT_RUNS = Counter("labelopt_optimization_runs_total", "Optimization passes", ["status"])
OPT_UPDATED = Counter("labelopt_campaigns_updated_total", "Campaigns updated by optimization passes")
OPT_LAT = Histogram("labelopt_optimization_seconds", "Optimization pass latency")


@dataclass
class RunReport:
    success: bool
    count: int = 0
    label_count: int = 0
    dry_run: bool = False
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None
    run_id: Optional[str] = None
    result: Optional[OptimizationResult] = None


class OptimizationService:
    """Runs a full pass against the record store and writes it back as one batch."""

    def __init__(
        self,
        store: Store,
        config: Optional[OptimizerConfig] = None,
        matcher: Optional[RegionMatcher] = None,
    ):
        self.store = store
        self.config = config or OptimizerConfig()
        self.matcher = matcher or RegionMatcher()

    def run(self, dry_run: bool = False, max_workers: Optional[int] = None) -> RunReport:
        t0 = time.perf_counter()
        snapshot = self.store.load_snapshot()
        with OPT_LAT.time():
            result = run_optimization(snapshot, self.config, self.matcher, max_workers=max_workers)
        updates = result.updates
        warnings = result.warnings

        if dry_run:
            run_id = self.store.record_run(
                status="dry_run",
                campaign_count=len(updates),
                label_count=len(result.groups),
                duration_ms=_elapsed_ms(t0),
                warnings=warnings,
            )
            OPT_RUNS.labels("dry_run").inc()
            logger.info("Dry run: %d campaign updates computed, nothing written", len(updates))
            return RunReport(True, len(updates), len(result.groups), True, warnings, None, run_id, result)

        try:
            count = self.store.apply_updates(updates)
        except PersistenceError as e:
            logger.error("Optimization did not take effect: %s", e)
            OPT_RUNS.labels("failed").inc()
            run_id = self.store.record_run(
                status="failed",
                label_count=len(result.groups),
                duration_ms=_elapsed_ms(t0),
                warnings=warnings,
                error=str(e),
            )
            return RunReport(False, 0, len(result.groups), False, warnings, str(e), run_id, result)

        OPT_RUNS.labels("success").inc()
        OPT_UPDATED.inc(count)
        run_id = self.store.record_run(
            status="success",
            campaign_count=count,
            label_count=len(result.groups),
            duration_ms=_elapsed_ms(t0),
            warnings=warnings,
        )
        logger.info("Optimization applied to %d campaigns across %d labels", count, len(result.groups))
        return RunReport(True, count, len(result.groups), False, warnings, None, run_id, result)


def _elapsed_ms(t0: float) -> int:
    return int((time.perf_counter() - t0) * 1000)
