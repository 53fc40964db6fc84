"""
Label Budget & Bid Reallocation
One deterministic pass over a full campaign snapshot.

Per label group:
  score → proportional allocation → region cap & redistribution → budget floor
  → raw tCPA → single correction factor towards the KPI band.

Groups share nothing, so they can be evaluated on a thread pool. The pass
never mutates its input; the caller persists `result.updates` as one batch.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional, Tuple

from labelopt.config import OptimizerConfig
from labelopt.engine.allocation import allocate, apply_budget_floor, target_daily_spend
from labelopt.engine.bidding import normalize_bids
from labelopt.engine.grouping import group_by_label, label_metrics
from labelopt.engine.regional import RegionMatcher, apply_region_cap
from labelopt.engine.scoring import budget_score
from labelopt.models import AllocationItem, Campaign, GroupResult, OptimizationResult

logger = logging.getLogger(__name__)


def optimize_group(
    label: str,
    campaigns: List[Campaign],
    cfg: OptimizerConfig,
    matcher: RegionMatcher,
) -> GroupResult:
    metrics, warnings = label_metrics(label, campaigns)
    kpi = metrics.kpi
    if kpi <= 0:
        msg = f"Label {label!r}: KPI is {kpi:g}; efficiency treated as neutral and bids pinned to the floor"
        logger.warning(msg)
        warnings.append(msg)

    items = [
        AllocationItem(campaign=c, score=budget_score(c, kpi, cfg), is_regional=matcher(c))
        for c in campaigns
    ]
    target = target_daily_spend(metrics, len(items), cfg)
    items = allocate(items, target)
    items, region_cap, unallocated = apply_region_cap(items, metrics, cfg)
    if unallocated:
        warnings.append(
            f"Label {label!r}: {unallocated:.2f} region surplus left unallocated (no non-region campaigns)"
        )
    items = apply_budget_floor(items, cfg)
    items, avg_tcpa, factor, bid_warnings = normalize_bids(items, kpi, cfg, label=label)
    warnings.extend(bid_warnings)

    logger.debug(
        "Label %r: %d campaigns, target %.2f, avg tCPA %.2f, correction %.4f",
        label, len(items), target, avg_tcpa, factor,
    )
    return GroupResult(
        label=label,
        metrics=metrics,
        items=tuple(items),
        target_daily_spend=target,
        region_cap=region_cap,
        weighted_avg_tcpa=avg_tcpa,
        correction_factor=factor,
        unallocated_surplus=unallocated,
        warnings=tuple(warnings),
    )


def run_optimization(
    snapshot: Iterable[Campaign],
    config: Optional[OptimizerConfig] = None,
    matcher: Optional[RegionMatcher] = None,
    max_workers: Optional[int] = None,
) -> OptimizationResult:
    """Compute new daily budgets and tCPAs for every campaign in the snapshot."""
    cfg = config or OptimizerConfig()
    region = matcher or RegionMatcher()
    groups: List[Tuple[str, List[Campaign]]] = list(group_by_label(snapshot).items())

    if max_workers and max_workers > 1 and len(groups) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [executor.submit(optimize_group, label, members, cfg, region) for label, members in groups]
            results = [f.result() for f in futures]
    else:
        results = [optimize_group(label, members, cfg, region) for label, members in groups]

    result = OptimizationResult(groups=tuple(results))
    logger.info(
        "Optimization pass computed %d campaign updates across %d labels",
        sum(len(g.items) for g in results), len(results),
    )
    return result
