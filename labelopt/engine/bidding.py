from __future__ import annotations

import logging
from dataclasses import replace
from typing import List, Optional, Sequence, Tuple

from labelopt.config import OptimizerConfig
from labelopt.models import AllocationItem, Campaign

logger = logging.getLogger(__name__)


def raw_tcpa(campaign: Campaign, kpi: float, cfg: OptimizerConfig) -> float:
    """Per-campaign bid before the label-wide correction."""
    if campaign.cpa <= 0:
        return kpi
    if campaign.cost_3d < cfg.min_daily_budget:
        # dormant: loosen hard, never below KPI
        return max(campaign.tcpa * cfg.dormant_tcpa_step, kpi)
    if campaign.cpa < kpi:
        return max(campaign.cpa * cfg.efficient_cpa_headroom, campaign.tcpa * cfg.efficient_tcpa_step)
    return campaign.tcpa * cfg.underperform_tcpa_step


def weighted_average_tcpa(items: Sequence[AllocationItem]) -> float:
    """Budget-weighted mean of raw tCPAs; plain mean when the group has no budget."""
    if not items:
        return 0.0
    total_budget = sum(i.new_daily_budget for i in items)
    if total_budget > 0:
        return sum(i.raw_tcpa * i.new_daily_budget for i in items) / total_budget
    return sum(i.raw_tcpa for i in items) / len(items)


def correction_factor(avg_tcpa: float, kpi: float, cfg: OptimizerConfig) -> Optional[float]:
    """
    Scalar that moves the weighted average into [lower, upper] around KPI.
    None when no scalar can: the average is zero while the band is positive.
    """
    upper = kpi * cfg.kpi_upper
    lower = kpi * cfg.kpi_lower
    if avg_tcpa > upper:
        return upper / avg_tcpa
    if avg_tcpa < lower:
        if avg_tcpa <= 0:
            return None
        return lower / avg_tcpa
    return 1.0


def normalize_bids(
    items: Sequence[AllocationItem],
    kpi: float,
    cfg: OptimizerConfig,
    label: str = "",
) -> Tuple[List[AllocationItem], float, float, List[str]]:
    """
    Assign raw and corrected tCPAs. Items must already carry their final
    budgets. Returns (items, weighted_avg, correction_factor, warnings).
    """
    with_raw = [replace(i, raw_tcpa=raw_tcpa(i.campaign, kpi, cfg)) for i in items]
    avg = weighted_average_tcpa(with_raw)
    factor = correction_factor(avg, kpi, cfg)
    warnings: List[str] = []

    if factor is None:
        reset = max(kpi, cfg.tcpa_floor)
        msg = f"Label {label!r}: all raw tCPAs are zero; bids reset to KPI {reset:.2f}"
        logger.warning(msg)
        warnings.append(msg)
        return [replace(i, new_tcpa=reset) for i in with_raw], avg, 1.0, warnings

    out = [replace(i, new_tcpa=max(i.raw_tcpa * factor, cfg.tcpa_floor)) for i in with_raw]
    return out, avg, factor, warnings
