from __future__ import annotations

from labelopt.config import OptimizerConfig
from labelopt.models import Campaign


def efficiency(campaign: Campaign, kpi: float) -> float:
    """KPI / CPA. Campaigns without conversions are assumed to run exactly at KPI."""
    cpa = campaign.cpa if campaign.cpa > 0 else kpi
    if cpa <= 0:
        return 1.0
    return kpi / cpa


def efficiency_factor(eff: float, cfg: OptimizerConfig) -> float:
    if eff >= 1.0:
        return cfg.reward_factor
    if eff < cfg.penalty_threshold:
        return cfg.penalty_factor
    return 1.0


def budget_score(campaign: Campaign, kpi: float, cfg: OptimizerConfig) -> float:
    # floor momentum so silent campaigns keep a non-zero weight
    momentum = max(campaign.cost_3d, cfg.min_daily_budget)
    return momentum * efficiency_factor(efficiency(campaign, kpi), cfg)
