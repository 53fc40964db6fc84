from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import pandas as pd

from labelopt.config import DEFAULT_MIN_DAILY_BUDGET
from labelopt.engine.grouping import group_key
from labelopt.engine.regional import RegionMatcher
from labelopt.models import Campaign

SUMMARY_COLUMNS = (
    "label", "campaigns", "cost", "budget", "conversions", "kpi",
    "cpa", "utilization_pct", "new_budget",
)

VARIANCE_BUCKETS = ("High Cut", "Cut", "Neutral", "Boost", "High Boost")


@dataclass(frozen=True)
class RegionSpend:
    region: str
    region_cost: float
    total_cost: float

    @property
    def ratio_pct(self) -> float:
        return (self.region_cost / self.total_cost) * 100 if self.total_cost > 0 else 0.0


def label_summary(campaigns: Sequence[Campaign]) -> pd.DataFrame:
    """One row per label, sorted by cost (desc)."""
    if not campaigns:
        return pd.DataFrame(columns=list(SUMMARY_COLUMNS))
    df = pd.DataFrame([
        {
            "label": group_key(c),
            "cost": c.cost,
            "budget": c.budget,
            "conversions": c.conversions,
            "kpi": c.label_kpi,
            "new_budget": c.new_daily_budget or 0.0,
        }
        for c in campaigns
    ])
    out = df.groupby("label", sort=False).agg(
        campaigns=("cost", "size"),
        cost=("cost", "sum"),
        budget=("budget", "sum"),
        conversions=("conversions", "sum"),
        kpi=("kpi", "first"),
        new_budget=("new_budget", "sum"),
    ).reset_index()
    out["cpa"] = (out["cost"] / out["conversions"]).where(out["conversions"] > 0, 0.0)
    out["utilization_pct"] = (out["cost"] / out["budget"] * 100).where(out["budget"] > 0, 0.0)
    out = out.sort_values("cost", ascending=False, kind="stable").reset_index(drop=True)
    return out[list(SUMMARY_COLUMNS)]


def performance_segment(c: Campaign, min_daily_budget: float = DEFAULT_MIN_DAILY_BUDGET) -> str:
    # sleeping takes priority over no-data, which takes priority over good/bad
    if c.cost_3d < min_daily_budget:
        return "sleeping"
    if c.cpa <= 0:
        return "no_data"
    kpi = c.label_kpi or 1.0
    return "good" if c.cpa <= kpi else "bad"


def performance_segments(
    campaigns: Sequence[Campaign],
    min_daily_budget: float = DEFAULT_MIN_DAILY_BUDGET,
) -> Dict[str, int]:
    counts = {"good": 0, "bad": 0, "sleeping": 0, "no_data": 0}
    for c in campaigns:
        counts[performance_segment(c, min_daily_budget)] += 1
    return counts


def tcpa_variance_bucket(c: Campaign) -> str:
    """Bucket the new (or, before any run, current) tCPA by its deviation from the label KPI."""
    kpi = c.label_kpi or 1.0
    target = c.new_target_cpa or c.tcpa or kpi
    diff = (target - kpi) / kpi * 100
    if diff < -15:
        return "High Cut"
    if diff < -5:
        return "Cut"
    if diff <= 5:
        return "Neutral"
    if diff <= 15:
        return "Boost"
    return "High Boost"


def tcpa_variance_buckets(campaigns: Sequence[Campaign]) -> Dict[str, int]:
    counts = {name: 0 for name in VARIANCE_BUCKETS}
    for c in campaigns:
        counts[tcpa_variance_bucket(c)] += 1
    return counts


def region_spend_ratio(campaigns: Sequence[Campaign], matcher: Optional[RegionMatcher] = None) -> RegionSpend:
    m = matcher or RegionMatcher()
    region_cost = sum(c.cost for c in campaigns if m(c))
    total = sum(c.cost for c in campaigns)
    return RegionSpend(region=m.name, region_cost=region_cost, total_cost=total)
