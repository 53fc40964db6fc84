"""
Campaign records and the transient values produced by an optimization pass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from labelopt.utils import round_money, safe_f


@dataclass(frozen=True)
class Campaign:
    """A campaign row as held by the record store. Read-only during a pass."""
    id: str
    campaign_name: str
    label: str = ""

    # campaign-level metrics
    budget: float = 0.0
    cost: float = 0.0  # month-to-date
    cost_3d: float = 0.0  # momentum
    conversions: float = 0.0
    cpa: float = 0.0
    tcpa: float = 0.0

    # label-level metrics, duplicated on every record of the label
    label_budget: float = 0.0  # monthly
    label_remaining_budget: float = 0.0  # daily
    label_kpi: float = 0.0

    # informational columns carried from the source sheet
    mtd_cluster_spend_pct: float = 0.0
    label_cost: float = 0.0
    label_cost_3d: float = 0.0
    label_conversions: float = 0.0
    label_cpa: float = 0.0
    row_order: int = 0
    region: Optional[str] = None

    # last persisted optimization output
    new_daily_budget: Optional[float] = None
    new_target_cpa: Optional[float] = None

    @staticmethod
    def from_row(row: Mapping[str, Any]) -> "Campaign":
        def num(key: str) -> float:
            return safe_f(row.get(key), 0.0)

        def opt_num(key: str) -> Optional[float]:
            val = row.get(key)
            return None if val is None else safe_f(val, 0.0)

        return Campaign(
            id=str(row["id"]),
            campaign_name=str(row.get("campaign_name") or ""),
            label=str(row.get("label") or ""),
            budget=num("budget"),
            cost=num("cost"),
            cost_3d=num("cost_3d"),
            conversions=num("conversions"),
            cpa=num("cpa"),
            tcpa=num("tcpa"),
            label_budget=num("label_budget"),
            label_remaining_budget=num("label_remaining_budget"),
            label_kpi=num("label_kpi"),
            mtd_cluster_spend_pct=num("mtd_cluster_spend_pct"),
            label_cost=num("label_cost"),
            label_cost_3d=num("label_cost_3d"),
            label_conversions=num("label_conversions"),
            label_cpa=num("label_cpa"),
            row_order=int(row.get("row_order") or 0),
            region=row.get("region") or None,
            new_daily_budget=opt_num("new_daily_budget"),
            new_target_cpa=opt_num("new_target_cpa"),
        )


@dataclass(frozen=True)
class LabelMetrics:
    label: str
    monthly_budget: float
    remaining_daily_budget: float
    kpi: float


@dataclass(frozen=True)
class AllocationItem:
    campaign: Campaign
    score: float = 0.0
    temp_budget: float = 0.0
    new_daily_budget: float = 0.0
    raw_tcpa: float = 0.0
    new_tcpa: float = 0.0
    is_regional: bool = False


@dataclass(frozen=True)
class RegionCap:
    campaign_count: int
    spend_to_date: float
    max_spend: float
    daily_cap: float
    allocated_before_cap: float
    applied: bool


@dataclass(frozen=True)
class CampaignUpdate:
    campaign_id: str
    new_daily_budget: float
    new_target_cpa: float

    def as_tuple(self) -> Tuple[str, float, float]:
        return (self.campaign_id, self.new_daily_budget, self.new_target_cpa)


@dataclass(frozen=True)
class GroupResult:
    label: str
    metrics: LabelMetrics
    items: Tuple[AllocationItem, ...]
    target_daily_spend: float
    region_cap: Optional[RegionCap]
    weighted_avg_tcpa: float
    correction_factor: float
    unallocated_surplus: float = 0.0
    warnings: Tuple[str, ...] = ()

    @property
    def total_new_budget(self) -> float:
        return sum(i.new_daily_budget for i in self.items)

    def updates(self) -> List[CampaignUpdate]:
        return [
            CampaignUpdate(
                campaign_id=i.campaign.id,
                new_daily_budget=round_money(i.new_daily_budget),
                new_target_cpa=round_money(i.new_tcpa),
            )
            for i in self.items
        ]


@dataclass(frozen=True)
class OptimizationResult:
    groups: Tuple[GroupResult, ...] = field(default_factory=tuple)

    @property
    def updates(self) -> List[CampaignUpdate]:
        out: List[CampaignUpdate] = []
        for g in self.groups:
            out.extend(g.updates())
        return out

    @property
    def warnings(self) -> List[str]:
        return [w for g in self.groups for w in g.warnings]

    def by_label(self) -> Dict[str, GroupResult]:
        return {g.label: g for g in self.groups}
