"""
Named-region spend cap.

Campaigns belonging to a capped region (India by default) may together
receive at most their share of the label's monthly budget spread over the
days left in the month. Anything the proportional allocation gave them above
that cap is handed to the rest of the label by score.

Region membership is decided by a RegionMatcher. An explicit `region` on the
campaign record wins; otherwise the legacy rule applies and the campaign
name is searched for a marker substring. Name matching is a known
simplification kept for compatibility with existing campaign naming.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

from labelopt.config import DEFAULT_REGION_NAME, OptimizerConfig
from labelopt.engine.allocation import distribute
from labelopt.models import AllocationItem, Campaign, LabelMetrics, RegionCap

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegionMatcher:
    name: str = DEFAULT_REGION_NAME
    name_markers: Tuple[str, ...] = (DEFAULT_REGION_NAME,)
    case_sensitive: bool = True

    def __call__(self, campaign: Campaign) -> bool:
        return self.matches(campaign)

    def matches(self, campaign: Campaign) -> bool:
        if campaign.region:
            return campaign.region.strip().casefold() == self.name.casefold()
        name = campaign.campaign_name or ""
        if self.case_sensitive:
            return any(m in name for m in self.name_markers if m)
        folded = name.casefold()
        return any(m.casefold() in folded for m in self.name_markers if m)

    @staticmethod
    def from_settings(settings: Optional[Dict[str, Any]] = None) -> "RegionMatcher":
        region = (settings or {}).get("region") or {}
        name = str(region.get("name") or DEFAULT_REGION_NAME)
        markers = region.get("name_markers")
        if markers is None:
            markers = [name]
        return RegionMatcher(
            name=name,
            name_markers=tuple(str(m) for m in markers),
            case_sensitive=bool(region.get("case_sensitive", True)),
        )


def region_daily_cap(
    region_campaigns: Sequence[Campaign],
    metrics: LabelMetrics,
    cfg: OptimizerConfig,
) -> Tuple[float, float, float]:
    """Returns (daily_cap, spend_to_date, max_spend). The per-campaign floor always beats the computed cap."""
    spend_to_date = sum(c.cost for c in region_campaigns)
    max_spend = metrics.monthly_budget * cfg.region_budget_ratio
    remaining = max_spend - spend_to_date
    cap = remaining / cfg.days_remaining if remaining > 0 else 0.0
    cap = max(cap, len(region_campaigns) * cfg.min_daily_budget)
    return cap, spend_to_date, max_spend


def apply_region_cap(
    items: Sequence[AllocationItem],
    metrics: LabelMetrics,
    cfg: OptimizerConfig,
) -> Tuple[List[AllocationItem], Optional[RegionCap], float]:
    """
    Scale region campaigns down to the daily cap and hand the surplus to the
    other campaigns of the label. Returns (items, cap info, unallocated surplus).
    Surplus is unallocated only when the label has no non-region campaign.
    """
    regional = [i for i in items if i.is_regional]
    if not regional:
        return list(items), None, 0.0

    cap, spend_to_date, max_spend = region_daily_cap([i.campaign for i in regional], metrics, cfg)
    current = sum(i.temp_budget for i in regional)
    if current <= cap:
        info = RegionCap(len(regional), spend_to_date, max_spend, cap, current, applied=False)
        return list(items), info, 0.0

    scale = cap / current
    surplus = current - cap
    others = [i for i in items if not i.is_regional]
    extra = dict(zip((id(i) for i in others), distribute(surplus, others)))

    out: List[AllocationItem] = []
    for item in items:
        if item.is_regional:
            out.append(replace(item, temp_budget=item.temp_budget * scale))
        else:
            out.append(replace(item, temp_budget=item.temp_budget + extra[id(item)]))

    unallocated = 0.0 if others else surplus
    if unallocated:
        logger.warning(
            "Label %r: %.2f of region surplus has no non-region campaign to absorb it; left unallocated",
            metrics.label, unallocated,
        )
    info = RegionCap(len(regional), spend_to_date, max_spend, cap, current, applied=True)
    logger.debug(
        "Label %r: region allocation %.2f capped to %.2f (scale %.4f)", metrics.label, current, cap, scale
    )
    return out, info, unallocated
