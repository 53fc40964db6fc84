from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Tuple

from labelopt.config import UNLABELED_GROUP
from labelopt.models import Campaign, LabelMetrics

logger = logging.getLogger(__name__)

_LABEL_FIELDS = (
    ("label_budget", "monthly budget"),
    ("label_remaining_budget", "remaining daily budget"),
    ("label_kpi", "KPI"),
)


def group_key(campaign: Campaign) -> str:
    """The label exactly as stored; blank or whitespace-only labels share the Unlabeled group."""
    label = campaign.label or ""
    return label if label.strip() else UNLABELED_GROUP


def group_by_label(campaigns: Iterable[Campaign]) -> Dict[str, List[Campaign]]:
    """Partition campaigns by label, keeping first-seen label order and input order within a label."""
    groups: Dict[str, List[Campaign]] = {}
    for c in campaigns:
        groups.setdefault(group_key(c), []).append(c)
    return {label: members for label, members in groups.items() if members}


def label_metrics(label: str, group: List[Campaign]) -> Tuple[LabelMetrics, List[str]]:
    """
    Label-level values come from the first record of the group. Records that
    disagree with it are reported as warnings; the first record still wins.
    """
    if not group:
        raise ValueError(f"Cannot derive label metrics for empty group {label!r}")
    first = group[0]
    warnings: List[str] = []
    for attr, desc in _LABEL_FIELDS:
        expected = getattr(first, attr)
        mismatched = [c.campaign_name or c.id for c in group[1:] if getattr(c, attr) != expected]
        if mismatched:
            msg = (
                f"Label {label!r}: {len(mismatched)} campaign(s) disagree on {desc} "
                f"(using {expected:g} from {first.campaign_name or first.id!r}): "
                f"{', '.join(mismatched[:5])}{'...' if len(mismatched) > 5 else ''}"
            )
            logger.warning(msg)
            warnings.append(msg)
    metrics = LabelMetrics(
        label=label,
        monthly_budget=first.label_budget,
        remaining_daily_budget=first.label_remaining_budget,
        kpi=first.label_kpi,
    )
    return metrics, warnings
