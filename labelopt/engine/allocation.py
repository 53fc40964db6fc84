from __future__ import annotations

from dataclasses import replace
from typing import List, Sequence

from labelopt.config import OptimizerConfig
from labelopt.models import AllocationItem, LabelMetrics


def target_daily_spend(metrics: LabelMetrics, group_size: int, cfg: OptimizerConfig) -> float:
    """Remaining daily label budget, or group_size × floor when the label has none."""
    if metrics.remaining_daily_budget > 0:
        return metrics.remaining_daily_budget
    return group_size * cfg.min_daily_budget


def distribute(amount: float, items: Sequence[AllocationItem]) -> List[float]:
    """Split `amount` across items in proportion to score; evenly if scores sum to zero."""
    if not items:
        return []
    total_score = sum(i.score for i in items)
    if total_score > 0:
        return [(i.score / total_score) * amount for i in items]
    return [amount / len(items)] * len(items)


def allocate(items: Sequence[AllocationItem], target: float) -> List[AllocationItem]:
    shares = distribute(target, items)
    return [replace(item, temp_budget=share) for item, share in zip(items, shares)]


def apply_budget_floor(items: Sequence[AllocationItem], cfg: OptimizerConfig) -> List[AllocationItem]:
    # applied after redistribution, so group spend may end slightly above target
    return [replace(i, new_daily_budget=max(i.temp_budget, cfg.min_daily_budget)) for i in items]
