"""
LABELOPT ENGINE
Budget & bid reallocation over a campaign snapshot

This package contains:
- grouping: label partitioning and label-level metrics
- scoring: momentum x efficiency allocation weights
- allocation: proportional split of the label's daily target
- regional: named-region cap and surplus redistribution
- bidding: raw tCPA rules and KPI-band correction
- optimizer: per-pass orchestration
"""

from .optimizer import optimize_group, run_optimization
from .regional import RegionMatcher

__all__ = ['optimize_group', 'run_optimization', 'RegionMatcher']
