"""
LABELOPT
Label budget & tCPA reallocation for advertising campaign dashboards

This package contains:
- engine: the reallocation pass (grouping, scoring, allocation, region cap, bidding)
- storage: SQLite record store with transactional write-back
- service: optimization run orchestration and run history
- analytics: dashboard aggregates
- infrastructure: ingestion validation and spreadsheet import/export
- cli: command line entry point
"""

from .config import OptimizerConfig
from .engine import RegionMatcher, run_optimization
from .models import Campaign, CampaignUpdate, OptimizationResult

__version__ = "1.0.0"

__all__ = [
    'OptimizerConfig', 'RegionMatcher', 'run_optimization',
    'Campaign', 'CampaignUpdate', 'OptimizationResult',
]
