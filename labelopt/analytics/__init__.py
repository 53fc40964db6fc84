"""
LABELOPT ANALYTICS
Dashboard aggregates over a campaign snapshot

This package contains:
- metrics: label summaries, performance segments, tCPA variance, region spend share
"""

from .metrics import label_summary, performance_segments, tcpa_variance_buckets, region_spend_ratio

__all__ = [
    'label_summary', 'performance_segments', 'tcpa_variance_buckets', 'region_spend_ratio'
]
