"""
Stage-to-stage conversion and activity encoding.

Pure functions over an ordered list of stage ids and the per-stage analytics
map produced by the aggregator.
"""

from typing import Mapping, Optional

from ..flow_types import StageAnalytics


HEALTHY_THRESHOLD = 80.0
WARNING_THRESHOLD = 50.0

# Upper bounds (inclusive) of recent-activity buckets 1 and 2; above -> 3
ACTIVITY_LOW_MAX = 5
ACTIVITY_MEDIUM_MAX = 15


def _leads(analytics: Mapping[str, StageAnalytics], stage_id: str) -> int:
    entry = analytics.get(stage_id)
    return entry.total_leads if entry else 0


def conversion_rate(
    stage_ids: list[str],
    index: int,
    analytics: Mapping[str, StageAnalytics],
) -> Optional[float]:
    """
    Percentage of the previous stage's leads that reached stage `index`.

    None for the first stage and whenever the previous stage has no leads.
    Not clamped: branching and skipping can push a stage above 100%.
    """
    if index <= 0 or index >= len(stage_ids):
        return None
    previous = _leads(analytics, stage_ids[index - 1])
    if previous == 0:
        return None
    return _leads(analytics, stage_ids[index]) / previous * 100


def compute_conversion_rates(
    stage_ids: list[str],
    analytics: Mapping[str, StageAnalytics],
) -> dict[str, Optional[float]]:
    """Conversion rate of every stage, keyed by stage id."""
    return {sid: conversion_rate(stage_ids, i, analytics) for i, sid in enumerate(stage_ids)}


def classify_conversion(rate: Optional[float]) -> Optional[str]:
    """'healthy' (>= 80), 'warning' (>= 50) or 'critical'; None when there is no rate."""
    if rate is None:
        return None
    if rate >= HEALTHY_THRESHOLD:
        return "healthy"
    if rate >= WARNING_THRESHOLD:
        return "warning"
    return "critical"


def activity_level(recent_activity: int) -> int:
    """Number of flow dots (0-3) for an edge into a stage with this recent activity."""
    if recent_activity <= 0:
        return 0
    if recent_activity <= ACTIVITY_LOW_MAX:
        return 1
    if recent_activity <= ACTIVITY_MEDIUM_MAX:
        return 2
    return 3
