"""
Flow Analytics Package

Live funnel metrics for the flow overlay: aggregation, conversion and the
change-notification bridge.
"""

from .aggregator import FlowAnalyticsAggregator, compute_stage_analytics
from .conversion import (
    conversion_rate,
    compute_conversion_rates,
    classify_conversion,
    activity_level,
)
from .live_updates import LiveUpdateChannel

__all__ = [
    'FlowAnalyticsAggregator',
    'compute_stage_analytics',
    'conversion_rate',
    'compute_conversion_rates',
    'classify_conversion',
    'activity_level',
    'LiveUpdateChannel',
]
