"""
Metric collectors.

Provides:
- PaintTimingCollector: largest visible content paint (seconds)
- LayoutStabilityCollector: max session-window shift sum
- InteractionLatencyCollector: 98th percentile interaction duration (ms)
- summarize_resources: resource byte volume / script share
"""

from .base import CollectorState, MetricCollector
from .interaction import InteractionLatencyCollector
from .layout import LayoutStabilityCollector
from .paint import PaintTimingCollector
from .resources import summarize_resources

__all__ = [
    "CollectorState",
    "InteractionLatencyCollector",
    "LayoutStabilityCollector",
    "MetricCollector",
    "PaintTimingCollector",
    "summarize_resources",
]
