"""Interaction latency collector (98th percentile interaction duration, ms)."""

from __future__ import annotations

import math
from typing import Any

from ..models import MetricKind
from ..page.base import ENTRY_EVENT
from .base import MetricCollector, safe_number

INTERACTION_TIMEOUT_MS = 2000
MIN_INTERACTIONS = 5
TOP_FRACTION = 0.02
LATENCY_FLOOR_MS = 100.0
FALLBACK_LATENCY_MS = 200.0


def percentile_98(durations: list[float]) -> float | None:
    """Pick the item at floor(0.02 * n) of the descending-sorted durations."""
    if not durations:
        return None
    ordered = sorted(durations, reverse=True)
    index = min(math.floor(len(ordered) * TOP_FRACTION), len(ordered) - 1)
    return ordered[index]


class InteractionLatencyCollector(MetricCollector):
    kind = MetricKind.INTERACTION_LATENCY
    unit = "ms"
    entry_type = ENTRY_EVENT
    watches_load = True

    def __init__(self, page, *, timeout_ms: int = INTERACTION_TIMEOUT_MS, scope=None) -> None:  # noqa: ANN001
        super().__init__(page, timeout_ms=timeout_ms, scope=scope)
        self.durations: list[float] = []

    def estimate(self) -> float | None:
        return percentile_98(self.durations)

    def _ready_value(self) -> float | None:
        if len(self.durations) < MIN_INTERACTIONS or self.page.ready_state != "complete":
            return None
        value = self.estimate()
        if value is None:
            return None
        return max(value, LATENCY_FLOOR_MS)

    def handle_entries(self, entries: list[dict[str, Any]]) -> float | None:
        for entry in entries:
            if not entry.get("interactionId"):
                continue
            duration = safe_number(entry.get("duration"))
            if duration is None or duration < 0:
                continue
            self.durations.append(duration)
        return self._ready_value()

    def handle_load(self) -> float | None:
        return self._ready_value()

    async def fallback_value(self) -> float:
        # Partial data still counts as an estimate, but never below the default.
        return max(self.estimate() or 0.0, FALLBACK_LATENCY_MS)
