"""Layout stability collector (session-windowed shift sum, unitless)."""

from __future__ import annotations

from typing import Any

from ..models import MetricKind
from ..page.base import ENTRY_LAYOUT_SHIFT
from .base import MetricCollector, safe_number

LAYOUT_TIMEOUT_MS = 2000
SESSION_WINDOW_MS = 5000
# Never zero: a page with no signal does not score as perfectly stable.
FALLBACK_LAYOUT_SCORE = 0.05


class LayoutStabilityCollector(MetricCollector):
    kind = MetricKind.LAYOUT_STABILITY
    unit = "score"
    entry_type = ENTRY_LAYOUT_SHIFT

    def __init__(self, page, *, timeout_ms: int = LAYOUT_TIMEOUT_MS, scope=None) -> None:  # noqa: ANN001
        super().__init__(page, timeout_ms=timeout_ms, scope=scope)
        self.shift_count = 0
        self.window_start_ms: float | None = None
        self.window_sum = 0.0
        self.max_window_sum = 0.0
        self.windows: list[float] = []

    def add_shift(self, ts: float, value: float) -> None:
        if self.window_start_ms is None or ts - self.window_start_ms > SESSION_WINDOW_MS or ts < self.window_start_ms:
            self.window_start_ms = ts
            self.window_sum = 0.0
            self.windows.append(0.0)
        self.window_sum += value
        self.windows[-1] = self.window_sum
        self.shift_count += 1
        if self.window_sum > self.max_window_sum:
            self.max_window_sum = self.window_sum

    def handle_entries(self, entries: list[dict[str, Any]]) -> float | None:
        for entry in entries:
            if entry.get("hadRecentInput"):
                continue
            value = safe_number(entry.get("value"))
            ts = safe_number(entry.get("startTime"))
            if value is None or ts is None or value < 0:
                continue
            self.add_shift(ts, value)
        # Layout stability has no early termination: it runs to its timer.
        return None

    def on_timeout(self) -> float | None:
        if self.shift_count == 0:
            return None
        return self.max_window_sum

    async def fallback_value(self) -> float:
        return FALLBACK_LAYOUT_SCORE
