"""Largest visible content paint collector (seconds)."""

from __future__ import annotations

import logging
from typing import Any

from ..models import MetricKind
from ..page.base import ENTRY_PAINT
from .base import MetricCollector, safe_number

logger = logging.getLogger("pageperf.collectors")

PAINT_TIMEOUT_MS = 5000
# DOM-load completion plus a margin for the final render.
RENDER_MARGIN_S = 0.2
DEFAULT_PAINT_S = 3.0


class PaintTimingCollector(MetricCollector):
    kind = MetricKind.PAINT_TIMING
    unit = "s"
    entry_type = ENTRY_PAINT
    watches_load = True

    def __init__(self, page, *, timeout_ms: int = PAINT_TIMEOUT_MS, scope=None) -> None:  # noqa: ANN001
        super().__init__(page, timeout_ms=timeout_ms, scope=scope)
        self.max_start_ms: float | None = None

    def handle_entries(self, entries: list[dict[str, Any]]) -> float | None:
        for entry in entries:
            start = safe_number(entry.get("startTime"))
            if start is None or start < 0:
                continue
            if self.max_start_ms is None or start > self.max_start_ms:
                self.max_start_ms = start
        if self.max_start_ms is not None and self.page.ready_state == "complete":
            return self.max_start_ms / 1000.0
        return None

    def handle_load(self) -> float | None:
        if self.max_start_ms is None:
            return None
        return self.max_start_ms / 1000.0

    async def fallback_value(self) -> float:
        try:
            nav = await self.page.navigation_timing()
        except Exception as exc:  # noqa: BLE001
            logger.warning("paint_fallback_navigation_failed: %s", exc)
            nav = None
        if nav is not None and nav.dom_load_ms is not None:
            return nav.dom_load_ms / 1000.0 + RENDER_MARGIN_S
        return DEFAULT_PAINT_S
