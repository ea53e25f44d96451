"""
Metrics aggregation: drive the three collectors concurrently into one bundle.

Design goals:
- Cooperative concurrency: collectors are interleaved tasks on one loop.
- Bounded: an aggregator ceiling forces fallback resolution of stragglers.
- Fail-soft per metric: a collector fault costs that metric's fallback, not the run.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from .collectors import (
    InteractionLatencyCollector,
    LayoutStabilityCollector,
    MetricCollector,
    PaintTimingCollector,
    summarize_resources,
)
from .config import AnalyzerConfig
from .models import MetricKind, MetricSample, MetricsBundle, NavigationTiming, ResourceFacts
from .page.base import PageSource, ResourceScope

logger = logging.getLogger("pageperf.aggregator")

ProgressCallback = Callable[[int, int, MetricKind], Any]


class MetricsAggregator:
    def __init__(self, page: PageSource, config: AnalyzerConfig, *, scope: ResourceScope | None = None) -> None:
        self.page = page
        self.config = config
        self.scope = scope if scope is not None else ResourceScope("aggregator")
        self.collectors: list[MetricCollector] = [
            PaintTimingCollector(page, timeout_ms=config.paint_timeout_ms, scope=self.scope),
            LayoutStabilityCollector(page, timeout_ms=config.layout_timeout_ms, scope=self.scope),
            InteractionLatencyCollector(page, timeout_ms=config.interaction_timeout_ms, scope=self.scope),
        ]

    async def _run_one(self, collector: MetricCollector) -> MetricSample:
        try:
            return await collector.collect()
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.warning("collector_failed kind=%s error=%s; using fallback", collector.kind.value, exc)
            return await collector.fallback_sample()

    async def collect(self, on_progress: ProgressCallback | None = None) -> MetricsBundle:
        tasks: dict[asyncio.Task[MetricSample], MetricCollector] = {
            asyncio.create_task(self._run_one(c), name=f"pageperf-{c.kind.value}"): c for c in self.collectors
        }
        results: dict[MetricKind, MetricSample] = {}
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.aggregator_ceiling_ms / 1000.0
        forced = False

        try:
            pending: set[asyncio.Task[MetricSample]] = set(tasks)
            while pending:
                timeout = None if forced else max(0.0, deadline - loop.time())
                done, pending = await asyncio.wait(pending, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
                if not done and not forced:
                    forced = True
                    logger.info("aggregator_ceiling_reached pending=%s", len(pending))
                    for task in pending:
                        tasks[task].force_fallback()
                    continue
                for task in done:
                    sample = task.result()
                    results[sample.kind] = sample
                    if on_progress is not None:
                        on_progress(len(results), len(tasks), sample.kind)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

        resources, navigation = await self._page_facts()
        return MetricsBundle(
            paint=results[MetricKind.PAINT_TIMING],
            layout=results[MetricKind.LAYOUT_STABILITY],
            interaction=results[MetricKind.INTERACTION_LATENCY],
            resources=resources,
            navigation=navigation,
        )

    async def _page_facts(self) -> tuple[ResourceFacts, NavigationTiming | None]:
        try:
            entries = await self.page.resource_entries()
            resources = summarize_resources(entries)
        except Exception as exc:  # noqa: BLE001
            logger.warning("resource_entries_failed: %s", exc)
            resources = ResourceFacts()
        try:
            navigation = await self.page.navigation_timing()
        except Exception as exc:  # noqa: BLE001
            logger.warning("navigation_timing_failed: %s", exc)
            navigation = None
        return resources, navigation
