from __future__ import annotations

import asyncio
import time
from typing import Any

import pytest

from pageperf.aggregator import MetricsAggregator
from pageperf.config import AnalyzerConfig
from pageperf.models import Confidence, MetricKind, ResourceFacts
from pageperf.page import ENTRY_EVENT, ENTRY_LAYOUT_SHIFT, ENTRY_PAINT, ReplayPage


def _fast_config(**overrides: Any) -> AnalyzerConfig:
    values: dict[str, Any] = {
        "paint_timeout_ms": 200,
        "layout_timeout_ms": 30,
        "interaction_timeout_ms": 200,
        "aggregator_ceiling_ms": 2000,
    }
    values.update(overrides)
    return AnalyzerConfig(**values)


def _full_page() -> ReplayPage:
    return ReplayPage(
        url="https://shop.test/",
        entries={
            ENTRY_PAINT: [{"startTime": 1400.0}],
            ENTRY_LAYOUT_SHIFT: [{"startTime": 50.0, "value": 0.04}],
            ENTRY_EVENT: [{"interactionId": i + 1, "duration": d} for i, d in enumerate([40, 80, 120, 160, 240])],
        },
        navigation={"requestStart": 100.0, "responseStart": 350.0, "domContentLoadedEventEnd": 1100.0},
        resources=[
            {"name": "https://shop.test/app.js", "initiatorType": "script", "transferSize": 200_000},
            {"name": "https://shop.test/logo.png", "initiatorType": "img", "transferSize": 50_000},
        ],
    )


def test_aggregator_collects_all_metrics_and_page_facts() -> None:
    async def scenario():
        return await MetricsAggregator(_full_page(), _fast_config()).collect()

    bundle = asyncio.run(scenario())
    assert bundle.paint.value == pytest.approx(1.4)
    assert bundle.layout.value == pytest.approx(0.04)
    assert bundle.interaction.value == pytest.approx(240)
    assert all(s.confidence == Confidence.MEASURED for s in bundle.samples)
    assert bundle.resources.script_bytes == 200_000
    assert bundle.resources.total_bytes == 250_000
    assert bundle.ttfb_ms == pytest.approx(250.0)
    assert bundle.navigation is not None and bundle.navigation.dom_load_ms == pytest.approx(1000.0)


def test_collector_fault_costs_only_that_metric() -> None:
    async def scenario():
        agg = MetricsAggregator(_full_page(), _fast_config())

        def boom(_entries):  # noqa: ANN001
            raise RuntimeError("observer callback failed")

        agg.collectors[0].handle_entries = boom  # type: ignore[method-assign]
        return await agg.collect()

    bundle = asyncio.run(scenario())
    assert bundle.paint.confidence == Confidence.FALLBACK
    # domContentLoadedEventEnd - requestStart = 1000 ms, plus the render margin.
    assert bundle.paint.value == pytest.approx(1.2)
    assert bundle.interaction.confidence == Confidence.MEASURED


def test_ceiling_forces_fallback_for_stragglers() -> None:
    async def scenario():
        page = ReplayPage(ready_state="loading")
        cfg = _fast_config(
            paint_timeout_ms=60_000,
            layout_timeout_ms=60_000,
            interaction_timeout_ms=60_000,
            aggregator_ceiling_ms=50,
        )
        started = time.monotonic()
        bundle = await asyncio.wait_for(MetricsAggregator(page, cfg).collect(), timeout=2.0)
        return bundle, time.monotonic() - started, page

    bundle, elapsed, page = asyncio.run(scenario())
    assert elapsed < 1.0
    assert [s.confidence for s in bundle.samples] == [Confidence.FALLBACK] * 3
    assert bundle.paint.value == pytest.approx(3.0)
    assert bundle.layout.value == pytest.approx(0.05)
    assert bundle.interaction.value == pytest.approx(200)
    assert page.observer_count() == 0


def test_progress_callback_reports_each_metric() -> None:
    calls: list[tuple[int, int, MetricKind]] = []

    async def scenario():
        await MetricsAggregator(_full_page(), _fast_config()).collect(on_progress=lambda *a: calls.append(a))

    asyncio.run(scenario())
    assert [c[0] for c in calls] == [1, 2, 3]
    assert all(c[1] == 3 for c in calls)
    assert {c[2] for c in calls} == set(MetricKind)


def test_page_fact_failures_degrade_to_empty_facts() -> None:
    class NoFacts(ReplayPage):
        async def resource_entries(self) -> list[dict[str, Any]]:
            raise ConnectionError("gone")

        async def navigation_timing(self):  # noqa: ANN201
            raise ConnectionError("gone")

    async def scenario():
        page = NoFacts(entries={ENTRY_PAINT: [{"startTime": 500.0}]})
        return await MetricsAggregator(page, _fast_config()).collect()

    bundle = asyncio.run(scenario())
    assert bundle.resources == ResourceFacts()
    assert bundle.navigation is None
    assert bundle.ttfb_ms is None
