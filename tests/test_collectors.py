from __future__ import annotations

import asyncio
from typing import Any

import pytest

from pageperf.collectors import (
    CollectorState,
    InteractionLatencyCollector,
    LayoutStabilityCollector,
    PaintTimingCollector,
)
from pageperf.collectors.interaction import percentile_98
from pageperf.collectors.resources import is_script_resource, summarize_resources
from pageperf.models import Confidence, MetricKind
from pageperf.page import ENTRY_EVENT, ENTRY_LAYOUT_SHIFT, ENTRY_PAINT, ReplayPage, ResourceScope


def _events(durations: list[float]) -> list[dict[str, Any]]:
    return [{"interactionId": i + 1, "duration": d, "name": "click"} for i, d in enumerate(durations)]


# ─────────────────────────────────────────────────────────────────────────────
# Paint timing
# ─────────────────────────────────────────────────────────────────────────────


def test_paint_resolves_immediately_when_page_complete() -> None:
    async def scenario():
        page = ReplayPage(entries={ENTRY_PAINT: [{"startTime": 1200.0}, {"startTime": 1800.0}]})
        collector = PaintTimingCollector(page, timeout_ms=5000)
        sample = await asyncio.wait_for(collector.collect(), timeout=1.0)
        return sample, collector, page

    sample, collector, page = asyncio.run(scenario())
    assert sample.kind == MetricKind.PAINT_TIMING
    assert sample.value == pytest.approx(1.8)
    assert sample.unit == "s"
    assert sample.confidence == Confidence.MEASURED
    assert collector.state == CollectorState.DONE
    assert page.observer_count() == 0


def test_paint_resolves_on_load_signal() -> None:
    async def scenario():
        page = ReplayPage(ready_state="interactive", entries={ENTRY_PAINT: [{"startTime": 900.0}]})
        collector = PaintTimingCollector(page, timeout_ms=5000)
        task = asyncio.create_task(collector.collect())
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert not task.done()
        page.set_ready_state("complete")
        return await asyncio.wait_for(task, timeout=1.0)

    sample = asyncio.run(scenario())
    assert sample.value == pytest.approx(0.9)
    assert sample.confidence == Confidence.MEASURED


def test_paint_timeout_falls_back_to_dom_load_plus_margin() -> None:
    async def scenario():
        page = ReplayPage(ready_state="loading", navigation={"domLoad": 1500.0})
        return await PaintTimingCollector(page, timeout_ms=30).collect()

    sample = asyncio.run(scenario())
    assert sample.value == pytest.approx(1.7)
    assert sample.confidence == Confidence.FALLBACK


def test_paint_fallback_without_navigation_is_three_seconds() -> None:
    async def scenario():
        page = ReplayPage(ready_state="loading")
        return await PaintTimingCollector(page, timeout_ms=30).collect()

    sample = asyncio.run(scenario())
    assert sample.value == pytest.approx(3.0)
    assert sample.confidence == Confidence.FALLBACK


def test_unsupported_entry_type_falls_back_without_waiting() -> None:
    async def scenario():
        page = ReplayPage(unsupported={ENTRY_PAINT})
        collector = PaintTimingCollector(page, timeout_ms=60_000)
        sample = await asyncio.wait_for(collector.collect(), timeout=1.0)
        return sample, page

    sample, page = asyncio.run(scenario())
    assert sample.confidence == Confidence.FALLBACK
    assert sample.value == pytest.approx(3.0)
    assert page.observer_count() == 0


# ─────────────────────────────────────────────────────────────────────────────
# Layout stability
# ─────────────────────────────────────────────────────────────────────────────


def test_layout_takes_max_session_window() -> None:
    async def scenario():
        page = ReplayPage(
            entries={
                ENTRY_LAYOUT_SHIFT: [
                    {"startTime": 0.0, "value": 0.05},
                    {"startTime": 1000.0, "value": 0.03},
                    {"startTime": 7000.0, "value": 0.2},
                ]
            }
        )
        collector = LayoutStabilityCollector(page, timeout_ms=30)
        return await collector.collect(), collector

    sample, collector = asyncio.run(scenario())
    assert sample.value == pytest.approx(0.2)
    assert sample.confidence == Confidence.MEASURED
    assert collector.windows == pytest.approx([0.08, 0.2])


def test_layout_sums_shifts_within_one_window() -> None:
    collector = LayoutStabilityCollector(ReplayPage())
    collector.add_shift(0.0, 0.05)
    collector.add_shift(1000.0, 0.03)
    collector.add_shift(4900.0, 0.01)
    assert collector.max_window_sum == pytest.approx(0.09)
    assert len(collector.windows) == 1


def test_layout_ignores_shifts_after_recent_input() -> None:
    async def scenario():
        page = ReplayPage(
            entries={
                ENTRY_LAYOUT_SHIFT: [
                    {"startTime": 0.0, "value": 0.3, "hadRecentInput": True},
                    {"startTime": 10.0, "value": 0.02},
                ]
            }
        )
        return await LayoutStabilityCollector(page, timeout_ms=30).collect()

    assert asyncio.run(scenario()).value == pytest.approx(0.02)


def test_layout_without_shifts_uses_nonzero_fallback() -> None:
    async def scenario():
        return await LayoutStabilityCollector(ReplayPage(), timeout_ms=30).collect()

    sample = asyncio.run(scenario())
    assert sample.value == pytest.approx(0.05)
    assert sample.value != 0
    assert sample.confidence == Confidence.FALLBACK


# ─────────────────────────────────────────────────────────────────────────────
# Interaction latency
# ─────────────────────────────────────────────────────────────────────────────


def test_percentile_98_picks_from_descending_order() -> None:
    assert percentile_98([]) is None
    assert percentile_98([50, 400, 90, 600, 30, 70, 500, 60, 80, 40]) == 600
    assert percentile_98([float(i) for i in range(1, 101)]) == 98.0


def test_interaction_measures_98th_percentile() -> None:
    async def scenario():
        page = ReplayPage(entries={ENTRY_EVENT: _events([50, 400, 90, 600, 30, 70, 500, 60, 80, 40])})
        return await InteractionLatencyCollector(page, timeout_ms=2000).collect()

    sample = asyncio.run(scenario())
    assert sample.value == pytest.approx(600)
    assert sample.unit == "ms"
    assert sample.confidence == Confidence.MEASURED


def test_interaction_estimate_has_floor() -> None:
    async def scenario():
        page = ReplayPage(entries={ENTRY_EVENT: _events([20, 20, 20, 20, 20])})
        return await InteractionLatencyCollector(page, timeout_ms=2000).collect()

    sample = asyncio.run(scenario())
    assert sample.value == pytest.approx(100)
    assert sample.confidence == Confidence.MEASURED


def test_interaction_with_few_samples_falls_back() -> None:
    async def scenario():
        low = ReplayPage(entries={ENTRY_EVENT: _events([150, 120, 90])})
        high = ReplayPage(entries={ENTRY_EVENT: _events([300])})
        a = await InteractionLatencyCollector(low, timeout_ms=30).collect()
        b = await InteractionLatencyCollector(high, timeout_ms=30).collect()
        return a, b

    low, high = asyncio.run(scenario())
    assert low.value == pytest.approx(200)
    assert low.confidence == Confidence.FALLBACK
    assert high.value == pytest.approx(300)
    assert high.confidence == Confidence.FALLBACK


def test_interaction_ignores_entries_without_interaction_id() -> None:
    async def scenario():
        noise = [{"interactionId": 0, "duration": 900.0} for _ in range(10)]
        page = ReplayPage(entries={ENTRY_EVENT: noise})
        collector = InteractionLatencyCollector(page, timeout_ms=30)
        return await collector.collect(), collector

    sample, collector = asyncio.run(scenario())
    assert collector.durations == []
    assert sample.value == pytest.approx(200)


# ─────────────────────────────────────────────────────────────────────────────
# State machine
# ─────────────────────────────────────────────────────────────────────────────


def test_collector_resolves_once_and_ignores_late_entries() -> None:
    async def scenario():
        page = ReplayPage(entries={ENTRY_PAINT: [{"startTime": 1000.0}]})
        collector = PaintTimingCollector(page, timeout_ms=50)
        first = await collector.collect()
        page.push(ENTRY_PAINT, [{"startTime": 9000.0}])
        await asyncio.sleep(0.08)
        with pytest.raises(RuntimeError):
            await collector.collect()
        return first, collector, page

    first, collector, page = asyncio.run(scenario())
    assert first.value == pytest.approx(1.0)
    assert collector.sample == first
    assert collector.max_start_ms == 1000.0
    assert page.observer_count() == 0


def test_handler_fault_releases_observations_and_timer() -> None:
    class Broken(PaintTimingCollector):
        def handle_entries(self, entries):  # noqa: ANN001
            raise ValueError("bad entry")

    async def scenario():
        page = ReplayPage(entries={ENTRY_PAINT: [{"startTime": 1.0}]})
        collector = Broken(page, timeout_ms=60_000)
        with pytest.raises(ValueError):
            await asyncio.wait_for(collector.collect(), timeout=1.0)
        return collector, page

    collector, page = asyncio.run(scenario())
    assert page.observer_count() == 0
    assert collector._timer is None  # noqa: SLF001


def test_force_fallback_resolves_pending_collector() -> None:
    async def scenario():
        page = ReplayPage(ready_state="loading")
        collector = PaintTimingCollector(page, timeout_ms=60_000)
        task = asyncio.create_task(collector.collect())
        await asyncio.sleep(0)
        assert collector.force_fallback() is True
        sample = await asyncio.wait_for(task, timeout=1.0)
        return sample, collector

    sample, collector = asyncio.run(scenario())
    assert sample.confidence == Confidence.FALLBACK
    assert collector.force_fallback() is False


def test_scope_release_cancels_observing_collector() -> None:
    async def scenario():
        page = ReplayPage(ready_state="loading")
        scope = ResourceScope("run")
        collector = InteractionLatencyCollector(page, timeout_ms=60_000, scope=scope)
        task = asyncio.create_task(collector.collect())
        await asyncio.sleep(0)
        assert scope.live_observations == 2
        scope.release_all()
        await asyncio.wait({task}, timeout=1.0)
        return task, collector, page, scope

    task, collector, page, scope = asyncio.run(scenario())
    assert task.cancelled()
    assert collector.state == CollectorState.DONE
    assert page.observer_count() == 0
    assert scope.live_observations == 0


# ─────────────────────────────────────────────────────────────────────────────
# Resources
# ─────────────────────────────────────────────────────────────────────────────


def test_summarize_resources_counts_scripts_and_bytes() -> None:
    facts = summarize_resources(
        [
            {"name": "https://x.test/_next/static/chunks/main.js?v=1", "initiatorType": "link", "transferSize": 1000},
            {"name": "https://x.test/api", "initiatorType": "script", "transferSize": 500, "duration": 1500},
            {"name": "https://x.test/hero.png", "initiatorType": "img", "transferSize": 3000},
            {"name": "https://x.test/cached.css", "initiatorType": "link", "transferSize": 0},
        ]
    )
    assert facts.total_resources == 4
    assert facts.script_resource_count == 2
    assert facts.script_bytes == 1500
    assert facts.total_bytes == 4500
    assert facts.slow_resources == 1


def test_is_script_resource_ignores_query_string() -> None:
    assert is_script_resource({"name": "https://x.test/app.mjs?x=.css"})
    assert not is_script_resource({"name": "https://x.test/style.css?x=.js"})


def test_failed_load_subscription_releases_entry_observation() -> None:
    class NoLoadSignal(ReplayPage):
        def on_load(self, callback):  # noqa: ANN001, ANN201
            raise RuntimeError("load listener unavailable")

    async def scenario():
        page = NoLoadSignal(ready_state="loading")
        scope = ResourceScope("run")
        collector = PaintTimingCollector(page, timeout_ms=60_000, scope=scope)
        with pytest.raises(RuntimeError):
            await collector.collect()
        return collector, page, scope

    collector, page, scope = asyncio.run(scenario())
    assert page.observer_count() == 0
    assert scope.live_observations == 0
    assert not scope.released
    assert collector.state == CollectorState.DONE
