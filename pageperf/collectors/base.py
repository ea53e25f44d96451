"""
Metric collector state machine shared by the three collectors.

    INIT -> OBSERVING -> {RESOLVED | FALLBACK} -> DONE

Guarantees:
- single resolution: the first of (entry batch, load signal, timer, forced fallback)
  wins; everything after is ignored
- DONE always disconnects every observation and cancels the timer, on every exit
  path (resolution, fallback, entry-handling fault, cancellation)
- a fault while handling entries ends the collector with that exception; the
  aggregator substitutes the fallback sample
"""

from __future__ import annotations

import asyncio
import logging
import math
from enum import Enum
from typing import Any

from ..errors import ObservationUnsupported
from ..models import Confidence, MetricKind, MetricSample
from ..page.base import Observation, PageSource, ResourceScope

logger = logging.getLogger("pageperf.collectors")


class CollectorState(str, Enum):
    INIT = "init"
    OBSERVING = "observing"
    RESOLVED = "resolved"
    FALLBACK = "fallback"
    DONE = "done"


_FALLBACK = object()


def safe_number(x: Any) -> float | None:
    """Finite float or None (bools and strings are not numbers here)."""
    if x is None or isinstance(x, bool) or not isinstance(x, (int, float)):
        return None
    v = float(x)
    if not math.isfinite(v):
        return None
    return v


class MetricCollector:
    """Bounded observation task resolving to exactly one MetricSample."""

    kind: MetricKind
    unit: str
    entry_type: str
    watches_load: bool = False

    def __init__(self, page: PageSource, *, timeout_ms: int, scope: ResourceScope | None = None) -> None:
        self.page = page
        self.timeout_ms = max(0, int(timeout_ms))
        self.scope = scope if scope is not None else ResourceScope(self.kind.value)
        self.state = CollectorState.INIT
        self.entries_seen = 0
        self._future: asyncio.Future[Any] | None = None
        self._observations: list[Observation] = []
        self._timer: asyncio.TimerHandle | None = None
        self._sample: MetricSample | None = None

    # ─────────────────────────────────────────────────────────────────────────
    # Metric-specific hooks
    # ─────────────────────────────────────────────────────────────────────────

    def handle_entries(self, entries: list[dict[str, Any]]) -> float | None:
        """Fold a batch of entries; return a value to resolve now."""
        raise NotImplementedError

    def handle_load(self) -> float | None:
        return None

    def on_timeout(self) -> float | None:
        """Value to resolve with when the timer fires (None -> FALLBACK)."""
        return None

    async def fallback_value(self) -> float:
        raise NotImplementedError

    # ─────────────────────────────────────────────────────────────────────────
    # State machine
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def done(self) -> bool:
        return self.state == CollectorState.DONE

    @property
    def sample(self) -> MetricSample | None:
        return self._sample

    async def collect(self) -> MetricSample:
        if self.state != CollectorState.INIT:
            raise RuntimeError(f"{type(self).__name__} already started (state={self.state.value})")

        loop = asyncio.get_running_loop()
        self._future = loop.create_future()
        self.scope.add_cancel_hook(self.cancel)

        try:
            self._subscribe(loop)
        except ObservationUnsupported as exc:
            logger.info("observation_unsupported kind=%s entry=%s", self.kind.value, exc.entry_type)
            self._release()
            self.state = CollectorState.FALLBACK
            return await self._finish_fallback()
        except Exception:
            # A partial subscription (observe ok, on_load failed) must not outlive the collector.
            self._release()
            self.state = CollectorState.DONE
            raise

        try:
            outcome = await self._future
        finally:
            self._release()

        if outcome is _FALLBACK:
            return await self._finish_fallback()

        sample = MetricSample(self.kind, float(outcome), self.unit, Confidence.MEASURED)
        self._sample = sample
        self.state = CollectorState.DONE
        return sample

    def force_fallback(self) -> bool:
        """Resolve via fallback now (aggregator ceiling). Returns False if already resolved."""
        if self._future is None or self._future.done():
            return False
        logger.info("collector_forced_fallback kind=%s seen=%s", self.kind.value, self.entries_seen)
        self.state = CollectorState.FALLBACK
        self._future.set_result(_FALLBACK)
        return True

    def cancel(self) -> None:
        """Teardown path: release everything and abandon the pending resolution."""
        self._release()
        if self._future is not None and not self._future.done():
            self._future.cancel()
        if self.state != CollectorState.DONE:
            self.state = CollectorState.DONE

    def _subscribe(self, loop: asyncio.AbstractEventLoop) -> None:
        obs = self.page.observe(self.entry_type, self._on_entries)
        self._observations.append(self.scope.add_observation(obs))
        if self.watches_load:
            load_obs = self.page.on_load(self._on_load)
            self._observations.append(self.scope.add_observation(load_obs))
        self._timer = self.scope.add_timer(loop.call_later(self.timeout_ms / 1000.0, self._on_timer))
        self.state = CollectorState.OBSERVING

    def _release(self) -> None:
        for obs in self._observations:
            obs.disconnect()
        self._observations.clear()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _pending(self) -> bool:
        return self._future is not None and not self._future.done()

    def _resolve(self, value: float) -> None:
        if not self._pending():
            return
        self.state = CollectorState.RESOLVED
        assert self._future is not None
        self._future.set_result(value)

    def _fail(self, exc: BaseException) -> None:
        if not self._pending():
            return
        assert self._future is not None
        self._future.set_exception(exc)

    def _on_entries(self, entries: list[dict[str, Any]]) -> None:
        if not self._pending():
            return
        try:
            self.entries_seen += len(entries)
            value = self.handle_entries(entries)
        except Exception as exc:  # noqa: BLE001
            self._fail(exc)
            return
        if value is not None:
            self._resolve(value)

    def _on_load(self) -> None:
        if not self._pending():
            return
        try:
            value = self.handle_load()
        except Exception as exc:  # noqa: BLE001
            self._fail(exc)
            return
        if value is not None:
            self._resolve(value)

    def _on_timer(self) -> None:
        self._timer = None
        if not self._pending():
            return
        try:
            value = self.on_timeout()
        except Exception as exc:  # noqa: BLE001
            self._fail(exc)
            return
        if value is not None:
            self._resolve(value)
            return
        logger.debug("collector_timeout kind=%s seen=%s", self.kind.value, self.entries_seen)
        self.state = CollectorState.FALLBACK
        assert self._future is not None
        self._future.set_result(_FALLBACK)

    async def _finish_fallback(self) -> MetricSample:
        value = await self.fallback_value()
        sample = MetricSample(self.kind, float(value), self.unit, Confidence.FALLBACK)
        self._sample = sample
        self.state = CollectorState.DONE
        return sample

    async def fallback_sample(self) -> MetricSample:
        """Fallback sample without observing (used when the collector itself failed)."""
        return MetricSample(self.kind, float(await self.fallback_value()), self.unit, Confidence.FALLBACK)
