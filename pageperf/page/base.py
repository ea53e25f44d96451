"""
Page source interface: the live performance-entry stream plus page facts.

A page source is what the collectors observe. Implementations:
- ReplayPage (replay.py): recorded entries, driven in-process
- CdpPage (cdp.py): a live Chromium tab over the DevTools protocol
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import suppress
from typing import Any, Protocol

from ..models import NavigationTiming

logger = logging.getLogger("pageperf.page")

ENTRY_PAINT = "largest-contentful-paint"
ENTRY_LAYOUT_SHIFT = "layout-shift"
ENTRY_EVENT = "event"

EntryCallback = Callable[[list[dict[str, Any]]], None]
LoadCallback = Callable[[], None]


class Observation:
    """Handle for one subscription; disconnect() is idempotent."""

    def __init__(self, on_disconnect: Callable[[], None] | None = None) -> None:
        self._on_disconnect = on_disconnect
        self.connected = True

    def disconnect(self) -> None:
        if not self.connected:
            return
        self.connected = False
        cb = self._on_disconnect
        self._on_disconnect = None
        if cb is not None:
            cb()


class PageSource(Protocol):
    """What a collector needs from a page."""

    @property
    def url(self) -> str: ...

    @property
    def ready_state(self) -> str: ...

    def observe(self, entry_type: str, callback: EntryCallback) -> Observation: ...

    def on_load(self, callback: LoadCallback) -> Observation: ...

    async def ping(self) -> bool: ...

    async def current_url(self) -> str: ...

    async def navigation_timing(self) -> NavigationTiming | None: ...

    async def resource_entries(self) -> list[dict[str, Any]]: ...

    async def detect_features(self) -> dict[str, Any]: ...

    async def close(self) -> None: ...


class ResourceScope:
    """Run-scoped registry of observations and timers.

    Everything registered here is released exactly once: either by its owner
    (collector DONE) or by release_all() on teardown / supersession.
    """

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._observations: list[Observation] = []
        self._timers: list[asyncio.TimerHandle] = []
        self._cancel_hooks: list[Callable[[], None]] = []
        self.released = False

    def add_observation(self, obs: Observation) -> Observation:
        if self.released:
            obs.disconnect()
            return obs
        self._observations.append(obs)
        return obs

    def add_timer(self, handle: asyncio.TimerHandle) -> asyncio.TimerHandle:
        if self.released:
            handle.cancel()
            return handle
        self._timers.append(handle)
        return handle

    def add_cancel_hook(self, hook: Callable[[], None]) -> None:
        if self.released:
            hook()
            return
        self._cancel_hooks.append(hook)

    @property
    def live_observations(self) -> int:
        return sum(1 for o in self._observations if o.connected)

    def release_all(self) -> None:
        if self.released:
            return
        self.released = True
        for obs in self._observations:
            with suppress(Exception):
                obs.disconnect()
        for timer in self._timers:
            timer.cancel()
        hooks = list(self._cancel_hooks)
        self._observations.clear()
        self._timers.clear()
        self._cancel_hooks.clear()
        for hook in hooks:
            try:
                hook()
            except Exception:  # noqa: BLE001
                logger.exception("scope_cancel_hook_failed scope=%s", self.name)
