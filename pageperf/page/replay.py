"""In-process page driven from recorded performance entries.

Used for offline analysis of a captured trace (PAGEPERF_REPLAY) and as a
deterministic page in tests. Mirrors PerformanceObserver semantics:
- entries recorded before a subscription are delivered as one buffered batch
- delivery is always asynchronous (next loop iteration), never re-entrant
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

from ..errors import ObservationUnsupported
from ..models import NavigationTiming
from .base import ENTRY_EVENT, ENTRY_LAYOUT_SHIFT, ENTRY_PAINT, EntryCallback, LoadCallback, Observation

SUPPORTED_ENTRY_TYPES = (ENTRY_PAINT, ENTRY_LAYOUT_SHIFT, ENTRY_EVENT)


class ReplayPage:
    def __init__(
        self,
        *,
        url: str = "about:blank",
        ready_state: str = "complete",
        entries: dict[str, list[dict[str, Any]]] | None = None,
        navigation: dict[str, Any] | None = None,
        resources: list[dict[str, Any]] | None = None,
        features: dict[str, Any] | None = None,
        unsupported: set[str] | frozenset[str] = frozenset(),
        responsive: bool = True,
    ) -> None:
        self._url = url
        self._ready_state = ready_state
        self._entries: dict[str, list[dict[str, Any]]] = {k: list(v) for k, v in (entries or {}).items()}
        self._navigation = navigation
        self._resources = list(resources or [])
        self._features = dict(features or {})
        self._unsupported = set(unsupported)
        self.responsive = responsive
        self.ping_count = 0
        self.closed = False
        self._observers: dict[str, list[tuple[Observation, EntryCallback]]] = {}
        self._load_listeners: list[tuple[Observation, LoadCallback]] = []

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReplayPage:
        """Build from a trace dict: {url, readyState, entries, navigation, resources, features}."""
        entries_raw = data.get("entries") if isinstance(data.get("entries"), dict) else {}
        entries = {str(k): [e for e in v if isinstance(e, dict)] for k, v in entries_raw.items() if isinstance(v, list)}
        resources_raw = data.get("resources")
        return cls(
            url=str(data.get("url") or "about:blank"),
            ready_state=str(data.get("readyState") or "complete"),
            entries=entries,
            navigation=data.get("navigation") if isinstance(data.get("navigation"), dict) else None,
            resources=[r for r in resources_raw if isinstance(r, dict)] if isinstance(resources_raw, list) else [],
            features=data.get("features") if isinstance(data.get("features"), dict) else {},
            unsupported={str(x) for x in data.get("unsupported") or [] if isinstance(x, str)},
        )

    @classmethod
    def from_file(cls, path: str | Path) -> ReplayPage:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"Replay trace must be a JSON object: {path}")
        return cls.from_dict(data)

    # ─────────────────────────────────────────────────────────────────────────
    # PageSource
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def url(self) -> str:
        return self._url

    @property
    def ready_state(self) -> str:
        return self._ready_state

    def observe(self, entry_type: str, callback: EntryCallback) -> Observation:
        if entry_type in self._unsupported or entry_type not in SUPPORTED_ENTRY_TYPES:
            raise ObservationUnsupported(entry_type)

        subs = self._observers.setdefault(entry_type, [])
        pair: tuple[Observation, EntryCallback]

        def _remove() -> None:
            if pair in subs:
                subs.remove(pair)

        obs = Observation(_remove)
        pair = (obs, callback)
        subs.append(pair)

        buffered = list(self._entries.get(entry_type, []))
        if buffered:
            asyncio.get_running_loop().call_soon(self._deliver, obs, callback, buffered)
        return obs

    def on_load(self, callback: LoadCallback) -> Observation:
        pair: tuple[Observation, LoadCallback]

        def _remove() -> None:
            if pair in self._load_listeners:
                self._load_listeners.remove(pair)

        obs = Observation(_remove)
        pair = (obs, callback)
        self._load_listeners.append(pair)
        return obs

    async def ping(self) -> bool:
        self.ping_count += 1
        return self.responsive

    async def current_url(self) -> str:
        return self._url

    async def navigation_timing(self) -> NavigationTiming | None:
        return NavigationTiming.from_entry(self._navigation)

    async def resource_entries(self) -> list[dict[str, Any]]:
        return list(self._resources)

    async def detect_features(self) -> dict[str, Any]:
        return dict(self._features)

    async def close(self) -> None:
        self.closed = True
        for subs in self._observers.values():
            for obs, _cb in list(subs):
                obs.disconnect()
        for obs, _cb in list(self._load_listeners):
            obs.disconnect()

    # ─────────────────────────────────────────────────────────────────────────
    # Driving the page
    # ─────────────────────────────────────────────────────────────────────────

    def observer_count(self, entry_type: str | None = None) -> int:
        if entry_type is not None:
            return len(self._observers.get(entry_type, []))
        return sum(len(v) for v in self._observers.values()) + len(self._load_listeners)

    def push(self, entry_type: str, entries: list[dict[str, Any]]) -> None:
        """Record new entries and deliver them to current subscribers."""
        batch = [e for e in entries if isinstance(e, dict)]
        if not batch:
            return
        self._entries.setdefault(entry_type, []).extend(batch)
        loop = asyncio.get_running_loop()
        for obs, cb in list(self._observers.get(entry_type, [])):
            loop.call_soon(self._deliver, obs, cb, list(batch))

    def navigate(self, url: str) -> None:
        self._url = url

    def set_ready_state(self, state: str) -> None:
        previous = self._ready_state
        self._ready_state = state
        if state == "complete" and previous != "complete":
            loop = asyncio.get_running_loop()
            for obs, cb in list(self._load_listeners):
                loop.call_soon(self._fire_load, obs, cb)

    @staticmethod
    def _deliver(obs: Observation, callback: EntryCallback, entries: list[dict[str, Any]]) -> None:
        if obs.connected:
            callback(entries)

    @staticmethod
    def _fire_load(obs: Observation, callback: LoadCallback) -> None:
        if obs.connected:
            obs.disconnect()
            callback()
