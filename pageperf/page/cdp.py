"""
Live page source over the Chrome DevTools Protocol.

The page side is a small injected script that registers PerformanceObservers
(buffered) and queues their entries; the server side polls and drains the queues
with Runtime.evaluate and fans batches out to subscribers.

Design goals:
- No extension required: any Chromium started with --remote-debugging-port.
- Bounded: every CDP round trip has a timeout; a dead connection stops polling
  and lets the collectors fall back on their timers.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from typing import Any
from urllib.error import URLError
from urllib.request import urlopen

import websockets

from ..errors import CdpError, ObservationUnsupported
from ..models import NavigationTiming
from .base import ENTRY_EVENT, ENTRY_LAYOUT_SHIFT, ENTRY_PAINT, EntryCallback, LoadCallback, Observation

logger = logging.getLogger("pageperf.cdp")

OBSERVED_ENTRY_TYPES = (ENTRY_PAINT, ENTRY_LAYOUT_SHIFT, ENTRY_EVENT)
MAX_POLL_FAILURES = 5

OBSERVER_SCRIPT = (
    "(() => {"
    "  const g = globalThis;"
    "  if (g.__pageperf && g.__pageperf.installed) return { supported: g.__pageperf.supported };"
    "  const state = { installed: true, queues: {}, supported: [] };"
    "  g.__pageperf = state;"
    "  const known = (typeof PerformanceObserver !== 'undefined' && PerformanceObserver.supportedEntryTypes)"
    "    ? PerformanceObserver.supportedEntryTypes : [];"
    f"  for (const type of {json.dumps(list(OBSERVED_ENTRY_TYPES))}) {{"
    "    if (!known.includes(type)) continue;"
    "    try {"
    "      state.queues[type] = [];"
    "      const po = new PerformanceObserver((list) => {"
    "        for (const e of list.getEntries()) {"
    "          const q = state.queues[type];"
    "          q.push(e.toJSON ? e.toJSON() : { startTime: e.startTime, duration: e.duration });"
    "          if (q.length > 2000) q.splice(0, q.length - 2000);"
    "        }"
    "      });"
    "      const opts = { type, buffered: true };"
    "      if (type === 'event') opts.durationThreshold = 16;"
    "      po.observe(opts);"
    "      state.supported.push(type);"
    "    } catch (e) {}"
    "  }"
    "  return { supported: state.supported };"
    "})()"
)

DRAIN_SCRIPT = (
    "(() => {"
    "  const s = globalThis.__pageperf;"
    "  const out = { readyState: document.readyState, url: String(location.href), entries: {}, installed: !!s };"
    "  if (!s) return out;"
    "  for (const k of Object.keys(s.queues)) { out.entries[k] = s.queues[k]; s.queues[k] = []; }"
    "  return out;"
    "})()"
)

PING_SCRIPT = "({ readyState: document.readyState, url: String(location.href) })"

URL_SCRIPT = "String(location.href)"

NAVIGATION_SCRIPT = (
    "(() => {"
    "  const e = performance.getEntriesByType ? performance.getEntriesByType('navigation') : [];"
    "  return e && e.length ? e[0].toJSON() : null;"
    "})()"
)

RESOURCES_SCRIPT = (
    "(() => (performance.getEntriesByType ? performance.getEntriesByType('resource') : []).map((r) => ({"
    "  name: r.name, initiatorType: r.initiatorType, transferSize: r.transferSize || 0, duration: r.duration"
    "})))()"
)

# Signature probe; the heuristics are deliberately shallow.
FEATURES_SCRIPT = (
    "(() => {"
    "  const q = (s) => document.querySelector(s);"
    "  const all = (s) => document.querySelectorAll(s).length;"
    "  const signatures = ["
    "    !!q('script[src*=\"_next/static/chunks/\"]'), !!q('script#__NEXT_DATA__'),"
    "    !!q('link[rel=\"stylesheet\"][href*=\"_next/static/css/\"]'), !!q('link[rel=\"preload\"][href*=\"_next/\"]'),"
    "    !!q('meta[name=\"next-head-count\"]'), !!document.getElementById('__next'),"
    "    typeof window.__NEXT_DATA__ !== 'undefined'"
    "  ];"
    "  const inline = q('script:not([src])');"
    "  const app = !!q('script[src*=\"_next/static/chunks/app\"]') ||"
    "    !!(inline && inline.textContent.includes('next/navigation'));"
    "  let buildId = null;"
    "  try { const d = q('#__NEXT_DATA__'); if (d) buildId = JSON.parse(d.textContent).buildId || null; } catch (e) {}"
    "  const lang = document.documentElement.lang || null;"
    "  return {"
    "    isTargetFramework: signatures.some(Boolean),"
    "    router: app ? 'App' : 'Pages',"
    "    buildId,"
    "    imageOptimization: !!q('img[data-nimg]'),"
    "    fontOptimization: !!q('link[data-next-font]'),"
    "    i18n: !!q('link[rel=\"alternate\"][hreflang]') || !!lang,"
    "    imageCount: all('img'),"
    "    optimizedImageCount: all('img[data-nimg]'),"
    "    elements: {"
    "      metaTags: all('meta'), openGraphTags: all('meta[property^=\"og:\"]'),"
    "      structuredData: all('script[type=\"application/ld+json\"]'),"
    "      images: all('img'), scripts: all('script'), links: all('link'),"
    "      ...(lang ? { language: lang } : {})"
    "    }"
    "  };"
    "})()"
)


def _http_get_json(url: str, timeout: float = 2.0) -> Any:
    """Fetch JSON from URL."""
    try:
        with urlopen(url, timeout=timeout) as resp:
            return json.loads(resp.read().decode())
    except (URLError, TimeoutError, ValueError) as e:
        raise CdpError("discover", str(e)) from e


class CdpConnection:
    """Async CDP WebSocket connection to one page target."""

    def __init__(self, ws_url: str, *, timeout: float = 5.0) -> None:
        self.ws_url = ws_url
        self.timeout = timeout
        self._ws: Any | None = None
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future[dict[str, Any]]] = {}
        self._reader: asyncio.Task[None] | None = None

    @property
    def is_open(self) -> bool:
        return self._ws is not None and self._reader is not None and not self._reader.done()

    async def open(self) -> None:
        if self.is_open:
            return
        try:
            self._ws = await asyncio.wait_for(
                websockets.connect(self.ws_url, max_size=None, ping_interval=None), timeout=self.timeout
            )
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as exc:
            raise CdpError("connect", f"{self.ws_url}: {exc}") from exc
        self._reader = asyncio.create_task(self._read_loop(), name="pageperf-cdp-reader")

    async def close(self) -> None:
        ws = self._ws
        self._ws = None
        if ws is not None:
            try:
                await ws.close()
            except websockets.exceptions.WebSocketException as exc:
                logger.debug("cdp_close_error: %s", exc)
        if self._reader is not None:
            self._reader.cancel()
            await asyncio.wait({self._reader})
            self._reader = None
        self._fail_pending("connection closed")

    async def send(self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None) -> dict[str, Any]:
        if not self.is_open:
            raise CdpError(method, "connection is not open")
        assert self._ws is not None
        req_id = next(self._ids)
        fut: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[req_id] = fut
        msg: dict[str, Any] = {"id": req_id, "method": method}
        if params:
            msg["params"] = params
        try:
            await self._ws.send(json.dumps(msg))
            reply = await asyncio.wait_for(fut, timeout=timeout if timeout is not None else self.timeout)
        except asyncio.TimeoutError as exc:
            raise CdpError(method, "timed out") from exc
        except websockets.exceptions.WebSocketException as exc:
            raise CdpError(method, str(exc)) from exc
        finally:
            self._pending.pop(req_id, None)
        if isinstance(reply.get("error"), dict):
            raise CdpError(method, str(reply["error"].get("message") or reply["error"]))
        result = reply.get("result")
        return result if isinstance(result, dict) else {}

    async def evaluate(self, expression: str, *, timeout: float | None = None) -> Any:
        res = await self.send(
            "Runtime.evaluate",
            {"expression": expression, "returnByValue": True, "awaitPromise": True},
            timeout=timeout,
        )
        details = res.get("exceptionDetails")
        if isinstance(details, dict):
            raise CdpError("Runtime.evaluate", str(details.get("text") or "exception"))
        value = res.get("result")
        return value.get("value") if isinstance(value, dict) else None

    async def _read_loop(self) -> None:
        assert self._ws is not None
        try:
            async for raw in self._ws:
                try:
                    data = json.loads(raw)
                except ValueError:
                    continue
                if not isinstance(data, dict) or "id" not in data:
                    # Events are not consumed here; the page side queues entries.
                    continue
                fut = self._pending.get(data.get("id"))
                if fut is not None and not fut.done():
                    fut.set_result(data)
        except websockets.exceptions.ConnectionClosed as exc:
            logger.info("cdp_connection_closed: %s", exc)
        finally:
            self._fail_pending("connection closed")

    def _fail_pending(self, reason: str) -> None:
        for req_id, fut in list(self._pending.items()):
            if not fut.done():
                fut.set_exception(CdpError(f"request:{req_id}", reason))
        self._pending.clear()


class CdpPage:
    """PageSource backed by a live tab."""

    def __init__(self, ws_url: str, *, url: str = "", poll_interval: float = 0.25, timeout: float = 5.0) -> None:
        self.conn = CdpConnection(ws_url, timeout=timeout)
        self.poll_interval = poll_interval
        self._url = url
        self._ready_state = "loading"
        self._supported: set[str] = set()
        self._installed = False
        self._history: dict[str, list[dict[str, Any]]] = {}
        self._observers: dict[str, list[tuple[Observation, EntryCallback]]] = {}
        self._load_listeners: list[tuple[Observation, LoadCallback]] = []
        self._poller: asyncio.Task[None] | None = None

    async def open(self) -> None:
        await self.conn.open()
        await self._install()

    async def _install(self) -> None:
        res = await self.conn.evaluate(OBSERVER_SCRIPT)
        supported = res.get("supported") if isinstance(res, dict) else None
        self._supported = {s for s in supported or [] if isinstance(s, str)}
        self._installed = True
        await self._poll_once()
        logger.info("cdp_observers_installed url=%s supported=%s", self._url, sorted(self._supported))

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
        if not self._installed or entry_type not in self._supported:
            raise ObservationUnsupported(entry_type)
        subs = self._observers.setdefault(entry_type, [])
        pair: tuple[Observation, EntryCallback]

        def _remove() -> None:
            if pair in subs:
                subs.remove(pair)

        obs = Observation(_remove)
        pair = (obs, callback)
        subs.append(pair)
        history = list(self._history.get(entry_type, []))
        loop = asyncio.get_running_loop()
        if history:
            loop.call_soon(self._deliver, obs, callback, history)
        self._ensure_polling(loop)
        return obs

    def on_load(self, callback: LoadCallback) -> Observation:
        pair: tuple[Observation, LoadCallback]

        def _remove() -> None:
            if pair in self._load_listeners:
                self._load_listeners.remove(pair)

        obs = Observation(_remove)
        pair = (obs, callback)
        self._load_listeners.append(pair)
        self._ensure_polling(asyncio.get_running_loop())
        return obs

    async def ping(self) -> bool:
        try:
            if not self.conn.is_open:
                await self.open()
            elif not self._installed:
                await self._install()
            state = await self.conn.evaluate(PING_SCRIPT, timeout=2.0)
        except CdpError as exc:
            logger.info("cdp_ping_failed: %s", exc.reason)
            return False
        if isinstance(state, dict):
            if isinstance(state.get("readyState"), str):
                self._ready_state = state["readyState"]
            if isinstance(state.get("url"), str) and state["url"]:
                self._url = state["url"]
        return True

    async def current_url(self) -> str:
        """Re-read location.href; the poller only runs while someone is subscribed."""
        if not self.conn.is_open:
            return self._url
        try:
            url = await self.conn.evaluate(URL_SCRIPT, timeout=2.0)
        except CdpError as exc:
            logger.info("cdp_url_refresh_failed: %s", exc.reason)
            return self._url
        if isinstance(url, str) and url:
            self._url = url
        return self._url

    async def navigation_timing(self) -> NavigationTiming | None:
        return NavigationTiming.from_entry(await self.conn.evaluate(NAVIGATION_SCRIPT))

    async def resource_entries(self) -> list[dict[str, Any]]:
        res = await self.conn.evaluate(RESOURCES_SCRIPT)
        return [r for r in res if isinstance(r, dict)] if isinstance(res, list) else []

    async def detect_features(self) -> dict[str, Any]:
        res = await self.conn.evaluate(FEATURES_SCRIPT)
        return res if isinstance(res, dict) else {}

    async def close(self) -> None:
        for subs in self._observers.values():
            for obs, _cb in list(subs):
                obs.disconnect()
        for obs, _cb in list(self._load_listeners):
            obs.disconnect()
        if self._poller is not None:
            self._poller.cancel()
            await asyncio.wait({self._poller})
            self._poller = None
        await self.conn.close()

    # ─────────────────────────────────────────────────────────────────────────
    # Polling
    # ─────────────────────────────────────────────────────────────────────────

    def _has_subscribers(self) -> bool:
        return bool(self._load_listeners) or any(self._observers.values())

    def _ensure_polling(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._poller is None or self._poller.done():
            self._poller = loop.create_task(self._poll_loop(), name="pageperf-cdp-poll")

    async def _poll_loop(self) -> None:
        failures = 0
        while self._has_subscribers():
            await asyncio.sleep(self.poll_interval)
            try:
                await self._poll_once()
                failures = 0
            except CdpError as exc:
                failures += 1
                logger.warning("cdp_poll_failed attempt=%s reason=%s", failures, exc.reason)
                if failures >= MAX_POLL_FAILURES:
                    logger.warning("cdp_poll_stopped url=%s", self._url)
                    return

    async def _poll_once(self) -> None:
        data = await self.conn.evaluate(DRAIN_SCRIPT, timeout=2.0)
        if not isinstance(data, dict):
            return
        if isinstance(data.get("url"), str) and data["url"]:
            self._url = data["url"]
        if data.get("installed") is False and self._installed:
            # Navigated away: the injected state is gone, reinstall for the new document.
            self._history.clear()
            res = await self.conn.evaluate(OBSERVER_SCRIPT)
            if isinstance(res, dict) and isinstance(res.get("supported"), list):
                self._supported = {s for s in res["supported"] if isinstance(s, str)}
            logger.info("cdp_observers_reinstalled url=%s", self._url)
        entries = data.get("entries") if isinstance(data.get("entries"), dict) else {}
        for entry_type, batch in entries.items():
            if not isinstance(batch, list) or not batch:
                continue
            items = [e for e in batch if isinstance(e, dict)]
            self._history.setdefault(entry_type, []).extend(items)
            for obs, cb in list(self._observers.get(entry_type, [])):
                self._deliver(obs, cb, list(items))
        state = data.get("readyState")
        if isinstance(state, str):
            previous = self._ready_state
            self._ready_state = state
            if state == "complete" and previous != "complete":
                for obs, cb in list(self._load_listeners):
                    if obs.connected:
                        obs.disconnect()
                        cb()

    @staticmethod
    def _deliver(obs: Observation, callback: EntryCallback, entries: list[dict[str, Any]]) -> None:
        if obs.connected:
            callback(entries)


class CdpPageRegistry:
    """Resolves session ids (DevTools target ids) to open CdpPage sources."""

    def __init__(self, endpoint: str, *, poll_interval: float = 0.25, timeout: float = 5.0) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.poll_interval = poll_interval
        self.timeout = timeout

    async def list_targets(self) -> list[dict[str, Any]]:
        data = await asyncio.to_thread(_http_get_json, f"{self.endpoint}/json/list", 2.0)
        if not isinstance(data, list):
            return []
        return [t for t in data if isinstance(t, dict) and t.get("type") == "page"]

    async def resolve(self, session_id: str) -> CdpPage | None:
        for target in await self.list_targets():
            if str(target.get("id")) != session_id:
                continue
            ws_url = target.get("webSocketDebuggerUrl")
            if not isinstance(ws_url, str) or not ws_url:
                raise CdpError("resolve", f"target {session_id} has no debugger url (already attached?)")
            page = CdpPage(
                ws_url, url=str(target.get("url") or ""), poll_interval=self.poll_interval, timeout=self.timeout
            )
            await page.open()
            return page
        return None
