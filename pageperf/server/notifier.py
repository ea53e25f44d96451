"""Fire-and-forget publication of progress / completion / error events.

Delivery is best-effort: a listener that raises (closed channel, popup gone) is
logged and skipped; it never affects the run or the other listeners.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

from ..errors import TransportFailure

logger = logging.getLogger("pageperf.notifier")

EVENT_PROGRESS = "progressUpdate"
EVENT_COMPLETED = "analysisCompleted"
EVENT_ERROR = "analysisError"

Listener = Callable[[dict[str, Any]], Any]


class Notifier:
    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._inflight: set[asyncio.Task[Any]] = set()
        self.dropped = 0

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def publish(self, event: str, payload: dict[str, Any]) -> int:
        """Deliver to every listener; returns how many accepted the event."""
        message = {"event": event, **payload}
        if not self._listeners:
            self.dropped += 1
            logger.debug("notify_dropped event=%s (no listener)", event)
            return 0
        delivered = 0
        for listener in list(self._listeners):
            try:
                res = listener(dict(message))
            except Exception as exc:  # noqa: BLE001
                self._log_failure(event, exc)
                continue
            if inspect.isawaitable(res):
                task = asyncio.ensure_future(res)
                self._inflight.add(task)
                task.add_done_callback(lambda t, ev=event: self._on_done(ev, t))
            delivered += 1
        return delivered

    def progress(self, session_id: str, progress: int, message: str) -> int:
        return self.publish(EVENT_PROGRESS, {"sessionId": session_id, "progress": progress, "message": message})

    def completed(self, session_id: str, result: dict[str, Any]) -> int:
        return self.publish(EVENT_COMPLETED, {"sessionId": session_id, "result": result})

    def error(self, session_id: str, error: str) -> int:
        return self.publish(EVENT_ERROR, {"sessionId": session_id, "error": error})

    async def drain(self) -> None:
        """Wait for in-flight async deliveries (shutdown / tests)."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def _on_done(self, event: str, task: asyncio.Task[Any]) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._log_failure(event, exc)

    def _log_failure(self, event: str, exc: BaseException) -> None:
        self.dropped += 1
        if isinstance(exc, TransportFailure):
            logger.info("notify_transport_failure event=%s reason=%s", event, exc.reason)
        else:
            logger.warning("notify_listener_failed event=%s error=%s", event, exc)
