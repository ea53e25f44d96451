"""
Message registry with dispatch table for the analyzer boundary.

Actions:
- startAnalysis / getResults / clearResults: UI -> coordinator
- teardown: page lifecycle owner -> coordinator
- ping: liveness
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from ..errors import AnalysisError
from .types import HandlerFunc, Message, Response

if TYPE_CHECKING:
    from ..coordinator import SessionCoordinator

logger = logging.getLogger("pageperf.dispatch")

ACTION_START = "startAnalysis"
ACTION_GET = "getResults"
ACTION_CLEAR = "clearResults"
ACTION_TEARDOWN = "teardown"
ACTION_PING = "ping"


class MessageRegistry:
    """Registry for boundary message handlers."""

    def __init__(self) -> None:
        # action -> (handler, requires_session)
        self._handlers: dict[str, tuple[HandlerFunc, bool]] = {}

    def register(self, action: str, handler: HandlerFunc, requires_session: bool = True) -> None:
        self._handlers[action] = (handler, requires_session)

    def has(self, action: str) -> bool:
        return action in self._handlers

    @property
    def actions(self) -> list[str]:
        return sorted(self._handlers)

    async def dispatch(self, coordinator: SessionCoordinator, raw: Any) -> dict[str, Any]:
        msg = Message.from_dict(raw)
        try:
            if not msg.action:
                res = Response.error("Missing action")
            elif not self.has(msg.action):
                res = Response.error(f"Unknown action: {msg.action}")
            else:
                handler, requires_session = self._handlers[msg.action]
                if requires_session and not msg.session_id:
                    res = Response.error("No session id provided")
                else:
                    res = await handler(coordinator, msg)
        except AnalysisError as e:
            logger.info("dispatch_error action=%s component=%s reason=%s", msg.action, e.component, e.reason)
            res = Response.error(e.reason, details=e.to_dict())
        except Exception as exc:  # noqa: BLE001
            logger.exception("dispatch_failed action=%s", msg.action)
            res = Response.error(str(exc) or type(exc).__name__)
        return res.to_dict(msg.request_id)


async def _handle_start(coordinator: SessionCoordinator, msg: Message) -> Response:
    assert msg.session_id is not None
    started = await coordinator.start(msg.session_id)
    return Response.raw(started.to_dict())


async def _handle_get(coordinator: SessionCoordinator, msg: Message) -> Response:
    assert msg.session_id is not None
    return Response.raw((await coordinator.status(msg.session_id)).to_dict())


async def _handle_clear(coordinator: SessionCoordinator, msg: Message) -> Response:
    assert msg.session_id is not None
    return Response.raw({"success": coordinator.clear(msg.session_id)})


async def _handle_teardown(coordinator: SessionCoordinator, msg: Message) -> Response:
    assert msg.session_id is not None
    await coordinator.teardown(msg.session_id)
    return Response.ok()


async def _handle_ping(_coordinator: SessionCoordinator, _msg: Message) -> Response:
    return Response.raw({"status": "alive", "timestamp": int(time.time() * 1000)})


def create_default_registry() -> MessageRegistry:
    registry = MessageRegistry()
    registry.register(ACTION_START, _handle_start)
    registry.register(ACTION_GET, _handle_get)
    registry.register(ACTION_CLEAR, _handle_clear)
    registry.register(ACTION_TEARDOWN, _handle_teardown)
    registry.register(ACTION_PING, _handle_ping, requires_session=False)
    return registry
