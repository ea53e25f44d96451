"""
Type definitions for boundary messages and handlers.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..coordinator import SessionCoordinator


@dataclass(slots=True)
class Message:
    """Inbound boundary message ({"action": ..., "sessionId": ...})."""

    action: str
    session_id: str | None = None
    request_id: Any | None = None
    params: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Any) -> Message:
        if not isinstance(raw, dict):
            return cls(action="")
        sid = raw.get("sessionId", raw.get("tabId"))
        return cls(
            action=str(raw.get("action") or "").strip(),
            session_id=str(sid).strip() if sid is not None and str(sid).strip() else None,
            request_id=raw.get("id"),
            params={k: v for k, v in raw.items() if k not in {"action", "sessionId", "tabId", "id"}},
        )


@dataclass(slots=True)
class Response:
    """Response payload; `id` is echoed when the request carried one."""

    payload: dict[str, Any]
    is_error: bool = False

    @classmethod
    def ok(cls, **payload: Any) -> Response:
        return cls(payload={"success": True, **payload})

    @classmethod
    def error(cls, message: str, **extra: Any) -> Response:
        return cls(payload={"success": False, "error": message, **extra}, is_error=True)

    @classmethod
    def raw(cls, payload: dict[str, Any]) -> Response:
        return cls(payload=dict(payload), is_error=payload.get("success") is False)

    def to_dict(self, request_id: Any | None = None) -> dict[str, Any]:
        if request_id is None:
            return dict(self.payload)
        return {"id": request_id, **self.payload}


HandlerFunc = Callable[["SessionCoordinator", Message], Awaitable[Response]]
