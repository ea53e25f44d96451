"""
Error types and retry helpers for the analyzer.

Provides:
- AnalysisError: Structured error with component/action context
- ObservationUnsupported: Live entry stream unavailable in this page
- PreconditionFailure: Page readiness could not be confirmed
- TransportFailure: UI channel closed / listener gone
- CdpError: DevTools protocol / connection failure
- with_retry: Async retry decorator with exponential backoff
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from functools import wraps
from typing import Any


@dataclass
class AnalysisError(Exception):
    """Structured error with context for the UI."""

    component: str
    action: str
    reason: str
    suggestion: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        if self.suggestion:
            return f"[{self.component}] {self.action} failed: {self.reason}. Suggestion: {self.suggestion}"
        return f"[{self.component}] {self.action} failed: {self.reason}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": True,
            "component": self.component,
            "action": self.action,
            "reason": self.reason,
            "suggestion": self.suggestion,
            "details": self.details,
        }


class ObservationUnsupported(AnalysisError):
    """The requested performance entry stream cannot be observed."""

    def __init__(self, entry_type: str, reason: str = "entry type not supported") -> None:
        super().__init__(
            component="page",
            action=f"observe:{entry_type}",
            reason=reason,
            suggestion="A fallback value is used for this metric",
            details={"entryType": entry_type},
        )
        self.entry_type = entry_type


class PreconditionFailure(AnalysisError):
    """Page readiness (content side alive) could not be confirmed."""

    def __init__(self, reason: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            component="coordinator",
            action="start",
            reason=reason,
            suggestion="Refresh the page and try again",
            details=details or {},
        )


class CdpError(AnalysisError):
    """DevTools protocol or connection failure inside the live page source."""

    def __init__(self, action: str, reason: str) -> None:
        super().__init__(component="cdp", action=action, reason=reason, suggestion="Check the debugging endpoint")


class TransportFailure(AnalysisError):
    """A notification could not be delivered (no listener, channel closed)."""

    def __init__(self, reason: str) -> None:
        super().__init__(component="transport", action="publish", reason=reason)


def with_retry(
    max_attempts: int = 3,
    delay: float = 0.3,
    backoff: float = 1.5,
    retry_on: tuple[type[BaseException], ...] = (PreconditionFailure,),
) -> Callable:
    """Decorator for automatic async retry with exponential backoff."""

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            last_error: BaseException | None = None
            current_delay = delay
            attempts = max(1, int(max_attempts))
            for attempt in range(attempts):
                try:
                    return await func(*args, **kwargs)
                except retry_on as e:
                    last_error = e
                    if attempt < attempts - 1:
                        await asyncio.sleep(current_delay)
                        current_delay *= backoff
            if last_error:
                raise last_error
            raise RuntimeError("Retry exhausted without error")

        return wrapper

    return decorator
