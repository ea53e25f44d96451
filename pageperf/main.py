"""
Stdio entry point for the page performance analyzer.

One JSON object per line on stdin ({"action": ..., "sessionId": ..., "id": ...});
one response line per request on stdout (echoing "id"), plus unsolicited
{"event": ...} lines for progress / completion / error notifications.

Pages come from a recorded trace when PAGEPERF_REPLAY is set, otherwise from
Chromium's DevTools endpoint (PAGEPERF_CDP_URL; session id = target id).
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

from .config import AnalyzerConfig
from .coordinator import PageResolver, SessionCoordinator
from .page.base import PageSource
from .page.cdp import CdpPageRegistry
from .page.replay import ReplayPage
from .server.dispatch import MessageRegistry, create_default_registry
from .server.notifier import Notifier

logger = logging.getLogger("pageperf")

__all__ = ["AnalyzerServer", "main"]


def _write_message(payload: dict[str, Any]) -> None:
    """Write one JSON line to stdout."""
    line = (json.dumps(payload, ensure_ascii=False) + "\n").encode()
    sys.stdout.buffer.write(line)
    sys.stdout.buffer.flush()


def _read_line() -> bytes:
    return sys.stdin.buffer.readline()


def build_page_resolver(config: AnalyzerConfig) -> PageResolver:
    if config.replay_path:
        path = config.replay_path

        async def _replay(_session_id: str) -> PageSource | None:
            return await asyncio.to_thread(ReplayPage.from_file, path)

        return _replay

    registry = CdpPageRegistry(config.cdp_url, poll_interval=config.poll_interval)
    return registry.resolve


class AnalyzerServer:
    """Line-delimited JSON server with registry-based dispatch."""

    def __init__(self, config: AnalyzerConfig | None = None, registry: MessageRegistry | None = None) -> None:
        self.config = config or AnalyzerConfig.from_env()
        self.registry = registry or create_default_registry()
        self.notifier = Notifier()
        self.notifier.subscribe(_write_message)
        self.coordinator = SessionCoordinator(
            build_page_resolver(self.config), config=self.config, notifier=self.notifier
        )

    async def handle_line(self, line: bytes | str) -> dict[str, Any] | None:
        text = line.decode() if isinstance(line, bytes) else line
        text = text.strip()
        if not text:
            return None
        try:
            raw = json.loads(text)
        except ValueError as exc:
            logger.warning("invalid_message: %s", exc)
            return {"success": False, "error": f"Invalid JSON: {exc}"}
        return await self.registry.dispatch(self.coordinator, raw)

    async def serve(self) -> None:
        loop = asyncio.get_running_loop()
        logger.info("pageperf_server_start replay=%s cdp=%s", self.config.replay_path, self.config.cdp_url)
        try:
            while True:
                line = await loop.run_in_executor(None, _read_line)
                if not line:
                    break
                response = await self.handle_line(line)
                if response is not None:
                    _write_message(response)
        finally:
            await self.coordinator.close()
            await self.notifier.drain()
            logger.info("pageperf_server_stop")


def main() -> None:
    config = AnalyzerConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stderr,
    )
    try:
        asyncio.run(AnalyzerServer(config).serve())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
