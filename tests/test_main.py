from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from pageperf.config import AnalyzerConfig
from pageperf.main import AnalyzerServer


def _trace(tmp_path: Path) -> Path:
    path = tmp_path / "trace.json"
    path.write_text(
        json.dumps(
            {
                "url": "https://shop.test/",
                "readyState": "complete",
                "entries": {
                    "largest-contentful-paint": [{"startTime": 1500.0}],
                    "layout-shift": [{"startTime": 10.0, "value": 0.01}],
                    "event": [{"interactionId": i, "duration": 64.0} for i in range(1, 7)],
                },
                "navigation": {"ttfb": 120.0, "domLoad": 900.0},
                "resources": [{"name": "https://shop.test/_next/app.js", "transferSize": 40000}],
                "features": {"isTargetFramework": True, "router": "Pages"},
            }
        ),
        encoding="utf-8",
    )
    return path


def test_handle_line_ping_and_invalid_json(tmp_path: Path) -> None:
    cfg = AnalyzerConfig(replay_path=str(_trace(tmp_path)))

    async def scenario():
        server = AnalyzerServer(cfg)
        return (
            await server.handle_line(b'{"action": "ping", "id": 9}\n'),
            await server.handle_line("{not json"),
            await server.handle_line("   "),
        )

    pong, invalid, blank = asyncio.run(scenario())
    assert pong["id"] == 9 and pong["status"] == "alive"
    assert invalid["success"] is False
    assert invalid["error"].startswith("Invalid JSON")
    assert blank is None


def test_replay_trace_analysis_emits_events(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    cfg = AnalyzerConfig(
        replay_path=str(_trace(tmp_path)),
        layout_timeout_ms=30,
        paint_timeout_ms=500,
        interaction_timeout_ms=500,
    )

    async def scenario():
        server = AnalyzerServer(cfg)
        started = await server.handle_line('{"action": "startAnalysis", "sessionId": "replay", "id": 1}')
        await server.coordinator.wait("replay", timeout=5.0)
        results = await server.handle_line('{"action": "getResults", "sessionId": "replay"}')
        await server.coordinator.close()
        return started, results

    started, results = asyncio.run(scenario())
    assert started == {"id": 1, "success": True}
    assert results["status"] == "completed"
    assert results["result"]["metrics"]["paintTiming"] == 1.5
    assert results["result"]["metrics"]["interactionLatency"] == 100.0

    lines = [json.loads(line) for line in capsys.readouterr().out.splitlines() if line.strip()]
    events = [line["event"] for line in lines]
    assert events[0] == "progressUpdate"
    assert events[-1] == "analysisCompleted"
