from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_CDP_URL = "http://127.0.0.1:9222"


def expand_path(raw: str) -> str:
    return str(Path(raw).expanduser())


def _env_int(name: str, default: int, *, min_v: int, max_v: int) -> int:
    try:
        raw = os.environ.get(name)
        v = int(float(raw)) if raw is not None and raw.strip() else default
    except Exception:
        v = default
    return max(min_v, min(v, max_v))


def _env_float(name: str, default: float, *, min_v: float, max_v: float) -> float:
    try:
        raw = os.environ.get(name)
        v = float(raw) if raw is not None and raw.strip() else default
    except Exception:
        v = default
    return max(min_v, min(v, max_v))


@dataclass
class AnalyzerConfig:
    paint_timeout_ms: int = 5000
    layout_timeout_ms: int = 2000
    interaction_timeout_ms: int = 2000
    aggregator_ceiling_ms: int = 8000
    cache_ttl_ms: int = 30_000
    ready_attempts: int = 3
    ready_delay: float = 0.3
    ready_backoff: float = 1.5
    cdp_url: str = DEFAULT_CDP_URL
    poll_interval: float = 0.25
    replay_path: str | None = None
    log_level: str = "INFO"

    @staticmethod
    def normalize_log_level(raw: str | None) -> str:
        level = (raw or "").strip().upper()
        if level in {"WARN", "WARNING"}:
            return "WARNING"
        if level in {"DEBUG", "INFO", "ERROR", "CRITICAL"}:
            return level
        return "INFO"

    @classmethod
    def from_env(cls) -> AnalyzerConfig:
        replay_raw = (os.environ.get("PAGEPERF_REPLAY") or "").strip()
        cdp_url = (os.environ.get("PAGEPERF_CDP_URL") or "").strip() or DEFAULT_CDP_URL
        return cls(
            paint_timeout_ms=_env_int("PAGEPERF_PAINT_TIMEOUT_MS", 5000, min_v=100, max_v=60_000),
            # Layout and interaction windows are bounded so a run stays well under the ceiling.
            layout_timeout_ms=_env_int("PAGEPERF_LAYOUT_TIMEOUT_MS", 2000, min_v=2000, max_v=5000),
            interaction_timeout_ms=_env_int("PAGEPERF_INTERACTION_TIMEOUT_MS", 2000, min_v=2000, max_v=8000),
            aggregator_ceiling_ms=_env_int("PAGEPERF_CEILING_MS", 8000, min_v=1000, max_v=60_000),
            cache_ttl_ms=_env_int("PAGEPERF_CACHE_TTL_MS", 30_000, min_v=0, max_v=24 * 3600 * 1000),
            ready_attempts=_env_int("PAGEPERF_READY_ATTEMPTS", 3, min_v=1, max_v=10),
            cdp_url=cdp_url.rstrip("/"),
            poll_interval=_env_float("PAGEPERF_POLL_INTERVAL", 0.25, min_v=0.05, max_v=5.0),
            replay_path=expand_path(replay_raw) if replay_raw else None,
            log_level=cls.normalize_log_level(os.environ.get("PAGEPERF_LOG_LEVEL")),
        )
