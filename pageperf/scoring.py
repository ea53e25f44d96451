"""
Score calculation.

Two modes, both pure functions of the metrics bundle:
- per-metric quadratic penalty curve + weighted composite (authoritative when
  the core samples exist)
- resource/CSR-adjusted speed score (byte-volume signal only); it also feeds the
  composite as the resource-volume component
"""

from __future__ import annotations

import math

from .models import MetricsBundle, ScoreResult

PAINT_THRESHOLD_MS = 2500.0
LAYOUT_THRESHOLD = 0.1
INTERACTION_THRESHOLD_MS = 100.0
TTFB_THRESHOLD_MS = 600.0

WEIGHTS: dict[str, float] = {
    "paintTiming": 0.35,
    "interactionLatency": 0.15,
    "layoutStability": 0.25,
    "timeToFirstByte": 0.15,
    "resourceVolume": 0.10,
}

CSR_SCRIPT_RATIO = 0.4
CSR_SCRIPT_COUNT = 15
CSR_PENALTY_NO_SERVER_RENDERING = 20
CSR_PENALTY_DEFAULT = 10
LARGE_SCRIPT_KB = 1000
LARGE_SCRIPT_PENALTY = 15


def _clamp_score(v: float) -> int:
    if math.isnan(v):
        return 0
    return int(round(max(0.0, min(100.0, v))))


def metric_score(value: float, threshold: float) -> int:
    """clamp(0, 100, 100 - 100 * (value / threshold)^2), as an int."""
    if threshold <= 0:
        raise ValueError("threshold must be positive")
    if value is None or math.isnan(value):
        return 0
    if math.isinf(value):
        return 0 if value > 0 else 100
    v = max(0.0, float(value))
    ratio = v / threshold
    if ratio > 10:
        return 0
    return _clamp_score(100.0 - 100.0 * ratio * ratio)


def speed_score(
    total_bytes: int,
    script_bytes: int,
    script_resource_count: int,
    router: str = "unknown",
) -> int:
    """Byte-volume score with a client-heavy rendering penalty."""
    total_kb = max(0, total_bytes) / 1024
    script_kb = max(0, script_bytes) / 1024
    score = max(0.0, 100.0 - total_kb / 50)

    script_ratio = script_kb / (total_kb or 1)
    if script_ratio > CSR_SCRIPT_RATIO or script_resource_count > CSR_SCRIPT_COUNT:
        # The router mode without server rendering pays more for client-heavy pages.
        penalty = CSR_PENALTY_NO_SERVER_RENDERING if router == "Pages" else CSR_PENALTY_DEFAULT
        score = max(0.0, score - penalty)

    if script_kb > LARGE_SCRIPT_KB:
        score = max(0.0, score - LARGE_SCRIPT_PENALTY)

    return _clamp_score(score)


def composite_score(metric_scores: dict[str, int]) -> int:
    """Weighted sum over the components present; missing weight is redistributed."""
    present = {k: w for k, w in WEIGHTS.items() if k in metric_scores}
    total_weight = sum(present.values())
    if total_weight <= 0:
        return 0
    acc = sum(metric_scores[k] * w for k, w in present.items())
    return _clamp_score(acc / total_weight)


def score_bundle(bundle: MetricsBundle, router: str = "unknown") -> ScoreResult:
    res = bundle.resources
    speed = speed_score(res.total_bytes, res.script_bytes, res.script_resource_count, router)
    scores: dict[str, int] = {
        "paintTiming": metric_score(bundle.paint.as_ms(), PAINT_THRESHOLD_MS),
        "layoutStability": metric_score(bundle.layout.value, LAYOUT_THRESHOLD),
        "interactionLatency": metric_score(bundle.interaction.as_ms(), INTERACTION_THRESHOLD_MS),
        "resourceVolume": speed,
    }
    ttfb = bundle.ttfb_ms
    if ttfb is not None:
        scores["timeToFirstByte"] = metric_score(ttfb, TTFB_THRESHOLD_MS)
    return ScoreResult(metric_scores=scores, speed_score=speed, composite=composite_score(scores))
