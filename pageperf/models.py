"""Data model shared by collectors, scoring, recommendations and the session store."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


def now_ms() -> int:
    return int(time.time() * 1000)


class MetricKind(str, Enum):
    PAINT_TIMING = "paintTiming"
    LAYOUT_STABILITY = "layoutStability"
    INTERACTION_LATENCY = "interactionLatency"


class Confidence(str, Enum):
    MEASURED = "measured"
    FALLBACK = "fallback"


class SessionStatus(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"


class Category(str, Enum):
    TECHNICAL = "technical"
    INFORMATIONAL = "informational"


class Impact(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

    @property
    def rank(self) -> int:
        return {"High": 0, "Medium": 1, "Low": 2}[self.value]


@dataclass(frozen=True, slots=True)
class MetricSample:
    """One resolved metric value; immutable once produced."""

    kind: MetricKind
    value: float
    unit: str  # "s" | "ms" | "score"
    confidence: Confidence = Confidence.MEASURED

    def as_ms(self) -> float:
        if self.unit == "s":
            return self.value * 1000.0
        return self.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "value": self.value,
            "unit": self.unit,
            "confidence": self.confidence.value,
        }


@dataclass(frozen=True, slots=True)
class NavigationTiming:
    """Navigation timings relative to requestStart (ms)."""

    ttfb_ms: float | None = None
    dom_load_ms: float | None = None
    window_load_ms: float | None = None

    @classmethod
    def from_entry(cls, entry: Any) -> NavigationTiming | None:
        """Build from a PerformanceNavigationTiming-shaped dict."""
        if not isinstance(entry, dict):
            return None

        def num(key: str) -> float | None:
            v = entry.get(key)
            if isinstance(v, bool) or not isinstance(v, (int, float)) or not math.isfinite(v):
                return None
            return float(v)

        request_start = num("requestStart")
        if request_start is None:
            # Already-normalized payload (ttfb/domLoad/windowLoad).
            ttfb = num("ttfb")
            dom = num("domLoad")
            win = num("windowLoad")
            if ttfb is None and dom is None and win is None:
                return None
            return cls(ttfb_ms=ttfb, dom_load_ms=dom, window_load_ms=win)

        def rel(key: str) -> float | None:
            v = num(key)
            if v is None or v <= 0:
                return None
            return max(0.0, v - request_start)

        return cls(
            ttfb_ms=rel("responseStart"),
            dom_load_ms=rel("domContentLoadedEventEnd"),
            window_load_ms=rel("loadEventEnd"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **({"ttfb": self.ttfb_ms} if self.ttfb_ms is not None else {}),
            **({"domLoad": self.dom_load_ms} if self.dom_load_ms is not None else {}),
            **({"windowLoad": self.window_load_ms} if self.window_load_ms is not None else {}),
        }


@dataclass(frozen=True, slots=True)
class ResourceFacts:
    total_bytes: int = 0
    script_bytes: int = 0
    total_resources: int = 0
    script_resource_count: int = 0
    slow_resources: int = 0

    @property
    def total_kb(self) -> float:
        return self.total_bytes / 1024

    @property
    def script_kb(self) -> float:
        return self.script_bytes / 1024

    @property
    def script_byte_ratio(self) -> float:
        return self.script_kb / (self.total_kb or 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalBytes": self.total_bytes,
            "scriptBytes": self.script_bytes,
            "totalResources": self.total_resources,
            "scriptResourceCount": self.script_resource_count,
            "slowResources": self.slow_resources,
            "scriptByteRatio": round(self.script_byte_ratio, 3),
        }


@dataclass(frozen=True, slots=True)
class MetricsBundle:
    paint: MetricSample
    layout: MetricSample
    interaction: MetricSample
    resources: ResourceFacts = field(default_factory=ResourceFacts)
    navigation: NavigationTiming | None = None

    @property
    def samples(self) -> tuple[MetricSample, MetricSample, MetricSample]:
        return (self.paint, self.layout, self.interaction)

    @property
    def ttfb_ms(self) -> float | None:
        return self.navigation.ttfb_ms if self.navigation is not None else None


@dataclass(frozen=True, slots=True)
class PageFeatures:
    """Facts reported by the page detection collaborator."""

    is_target_framework: bool = False
    router: str = "unknown"
    build_id: str | None = None
    image_optimization: bool = False
    font_optimization: bool = False
    i18n: bool = False
    image_count: int = 0
    optimized_image_count: int = 0
    elements: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Any) -> PageFeatures:
        if not isinstance(raw, dict):
            return cls()
        router = str(raw.get("router") or "unknown").strip()
        if router.lower() == "app":
            router = "App"
        elif router.lower() == "pages":
            router = "Pages"
        else:
            router = "unknown"

        def count(key: str) -> int:
            v = raw.get(key)
            if isinstance(v, bool) or not isinstance(v, (int, float)):
                return 0
            return max(0, int(v))

        build_id = raw.get("buildId")
        elements = raw.get("elements")
        return cls(
            is_target_framework=bool(raw.get("isTargetFramework")),
            router=router,
            build_id=str(build_id) if isinstance(build_id, str) and build_id else None,
            image_optimization=bool(raw.get("imageOptimization")),
            font_optimization=bool(raw.get("fontOptimization")),
            i18n=bool(raw.get("i18n")),
            image_count=count("imageCount"),
            optimized_image_count=count("optimizedImageCount"),
            elements=dict(elements) if isinstance(elements, dict) else {},
        )

    @property
    def unoptimized_images(self) -> int:
        return max(0, self.image_count - self.optimized_image_count)

    def to_dict(self) -> dict[str, Any]:
        return {
            "router": self.router,
            **({"buildId": self.build_id} if self.build_id else {}),
            "imageOptimization": self.image_optimization,
            "fontOptimization": self.font_optimization,
            "i18n": self.i18n,
            "imageCount": self.image_count,
            "optimizedImageCount": self.optimized_image_count,
            "elements": dict(self.elements),
        }


@dataclass(frozen=True, slots=True)
class ScoreResult:
    """Per-metric scores plus the composite; never mutated after creation."""

    metric_scores: dict[str, int]
    speed_score: int
    composite: int

    def to_dict(self) -> dict[str, Any]:
        return {**self.metric_scores, "speed": self.speed_score, "composite": self.composite}


@dataclass(frozen=True, slots=True)
class Recommendation:
    title: str
    description: str
    category: Category
    impact: Impact
    implementation_hint: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "category": self.category.value,
            "impact": self.impact.value,
            "implementation": self.implementation_hint,
        }


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    is_target_framework: bool
    features: PageFeatures
    bundle: MetricsBundle | None = None
    scores: ScoreResult | None = None
    recommendations: tuple[Recommendation, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "isTargetFramework": self.is_target_framework,
            "features": self.features.to_dict(),
            "recommendations": [r.to_dict() for r in self.recommendations],
        }
        if self.bundle is not None and self.scores is not None:
            out["metrics"] = {
                "paintTiming": self.bundle.paint.value,
                "layoutStability": self.bundle.layout.value,
                "interactionLatency": self.bundle.interaction.value,
                "compositeScore": self.scores.composite,
                "speedScore": self.scores.speed_score,
            }
            out["scores"] = self.scores.to_dict()
            out["confidence"] = {s.kind.value: s.confidence.value for s in self.bundle.samples}
            out["resources"] = self.bundle.resources.to_dict()
            if self.bundle.navigation is not None:
                out["navigation"] = self.bundle.navigation.to_dict()
        return out


@dataclass
class Session:
    """One analysis run for one page visit."""

    session_id: str
    resource_identifier: str
    generation: int
    status: SessionStatus = SessionStatus.NOT_STARTED
    progress: int = 0
    message: str = ""
    created_at: int = field(default_factory=now_ms)


@dataclass(frozen=True, slots=True)
class CacheEntry:
    session_id: str
    resource_identifier: str
    generation: int
    written_at: int
    result: AnalysisResult | None = None
    error: str | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None
