"""
Recommendation engine: a fixed, ordered list of pure rules.

Each rule maps (bundle, scores, features) to zero or more recommendations. The
whole list is re-evaluated on every run. Output ordering:
- technical before informational
- within a category: High, then Medium, then Low
- ties keep rule evaluation order
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass

from .models import Category, Confidence, Impact, MetricsBundle, PageFeatures, Recommendation, ScoreResult

LOW_SPEED_SCORE = 60
HEAVY_SCRIPT_COUNT = 10
HEAVY_SCRIPT_BYTES = 500 * 1024
SLOW_PAINT_S = 2.5
VERY_SLOW_PAINT_S = 4.0
UNSTABLE_LAYOUT = 0.1
SLOW_INTERACTION_MS = 200
SLOW_TTFB_MS = 600
UNOPTIMIZED_IMAGE_LIMIT = 2
LARGE_PAGE_BYTES = 1_000_000


@dataclass(frozen=True)
class RuleContext:
    bundle: MetricsBundle
    scores: ScoreResult
    features: PageFeatures


Rule = Callable[[RuleContext], Iterable[Recommendation]]


def _tech(title: str, description: str, impact: Impact, hint: str) -> Recommendation:
    return Recommendation(title, description, Category.TECHNICAL, impact, hint)


def _info(title: str, description: str, impact: Impact, hint: str) -> Recommendation:
    return Recommendation(title, description, Category.INFORMATIONAL, impact, hint)


def _low_speed(ctx: RuleContext) -> bool:
    return ctx.scores.speed_score < LOW_SPEED_SCORE


def rule_script_weight(ctx: RuleContext) -> Iterable[Recommendation]:
    res = ctx.bundle.resources
    if not _low_speed(ctx):
        return
    if res.script_resource_count <= HEAVY_SCRIPT_COUNT and res.script_bytes <= HEAVY_SCRIPT_BYTES:
        return
    yield _tech(
        "Reduce JavaScript Bundle Size",
        f"Your page loads {round(res.script_kb)} KB of JavaScript across {res.script_resource_count} resources.",
        Impact.HIGH,
        "Use dynamic imports for heavy components, lazy-load client components and configure code splitting.",
    )
    yield _tech(
        "Adopt Server Components",
        "Large JavaScript bundles indicate client-heavy rendering that could move to the server.",
        Impact.HIGH,
        "Convert non-interactive components to Server Components so they ship no client-side JavaScript.",
    )


def rule_data_fetching(ctx: RuleContext) -> Iterable[Recommendation]:
    if _low_speed(ctx):
        yield _tech(
            "Optimize Data Fetching",
            "Improve performance with proper data fetching and caching strategies.",
            Impact.HIGH,
            "Use static generation with revalidation for content that changes rarely and set explicit cache headers.",
        )


def rule_minifier(ctx: RuleContext) -> Iterable[Recommendation]:
    if _low_speed(ctx) and ctx.features.router == "Pages":
        yield _tech(
            "Configure the SWC Minifier",
            "Use the built-in Rust-based compiler for faster builds and smaller output.",
            Impact.MEDIUM,
            'Enable "swcMinify: true" in the framework config instead of Terser.',
        )


def rule_paint(ctx: RuleContext) -> Iterable[Recommendation]:
    paint_s = ctx.bundle.paint.as_ms() / 1000.0
    if paint_s > SLOW_PAINT_S:
        yield _tech(
            "Optimize Largest Contentful Paint",
            f"Your largest paint takes {paint_s:.1f}s, which hurts perceived loading speed.",
            Impact.HIGH,
            "Prioritize the hero image, render critical content on the server and preload critical resources.",
        )
    if paint_s > VERY_SLOW_PAINT_S:
        yield _tech(
            "Optimize Font Loading",
            "A very slow largest paint is often delayed by web font loading.",
            Impact.MEDIUM,
            "Self-host fonts with display: swap so text renders before the font arrives.",
        )


def rule_layout(ctx: RuleContext) -> Iterable[Recommendation]:
    if ctx.bundle.layout.value > UNSTABLE_LAYOUT:
        yield _tech(
            "Reduce Layout Shifts",
            "Your page has noticeable layout shifts during loading.",
            Impact.MEDIUM,
            "Give images and embeds explicit width and height and reserve space for late content.",
        )


def rule_interaction(ctx: RuleContext) -> Iterable[Recommendation]:
    sample = ctx.bundle.interaction
    if sample.confidence == Confidence.MEASURED and sample.as_ms() > SLOW_INTERACTION_MS:
        yield _tech(
            "Improve Interaction Latency",
            f"Slow interactions take about {round(sample.as_ms())} ms to produce the next frame.",
            Impact.HIGH,
            "Break up long tasks, defer non-critical scripts and keep event handlers short.",
        )


def rule_server_response(ctx: RuleContext) -> Iterable[Recommendation]:
    ttfb = ctx.bundle.ttfb_ms
    if ttfb is not None and ttfb > SLOW_TTFB_MS:
        yield _tech(
            "Reduce Server Response Time",
            f"The first byte arrives after {round(ttfb)} ms.",
            Impact.MEDIUM,
            "Cache rendered pages at the edge and avoid blocking data fetches before the response starts.",
        )


def rule_router(ctx: RuleContext) -> Iterable[Recommendation]:
    if ctx.features.router == "Pages":
        yield _tech(
            "Upgrade to the App Router",
            "You are using the older Pages Router.",
            Impact.MEDIUM,
            "The App Router enables Server Components and streaming; migrate route by route.",
        )
    else:
        yield _tech(
            "Optimize App Router Usage",
            "Make sure the App Router implementation follows current practices.",
            Impact.MEDIUM,
            "Use parallel and intercepting routes for complex layouts and route groups for organization.",
        )


def rule_images(ctx: RuleContext) -> Iterable[Recommendation]:
    missing = ctx.features.unoptimized_images
    if missing > UNOPTIMIZED_IMAGE_LIMIT:
        yield _tech(
            "Use Optimized Images",
            f"You have {missing} images that are not using framework image optimization.",
            Impact.MEDIUM,
            "Replace plain <img> tags with the framework image component and configure external image domains.",
        )


def rule_page_size(ctx: RuleContext) -> Iterable[Recommendation]:
    res = ctx.bundle.resources
    if res.total_bytes > LARGE_PAGE_BYTES:
        yield _tech(
            "Reduce Page Size",
            f"Your page loads {round(res.total_kb)} KB of resources.",
            Impact.HIGH,
            "Load below-the-fold components dynamically without server rendering and split large bundles.",
        )


def baseline_informational(_ctx: RuleContext) -> Iterable[Recommendation]:
    yield _info(
        "Keep Page Metadata Descriptive",
        "Titles, descriptions and social preview tags decide how the page appears when shared or indexed.",
        Impact.MEDIUM,
        "Provide a unique title, meta description and OpenGraph tags for every route.",
    )
    yield _info(
        "Publish Structured Data",
        "Structured data helps search engines understand the page content.",
        Impact.LOW,
        'Add a JSON-LD <script type="application/ld+json"> block describing the primary entity.',
    )
    yield _info(
        "Declare the Document Language",
        "A lang attribute on the root element improves accessibility and locale handling.",
        Impact.LOW,
        'Set <html lang="..."> and hreflang alternates for translated routes.',
    )


RULES: tuple[Rule, ...] = (
    rule_script_weight,
    rule_data_fetching,
    rule_minifier,
    rule_paint,
    rule_layout,
    rule_interaction,
    rule_server_response,
    rule_router,
    rule_images,
    rule_page_size,
    baseline_informational,
)

_CATEGORY_RANK = {Category.TECHNICAL: 0, Category.INFORMATIONAL: 1}


def order_recommendations(items: Iterable[Recommendation]) -> list[Recommendation]:
    return sorted(items, key=lambda r: (_CATEGORY_RANK[r.category], r.impact.rank))


def generate_recommendations(
    bundle: MetricsBundle,
    scores: ScoreResult,
    features: PageFeatures,
    rules: Iterable[Rule] = RULES,
) -> list[Recommendation]:
    ctx = RuleContext(bundle=bundle, scores=scores, features=features)
    out: list[Recommendation] = []
    for rule in rules:
        out.extend(rule(ctx) or ())
    return order_recommendations(out)
