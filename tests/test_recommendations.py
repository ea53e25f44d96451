from __future__ import annotations

from pageperf.models import (
    Category,
    Confidence,
    Impact,
    MetricKind,
    MetricSample,
    MetricsBundle,
    NavigationTiming,
    PageFeatures,
    Recommendation,
    ResourceFacts,
)
from pageperf.recommendations import generate_recommendations, order_recommendations
from pageperf.scoring import score_bundle

KB = 1024


def _bundle(
    *,
    paint_s: float = 1.0,
    layout: float = 0.01,
    interaction_ms: float = 80,
    interaction_confidence: Confidence = Confidence.MEASURED,
    resources: ResourceFacts | None = None,
    ttfb: float | None = 200,
) -> MetricsBundle:
    return MetricsBundle(
        paint=MetricSample(MetricKind.PAINT_TIMING, paint_s, "s"),
        layout=MetricSample(MetricKind.LAYOUT_STABILITY, layout, "score"),
        interaction=MetricSample(MetricKind.INTERACTION_LATENCY, interaction_ms, "ms", interaction_confidence),
        resources=resources or ResourceFacts(total_bytes=200 * KB, script_bytes=40 * KB, script_resource_count=3),
        navigation=NavigationTiming(ttfb_ms=ttfb),
    )


def _run(bundle: MetricsBundle, features: PageFeatures) -> list[Recommendation]:
    return generate_recommendations(bundle, score_bundle(bundle, features.router), features)


def _titles(recs: list[Recommendation]) -> list[str]:
    return [r.title for r in recs]


def _assert_ordered(recs: list[Recommendation]) -> None:
    keys = [(0 if r.category == Category.TECHNICAL else 1, r.impact.rank) for r in recs]
    assert keys == sorted(keys)


def test_fast_page_still_gets_informational_items() -> None:
    recs = _run(_bundle(), PageFeatures(is_target_framework=True, router="App"))
    informational = [r for r in recs if r.category == Category.INFORMATIONAL]
    assert len(informational) == 3
    assert _titles(recs)[0] == "Optimize App Router Usage"
    assert recs[0].impact == Impact.MEDIUM
    _assert_ordered(recs)


def test_slow_heavy_page_triggers_technical_rules_in_order() -> None:
    heavy = ResourceFacts(total_bytes=3000 * KB, script_bytes=1800 * KB, total_resources=40, script_resource_count=25)
    bundle = _bundle(paint_s=4.5, layout=0.3, interaction_ms=450, resources=heavy, ttfb=900)
    features = PageFeatures(is_target_framework=True, router="Pages", image_count=6, optimized_image_count=1)
    recs = _run(bundle, features)
    titles = _titles(recs)

    for expected in (
        "Reduce JavaScript Bundle Size",
        "Adopt Server Components",
        "Optimize Data Fetching",
        "Configure the SWC Minifier",
        "Optimize Largest Contentful Paint",
        "Optimize Font Loading",
        "Reduce Layout Shifts",
        "Improve Interaction Latency",
        "Reduce Server Response Time",
        "Upgrade to the App Router",
        "Use Optimized Images",
        "Reduce Page Size",
    ):
        assert expected in titles
    _assert_ordered(recs)
    # Equal impact keeps rule evaluation order.
    high = [r.title for r in recs if r.category == Category.TECHNICAL and r.impact == Impact.HIGH]
    assert high.index("Reduce JavaScript Bundle Size") < high.index("Optimize Largest Contentful Paint")
    assert high.index("Optimize Largest Contentful Paint") < high.index("Reduce Page Size")


def test_fallback_interaction_is_not_reported_as_slow() -> None:
    bundle = _bundle(interaction_ms=900, interaction_confidence=Confidence.FALLBACK)
    recs = _run(bundle, PageFeatures(is_target_framework=True, router="App"))
    assert "Improve Interaction Latency" not in _titles(recs)


def test_images_rule_needs_more_than_two_unoptimized() -> None:
    two = _run(_bundle(), PageFeatures(is_target_framework=True, router="App", image_count=2))
    three = _run(_bundle(), PageFeatures(is_target_framework=True, router="App", image_count=3))
    assert "Use Optimized Images" not in _titles(two)
    assert "Use Optimized Images" in _titles(three)


def test_order_is_stable_for_custom_rules() -> None:
    def first(_ctx):  # noqa: ANN001, ANN202
        yield Recommendation("a", "", Category.INFORMATIONAL, Impact.LOW, "")
        yield Recommendation("b", "", Category.TECHNICAL, Impact.LOW, "")

    def second(_ctx):  # noqa: ANN001, ANN202
        yield Recommendation("c", "", Category.TECHNICAL, Impact.LOW, "")
        yield Recommendation("d", "", Category.TECHNICAL, Impact.HIGH, "")

    bundle = _bundle()
    recs = generate_recommendations(bundle, score_bundle(bundle), PageFeatures(), rules=(first, second))
    assert _titles(recs) == ["d", "b", "c", "a"]
    assert order_recommendations(reversed(recs))[0].title == "d"
