from datetime import date

import pytest

from creative_intel import gap
from creative_intel.config import AnalysisConfig
from creative_intel.models import CompetitorInfo, TaggedAd

TODAY = date(2025, 6, 30)
STATIC = ("format_type", "static_image")
UGC = ("format_type", "ugc_talking_head")


def _ad(ad_id, format_type, competitor=None):
    return TaggedAd(
        id=ad_id,
        competitor_id=competitor,
        signal_strength=1,
        competitor_track=None,
        launch_date=TODAY,
        is_video=False,
        tags={"format_type": format_type},
    )


def _populations():
    """Client 1/20 static (0.05), competitors 4/10 static (0.40)."""
    client = [_ad("k0", "static_image")] + [_ad(f"k{i}", "ugc_talking_head") for i in range(1, 20)]
    competitor = (
        [_ad(f"s{i}", "static_image", competitor="c1" if i % 2 else "c2") for i in range(4)]
        + [_ad(f"u{i}", "ugc_talking_head", competitor="c1") for i in range(6)]
    )
    competitors = [CompetitorInfo("c1", "Acme", "consolidator"), CompetitorInfo("c2", "Zoom", "velocity_tester")]
    return client, competitor, competitors


def _element(gap_size, velocity=0.0, score=0.0, direction=None, **kwargs):
    element = gap.GapElement(
        dimension="format_type",
        value=kwargs.pop("value", "static_image"),
        client_prevalence=kwargs.pop("client", 0.1),
        competitor_prevalence=kwargs.pop("competitor", 0.1 + gap_size),
        gap_size=gap_size,
        velocity=velocity,
        velocity_direction=direction or gap.classify_direction(velocity),
        convergence_score=score,
        priority_score=gap.calculate_priority_score(gap_size, velocity, score),
    )
    return element


# ---------------------------------------------------------------------------
# Scoring and recommendations
# ---------------------------------------------------------------------------

def test_priority_example():
    assert gap.calculate_priority_score(0.35, 0.5, 0.8) == pytest.approx(0.945)


def test_priority_uses_magnitudes():
    assert gap.calculate_priority_score(-0.2, -0.5, 0.0) == pytest.approx(0.3)


class TestRecommendations:
    def test_strength(self):
        text = gap.generate_recommendation(_element(-0.2))

        assert text.startswith("Strength: Your use of static image (format type)")
        assert "20%" in text

    def test_critical_when_accelerating_and_converging(self):
        text = gap.generate_recommendation(_element(0.35, velocity=0.5, score=0.8))

        assert text.startswith("Critical opportunity:")
        assert "35% behind" in text

    def test_high_priority_when_accelerating_only(self):
        assert gap.generate_recommendation(_element(0.2, velocity=0.5)).startswith("High priority:")

    def test_low_priority_when_declining(self):
        assert gap.generate_recommendation(_element(0.2, velocity=-0.5)).startswith("Low priority:")

    def test_plain_opportunity(self):
        assert gap.generate_recommendation(_element(0.2)).startswith("Opportunity:")


# ---------------------------------------------------------------------------
# Element building and summary
# ---------------------------------------------------------------------------

class TestBuildGapElements:
    def test_example_gap_priority(self):
        client, competitor, competitors = _populations()

        elements = {
            (e.dimension, e.value): e
            for e in gap.build_gap_elements(
                client,
                competitor,
                competitors,
                {STATIC: 0.5},
                {STATIC: {"score": 0.8, "classification": "STRONG_CONVERGENCE"}},
            )
        }

        static = elements[STATIC]
        assert static.client_prevalence == 0.05
        assert static.competitor_prevalence == 0.4
        assert static.gap_size == 0.35
        assert static.priority_score == pytest.approx(0.945)
        assert static.velocity_direction == "accelerating"
        assert static.convergence_classification == "STRONG_CONVERGENCE"
        assert static.recommendation.startswith("Critical opportunity:")
        assert [ex["competitor_name"] for ex in static.competitor_examples] == ["Zoom", "Acme", "Zoom"]

    def test_unused_values_are_skipped(self):
        client, competitor, competitors = _populations()

        elements = gap.build_gap_elements(client, competitor, competitors, {}, {})

        assert {(e.dimension, e.value) for e in elements} == {STATIC, UGC}

    def test_missing_snapshots_default_to_zero(self):
        client, competitor, competitors = _populations()

        elements = gap.build_gap_elements(client, competitor, competitors, {}, {})

        static = next(e for e in elements if e.value == "static_image")
        assert static.velocity == 0.0
        assert static.convergence_score == 0.0
        assert static.convergence_classification == "NO_CONVERGENCE"
        assert static.priority_score == pytest.approx(0.35)


class TestSummarizeGaps:
    def test_equal_gap_ranks_by_velocity_and_convergence(self):
        hot = _element(0.35, velocity=0.5, score=0.8, value="static_image")
        cold = _element(0.35, value="product_demo")

        priority, _, _, summary = gap.summarize_gaps([cold, hot])

        assert priority == [hot, cold]
        assert summary["biggest_opportunity"] == "static_image (format_type)"
        assert summary["total_gaps_identified"] == 2

    def test_top_n_limits_priority_gaps(self):
        elements = [_element(0.1 * (i + 1), value=f"v{i}") for i in range(6)]

        priority, _, _, summary = gap.summarize_gaps(elements, top_n=5)

        assert len(priority) == 5
        assert summary["total_gaps_identified"] == 6

    def test_strengths_require_real_usage(self):
        strong = _element(-0.3, client=0.5, competitor=0.2, value="ugc_talking_head")
        parity = _element(0.0, client=0.2, competitor=0.2, value="product_demo")
        unused = _element(0.0, client=0.005, competitor=0.005, value="carousel_card")

        _, strengths, _, summary = gap.summarize_gaps([parity, unused, strong])

        assert strengths == [strong, parity]
        assert summary["strongest_match"] == "ugc_talking_head (format_type)"

    def test_watch_list_is_near_parity_and_accelerating(self):
        watch = _element(0.05, velocity=0.8, value="static_image")
        wide = _element(0.3, velocity=0.8, value="product_demo")
        flat = _element(0.05, velocity=0.1, value="carousel_card")

        _, _, watch_list, _ = gap.summarize_gaps([watch, wide, flat])

        assert watch_list == [watch]

    def test_empty_summary(self):
        assert gap.summarize_gaps([])[3] == {
            "biggest_opportunity": "None identified",
            "strongest_match": "None identified",
            "total_gaps_identified": 0,
        }


# ---------------------------------------------------------------------------
# Brand analysis
# ---------------------------------------------------------------------------

class FakeStore:
    def __init__(self, client_ads, competitor_ads, competitors):
        self.client_ads = client_ads
        self.competitor_ads = competitor_ads
        self.competitors = competitors
        self.synced = []
        self.snapshots = []

    def fetch_brand_ids(self):
        return ["b1"]

    def sync_client_ads_for_tagging(self, brand_id):
        self.synced.append(brand_id)
        return 0

    def fetch_client_tagged_ads(self, brand_id):
        return self.client_ads

    def fetch_tagged_ads(self, brand_id, since):
        return self.competitor_ads

    def fetch_competitors(self, brand_id):
        return self.competitors

    def fetch_latest_velocity(self, brand_id, track_filter="all"):
        return {STATIC: 0.5}

    def fetch_latest_convergence(self, brand_id):
        return {STATIC: {"score": 0.8, "classification": "STRONG_CONVERGENCE"}}

    def upsert_gap_snapshot(self, row):
        self.snapshots.append(row)


class TestAnalyzeCreativeGap:
    def test_snapshot_is_saved(self):
        store = FakeStore(*_populations())

        result = gap.analyze_creative_gap("b1", today=TODAY, store=store, config=AnalysisConfig())

        assert store.synced == ["b1"]
        assert result.total_client_ads == 20
        assert result.total_competitor_ads == 10
        row = store.snapshots[0]
        assert row["snapshot_date"] == TODAY
        assert row["priority_gaps"][0]["value"] == "static_image"
        assert row["strengths"][0]["value"] == "ugc_talking_head"
        assert row["summary"]["biggest_opportunity"] == "static_image (format_type)"

    def test_no_client_ads_returns_none(self):
        _, competitor, competitors = _populations()
        store = FakeStore([], competitor, competitors)

        assert gap.analyze_creative_gap("b1", today=TODAY, store=store, config=AnalysisConfig()) is None
        assert store.synced == ["b1"]
        assert store.snapshots == []

    def test_no_competitor_ads_returns_none(self):
        client, _, competitors = _populations()
        store = FakeStore(client, [], competitors)

        assert gap.analyze_creative_gap("b1", today=TODAY, store=store, config=AnalysisConfig()) is None


def test_gap_pipeline_counts_snapshots():
    store = FakeStore(*_populations())

    stats = gap.run_gap_pipeline(today=TODAY, store=store)

    assert stats["brands_analyzed"] == 1
    assert stats["snapshots_saved"] == 1
