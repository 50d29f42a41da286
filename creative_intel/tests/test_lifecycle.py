from datetime import date, timedelta

import pytest

from creative_intel import lifecycle
from creative_intel.config import AnalysisConfig
from creative_intel.models import CompetitorInfo, LifecycleAd

TODAY = date(2025, 6, 30)
WEEK = date(2025, 6, 2)             # a Monday, judged since June 22
LAUNCHED = date(2025, 6, 3)


def _ad(ad_id, competitor="c2", launched=LAUNCHED, days=20, active=True, video=False,
        cohort=None, breakout=False, cash_cow=False, video_tags=None, **tags):
    return LifecycleAd(
        id=ad_id,
        competitor_id=competitor,
        competitor_name="Zoom",
        launch_date=launched,
        days_active=days,
        is_active=active,
        is_video=video,
        cohort_week=cohort,
        is_breakout=breakout,
        is_cash_cow=cash_cow,
        tags=tags,
        video_tags=video_tags or {},
    )


def _cohort(survivors, killed, competitor="c2", launched=LAUNCHED):
    """``survivors`` live ads past 14 days, ``killed`` ads switched off early."""
    ads = [
        _ad(f"{competitor}-s{i}", competitor, launched, days=27, format_type="static_image")
        for i in range(survivors)
    ]
    ads += [
        _ad(f"{competitor}-k{i}", competitor, launched, days=5, active=False, format_type="ugc_talking_head")
        for i in range(killed)
    ]
    return ads


# ---------------------------------------------------------------------------
# Cohort calendar
# ---------------------------------------------------------------------------

class TestCohortCalendar:
    @pytest.mark.parametrize(
        "launched, monday",
        [
            (date(2025, 1, 8), date(2025, 1, 6)),
            (date(2025, 1, 6), date(2025, 1, 6)),
            (date(2025, 1, 12), date(2025, 1, 6)),
            (date(2025, 1, 1), date(2024, 12, 30)),
        ],
    )
    def test_cohort_week_is_monday_of_launch_week(self, launched, monday):
        assert lifecycle.cohort_week(launched) == monday

    def test_cohort_end_is_the_sunday(self):
        assert lifecycle.cohort_end(date(2025, 1, 27)) == date(2025, 2, 2)

    def test_cohort_ready_fourteen_days_after_end(self):
        end = date(2025, 6, 15)

        assert lifecycle.is_cohort_ready(end, date(2025, 6, 29))
        assert not lifecycle.is_cohort_ready(end, date(2025, 6, 28))

    @pytest.mark.parametrize(
        "days, active, expected",
        [(14, True, True), (13, True, False), (30, False, False)],
    )
    def test_survivor_needs_fourteen_live_days(self, days, active, expected):
        assert lifecycle.is_survivor(_ad("a", days=days, active=active)) is expected

    def test_cash_cow_needs_sixty_live_days(self):
        assert lifecycle.reached_cash_cow(_ad("a", days=60))
        assert not lifecycle.reached_cash_cow(_ad("a", days=59))
        assert not lifecycle.reached_cash_cow(_ad("a", days=90, active=False))


# ---------------------------------------------------------------------------
# Cohorts
# ---------------------------------------------------------------------------

class TestBuildCohorts:
    def test_low_survival_with_survivors_is_breakout(self):
        cohorts = lifecycle.build_cohorts(_cohort(2, 8), TODAY)

        assert len(cohorts) == 1
        cohort = cohorts[0]
        assert cohort.cohort_start == WEEK
        assert cohort.cohort_end == date(2025, 6, 8)
        assert cohort.survival_rate == pytest.approx(0.2)
        assert [a.id for a in cohort.survivors] == ["c2-s0", "c2-s1"]
        assert len(cohort.killed) == 8
        assert cohort.is_breakout_cohort

    @pytest.mark.parametrize(
        "survivors, killed",
        [(3, 7), (8, 2), (0, 10)],
        ids=["rate-at-threshold", "high-survival", "no-survivors"],
    )
    def test_not_breakout(self, survivors, killed):
        cohorts = lifecycle.build_cohorts(_cohort(survivors, killed), TODAY)

        assert cohorts[0].is_breakout_cohort is False

    def test_cohorts_below_minimum_size_are_skipped(self):
        assert lifecycle.build_cohorts(_cohort(1, 1), TODAY) == []
        assert len(lifecycle.build_cohorts(_cohort(1, 2), TODAY)) == 1

    def test_each_competitor_is_its_own_cohort(self):
        ads = _cohort(1, 1, competitor="c2") + _cohort(1, 1, competitor="c3")

        assert lifecycle.build_cohorts(ads, TODAY) == []

    def test_recent_cohorts_wait_for_survivor_age(self):
        ads = _cohort(1, 9, launched=TODAY - timedelta(days=10))

        assert lifecycle.build_cohorts(ads, TODAY) == []

    def test_stored_cohort_week_wins_and_undated_ads_are_skipped(self):
        ads = _cohort(1, 1)
        ads.append(_ad("moved", launched=date(2025, 6, 20), cohort=WEEK))
        ads.append(_ad("undated", launched=None))

        cohorts = lifecycle.build_cohorts(ads, TODAY)

        assert [a.id for a in cohorts[0].ads] == ["c2-s0", "c2-k0", "moved"]


# ---------------------------------------------------------------------------
# Tag profiles and lift
# ---------------------------------------------------------------------------

class TestTagProfile:
    def test_empty_cohort(self):
        assert lifecycle.calculate_tag_profile([]) == {}

    def test_shares_per_dimension_are_rounded(self):
        ads = [
            _ad("a", format_type="static_image"),
            _ad("b", format_type="static_image"),
            _ad("c", format_type="ugc_talking_head", human_presence="full_face"),
        ]

        profile = lifecycle.calculate_tag_profile(ads)

        assert profile["format_type"]["static_image"] == 0.6667
        assert profile["format_type"]["ugc_talking_head"] == 0.3333
        assert profile["human_presence"]["full_face"] == 1.0
        assert profile["pacing"]["mixed"] == 0.0

    def test_video_tags_only_from_video_ads_and_unknown_values_ignored(self):
        ads = [
            _ad("v", video=True, video_tags={"pacing": "mixed"}, format_type="hologram"),
            _ad("i", video_tags={"pacing": "slow_single_shot"}),
        ]

        profile = lifecycle.calculate_tag_profile(ads)

        assert profile["pacing"]["mixed"] == 1.0
        assert profile["pacing"]["slow_single_shot"] == 0.0
        assert sum(profile["format_type"].values()) == 0.0


class TestDifferentiatingElements:
    def test_lift_in_both_directions(self):
        survivors = {"format_type": {"static_image": 0.8, "ugc_talking_head": 0.2}}
        killed = {"format_type": {"static_image": 0.2, "ugc_talking_head": 0.8}}

        elements = {e.value: e for e in lifecycle.find_differentiating_elements(survivors, killed)}

        assert elements["static_image"].lift == 4.0
        assert elements["static_image"].direction == lifecycle.SURVIVOR_HIGHER
        assert elements["ugc_talking_head"].lift == 4.0
        assert elements["ugc_talking_head"].direction == lifecycle.KILLED_HIGHER

    def test_value_absent_from_killed_gets_fixed_lift(self):
        elements = lifecycle.find_differentiating_elements(
            {"format_type": {"static_image": 0.5}}, {"format_type": {"static_image": 0.0}}
        )

        assert elements[0].lift == 10.0
        assert elements[0].killed_prevalence == 0.0

    def test_small_lifts_and_unused_values_are_dropped(self):
        survivors = {"format_type": {"static_image": 0.6, "product_demo": 0.005}}
        killed = {"format_type": {"static_image": 0.5, "product_demo": 0.0}}

        assert lifecycle.find_differentiating_elements(survivors, killed) == []

    def test_sorted_by_lift(self):
        survivors = {"format_type": {"static_image": 0.4, "ugc_talking_head": 0.6}}
        killed = {"format_type": {"static_image": 0.2, "ugc_talking_head": 0.1}}

        elements = lifecycle.find_differentiating_elements(survivors, killed)

        assert [e.value for e in elements] == ["ugc_talking_head", "static_image"]


# ---------------------------------------------------------------------------
# Breakout events
# ---------------------------------------------------------------------------

def _element(value, lift, direction=lifecycle.SURVIVOR_HIGHER, dimension="format_type"):
    return lifecycle.DifferentiatingElement(dimension, value, 0.5, 0.1, lift, direction)


def _event(*elements, survivors=2, total=10, traits=()):
    return lifecycle.BreakoutEvent(
        brand_id="b1",
        competitor_id="c2",
        competitor_name="Zoom",
        cohort_start=WEEK,
        cohort_end=date(2025, 6, 8),
        analysis_date=TODAY,
        total_in_cohort=total,
        survivors_count=survivors,
        killed_count=total - survivors,
        survival_rate=survivors / total,
        differentiating_elements=list(elements),
        top_survivor_traits=list(traits),
    )


class TestBreakoutEvents:
    def test_summary_lists_top_three_traits(self):
        event = _event(traits=["a (x)", "b (y)", "c (z)", "d (w)"])

        assert lifecycle.generate_breakout_summary(event) == (
            "Zoom cohort (2025-06-02): 2/10 survived (20%). Survivor traits: a (x), b (y), c (z)."
        )

    def test_summary_without_traits(self):
        assert lifecycle.generate_breakout_summary(_event()) == "Zoom cohort (2025-06-02): 2/10 survived (20%)."

    def test_analyze_breakout_cohort(self):
        cohort = lifecycle.build_cohorts(_cohort(2, 8), TODAY)[0]

        event = lifecycle.analyze_breakout_cohort(cohort, "b1", TODAY)

        assert event.survivor_ad_ids == ["c2-s0", "c2-s1"]
        assert event.killed_count == 8
        assert event.top_survivor_traits == ["static_image (format_type)"]
        assert event.survivor_tag_profile["format_type"]["static_image"] == 1.0
        assert event.analysis_summary.endswith("Survivor traits: static_image (format_type).")

    def test_untagged_ads_stay_out_of_profiles(self):
        ads = _cohort(1, 0) + [_ad(f"bare{i}", days=3, active=False) for i in range(4)]
        cohort = lifecycle.build_cohorts(ads, TODAY)[0]

        event = lifecycle.analyze_breakout_cohort(cohort, "b1", TODAY)

        assert event.killed_count == 4
        assert event.killed_tag_profile == {}
        assert event.differentiating_elements == []
        assert event.top_survivor_traits == []

    def test_non_breakout_cohort_has_no_event(self):
        cohort = lifecycle.build_cohorts(_cohort(8, 2), TODAY)[0]

        assert lifecycle.analyze_breakout_cohort(cohort, "b1", TODAY) is None


def test_winning_patterns_average_lift_across_events():
    events = [
        _event(_element("static_image", 4.0), _element("ugc_talking_head", 9.0, lifecycle.KILLED_HIGHER)),
        _event(_element("static_image", 3.0), _element("product_demo", 2.0)),
    ]

    patterns = lifecycle.aggregate_winning_patterns(events)

    assert [p.value for p in patterns] == ["static_image", "product_demo"]
    assert patterns[0].frequency == 2
    assert patterns[0].avg_lift == 3.5
    assert patterns[0].confidence == 1.0
    assert patterns[1].confidence == 0.7071
    assert lifecycle.aggregate_winning_patterns([]) == []


def test_cash_cow_transitions_list_known_traits():
    old = _ad("old", days=75, breakout=True, format_type="static_image", human_presence=None)
    old.breakout_detected_at = date(2025, 5, 1)
    fresh = _ad("fresh", days=61, breakout=True)
    already = _ad("already", days=90, breakout=True, cash_cow=True)

    transitions = lifecycle.detect_cash_cow_transitions([old, fresh, already], TODAY)

    assert [t.ad_id for t in transitions] == ["old", "fresh"]
    assert transitions[0].traits == ["static_image (format_type)"]
    assert transitions[0].breakout_date == date(2025, 5, 1)
    assert transitions[1].breakout_date == TODAY
    assert transitions[1].cash_cow_date == TODAY


# ---------------------------------------------------------------------------
# Brand analysis
# ---------------------------------------------------------------------------

class FakeStore:
    def __init__(self, ads, competitors=None, brand=None, cash_cows=None):
        self.ads = ads
        self.competitors = competitors if competitors is not None else [
            CompetitorInfo("c1", "Acme", "consolidator"),
            CompetitorInfo("c2", "Zoom", "velocity_tester"),
        ]
        self.brand = brand if brand is not None else {"id": "b1", "name": "Brand"}
        self.cash_cows = cash_cows or []
        self.fetched = None
        self.events = []
        self.breakouts = []
        self.flagged_cash_cows = []
        self.backfilled = []
        self.snapshots = []

    def fetch_brand_ids(self):
        return ["b1"]

    def fetch_brand(self, brand_id):
        return self.brand

    def fetch_competitors(self, brand_id):
        return self.competitors

    def fetch_lifecycle_ads(self, competitor_ids, since):
        self.fetched = (list(competitor_ids), since)
        return self.ads

    def fetch_cash_cow_candidates(self, brand_id, min_days_active):
        return self.cash_cows

    def upsert_breakout_events(self, rows):
        self.events.extend(rows)
        return len(rows)

    def flag_breakout_ads(self, ad_ids):
        self.breakouts.extend(ad_ids)
        return len(ad_ids)

    def flag_cash_cows(self, ad_ids):
        self.flagged_cash_cows.extend(ad_ids)
        return len(ad_ids)

    def backfill_cohort_weeks(self, updates):
        self.backfilled.extend(updates)
        return len(updates)

    def upsert_lifecycle_snapshot(self, row):
        self.snapshots.append(row)


class TestAnalyzeAdLifecycle:
    def _store(self):
        ads = _cohort(2, 8)
        ads[0].cohort_week = WEEK
        cash_cow = _ad("old", days=75, breakout=True, format_type="static_image")
        return FakeStore(ads, cash_cows=[cash_cow])

    def test_breakouts_flagged_and_snapshotted(self):
        store = self._store()

        result = lifecycle.analyze_ad_lifecycle("b1", today=TODAY, store=store, config=AnalysisConfig())

        assert store.fetched == (["c2"], TODAY - timedelta(days=90))
        assert len(result.breakout_events) == 1
        assert result.total_breakout_ads == 2
        assert result.total_cash_cows == 1
        assert [p.value for p in result.winning_patterns] == ["static_image"]
        assert result.market_signals == (
            "Found 1 breakout cohort(s) with 2 surviving ad(s). 1 cash cow transition(s) detected. "
            "Top winning patterns: static_image (format_type)."
        )
        assert store.breakouts == ["c2-s0", "c2-s1"]
        assert store.flagged_cash_cows == ["old"]

    def test_rows_written_for_store(self):
        store = self._store()

        lifecycle.analyze_ad_lifecycle("b1", today=TODAY, store=store, config=AnalysisConfig())

        event = store.events[0]
        assert (event["brand_id"], event["competitor_id"]) == ("b1", "c2")
        assert (event["cohort_start"], event["cohort_end"]) == (WEEK, date(2025, 6, 8))
        assert event["survival_rate"] == 0.2
        assert event["differentiating_elements"][0]["lift"] == 10.0
        assert len(store.backfilled) == 9
        assert all(week == WEEK for _, week in store.backfilled)
        snapshot = store.snapshots[0]
        assert snapshot["snapshot_date"] == TODAY
        assert snapshot["total_breakout_events"] == 1
        assert snapshot["analysis_json"]["breakout_events"][0]["cohort_start"] == "2025-06-02"

    def test_no_breakouts_still_snapshots(self):
        store = FakeStore(_cohort(8, 2))

        result = lifecycle.analyze_ad_lifecycle("b1", today=TODAY, store=store, config=AnalysisConfig())

        assert result.market_signals == "No breakout cohorts detected in current analysis window."
        assert store.events == []
        assert store.breakouts == []
        assert len(store.snapshots) == 1

    @pytest.mark.parametrize(
        "store",
        [
            FakeStore(_cohort(2, 8), brand={}),
            FakeStore(_cohort(2, 8), competitors=[CompetitorInfo("c1", "Acme", "consolidator")]),
            FakeStore([]),
        ],
        ids=["no-brand", "no-velocity-testers", "no-ads"],
    )
    def test_missing_inputs_return_none(self, store):
        assert lifecycle.analyze_ad_lifecycle("b1", today=TODAY, store=store, config=AnalysisConfig()) is None
        assert store.snapshots == []


def test_pipeline_counts_failures_and_continues():
    class FlakyStore(FakeStore):
        def fetch_brand(self, brand_id):
            if brand_id == "bad":
                raise RuntimeError("connection reset")
            return self.brand

    store = FlakyStore(_cohort(2, 8))

    stats = lifecycle.run_lifecycle_pipeline(["bad", "b1"], today=TODAY, store=store)

    assert stats["failed"] == 1
    assert stats["brands_analyzed"] == 1
    assert stats["breakout_events_found"] == 1
    assert stats["breakout_ads_flagged"] == 2
    assert stats["cash_cows_detected"] == 0
    assert stats["snapshots_saved"] == 1
