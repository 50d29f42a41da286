from datetime import date, timedelta

import pytest

from creative_intel import tracks

TODAY = date(2025, 6, 30)


@pytest.mark.parametrize(
    "new_ads, previous, expected",
    [
        (10, None, ("velocity_tester", False)),
        (9, None, ("consolidator", False)),
        (12, "consolidator", ("velocity_tester", True)),
        (3, "velocity_tester", ("consolidator", True)),
        (3, "consolidator", ("consolidator", False)),
    ],
)
def test_classify_competitor(new_ads, previous, expected):
    assert tracks.classify_competitor(new_ads, previous) == expected


@pytest.mark.parametrize(
    "days, variations, expected",
    [(90, 5, 100), (400, 20, 100), (45, 1, 41), (0, 0, 1), (1, 1, 7)],
)
def test_track_a_signal(days, variations, expected):
    assert tracks.calculate_track_a_signal(days, variations) == expected


class TestTrackBSignal:
    @pytest.mark.parametrize("days, expected", [(0, 1), (5, 5), (13, 13), (40, 15)])
    def test_killed_ads_score_low(self, days, expected):
        assert tracks.calculate_track_b_signal(False, 0.2, days) == expected

    @pytest.mark.parametrize("rate, expected", [(0.2, 100), (0.5, 100), (0.8, 40), (0.98, 10)])
    def test_survivors_score_by_selectivity(self, rate, expected):
        assert tracks.calculate_track_b_signal(True, rate, 30) == expected


def test_survival_stats_only_counts_old_enough_ads():
    cutoff = TODAY - timedelta(days=14)
    ads = [
        {"launch_date": cutoff, "is_active": True, "days_active": 14},
        {"launch_date": cutoff - timedelta(days=3), "is_active": False, "days_active": 16},
        {"launch_date": cutoff - timedelta(days=5), "is_active": False, "days_active": 4},
        {"launch_date": "2025-06-01", "is_active": False, "days_active": 2},
        {"launch_date": TODAY, "is_active": True, "days_active": 0},
        {"launch_date": None, "is_active": True},
    ]

    survived, rate = tracks.survival_stats(ads, cutoff)

    assert survived == 2
    assert rate == pytest.approx(0.5)


def test_survival_stats_without_eligible_ads():
    assert tracks.survival_stats([{"launch_date": TODAY}], TODAY - timedelta(days=14)) == (0, None)


class TestScoreAd:
    def test_consolidator_defaults_to_one_variation(self):
        assert tracks.score_ad({"days_active": 90}, "consolidator", None) == 76

    def test_tester_without_rate_uses_baseline(self):
        assert tracks.score_ad({"days_active": 20, "is_active": False}, "velocity_tester", None) == 100

    def test_tester_killed_ad(self):
        assert tracks.score_ad({"days_active": 3, "is_active": False}, "velocity_tester", 0.1) == 3


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class FakeStore:
    def __init__(self, competitors, recent_ads, scorable_ads, fail_on=None):
        self.competitors = competitors
        self.recent_ads = recent_ads
        self.scorable_ads = scorable_ads
        self.fail_on = fail_on
        self.since = None
        self.track_updates = []
        self.changes = []
        self.signal_updates = []

    def fetch_track_inputs(self, since):
        self.since = since
        return self.competitors, self.recent_ads

    def update_competitor_track(self, competitor_id, track, new_ads_30d, survived_14d, survival_rate):
        if competitor_id == self.fail_on:
            raise RuntimeError("deadlock detected")
        self.track_updates.append((competitor_id, track, new_ads_30d, survived_14d, survival_rate))

    def insert_track_change(self, competitor_id, previous_track, new_track, new_ads_30d, survival_rate):
        self.changes.append((competitor_id, previous_track, new_track))

    def fetch_scorable_ads(self):
        return self.scorable_ads

    def update_ad_signal_strengths(self, updates):
        self.signal_updates.extend(updates)
        return len(updates)


def _tester_ads(competitor_id, count=10):
    """Half of the old-enough ads survive."""
    old = TODAY - timedelta(days=20)
    ads = []
    for i in range(count):
        launched = old if i < 4 else TODAY - timedelta(days=2)
        ads.append(
            {
                "id": f"{competitor_id}-{i}",
                "competitor_id": competitor_id,
                "launch_date": launched,
                "days_active": 20 if i < 2 else 2,
                "is_active": False,
            }
        )
    return ads


class TestClassificationPipeline:
    def test_classifies_logs_changes_and_rescores(self):
        store = FakeStore(
            competitors=[
                {"id": "c1", "name": "Acme", "track": "consolidator"},
                {"id": "c2", "name": "Zoom", "track": None},
            ],
            recent_ads=_tester_ads("c1") + [
                {"id": "z-1", "competitor_id": "c2", "launch_date": TODAY, "days_active": 1, "is_active": True},
            ],
            scorable_ads=[
                {"id": "c1-0", "competitor_id": "c1", "days_active": 20, "is_active": False},
                {"id": "z-old", "competitor_id": "c2", "days_active": 90, "variation_count": 5},
                {"id": "orphan", "competitor_id": "c9", "days_active": 5},
            ],
        )

        stats = tracks.run_classification_pipeline(today=TODAY, store=store)

        assert store.since == TODAY - timedelta(days=30)
        assert store.track_updates == [
            ("c1", "velocity_tester", 10, 2, 0.5),
            ("c2", "consolidator", 1, 0, None),
        ]
        assert store.changes == [("c1", "consolidator", "velocity_tester")]
        assert store.signal_updates == [
            ("c1-0", 100, "velocity_tester"),
            ("z-old", 100, "consolidator"),
        ]
        assert stats["total"] == 2
        assert stats["classified"] == 2
        assert stats["track_changes"] == 1
        assert stats["ads_scored"] == 2
        assert stats["failed"] == 0

    def test_failed_competitor_is_counted_and_skipped(self):
        store = FakeStore(
            competitors=[
                {"id": "c1", "name": "Acme", "track": None},
                {"id": "c2", "name": "Zoom", "track": None},
            ],
            recent_ads=[],
            scorable_ads=[
                {"id": "a1", "competitor_id": "c1", "days_active": 90},
                {"id": "a2", "competitor_id": "c2", "days_active": 90},
            ],
            fail_on="c1",
        )

        stats = tracks.run_classification_pipeline(today=TODAY, store=store)

        assert stats["failed"] == 1
        assert stats["classified"] == 1
        assert [u[0] for u in store.signal_updates] == ["a2"]
