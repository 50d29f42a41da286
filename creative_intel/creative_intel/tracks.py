"""
Competitor track classification and per-ad signal strength.

Competitors that launch many ads a month test creatives at volume
(``velocity_tester``); the rest refine a few long-running ads
(``consolidator``). The track decides how an ad's ``signal_strength`` is
scored, and that weight feeds every prevalence calculation.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .models import CompetitorTrack, as_date

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Tunables
# ---------------------------------------------------------------------------

NEW_ADS_THRESHOLD = 10           # new ads per 30 days to count as a velocity tester
SURVIVAL_DAYS = 14
LOOKBACK_DAYS = 30

# Consolidator ads: long-running and heavily varied creatives score higher
TRACK_A_DURATION_MAX_DAYS = 90
TRACK_A_VARIATION_MAX = 5
TRACK_A_DURATION_WEIGHT = 0.7
TRACK_A_VARIATION_WEIGHT = 0.3

# Velocity tester ads: surviving a harsh cull scores higher
TRACK_B_BASELINE_SURVIVAL = 0.5
TRACK_B_MIN_SIGNAL = 10
TRACK_B_KILLED_MAX = 15


@dataclass
class TrackClassification:
    competitor_id: str
    competitor_name: str
    track: str
    previous_track: Optional[str]
    track_changed: bool
    new_ads_30d: int
    survived_14d: int = 0
    survival_rate: Optional[float] = None


def classify_competitor(new_ads_30d: int, previous_track: Optional[str]) -> Tuple[str, bool]:
    """Return ``(track, track_changed)``; a first classification is never a change."""
    if new_ads_30d >= NEW_ADS_THRESHOLD:
        track = CompetitorTrack.VELOCITY_TESTER.value
    else:
        track = CompetitorTrack.CONSOLIDATOR.value
    return track, previous_track is not None and previous_track != track


def calculate_track_a_signal(days_active: int, variation_count: int) -> int:
    """Consolidator signal in 1-100 from running time and variation count."""
    duration_score = min(days_active / TRACK_A_DURATION_MAX_DAYS, 1)
    variation_score = min(variation_count / TRACK_A_VARIATION_MAX, 1)
    raw = (duration_score * TRACK_A_DURATION_WEIGHT + variation_score * TRACK_A_VARIATION_WEIGHT) * 100
    return round(max(1, min(100, raw)))


def calculate_track_b_signal(survived: bool, survival_rate: float, days_active: int) -> int:
    """
    Velocity tester signal in 1-100.

    A killed ad scores low (at most 15). A survivor scores by how selective
    the competitor's cull is: surviving a 10% survival rate is a strong
    signal, surviving an 80% rate a weak one.
    """
    if not survived:
        return round(max(1, min(TRACK_B_KILLED_MAX, days_active)))
    selectivity = 1 - survival_rate
    multiplier = selectivity / (1 - TRACK_B_BASELINE_SURVIVAL)
    raw = min(multiplier, 1) * 100
    return round(max(TRACK_B_MIN_SIGNAL, min(100, raw)))


def _survived(ad: Mapping[str, Any]) -> bool:
    return bool(ad.get("is_active")) or int(ad.get("days_active") or 0) >= SURVIVAL_DAYS


def survival_stats(
    ads: List[Mapping[str, Any]], survival_cutoff: date
) -> Tuple[int, Optional[float]]:
    """Survivors among ads launched on or before the cutoff, and their rate."""
    eligible = [
        ad for ad in ads
        if ad.get("launch_date") is not None and as_date(ad["launch_date"]) <= survival_cutoff
    ]
    survived = sum(1 for ad in eligible if _survived(ad))
    return survived, (survived / len(eligible) if eligible else None)


def score_ad(ad: Mapping[str, Any], track: str, survival_rate: Optional[float]) -> int:
    days_active = int(ad.get("days_active") or 0)
    if track == CompetitorTrack.CONSOLIDATOR.value:
        return calculate_track_a_signal(days_active, int(ad.get("variation_count") or 1))
    rate = survival_rate if survival_rate is not None else TRACK_B_BASELINE_SURVIVAL
    return calculate_track_b_signal(_survived(ad), rate, days_active)


def run_classification_pipeline(today: Optional[date] = None, store: Any = None) -> Dict[str, Any]:
    """Classify every competitor, log track changes, then rescore all their ads."""
    if store is None:
        from . import db as store
    started = time.perf_counter()
    today = today or date.today()
    stats = {"total": 0, "classified": 0, "track_changes": 0, "ads_scored": 0, "failed": 0, "duration_ms": 0}

    competitors, recent_ads = store.fetch_track_inputs(today - timedelta(days=LOOKBACK_DAYS))
    stats["total"] = len(competitors)
    survival_cutoff = today - timedelta(days=SURVIVAL_DAYS)

    ads_by_competitor: Dict[str, List[Mapping[str, Any]]] = {}
    for ad in recent_ads:
        ads_by_competitor.setdefault(str(ad["competitor_id"]), []).append(ad)

    results: Dict[str, TrackClassification] = {}
    for competitor in competitors:
        competitor_id = str(competitor["id"])
        try:
            own_ads = ads_by_competitor.get(competitor_id, [])
            previous_track = competitor.get("track") or None
            track, changed = classify_competitor(len(own_ads), previous_track)

            survived, rate = 0, None
            if track == CompetitorTrack.VELOCITY_TESTER.value and own_ads:
                survived, rate = survival_stats(own_ads, survival_cutoff)

            store.update_competitor_track(competitor_id, track, len(own_ads), survived, rate)
            if changed:
                store.insert_track_change(competitor_id, previous_track, track, len(own_ads), rate)
                stats["track_changes"] += 1
                logger.info(
                    "Competitor %s moved %s -> %s (%d new ads)",
                    competitor.get("name"), previous_track, track, len(own_ads),
                )

            results[competitor_id] = TrackClassification(
                competitor_id=competitor_id,
                competitor_name=competitor.get("name") or "Unknown",
                track=track,
                previous_track=previous_track,
                track_changed=changed,
                new_ads_30d=len(own_ads),
                survived_14d=survived,
                survival_rate=rate,
            )
            stats["classified"] += 1
        except Exception as exc:
            logger.exception("Failed to classify competitor %s: %s", competitor.get("name"), exc)
            stats["failed"] += 1

    updates = []
    for ad in store.fetch_scorable_ads():
        result = results.get(str(ad["competitor_id"]))
        if result is None:
            continue
        updates.append((ad["id"], score_ad(ad, result.track, result.survival_rate), result.track))
    stats["ads_scored"] = store.update_ad_signal_strengths(updates)

    stats["duration_ms"] = int((time.perf_counter() - started) * 1000)
    return stats


__all__ = [
    "TrackClassification",
    "classify_competitor",
    "calculate_track_a_signal",
    "calculate_track_b_signal",
    "survival_stats",
    "score_ad",
    "run_classification_pipeline",
]
