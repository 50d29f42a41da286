"""
Prevalence & Velocity Engine

Weighted prevalence: for every taxonomy dimension, the signal-weighted share
of a cohort carrying each value. Ads without a tag for a dimension are left
out of that dimension's denominator, so each dimension sums to 1.0 whenever
at least one ad carries it.

Velocity: relative change of a value's prevalence between the current window
and the prior window of equal length. A value that was absent before and is
present now is a "new pattern" with velocity 1.0 rather than infinity.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .config import AnalysisConfig, get_analysis_config
from .models import TRACK_FILTERS, CompetitorTrack, TaggedAd
from .taxonomy import ALL_DIMENSIONS, VIDEO_TAXONOMY, VISUAL_TAXONOMY

logger = logging.getLogger(__name__)

PrevalenceTable = Dict[str, Dict[str, float]]

# ---------------------------------------------------------------------------
# Tunables
# ---------------------------------------------------------------------------

VELOCITY_THRESHOLD = 0.3         # +/-30% separates accelerating/declining from stable
PRESENCE_FLOOR = 0.01            # below this a prevalence counts as "absent"
NEW_PATTERN_VELOCITY = 1.0       # velocity assigned to a value with no prior presence
DIVERGENCE_THRESHOLD = 0.15      # track divergence worth reporting

DIRECTION_ACCELERATING = "accelerating"
DIRECTION_DECLINING = "declining"
DIRECTION_STABLE = "stable"


@dataclass
class ElementVelocity:
    """Velocity of one (dimension, value) pair between two windows."""
    dimension: str
    value: str
    current_prevalence: float
    previous_prevalence: float
    velocity_percent: float
    direction: str
    ad_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dimension": self.dimension,
            "value": self.value,
            "current_prevalence": self.current_prevalence,
            "previous_prevalence": self.previous_prevalence,
            "velocity_percent": self.velocity_percent,
            "direction": self.direction,
            "ad_count": self.ad_count,
        }


@dataclass
class TrackDivergence:
    dimension: str
    value: str
    consolidator_prevalence: float
    velocity_tester_prevalence: float
    divergence_percent: float
    direction: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dimension": self.dimension,
            "value": self.value,
            "consolidator_prevalence": self.consolidator_prevalence,
            "velocity_tester_prevalence": self.velocity_tester_prevalence,
            "divergence_percent": self.divergence_percent,
            "direction": self.direction,
        }


@dataclass
class VelocityAnalysis:
    """Velocity report for one brand's competitive set on one date."""
    brand_id: str
    competitive_set: str
    analysis_date: date
    top_accelerating: List[ElementVelocity] = field(default_factory=list)
    top_declining: List[ElementVelocity] = field(default_factory=list)
    breakdown: Dict[str, Dict[str, Dict[str, Any]]] = field(default_factory=dict)
    track_divergences: List[TrackDivergence] = field(default_factory=list)
    snapshots_saved: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "brand_id": self.brand_id,
            "competitive_set": self.competitive_set,
            "analysis_date": self.analysis_date.isoformat(),
            "top_accelerating": [v.to_dict() for v in self.top_accelerating],
            "top_declining": [v.to_dict() for v in self.top_declining],
            "breakdown": self.breakdown,
            "track_divergences": [d.to_dict() for d in self.track_divergences],
            "snapshots_saved": self.snapshots_saved,
        }


# ---------------------------------------------------------------------------
# Pure calculations
# ---------------------------------------------------------------------------

def filter_by_track(ads: Iterable[TaggedAd], track_filter: str = "all") -> List[TaggedAd]:
    if track_filter == "all":
        return list(ads)
    return [ad for ad in ads if ad.competitor_track == track_filter]


def calculate_weighted_prevalence(
    ads: Sequence[TaggedAd], track_filter: str = "all"
) -> PrevalenceTable:
    """
    Weighted share of each taxonomy value, normalized per dimension.

    Returns ``{dimension: {value: share}}`` zero-filled over every known value,
    or ``{}`` when no ad matches the track filter. Video dimensions are only
    read from video ads; values outside the registry are ignored.
    """
    cohort = filter_by_track(ads, track_filter)
    if not cohort:
        return {}

    table: PrevalenceTable = {
        dimension: {value: 0.0 for value in values}
        for dimension, values in ALL_DIMENSIONS.items()
    }

    for ad in cohort:
        weight = ad.weight
        for dimension in VISUAL_TAXONOMY:
            value = ad.tags.get(dimension)
            if value and value in table[dimension]:
                table[dimension][value] += weight
        if ad.is_video:
            for dimension in VIDEO_TAXONOMY:
                value = ad.video_tags.get(dimension)
                if value and value in table[dimension]:
                    table[dimension][value] += weight

    for values in table.values():
        dimension_total = sum(values.values())
        if dimension_total > 0:
            for value in values:
                values[value] = values[value] / dimension_total

    return table


def classify_direction(velocity: float, threshold: float = VELOCITY_THRESHOLD) -> str:
    if velocity > threshold:
        return DIRECTION_ACCELERATING
    if velocity < -threshold:
        return DIRECTION_DECLINING
    return DIRECTION_STABLE


def velocity_between(current: float, previous: float) -> float:
    """
    (current - previous) / previous. A value absent before (at or below the
    presence floor) and present now is a new pattern at exactly 1.0; a value
    below the floor in both windows is 0.
    """
    if previous > PRESENCE_FLOOR:
        return (current - previous) / previous
    if current > PRESENCE_FLOOR:
        return NEW_PATTERN_VELOCITY
    return 0.0


def calculate_velocity(
    current: Mapping[str, Mapping[str, float]],
    previous: Mapping[str, Mapping[str, float]],
    threshold: float = VELOCITY_THRESHOLD,
) -> List[ElementVelocity]:
    """One ``ElementVelocity`` per value present in either table."""
    velocities: List[ElementVelocity] = []
    for dimension in ALL_DIMENSIONS:
        cur_values = current.get(dimension, {})
        prev_values = previous.get(dimension, {})
        if not cur_values and not prev_values:
            continue
        for value in ALL_DIMENSIONS[dimension]:
            cur = cur_values.get(value, 0.0)
            prev = prev_values.get(value, 0.0)
            velocity = velocity_between(cur, prev)
            velocities.append(
                ElementVelocity(
                    dimension=dimension,
                    value=value,
                    current_prevalence=round(cur, 4),
                    previous_prevalence=round(prev, 4),
                    velocity_percent=round(velocity, 2),
                    direction=classify_direction(velocity, threshold),
                )
            )
    return velocities


def detect_track_divergences(
    consolidator: Mapping[str, Mapping[str, float]],
    velocity_tester: Mapping[str, Mapping[str, float]],
    threshold: float = DIVERGENCE_THRESHOLD,
) -> List[TrackDivergence]:
    """Values whose prevalence differs between the two tracks by at least ``threshold``."""
    divergences: List[TrackDivergence] = []
    for dimension, values in consolidator.items():
        for value, cons in values.items():
            vt = velocity_tester.get(dimension, {}).get(value, 0.0)
            diff = vt - cons
            if abs(diff) >= threshold:
                divergences.append(
                    TrackDivergence(
                        dimension=dimension,
                        value=value,
                        consolidator_prevalence=round(cons, 4),
                        velocity_tester_prevalence=round(vt, 4),
                        divergence_percent=round(diff, 2),
                        direction="velocity_testers_leading" if diff > 0 else "consolidators_leading",
                    )
                )
    divergences.sort(key=lambda d: abs(d.divergence_percent), reverse=True)
    return divergences


def count_ads_with(ads: Iterable[TaggedAd], dimension: str, value: str) -> int:
    return sum(1 for ad in ads if ad.tag_value(dimension) == value)


def split_windows(
    ads: Sequence[TaggedAd], today: date, window_days: int
) -> Tuple[List[TaggedAd], List[TaggedAd]]:
    """Current window ``[today - w, today]`` and previous ``[today - 2w, today - w)``."""
    current_start = today - timedelta(days=window_days)
    previous_start = today - timedelta(days=2 * window_days)
    dated = [ad for ad in ads if ad.launch_date is not None]
    if len(dated) != len(ads):
        logger.debug("Excluding %d undated ads from the velocity windows", len(ads) - len(dated))
    current = [ad for ad in dated if ad.launch_date >= current_start]
    previous = [ad for ad in dated if previous_start <= ad.launch_date < current_start]
    return current, previous


# ---------------------------------------------------------------------------
# Brand analysis
# ---------------------------------------------------------------------------

def _snapshot_rows(
    brand_id: str,
    today: date,
    period_start: date,
    current_ads: Sequence[TaggedAd],
    previous_ads: Sequence[TaggedAd],
    threshold: float,
) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for track_filter in TRACK_FILTERS:
        cohort = filter_by_track(current_ads, track_filter)
        current = calculate_weighted_prevalence(cohort)
        if not current:
            continue
        previous = calculate_weighted_prevalence(filter_by_track(previous_ads, track_filter))
        total_signal = sum(ad.weight for ad in cohort)
        for velocity in calculate_velocity(current, previous, threshold):
            weighted = current[velocity.dimension][velocity.value]
            if weighted <= 0:
                continue
            rows.append({
                "brand_id": brand_id,
                "snapshot_date": today,
                "period_start": period_start,
                "period_end": today,
                "track_filter": track_filter,
                "dimension": velocity.dimension,
                "value": velocity.value,
                "weighted_prevalence": round(weighted, 4),
                "previous_prevalence": velocity.previous_prevalence,
                "velocity_percent": velocity.velocity_percent,
                "direction": velocity.direction,
                "ad_count": count_ads_with(cohort, velocity.dimension, velocity.value),
                "total_signal_strength": total_signal,
            })
    return rows


def analyze_creative_velocity(
    brand_id: str,
    today: Optional[date] = None,
    store: Any = None,
    config: Optional[AnalysisConfig] = None,
) -> Optional[VelocityAnalysis]:
    """
    Velocity analysis for one brand's competitive set.

    Returns None when the brand, its competitors or their tagged ads are
    missing. Snapshot rows are upserted so re-running a date overwrites it.
    """
    if store is None:
        from . import db as store
    cfg = config or get_analysis_config()
    today = today or date.today()

    brand = store.fetch_brand(brand_id)
    if not brand:
        logger.warning("Brand %s not found", brand_id)
        return None
    if not store.fetch_competitors(brand_id):
        logger.info("Brand %s has no competitors", brand_id)
        return None
    ads = store.fetch_tagged_ads(brand_id, today - timedelta(days=cfg.lookback_days))
    if not ads:
        logger.info("Brand %s has no tagged competitor ads", brand_id)
        return None

    current_ads, previous_ads = split_windows(ads, today, cfg.window_days)
    current_all = calculate_weighted_prevalence(current_ads)
    previous_all = calculate_weighted_prevalence(previous_ads)

    velocities = calculate_velocity(current_all, previous_all, cfg.velocity_threshold)
    for velocity in velocities:
        velocity.ad_count = count_ads_with(current_ads, velocity.dimension, velocity.value)

    ranked = sorted(
        (
            v for v in velocities
            if v.current_prevalence > PRESENCE_FLOOR or v.previous_prevalence > PRESENCE_FLOOR
        ),
        key=lambda v: abs(v.velocity_percent),
        reverse=True,
    )

    breakdown: Dict[str, Dict[str, Dict[str, Any]]] = {}
    for v in velocities:
        breakdown.setdefault(v.dimension, {})[v.value] = {
            "current": v.current_prevalence,
            "previous": v.previous_prevalence,
            "velocity": v.velocity_percent,
            "direction": v.direction,
        }

    divergences = detect_track_divergences(
        calculate_weighted_prevalence(current_ads, CompetitorTrack.CONSOLIDATOR.value),
        calculate_weighted_prevalence(current_ads, CompetitorTrack.VELOCITY_TESTER.value),
        cfg.divergence_threshold,
    )

    rows = _snapshot_rows(
        brand_id,
        today,
        today - timedelta(days=cfg.window_days),
        current_ads,
        previous_ads,
        cfg.velocity_threshold,
    )
    saved = store.upsert_velocity_snapshots(rows)

    return VelocityAnalysis(
        brand_id=brand_id,
        competitive_set=f"{brand.get('name') or brand_id} Competitors",
        analysis_date=today,
        top_accelerating=[v for v in ranked if v.direction == DIRECTION_ACCELERATING][: cfg.velocity_top_n],
        top_declining=[v for v in ranked if v.direction == DIRECTION_DECLINING][: cfg.velocity_top_n],
        breakdown=breakdown,
        track_divergences=divergences,
        snapshots_saved=saved,
    )


def run_velocity_pipeline(
    brand_ids: Optional[Iterable[str]] = None,
    today: Optional[date] = None,
    store: Any = None,
) -> Dict[str, Any]:
    """Velocity analysis for every brand; one brand failing does not stop the rest."""
    if store is None:
        from . import db as store
    started = time.perf_counter()
    stats = {"brands_analyzed": 0, "snapshots_saved": 0, "failed": 0, "duration_ms": 0}

    for brand_id in brand_ids if brand_ids is not None else store.fetch_brand_ids():
        try:
            result = analyze_creative_velocity(brand_id, today=today, store=store)
        except Exception as exc:
            logger.exception("Velocity analysis failed for brand %s: %s", brand_id, exc)
            stats["failed"] += 1
            continue
        if result is not None:
            stats["brands_analyzed"] += 1
            stats["snapshots_saved"] += result.snapshots_saved

    stats["duration_ms"] = int((time.perf_counter() - started) * 1000)
    return stats


__all__ = [
    "ElementVelocity",
    "TrackDivergence",
    "VelocityAnalysis",
    "calculate_weighted_prevalence",
    "calculate_velocity",
    "classify_direction",
    "velocity_between",
    "detect_track_divergences",
    "split_windows",
    "analyze_creative_velocity",
    "run_velocity_pipeline",
]
