"""
Convergence Engine

For each taxonomy value, how many independent competitors are increasing
their adoption of it at the same time. Agreement across competitors that
follow different strategic tracks is weighted up; the size of the active
competitive set sets the confidence.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .config import AnalysisConfig, get_analysis_config
from .models import CompetitorInfo, CompetitorTrack, TaggedAd
from .prevalence import velocity_between
from .taxonomy import ALL_DIMENSIONS

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Tunables
# ---------------------------------------------------------------------------

STRONG_RATIO = 0.6               # needs cross-track agreement too
EMERGING_RATIO = 0.4
CROSS_TRACK_MULTIPLIER = 1.5
CONFIDENCE_SATURATION = 10       # active competitors for full confidence
EXAMPLE_ADS_PER_COMPETITOR = 3

STRONG_CONVERGENCE = "STRONG_CONVERGENCE"
MODERATE_CONVERGENCE = "MODERATE_CONVERGENCE"
EMERGING_PATTERN = "EMERGING_PATTERN"
NO_CONVERGENCE = "NO_CONVERGENCE"


def _round4(n: float) -> float:
    return round(n, 4)


@dataclass
class CompetitorAdoption:
    """One competitor's own movement on a value."""
    competitor_id: str
    competitor_name: str
    track: str
    current_prevalence: float
    previous_prevalence: float
    velocity_percent: float
    increasing: bool
    example_ad_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "competitor_id": self.competitor_id,
            "competitor_name": self.competitor_name,
            "track": self.track,
            "current_prevalence": self.current_prevalence,
            "previous_prevalence": self.previous_prevalence,
            "velocity_percent": self.velocity_percent,
            "increasing": self.increasing,
            "example_ad_ids": list(self.example_ad_ids),
        }


@dataclass
class ConvergenceElement:
    dimension: str
    value: str
    convergence_ratio: float = 0.0
    adjusted_score: float = 0.0
    cross_track: bool = False
    classification: str = NO_CONVERGENCE
    confidence: float = 0.0
    competitors_increasing: int = 0
    total_competitors: int = 0
    track_a_increasing: int = 0
    track_b_increasing: int = 0
    competitors: List[CompetitorAdoption] = field(default_factory=list)
    is_new_alert: bool = False

    @property
    def key(self) -> Tuple[str, str]:
        return (self.dimension, self.value)

    def to_snapshot_row(self, brand_id: str, snapshot_date: date) -> Dict[str, Any]:
        return {
            "brand_id": brand_id,
            "snapshot_date": snapshot_date,
            "dimension": self.dimension,
            "value": self.value,
            "convergence_ratio": self.convergence_ratio,
            "adjusted_score": self.adjusted_score,
            "classification": self.classification,
            "cross_track": self.cross_track,
            "confidence": self.confidence,
            "competitors_increasing": self.competitors_increasing,
            "total_competitors": self.total_competitors,
            "track_a_increasing": self.track_a_increasing,
            "track_b_increasing": self.track_b_increasing,
            "competitor_details": [c.to_dict() for c in self.competitors if c.increasing],
            "is_new_alert": self.is_new_alert,
        }


@dataclass
class ConvergenceAnalysis:
    brand_id: str
    competitive_set: str
    analysis_date: date
    total_competitors: int
    confidence: float
    strong: List[ConvergenceElement] = field(default_factory=list)
    moderate: List[ConvergenceElement] = field(default_factory=list)
    emerging: List[ConvergenceElement] = field(default_factory=list)
    new_alerts: List[ConvergenceElement] = field(default_factory=list)
    snapshots_saved: int = 0


# ---------------------------------------------------------------------------
# Pure calculations
# ---------------------------------------------------------------------------

def calculate_confidence(total_competitors: int) -> float:
    """sqrt(n / 10) capped at 1.0; 0 for an empty set."""
    if total_competitors <= 0:
        return 0.0
    return _round4(min(1.0, math.sqrt(total_competitors / CONFIDENCE_SATURATION)))


def classify_convergence(convergence_ratio: float, cross_track: bool) -> str:
    if convergence_ratio >= STRONG_RATIO and cross_track:
        return STRONG_CONVERGENCE
    if convergence_ratio >= STRONG_RATIO:
        return MODERATE_CONVERGENCE
    if convergence_ratio >= EMERGING_RATIO:
        return EMERGING_PATTERN
    return NO_CONVERGENCE


def calculate_convergence(
    ads: Sequence[TaggedAd],
    competitors: Sequence[CompetitorInfo],
    dimension: str,
    value: str,
    current_cutoff: date,
    previous_cutoff: date,
) -> ConvergenceElement:
    """
    Convergence of one (dimension, value) pair.

    A competitor is active if it launched at least one ad on or after
    ``current_cutoff``; it is increasing if its own (unweighted) share of the
    value grew against ``[previous_cutoff, current_cutoff)``.
    """
    element = ConvergenceElement(dimension=dimension, value=value)
    increasing_tracks: Set[str] = set()

    for competitor in competitors:
        own_ads = [
            ad for ad in ads if ad.competitor_id == competitor.id and ad.launch_date is not None
        ]
        current = [ad for ad in own_ads if ad.launch_date >= current_cutoff]
        if not current:
            continue
        previous = [ad for ad in own_ads if previous_cutoff <= ad.launch_date < current_cutoff]

        element.total_competitors += 1
        current_with = [ad for ad in current if ad.tag_value(dimension) == value]
        previous_with = [ad for ad in previous if ad.tag_value(dimension) == value]
        current_share = len(current_with) / len(current)
        previous_share = len(previous_with) / len(previous) if previous else 0.0
        increasing = current_share > previous_share

        if increasing:
            element.competitors_increasing += 1
            if competitor.track:
                increasing_tracks.add(competitor.track)
            if competitor.track == CompetitorTrack.CONSOLIDATOR.value:
                element.track_a_increasing += 1
            elif competitor.track == CompetitorTrack.VELOCITY_TESTER.value:
                element.track_b_increasing += 1

        element.competitors.append(
            CompetitorAdoption(
                competitor_id=competitor.id,
                competitor_name=competitor.name or "Unknown",
                track=competitor.track or "unclassified",
                current_prevalence=_round4(current_share),
                previous_prevalence=_round4(previous_share),
                velocity_percent=round(velocity_between(current_share, previous_share), 2),
                increasing=increasing,
                example_ad_ids=[ad.id for ad in current_with[:EXAMPLE_ADS_PER_COMPETITOR]],
            )
        )

    if element.total_competitors == 0:
        return element

    ratio = element.competitors_increasing / element.total_competitors
    element.cross_track = len(increasing_tracks) >= 2
    multiplier = CROSS_TRACK_MULTIPLIER if element.cross_track else 1.0
    element.convergence_ratio = _round4(ratio)
    element.adjusted_score = _round4(min(1.0, ratio * multiplier))
    element.confidence = calculate_confidence(element.total_competitors)
    element.classification = classify_convergence(ratio, element.cross_track)
    return element


def flag_new_alerts(
    elements: Iterable[ConvergenceElement], previously_strong: Set[Tuple[str, str]]
) -> List[ConvergenceElement]:
    """Mark strong elements never recorded as strong before; returns them."""
    alerts = []
    for element in elements:
        if element.classification == STRONG_CONVERGENCE and element.key not in previously_strong:
            element.is_new_alert = True
            alerts.append(element)
    return alerts


# ---------------------------------------------------------------------------
# Brand analysis
# ---------------------------------------------------------------------------

def analyze_creative_convergence(
    brand_id: str,
    today: Optional[date] = None,
    store: Any = None,
    config: Optional[AnalysisConfig] = None,
) -> Optional[ConvergenceAnalysis]:
    if store is None:
        from . import db as store
    cfg = config or get_analysis_config()
    today = today or date.today()
    current_cutoff = today - timedelta(days=cfg.window_days)
    previous_cutoff = today - timedelta(days=2 * cfg.window_days)

    brand = store.fetch_brand(brand_id)
    if not brand:
        logger.warning("Brand %s not found", brand_id)
        return None
    competitors = store.fetch_competitors(brand_id)
    if not competitors:
        return None
    ads = store.fetch_tagged_ads(brand_id, previous_cutoff)
    if not ads:
        return None

    elements: List[ConvergenceElement] = []
    for dimension, values in ALL_DIMENSIONS.items():
        for value in values:
            element = calculate_convergence(
                ads, competitors, dimension, value, current_cutoff, previous_cutoff
            )
            if element.competitors_increasing > 0:
                elements.append(element)

    alerts = flag_new_alerts(elements, store.fetch_prior_strong_convergence(brand_id, today))
    elements.sort(key=lambda e: e.adjusted_score, reverse=True)

    rows = [
        e.to_snapshot_row(brand_id, today)
        for e in elements
        if e.classification != NO_CONVERGENCE
    ]
    saved = store.upsert_convergence_snapshots(rows)
    if alerts:
        logger.info(
            "Brand %s: %d new strong convergence alerts (%s)",
            brand_id, len(alerts), ", ".join(f"{e.dimension}={e.value}" for e in alerts),
        )

    return ConvergenceAnalysis(
        brand_id=brand_id,
        competitive_set=f"{brand.get('name') or brand_id} Competitors",
        analysis_date=today,
        total_competitors=len(competitors),
        confidence=calculate_confidence(len(competitors)),
        strong=[e for e in elements if e.classification == STRONG_CONVERGENCE],
        moderate=[e for e in elements if e.classification == MODERATE_CONVERGENCE],
        emerging=[e for e in elements if e.classification == EMERGING_PATTERN],
        new_alerts=alerts,
        snapshots_saved=saved,
    )


def run_convergence_pipeline(
    brand_ids: Optional[Iterable[str]] = None,
    today: Optional[date] = None,
    store: Any = None,
) -> Dict[str, Any]:
    if store is None:
        from . import db as store
    started = time.perf_counter()
    stats = {"brands_analyzed": 0, "snapshots_saved": 0, "alerts_generated": 0, "failed": 0, "duration_ms": 0}

    for brand_id in brand_ids if brand_ids is not None else store.fetch_brand_ids():
        try:
            result = analyze_creative_convergence(brand_id, today=today, store=store)
        except Exception as exc:
            logger.exception("Convergence analysis failed for brand %s: %s", brand_id, exc)
            stats["failed"] += 1
            continue
        if result is not None:
            stats["brands_analyzed"] += 1
            stats["snapshots_saved"] += result.snapshots_saved
            stats["alerts_generated"] += len(result.new_alerts)

    stats["duration_ms"] = int((time.perf_counter() - started) * 1000)
    return stats


__all__ = [
    "CompetitorAdoption",
    "ConvergenceElement",
    "ConvergenceAnalysis",
    "calculate_confidence",
    "classify_convergence",
    "calculate_convergence",
    "flag_new_alerts",
    "analyze_creative_convergence",
    "run_convergence_pipeline",
]
