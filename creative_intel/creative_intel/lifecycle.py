"""
Ad Lifecycle Engine

Velocity testers launch ads in weekly batches and cull most of them within
two weeks. A launch-week cohort whose survival rate falls below 30% while
still keeping at least one ad alive is a breakout cohort: comparing the tag
profile of the survivors with the killed ads shows which creative traits the
competitor kept paying for.

    survivor   = still active after 14 days
    cash cow   = breakout survivor still active after 60 days
    lift       = survivor share / killed share (10 when the killed side lacks it)

Cohorts are only judged once their launch week ended at least 14 days ago,
so every ad in them had the chance to reach survivor age.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .config import AnalysisConfig, get_analysis_config
from .models import CompetitorTrack, LifecycleAd
from .taxonomy import ALL_DIMENSIONS, VIDEO_TAXONOMY, VISUAL_TAXONOMY, is_valid_value

logger = logging.getLogger(__name__)

TagProfile = Dict[str, Dict[str, float]]

# ---------------------------------------------------------------------------
# Tunables
# ---------------------------------------------------------------------------

COHORT_WINDOW_DAYS = 7
BREAKOUT_THRESHOLD_DAYS = 14     # survivor age, and cohort age before it is judged
CASH_COW_THRESHOLD_DAYS = 60
BREAKOUT_SURVIVAL_RATE_THRESHOLD = 0.30
MIN_COHORT_SIZE = 3
PRESENCE_FLOOR = 0.01
MIN_LIFT = 1.5
ABSENT_LIFT = 10.0               # lift when the other side never shows the value
TOP_TRAITS = 5
SUMMARY_TRAITS = 3
MAX_PATTERNS = 20

SURVIVOR_HIGHER = "survivor_higher"
KILLED_HIGHER = "killed_higher"

CASH_COW_TRAIT_DIMENSIONS = ("format_type", "hook_type_visual", "human_presence", "emotion_energy_level")


@dataclass
class Cohort:
    """One competitor's ads launched in the same Monday-to-Sunday week."""
    competitor_id: str
    competitor_name: str
    cohort_start: date
    cohort_end: date
    ads: List[LifecycleAd]
    survivors: List[LifecycleAd]
    killed: List[LifecycleAd]
    survival_rate: float
    is_breakout_cohort: bool


@dataclass
class DifferentiatingElement:
    dimension: str
    value: str
    survivor_prevalence: float
    killed_prevalence: float
    lift: float
    direction: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dimension": self.dimension,
            "value": self.value,
            "survivor_prevalence": self.survivor_prevalence,
            "killed_prevalence": self.killed_prevalence,
            "lift": self.lift,
            "direction": self.direction,
        }


@dataclass
class BreakoutEvent:
    brand_id: str
    competitor_id: str
    competitor_name: str
    cohort_start: date
    cohort_end: date
    analysis_date: date
    total_in_cohort: int
    survivors_count: int
    killed_count: int
    survival_rate: float
    survivor_ad_ids: List[str] = field(default_factory=list)
    killed_ad_ids: List[str] = field(default_factory=list)
    survivor_tag_profile: TagProfile = field(default_factory=dict)
    killed_tag_profile: TagProfile = field(default_factory=dict)
    differentiating_elements: List[DifferentiatingElement] = field(default_factory=list)
    top_survivor_traits: List[str] = field(default_factory=list)
    analysis_summary: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "brand_id": self.brand_id,
            "competitor_id": self.competitor_id,
            "competitor_name": self.competitor_name,
            "cohort_start": self.cohort_start.isoformat(),
            "cohort_end": self.cohort_end.isoformat(),
            "analysis_date": self.analysis_date.isoformat(),
            "total_in_cohort": self.total_in_cohort,
            "survivors_count": self.survivors_count,
            "killed_count": self.killed_count,
            "survival_rate": round(self.survival_rate, 4),
            "survivor_ad_ids": list(self.survivor_ad_ids),
            "killed_ad_ids": list(self.killed_ad_ids),
            "survivor_tag_profile": self.survivor_tag_profile,
            "killed_tag_profile": self.killed_tag_profile,
            "differentiating_elements": [e.to_dict() for e in self.differentiating_elements],
            "top_survivor_traits": list(self.top_survivor_traits),
            "analysis_summary": self.analysis_summary,
        }

    def to_row(self) -> Dict[str, Any]:
        row = self.to_dict()
        row.update(
            cohort_start=self.cohort_start,
            cohort_end=self.cohort_end,
            analysis_date=self.analysis_date,
        )
        return row


@dataclass
class CashCowTransition:
    ad_id: str
    competitor_name: str
    days_active: int
    breakout_date: date
    cash_cow_date: date
    traits: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ad_id": self.ad_id,
            "competitor_name": self.competitor_name,
            "days_active": self.days_active,
            "breakout_date": self.breakout_date.isoformat(),
            "cash_cow_date": self.cash_cow_date.isoformat(),
            "traits": list(self.traits),
        }


@dataclass
class WinningPattern:
    dimension: str
    value: str
    frequency: int
    avg_lift: float
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dimension": self.dimension,
            "value": self.value,
            "frequency": self.frequency,
            "avg_lift": self.avg_lift,
            "confidence": self.confidence,
        }


@dataclass
class LifecycleAnalysis:
    """Breakout and cash cow report for one brand's velocity testers."""
    brand_id: str
    analysis_date: date
    breakout_events: List[BreakoutEvent] = field(default_factory=list)
    cash_cow_transitions: List[CashCowTransition] = field(default_factory=list)
    winning_patterns: List[WinningPattern] = field(default_factory=list)
    total_breakout_ads: int = 0
    total_cash_cows: int = 0
    market_signals: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "brand_id": self.brand_id,
            "analysis_date": self.analysis_date.isoformat(),
            "breakout_events": [e.to_dict() for e in self.breakout_events],
            "cash_cow_transitions": [c.to_dict() for c in self.cash_cow_transitions],
            "winning_patterns": [p.to_dict() for p in self.winning_patterns],
            "total_breakout_ads": self.total_breakout_ads,
            "total_cash_cows": self.total_cash_cows,
            "market_signals": self.market_signals,
        }

    def to_snapshot_row(self) -> Dict[str, Any]:
        return {
            "brand_id": self.brand_id,
            "snapshot_date": self.analysis_date,
            "total_breakout_events": len(self.breakout_events),
            "total_breakout_ads": self.total_breakout_ads,
            "total_cash_cows": self.total_cash_cows,
            "winning_patterns": [p.to_dict() for p in self.winning_patterns],
            "cash_cow_transitions": [c.to_dict() for c in self.cash_cow_transitions],
            "analysis_json": self.to_dict(),
        }


# ---------------------------------------------------------------------------
# Cohort calendar
# ---------------------------------------------------------------------------

def cohort_week(launch_date: date) -> date:
    """Monday of the launch week."""
    return launch_date - timedelta(days=launch_date.weekday())


def cohort_end(cohort_start: date) -> date:
    return cohort_start + timedelta(days=COHORT_WINDOW_DAYS - 1)


def is_cohort_ready(end: date, today: date) -> bool:
    return (today - end).days >= BREAKOUT_THRESHOLD_DAYS


def is_survivor(ad: LifecycleAd) -> bool:
    return ad.is_active and ad.days_active >= BREAKOUT_THRESHOLD_DAYS


def reached_cash_cow(ad: LifecycleAd) -> bool:
    return ad.is_active and ad.days_active >= CASH_COW_THRESHOLD_DAYS


def _week_of(ad: LifecycleAd) -> Optional[date]:
    if ad.cohort_week is not None:
        return ad.cohort_week
    if ad.launch_date is not None:
        return cohort_week(ad.launch_date)
    return None


# ---------------------------------------------------------------------------
# Pure calculations
# ---------------------------------------------------------------------------

def calculate_tag_profile(ads: Sequence[LifecycleAd]) -> TagProfile:
    """
    Unweighted share of each taxonomy value among ``ads``, per dimension,
    rounded to 4 dp. Zero-filled over every known value; ``{}`` for no ads.
    """
    if not ads:
        return {}

    profile: TagProfile = {
        dimension: {value: 0.0 for value in values}
        for dimension, values in ALL_DIMENSIONS.items()
    }
    for ad in ads:
        for dimension in VISUAL_TAXONOMY:
            value = ad.tags.get(dimension)
            if value and is_valid_value(dimension, value):
                profile[dimension][value] += 1
        if ad.is_video:
            for dimension in VIDEO_TAXONOMY:
                value = ad.video_tags.get(dimension)
                if value and is_valid_value(dimension, value):
                    profile[dimension][value] += 1

    for values in profile.values():
        total = sum(values.values())
        if total > 0:
            for value in values:
                values[value] = round(values[value] / total, 4)
    return profile


def _lift(higher: float, lower: float) -> float:
    if lower > PRESENCE_FLOOR:
        return higher / lower
    if higher > PRESENCE_FLOOR:
        return ABSENT_LIFT
    return 1.0


def find_differentiating_elements(
    survivor_profile: TagProfile, killed_profile: TagProfile
) -> List[DifferentiatingElement]:
    """Values at least 1.5x more common on one side, highest lift first."""
    elements: List[DifferentiatingElement] = []
    for dimension, values in survivor_profile.items():
        for value, survivor in values.items():
            killed = killed_profile.get(dimension, {}).get(value, 0.0)
            if survivor < PRESENCE_FLOOR and killed < PRESENCE_FLOOR:
                continue
            if survivor >= killed:
                lift, direction = _lift(survivor, killed), SURVIVOR_HIGHER
            else:
                lift, direction = _lift(killed, survivor), KILLED_HIGHER
            if lift < MIN_LIFT:
                continue
            elements.append(
                DifferentiatingElement(
                    dimension=dimension,
                    value=value,
                    survivor_prevalence=round(survivor, 4),
                    killed_prevalence=round(killed, 4),
                    lift=round(lift, 2),
                    direction=direction,
                )
            )
    elements.sort(key=lambda e: e.lift, reverse=True)
    return elements


def generate_breakout_summary(event: BreakoutEvent) -> str:
    percent = round(event.survival_rate * 100)
    traits = ", ".join(event.top_survivor_traits[:SUMMARY_TRAITS])
    trait_note = f" Survivor traits: {traits}." if traits else ""
    return (
        f"{event.competitor_name} cohort ({event.cohort_start.isoformat()}): "
        f"{event.survivors_count}/{event.total_in_cohort} survived ({percent}%).{trait_note}"
    )


def aggregate_winning_patterns(events: Sequence[BreakoutEvent]) -> List[WinningPattern]:
    """
    Survivor-favoured values across breakout events. Confidence grows with the
    share of events showing the value: ``min(1, sqrt(count / events))``.
    """
    if not events:
        return []

    lifts: Dict[Tuple[str, str], List[float]] = {}
    for event in events:
        for element in event.differentiating_elements:
            if element.direction != SURVIVOR_HIGHER:
                continue
            lifts.setdefault((element.dimension, element.value), []).append(element.lift)

    patterns = [
        WinningPattern(
            dimension=dimension,
            value=value,
            frequency=len(values),
            avg_lift=round(sum(values) / len(values), 2),
            confidence=round(min(1.0, math.sqrt(len(values) / len(events))), 4),
        )
        for (dimension, value), values in lifts.items()
    ]
    patterns.sort(key=lambda p: p.confidence * p.avg_lift, reverse=True)
    return patterns[:MAX_PATTERNS]


def build_cohorts(ads: Iterable[LifecycleAd], today: date) -> List[Cohort]:
    """
    Group ads by (competitor, launch week) and judge every cohort that is
    large enough and old enough. Ads with neither a stored cohort week nor a
    launch date cannot be placed and are skipped.
    """
    groups: Dict[Tuple[str, date], List[LifecycleAd]] = {}
    undated = 0
    for ad in ads:
        week = _week_of(ad)
        if week is None:
            undated += 1
            continue
        groups.setdefault((ad.competitor_id, week), []).append(ad)
    if undated:
        logger.debug("Skipping %d ads without a launch week", undated)

    cohorts: List[Cohort] = []
    for (competitor_id, start), cohort_ads in groups.items():
        if len(cohort_ads) < MIN_COHORT_SIZE:
            continue
        end = cohort_end(start)
        if not is_cohort_ready(end, today):
            continue
        survivors = [ad for ad in cohort_ads if is_survivor(ad)]
        killed = [ad for ad in cohort_ads if not is_survivor(ad)]
        survival_rate = len(survivors) / len(cohort_ads)
        cohorts.append(
            Cohort(
                competitor_id=competitor_id,
                competitor_name=cohort_ads[0].competitor_name,
                cohort_start=start,
                cohort_end=end,
                ads=cohort_ads,
                survivors=survivors,
                killed=killed,
                survival_rate=survival_rate,
                is_breakout_cohort=bool(survivors) and survival_rate < BREAKOUT_SURVIVAL_RATE_THRESHOLD,
            )
        )
    return cohorts


def analyze_breakout_cohort(cohort: Cohort, brand_id: str, analysis_date: date) -> Optional[BreakoutEvent]:
    """Profile survivors against killed ads; only tagged ads enter the profiles."""
    if not cohort.is_breakout_cohort:
        return None

    tagged_survivors = [ad for ad in cohort.survivors if ad.is_tagged]
    tagged_killed = [ad for ad in cohort.killed if ad.is_tagged]
    survivor_profile = calculate_tag_profile(tagged_survivors)
    killed_profile = calculate_tag_profile(tagged_killed)

    elements: List[DifferentiatingElement] = []
    if tagged_survivors and tagged_killed:
        elements = find_differentiating_elements(survivor_profile, killed_profile)
    traits = [
        f"{e.value} ({e.dimension})" for e in elements if e.direction == SURVIVOR_HIGHER
    ][:TOP_TRAITS]

    event = BreakoutEvent(
        brand_id=brand_id,
        competitor_id=cohort.competitor_id,
        competitor_name=cohort.competitor_name,
        cohort_start=cohort.cohort_start,
        cohort_end=cohort.cohort_end,
        analysis_date=analysis_date,
        total_in_cohort=len(cohort.ads),
        survivors_count=len(cohort.survivors),
        killed_count=len(cohort.killed),
        survival_rate=cohort.survival_rate,
        survivor_ad_ids=[ad.id for ad in cohort.survivors],
        killed_ad_ids=[ad.id for ad in cohort.killed],
        survivor_tag_profile=survivor_profile,
        killed_tag_profile=killed_profile,
        differentiating_elements=elements,
        top_survivor_traits=traits,
    )
    event.analysis_summary = generate_breakout_summary(event)
    return event


def detect_cash_cow_transitions(candidates: Iterable[LifecycleAd], today: date) -> List[CashCowTransition]:
    """Breakout ads that stayed live long enough to become cash cows."""
    transitions: List[CashCowTransition] = []
    for ad in candidates:
        if not ad.is_breakout or ad.is_cash_cow or not reached_cash_cow(ad):
            continue
        traits = [
            f"{ad.tags[dimension]} ({dimension})"
            for dimension in CASH_COW_TRAIT_DIMENSIONS
            if ad.tags.get(dimension) is not None
        ]
        transitions.append(
            CashCowTransition(
                ad_id=ad.id,
                competitor_name=ad.competitor_name,
                days_active=ad.days_active,
                breakout_date=ad.breakout_detected_at or today,
                cash_cow_date=today,
                traits=traits,
            )
        )
    return transitions


def summarize_market_signals(
    events: Sequence[BreakoutEvent],
    total_breakout_ads: int,
    total_cash_cows: int,
    patterns: Sequence[WinningPattern],
) -> str:
    if not events:
        return "No breakout cohorts detected in current analysis window."
    top = ", ".join(f"{p.value} ({p.dimension})" for p in patterns[:SUMMARY_TRAITS]) or "none yet"
    return (
        f"Found {len(events)} breakout cohort(s) with {total_breakout_ads} surviving ad(s). "
        f"{total_cash_cows} cash cow transition(s) detected. Top winning patterns: {top}."
    )


# ---------------------------------------------------------------------------
# Brand analysis
# ---------------------------------------------------------------------------

def analyze_ad_lifecycle(
    brand_id: str,
    today: Optional[date] = None,
    store: Any = None,
    config: Optional[AnalysisConfig] = None,
) -> Optional[LifecycleAnalysis]:
    """
    Lifecycle analysis for one brand's velocity tester competitors.

    Returns None when the brand, its velocity testers or their recent ads are
    missing. Breakout events and the daily snapshot are upserted on their
    natural keys; surviving ads are flagged as breakouts and long-lived ones
    as cash cows, and launch weeks are backfilled onto ads that lack one.
    """
    if store is None:
        from . import db as store
    cfg = config or get_analysis_config()
    today = today or date.today()

    if not store.fetch_brand(brand_id):
        logger.warning("Brand %s not found", brand_id)
        return None
    testers = [
        c for c in store.fetch_competitors(brand_id)
        if c.track == CompetitorTrack.VELOCITY_TESTER.value
    ]
    if not testers:
        logger.info("Brand %s has no velocity tester competitors", brand_id)
        return None
    ads = store.fetch_lifecycle_ads([c.id for c in testers], today - timedelta(days=cfg.lookback_days))
    if not ads:
        logger.info("Brand %s has no recent velocity tester ads", brand_id)
        return None

    events: List[BreakoutEvent] = []
    for cohort in build_cohorts(ads, today):
        event = analyze_breakout_cohort(cohort, brand_id, today)
        if event is not None:
            events.append(event)

    cash_cows = detect_cash_cow_transitions(
        store.fetch_cash_cow_candidates(brand_id, CASH_COW_THRESHOLD_DAYS), today
    )
    patterns = aggregate_winning_patterns(events)
    breakout_ad_ids = [ad_id for event in events for ad_id in event.survivor_ad_ids]

    analysis = LifecycleAnalysis(
        brand_id=brand_id,
        analysis_date=today,
        breakout_events=events,
        cash_cow_transitions=cash_cows,
        winning_patterns=patterns,
        total_breakout_ads=len(breakout_ad_ids),
        total_cash_cows=len(cash_cows),
        market_signals=summarize_market_signals(events, len(breakout_ad_ids), len(cash_cows), patterns),
    )

    store.upsert_breakout_events([event.to_row() for event in events])
    store.flag_breakout_ads(breakout_ad_ids)
    store.flag_cash_cows([cow.ad_id for cow in cash_cows])
    store.backfill_cohort_weeks([
        (ad.id, cohort_week(ad.launch_date))
        for ad in ads
        if ad.cohort_week is None and ad.launch_date is not None
    ])
    store.upsert_lifecycle_snapshot(analysis.to_snapshot_row())

    logger.info("Brand %s lifecycle: %s", brand_id, analysis.market_signals)
    return analysis


def run_lifecycle_pipeline(
    brand_ids: Optional[Iterable[str]] = None,
    today: Optional[date] = None,
    store: Any = None,
) -> Dict[str, Any]:
    """Lifecycle analysis for every brand; one brand failing does not stop the rest."""
    if store is None:
        from . import db as store
    started = time.perf_counter()
    stats = {
        "brands_analyzed": 0,
        "breakout_events_found": 0,
        "breakout_ads_flagged": 0,
        "cash_cows_detected": 0,
        "snapshots_saved": 0,
        "failed": 0,
        "duration_ms": 0,
    }

    for brand_id in brand_ids if brand_ids is not None else store.fetch_brand_ids():
        try:
            result = analyze_ad_lifecycle(brand_id, today=today, store=store)
        except Exception as exc:
            logger.exception("Lifecycle analysis failed for brand %s: %s", brand_id, exc)
            stats["failed"] += 1
            continue
        if result is not None:
            stats["brands_analyzed"] += 1
            stats["breakout_events_found"] += len(result.breakout_events)
            stats["breakout_ads_flagged"] += result.total_breakout_ads
            stats["cash_cows_detected"] += result.total_cash_cows
            stats["snapshots_saved"] += 1

    stats["duration_ms"] = int((time.perf_counter() - started) * 1000)
    return stats


__all__ = [
    "Cohort",
    "DifferentiatingElement",
    "BreakoutEvent",
    "CashCowTransition",
    "WinningPattern",
    "LifecycleAnalysis",
    "cohort_week",
    "cohort_end",
    "is_cohort_ready",
    "is_survivor",
    "reached_cash_cow",
    "calculate_tag_profile",
    "find_differentiating_elements",
    "generate_breakout_summary",
    "aggregate_winning_patterns",
    "build_cohorts",
    "analyze_breakout_cohort",
    "detect_cash_cow_transitions",
    "summarize_market_signals",
    "analyze_ad_lifecycle",
    "run_lifecycle_pipeline",
]
