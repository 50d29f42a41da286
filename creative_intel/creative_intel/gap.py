"""
Gap Engine

Compares a brand's own prevalence of every taxonomy value with its
competitors', then weighs each gap by how fast the value is moving and how
strongly competitors are converging on it:

    priority = |gap| * (1 + |velocity|) * (1 + convergence score)

Velocity and convergence come from the latest stored snapshots, so run the
velocity and convergence engines first.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .config import AnalysisConfig, get_analysis_config
from .convergence import NO_CONVERGENCE
from .models import CompetitorInfo, TaggedAd
from .prevalence import (
    DIRECTION_ACCELERATING,
    DIRECTION_DECLINING,
    DIRECTION_STABLE,
    calculate_weighted_prevalence,
    classify_direction,
)
from .taxonomy import ALL_DIMENSIONS

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Tunables
# ---------------------------------------------------------------------------

UNUSED_FLOOR = 0.001             # values below this on both sides are skipped
STRENGTH_FLOOR = 0.01            # client must actually use a value to call it a strength
WATCH_GAP = 0.1                  # near-parity band for the watch list
EXAMPLES_PER_GAP = 3
NONE_IDENTIFIED = "None identified"


@dataclass
class GapElement:
    dimension: str
    value: str
    client_prevalence: float
    competitor_prevalence: float
    gap_size: float
    velocity: float = 0.0
    velocity_direction: str = DIRECTION_STABLE
    convergence_score: float = 0.0
    convergence_classification: str = NO_CONVERGENCE
    priority_score: float = 0.0
    competitor_examples: List[Dict[str, str]] = field(default_factory=list)
    recommendation: str = ""

    @property
    def label(self) -> str:
        return f"{self.value} ({self.dimension})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dimension": self.dimension,
            "value": self.value,
            "client_prevalence": self.client_prevalence,
            "competitor_prevalence": self.competitor_prevalence,
            "gap_size": self.gap_size,
            "velocity": self.velocity,
            "velocity_direction": self.velocity_direction,
            "convergence_score": self.convergence_score,
            "convergence_classification": self.convergence_classification,
            "priority_score": self.priority_score,
            "competitor_examples": list(self.competitor_examples),
            "recommendation": self.recommendation,
        }


@dataclass
class GapAnalysis:
    brand_id: str
    analysis_date: date
    total_client_ads: int
    total_competitor_ads: int
    priority_gaps: List[GapElement] = field(default_factory=list)
    strengths: List[GapElement] = field(default_factory=list)
    watch_list: List[GapElement] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)

    def to_snapshot_row(self) -> Dict[str, Any]:
        return {
            "brand_id": self.brand_id,
            "snapshot_date": self.analysis_date,
            "client_ads_analyzed": self.total_client_ads,
            "competitor_ads_analyzed": self.total_competitor_ads,
            "priority_gaps": [e.to_dict() for e in self.priority_gaps],
            "strengths": [e.to_dict() for e in self.strengths],
            "watch_list": [e.to_dict() for e in self.watch_list],
            "summary": dict(self.summary),
        }


# ---------------------------------------------------------------------------
# Pure calculations
# ---------------------------------------------------------------------------

def calculate_priority_score(gap_size: float, velocity: float, convergence_score: float) -> float:
    return abs(gap_size) * (1 + abs(velocity)) * (1 + convergence_score)


def _humanize(text: str) -> str:
    return text.replace("_", " ")


def generate_recommendation(element: GapElement) -> str:
    """Templated advice; wording depends on the gap sign and velocity direction."""
    pct_gap = round(abs(element.gap_size) * 100)
    dim = _humanize(element.dimension)
    val = _humanize(element.value)

    if element.gap_size <= 0:
        return f"Strength: Your use of {val} ({dim}) exceeds competitors by {pct_gap}%."
    if element.velocity_direction == DIRECTION_ACCELERATING and element.convergence_score > 0:
        return (
            f"Critical opportunity: Competitors are converging on {val} ({dim}). "
            f"You're {pct_gap}% behind and the trend is accelerating."
        )
    if element.velocity_direction == DIRECTION_ACCELERATING:
        return (
            f"High priority: {val} ({dim}) is gaining traction among competitors. "
            "Consider testing this approach."
        )
    if element.velocity_direction == DIRECTION_DECLINING:
        return f"Low priority: {val} ({dim}) shows a gap but is declining in popularity."
    return f"Opportunity: Competitors use {val} ({dim}) more than you. Worth testing."


def build_gap_elements(
    client_ads: Sequence[TaggedAd],
    competitor_ads: Sequence[TaggedAd],
    competitors: Sequence[CompetitorInfo],
    velocity_map: Mapping[Tuple[str, str], float],
    convergence_map: Mapping[Tuple[str, str], Mapping[str, Any]],
) -> List[GapElement]:
    """One element per taxonomy value used by either population."""
    client = calculate_weighted_prevalence(client_ads)
    competitor = calculate_weighted_prevalence(competitor_ads)
    names = {c.id: c.name for c in competitors}

    elements: List[GapElement] = []
    for dimension, values in ALL_DIMENSIONS.items():
        for value in values:
            client_prev = client.get(dimension, {}).get(value, 0.0)
            comp_prev = competitor.get(dimension, {}).get(value, 0.0)
            if client_prev < UNUSED_FLOOR and comp_prev < UNUSED_FLOOR:
                continue

            gap_size = comp_prev - client_prev
            velocity = float(velocity_map.get((dimension, value), 0.0))
            conv = convergence_map.get((dimension, value)) or {}
            conv_score = float(conv.get("score") or 0.0)

            examples = [
                {"ad_id": ad.id, "competitor_name": names.get(ad.competitor_id or "", "Unknown")}
                for ad in competitor_ads
                if ad.tag_value(dimension) == value
            ][:EXAMPLES_PER_GAP]

            element = GapElement(
                dimension=dimension,
                value=value,
                client_prevalence=round(client_prev, 4),
                competitor_prevalence=round(comp_prev, 4),
                gap_size=round(gap_size, 4),
                velocity=round(velocity, 4),
                velocity_direction=classify_direction(velocity),
                convergence_score=conv_score,
                convergence_classification=conv.get("classification") or NO_CONVERGENCE,
                priority_score=round(calculate_priority_score(gap_size, velocity, conv_score), 4),
                competitor_examples=examples,
            )
            element.recommendation = generate_recommendation(element)
            elements.append(element)
    return elements


def summarize_gaps(
    elements: Sequence[GapElement], top_n: int = 5
) -> Tuple[List[GapElement], List[GapElement], List[GapElement], Dict[str, Any]]:
    """Split elements into (priority gaps, strengths, watch list, summary)."""
    positive = sorted(
        (e for e in elements if e.gap_size > 0), key=lambda e: e.priority_score, reverse=True
    )
    priority_gaps = positive[:top_n]
    strengths = sorted(
        (
            e for e in elements
            if e.client_prevalence >= e.competitor_prevalence and e.client_prevalence > STRENGTH_FLOOR
        ),
        key=lambda e: e.client_prevalence,
        reverse=True,
    )
    watch_list = sorted(
        (
            e for e in elements
            if abs(e.gap_size) < WATCH_GAP and e.velocity_direction == DIRECTION_ACCELERATING
        ),
        key=lambda e: e.velocity,
        reverse=True,
    )
    summary = {
        "biggest_opportunity": priority_gaps[0].label if priority_gaps else NONE_IDENTIFIED,
        "strongest_match": strengths[0].label if strengths else NONE_IDENTIFIED,
        "total_gaps_identified": len(positive),
    }
    return priority_gaps, strengths, watch_list, summary


# ---------------------------------------------------------------------------
# Brand analysis
# ---------------------------------------------------------------------------

def analyze_creative_gap(
    brand_id: str,
    today: Optional[date] = None,
    store: Any = None,
    config: Optional[AnalysisConfig] = None,
) -> Optional[GapAnalysis]:
    """
    Gap analysis for one brand. Client ads are synced into the tagging queue
    first; returns None until both client and competitor tagged ads exist.
    """
    if store is None:
        from . import db as store
    cfg = config or get_analysis_config()
    today = today or date.today()

    store.sync_client_ads_for_tagging(brand_id)

    client_ads = store.fetch_client_tagged_ads(brand_id)
    if not client_ads:
        logger.info("Brand %s has no tagged client ads yet", brand_id)
        return None
    competitor_ads = store.fetch_tagged_ads(brand_id, today - timedelta(days=cfg.lookback_days))
    if not competitor_ads:
        logger.info("Brand %s has no tagged competitor ads", brand_id)
        return None
    competitors = store.fetch_competitors(brand_id)

    elements = build_gap_elements(
        client_ads,
        competitor_ads,
        competitors,
        store.fetch_latest_velocity(brand_id),
        store.fetch_latest_convergence(brand_id),
    )
    priority_gaps, strengths, watch_list, summary = summarize_gaps(elements, cfg.gap_top_n)

    analysis = GapAnalysis(
        brand_id=brand_id,
        analysis_date=today,
        total_client_ads=len(client_ads),
        total_competitor_ads=len(competitor_ads),
        priority_gaps=priority_gaps,
        strengths=strengths,
        watch_list=watch_list,
        summary=summary,
    )
    store.upsert_gap_snapshot(analysis.to_snapshot_row())
    logger.info(
        "Brand %s gap analysis: %d gaps, biggest opportunity %s",
        brand_id, summary["total_gaps_identified"], summary["biggest_opportunity"],
    )
    return analysis


def run_gap_pipeline(
    brand_ids: Optional[Iterable[str]] = None,
    today: Optional[date] = None,
    store: Any = None,
) -> Dict[str, Any]:
    if store is None:
        from . import db as store
    started = time.perf_counter()
    stats = {"brands_analyzed": 0, "snapshots_saved": 0, "failed": 0, "duration_ms": 0}

    for brand_id in brand_ids if brand_ids is not None else store.fetch_brand_ids():
        try:
            result = analyze_creative_gap(brand_id, today=today, store=store)
        except Exception as exc:
            logger.exception("Gap analysis failed for brand %s: %s", brand_id, exc)
            stats["failed"] += 1
            continue
        if result is not None:
            stats["brands_analyzed"] += 1
            stats["snapshots_saved"] += 1

    stats["duration_ms"] = int((time.perf_counter() - started) * 1000)
    return stats


__all__ = [
    "GapElement",
    "GapAnalysis",
    "calculate_priority_score",
    "generate_recommendation",
    "build_gap_elements",
    "summarize_gaps",
    "analyze_creative_gap",
    "run_gap_pipeline",
]
