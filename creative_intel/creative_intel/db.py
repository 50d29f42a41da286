"""
Database helpers for Postgres.

Small, focused functions so the scheduler and analysis engines stay readable
and every write is idempotent: tag rows and snapshots are upserted on their
natural keys, so re-running a batch or a brand/date overwrites rather than
duplicates.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import psycopg2
from psycopg2.extras import Json, RealDictCursor, execute_values

from .config import get_db_config
from .models import CompetitorInfo, CostLogEntry, LifecycleAd, TaggedAd, TaggingCandidate, TaggingState
from .taxonomy import HOOK_PREFIX, TAXONOMY_VERSION, VIDEO_TAXONOMY, VISUAL_TAXONOMY, prefix_hook_tags

logger = logging.getLogger(__name__)

VISUAL_COLUMNS = list(VISUAL_TAXONOMY.keys())
VIDEO_COLUMNS = list(VIDEO_TAXONOMY.keys())
HOOK_COLUMNS = [f"{HOOK_PREFIX}{col}" for col in VISUAL_COLUMNS]

COST_LOG_COLUMNS = [
    "ad_id",
    "stage",
    "model",
    "input_tokens",
    "output_tokens",
    "audio_seconds",
    "estimated_cost_usd",
    "latency_ms",
    "success",
    "error",
]

VELOCITY_COLUMNS = [
    "brand_id",
    "snapshot_date",
    "period_start",
    "period_end",
    "track_filter",
    "dimension",
    "value",
    "weighted_prevalence",
    "previous_prevalence",
    "velocity_percent",
    "direction",
    "ad_count",
    "total_signal_strength",
]

CONVERGENCE_COLUMNS = [
    "brand_id",
    "snapshot_date",
    "dimension",
    "value",
    "convergence_ratio",
    "adjusted_score",
    "classification",
    "cross_track",
    "confidence",
    "competitors_increasing",
    "total_competitors",
    "track_a_increasing",
    "track_b_increasing",
    "competitor_details",
    "is_new_alert",
]

GAP_COLUMNS = [
    "brand_id",
    "snapshot_date",
    "client_ads_analyzed",
    "competitor_ads_analyzed",
    "priority_gaps",
    "strengths",
    "watch_list",
    "summary",
]

BREAKOUT_EVENT_COLUMNS = [
    "brand_id",
    "competitor_id",
    "competitor_name",
    "cohort_start",
    "cohort_end",
    "analysis_date",
    "total_in_cohort",
    "survivors_count",
    "killed_count",
    "survival_rate",
    "survivor_ad_ids",
    "killed_ad_ids",
    "survivor_tag_profile",
    "killed_tag_profile",
    "differentiating_elements",
    "top_survivor_traits",
    "analysis_summary",
]

LIFECYCLE_COLUMNS = [
    "brand_id",
    "snapshot_date",
    "total_breakout_events",
    "total_breakout_ads",
    "total_cash_cows",
    "winning_patterns",
    "cash_cow_transitions",
    "analysis_json",
]

JSONB_COLUMNS = {
    "competitor_details",
    "priority_gaps",
    "strengths",
    "watch_list",
    "summary",
    "visual_shifts",
    "survivor_tag_profile",
    "killed_tag_profile",
    "differentiating_elements",
    "winning_patterns",
    "cash_cow_transitions",
    "analysis_json",
}


@contextmanager
def get_connection():
    """Yield a psycopg2 connection with sensible defaults."""
    cfg = get_db_config()
    conn = psycopg2.connect(cfg.url, cursor_factory=RealDictCursor)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _row_values(data: Mapping[str, Any], columns: Sequence[str]) -> List[Any]:
    row = []
    for column in columns:
        value = data.get(column)
        if column in JSONB_COLUMNS and value is not None:
            value = Json(value)
        row.append(value)
    return row


def _update_assignments(columns: Iterable[str], keys: Iterable[str]) -> str:
    skip = set(keys)
    return ", ".join(f"{col} = EXCLUDED.{col}" for col in columns if col not in skip)


# ---------------------------------------------------------------------------
# Tagging candidates
# ---------------------------------------------------------------------------

def fetch_image_candidates(
    limit: int, max_retries: int, min_days_active: int
) -> List[TaggingCandidate]:
    """
    Still creatives eligible for tagging.

    Least-established ads (fewest days active) come first; client ads are
    always eligible regardless of how long they have been running.
    """
    query = """
        SELECT id,
               thumbnail_url AS media_url,
               tagging_status AS status,
               tagging_retry_count AS retry_count,
               tagging_last_error AS last_error,
               days_active,
               is_client_ad,
               video_duration
        FROM ads
        WHERE tagging_status IN ('pending', 'failed')
          AND tagging_retry_count < %s
          AND thumbnail_url IS NOT NULL
          AND (days_active >= %s OR is_client_ad)
        ORDER BY days_active ASC
        LIMIT %s
    """
    with get_connection() as conn, conn.cursor() as cur:
        cur.execute(query, (max_retries, min_days_active, limit))
        return [TaggingCandidate.from_row(row) for row in cur.fetchall()]


def fetch_video_candidates(
    limit: int, max_retries: int, min_days_active: int
) -> List[TaggingCandidate]:
    """Video creatives eligible for tagging, longest-running first."""
    query = """
        SELECT id,
               video_url AS media_url,
               video_tagging_status AS status,
               video_tagging_retry_count AS retry_count,
               video_tagging_last_error AS last_error,
               days_active,
               is_client_ad,
               video_duration
        FROM ads
        WHERE is_video
          AND video_tagging_status IN ('pending', 'failed')
          AND video_tagging_retry_count < %s
          AND video_url IS NOT NULL
          AND (days_active >= %s OR is_client_ad)
        ORDER BY days_active DESC
        LIMIT %s
    """
    with get_connection() as conn, conn.cursor() as cur:
        cur.execute(query, (max_retries, min_days_active, limit))
        return [TaggingCandidate.from_row(row) for row in cur.fetchall()]


def fetch_dedup_rows() -> List[Dict[str, Any]]:
    """Hash + tag set of every tagged ad, oldest first so the first writer wins."""
    query = f"""
        SELECT a.id AS ad_id, a.content_hash, {', '.join('ct.' + c for c in VISUAL_COLUMNS)}
        FROM ads a
        JOIN creative_tags ct ON ct.ad_id = a.id
        WHERE a.tagging_status = 'tagged'
          AND a.content_hash IS NOT NULL
        ORDER BY ct.created_at ASC
    """
    with get_connection() as conn, conn.cursor() as cur:
        cur.execute(query)
        rows = cur.fetchall()
    return [
        {
            "ad_id": row["ad_id"],
            "content_hash": row["content_hash"],
            "tags": {col: row[col] for col in VISUAL_COLUMNS if row.get(col)},
        }
        for row in rows
    ]


def set_content_hash(ad_id: str, content_hash: str) -> None:
    with get_connection() as conn, conn.cursor() as cur:
        cur.execute("UPDATE ads SET content_hash = %s WHERE id = %s", (content_hash, ad_id))


# ---------------------------------------------------------------------------
# Tagging results
# ---------------------------------------------------------------------------

def mark_tagged(
    ad_id: str,
    tags: Mapping[str, str],
    *,
    source: str,
    source_ad_id: Optional[str] = None,
    model_version: Optional[str] = None,
) -> None:
    """Write the visual tag set and move the ad to ``tagged`` in one transaction."""
    columns = ["ad_id"] + VISUAL_COLUMNS + ["source", "source_ad_id", "model_version", "taxonomy_version"]
    row = [ad_id] + [tags.get(col) for col in VISUAL_COLUMNS] + [
        source,
        source_ad_id,
        model_version,
        TAXONOMY_VERSION,
    ]
    placeholders = ", ".join(["%s"] * len(columns))
    query = f"""
        INSERT INTO creative_tags ({', '.join(columns)})
        VALUES ({placeholders})
        ON CONFLICT (ad_id) DO UPDATE SET {_update_assignments(columns, ['ad_id'])}
    """
    with get_connection() as conn, conn.cursor() as cur:
        cur.execute(query, row)
        cur.execute(
            """
            UPDATE ads
            SET tagging_status = 'tagged',
                tagging_last_error = NULL,
                tagging_attempted_at = now()
            WHERE id = %s
            """,
            (ad_id,),
        )
    logger.debug("Tagged ad %s (source=%s)", ad_id, source)


def record_failure(ad_id: str, state: TaggingState) -> None:
    """Persist the post-failure state of the image tagging state machine."""
    with get_connection() as conn, conn.cursor() as cur:
        cur.execute(
            """
            UPDATE ads
            SET tagging_status = %s,
                tagging_retry_count = %s,
                tagging_last_error = %s,
                tagging_attempted_at = now()
            WHERE id = %s
            """,
            (state.status.value, state.retry_count, state.last_error, ad_id),
        )


def save_video_tags(ad_id: str, result: Any, model_version: Optional[str] = None) -> None:
    """
    Persist a successful video pipeline run.

    Hook tags are stored under ``hook_``-prefixed columns next to the video
    dimensions; the ad row receives the transcript and moves to ``tagged``.
    """
    hook_tags = prefix_hook_tags(result.hook_tags)
    video_tags = result.video_tags
    columns = (
        ["ad_id"]
        + HOOK_COLUMNS
        + VIDEO_COLUMNS
        + ["visual_shifts", "keyframe_count", "duration_seconds", "model_version", "taxonomy_version"]
    )
    row = (
        [ad_id]
        + [hook_tags.get(col) for col in HOOK_COLUMNS]
        + [video_tags.get(col) for col in VIDEO_COLUMNS]
        + [
            Json([shift.to_dict() for shift in result.visual_shifts]),
            result.keyframe_count,
            result.duration_seconds,
            model_version,
            TAXONOMY_VERSION,
        ]
    )
    placeholders = ", ".join(["%s"] * len(columns))
    query = f"""
        INSERT INTO video_tags ({', '.join(columns)})
        VALUES ({placeholders})
        ON CONFLICT (ad_id) DO UPDATE SET {_update_assignments(columns, ['ad_id'])}
    """
    with get_connection() as conn, conn.cursor() as cur:
        cur.execute(query, row)
        cur.execute(
            """
            UPDATE ads
            SET video_tagging_status = 'tagged',
                video_tagging_last_error = NULL,
                video_tagging_attempted_at = now(),
                transcript = %s,
                transcript_word_count = %s
            WHERE id = %s
            """,
            (result.transcript, result.word_count, ad_id),
        )
    logger.debug("Saved video tags for %s", ad_id)


def record_video_failure(ad_id: str, state: TaggingState) -> None:
    """Persist the post-failure state of the video tagging state machine."""
    with get_connection() as conn, conn.cursor() as cur:
        cur.execute(
            """
            UPDATE ads
            SET video_tagging_status = %s,
                video_tagging_retry_count = %s,
                video_tagging_last_error = %s,
                video_tagging_attempted_at = now()
            WHERE id = %s
            """,
            (state.status.value, state.retry_count, state.last_error, ad_id),
        )


def insert_cost_log(entry: CostLogEntry) -> None:
    query = f"""
        INSERT INTO tagging_cost_log ({', '.join(COST_LOG_COLUMNS)})
        VALUES ({', '.join(['%s'] * len(COST_LOG_COLUMNS))})
    """
    with get_connection() as conn, conn.cursor() as cur:
        cur.execute(query, _row_values(entry.to_row(), COST_LOG_COLUMNS))


def sync_client_ads_for_tagging(brand_id: str) -> int:
    """
    Copy a brand's active client ads into ``ads`` so they are tagged like
    competitor ads. Existing rows are left untouched; returns the number added.
    """
    query = """
        INSERT INTO ads (
            id, client_brand_id, competitor_id, is_client_ad, is_video,
            thumbnail_url, launch_date, days_active, tagging_status
        )
        SELECT 'client-' || ca.meta_ad_id,
               ca.brand_id,
               NULL,
               TRUE,
               FALSE,
               COALESCE(ca.thumbnail_url, ca.image_url),
               ca.created_at::date,
               GREATEST(1, current_date - ca.created_at::date),
               'pending'
        FROM client_ads ca
        WHERE ca.brand_id = %s
          AND ca.is_active
        ON CONFLICT (id) DO NOTHING
        RETURNING id
    """
    with get_connection() as conn, conn.cursor() as cur:
        cur.execute(query, (brand_id,))
        synced = len(cur.fetchall())
    if synced:
        logger.info("Synced %d client ads for brand %s", synced, brand_id)
    return synced


# ---------------------------------------------------------------------------
# Analysis inputs
# ---------------------------------------------------------------------------

def fetch_brand_ids() -> List[str]:
    with get_connection() as conn, conn.cursor() as cur:
        cur.execute("SELECT id FROM client_brands ORDER BY id")
        return [row["id"] for row in cur.fetchall()]


def fetch_brand(brand_id: str) -> Optional[Dict[str, Any]]:
    with get_connection() as conn, conn.cursor() as cur:
        cur.execute("SELECT id, name FROM client_brands WHERE id = %s", (brand_id,))
        row = cur.fetchone()
        return dict(row) if row else None


def fetch_competitors(brand_id: str) -> List[CompetitorInfo]:
    with get_connection() as conn, conn.cursor() as cur:
        cur.execute(
            "SELECT id, name, track FROM competitors WHERE brand_id = %s ORDER BY name",
            (brand_id,),
        )
        return [CompetitorInfo.from_row(row) for row in cur.fetchall()]


_TAGGED_AD_SELECT = f"""
    SELECT a.id, a.competitor_id, a.signal_strength, a.competitor_track,
           a.launch_date, a.is_video,
           {', '.join('ct.' + c for c in VISUAL_COLUMNS)},
           {', '.join('vt.' + c for c in VIDEO_COLUMNS)}
    FROM ads a
    JOIN creative_tags ct ON ct.ad_id = a.id
    LEFT JOIN video_tags vt ON vt.ad_id = a.id AND a.is_video
"""


def _tagged_ad_from_row(row: Mapping[str, Any]) -> TaggedAd:
    data = dict(row)
    data["tags"] = {col: row.get(col) for col in VISUAL_COLUMNS}
    data["video_tags"] = {col: row.get(col) for col in VIDEO_COLUMNS}
    return TaggedAd.from_row(data)


def fetch_tagged_ads(brand_id: str, since: date) -> List[TaggedAd]:
    """Tagged competitor ads for a brand launched on or after ``since``."""
    query = _TAGGED_AD_SELECT + """
    JOIN competitors c ON c.id = a.competitor_id
    WHERE c.brand_id = %s
      AND a.launch_date >= %s
      AND a.signal_strength IS NOT NULL
    """
    with get_connection() as conn, conn.cursor() as cur:
        cur.execute(query, (brand_id, since))
        return [_tagged_ad_from_row(row) for row in cur.fetchall()]


def fetch_client_tagged_ads(brand_id: str) -> List[TaggedAd]:
    query = _TAGGED_AD_SELECT + """
    WHERE a.client_brand_id = %s
      AND a.is_client_ad
      AND a.tagging_status = 'tagged'
    """
    with get_connection() as conn, conn.cursor() as cur:
        cur.execute(query, (brand_id,))
        return [_tagged_ad_from_row(row) for row in cur.fetchall()]


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------

def _upsert_rows(table: str, columns: Sequence[str], keys: Sequence[str], rows: Sequence[Mapping[str, Any]]) -> int:
    if not rows:
        return 0
    query = f"""
        INSERT INTO {table} ({', '.join(columns)})
        VALUES %s
        ON CONFLICT ({', '.join(keys)}) DO UPDATE SET {_update_assignments(columns, keys)}
    """
    values = [_row_values(row, columns) for row in rows]
    with get_connection() as conn, conn.cursor() as cur:
        execute_values(cur, query, values)
    return len(values)


def upsert_velocity_snapshots(rows: Sequence[Mapping[str, Any]]) -> int:
    return _upsert_rows(
        "velocity_snapshots",
        VELOCITY_COLUMNS,
        ["brand_id", "snapshot_date", "track_filter", "dimension", "value"],
        rows,
    )


def fetch_latest_velocity(brand_id: str, track_filter: str = "all") -> Dict[Tuple[str, str], float]:
    """Most recent stored velocity percent per (dimension, value)."""
    query = """
        SELECT DISTINCT ON (dimension, value) dimension, value, velocity_percent
        FROM velocity_snapshots
        WHERE brand_id = %s AND track_filter = %s
        ORDER BY dimension, value, snapshot_date DESC
    """
    with get_connection() as conn, conn.cursor() as cur:
        cur.execute(query, (brand_id, track_filter))
        return {
            (row["dimension"], row["value"]): float(row["velocity_percent"] or 0)
            for row in cur.fetchall()
        }


def fetch_prior_strong_convergence(brand_id: str, before: date) -> Set[Tuple[str, str]]:
    query = """
        SELECT DISTINCT dimension, value
        FROM convergence_snapshots
        WHERE brand_id = %s
          AND classification = 'STRONG_CONVERGENCE'
          AND snapshot_date < %s
    """
    with get_connection() as conn, conn.cursor() as cur:
        cur.execute(query, (brand_id, before))
        return {(row["dimension"], row["value"]) for row in cur.fetchall()}


def upsert_convergence_snapshots(rows: Sequence[Mapping[str, Any]]) -> int:
    return _upsert_rows(
        "convergence_snapshots",
        CONVERGENCE_COLUMNS,
        ["brand_id", "snapshot_date", "dimension", "value"],
        rows,
    )


def fetch_latest_convergence(brand_id: str) -> Dict[Tuple[str, str], Dict[str, Any]]:
    """Most recent adjusted score and classification per (dimension, value)."""
    query = """
        SELECT DISTINCT ON (dimension, value) dimension, value, adjusted_score, classification
        FROM convergence_snapshots
        WHERE brand_id = %s
        ORDER BY dimension, value, snapshot_date DESC
    """
    with get_connection() as conn, conn.cursor() as cur:
        cur.execute(query, (brand_id,))
        return {
            (row["dimension"], row["value"]): {
                "score": float(row["adjusted_score"] or 0),
                "classification": row["classification"],
            }
            for row in cur.fetchall()
        }


def upsert_gap_snapshot(row: Mapping[str, Any]) -> None:
    _upsert_rows("gap_analysis_snapshots", GAP_COLUMNS, ["brand_id", "snapshot_date"], [row])


# ---------------------------------------------------------------------------
# Competitor tracks
# ---------------------------------------------------------------------------

def fetch_track_inputs(since: date) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """All competitors, plus every competitor ad launched on or after ``since``."""
    with get_connection() as conn, conn.cursor() as cur:
        cur.execute("SELECT id, name, track FROM competitors")
        competitors = [dict(row) for row in cur.fetchall()]
        cur.execute(
            """
            SELECT id, competitor_id, launch_date, days_active, variation_count, is_active
            FROM ads
            WHERE competitor_id IS NOT NULL AND launch_date >= %s
            """,
            (since,),
        )
        recent_ads = [dict(row) for row in cur.fetchall()]
    return competitors, recent_ads


def fetch_scorable_ads() -> List[Dict[str, Any]]:
    """Every competitor ad, for signal strength rescoring."""
    with get_connection() as conn, conn.cursor() as cur:
        cur.execute(
            """
            SELECT id, competitor_id, days_active, variation_count, is_active
            FROM ads
            WHERE competitor_id IS NOT NULL
            """
        )
        return [dict(row) for row in cur.fetchall()]


def update_competitor_track(
    competitor_id: str,
    track: str,
    new_ads_30d: int,
    survived_14d: int,
    survival_rate: Optional[float],
) -> None:
    with get_connection() as conn, conn.cursor() as cur:
        cur.execute(
            """
            UPDATE competitors
            SET track = %s,
                track_classified_at = now(),
                new_ads_30d = %s,
                survived_14d = %s,
                survival_rate = %s
            WHERE id = %s
            """,
            (track, new_ads_30d, survived_14d, survival_rate, competitor_id),
        )


def insert_track_change(
    competitor_id: str,
    previous_track: Optional[str],
    new_track: str,
    new_ads_30d: int,
    survival_rate: Optional[float],
) -> None:
    with get_connection() as conn, conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO track_change_log (competitor_id, previous_track, new_track, new_ads_30d, survival_rate)
            VALUES (%s, %s, %s, %s, %s)
            """,
            (competitor_id, previous_track, new_track, new_ads_30d, survival_rate),
        )


def update_ad_signal_strengths(updates: Sequence[Tuple[str, int, str]], page_size: int = 100) -> int:
    """Bulk-set ``(ad_id, signal_strength, competitor_track)`` triples."""
    if not updates:
        return 0
    query = """
        UPDATE ads AS a
        SET signal_strength = v.signal_strength,
            competitor_track = v.competitor_track
        FROM (VALUES %s) AS v(id, signal_strength, competitor_track)
        WHERE a.id = v.id
    """
    with get_connection() as conn, conn.cursor() as cur:
        execute_values(cur, query, list(updates), page_size=page_size)
    return len(updates)


# ---------------------------------------------------------------------------
# Ad lifecycle
# ---------------------------------------------------------------------------

_LIFECYCLE_AD_SELECT = f"""
    SELECT a.id, a.competitor_id, c.name AS competitor_name,
           a.launch_date, a.days_active, a.is_active, a.is_video,
           a.cohort_week, a.is_breakout, a.is_cash_cow, a.breakout_detected_at,
           {', '.join('ct.' + col for col in VISUAL_COLUMNS)},
           {', '.join('vt.' + col for col in VIDEO_COLUMNS)}
    FROM ads a
    JOIN competitors c ON c.id = a.competitor_id
    LEFT JOIN creative_tags ct ON ct.ad_id = a.id
    LEFT JOIN video_tags vt ON vt.ad_id = a.id AND a.is_video
"""


def _lifecycle_ad_from_row(row: Mapping[str, Any]) -> LifecycleAd:
    data = dict(row)
    data["tags"] = {col: row.get(col) for col in VISUAL_COLUMNS}
    data["video_tags"] = {col: row.get(col) for col in VIDEO_COLUMNS}
    return LifecycleAd.from_row(data)


def fetch_lifecycle_ads(competitor_ids: Sequence[str], since: date) -> List[LifecycleAd]:
    """Ads of the given competitors launched on or after ``since``, tagged or not."""
    if not competitor_ids:
        return []
    query = _LIFECYCLE_AD_SELECT + """
    WHERE a.competitor_id = ANY(%s)
      AND a.launch_date >= %s
    """
    with get_connection() as conn, conn.cursor() as cur:
        cur.execute(query, (list(competitor_ids), since))
        return [_lifecycle_ad_from_row(row) for row in cur.fetchall()]


def fetch_cash_cow_candidates(brand_id: str, min_days_active: int) -> List[LifecycleAd]:
    """Active breakout ads of a brand's competitors not yet flagged as cash cows."""
    query = _LIFECYCLE_AD_SELECT + """
    WHERE c.brand_id = %s
      AND a.is_breakout
      AND NOT a.is_cash_cow
      AND a.is_active
      AND a.days_active >= %s
    """
    with get_connection() as conn, conn.cursor() as cur:
        cur.execute(query, (brand_id, min_days_active))
        return [_lifecycle_ad_from_row(row) for row in cur.fetchall()]


def upsert_breakout_events(rows: Sequence[Mapping[str, Any]]) -> int:
    return _upsert_rows(
        "breakout_events",
        BREAKOUT_EVENT_COLUMNS,
        ["brand_id", "competitor_id", "cohort_start", "cohort_end"],
        rows,
    )


def flag_breakout_ads(ad_ids: Sequence[str]) -> int:
    """Mark surviving ads as breakouts; ads already flagged keep their detection time."""
    if not ad_ids:
        return 0
    with get_connection() as conn, conn.cursor() as cur:
        cur.execute(
            """
            UPDATE ads
            SET is_breakout = TRUE,
                breakout_detected_at = now()
            WHERE id = ANY(%s) AND NOT is_breakout
            """,
            (list(ad_ids),),
        )
        return cur.rowcount


def flag_cash_cows(ad_ids: Sequence[str]) -> int:
    if not ad_ids:
        return 0
    with get_connection() as conn, conn.cursor() as cur:
        cur.execute(
            """
            UPDATE ads
            SET is_cash_cow = TRUE,
                cash_cow_detected_at = now()
            WHERE id = ANY(%s)
            """,
            (list(ad_ids),),
        )
        return cur.rowcount


def backfill_cohort_weeks(updates: Sequence[Tuple[str, date]], page_size: int = 100) -> int:
    """Bulk-set ``(ad_id, cohort_week)`` pairs."""
    if not updates:
        return 0
    query = """
        UPDATE ads AS a
        SET cohort_week = v.cohort_week::date
        FROM (VALUES %s) AS v(id, cohort_week)
        WHERE a.id = v.id
    """
    with get_connection() as conn, conn.cursor() as cur:
        execute_values(cur, query, list(updates), page_size=page_size)
    return len(updates)


def upsert_lifecycle_snapshot(row: Mapping[str, Any]) -> None:
    _upsert_rows("lifecycle_analysis_snapshots", LIFECYCLE_COLUMNS, ["brand_id", "snapshot_date"], [row])


__all__ = [
    "get_connection",
    "fetch_image_candidates",
    "fetch_video_candidates",
    "fetch_dedup_rows",
    "set_content_hash",
    "mark_tagged",
    "record_failure",
    "save_video_tags",
    "record_video_failure",
    "insert_cost_log",
    "sync_client_ads_for_tagging",
    "fetch_brand_ids",
    "fetch_brand",
    "fetch_competitors",
    "fetch_tagged_ads",
    "fetch_client_tagged_ads",
    "upsert_velocity_snapshots",
    "fetch_latest_velocity",
    "fetch_prior_strong_convergence",
    "upsert_convergence_snapshots",
    "fetch_latest_convergence",
    "upsert_gap_snapshot",
    "fetch_track_inputs",
    "fetch_scorable_ads",
    "update_competitor_track",
    "insert_track_change",
    "update_ad_signal_strengths",
    "fetch_lifecycle_ads",
    "fetch_cash_cow_candidates",
    "upsert_breakout_events",
    "flag_breakout_ads",
    "flag_cash_cows",
    "backfill_cohort_weeks",
    "upsert_lifecycle_snapshot",
]
