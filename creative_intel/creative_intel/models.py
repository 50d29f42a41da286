"""
Data model for tagged creatives, competitors and cost accounting.

The tagging status of an ad is an explicit state machine:

    pending --succeed--> tagged
    pending --fail-----> failed | skipped
    failed  --succeed--> tagged
    failed  --fail-----> failed | skipped

``tagged`` and ``skipped`` are terminal. ``TaggingState`` only exposes
``succeed`` and ``fail``, so there is no way to move an ad back to ``pending``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional


class IllegalTransitionError(Exception):
    """Raised when a tagging state is asked to leave a terminal status."""


class TaggingStatus(str, Enum):
    """Tagging state machine states."""
    PENDING = "pending"
    TAGGED = "tagged"
    FAILED = "failed"
    SKIPPED = "skipped"


TRANSITIONS: Mapping[TaggingStatus, FrozenSet[TaggingStatus]] = {
    TaggingStatus.PENDING: frozenset({TaggingStatus.TAGGED, TaggingStatus.FAILED, TaggingStatus.SKIPPED}),
    TaggingStatus.FAILED: frozenset({TaggingStatus.TAGGED, TaggingStatus.FAILED, TaggingStatus.SKIPPED}),
    TaggingStatus.TAGGED: frozenset(),
    TaggingStatus.SKIPPED: frozenset(),
}


@dataclass(frozen=True)
class TaggingState:
    """Status, retry counter and last error of one tagging state machine."""
    status: TaggingStatus = TaggingStatus.PENDING
    retry_count: int = 0
    last_error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return not TRANSITIONS[self.status]

    def is_eligible(self, max_retries: int) -> bool:
        return (
            self.status in (TaggingStatus.PENDING, TaggingStatus.FAILED)
            and self.retry_count < max_retries
        )

    def _move(self, target: TaggingStatus, **changes: Any) -> "TaggingState":
        if target not in TRANSITIONS[self.status]:
            raise IllegalTransitionError(
                f"Cannot transition tagging status {self.status.value} -> {target.value}"
            )
        return replace(self, status=target, **changes)

    def succeed(self) -> "TaggingState":
        return self._move(TaggingStatus.TAGGED, last_error=None)

    def fail(self, error: str, max_retries: int) -> "TaggingState":
        """Consume a retry slot; the cap turns the failure terminal."""
        retry_count = self.retry_count + 1
        target = TaggingStatus.SKIPPED if retry_count >= max_retries else TaggingStatus.FAILED
        return self._move(target, retry_count=retry_count, last_error=error)


class TagSource(str, Enum):
    """Provenance of a creative's tag set."""
    VISION_API = "vision_api"
    HASH_DEDUP = "hash_dedup"


class CompetitorTrack(str, Enum):
    """Strategic track of a competitor."""
    CONSOLIDATOR = "consolidator"
    VELOCITY_TESTER = "velocity_tester"


TRACK_FILTERS = ("all", CompetitorTrack.CONSOLIDATOR.value, CompetitorTrack.VELOCITY_TESTER.value)


def as_date(value: Any) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


@dataclass
class TaggingCandidate:
    """An ad selected for tagging, with its current state machine."""
    id: str
    media_url: str
    state: TaggingState
    days_active: int = 0
    is_client_ad: bool = False
    video_duration: Optional[float] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TaggingCandidate":
        """Create a candidate from a store row (``status``/``retry_count`` aliases)."""
        return cls(
            id=str(row["id"]),
            media_url=row["media_url"],
            state=TaggingState(
                status=TaggingStatus(row.get("status") or TaggingStatus.PENDING.value),
                retry_count=int(row.get("retry_count") or 0),
                last_error=row.get("last_error"),
            ),
            days_active=int(row.get("days_active") or 0),
            is_client_ad=bool(row.get("is_client_ad")),
            video_duration=row.get("video_duration"),
        )


@dataclass
class TaggedAd:
    """A classified ad as consumed by the analysis engines."""
    id: str
    competitor_id: Optional[str]
    signal_strength: float
    competitor_track: Optional[str]
    launch_date: Optional[date]
    is_video: bool
    tags: Dict[str, Optional[str]] = field(default_factory=dict)
    video_tags: Dict[str, Optional[str]] = field(default_factory=dict)

    def tag_value(self, dimension: str) -> Optional[str]:
        return self.tags.get(dimension) or self.video_tags.get(dimension)

    @property
    def weight(self) -> float:
        return self.signal_strength or 1

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TaggedAd":
        return cls(
            id=str(row["id"]),
            competitor_id=str(row["competitor_id"]) if row.get("competitor_id") else None,
            signal_strength=float(row.get("signal_strength") or 1),
            competitor_track=row.get("competitor_track"),
            launch_date=as_date(row.get("launch_date")),
            is_video=bool(row.get("is_video")),
            tags=dict(row.get("tags") or {}),
            video_tags=dict(row.get("video_tags") or {}),
        )


@dataclass
class LifecycleAd:
    """A velocity tester ad with the survival flags the lifecycle engine reads."""
    id: str
    competitor_id: str
    competitor_name: str
    launch_date: Optional[date]
    days_active: int
    is_active: bool
    is_video: bool
    cohort_week: Optional[date] = None
    is_breakout: bool = False
    is_cash_cow: bool = False
    breakout_detected_at: Optional[date] = None
    tags: Dict[str, Optional[str]] = field(default_factory=dict)
    video_tags: Dict[str, Optional[str]] = field(default_factory=dict)

    @property
    def is_tagged(self) -> bool:
        return any(value is not None for value in self.tags.values())

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "LifecycleAd":
        return cls(
            id=str(row["id"]),
            competitor_id=str(row["competitor_id"]),
            competitor_name=row.get("competitor_name") or "Unknown",
            launch_date=as_date(row.get("launch_date")),
            days_active=int(row.get("days_active") or 0),
            is_active=bool(row.get("is_active")),
            is_video=bool(row.get("is_video")),
            cohort_week=as_date(row.get("cohort_week")),
            is_breakout=bool(row.get("is_breakout")),
            is_cash_cow=bool(row.get("is_cash_cow")),
            breakout_detected_at=as_date(row.get("breakout_detected_at")),
            tags=dict(row.get("tags") or {}),
            video_tags=dict(row.get("video_tags") or {}),
        )


@dataclass(frozen=True)
class CompetitorInfo:
    """A competitor and its strategic track label."""
    id: str
    name: str
    track: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "CompetitorInfo":
        return cls(id=str(row["id"]), name=row.get("name") or "Unknown", track=row.get("track"))


@dataclass(frozen=True)
class VisualShift:
    """A major visual change between keyframe ``frame_index - 1`` and ``frame_index``."""
    frame_index: int
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {"frame_index": self.frame_index, "description": self.description}


@dataclass
class CostLogEntry:
    """One external call, for accounting only."""
    ad_id: str
    stage: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    audio_seconds: float = 0.0
    estimated_cost_usd: float = 0.0
    latency_ms: int = 0
    success: bool = True
    error: Optional[str] = None

    def to_row(self) -> Dict[str, Any]:
        return {
            "ad_id": self.ad_id,
            "stage": self.stage,
            "model": self.model,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "audio_seconds": self.audio_seconds,
            "estimated_cost_usd": self.estimated_cost_usd,
            "latency_ms": self.latency_ms,
            "success": self.success,
            "error": self.error,
        }


@dataclass
class TaggingStats:
    """Outcome counters for one scheduler batch."""
    total: int = 0
    tagged: int = 0
    deduped: int = 0
    failed: int = 0
    skipped: int = 0
    rate_limited: int = 0
    no_audio: int = 0
    unrecorded: int = 0
    total_cost_usd: float = 0.0
    duration_ms: int = 0
    stopped_early: bool = False
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "tagged": self.tagged,
            "deduped": self.deduped,
            "failed": self.failed,
            "skipped": self.skipped,
            "rate_limited": self.rate_limited,
            "no_audio": self.no_audio,
            "unrecorded": self.unrecorded,
            "total_cost_usd": round(self.total_cost_usd, 6),
            "duration_ms": self.duration_ms,
            "stopped_early": self.stopped_early,
        }
