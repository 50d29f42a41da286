"""
Processing context for video tagging stages.

The VideoTaggingContext is the shared state passed through all stages. Each
stage reads from and writes to this context, making data flow explicit.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..costs import CostRecorder
from ..models import VisualShift


@dataclass
class VideoTaggingContext:
    """
    Shared state passed through video tagging stages.

    Attributes:
        ad_id: Identifier of the ad being tagged
        video_url: Remote URL of the creative
        catalog_duration: Duration reported by the ad catalog, if any
        recorder: Cost recorder shared with the scheduler

        scratch_dir: Per-ad temp directory (set by DownloadStage)
        video_path: Local copy of the video (set by DownloadStage)
        duration_seconds: Measured duration (set by DownloadStage)
        has_audio: Whether ffprobe found an audio stream (set by DownloadStage)
        keyframes: Extracted keyframe paths in order (set by KeyframeStage)
        audio_path: Extracted audio track (set by TranscriptionStage)
        transcript: Transcript text, None for silent videos (set by TranscriptionStage)
        word_count: Whitespace-token count of the transcript
        hook_tags: Visual tags of the first keyframe (set by HookTaggingStage)
        visual_shifts: Ordered scene shifts (set by ShiftDetectionStage)
        video_tags: All 7 video dimensions (set by VideoTaggingStage)
    """

    # Required inputs
    ad_id: str
    video_url: str

    # Optional inputs
    catalog_duration: Optional[float] = None
    recorder: Optional[CostRecorder] = None

    # DownloadStage outputs
    scratch_dir: Optional[Path] = None
    video_path: Optional[Path] = None
    duration_seconds: Optional[float] = None
    has_audio: bool = True

    # KeyframeStage outputs
    keyframes: List[Path] = field(default_factory=list)

    # TranscriptionStage outputs
    audio_path: Optional[Path] = None
    transcript: Optional[str] = None
    word_count: int = 0

    # HookTaggingStage outputs
    hook_tags: Dict[str, str] = field(default_factory=dict)

    # ShiftDetectionStage outputs
    visual_shifts: List[VisualShift] = field(default_factory=list)

    # VideoTaggingStage outputs
    video_tags: Dict[str, str] = field(default_factory=dict)

    # Processing metadata
    processing_notes: Dict[str, Any] = field(default_factory=dict)
    temp_dirs: List[Path] = field(default_factory=list)
    start_time: float = field(default_factory=time.time)

    # Stage tracking
    completed_stages: List[str] = field(default_factory=list)
    skipped_stages: List[str] = field(default_factory=list)
    failed_stages: List[str] = field(default_factory=list)

    def register_temp_dir(self, temp_dir: Path) -> None:
        """Register a temp directory for cleanup."""
        self.temp_dirs.append(temp_dir)

    def add_processing_note(self, key: str, note: Dict[str, Any]) -> None:
        """Add a processing note (e.g., error, warning)."""
        self.processing_notes[key] = note

    def mark_stage_complete(self, stage_name: str) -> None:
        if stage_name not in self.completed_stages:
            self.completed_stages.append(stage_name)

    def mark_stage_skipped(self, stage_name: str) -> None:
        if stage_name not in self.skipped_stages:
            self.skipped_stages.append(stage_name)

    def mark_stage_failed(self, stage_name: str) -> None:
        if stage_name not in self.failed_stages:
            self.failed_stages.append(stage_name)

    def elapsed_time(self) -> float:
        """Get elapsed time since processing started."""
        return time.time() - self.start_time

    @property
    def effective_duration(self) -> Optional[float]:
        return self.duration_seconds or self.catalog_duration

    def to_summary(self) -> Dict[str, Any]:
        """Generate a summary of the processing context."""
        return {
            "ad_id": self.ad_id,
            "elapsed_time": round(self.elapsed_time(), 2),
            "completed_stages": self.completed_stages,
            "skipped_stages": self.skipped_stages,
            "failed_stages": self.failed_stages,
            "keyframes": len(self.keyframes),
            "visual_shifts": len(self.visual_shifts),
            "word_count": self.word_count,
            "has_processing_notes": bool(self.processing_notes),
        }
