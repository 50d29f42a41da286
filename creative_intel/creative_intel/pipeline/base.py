"""
Base classes for the video tagging pipeline.

Provides the Stage base class and the VideoTaggingPipeline orchestrator.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..config import TaggingConfig, get_tagging_config
from ..costs import CostRecorder
from ..models import TaggingCandidate, VisualShift
from .context import VideoTaggingContext
from .errors import PipelineError, RateLimitedError, StageError, StageSkipped

logger = logging.getLogger("creative_intel.pipeline")


@dataclass
class VideoTaggingResult:
    """
    Result of running one video ad through the pipeline.

    ``error`` holds the exception that stopped a required stage; the
    scheduler uses its type to decide on backoff and the next tagging state.
    """
    ad_id: str
    success: bool
    elapsed_time: float
    hook_tags: Dict[str, str] = field(default_factory=dict)
    video_tags: Dict[str, str] = field(default_factory=dict)
    visual_shifts: List[VisualShift] = field(default_factory=list)
    keyframe_count: int = 0
    transcript: Optional[str] = None
    word_count: int = 0
    duration_seconds: Optional[float] = None
    has_audio: bool = False
    completed_stages: List[str] = field(default_factory=list)
    skipped_stages: List[str] = field(default_factory=list)
    failed_stages: List[str] = field(default_factory=list)
    processing_notes: Dict[str, Any] = field(default_factory=dict)
    error: Optional[BaseException] = None

    @classmethod
    def from_context(
        cls, ctx: VideoTaggingContext, error: Optional[BaseException] = None
    ) -> "VideoTaggingResult":
        return cls(
            ad_id=ctx.ad_id,
            success=error is None,
            elapsed_time=ctx.elapsed_time(),
            hook_tags=dict(ctx.hook_tags),
            video_tags=dict(ctx.video_tags),
            visual_shifts=list(ctx.visual_shifts),
            keyframe_count=len(ctx.keyframes),
            transcript=ctx.transcript,
            word_count=ctx.word_count,
            duration_seconds=ctx.effective_duration,
            has_audio=ctx.audio_path is not None,
            completed_stages=list(ctx.completed_stages),
            skipped_stages=list(ctx.skipped_stages),
            failed_stages=list(ctx.failed_stages),
            processing_notes=dict(ctx.processing_notes),
            error=error,
        )


class Stage(ABC):
    """
    Base class for pipeline stages.

    Subclasses must implement:
    - name: Unique identifier for the stage
    - should_run(): Determine if stage should execute
    - execute(): Perform stage logic

    Optionally override:
    - on_error(): Handle stage-specific errors
    - validate_inputs(): Validate required inputs exist

    Optional stages may fail without failing the ad, except on a rate limit,
    which always propagates so the scheduler can back off.
    """

    name: str = "BaseStage"
    optional: bool = False

    @abstractmethod
    def should_run(self, ctx: VideoTaggingContext, config: TaggingConfig) -> bool:
        """Return True if the stage should execute for this context."""

    @abstractmethod
    def execute(self, ctx: VideoTaggingContext, config: TaggingConfig) -> VideoTaggingContext:
        """
        Execute the stage logic.

        Raises:
            StageError: If stage execution fails
        """

    def on_error(self, ctx: VideoTaggingContext, error: BaseException, config: TaggingConfig) -> None:
        ctx.add_processing_note(
            f"{self.name}_error",
            {
                "type": type(error).__name__,
                "message": str(error)[:500],
                "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            },
        )

    def validate_inputs(self, ctx: VideoTaggingContext) -> None:
        """
        Validate that required inputs exist in the context.

        Raises:
            StageError: If required inputs are missing
        """

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, optional={self.optional})"


class VideoTaggingPipeline:
    """
    Runs a video ad through its stages in order.

    There are no retries inside the pipeline: a failed required stage ends
    the run and the typed error is returned to the scheduler, which owns
    retry counting and backoff. Scratch files are removed whether the run
    succeeds or fails.

    Usage:
        pipeline = VideoTaggingPipeline(stages=default_stages())
        result = pipeline.process(candidate, recorder)
    """

    def __init__(self, stages: List[Stage], config: Optional[TaggingConfig] = None):
        self.stages = stages
        self.config = config or get_tagging_config()

        names = [s.name for s in stages]
        if len(names) != len(set(names)):
            raise ValueError("Stage names must be unique")

    def process(
        self,
        candidate: TaggingCandidate,
        recorder: Optional[CostRecorder] = None,
    ) -> VideoTaggingResult:
        ctx = VideoTaggingContext(
            ad_id=candidate.id,
            video_url=candidate.media_url,
            catalog_duration=candidate.video_duration,
            recorder=recorder,
        )
        error: Optional[BaseException] = None

        try:
            for stage in self.stages:
                ctx = self._run_stage(stage, ctx)
        except PipelineError as e:
            error = e
            logger.error("[%s] Video tagging failed at %s: %s", ctx.ad_id, e.stage_name, str(e)[:200])
        except Exception as e:
            error = e
            logger.exception("[%s] Unexpected error: %s", ctx.ad_id, str(e)[:200])
        finally:
            self._cleanup(ctx)

        result = VideoTaggingResult.from_context(ctx, error)
        if result.success:
            logger.info(
                "[%s] Video tagged in %.1fs - keyframes=%d, shifts=%d, words=%d",
                ctx.ad_id, result.elapsed_time, result.keyframe_count,
                len(result.visual_shifts), result.word_count,
            )
        logger.debug("[%s] Pipeline summary: %s", ctx.ad_id, ctx.to_summary())
        return result

    def _run_stage(self, stage: Stage, ctx: VideoTaggingContext) -> VideoTaggingContext:
        if not stage.should_run(ctx, self.config):
            ctx.mark_stage_skipped(stage.name)
            logger.debug("[%s] Skipping stage: %s", ctx.ad_id, stage.name)
            return ctx

        try:
            stage.validate_inputs(ctx)
        except StageError as e:
            if stage.optional:
                ctx.mark_stage_skipped(stage.name)
                logger.debug("[%s] Skipping %s (missing inputs): %s", ctx.ad_id, stage.name, e)
                return ctx
            raise

        started = time.perf_counter()
        try:
            logger.debug("[%s] Running stage: %s", ctx.ad_id, stage.name)
            ctx = stage.execute(ctx, self.config)
        except StageSkipped as e:
            ctx.mark_stage_skipped(stage.name)
            logger.debug("[%s] %s skipped: %s", ctx.ad_id, stage.name, e.reason)
            return ctx
        except RateLimitedError as e:
            stage.on_error(ctx, e, self.config)
            ctx.mark_stage_failed(stage.name)
            raise
        except Exception as e:
            stage.on_error(ctx, e, self.config)
            ctx.mark_stage_failed(stage.name)
            if stage.optional:
                logger.warning("[%s] Optional stage %s failed: %s", ctx.ad_id, stage.name, str(e)[:200])
                return ctx
            if isinstance(e, PipelineError):
                raise
            raise StageError(str(e), stage.name, cause=e) from e

        ctx.mark_stage_complete(stage.name)
        logger.debug(
            "[%s] %s completed in %.2fs", ctx.ad_id, stage.name, time.perf_counter() - started
        )
        return ctx

    def _cleanup(self, ctx: VideoTaggingContext) -> None:
        """Clean up all temp resources."""
        from .. import media

        for temp_dir in ctx.temp_dirs:
            if temp_dir.exists():
                media.cleanup_dir(temp_dir)
                logger.debug("Cleaned up temp dir: %s", temp_dir)
