"""
Stage 2: Keyframes

Extracts five keyframes spread across the video.
"""

from __future__ import annotations

import logging
import time

from ...config import TaggingConfig
from ...models import CostLogEntry
from ..base import Stage
from ..context import VideoTaggingContext
from ..errors import NoKeyframesError, StageError

logger = logging.getLogger("creative_intel.pipeline.keyframes")


class KeyframeStage(Stage):
    """
    Stage 2: Extract keyframes at 0/25/50/75/99% of the duration.

    Individual frame failures are tolerated. Zero frames aborts the ad, since
    hook classification has nothing to look at.

    Raises:
        NoKeyframesError: If no frame could be extracted
    """

    name = "KeyframeStage"
    optional = False

    def should_run(self, ctx: VideoTaggingContext, config: TaggingConfig) -> bool:
        return not ctx.keyframes

    def execute(self, ctx: VideoTaggingContext, config: TaggingConfig) -> VideoTaggingContext:
        from ... import media

        started = time.perf_counter()
        frames = media.extract_keyframes(
            ctx.video_path,
            ctx.scratch_dir / "frames",
            ctx.effective_duration,
            timeout=config.ffmpeg_timeout,
        )
        latency_ms = int((time.perf_counter() - started) * 1000)

        if ctx.recorder is not None:
            ctx.recorder.record(
                CostLogEntry(
                    ad_id=ctx.ad_id,
                    stage="keyframe_extraction",
                    model="ffmpeg",
                    latency_ms=latency_ms,
                    success=bool(frames),
                    error=None if frames else "NO_KEYFRAMES",
                )
            )

        if not frames:
            raise NoKeyframesError(stage_name=self.name)

        ctx.keyframes = frames
        logger.debug("[%s] Extracted %d keyframes in %dms", ctx.ad_id, len(frames), latency_ms)
        return ctx

    def validate_inputs(self, ctx: VideoTaggingContext) -> None:
        if ctx.video_path is None or ctx.scratch_dir is None:
            raise StageError("video_path is required", self.name)
