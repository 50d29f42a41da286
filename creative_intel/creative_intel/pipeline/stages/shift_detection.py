"""
Stage 5: Shift detection

Asks for a "major visual change" judgment on each consecutive keyframe pair.
"""

from __future__ import annotations

import logging

from ...config import TaggingConfig
from ..base import Stage
from ..context import VideoTaggingContext

logger = logging.getLogger("creative_intel.pipeline.shift_detection")


class ShiftDetectionStage(Stage):
    """Stage 5: Ordered list of scene shifts (optional)."""

    name = "ShiftDetectionStage"
    optional = True

    def should_run(self, ctx: VideoTaggingContext, config: TaggingConfig) -> bool:
        return len(ctx.keyframes) >= 2

    def execute(self, ctx: VideoTaggingContext, config: TaggingConfig) -> VideoTaggingContext:
        from ... import video_vision

        ctx.visual_shifts = video_vision.detect_visual_shifts(
            ctx.keyframes, ad_id=ctx.ad_id, recorder=ctx.recorder
        )
        logger.debug("[%s] Detected %d visual shifts", ctx.ad_id, len(ctx.visual_shifts))
        return ctx
