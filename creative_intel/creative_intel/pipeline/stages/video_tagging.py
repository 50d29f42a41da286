"""
Stage 6: Video tagging

Classifies the model-driven video dimensions from the transcript and the
hook-frame tags, then adds the duration bucket computed from seconds.
"""

from __future__ import annotations

import logging

from ...config import TaggingConfig
from ...taxonomy import duration_bucket
from ..base import Stage
from ..context import VideoTaggingContext
from ..errors import StageError

logger = logging.getLogger("creative_intel.pipeline.video_tagging")


class VideoTaggingStage(Stage):
    """Stage 6: Video taxonomy (required)."""

    name = "VideoTaggingStage"
    optional = False

    def should_run(self, ctx: VideoTaggingContext, config: TaggingConfig) -> bool:
        return not ctx.video_tags

    def execute(self, ctx: VideoTaggingContext, config: TaggingConfig) -> VideoTaggingContext:
        from ... import video_vision

        tags = video_vision.classify_video_tags(
            ctx.transcript, ctx.hook_tags, ad_id=ctx.ad_id, recorder=ctx.recorder
        )
        seconds = ctx.effective_duration
        if seconds is None:
            logger.warning("[%s] Duration unknown; bucketing as 0s", ctx.ad_id)
            seconds = 0.0
        tags["video_duration_bucket"] = duration_bucket(seconds)
        ctx.video_tags = tags
        return ctx

    def validate_inputs(self, ctx: VideoTaggingContext) -> None:
        if not ctx.hook_tags:
            raise StageError("hook_tags are required", self.name)
