"""
Stage 4: Hook tagging

Classifies the opening keyframe against the visual taxonomy.
"""

from __future__ import annotations

import logging

from ...config import TaggingConfig
from ..base import Stage
from ..context import VideoTaggingContext
from ..errors import StageError

logger = logging.getLogger("creative_intel.pipeline.hook_tagging")


class HookTaggingStage(Stage):
    """Stage 4: Visual tags for the first keyframe (required)."""

    name = "HookTaggingStage"
    optional = False

    def should_run(self, ctx: VideoTaggingContext, config: TaggingConfig) -> bool:
        return not ctx.hook_tags

    def execute(self, ctx: VideoTaggingContext, config: TaggingConfig) -> VideoTaggingContext:
        from ... import video_vision

        result = video_vision.classify_hook_frame(
            ctx.keyframes[0], ad_id=ctx.ad_id, recorder=ctx.recorder
        )
        ctx.hook_tags = result.tags
        return ctx

    def validate_inputs(self, ctx: VideoTaggingContext) -> None:
        if not ctx.keyframes:
            raise StageError("keyframes are required", self.name)
