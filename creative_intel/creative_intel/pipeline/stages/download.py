"""
Stage 1: Download

Downloads the remote video into a per-ad scratch directory and inspects it.
"""

from __future__ import annotations

import logging

from ...config import TaggingConfig
from ..base import Stage
from ..context import VideoTaggingContext
from ..errors import DecodeError, StageError

logger = logging.getLogger("creative_intel.pipeline.download")


class DownloadStage(Stage):
    """
    Stage 1: Fetch the video and read its duration.

    Responsibilities:
    - Create and register the scratch directory
    - Download with a hard timeout
    - Read duration and audio presence (a failed inspection is tolerated)
    - Set ctx.video_path, ctx.duration_seconds, ctx.has_audio

    Raises:
        FetchError: If the video cannot be downloaded
    """

    name = "DownloadStage"
    optional = False

    def should_run(self, ctx: VideoTaggingContext, config: TaggingConfig) -> bool:
        return ctx.video_path is None

    def execute(self, ctx: VideoTaggingContext, config: TaggingConfig) -> VideoTaggingContext:
        from ... import media

        scratch = media.make_scratch_dir(prefix=f"creative_intel_{ctx.ad_id}_")
        ctx.register_temp_dir(scratch)
        ctx.scratch_dir = scratch

        ctx.video_path = media.download_to_path(
            ctx.video_url, scratch / "video.mp4", timeout=config.download_timeout
        )

        try:
            info = media.inspect_media(ctx.video_path, timeout=config.ffmpeg_timeout)
        except DecodeError as e:
            logger.warning("[%s] Media inspection failed, using fixed keyframe offsets: %s", ctx.ad_id, e)
            ctx.add_processing_note("inspect_failed", {"message": str(e)[:200]})
            return ctx

        ctx.duration_seconds = info.duration_seconds
        ctx.has_audio = info.has_audio
        logger.debug(
            "[%s] Downloaded video: duration=%s, audio=%s",
            ctx.ad_id, info.duration_seconds, info.has_audio,
        )
        return ctx

    def validate_inputs(self, ctx: VideoTaggingContext) -> None:
        if not ctx.video_url:
            raise StageError("video_url is required", self.name)
