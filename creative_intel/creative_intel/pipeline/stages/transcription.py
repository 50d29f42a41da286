"""
Stage 3: Transcription

Extracts the audio track and transcribes it. Silent videos and failed
transcriptions leave the transcript empty; tagging continues without it.
"""

from __future__ import annotations

import logging

from ...config import TaggingConfig
from ..base import Stage
from ..context import VideoTaggingContext
from ..errors import StageError, StageSkipped

logger = logging.getLogger("creative_intel.pipeline.transcription")


class TranscriptionStage(Stage):
    """
    Stage 3: Extract audio and transcribe it (optional).

    Responsibilities:
    - Extract a compressed mono audio track
    - Call the speech-to-text API
    - Set ctx.audio_path, ctx.transcript, ctx.word_count

    A rate limit from the speech-to-text API still propagates (see Stage).
    """

    name = "TranscriptionStage"
    optional = True

    def should_run(self, ctx: VideoTaggingContext, config: TaggingConfig) -> bool:
        return ctx.transcript is None

    def execute(self, ctx: VideoTaggingContext, config: TaggingConfig) -> VideoTaggingContext:
        from ... import asr, media

        if not ctx.has_audio:
            ctx.add_processing_note("no_audio", {"reason": "no audio stream"})
            raise StageSkipped(self.name, "no audio stream")

        audio_path = media.extract_audio(
            ctx.video_path, ctx.scratch_dir / "audio.mp3", timeout=config.ffmpeg_timeout
        )
        if audio_path is None:
            ctx.add_processing_note("no_audio", {"reason": "audio extraction produced nothing"})
            raise StageSkipped(self.name, "no audio extracted")
        ctx.audio_path = audio_path

        transcript = asr.transcribe_audio(audio_path, ad_id=ctx.ad_id, recorder=ctx.recorder)
        if not transcript.text:
            logger.info("[%s] Transcript is empty - ad may have no spoken audio", ctx.ad_id)
        ctx.transcript = transcript.text or None
        ctx.word_count = transcript.word_count
        return ctx

    def validate_inputs(self, ctx: VideoTaggingContext) -> None:
        if ctx.video_path is None or ctx.scratch_dir is None:
            raise StageError("video_path is required", self.name)
