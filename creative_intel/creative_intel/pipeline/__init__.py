"""
Pipeline module for video creative tagging.

Provides a composable, stage-based architecture for classifying video ads.
Each stage is independently testable.
"""

from .base import Stage, VideoTaggingPipeline, VideoTaggingResult
from .context import VideoTaggingContext
from .errors import (
    PipelineError,
    StageError,
    StageSkipped,
    TransientError,
    PermanentError,
    FetchError,
    DecodeError,
    NoResponseError,
    RateLimitedError,
    ResponseParseError,
    TagValidationError,
    NoKeyframesError,
    TranscriptionError,
)

__all__ = [
    # Core classes
    "Stage",
    "VideoTaggingPipeline",
    "VideoTaggingResult",
    "VideoTaggingContext",
    # Exceptions
    "PipelineError",
    "StageError",
    "StageSkipped",
    "TransientError",
    "PermanentError",
    "FetchError",
    "DecodeError",
    "NoResponseError",
    "RateLimitedError",
    "ResponseParseError",
    "TagValidationError",
    "NoKeyframesError",
    "TranscriptionError",
]
