"""
Pipeline stages for video tagging.

Stages are executed in order, each reading from and writing to the shared
VideoTaggingContext.
"""

from .download import DownloadStage
from .keyframes import KeyframeStage
from .transcription import TranscriptionStage
from .hook_tagging import HookTaggingStage
from .shift_detection import ShiftDetectionStage
from .video_tagging import VideoTaggingStage

__all__ = [
    "DownloadStage",
    "KeyframeStage",
    "TranscriptionStage",
    "HookTaggingStage",
    "ShiftDetectionStage",
    "VideoTaggingStage",
    "default_stages",
]


def default_stages():
    """Fresh stage instances in execution order."""
    return [
        DownloadStage(),
        KeyframeStage(),
        TranscriptionStage(),
        HookTaggingStage(),
        ShiftDetectionStage(),
        VideoTaggingStage(),
    ]
