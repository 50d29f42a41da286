"""
Gemini calls specific to video creatives: hook frame, scene shifts and the
transcript-driven video taxonomy.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from google.genai import types

from .costs import CostRecorder
from .models import VisualShift
from .pipeline.errors import NoResponseError, RateLimitedError, ResponseParseError, TransientError
from .taxonomy import VIDEO_MODEL_TAXONOMY, build_video_classification_prompt
from .vision import ClassificationResult, classify_image_bytes, generate_json

logger = logging.getLogger(__name__)

SHIFT_PROMPT = (
    "Compare these two consecutive frames from a video ad. Is there a MAJOR visual change "
    "(different scene, person, product focus, transition)? Reply JSON only: "
    '{"changed": true/false, "description": "brief description if changed"}'
)
SHIFT_MAX_OUTPUT_TOKENS = 256
DEFAULT_SHIFT_DESCRIPTION = "Visual change detected"


def _frame_part(frame_path: Path) -> Any:
    return types.Part.from_bytes(data=Path(frame_path).read_bytes(), mime_type="image/jpeg")


def classify_hook_frame(
    frame_path: Path,
    *,
    ad_id: str,
    recorder: Optional[CostRecorder] = None,
) -> ClassificationResult:
    """Classify the opening keyframe against the visual taxonomy."""
    return classify_image_bytes(
        Path(frame_path).read_bytes(),
        ad_id=ad_id,
        recorder=recorder,
        mime_type="image/jpeg",
        stage="hook_tagging",
    )


def _is_changed(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def detect_visual_shifts(
    frame_paths: Sequence[Path],
    *,
    ad_id: str,
    recorder: Optional[CostRecorder] = None,
) -> List[VisualShift]:
    """
    Ask the model about every consecutive keyframe pair.

    Pairs whose reply cannot be parsed are skipped. A rate limit ends shift
    detection early and the shifts found so far are returned.
    """
    shifts: List[VisualShift] = []
    for i in range(len(frame_paths) - 1):
        parts = [
            types.Part.from_text(text=SHIFT_PROMPT),
            _frame_part(frame_paths[i]),
            _frame_part(frame_paths[i + 1]),
        ]
        try:
            response = generate_json(
                parts,
                ad_id=ad_id,
                stage="shift_detection",
                recorder=recorder,
                max_output_tokens=SHIFT_MAX_OUTPUT_TOKENS,
            )
        except RateLimitedError:
            logger.warning("[%s] Rate limited during shift detection after pair %d", ad_id, i)
            break
        except (ResponseParseError, NoResponseError, TransientError) as exc:
            logger.warning("[%s] Skipping frame pair %d/%d: %s", ad_id, i, i + 1, exc)
            continue

        if _is_changed(response.data.get("changed")):
            description = str(response.data.get("description") or "").strip()
            shifts.append(
                VisualShift(frame_index=i + 1, description=description or DEFAULT_SHIFT_DESCRIPTION)
            )
    return shifts


def classify_video_tags(
    transcript: Optional[str],
    hook_tags: Mapping[str, str],
    *,
    ad_id: str,
    recorder: Optional[CostRecorder] = None,
) -> Dict[str, str]:
    """Classify the six model-driven video dimensions from transcript + hook context."""
    prompt = build_video_classification_prompt(transcript, hook_tags)
    response = generate_json(
        [types.Part.from_text(text=prompt)],
        ad_id=ad_id,
        stage="video_tagging",
        recorder=recorder,
        taxonomy=VIDEO_MODEL_TAXONOMY,
    )
    return dict(response.data)


__all__ = [
    "SHIFT_PROMPT",
    "classify_hook_frame",
    "detect_visual_shifts",
    "classify_video_tags",
]
