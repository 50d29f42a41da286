"""
Taxonomy registries for creative classification.

Two closed vocabularies are defined here:

- VISUAL_TAXONOMY: 12 dimensions that apply to every creative (and to the
  opening frame of a video).
- VIDEO_TAXONOMY: 7 video-only dimensions; 6 are model-classified and
  ``video_duration_bucket`` is computed from measured seconds.

The registries are a versioned contract. Changing an allowed value breaks
comparability with stored snapshots and must ship with a schema migration.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

TAXONOMY_VERSION = "2025.1"

VISUAL_TAXONOMY: Mapping[str, Tuple[str, ...]] = MappingProxyType({
    "format_type": (
        "static_image",
        "ugc_talking_head",
        "product_demo",
        "motion_graphics",
        "lifestyle_photo",
        "before_after",
        "carousel_card",
        "screenshot_testimonial",
    ),
    "hook_type_visual": (
        "problem_agitation",
        "bold_claim",
        "question",
        "statistic",
        "curiosity_gap",
        "social_proof",
        "none",
    ),
    "human_presence": (
        "full_face",
        "partial_body",
        "hands_only",
        "no_human",
        "crowd_multiple",
    ),
    "text_overlay_density": (
        "none",
        "minimal_headline_only",
        "moderate",
        "heavy_text_dominant",
    ),
    "text_overlay_position": (
        "top",
        "center",
        "bottom",
        "split_top_bottom",
        "none",
    ),
    "color_temperature": (
        "warm",
        "cool",
        "neutral",
        "high_contrast",
        "muted",
    ),
    "background_style": (
        "solid_color",
        "gradient",
        "real_environment",
        "studio",
        "blurred",
    ),
    "product_visibility": (
        "hero_center",
        "in_use",
        "secondary",
        "not_visible",
    ),
    "cta_visual_style": (
        "button",
        "text_only",
        "overlay_banner",
        "end_card",
        "none",
    ),
    "visual_composition": (
        "centered_single",
        "split_screen",
        "grid_collage",
        "full_bleed",
        "framed",
    ),
    "brand_element_presence": (
        "logo_visible",
        "brand_colors_dominant",
        "neither",
        "both",
    ),
    "emotion_energy_level": (
        "calm_aspirational",
        "urgent_high_energy",
        "educational_neutral",
        "emotional_storytelling",
        "humorous",
    ),
})

VIDEO_TAXONOMY: Mapping[str, Tuple[str, ...]] = MappingProxyType({
    "script_structure": (
        "problem_solution",
        "testimonial_narrative",
        "listicle_tips",
        "demonstration",
        "story_arc",
        "no_script_music_only",
    ),
    "verbal_hook_type": (
        "question",
        "bold_claim",
        "statistic",
        "direct_address",
        "pain_point",
        "none_no_speech",
    ),
    "pacing": (
        "fast_cut_under_3s",
        "moderate_3_5s",
        "slow_single_shot",
        "mixed",
    ),
    "audio_style": (
        "voiceover",
        "direct_to_camera",
        "music_only",
        "mixed_voice_and_music",
        "silent",
    ),
    "video_duration_bucket": (
        "under_15s",
        "15_to_30s",
        "30_to_60s",
        "over_60s",
    ),
    "narrative_arc": (
        "single_scene",
        "face_to_product",
        "product_to_result",
        "problem_to_solution",
        "testimonial_to_cta",
        "multi_scene_montage",
    ),
    "opening_frame": (
        "human_face",
        "text_hook",
        "product_closeup",
        "environment_scene",
        "brand_logo",
    ),
})

COMPUTED_VIDEO_DIMENSIONS = ("video_duration_bucket",)

# Dimensions the model classifies from the transcript + hook frame
VIDEO_MODEL_TAXONOMY: Mapping[str, Tuple[str, ...]] = MappingProxyType({
    dim: values
    for dim, values in VIDEO_TAXONOMY.items()
    if dim not in COMPUTED_VIDEO_DIMENSIONS
})

ALL_DIMENSIONS: Mapping[str, Tuple[str, ...]] = MappingProxyType(
    {**VISUAL_TAXONOMY, **VIDEO_TAXONOMY}
)

HOOK_PREFIX = "hook_"
NO_SPEECH_PLACEHOLDER = "[No speech detected - music/silent video]"


def validate_tag_set(
    raw: Mapping[str, object],
    taxonomy: Mapping[str, Tuple[str, ...]] = VISUAL_TAXONOMY,
) -> List[str]:
    """
    Check a model response against a registry.

    Returns a list of human-readable problems; an empty list means every
    dimension is present with an allowed value. Extra keys are ignored.
    """
    errors: List[str] = []
    for dimension, allowed in taxonomy.items():
        value = raw.get(dimension)
        if value is None:
            errors.append(f"Missing dimension: {dimension}")
            continue
        if not isinstance(value, str) or value not in allowed:
            errors.append(
                f'Invalid value for {dimension}: "{value}". Must be one of: {", ".join(allowed)}'
            )
    return errors


def normalize_tag_set(
    raw: Mapping[str, object],
    taxonomy: Mapping[str, Tuple[str, ...]] = VISUAL_TAXONOMY,
) -> Dict[str, str]:
    """Return only the registry's dimensions from an already-validated response."""
    return {dimension: str(raw[dimension]) for dimension in taxonomy}


def is_valid_value(dimension: str, value: Optional[str]) -> bool:
    allowed = ALL_DIMENSIONS.get(dimension)
    return allowed is not None and value in allowed


def _dimension_lines(taxonomy: Mapping[str, Tuple[str, ...]]) -> str:
    lines = []
    for dimension, values in taxonomy.items():
        quoted = ", ".join(f'"{v}"' for v in values)
        lines.append(f'"{dimension}": one of [{quoted}]')
    return "\n".join(lines)


def build_classification_prompt() -> str:
    """Structural prompt for classifying a still image against the visual taxonomy."""
    return (
        f"Analyze this ad image. Classify it across exactly {len(VISUAL_TAXONOMY)} dimensions.\n"
        "Pick EXACTLY ONE value per dimension. Return ONLY a JSON object with no markdown, "
        "no explanation.\n\n"
        f"{_dimension_lines(VISUAL_TAXONOMY)}"
    )


def summarize_tags(tags: Mapping[str, str]) -> str:
    """Render a tag set as ``dim: value, dim: value`` for prompt context."""
    return ", ".join(f"{dim}: {value}" for dim, value in tags.items())


def build_video_classification_prompt(
    transcript: Optional[str],
    hook_tags: Mapping[str, str],
) -> str:
    """Prompt for the model-classified video dimensions."""
    transcript_block = transcript.strip() if transcript and transcript.strip() else NO_SPEECH_PLACEHOLDER
    hook_block = summarize_tags(hook_tags) if hook_tags else "unavailable"
    return (
        "You are classifying a short-form video ad.\n\n"
        f"TRANSCRIPT:\n{transcript_block}\n\n"
        f"HOOK FRAME VISUAL CONTEXT:\n{hook_block}\n\n"
        f"Classify the video across exactly {len(VIDEO_MODEL_TAXONOMY)} dimensions. "
        "Pick EXACTLY ONE value per dimension. Return ONLY a JSON object with no markdown, "
        "no explanation.\n\n"
        f"{_dimension_lines(VIDEO_MODEL_TAXONOMY)}"
    )


def duration_bucket(seconds: float) -> str:
    """Deterministic duration bucket; never model-classified."""
    if seconds < 15:
        return "under_15s"
    if seconds < 30:
        return "15_to_30s"
    if seconds < 60:
        return "30_to_60s"
    return "over_60s"


def prefix_hook_tags(tags: Mapping[str, str]) -> Dict[str, str]:
    """Hook-frame tags are stored alongside video tags as ``hook_<dimension>``."""
    return {f"{HOOK_PREFIX}{dim}": value for dim, value in tags.items()}


__all__ = [
    "TAXONOMY_VERSION",
    "VISUAL_TAXONOMY",
    "VIDEO_TAXONOMY",
    "VIDEO_MODEL_TAXONOMY",
    "ALL_DIMENSIONS",
    "HOOK_PREFIX",
    "validate_tag_set",
    "normalize_tag_set",
    "is_valid_value",
    "build_classification_prompt",
    "build_video_classification_prompt",
    "summarize_tags",
    "duration_bucket",
    "prefix_hook_tags",
]
