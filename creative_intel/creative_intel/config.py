"""
Configuration helpers for the creative intelligence pipeline.

Centralises environment variable loading/validation so the rest of the codebase
can depend on typed config objects instead of sprinkling os.getenv calls.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_VISION_MODEL = "gemini-2.5-flash"
DEFAULT_ASR_MODEL = "whisper-1"
LOG_LEVEL_CHOICES = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class DBConfig:
    """Connection info for the Postgres store."""

    url: str


@dataclass(frozen=True)
class VisionConfig:
    """Gemini vision classification credentials, model and pricing."""

    api_key: str
    model_name: str
    request_timeout: float
    max_output_tokens: int
    input_cost_per_mtok: float
    output_cost_per_mtok: float


@dataclass(frozen=True)
class ASRConfig:
    """OpenAI-compatible speech-to-text configuration."""

    api_key: str
    api_base: str
    model_name: str
    request_timeout: float
    cost_per_hour: float


@dataclass(frozen=True)
class TaggingConfig:
    """
    Scheduling knobs for the tagging pipeline.

    The defaults were tuned against one deployment's call-latency profile;
    every value can be overridden from the environment.
    """

    batch_size: int = 200
    concurrency: int = 3
    max_retries: int = 3
    backoff_base: float = 1.0
    backoff_cap: float = 30.0
    min_days_active: int = 2
    video_batch_size: int = 10
    video_time_budget: float = 250.0
    download_timeout: float = 60.0
    ffmpeg_timeout: float = 30.0
    image_fetch_timeout: float = 30.0


@dataclass(frozen=True)
class AnalysisConfig:
    """Windows and thresholds for the velocity/convergence/gap engines."""

    window_days: int = 30
    lookback_days: int = 90
    velocity_threshold: float = 0.3
    divergence_threshold: float = 0.15
    velocity_top_n: int = 10
    gap_top_n: int = 5


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    """Wrapper around os.getenv that trims whitespace."""
    value = os.getenv(name, default)
    if value is None:
        return None
    trimmed = value.strip()
    return trimmed or default


def _require_env(name: str) -> str:
    """Fetch an environment variable or raise a helpful error."""
    value = _get_env(name)
    if not value:
        raise RuntimeError(f"Expected environment variable '{name}' to be set.")
    return value


def _get_float_env(name: str, default: float) -> float:
    raw = _get_env(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a float, got '{raw}'.") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}.")
    return value


def _get_int_env(name: str, default: int, minimum: int = 1) -> int:
    raw = _get_env(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got '{raw}'.") from exc
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}.")
    return value


@lru_cache(maxsize=1)
def get_db_config() -> DBConfig:
    """Return Postgres connection info (DATABASE_URL, or legacy SUPABASE_DB_URL)."""
    url = _get_env("DATABASE_URL") or _get_env("SUPABASE_DB_URL")
    if not url:
        raise RuntimeError("Expected environment variable 'DATABASE_URL' to be set.")
    return DBConfig(url=url)


@lru_cache(maxsize=1)
def get_vision_config() -> VisionConfig:
    """Return configuration for Gemini image/frame classification."""
    return VisionConfig(
        api_key=_require_env("GOOGLE_API_KEY"),
        model_name=_get_env("VISION_MODEL_NAME") or DEFAULT_VISION_MODEL,
        request_timeout=_get_float_env("VISION_REQUEST_TIMEOUT", 60.0),
        max_output_tokens=_get_int_env("VISION_MAX_OUTPUT_TOKENS", 1024),
        input_cost_per_mtok=_get_float_env("VISION_INPUT_COST_PER_MTOK", 0.30),
        output_cost_per_mtok=_get_float_env("VISION_OUTPUT_COST_PER_MTOK", 2.50),
    )


@lru_cache(maxsize=1)
def get_asr_config() -> ASRConfig:
    """Return configuration for the Whisper transcription endpoint."""
    return ASRConfig(
        api_key=_require_env("OPENAI_API_KEY"),
        api_base=_get_env("OPENAI_API_BASE") or "https://api.openai.com/v1",
        model_name=_get_env("ASR_MODEL_NAME") or DEFAULT_ASR_MODEL,
        request_timeout=_get_float_env("ASR_REQUEST_TIMEOUT", 120.0),
        cost_per_hour=_get_float_env("ASR_COST_PER_HOUR", 0.36),
    )


@lru_cache(maxsize=1)
def get_tagging_config() -> TaggingConfig:
    """Return batch sizes, concurrency, retry and timeout settings for tagging."""
    return TaggingConfig(
        batch_size=_get_int_env("TAGGING_BATCH_SIZE", 200),
        concurrency=_get_int_env("TAGGING_CONCURRENCY", 3),
        max_retries=_get_int_env("TAGGING_MAX_RETRIES", 3),
        backoff_base=_get_float_env("TAGGING_BACKOFF_BASE", 1.0),
        backoff_cap=_get_float_env("TAGGING_BACKOFF_CAP", 30.0),
        min_days_active=_get_int_env("TAGGING_MIN_DAYS_ACTIVE", 2, minimum=0),
        video_batch_size=_get_int_env("VIDEO_BATCH_SIZE", 10),
        video_time_budget=_get_float_env("VIDEO_TIME_BUDGET", 250.0),
        download_timeout=_get_float_env("MEDIA_DOWNLOAD_TIMEOUT", 60.0),
        ffmpeg_timeout=_get_float_env("FFMPEG_TIMEOUT", 30.0),
        image_fetch_timeout=_get_float_env("IMAGE_FETCH_TIMEOUT", 30.0),
    )


@lru_cache(maxsize=1)
def get_analysis_config() -> AnalysisConfig:
    """Return analysis windows and thresholds."""
    return AnalysisConfig(
        window_days=_get_int_env("ANALYSIS_WINDOW_DAYS", 30),
        lookback_days=_get_int_env("ANALYSIS_LOOKBACK_DAYS", 90),
        velocity_threshold=_get_float_env("VELOCITY_THRESHOLD", 0.3),
        divergence_threshold=_get_float_env("DIVERGENCE_THRESHOLD", 0.15),
        velocity_top_n=_get_int_env("VELOCITY_TOP_N", 10),
        gap_top_n=_get_int_env("GAP_TOP_N", 5),
    )


def get_log_level() -> str:
    level = (_get_env("LOG_LEVEL") or "INFO").upper()
    if level not in LOG_LEVEL_CHOICES:
        raise ValueError(f"LOG_LEVEL must be one of {sorted(LOG_LEVEL_CHOICES)}, got '{level}'.")
    return level


def describe_active_models() -> dict:
    """Return a summary of the currently selected models (no credentials)."""
    vision_model = _get_env("VISION_MODEL_NAME") or DEFAULT_VISION_MODEL
    asr_model = _get_env("ASR_MODEL_NAME") or DEFAULT_ASR_MODEL
    return {"vision": vision_model, "asr": asr_model}


__all__ = [
    "DBConfig",
    "VisionConfig",
    "ASRConfig",
    "TaggingConfig",
    "AnalysisConfig",
    "get_db_config",
    "get_vision_config",
    "get_asr_config",
    "get_tagging_config",
    "get_analysis_config",
    "get_log_level",
    "describe_active_models",
]
