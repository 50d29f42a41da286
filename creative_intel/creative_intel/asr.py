"""
ASR wrapper for transcribing the audio track of video ads.

Uses the OpenAI Whisper API (or any OpenAI-compatible transcription endpoint
via OPENAI_API_BASE). The client is created with an explicit timeout and SDK
retries disabled; the tagging scheduler owns retry and backoff.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

import openai
from openai import OpenAI

from .config import get_asr_config
from .costs import CostRecorder, estimate_audio_cost
from .models import CostLogEntry
from .pipeline.errors import RateLimitedError, TranscriptionError, describe_error

logger = logging.getLogger(__name__)

# ~128 kbps: used only when the API does not report a duration
ESTIMATED_BYTES_PER_SECOND = 16000


@dataclass
class Transcript:
    text: str
    word_count: int
    audio_seconds: float
    estimated_cost_usd: float = 0.0
    latency_ms: int = 0


@lru_cache(maxsize=1)
def _get_openai_client() -> OpenAI:
    cfg = get_asr_config()
    return OpenAI(
        api_key=cfg.api_key,
        base_url=cfg.api_base,
        timeout=cfg.request_timeout,
        max_retries=0,
    )


def count_words(text: Optional[str]) -> int:
    return len(text.split()) if text else 0


def estimate_audio_seconds(audio_path: Path) -> float:
    try:
        return audio_path.stat().st_size / ESTIMATED_BYTES_PER_SECOND
    except OSError:
        return 0.0


def _call_whisper(audio_path: Path, model_name: str):
    """Invoke the transcription API with verbose output (includes duration)."""
    client = _get_openai_client()
    with open(audio_path, "rb") as audio_file:
        return client.audio.transcriptions.create(
            model=model_name,
            file=audio_file,
            response_format="verbose_json",
            temperature=0,
        )


def transcribe_audio(
    audio_path: Path,
    *,
    ad_id: str,
    recorder: Optional[CostRecorder] = None,
) -> Transcript:
    """
    Transcribe an audio file and record a ``transcription`` cost entry.

    Raises:
        RateLimitedError: the endpoint returned 429
        TranscriptionError: timeout, connection or API failure
    """
    cfg = get_asr_config()
    started = time.perf_counter()
    audio_seconds = 0.0
    failure: Optional[BaseException] = None
    try:
        try:
            response = _call_whisper(audio_path, cfg.model_name)
        except openai.RateLimitError as exc:
            raise RateLimitedError(f"Rate limited: {exc}", "transcription", cause=exc) from exc
        except (openai.APITimeoutError, openai.APIConnectionError) as exc:
            raise TranscriptionError(f"Transcription request failed: {exc}", cause=exc) from exc
        except openai.APIError as exc:
            raise TranscriptionError(f"Transcription API error: {exc}", cause=exc) from exc

        text = (getattr(response, "text", None) or "").strip()
        reported = getattr(response, "duration", None)
        audio_seconds = float(reported) if reported else estimate_audio_seconds(audio_path)
    except BaseException as exc:
        failure = exc
        raise
    finally:
        latency_ms = int((time.perf_counter() - started) * 1000)
        # failed calls are logged for latency but not billed
        cost = estimate_audio_cost(audio_seconds, cfg) if failure is None else 0.0
        if recorder is not None:
            recorder.record(
                CostLogEntry(
                    ad_id=ad_id,
                    stage="transcription",
                    model=cfg.model_name,
                    audio_seconds=round(audio_seconds, 2),
                    estimated_cost_usd=cost,
                    latency_ms=latency_ms,
                    success=failure is None,
                    error=describe_error(failure) if failure is not None else None,
                )
            )

    word_count = count_words(text)
    logger.debug("[%s] Transcribed %.1fs of audio: %d words", ad_id, audio_seconds, word_count)
    return Transcript(
        text=text,
        word_count=word_count,
        audio_seconds=audio_seconds,
        estimated_cost_usd=cost,
        latency_ms=latency_ms,
    )


__all__ = ["Transcript", "transcribe_audio", "count_words"]
