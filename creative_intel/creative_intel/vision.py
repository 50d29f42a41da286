"""
Gemini-backed image classification.

One call per creative: the image bytes plus a structural prompt asking for
exactly one value per visual-taxonomy dimension. The JSON reply is parsed
(tolerating a markdown fence) and validated against the registry. Any
missing or invalid dimension fails the whole call.

Every call records tokens, latency and estimated cost through the supplied
``CostRecorder`` whether it succeeds or not. Nothing here retries: rate
limits and timeouts surface as typed errors for the scheduler to handle.
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import requests
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from .config import VisionConfig, get_tagging_config, get_vision_config
from .costs import CostRecorder, estimate_token_cost
from .models import CostLogEntry
from .pipeline.errors import (
    FetchError,
    NoResponseError,
    PermanentError,
    RateLimitedError,
    ResponseParseError,
    TagValidationError,
    TransientError,
    describe_error,
)
from .taxonomy import VISUAL_TAXONOMY, build_classification_prompt, normalize_tag_set, validate_tag_set

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "image/jpeg"
_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_TRANSIENT_MARKERS = ("timeout", "timed out", "connection", "temporarily", "unavailable", "503", "502")
_RATE_LIMIT_MARKERS = ("429", "rate limit", "resource_exhausted", "resource exhausted", "quota")


@dataclass
class ModelResponse:
    """Parsed JSON reply plus usage for one model call."""
    data: Dict[str, Any]
    input_tokens: int = 0
    output_tokens: int = 0
    estimated_cost_usd: float = 0.0
    latency_ms: int = 0


@dataclass
class ClassificationResult:
    """A validated visual tag set and the cost of producing it."""
    tags: Dict[str, str] = field(default_factory=dict)
    input_tokens: int = 0
    output_tokens: int = 0
    estimated_cost_usd: float = 0.0
    latency_ms: int = 0


@lru_cache(maxsize=1)
def _get_client() -> genai.Client:
    cfg = get_vision_config()
    return genai.Client(
        api_key=cfg.api_key,
        http_options=types.HttpOptions(timeout=int(cfg.request_timeout * 1000)),
    )


def fetch_image(url: str, timeout: Optional[float] = None) -> Tuple[bytes, str]:
    """Download a creative's still image. Returns ``(bytes, mime_type)``."""
    timeout = timeout or get_tagging_config().image_fetch_timeout
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise FetchError(f"Failed to fetch image: {exc}", "fetch_image", cause=exc) from exc
    if not response.content:
        raise FetchError(f"Failed to fetch image: empty body from {url}", "fetch_image")
    mime_type = (response.headers.get("Content-Type") or DEFAULT_MIME_TYPE).split(";")[0].strip()
    if not mime_type.startswith("image/"):
        mime_type = DEFAULT_MIME_TYPE
    return response.content, mime_type


def _strip_markdown_fences(text: str) -> str:
    """Remove markdown code fences (```json ... ``` or ``` ... ```) from text."""
    cleaned = text.strip()
    match = _FENCE_RE.search(cleaned)
    if match:
        return match.group(1).strip()
    return cleaned


def parse_json_object(raw: str, stage: str = "classification") -> Dict[str, Any]:
    """Parse a JSON object from model text, tolerating a fenced-code wrapper."""
    cleaned = _strip_markdown_fences(raw)
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        # Prose around a bare object: fall back to the outermost braces
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise ResponseParseError(stage_name=stage)
        try:
            parsed = json.loads(cleaned[start:end + 1])
        except json.JSONDecodeError as exc:
            raise ResponseParseError(stage_name=stage, cause=exc) from exc
    if not isinstance(parsed, dict):
        raise ResponseParseError("Failed to parse JSON response: expected an object", stage)
    return parsed


def _translate_api_error(exc: genai_errors.APIError, stage: str) -> Exception:
    code = getattr(exc, "code", None)
    status = str(getattr(exc, "status", "") or "").upper()
    message = str(exc)
    if code == 429 or "RESOURCE_EXHAUSTED" in status:
        return RateLimitedError(f"Rate limited: {message[:200]}", stage, cause=exc)
    if code is not None and code >= 500:
        return TransientError(f"Vision API error {code}: {message[:200]}", stage, cause=exc)
    return PermanentError(f"Vision API error {code}: {message[:200]}", stage, cause=exc)


def _translate_transport_error(exc: Exception, stage: str) -> Optional[Exception]:
    lowered = str(exc).lower()
    if any(marker in lowered for marker in _RATE_LIMIT_MARKERS):
        return RateLimitedError(f"Rate limited: {str(exc)[:200]}", stage, cause=exc)
    if any(marker in lowered for marker in _TRANSIENT_MARKERS) or isinstance(exc, TimeoutError):
        return TransientError(f"Vision call failed: {str(exc)[:200]}", stage, cause=exc)
    return None


def _usage(response: Any) -> Tuple[int, int]:
    usage = getattr(response, "usage_metadata", None)
    if usage is None:
        return 0, 0
    return (
        int(getattr(usage, "prompt_token_count", 0) or 0),
        int(getattr(usage, "candidates_token_count", 0) or 0),
    )


def _check_blocked(response: Any, stage: str) -> None:
    candidates = getattr(response, "candidates", None)
    if not candidates:
        return
    finish_reason = str(getattr(candidates[0], "finish_reason", "") or "").upper()
    if "SAFETY" in finish_reason or "BLOCKED" in finish_reason:
        logger.warning("Gemini response blocked by safety filter: %s", finish_reason)
        raise NoResponseError(f"No text in response: blocked ({finish_reason})", stage)


def generate_json(
    parts: Sequence[Any],
    *,
    ad_id: str,
    stage: str,
    recorder: Optional[CostRecorder] = None,
    taxonomy: Optional[Mapping[str, Tuple[str, ...]]] = None,
    max_output_tokens: Optional[int] = None,
    cfg: Optional[VisionConfig] = None,
) -> ModelResponse:
    """
    Run one Gemini call and return its JSON reply.

    When ``taxonomy`` is given the reply must contain every dimension with an
    allowed value and ``data`` holds only those dimensions.

    Raises:
        RateLimitedError, NoResponseError, ResponseParseError,
        TagValidationError, TransientError, PermanentError
    """
    cfg = cfg or get_vision_config()
    started = time.perf_counter()
    input_tokens = output_tokens = 0
    failure: Optional[BaseException] = None
    try:
        client = _get_client()
        try:
            response = client.models.generate_content(
                model=cfg.model_name,
                contents=list(parts),
                config=types.GenerateContentConfig(
                    temperature=0,
                    max_output_tokens=max_output_tokens or cfg.max_output_tokens,
                ),
            )
        except genai_errors.APIError as exc:
            raise _translate_api_error(exc, stage) from exc
        except Exception as exc:
            translated = _translate_transport_error(exc, stage)
            if translated is None:
                raise
            raise translated from exc

        input_tokens, output_tokens = _usage(response)
        _check_blocked(response, stage)
        raw = getattr(response, "text", None) or ""
        if not raw.strip():
            raise NoResponseError(stage_name=stage)

        data = parse_json_object(raw, stage)
        if taxonomy is not None:
            problems = validate_tag_set(data, taxonomy)
            if problems:
                raise TagValidationError(problems, stage)
            data = normalize_tag_set(data, taxonomy)
    except BaseException as exc:
        failure = exc
        raise
    finally:
        latency_ms = int((time.perf_counter() - started) * 1000)
        cost = estimate_token_cost(input_tokens, output_tokens, cfg)
        if recorder is not None:
            recorder.record(
                CostLogEntry(
                    ad_id=ad_id,
                    stage=stage,
                    model=cfg.model_name,
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                    estimated_cost_usd=cost,
                    latency_ms=latency_ms,
                    success=failure is None,
                    error=describe_error(failure) if failure is not None else None,
                )
            )

    logger.debug(
        "[%s] %s: %d in / %d out tokens, %dms", ad_id, stage, input_tokens, output_tokens, latency_ms
    )
    return ModelResponse(
        data=data,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        estimated_cost_usd=cost,
        latency_ms=latency_ms,
    )


def classify_image_bytes(
    data: bytes,
    *,
    ad_id: str,
    recorder: Optional[CostRecorder] = None,
    mime_type: str = DEFAULT_MIME_TYPE,
    stage: str = "image_tagging",
) -> ClassificationResult:
    """Classify one still image against the 12 visual dimensions."""
    parts: List[Any] = [
        types.Part.from_text(text=build_classification_prompt()),
        types.Part.from_bytes(data=data, mime_type=mime_type),
    ]
    response = generate_json(
        parts,
        ad_id=ad_id,
        stage=stage,
        recorder=recorder,
        taxonomy=VISUAL_TAXONOMY,
    )
    return ClassificationResult(
        tags=dict(response.data),
        input_tokens=response.input_tokens,
        output_tokens=response.output_tokens,
        estimated_cost_usd=response.estimated_cost_usd,
        latency_ms=response.latency_ms,
    )


__all__ = [
    "ClassificationResult",
    "ModelResponse",
    "fetch_image",
    "parse_json_object",
    "generate_json",
    "classify_image_bytes",
]
