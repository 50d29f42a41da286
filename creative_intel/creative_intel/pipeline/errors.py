"""
Pipeline-specific exceptions.

Provides a clear hierarchy for different error types:
- PipelineError: Base exception for all pipeline errors
- StageError: Error during stage execution
- StageSkipped: Stage was intentionally skipped
- TransientError: Temporary error that may succeed on a later run
- PermanentError: Error that retrying will not fix

Each concrete failure kind carries a stable ``code`` which is stored as the
prefix of an ad's ``last_error`` so failures can be grouped in the store.
"""

from __future__ import annotations

from typing import List, Optional


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    code = "PIPELINE_ERROR"

    def __init__(self, message: str, stage_name: Optional[str] = None):
        self.stage_name = stage_name
        super().__init__(message)


class StageError(PipelineError):
    """Error during stage execution."""

    code = "STAGE_FAILED"

    def __init__(
        self,
        message: str,
        stage_name: str,
        cause: Optional[Exception] = None,
        recoverable: bool = False,
    ):
        self.cause = cause
        self.recoverable = recoverable
        super().__init__(message, stage_name)


class StageSkipped(PipelineError):
    """Stage was intentionally skipped (not an error)."""

    def __init__(self, stage_name: str, reason: str):
        self.reason = reason
        super().__init__(f"Stage skipped: {reason}", stage_name)


class TransientError(StageError):
    """
    Temporary error that may succeed on a later attempt.

    Examples:
    - Network timeout
    - API rate limit
    - Temporary service unavailability
    """

    code = "TRANSIENT"

    def __init__(
        self,
        message: str,
        stage_name: str,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message, stage_name, cause, recoverable=True)


class PermanentError(StageError):
    """
    Error that should not be expected to clear up on retry.

    Examples:
    - Malformed model output
    - Model output outside the taxonomy
    - Missing required media
    """

    code = "PERMANENT"

    def __init__(
        self,
        message: str,
        stage_name: str,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message, stage_name, cause, recoverable=False)


class FetchError(TransientError):
    """Media could not be fetched (HTTP error, network error, timeout)."""

    code = "FETCH_FAILED"

    def __init__(self, message: str, stage_name: str = "fetch", cause: Optional[Exception] = None):
        super().__init__(message, stage_name, cause)


class DecodeError(TransientError):
    """A media subprocess failed or exceeded its timeout."""

    code = "DECODE_FAILED"

    def __init__(self, message: str, stage_name: str = "decode", cause: Optional[Exception] = None):
        super().__init__(message, stage_name, cause)


class NoResponseError(TransientError):
    """The model returned no text (empty or safety-blocked response)."""

    code = "NO_RESPONSE"

    def __init__(self, message: str = "No text in response", stage_name: str = "classification",
                 cause: Optional[Exception] = None):
        super().__init__(message, stage_name, cause)


class RateLimitedError(TransientError):
    """The provider rejected the call for rate limiting; triggers backoff."""

    code = "RATE_LIMITED"

    def __init__(self, message: str = "Rate limited", stage_name: str = "classification",
                 cause: Optional[Exception] = None):
        super().__init__(message, stage_name, cause)


class ResponseParseError(PermanentError):
    """The model's text could not be parsed as a JSON object."""

    code = "PARSE_FAILED"

    def __init__(self, message: str = "Failed to parse JSON response", stage_name: str = "classification",
                 cause: Optional[Exception] = None):
        super().__init__(message, stage_name, cause)


class TagValidationError(PermanentError):
    """Well-formed JSON that is missing a dimension or uses a disallowed value."""

    code = "VALIDATION_FAILED"

    def __init__(self, errors: List[str], stage_name: str = "classification"):
        self.errors = list(errors)
        super().__init__(f"Validation failed: {'; '.join(self.errors)}", stage_name)


class NoKeyframesError(PermanentError):
    """No keyframe could be extracted, so there is nothing to classify."""

    code = "NO_KEYFRAMES"

    def __init__(self, message: str = "No keyframes extracted", stage_name: str = "KeyframeStage"):
        super().__init__(message, stage_name)


class TranscriptionError(TransientError):
    """Speech-to-text failed."""

    code = "TRANSCRIPTION_FAILED"

    def __init__(self, message: str, stage_name: str = "transcription", cause: Optional[Exception] = None):
        super().__init__(message, stage_name, cause)


def error_code(error: BaseException) -> str:
    """Stable code for any exception, used when recording a failure."""
    return getattr(error, "code", None) or "UNEXPECTED"


def describe_error(error: BaseException, limit: int = 500) -> str:
    """``CODE: message`` string stored as an ad's last error."""
    return f"{error_code(error)}: {str(error)[:limit]}"
