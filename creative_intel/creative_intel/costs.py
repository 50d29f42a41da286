"""
Best-effort cost accounting for external model calls.

Every classification or transcription call produces a ``CostLogEntry``. The
recorder forwards it to a sink (the store by default) and never lets a sink
failure reach the caller: accounting must not decide whether an ad is tagged.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from .config import ASRConfig, VisionConfig
from .models import CostLogEntry

logger = logging.getLogger(__name__)

CostSink = Callable[[CostLogEntry], None]


def estimate_token_cost(input_tokens: int, output_tokens: int, cfg: VisionConfig) -> float:
    """USD estimate from per-million-token prices."""
    return (
        input_tokens * cfg.input_cost_per_mtok / 1_000_000
        + output_tokens * cfg.output_cost_per_mtok / 1_000_000
    )


def estimate_audio_cost(audio_seconds: float, cfg: ASRConfig) -> float:
    return audio_seconds / 3600.0 * cfg.cost_per_hour


def _default_sink(entry: CostLogEntry) -> None:
    from . import db

    db.insert_cost_log(entry)


class CostRecorder:
    """Thread-safe, best-effort cost log writer with running totals."""

    def __init__(self, sink: Optional[CostSink] = None):
        self._sink = sink or _default_sink
        self._lock = threading.Lock()
        self.total_cost_usd = 0.0
        self.calls = 0
        self.failed_writes = 0

    def record(self, entry: CostLogEntry) -> None:
        with self._lock:
            self.total_cost_usd += entry.estimated_cost_usd
            self.calls += 1
        try:
            self._sink(entry)
        except Exception as exc:
            with self._lock:
                self.failed_writes += 1
            logger.warning(
                "[%s] Failed to write cost log for %s: %s", entry.ad_id, entry.stage, exc
            )
