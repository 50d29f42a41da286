"""
Tagging scheduler.

Selects eligible ads, deduplicates still images by content hash, classifies
the rest and records every outcome through the tagging state machine.

Two regimes run in one invocation:

- Image path: a bounded ``ThreadPoolExecutor``. Workers share only the
  run-scoped ``DedupIndex`` and the stats object (guarded by a lock).
- Video path: strictly sequential, because frame and audio extraction are
  subprocess-bound. A wall-clock budget is checked before each ad; once it is
  spent the remaining ads are left untouched for the next run.

Clients never retry internally. A rate-limited ad sleeps for
``min(base * 2**retry_count, cap)`` seconds before its failure is recorded,
and the retry cap turns the failure terminal (``skipped``).
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, Iterable, List, Optional

import sentry_sdk

from . import vision
from .config import TaggingConfig, get_tagging_config, get_vision_config
from .costs import CostRecorder
from .dedup import DedupIndex, compute_content_hash
from .models import TaggingCandidate, TaggingStats, TaggingState, TaggingStatus, TagSource
from .pipeline.errors import PipelineError, RateLimitedError, describe_error

logger = logging.getLogger(__name__)


def backoff_delay(retry_count: int, base: float, cap: float) -> float:
    """Exponential backoff in seconds, doubling per retry and capped."""
    return min(base * (2 ** retry_count), cap)


class TaggingScheduler:
    """
    Runs image and video tagging batches against a store.

    ``store`` is any object exposing the candidate, dedup and result functions
    of :mod:`creative_intel.db` (the module itself by default). ``sleep`` and
    ``clock`` are injectable so backoff and the video time budget can be
    exercised without waiting.
    """

    def __init__(
        self,
        config: Optional[TaggingConfig] = None,
        store: Any = None,
        recorder: Optional[CostRecorder] = None,
        pipeline: Any = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        model_version: Optional[str] = None,
    ):
        if store is None:
            from . import db as store
        self.config = config or get_tagging_config()
        self.store = store
        self.recorder = recorder or CostRecorder()
        self._pipeline = pipeline
        self._sleep = sleep
        self._clock = clock
        self._model_version = model_version
        self._stats_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    @property
    def model_version(self) -> str:
        if self._model_version is None:
            self._model_version = get_vision_config().model_name
        return self._model_version

    @property
    def pipeline(self):
        if self._pipeline is None:
            from .pipeline import VideoTaggingPipeline
            from .pipeline.stages import default_stages

            self._pipeline = VideoTaggingPipeline(default_stages(), self.config)
        return self._pipeline

    def _bump(self, stats: TaggingStats, counter: str, amount: int = 1) -> None:
        with self._stats_lock:
            setattr(stats, counter, getattr(stats, counter) + amount)

    def _handle_failure(
        self,
        candidate: TaggingCandidate,
        error: BaseException,
        stats: TaggingStats,
        persist: Callable[[str, TaggingState], None],
    ) -> TaggingState:
        """Advance the state machine for a failed attempt, backing off on rate limits."""
        if not isinstance(error, PipelineError):
            sentry_sdk.capture_exception(error)
        message = describe_error(error)
        state = candidate.state.fail(message, self.config.max_retries)

        if isinstance(error, RateLimitedError):
            self._bump(stats, "rate_limited")
            delay = backoff_delay(state.retry_count, self.config.backoff_base, self.config.backoff_cap)
            logger.warning("[%s] Rate limited, backing off %.1fs", candidate.id, delay)
            self._sleep(delay)

        try:
            persist(candidate.id, state)
        except Exception as exc:
            logger.warning(
                "[%s] Failed to record tagging failure, state left unchanged: %s",
                candidate.id, exc, exc_info=True,
            )
            self._bump(stats, "unrecorded")
            with self._stats_lock:
                stats.errors.append(f"{candidate.id}: {describe_error(exc)}")

        if state.status is TaggingStatus.SKIPPED:
            self._bump(stats, "skipped")
            logger.warning(
                "[%s] Giving up after %d attempts: %s", candidate.id, state.retry_count, message
            )
        else:
            self._bump(stats, "failed")
            logger.info("[%s] Attempt %d failed: %s", candidate.id, state.retry_count, message)
        with self._stats_lock:
            stats.errors.append(f"{candidate.id}: {message}")
        return state

    def _finish(self, stats: TaggingStats, started: float, cost_before: float) -> TaggingStats:
        stats.duration_ms = int((self._clock() - started) * 1000)
        stats.total_cost_usd = self.recorder.total_cost_usd - cost_before
        return stats

    # ------------------------------------------------------------------
    # Image path
    # ------------------------------------------------------------------

    def run_image_batch(self) -> TaggingStats:
        """Tag one batch of still creatives with bounded concurrency."""
        cfg = self.config
        started = self._clock()
        cost_before = self.recorder.total_cost_usd
        stats = TaggingStats()

        candidates = self.store.fetch_image_candidates(
            cfg.batch_size, cfg.max_retries, cfg.min_days_active
        )
        stats.total = len(candidates)
        if not candidates:
            logger.info("No image ads pending tagging")
            return self._finish(stats, started, cost_before)

        index = DedupIndex.from_rows(self.store.fetch_dedup_rows())
        logger.info(
            "Tagging %d image ads (concurrency=%d, dedup hashes=%d)",
            len(candidates), cfg.concurrency, len(index),
        )

        with ThreadPoolExecutor(max_workers=cfg.concurrency, thread_name_prefix="image-tagger") as executor:
            futures = {
                executor.submit(self._tag_image, candidate, index, stats): candidate
                for candidate in candidates
            }
            for future in as_completed(futures):
                candidate = futures[future]
                try:
                    future.result()
                except Exception as exc:
                    logger.exception("[%s] Image worker crashed: %s", candidate.id, exc)
                    with self._stats_lock:
                        stats.errors.append(f"{candidate.id}: {describe_error(exc)}")

        self._finish(stats, started, cost_before)
        logger.info(
            "Image batch done: tagged=%d deduped=%d failed=%d skipped=%d cost=$%.4f",
            stats.tagged, stats.deduped, stats.failed, stats.skipped, stats.total_cost_usd,
        )
        return stats

    def _tag_image(self, candidate: TaggingCandidate, index: DedupIndex, stats: TaggingStats) -> None:
        try:
            data, mime_type = vision.fetch_image(
                candidate.media_url, timeout=self.config.image_fetch_timeout
            )
            content_hash = compute_content_hash(data)
            self.store.set_content_hash(candidate.id, content_hash)

            match = index.lookup(content_hash)
            if match is not None:
                self.store.mark_tagged(
                    candidate.id,
                    dict(match.tags),
                    source=TagSource.HASH_DEDUP.value,
                    source_ad_id=match.ad_id,
                    model_version=self.model_version,
                )
                candidate.state = candidate.state.succeed()
                self._bump(stats, "deduped")
                logger.debug("[%s] Reused tags from %s", candidate.id, match.ad_id)
                return

            result = vision.classify_image_bytes(
                data, ad_id=candidate.id, recorder=self.recorder, mime_type=mime_type
            )
            self.store.mark_tagged(
                candidate.id,
                result.tags,
                source=TagSource.VISION_API.value,
                model_version=self.model_version,
            )
            candidate.state = candidate.state.succeed()
            index.add(content_hash, candidate.id, result.tags)
            self._bump(stats, "tagged")
        except Exception as exc:
            candidate.state = self._handle_failure(candidate, exc, stats, self.store.record_failure)

    # ------------------------------------------------------------------
    # Video path
    # ------------------------------------------------------------------

    def run_video_batch(self) -> TaggingStats:
        """Tag video creatives one at a time within the wall-clock budget."""
        cfg = self.config
        started = self._clock()
        cost_before = self.recorder.total_cost_usd
        stats = TaggingStats()

        candidates = self.store.fetch_video_candidates(
            cfg.video_batch_size, cfg.max_retries, cfg.min_days_active
        )
        stats.total = len(candidates)
        if not candidates:
            logger.info("No video ads pending tagging")
            return self._finish(stats, started, cost_before)

        logger.info("Tagging %d video ads (budget=%.0fs)", len(candidates), cfg.video_time_budget)
        for position, candidate in enumerate(candidates):
            elapsed = self._clock() - started
            if elapsed > cfg.video_time_budget:
                stats.stopped_early = True
                logger.warning(
                    "Video time budget spent after %d/%d ads (%.1fs)",
                    position, len(candidates), elapsed,
                )
                break
            self._tag_video(candidate, stats)

        self._finish(stats, started, cost_before)
        logger.info(
            "Video batch done: tagged=%d failed=%d skipped=%d no_audio=%d cost=$%.4f",
            stats.tagged, stats.failed, stats.skipped, stats.no_audio, stats.total_cost_usd,
        )
        return stats

    def _tag_video(self, candidate: TaggingCandidate, stats: TaggingStats) -> None:
        result = self.pipeline.process(candidate, self.recorder)
        if "no_audio" in result.processing_notes:
            stats.no_audio += 1

        if not result.success:
            error = result.error or RuntimeError("video pipeline failed")
            candidate.state = self._handle_failure(
                candidate, error, stats, self.store.record_video_failure
            )
            return

        try:
            self.store.save_video_tags(candidate.id, result, model_version=self.model_version)
        except Exception as exc:
            candidate.state = self._handle_failure(
                candidate, exc, stats, self.store.record_video_failure
            )
            return
        candidate.state = candidate.state.succeed()
        stats.tagged += 1

    # ------------------------------------------------------------------
    # Combined run
    # ------------------------------------------------------------------

    def sync_client_ads(self, brand_ids: Optional[Iterable[str]] = None) -> int:
        """Queue every brand's client ads for tagging; per-brand failures are logged."""
        if brand_ids is None:
            brand_ids = self.store.fetch_brand_ids()
        synced = 0
        for brand_id in brand_ids:
            try:
                synced += self.store.sync_client_ads_for_tagging(brand_id)
            except Exception as exc:
                logger.error("Failed to sync client ads for brand %s: %s", brand_id, exc)
        return synced

    def run_combined(
        self,
        brand_ids: Optional[Iterable[str]] = None,
        images: bool = True,
        videos: bool = True,
    ) -> Dict[str, Optional[TaggingStats]]:
        """
        Client ad sync, then the video path, then the image path.

        Video runs first so its time box bounds how long it can delay the
        image path in the same invocation.
        """
        synced = self.sync_client_ads(brand_ids)
        logger.info("Client ad sync: %d new ads", synced)

        results: Dict[str, Optional[TaggingStats]] = {"video": None, "image": None}
        if videos:
            results["video"] = self.run_video_batch()
        if images:
            results["image"] = self.run_image_batch()
        return results


def summarize(results: Dict[str, Optional[TaggingStats]]) -> List[str]:
    """One log line per path that ran."""
    lines = []
    for path, stats in results.items():
        if stats is None:
            continue
        lines.append(f"{path}: {stats.to_dict()}")
    return lines


__all__ = ["TaggingScheduler", "backoff_delay", "summarize"]
