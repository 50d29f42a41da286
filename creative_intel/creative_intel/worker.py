#!/usr/bin/env python
"""
Creative Intelligence worker.

Runs one pass of the tagging scheduler or of the analysis engines and exits.
Designed to be invoked by cron or a platform scheduler.

Usage:
    python -m creative_intel.worker tag [--images-only | --videos-only]
    python -m creative_intel.worker classify-tracks
    python -m creative_intel.worker velocity [--brand ID]
    python -m creative_intel.worker convergence [--brand ID]
    python -m creative_intel.worker gap [--brand ID]
    python -m creative_intel.worker lifecycle [--brand ID]
    python -m creative_intel.worker analyze

Environment Variables Required:
    DATABASE_URL - PostgreSQL connection string (or SUPABASE_DB_URL)
    GOOGLE_API_KEY - For image, hook and video classification
    OPENAI_API_KEY - For video transcription (optional, videos only)

Environment Variables Optional:
    TAGGING_BATCH_SIZE - Image ads per run (default: 200)
    TAGGING_CONCURRENCY - Concurrent image workers (default: 3)
    VIDEO_BATCH_SIZE - Video ads per run (default: 10)
    VIDEO_TIME_BUDGET - Seconds the video path may run (default: 250)
    SENTRY_DSN - Enables error tracking
    LOG_LEVEL - Logging level (default: INFO)
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import os
import sys
from typing import List, Optional

import sentry_sdk
from sentry_sdk.integrations.threading import ThreadingIntegration

from .config import describe_active_models, get_tagging_config

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

SENTRY_DSN = os.getenv("SENTRY_DSN")
SENTRY_ENVIRONMENT = os.getenv("SENTRY_ENVIRONMENT", "production")
SENTRY_RELEASE = os.getenv("SENTRY_RELEASE", "creative-intel-worker@0.1.0")
SENTRY_TRACES_SAMPLE_RATE = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1"))

# ---------------------------------------------------------------------------
# Logging Setup
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(),
    ],
)
logger = logging.getLogger("creative_intel.worker")


def init_sentry() -> bool:
    """Initialise error tracking when a DSN is configured."""
    if not SENTRY_DSN:
        logger.debug("SENTRY_DSN not set - error tracking disabled")
        return False
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        environment=SENTRY_ENVIRONMENT,
        release=SENTRY_RELEASE,
        integrations=[
            ThreadingIntegration(propagate_hub=True),
        ],
        traces_sample_rate=SENTRY_TRACES_SAMPLE_RATE,
    )
    logger.info("Sentry error tracking initialized")
    return True


def _banner(title: str) -> None:
    logger.info("=" * 60)
    logger.info(title)
    logger.info("=" * 60)


def _log_stats(name: str, stats: dict) -> None:
    logger.info("-" * 60)
    logger.info("%s: %s", name, ", ".join(f"{k}={v}" for k, v in stats.items()))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def run_tagging(
    images: bool = True,
    videos: bool = True,
    batch_size: Optional[int] = None,
    concurrency: Optional[int] = None,
    time_budget: Optional[float] = None,
) -> int:
    """One tagging pass: client sync, video path, then image path."""
    from .scheduler import TaggingScheduler, summarize

    overrides = {}
    if batch_size is not None:
        overrides["batch_size"] = batch_size
    if concurrency is not None:
        overrides["concurrency"] = concurrency
    if time_budget is not None:
        overrides["video_time_budget"] = time_budget
    config = dataclasses.replace(get_tagging_config(), **overrides)

    logger.info(
        "Batch size: %d, concurrency: %d, video budget: %.0fs",
        config.batch_size, config.concurrency, config.video_time_budget,
    )
    scheduler = TaggingScheduler(config=config)
    results = scheduler.run_combined(images=images, videos=videos)
    for line in summarize(results):
        logger.info(line)
    logger.info("Total cost: $%.4f", scheduler.recorder.total_cost_usd)
    return 0


def run_tracks() -> int:
    from .tracks import run_classification_pipeline

    stats = run_classification_pipeline()
    _log_stats("Track classification", stats)
    return 1 if stats["failed"] and not stats["classified"] else 0


def run_velocity(brand_ids: Optional[List[str]] = None) -> int:
    from .prevalence import run_velocity_pipeline

    stats = run_velocity_pipeline(brand_ids)
    _log_stats("Velocity", stats)
    return 0


def run_convergence(brand_ids: Optional[List[str]] = None) -> int:
    from .convergence import run_convergence_pipeline

    stats = run_convergence_pipeline(brand_ids)
    _log_stats("Convergence", stats)
    return 0


def run_gap(brand_ids: Optional[List[str]] = None) -> int:
    from .gap import run_gap_pipeline

    stats = run_gap_pipeline(brand_ids)
    _log_stats("Gap", stats)
    return 0


def run_lifecycle(brand_ids: Optional[List[str]] = None) -> int:
    from .lifecycle import run_lifecycle_pipeline

    stats = run_lifecycle_pipeline(brand_ids)
    _log_stats("Lifecycle", stats)
    return 0


def run_analysis(brand_ids: Optional[List[str]] = None) -> int:
    """Tracks first (they set signal weights and velocity testers), then the engines."""
    code = run_tracks()
    for step in (run_velocity, run_convergence, run_gap, run_lifecycle):
        code = max(code, step(brand_ids))
    return code


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="creative-intel",
        description="Creative Intelligence tagging and analysis worker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    tag = sub.add_parser("tag", help="Tag pending image and video ads")
    only = tag.add_mutually_exclusive_group()
    only.add_argument("--images-only", action="store_true", help="Skip the video path")
    only.add_argument("--videos-only", action="store_true", help="Skip the image path")
    tag.add_argument("--batch-size", type=int, help="Image ads to claim this run")
    tag.add_argument("--concurrency", type=int, help="Concurrent image workers")
    tag.add_argument("--time-budget", type=float, help="Seconds the video path may run")

    sub.add_parser("classify-tracks", help="Classify competitors and rescore ad signal strength")
    for name, help_text in (
        ("velocity", "Snapshot prevalence and velocity"),
        ("convergence", "Snapshot competitor convergence"),
        ("gap", "Snapshot client vs competitor gaps"),
        ("lifecycle", "Detect breakout cohorts and cash cows among velocity testers"),
        ("analyze", "Run tracks, velocity, convergence, gap and lifecycle in order"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument(
            "--brand",
            action="append",
            dest="brands",
            help="Brand id to analyse (repeatable; default: all brands)",
        )
    return parser


def dispatch(args: argparse.Namespace) -> int:
    if args.command == "tag":
        return run_tagging(
            images=not args.videos_only,
            videos=not args.images_only,
            batch_size=args.batch_size,
            concurrency=args.concurrency,
            time_budget=args.time_budget,
        )
    if args.command == "classify-tracks":
        return run_tracks()
    if args.command == "velocity":
        return run_velocity(args.brands)
    if args.command == "convergence":
        return run_convergence(args.brands)
    if args.command == "gap":
        return run_gap(args.brands)
    if args.command == "lifecycle":
        return run_lifecycle(args.brands)
    if args.command == "analyze":
        return run_analysis(args.brands)
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None):
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    init_sentry()

    _banner(f"Creative Intelligence: {args.command}")
    models = describe_active_models()
    logger.info("Models: vision=%s asr=%s", models["vision"], models["asr"])

    try:
        code = dispatch(args)
    except (RuntimeError, ValueError) as exc:
        logger.error("Configuration error: %s", exc)
        sys.exit(1)
    except Exception as exc:
        logger.exception("Unexpected failure in %s: %s", args.command, exc)
        sentry_sdk.capture_exception(exc)
        sys.exit(1)

    logger.info("=" * 60)
    sys.exit(code)


if __name__ == "__main__":
    main()
