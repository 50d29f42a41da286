"""
Apply creative_intel/schema.sql to the configured Postgres database and
confirm every table the tagging and analysis jobs write to exists afterwards.

Requires direct Postgres access. If the database is not reachable from this
machine, run schema.sql in the provider's SQL editor and re-run with
``--check-only`` to verify.

Usage:
    python apply_schema.py [--schema PATH] [--check-only]
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Iterable, List, Set

import psycopg2

from creative_intel.config import get_db_config

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parent / "creative_intel" / "schema.sql"

# Tables written by db.py; a partial apply leaves some of these missing
REQUIRED_TABLES = (
    "client_brands",
    "competitors",
    "client_ads",
    "ads",
    "creative_tags",
    "video_tags",
    "tagging_cost_log",
    "velocity_snapshots",
    "convergence_snapshots",
    "gap_analysis_snapshots",
    "track_change_log",
    "breakout_events",
    "lifecycle_analysis_snapshots",
)


def missing_tables(existing: Iterable[str], required: Iterable[str] = REQUIRED_TABLES) -> List[str]:
    present: Set[str] = set(existing)
    return [name for name in required if name not in present]


def _existing_tables(cur) -> List[str]:
    cur.execute(
        "SELECT table_name FROM information_schema.tables WHERE table_schema = 'public'"
    )
    return [row[0] for row in cur.fetchall()]


def apply_schema(schema_path: Path = SCHEMA_PATH, check_only: bool = False) -> List[str]:
    """
    Execute the schema (every statement is idempotent) and return the
    required tables that are still missing.
    """
    path = Path(schema_path)
    if not check_only and not path.exists():
        raise FileNotFoundError(f"Schema file not found at {path}")

    cfg = get_db_config()
    conn = psycopg2.connect(cfg.url)
    try:
        with conn.cursor() as cur:
            if not check_only:
                logger.info("Applying schema from %s...", path)
                cur.execute(path.read_text(encoding="utf-8"))
            missing = missing_tables(_existing_tables(cur))
        conn.commit()
    finally:
        conn.close()

    if missing:
        logger.error("Missing tables after apply: %s", ", ".join(missing))
    else:
        logger.info("Schema OK: %d tables present.", len(REQUIRED_TABLES))
    return missing


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Apply and verify the creative_intel schema")
    parser.add_argument("--schema", type=Path, default=SCHEMA_PATH, help="Path to schema.sql")
    parser.add_argument("--check-only", action="store_true", help="Only verify the tables exist")
    args = parser.parse_args(argv)

    try:
        missing = apply_schema(args.schema, check_only=args.check_only)
    except psycopg2.OperationalError as exc:
        logger.error("Failed to connect to database: %s", exc)
        logger.info("Schema SQL is ready at: %s", args.schema.absolute())
        return 1
    return 1 if missing else 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    sys.exit(main())
