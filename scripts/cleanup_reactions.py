"""One-shot repair script that collapses duplicate breakout events and reactions.

Usage (from the repository root):
    python -m scripts.cleanup_reactions
    python -m scripts.cleanup_reactions --db data/fractalwatch.db --dry-run
"""

import argparse
import logging
import sys
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from fractalwatch.engine import dedup_logs
from fractalwatch.repos.db import init_db
from fractalwatch.repos.event_repo import BreakoutEventRepo
from fractalwatch.repos.reaction_repo import ReactionRepo
from fractalwatch.repos.stats_repo import StatsRepo

logger = logging.getLogger("fractalwatch.cleanup")


def cleanup(db_path: str, dry_run: bool = False) -> dict:
    """Dedup both logs in *db_path* and rebuild stats.

    Returns before/after counts.  With *dry_run* nothing is written.
    """
    init_db(db_path)
    return dedup_logs(
        BreakoutEventRepo(db_path),
        ReactionRepo(db_path),
        StatsRepo(db_path),
        dry_run=dry_run,
    )


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Remove duplicate breakout records")
    parser.add_argument("--db", help="SQLite database (default: DB_PATH from config)")
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    db_path = args.db
    if db_path is None:
        from fractalwatch.config import load_config

        db_path = load_config().db_path

    counts = cleanup(db_path, args.dry_run)
    logger.info("Cleanup complete: %s", counts)
