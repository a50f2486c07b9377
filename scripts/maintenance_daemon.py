"""
Daemon that takes scheduled backups and purges expired sessions and logs.
"""

from __future__ import annotations

import argparse
import logging
import random
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from spinsite.dependencies import get_db_client
from spinsite.worker import build_backup_manager, run_once

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Spin site maintenance daemon")
    parser.add_argument(
        "--interval-seconds",
        type=int,
        default=300,
        help="Seconds between maintenance passes",
    )
    parser.add_argument(
        "--jitter-seconds",
        type=int,
        default=30,
        help="Max random jitter added to sleep",
    )
    parser.add_argument(
        "--backup-now",
        action="store_true",
        help="Take a manual backup before the first pass",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single pass and exit",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    db = get_db_client()
    backups = build_backup_manager(db)

    if args.backup_now:
        result = backups.create_backup(manual=True)
        if not result.success:
            logger.error("Manual backup failed: %s", result.error)
            if args.once:
                return 1

    while True:
        try:
            summary = run_once(db=db, backups=backups)
            logger.info("Maintenance pass complete: %s", summary)
        except Exception as exc:
            logger.exception("Maintenance pass failed: %s", exc)

        if args.once:
            return 0

        sleep_for = args.interval_seconds + random.uniform(0, args.jitter_seconds)
        logger.info("Sleeping for %.1fs", sleep_for)
        time.sleep(sleep_for)


if __name__ == "__main__":
    raise SystemExit(main())
