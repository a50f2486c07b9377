"""
Maintenance worker: scheduled backups and expiry of stale rows.

Run ``run_loop`` under systemd/supervisor, or one pass at a time from
``scripts/maintenance_daemon.py --once``.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from spinsite.backup import BackupManager
from spinsite.config import get_settings
from spinsite.db import DbClient
from spinsite.dependencies import get_db_client, get_storage_client

logger = logging.getLogger(__name__)

RATE_LIMIT_LOG_RETENTION_SECONDS = 7 * 24 * 3600


def build_backup_manager(db: DbClient) -> BackupManager:
    settings = get_settings()
    return BackupManager(
        db,
        get_storage_client(),
        site_name=settings.site_name,
        retention_days=settings.backup_retention_days,
        interval_hours=settings.backup_interval_hours,
    )


def run_once(
    *,
    db: Optional[DbClient] = None,
    backups: Optional[BackupManager] = None,
    now: Optional[float] = None,
) -> dict:
    """
    One maintenance pass. Returns what was done, for logging and tests.
    """
    settings = get_settings()
    db = db or get_db_client()
    backups = backups or build_backup_manager(db)
    now = now if now is not None else time.time()

    summary: dict = {"backup": None}
    if backups.is_due(now):
        result = backups.create_backup(manual=False, now=now)
        summary["backup"] = result.as_dict()
        if not result.success:
            logger.error("Scheduled backup failed: %s", result.error)

    purged = db.purge_expired(
        admin_idle_seconds=settings.admin_session_idle_seconds,
        rate_limit_retention_seconds=RATE_LIMIT_LOG_RETENTION_SECONDS,
        now=now,
    )
    summary["purged"] = purged
    if any(purged.values()):
        logger.info("Purged expired rows: %s", purged)
    return summary


def run_loop(poll_interval_seconds: float = 300.0) -> None:
    """
    Simple polling loop. Each pass is isolated so one failure doesn't stop the worker.
    """
    db = get_db_client()
    backups = build_backup_manager(db)
    while True:
        try:
            run_once(db=db, backups=backups)
        except Exception:
            logger.exception("Maintenance pass failed")
        time.sleep(poll_interval_seconds)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_loop()
