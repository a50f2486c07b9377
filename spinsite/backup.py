"""
SQL backups of the whole database.

Each backup is a plain SQL script (``DELETE FROM`` then one ``INSERT`` per
row, per table) written through the storage client under ``backups/``.
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from spinsite.db import DbClient
from spinsite.storage import StorageClient, StoredObject

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "backups/"
BACKUP_FILENAME_PATTERN = re.compile(r"^backup_\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}\.sql$")
DAY_SECONDS = 24 * 3600


@dataclass
class BackupResult:
    success: bool
    filename: str
    size_bytes: int = 0
    error: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "success": self.success,
            "filename": self.filename,
            "size_bytes": self.size_bytes,
            "error": self.error,
        }


def backup_filename(now: float) -> str:
    stamp = datetime.fromtimestamp(now, tz=timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
    return f"backup_{stamp}.sql"


def render_sql_value(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, (dict, list)):
        value = json.dumps(value, sort_keys=True)
    escaped = str(value).replace("'", "''")
    return f"'{escaped}'"


def render_table(name: str, columns: list[str], rows: Iterable[tuple]) -> str:
    rows = list(rows)
    if not rows:
        return f"-- Table {name}: 0 rows\n"
    lines = [f"-- Table {name}: {len(rows)} rows", f"DELETE FROM {name};"]
    column_list = ", ".join(columns)
    for row in rows:
        values = ", ".join(render_sql_value(value) for value in row)
        lines.append(f"INSERT INTO {name} ({column_list}) VALUES ({values});")
    return "\n".join(lines) + "\n\n"


def render_backup(
    tables: Iterable[tuple[str, list[str], list[tuple]]],
    *,
    created_at: float,
    manual: bool,
    site_name: str,
) -> str:
    created = datetime.fromtimestamp(created_at, tz=timezone.utc).isoformat()
    parts = [
        f"-- {site_name} Database Backup\n",
        f"-- Created: {created}\n",
        f"-- Type: {'Manual' if manual else 'Scheduled'}\n\n",
    ]
    for name, columns, rows in tables:
        parts.append(render_table(name, columns, rows))
    return "".join(parts)


class BackupManager:
    def __init__(
        self,
        db: DbClient,
        storage: StorageClient,
        *,
        site_name: str = "LukeRewards Spins",
        retention_days: float = 7,
        interval_hours: float = 12,
    ):
        self.db = db
        self.storage = storage
        self.site_name = site_name
        self.retention_days = retention_days
        self.interval_hours = interval_hours

    def create_backup(self, manual: bool = False, now: Optional[float] = None) -> BackupResult:
        now = now if now is not None else time.time()
        filename = backup_filename(now)
        try:
            content = render_backup(
                self.db.export_tables(),
                created_at=now,
                manual=manual,
                site_name=self.site_name,
            ).encode("utf-8")
            self.storage.put_bytes(
                BACKUP_PREFIX + filename, content, content_type="application/sql"
            )
        except Exception as exc:
            logger.exception("Backup %s failed", filename)
            self.db.record_backup(filename, "failed", error_message=str(exc))
            return BackupResult(success=False, filename=filename, error=str(exc))

        self.db.record_backup(filename, "success", size_bytes=len(content))
        logger.info(
            "%s backup created: %s (%.2f KB)",
            "Manual" if manual else "Scheduled",
            filename,
            len(content) / 1024,
        )
        deleted = self.cleanup_old_backups(now)
        if deleted:
            logger.info("Cleaned up %d old backup(s)", deleted)
        return BackupResult(success=True, filename=filename, size_bytes=len(content))

    def cleanup_old_backups(self, now: Optional[float] = None) -> int:
        now = now if now is not None else time.time()
        cutoff = now - self.retention_days * DAY_SECONDS
        deleted = 0
        for item in self.storage.list_objects(BACKUP_PREFIX):
            if item.path.endswith(".sql") and item.modified_at < cutoff:
                self.storage.delete(item.path)
                deleted += 1
                logger.info("Deleted old backup: %s", item.path)
        self.db.delete_backup_logs_before(cutoff)
        return deleted

    def list_backups(self) -> list[StoredObject]:
        items = [
            item
            for item in self.storage.list_objects(BACKUP_PREFIX)
            if item.path.endswith(".sql")
        ]
        return sorted(items, key=lambda item: item.modified_at, reverse=True)

    def read_backup(self, filename: str) -> bytes:
        if not BACKUP_FILENAME_PATTERN.match(filename):
            raise ValueError("Invalid backup filename")
        return self.storage.get_bytes(BACKUP_PREFIX + filename)

    def is_due(self, now: Optional[float] = None) -> bool:
        now = now if now is not None else time.time()
        last = self.db.last_successful_backup()
        return last is None or now - last.created_at >= self.interval_hours * 3600

    def status(self) -> dict:
        last = self.db.last_successful_backup()
        return {
            "last_backup": last.as_dict() if last else None,
            "next_backup_due": (
                last.created_at + self.interval_hours * 3600 if last else None
            ),
            "interval_hours": self.interval_hours,
            "retention_days": self.retention_days,
            "recent_logs": [log.as_dict() for log in self.db.list_backup_logs()],
            "files": [
                {
                    "filename": item.path[len(BACKUP_PREFIX):],
                    "size_bytes": item.size,
                    "modified_at": item.modified_at,
                }
                for item in self.list_backups()
            ],
        }
