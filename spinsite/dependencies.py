"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import random

from fastapi import Depends

from spincore.prizes import RandomSource
from spinsite.backup import BackupManager
from spinsite.config import Settings, get_settings
from spinsite.db import DbClient
from spinsite.ledger import SpinService
from spinsite.mailer import Mailer, OutboxMailer, SmtpMailer
from spinsite.ratelimit import RateLimiter, build_rate_limiter
from spinsite.sheets import DemoWagerSource, GspreadFetcher, SheetWagerCache, WagerSource
from spinsite.storage import (
    InMemoryStorageClient,
    LocalStorageClient,
    S3StorageClient,
    StorageClient,
)

_db_client: DbClient | None = None
_storage_client: StorageClient | None = None
_rate_limiter: RateLimiter | None = None
_wager_source: WagerSource | None = None
_mailer: Mailer | None = None
_random: RandomSource | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so ledger state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    _db_client = DbClient(settings.database_url or "")
    _db_client.seed_demo_data()
    return _db_client


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.backup_bucket:
        _storage_client = S3StorageClient(
            bucket=settings.backup_bucket,
            region=settings.backup_region,
            endpoint=settings.backup_endpoint,
            access_key_id=settings.aws_access_key_id,
            secret_access_key=settings.aws_secret_access_key,
        )
    elif settings.storage_dir:
        _storage_client = LocalStorageClient(settings.storage_dir)
    else:
        _storage_client = InMemoryStorageClient()
    return _storage_client


def get_rate_limiter() -> RateLimiter:
    global _rate_limiter
    if _rate_limiter:
        return _rate_limiter

    settings = get_settings()
    _rate_limiter = build_rate_limiter(settings.redis_url, settings.redis_key_prefix)
    return _rate_limiter


def get_wager_source() -> WagerSource:
    """
    Spreadsheet-backed cache when a sheet is configured, demo table otherwise.
    """
    global _wager_source
    if _wager_source:
        return _wager_source

    settings = get_settings()
    if settings.sheets_configured:
        fetcher = GspreadFetcher(
            sheet_id=settings.google_sheets_id,
            worksheet_name=settings.wager_sheet_name,
            service_account_file=settings.google_service_account_file,
        )
        _wager_source = SheetWagerCache(fetcher, ttl_seconds=settings.wager_cache_ttl_seconds)
    else:
        _wager_source = DemoWagerSource(get_db_client())
    return _wager_source


def get_mailer() -> Mailer:
    global _mailer
    if _mailer:
        return _mailer

    settings = get_settings()
    sender = settings.mail_from
    if settings.smtp_host:
        _mailer = SmtpMailer(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            sender=sender,
        )
    else:
        _mailer = OutboxMailer(sender=sender)
    return _mailer


def get_random() -> RandomSource:
    global _random
    if _random:
        return _random
    _random = random.SystemRandom()
    return _random


def get_spin_service(
    db: DbClient = Depends(get_db_client),
    wager_source: WagerSource = Depends(get_wager_source),
    rng: RandomSource = Depends(get_random),
    settings: Settings = Depends(get_settings),
) -> SpinService:
    return SpinService(
        db,
        wager_source,
        rng,
        ticket_unit=settings.ticket_unit,
        bonus_cooldown_seconds=settings.bonus_cooldown_hours * 3600,
    )


def get_backup_manager(
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    settings: Settings = Depends(get_settings),
) -> BackupManager:
    return BackupManager(
        db,
        storage,
        site_name=settings.site_name,
        retention_days=settings.backup_retention_days,
        interval_hours=settings.backup_interval_hours,
    )


def reset_dependencies() -> None:
    """Drop every cached client (tests)."""
    global _db_client, _storage_client, _rate_limiter, _wager_source, _mailer, _random
    _db_client = None
    _storage_client = None
    _rate_limiter = None
    _wager_source = None
    _mailer = None
    _random = None
