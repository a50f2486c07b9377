"""
FastAPI application entry point for the spin site.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from spincore.prizes import validate_tier_config
from spinsite.admin_routes import router as admin_router
from spinsite.auth_routes import router as auth_router
from spinsite.config import get_settings
from spinsite.dependencies import get_wager_source
from spinsite.errors import (
    BonusUnavailable,
    InsufficientFunds,
    RateLimited,
    SpinSiteError,
)
from spinsite.routes import router
from spinsite.security import security_middleware
from spinsite.sheets import WagerSource

logger = logging.getLogger(__name__)


async def refresh_wager_cache_forever(source: WagerSource, interval_seconds: float) -> None:
    """Keep the wager snapshot warm; failures are logged and retried next tick."""
    while True:
        try:
            count = await asyncio.to_thread(source.refresh)
            logger.debug("Background wager refresh loaded %d rows", count)
        except Exception:
            logger.exception("Background wager refresh failed")
        await asyncio.sleep(interval_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    task = None
    if settings.wager_background_refresh and settings.sheets_configured:
        task = asyncio.create_task(
            refresh_wager_cache_forever(get_wager_source(), settings.wager_cache_ttl_seconds)
        )
        logger.info(
            "Started background wager refresh every %ss", settings.wager_cache_ttl_seconds
        )
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task


async def handle_domain_error(request: Request, exc: SpinSiteError) -> JSONResponse:
    content: dict = {"detail": exc.message}
    headers = {}
    if isinstance(exc, RateLimited) and exc.retry_after:
        content["retry_after"] = exc.retry_after
        headers["Retry-After"] = str(exc.retry_after)
    if isinstance(exc, BonusUnavailable):
        content["next_bonus_at"] = exc.next_bonus_at
    if isinstance(exc, InsufficientFunds):
        content["available"] = exc.available
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def create_app() -> FastAPI:
    settings = get_settings()
    # Refuse to start with a prize table that does not sum to 100%.
    validate_tier_config()
    app = FastAPI(title=settings.site_name, version="0.1.0", lifespan=lifespan)
    app.middleware("http")(security_middleware)
    app.add_exception_handler(SpinSiteError, handle_domain_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
    app.include_router(router, prefix=settings.api_prefix)
    app.include_router(auth_router, prefix=settings.api_prefix)
    app.include_router(admin_router, prefix=f"{settings.api_prefix}/admin")
    return app


app = create_app()
