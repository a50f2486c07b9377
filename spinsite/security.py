"""
Request security: client identity, sessions and HTTP hardening.

Raw client IPs never leave this module; everything downstream sees
``hash_ip`` output. Session tokens are opaque random strings and only their
SHA-256 is stored.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import time
import uuid
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

from fastapi import Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from spinsite.config import Settings, get_settings
from spinsite.db import DbClient
from spinsite.dependencies import get_db_client
from spinsite.errors import RateLimited
from spinsite.records import UserRecord

logger = logging.getLogger(__name__)

ADMIN_COOKIE = "admin_session"
USER_COOKIE = "user_session"

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1"})

SECURITY_HEADERS = {
    "Strict-Transport-Security": "max-age=63072000; includeSubDomains; preload",
    "Content-Security-Policy": "; ".join(
        [
            "default-src 'self'",
            "script-src 'self'",
            "style-src 'self' 'unsafe-inline'",
            "img-src 'self' data: https:",
            "font-src 'self' data:",
            "connect-src 'self' https:",
            "object-src 'none'",
            "base-uri 'self'",
            "frame-ancestors 'self'",
            "form-action 'self'",
        ]
    ),
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "X-XSS-Protection": "0",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=(), payment=()",
}


def hash_ip(ip: str, salt: str) -> str:
    return hashlib.sha256(f"{salt}{ip}".encode("utf-8")).hexdigest()


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def new_token() -> str:
    return secrets.token_urlsafe(32)


def passwords_match(supplied: str, expected: str) -> bool:
    return hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


def client_ip(request: Request, trust_proxy_headers: bool) -> str:
    if trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def get_ip_hash(request: Request, settings: Settings = Depends(get_settings)) -> str:
    return hash_ip(client_ip(request, settings.trust_proxy_headers), settings.session_secret)


@dataclass(frozen=True)
class AdminPrincipal:
    """An authenticated admin session."""

    token_hash: str
    ip_hash: str
    session_started_at: float


def require_admin(
    request: Request,
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
    ip_hash: str = Depends(get_ip_hash),
) -> AdminPrincipal:
    token = request.cookies.get(ADMIN_COOKIE)
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")
    token_hash = hash_token(token)
    started_at = db.touch_admin_session(token_hash, settings.admin_session_idle_seconds)
    if started_at is None:
        raise HTTPException(status_code=401, detail="Session expired. Please log in again.")
    return AdminPrincipal(token_hash=token_hash, ip_hash=ip_hash, session_started_at=started_at)


def user_session_token(request: Request) -> Optional[str]:
    auth = request.headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        token = auth[7:].strip()
        if token:
            return token
    return request.cookies.get(USER_COOKIE)


def require_user(
    request: Request, db: DbClient = Depends(get_db_client)
) -> UserRecord:
    token = user_session_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user = db.get_session_user(hash_token(token))
    if user is None:
        raise HTTPException(status_code=401, detail="Session expired. Please log in again.")
    return user


def origin_allowed(origin: str, host: Optional[str]) -> bool:
    hostname = urlparse(origin).hostname
    if not hostname:
        return False
    expected = set(LOCAL_HOSTS)
    if host:
        expected.add(host.split(":")[0].lower())
    return hostname.lower() in expected


def referer_allowed(referer: str, host: Optional[str]) -> bool:
    hostname = urlparse(referer).hostname
    if not hostname or not host:
        return False
    return hostname.lower() == host.split(":")[0].lower()


def cross_site_source(request: Request, is_production: bool) -> Optional[str]:
    """Return the offending Origin/Referer of a cross-site write, else None.

    Origin is checked whenever it is sent. Without it, production also
    requires a same-host Referer when one is present.
    """
    if request.method in SAFE_METHODS:
        return None
    host = request.headers.get("host")
    origin = request.headers.get("origin")
    if origin:
        return None if origin_allowed(origin, host) else f"origin={origin}"
    referer = request.headers.get("referer")
    if referer and is_production and not referer_allowed(referer, host):
        return f"referer={referer}"
    return None


async def security_middleware(request: Request, call_next):
    """Request id, Origin/Referer check, security headers and one log line per request."""
    request_id = uuid.uuid4().hex
    started = time.perf_counter()
    settings = get_settings()
    blocked = cross_site_source(request, settings.is_production)
    if blocked:
        logger.warning("Blocked cross-site %s %s %s", request.method, request.url.path, blocked)
        response = JSONResponse(
            status_code=403, content={"detail": "Request blocked for security reasons"}
        )
    else:
        response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    if request.url.path.startswith(settings.api_prefix):
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "%s %s %s in %dms",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )
    return response


def enforce_rate_limit(
    limiter,
    db: DbClient,
    *,
    scope: str,
    key: str,
    limit: int,
    window_seconds: int,
    ip_hash: str,
    message: str,
    stake_id: Optional[str] = None,
) -> None:
    """Count one hit; record and raise ``RateLimited`` once over the limit."""
    result = limiter.hit(scope, key, limit, window_seconds)
    if not result.limited:
        return
    logger.warning(
        "Rate limit hit scope=%s ip_hash=%s stake_id=%s", scope, ip_hash[:12], stake_id
    )
    db.log_rate_limit(ip_hash, scope, stake_id=stake_id)
    raise RateLimited(message, retry_after=result.retry_after)
