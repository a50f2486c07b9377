"""
Player accounts: registration, sessions, password reset and Stake account
verification.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, Response, UploadFile
from werkzeug.security import check_password_hash, generate_password_hash

from spincore.tickets import normalize_stake_id
from spincore.types import StakePlatform, VerificationStatus
from spinsite import ratelimit, toggles
from spinsite.config import Settings, get_settings
from spinsite.db import DbClient
from spinsite.dependencies import (
    get_db_client,
    get_mailer,
    get_rate_limiter,
    get_storage_client,
)
from spinsite.errors import Conflict
from spinsite.mailer import Mailer, password_changed_email, password_reset_email
from spinsite.ratelimit import RateLimiter
from spinsite.records import UserRecord
from spinsite.schemas import (
    ForgotPasswordRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
)
from spinsite.security import (
    USER_COOKIE,
    enforce_rate_limit,
    get_ip_hash,
    hash_token,
    new_token,
    require_user,
    user_session_token,
)
from spinsite.storage import StorageClient

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_SCREENSHOT_BYTES = 5 * 1024 * 1024
SCREENSHOT_TYPES = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
}


def _start_session(
    response: Response, user: UserRecord, db: DbClient, settings: Settings
) -> str:
    token = new_token()
    max_age = settings.user_session_days * 24 * 3600
    db.create_user_session(user.id, hash_token(token), time.time() + max_age)
    response.set_cookie(
        USER_COOKIE,
        token,
        max_age=max_age,
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
    )
    return token


@router.post("/auth/register", status_code=201)
def register(
    payload: RegisterRequest,
    response: Response,
    settings: Settings = Depends(get_settings),
    db: DbClient = Depends(get_db_client),
):
    if not toggles.is_enabled(db.get_toggle_values(), toggles.REGISTRATION_ENABLED):
        raise HTTPException(status_code=403, detail="Registration is currently closed.")
    user = db.create_user(
        payload.username, payload.email, generate_password_hash(payload.password)
    )
    token = _start_session(response, user, db, settings)
    logger.info("Registered user id=%s username=%s", user.id, user.username)
    return {"user": user.as_dict(), "token": token}


@router.post("/auth/login")
def login(
    payload: LoginRequest,
    response: Response,
    settings: Settings = Depends(get_settings),
    db: DbClient = Depends(get_db_client),
    limiter: RateLimiter = Depends(get_rate_limiter),
    ip_hash: str = Depends(get_ip_hash),
):
    enforce_rate_limit(
        limiter,
        db,
        scope=ratelimit.USER_LOGIN,
        key=ip_hash,
        limit=settings.user_login_limit,
        window_seconds=settings.user_login_window_seconds,
        ip_hash=ip_hash,
        message="Too many login attempts. Try again later.",
    )
    user = db.get_user_by_username(payload.username)
    if user is None or not check_password_hash(user.password_hash, payload.password):
        raise HTTPException(status_code=401, detail="Invalid username or password")
    token = _start_session(response, user, db, settings)
    return {"user": user.as_dict(), "token": token}


@router.post("/auth/logout")
def logout(
    request: Request,
    response: Response,
    db: DbClient = Depends(get_db_client),
):
    token = user_session_token(request)
    if token:
        db.delete_user_session(hash_token(token))
    response.delete_cookie(USER_COOKIE)
    return {"success": True}


@router.get("/auth/session")
def current_session(user: UserRecord = Depends(require_user)):
    return {"user": user.as_dict()}


@router.post("/auth/forgot-password")
def forgot_password(
    payload: ForgotPasswordRequest,
    settings: Settings = Depends(get_settings),
    db: DbClient = Depends(get_db_client),
    mailer: Mailer = Depends(get_mailer),
):
    user = db.get_user_by_email(payload.email)
    if user is not None and user.email:
        token = new_token()
        db.create_password_reset(
            user.id, hash_token(token), time.time() + settings.password_reset_ttl_seconds
        )
        link = f"{settings.public_base_url.rstrip('/')}/reset-password?token={token}"
        subject, body = password_reset_email(settings.site_name, user.username, link)
        mailer.send(user.email, subject, body)
    return {
        "success": True,
        "message": "If an account exists for that email, a reset link has been sent.",
    }


@router.post("/auth/reset-password")
def reset_password(
    payload: ResetPasswordRequest,
    settings: Settings = Depends(get_settings),
    db: DbClient = Depends(get_db_client),
    mailer: Mailer = Depends(get_mailer),
):
    user_id = db.consume_password_reset(hash_token(payload.token))
    if user_id is None:
        raise HTTPException(status_code=400, detail="Invalid or expired reset link.")
    db.update_user_password(user_id, generate_password_hash(payload.password))
    logger.info("Password reset for user id=%s", user_id)
    user = db.get_user(user_id)
    if user is not None and user.email:
        subject, body = password_changed_email(settings.site_name, user.username)
        mailer.send(user.email, subject, body)
    return {"success": True}


@router.get("/verification/status")
def verification_status(
    user: UserRecord = Depends(require_user),
    db: DbClient = Depends(get_db_client),
):
    pending = db.get_pending_verification(user.id)
    return {
        "verification_status": user.verification_status.value,
        "stake_username": user.stake_username,
        "stake_platform": user.stake_platform,
        "security_disclaimer_accepted": user.security_disclaimer_accepted,
        "pending_request": pending.as_dict() if pending else None,
    }


@router.post("/verification/accept-disclaimer")
def accept_disclaimer(
    user: UserRecord = Depends(require_user),
    db: DbClient = Depends(get_db_client),
):
    updated = db.accept_disclaimer(user.id)
    return {"success": True, "security_disclaimer_accepted": updated.security_disclaimer_accepted}


@router.post("/verification/submit", status_code=201)
async def submit_verification(
    stake_username: str = Form(...),
    stake_platform: str = Form(...),
    bet_id: Optional[str] = Form(default=None),
    screenshot: UploadFile = File(...),
    user: UserRecord = Depends(require_user),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
):
    try:
        stake_username = normalize_stake_id(stake_username)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    if stake_platform not in {platform.value for platform in StakePlatform}:
        raise HTTPException(status_code=400, detail="Stake platform must be 'us' or 'com'")
    if not user.security_disclaimer_accepted:
        raise HTTPException(status_code=400, detail="Accept the security disclaimer first.")
    if user.verification_status == VerificationStatus.VERIFIED:
        raise Conflict("Account is already verified")
    if db.get_pending_verification(user.id) is not None:
        raise Conflict("A verification request is already pending")

    extension = SCREENSHOT_TYPES.get(screenshot.content_type or "")
    if extension is None:
        raise HTTPException(status_code=400, detail="Screenshot must be a PNG, JPEG or WebP image")
    data = await screenshot.read(MAX_SCREENSHOT_BYTES + 1)
    if len(data) > MAX_SCREENSHOT_BYTES:
        raise HTTPException(status_code=413, detail="Screenshot must be 5 MB or smaller")
    if not data:
        raise HTTPException(status_code=400, detail="Screenshot is empty")

    path = f"verification/{user.id}/{uuid.uuid4().hex}.{extension}"
    storage.put_bytes(path, data, content_type=screenshot.content_type)
    request = db.create_verification_request(
        user.id,
        stake_username,
        stake_platform,
        bet_id=(bet_id or "").strip() or None,
        screenshot_path=path,
    )
    logger.info("Verification submitted user id=%s request id=%s", user.id, request.id)
    return {"success": True, "request": request.as_dict()}
