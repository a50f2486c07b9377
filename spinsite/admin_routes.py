"""
Admin back office routes.

Everything except login and verify sits behind ``require_admin``, and every
state change lands in the admin activity log with the caller's hashed IP.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from spincore.tickets import normalize_stake_id
from spincore.types import PayoutStatus, VerificationStatus, WithdrawalStatus
from spinsite import ratelimit, toggles
from spinsite.backup import BackupManager
from spinsite.config import Settings, get_settings
from spinsite.db import DbClient
from spinsite.dependencies import (
    get_backup_manager,
    get_db_client,
    get_mailer,
    get_rate_limiter,
    get_spin_service,
)
from spinsite.ledger import SpinService, render_raffle_csv
from spinsite.mailer import Mailer, verification_result_email
from spinsite.ratelimit import RateLimiter
from spinsite.schemas import (
    AdminLoginRequest,
    FlagsUpdate,
    GrantSpinsRequest,
    GuaranteedWinRequest,
    PayoutCreate,
    PayoutStatusUpdate,
    ProcessVerificationRequest,
    ProcessWithdrawalRequest,
    ToggleUpdate,
    WagerOverrideUpdate,
)
from spinsite.security import (
    ADMIN_COOKIE,
    AdminPrincipal,
    enforce_rate_limit,
    get_ip_hash,
    hash_token,
    new_token,
    passwords_match,
    require_admin,
)

logger = logging.getLogger(__name__)

router = APIRouter()

RECENT_LIMIT = 20


def _audit(
    db: DbClient,
    admin: AdminPrincipal,
    action: str,
    *,
    target_type: Optional[str] = None,
    target_id: Optional[Any] = None,
    details: Optional[dict] = None,
) -> None:
    db.log_admin_activity(
        action,
        target_type=target_type,
        target_id=str(target_id) if target_id is not None else None,
        details=details,
        ip_hash=admin.ip_hash,
    )


def _stake_id(value: str) -> str:
    try:
        return normalize_stake_id(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


# -- session ------------------------------------------------------------


@router.post("/login")
def admin_login(
    payload: AdminLoginRequest,
    response: Response,
    settings: Settings = Depends(get_settings),
    db: DbClient = Depends(get_db_client),
    limiter: RateLimiter = Depends(get_rate_limiter),
    ip_hash: str = Depends(get_ip_hash),
):
    enforce_rate_limit(
        limiter,
        db,
        scope=ratelimit.ADMIN_LOGIN,
        key=ip_hash,
        limit=settings.admin_login_limit,
        window_seconds=settings.admin_login_window_seconds,
        ip_hash=ip_hash,
        message="Too many login attempts. Try again later.",
    )
    if not settings.admin_password:
        raise HTTPException(status_code=503, detail="Admin access is not configured")
    if not passwords_match(payload.password, settings.admin_password):
        logger.warning("Failed admin login ip_hash=%s", ip_hash[:12])
        db.log_admin_activity("login_failed", target_type="session", ip_hash=ip_hash)
        raise HTTPException(status_code=401, detail="Invalid password")

    token = new_token()
    db.create_admin_session(
        hash_token(token), ip_hash, time.time() + settings.admin_session_max_seconds
    )
    limiter.reset(ratelimit.ADMIN_LOGIN, ip_hash)
    response.set_cookie(
        ADMIN_COOKIE,
        token,
        max_age=settings.admin_session_max_seconds,
        httponly=True,
        samesite="strict",
        secure=settings.cookie_secure,
    )
    db.log_admin_activity("login", target_type="session", ip_hash=ip_hash)
    return {"success": True}


@router.post("/logout")
def admin_logout(
    request: Request,
    response: Response,
    db: DbClient = Depends(get_db_client),
    ip_hash: str = Depends(get_ip_hash),
):
    token = request.cookies.get(ADMIN_COOKIE)
    if token:
        db.delete_admin_session(hash_token(token))
        db.log_admin_activity("logout", target_type="session", ip_hash=ip_hash)
    response.delete_cookie(ADMIN_COOKIE)
    return {"success": True}


@router.get("/verify")
def admin_verify(
    request: Request,
    settings: Settings = Depends(get_settings),
    db: DbClient = Depends(get_db_client),
):
    token = request.cookies.get(ADMIN_COOKIE)
    if not token:
        return {"authenticated": False}
    started_at = db.touch_admin_session(hash_token(token), settings.admin_session_idle_seconds)
    return {"authenticated": started_at is not None}


# -- spins and withdrawals ----------------------------------------------


@router.get("/logs")
def spin_logs(
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    service: SpinService = Depends(get_spin_service),
):
    total, wins = db.spin_totals()
    return {
        "mode": service.mode,
        "logs": [log.as_dict() for log in db.list_spin_logs(limit=100)],
        "totalSpins": total,
        "totalWins": wins,
    }


@router.get("/withdrawals")
def list_withdrawals(
    status: Optional[str] = Query(default=None),
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    try:
        status_filter = WithdrawalStatus(status) if status else None
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
    return {
        "withdrawals": [
            item.as_dict() for item in db.list_withdrawals(status=status_filter, limit=100)
        ]
    }


@router.post("/withdrawals/process")
def process_withdrawal(
    payload: ProcessWithdrawalRequest,
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    status = WithdrawalStatus(payload.status)
    record = db.process_withdrawal(payload.id, status, payload.admin_notes)
    action = "approve_withdrawal" if status == WithdrawalStatus.APPROVED else "reject_withdrawal"
    _audit(
        db,
        admin,
        action,
        target_type="withdrawal",
        target_id=record.id,
        details={"stake_id": record.stake_id, "amount": record.amount},
    )
    logger.info("Withdrawal id=%s %s", record.id, status.value)
    return {"success": True, "withdrawal": record.as_dict()}


# -- users and verification ---------------------------------------------


@router.get("/users")
def list_users(
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    return {"users": [user.as_dict() for user in db.list_users()]}


@router.get("/users/{stake_id}")
def user_detail(
    stake_id: str,
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    service: SpinService = Depends(get_spin_service),
):
    stake_id = _stake_id(stake_id)
    wager = service.wager_source.get(stake_id)
    wallet = db.get_wallet(stake_id)
    flags = db.get_flags(stake_id)
    override = db.get_wager_override(stake_id)
    _audit(db, admin, "view_user", target_type="user", target_id=stake_id)
    return {
        "stake_id": stake_id,
        "wagered_amount": wager.wagered_amount if wager else None,
        "tickets_used": db.count_ticket_spins(stake_id),
        "wallet_balance": wallet.balance,
        "available_balance": wallet.available,
        "pending_withdrawals": wallet.pending_withdrawals,
        "spin_balances": db.get_spin_balances(stake_id),
        "flags": flags.as_dict() if flags else None,
        "wager_override": override.as_dict() if override else None,
        "guaranteed_wins": db.list_guaranteed_wins(stake_id),
        "withdrawals": [
            item.as_dict() for item in db.list_withdrawals(stake_id=stake_id, limit=RECENT_LIMIT)
        ],
        "transactions": [
            item.as_dict() for item in db.list_transactions(stake_id, limit=RECENT_LIMIT)
        ],
        "spins": [
            item.as_dict() for item in db.list_spin_logs(limit=RECENT_LIMIT, stake_id=stake_id)
        ],
    }


@router.delete("/users/{user_id}")
def delete_user(
    user_id: str,
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    if not db.soft_delete_user(user_id):
        raise HTTPException(status_code=404, detail="User not found")
    _audit(db, admin, "delete_user", target_type="user", target_id=user_id)
    return {"success": True}


@router.get("/verifications")
def list_verifications(
    status: str = Query(default="pending"),
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    if status == "all":
        status_filter = None
    else:
        try:
            status_filter = VerificationStatus(status)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
    return {
        "requests": [
            item.as_dict() for item in db.list_verification_requests(status=status_filter)
        ]
    }


@router.post("/verifications/process")
def process_verification(
    payload: ProcessVerificationRequest,
    settings: Settings = Depends(get_settings),
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    mailer: Mailer = Depends(get_mailer),
):
    status = VerificationStatus(payload.status)
    request, user = db.process_verification(payload.id, status, payload.admin_notes)
    approved = status == VerificationStatus.VERIFIED
    _audit(
        db,
        admin,
        "verify_user" if approved else "reject_user",
        target_type="user",
        target_id=request.user_id,
        details={"request_id": request.id, "stake_username": request.stake_username},
    )
    if user is not None and user.email:
        subject, body = verification_result_email(
            settings.site_name, user.username, approved, payload.admin_notes
        )
        mailer.send(user.email, subject, body)
    return {"success": True, "request": request.as_dict()}


# -- flags, overrides and grants ----------------------------------------


@router.get("/flags")
def list_flags(
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    return {"flags": [item.as_dict() for item in db.list_flags()]}


@router.put("/flags/{stake_id}")
def update_flags(
    stake_id: str,
    payload: FlagsUpdate,
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    stake_id = _stake_id(stake_id)
    record = db.upsert_flags(
        stake_id,
        is_blacklisted=payload.is_blacklisted,
        is_allowlisted=payload.is_allowlisted,
        is_disputed=payload.is_disputed,
        notes=payload.notes,
    )
    flagged = record.is_blacklisted or record.is_disputed
    _audit(
        db,
        admin,
        "flag_user" if flagged else "unflag_user",
        target_type="user",
        target_id=stake_id,
        details=payload.model_dump(exclude_none=True),
    )
    return {"success": True, "flags": record.as_dict()}


@router.get("/wager-overrides")
def list_wager_overrides(
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    return {"overrides": [item.as_dict() for item in db.list_wager_overrides()]}


@router.put("/wager-overrides/{stake_id}")
def put_wager_override(
    stake_id: str,
    payload: WagerOverrideUpdate,
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    stake_id = _stake_id(stake_id)
    record = db.upsert_wager_override(
        stake_id,
        payload.lifetime_wagered,
        year_to_date_wagered=payload.year_to_date_wagered,
        note=payload.note,
    )
    _audit(
        db,
        admin,
        "update_wager_override",
        target_type="user",
        target_id=stake_id,
        details={"lifetime_wagered": payload.lifetime_wagered},
    )
    return {"success": True, "override": record.as_dict()}


@router.delete("/wager-overrides/{stake_id}")
def delete_wager_override(
    stake_id: str,
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    stake_id = _stake_id(stake_id)
    if not db.delete_wager_override(stake_id):
        raise HTTPException(status_code=404, detail="No override for that Stake ID")
    _audit(db, admin, "delete_wager_override", target_type="user", target_id=stake_id)
    return {"success": True}


@router.post("/spin-balances/grant")
def grant_spins(
    payload: GrantSpinsRequest,
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    balances = db.grant_spins(payload.stake_id, payload.tier, payload.quantity)
    _audit(
        db,
        admin,
        "grant_spins",
        target_type="user",
        target_id=payload.stake_id,
        details={"tier": payload.tier.value, "quantity": payload.quantity},
    )
    return {"success": True, "stake_id": payload.stake_id, "spin_balances": balances}


@router.post("/guaranteed-wins", status_code=201)
def add_guaranteed_win(
    payload: GuaranteedWinRequest,
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    created = db.add_guaranteed_win(payload.stake_id, payload.spin_number)
    if created:
        _audit(
            db,
            admin,
            "add_guaranteed_win",
            target_type="user",
            target_id=payload.stake_id,
            details={"spin_number": payload.spin_number},
        )
    return {
        "success": True,
        "created": created,
        "guaranteed_wins": db.list_guaranteed_wins(payload.stake_id),
    }


# -- payouts and raffle -------------------------------------------------


@router.get("/payouts")
def list_payouts(
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    return {"payouts": [item.as_dict() for item in db.list_payouts()]}


@router.post("/payouts", status_code=201)
def create_payout(
    payload: PayoutCreate,
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    record = db.create_payout(payload.stake_id, payload.amount, payload.prize, payload.notes)
    _audit(
        db,
        admin,
        "create_payout",
        target_type="user",
        target_id=payload.stake_id,
        details={"payout_id": record.id, "amount": record.amount},
    )
    return {"success": True, "payout": record.as_dict()}


@router.post("/payouts/{payout_id}/status")
def update_payout_status(
    payout_id: int,
    payload: PayoutStatusUpdate,
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    record = db.update_payout_status(
        payout_id, PayoutStatus(payload.status), payload.transaction_hash
    )
    _audit(
        db,
        admin,
        "update_payout",
        target_type="user",
        target_id=record.stake_id,
        details={"payout_id": record.id, "status": record.status.value},
    )
    return {"success": True, "payout": record.as_dict()}


def _default_week_label() -> str:
    year, week, _ = datetime.now(timezone.utc).isocalendar()
    return f"{year}-W{week:02d}"


@router.get("/raffle/export")
def export_raffle(
    campaign: str = Query(default="weekly", max_length=64),
    week_label: Optional[str] = Query(default=None, max_length=32),
    ticket_unit: Optional[int] = Query(default=None, ge=1),
    settings: Settings = Depends(get_settings),
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    service: SpinService = Depends(get_spin_service),
):
    unit = ticket_unit or settings.ticket_unit
    week_label = week_label or _default_week_label()
    rows = service.raffle_rows(unit)

    content, data_hash = render_raffle_csv(rows)
    total_tickets = sum(tickets for _, _, tickets in rows)
    db.record_export(
        campaign=campaign,
        week_label=week_label,
        ticket_unit=unit,
        row_count=len(rows),
        total_tickets=total_tickets,
        data_hash=data_hash,
    )
    _audit(
        db,
        admin,
        "export_raffle",
        target_type="export",
        details={
            "campaign": campaign,
            "week_label": week_label,
            "row_count": len(rows),
            "total_tickets": total_tickets,
        },
    )
    filename = f"raffle_{campaign}_{week_label}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "X-Data-Hash": data_hash,
        },
    )


@router.get("/raffle/exports")
def list_exports(
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    return {"exports": [item.as_dict() for item in db.list_exports()]}


# -- toggles, cache and backups -----------------------------------------


@router.get("/toggles")
def list_toggles(
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    stored = {item.key: item for item in db.list_toggles()}
    return {
        "toggles": [
            {
                "key": key,
                "enabled": toggles.parse_toggle(stored[key].value if key in stored else None),
                "value": stored[key].value if key in stored else None,
                "description": (
                    stored[key].description if key in stored and stored[key].description
                    else description
                ),
                "updated_at": stored[key].updated_at if key in stored else None,
            }
            for key, description in toggles.FEATURE_TOGGLES.items()
        ]
    }


@router.put("/toggles/{key}")
def update_toggle(
    key: str,
    payload: ToggleUpdate,
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    if key not in toggles.FEATURE_TOGGLES:
        raise HTTPException(status_code=404, detail=f"Unknown toggle: {key}")
    if isinstance(payload.value, bool):
        enabled = payload.value
    else:
        parsed = toggles.parse_toggle(payload.value, default=None)
        if parsed is None:
            raise HTTPException(status_code=400, detail="Toggle value must be true or false")
        enabled = parsed
    record = db.set_toggle(key, "true" if enabled else "false", payload.description)
    _audit(
        db,
        admin,
        "update_toggle",
        target_type="toggle",
        target_id=key,
        details={"enabled": enabled},
    )
    return {"success": True, "toggle": {**record.as_dict(), "enabled": enabled}}


@router.get("/cache/status")
def cache_status(
    admin: AdminPrincipal = Depends(require_admin),
    service: SpinService = Depends(get_spin_service),
):
    return service.wager_source.status()


@router.post("/cache/refresh")
def cache_refresh(
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    service: SpinService = Depends(get_spin_service),
):
    count = service.wager_source.refresh()
    _audit(db, admin, "refresh_cache", target_type="cache", details={"row_count": count})
    return {"success": True, "row_count": count, "status": service.wager_source.status()}


@router.get("/backups")
def backup_status(
    admin: AdminPrincipal = Depends(require_admin),
    manager: BackupManager = Depends(get_backup_manager),
):
    return manager.status()


@router.post("/backups")
def create_backup(
    response: Response,
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    manager: BackupManager = Depends(get_backup_manager),
):
    result = manager.create_backup(manual=True)
    _audit(
        db,
        admin,
        "manual_backup",
        target_type="backup",
        target_id=result.filename,
        details={"success": result.success},
    )
    if not result.success:
        response.status_code = 500
    return result.as_dict()


@router.get("/backups/{filename}")
def download_backup(
    filename: str,
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    manager: BackupManager = Depends(get_backup_manager),
):
    try:
        content = manager.read_backup(filename)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="Backup not found")
    _audit(db, admin, "download_backup", target_type="backup", target_id=filename)
    return Response(
        content=content,
        media_type="application/sql",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# -- audit trails -------------------------------------------------------


@router.get("/activity")
def admin_activity(
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    records, total = db.list_admin_activity(limit=limit, offset=offset)
    return {
        "logs": [item.as_dict() for item in records],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@router.get("/rate-limit-logs")
def rate_limit_logs(
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    return {"logs": [item.as_dict() for item in db.list_rate_limit_logs()]}
