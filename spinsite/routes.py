"""
Public (player) HTTP routes.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Response

from spincore.prizes import CONVERSION_RATES, tier_config_payload
from spincore.tickets import normalize_stake_id
from spinsite import ratelimit, toggles
from spinsite.config import Settings, get_settings
from spinsite.db import DbClient
from spinsite.dependencies import get_db_client, get_rate_limiter, get_spin_service
from spinsite.ledger import SpinService
from spinsite.ratelimit import RateLimiter
from spinsite.schemas import (
    BonusCheckResponse,
    ConvertRequest,
    ConvertResponse,
    HealthResponse,
    LookupRequest,
    LookupResponse,
    PurchaseRequest,
    PurchaseResponse,
    SpinRequest,
    SpinResponse,
    StakeIdPayload,
    WithdrawRequest,
    WithdrawResponse,
)
from spinsite.security import enforce_rate_limit, get_ip_hash

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
def health(response: Response, db: DbClient = Depends(get_db_client)):
    if db.ping():
        return HealthResponse(status="ok", database="connected")
    response.status_code = 503
    return HealthResponse(status="degraded", database="error")


@router.get("/config")
def site_config(
    settings: Settings = Depends(get_settings),
    db: DbClient = Depends(get_db_client),
    service: SpinService = Depends(get_spin_service),
):
    return {
        "site_name": settings.site_name,
        "mode": service.mode,
        "ticket_unit": settings.ticket_unit,
        "tiers": tier_config_payload(),
        "conversion_rates": {
            tier.value: {"to": target.value, "rate": rate}
            for tier, (target, rate) in CONVERSION_RATES.items()
        },
        "bonus_cooldown_hours": settings.bonus_cooldown_hours,
        "features": toggles.resolve_toggles(db.get_toggle_values()),
    }


@router.post("/lookup", response_model=LookupResponse)
def lookup(
    payload: LookupRequest,
    settings: Settings = Depends(get_settings),
    db: DbClient = Depends(get_db_client),
    limiter: RateLimiter = Depends(get_rate_limiter),
    service: SpinService = Depends(get_spin_service),
    ip_hash: str = Depends(get_ip_hash),
):
    enforce_rate_limit(
        limiter,
        db,
        scope=ratelimit.LOOKUP_IP,
        key=ip_hash,
        limit=settings.lookup_limit_per_ip_per_hour,
        window_seconds=ratelimit.HOUR_SECONDS,
        ip_hash=ip_hash,
        message="Too many lookups. Try again later.",
        stake_id=payload.stake_id,
    )
    return service.lookup(payload.stake_id)


def _limit_spins(
    stake_id: str,
    *,
    settings: Settings,
    db: DbClient,
    limiter: RateLimiter,
    service: SpinService,
    ip_hash: str,
) -> None:
    enforce_rate_limit(
        limiter,
        db,
        scope=ratelimit.SPIN_IP,
        key=ip_hash,
        limit=settings.rate_limit_per_ip_per_hour,
        window_seconds=ratelimit.HOUR_SECONDS,
        ip_hash=ip_hash,
        message="Too many spin attempts. Try again later.",
        stake_id=stake_id,
    )
    flags = service.flags(stake_id)
    if flags and flags.is_allowlisted:
        return
    enforce_rate_limit(
        limiter,
        db,
        scope=ratelimit.SPIN_STAKE,
        key=stake_id,
        limit=settings.rate_limit_per_stake_id_per_hour,
        window_seconds=ratelimit.HOUR_SECONDS,
        ip_hash=ip_hash,
        message="Too many spins for this Stake ID. Try again later.",
        stake_id=stake_id,
    )


@router.post("/spin", response_model=SpinResponse)
def spin(
    payload: SpinRequest,
    settings: Settings = Depends(get_settings),
    db: DbClient = Depends(get_db_client),
    limiter: RateLimiter = Depends(get_rate_limiter),
    service: SpinService = Depends(get_spin_service),
    ip_hash: str = Depends(get_ip_hash),
):
    _limit_spins(
        payload.stake_id,
        settings=settings,
        db=db,
        limiter=limiter,
        service=service,
        ip_hash=ip_hash,
    )
    return service.spin(payload.stake_id, payload.tier, ip_hash=ip_hash)


@router.post("/spin/bonus/check", response_model=BonusCheckResponse)
def bonus_check(
    payload: StakeIdPayload,
    service: SpinService = Depends(get_spin_service),
):
    return service.bonus_status(payload.stake_id)


@router.post("/spin/bonus", response_model=SpinResponse)
def bonus_spin(
    payload: StakeIdPayload,
    settings: Settings = Depends(get_settings),
    db: DbClient = Depends(get_db_client),
    limiter: RateLimiter = Depends(get_rate_limiter),
    service: SpinService = Depends(get_spin_service),
    ip_hash: str = Depends(get_ip_hash),
):
    _limit_spins(
        payload.stake_id,
        settings=settings,
        db=db,
        limiter=limiter,
        service=service,
        ip_hash=ip_hash,
    )
    return service.bonus_spin(payload.stake_id, ip_hash=ip_hash)


@router.post("/spins/convert", response_model=ConvertResponse)
def convert_spins(
    payload: ConvertRequest,
    service: SpinService = Depends(get_spin_service),
):
    return service.convert(
        payload.stake_id, payload.from_tier, payload.to_tier, payload.quantity
    )


@router.post("/spins/purchase", response_model=PurchaseResponse)
def purchase_spins(
    payload: PurchaseRequest,
    service: SpinService = Depends(get_spin_service),
):
    return service.purchase(payload.stake_id, payload.tier, payload.quantity)


@router.post("/wallet/withdraw", response_model=WithdrawResponse)
def withdraw(
    payload: WithdrawRequest,
    service: SpinService = Depends(get_spin_service),
):
    return service.withdraw(payload.stake_id, payload.amount)


@router.get("/wallet/{stake_id}/transactions")
def wallet_transactions(
    stake_id: str,
    service: SpinService = Depends(get_spin_service),
):
    try:
        stake_id = normalize_stake_id(stake_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {
        "stake_id": stake_id,
        "transactions": [tx.as_dict() for tx in service.transactions(stake_id)],
    }
