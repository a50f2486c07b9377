"""
Pydantic schemas for the spin site API.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from spincore.tickets import normalize_stake_id
from spincore.types import SpinTier


class StakeIdPayload(BaseModel):
    stake_id: str = Field(..., max_length=64)

    @field_validator("stake_id")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return normalize_stake_id(value)


class SpinBalancesModel(BaseModel):
    bronze: int = 0
    silver: int = 0
    gold: int = 0


# -- public -------------------------------------------------------------


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded"]
    database: Literal["connected", "error"]


class LookupRequest(StakeIdPayload):
    pass


class LookupResponse(BaseModel):
    stake_id: str
    period_label: Optional[str] = None
    wagered_amount: float
    lifetime_wagered: Optional[float] = None
    tickets_total: int
    tickets_used: int
    tickets_remaining: int
    wallet_balance: int
    available_balance: int
    pending_withdrawals: int
    spin_balances: SpinBalancesModel
    can_daily_bonus: bool
    next_bonus_at: Optional[float] = None


class SpinRequest(StakeIdPayload):
    tier: SpinTier = SpinTier.BRONZE


class SpinResponse(BaseModel):
    stake_id: str
    wagered_amount: float
    tickets_total: int
    tickets_used_before: int
    tickets_used_after: int
    tickets_remaining_after: int
    result: Literal["WIN", "LOSE"]
    prize_label: str
    prize_value: int
    prize_color: str
    tier: SpinTier
    source: Literal["ticket", "balance", "bonus"]
    wallet_balance: int
    spin_balances: SpinBalancesModel
    next_bonus_at: Optional[float] = None


class BonusCheckResponse(BaseModel):
    available: bool
    remaining_ms: int
    next_bonus_at: Optional[float] = None


class ConvertRequest(StakeIdPayload):
    from_tier: SpinTier
    to_tier: SpinTier
    quantity: int = Field(..., ge=1, le=10_000)


class ConvertResponse(BaseModel):
    success: bool
    converted: int
    spent: int
    from_tier: SpinTier
    to_tier: SpinTier
    spin_balances: SpinBalancesModel


class PurchaseRequest(StakeIdPayload):
    tier: SpinTier
    quantity: int = Field(..., ge=1, le=1_000)


class PurchaseResponse(BaseModel):
    success: bool
    tier: SpinTier
    quantity: int
    total_cost: int
    wallet_balance: int
    available_balance: int
    spin_balances: SpinBalancesModel


class WithdrawRequest(StakeIdPayload):
    amount: int = Field(..., ge=1)


class WithdrawResponse(BaseModel):
    success: bool
    request_id: int
    amount: int
    wallet_balance: int
    pending_withdrawals: int


# -- accounts -----------------------------------------------------------


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=32, pattern=r"^[A-Za-z0-9_]+$")
    email: str = Field(..., max_length=254, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(..., min_length=8, max_length=128)


class LoginRequest(BaseModel):
    username: str = Field(..., max_length=64)
    password: str = Field(..., max_length=128)


class ForgotPasswordRequest(BaseModel):
    email: str = Field(..., max_length=254)


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., max_length=256)
    password: str = Field(..., min_length=8, max_length=128)


# -- admin --------------------------------------------------------------


class AdminLoginRequest(BaseModel):
    password: str = Field(..., max_length=256)


class ProcessWithdrawalRequest(BaseModel):
    id: int
    status: Literal["approved", "rejected"]
    admin_notes: Optional[str] = Field(default=None, max_length=1000)


class ProcessVerificationRequest(BaseModel):
    id: int
    status: Literal["verified", "rejected"]
    admin_notes: Optional[str] = Field(default=None, max_length=1000)


class FlagsUpdate(BaseModel):
    is_blacklisted: Optional[bool] = None
    is_allowlisted: Optional[bool] = None
    is_disputed: Optional[bool] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class WagerOverrideUpdate(BaseModel):
    lifetime_wagered: float = Field(..., ge=0)
    year_to_date_wagered: Optional[float] = Field(default=None, ge=0)
    note: Optional[str] = Field(default=None, max_length=500)


class GrantSpinsRequest(StakeIdPayload):
    tier: SpinTier
    quantity: int = Field(..., ge=1, le=10_000)


class GuaranteedWinRequest(StakeIdPayload):
    spin_number: int = Field(..., ge=1)


class PayoutCreate(StakeIdPayload):
    amount: int = Field(..., ge=1)
    prize: Optional[str] = Field(default=None, max_length=200)
    notes: Optional[str] = Field(default=None, max_length=1000)


class PayoutStatusUpdate(BaseModel):
    status: Literal["pending", "sent", "failed"]
    transaction_hash: Optional[str] = Field(default=None, max_length=200)


class ToggleUpdate(BaseModel):
    value: str | bool
    description: Optional[str] = Field(default=None, max_length=500)
