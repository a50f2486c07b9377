"""
Plain records handed out by the database client.

Routes serialize these through ``as_dict``; nothing outside ``spinsite.db``
sees SQLAlchemy rows.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from spincore.types import (
    PayoutStatus,
    SpinBalances,
    SpinResult,
    SpinSource,
    SpinTier,
    TransactionType,
    VerificationStatus,
    WithdrawalStatus,
)


@dataclass
class UserRecord:
    id: str
    username: str
    email: Optional[str]
    password_hash: str
    stake_username: Optional[str] = None
    stake_platform: Optional[str] = None
    verification_status: VerificationStatus = VerificationStatus.UNVERIFIED
    verified_at: Optional[float] = None
    security_disclaimer_accepted: bool = False
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())
    deleted_at: Optional[float] = None

    def as_dict(self) -> dict:
        # Never expose the password hash.
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "stake_username": self.stake_username,
            "stake_platform": self.stake_platform,
            "verification_status": self.verification_status.value,
            "verified_at": self.verified_at,
            "security_disclaimer_accepted": self.security_disclaimer_accepted,
            "created_at": self.created_at,
        }


@dataclass
class VerificationRequestRecord:
    id: int
    user_id: str
    stake_username: str
    stake_platform: str
    bet_id: Optional[str]
    screenshot_path: Optional[str]
    status: VerificationStatus
    admin_notes: Optional[str]
    created_at: float
    processed_at: Optional[float] = None
    processed_by: Optional[str] = None
    username: Optional[str] = None

    def as_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class SpinLogRecord:
    id: int
    created_at: float
    stake_id: str
    wagered_amount: float
    spin_number: int
    tier: SpinTier
    source: SpinSource
    result: SpinResult
    prize_label: str
    prize_value: int
    prize_color: str
    is_bonus: bool = False

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.created_at,
            "stake_id": self.stake_id,
            "wagered_amount": self.wagered_amount,
            "spin_number": self.spin_number,
            "tier": self.tier.value,
            "source": self.source.value,
            "result": self.result.value,
            "prize_label": self.prize_label,
            "prize_value": self.prize_value,
            "prize_color": self.prize_color,
            "is_bonus": self.is_bonus,
        }


@dataclass
class SpinOutcome:
    """Everything the spin endpoints report back after a draw is committed."""

    stake_id: str
    tier: SpinTier
    source: SpinSource
    spin_number: int
    tickets_used_before: int
    tickets_used_after: int
    result: SpinResult
    prize_label: str
    prize_value: int
    prize_color: str
    wallet_balance: int
    spin_balances: SpinBalances


@dataclass
class WithdrawalRecord:
    id: int
    stake_id: str
    amount: int
    status: WithdrawalStatus
    created_at: float
    processed_at: Optional[float] = None
    admin_notes: Optional[str] = None

    def as_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class WalletTransactionRecord:
    id: int
    stake_id: str
    type: TransactionType
    amount: int
    tier: Optional[str]
    description: Optional[str]
    created_at: float

    def as_dict(self) -> dict:
        data = asdict(self)
        data["type"] = self.type.value
        return data


@dataclass
class WalletSnapshot:
    stake_id: str
    balance: int
    pending_withdrawals: int

    @property
    def available(self) -> int:
        return self.balance - self.pending_withdrawals


@dataclass
class UserFlagRecord:
    stake_id: str
    is_blacklisted: bool = False
    is_allowlisted: bool = False
    is_disputed: bool = False
    notes: Optional[str] = None
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class WagerOverrideRecord:
    stake_id: str
    lifetime_wagered: float
    year_to_date_wagered: Optional[float] = None
    note: Optional[str] = None
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class PayoutRecord:
    id: int
    stake_id: str
    amount: int
    prize: Optional[str]
    status: PayoutStatus
    transaction_hash: Optional[str]
    notes: Optional[str]
    created_at: float
    processed_at: Optional[float] = None

    def as_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class ExportLogRecord:
    id: int
    campaign: str
    week_label: str
    ticket_unit: int
    row_count: int
    total_tickets: int
    data_hash: Optional[str]
    exported_by: str
    created_at: float

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class FeatureToggleRecord:
    key: str
    value: str
    description: Optional[str]
    updated_at: float

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class AdminActivityRecord:
    id: int
    action: str
    target_type: Optional[str]
    target_id: Optional[str]
    details: Optional[dict[str, Any]]
    ip_hash: Optional[str]
    created_at: float

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class RateLimitLogRecord:
    id: int
    ip_hash: str
    stake_id: Optional[str]
    action: str
    created_at: float

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class BackupLogRecord:
    id: int
    filename: str
    size_bytes: Optional[int]
    status: str
    error_message: Optional[str]
    created_at: float

    def as_dict(self) -> dict:
        return asdict(self)
