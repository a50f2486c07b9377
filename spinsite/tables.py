"""
SQLAlchemy table definitions.

Timestamps are epoch seconds stored as floats.
"""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    username = Column(String, nullable=False, unique=True, index=True)
    email = Column(String, nullable=True, index=True)
    password_hash = Column(String, nullable=False)
    stake_username = Column(String, nullable=True)
    stake_platform = Column(String, nullable=True)
    verification_status = Column(String, nullable=False, default="unverified")
    verified_at = Column(Float, nullable=True)
    security_disclaimer_accepted = Column(Boolean, nullable=False, default=False)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)
    deleted_at = Column(Float, nullable=True)


class UserSessionRow(Base):
    __tablename__ = "user_sessions"

    token_hash = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    created_at = Column(Float, nullable=False)
    expires_at = Column(Float, nullable=False)


class PasswordResetRow(Base):
    __tablename__ = "password_resets"

    token_hash = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    created_at = Column(Float, nullable=False)
    expires_at = Column(Float, nullable=False)
    used_at = Column(Float, nullable=True)


class VerificationRequestRow(Base):
    __tablename__ = "verification_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    stake_username = Column(String, nullable=False)
    stake_platform = Column(String, nullable=False)
    bet_id = Column(String, nullable=True)
    screenshot_path = Column(String, nullable=True)
    status = Column(String, nullable=False, default="pending", index=True)
    admin_notes = Column(Text, nullable=True)
    created_at = Column(Float, nullable=False)
    processed_at = Column(Float, nullable=True)
    processed_by = Column(String, nullable=True)


class DemoUserRow(Base):
    __tablename__ = "demo_users"

    stake_id = Column(String, primary_key=True)
    wagered_amount = Column(Float, nullable=False)
    period_label = Column(String, nullable=False)


class SpinLogRow(Base):
    __tablename__ = "spin_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(Float, nullable=False, index=True)
    stake_id = Column(String, nullable=False, index=True)
    wagered_amount = Column(Float, nullable=False)
    spin_number = Column(Integer, nullable=False)
    tier = Column(String, nullable=False)
    source = Column(String, nullable=False)
    result = Column(String, nullable=False)
    prize_label = Column(String, nullable=False)
    prize_value = Column(Integer, nullable=False, default=0)
    prize_color = Column(String, nullable=False)
    is_bonus = Column(Boolean, nullable=False, default=False)
    ip_hash = Column(String, nullable=True)


class GuaranteedWinRow(Base):
    __tablename__ = "guaranteed_wins"
    __table_args__ = (UniqueConstraint("stake_id", "spin_number"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    stake_id = Column(String, nullable=False, index=True)
    spin_number = Column(Integer, nullable=False)


class UserWalletRow(Base):
    __tablename__ = "user_wallets"

    stake_id = Column(String, primary_key=True)
    balance = Column(Integer, nullable=False, default=0)
    updated_at = Column(Float, nullable=False)


class UserSpinBalanceRow(Base):
    __tablename__ = "user_spin_balances"

    stake_id = Column(String, primary_key=True)
    tier = Column(String, primary_key=True)
    balance = Column(Integer, nullable=False, default=0)


class WithdrawalRequestRow(Base):
    __tablename__ = "withdrawal_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    stake_id = Column(String, nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default="pending", index=True)
    created_at = Column(Float, nullable=False)
    processed_at = Column(Float, nullable=True)
    admin_notes = Column(Text, nullable=True)


class WalletTransactionRow(Base):
    __tablename__ = "wallet_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    stake_id = Column(String, nullable=False, index=True)
    type = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)
    tier = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(Float, nullable=False)


class UserFlagRow(Base):
    __tablename__ = "user_flags"

    stake_id = Column(String, primary_key=True)
    is_blacklisted = Column(Boolean, nullable=False, default=False)
    is_allowlisted = Column(Boolean, nullable=False, default=False)
    is_disputed = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class UserStateRow(Base):
    __tablename__ = "user_state"

    stake_id = Column(String, primary_key=True)
    last_bonus_spin_at = Column(Float, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class WagerOverrideRow(Base):
    __tablename__ = "wager_overrides"

    stake_id = Column(String, primary_key=True)
    lifetime_wagered = Column(Float, nullable=False)
    year_to_date_wagered = Column(Float, nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class AdminSessionRow(Base):
    __tablename__ = "admin_sessions"

    token_hash = Column(String, primary_key=True)
    ip_hash = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)
    last_activity_at = Column(Float, nullable=False)
    expires_at = Column(Float, nullable=False)


class AdminActivityLogRow(Base):
    __tablename__ = "admin_activity_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    action = Column(String, nullable=False)
    target_type = Column(String, nullable=True)
    target_id = Column(String, nullable=True)
    details = Column(JSON, nullable=True)
    ip_hash = Column(String, nullable=True)
    created_at = Column(Float, nullable=False, index=True)


class ExportLogRow(Base):
    __tablename__ = "export_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    campaign = Column(String, nullable=False)
    week_label = Column(String, nullable=False)
    ticket_unit = Column(Integer, nullable=False)
    row_count = Column(Integer, nullable=False)
    total_tickets = Column(Integer, nullable=False)
    data_hash = Column(String, nullable=True)
    exported_by = Column(String, nullable=False, default="admin")
    created_at = Column(Float, nullable=False)


class FeatureToggleRow(Base):
    __tablename__ = "feature_toggles"

    key = Column(String, primary_key=True)
    value = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    updated_at = Column(Float, nullable=False)


class PayoutRow(Base):
    __tablename__ = "payouts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    stake_id = Column(String, nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    prize = Column(String, nullable=True)
    status = Column(String, nullable=False, default="pending")
    transaction_hash = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(Float, nullable=False)
    processed_at = Column(Float, nullable=True)


class RateLimitLogRow(Base):
    __tablename__ = "rate_limit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ip_hash = Column(String, nullable=False)
    stake_id = Column(String, nullable=True)
    action = Column(String, nullable=False)
    created_at = Column(Float, nullable=False, index=True)


class BackupLogRow(Base):
    __tablename__ = "backup_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    filename = Column(String, nullable=False)
    size_bytes = Column(Integer, nullable=True)
    status = Column(String, nullable=False)
    error_message = Column(Text, nullable=True)
    created_at = Column(Float, nullable=False, index=True)
