"""
SQLAlchemy-backed storage for the spin site.

Accepts any SQLAlchemy URL (Postgres in production, SQLite for development
and tests). An empty URL gives a private in-memory SQLite database.

Every operation that moves money or spins runs in a single transaction
holding the process lock and a row lock on the user's wallet, so two
concurrent requests can never both pass a balance check against the same
funds.
"""

from __future__ import annotations

import logging
import math
import threading
import time
import uuid
from typing import Any, Optional

from sqlalchemy import create_engine, delete, func, select, text, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from spincore.prizes import bonus_label
from spincore.tickets import tickets_remaining
from spincore.types import (
    PayoutStatus,
    Prize,
    SpinBalances,
    SpinResult,
    SpinSource,
    SpinTier,
    TransactionType,
    VerificationStatus,
    WagerRow,
    WithdrawalStatus,
)
from spinsite.errors import (
    AlreadyProcessed,
    BonusUnavailable,
    Conflict,
    InsufficientFunds,
    InvalidConversion,
    NoSpinsAvailable,
    NotFound,
)
from spinsite.records import (
    AdminActivityRecord,
    BackupLogRecord,
    ExportLogRecord,
    FeatureToggleRecord,
    PayoutRecord,
    RateLimitLogRecord,
    SpinLogRecord,
    SpinOutcome,
    UserFlagRecord,
    UserRecord,
    VerificationRequestRecord,
    WagerOverrideRecord,
    WalletSnapshot,
    WalletTransactionRecord,
    WithdrawalRecord,
)
from spinsite.tables import (
    AdminActivityLogRow,
    AdminSessionRow,
    BackupLogRow,
    Base,
    DemoUserRow,
    ExportLogRow,
    FeatureToggleRow,
    GuaranteedWinRow,
    PasswordResetRow,
    PayoutRow,
    RateLimitLogRow,
    SpinLogRow,
    UserFlagRow,
    UserRow,
    UserSessionRow,
    UserSpinBalanceRow,
    UserStateRow,
    UserWalletRow,
    VerificationRequestRow,
    WagerOverrideRow,
    WalletTransactionRow,
    WithdrawalRequestRow,
)

logger = logging.getLogger(__name__)

MEMORY_DATABASE_URL = "sqlite+pysqlite:///:memory:"

DEMO_PERIOD_LABEL = "Demo"
DEMO_USERS: tuple[tuple[str, float], ...] = (
    ("ergys", 1_000_000.0),
    ("demo", 5_000.0),
    ("luke", 20_000.0),
)
DEMO_GUARANTEED_WINS: tuple[tuple[str, int], ...] = (
    ("luke", 13),
    ("ergys", 2),
)

_TIER_VALUES = frozenset(tier.value for tier in SpinTier)


def _engine_options(database_url: str) -> dict[str, Any]:
    options: dict[str, Any] = {"future": True, "pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
        if ":memory:" in database_url or database_url.endswith("://"):
            # One shared connection, otherwise every pooled connection sees
            # its own empty database.
            options["poolclass"] = StaticPool
    else:
        options["pool_recycle"] = 1800
    return options


class DbClient:
    def __init__(self, database_url: str = ""):
        database_url = database_url or MEMORY_DATABASE_URL
        self.engine = create_engine(database_url, **_engine_options(database_url))
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        self._lock = threading.RLock()
        Base.metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Health and export
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        try:
            with self.Session() as session:
                session.execute(text("SELECT 1"))
            return True
        except Exception:
            logger.exception("Database ping failed")
            return False

    def export_tables(self) -> list[tuple[str, list[str], list[tuple]]]:
        """Return ``(table, columns, rows)`` for every table, parents first."""
        dump: list[tuple[str, list[str], list[tuple]]] = []
        with self.Session() as session:
            for table in Base.metadata.sorted_tables:
                columns = [column.name for column in table.columns]
                rows = [tuple(row) for row in session.execute(table.select()).all()]
                dump.append((table.name, columns, rows))
        return dump

    # ------------------------------------------------------------------
    # Row conversion
    # ------------------------------------------------------------------

    def _to_user_record(self, row: UserRow) -> UserRecord:
        return UserRecord(
            id=row.id,
            username=row.username,
            email=row.email,
            password_hash=row.password_hash,
            stake_username=row.stake_username,
            stake_platform=row.stake_platform,
            verification_status=VerificationStatus(row.verification_status),
            verified_at=row.verified_at,
            security_disclaimer_accepted=bool(row.security_disclaimer_accepted),
            created_at=row.created_at,
            updated_at=row.updated_at,
            deleted_at=row.deleted_at,
        )

    def _to_verification_record(
        self, row: VerificationRequestRow, username: Optional[str] = None
    ) -> VerificationRequestRecord:
        return VerificationRequestRecord(
            id=row.id,
            user_id=row.user_id,
            stake_username=row.stake_username,
            stake_platform=row.stake_platform,
            bet_id=row.bet_id,
            screenshot_path=row.screenshot_path,
            status=VerificationStatus(row.status),
            admin_notes=row.admin_notes,
            created_at=row.created_at,
            processed_at=row.processed_at,
            processed_by=row.processed_by,
            username=username,
        )

    def _to_spin_log_record(self, row: SpinLogRow) -> SpinLogRecord:
        return SpinLogRecord(
            id=row.id,
            created_at=row.created_at,
            stake_id=row.stake_id,
            wagered_amount=row.wagered_amount,
            spin_number=row.spin_number,
            tier=SpinTier(row.tier),
            source=SpinSource(row.source),
            result=SpinResult(row.result),
            prize_label=row.prize_label,
            prize_value=row.prize_value,
            prize_color=row.prize_color,
            is_bonus=bool(row.is_bonus),
        )

    def _to_withdrawal_record(self, row: WithdrawalRequestRow) -> WithdrawalRecord:
        return WithdrawalRecord(
            id=row.id,
            stake_id=row.stake_id,
            amount=row.amount,
            status=WithdrawalStatus(row.status),
            created_at=row.created_at,
            processed_at=row.processed_at,
            admin_notes=row.admin_notes,
        )

    def _to_transaction_record(
        self, row: WalletTransactionRow
    ) -> WalletTransactionRecord:
        return WalletTransactionRecord(
            id=row.id,
            stake_id=row.stake_id,
            type=TransactionType(row.type),
            amount=row.amount,
            tier=row.tier,
            description=row.description,
            created_at=row.created_at,
        )

    def _to_flag_record(self, row: UserFlagRow) -> UserFlagRecord:
        return UserFlagRecord(
            stake_id=row.stake_id,
            is_blacklisted=bool(row.is_blacklisted),
            is_allowlisted=bool(row.is_allowlisted),
            is_disputed=bool(row.is_disputed),
            notes=row.notes,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_override_record(self, row: WagerOverrideRow) -> WagerOverrideRecord:
        return WagerOverrideRecord(
            stake_id=row.stake_id,
            lifetime_wagered=row.lifetime_wagered,
            year_to_date_wagered=row.year_to_date_wagered,
            note=row.note,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_payout_record(self, row: PayoutRow) -> PayoutRecord:
        return PayoutRecord(
            id=row.id,
            stake_id=row.stake_id,
            amount=row.amount,
            prize=row.prize,
            status=PayoutStatus(row.status),
            transaction_hash=row.transaction_hash,
            notes=row.notes,
            created_at=row.created_at,
            processed_at=row.processed_at,
        )

    def _to_export_record(self, row: ExportLogRow) -> ExportLogRecord:
        return ExportLogRecord(
            id=row.id,
            campaign=row.campaign,
            week_label=row.week_label,
            ticket_unit=row.ticket_unit,
            row_count=row.row_count,
            total_tickets=row.total_tickets,
            data_hash=row.data_hash,
            exported_by=row.exported_by,
            created_at=row.created_at,
        )

    def _to_backup_record(self, row: BackupLogRow) -> BackupLogRecord:
        return BackupLogRecord(
            id=row.id,
            filename=row.filename,
            size_bytes=row.size_bytes,
            status=row.status,
            error_message=row.error_message,
            created_at=row.created_at,
        )

    # ------------------------------------------------------------------
    # Ledger helpers (call with the lock held and inside a session)
    # ------------------------------------------------------------------

    def _insert_if_missing(self, session: Session, table: type, values: dict) -> None:
        """Create a keyed row unless it already exists, racing writers included."""
        dialect = self.engine.dialect.name
        if dialect in ("postgresql", "sqlite"):
            insert = postgresql_insert if dialect == "postgresql" else sqlite_insert
            session.execute(insert(table).values(**values).on_conflict_do_nothing())
            return
        try:
            with session.begin_nested():
                session.add(table(**values))
        except IntegrityError:
            logger.debug("Row already created for %s %s", table.__tablename__, values)

    def _locked_wallet(self, session: Session, stake_id: str) -> UserWalletRow:
        stmt = (
            select(UserWalletRow)
            .where(UserWalletRow.stake_id == stake_id)
            .with_for_update()
        )
        wallet = session.execute(stmt).scalar_one_or_none()
        if wallet is None:
            self._insert_if_missing(
                session,
                UserWalletRow,
                {"stake_id": stake_id, "balance": 0, "updated_at": time.time()},
            )
            wallet = session.execute(stmt).scalar_one()
        return wallet

    def _locked_spin_balance(
        self, session: Session, stake_id: str, tier: SpinTier
    ) -> UserSpinBalanceRow:
        stmt = (
            select(UserSpinBalanceRow)
            .where(
                UserSpinBalanceRow.stake_id == stake_id,
                UserSpinBalanceRow.tier == tier.value,
            )
            .with_for_update()
        )
        row = session.execute(stmt).scalar_one_or_none()
        if row is None:
            self._insert_if_missing(
                session,
                UserSpinBalanceRow,
                {"stake_id": stake_id, "tier": tier.value, "balance": 0},
            )
            row = session.execute(stmt).scalar_one()
        return row

    def _pending_total(self, session: Session, stake_id: str) -> int:
        stmt = select(func.coalesce(func.sum(WithdrawalRequestRow.amount), 0)).where(
            WithdrawalRequestRow.stake_id == stake_id,
            WithdrawalRequestRow.status == WithdrawalStatus.PENDING.value,
        )
        return int(session.scalar(stmt) or 0)

    def _spin_balances(self, session: Session, stake_id: str) -> SpinBalances:
        balances = SpinBalances()
        stmt = select(UserSpinBalanceRow).where(UserSpinBalanceRow.stake_id == stake_id)
        for row in session.execute(stmt).scalars():
            if row.tier in _TIER_VALUES:
                setattr(balances, row.tier, row.balance)
        return balances

    def _count_ticket_spins(self, session: Session, stake_id: str) -> int:
        stmt = select(func.count()).select_from(SpinLogRow).where(
            SpinLogRow.stake_id == stake_id,
            SpinLogRow.source == SpinSource.TICKET.value,
        )
        return int(session.scalar(stmt) or 0)

    def _count_spins(self, session: Session, stake_id: str) -> int:
        stmt = select(func.count()).select_from(SpinLogRow).where(
            SpinLogRow.stake_id == stake_id
        )
        return int(session.scalar(stmt) or 0)

    def _add_transaction(
        self,
        session: Session,
        stake_id: str,
        type_: TransactionType,
        amount: int,
        *,
        tier: Optional[SpinTier] = None,
        description: Optional[str] = None,
        now: Optional[float] = None,
    ) -> None:
        session.add(
            WalletTransactionRow(
                stake_id=stake_id,
                type=type_.value,
                amount=amount,
                tier=tier.value if tier else None,
                description=description,
                created_at=now or time.time(),
            )
        )

    def _credit_win(
        self,
        session: Session,
        wallet: UserWalletRow,
        tier: SpinTier,
        label: str,
        value: int,
        description: str,
        now: float,
    ) -> None:
        wallet.balance += value
        wallet.updated_at = now
        self._add_transaction(
            session,
            wallet.stake_id,
            TransactionType.WIN,
            value,
            tier=tier,
            description=f"{description}: {label}",
            now=now,
        )

    # ------------------------------------------------------------------
    # Demo wager data
    # ------------------------------------------------------------------

    def seed_demo_data(self) -> None:
        """Insert the demo wager rows and pinned wins if they are missing."""
        with self._lock, self.Session() as session:
            for stake_id, wagered in DEMO_USERS:
                if session.get(DemoUserRow, stake_id) is None:
                    session.add(
                        DemoUserRow(
                            stake_id=stake_id,
                            wagered_amount=wagered,
                            period_label=DEMO_PERIOD_LABEL,
                        )
                    )
            for stake_id, spin_number in DEMO_GUARANTEED_WINS:
                stmt = select(GuaranteedWinRow).where(
                    GuaranteedWinRow.stake_id == stake_id,
                    GuaranteedWinRow.spin_number == spin_number,
                )
                if session.execute(stmt).scalar_one_or_none() is None:
                    session.add(GuaranteedWinRow(stake_id=stake_id, spin_number=spin_number))
            session.commit()

    def list_demo_wagers(self) -> list[WagerRow]:
        with self.Session() as session:
            rows = session.execute(
                select(DemoUserRow).order_by(DemoUserRow.stake_id)
            ).scalars()
            return [
                WagerRow(
                    stake_id=row.stake_id,
                    wagered_amount=row.wagered_amount,
                    period_label=row.period_label,
                )
                for row in rows
            ]

    # ------------------------------------------------------------------
    # Spins
    # ------------------------------------------------------------------

    def count_ticket_spins(self, stake_id: str) -> int:
        with self.Session() as session:
            return self._count_ticket_spins(session, stake_id)

    def get_spin_balances(self, stake_id: str) -> SpinBalances:
        with self.Session() as session:
            return self._spin_balances(session, stake_id)

    def perform_spin(
        self,
        stake_id: str,
        tier: SpinTier,
        *,
        wagered_amount: float,
        tickets_total: int,
        drawn_prize: Prize,
        guaranteed_prize: Prize,
        ip_hash: Optional[str] = None,
    ) -> SpinOutcome:
        """
        Consume one spin and record its result.

        A spin balance for the tier is used first; otherwise a bronze spin
        is paid with a free ticket. A ticket spin whose number has a pinned
        guaranteed win gets ``guaranteed_prize`` instead of ``drawn_prize``.
        """
        now = time.time()
        with self._lock, self.Session() as session:
            wallet = self._locked_wallet(session, stake_id)
            balance_row = self._locked_spin_balance(session, stake_id, tier)
            tickets_used = self._count_ticket_spins(session, stake_id)

            if balance_row.balance > 0:
                source = SpinSource.BALANCE
                balance_row.balance -= 1
                spin_number = self._count_spins(session, stake_id) + 1
                tickets_used_after = tickets_used
            elif (
                tier == SpinTier.BRONZE
                and tickets_remaining(tickets_total, tickets_used) > 0
            ):
                source = SpinSource.TICKET
                spin_number = tickets_used + 1
                tickets_used_after = tickets_used + 1
            elif tier == SpinTier.BRONZE:
                raise NoSpinsAvailable("No tickets remaining.")
            else:
                raise NoSpinsAvailable(
                    f"No {tier.value} spins available. Purchase or convert spins first."
                )

            prize = drawn_prize
            if source == SpinSource.TICKET:
                stmt = select(GuaranteedWinRow.id).where(
                    GuaranteedWinRow.stake_id == stake_id,
                    GuaranteedWinRow.spin_number == spin_number,
                )
                if session.execute(stmt).first() is not None:
                    prize = guaranteed_prize

            result = SpinResult.WIN if prize.is_win else SpinResult.LOSE
            session.add(
                SpinLogRow(
                    created_at=now,
                    stake_id=stake_id,
                    wagered_amount=wagered_amount,
                    spin_number=spin_number,
                    tier=tier.value,
                    source=source.value,
                    result=result.value,
                    prize_label=prize.label,
                    prize_value=prize.value,
                    prize_color=prize.color,
                    is_bonus=False,
                    ip_hash=ip_hash,
                )
            )
            if prize.is_win:
                self._credit_win(
                    session,
                    wallet,
                    tier,
                    prize.label,
                    prize.value,
                    f"Won {tier.value} spin",
                    now,
                )
            session.commit()
            return SpinOutcome(
                stake_id=stake_id,
                tier=tier,
                source=source,
                spin_number=spin_number,
                tickets_used_before=tickets_used,
                tickets_used_after=tickets_used_after,
                result=result,
                prize_label=prize.label,
                prize_value=prize.value,
                prize_color=prize.color,
                wallet_balance=wallet.balance,
                spin_balances=self._spin_balances(session, stake_id),
            )

    def get_last_bonus_spin_at(self, stake_id: str) -> Optional[float]:
        with self.Session() as session:
            state = session.get(UserStateRow, stake_id)
            return state.last_bonus_spin_at if state else None

    def perform_bonus_spin(
        self,
        stake_id: str,
        *,
        wagered_amount: float,
        prize: Prize,
        cooldown_seconds: float,
        ip_hash: Optional[str] = None,
        now: Optional[float] = None,
    ) -> SpinOutcome:
        """Record the daily bonus spin, once per cooldown window."""
        now = now if now is not None else time.time()
        tier = SpinTier.BRONZE
        with self._lock, self.Session() as session:
            wallet = self._locked_wallet(session, stake_id)
            state = session.execute(
                select(UserStateRow)
                .where(UserStateRow.stake_id == stake_id)
                .with_for_update()
            ).scalar_one_or_none()
            if state is None:
                state = UserStateRow(stake_id=stake_id, created_at=now, updated_at=now)
                session.add(state)
            elif state.last_bonus_spin_at is not None:
                next_bonus_at = state.last_bonus_spin_at + cooldown_seconds
                if now < next_bonus_at:
                    raise BonusUnavailable(
                        next_bonus_at=next_bonus_at,
                        retry_after=math.ceil(next_bonus_at - now),
                    )
            state.last_bonus_spin_at = now
            state.updated_at = now

            tickets_used = self._count_ticket_spins(session, stake_id)
            spin_number = self._count_spins(session, stake_id) + 1
            label = bonus_label(prize)
            result = SpinResult.WIN if prize.is_win else SpinResult.LOSE
            session.add(
                SpinLogRow(
                    created_at=now,
                    stake_id=stake_id,
                    wagered_amount=wagered_amount,
                    spin_number=spin_number,
                    tier=tier.value,
                    source=SpinSource.BONUS.value,
                    result=result.value,
                    prize_label=label,
                    prize_value=prize.value,
                    prize_color=prize.color,
                    is_bonus=True,
                    ip_hash=ip_hash,
                )
            )
            if prize.is_win:
                self._credit_win(
                    session,
                    wallet,
                    tier,
                    label,
                    prize.value,
                    "Won daily bonus spin",
                    now,
                )
            session.commit()
            return SpinOutcome(
                stake_id=stake_id,
                tier=tier,
                source=SpinSource.BONUS,
                spin_number=spin_number,
                tickets_used_before=tickets_used,
                tickets_used_after=tickets_used,
                result=result,
                prize_label=label,
                prize_value=prize.value,
                prize_color=prize.color,
                wallet_balance=wallet.balance,
                spin_balances=self._spin_balances(session, stake_id),
            )

    def list_spin_logs(
        self, limit: int = 100, stake_id: Optional[str] = None
    ) -> list[SpinLogRecord]:
        with self.Session() as session:
            stmt = select(SpinLogRow)
            if stake_id:
                stmt = stmt.where(SpinLogRow.stake_id == stake_id)
            stmt = stmt.order_by(SpinLogRow.created_at.desc(), SpinLogRow.id.desc()).limit(limit)
            return [self._to_spin_log_record(row) for row in session.execute(stmt).scalars()]

    def spin_totals(self) -> tuple[int, int]:
        """Return ``(total spins, winning spins)``."""
        with self.Session() as session:
            total = session.scalar(select(func.count()).select_from(SpinLogRow)) or 0
            wins = session.scalar(
                select(func.count())
                .select_from(SpinLogRow)
                .where(SpinLogRow.result == SpinResult.WIN.value)
            ) or 0
            return int(total), int(wins)

    def add_guaranteed_win(self, stake_id: str, spin_number: int) -> bool:
        """Pin a win; returns False when the pair was already pinned."""
        with self._lock, self.Session() as session:
            stmt = select(GuaranteedWinRow).where(
                GuaranteedWinRow.stake_id == stake_id,
                GuaranteedWinRow.spin_number == spin_number,
            )
            if session.execute(stmt).scalar_one_or_none() is not None:
                return False
            session.add(GuaranteedWinRow(stake_id=stake_id, spin_number=spin_number))
            session.commit()
            return True

    def list_guaranteed_wins(self, stake_id: str) -> list[int]:
        with self.Session() as session:
            stmt = (
                select(GuaranteedWinRow.spin_number)
                .where(GuaranteedWinRow.stake_id == stake_id)
                .order_by(GuaranteedWinRow.spin_number)
            )
            return list(session.execute(stmt).scalars())

    def grant_spins(self, stake_id: str, tier: SpinTier, quantity: int) -> SpinBalances:
        if quantity <= 0:
            raise ValueError("quantity must be positive")
        with self._lock, self.Session() as session:
            row = self._locked_spin_balance(session, stake_id, tier)
            row.balance += quantity
            session.commit()
            return self._spin_balances(session, stake_id)

    def convert_spins(
        self,
        stake_id: str,
        from_tier: SpinTier,
        to_tier: SpinTier,
        *,
        quantity: int,
        rate: int,
    ) -> SpinBalances:
        required = quantity * rate
        with self._lock, self.Session() as session:
            source = self._locked_spin_balance(session, stake_id, from_tier)
            if source.balance < required:
                raise InvalidConversion(
                    f"Need {required} {from_tier.value} spins to convert, "
                    f"have {source.balance}."
                )
            target = self._locked_spin_balance(session, stake_id, to_tier)
            source.balance -= required
            target.balance += quantity
            session.commit()
            return self._spin_balances(session, stake_id)

    def purchase_spins(
        self, stake_id: str, tier: SpinTier, *, quantity: int, unit_cost: int
    ) -> tuple[WalletSnapshot, SpinBalances]:
        """Buy spins out of the available (unheld) wallet balance."""
        total_cost = unit_cost * quantity
        now = time.time()
        with self._lock, self.Session() as session:
            wallet = self._locked_wallet(session, stake_id)
            pending = self._pending_total(session, stake_id)
            available = wallet.balance - pending
            if total_cost > available:
                raise InsufficientFunds(
                    f"Insufficient balance. Need ${total_cost}, available ${available}.",
                    available,
                )
            wallet.balance -= total_cost
            wallet.updated_at = now
            row = self._locked_spin_balance(session, stake_id, tier)
            row.balance += quantity
            self._add_transaction(
                session,
                stake_id,
                TransactionType.PURCHASE,
                -total_cost,
                tier=tier,
                description=f"Purchased {quantity} {tier.value} spin(s)",
                now=now,
            )
            session.commit()
            return (
                WalletSnapshot(stake_id, wallet.balance, pending),
                self._spin_balances(session, stake_id),
            )

    # ------------------------------------------------------------------
    # Wallet and withdrawals
    # ------------------------------------------------------------------

    def get_wallet(self, stake_id: str) -> WalletSnapshot:
        with self.Session() as session:
            wallet = session.get(UserWalletRow, stake_id)
            balance = wallet.balance if wallet else 0
            return WalletSnapshot(stake_id, balance, self._pending_total(session, stake_id))

    def create_withdrawal(
        self, stake_id: str, amount: int
    ) -> tuple[WithdrawalRecord, WalletSnapshot]:
        """Place a hold on ``amount`` of the available balance."""
        if amount <= 0:
            raise ValueError("amount must be positive")
        now = time.time()
        with self._lock, self.Session() as session:
            wallet = self._locked_wallet(session, stake_id)
            pending = self._pending_total(session, stake_id)
            available = wallet.balance - pending
            if amount > available:
                raise InsufficientFunds(
                    f"Insufficient balance. Available: ${available}", available
                )
            row = WithdrawalRequestRow(
                stake_id=stake_id,
                amount=amount,
                status=WithdrawalStatus.PENDING.value,
                created_at=now,
            )
            session.add(row)
            session.commit()
            return (
                self._to_withdrawal_record(row),
                WalletSnapshot(stake_id, wallet.balance, pending + amount),
            )

    def process_withdrawal(
        self,
        request_id: int,
        status: WithdrawalStatus,
        admin_notes: Optional[str] = None,
    ) -> WithdrawalRecord:
        if status == WithdrawalStatus.PENDING:
            raise ValueError("withdrawals can only move to approved or rejected")
        now = time.time()
        with self._lock, self.Session() as session:
            row = session.get(WithdrawalRequestRow, request_id)
            if row is None:
                raise NotFound("Withdrawal request not found")
            if row.status != WithdrawalStatus.PENDING.value:
                raise AlreadyProcessed("Withdrawal request already processed")
            wallet = self._locked_wallet(session, row.stake_id)
            changed = session.execute(
                update(WithdrawalRequestRow)
                .where(
                    WithdrawalRequestRow.id == request_id,
                    WithdrawalRequestRow.status == WithdrawalStatus.PENDING.value,
                )
                .values(status=status.value, processed_at=now, admin_notes=admin_notes)
            ).rowcount
            if not changed:
                session.rollback()
                raise AlreadyProcessed("Withdrawal request already processed")
            if status == WithdrawalStatus.APPROVED:
                wallet.balance -= row.amount
                wallet.updated_at = now
                self._add_transaction(
                    session,
                    row.stake_id,
                    TransactionType.WITHDRAWAL,
                    -row.amount,
                    description=f"Withdrawal #{row.id} approved",
                    now=now,
                )
            session.commit()
            session.refresh(row)
            return self._to_withdrawal_record(row)

    def list_withdrawals(
        self,
        status: Optional[WithdrawalStatus] = None,
        stake_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[WithdrawalRecord]:
        with self.Session() as session:
            stmt = select(WithdrawalRequestRow)
            if status:
                stmt = stmt.where(WithdrawalRequestRow.status == status.value)
            if stake_id:
                stmt = stmt.where(WithdrawalRequestRow.stake_id == stake_id)
            stmt = stmt.order_by(
                WithdrawalRequestRow.created_at.desc(), WithdrawalRequestRow.id.desc()
            ).limit(limit)
            return [self._to_withdrawal_record(row) for row in session.execute(stmt).scalars()]

    def list_transactions(
        self, stake_id: str, limit: int = 50
    ) -> list[WalletTransactionRecord]:
        with self.Session() as session:
            stmt = (
                select(WalletTransactionRow)
                .where(WalletTransactionRow.stake_id == stake_id)
                .order_by(
                    WalletTransactionRow.created_at.desc(),
                    WalletTransactionRow.id.desc(),
                )
                .limit(limit)
            )
            return [self._to_transaction_record(row) for row in session.execute(stmt).scalars()]

    # ------------------------------------------------------------------
    # Flags and wager overrides
    # ------------------------------------------------------------------

    def get_flags(self, stake_id: str) -> Optional[UserFlagRecord]:
        with self.Session() as session:
            row = session.get(UserFlagRow, stake_id)
            return self._to_flag_record(row) if row else None

    def list_flags(self) -> list[UserFlagRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(UserFlagRow).order_by(UserFlagRow.updated_at.desc())
            ).scalars()
            return [self._to_flag_record(row) for row in rows]

    def upsert_flags(
        self,
        stake_id: str,
        *,
        is_blacklisted: Optional[bool] = None,
        is_allowlisted: Optional[bool] = None,
        is_disputed: Optional[bool] = None,
        notes: Optional[str] = None,
    ) -> UserFlagRecord:
        now = time.time()
        with self._lock, self.Session() as session:
            row = session.get(UserFlagRow, stake_id)
            if row is None:
                row = UserFlagRow(
                    stake_id=stake_id,
                    is_blacklisted=False,
                    is_allowlisted=False,
                    is_disputed=False,
                    created_at=now,
                    updated_at=now,
                )
                session.add(row)
            if is_blacklisted is not None:
                row.is_blacklisted = is_blacklisted
            if is_allowlisted is not None:
                row.is_allowlisted = is_allowlisted
            if is_disputed is not None:
                row.is_disputed = is_disputed
            if notes is not None:
                row.notes = notes
            row.updated_at = now
            session.commit()
            return self._to_flag_record(row)

    def get_wager_override(self, stake_id: str) -> Optional[WagerOverrideRecord]:
        with self.Session() as session:
            row = session.get(WagerOverrideRow, stake_id)
            return self._to_override_record(row) if row else None

    def list_wager_overrides(self) -> list[WagerOverrideRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(WagerOverrideRow).order_by(WagerOverrideRow.stake_id)
            ).scalars()
            return [self._to_override_record(row) for row in rows]

    def upsert_wager_override(
        self,
        stake_id: str,
        lifetime_wagered: float,
        year_to_date_wagered: Optional[float] = None,
        note: Optional[str] = None,
    ) -> WagerOverrideRecord:
        now = time.time()
        with self._lock, self.Session() as session:
            row = session.get(WagerOverrideRow, stake_id)
            if row is None:
                row = WagerOverrideRow(stake_id=stake_id, created_at=now)
                session.add(row)
            row.lifetime_wagered = lifetime_wagered
            row.year_to_date_wagered = year_to_date_wagered
            row.note = note
            row.updated_at = now
            session.commit()
            return self._to_override_record(row)

    def delete_wager_override(self, stake_id: str) -> bool:
        with self._lock, self.Session() as session:
            deleted = session.execute(
                delete(WagerOverrideRow).where(WagerOverrideRow.stake_id == stake_id)
            ).rowcount
            session.commit()
            return bool(deleted)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_user(
        self, username: str, email: Optional[str], password_hash: str
    ) -> UserRecord:
        now = time.time()
        username = username.strip().lower()
        with self._lock, self.Session() as session:
            existing = session.execute(
                select(UserRow.id).where(func.lower(UserRow.username) == username)
            ).first()
            if existing is not None:
                raise Conflict("Username already taken")
            row = UserRow(
                id=uuid.uuid4().hex,
                username=username,
                email=email.strip().lower() if email else None,
                password_hash=password_hash,
                verification_status=VerificationStatus.UNVERIFIED.value,
                security_disclaimer_accepted=False,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            return self._to_user_record(row)

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            if row is None or row.deleted_at is not None:
                return None
            return self._to_user_record(row)

    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        with self.Session() as session:
            stmt = select(UserRow).where(
                func.lower(UserRow.username) == username.strip().lower(),
                UserRow.deleted_at.is_(None),
            )
            row = session.execute(stmt).scalar_one_or_none()
            return self._to_user_record(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        with self.Session() as session:
            stmt = (
                select(UserRow)
                .where(
                    UserRow.email == email.strip().lower(),
                    UserRow.deleted_at.is_(None),
                )
                .limit(1)
            )
            row = session.execute(stmt).scalar_one_or_none()
            return self._to_user_record(row) if row else None

    def list_users(self) -> list[UserRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(UserRow)
                .where(UserRow.deleted_at.is_(None))
                .order_by(UserRow.created_at.desc())
            ).scalars()
            return [self._to_user_record(row) for row in rows]

    def soft_delete_user(self, user_id: str) -> bool:
        now = time.time()
        with self._lock, self.Session() as session:
            row = session.get(UserRow, user_id)
            if row is None or row.deleted_at is not None:
                return False
            row.deleted_at = now
            row.updated_at = now
            session.execute(delete(UserSessionRow).where(UserSessionRow.user_id == user_id))
            session.commit()
            return True

    def update_user_password(self, user_id: str, password_hash: str) -> None:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            if row is None:
                raise NotFound("User not found")
            row.password_hash = password_hash
            row.updated_at = time.time()
            # A password change signs the user out everywhere.
            session.execute(delete(UserSessionRow).where(UserSessionRow.user_id == user_id))
            session.commit()

    def accept_disclaimer(self, user_id: str) -> UserRecord:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            if row is None:
                raise NotFound("User not found")
            row.security_disclaimer_accepted = True
            row.updated_at = time.time()
            session.commit()
            return self._to_user_record(row)

    def create_user_session(
        self, user_id: str, token_hash: str, expires_at: float
    ) -> None:
        with self.Session() as session:
            session.add(
                UserSessionRow(
                    token_hash=token_hash,
                    user_id=user_id,
                    created_at=time.time(),
                    expires_at=expires_at,
                )
            )
            session.commit()

    def get_session_user(
        self, token_hash: str, now: Optional[float] = None
    ) -> Optional[UserRecord]:
        now = now if now is not None else time.time()
        with self.Session() as session:
            row = session.get(UserSessionRow, token_hash)
            if row is None or row.expires_at <= now:
                return None
            user = session.get(UserRow, row.user_id)
            if user is None or user.deleted_at is not None:
                return None
            return self._to_user_record(user)

    def delete_user_session(self, token_hash: str) -> None:
        with self.Session() as session:
            session.execute(delete(UserSessionRow).where(UserSessionRow.token_hash == token_hash))
            session.commit()

    def create_password_reset(
        self, user_id: str, token_hash: str, expires_at: float
    ) -> None:
        with self.Session() as session:
            session.add(
                PasswordResetRow(
                    token_hash=token_hash,
                    user_id=user_id,
                    created_at=time.time(),
                    expires_at=expires_at,
                )
            )
            session.commit()

    def consume_password_reset(
        self, token_hash: str, now: Optional[float] = None
    ) -> Optional[str]:
        """Mark a reset token used; returns its user id, or None if unusable."""
        now = now if now is not None else time.time()
        with self._lock, self.Session() as session:
            row = session.get(PasswordResetRow, token_hash)
            if row is None:
                return None
            changed = session.execute(
                update(PasswordResetRow)
                .where(
                    PasswordResetRow.token_hash == token_hash,
                    PasswordResetRow.used_at.is_(None),
                    PasswordResetRow.expires_at > now,
                )
                .values(used_at=now)
            ).rowcount
            session.commit()
            return row.user_id if changed else None

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def get_pending_verification(
        self, user_id: str
    ) -> Optional[VerificationRequestRecord]:
        with self.Session() as session:
            stmt = (
                select(VerificationRequestRow)
                .where(
                    VerificationRequestRow.user_id == user_id,
                    VerificationRequestRow.status == VerificationStatus.PENDING.value,
                )
                .order_by(VerificationRequestRow.created_at.desc())
                .limit(1)
            )
            row = session.execute(stmt).scalar_one_or_none()
            return self._to_verification_record(row) if row else None

    def create_verification_request(
        self,
        user_id: str,
        stake_username: str,
        stake_platform: str,
        bet_id: Optional[str] = None,
        screenshot_path: Optional[str] = None,
    ) -> VerificationRequestRecord:
        now = time.time()
        with self._lock, self.Session() as session:
            user = session.get(UserRow, user_id)
            if user is None or user.deleted_at is not None:
                raise NotFound("User not found")
            if user.verification_status == VerificationStatus.VERIFIED.value:
                raise Conflict("Account is already verified")
            pending = session.execute(
                select(VerificationRequestRow.id).where(
                    VerificationRequestRow.user_id == user_id,
                    VerificationRequestRow.status == VerificationStatus.PENDING.value,
                )
            ).first()
            if pending is not None:
                raise Conflict("A verification request is already pending")
            row = VerificationRequestRow(
                user_id=user_id,
                stake_username=stake_username,
                stake_platform=stake_platform,
                bet_id=bet_id,
                screenshot_path=screenshot_path,
                status=VerificationStatus.PENDING.value,
                created_at=now,
            )
            session.add(row)
            user.verification_status = VerificationStatus.PENDING.value
            user.updated_at = now
            session.commit()
            return self._to_verification_record(row, user.username)

    def list_verification_requests(
        self, status: Optional[VerificationStatus] = None, limit: int = 100
    ) -> list[VerificationRequestRecord]:
        with self.Session() as session:
            stmt = select(VerificationRequestRow, UserRow.username).join(
                UserRow, UserRow.id == VerificationRequestRow.user_id, isouter=True
            )
            if status:
                stmt = stmt.where(VerificationRequestRow.status == status.value)
            stmt = stmt.order_by(VerificationRequestRow.created_at.desc()).limit(limit)
            return [
                self._to_verification_record(row, username)
                for row, username in session.execute(stmt).all()
            ]

    def process_verification(
        self,
        request_id: int,
        status: VerificationStatus,
        admin_notes: Optional[str] = None,
        processed_by: str = "admin",
    ) -> tuple[VerificationRequestRecord, Optional[UserRecord]]:
        if status not in (VerificationStatus.VERIFIED, VerificationStatus.REJECTED):
            raise ValueError("verification can only move to verified or rejected")
        now = time.time()
        with self._lock, self.Session() as session:
            row = session.get(VerificationRequestRow, request_id)
            if row is None:
                raise NotFound("Verification request not found")
            if row.status != VerificationStatus.PENDING.value:
                raise AlreadyProcessed("Verification request already processed")
            row.status = status.value
            row.admin_notes = admin_notes
            row.processed_at = now
            row.processed_by = processed_by
            user = session.get(UserRow, row.user_id)
            if user is not None:
                user.verification_status = status.value
                user.updated_at = now
                if status == VerificationStatus.VERIFIED:
                    user.stake_username = row.stake_username
                    user.stake_platform = row.stake_platform
                    user.verified_at = now
            session.commit()
            return (
                self._to_verification_record(row, user.username if user else None),
                self._to_user_record(user) if user else None,
            )

    # ------------------------------------------------------------------
    # Payouts and raffle exports
    # ------------------------------------------------------------------

    def create_payout(
        self,
        stake_id: str,
        amount: int,
        prize: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> PayoutRecord:
        with self.Session() as session:
            row = PayoutRow(
                stake_id=stake_id,
                amount=amount,
                prize=prize,
                status=PayoutStatus.PENDING.value,
                notes=notes,
                created_at=time.time(),
            )
            session.add(row)
            session.commit()
            return self._to_payout_record(row)

    def list_payouts(self, limit: int = 100) -> list[PayoutRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(PayoutRow).order_by(PayoutRow.created_at.desc()).limit(limit)
            ).scalars()
            return [self._to_payout_record(row) for row in rows]

    def update_payout_status(
        self,
        payout_id: int,
        status: PayoutStatus,
        transaction_hash: Optional[str] = None,
    ) -> PayoutRecord:
        with self.Session() as session:
            row = session.get(PayoutRow, payout_id)
            if row is None:
                raise NotFound("Payout not found")
            row.status = status.value
            if transaction_hash is not None:
                row.transaction_hash = transaction_hash
            row.processed_at = time.time()
            session.commit()
            return self._to_payout_record(row)

    def record_export(
        self,
        *,
        campaign: str,
        week_label: str,
        ticket_unit: int,
        row_count: int,
        total_tickets: int,
        data_hash: Optional[str],
        exported_by: str = "admin",
    ) -> ExportLogRecord:
        with self.Session() as session:
            row = ExportLogRow(
                campaign=campaign,
                week_label=week_label,
                ticket_unit=ticket_unit,
                row_count=row_count,
                total_tickets=total_tickets,
                data_hash=data_hash,
                exported_by=exported_by,
                created_at=time.time(),
            )
            session.add(row)
            session.commit()
            return self._to_export_record(row)

    def list_exports(self, limit: int = 50) -> list[ExportLogRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(ExportLogRow).order_by(ExportLogRow.created_at.desc()).limit(limit)
            ).scalars()
            return [self._to_export_record(row) for row in rows]

    # ------------------------------------------------------------------
    # Feature toggles
    # ------------------------------------------------------------------

    def get_toggle_values(self) -> dict[str, str]:
        with self.Session() as session:
            rows = session.execute(select(FeatureToggleRow)).scalars()
            return {row.key: row.value for row in rows}

    def list_toggles(self) -> list[FeatureToggleRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(FeatureToggleRow).order_by(FeatureToggleRow.key)
            ).scalars()
            return [
                FeatureToggleRecord(row.key, row.value, row.description, row.updated_at)
                for row in rows
            ]

    def set_toggle(
        self, key: str, value: str, description: Optional[str] = None
    ) -> FeatureToggleRecord:
        now = time.time()
        with self.Session() as session:
            row = session.get(FeatureToggleRow, key)
            if row is None:
                row = FeatureToggleRow(key=key)
                session.add(row)
            row.value = value
            if description is not None:
                row.description = description
            row.updated_at = now
            session.commit()
            return FeatureToggleRecord(row.key, row.value, row.description, row.updated_at)

    # ------------------------------------------------------------------
    # Admin sessions and activity
    # ------------------------------------------------------------------

    def create_admin_session(
        self, token_hash: str, ip_hash: Optional[str], expires_at: float
    ) -> None:
        now = time.time()
        with self.Session() as session:
            session.add(
                AdminSessionRow(
                    token_hash=token_hash,
                    ip_hash=ip_hash,
                    created_at=now,
                    last_activity_at=now,
                    expires_at=expires_at,
                )
            )
            session.commit()

    def touch_admin_session(
        self, token_hash: str, idle_seconds: float, now: Optional[float] = None
    ) -> Optional[float]:
        """
        Refresh an admin session's activity time.

        Returns the session's creation time, or None (and drops the row) when
        the session is unknown, idle too long or past its absolute expiry.
        """
        now = now if now is not None else time.time()
        with self.Session() as session:
            row = session.get(AdminSessionRow, token_hash)
            if row is None:
                return None
            if now >= row.expires_at or now - row.last_activity_at > idle_seconds:
                session.delete(row)
                session.commit()
                return None
            row.last_activity_at = now
            session.commit()
            return row.created_at

    def delete_admin_session(self, token_hash: str) -> None:
        with self.Session() as session:
            session.execute(delete(AdminSessionRow).where(AdminSessionRow.token_hash == token_hash))
            session.commit()

    def log_admin_activity(
        self,
        action: str,
        *,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        ip_hash: Optional[str] = None,
    ) -> None:
        with self.Session() as session:
            session.add(
                AdminActivityLogRow(
                    action=action,
                    target_type=target_type,
                    target_id=target_id,
                    details=details,
                    ip_hash=ip_hash,
                    created_at=time.time(),
                )
            )
            session.commit()

    def list_admin_activity(
        self, limit: int = 50, offset: int = 0
    ) -> tuple[list[AdminActivityRecord], int]:
        with self.Session() as session:
            total = session.scalar(select(func.count()).select_from(AdminActivityLogRow)) or 0
            rows = session.execute(
                select(AdminActivityLogRow)
                .order_by(AdminActivityLogRow.created_at.desc(), AdminActivityLogRow.id.desc())
                .limit(limit)
                .offset(offset)
            ).scalars()
            records = [
                AdminActivityRecord(
                    id=row.id,
                    action=row.action,
                    target_type=row.target_type,
                    target_id=row.target_id,
                    details=row.details,
                    ip_hash=row.ip_hash,
                    created_at=row.created_at,
                )
                for row in rows
            ]
            return records, int(total)

    # ------------------------------------------------------------------
    # Rate limit logs, backups and maintenance
    # ------------------------------------------------------------------

    def log_rate_limit(
        self, ip_hash: str, action: str, stake_id: Optional[str] = None
    ) -> None:
        with self.Session() as session:
            session.add(
                RateLimitLogRow(
                    ip_hash=ip_hash,
                    stake_id=stake_id,
                    action=action,
                    created_at=time.time(),
                )
            )
            session.commit()

    def list_rate_limit_logs(self, limit: int = 100) -> list[RateLimitLogRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(RateLimitLogRow)
                .order_by(RateLimitLogRow.created_at.desc(), RateLimitLogRow.id.desc())
                .limit(limit)
            ).scalars()
            return [
                RateLimitLogRecord(
                    id=row.id,
                    ip_hash=row.ip_hash,
                    stake_id=row.stake_id,
                    action=row.action,
                    created_at=row.created_at,
                )
                for row in rows
            ]

    def record_backup(
        self,
        filename: str,
        status: str,
        size_bytes: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> BackupLogRecord:
        with self.Session() as session:
            row = BackupLogRow(
                filename=filename,
                size_bytes=size_bytes,
                status=status,
                error_message=error_message,
                created_at=time.time(),
            )
            session.add(row)
            session.commit()
            return self._to_backup_record(row)

    def list_backup_logs(self, limit: int = 20) -> list[BackupLogRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(BackupLogRow)
                .order_by(BackupLogRow.created_at.desc(), BackupLogRow.id.desc())
                .limit(limit)
            ).scalars()
            return [self._to_backup_record(row) for row in rows]

    def last_successful_backup(self) -> Optional[BackupLogRecord]:
        with self.Session() as session:
            row = session.execute(
                select(BackupLogRow)
                .where(BackupLogRow.status == "success")
                .order_by(BackupLogRow.created_at.desc(), BackupLogRow.id.desc())
                .limit(1)
            ).scalar_one_or_none()
            return self._to_backup_record(row) if row else None

    def delete_backup_logs_before(self, cutoff: float) -> int:
        with self.Session() as session:
            deleted = session.execute(
                delete(BackupLogRow).where(BackupLogRow.created_at < cutoff)
            ).rowcount
            session.commit()
            return int(deleted or 0)

    def purge_expired(
        self,
        *,
        admin_idle_seconds: float,
        rate_limit_retention_seconds: float,
        now: Optional[float] = None,
    ) -> dict[str, int]:
        """Delete dead sessions, spent reset tokens and old rate-limit logs."""
        now = now if now is not None else time.time()
        with self.Session() as session:
            counts = {
                "admin_sessions": session.execute(
                    delete(AdminSessionRow).where(
                        (AdminSessionRow.expires_at <= now)
                        | (AdminSessionRow.last_activity_at < now - admin_idle_seconds)
                    )
                ).rowcount,
                "user_sessions": session.execute(
                    delete(UserSessionRow).where(UserSessionRow.expires_at <= now)
                ).rowcount,
                "password_resets": session.execute(
                    delete(PasswordResetRow).where(
                        PasswordResetRow.used_at.is_not(None)
                        | (PasswordResetRow.expires_at <= now)
                    )
                ).rowcount,
                "rate_limit_logs": session.execute(
                    delete(RateLimitLogRow).where(
                        RateLimitLogRow.created_at < now - rate_limit_retention_seconds
                    )
                ).rowcount,
            }
            session.commit()
        return {key: int(value or 0) for key, value in counts.items()}
