"""
Player-facing spin and wallet operations.

``SpinService`` resolves who a Stake ID is (wager feed, admin overrides,
flags, toggles) and hands the money-moving part to the database client,
which performs it atomically.
"""

from __future__ import annotations

import csv
import hashlib
import io
import logging
import time
from dataclasses import asdict
from typing import Callable, Optional

from spincore.prizes import (
    CONVERSION_RATES,
    TIER_CONFIG,
    RandomSource,
    lowest_winning_prize,
    select_prize,
)
from spincore.tickets import calculate_tickets, tickets_remaining
from spincore.types import SpinTier, WagerRow
from spinsite import toggles
from spinsite.db import DbClient
from spinsite.errors import (
    AccountSuspended,
    FeatureDisabled,
    InvalidConversion,
    NotFound,
)
from spinsite.records import SpinOutcome, UserFlagRecord
from spinsite.sheets import WagerSource

logger = logging.getLogger(__name__)

TRANSACTION_HISTORY_LIMIT = 50


def render_raffle_csv(rows: list[tuple[str, float, int]]) -> tuple[str, str]:
    """CSV body plus a sha256 over its data rows, so an export can be re-verified."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(["stake_id", "wagered_amount", "tickets"])
    for stake_id, wagered, tickets in rows:
        writer.writerow([stake_id, f"{wagered:.2f}", tickets])
    data_hash = hashlib.sha256(
        "\n".join(f"{s},{w:.2f},{t}" for s, w, t in rows).encode("utf-8")
    ).hexdigest()
    return buffer.getvalue(), data_hash


class SpinService:
    def __init__(
        self,
        db: DbClient,
        wager_source: WagerSource,
        rng: RandomSource,
        *,
        ticket_unit: int = 1000,
        bonus_cooldown_seconds: float = 24 * 3600,
        clock: Callable[[], float] = time.time,
    ):
        self.db = db
        self.wager_source = wager_source
        self.rng = rng
        self.ticket_unit = ticket_unit
        self.bonus_cooldown_seconds = bonus_cooldown_seconds
        self.clock = clock

    @property
    def mode(self) -> str:
        return self.wager_source.mode

    # -- guards ---------------------------------------------------------

    def require_enabled(self, key: str, message: str) -> None:
        if not toggles.is_enabled(self.db.get_toggle_values(), key):
            raise FeatureDisabled(message)

    def flags(self, stake_id: str) -> Optional[UserFlagRecord]:
        return self.db.get_flags(stake_id)

    def require_not_blacklisted(self, stake_id: str) -> None:
        flags = self.db.get_flags(stake_id)
        if flags and flags.is_blacklisted:
            logger.warning("Blocked request from blacklisted stake_id=%s", stake_id)
            raise AccountSuspended()

    def resolve_wager(self, stake_id: str) -> WagerRow:
        """Wager row for a Stake ID, with any admin override applied."""
        row = self.wager_source.get(stake_id)
        override = self.db.get_wager_override(stake_id)
        if override is not None:
            return WagerRow(
                stake_id=row.stake_id if row else stake_id,
                wagered_amount=override.lifetime_wagered,
                period_label=row.period_label if row else "Override",
            )
        if row is None:
            if self.mode == "demo":
                raise NotFound("Stake ID not found. Try 'ergys', 'demo', or 'luke'.")
            raise NotFound("Stake ID not found in wager sheet.")
        return row

    # -- reads ----------------------------------------------------------

    def bonus_status(self, stake_id: str) -> dict:
        last = self.db.get_last_bonus_spin_at(stake_id)
        now = self.clock()
        if last is None or now >= last + self.bonus_cooldown_seconds:
            return {"available": True, "remaining_ms": 0, "next_bonus_at": None}
        next_bonus_at = last + self.bonus_cooldown_seconds
        return {
            "available": False,
            "remaining_ms": int((next_bonus_at - now) * 1000),
            "next_bonus_at": next_bonus_at,
        }

    def lookup(self, stake_id: str) -> dict:
        wager = self.resolve_wager(stake_id)
        override = self.db.get_wager_override(stake_id)
        tickets_total = calculate_tickets(wager.wagered_amount, self.ticket_unit)
        tickets_used = self.db.count_ticket_spins(stake_id)
        wallet = self.db.get_wallet(stake_id)
        bonus = self.bonus_status(stake_id)
        return {
            "stake_id": wager.stake_id,
            "period_label": wager.period_label,
            "wagered_amount": wager.wagered_amount,
            "lifetime_wagered": override.lifetime_wagered if override else None,
            "tickets_total": tickets_total,
            "tickets_used": tickets_used,
            "tickets_remaining": tickets_remaining(tickets_total, tickets_used),
            "wallet_balance": wallet.balance,
            "available_balance": wallet.available,
            "pending_withdrawals": wallet.pending_withdrawals,
            "spin_balances": asdict(self.db.get_spin_balances(stake_id)),
            "can_daily_bonus": bonus["available"],
            "next_bonus_at": bonus["next_bonus_at"],
        }

    def transactions(self, stake_id: str) -> list:
        return self.db.list_transactions(stake_id, limit=TRANSACTION_HISTORY_LIMIT)

    def raffle_rows(self, ticket_unit: Optional[int] = None) -> list[tuple[str, float, int]]:
        """``(stake_id, wagered, tickets)`` for every Stake ID holding a ticket."""
        unit = ticket_unit or self.ticket_unit
        overrides = {o.stake_id: o for o in self.db.list_wager_overrides()}
        rows: dict[str, float] = {}
        for row in self.wager_source.all_rows():
            rows[row.stake_id.lower()] = row.wagered_amount
        for stake_id, override in overrides.items():
            rows[stake_id] = override.lifetime_wagered
        result = []
        for stake_id in sorted(rows):
            tickets = calculate_tickets(rows[stake_id], unit)
            if tickets >= 1:
                result.append((stake_id, rows[stake_id], tickets))
        return result

    # -- writes ---------------------------------------------------------

    def _spin_payload(self, wager: WagerRow, tickets_total: int, outcome: SpinOutcome) -> dict:
        return {
            "stake_id": wager.stake_id,
            "wagered_amount": wager.wagered_amount,
            "tickets_total": tickets_total,
            "tickets_used_before": outcome.tickets_used_before,
            "tickets_used_after": outcome.tickets_used_after,
            "tickets_remaining_after": tickets_remaining(
                tickets_total, outcome.tickets_used_after
            ),
            "result": outcome.result.value,
            "prize_label": outcome.prize_label,
            "prize_value": outcome.prize_value,
            "prize_color": outcome.prize_color,
            "tier": outcome.tier.value,
            "source": outcome.source.value,
            "wallet_balance": outcome.wallet_balance,
            "spin_balances": asdict(outcome.spin_balances),
        }

    def spin(self, stake_id: str, tier: SpinTier, ip_hash: Optional[str] = None) -> dict:
        self.require_enabled(toggles.SPINS_ENABLED, "Spins are temporarily disabled.")
        wager = self.resolve_wager(stake_id)
        self.require_not_blacklisted(stake_id)
        tickets_total = calculate_tickets(wager.wagered_amount, self.ticket_unit)
        prizes = TIER_CONFIG[tier].prizes
        outcome = self.db.perform_spin(
            stake_id,
            tier,
            wagered_amount=wager.wagered_amount,
            tickets_total=tickets_total,
            drawn_prize=select_prize(prizes, self.rng),
            guaranteed_prize=lowest_winning_prize(prizes),
            ip_hash=ip_hash,
        )
        logger.info(
            "Spin stake_id=%s tier=%s source=%s result=%s prize=%s",
            stake_id,
            tier.value,
            outcome.source.value,
            outcome.result.value,
            outcome.prize_label,
        )
        return self._spin_payload(wager, tickets_total, outcome)

    def bonus_spin(self, stake_id: str, ip_hash: Optional[str] = None) -> dict:
        self.require_enabled(
            toggles.BONUS_SPINS_ENABLED, "Bonus spins are temporarily disabled."
        )
        wager = self.resolve_wager(stake_id)
        self.require_not_blacklisted(stake_id)
        tickets_total = calculate_tickets(wager.wagered_amount, self.ticket_unit)
        outcome = self.db.perform_bonus_spin(
            stake_id,
            wagered_amount=wager.wagered_amount,
            prize=select_prize(TIER_CONFIG[SpinTier.BRONZE].prizes, self.rng),
            cooldown_seconds=self.bonus_cooldown_seconds,
            ip_hash=ip_hash,
            now=self.clock(),
        )
        payload = self._spin_payload(wager, tickets_total, outcome)
        payload["next_bonus_at"] = self.clock() + self.bonus_cooldown_seconds
        return payload

    def convert(
        self, stake_id: str, from_tier: SpinTier, to_tier: SpinTier, quantity: int
    ) -> dict:
        self.require_not_blacklisted(stake_id)
        path = CONVERSION_RATES.get(from_tier)
        if path is None or path[0] != to_tier:
            raise InvalidConversion(
                "Invalid conversion. Bronze converts to silver and silver converts to gold."
            )
        if quantity <= 0:
            raise InvalidConversion("Quantity must be at least 1.")
        rate = path[1]
        balances = self.db.convert_spins(
            stake_id, from_tier, to_tier, quantity=quantity, rate=rate
        )
        return {
            "success": True,
            "converted": quantity,
            "spent": quantity * rate,
            "from_tier": from_tier.value,
            "to_tier": to_tier.value,
            "spin_balances": asdict(balances),
        }

    def purchase(self, stake_id: str, tier: SpinTier, quantity: int) -> dict:
        self.require_enabled(
            toggles.PURCHASES_ENABLED, "Spin purchases are temporarily disabled."
        )
        self.require_not_blacklisted(stake_id)
        unit_cost = TIER_CONFIG[tier].cost
        wallet, balances = self.db.purchase_spins(
            stake_id, tier, quantity=quantity, unit_cost=unit_cost
        )
        return {
            "success": True,
            "tier": tier.value,
            "quantity": quantity,
            "total_cost": unit_cost * quantity,
            "wallet_balance": wallet.balance,
            "available_balance": wallet.available,
            "spin_balances": asdict(balances),
        }

    def withdraw(self, stake_id: str, amount: int) -> dict:
        self.require_enabled(
            toggles.WITHDRAWALS_ENABLED, "Withdrawals are temporarily disabled."
        )
        self.require_not_blacklisted(stake_id)
        request, wallet = self.db.create_withdrawal(stake_id, amount)
        logger.info(
            "Withdrawal requested id=%s stake_id=%s amount=%s", request.id, stake_id, amount
        )
        return {
            "success": True,
            "request_id": request.id,
            "amount": request.amount,
            "wallet_balance": wallet.balance,
            "pending_withdrawals": wallet.pending_withdrawals,
        }
