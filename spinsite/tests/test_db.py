import tempfile
import threading
import time
import unittest

from spincore.types import (
    Prize,
    SpinResult,
    SpinSource,
    SpinTier,
    TransactionType,
    VerificationStatus,
    WithdrawalStatus,
)
from spinsite.db import DbClient
from spinsite.errors import (
    AlreadyProcessed,
    BonusUnavailable,
    Conflict,
    InsufficientFunds,
    InvalidConversion,
    NoSpinsAvailable,
    NotFound,
)
from spinsite.tables import UserSpinBalanceRow, UserWalletRow

LOSE = Prize(label="$0", value=0, color="grey", probability=98.0)
ONE = Prize(label="$1", value=1, color="lightblue", probability=1.5)
FIFTY = Prize(label="$50", value=50, color="red", probability=0.1)


class LedgerTests(unittest.TestCase):
    def setUp(self):
        self.db = DbClient()

    def _spin(self, stake_id="punter", tier=SpinTier.BRONZE, tickets=10, prize=LOSE):
        return self.db.perform_spin(
            stake_id,
            tier,
            wagered_amount=tickets * 1000,
            tickets_total=tickets,
            drawn_prize=prize,
            guaranteed_prize=ONE,
        )

    def test_ticket_spins_are_numbered_and_capped(self):
        first = self._spin(tickets=2)
        second = self._spin(tickets=2)
        self.assertEqual((first.spin_number, second.spin_number), (1, 2))
        self.assertEqual(second.tickets_used_after, 2)
        with self.assertRaises(NoSpinsAvailable):
            self._spin(tickets=2)
        self.assertEqual(self.db.count_ticket_spins("punter"), 2)

    def test_wallet_created_by_another_writer_is_reused(self):
        self._spin(prize=FIFTY)
        with self.db.Session() as session:
            self.db._insert_if_missing(
                session,
                UserWalletRow,
                {"stake_id": "punter", "balance": 0, "updated_at": 0.0},
            )
            self.db._insert_if_missing(
                session,
                UserSpinBalanceRow,
                {"stake_id": "punter", "tier": "bronze", "balance": 0},
            )
            self.assertEqual(self.db._locked_wallet(session, "punter").balance, 50)
            session.commit()
        self.assertEqual(self.db.get_wallet("punter").balance, 50)

        self.db.grant_spins("fresh", SpinTier.SILVER, 2)
        self.assertEqual(self.db.get_spin_balances("fresh").silver, 2)

    def test_balance_spins_are_used_before_tickets(self):
        self.db.grant_spins("punter", SpinTier.BRONZE, 1)
        outcome = self._spin()
        self.assertEqual(outcome.source, SpinSource.BALANCE)
        self.assertEqual(outcome.tickets_used_after, 0)
        self.assertEqual(outcome.spin_balances.bronze, 0)
        self.assertEqual(self._spin().source, SpinSource.TICKET)

    def test_guaranteed_win_only_for_ticket_spins(self):
        self.assertTrue(self.db.add_guaranteed_win("punter", 1))
        self.assertFalse(self.db.add_guaranteed_win("punter", 1))
        self.db.grant_spins("punter", SpinTier.BRONZE, 1)

        balance_spin = self._spin()
        self.assertEqual(balance_spin.result, SpinResult.LOSE)

        ticket_spin = self._spin()
        self.assertEqual(ticket_spin.spin_number, 1)
        self.assertEqual(ticket_spin.result, SpinResult.WIN)
        self.assertEqual(ticket_spin.prize_value, 1)

    def test_win_credits_wallet_with_transaction(self):
        outcome = self._spin(prize=FIFTY)
        self.assertEqual(outcome.wallet_balance, 50)
        transactions = self.db.list_transactions("punter")
        self.assertEqual(len(transactions), 1)
        self.assertEqual(transactions[0].type, TransactionType.WIN)
        self.assertEqual(transactions[0].description, "Won bronze spin: $50")

    def test_silver_without_balance(self):
        with self.assertRaises(NoSpinsAvailable) as ctx:
            self._spin(tier=SpinTier.SILVER)
        self.assertIn("No silver spins available", ctx.exception.message)

    def test_bonus_spin_cooldown(self):
        now = 1_700_000_000.0
        outcome = self.db.perform_bonus_spin(
            "punter", wagered_amount=0, prize=FIFTY, cooldown_seconds=86400, now=now
        )
        self.assertEqual(outcome.prize_label, "[BONUS] $50")
        self.assertEqual(outcome.wallet_balance, 50)
        self.assertEqual(self.db.get_last_bonus_spin_at("punter"), now)

        with self.assertRaises(BonusUnavailable) as ctx:
            self.db.perform_bonus_spin(
                "punter", wagered_amount=0, prize=LOSE, cooldown_seconds=86400, now=now + 3600
            )
        self.assertEqual(ctx.exception.next_bonus_at, now + 86400)
        self.assertEqual(ctx.exception.retry_after, 82800)

        again = self.db.perform_bonus_spin(
            "punter", wagered_amount=0, prize=LOSE, cooldown_seconds=86400, now=now + 86400
        )
        self.assertEqual(again.spin_number, 2)
        self.assertTrue(self.db.list_spin_logs(stake_id="punter")[0].is_bonus)

    def test_convert_spins(self):
        self.db.grant_spins("punter", SpinTier.SILVER, 11)
        balances = self.db.convert_spins(
            "punter", SpinTier.SILVER, SpinTier.GOLD, quantity=2, rate=5
        )
        self.assertEqual((balances.silver, balances.gold), (1, 2))
        with self.assertRaises(InvalidConversion):
            self.db.convert_spins("punter", SpinTier.SILVER, SpinTier.GOLD, quantity=1, rate=5)

    def test_purchase_respects_holds(self):
        self._spin(prize=FIFTY)
        self.db.create_withdrawal("punter", 30)
        with self.assertRaises(InsufficientFunds) as ctx:
            self.db.purchase_spins("punter", SpinTier.SILVER, quantity=1, unit_cost=25)
        self.assertEqual(ctx.exception.available, 20)

        wallet, balances = self.db.purchase_spins(
            "punter", SpinTier.BRONZE, quantity=4, unit_cost=5
        )
        self.assertEqual((wallet.balance, wallet.available), (30, 0))
        self.assertEqual(balances.bronze, 4)
        self.assertEqual(self.db.list_transactions("punter")[0].amount, -20)


class WithdrawalTests(unittest.TestCase):
    def setUp(self):
        self.db = DbClient()
        self.db.perform_spin(
            "punter",
            SpinTier.BRONZE,
            wagered_amount=1000,
            tickets_total=1,
            drawn_prize=FIFTY,
            guaranteed_prize=ONE,
        )

    def test_hold_and_approve(self):
        request, wallet = self.db.create_withdrawal("punter", 40)
        self.assertEqual(request.status, WithdrawalStatus.PENDING)
        self.assertEqual((wallet.balance, wallet.pending_withdrawals, wallet.available), (50, 40, 10))
        with self.assertRaises(InsufficientFunds):
            self.db.create_withdrawal("punter", 11)

        approved = self.db.process_withdrawal(request.id, WithdrawalStatus.APPROVED, "paid")
        self.assertEqual(approved.status, WithdrawalStatus.APPROVED)
        self.assertEqual(approved.admin_notes, "paid")
        wallet = self.db.get_wallet("punter")
        self.assertEqual((wallet.balance, wallet.pending_withdrawals), (10, 0))
        self.assertEqual(self.db.list_transactions("punter")[0].description, f"Withdrawal #{request.id} approved")

        with self.assertRaises(AlreadyProcessed):
            self.db.process_withdrawal(request.id, WithdrawalStatus.REJECTED)

    def test_reject_releases_hold(self):
        request, _ = self.db.create_withdrawal("punter", 50)
        self.db.process_withdrawal(request.id, WithdrawalStatus.REJECTED)
        wallet = self.db.get_wallet("punter")
        self.assertEqual((wallet.balance, wallet.available), (50, 50))
        self.assertEqual(len(self.db.list_withdrawals(status=WithdrawalStatus.REJECTED)), 1)

    def test_unknown_and_invalid(self):
        with self.assertRaises(NotFound):
            self.db.process_withdrawal(404, WithdrawalStatus.APPROVED)
        with self.assertRaises(ValueError):
            self.db.create_withdrawal("punter", 0)

    def test_concurrent_withdrawals_never_overdraw(self):
        successes = []
        failures = []

        def attempt():
            try:
                self.db.create_withdrawal("punter", 10)
                successes.append(1)
            except InsufficientFunds:
                failures.append(1)

        threads = [threading.Thread(target=attempt) for _ in range(12)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(len(successes), 5)
        self.assertEqual(len(failures), 7)
        self.assertEqual(self.db.get_wallet("punter").available, 0)


class AccountTests(unittest.TestCase):
    def setUp(self):
        self.db = DbClient()

    def test_usernames_are_case_insensitive(self):
        user = self.db.create_user("Punter", "P@Example.com", "hash")
        self.assertEqual(user.username, "punter")
        self.assertEqual(user.email, "p@example.com")
        with self.assertRaises(Conflict):
            self.db.create_user("PUNTER", None, "hash")
        self.assertEqual(self.db.get_user_by_username("pUnTeR").id, user.id)

    def test_sessions_expire_and_die_with_password_change(self):
        user = self.db.create_user("punter", None, "hash")
        self.db.create_user_session(user.id, "live", time.time() + 60)
        self.db.create_user_session(user.id, "stale", time.time() - 1)
        self.assertEqual(self.db.get_session_user("live").id, user.id)
        self.assertIsNone(self.db.get_session_user("stale"))

        self.db.update_user_password(user.id, "new-hash")
        self.assertIsNone(self.db.get_session_user("live"))
        self.assertEqual(self.db.get_user(user.id).password_hash, "new-hash")

    def test_password_reset_tokens_are_single_use(self):
        user = self.db.create_user("punter", None, "hash")
        self.db.create_password_reset(user.id, "token", time.time() + 60)
        self.db.create_password_reset(user.id, "expired", time.time() - 60)
        self.assertEqual(self.db.consume_password_reset("token"), user.id)
        self.assertIsNone(self.db.consume_password_reset("token"))
        self.assertIsNone(self.db.consume_password_reset("expired"))
        self.assertIsNone(self.db.consume_password_reset("missing"))

    def test_soft_delete(self):
        user = self.db.create_user("punter", None, "hash")
        self.db.create_user_session(user.id, "live", time.time() + 60)
        self.assertTrue(self.db.soft_delete_user(user.id))
        self.assertIsNone(self.db.get_user(user.id))
        self.assertIsNone(self.db.get_session_user("live"))
        self.assertFalse(self.db.soft_delete_user(user.id))

    def test_verification_lifecycle(self):
        user = self.db.create_user("punter", None, "hash")
        request = self.db.create_verification_request(user.id, "stakename", "us", bet_id="b1")
        self.assertEqual(self.db.get_user(user.id).verification_status, VerificationStatus.PENDING)
        with self.assertRaises(Conflict):
            self.db.create_verification_request(user.id, "stakename", "us")

        record, updated = self.db.process_verification(
            request.id, VerificationStatus.VERIFIED, processed_by="admin"
        )
        self.assertEqual(record.status, VerificationStatus.VERIFIED)
        self.assertEqual(updated.stake_username, "stakename")
        self.assertIsNotNone(updated.verified_at)
        with self.assertRaises(AlreadyProcessed):
            self.db.process_verification(request.id, VerificationStatus.REJECTED)
        with self.assertRaises(Conflict):
            self.db.create_verification_request(user.id, "stakename", "us")


class AdminStoreTests(unittest.TestCase):
    def setUp(self):
        self.db = DbClient()

    def test_admin_session_idle_and_absolute_expiry(self):
        now = time.time()
        self.db.create_admin_session("tok", "iphash", now + 3600)
        self.assertIsNotNone(self.db.touch_admin_session("tok", idle_seconds=600, now=now + 300))
        self.assertIsNone(self.db.touch_admin_session("tok", idle_seconds=600, now=now + 1000))
        self.assertIsNone(self.db.touch_admin_session("tok", idle_seconds=600, now=now + 1001))

        self.db.create_admin_session("tok2", "iphash", now + 100)
        self.assertIsNone(self.db.touch_admin_session("tok2", idle_seconds=600, now=now + 100))

    def test_flags_upsert_keeps_unset_fields(self):
        self.db.upsert_flags("punter", is_blacklisted=True, notes="chargeback")
        record = self.db.upsert_flags("punter", is_disputed=True)
        self.assertTrue(record.is_blacklisted)
        self.assertTrue(record.is_disputed)
        self.assertEqual(record.notes, "chargeback")
        self.assertEqual(len(self.db.list_flags()), 1)

    def test_toggles(self):
        self.db.set_toggle("spins_enabled", "false", "Ticket spins")
        self.db.set_toggle("spins_enabled", "true")
        self.assertEqual(self.db.get_toggle_values(), {"spins_enabled": "true"})
        self.assertEqual(self.db.list_toggles()[0].description, "Ticket spins")

    def test_purge_expired(self):
        now = time.time()
        self.db.create_admin_session("old", None, now - 1)
        self.db.create_admin_session("fresh", None, now + 3600)
        self.db.log_rate_limit("iphash", "spin_ip")
        user = self.db.create_user("punter", None, "hash")
        self.db.create_user_session(user.id, "gone", now - 1)
        self.db.create_password_reset(user.id, "spent", now + 60)
        self.db.consume_password_reset("spent")

        counts = self.db.purge_expired(
            admin_idle_seconds=1800, rate_limit_retention_seconds=3600, now=now + 7200
        )
        self.assertEqual(
            counts,
            {"admin_sessions": 2, "user_sessions": 1, "password_resets": 1, "rate_limit_logs": 1},
        )

    def test_export_tables_lists_every_table(self):
        self.db.seed_demo_data()
        dump = {name: (columns, rows) for name, columns, rows in self.db.export_tables()}
        self.assertIn("spin_logs", dump)
        columns, rows = dump["demo_users"]
        self.assertIn("stake_id", columns)
        self.assertEqual(len(rows), 3)


class FileDatabaseTests(unittest.TestCase):
    """
    Uses a file-backed SQLite URL instead of the shared in-memory connection.
    """

    def test_state_survives_a_new_client(self):
        with tempfile.TemporaryDirectory() as tmp:
            url = f"sqlite+pysqlite:///{tmp}/spins.db"
            first = DbClient(url)
            first.grant_spins("punter", SpinTier.GOLD, 2)
            first.engine.dispose()

            second = DbClient(url)
            self.assertEqual(second.get_spin_balances("punter").gold, 2)
            second.engine.dispose()


if __name__ == "__main__":
    unittest.main()
