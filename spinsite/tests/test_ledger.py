import hashlib
import time
import unittest

from spincore.types import SpinTier
from spinsite.db import DbClient
from spinsite.errors import AccountSuspended, FeatureDisabled, InvalidConversion, NotFound
from spinsite.ledger import SpinService, render_raffle_csv
from spinsite.sheets import DemoWagerSource


class ZeroRandom:
    def random(self) -> float:
        return 0.0


class SpinServiceTests(unittest.TestCase):
    def setUp(self):
        self.db = DbClient()
        self.db.seed_demo_data()
        self.now = time.time()
        self.service = SpinService(
            self.db,
            DemoWagerSource(self.db),
            ZeroRandom(),
            ticket_unit=1000,
            bonus_cooldown_seconds=3600,
            clock=lambda: self.now,
        )

    def test_lookup_and_override(self):
        self.assertEqual(self.service.lookup("demo")["tickets_total"], 5)
        self.db.upsert_wager_override("newcomer", 3000)
        payload = self.service.lookup("newcomer")
        self.assertEqual(payload["tickets_total"], 3)
        self.assertEqual(payload["period_label"], "Override")
        with self.assertRaises(NotFound):
            self.service.lookup("stranger")

    def test_guards(self):
        self.db.upsert_flags("demo", is_blacklisted=True)
        with self.assertRaises(AccountSuspended):
            self.service.withdraw("demo", 1)
        self.db.set_toggle("purchases_enabled", "off")
        with self.assertRaises(FeatureDisabled):
            self.service.purchase("luke", SpinTier.BRONZE, 1)
        with self.assertRaises(InvalidConversion):
            self.service.convert("luke", SpinTier.GOLD, SpinTier.SILVER, 1)

    def test_bonus_status_follows_clock(self):
        self.service.bonus_spin("luke")
        status = self.service.bonus_status("luke")
        self.assertFalse(status["available"])
        self.assertAlmostEqual(status["remaining_ms"], 3_600_000, delta=1)
        self.now += 3600
        self.assertTrue(self.service.bonus_status("luke")["available"])

    def test_raffle_rows_and_csv(self):
        self.db.upsert_wager_override("demo", 999)
        rows = self.service.raffle_rows()
        self.assertEqual([row[0] for row in rows], ["ergys", "luke"])

        content, data_hash = render_raffle_csv(rows)
        self.assertEqual(
            content,
            "stake_id,wagered_amount,tickets\nergys,1000000.00,1000\nluke,20000.00,20\n",
        )
        expected = hashlib.sha256(
            b"ergys,1000000.00,1000\nluke,20000.00,20"
        ).hexdigest()
        self.assertEqual(data_hash, expected)


if __name__ == "__main__":
    unittest.main()
