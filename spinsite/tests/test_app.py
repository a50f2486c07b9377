import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient

from spincore.types import Prize, SpinTier
from spinsite.app import create_app
from spinsite.config import Settings, get_settings
from spinsite.db import DbClient
from spinsite.dependencies import (
    get_db_client,
    get_random,
    get_rate_limiter,
    get_wager_source,
)
from spinsite.ratelimit import InMemoryRateLimitStore, RateLimiter
from spinsite.sheets import DemoWagerSource, SheetWagerCache

TWENTY_FIVE = Prize(label="$25", value=25, color="red", probability=0.09)


class FixedRandom:
    def __init__(self, value: float = 0.0):
        self.value = value

    def random(self) -> float:
        return self.value


class SpinApiTests(unittest.TestCase):
    def setUp(self):
        self.db = DbClient()
        self.db.seed_demo_data()
        self.rng = FixedRandom(0.0)
        self.settings = Settings(_env_file=None)
        self.app = create_app()
        self.app.dependency_overrides[get_db_client] = lambda: self.db
        self.app.dependency_overrides[get_wager_source] = lambda: DemoWagerSource(self.db)
        self.app.dependency_overrides[get_random] = lambda: self.rng
        self.app.dependency_overrides[get_rate_limiter] = lambda: RateLimiter(
            InMemoryRateLimitStore()
        )
        self.app.dependency_overrides[get_settings] = lambda: self.settings
        self.client = TestClient(self.app)

    def _credit(self, stake_id: str, prize: Prize = TWENTY_FIVE):
        """Put winnings in a wallet by recording a won ticket spin."""
        self.db.perform_spin(
            stake_id,
            SpinTier.BRONZE,
            wagered_amount=1000,
            tickets_total=1000,
            drawn_prize=prize,
            guaranteed_prize=prize,
        )

    def test_health(self):
        response = self.client.get("/api/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok", "database": "connected"})
        self.assertEqual(response.headers["X-Content-Type-Options"], "nosniff")
        self.assertIn("X-Request-ID", response.headers)

    def test_config_lists_tiers_and_features(self):
        payload = self.client.get("/api/config").json()
        self.assertEqual(payload["mode"], "demo")
        self.assertEqual(payload["tiers"]["bronze"]["cost"], 5)
        self.assertEqual(payload["tiers"]["gold"]["cost"], 100)
        self.assertEqual(payload["conversion_rates"]["bronze"], {"to": "silver", "rate": 2})
        self.assertTrue(payload["features"]["spins_enabled"])

    def test_lookup_demo_user(self):
        response = self.client.post("/api/lookup", json={"stake_id": "Luke"})
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["stake_id"], "luke")
        self.assertEqual(payload["tickets_total"], 20)
        self.assertEqual(payload["tickets_used"], 0)
        self.assertEqual(payload["tickets_remaining"], 20)
        self.assertEqual(payload["wallet_balance"], 0)
        self.assertTrue(payload["can_daily_bonus"])
        self.assertEqual(payload["spin_balances"], {"bronze": 0, "silver": 0, "gold": 0})

    def test_lookup_unknown_and_invalid_ids(self):
        response = self.client.post("/api/lookup", json={"stake_id": "nobody"})
        self.assertEqual(response.status_code, 404)
        self.assertIn("Try 'ergys'", response.json()["detail"])

        response = self.client.post("/api/lookup", json={"stake_id": "a"})
        self.assertEqual(response.status_code, 422)

        response = self.client.post("/api/lookup", json={"stake_id": "bad-id!"})
        self.assertEqual(response.status_code, 422)

    def test_lookup_applies_wager_override(self):
        self.db.upsert_wager_override("demo", 50_000)
        payload = self.client.post("/api/lookup", json={"stake_id": "demo"}).json()
        self.assertEqual(payload["tickets_total"], 50)
        self.assertEqual(payload["lifetime_wagered"], 50_000)

    def test_ticket_spin_consumes_ticket(self):
        response = self.client.post("/api/spin", json={"stake_id": "luke"})
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["result"], "LOSE")
        self.assertEqual(payload["source"], "ticket")
        self.assertEqual(payload["tickets_used_before"], 0)
        self.assertEqual(payload["tickets_used_after"], 1)
        self.assertEqual(payload["tickets_remaining_after"], 19)

        logs = self.db.list_spin_logs(stake_id="luke")
        self.assertEqual(len(logs), 1)
        self.assertEqual(logs[0].spin_number, 1)

    def test_winning_spin_credits_wallet(self):
        self.rng.value = 0.9995
        payload = self.client.post("/api/spin", json={"stake_id": "luke"}).json()
        self.assertEqual(payload["result"], "WIN")
        self.assertEqual(payload["prize_value"], 25)
        self.assertEqual(payload["wallet_balance"], 25)

        transactions = self.client.get("/api/wallet/luke/transactions").json()
        self.assertEqual(len(transactions["transactions"]), 1)
        self.assertEqual(transactions["transactions"][0]["type"], "win")
        self.assertEqual(transactions["transactions"][0]["amount"], 25)

    def test_guaranteed_win_on_pinned_spin_number(self):
        first = self.client.post("/api/spin", json={"stake_id": "ergys"}).json()
        second = self.client.post("/api/spin", json={"stake_id": "ergys"}).json()
        self.assertEqual(first["result"], "LOSE")
        self.assertEqual(second["result"], "WIN")
        self.assertEqual(second["prize_label"], "$1")
        self.assertEqual(second["wallet_balance"], 1)

    def test_no_tickets_remaining(self):
        for _ in range(5):
            self.assertEqual(
                self.client.post("/api/spin", json={"stake_id": "demo"}).status_code, 200
            )
        response = self.client.post("/api/spin", json={"stake_id": "demo"})
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["detail"], "No tickets remaining.")

    def test_higher_tier_needs_spin_balance(self):
        response = self.client.post("/api/spin", json={"stake_id": "luke", "tier": "silver"})
        self.assertEqual(response.status_code, 403)
        self.assertIn("No silver spins available", response.json()["detail"])

        self.db.grant_spins("luke", SpinTier.SILVER, 1)
        payload = self.client.post(
            "/api/spin", json={"stake_id": "luke", "tier": "silver"}
        ).json()
        self.assertEqual(payload["source"], "balance")
        self.assertEqual(payload["tier"], "silver")
        self.assertEqual(payload["spin_balances"]["silver"], 0)
        self.assertEqual(payload["tickets_used_after"], 0)

    def test_blacklisted_stake_id_is_blocked(self):
        self.db.upsert_flags("demo", is_blacklisted=True)
        response = self.client.post("/api/spin", json={"stake_id": "demo"})
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["detail"], "Account suspended. Contact support.")
        self.assertEqual(self.db.count_ticket_spins("demo"), 0)

    def test_spins_toggle_off(self):
        self.db.set_toggle("spins_enabled", "false")
        response = self.client.post("/api/spin", json={"stake_id": "luke"})
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["detail"], "Spins are temporarily disabled.")

    def test_bonus_spin_once_per_cooldown(self):
        check = self.client.post("/api/spin/bonus/check", json={"stake_id": "demo"}).json()
        self.assertTrue(check["available"])

        response = self.client.post("/api/spin/bonus", json={"stake_id": "demo"})
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["source"], "bonus")
        self.assertEqual(payload["prize_label"], "[BONUS] $0")
        self.assertIsNotNone(payload["next_bonus_at"])
        self.assertEqual(payload["tickets_used_after"], 0)

        again = self.client.post("/api/spin/bonus", json={"stake_id": "demo"})
        self.assertEqual(again.status_code, 429)
        self.assertIn("next_bonus_at", again.json())
        self.assertIn("Retry-After", again.headers)

        check = self.client.post("/api/spin/bonus/check", json={"stake_id": "demo"}).json()
        self.assertFalse(check["available"])
        self.assertGreater(check["remaining_ms"], 0)

    def test_convert_spins(self):
        self.db.grant_spins("luke", SpinTier.BRONZE, 4)
        response = self.client.post(
            "/api/spins/convert",
            json={"stake_id": "luke", "from_tier": "bronze", "to_tier": "silver", "quantity": 2},
        )
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["spent"], 4)
        self.assertEqual(payload["spin_balances"], {"bronze": 0, "silver": 2, "gold": 0})

        response = self.client.post(
            "/api/spins/convert",
            json={"stake_id": "luke", "from_tier": "bronze", "to_tier": "silver", "quantity": 1},
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json()["detail"], "Need 2 bronze spins to convert, have 0."
        )

    def test_convert_rejects_unknown_path(self):
        self.db.grant_spins("luke", SpinTier.BRONZE, 10)
        response = self.client.post(
            "/api/spins/convert",
            json={"stake_id": "luke", "from_tier": "bronze", "to_tier": "gold", "quantity": 1},
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.db.get_spin_balances("luke").bronze, 10)

    def test_purchase_and_withdraw_share_available_balance(self):
        self._credit("luke")

        response = self.client.post(
            "/api/wallet/withdraw", json={"stake_id": "luke", "amount": 20}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["pending_withdrawals"], 20)

        response = self.client.post(
            "/api/spins/purchase", json={"stake_id": "luke", "tier": "silver", "quantity": 1}
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["available"], 5)

        response = self.client.post(
            "/api/spins/purchase", json={"stake_id": "luke", "tier": "bronze", "quantity": 1}
        )
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["total_cost"], 5)
        self.assertEqual(payload["wallet_balance"], 20)
        self.assertEqual(payload["available_balance"], 0)
        self.assertEqual(payload["spin_balances"]["bronze"], 1)

        response = self.client.post(
            "/api/wallet/withdraw", json={"stake_id": "luke", "amount": 1}
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"], "Insufficient balance. Available: $0")

    def test_lookup_rate_limit(self):
        self.settings = Settings(_env_file=None, lookup_limit_per_ip_per_hour=2)
        limiter = RateLimiter(InMemoryRateLimitStore())
        self.app.dependency_overrides[get_rate_limiter] = lambda: limiter
        for _ in range(2):
            self.assertEqual(
                self.client.post("/api/lookup", json={"stake_id": "luke"}).status_code, 200
            )
        response = self.client.post("/api/lookup", json={"stake_id": "luke"})
        self.assertEqual(response.status_code, 429)
        self.assertGreaterEqual(response.json()["retry_after"], 1)
        logs = self.db.list_rate_limit_logs()
        self.assertEqual(len(logs), 1)
        self.assertEqual(logs[0].action, "lookup_ip")

    def test_allowlisted_stake_id_skips_per_id_limit(self):
        self.settings = Settings(_env_file=None, rate_limit_per_stake_id_per_hour=1)
        limiter = RateLimiter(InMemoryRateLimitStore())
        self.app.dependency_overrides[get_rate_limiter] = lambda: limiter

        self.assertEqual(self.client.post("/api/spin", json={"stake_id": "luke"}).status_code, 200)
        self.assertEqual(self.client.post("/api/spin", json={"stake_id": "luke"}).status_code, 429)

        self.db.upsert_flags("ergys", is_allowlisted=True)
        for _ in range(3):
            self.assertEqual(
                self.client.post("/api/spin", json={"stake_id": "ergys"}).status_code, 200
            )

    def test_cross_origin_post_is_blocked(self):
        response = self.client.post(
            "/api/lookup",
            json={"stake_id": "luke"},
            headers={"Origin": "https://evil.example"},
        )
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["detail"], "Request blocked for security reasons")

        response = self.client.post(
            "/api/lookup",
            json={"stake_id": "luke"},
            headers={"Origin": "http://testserver"},
        )
        self.assertEqual(response.status_code, 200)

    def test_cross_site_referer_is_blocked_in_production(self):
        production = Settings(_env_file=None, environment="production")
        with patch("spinsite.security.get_settings", return_value=production):
            response = self.client.post(
                "/api/lookup",
                json={"stake_id": "luke"},
                headers={"Referer": "https://evil.example/attack"},
            )
            self.assertEqual(response.status_code, 403)
            self.assertEqual(
                response.json()["detail"], "Request blocked for security reasons"
            )

            response = self.client.post(
                "/api/lookup",
                json={"stake_id": "luke"},
                headers={"Referer": "http://testserver/spin"},
            )
            self.assertEqual(response.status_code, 200)

        response = self.client.post(
            "/api/lookup",
            json={"stake_id": "luke"},
            headers={"Referer": "https://evil.example/attack"},
        )
        self.assertEqual(response.status_code, 200)


class SheetModeApiTests(unittest.TestCase):
    def setUp(self):
        self.db = DbClient()
        rows = [
            ["Affiliate report"],
            ["User_Name", "Wagered_Monthly", "Wagered_Weekly"],
            ["Alice", "$12,500.00", ""],
            ["bob", "", "3,000"],
        ]
        self.source = SheetWagerCache(lambda: rows)
        self.app = create_app()
        self.app.dependency_overrides[get_db_client] = lambda: self.db
        self.app.dependency_overrides[get_wager_source] = lambda: self.source
        self.app.dependency_overrides[get_random] = lambda: FixedRandom(0.0)
        self.app.dependency_overrides[get_rate_limiter] = lambda: RateLimiter(
            InMemoryRateLimitStore()
        )
        self.app.dependency_overrides[get_settings] = lambda: Settings(_env_file=None)
        self.client = TestClient(self.app)

    def test_lookup_reads_sheet(self):
        payload = self.client.post("/api/lookup", json={"stake_id": "alice"}).json()
        self.assertEqual(payload["stake_id"], "Alice")
        self.assertEqual(payload["period_label"], "Monthly")
        self.assertEqual(payload["tickets_total"], 12)

        payload = self.client.post("/api/lookup", json={"stake_id": "bob"}).json()
        self.assertEqual(payload["tickets_total"], 3)

    def test_spin_keeps_sheet_casing(self):
        response = self.client.post("/api/spin", json={"stake_id": "ALICE"})
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["stake_id"], "Alice")
        self.assertEqual(payload["tickets_remaining_after"], 11)
        self.assertEqual(self.db.count_ticket_spins("alice"), 1)

    def test_unknown_stake_id(self):
        response = self.client.post("/api/lookup", json={"stake_id": "carol"})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["detail"], "Stake ID not found in wager sheet.")


if __name__ == "__main__":
    unittest.main()
