import unittest
from unittest.mock import patch

from spinsite.db import DbClient
from spinsite.errors import WagerSourceUnavailable
from spinsite.sheets import DemoWagerSource, GspreadFetcher, SheetWagerCache, parse_wager_rows

SHEET = [
    ["Affiliate NGR Summary", "", ""],
    ["", "", ""],
    ["User_Name", "Wagered_Monthly", "Wagered_Weekly", "Wagered_Overall"],
    ["Alice", "$12,500.50", "", "99999"],
    ["bob", "", "3,000", ""],
    ["carol", "", "", "750"],
    ["", "100", "", ""],
    ["ALICE", "500", "", ""],
    ["dave", "n/a"],
]


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class ParseWagerRowsTests(unittest.TestCase):
    def test_parses_first_non_empty_wager_column(self):
        rows = parse_wager_rows(SHEET)
        self.assertEqual(set(rows), {"alice", "bob", "carol", "dave"})
        self.assertAlmostEqual(rows["alice"].wagered_amount, 13_000.50)
        self.assertEqual(rows["alice"].stake_id, "Alice")
        self.assertEqual(rows["bob"].wagered_amount, 3000)
        self.assertEqual(rows["carol"].wagered_amount, 750)
        self.assertEqual(rows["dave"].wagered_amount, 0)
        self.assertEqual(rows["bob"].period_label, "Monthly")

    def test_short_or_headerless_sheets(self):
        self.assertEqual(parse_wager_rows([["User_Name"], ["alice"]]), {})
        self.assertEqual(parse_wager_rows([["a"], ["b"], ["c"], ["d"]]), {})
        late_header = [[""]] * 5 + [["User_Name", "Wagered_Monthly"], ["alice", "10"]]
        self.assertEqual(parse_wager_rows(late_header), {})


class SheetWagerCacheTests(unittest.TestCase):
    def test_serves_snapshot_until_ttl(self):
        calls = []

        def fetcher():
            calls.append(1)
            return SHEET

        clock = FakeClock()
        cache = SheetWagerCache(fetcher, ttl_seconds=60, clock=clock)
        self.assertFalse(cache.status()["loaded"])
        self.assertEqual(cache.get(" BOB ").wagered_amount, 3000)
        self.assertIsNone(cache.get("nobody"))
        self.assertEqual(len(calls), 1)

        clock.now += 30
        cache.all_rows()
        self.assertEqual(len(calls), 1)

        clock.now += 31
        cache.get("bob")
        self.assertEqual(len(calls), 2)

        status = cache.status()
        self.assertEqual(status["mode"], "sheets")
        self.assertEqual(status["row_count"], 4)
        self.assertFalse(status["expired"])

    def test_failed_refresh_keeps_previous_snapshot(self):
        responses = [SHEET]

        def fetcher():
            if not responses:
                raise ConnectionError("sheets api down")
            return responses.pop()

        cache = SheetWagerCache(fetcher, ttl_seconds=60, clock=FakeClock())
        self.assertEqual(cache.refresh(), 4)
        with self.assertRaises(WagerSourceUnavailable):
            cache.refresh()
        self.assertEqual(cache.get("alice").stake_id, "Alice")
        self.assertEqual(cache.status()["row_count"], 4)

    @patch("spinsite.sheets.gspread.service_account")
    def test_gspread_fetcher(self, mock_service_account):
        worksheet = mock_service_account.return_value.open_by_key.return_value.worksheet.return_value
        worksheet.get_all_values.return_value = SHEET

        fetcher = GspreadFetcher("sheet-id", "Affiliate NGR Summary", "/etc/sa.json")
        self.assertEqual(fetcher(), SHEET)
        mock_service_account.assert_called_once_with(filename="/etc/sa.json")
        mock_service_account.return_value.open_by_key.assert_called_once_with("sheet-id")
        mock_service_account.return_value.open_by_key.return_value.worksheet.assert_called_once_with(
            "Affiliate NGR Summary"
        )


class DemoWagerSourceTests(unittest.TestCase):
    def test_reads_seeded_rows(self):
        db = DbClient()
        db.seed_demo_data()
        db.seed_demo_data()
        source = DemoWagerSource(db)
        self.assertEqual(source.get("ERGYS").wagered_amount, 1_000_000)
        self.assertEqual(len(source.all_rows()), 3)
        self.assertEqual(source.status()["mode"], "demo")


if __name__ == "__main__":
    unittest.main()
