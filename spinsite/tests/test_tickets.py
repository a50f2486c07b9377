import unittest

from spincore.tickets import calculate_tickets, normalize_stake_id, tickets_remaining


class TicketTests(unittest.TestCase):
    def test_calculate_tickets(self):
        self.assertEqual(calculate_tickets(0), 0)
        self.assertEqual(calculate_tickets(-50), 0)
        self.assertEqual(calculate_tickets(999.99), 0)
        self.assertEqual(calculate_tickets(1000), 1)
        self.assertEqual(calculate_tickets(2500.5), 2)
        self.assertEqual(calculate_tickets(100_000, unit=5000), 20)
        with self.assertRaises(ValueError):
            calculate_tickets(1000, unit=0)

    def test_tickets_remaining_never_negative(self):
        self.assertEqual(tickets_remaining(5, 2), 3)
        self.assertEqual(tickets_remaining(5, 9), 0)

    def test_normalize_stake_id(self):
        self.assertEqual(normalize_stake_id("  Luke_42 "), "luke_42")
        for bad in ("", "a", "x" * 33, "bad id", "dash-ed"):
            with self.assertRaises(ValueError):
                normalize_stake_id(bad)


if __name__ == "__main__":
    unittest.main()
