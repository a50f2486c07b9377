import unittest

from spincore.prizes import (
    CASE_PRIZES,
    GOLD_PRIZES,
    SILVER_PRIZES,
    TIER_CONFIG,
    bonus_label,
    lowest_winning_prize,
    select_prize,
    tier_config_payload,
    validate_prize_probabilities,
    validate_tier_config,
)
from spincore.types import Prize, SpinTier


class SequenceRandom:
    def __init__(self, *values):
        self.values = list(values)

    def random(self) -> float:
        return self.values.pop(0)


class PrizeTableTests(unittest.TestCase):
    def test_shipped_tables_sum_to_100(self):
        for prizes in (CASE_PRIZES, SILVER_PRIZES, GOLD_PRIZES):
            self.assertTrue(validate_prize_probabilities(prizes))
        validate_tier_config()

    def test_rejects_bad_tables(self):
        self.assertFalse(validate_prize_probabilities([]))
        lopsided = (
            Prize(label="$0", value=0, color="grey", probability=90.0),
            Prize(label="$1", value=1, color="green", probability=5.0),
        )
        self.assertFalse(validate_prize_probabilities(lopsided))

    def test_tier_costs(self):
        self.assertEqual(TIER_CONFIG[SpinTier.BRONZE].cost, 5)
        self.assertEqual(TIER_CONFIG[SpinTier.SILVER].cost, 25)
        self.assertEqual(TIER_CONFIG[SpinTier.GOLD].cost, 100)

    def test_payload_shape(self):
        payload = tier_config_payload()
        self.assertEqual(set(payload), {"bronze", "silver", "gold"})
        self.assertEqual(len(payload["gold"]["prizes"]), 5)
        self.assertEqual(payload["gold"]["prizes"][-1]["label"], "$1000")


class SelectPrizeTests(unittest.TestCase):
    def test_cumulative_buckets(self):
        self.assertEqual(select_prize(CASE_PRIZES, SequenceRandom(0.0)).label, "$0")
        self.assertEqual(select_prize(CASE_PRIZES, SequenceRandom(0.9799)).label, "$0")
        self.assertEqual(select_prize(CASE_PRIZES, SequenceRandom(0.985)).label, "$1")
        self.assertEqual(select_prize(CASE_PRIZES, SequenceRandom(0.997)).label, "$5")
        self.assertEqual(select_prize(CASE_PRIZES, SequenceRandom(0.9995)).label, "$25")
        self.assertEqual(select_prize(CASE_PRIZES, SequenceRandom(0.99995)).label, "$100")

    def test_last_prize_absorbs_rounding(self):
        short = (
            Prize(label="$0", value=0, color="grey", probability=60.0),
            Prize(label="$5", value=5, color="green", probability=39.99),
        )
        self.assertEqual(select_prize(short, SequenceRandom(0.99999)).label, "$5")

    def test_empty_table(self):
        with self.assertRaises(ValueError):
            select_prize((), SequenceRandom(0.5))

    def test_lowest_winning_prize(self):
        self.assertEqual(lowest_winning_prize(CASE_PRIZES).value, 1)
        self.assertEqual(lowest_winning_prize(SILVER_PRIZES).value, 5)
        self.assertEqual(lowest_winning_prize(GOLD_PRIZES).value, 25)
        with self.assertRaises(ValueError):
            lowest_winning_prize((CASE_PRIZES[0],))

    def test_bonus_label(self):
        self.assertEqual(bonus_label(CASE_PRIZES[1]), "[BONUS] $1")


if __name__ == "__main__":
    unittest.main()
