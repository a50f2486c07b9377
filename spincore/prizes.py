# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

"""Prize tables and the weighted prize draw."""

from typing import Protocol, Sequence

from spincore.types import Prize, SpinTier, TierConfig

PROBABILITY_TOTAL = 100.0
PROBABILITY_TOLERANCE = 0.01

PRIZE_COLORS = ("grey", "lightblue", "green", "red", "gold")


class RandomSource(Protocol):
    def random(self) -> float:
        ...


CASE_PRIZES: tuple[Prize, ...] = (
    Prize(label="$0", value=0, color="grey", probability=98.0),
    Prize(label="$1", value=1, color="lightblue", probability=1.5),
    Prize(label="$5", value=5, color="green", probability=0.4),
    Prize(label="$25", value=25, color="red", probability=0.09),
    Prize(label="$100", value=100, color="gold", probability=0.01),
)

SILVER_PRIZES: tuple[Prize, ...] = (
    Prize(label="$0", value=0, color="grey", probability=97.0),
    Prize(label="$5", value=5, color="lightblue", probability=2.0),
    Prize(label="$25", value=25, color="green", probability=0.8),
    Prize(label="$100", value=100, color="red", probability=0.18),
    Prize(label="$250", value=250, color="gold", probability=0.02),
)

GOLD_PRIZES: tuple[Prize, ...] = (
    Prize(label="$0", value=0, color="grey", probability=96.0),
    Prize(label="$25", value=25, color="lightblue", probability=2.5),
    Prize(label="$100", value=100, color="green", probability=1.2),
    Prize(label="$250", value=250, color="red", probability=0.25),
    Prize(label="$1000", value=1000, color="gold", probability=0.05),
)

# $100k wagered = 100 bronze = 50 silver = 10 gold.
TIER_CONFIG: dict[SpinTier, TierConfig] = {
    SpinTier.BRONZE: TierConfig(tier=SpinTier.BRONZE, cost=5, prizes=CASE_PRIZES),
    SpinTier.SILVER: TierConfig(tier=SpinTier.SILVER, cost=25, prizes=SILVER_PRIZES),
    SpinTier.GOLD: TierConfig(tier=SpinTier.GOLD, cost=100, prizes=GOLD_PRIZES),
}

# Source tier -> (target tier, source spins needed per target spin).
CONVERSION_RATES: dict[SpinTier, tuple[SpinTier, int]] = {
    SpinTier.BRONZE: (SpinTier.SILVER, 2),
    SpinTier.SILVER: (SpinTier.GOLD, 5),
}


def validate_prize_probabilities(prizes: Sequence[Prize]) -> bool:
    if not prizes:
        return False
    total = sum(prize.probability for prize in prizes)
    return abs(total - PROBABILITY_TOTAL) <= PROBABILITY_TOLERANCE


def select_prize(prizes: Sequence[Prize], rng: RandomSource) -> Prize:
    """
    Weighted draw over a prize table.

    Draws r in [0, 100) and returns the first prize whose cumulative
    probability exceeds r. Rounding in the cumulative sum can leave a draw
    just past the final bucket; the last prize absorbs it.
    """
    if not prizes:
        raise ValueError("prize table is empty")
    roll = rng.random() * PROBABILITY_TOTAL
    cumulative = 0.0
    for prize in prizes:
        cumulative += prize.probability
        if roll < cumulative:
            return prize
    return prizes[-1]


def lowest_winning_prize(prizes: Sequence[Prize]) -> Prize:
    winners = [prize for prize in prizes if prize.is_win]
    if not winners:
        raise ValueError("prize table has no winning entries")
    return min(winners, key=lambda prize: prize.value)


def bonus_label(prize: Prize) -> str:
    return f"[BONUS] {prize.label}"


def tier_config_payload() -> dict:
    return {
        tier.value: {
            "cost": config.cost,
            "prizes": [
                {
                    "label": prize.label,
                    "value": prize.value,
                    "color": prize.color,
                    "probability": prize.probability,
                }
                for prize in config.prizes
            ],
        }
        for tier, config in TIER_CONFIG.items()
    }


def validate_tier_config() -> None:
    for tier, config in TIER_CONFIG.items():
        if not validate_prize_probabilities(config.prizes):
            raise ValueError(f"{tier.value} prize probabilities must sum to 100")
