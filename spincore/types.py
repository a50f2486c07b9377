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

from dataclasses import dataclass
from enum import StrEnum
from typing import Optional


class SpinTier(StrEnum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"


class SpinResult(StrEnum):
    WIN = "WIN"
    LOSE = "LOSE"


class SpinSource(StrEnum):
    """Where the spin was paid from."""

    TICKET = "ticket"
    BALANCE = "balance"
    BONUS = "bonus"


class WithdrawalStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class VerificationStatus(StrEnum):
    UNVERIFIED = "unverified"
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class PayoutStatus(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class TransactionType(StrEnum):
    WIN = "win"
    PURCHASE = "purchase"
    WITHDRAWAL = "withdrawal"
    ADJUSTMENT = "adjustment"


class StakePlatform(StrEnum):
    US = "us"
    COM = "com"


@dataclass(frozen=True)
class Prize:
    """A single entry of a prize table. Probability is a percentage."""

    label: str
    value: int
    color: str
    probability: float

    @property
    def is_win(self) -> bool:
        return self.value > 0


@dataclass(frozen=True)
class TierConfig:
    tier: SpinTier
    cost: int
    prizes: tuple[Prize, ...]


@dataclass
class SpinBalances:
    bronze: int = 0
    silver: int = 0
    gold: int = 0

    def get(self, tier: SpinTier) -> int:
        return getattr(self, tier.value)


@dataclass
class WagerRow:
    """Wagering activity for one Stake ID as read from the wager feed."""

    stake_id: str
    wagered_amount: float
    period_label: Optional[str] = None
    updated_at: Optional[str] = None
