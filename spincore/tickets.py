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

import math
import re

DEFAULT_TICKET_UNIT = 1000

STAKE_ID_MIN_LENGTH = 2
STAKE_ID_MAX_LENGTH = 32
STAKE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")


def calculate_tickets(wagered_amount: float, unit: int = DEFAULT_TICKET_UNIT) -> int:
    if unit <= 0:
        raise ValueError("ticket unit must be positive")
    if wagered_amount <= 0:
        return 0
    return math.floor(wagered_amount / unit)


def tickets_remaining(tickets_total: int, tickets_used: int) -> int:
    return max(0, tickets_total - tickets_used)


def normalize_stake_id(value: str) -> str:
    """
    Validate a Stake ID and return its canonical (lowercase) form.

    Raises ValueError with a user-facing message when invalid.
    """
    stake_id = (value or "").strip()
    if len(stake_id) < STAKE_ID_MIN_LENGTH:
        raise ValueError(
            f"Stake ID must be at least {STAKE_ID_MIN_LENGTH} characters"
        )
    if len(stake_id) > STAKE_ID_MAX_LENGTH:
        raise ValueError(
            f"Stake ID must be at most {STAKE_ID_MAX_LENGTH} characters"
        )
    if not STAKE_ID_PATTERN.match(stake_id):
        raise ValueError(
            "Stake ID can only contain letters, numbers, and underscores"
        )
    return stake_id.lower()
