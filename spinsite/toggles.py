"""Feature toggles stored in the ``feature_toggles`` table."""

from __future__ import annotations

from typing import Mapping, Optional

SPINS_ENABLED = "spins_enabled"
BONUS_SPINS_ENABLED = "bonus_spins_enabled"
PURCHASES_ENABLED = "purchases_enabled"
WITHDRAWALS_ENABLED = "withdrawals_enabled"
REGISTRATION_ENABLED = "registration_enabled"

FEATURE_TOGGLES: dict[str, str] = {
    SPINS_ENABLED: "Ticket and balance spins",
    BONUS_SPINS_ENABLED: "Daily bonus spin",
    PURCHASES_ENABLED: "Buying spins with wallet balance",
    WITHDRAWALS_ENABLED: "Wallet withdrawal requests",
    REGISTRATION_ENABLED: "New account registration",
}

_TRUE_VALUES = {"true", "1", "on", "yes"}
_FALSE_VALUES = {"false", "0", "off", "no"}


def parse_toggle(value: Optional[str], default: Optional[bool] = True) -> Optional[bool]:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    return default


def is_enabled(stored: Mapping[str, str], key: str) -> bool:
    """Unknown or unset toggles are treated as enabled."""
    return bool(parse_toggle(stored.get(key)))


def resolve_toggles(stored: Mapping[str, str]) -> dict[str, bool]:
    return {key: is_enabled(stored, key) for key in FEATURE_TOGGLES}
