"""
Domain errors raised by the ledger and services.

Each error carries the HTTP status the API answers with; the app-level
exception handler renders them as {"detail": message}.
"""

from __future__ import annotations

from typing import Optional


class SpinSiteError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(SpinSiteError):
    status_code = 404


class NoSpinsAvailable(SpinSiteError):
    status_code = 403


class AccountSuspended(SpinSiteError):
    status_code = 403

    def __init__(self, message: str = "Account suspended. Contact support."):
        super().__init__(message)


class InsufficientFunds(SpinSiteError):
    def __init__(self, message: str, available: int):
        super().__init__(message)
        self.available = available


class InvalidConversion(SpinSiteError):
    pass


class AlreadyProcessed(SpinSiteError):
    pass


class Conflict(SpinSiteError):
    status_code = 409


class RateLimited(SpinSiteError):
    status_code = 429

    def __init__(self, message: str, retry_after: Optional[int] = None):
        super().__init__(message)
        self.retry_after = retry_after


class BonusUnavailable(RateLimited):
    def __init__(self, next_bonus_at: float, retry_after: int):
        super().__init__("Daily bonus spin already used.", retry_after)
        self.next_bonus_at = next_bonus_at


class FeatureDisabled(SpinSiteError):
    status_code = 503


class WagerSourceUnavailable(SpinSiteError):
    status_code = 503

    def __init__(self, message: str = "Wager data is temporarily unavailable."):
        super().__init__(message)
