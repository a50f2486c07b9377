"""
Wager data sources.

Production reads the affiliate spreadsheet through gspread and keeps a
short-lived snapshot in ``SheetWagerCache``. Without a configured sheet the
site runs in demo mode on the seeded ``demo_users`` table.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Sequence

import gspread

from spincore.types import WagerRow
from spinsite.errors import WagerSourceUnavailable

logger = logging.getLogger(__name__)

HEADER_SEARCH_ROWS = 5
MIN_SHEET_ROWS = 3
USER_NAME_COLUMN = "user_name"
WAGER_COLUMNS = ("wagered_monthly", "wagered_weekly", "wagered_overall")
SHEET_PERIOD_LABEL = "Monthly"

Fetcher = Callable[[], Sequence[Sequence[object]]]


class WagerSource(Protocol):
    mode: str

    def get(self, stake_id: str) -> Optional[WagerRow]:
        ...

    def all_rows(self) -> list[WagerRow]:
        ...

    def refresh(self) -> int:
        ...

    def status(self) -> dict:
        ...


def _parse_wager(value: object) -> float:
    text = str(value or "").replace("$", "").replace(",", "").strip()
    if not text:
        return 0.0
    try:
        amount = float(text)
    except ValueError:
        return 0.0
    if amount != amount:  # NaN
        return 0.0
    return max(0.0, amount)


def parse_wager_rows(rows: Sequence[Sequence[object]]) -> dict[str, WagerRow]:
    """
    Turn raw sheet values into wager rows keyed by lowercase Stake ID.

    The header row is the first of the top five rows holding a ``User_Name``
    column. Each data row takes its wager from the first non-empty column of
    Wagered_Monthly, Wagered_Weekly, Wagered_Overall. Duplicate users are
    summed.
    """
    parsed: dict[str, WagerRow] = {}
    if len(rows) < MIN_SHEET_ROWS:
        return parsed

    header_index = None
    headers: list[str] = []
    for index, row in enumerate(rows[:HEADER_SEARCH_ROWS]):
        candidate = [str(cell or "").strip().lower() for cell in row]
        if USER_NAME_COLUMN in candidate:
            header_index = index
            headers = candidate
            break
    if header_index is None:
        logger.error("Could not find User_Name column in sheet headers")
        return parsed

    name_col = headers.index(USER_NAME_COLUMN)
    wager_cols = [headers.index(name) for name in WAGER_COLUMNS if name in headers]

    for row in rows[header_index + 1 :]:
        cells = list(row) + [""] * max(0, len(headers) - len(row))
        stake_id = str(cells[name_col] or "").strip()
        if not stake_id:
            continue
        amount = 0.0
        for col in wager_cols:
            if str(cells[col] or "").strip():
                amount = _parse_wager(cells[col])
                break
        key = stake_id.lower()
        existing = parsed.get(key)
        if existing:
            existing.wagered_amount += amount
        else:
            parsed[key] = WagerRow(
                stake_id=stake_id,
                wagered_amount=amount,
                period_label=SHEET_PERIOD_LABEL,
            )
    return parsed


@dataclass
class GspreadFetcher:
    """Reads every value of one worksheet with a service account."""

    sheet_id: str
    worksheet_name: str
    service_account_file: Optional[str] = None

    def __call__(self) -> list[list[str]]:
        if self.service_account_file:
            client = gspread.service_account(filename=self.service_account_file)
        else:
            client = gspread.service_account()
        worksheet = client.open_by_key(self.sheet_id).worksheet(self.worksheet_name)
        return worksheet.get_all_values()


class SheetWagerCache:
    mode = "sheets"

    def __init__(
        self,
        fetcher: Fetcher,
        ttl_seconds: float = 60,
        clock: Callable[[], float] = time.time,
    ):
        self.fetcher = fetcher
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._rows: Optional[dict[str, WagerRow]] = None
        self._fetched_at: Optional[float] = None
        self._lock = threading.Lock()

    def _expired(self, now: float) -> bool:
        return self._fetched_at is None or now - self._fetched_at > self.ttl_seconds

    def refresh(self) -> int:
        """Fetch the sheet now. On failure the previous snapshot stays in place."""
        with self._lock:
            try:
                raw = self.fetcher()
            except Exception as exc:
                logger.exception("Failed to load wager data from sheet")
                raise WagerSourceUnavailable() from exc
            self._rows = parse_wager_rows(raw)
            self._fetched_at = self.clock()
            logger.info("Loaded %d users from wager sheet", len(self._rows))
            return len(self._rows)

    def _snapshot(self) -> dict[str, WagerRow]:
        if self._rows is None or self._expired(self.clock()):
            self.refresh()
        return self._rows or {}

    def get(self, stake_id: str) -> Optional[WagerRow]:
        return self._snapshot().get(stake_id.strip().lower())

    def all_rows(self) -> list[WagerRow]:
        return list(self._snapshot().values())

    def status(self) -> dict:
        now = self.clock()
        age = now - self._fetched_at if self._fetched_at is not None else None
        return {
            "mode": self.mode,
            "loaded": self._rows is not None,
            "row_count": len(self._rows or {}),
            "last_fetch": self._fetched_at,
            "ttl_seconds": self.ttl_seconds,
            "age_seconds": age,
            "expired": self._expired(now),
        }


class DemoWagerSource:
    """Wager rows from the seeded demo table."""

    mode = "demo"

    def __init__(self, db):
        self.db = db

    def _rows(self) -> dict[str, WagerRow]:
        return {row.stake_id.lower(): row for row in self.db.list_demo_wagers()}

    def get(self, stake_id: str) -> Optional[WagerRow]:
        return self._rows().get(stake_id.strip().lower())

    def all_rows(self) -> list[WagerRow]:
        return list(self._rows().values())

    def refresh(self) -> int:
        return len(self._rows())

    def status(self) -> dict:
        return {
            "mode": self.mode,
            "loaded": True,
            "row_count": len(self._rows()),
            "last_fetch": None,
            "ttl_seconds": None,
            "age_seconds": None,
            "expired": False,
        }
