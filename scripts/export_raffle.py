"""
Write the raffle entry list (one row per Stake ID holding a ticket) as CSV.

Usage:
  python scripts/export_raffle.py --week-label 2026-W42 --out raffle.csv
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from spinsite.config import get_settings
from spinsite.dependencies import get_db_client, get_random, get_wager_source
from spinsite.ledger import SpinService, render_raffle_csv

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Export raffle entries to CSV")
    parser.add_argument("--campaign", type=str, default="weekly", help="Campaign name")
    parser.add_argument("--week-label", type=str, required=True, help="e.g. 2026-W42")
    parser.add_argument(
        "--ticket-unit",
        type=int,
        default=None,
        help="Dollars wagered per ticket (defaults to TICKET_UNIT)",
    )
    parser.add_argument("--out", type=str, default="-", help="Output file, '-' for stdout")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    settings = get_settings()
    db = get_db_client()
    service = SpinService(
        db, get_wager_source(), get_random(), ticket_unit=settings.ticket_unit
    )
    unit = args.ticket_unit or settings.ticket_unit
    rows = service.raffle_rows(unit)
    content, data_hash = render_raffle_csv(rows)

    if args.out == "-":
        sys.stdout.write(content)
    else:
        Path(args.out).write_text(content, encoding="utf-8")

    total_tickets = sum(tickets for _, _, tickets in rows)
    db.record_export(
        campaign=args.campaign,
        week_label=args.week_label,
        ticket_unit=unit,
        row_count=len(rows),
        total_tickets=total_tickets,
        data_hash=data_hash,
        exported_by="cli",
    )
    logger.info(
        "Exported %d rows, %d tickets, hash %s", len(rows), total_tickets, data_hash[:12]
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
