#!/usr/bin/env python3
"""
Rebuild daily, monthly and yearly rollups, or check them against their constituents.

Usage:
    python scripts/rebuild_summaries.py --start-date 2025-01-01 --end-date 2025-12-31
    python scripts/rebuild_summaries.py --check-year 2025

The check exits with status 1 when any rollup differs from the sum of its
constituents; run a rebuild for the affected range to fix it.
"""

import argparse
import asyncio
import sys
from datetime import date
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import structlog  # noqa: E402

from curtailment_mining.core.config import get_settings  # noqa: E402
from curtailment_mining.core.database import close_db, get_session_factory  # noqa: E402
from curtailment_mining.core.exceptions import AggregateInconsistency  # noqa: E402
from curtailment_mining.core.logging_config import configure_logging  # noqa: E402
from curtailment_mining.services.summary_service import SummaryService  # noqa: E402

logger = structlog.get_logger()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Rebuild or check rollup summaries")
    parser.add_argument("--start-date", type=date.fromisoformat, help="YYYY-MM-DD")
    parser.add_argument("--end-date", type=date.fromisoformat, help="YYYY-MM-DD (default: start date)")
    parser.add_argument("--check-year", type=int, help="Check rollups of this year instead of rebuilding")
    args = parser.parse_args(argv)

    if args.check_year is None and args.start_date is None:
        parser.error("either --start-date or --check-year is required")
    if args.start_date is not None:
        args.end_date = args.end_date or args.start_date
        if args.end_date < args.start_date:
            parser.error("--end-date must be on or after --start-date")
    return args


async def run(args) -> int:
    try:
        async with get_session_factory()() as db:
            service = SummaryService(db)

            if args.start_date is not None:
                counts = await service.rebuild_range(args.start_date, args.end_date)
                print(
                    f"Rebuilt {counts['days']} day(s), {counts['months']} month(s), "
                    f"{counts['years']} year(s)"
                )

            if args.check_year is not None:
                try:
                    report = await service.assert_consistent(args.check_year)
                    print(f"{args.check_year}: {report.checked} values consistent")
                except AggregateInconsistency as e:
                    for item in e.inconsistencies:
                        print(
                            f"  {item['table']} {item['key']} {item['miner_model'] or ''} "
                            f"{item['column']}: stored={item['stored']} expected={item['expected']} "
                            f"delta={item['delta']}"
                        )
                    logger.error("Rollups inconsistent", year=args.check_year, count=len(e.inconsistencies))
                    return 1
    finally:
        await close_db()
    return 0


def main():
    args = parse_args()
    configure_logging(get_settings().LOG_LEVEL, json_logs=False)
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
