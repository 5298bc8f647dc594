#!/usr/bin/env python3
"""
Report which curtailment records lack mining calculations, and which
calculations no longer have a curtailment record.

Usage:
    python scripts/reconciliation_status.py --start-date 2025-01-01 --end-date 2025-01-31
    python scripts/reconciliation_status.py --start-date 2025-01-01 --end-date 2025-01-31 --show-missing 20
    python scripts/reconciliation_status.py --start-date 2025-01-01 --end-date 2025-01-31 --fix
    python scripts/reconciliation_status.py --start-date 2025-01-01 --end-date 2025-01-31 --strict

``--fix`` calculates only the missing tuples, deletes orphaned calculations and
rebuilds rollups for the affected dates. Dates with no known difficulty are
listed and left as they are. ``--strict`` exits with status 1 when anything is
missing or orphaned.
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
from curtailment_mining.core.exceptions import ReconciliationGap  # noqa: E402
from curtailment_mining.core.logging_config import configure_logging  # noqa: E402
from curtailment_mining.services.bmu_mapping import BmuMapping  # noqa: E402
from curtailment_mining.services.btc_price import load_price_table  # noqa: E402
from curtailment_mining.services.difficulty import DifficultyTable  # noqa: E402
from curtailment_mining.services.elexon_client import ElexonClient  # noqa: E402
from curtailment_mining.services.pipeline import DateProcessor  # noqa: E402
from curtailment_mining.services.reconciliation_service import ReconciliationChecker  # noqa: E402

logger = structlog.get_logger()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Reconciliation status for a date range")
    parser.add_argument("--start-date", type=date.fromisoformat, required=True, help="YYYY-MM-DD")
    parser.add_argument("--end-date", type=date.fromisoformat, help="YYYY-MM-DD (default: start date)")
    parser.add_argument("--show-missing", type=int, default=0, metavar="N", help="List up to N missing tuples")
    parser.add_argument("--fix", action="store_true", help="Fill missing calculations and rebuild rollups")
    parser.add_argument("--difficulty", type=float, help="Constant network difficulty for --fix")
    parser.add_argument("--btc-price", type=float, help="Constant GBP price used to value --fix rows")
    parser.add_argument("--strict", action="store_true", help="Exit 1 when anything is missing or orphaned")
    args = parser.parse_args(argv)

    args.end_date = args.end_date or args.start_date
    if args.end_date < args.start_date:
        parser.error("--end-date must be on or after --start-date")
    return args


def print_report(report) -> None:
    print(f"Reconciliation {report.start_date} to {report.end_date} ({', '.join(report.miner_models)})")
    print(
        f"  dates: {report.total_dates} total, {report.complete_dates} complete, "
        f"{report.partial_dates} partial, {report.missing_dates} missing, {report.unknown_dates} unknown"
    )
    print(
        f"  calculations: {report.actual_calculations}/{report.expected_calculations} "
        f"({report.completion_percentage:.2f}%), {report.missing_calculations} missing, "
        f"{report.orphaned_calculations} orphaned"
    )
    for entry in report.dates:
        if entry.status.value in ("partial", "missing"):
            print(
                f"  {entry.settlement_date}  {entry.status.value:8s} "
                f"{entry.actual_calculations}/{entry.expected_calculations} "
                f"({entry.completion_percentage:.2f}%)"
                + (f" {entry.orphaned_calculations} orphaned" if entry.orphaned_calculations else "")
            )
    for skipped in report.skipped_dates:
        print(f"  {skipped}  skipped  no network difficulty known")


async def run(args) -> int:
    settings = get_settings()
    try:
        async with get_session_factory()() as db:
            checker = ReconciliationChecker(db)

            if args.fix:
                if args.difficulty is not None:
                    difficulty_table = DifficultyTable.constant(args.difficulty)
                else:
                    difficulty_table = DifficultyTable.from_csv(settings.DIFFICULTY_DATA_PATH)
                async with ElexonClient() as client:
                    processor = DateProcessor(
                        db,
                        client,
                        BmuMapping.from_json(settings.BMU_MAPPING_PATH),
                        difficulty_table,
                        price_table=load_price_table(settings.BTC_PRICE_DATA_PATH, args.btc_price),
                    )
                    report = await processor.reconcile_range(args.start_date, args.end_date)
            else:
                report = await checker.check_range(args.start_date, args.end_date)

            print_report(report)

            if args.show_missing:
                missing = await checker.find_missing(args.start_date, args.end_date, limit=args.show_missing)
                for item in missing:
                    print(
                        f"  missing {item.settlement_date} P{item.settlement_period:02d} "
                        f"{item.farm_id} {item.miner_model}"
                    )

            if args.strict:
                try:
                    await checker.require_complete(args.start_date, args.end_date)
                except ReconciliationGap as e:
                    logger.error(
                        "Reconciliation incomplete",
                        missing=e.missing_count,
                        orphaned=e.orphan_count,
                        dates=e.dates,
                    )
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
