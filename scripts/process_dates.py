#!/usr/bin/env python3
"""
Ingest curtailment, derive mining calculations and rebuild rollups for a date range.

Usage:
    python scripts/process_dates.py --start-date 2025-03-01
    python scripts/process_dates.py --start-date 2025-03-01 --end-date 2025-03-31
    python scripts/process_dates.py --start-date 2025-03-28 --periods 12 13 14
    python scripts/process_dates.py --start-date 2025-03-01 --difficulty 113757508810854
    python scripts/process_dates.py --start-date 2025-03-01 --btc-price 65000

Exits with status 1 when any date is not fully reconciled.
"""

import argparse
import asyncio
import sys
from datetime import date
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import structlog  # noqa: E402

from curtailment_mining.core.config import get_settings  # noqa: E402
from curtailment_mining.core.database import close_db, get_session_factory, init_db  # noqa: E402
from curtailment_mining.core.logging_config import configure_logging  # noqa: E402
from curtailment_mining.services.bmu_mapping import BmuMapping  # noqa: E402
from curtailment_mining.services.btc_price import load_price_table  # noqa: E402
from curtailment_mining.services.difficulty import DifficultyTable  # noqa: E402
from curtailment_mining.services.elexon_client import ElexonClient  # noqa: E402
from curtailment_mining.services.pipeline import DateProcessor  # noqa: E402

logger = structlog.get_logger()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Process settlement dates end to end")
    parser.add_argument("--start-date", type=date.fromisoformat, required=True, help="YYYY-MM-DD")
    parser.add_argument("--end-date", type=date.fromisoformat, help="YYYY-MM-DD (default: start date)")
    parser.add_argument(
        "--periods",
        type=int,
        nargs="+",
        help="Only fetch these settlement periods (single date only)",
    )
    parser.add_argument(
        "--difficulty",
        type=float,
        help="Use this network difficulty for every date instead of the difficulty file",
    )
    parser.add_argument(
        "--btc-price",
        type=float,
        help="Value every date at this GBP price instead of BTC_PRICE_DATA_PATH",
    )
    parser.add_argument(
        "--miner-models",
        nargs="+",
        help="Miner models to calculate (default: MINER_MODELS setting)",
    )
    args = parser.parse_args(argv)

    args.end_date = args.end_date or args.start_date
    if args.end_date < args.start_date:
        parser.error("--end-date must be on or after --start-date")
    if args.periods and args.end_date != args.start_date:
        parser.error("--periods can only be used with a single date")
    return args


async def run(args) -> int:
    settings = get_settings()
    bmu_mapping = BmuMapping.from_json(settings.BMU_MAPPING_PATH)
    if args.difficulty is not None:
        difficulty_table = DifficultyTable.constant(args.difficulty)
    else:
        difficulty_table = DifficultyTable.from_csv(settings.DIFFICULTY_DATA_PATH)
    price_table = load_price_table(settings.BTC_PRICE_DATA_PATH, args.btc_price)

    await init_db()
    failed_dates = []
    try:
        async with ElexonClient() as client, get_session_factory()() as db:
            processor = DateProcessor(
                db,
                client,
                bmu_mapping,
                difficulty_table,
                miner_models=args.miner_models,
                price_table=price_table,
            )
            if args.periods:
                results = [await processor.process_date(args.start_date, args.periods)]
            else:
                results = await processor.process_range(args.start_date, args.end_date)
    finally:
        await close_db()

    for result in results:
        if not result.success:
            failed_dates.append(result.settlement_date.isoformat())
        print(
            f"{result.settlement_date}  {'OK  ' if result.success else 'FAIL'}  "
            f"stored={result.records_processed} skipped={result.records_skipped} "
            f"failed_periods={result.records_failed} missing={result.missing_calculations} "
            f"reconciled={result.reconciliation_percentage:.2f}%"
        )
        for error in result.errors:
            print(f"    {error}")

    logger.info(
        "Processing finished",
        dates=len(results),
        failed_dates=failed_dates,
    )
    return 1 if failed_dates else 0


def main():
    args = parse_args()
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL, json_logs=False)
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
