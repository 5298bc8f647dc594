"""Curtailment ingestion: fetch, filter, merge and store one settlement date."""

import asyncio
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd
import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from curtailment_mining.core.config import get_settings
from curtailment_mining.core.constants import ENERGY_DECIMAL_PLACES, PAYMENT_DECIMAL_PLACES
from curtailment_mining.core.database import acquire_date_lock, build_upsert, local_date_lock
from curtailment_mining.core.exceptions import UpstreamError
from curtailment_mining.models.curtailment_record import CurtailmentRecord
from curtailment_mining.models.ingestion_log import IngestionLog, IngestionStatus
from curtailment_mining.schemas.elexon import SettlementStackRecord
from curtailment_mining.schemas.processing import IngestionResult, PeriodFailure
from curtailment_mining.services.bmu_mapping import BmuMapping
from curtailment_mining.services.elexon_client import (
    ElexonClient,
    filter_curtailment_records,
    settlement_periods_for_date,
)

logger = structlog.get_logger()

NATURAL_KEY = ["settlement_date", "settlement_period", "farm_id"]


def calculate_payment(volume: float, original_price: float) -> float:
    """Payment for curtailed volume: ``|volume| * original_price * -1``."""
    return round(abs(volume) * original_price * -1, PAYMENT_DECIMAL_PLACES)


def build_record_rows(
    records: Iterable[SettlementStackRecord],
    settlement_date: date,
    settlement_period: int,
    bmu_mapping: BmuMapping,
) -> List[Dict[str, Any]]:
    """Turn filtered stack records into ``curtailment_records`` rows."""
    rows = []
    for record in records:
        rows.append(
            {
                "settlement_date": settlement_date,
                "settlement_period": settlement_period,
                "farm_id": record.id,
                "lead_party_name": record.lead_party_name or bmu_mapping.lead_party(record.id),
                "volume": record.volume,
                "payment": calculate_payment(record.volume, record.original_price),
                "original_price": record.original_price,
                "final_price": (
                    record.final_price if record.final_price is not None else record.original_price
                ),
                "so_flag": record.so_flag,
                "cadl_flag": record.cadl_flag,
            }
        )
    return rows


def merge_duplicate_records(rows: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], int]:
    """
    Collapse rows sharing (date, period, farm) into one.

    A farm can be accepted in both the bid and the offer stack for the same
    period. Volumes and payments are summed; prices and flags come from the
    first row seen.

    Returns:
        Tuple of (merged rows, number of rows folded into another)
    """
    if not rows:
        return [], 0

    df = pd.DataFrame(rows)
    merged = (
        df.groupby(NATURAL_KEY, sort=True, dropna=False)
        .agg(
            lead_party_name=("lead_party_name", "first"),
            volume=("volume", "sum"),
            payment=("payment", "sum"),
            original_price=("original_price", "first"),
            final_price=("final_price", "first"),
            so_flag=("so_flag", "first"),
            cadl_flag=("cadl_flag", "first"),
        )
        .reset_index()
    )
    merged["volume"] = merged["volume"].round(ENERGY_DECIMAL_PLACES)
    merged["payment"] = merged["payment"].round(PAYMENT_DECIMAL_PLACES)

    # Back to plain Python values; NaN from all-null groups becomes None
    merged = merged.astype(object).where(pd.notna(merged), None)
    return merged.to_dict("records"), len(df) - len(merged)


class CurtailmentIngestionService:
    """Fetches a settlement date from Elexon and replaces its curtailment rows."""

    def __init__(
        self,
        db: AsyncSession,
        client: ElexonClient,
        bmu_mapping: BmuMapping,
        max_concurrent_requests: Optional[int] = None,
    ):
        settings = get_settings()
        self.db = db
        self.client = client
        self.bmu_mapping = bmu_mapping
        self.max_concurrent_requests = (
            max_concurrent_requests or settings.ELEXON_MAX_CONCURRENT_REQUESTS
        )

    async def _fetch_period(
        self, semaphore: asyncio.Semaphore, settlement_date: date, settlement_period: int
    ) -> Tuple[int, Optional[List[SettlementStackRecord]], Optional[UpstreamError]]:
        async with semaphore:
            try:
                records = await self.client.fetch_bids_offers(settlement_date, settlement_period)
                return settlement_period, records, None
            except UpstreamError as e:
                logger.error(
                    "Settlement period fetch failed",
                    settlement_date=settlement_date.isoformat(),
                    settlement_period=settlement_period,
                    error_type=type(e).__name__,
                    error=e.message,
                    fragment=getattr(e, "fragment", None),
                )
                return settlement_period, None, e

    async def ingest_date(
        self, settlement_date: date, periods: Optional[Iterable[int]] = None
    ) -> IngestionResult:
        """
        Ingest curtailment for one settlement date.

        All periods are fetched first, concurrently and bounded by a semaphore.
        A failing period is recorded and left untouched in the database; every
        successful period has its rows replaced in a single transaction.

        Args:
            settlement_date: Settlement date to ingest
            periods: Periods to fetch, defaults to every period of the day

        Returns:
            IngestionResult with fetch, skip, merge and failure counts
        """
        if periods is None:
            periods = range(1, settlement_periods_for_date(settlement_date) + 1)
        periods = sorted(set(periods))

        result = IngestionResult(settlement_date=settlement_date, periods_requested=len(periods))
        logger.info(
            "Ingesting curtailment",
            settlement_date=settlement_date.isoformat(),
            periods=len(periods),
            max_concurrent_requests=self.max_concurrent_requests,
        )

        semaphore = asyncio.Semaphore(self.max_concurrent_requests)
        fetched = await asyncio.gather(
            *[self._fetch_period(semaphore, settlement_date, period) for period in periods]
        )

        succeeded_periods: List[int] = []
        rows: List[Dict[str, Any]] = []
        for period, records, error in fetched:
            if error is not None:
                result.failures.append(
                    PeriodFailure(
                        settlement_period=period,
                        error_type=type(error).__name__,
                        message=error.message,
                    )
                )
                continue

            succeeded_periods.append(period)
            curtailment = filter_curtailment_records(records, self.bmu_mapping)
            result.records_fetched += len(records)
            result.records_skipped += len(records) - len(curtailment)
            rows.extend(build_record_rows(curtailment, settlement_date, period, self.bmu_mapping))

        merged_rows, merged_count = merge_duplicate_records(rows)
        result.duplicates_merged = merged_count
        result.periods_processed = len(succeeded_periods)
        result.periods_failed = len(result.failures)

        await self._store(settlement_date, succeeded_periods, merged_rows, result)

        result.records_stored = len(merged_rows)
        result.total_volume = round(
            sum(abs(row["volume"]) for row in merged_rows), ENERGY_DECIMAL_PLACES
        )
        result.total_payment = round(sum(row["payment"] for row in merged_rows), PAYMENT_DECIMAL_PLACES)

        logger.info(
            "Curtailment ingested",
            settlement_date=settlement_date.isoformat(),
            periods_processed=result.periods_processed,
            periods_failed=result.periods_failed,
            records_fetched=result.records_fetched,
            records_stored=result.records_stored,
            duplicates_merged=result.duplicates_merged,
            total_volume=result.total_volume,
            total_payment=result.total_payment,
        )
        return result

    async def _store(
        self,
        settlement_date: date,
        periods: List[int],
        rows: List[Dict[str, Any]],
        result: IngestionResult,
    ) -> None:
        now = datetime.utcnow()
        if result.periods_failed == 0:
            status = IngestionStatus.COMPLETED
        elif result.periods_processed:
            status = IngestionStatus.PARTIAL
        else:
            status = IngestionStatus.FAILED
        error_message = (
            "; ".join(f"period {f.settlement_period}: {f.message}" for f in result.failures) or None
        )

        async with local_date_lock(settlement_date):
            try:
                await acquire_date_lock(self.db, settlement_date)

                if periods:
                    await self.db.execute(
                        delete(CurtailmentRecord).where(
                            CurtailmentRecord.settlement_date == settlement_date,
                            CurtailmentRecord.settlement_period.in_(periods),
                        )
                    )
                if rows:
                    self.db.add_all([CurtailmentRecord(**row, created_at=now) for row in rows])
                    await self.db.flush()

                stored_total = await self.db.scalar(
                    select(func.count())
                    .select_from(CurtailmentRecord)
                    .where(CurtailmentRecord.settlement_date == settlement_date)
                )

                log_row = {
                    "settlement_date": settlement_date,
                    "status": status,
                    "records_stored": stored_total or 0,
                    "periods_processed": result.periods_processed,
                    "periods_failed": result.periods_failed,
                    "error_message": error_message,
                    "created_at": now,
                    "updated_at": now,
                }
                await self.db.execute(
                    build_upsert(
                        self.db,
                        IngestionLog,
                        [log_row],
                        index_elements=["settlement_date"],
                        update_columns=[
                            "status",
                            "records_stored",
                            "periods_processed",
                            "periods_failed",
                            "error_message",
                            "updated_at",
                        ],
                    )
                )
                await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                logger.error(
                    "Failed to store curtailment",
                    settlement_date=settlement_date.isoformat(),
                    error=str(e),
                )
                raise

    async def get_records(self, settlement_date: date) -> List[CurtailmentRecord]:
        """Stored curtailment rows for a date, ordered by period and farm."""
        rows = await self.db.execute(
            select(CurtailmentRecord)
            .where(CurtailmentRecord.settlement_date == settlement_date)
            .order_by(CurtailmentRecord.settlement_period, CurtailmentRecord.farm_id)
        )
        return list(rows.scalars().all())
