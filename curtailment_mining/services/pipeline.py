"""End-to-end processing of settlement dates."""

from datetime import date, timedelta
from typing import Iterable, List, Optional, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from curtailment_mining.core.exceptions import InvalidDifficulty
from curtailment_mining.schemas.processing import DateProcessingResult
from curtailment_mining.schemas.reconciliation import ReconciliationReport, ReconciliationStatus
from curtailment_mining.services.bmu_mapping import BmuMapping
from curtailment_mining.services.btc_price import BitcoinPriceTable
from curtailment_mining.services.curtailment_service import CurtailmentIngestionService
from curtailment_mining.services.difficulty import DifficultyTable
from curtailment_mining.services.elexon_client import ElexonClient
from curtailment_mining.services.mining_service import MiningCalculationService
from curtailment_mining.services.reconciliation_service import ReconciliationChecker
from curtailment_mining.services.summary_service import SummaryService

logger = structlog.get_logger()


class DateProcessor:
    """
    Runs ingestion, derivation, rollups and a final reconciliation for a date.

    Reference data (BMU mapping, difficulty and price tables) is loaded by the
    caller and shared across dates.
    """

    def __init__(
        self,
        db: AsyncSession,
        client: ElexonClient,
        bmu_mapping: BmuMapping,
        difficulty_table: DifficultyTable,
        miner_models: Optional[Sequence[str]] = None,
        price_table: Optional[BitcoinPriceTable] = None,
    ):
        self.db = db
        self.ingestion = CurtailmentIngestionService(db, client, bmu_mapping)
        self.mining = MiningCalculationService(db, difficulty_table, miner_models, price_table)
        self.summaries = SummaryService(db, self.mining.miner_models)
        self.checker = ReconciliationChecker(db, self.mining.miner_models)

    async def process_date(
        self, settlement_date: date, periods: Optional[Iterable[int]] = None
    ) -> DateProcessingResult:
        """
        Process one settlement date.

        The result is only successful when every period was fetched and no
        mining calculation is missing afterwards.
        """
        result = DateProcessingResult(settlement_date=settlement_date)
        log = logger.bind(settlement_date=settlement_date.isoformat())

        ingestion = await self.ingestion.ingest_date(settlement_date, periods)
        result.ingestion = ingestion
        result.records_processed = ingestion.records_stored
        result.records_skipped = ingestion.records_skipped
        result.records_failed = ingestion.periods_failed
        result.errors.extend(
            f"period {f.settlement_period}: {f.error_type}: {f.message}" for f in ingestion.failures
        )

        try:
            result.derivation = await self.mining.process_date(settlement_date)
        except InvalidDifficulty as e:
            log.error("Mining calculations skipped", error=e.message)
            result.errors.append(e.message)

        await self.summaries.rebuild_for_date(settlement_date)

        status = await self.checker.check_date(settlement_date)
        result.missing_calculations = status.missing_calculations
        result.reconciliation_percentage = status.completion_percentage
        result.success = (
            status.status == ReconciliationStatus.COMPLETE
            and ingestion.periods_failed == 0
            and not result.errors
        )

        log.info(
            "Date processed",
            success=result.success,
            records_processed=result.records_processed,
            records_skipped=result.records_skipped,
            periods_failed=result.records_failed,
            missing_calculations=result.missing_calculations,
            reconciliation_percentage=result.reconciliation_percentage,
        )
        return result

    async def process_range(self, start_date: date, end_date: date) -> List[DateProcessingResult]:
        """Process each date in the range in order."""
        results = []
        day = start_date
        while day <= end_date:
            results.append(await self.process_date(day))
            day += timedelta(days=1)
        return results

    async def reconcile_range(self, start_date: date, end_date: date) -> ReconciliationReport:
        """
        Fill missing mining calculations, drop orphaned ones and rebuild rollups
        for every date that changed.

        Dates that could not be filled are carried in ``skipped_dates``; they
        never stop the rest of the range.

        Returns:
            Reconciliation report taken after the fill
        """
        fill = await self.mining.fill_missing(start_date, end_date)
        for day in fill.dates_filled:
            await self.summaries.rebuild_for_date(day)

        report = await self.checker.check_range(start_date, end_date)
        report.skipped_dates = list(fill.skipped_dates)
        logger.info(
            "Reconciliation run finished",
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
            dates_filled=len(fill.dates_filled),
            orphans_removed=fill.orphans_removed,
            skipped_dates=[d.isoformat() for d in fill.skipped_dates],
            missing_calculations=report.missing_calculations,
        )
        return report
