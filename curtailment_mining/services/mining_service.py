"""Derives and stores mining calculations for ingested curtailment."""

from collections import defaultdict
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence, Set, Tuple

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from curtailment_mining.core.config import get_settings
from curtailment_mining.core.constants import BTC_DECIMAL_PLACES, VALUE_DECIMAL_PLACES
from curtailment_mining.core.database import acquire_date_lock, build_upsert, local_date_lock
from curtailment_mining.core.exceptions import InvalidDifficulty
from curtailment_mining.models.curtailment_record import CurtailmentRecord
from curtailment_mining.models.mining_calculation import MiningCalculation
from curtailment_mining.schemas.processing import DerivationResult, FillResult
from curtailment_mining.services.btc_price import BitcoinPriceTable
from curtailment_mining.services.difficulty import DifficultyTable
from curtailment_mining.services.mining_calculator import (
    MinerProfile,
    calculate_bitcoin,
    resolve_miner_profiles,
)
from curtailment_mining.services.reconciliation_service import (
    ReconciliationChecker,
    calculation_source_clause,
)

logger = structlog.get_logger()

UPSERT_BATCH_SIZE = 100


class MiningCalculationService:
    """Writes one calculation per curtailment record and miner model."""

    def __init__(
        self,
        db: AsyncSession,
        difficulty_table: DifficultyTable,
        miner_models: Optional[Sequence[str]] = None,
        price_table: Optional[BitcoinPriceTable] = None,
    ):
        settings = get_settings()
        self.db = db
        self.difficulty_table = difficulty_table
        self.price_table = price_table
        self.profiles: List[MinerProfile] = resolve_miner_profiles(
            miner_models or settings.MINER_MODELS
        )

    @property
    def miner_models(self) -> List[str]:
        return [p.name for p in self.profiles]

    def _price_for(self, settlement_date: date) -> Optional[float]:
        if self.price_table is None:
            return None
        return self.price_table.find(settlement_date)

    def _calculation_row(
        self,
        record: CurtailmentRecord,
        profile: MinerProfile,
        difficulty: float,
        btc_price: Optional[float],
        calculated_at: datetime,
    ) -> Dict:
        mining_yield = calculate_bitcoin(abs(record.volume), profile, difficulty, btc_price)
        return {
            "settlement_date": record.settlement_date,
            "settlement_period": record.settlement_period,
            "farm_id": record.farm_id,
            "miner_model": profile.name,
            "bitcoin_mined": mining_yield.bitcoin_mined,
            "difficulty": difficulty,
            "btc_price": btc_price,
            "value_at_mining": mining_yield.value,
            "calculated_at": calculated_at,
        }

    async def _curtailment_records(self, settlement_date: date) -> List[CurtailmentRecord]:
        rows = await self.db.execute(
            select(CurtailmentRecord)
            .where(
                CurtailmentRecord.settlement_date == settlement_date,
                CurtailmentRecord.volume != 0,
            )
            .order_by(CurtailmentRecord.settlement_period, CurtailmentRecord.farm_id)
        )
        return list(rows.scalars().all())

    async def process_date(self, settlement_date: date) -> DerivationResult:
        """
        Replace every calculation for a date in one transaction.

        Difficulty is looked up once for the date; a date with no known
        difficulty fails before anything is deleted. A date with no known
        Bitcoin price is still calculated, just not valued.

        Raises:
            InvalidDifficulty: no usable difficulty for the date
        """
        difficulty = self.difficulty_table.get(settlement_date)
        btc_price = self._price_for(settlement_date)
        result = DerivationResult(
            settlement_date=settlement_date, difficulty=difficulty, btc_price=btc_price
        )
        calculated_at = datetime.utcnow()

        async with local_date_lock(settlement_date):
            try:
                await acquire_date_lock(self.db, settlement_date)
                records = await self._curtailment_records(settlement_date)
                rows = [
                    self._calculation_row(record, profile, difficulty, btc_price, calculated_at)
                    for record in records
                    for profile in self.profiles
                ]

                await self.db.execute(
                    delete(MiningCalculation).where(
                        MiningCalculation.settlement_date == settlement_date,
                        MiningCalculation.miner_model.in_(self.miner_models),
                    )
                )
                if rows:
                    self.db.add_all([MiningCalculation(**row) for row in rows])
                    await self.db.flush()
                await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                logger.error(
                    "Failed to store mining calculations",
                    settlement_date=settlement_date.isoformat(),
                    error=str(e),
                )
                raise

        totals: Dict[str, float] = defaultdict(float)
        values: Dict[str, float] = defaultdict(float)
        for row in rows:
            totals[row["miner_model"]] += row["bitcoin_mined"]
            if row["value_at_mining"] is not None:
                values[row["miner_model"]] += row["value_at_mining"]
        result.records_considered = len(records)
        result.calculations_written = len(rows)
        result.bitcoin_by_model = {
            model: round(totals.get(model, 0.0), BTC_DECIMAL_PLACES) for model in self.miner_models
        }
        if btc_price is not None:
            result.value_by_model = {
                model: round(values.get(model, 0.0), VALUE_DECIMAL_PLACES)
                for model in self.miner_models
            }

        logger.info(
            "Mining calculations stored",
            settlement_date=settlement_date.isoformat(),
            difficulty=difficulty,
            btc_price=btc_price,
            records=result.records_considered,
            calculations=result.calculations_written,
        )
        return result

    async def fill_missing(self, start_date: date, end_date: date) -> FillResult:
        """
        Calculate only the tuples the reconciliation checker reports missing,
        and delete calculations whose curtailment record is gone.

        Rows are upserted by natural key, one transaction per date, so running
        this twice writes nothing the second time. A date with no known
        difficulty keeps its gaps and is reported in ``skipped_dates``; the
        remaining dates are still filled.
        """
        result = FillResult(start_date=start_date, end_date=end_date)
        checker = ReconciliationChecker(self.db, miner_models=self.miner_models)
        missing = await checker.find_missing(start_date, end_date)
        orphaned = await checker.orphan_counts(start_date, end_date)

        by_date: Dict[date, List[Tuple[int, str, str]]] = defaultdict(list)
        for item in missing:
            by_date[item.settlement_date].append(
                (item.settlement_period, item.farm_id, item.miner_model)
            )
        dates: Set[date] = set(by_date) | {d for d, count in orphaned.items() if count}

        if not dates:
            logger.info(
                "No missing mining calculations",
                start_date=start_date.isoformat(),
                end_date=end_date.isoformat(),
            )
            return result

        for settlement_date in sorted(dates):
            try:
                difficulty = self.difficulty_table.get(settlement_date)
            except InvalidDifficulty as e:
                logger.warning(
                    "Missing mining calculations left unfilled",
                    settlement_date=settlement_date.isoformat(),
                    missing=len(by_date.get(settlement_date, [])),
                    error=e.message,
                )
                difficulty = None
                if by_date.get(settlement_date):
                    result.skipped_dates.append(settlement_date)
                    result.errors.append(f"{settlement_date.isoformat()}: {e.message}")

            written, removed = await self._fill_date(
                settlement_date, by_date.get(settlement_date, []), difficulty
            )
            result.calculations_written += written
            result.orphans_removed += removed
            if written or removed:
                result.dates_filled.append(settlement_date)

        logger.info(
            "Missing mining calculations filled",
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
            dates=len(result.dates_filled),
            calculations=result.calculations_written,
            orphans_removed=result.orphans_removed,
            skipped_dates=[d.isoformat() for d in result.skipped_dates],
        )
        return result

    async def _delete_orphans(self, settlement_date: date) -> int:
        records = CurtailmentRecord.__table__
        calcs = MiningCalculation.__table__
        backed = (
            select(records.c.id)
            .where(calculation_source_clause(calcs, records))
            .correlate(calcs)
            .exists()
        )
        result = await self.db.execute(
            delete(MiningCalculation)
            .where(
                MiningCalculation.settlement_date == settlement_date,
                MiningCalculation.miner_model.in_(self.miner_models),
                ~backed,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def _fill_date(
        self,
        settlement_date: date,
        missing: List[Tuple[int, str, str]],
        difficulty: Optional[float],
    ) -> Tuple[int, int]:
        profiles = {p.name: p for p in self.profiles}
        btc_price = self._price_for(settlement_date)
        calculated_at = datetime.utcnow()
        rows: List[Dict] = []

        async with local_date_lock(settlement_date):
            try:
                await acquire_date_lock(self.db, settlement_date)
                removed = await self._delete_orphans(settlement_date)

                if difficulty is not None and missing:
                    records = {
                        (r.settlement_period, r.farm_id): r
                        for r in await self._curtailment_records(settlement_date)
                    }
                    rows = [
                        self._calculation_row(
                            records[(period, farm_id)],
                            profiles[model],
                            difficulty,
                            btc_price,
                            calculated_at,
                        )
                        for period, farm_id, model in missing
                        if (period, farm_id) in records
                    ]
                # Batches keep the statement under driver parameter limits
                for i in range(0, len(rows), UPSERT_BATCH_SIZE):
                    await self.db.execute(
                        build_upsert(
                            self.db,
                            MiningCalculation,
                            rows[i : i + UPSERT_BATCH_SIZE],
                            index_elements=[
                                "settlement_date",
                                "settlement_period",
                                "farm_id",
                                "miner_model",
                            ],
                            update_columns=[
                                "bitcoin_mined",
                                "difficulty",
                                "btc_price",
                                "value_at_mining",
                                "calculated_at",
                            ],
                        )
                    )
                await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                logger.error(
                    "Failed to fill mining calculations",
                    settlement_date=settlement_date.isoformat(),
                    error=str(e),
                )
                raise

        if removed:
            logger.info(
                "Orphaned mining calculations removed",
                settlement_date=settlement_date.isoformat(),
                removed=removed,
            )
        return len(rows), removed
