"""Reconciliation of curtailment records against derived mining calculations."""

from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence

import structlog
from sqlalchemy import String, and_, case, func, literal, select, true, union_all
from sqlalchemy.ext.asyncio import AsyncSession

from curtailment_mining.core.config import get_settings
from curtailment_mining.core.exceptions import ReconciliationGap
from curtailment_mining.models.curtailment_record import CurtailmentRecord
from curtailment_mining.models.ingestion_log import IngestionLog, IngestionStatus
from curtailment_mining.models.mining_calculation import MiningCalculation
from curtailment_mining.schemas.reconciliation import (
    DateReconciliation,
    MissingCalculation,
    ReconciliationReport,
    ReconciliationStatus,
)
from curtailment_mining.services.mining_calculator import resolve_miner_profiles

logger = structlog.get_logger()


def _percentage(actual: int, expected: int) -> float:
    if expected == 0:
        return 100.0
    return round(actual / expected * 100, 2)


def _date_range(start_date: date, end_date: date) -> List[date]:
    return [start_date + timedelta(days=i) for i in range((end_date - start_date).days + 1)]


def calculation_source_clause(calcs=None, records=None):
    """
    Join condition from a mining calculation to the curtailment record it was
    derived from. Only records with non-zero volume can back a calculation.
    """
    calcs = calcs if calcs is not None else MiningCalculation.__table__
    records = records if records is not None else CurtailmentRecord.__table__
    return and_(
        records.c.settlement_date == calcs.c.settlement_date,
        records.c.settlement_period == calcs.c.settlement_period,
        records.c.farm_id == calcs.c.farm_id,
        records.c.volume != 0,
    )


class ReconciliationChecker:
    """
    Finds curtailment records that lack a mining calculation, and calculations
    whose curtailment record is gone.

    A curtailment record with non-zero volume requires one calculation per
    miner model. Everything is answered by set-difference queries; nothing is
    cached between calls.
    """

    def __init__(
        self,
        db: AsyncSession,
        miner_models: Optional[Sequence[str]] = None,
        history_start_date: Optional[date] = None,
        today: Optional[date] = None,
    ):
        settings = get_settings()
        self.db = db
        self.miner_models = [
            p.name for p in resolve_miner_profiles(miner_models or settings.MINER_MODELS)
        ]
        self.history_start_date = history_start_date or settings.HISTORY_START_DATE
        self.today = today

    def _models_subquery(self):
        selects = [
            select(literal(model, String(20)).label("miner_model")) for model in self.miner_models
        ]
        if len(selects) == 1:
            return selects[0].subquery("models")
        return union_all(*selects).subquery("models")

    def _missing_query(self, start_date: date, end_date: date):
        models = self._models_subquery()
        records = CurtailmentRecord.__table__
        calcs = MiningCalculation.__table__

        joined = records.join(models, true()).outerjoin(
            calcs,
            and_(
                calcs.c.settlement_date == records.c.settlement_date,
                calcs.c.settlement_period == records.c.settlement_period,
                calcs.c.farm_id == records.c.farm_id,
                calcs.c.miner_model == models.c.miner_model,
            ),
        )
        return (
            joined,
            and_(
                records.c.settlement_date >= start_date,
                records.c.settlement_date <= end_date,
                records.c.volume != 0,
                calcs.c.id.is_(None),
            ),
            records,
            models,
        )

    async def find_missing(
        self, start_date: date, end_date: date, limit: Optional[int] = None
    ) -> List[MissingCalculation]:
        """
        Curtailment records in the range with no calculation for a miner model.

        Args:
            start_date: First settlement date, inclusive
            end_date: Last settlement date, inclusive
            limit: Maximum tuples to return

        Returns:
            Missing (date, period, farm, miner model) tuples, ordered
        """
        joined, where, records, models = self._missing_query(start_date, end_date)
        stmt = (
            select(
                records.c.settlement_date,
                records.c.settlement_period,
                records.c.farm_id,
                models.c.miner_model,
            )
            .select_from(joined)
            .where(where)
            .order_by(
                records.c.settlement_date,
                records.c.settlement_period,
                records.c.farm_id,
                models.c.miner_model,
            )
        )
        if limit is not None:
            stmt = stmt.limit(limit)

        rows = await self.db.execute(stmt)
        return [
            MissingCalculation(
                settlement_date=row.settlement_date,
                settlement_period=row.settlement_period,
                farm_id=row.farm_id,
                miner_model=row.miner_model,
            )
            for row in rows
        ]

    async def _missing_counts(self, start_date: date, end_date: date) -> Dict[date, int]:
        joined, where, records, _ = self._missing_query(start_date, end_date)
        rows = await self.db.execute(
            select(records.c.settlement_date, func.count().label("missing"))
            .select_from(joined)
            .where(where)
            .group_by(records.c.settlement_date)
        )
        return {row.settlement_date: row.missing for row in rows}

    async def orphan_counts(self, start_date: date, end_date: date) -> Dict[date, int]:
        """Calculations per date with no curtailment record behind them."""
        records = CurtailmentRecord.__table__
        calcs = MiningCalculation.__table__
        rows = await self.db.execute(
            select(calcs.c.settlement_date, func.count().label("orphans"))
            .select_from(calcs.outerjoin(records, calculation_source_clause(calcs, records)))
            .where(
                calcs.c.settlement_date >= start_date,
                calcs.c.settlement_date <= end_date,
                calcs.c.miner_model.in_(self.miner_models),
                records.c.id.is_(None),
            )
            .group_by(calcs.c.settlement_date)
        )
        return {row.settlement_date: row.orphans for row in rows}

    async def _record_counts(self, start_date: date, end_date: date) -> Dict[date, Dict[str, int]]:
        rows = await self.db.execute(
            select(
                CurtailmentRecord.settlement_date,
                func.count().label("total"),
                func.sum(case((CurtailmentRecord.volume != 0, 1), else_=0)).label("required"),
            )
            .where(
                CurtailmentRecord.settlement_date >= start_date,
                CurtailmentRecord.settlement_date <= end_date,
            )
            .group_by(CurtailmentRecord.settlement_date)
        )
        return {
            row.settlement_date: {"total": row.total, "required": int(row.required or 0)}
            for row in rows
        }

    async def _ingested_dates(self, start_date: date, end_date: date) -> Dict[date, IngestionStatus]:
        rows = await self.db.execute(
            select(IngestionLog.settlement_date, IngestionLog.status).where(
                IngestionLog.settlement_date >= start_date,
                IngestionLog.settlement_date <= end_date,
            )
        )
        return {row.settlement_date: row.status for row in rows}

    async def check_date(self, settlement_date: date) -> DateReconciliation:
        """Reconciliation state of a single date."""
        report = await self.check_range(settlement_date, settlement_date)
        return report.dates[0]

    async def check_range(self, start_date: date, end_date: date) -> ReconciliationReport:
        """
        Per-date and overall reconciliation counts for a date range.

        A date is ``complete`` when nothing is missing and no calculation is
        orphaned, ``missing`` when none of the required calculations exist and
        ``partial`` otherwise. Dates outside retained history, in the future, or
        never ingested and without any rows are ``unknown`` and excluded from
        the totals.
        """
        if end_date < start_date:
            raise ValueError("end_date must be on or after start_date")

        today = self.today or date.today()
        record_counts = await self._record_counts(start_date, end_date)
        missing_counts = await self._missing_counts(start_date, end_date)
        orphan_counts = await self.orphan_counts(start_date, end_date)
        ingested = await self._ingested_dates(start_date, end_date)
        model_count = len(self.miner_models)

        report = ReconciliationReport(
            start_date=start_date, end_date=end_date, miner_models=list(self.miner_models)
        )
        for day in _date_range(start_date, end_date):
            counts = record_counts.get(day)
            was_ingested = ingested.get(day) in (IngestionStatus.COMPLETED, IngestionStatus.PARTIAL)
            orphans = orphan_counts.get(day, 0)
            has_rows = counts is not None or orphans > 0

            if day < self.history_start_date or day > today or not (has_rows or was_ingested):
                entry = DateReconciliation(settlement_date=day, status=ReconciliationStatus.UNKNOWN)
                report.unknown_dates += 1
                report.dates.append(entry)
                continue

            required = counts["required"] if counts else 0
            expected = required * model_count
            missing = missing_counts.get(day, 0)
            actual = expected - missing

            if missing == 0 and orphans == 0:
                status = ReconciliationStatus.COMPLETE
                report.complete_dates += 1
            elif missing and actual == 0:
                status = ReconciliationStatus.MISSING
                report.missing_dates += 1
            else:
                status = ReconciliationStatus.PARTIAL
                report.partial_dates += 1

            report.dates.append(
                DateReconciliation(
                    settlement_date=day,
                    status=status,
                    curtailment_records=counts["total"] if counts else 0,
                    expected_calculations=expected,
                    actual_calculations=actual,
                    missing_calculations=missing,
                    orphaned_calculations=orphans,
                    completion_percentage=_percentage(actual, expected),
                )
            )
            report.expected_calculations += expected
            report.actual_calculations += actual
            report.missing_calculations += missing
            report.orphaned_calculations += orphans

        report.total_dates = len(report.dates)
        report.completion_percentage = _percentage(
            report.actual_calculations, report.expected_calculations
        )

        logger.info(
            "Reconciliation checked",
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
            complete_dates=report.complete_dates,
            partial_dates=report.partial_dates,
            missing_dates=report.missing_dates,
            unknown_dates=report.unknown_dates,
            missing_calculations=report.missing_calculations,
            orphaned_calculations=report.orphaned_calculations,
            completion_percentage=report.completion_percentage,
        )
        return report

    async def require_complete(self, start_date: date, end_date: date) -> ReconciliationReport:
        """Like ``check_range`` but raises ``ReconciliationGap`` when anything is missing or orphaned."""
        report = await self.check_range(start_date, end_date)
        if report.missing_calculations or report.orphaned_calculations:
            gap_dates = [
                d.settlement_date.isoformat()
                for d in report.dates
                if d.missing_calculations or d.orphaned_calculations
            ]
            raise ReconciliationGap(
                report.missing_calculations, gap_dates, orphan_count=report.orphaned_calculations
            )
        return report
