"""Daily, monthly and yearly rollups of curtailment and mining potential."""

import calendar
from collections import defaultdict
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from curtailment_mining.core.config import get_settings
from curtailment_mining.core.constants import (
    BTC_DECIMAL_PLACES,
    ENERGY_DECIMAL_PLACES,
    PAYMENT_DECIMAL_PLACES,
    VALUE_DECIMAL_PLACES,
)
from curtailment_mining.core.database import build_upsert
from curtailment_mining.core.exceptions import AggregateInconsistency, NotFoundException
from curtailment_mining.models.curtailment_record import CurtailmentRecord
from curtailment_mining.models.mining_calculation import MiningCalculation
from curtailment_mining.models.summary import (
    BitcoinDailySummary,
    BitcoinMonthlySummary,
    BitcoinYearlySummary,
    DailySummary,
    MonthlySummary,
    YearlySummary,
)
from curtailment_mining.schemas.summary import (
    ConsistencyReport,
    DailyFarmBreakdown,
    FarmBreakdown,
    RollupInconsistency,
    SummaryResponse,
)
from curtailment_mining.services.mining_calculator import resolve_miner_profiles
from curtailment_mining.services.reconciliation_service import calculation_source_clause

logger = structlog.get_logger()

ENERGY_COLUMNS = (
    ("total_curtailed_energy", ENERGY_DECIMAL_PLACES),
    ("total_payment", PAYMENT_DECIMAL_PLACES),
)


def _round(value, places: int) -> float:
    return round(float(value or 0), places)


def _round_optional(value, places: int) -> Optional[float]:
    return None if value is None else round(float(value), places)


def _month_bounds(year: int, month: int) -> Tuple[date, date]:
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


def _year_month(value: date) -> str:
    return value.strftime("%Y-%m")


class SummaryService:
    """
    Rebuilds rollups from their constituents.

    Daily rows sum curtailment records, monthly rows sum daily rows and yearly
    rows sum monthly rows; the Bitcoin rollups follow the same chain starting
    from mining calculations that still have a curtailment record behind them.
    A rollup with no constituents is removed rather than stored as zero.
    """

    def __init__(self, db: AsyncSession, miner_models: Optional[Sequence[str]] = None):
        settings = get_settings()
        self.db = db
        self.miner_models = [
            p.name for p in resolve_miner_profiles(miner_models or settings.MINER_MODELS)
        ]

    # Energy rollups

    async def _store_energy_rollup(self, model, key_column: str, key, count: int, energy, payment):
        key_attr = getattr(model, key_column)
        if not count:
            await self.db.execute(delete(model).where(key_attr == key))
            return None

        now = datetime.utcnow()
        row = {
            key_column: key,
            "total_curtailed_energy": _round(energy, ENERGY_DECIMAL_PLACES),
            "total_payment": _round(payment, PAYMENT_DECIMAL_PLACES),
            "created_at": now,
            "last_updated": now,
        }
        await self.db.execute(
            build_upsert(
                self.db,
                model,
                [row],
                index_elements=[key_column],
                update_columns=["total_curtailed_energy", "total_payment", "last_updated"],
                only_if_changed=True,
            )
        )
        return row

    async def _rebuild_daily(self, summary_date: date) -> Optional[Dict]:
        totals = (
            await self.db.execute(
                select(
                    func.count(),
                    func.sum(func.abs(CurtailmentRecord.volume)),
                    func.sum(CurtailmentRecord.payment),
                ).where(CurtailmentRecord.settlement_date == summary_date)
            )
        ).one()
        return await self._store_energy_rollup(DailySummary, "summary_date", summary_date, *totals)

    async def _rebuild_monthly(self, year: int, month: int) -> Optional[Dict]:
        first, last = _month_bounds(year, month)
        totals = (
            await self.db.execute(
                select(
                    func.count(),
                    func.sum(DailySummary.total_curtailed_energy),
                    func.sum(DailySummary.total_payment),
                ).where(DailySummary.summary_date >= first, DailySummary.summary_date <= last)
            )
        ).one()
        return await self._store_energy_rollup(
            MonthlySummary, "year_month", f"{year:04d}-{month:02d}", *totals
        )

    async def _rebuild_yearly(self, year: int) -> Optional[Dict]:
        totals = (
            await self.db.execute(
                select(
                    func.count(),
                    func.sum(MonthlySummary.total_curtailed_energy),
                    func.sum(MonthlySummary.total_payment),
                ).where(MonthlySummary.year_month.like(f"{year:04d}-%"))
            )
        ).one()
        return await self._store_energy_rollup(YearlySummary, "year", f"{year:04d}", *totals)

    # Bitcoin rollups

    async def _store_bitcoin_rollups(
        self, model, key_column: str, key, sums: Dict[str, Tuple]
    ) -> Dict[str, float]:
        key_attr = getattr(model, key_column)
        absent = [m for m in self.miner_models if m not in sums]
        if absent:
            await self.db.execute(
                delete(model).where(key_attr == key, model.miner_model.in_(absent))
            )

        now = datetime.utcnow()
        rows = [
            {
                key_column: key,
                "miner_model": miner_model,
                "bitcoin_mined": _round(sums[miner_model][0], BTC_DECIMAL_PLACES),
                "value_at_mining": _round_optional(sums[miner_model][1], VALUE_DECIMAL_PLACES),
                "created_at": now,
                "updated_at": now,
            }
            for miner_model in self.miner_models
            if miner_model in sums
        ]
        if rows:
            await self.db.execute(
                build_upsert(
                    self.db,
                    model,
                    rows,
                    index_elements=[key_column, "miner_model"],
                    update_columns=["bitcoin_mined", "value_at_mining", "updated_at"],
                    only_if_changed=True,
                )
            )
        return {row["miner_model"]: row["bitcoin_mined"] for row in rows}

    def _bitcoin_sums_query(self, model):
        return select(
            model.miner_model, func.sum(model.bitcoin_mined), func.sum(model.value_at_mining)
        ).where(model.miner_model.in_(self.miner_models))

    async def _bitcoin_sums(self, model, *criteria) -> Dict[str, Tuple]:
        rows = await self.db.execute(
            self._bitcoin_sums_query(model).where(*criteria).group_by(model.miner_model)
        )
        return {miner_model: (total, value) for miner_model, total, value in rows}

    async def _rebuild_bitcoin_daily(self, summary_date: date) -> Dict[str, float]:
        # Calculations whose curtailment record is gone are not counted
        rows = await self.db.execute(
            self._bitcoin_sums_query(MiningCalculation)
            .join(CurtailmentRecord, calculation_source_clause())
            .where(MiningCalculation.settlement_date == summary_date)
            .group_by(MiningCalculation.miner_model)
        )
        sums = {miner_model: (total, value) for miner_model, total, value in rows}
        return await self._store_bitcoin_rollups(BitcoinDailySummary, "summary_date", summary_date, sums)

    async def _rebuild_bitcoin_monthly(self, year: int, month: int) -> Dict[str, float]:
        first, last = _month_bounds(year, month)
        sums = await self._bitcoin_sums(
            BitcoinDailySummary,
            BitcoinDailySummary.summary_date >= first,
            BitcoinDailySummary.summary_date <= last,
        )
        return await self._store_bitcoin_rollups(
            BitcoinMonthlySummary, "year_month", f"{year:04d}-{month:02d}", sums
        )

    async def _rebuild_bitcoin_yearly(self, year: int) -> Dict[str, float]:
        sums = await self._bitcoin_sums(
            BitcoinMonthlySummary, BitcoinMonthlySummary.year_month.like(f"{year:04d}-%")
        )
        return await self._store_bitcoin_rollups(BitcoinYearlySummary, "year", f"{year:04d}", sums)

    # Public rebuild operations

    async def _commit(self, operation: str, **context) -> None:
        try:
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error("Failed to store rollups", operation=operation, error=str(e), **context)
            raise

    async def rebuild_daily(self, summary_date: date) -> Optional[Dict]:
        """Recompute the daily energy and Bitcoin rollups for one date."""
        try:
            row = await self._rebuild_daily(summary_date)
            await self._rebuild_bitcoin_daily(summary_date)
        except Exception:
            await self.db.rollback()
            raise
        await self._commit("rebuild_daily", summary_date=summary_date.isoformat())
        return row

    async def rebuild_monthly(self, year: int, month: int) -> Optional[Dict]:
        """Recompute the monthly rollups from stored daily rollups."""
        try:
            row = await self._rebuild_monthly(year, month)
            await self._rebuild_bitcoin_monthly(year, month)
        except Exception:
            await self.db.rollback()
            raise
        await self._commit("rebuild_monthly", year=year, month=month)
        return row

    async def rebuild_yearly(self, year: int) -> Optional[Dict]:
        """Recompute the yearly rollups from stored monthly rollups."""
        try:
            row = await self._rebuild_yearly(year)
            await self._rebuild_bitcoin_yearly(year)
        except Exception:
            await self.db.rollback()
            raise
        await self._commit("rebuild_yearly", year=year)
        return row

    async def rebuild_for_date(self, summary_date: date) -> None:
        """Cascade a date's change up through its month and year."""
        await self.rebuild_daily(summary_date)
        await self.rebuild_monthly(summary_date.year, summary_date.month)
        await self.rebuild_yearly(summary_date.year)
        logger.info("Rollups rebuilt", summary_date=summary_date.isoformat())

    async def rebuild_range(self, start_date: date, end_date: date) -> Dict[str, int]:
        """
        Rebuild every daily rollup in a range, then each touched month and year.

        Returns:
            Counts of days, months and years rebuilt
        """
        if end_date < start_date:
            raise ValueError("end_date must be on or after start_date")

        months = set()
        day = start_date
        days = 0
        while day <= end_date:
            await self.rebuild_daily(day)
            months.add((day.year, day.month))
            days += 1
            day = date.fromordinal(day.toordinal() + 1)

        for year, month in sorted(months):
            await self.rebuild_monthly(year, month)
        years = sorted({year for year, _ in months})
        for year in years:
            await self.rebuild_yearly(year)

        logger.info(
            "Rollup range rebuilt",
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
            days=days,
            months=len(months),
            years=len(years),
        )
        return {"days": days, "months": len(months), "years": len(years)}

    # Reads

    async def _bitcoin_for(self, model, key_column: str, key) -> Dict[str, Dict[str, float]]:
        rows = await self.db.execute(
            select(model.miner_model, model.bitcoin_mined, model.value_at_mining)
            .where(getattr(model, key_column) == key)
            .order_by(model.miner_model)
        )
        bitcoin: Dict[str, float] = {}
        values: Dict[str, float] = {}
        for miner_model, mined, value in rows:
            bitcoin[miner_model] = float(mined)
            if value is not None:
                values[miner_model] = float(value)
        return {"bitcoin_mined": bitcoin, "value_at_mining": values}

    async def get_daily_summary(self, summary_date: date) -> SummaryResponse:
        row = await self.db.get(DailySummary, summary_date, populate_existing=True)
        if row is None:
            raise NotFoundException(f"No daily summary for {summary_date.isoformat()}")
        return SummaryResponse(
            period=summary_date.isoformat(),
            total_curtailed_energy=float(row.total_curtailed_energy),
            total_payment=float(row.total_payment),
            **await self._bitcoin_for(BitcoinDailySummary, "summary_date", summary_date),
        )

    async def get_monthly_summary(self, year_month: str) -> SummaryResponse:
        row = await self.db.get(MonthlySummary, year_month, populate_existing=True)
        if row is None:
            raise NotFoundException(f"No monthly summary for {year_month}")
        return SummaryResponse(
            period=year_month,
            total_curtailed_energy=float(row.total_curtailed_energy),
            total_payment=float(row.total_payment),
            **await self._bitcoin_for(BitcoinMonthlySummary, "year_month", year_month),
        )

    async def get_yearly_summary(self, year: str) -> SummaryResponse:
        row = await self.db.get(YearlySummary, year, populate_existing=True)
        if row is None:
            raise NotFoundException(f"No yearly summary for {year}")
        return SummaryResponse(
            period=year,
            total_curtailed_energy=float(row.total_curtailed_energy),
            total_payment=float(row.total_payment),
            **await self._bitcoin_for(BitcoinYearlySummary, "year", year),
        )

    async def farm_breakdown(self, summary_date: date) -> DailyFarmBreakdown:
        """Per-farm curtailment and mining potential for one date, largest first."""
        energy_rows = await self.db.execute(
            select(
                CurtailmentRecord.farm_id,
                func.max(CurtailmentRecord.lead_party_name),
                func.sum(func.abs(CurtailmentRecord.volume)),
                func.sum(CurtailmentRecord.payment),
                func.count(),
            )
            .where(CurtailmentRecord.settlement_date == summary_date)
            .group_by(CurtailmentRecord.farm_id)
        )
        bitcoin_rows = await self.db.execute(
            select(
                MiningCalculation.farm_id,
                MiningCalculation.miner_model,
                func.sum(MiningCalculation.bitcoin_mined),
            )
            .join(CurtailmentRecord, calculation_source_clause())
            .where(
                MiningCalculation.settlement_date == summary_date,
                MiningCalculation.miner_model.in_(self.miner_models),
            )
            .group_by(MiningCalculation.farm_id, MiningCalculation.miner_model)
        )
        bitcoin: Dict[str, Dict[str, float]] = defaultdict(dict)
        for farm_id, miner_model, total in bitcoin_rows:
            bitcoin[farm_id][miner_model] = _round(total, BTC_DECIMAL_PLACES)

        farms = [
            FarmBreakdown(
                farm_id=farm_id,
                lead_party_name=lead_party_name,
                curtailed_energy=_round(energy, ENERGY_DECIMAL_PLACES),
                payment=_round(payment, PAYMENT_DECIMAL_PLACES),
                periods=periods,
                bitcoin_mined=bitcoin.get(farm_id, {}),
            )
            for farm_id, lead_party_name, energy, payment, periods in energy_rows
        ]
        farms.sort(key=lambda f: (-f.curtailed_energy, f.farm_id))
        return DailyFarmBreakdown(summary_date=summary_date, farms=farms)

    # Consistency

    async def check_consistency(self, year: int) -> ConsistencyReport:
        """
        Compare every stored rollup for a year with the sum of its constituents.

        Nothing is rewritten; differences are reported with the stored value,
        the recomputed value and their delta. A rollup present on only one side
        is reported with the other side as ``None``.
        """
        first, last = date(year, 1, 1), date(year, 12, 31)
        year_key = f"{year:04d}"
        inconsistencies: List[RollupInconsistency] = []
        checked = 0

        def compare(table: str, stored: Dict, expected: Dict, columns) -> None:
            nonlocal checked
            for key in sorted(set(stored) | set(expected), key=str):
                label, miner_model = key if isinstance(key, tuple) else (key, None)
                for index, (column, places) in enumerate(columns):
                    checked += 1
                    s = stored.get(key)
                    e = expected.get(key)
                    s_val = None if s is None else _round(s[index], places)
                    e_val = None if e is None else _round(e[index], places)
                    if s_val is not None and e_val is not None:
                        if abs(s_val - e_val) <= 0.5 * 10 ** -places:
                            continue
                    inconsistencies.append(
                        RollupInconsistency(
                            table=table,
                            key=str(label),
                            miner_model=miner_model,
                            column=column,
                            stored=s_val,
                            expected=e_val,
                            delta=(
                                round(s_val - e_val, places)
                                if s_val is not None and e_val is not None
                                else None
                            ),
                        )
                    )

        # Energy: records -> daily -> monthly -> yearly
        record_rows = await self.db.execute(
            select(
                CurtailmentRecord.settlement_date,
                func.sum(func.abs(CurtailmentRecord.volume)),
                func.sum(CurtailmentRecord.payment),
            )
            .where(CurtailmentRecord.settlement_date >= first, CurtailmentRecord.settlement_date <= last)
            .group_by(CurtailmentRecord.settlement_date)
        )
        expected_daily = {d.isoformat(): (energy, payment) for d, energy, payment in record_rows}

        daily_rows = (
            await self.db.execute(
                select(DailySummary)
                .where(
                    DailySummary.summary_date >= first, DailySummary.summary_date <= last
                )
                .execution_options(populate_existing=True)
            )
        ).scalars().all()
        stored_daily = {
            r.summary_date.isoformat(): (r.total_curtailed_energy, r.total_payment) for r in daily_rows
        }
        compare("daily_summaries", stored_daily, expected_daily, ENERGY_COLUMNS)

        expected_monthly: Dict[str, List[float]] = defaultdict(lambda: [0.0, 0.0])
        for r in daily_rows:
            totals = expected_monthly[_year_month(r.summary_date)]
            totals[0] += float(r.total_curtailed_energy)
            totals[1] += float(r.total_payment)

        monthly_rows = (
            await self.db.execute(
                select(MonthlySummary)
                .where(MonthlySummary.year_month.like(f"{year_key}-%"))
                .execution_options(populate_existing=True)
            )
        ).scalars().all()
        stored_monthly = {r.year_month: (r.total_curtailed_energy, r.total_payment) for r in monthly_rows}
        compare("monthly_summaries", stored_monthly, dict(expected_monthly), ENERGY_COLUMNS)

        expected_yearly = {}
        if monthly_rows:
            expected_yearly[year_key] = (
                sum(float(r.total_curtailed_energy) for r in monthly_rows),
                sum(float(r.total_payment) for r in monthly_rows),
            )
        yearly_row = await self.db.get(YearlySummary, year_key, populate_existing=True)
        stored_yearly = {}
        if yearly_row is not None:
            stored_yearly[year_key] = (yearly_row.total_curtailed_energy, yearly_row.total_payment)
        compare("yearly_summaries", stored_yearly, expected_yearly, ENERGY_COLUMNS)

        # Bitcoin: live calculations -> daily -> monthly -> yearly
        btc_columns = (
            ("bitcoin_mined", BTC_DECIMAL_PLACES),
            ("value_at_mining", VALUE_DECIMAL_PLACES),
        )

        calc_rows = await self.db.execute(
            select(
                MiningCalculation.settlement_date,
                MiningCalculation.miner_model,
                func.sum(MiningCalculation.bitcoin_mined),
                func.sum(MiningCalculation.value_at_mining),
            )
            .join(CurtailmentRecord, calculation_source_clause())
            .where(
                MiningCalculation.settlement_date >= first,
                MiningCalculation.settlement_date <= last,
                MiningCalculation.miner_model.in_(self.miner_models),
            )
            .group_by(MiningCalculation.settlement_date, MiningCalculation.miner_model)
        )
        expected_btc_daily = {
            (d.isoformat(), m): (total, value) for d, m, total, value in calc_rows
        }

        btc_daily_rows = (
            await self.db.execute(
                select(BitcoinDailySummary)
                .where(
                    BitcoinDailySummary.summary_date >= first,
                    BitcoinDailySummary.summary_date <= last,
                    BitcoinDailySummary.miner_model.in_(self.miner_models),
                )
                .execution_options(populate_existing=True)
            )
        ).scalars().all()
        stored_btc_daily = {
            (r.summary_date.isoformat(), r.miner_model): (r.bitcoin_mined, r.value_at_mining)
            for r in btc_daily_rows
        }
        compare("bitcoin_daily_summaries", stored_btc_daily, expected_btc_daily, btc_columns)

        expected_btc_monthly: Dict[Tuple[str, str], List[float]] = defaultdict(lambda: [0.0, 0.0])
        for r in btc_daily_rows:
            totals = expected_btc_monthly[(_year_month(r.summary_date), r.miner_model)]
            totals[0] += float(r.bitcoin_mined)
            totals[1] += float(r.value_at_mining or 0)

        btc_monthly_rows = (
            await self.db.execute(
                select(BitcoinMonthlySummary)
                .where(
                    BitcoinMonthlySummary.year_month.like(f"{year_key}-%"),
                    BitcoinMonthlySummary.miner_model.in_(self.miner_models),
                )
                .execution_options(populate_existing=True)
            )
        ).scalars().all()
        stored_btc_monthly = {
            (r.year_month, r.miner_model): (r.bitcoin_mined, r.value_at_mining)
            for r in btc_monthly_rows
        }
        compare("bitcoin_monthly_summaries", stored_btc_monthly, dict(expected_btc_monthly), btc_columns)

        expected_btc_yearly: Dict[Tuple[str, str], List[float]] = defaultdict(lambda: [0.0, 0.0])
        for r in btc_monthly_rows:
            totals = expected_btc_yearly[(year_key, r.miner_model)]
            totals[0] += float(r.bitcoin_mined)
            totals[1] += float(r.value_at_mining or 0)

        btc_yearly_rows = (
            await self.db.execute(
                select(BitcoinYearlySummary)
                .where(
                    BitcoinYearlySummary.year == year_key,
                    BitcoinYearlySummary.miner_model.in_(self.miner_models),
                )
                .execution_options(populate_existing=True)
            )
        ).scalars().all()
        stored_btc_yearly = {
            (r.year, r.miner_model): (r.bitcoin_mined, r.value_at_mining) for r in btc_yearly_rows
        }
        compare("bitcoin_yearly_summaries", stored_btc_yearly, dict(expected_btc_yearly), btc_columns)

        report = ConsistencyReport(
            year=year_key,
            consistent=not inconsistencies,
            checked=checked,
            inconsistencies=inconsistencies,
        )
        if inconsistencies:
            logger.error(
                "Rollups inconsistent with constituents",
                year=year_key,
                inconsistencies=len(inconsistencies),
            )
        else:
            logger.info("Rollups consistent", year=year_key, checked=checked)
        return report

    async def assert_consistent(self, year: int) -> ConsistencyReport:
        """Raise ``AggregateInconsistency`` when any rollup for the year is off."""
        report = await self.check_consistency(year)
        if not report.consistent:
            raise AggregateInconsistency([i.model_dump() for i in report.inconsistencies])
        return report
