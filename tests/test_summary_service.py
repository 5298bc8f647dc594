"""Tests for daily, monthly and yearly rollups."""

from datetime import date

import pytest
from conftest import add_calculation, add_curtailment
from sqlalchemy import delete, select, update

from curtailment_mining.core.exceptions import AggregateInconsistency, NotFoundException
from curtailment_mining.models import (
    BitcoinDailySummary,
    CurtailmentRecord,
    DailySummary,
    MiningCalculation,
    MonthlySummary,
    YearlySummary,
)
from curtailment_mining.services.summary_service import SummaryService

SETTLEMENT_DATE = date(2025, 3, 28)
MODELS = ["S19J_PRO", "S9"]


@pytest.fixture
def service(test_session) -> SummaryService:
    return SummaryService(test_session, MODELS)


async def snapshot(session):
    """Every rollup row as plain tuples, freshly loaded."""
    result = {}
    for model in (DailySummary, MonthlySummary, YearlySummary, BitcoinDailySummary):
        rows = await session.execute(
            select(model.__table__).execution_options(populate_existing=True)
        )
        result[model.__tablename__] = sorted(tuple(row) for row in rows)
    return result


async def test_daily_total_is_sum_of_magnitudes(test_session, service):
    for period in range(1, 49):
        await add_curtailment(test_session, SETTLEMENT_DATE, period, "T_FARM-1", -100.0)

    await service.rebuild_for_date(SETTLEMENT_DATE)

    daily = await service.get_daily_summary(SETTLEMENT_DATE)
    assert daily.period == "2025-03-28"
    assert daily.total_curtailed_energy == 4800.0
    assert daily.total_payment == -240000.0

    monthly = await service.get_monthly_summary("2025-03")
    yearly = await service.get_yearly_summary("2025")
    assert monthly.total_curtailed_energy == 4800.0
    assert yearly.total_curtailed_energy == 4800.0


async def test_rebuild_is_idempotent(test_session, service):
    await add_curtailment(test_session, SETTLEMENT_DATE, 1, "T_FARM-1", -10.5)
    await add_calculation(test_session, SETTLEMENT_DATE, 1, "T_FARM-1", "S9", bitcoin_mined=0.0125)

    await service.rebuild_for_date(SETTLEMENT_DATE)
    first = await snapshot(test_session)
    await service.rebuild_for_date(SETTLEMENT_DATE)
    second = await snapshot(test_session)

    assert first == second
    assert len(first["daily_summaries"]) == 1


async def test_rollups_chain_across_months(test_session, service):
    days = {
        date(2025, 1, 15): -12.5,
        date(2025, 1, 16): -7.25,
        date(2025, 2, 1): -30.0,
        date(2025, 12, 31): -0.5,
    }
    for day, volume in days.items():
        await add_curtailment(test_session, day, 1, "T_FARM-1", volume)
        await add_curtailment(test_session, day, 2, "T_FARM-2", volume)

    counts = await service.rebuild_range(date(2025, 1, 1), date(2025, 12, 31))
    assert counts == {"days": 365, "months": 12, "years": 1}

    daily_rows = (await test_session.execute(select(DailySummary))).scalars().all()
    monthly_rows = (await test_session.execute(select(MonthlySummary))).scalars().all()
    yearly = await service.get_yearly_summary("2025")

    assert len(daily_rows) == 4
    assert sorted(r.year_month for r in monthly_rows) == ["2025-01", "2025-02", "2025-12"]
    daily_total = sum(float(r.total_curtailed_energy) for r in daily_rows)
    monthly_total = sum(float(r.total_curtailed_energy) for r in monthly_rows)
    assert daily_total == monthly_total == yearly.total_curtailed_energy == 100.5

    january = await service.get_monthly_summary("2025-01")
    assert january.total_curtailed_energy == 39.5

    report = await service.check_consistency(2025)
    assert report.consistent
    assert report.inconsistencies == []


async def test_rollup_without_constituents_is_removed(test_session, service):
    await add_curtailment(test_session, SETTLEMENT_DATE, 1, "T_FARM-1", -10.0)
    await service.rebuild_for_date(SETTLEMENT_DATE)

    await test_session.execute(delete(CurtailmentRecord))
    await test_session.commit()
    await service.rebuild_for_date(SETTLEMENT_DATE)

    with pytest.raises(NotFoundException):
        await service.get_daily_summary(SETTLEMENT_DATE)
    with pytest.raises(NotFoundException):
        await service.get_monthly_summary("2025-03")
    with pytest.raises(NotFoundException):
        await service.get_yearly_summary("2025")


async def test_bitcoin_rollups_per_model(test_session, service):
    await add_curtailment(test_session, SETTLEMENT_DATE, 1, "T_FARM-1", -10.0)
    await add_curtailment(test_session, SETTLEMENT_DATE, 2, "T_FARM-1", -10.0)
    await add_calculation(test_session, SETTLEMENT_DATE, 1, "T_FARM-1", "S9", bitcoin_mined=0.125)
    await add_calculation(test_session, SETTLEMENT_DATE, 2, "T_FARM-1", "S9", bitcoin_mined=0.25)
    await add_calculation(test_session, SETTLEMENT_DATE, 1, "T_FARM-1", "S19J_PRO", bitcoin_mined=0.5)
    await add_calculation(test_session, SETTLEMENT_DATE, 2, "T_FARM-1", "S19J_PRO", bitcoin_mined=0.5)
    # Not a configured model; never rolled up
    await add_calculation(test_session, SETTLEMENT_DATE, 1, "T_FARM-1", "M20S", bitcoin_mined=9.0)

    await service.rebuild_for_date(SETTLEMENT_DATE)

    daily = await service.get_daily_summary(SETTLEMENT_DATE)
    yearly = await service.get_yearly_summary("2025")
    assert daily.bitcoin_mined == {"S19J_PRO": 1.0, "S9": 0.375}
    assert yearly.bitcoin_mined == {"S19J_PRO": 1.0, "S9": 0.375}

    # Dropping a model's calculations removes its rollups
    await test_session.execute(delete(MiningCalculation).where(MiningCalculation.miner_model == "S9"))
    await test_session.commit()
    await service.rebuild_for_date(SETTLEMENT_DATE)

    yearly = await service.get_yearly_summary("2025")
    assert yearly.bitcoin_mined == {"S19J_PRO": 1.0}


async def test_consistency_detects_tampered_rollup(test_session, service):
    await add_curtailment(test_session, SETTLEMENT_DATE, 1, "T_FARM-1", -10.0)
    await add_curtailment(test_session, date(2025, 3, 29), 1, "T_FARM-1", -20.0)
    await service.rebuild_range(SETTLEMENT_DATE, date(2025, 3, 29))

    await test_session.execute(
        update(DailySummary)
        .where(DailySummary.summary_date == SETTLEMENT_DATE)
        .values(total_curtailed_energy=11.0)
    )
    await test_session.commit()

    report = await service.check_consistency(2025)

    assert not report.consistent
    daily_issue = next(i for i in report.inconsistencies if i.table == "daily_summaries")
    assert daily_issue.key == "2025-03-28"
    assert daily_issue.column == "total_curtailed_energy"
    assert daily_issue.stored == 11.0
    assert daily_issue.expected == 10.0
    assert daily_issue.delta == 1.0
    assert any(i.table == "monthly_summaries" for i in report.inconsistencies)

    with pytest.raises(AggregateInconsistency) as exc_info:
        await service.assert_consistent(2025)
    assert exc_info.value.inconsistencies[0]["table"] == "daily_summaries"

    # A rebuild restores consistency
    await service.rebuild_range(SETTLEMENT_DATE, date(2025, 3, 29))
    assert (await service.assert_consistent(2025)).consistent


async def test_consistency_reports_missing_rollup(test_session, service):
    await add_curtailment(test_session, SETTLEMENT_DATE, 1, "T_FARM-1", -10.0)
    await test_session.commit()

    report = await service.check_consistency(2025)

    assert [(i.table, i.stored, i.expected) for i in report.inconsistencies] == [
        ("daily_summaries", None, 10.0),
        ("daily_summaries", None, -500.0),
    ]


async def test_farm_breakdown(test_session, service):
    await add_curtailment(test_session, SETTLEMENT_DATE, 1, "T_FARM-1", -5.0)
    await add_curtailment(test_session, SETTLEMENT_DATE, 1, "T_FARM-2", -20.0)
    await add_curtailment(test_session, SETTLEMENT_DATE, 2, "T_FARM-2", -2.5)
    await add_calculation(test_session, SETTLEMENT_DATE, 1, "T_FARM-2", "S9", bitcoin_mined=0.125)
    await add_calculation(test_session, SETTLEMENT_DATE, 2, "T_FARM-2", "S9", bitcoin_mined=0.0625)

    breakdown = await service.farm_breakdown(SETTLEMENT_DATE)

    assert [f.farm_id for f in breakdown.farms] == ["T_FARM-2", "T_FARM-1"]
    top = breakdown.farms[0]
    assert top.curtailed_energy == 22.5
    assert top.payment == -1125.0
    assert top.periods == 2
    assert top.bitcoin_mined == {"S9": 0.1875}
    assert breakdown.farms[1].bitcoin_mined == {}


async def test_orphaned_calculations_are_not_rolled_up(test_session, service):
    await add_curtailment(test_session, SETTLEMENT_DATE, 1, "T_FARM-1", -10.0)
    await add_calculation(test_session, SETTLEMENT_DATE, 1, "T_FARM-1", "S19J_PRO", bitcoin_mined=0.001)
    # No curtailment record behind period 2
    await add_calculation(test_session, SETTLEMENT_DATE, 2, "T_FARM-1", "S19J_PRO", bitcoin_mined=0.5)

    await service.rebuild_for_date(SETTLEMENT_DATE)

    daily = await service.get_daily_summary(SETTLEMENT_DATE)
    assert daily.bitcoin_mined == {"S19J_PRO": 0.001}
    assert (await service.get_yearly_summary("2025")).bitcoin_mined == {"S19J_PRO": 0.001}
    assert (await service.check_consistency(2025)).consistent

    breakdown = await service.farm_breakdown(SETTLEMENT_DATE)
    assert breakdown.farms[0].bitcoin_mined == {"S19J_PRO": 0.001}


async def test_value_at_mining_rolls_up(test_session, service):
    await add_curtailment(test_session, SETTLEMENT_DATE, 1, "T_FARM-1", -10.0)
    await add_curtailment(test_session, date(2025, 4, 2), 1, "T_FARM-1", -10.0)
    await add_calculation(
        test_session, SETTLEMENT_DATE, 1, "T_FARM-1", "S9", bitcoin_mined=0.125, value_at_mining=7500.0
    )
    await add_calculation(
        test_session, date(2025, 4, 2), 1, "T_FARM-1", "S9", bitcoin_mined=0.25, value_at_mining=15250.5
    )
    # Not valued; contributes Bitcoin but no value
    await add_calculation(test_session, SETTLEMENT_DATE, 1, "T_FARM-1", "S19J_PRO", bitcoin_mined=0.5)

    await service.rebuild_range(SETTLEMENT_DATE, date(2025, 4, 2))

    daily = await service.get_daily_summary(SETTLEMENT_DATE)
    assert daily.value_at_mining == {"S9": 7500.0}
    assert (await service.get_monthly_summary("2025-04")).value_at_mining == {"S9": 15250.5}
    yearly = await service.get_yearly_summary("2025")
    assert yearly.value_at_mining == {"S9": 22750.5}
    assert yearly.bitcoin_mined == {"S19J_PRO": 0.5, "S9": 0.375}
    assert (await service.check_consistency(2025)).consistent

    await test_session.execute(
        update(MiningCalculation)
        .where(MiningCalculation.settlement_date == SETTLEMENT_DATE, MiningCalculation.miner_model == "S9")
        .values(value_at_mining=8000.0)
    )
    await test_session.commit()

    report = await service.check_consistency(2025)
    issue = next(i for i in report.inconsistencies if i.table == "bitcoin_daily_summaries")
    assert (issue.column, issue.stored, issue.expected) == ("value_at_mining", 7500.0, 8000.0)
