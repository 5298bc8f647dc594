"""End-to-end tests for date processing."""

from datetime import date

import httpx
import pytest
from conftest import add_calculation, add_curtailment, stack_record

from curtailment_mining.schemas.reconciliation import ReconciliationStatus
from curtailment_mining.services.btc_price import BitcoinPriceTable
from curtailment_mining.services.difficulty import DifficultyTable
from curtailment_mining.services.pipeline import DateProcessor
from curtailment_mining.services.summary_service import SummaryService

SETTLEMENT_DATE = date(2025, 3, 28)
MODELS = ["S19J_PRO", "S9", "M20S"]


@pytest.fixture
def processor(test_session, make_client, bmu_mapping) -> DateProcessor:
    return DateProcessor(
        test_session,
        make_client(),
        bmu_mapping,
        DifficultyTable.constant(1.1e14),
        MODELS,
    )


def publish_full_day(stack_server, volume=-100.0):
    for period in range(1, 49):
        stack_server.stacks[("bid", period)] = [stack_record("T_FARM-1", volume)]


async def test_full_day_processes_and_reconciles(test_session, processor, stack_server):
    publish_full_day(stack_server)

    result = await processor.process_date(SETTLEMENT_DATE)

    assert result.success
    assert result.errors == []
    assert result.records_processed == 48
    assert result.records_failed == 0
    assert result.missing_calculations == 0
    assert result.reconciliation_percentage == 100.0
    assert result.derivation.calculations_written == 144

    summaries = SummaryService(test_session, MODELS)
    daily = await summaries.get_daily_summary(SETTLEMENT_DATE)
    assert daily.total_curtailed_energy == 4800.0
    assert set(daily.bitcoin_mined) == set(MODELS)
    assert daily.bitcoin_mined["S19J_PRO"] == pytest.approx(
        result.derivation.bitcoin_by_model["S19J_PRO"], abs=1e-8
    )


async def test_rerun_leaves_rollups_unchanged(test_session, processor, stack_server):
    publish_full_day(stack_server)

    await processor.process_date(SETTLEMENT_DATE)
    summaries = SummaryService(test_session, MODELS)
    first = await summaries.get_yearly_summary("2025")
    await processor.process_date(SETTLEMENT_DATE)
    second = await summaries.get_yearly_summary("2025")

    assert first == second
    assert second.total_curtailed_energy == 4800.0


async def test_persistently_failing_period_fails_the_date(test_session, processor, stack_server):
    publish_full_day(stack_server)
    stack_server.responses[("bid", 5)] = [httpx.Response(503) for _ in range(3)]

    result = await processor.process_date(SETTLEMENT_DATE)

    assert not result.success
    assert result.records_failed == 1
    assert result.records_processed == 47
    assert "period 5" in result.errors[0]

    daily = await SummaryService(test_session, MODELS).get_daily_summary(SETTLEMENT_DATE)
    assert daily.total_curtailed_energy == 4700.0


async def test_missing_difficulty_reported(test_session, make_client, bmu_mapping, stack_server):
    publish_full_day(stack_server)
    processor = DateProcessor(
        test_session,
        make_client(),
        bmu_mapping,
        DifficultyTable({date(2025, 4, 1): 1.1e14}),
        MODELS,
    )

    result = await processor.process_date(SETTLEMENT_DATE)

    assert not result.success
    assert result.derivation is None
    assert result.missing_calculations == 144
    assert result.reconciliation_percentage == 0.0


async def test_reconcile_range_fills_gaps_and_rebuilds(test_session, processor):
    for period in range(1, 5):
        await add_curtailment(test_session, SETTLEMENT_DATE, period, "T_FARM-1", -10.0)
        await add_calculation(test_session, SETTLEMENT_DATE, period, "T_FARM-1", "S19J_PRO")
    await test_session.commit()

    report = await processor.reconcile_range(SETTLEMENT_DATE, SETTLEMENT_DATE)

    assert report.is_fully_reconciled
    assert report.expected_calculations == 12
    daily = await SummaryService(test_session, MODELS).get_daily_summary(SETTLEMENT_DATE)
    assert daily.total_curtailed_energy == 40.0
    assert daily.bitcoin_mined["S19J_PRO"] == 0.004


async def test_reconcile_range_reports_dates_without_difficulty(
    test_session, make_client, bmu_mapping
):
    early, later = date(2025, 2, 27), date(2025, 3, 2)
    await add_curtailment(test_session, early, 1, "T_FARM-1", -10.0)
    await add_curtailment(test_session, later, 1, "T_FARM-1", -10.0)
    await test_session.commit()
    processor = DateProcessor(
        test_session,
        make_client(),
        bmu_mapping,
        DifficultyTable({date(2025, 3, 1): 1.1e14}),
        ["S19J_PRO"],
    )

    report = await processor.reconcile_range(early, later)

    assert report.skipped_dates == [early]
    assert not report.is_fully_reconciled
    statuses = {d.settlement_date: d.status for d in report.dates}
    assert statuses[early] == ReconciliationStatus.MISSING
    assert statuses[later] == ReconciliationStatus.COMPLETE

    summaries = SummaryService(test_session, ["S19J_PRO"])
    assert set((await summaries.get_daily_summary(later)).bitcoin_mined) == {"S19J_PRO"}


async def test_reconcile_range_drops_orphans_from_rollups(test_session, processor):
    await add_curtailment(test_session, SETTLEMENT_DATE, 1, "T_FARM-1", -10.0)
    for model in MODELS:
        await add_calculation(test_session, SETTLEMENT_DATE, 1, "T_FARM-1", model)
        await add_calculation(test_session, SETTLEMENT_DATE, 2, "T_FARM-1", model, bitcoin_mined=0.5)
    await test_session.commit()

    report = await processor.reconcile_range(SETTLEMENT_DATE, SETTLEMENT_DATE)

    assert report.is_fully_reconciled
    assert report.orphaned_calculations == 0
    daily = await SummaryService(test_session, MODELS).get_daily_summary(SETTLEMENT_DATE)
    assert daily.bitcoin_mined == {model: 0.001 for model in MODELS}


async def test_priced_processing_values_rollups(test_session, make_client, bmu_mapping, stack_server):
    publish_full_day(stack_server)
    processor = DateProcessor(
        test_session,
        make_client(),
        bmu_mapping,
        DifficultyTable.constant(1.1e14),
        MODELS,
        price_table=BitcoinPriceTable.constant(65000.0),
    )

    result = await processor.process_date(SETTLEMENT_DATE)

    assert result.success
    assert result.derivation.btc_price == 65000.0
    daily = await SummaryService(test_session, MODELS).get_daily_summary(SETTLEMENT_DATE)
    assert set(daily.value_at_mining) == set(MODELS)
    assert daily.value_at_mining["S9"] == pytest.approx(
        result.derivation.value_by_model["S9"], abs=0.01
    )
    assert daily.value_at_mining["S9"] == pytest.approx(daily.bitcoin_mined["S9"] * 65000.0, rel=1e-3)
