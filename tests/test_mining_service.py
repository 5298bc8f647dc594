"""Tests for deriving mining calculations from stored curtailment."""

from datetime import date

import pytest
from conftest import add_calculation, add_curtailment
from sqlalchemy import func, select

from curtailment_mining.core.exceptions import InvalidDifficulty
from curtailment_mining.models import MiningCalculation
from curtailment_mining.schemas.reconciliation import ReconciliationStatus
from curtailment_mining.services.btc_price import BitcoinPriceTable
from curtailment_mining.services.difficulty import DifficultyTable
from curtailment_mining.services.mining_calculator import (
    calculate_bitcoin,
    get_miner_profile,
    value_btc,
)
from curtailment_mining.services.mining_service import MiningCalculationService
from curtailment_mining.services.reconciliation_service import ReconciliationChecker

SETTLEMENT_DATE = date(2025, 3, 28)
DIFFICULTY = 1.1e14
MODELS = ["S19J_PRO", "S9", "M20S"]


@pytest.fixture
def difficulty_table() -> DifficultyTable:
    return DifficultyTable.constant(DIFFICULTY)


async def calculations(session, settlement_date=SETTLEMENT_DATE):
    rows = await session.execute(
        select(MiningCalculation)
        .where(MiningCalculation.settlement_date == settlement_date)
        .order_by(
            MiningCalculation.settlement_period,
            MiningCalculation.farm_id,
            MiningCalculation.miner_model,
        )
        .execution_options(populate_existing=True)
    )
    return list(rows.scalars().all())


async def test_process_date_writes_one_row_per_record_and_model(test_session, difficulty_table):
    await add_curtailment(test_session, SETTLEMENT_DATE, 1, "T_FARM-1", -100.0)
    await add_curtailment(test_session, SETTLEMENT_DATE, 2, "T_FARM-2", -50.0)

    service = MiningCalculationService(test_session, difficulty_table, MODELS)
    result = await service.process_date(SETTLEMENT_DATE)

    assert result.records_considered == 2
    assert result.calculations_written == 6
    assert result.difficulty == DIFFICULTY

    rows = await calculations(test_session)
    assert len(rows) == 6
    first = next(r for r in rows if r.farm_id == "T_FARM-1" and r.miner_model == "S19J_PRO")
    expected = calculate_bitcoin(100.0, get_miner_profile("S19J_PRO"), DIFFICULTY).bitcoin_mined
    assert float(first.bitcoin_mined) == pytest.approx(expected, abs=1e-8)
    assert expected > 0

    s9_total = sum(
        calculate_bitcoin(mwh, get_miner_profile("S9"), DIFFICULTY).bitcoin_mined
        for mwh in (100.0, 50.0)
    )
    assert result.bitcoin_by_model["S9"] == pytest.approx(s9_total, abs=1e-8)


async def test_rerun_replaces_calculations(test_session, difficulty_table):
    await add_curtailment(test_session, SETTLEMENT_DATE, 1, "T_FARM-1", -100.0)
    # Stale row for a record that no longer exists
    await add_calculation(test_session, SETTLEMENT_DATE, 9, "T_FARM-9", "S9")
    await test_session.commit()

    service = MiningCalculationService(test_session, difficulty_table, MODELS)
    await service.process_date(SETTLEMENT_DATE)
    await service.process_date(SETTLEMENT_DATE)

    rows = await calculations(test_session)
    assert [(r.settlement_period, r.farm_id) for r in rows] == [(1, "T_FARM-1")] * 3


async def test_other_models_are_left_alone(test_session, difficulty_table):
    await add_curtailment(test_session, SETTLEMENT_DATE, 1, "T_FARM-1", -100.0)
    await add_calculation(test_session, SETTLEMENT_DATE, 1, "T_FARM-1", "M20S", bitcoin_mined=0.5)
    await test_session.commit()

    service = MiningCalculationService(test_session, difficulty_table, ["S9"])
    await service.process_date(SETTLEMENT_DATE)

    rows = await calculations(test_session)
    assert {r.miner_model: float(r.bitcoin_mined) for r in rows}["M20S"] == 0.5
    assert len(rows) == 2


async def test_zero_volume_records_are_skipped(test_session, difficulty_table):
    await add_curtailment(test_session, SETTLEMENT_DATE, 1, "T_FARM-1", 0.0)
    await add_curtailment(test_session, SETTLEMENT_DATE, 2, "T_FARM-1", -10.0)

    service = MiningCalculationService(test_session, difficulty_table, ["S9"])
    result = await service.process_date(SETTLEMENT_DATE)

    assert result.records_considered == 1
    assert [r.settlement_period for r in await calculations(test_session)] == [2]


async def test_missing_difficulty_keeps_existing_rows(test_session):
    await add_curtailment(test_session, SETTLEMENT_DATE, 1, "T_FARM-1", -100.0)
    await add_calculation(test_session, SETTLEMENT_DATE, 1, "T_FARM-1", "S9", bitcoin_mined=0.25)
    await test_session.commit()

    table = DifficultyTable({date(2025, 4, 1): DIFFICULTY})
    service = MiningCalculationService(test_session, table, ["S9"])

    with pytest.raises(InvalidDifficulty):
        await service.process_date(SETTLEMENT_DATE)

    rows = await calculations(test_session)
    assert [float(r.bitcoin_mined) for r in rows] == [0.25]


async def test_fill_missing_completes_reconciliation(test_session, difficulty_table):
    for period in range(1, 5):
        await add_curtailment(test_session, SETTLEMENT_DATE, period, "T_FARM-1", -20.0)
        await add_calculation(test_session, SETTLEMENT_DATE, period, "T_FARM-1", "S19J_PRO")
    await add_curtailment(test_session, date(2025, 3, 29), 1, "T_FARM-2", -5.0)
    await test_session.commit()

    service = MiningCalculationService(test_session, difficulty_table, ["S19J_PRO", "S9"])
    filled = await service.fill_missing(SETTLEMENT_DATE, date(2025, 3, 29))

    assert filled.calculations_written == 6
    assert filled.skipped_dates == []
    checker = ReconciliationChecker(test_session, ["S19J_PRO", "S9"], today=date(2025, 4, 30))
    assert await checker.find_missing(SETTLEMENT_DATE, date(2025, 3, 29)) == []

    # Existing rows were not recalculated
    kept = [r for r in await calculations(test_session) if r.miner_model == "S19J_PRO"]
    assert {float(r.bitcoin_mined) for r in kept} == {0.001}

    again = await service.fill_missing(SETTLEMENT_DATE, date(2025, 3, 29))
    assert again.calculations_written == 0
    assert again.dates_filled == []


async def test_fill_missing_batches_large_dates(test_session, difficulty_table):
    for period in range(1, 49):
        for farm in ("T_FARM-1", "T_FARM-2", "T_FARM-3"):
            await add_curtailment(test_session, SETTLEMENT_DATE, period, farm, -1.0)
    await test_session.commit()

    service = MiningCalculationService(test_session, difficulty_table, MODELS)
    filled = await service.fill_missing(SETTLEMENT_DATE, SETTLEMENT_DATE)

    assert filled.calculations_written == 48 * 3 * 3
    count = await test_session.scalar(select(func.count()).select_from(MiningCalculation))
    assert count == 432


async def test_fill_missing_continues_past_date_without_difficulty(test_session):
    early, later = date(2025, 2, 27), date(2025, 3, 2)
    await add_curtailment(test_session, early, 1, "T_FARM-1", -10.0)
    await add_curtailment(test_session, later, 1, "T_FARM-1", -10.0)
    await test_session.commit()

    table = DifficultyTable({date(2025, 3, 1): DIFFICULTY})
    service = MiningCalculationService(test_session, table, ["S19J_PRO"])
    filled = await service.fill_missing(early, later)

    assert filled.skipped_dates == [early]
    assert filled.dates_filled == [later]
    assert filled.calculations_written == 1
    assert len(filled.errors) == 1

    checker = ReconciliationChecker(test_session, ["S19J_PRO"], today=date(2025, 4, 30))
    assert (await checker.check_date(later)).status == ReconciliationStatus.COMPLETE
    assert (await checker.check_date(early)).status == ReconciliationStatus.MISSING


async def test_fill_missing_removes_orphaned_calculations(test_session, difficulty_table):
    await add_curtailment(test_session, SETTLEMENT_DATE, 1, "T_FARM-1", -10.0)
    await add_calculation(test_session, SETTLEMENT_DATE, 1, "T_FARM-1", "S19J_PRO")
    # Period 2 was never curtailed, period 3 was curtailed to zero
    await add_calculation(test_session, SETTLEMENT_DATE, 2, "T_FARM-1", "S19J_PRO", bitcoin_mined=0.5)
    await add_curtailment(test_session, SETTLEMENT_DATE, 3, "T_FARM-1", 0.0)
    await add_calculation(test_session, SETTLEMENT_DATE, 3, "T_FARM-1", "S19J_PRO", bitcoin_mined=0.2)
    # Not a configured model, so not ours to remove
    await add_calculation(test_session, SETTLEMENT_DATE, 2, "T_FARM-1", "M20S", bitcoin_mined=0.3)
    await test_session.commit()

    service = MiningCalculationService(test_session, difficulty_table, ["S19J_PRO"])
    filled = await service.fill_missing(SETTLEMENT_DATE, SETTLEMENT_DATE)

    assert filled.orphans_removed == 2
    assert filled.calculations_written == 0
    assert filled.dates_filled == [SETTLEMENT_DATE]
    rows = await calculations(test_session)
    assert [(r.settlement_period, r.miner_model) for r in rows] == [(1, "S19J_PRO"), (2, "M20S")]

    checker = ReconciliationChecker(test_session, ["S19J_PRO"], today=date(2025, 4, 30))
    assert (await checker.check_date(SETTLEMENT_DATE)).status == ReconciliationStatus.COMPLETE


async def test_process_date_values_calculations(test_session, difficulty_table):
    await add_curtailment(test_session, SETTLEMENT_DATE, 1, "T_FARM-1", -100.0)
    await add_curtailment(test_session, SETTLEMENT_DATE, 2, "T_FARM-2", -50.0)

    prices = BitcoinPriceTable({date(2025, 3, 1): 62000.0})
    service = MiningCalculationService(test_session, difficulty_table, ["S9"], price_table=prices)
    result = await service.process_date(SETTLEMENT_DATE)

    assert result.btc_price == 62000.0
    rows = await calculations(test_session)
    for row in rows:
        assert float(row.btc_price) == 62000.0
        assert float(row.value_at_mining) == value_btc(float(row.bitcoin_mined), 62000.0)
    assert result.value_by_model["S9"] == pytest.approx(
        sum(float(r.value_at_mining) for r in rows), abs=0.005
    )


async def test_process_date_without_price_is_not_valued(test_session, difficulty_table):
    await add_curtailment(test_session, SETTLEMENT_DATE, 1, "T_FARM-1", -100.0)

    prices = BitcoinPriceTable({date(2025, 4, 1): 62000.0})
    service = MiningCalculationService(test_session, difficulty_table, ["S9"], price_table=prices)
    result = await service.process_date(SETTLEMENT_DATE)

    assert result.btc_price is None
    assert not result.value_by_model
    rows = await calculations(test_session)
    assert [(r.btc_price, r.value_at_mining) for r in rows] == [(None, None)]
