"""Tests for the network difficulty table."""

from datetime import date, datetime

import pytest

from curtailment_mining.core.exceptions import InvalidDifficulty
from curtailment_mining.services.difficulty import DifficultyTable


@pytest.fixture
def table() -> DifficultyTable:
    return DifficultyTable(
        {
            date(2025, 3, 1): 1.1e14,
            date(2025, 3, 15): 1.12e14,
            date(2025, 4, 1): 1.13e14,
        }
    )


def test_lookup_uses_latest_entry_on_or_before_date(table):
    assert table.get(date(2025, 3, 1)) == 1.1e14
    assert table.get(date(2025, 3, 14)) == 1.1e14
    assert table.get(date(2025, 3, 15)) == 1.12e14
    assert table.get(date(2025, 12, 31)) == 1.13e14


def test_lookup_accepts_datetime_and_iso_string(table):
    assert table.get(datetime(2025, 3, 20, 13, 30)) == 1.12e14
    assert table.get("2025-04-02") == 1.13e14


def test_date_before_first_entry_has_no_default(table):
    with pytest.raises(InvalidDifficulty):
        table.get(date(2025, 2, 28))


def test_empty_table_raises():
    with pytest.raises(InvalidDifficulty):
        DifficultyTable({}).get(date(2025, 3, 1))


def test_constant_table():
    table = DifficultyTable.constant(1.1e14)
    assert table.get(date(2019, 1, 1)) == 1.1e14
    assert table.get(date(2030, 1, 1)) == 1.1e14


@pytest.mark.parametrize("value", [0, -1.0, float("nan")])
def test_invalid_entries_rejected_on_load(value):
    with pytest.raises(InvalidDifficulty):
        DifficultyTable({date(2025, 3, 1): value})
    with pytest.raises(InvalidDifficulty):
        DifficultyTable.constant(value)


def test_from_csv(tmp_path):
    path = tmp_path / "difficulty.csv"
    path.write_text(
        "date,difficulty\n"
        '2025-03-01,"110,000,000,000,000"\n'
        "2025-03-15,112000000000000\n"
        "2025-03-15,112500000000000\n"
    )

    table = DifficultyTable.from_csv(path)

    assert len(table) == 2
    assert table.get(date(2025, 3, 10)) == 1.1e14
    # Last value published for a day wins
    assert table.get(date(2025, 3, 15)) == 1.125e14


def test_from_csv_missing_column(tmp_path):
    path = tmp_path / "difficulty.csv"
    path.write_text("day,value\n2025-03-01,1\n")

    with pytest.raises(ValueError, match="missing columns"):
        DifficultyTable.from_csv(path)
