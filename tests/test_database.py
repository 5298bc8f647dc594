"""Tests for database helpers."""

import gc
from datetime import date

from curtailment_mining.core import database
from curtailment_mining.core.database import local_date_lock

SETTLEMENT_DATE = date(2025, 3, 28)


def registered_dates():
    return [key[1] for key in list(database._date_locks.keys())]


async def test_same_lock_while_held():
    lock = local_date_lock(SETTLEMENT_DATE)
    async with lock:
        assert local_date_lock(SETTLEMENT_DATE) is lock
        assert local_date_lock(date(2025, 3, 29)) is not lock


async def test_released_locks_are_forgotten():
    for day in range(1, 29):
        async with local_date_lock(date(2025, 2, day)):
            pass
    gc.collect()

    assert not [d for d in registered_dates() if d.year == 2025 and d.month == 2]


async def test_lock_kept_while_referenced():
    lock = local_date_lock(SETTLEMENT_DATE)
    gc.collect()

    assert SETTLEMENT_DATE in registered_dates()
    del lock
    gc.collect()
    assert SETTLEMENT_DATE not in registered_dates()
