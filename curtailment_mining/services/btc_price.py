"""Bitcoin price lookup used to value mined coin."""

import bisect
from datetime import date, datetime
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Union

import pandas as pd
import structlog

from curtailment_mining.services.mining_calculator import validate_btc_price

logger = structlog.get_logger()


class BitcoinPriceTable:
    """
    Daily BTC/GBP prices, loaded once and passed to whoever values calculations.

    Like the difficulty table, a lookup answers the latest price on or before
    the requested date. Unlike difficulty, a missing price is not an error:
    the calculation is stored without a value.
    """

    def __init__(self, entries: Mapping[date, float], fixed: Optional[float] = None):
        self._dates: List[date] = sorted(entries)
        self._values: Dict[date, float] = {d: validate_btc_price(v) for d, v in entries.items()}
        self._fixed = validate_btc_price(fixed) if fixed is not None else None

    @classmethod
    def constant(cls, price: float) -> "BitcoinPriceTable":
        return cls({}, fixed=price)

    @classmethod
    def from_csv(cls, path: Union[str, Path]) -> "BitcoinPriceTable":
        """Load a CSV with ``date`` and ``price_gbp`` columns."""
        df = pd.read_csv(path, dtype={"price_gbp": str})
        missing = {"date", "price_gbp"} - set(df.columns)
        if missing:
            raise ValueError(f"Price file {path} is missing columns: {sorted(missing)}")

        df["date"] = pd.to_datetime(df["date"], errors="raise").dt.date
        df["price_gbp"] = pd.to_numeric(
            df["price_gbp"].str.replace(",", "", regex=False), errors="raise"
        )
        df = df.drop_duplicates(subset="date", keep="last")

        entries = dict(zip(df["date"], df["price_gbp"].astype(float)))
        logger.info("Loaded bitcoin price table", path=str(path), entries=len(entries))
        return cls(entries)

    def __len__(self) -> int:
        return len(self._dates)

    def find(self, settlement_date: Union[date, datetime, str]) -> Optional[float]:
        """Price in effect on ``settlement_date``, or ``None`` before the first entry."""
        if self._fixed is not None:
            return self._fixed

        if isinstance(settlement_date, str):
            settlement_date = date.fromisoformat(settlement_date)
        elif isinstance(settlement_date, datetime):
            settlement_date = settlement_date.date()

        idx = bisect.bisect_right(self._dates, settlement_date) - 1
        if idx < 0:
            return None
        return self._values[self._dates[idx]]


def load_price_table(
    path: Optional[Union[str, Path]], btc_price: Optional[float] = None
) -> Optional[BitcoinPriceTable]:
    """A constant price when one is given, else the price file, else no valuation."""
    if btc_price is not None:
        return BitcoinPriceTable.constant(btc_price)
    if path:
        return BitcoinPriceTable.from_csv(path)
    logger.info("No bitcoin price source configured; calculations will not be valued")
    return None
