"""Network difficulty lookup table."""

import bisect
from datetime import date, datetime
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Union

import pandas as pd
import structlog

from curtailment_mining.core.exceptions import InvalidDifficulty
from curtailment_mining.services.mining_calculator import validate_difficulty

logger = structlog.get_logger()


class DifficultyTable:
    """
    Historical network difficulty, loaded once and passed to whoever needs it.

    A lookup returns the latest difficulty published on or before the requested
    date. Dates earlier than the first entry are an error, never a default.
    """

    def __init__(self, entries: Mapping[date, float], fixed: Optional[float] = None):
        self._dates: List[date] = sorted(entries)
        self._values: Dict[date, float] = {d: validate_difficulty(v) for d, v in entries.items()}
        self._fixed = validate_difficulty(fixed) if fixed is not None else None

    @classmethod
    def constant(cls, difficulty: float) -> "DifficultyTable":
        """Table answering the same difficulty for every date."""
        return cls({}, fixed=difficulty)

    @classmethod
    def from_csv(cls, path: Union[str, Path]) -> "DifficultyTable":
        """
        Load a CSV with ``date`` and ``difficulty`` columns.

        Values may carry thousands separators. Rows with an unparseable date
        or difficulty abort the load.
        """
        df = pd.read_csv(path, dtype={"difficulty": str})
        missing = {"date", "difficulty"} - set(df.columns)
        if missing:
            raise ValueError(f"Difficulty file {path} is missing columns: {sorted(missing)}")

        df["date"] = pd.to_datetime(df["date"], errors="raise").dt.date
        df["difficulty"] = pd.to_numeric(
            df["difficulty"].str.replace(",", "", regex=False), errors="raise"
        )
        # Keep the last value published for a day
        df = df.drop_duplicates(subset="date", keep="last")

        entries = dict(zip(df["date"], df["difficulty"].astype(float)))
        logger.info("Loaded difficulty table", path=str(path), entries=len(entries))
        return cls(entries)

    def __len__(self) -> int:
        return len(self._dates)

    def get(self, settlement_date: Union[date, datetime, str]) -> float:
        """Difficulty in effect on ``settlement_date``."""
        if self._fixed is not None:
            return self._fixed

        if isinstance(settlement_date, str):
            settlement_date = date.fromisoformat(settlement_date)
        elif isinstance(settlement_date, datetime):
            settlement_date = settlement_date.date()

        idx = bisect.bisect_right(self._dates, settlement_date) - 1
        if idx < 0:
            raise InvalidDifficulty(f"No network difficulty known on or before {settlement_date}")
        return self._values[self._dates[idx]]
