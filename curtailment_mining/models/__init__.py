"""Database models package."""

from .curtailment_record import CurtailmentRecord
from .ingestion_log import IngestionLog, IngestionStatus
from .mining_calculation import MiningCalculation
from .summary import (
    BitcoinDailySummary,
    BitcoinMonthlySummary,
    BitcoinYearlySummary,
    DailySummary,
    MonthlySummary,
    YearlySummary,
)

__all__ = [
    "BitcoinDailySummary",
    "BitcoinMonthlySummary",
    "BitcoinYearlySummary",
    "CurtailmentRecord",
    "DailySummary",
    "IngestionLog",
    "IngestionStatus",
    "MiningCalculation",
    "MonthlySummary",
    "YearlySummary",
]
