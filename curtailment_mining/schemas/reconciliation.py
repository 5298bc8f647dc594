"""Pydantic schemas for reconciliation reports."""

import enum
from datetime import date
from typing import List

from pydantic import BaseModel, Field


class ReconciliationStatus(str, enum.Enum):
    """Reconciliation state of one settlement date."""
    COMPLETE = "complete"
    PARTIAL = "partial"
    MISSING = "missing"
    UNKNOWN = "unknown"


class MissingCalculation(BaseModel):
    """A curtailment record lacking a mining calculation for one model."""

    settlement_date: date
    settlement_period: int
    farm_id: str
    miner_model: str


class DateReconciliation(BaseModel):
    """Reconciliation counts for one settlement date."""

    settlement_date: date
    status: ReconciliationStatus
    curtailment_records: int = 0
    expected_calculations: int = 0
    actual_calculations: int = 0
    missing_calculations: int = 0
    orphaned_calculations: int = Field(0, description="Calculations whose curtailment record is gone")
    completion_percentage: float = Field(0.0, description="0-100; 100 when nothing is required")


class ReconciliationReport(BaseModel):
    """Reconciliation summary for a date range."""

    start_date: date
    end_date: date
    miner_models: List[str]
    total_dates: int = 0
    complete_dates: int = 0
    partial_dates: int = 0
    missing_dates: int = 0
    unknown_dates: int = 0
    expected_calculations: int = 0
    actual_calculations: int = 0
    missing_calculations: int = 0
    orphaned_calculations: int = 0
    completion_percentage: float = 0.0
    dates: List[DateReconciliation] = Field(default_factory=list)
    skipped_dates: List[date] = Field(
        default_factory=list, description="Dates a fill run had to leave unfilled"
    )

    @property
    def is_fully_reconciled(self) -> bool:
        """True only when no known date is missing or carries orphaned calculations."""
        return (
            self.missing_calculations == 0
            and self.orphaned_calculations == 0
            and self.partial_dates == 0
            and self.missing_dates == 0
        )
