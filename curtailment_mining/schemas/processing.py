"""Result objects returned to pipeline drivers."""

from datetime import date
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class PeriodFailure(BaseModel):
    """A settlement period that could not be ingested."""

    settlement_period: int
    error_type: str
    message: str


class IngestionResult(BaseModel):
    """Outcome of ingesting one settlement date."""

    settlement_date: date
    periods_requested: int = 0
    periods_processed: int = 0
    periods_failed: int = 0
    records_fetched: int = 0
    records_skipped: int = 0
    records_stored: int = 0
    duplicates_merged: int = 0
    total_volume: float = 0.0
    total_payment: float = 0.0
    failures: List[PeriodFailure] = Field(default_factory=list)


class DerivationResult(BaseModel):
    """Outcome of deriving mining calculations for one date."""

    settlement_date: date
    difficulty: Optional[float] = None
    btc_price: Optional[float] = Field(None, description="GBP; None when the date could not be valued")
    records_considered: int = 0
    calculations_written: int = 0
    bitcoin_by_model: Dict[str, float] = Field(default_factory=dict)
    value_by_model: Dict[str, float] = Field(default_factory=dict)


class FillResult(BaseModel):
    """Outcome of filling missing mining calculations over a date range."""

    start_date: date
    end_date: date
    calculations_written: int = 0
    orphans_removed: int = 0
    dates_filled: List[date] = Field(default_factory=list)
    skipped_dates: List[date] = Field(default_factory=list, description="No difficulty known")
    errors: List[str] = Field(default_factory=list)


class DateProcessingResult(BaseModel):
    """What a driver reports after processing one settlement date."""

    settlement_date: date
    success: bool = False
    ingestion: Optional[IngestionResult] = None
    derivation: Optional[DerivationResult] = None
    records_processed: int = 0
    records_skipped: int = 0
    records_failed: int = 0
    missing_calculations: int = 0
    reconciliation_percentage: float = 0.0
    errors: List[str] = Field(default_factory=list)
