"""Pydantic schemas for rollup summaries."""

from datetime import date
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class SummaryResponse(BaseModel):
    """Curtailment and Bitcoin totals for a day, month or year."""

    period: str = Field(..., description="YYYY-MM-DD, YYYY-MM or YYYY")
    total_curtailed_energy: float = Field(..., description="MWh")
    total_payment: float = Field(..., description="GBP")
    bitcoin_mined: Dict[str, float] = Field(default_factory=dict, description="BTC per miner model")
    value_at_mining: Dict[str, float] = Field(
        default_factory=dict, description="GBP per miner model, for models with priced calculations"
    )


class FarmBreakdown(BaseModel):
    """One farm's share of a day's curtailment."""

    farm_id: str
    lead_party_name: Optional[str] = None
    curtailed_energy: float
    payment: float
    periods: int
    bitcoin_mined: Dict[str, float] = Field(default_factory=dict)


class DailyFarmBreakdown(BaseModel):
    """Per-farm curtailment for one settlement date."""

    summary_date: date
    farms: List[FarmBreakdown]


class RollupInconsistency(BaseModel):
    """A rollup value that differs from the sum of its constituents."""

    table: str
    key: str
    miner_model: Optional[str] = None
    column: str
    stored: Optional[float] = None
    expected: Optional[float] = None
    delta: Optional[float] = None


class ConsistencyReport(BaseModel):
    """Rollup-versus-constituent comparison for one year."""

    year: str
    consistent: bool
    checked: int
    inconsistencies: List[RollupInconsistency] = Field(default_factory=list)
