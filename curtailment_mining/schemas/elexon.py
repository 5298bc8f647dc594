"""Pydantic schemas for the Elexon settlement stack API."""

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SettlementStackRecord(BaseModel):
    """One accepted bid or offer from the settlement stack endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., min_length=1, description="BM Unit identifier")
    settlement_date: Optional[date] = Field(None, alias="settlementDate")
    settlement_period: Optional[int] = Field(None, alias="settlementPeriod", ge=1, le=50)
    volume: float = Field(..., allow_inf_nan=False, description="Accepted volume in MWh")
    original_price: float = Field(..., alias="originalPrice", allow_inf_nan=False)
    final_price: Optional[float] = Field(None, alias="finalPrice", allow_inf_nan=False)
    so_flag: bool = Field(False, alias="soFlag")
    cadl_flag: Optional[bool] = Field(None, alias="cadlFlag")
    lead_party_name: Optional[str] = Field(None, alias="leadPartyName")


class SettlementStackResponse(BaseModel):
    """Envelope returned by ``/balancing/settlement/stack/all/{side}/{date}/{period}``."""

    model_config = ConfigDict(extra="ignore")

    data: List[SettlementStackRecord]
