"""Pydantic schemas for mining potential calculations."""

from typing import List, Optional

from pydantic import BaseModel, Field


class MinerModelInfo(BaseModel):
    """Supported hardware profile."""

    name: str
    hashrate_th: float = Field(..., description="Hash rate in TH/s")
    power_w: float = Field(..., description="Power draw in watts")


class MiningCalculationRequest(BaseModel):
    """Input for a single mining potential calculation."""

    curtailed_mwh: float = Field(..., description="Curtailed energy in MWh for one settlement period")
    miner_model: str = Field("S19J_PRO", description="Miner model name")
    difficulty: float = Field(..., description="Network difficulty")
    btc_price: Optional[float] = Field(None, description="GBP per BTC; omit to skip valuation")


class MiningCalculationResponse(BaseModel):
    """Result of a single mining potential calculation."""

    curtailed_mwh: float
    miner_model: str
    difficulty: float
    bitcoin_mined: float = Field(..., description="Expected BTC, 8 decimal places")
    miner_count: int = Field(..., description="Miners the energy could run for the period")
    btc_price: Optional[float] = None
    value: Optional[float] = Field(None, description="GBP value of bitcoin_mined, when priced")


class MinerModelList(BaseModel):
    """All supported hardware profiles."""

    miner_models: List[MinerModelInfo]
