"""Mining potential endpoints."""

from fastapi import APIRouter

from curtailment_mining.schemas.mining import (
    MinerModelInfo,
    MinerModelList,
    MiningCalculationRequest,
    MiningCalculationResponse,
)
from curtailment_mining.services.mining_calculator import (
    MINER_PROFILES,
    calculate_bitcoin,
    get_miner_profile,
)

router = APIRouter()


@router.get("/miner-models", response_model=MinerModelList)
async def list_miner_models() -> MinerModelList:
    """List supported miner hardware profiles."""
    return MinerModelList(
        miner_models=[
            MinerModelInfo(name=p.name, hashrate_th=p.hashrate_th, power_w=p.power_w)
            for p in MINER_PROFILES.values()
        ]
    )


@router.post("/calculate", response_model=MiningCalculationResponse)
async def calculate(request: MiningCalculationRequest) -> MiningCalculationResponse:
    """
    Bitcoin one settlement period of curtailed energy could have mined.

    Invalid difficulty, volume or price and unknown miner models are answered
    with 422. The yield is valued only when a price is sent.
    """
    profile = get_miner_profile(request.miner_model)
    mining_yield = calculate_bitcoin(
        request.curtailed_mwh, profile, request.difficulty, request.btc_price
    )
    return MiningCalculationResponse(
        curtailed_mwh=request.curtailed_mwh,
        miner_model=profile.name,
        difficulty=request.difficulty,
        bitcoin_mined=mining_yield.bitcoin_mined,
        miner_count=mining_yield.miner_count,
        btc_price=request.btc_price,
        value=mining_yield.value,
    )
