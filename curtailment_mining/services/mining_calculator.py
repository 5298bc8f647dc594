"""
Bitcoin mining potential of curtailed energy.

Converts the energy of one curtailment record into the number of miners it
could have powered for one settlement period, and the expected Bitcoin those
miners would have earned at the given network difficulty. When a Bitcoin price
is supplied the yield is also valued in GBP. Pure functions only: difficulty,
price and hardware profiles are passed in by the caller.
"""

import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional

from curtailment_mining.core.constants import (
    BLOCK_REWARD_BTC,
    BLOCK_TIME_SECONDS,
    BLOCKS_PER_SETTLEMENT_PERIOD,
    BTC_DECIMAL_PLACES,
    SETTLEMENT_PERIOD_MINUTES,
    VALUE_DECIMAL_PLACES,
)
from curtailment_mining.core.exceptions import (
    InvalidBitcoinPrice,
    InvalidDifficulty,
    InvalidVolume,
    UnknownMinerModel,
)

HASHES_PER_DIFFICULTY_UNIT = 2 ** 32
TERAHASH = 1e12
SATOSHI = Decimal(1).scaleb(-BTC_DECIMAL_PLACES)


@dataclass(frozen=True)
class MinerProfile:
    """A modelled ASIC: hash rate in TH/s and power draw in watts."""

    name: str
    hashrate_th: float
    power_w: float

    @property
    def energy_per_period_kwh(self) -> float:
        """Energy one unit draws over a settlement period."""
        return (self.power_w / 1000) * (SETTLEMENT_PERIOD_MINUTES / 60)


@dataclass(frozen=True)
class MiningYield:
    """Result of one calculation."""

    bitcoin_mined: float
    miner_count: int
    value: Optional[float] = None


MINER_PROFILES: Dict[str, MinerProfile] = {
    "S19J_PRO": MinerProfile("S19J_PRO", hashrate_th=100, power_w=3050),
    "S9": MinerProfile("S9", hashrate_th=13.5, power_w=1323),
    "M20S": MinerProfile("M20S", hashrate_th=68, power_w=3360),
}


def get_miner_profile(miner_model: str) -> MinerProfile:
    """Look up a supported miner model by name (case-insensitive)."""
    profile = MINER_PROFILES.get(miner_model.upper())
    if profile is None:
        raise UnknownMinerModel(miner_model)
    return profile


def resolve_miner_profiles(miner_models: Iterable[str]) -> List[MinerProfile]:
    """Resolve model names, keeping order and dropping repeats."""
    profiles: List[MinerProfile] = []
    for name in miner_models:
        profile = get_miner_profile(name)
        if profile not in profiles:
            profiles.append(profile)
    return profiles


def validate_difficulty(difficulty) -> float:
    """Return ``difficulty`` as a float, or raise ``InvalidDifficulty``."""
    if difficulty is None:
        raise InvalidDifficulty("Network difficulty is missing")
    try:
        value = float(difficulty)
    except (TypeError, ValueError):
        raise InvalidDifficulty(f"Network difficulty is not a number: {difficulty!r}")
    if not math.isfinite(value) or value <= 0:
        raise InvalidDifficulty(f"Network difficulty must be positive and finite, got {difficulty!r}")
    return value


def validate_btc_price(price) -> float:
    """Return ``price`` as a float, or raise ``InvalidBitcoinPrice``."""
    try:
        value = float(price)
    except (TypeError, ValueError):
        raise InvalidBitcoinPrice(f"Bitcoin price is not a number: {price!r}")
    if not math.isfinite(value) or value <= 0:
        raise InvalidBitcoinPrice(f"Bitcoin price must be positive and finite, got {price!r}")
    return value


def network_hashrate_th(difficulty: float) -> float:
    """Implied network hash rate in TH/s for a difficulty."""
    return difficulty * HASHES_PER_DIFFICULTY_UNIT / BLOCK_TIME_SECONDS / TERAHASH


def round_btc(value: float) -> float:
    """Round half-up to whole satoshis."""
    return float(Decimal(repr(value)).quantize(SATOSHI, rounding=ROUND_HALF_UP))


def value_btc(bitcoin_mined: float, btc_price: float) -> float:
    """GBP value of a Bitcoin amount, rounded to pence."""
    value = Decimal(repr(bitcoin_mined)) * Decimal(repr(btc_price))
    return float(value.quantize(Decimal(1).scaleb(-VALUE_DECIMAL_PLACES), rounding=ROUND_HALF_UP))


def calculate_bitcoin(
    curtailed_mwh, profile: MinerProfile, difficulty, btc_price: Optional[float] = None
) -> MiningYield:
    """
    Expected Bitcoin for one settlement period of curtailed energy.

    Args:
        curtailed_mwh: Curtailed energy in MWh; callers pass the magnitude
        profile: Hardware profile to model
        difficulty: Network difficulty in effect on the settlement date
        btc_price: GBP price of one Bitcoin; without it the yield is not valued

    Returns:
        MiningYield with Bitcoin rounded to 8 decimal places, the whole
        number of miners the energy could run for the period and, when a
        price was given, the value of the rounded Bitcoin in GBP

    Raises:
        InvalidDifficulty: difficulty missing, non-positive or not finite
        InvalidVolume: volume not a finite number
        InvalidBitcoinPrice: price given but non-positive or not finite
    """
    difficulty_value = validate_difficulty(difficulty)
    price = validate_btc_price(btc_price) if btc_price is not None else None

    try:
        mwh = float(curtailed_mwh)
    except (TypeError, ValueError):
        raise InvalidVolume(f"Curtailed volume is not a number: {curtailed_mwh!r}")
    if not math.isfinite(mwh):
        raise InvalidVolume(f"Curtailed volume must be finite, got {curtailed_mwh!r}")

    if mwh <= 0:
        return MiningYield(bitcoin_mined=0.0, miner_count=0, value=0.0 if price is not None else None)

    curtailed_kwh = mwh * 1000
    miner_count = math.floor(curtailed_kwh / profile.energy_per_period_kwh)

    total_hashrate_th = miner_count * profile.hashrate_th
    network_share = total_hashrate_th / network_hashrate_th(difficulty_value)
    bitcoin_mined = round_btc(network_share * BLOCK_REWARD_BTC * BLOCKS_PER_SETTLEMENT_PERIOD)

    return MiningYield(
        bitcoin_mined=bitcoin_mined,
        miner_count=miner_count,
        value=value_btc(bitcoin_mined, price) if price is not None else None,
    )
