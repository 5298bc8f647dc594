"""Application-wide constants."""

SETTLEMENT_PERIOD_MINUTES = 30
"""Length of one settlement period."""

SETTLEMENT_PERIODS_PER_DAY = 48
"""Settlement periods on a day without a clock change."""

BLOCK_REWARD_BTC = 3.125
"""Block subsidy after the April 2024 halving."""

BLOCK_TIME_SECONDS = 600
"""Target interval between blocks."""

BLOCKS_PER_SETTLEMENT_PERIOD = SETTLEMENT_PERIOD_MINUTES * 60 // BLOCK_TIME_SECONDS

BTC_DECIMAL_PLACES = 8
"""One satoshi."""

ENERGY_DECIMAL_PLACES = 3
PAYMENT_DECIMAL_PLACES = 2
VALUE_DECIMAL_PLACES = 2
"""Pence, for the GBP value of mined Bitcoin."""

# Pagination constants
DEFAULT_MISSING_LIMIT = 1000
MAX_MISSING_LIMIT = 100000
