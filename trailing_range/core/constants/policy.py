from typing import Final

BPS_DENOMINATOR: Final[int] = 10_000

# Rebalancing
DEFAULT_REBALANCE_THRESHOLD_BPS: Final[int] = 100  # 1%
DEFAULT_RANGE_WIDTH_TICKS: Final[int] = 60
DEFAULT_COOLDOWN_BLOCKS: Final[int] = 10

# Yield comparison
DEFAULT_FRESHNESS_WINDOW_S: Final[int] = 60 * 60

# Migration profitability (30-day linear projection, 10% safety buffer)
DEFAULT_HORIZON_DAYS: Final[int] = 30
DAYS_PER_YEAR: Final[int] = 365
DEFAULT_PROFIT_BUFFER_BPS: Final[int] = 1_000
DEFAULT_BASE_GAS_UNITS: Final[int] = 300_000
DEFAULT_GAS_PRICE_THRESHOLD: Final[int] = 50 * 10**9  # 50 gwei
DEFAULT_YIELD_THRESHOLD_BPS: Final[int] = 100

# Migration bounds, in native units of the summed token amounts
DEFAULT_MIN_MIGRATION_AMOUNT: Final[int] = 1
DEFAULT_MAX_MIGRATION_AMOUNT: Final[int] = 10**30
