__version__ = "0.1.0"

from trailing_range.controller import PriceEventOutcome, RangeController
from trailing_range.core import (
    BaseAdapter,
    Migration,
    MigrationStatus,
    Position,
    TrailingRangeError,
)

__all__ = [
    "RangeController",
    "PriceEventOutcome",
    "BaseAdapter",
    "Migration",
    "MigrationStatus",
    "Position",
    "TrailingRangeError",
]
