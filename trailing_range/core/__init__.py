from trailing_range.core.adapters.BaseAdapter import BaseAdapter
from trailing_range.core.errors import TrailingRangeError
from trailing_range.core.models import (
    ChainLink,
    Migration,
    MigrationStatus,
    Position,
    YieldRecord,
)

__all__ = [
    "BaseAdapter",
    "TrailingRangeError",
    "ChainLink",
    "Migration",
    "MigrationStatus",
    "Position",
    "YieldRecord",
]
