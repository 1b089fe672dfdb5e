"""Pool Adapter - reads ticks and moves liquidity in a concentrated-liquidity pool."""

from .adapter import PoolAdapter

__all__ = ["PoolAdapter"]
