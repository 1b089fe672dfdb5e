from __future__ import annotations

from abc import abstractmethod
from typing import Any

from trailing_range.core.adapters.BaseAdapter import BaseAdapter
from trailing_range.core.adapters.decorators import status_tuple
from trailing_range.core.constants import ADAPTER_POOL
from trailing_range.core.utils.tick_math import MAX_TICK, MIN_TICK


class PoolAdapter(BaseAdapter):
    """Boundary to a concentrated-liquidity pool on one chain.

    Concrete adapters implement the ``read_*``/``apply_*`` hooks; callers use the
    ``status_tuple`` wrapped methods and branch on the ``ok`` flag.
    """

    adapter_type: str = ADAPTER_POOL

    def __init__(self, chain_id: int, config: dict[str, Any] | None = None):
        super().__init__("pool_adapter", config)
        self.chain_id = int(chain_id)

    @abstractmethod
    def read_current_tick(self, pool_id: str) -> int: ...

    @abstractmethod
    def read_tick_spacing(self, pool_id: str) -> int: ...

    @abstractmethod
    def apply_liquidity_delta(
        self, pool_id: str, lower_tick: int, upper_tick: int, liquidity_delta: int
    ) -> tuple[int, int]:
        """Add (positive delta) or remove (negative delta) liquidity.

        Returns the token amounts consumed on add or released on remove.
        """

    @status_tuple
    def current_tick(self, pool_id: str) -> int:
        tick = int(self.read_current_tick(pool_id))
        if tick < MIN_TICK or tick > MAX_TICK:
            raise ValueError(f"pool {pool_id} reported tick {tick} outside bounds")
        return tick

    @status_tuple
    def tick_spacing(self, pool_id: str) -> int:
        spacing = int(self.read_tick_spacing(pool_id))
        if spacing <= 0:
            raise ValueError(f"pool {pool_id} reported tick spacing {spacing}")
        return spacing

    @status_tuple
    def modify_liquidity(
        self, pool_id: str, lower_tick: int, upper_tick: int, liquidity_delta: int
    ) -> tuple[int, int]:
        if lower_tick >= upper_tick:
            raise ValueError(f"invalid range [{lower_tick}, {upper_tick})")
        amount0, amount1 = self.apply_liquidity_delta(
            pool_id, int(lower_tick), int(upper_tick), int(liquidity_delta)
        )
        return int(amount0), int(amount1)
