from __future__ import annotations

from dataclasses import asdict, dataclass, field
from decimal import Decimal
from enum import StrEnum
from typing import Any

from trailing_range.core.errors import ValidationError


class MigrationStatus(StrEnum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: frozenset[MigrationStatus] = frozenset(
    {MigrationStatus.COMPLETED, MigrationStatus.FAILED, MigrationStatus.CANCELLED}
)


@dataclass(frozen=True)
class Position:
    chain_id: int
    pool_id: str
    tick_spacing: int
    lower_tick: int
    upper_tick: int
    liquidity: int
    rebalance_threshold_bps: int
    range_width_ticks: int
    last_rebalance_height: int
    cross_chain_enabled: bool = True
    active: bool = True
    # Tokens withdrawn but not consumed by the last deposit
    reserve0: int = 0
    reserve1: int = 0

    def __post_init__(self) -> None:
        if self.lower_tick >= self.upper_tick:
            raise ValidationError(
                "malformed tick range",
                pool_id=self.pool_id,
                lower_tick=self.lower_tick,
                upper_tick=self.upper_tick,
            )
        if self.liquidity < 0:
            raise ValidationError("liquidity must be non-negative", pool_id=self.pool_id)

    @property
    def midpoint_x2(self) -> int:
        """Twice the range midpoint, kept integral for exact drift checks."""
        return self.lower_tick + self.upper_tick

    def drift_x2(self, current_tick: int) -> int:
        return abs(2 * int(current_tick) - self.midpoint_x2)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class YieldRecord:
    chain_id: int
    token_pair_id: str
    apy_bps: int
    tvl: int
    gas_price: int
    observed_at: int

    def age(self, now: int) -> int:
        return int(now) - self.observed_at

    def is_fresh(self, now: int, freshness_window_s: int) -> bool:
        return self.age(now) <= freshness_window_s

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ChainLink:
    chain_id: int
    bridge_endpoint: str
    gas_price_threshold: int
    yield_threshold_bps: int
    base_gas_units: int
    active: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Migration:
    id: str
    initiator: str
    from_chain: int
    to_chain: int
    token_pair_id: str
    amount0: int
    amount1: int
    nonce: int
    created_at: int
    status: MigrationStatus
    estimated_cost_native: Decimal
    expected_yield_native: Decimal
    updated_at: int
    final_amount0: int | None = None
    final_amount1: int | None = None
    failure_reason: str | None = None
    bridge_ref: str | None = None
    history: tuple[MigrationStatus, ...] = field(default=())

    @property
    def total_amount(self) -> int:
        return self.amount0 + self.amount1

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = str(self.status)
        data["history"] = [str(s) for s in self.history]
        data["estimated_cost_native"] = str(self.estimated_cost_native)
        data["expected_yield_native"] = str(self.expected_yield_native)
        return data
