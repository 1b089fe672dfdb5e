"""Range re-centering for concentrated-liquidity positions on one chain.

A position trails the price: once the current tick drifts from the range
midpoint by more than the configured threshold, and the cooldown has passed,
all liquidity is pulled and re-deposited around the current tick.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace

from loguru import logger

from trailing_range.adapters.pool_adapter.adapter import PoolAdapter
from trailing_range.core.access import AccessControl, PauseSwitch, Role
from trailing_range.core.config import PolicyConfig
from trailing_range.core.errors import (
    CooldownActive,
    DriftWithinThreshold,
    RebalanceAborted,
    ValidationError,
)
from trailing_range.core.events import (
    EventBus,
    PositionDeactivated,
    PositionOpened,
    PositionRebalanced,
)
from trailing_range.core.locks import KeyedLock
from trailing_range.core.models import Position
from trailing_range.core.utils.tick_math import (
    bps_to_ticks,
    compute_new_range,
    liquidity_at_mid_price,
    liquidity_for_amounts,
    sqrt_price_x96_from_tick,
)


@dataclass(frozen=True)
class PoolSettings:
    rebalance_threshold_bps: int
    range_width_ticks: int
    cross_chain_enabled: bool


class RangeManager:
    def __init__(
        self,
        chain_id: int,
        pool_adapter: PoolAdapter,
        access: AccessControl,
        pause: PauseSwitch,
        *,
        policy: PolicyConfig | None = None,
        events: EventBus | None = None,
    ) -> None:
        self.chain_id = int(chain_id)
        self.pool_adapter = pool_adapter
        self.policy = policy or PolicyConfig()
        self.events = events
        self._access = access
        self._pause = pause
        self._positions: dict[str, Position] = {}
        self._settings: dict[str, PoolSettings] = {}
        self._store_lock = threading.Lock()
        self._locks = KeyedLock("position")
        self.logger = logger.bind(component="RangeManager", chain_id=self.chain_id)

    # ── queries ──────────────────────────────────────────────────────────────

    @property
    def cooldown_blocks(self) -> int:
        return self.policy.cooldown_blocks

    def get_position(self, pool_id: str) -> Position | None:
        with self._store_lock:
            return self._positions.get(pool_id)

    def positions(self) -> list[Position]:
        with self._store_lock:
            return [self._positions[k] for k in sorted(self._positions)]

    def settings_for(self, pool_id: str) -> PoolSettings:
        with self._store_lock:
            settings = self._settings.get(pool_id)
        if settings is not None:
            return settings
        return PoolSettings(
            rebalance_threshold_bps=self.policy.rebalance_threshold_bps,
            range_width_ticks=self.policy.range_width_ticks,
            cross_chain_enabled=self.policy.cross_chain_enabled,
        )

    def cooldown_remaining(self, position: Position, current_height: int) -> int:
        elapsed = int(current_height) - position.last_rebalance_height
        return max(0, self.cooldown_blocks - elapsed)

    def should_rebalance(
        self, position: Position, current_tick: int, current_height: int
    ) -> bool:
        if not position.active:
            return False
        if self.cooldown_remaining(position, current_height) > 0:
            return False
        threshold_ticks = bps_to_ticks(position.rebalance_threshold_bps)
        return position.drift_x2(current_tick) > 2 * threshold_ticks

    def compute_new_range(
        self, current_tick: int, range_width_ticks: int, tick_spacing: int
    ) -> tuple[int, int]:
        return compute_new_range(current_tick, range_width_ticks, tick_spacing)

    # ── admin ────────────────────────────────────────────────────────────────

    def configure_pool(
        self,
        caller: str,
        pool_id: str,
        *,
        rebalance_threshold_bps: int,
        range_width_ticks: int,
        cross_chain_enabled: bool,
    ) -> PoolSettings:
        self._access.require(caller, Role.ADMIN)
        if range_width_ticks <= 0:
            raise ValidationError("range width must be positive", pool_id=pool_id)
        if rebalance_threshold_bps < 0:
            raise ValidationError("threshold must be non-negative", pool_id=pool_id)
        settings = PoolSettings(
            int(rebalance_threshold_bps), int(range_width_ticks), bool(cross_chain_enabled)
        )
        with self._locks.hold(pool_id):
            with self._store_lock:
                self._settings[pool_id] = settings
                position = self._positions.get(pool_id)
                if position is not None:
                    self._positions[pool_id] = replace(
                        position,
                        rebalance_threshold_bps=settings.rebalance_threshold_bps,
                        range_width_ticks=settings.range_width_ticks,
                        cross_chain_enabled=settings.cross_chain_enabled,
                    )
        self.logger.info(f"Configured pool {pool_id}: {settings}")
        return settings

    def deactivate_position(
        self, caller: str, pool_id: str, *, reason: str = "emergency"
    ) -> tuple[int, int]:
        """Pull all liquidity and reserves out of a position and mark it inactive.

        Available while paused. Returns the released token amounts.
        """
        self._access.require(caller, Role.ADMIN)
        with self._locks.hold(pool_id):
            position = self._require_position(pool_id)
            if not position.active:
                raise ValidationError("position already inactive", pool_id=pool_id)
            released0, released1 = position.reserve0, position.reserve1
            if position.liquidity > 0:
                ok, result = self.pool_adapter.modify_liquidity(
                    pool_id, position.lower_tick, position.upper_tick, -position.liquidity
                )
                if not ok:
                    raise RebalanceAborted(
                        f"withdrawal failed: {result}", pool_id=pool_id, step="withdraw"
                    )
                released0 += result[0]
                released1 += result[1]
            self._store(
                replace(position, liquidity=0, active=False, reserve0=0, reserve1=0)
            )
        self.logger.warning(
            f"Deactivated position {pool_id} ({reason}); released {released0}/{released1}"
        )
        if self.events is not None:
            self.events.publish(
                PositionDeactivated(
                    chain_id=self.chain_id,
                    pool_id=pool_id,
                    amount0=released0,
                    amount1=released1,
                    reason=reason,
                )
            )
        return released0, released1

    # ── mutations ────────────────────────────────────────────────────────────

    def open_position(
        self,
        caller: str,
        pool_id: str,
        amount0: int,
        amount1: int,
        current_height: int,
    ) -> Position:
        """Mint the first range of a pool around its current tick.

        An inactive position is re-opened in place; an active one is rejected.
        """
        self._pause.ensure_not_paused("open position")
        self._access.require(caller, Role.ADMIN)
        if amount0 < 0 or amount1 < 0:
            raise ValidationError("amounts must be non-negative", pool_id=pool_id)

        with self._locks.hold(pool_id):
            existing = self.get_position(pool_id)
            if existing is not None and existing.active:
                raise ValidationError("position already exists", pool_id=pool_id)

            tick = self._read_tick(pool_id)
            ok, spacing = self.pool_adapter.tick_spacing(pool_id)
            if not ok:
                raise RebalanceAborted(f"tick spacing unavailable: {spacing}", pool_id=pool_id)

            settings = self.settings_for(pool_id)
            lower, upper = compute_new_range(tick, settings.range_width_ticks, spacing)
            try:
                liquidity, reserve0, reserve1 = self._deposit(
                    pool_id, lower, upper, tick, amount0, amount1
                )
            except RebalanceAborted as exc:
                stranded = exc.context.get("stranded_liquidity", 0)
                if stranded:
                    self._store(
                        self._new_position(
                            pool_id, spacing, lower, upper, stranded, settings, current_height
                        )
                    )
                raise
            position = self._new_position(
                pool_id,
                spacing,
                lower,
                upper,
                liquidity,
                settings,
                current_height,
                reserve0=reserve0,
                reserve1=reserve1,
            )
            self._store(position)

        self.logger.info(f"Opened {pool_id} at [{lower}, {upper}) with L={liquidity}")
        if self.events is not None:
            self.events.publish(
                PositionOpened(
                    chain_id=self.chain_id,
                    pool_id=pool_id,
                    lower_tick=lower,
                    upper_tick=upper,
                    liquidity=liquidity,
                )
            )
        return position

    def rebalance(self, pool_id: str, current_height: int) -> Position:
        """Re-center a drifted position as one unit of work.

        Any failing step rolls the pool back to the previous range where
        possible and leaves the stored position untouched. When the rollback
        itself fails, the stored position is rewritten to match the pool: no
        liquidity on the old range, with the withdrawn tokens held as reserves.
        """
        self._pause.ensure_not_paused("rebalance")

        with self._locks.hold(pool_id):
            position = self._require_position(pool_id)
            if not position.active:
                raise ValidationError("position is inactive", pool_id=pool_id)

            tick = self._read_tick(pool_id)
            remaining = self.cooldown_remaining(position, current_height)
            if remaining > 0:
                raise CooldownActive(
                    "rebalance cooldown active", pool_id=pool_id, blocks_remaining=remaining
                )
            if not self.should_rebalance(position, tick, current_height):
                raise DriftWithinThreshold(
                    "price drift within threshold", pool_id=pool_id, current_tick=tick
                )

            lower, upper = compute_new_range(
                tick, position.range_width_ticks, position.tick_spacing
            )

            withdrawn0 = withdrawn1 = 0
            if position.liquidity > 0:
                ok, result = self.pool_adapter.modify_liquidity(
                    pool_id, position.lower_tick, position.upper_tick, -position.liquidity
                )
                if not ok:
                    raise RebalanceAborted(
                        f"withdrawal failed: {result}", pool_id=pool_id, step="withdraw"
                    )
                withdrawn0, withdrawn1 = result

            try:
                liquidity, reserve0, reserve1 = self._deposit(
                    pool_id,
                    lower,
                    upper,
                    tick,
                    withdrawn0 + position.reserve0,
                    withdrawn1 + position.reserve1,
                )
            except RebalanceAborted as exc:
                stranded = exc.context.get("stranded_liquidity", 0)
                if stranded:
                    # the new range could not be unwound; record what the pool holds
                    self._store(
                        replace(
                            position,
                            lower_tick=lower,
                            upper_tick=upper,
                            liquidity=stranded,
                            reserve0=0,
                            reserve1=0,
                        )
                    )
                elif not self._restore(position):
                    self._store(
                        replace(
                            position,
                            liquidity=0,
                            reserve0=position.reserve0 + withdrawn0,
                            reserve1=position.reserve1 + withdrawn1,
                        )
                    )
                raise

            updated = replace(
                position,
                lower_tick=lower,
                upper_tick=upper,
                liquidity=liquidity,
                last_rebalance_height=int(current_height),
                reserve0=reserve0,
                reserve1=reserve1,
            )
            self._store(updated)

        self.logger.info(
            f"Rebalanced {pool_id}: [{position.lower_tick}, {position.upper_tick}) -> "
            f"[{lower}, {upper}) L={liquidity} at height {current_height}"
        )
        if self.events is not None:
            self.events.publish(
                PositionRebalanced(
                    chain_id=self.chain_id,
                    pool_id=pool_id,
                    new_lower=lower,
                    new_upper=upper,
                    liquidity=liquidity,
                    height=int(current_height),
                )
            )
        return updated

    # ── internals ────────────────────────────────────────────────────────────

    def _require_position(self, pool_id: str) -> Position:
        position = self.get_position(pool_id)
        if position is None:
            raise ValidationError("unknown position", pool_id=pool_id)
        return position

    def _new_position(
        self,
        pool_id: str,
        spacing: int,
        lower: int,
        upper: int,
        liquidity: int,
        settings: PoolSettings,
        current_height: int,
        *,
        reserve0: int = 0,
        reserve1: int = 0,
    ) -> Position:
        return Position(
            chain_id=self.chain_id,
            pool_id=pool_id,
            tick_spacing=spacing,
            lower_tick=lower,
            upper_tick=upper,
            liquidity=liquidity,
            rebalance_threshold_bps=settings.rebalance_threshold_bps,
            range_width_ticks=settings.range_width_ticks,
            last_rebalance_height=int(current_height),
            cross_chain_enabled=settings.cross_chain_enabled,
            active=True,
            reserve0=reserve0,
            reserve1=reserve1,
        )

    def _store(self, position: Position) -> None:
        with self._store_lock:
            self._positions[position.pool_id] = position

    def _read_tick(self, pool_id: str) -> int:
        ok, tick = self.pool_adapter.current_tick(pool_id)
        if not ok:
            raise RebalanceAborted(f"current tick unavailable: {tick}", pool_id=pool_id)
        return tick

    def _size_liquidity(
        self, lower: int, upper: int, tick: int, amount0: int, amount1: int
    ) -> int:
        # mid-price sizing, capped to what the balances fund at the live tick
        at_mid = liquidity_at_mid_price(lower, upper, amount0, amount1)
        at_tick = liquidity_for_amounts(
            sqrt_price_x96_from_tick(tick), lower, upper, amount0, amount1
        )
        return min(at_mid, at_tick)

    def _deposit(
        self,
        pool_id: str,
        lower: int,
        upper: int,
        tick: int,
        amount0: int,
        amount1: int,
    ) -> tuple[int, int, int]:
        """Deposit what the balances support; return (liquidity, reserve0, reserve1)."""
        liquidity = self._size_liquidity(lower, upper, tick, amount0, amount1)
        if liquidity == 0:
            return 0, amount0, amount1

        ok, result = self.pool_adapter.modify_liquidity(pool_id, lower, upper, liquidity)
        if not ok:
            raise RebalanceAborted(f"deposit failed: {result}", pool_id=pool_id, step="deposit")
        used0, used1 = result
        if used0 > amount0 or used1 > amount1:
            undone, undo_result = self.pool_adapter.modify_liquidity(
                pool_id, lower, upper, -liquidity
            )
            if not undone:
                self.logger.error(
                    f"Could not unwind over-consuming deposit on {pool_id}: {undo_result}"
                )
            raise RebalanceAborted(
                "pool consumed more than available",
                pool_id=pool_id,
                step="deposit",
                stranded_liquidity=0 if undone else liquidity,
                consumed=[used0, used1],
                available=[amount0, amount1],
            )
        return liquidity, amount0 - used0, amount1 - used1

    def _restore(self, position: Position) -> bool:
        if position.liquidity == 0:
            return True
        ok, result = self.pool_adapter.modify_liquidity(
            position.pool_id, position.lower_tick, position.upper_tick, position.liquidity
        )
        if not ok:
            self.logger.error(
                f"Could not restore {position.pool_id} to previous range: {result}"
            )
            return False
        self.logger.warning(f"Restored {position.pool_id} to its previous range")
        return True
