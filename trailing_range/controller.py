"""Composition root: wires registries, range manager and migration machinery
for one chain, and runs the price-event data flow end to end."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from trailing_range.adapters.bridge_adapter.adapter import BridgeAdapter
from trailing_range.adapters.pool_adapter.adapter import PoolAdapter
from trailing_range.core.access import AccessControl, PauseSwitch
from trailing_range.core.config import PolicyConfig, get_chain_configs, get_policy
from trailing_range.core.errors import PolicyError, TrailingRangeError
from trailing_range.core.events import EventBus
from trailing_range.core.models import Migration, MigrationStatus, Position
from trailing_range.core.utils.tick_math import (
    amounts_for_liquidity,
    sqrt_price_x96_from_tick,
)
from trailing_range.migration.escrow import BalanceBook, EscrowBook
from trailing_range.migration.evaluator import Evaluation, MigrationEvaluator
from trailing_range.migration.orchestrator import MigrationOrchestrator
from trailing_range.rebalance.range_manager import RangeManager
from trailing_range.registry.chain_registry import ChainRegistry
from trailing_range.registry.yield_registry import YieldRegistry


@dataclass
class PriceEventOutcome:
    pool_id: str
    current_tick: int | None = None
    rebalanced: bool = False
    skipped_reason: str | None = None
    best_chain: int | None = None
    yield_delta_bps: int = 0
    evaluation: Evaluation | None = None
    migration_id: str | None = None
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pool_id": self.pool_id,
            "current_tick": self.current_tick,
            "rebalanced": self.rebalanced,
            "skipped_reason": self.skipped_reason,
            "best_chain": self.best_chain,
            "yield_delta_bps": self.yield_delta_bps,
            "evaluation": self.evaluation.to_dict() if self.evaluation else None,
            "migration_id": self.migration_id,
            "errors": list(self.errors),
        }


class RangeController:
    def __init__(
        self,
        *,
        chain_id: int,
        owner: str,
        pool_adapter: PoolAdapter,
        bridge_adapter: BridgeAdapter,
        policy: PolicyConfig | None = None,
        events: EventBus | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.chain_id = int(chain_id)
        self.policy = policy or PolicyConfig()
        self.clock = clock or (lambda: int(time.time()))
        self.events = events or EventBus(clock=self.clock)
        self.pool_adapter = pool_adapter
        self.bridge_adapter = bridge_adapter

        self.access = AccessControl(owner, events=self.events)
        self.pause = PauseSwitch(self.access, events=self.events)
        self.chains = ChainRegistry(self.access, events=self.events)
        self.yields = YieldRegistry(
            self.access, self.pause, events=self.events, clock=self.clock
        )
        self.balances = BalanceBook()
        self.escrow = EscrowBook(self.balances)
        self.range_manager = RangeManager(
            self.chain_id,
            pool_adapter,
            self.access,
            self.pause,
            policy=self.policy,
            events=self.events,
        )
        self.evaluator = MigrationEvaluator(
            self.yields, self.chains, bridge_adapter, policy=self.policy, clock=self.clock
        )
        self.orchestrator = MigrationOrchestrator(
            self.chain_id,
            self.evaluator,
            self.chains,
            bridge_adapter,
            self.escrow,
            self.access,
            self.pause,
            policy=self.policy,
            events=self.events,
            clock=self.clock,
        )
        self.logger = logger.bind(component="RangeController", chain_id=self.chain_id)

    @classmethod
    def from_config(
        cls,
        *,
        chain_id: int,
        owner: str,
        pool_adapter: PoolAdapter,
        bridge_adapter: BridgeAdapter,
        **kwargs: Any,
    ) -> RangeController:
        """Build from the global CONFIG: policy section plus bootstrapped chains."""
        controller = cls(
            chain_id=chain_id,
            owner=owner,
            pool_adapter=pool_adapter,
            bridge_adapter=bridge_adapter,
            policy=get_policy(),
            **kwargs,
        )
        controller.chains.bootstrap(owner, get_chain_configs())
        return controller

    def close(self) -> None:
        self.yields.clear()
        self.chains.clear()
        self.pool_adapter.close()
        self.bridge_adapter.close()
        self.logger.info("Controller closed")

    def __enter__(self) -> RangeController:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ── query surface ────────────────────────────────────────────────────────

    def get_position(self, pool_id: str) -> Position | None:
        return self.range_manager.get_position(pool_id)

    def get_migration(self, migration_id: str) -> Migration | None:
        return self.orchestrator.get(migration_id)

    def yield_comparison(self, token_pair_id: str, now: int | None = None) -> list[dict]:
        window = self.policy.for_pair(token_pair_id).freshness_window_s
        return self.yields.compare(token_pair_id, self.chain_id, window, now)

    def best_chain(self, token_pair_id: str, now: int | None = None) -> tuple[int, int]:
        window = self.policy.for_pair(token_pair_id).freshness_window_s
        return self.yields.best_chain(
            token_pair_id,
            self.chain_id,
            window,
            now,
            candidates=self.chains.active_chains(),
        )

    def estimate_migration(
        self, to_chain: int, token_pair_id: str, total_value: int, now: int | None = None
    ) -> Evaluation:
        return self.orchestrator.estimate(to_chain, token_pair_id, total_value, now)

    def stuck_migrations(self, older_than_s: int, now: int | None = None) -> list[Migration]:
        return self.orchestrator.list_migrations(
            status=MigrationStatus.IN_PROGRESS, older_than_s=older_than_s, now=now
        )

    def report(self) -> dict[str, Any]:
        positions = self.range_manager.positions()
        migrations = self.orchestrator.list_migrations()
        return {
            "chain_id": self.chain_id,
            "paused": self.pause.paused,
            "events": self.events.summary(),
            "positions": {
                "total": len(positions),
                "active": sum(1 for p in positions if p.active),
            },
            "migrations": {
                str(s): sum(1 for m in migrations if m.status is s) for s in MigrationStatus
            },
            "escrow_held": list(self.escrow.held_totals()),
            "active_chains": self.chains.active_chains(),
        }

    # ── data flow ────────────────────────────────────────────────────────────

    def on_price_event(
        self,
        pool_id: str,
        token_pair_id: str,
        current_height: int,
        now: int | None = None,
        *,
        auto_migrate: bool = False,
        operator: str | None = None,
    ) -> PriceEventOutcome:
        """React to a price change on ``pool_id``.

        Rebalances when drift warrants it, then looks for a better chain. With
        ``auto_migrate`` the position is withdrawn, escrowed and dispatched on
        behalf of ``operator`` (an admin) when the move is profitable.
        """
        now = self.clock() if now is None else now
        outcome = PriceEventOutcome(pool_id=pool_id)
        if self.pause.paused:
            outcome.skipped_reason = "paused"
            return outcome
        position = self.range_manager.get_position(pool_id)
        if position is None or not position.active:
            outcome.skipped_reason = "no active position"
            return outcome

        ok, tick = self.pool_adapter.current_tick(pool_id)
        if not ok:
            outcome.errors.append(f"current tick unavailable: {tick}")
            return outcome
        outcome.current_tick = tick

        if self.range_manager.should_rebalance(position, tick, current_height):
            try:
                position = self.range_manager.rebalance(pool_id, current_height)
                outcome.rebalanced = True
            except TrailingRangeError as exc:
                outcome.errors.append(f"{exc.code}: {exc.message}")
                if isinstance(exc, PolicyError):
                    return outcome

        if not position.cross_chain_enabled:
            return outcome

        best, delta = self.best_chain(token_pair_id, now)
        outcome.best_chain, outcome.yield_delta_bps = best, delta
        if best == self.chain_id:
            return outcome

        value = self._position_value(position, tick)
        outcome.evaluation = self.evaluator.evaluate(
            self.chain_id, best, token_pair_id, value, now
        )
        if not outcome.evaluation.profitable or not auto_migrate:
            return outcome
        if operator is None:
            outcome.errors.append("auto migration requires an operator")
            return outcome

        migration = self._migrate_position(operator, pool_id, token_pair_id, best, now, outcome)
        if migration is not None:
            outcome.migration_id = migration.id
        return outcome

    def _position_value(self, position: Position, tick: int) -> int:
        amount0, amount1 = amounts_for_liquidity(
            sqrt_price_x96_from_tick(tick),
            position.lower_tick,
            position.upper_tick,
            position.liquidity,
        )
        return amount0 + amount1 + position.reserve0 + position.reserve1

    def _migrate_position(
        self,
        operator: str,
        pool_id: str,
        token_pair_id: str,
        to_chain: int,
        now: int,
        outcome: PriceEventOutcome,
    ) -> Migration | None:
        amount0, amount1 = self.range_manager.deactivate_position(
            operator, pool_id, reason=f"migrating to chain {to_chain}"
        )
        self.balances.credit(operator, token_pair_id, amount0, amount1)
        try:
            migration = self.orchestrator.create(
                operator, to_chain, token_pair_id, amount0, amount1, now
            )
        except TrailingRangeError as exc:
            outcome.errors.append(f"{exc.code}: {exc.message}")
            self.logger.warning(f"Migration of {pool_id} aborted, re-opening: {exc.message}")
            self._reopen(operator, pool_id, token_pair_id, amount0, amount1, outcome)
            return None
        return self.orchestrator.dispatch(operator, migration.id, now)

    def _reopen(
        self,
        operator: str,
        pool_id: str,
        token_pair_id: str,
        amount0: int,
        amount1: int,
        outcome: PriceEventOutcome,
    ) -> None:
        # released funds stay credited to the operator unless the pool takes them back
        try:
            self.range_manager.open_position(
                operator, pool_id, amount0, amount1, self._last_height(pool_id)
            )
        except TrailingRangeError as exc:
            outcome.errors.append(f"{exc.code}: {exc.message}")
            self.logger.error(
                f"Could not re-open {pool_id}; {amount0}/{amount1} left with {operator}: "
                f"{exc.message}"
            )
            return
        self.balances.debit(operator, token_pair_id, amount0, amount1)

    def _last_height(self, pool_id: str) -> int:
        position = self.range_manager.get_position(pool_id)
        return position.last_rebalance_height if position is not None else 0
