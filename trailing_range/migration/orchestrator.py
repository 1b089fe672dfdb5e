"""Cross-chain migration state machine.

    PENDING --dispatch--> IN_PROGRESS --complete--> COMPLETED
       |                       |
       |                       +--fail (bridge ack)--> FAILED
       +--dispatch, bridge rejects synchronously----> FAILED
       +--cancel-----------------------------------> CANCELLED

Funds are escrowed at creation and leave escrow exactly once: forwarded to the
bridge on a successful dispatch, returned to the initiator otherwise.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import replace
from typing import Any

from eth_abi.exceptions import DecodingError
from loguru import logger

from trailing_range.adapters.bridge_adapter.adapter import BridgeAdapter
from trailing_range.core.access import AccessControl, PauseSwitch, Role, normalize_address
from trailing_range.core.config import PolicyConfig
from trailing_range.core.errors import (
    AccessDenied,
    DuplicateMigrationId,
    InvalidTransition,
    InvariantViolation,
    NotProfitable,
    ValidationError,
)
from trailing_range.core.events import (
    EventBus,
    MigrationCancelled,
    MigrationCompleted,
    MigrationCreated,
    MigrationDispatched,
    MigrationFailed,
)
from trailing_range.core.locks import KeyedLock
from trailing_range.core.models import Migration, MigrationStatus
from trailing_range.migration.escrow import EscrowBook
from trailing_range.migration.evaluator import Evaluation, MigrationEvaluator
from trailing_range.migration.ids import (
    NonceTracker,
    decode_payload,
    derive_migration_id,
    encode_payload,
)
from trailing_range.registry.chain_registry import ChainRegistry

_ALLOWED: dict[MigrationStatus, frozenset[MigrationStatus]] = {
    MigrationStatus.PENDING: frozenset(
        {MigrationStatus.IN_PROGRESS, MigrationStatus.FAILED, MigrationStatus.CANCELLED}
    ),
    MigrationStatus.IN_PROGRESS: frozenset(
        {MigrationStatus.COMPLETED, MigrationStatus.FAILED}
    ),
}


class MigrationOrchestrator:
    def __init__(
        self,
        chain_id: int,
        evaluator: MigrationEvaluator,
        chains: ChainRegistry,
        bridge: BridgeAdapter,
        escrow: EscrowBook,
        access: AccessControl,
        pause: PauseSwitch,
        *,
        policy: PolicyConfig | None = None,
        events: EventBus | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.chain_id = int(chain_id)
        self.evaluator = evaluator
        self.chains = chains
        self.bridge = bridge
        self.escrow = escrow
        self.policy = policy or PolicyConfig()
        self.events = events
        self.clock = clock or (lambda: int(time.time()))
        self._access = access
        self._pause = pause
        self._migrations: dict[str, Migration] = {}
        self._store_lock = threading.Lock()
        self._locks = KeyedLock("migration")
        self._nonces = NonceTracker()
        self.logger = logger.bind(component="MigrationOrchestrator", chain_id=self.chain_id)

    # ── queries ──────────────────────────────────────────────────────────────

    def get(self, migration_id: str) -> Migration | None:
        with self._store_lock:
            return self._migrations.get(migration_id)

    def list_migrations(
        self,
        *,
        status: MigrationStatus | None = None,
        older_than_s: int | None = None,
        now: int | None = None,
    ) -> list[Migration]:
        """Filter by status and by time since the last transition."""
        now = self.clock() if now is None else now
        with self._store_lock:
            records = list(self._migrations.values())
        if status is not None:
            records = [m for m in records if m.status is status]
        if older_than_s is not None:
            records = [m for m in records if now - m.updated_at >= older_than_s]
        return sorted(records, key=lambda m: (m.created_at, m.id))

    def estimate(
        self, to_chain: int, token_pair_id: str, total_value: int, now: int | None = None
    ) -> Evaluation:
        return self.evaluator.evaluate(self.chain_id, to_chain, token_pair_id, total_value, now)

    # ── admin ────────────────────────────────────────────────────────────────

    def set_migration_bounds(self, caller: str, minimum: int, maximum: int) -> PolicyConfig:
        self._access.require(caller, Role.ADMIN)
        if int(minimum) < 0 or int(maximum) <= 0 or int(minimum) > int(maximum):
            raise ValidationError(
                "invalid migration bounds", minimum=minimum, maximum=maximum
            )
        self.policy = self.policy.model_copy(
            update={"min_migration_amount": int(minimum), "max_migration_amount": int(maximum)}
        )
        self.logger.info(f"Migration bounds set to [{minimum}, {maximum}]")
        return self.policy

    # ── transitions ──────────────────────────────────────────────────────────

    def create(
        self,
        initiator: str,
        to_chain: int,
        token_pair_id: str,
        amount0: int,
        amount1: int,
        now: int | None = None,
    ) -> Migration:
        self._pause.ensure_not_paused("create migration")
        now = self.clock() if now is None else now
        initiator = normalize_address(initiator, field="initiator")
        to_chain = int(to_chain)
        amount0, amount1 = int(amount0), int(amount1)
        self._validate_request(to_chain, token_pair_id, amount0, amount1)

        total = amount0 + amount1
        evaluation = self.evaluator.evaluate(
            self.chain_id, to_chain, token_pair_id, total, now
        )
        if not evaluation.profitable:
            self.logger.warning(
                f"Rejected migration {self.chain_id}->{to_chain} for {initiator}: "
                f"{evaluation.reason}"
            )
            raise NotProfitable(
                "migration not profitable",
                reason=evaluation.reason,
                expected_yield=str(evaluation.expected_yield),
                estimated_cost=str(evaluation.estimated_cost),
            )

        b0, b1 = self.escrow.balances.balance_of(initiator, token_pair_id)
        if b0 < amount0 or b1 < amount1:
            raise ValidationError(
                "insufficient balance",
                initiator=initiator,
                available=[b0, b1],
                requested=[amount0, amount1],
            )

        nonce = self._nonces.consume(initiator)
        migration_id = derive_migration_id(
            initiator, self.chain_id, to_chain, token_pair_id, amount0, amount1, nonce
        )
        with self._locks.hold(migration_id):
            if self.get(migration_id) is not None:
                self.logger.error(f"Duplicate migration id {migration_id}")
                raise DuplicateMigrationId(
                    "migration id already exists", migration_id=migration_id
                )
            self.escrow.hold(migration_id, initiator, token_pair_id, amount0, amount1)
            migration = Migration(
                id=migration_id,
                initiator=initiator,
                from_chain=self.chain_id,
                to_chain=to_chain,
                token_pair_id=token_pair_id,
                amount0=amount0,
                amount1=amount1,
                nonce=nonce,
                created_at=now,
                status=MigrationStatus.PENDING,
                estimated_cost_native=evaluation.estimated_cost,
                expected_yield_native=evaluation.expected_yield,
                updated_at=now,
                history=(MigrationStatus.PENDING,),
            )
            self._store(migration)

        self.logger.info(
            f"Created migration {migration_id} {self.chain_id}->{to_chain} "
            f"{amount0}/{amount1} {token_pair_id}"
        )
        self._publish(MigrationCreated, migration, initiator=initiator, token_pair_id=token_pair_id)
        return migration

    def dispatch(self, caller: str, migration_id: str, now: int | None = None) -> Migration:
        """Hand escrowed funds to the bridge; no-op on terminal records."""
        self._pause.ensure_not_paused("dispatch migration")
        now = self.clock() if now is None else now

        with self._locks.hold(migration_id):
            migration = self._require(migration_id)
            self._require_initiator_or_admin(caller, migration)
            if migration.status.is_terminal:
                self.logger.info(f"dispatch on {migration.status} {migration_id} ignored")
                return migration
            if migration.status is not MigrationStatus.PENDING:
                raise self._invalid(migration, MigrationStatus.IN_PROGRESS)

            in_progress = self._transition(migration, MigrationStatus.IN_PROGRESS, now)
            self._store(in_progress)
            self._publish(MigrationDispatched, in_progress)

            ok, result = self.bridge.transfer(
                migration.token_pair_id,
                migration.amount0,
                migration.amount1,
                migration.to_chain,
                migration.initiator,
                encode_payload(migration_id, migration.initiator),
            )
            if ok:
                self.escrow.forward(migration_id)
                final = replace(in_progress, bridge_ref=str(result))
                self._store(final)
                self.logger.info(f"Dispatched {migration_id} (ref={result})")
                return final

            self.escrow.refund(migration_id)
            failed = self._transition(
                in_progress, MigrationStatus.FAILED, now, failure_reason=str(result)
            )
            self._store(failed)

        self.logger.error(f"Bridge transfer failed for {migration_id}: {result}; refunded")
        self._publish(MigrationFailed, failed, reason=str(result))
        return failed

    def complete(
        self,
        caller: str,
        migration_id: str,
        final_amount0: int,
        final_amount1: int,
        now: int | None = None,
    ) -> Migration:
        """Bridge callback: funds arrived on the destination. No-op on terminal records."""
        self._pause.ensure_not_paused("complete migration")
        self._access.require(caller, Role.BRIDGE_CALLER)
        if int(final_amount0) < 0 or int(final_amount1) < 0:
            raise ValidationError("final amounts must be non-negative")
        now = self.clock() if now is None else now

        with self._locks.hold(migration_id):
            migration = self._require(migration_id)
            if migration.status.is_terminal:
                self.logger.info(f"complete on {migration.status} {migration_id} ignored")
                return migration
            if migration.status is not MigrationStatus.IN_PROGRESS:
                raise self._invalid(migration, MigrationStatus.COMPLETED)
            completed = self._transition(
                migration,
                MigrationStatus.COMPLETED,
                now,
                final_amount0=int(final_amount0),
                final_amount1=int(final_amount1),
            )
            self._store(completed)

        self.logger.info(
            f"Completed {migration_id}: received {final_amount0}/{final_amount1} "
            f"on chain {completed.to_chain}"
        )
        self._publish(MigrationCompleted, completed)
        return completed

    def fail(
        self,
        caller: str,
        migration_id: str,
        reason: str,
        returned_amount0: int = 0,
        returned_amount1: int = 0,
        now: int | None = None,
    ) -> Migration:
        """Bridge acknowledgement that an in-flight transfer failed.

        Funds returned by the bridge are credited back to the initiator.
        """
        self._pause.ensure_not_paused("fail migration")
        self._access.require(caller, Role.BRIDGE_CALLER)
        if int(returned_amount0) < 0 or int(returned_amount1) < 0:
            raise ValidationError("returned amounts must be non-negative")
        now = self.clock() if now is None else now

        with self._locks.hold(migration_id):
            migration = self._require(migration_id)
            if migration.status.is_terminal:
                self.logger.info(f"fail on {migration.status} {migration_id} ignored")
                return migration
            if migration.status is not MigrationStatus.IN_PROGRESS:
                raise self._invalid(migration, MigrationStatus.FAILED)
            self.escrow.balances.credit(
                migration.initiator,
                migration.token_pair_id,
                int(returned_amount0),
                int(returned_amount1),
            )
            failed = self._transition(
                migration,
                MigrationStatus.FAILED,
                now,
                failure_reason=reason,
                final_amount0=int(returned_amount0),
                final_amount1=int(returned_amount1),
            )
            self._store(failed)

        self.logger.warning(f"Bridge reported failure for {migration_id}: {reason}")
        self._publish(MigrationFailed, failed, reason=reason)
        return failed

    def cancel(self, caller: str, migration_id: str, now: int | None = None) -> Migration:
        self._pause.ensure_not_paused("cancel migration")
        now = self.clock() if now is None else now

        with self._locks.hold(migration_id):
            migration = self._require(migration_id)
            self._require_initiator_or_admin(caller, migration)
            if migration.status is not MigrationStatus.PENDING:
                raise self._invalid(migration, MigrationStatus.CANCELLED)
            self.escrow.refund(migration_id)
            cancelled = self._transition(migration, MigrationStatus.CANCELLED, now)
            self._store(cancelled)

        self.logger.info(f"Cancelled {migration_id}; escrow refunded")
        self._publish(MigrationCancelled, cancelled)
        return cancelled

    def on_receive(
        self,
        caller: str,
        payload: bytes,
        amount0: int,
        amount1: int,
        now: int | None = None,
    ) -> Migration:
        """Destination-side bridge delivery carrying the encoded migration payload."""
        try:
            migration_id, recipient = decode_payload(payload)
        except (DecodingError, ValueError) as exc:
            raise ValidationError(f"malformed bridge payload: {exc}") from exc
        migration = self._require(migration_id)
        if recipient != migration.initiator:
            self.logger.error(
                f"Payload recipient {recipient} does not match initiator of {migration_id}"
            )
            raise InvariantViolation(
                "payload recipient mismatch",
                migration_id=migration_id,
                recipient=recipient,
            )
        return self.complete(caller, migration_id, amount0, amount1, now)

    # ── internals ────────────────────────────────────────────────────────────

    def _validate_request(
        self, to_chain: int, token_pair_id: str, amount0: int, amount1: int
    ) -> None:
        if not token_pair_id:
            raise ValidationError("token pair id is required")
        if to_chain == self.chain_id:
            raise ValidationError("destination must differ from source", to_chain=to_chain)
        if not self.chains.is_active(to_chain):
            raise ValidationError("unsupported destination chain", to_chain=to_chain)
        if amount0 < 0 or amount1 < 0:
            raise ValidationError("amounts must be non-negative")
        total = amount0 + amount1
        if total < self.policy.min_migration_amount:
            raise ValidationError(
                "amount below minimum",
                amount=total,
                minimum=self.policy.min_migration_amount,
            )
        if total > self.policy.max_migration_amount:
            raise ValidationError(
                "amount above maximum",
                amount=total,
                maximum=self.policy.max_migration_amount,
            )

    def _require(self, migration_id: str) -> Migration:
        migration = self.get(migration_id)
        if migration is None:
            raise ValidationError("unknown migration", migration_id=migration_id)
        return migration

    def _require_initiator_or_admin(self, caller: str, migration: Migration) -> None:
        try:
            who = normalize_address(caller, field="caller")
        except ValidationError as exc:
            raise AccessDenied("invalid caller", caller=caller) from exc
        if who == migration.initiator:
            return
        self._access.require(who, Role.ADMIN)

    def _invalid(self, migration: Migration, target: MigrationStatus) -> InvalidTransition:
        self.logger.error(
            f"Invalid transition {migration.status} -> {target} for {migration.id}"
        )
        return InvalidTransition(
            f"cannot move migration from {migration.status} to {target}",
            migration_id=migration.id,
            status=str(migration.status),
            target=str(target),
        )

    def _transition(
        self, migration: Migration, target: MigrationStatus, now: int, **changes: Any
    ) -> Migration:
        if target not in _ALLOWED.get(migration.status, frozenset()):
            raise self._invalid(migration, target)
        return replace(
            migration,
            status=target,
            updated_at=now,
            history=(*migration.history, target),
            **changes,
        )

    def _store(self, migration: Migration) -> None:
        with self._store_lock:
            self._migrations[migration.id] = migration

    def _publish(self, event_cls: type, migration: Migration, **extra: Any) -> None:
        if self.events is None:
            return
        self.events.publish(
            event_cls(
                chain_id=self.chain_id,
                migration_id=migration.id,
                from_chain=migration.from_chain,
                to_chain=migration.to_chain,
                amount0=migration.amount0,
                amount1=migration.amount1,
                **extra,
            )
        )
