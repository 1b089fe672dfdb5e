from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import StrEnum

from loguru import logger

from trailing_range.core.errors import InvariantViolation, ValidationError


class EscrowState(StrEnum):
    HELD = "HELD"
    RETURNED = "RETURNED"
    FORWARDED = "FORWARDED"


@dataclass(frozen=True)
class EscrowEntry:
    migration_id: str
    owner: str
    token_pair_id: str
    amount0: int
    amount1: int
    state: EscrowState = EscrowState.HELD


class BalanceBook:
    """Token balances per (owner, token pair) available to fund migrations."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._balances: dict[tuple[str, str], tuple[int, int]] = {}
        self.logger = logger.bind(component="BalanceBook")

    def balance_of(self, owner: str, token_pair_id: str) -> tuple[int, int]:
        with self._lock:
            return self._balances.get((owner, token_pair_id), (0, 0))

    def credit(self, owner: str, token_pair_id: str, amount0: int, amount1: int) -> None:
        if amount0 < 0 or amount1 < 0:
            raise ValidationError("credit amounts must be non-negative")
        with self._lock:
            b0, b1 = self._balances.get((owner, token_pair_id), (0, 0))
            self._balances[(owner, token_pair_id)] = (b0 + amount0, b1 + amount1)

    def debit(self, owner: str, token_pair_id: str, amount0: int, amount1: int) -> None:
        if amount0 < 0 or amount1 < 0:
            raise ValidationError("debit amounts must be non-negative")
        with self._lock:
            b0, b1 = self._balances.get((owner, token_pair_id), (0, 0))
            if b0 < amount0 or b1 < amount1:
                raise ValidationError(
                    "insufficient balance",
                    owner=owner,
                    token_pair_id=token_pair_id,
                    available=[b0, b1],
                    requested=[amount0, amount1],
                )
            self._balances[(owner, token_pair_id)] = (b0 - amount0, b1 - amount1)


class EscrowBook:
    """Funds held per migration; each entry settles exactly once.

    Settlement either returns the funds to the owner or forwards them to the
    bridge, never both.
    """

    def __init__(self, balances: BalanceBook) -> None:
        self.balances = balances
        self._lock = threading.Lock()
        self._entries: dict[str, EscrowEntry] = {}
        self.forwarded0 = 0
        self.forwarded1 = 0
        self.logger = logger.bind(component="EscrowBook")

    def get(self, migration_id: str) -> EscrowEntry | None:
        with self._lock:
            return self._entries.get(migration_id)

    def hold(
        self,
        migration_id: str,
        owner: str,
        token_pair_id: str,
        amount0: int,
        amount1: int,
    ) -> EscrowEntry:
        with self._lock:
            if migration_id in self._entries:
                raise InvariantViolation(
                    "escrow already exists", migration_id=migration_id
                )
            self.balances.debit(owner, token_pair_id, amount0, amount1)
            entry = EscrowEntry(migration_id, owner, token_pair_id, amount0, amount1)
            self._entries[migration_id] = entry
        self.logger.info(f"Escrowed {amount0}/{amount1} for {migration_id}")
        return entry

    def refund(self, migration_id: str) -> EscrowEntry:
        entry = self._settle(migration_id, EscrowState.RETURNED)
        self.balances.credit(entry.owner, entry.token_pair_id, entry.amount0, entry.amount1)
        self.logger.info(f"Refunded {entry.amount0}/{entry.amount1} for {migration_id}")
        return entry

    def forward(self, migration_id: str) -> EscrowEntry:
        entry = self._settle(migration_id, EscrowState.FORWARDED)
        with self._lock:
            self.forwarded0 += entry.amount0
            self.forwarded1 += entry.amount1
        self.logger.info(f"Forwarded {entry.amount0}/{entry.amount1} for {migration_id}")
        return entry

    def held_totals(self) -> tuple[int, int]:
        with self._lock:
            held = [e for e in self._entries.values() if e.state is EscrowState.HELD]
        return sum(e.amount0 for e in held), sum(e.amount1 for e in held)

    def _settle(self, migration_id: str, state: EscrowState) -> EscrowEntry:
        with self._lock:
            entry = self._entries.get(migration_id)
            if entry is None:
                raise InvariantViolation("no escrow for migration", migration_id=migration_id)
            if entry.state is not EscrowState.HELD:
                self.logger.error(
                    f"Escrow {migration_id} already {entry.state}, refusing {state}"
                )
                raise InvariantViolation(
                    "escrow already settled",
                    migration_id=migration_id,
                    state=str(entry.state),
                )
            settled = EscrowEntry(
                entry.migration_id,
                entry.owner,
                entry.token_pair_id,
                entry.amount0,
                entry.amount1,
                state,
            )
            self._entries[migration_id] = settled
        return settled
