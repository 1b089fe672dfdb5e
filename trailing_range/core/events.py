from __future__ import annotations

import threading
import time
from collections import Counter, deque
from collections.abc import Callable
from typing import Annotated, Literal

from loguru import logger
from pydantic import BaseModel, Field


class EventBase(BaseModel):
    chain_id: int | None = None
    # stamped by the bus on publish
    emitted_at: int | None = None


class PositionOpened(EventBase):
    type: Literal["POSITION_OPENED"] = "POSITION_OPENED"
    pool_id: str
    lower_tick: int
    upper_tick: int
    liquidity: int


class PositionRebalanced(EventBase):
    type: Literal["POSITION_REBALANCED"] = "POSITION_REBALANCED"
    pool_id: str
    new_lower: int
    new_upper: int
    liquidity: int
    height: int


class PositionDeactivated(EventBase):
    type: Literal["POSITION_DEACTIVATED"] = "POSITION_DEACTIVATED"
    pool_id: str
    amount0: int
    amount1: int
    reason: str


class MigrationEvent(EventBase):
    migration_id: str
    from_chain: int
    to_chain: int
    amount0: int
    amount1: int


class MigrationCreated(MigrationEvent):
    type: Literal["MIGRATION_CREATED"] = "MIGRATION_CREATED"
    initiator: str
    token_pair_id: str


class MigrationDispatched(MigrationEvent):
    type: Literal["MIGRATION_DISPATCHED"] = "MIGRATION_DISPATCHED"


class MigrationCompleted(MigrationEvent):
    type: Literal["MIGRATION_COMPLETED"] = "MIGRATION_COMPLETED"


class MigrationFailed(MigrationEvent):
    type: Literal["MIGRATION_FAILED"] = "MIGRATION_FAILED"
    reason: str


class MigrationCancelled(MigrationEvent):
    type: Literal["MIGRATION_CANCELLED"] = "MIGRATION_CANCELLED"


class YieldUpdated(EventBase):
    type: Literal["YIELD_UPDATED"] = "YIELD_UPDATED"
    token_pair_id: str
    apy_bps: int
    tvl: int
    gas_price: int


class ChainUpdated(EventBase):
    type: Literal["CHAIN_UPDATED"] = "CHAIN_UPDATED"
    active: bool
    gas_price_threshold: int
    yield_threshold_bps: int


class SystemPauseChanged(EventBase):
    type: Literal["SYSTEM_PAUSE_CHANGED"] = "SYSTEM_PAUSE_CHANGED"
    paused: bool
    by: str


Event = (
    PositionOpened
    | PositionRebalanced
    | PositionDeactivated
    | MigrationCreated
    | MigrationDispatched
    | MigrationCompleted
    | MigrationFailed
    | MigrationCancelled
    | YieldUpdated
    | ChainUpdated
    | SystemPauseChanged
)


class EventEnvelope(BaseModel):
    event: Annotated[Event, Field(discriminator="type")]


Subscriber = Callable[[Event], None]


class EventBus:
    """Synchronous fan-out of events with a bounded in-memory history."""

    def __init__(
        self, history_size: int = 1_000, clock: Callable[[], int] | None = None
    ) -> None:
        self.clock = clock or (lambda: int(time.time()))
        self._lock = threading.Lock()
        self._subscribers: list[Subscriber] = []
        self._history: deque[Event] = deque(maxlen=history_size)
        self.logger = logger.bind(component="EventBus")

    def subscribe(self, fn: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(fn)

        def unsubscribe() -> None:
            with self._lock:
                if fn in self._subscribers:
                    self._subscribers.remove(fn)

        return unsubscribe

    def publish(self, event: Event) -> Event:
        if event.emitted_at is None:
            event = event.model_copy(update={"emitted_at": int(self.clock())})
        with self._lock:
            self._history.append(event)
            subscribers = list(self._subscribers)
        self.logger.debug(f"{event.type} {event.model_dump(exclude={'type'})}")
        for fn in subscribers:
            try:
                fn(event)
            except Exception as exc:  # noqa: BLE001
                # observers never fail a committed transition
                self.logger.error(f"Event subscriber {fn!r} failed on {event.type}: {exc}")
        return event

    def history(self, event_type: str | None = None) -> list[Event]:
        with self._lock:
            events = list(self._history)
        if event_type is None:
            return events
        return [e for e in events if e.type == event_type]

    def summary(self) -> dict[str, int]:
        with self._lock:
            return dict(Counter(e.type for e in self._history))
