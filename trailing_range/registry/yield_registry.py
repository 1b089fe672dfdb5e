from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable

from loguru import logger

from trailing_range.core.access import AccessControl, PauseSwitch, Role
from trailing_range.core.errors import ValidationError
from trailing_range.core.events import EventBus, YieldUpdated
from trailing_range.core.models import YieldRecord


def _ranking_key(record: YieldRecord) -> tuple[int, int, int]:
    # highest apy, then cheapest gas, then lowest chain id
    return (-record.apy_bps, record.gas_price, record.chain_id)


class YieldRegistry:
    """Latest yield observation per (chain, token pair), last write wins."""

    def __init__(
        self,
        access: AccessControl,
        pause: PauseSwitch,
        *,
        events: EventBus | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._access = access
        self._pause = pause
        self._lock = threading.Lock()
        self._records: dict[tuple[int, str], YieldRecord] = {}
        self.events = events
        self.clock = clock or (lambda: int(time.time()))
        self.logger = logger.bind(component="YieldRegistry")

    def update(
        self,
        caller: str,
        chain_id: int,
        token_pair_id: str,
        apy_bps: int,
        tvl: int,
        gas_price: int,
        now: int | None = None,
    ) -> YieldRecord:
        self._pause.ensure_not_paused("yield update")
        self._access.require(caller, Role.YIELD_UPDATER)
        if not token_pair_id:
            raise ValidationError("token pair id is required")
        for name, value in (("apy_bps", apy_bps), ("tvl", tvl), ("gas_price", gas_price)):
            if int(value) < 0:
                raise ValidationError(f"{name} must be non-negative", **{name: value})

        record = YieldRecord(
            chain_id=int(chain_id),
            token_pair_id=token_pair_id,
            apy_bps=int(apy_bps),
            tvl=int(tvl),
            gas_price=int(gas_price),
            observed_at=int(self.clock() if now is None else now),
        )
        with self._lock:
            self._records[(record.chain_id, token_pair_id)] = record
        self.logger.info(
            f"Yield {token_pair_id}@{record.chain_id}: apy={record.apy_bps}bps "
            f"tvl={record.tvl} gas={record.gas_price}"
        )
        if self.events is not None:
            self.events.publish(
                YieldUpdated(
                    chain_id=record.chain_id,
                    token_pair_id=token_pair_id,
                    apy_bps=record.apy_bps,
                    tvl=record.tvl,
                    gas_price=record.gas_price,
                )
            )
        return record

    def get(self, chain_id: int, token_pair_id: str) -> YieldRecord | None:
        with self._lock:
            return self._records.get((int(chain_id), token_pair_id))

    def get_fresh(
        self, chain_id: int, token_pair_id: str, freshness_window_s: int, now: int | None = None
    ) -> YieldRecord | None:
        record = self.get(chain_id, token_pair_id)
        now = self.clock() if now is None else now
        if record is None or not record.is_fresh(now, freshness_window_s):
            return None
        return record

    def records_for(self, token_pair_id: str) -> list[YieldRecord]:
        with self._lock:
            records = [r for (_, pair), r in self._records.items() if pair == token_pair_id]
        return sorted(records, key=lambda r: r.chain_id)

    def best_chain(
        self,
        token_pair_id: str,
        excluding_chain: int,
        freshness_window_s: int,
        now: int | None = None,
        *,
        candidates: Iterable[int] | None = None,
    ) -> tuple[int, int]:
        """Return ``(chain_id, yield_delta_bps)`` of the best fresh alternative.

        Falls back to ``(excluding_chain, 0)`` when no fresh record qualifies
        or the best one is the current chain. A current chain without a fresh
        record counts as 0 bps; a winner that only ties the current chain on
        APY is still returned, with a zero delta.
        """
        now = self.clock() if now is None else now
        allowed = None if candidates is None else {int(c) for c in candidates}
        fresh = [
            r
            for r in self.records_for(token_pair_id)
            if r.is_fresh(now, freshness_window_s)
            and (allowed is None or r.chain_id in allowed or r.chain_id == excluding_chain)
        ]
        no_opportunity = (int(excluding_chain), 0)
        if not fresh:
            return no_opportunity

        best = min(fresh, key=_ranking_key)
        if best.chain_id == int(excluding_chain):
            return no_opportunity
        current = next((r for r in fresh if r.chain_id == int(excluding_chain)), None)
        delta = best.apy_bps - (current.apy_bps if current is not None else 0)
        return best.chain_id, max(0, delta)

    def compare(
        self,
        token_pair_id: str,
        current_chain: int,
        freshness_window_s: int,
        now: int | None = None,
    ) -> list[dict]:
        """All known chains for a pair, best first, with freshness and delta vs current."""
        now = self.clock() if now is None else now
        records = sorted(self.records_for(token_pair_id), key=_ranking_key)
        current = self.get(current_chain, token_pair_id)
        base = current.apy_bps if current is not None else 0
        return [
            {
                **r.to_dict(),
                "age_s": r.age(now),
                "fresh": r.is_fresh(now, freshness_window_s),
                "delta_bps": r.apy_bps - base,
                "is_current": r.chain_id == int(current_chain),
            }
            for r in records
        ]

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
