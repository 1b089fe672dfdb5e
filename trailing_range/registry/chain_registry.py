from __future__ import annotations

import threading
from dataclasses import replace
from typing import Any

from loguru import logger

from trailing_range.core.access import AccessControl, Role, normalize_address
from trailing_range.core.constants.policy import (
    DEFAULT_BASE_GAS_UNITS,
    DEFAULT_GAS_PRICE_THRESHOLD,
    DEFAULT_YIELD_THRESHOLD_BPS,
)
from trailing_range.core.errors import ValidationError
from trailing_range.core.events import ChainUpdated, EventBus
from trailing_range.core.models import ChainLink


class ChainRegistry:
    """Supported destination chains. Mutated only by admins."""

    def __init__(self, access: AccessControl, *, events: EventBus | None = None) -> None:
        self._access = access
        self._lock = threading.Lock()
        self._chains: dict[int, ChainLink] = {}
        self.events = events
        self.logger = logger.bind(component="ChainRegistry")

    def register_chain(
        self,
        caller: str,
        chain_id: int,
        bridge_endpoint: str,
        *,
        gas_price_threshold: int = DEFAULT_GAS_PRICE_THRESHOLD,
        yield_threshold_bps: int = DEFAULT_YIELD_THRESHOLD_BPS,
        base_gas_units: int = DEFAULT_BASE_GAS_UNITS,
    ) -> ChainLink:
        self._access.require(caller, Role.ADMIN)
        if int(chain_id) <= 0:
            raise ValidationError("chain id must be positive", chain_id=chain_id)
        _check_non_negative(
            gas_price_threshold=gas_price_threshold,
            yield_threshold_bps=yield_threshold_bps,
            base_gas_units=base_gas_units,
        )
        link = ChainLink(
            chain_id=int(chain_id),
            bridge_endpoint=normalize_address(bridge_endpoint, field="bridge_endpoint"),
            gas_price_threshold=int(gas_price_threshold),
            yield_threshold_bps=int(yield_threshold_bps),
            base_gas_units=int(base_gas_units),
            active=True,
        )
        with self._lock:
            self._chains[link.chain_id] = link
        self.logger.info(f"Registered chain {link.chain_id} via {link.bridge_endpoint}")
        self._emit(link)
        return link

    def deregister_chain(self, caller: str, chain_id: int) -> ChainLink:
        self._access.require(caller, Role.ADMIN)
        link = self._update(int(chain_id), active=False)
        self.logger.info(f"Deregistered chain {chain_id}")
        return link

    def set_thresholds(
        self,
        caller: str,
        chain_id: int,
        *,
        gas_price_threshold: int | None = None,
        yield_threshold_bps: int | None = None,
        base_gas_units: int | None = None,
    ) -> ChainLink:
        self._access.require(caller, Role.ADMIN)
        changes = {
            k: int(v)
            for k, v in {
                "gas_price_threshold": gas_price_threshold,
                "yield_threshold_bps": yield_threshold_bps,
                "base_gas_units": base_gas_units,
            }.items()
            if v is not None
        }
        _check_non_negative(**changes)
        return self._update(int(chain_id), **changes)

    def bootstrap(self, caller: str, chain_configs: list[dict[str, Any]]) -> list[ChainLink]:
        links = []
        for cfg in chain_configs:
            kwargs = {
                k: cfg[k]
                for k in ("gas_price_threshold", "yield_threshold_bps", "base_gas_units")
                if k in cfg
            }
            links.append(
                self.register_chain(
                    caller, int(cfg["chain_id"]), str(cfg["bridge_endpoint"]), **kwargs
                )
            )
        return links

    def get(self, chain_id: int) -> ChainLink | None:
        with self._lock:
            return self._chains.get(int(chain_id))

    def is_active(self, chain_id: int) -> bool:
        link = self.get(chain_id)
        return link is not None and link.active

    def active_chains(self) -> list[int]:
        with self._lock:
            return sorted(c for c, link in self._chains.items() if link.active)

    def all(self) -> list[ChainLink]:
        with self._lock:
            return [self._chains[c] for c in sorted(self._chains)]

    def clear(self) -> None:
        with self._lock:
            self._chains.clear()

    def _update(self, chain_id: int, **changes: Any) -> ChainLink:
        with self._lock:
            link = self._chains.get(chain_id)
            if link is None:
                raise ValidationError("unsupported chain", chain_id=chain_id)
            link = replace(link, **changes)
            self._chains[chain_id] = link
        self._emit(link)
        return link

    def _emit(self, link: ChainLink) -> None:
        if self.events is not None:
            self.events.publish(
                ChainUpdated(
                    chain_id=link.chain_id,
                    active=link.active,
                    gas_price_threshold=link.gas_price_threshold,
                    yield_threshold_bps=link.yield_threshold_bps,
                )
            )


def _check_non_negative(**values: int) -> None:
    for name, value in values.items():
        if int(value) < 0:
            raise ValidationError(f"{name} must be non-negative", **{name: value})
