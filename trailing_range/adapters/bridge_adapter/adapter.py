from __future__ import annotations

from abc import abstractmethod
from typing import Any

from trailing_range.core.adapters.BaseAdapter import BaseAdapter
from trailing_range.core.adapters.decorators import status_tuple
from trailing_range.core.config import get_bridge_quote_config
from trailing_range.core.constants import ADAPTER_BRIDGE
from trailing_range.core.constants.policy import BPS_DENOMINATOR


class BridgeAdapter(BaseAdapter):
    """Boundary to the bridge network.

    ``transfer`` either succeeds (funds later arrive on the destination and the
    destination side calls back) or fails synchronously with funds never taken.
    """

    adapter_type: str = ADAPTER_BRIDGE

    def __init__(self, name: str = "bridge_adapter", config: dict[str, Any] | None = None):
        super().__init__(name, config)

    @abstractmethod
    def quote(self, token_pair_id: str, amount: int, dest_chain: int) -> int: ...

    @abstractmethod
    def send(
        self,
        token_pair_id: str,
        amount0: int,
        amount1: int,
        dest_chain: int,
        recipient: str,
        payload: bytes,
    ) -> str:
        """Submit the transfer and return a bridge reference; raise on failure."""

    @status_tuple
    def quote_fee(self, token_pair_id: str, amount: int, dest_chain: int) -> int:
        fee = int(self.quote(token_pair_id, int(amount), int(dest_chain)))
        if fee < 0:
            raise ValueError(f"negative bridge fee quoted: {fee}")
        return fee

    @status_tuple
    def transfer(
        self,
        token_pair_id: str,
        amount0: int,
        amount1: int,
        dest_chain: int,
        recipient: str,
        payload: bytes,
    ) -> str:
        ref = self.send(
            token_pair_id, int(amount0), int(amount1), int(dest_chain), recipient, payload
        )
        self.logger.info(
            f"Bridged {amount0}/{amount1} of {token_pair_id} to chain {dest_chain} (ref={ref})"
        )
        return ref


class StaticQuoteBridgeAdapter(BridgeAdapter):
    """Quote-only adapter: ``flat_fee + amount * fee_bps / 10_000`` from config."""

    def __init__(self, config: dict[str, Any] | None = None):
        super().__init__("static_quote_bridge", config or get_bridge_quote_config())
        self.flat_fee = int(self.config.get("flat_fee", 0))
        self.fee_bps = int(self.config.get("fee_bps", 0))

    def quote(self, token_pair_id: str, amount: int, dest_chain: int) -> int:
        return self.flat_fee + (amount * self.fee_bps) // BPS_DENOMINATOR

    def send(
        self,
        token_pair_id: str,
        amount0: int,
        amount1: int,
        dest_chain: int,
        recipient: str,
        payload: bytes,
    ) -> str:
        raise NotImplementedError("static quote adapter cannot transfer funds")
