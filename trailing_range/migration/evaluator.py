from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any

from loguru import logger

from trailing_range.adapters.bridge_adapter.adapter import BridgeAdapter
from trailing_range.core.config import PolicyConfig
from trailing_range.core.constants.policy import BPS_DENOMINATOR
from trailing_range.registry.chain_registry import ChainRegistry
from trailing_range.registry.yield_registry import YieldRegistry

ZERO = Decimal(0)


@dataclass(frozen=True)
class Evaluation:
    profitable: bool
    expected_yield: Decimal
    estimated_cost: Decimal
    reason: str | None = None
    apy_from_bps: int | None = None
    apy_to_bps: int | None = None
    bridge_fee: int | None = None
    gas_cost: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["expected_yield"] = str(self.expected_yield)
        data["estimated_cost"] = str(self.estimated_cost)
        return data


def project_yield(
    total_value: int | Decimal,
    apy_from_bps: int,
    apy_to_bps: int,
    *,
    horizon_days: int,
    days_per_year: int,
) -> Decimal:
    """Linear projection of the extra yield earned over ``horizon_days``."""
    delta = max(0, int(apy_to_bps) - int(apy_from_bps))
    return (
        Decimal(total_value)
        * Decimal(delta)
        * Decimal(horizon_days)
        / (Decimal(days_per_year) * Decimal(BPS_DENOMINATOR))
    )


def apply_buffer(cost: Decimal, profit_buffer_bps: int) -> Decimal:
    return cost * (Decimal(1) + Decimal(profit_buffer_bps) / Decimal(BPS_DENOMINATOR))


class MigrationEvaluator:
    """Profitability verdicts for moving a position between chains.

    Never raises on degenerate input: unknown chains, stale data, zero value
    and failed quotes all come back as ``profitable=False`` with a reason.
    """

    def __init__(
        self,
        yields: YieldRegistry,
        chains: ChainRegistry,
        bridge: BridgeAdapter,
        *,
        policy: PolicyConfig | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.yields = yields
        self.chains = chains
        self.bridge = bridge
        self.policy = policy or PolicyConfig()
        self.clock = clock or (lambda: int(time.time()))
        self.logger = logger.bind(component="MigrationEvaluator")

    def gas_estimate(self, chain_id: int, gas_price: int) -> int:
        link = self.chains.get(chain_id)
        units = link.base_gas_units if link is not None else self.policy.default_base_gas_units
        return int(units) * int(gas_price)

    def evaluate(
        self,
        from_chain: int,
        to_chain: int,
        token_pair_id: str,
        total_value: int,
        now: int | None = None,
    ) -> Evaluation:
        now = self.clock() if now is None else now
        policy = self.policy.for_pair(token_pair_id)

        if int(total_value) <= 0:
            return self._reject("zero value")
        if int(from_chain) == int(to_chain):
            return self._reject("source and destination are the same chain")
        link = self.chains.get(to_chain)
        if link is None or not link.active:
            return self._reject(f"unsupported destination chain {to_chain}")

        window = policy.freshness_window_s
        src = self.yields.get_fresh(from_chain, token_pair_id, window, now)
        dst = self.yields.get_fresh(to_chain, token_pair_id, window, now)
        if src is None or dst is None:
            missing = from_chain if src is None else to_chain
            return self._reject(f"no fresh yield data for chain {missing}")

        expected = project_yield(
            total_value,
            src.apy_bps,
            dst.apy_bps,
            horizon_days=policy.horizon_days,
            days_per_year=policy.days_per_year,
        )
        ok, fee = self.bridge.quote_fee(token_pair_id, int(total_value), int(to_chain))
        if not ok:
            return self._reject(
                f"bridge quote failed: {fee}",
                expected_yield=expected,
                apy_from_bps=src.apy_bps,
                apy_to_bps=dst.apy_bps,
            )
        gas_cost = self.gas_estimate(to_chain, dst.gas_price)
        cost = Decimal(fee) + Decimal(gas_cost)
        details = {
            "expected_yield": expected,
            "estimated_cost": cost,
            "apy_from_bps": src.apy_bps,
            "apy_to_bps": dst.apy_bps,
            "bridge_fee": int(fee),
            "gas_cost": gas_cost,
        }

        delta = dst.apy_bps - src.apy_bps
        if delta < link.yield_threshold_bps:
            return self._reject(
                f"yield delta {delta}bps below threshold {link.yield_threshold_bps}bps",
                **details,
            )
        if link.gas_price_threshold > 0 and dst.gas_price > link.gas_price_threshold:
            return self._reject(
                f"destination gas price {dst.gas_price} above threshold "
                f"{link.gas_price_threshold}",
                **details,
            )

        required = apply_buffer(cost, policy.profit_buffer_bps)
        if expected > required:
            self.logger.debug(
                f"{token_pair_id} {from_chain}->{to_chain} profitable: "
                f"{expected:.4f} > {required:.4f}"
            )
            return Evaluation(True, **details)
        return self._reject(
            f"expected yield {expected:.4f} does not cover buffered cost {required:.4f}",
            **details,
        )

    def _reject(self, reason: str, **details: Any) -> Evaluation:
        self.logger.debug(f"Migration not profitable: {reason}")
        details.setdefault("expected_yield", ZERO)
        details.setdefault("estimated_cost", ZERO)
        return Evaluation(False, reason=reason, **details)
