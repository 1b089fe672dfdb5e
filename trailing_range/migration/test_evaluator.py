from decimal import Decimal

import pytest

from trailing_range.core.config import PairPolicy, PolicyConfig
from trailing_range.migration.evaluator import apply_buffer, project_yield
from trailing_range.testing.fixtures import OWNER, PAIR, UPDATER

ETH, POLYGON, ARBITRUM = 1, 137, 42161


@pytest.fixture
def evaluator(system):
    return system.evaluator


def _quote(system, chain_id, apy, gas=2, now=None):
    system.yields.update(UPDATER, chain_id, PAIR, apy, 1_000_000, gas, now=now)


def test_project_yield_linear():
    assert project_yield(36_500, 0, 100, horizon_days=365, days_per_year=365) == Decimal(365)
    assert project_yield(10_000, 800, 400, horizon_days=30, days_per_year=365) == 0


def test_apply_buffer():
    assert apply_buffer(Decimal(100), 1_000) == Decimal(110)
    assert apply_buffer(Decimal(100), 0) == Decimal(100)


def test_profitable_migration(system, evaluator):
    _quote(system, ETH, 400)
    _quote(system, POLYGON, 800, gas=2)

    result = evaluator.evaluate(ETH, POLYGON, PAIR, 10_000)

    assert result.profitable
    assert round(result.expected_yield, 2) == Decimal("32.88")
    assert result.estimated_cost == Decimal(7)
    assert result.bridge_fee == 5
    assert result.gas_cost == 2
    assert result.reason is None


def test_small_delta_not_profitable(system, evaluator):
    system.chains.set_thresholds(OWNER, POLYGON, yield_threshold_bps=0)
    _quote(system, ETH, 400)
    _quote(system, POLYGON, 420)

    result = evaluator.evaluate(ETH, POLYGON, PAIR, 10_000)

    assert not result.profitable
    assert round(result.expected_yield, 2) == Decimal("1.64")
    assert result.estimated_cost == Decimal(7)
    assert "buffered cost" in result.reason


def test_delta_below_chain_yield_threshold(system, evaluator):
    _quote(system, ETH, 400)
    _quote(system, POLYGON, 450)
    result = evaluator.evaluate(ETH, POLYGON, PAIR, 10**12)
    assert not result.profitable
    assert "below threshold" in result.reason


def test_destination_gas_above_threshold(system, evaluator):
    _quote(system, ETH, 400)
    _quote(system, POLYGON, 800, gas=60 * 10**9)
    result = evaluator.evaluate(ETH, POLYGON, PAIR, 10**30)
    assert not result.profitable
    assert "gas price" in result.reason


def test_buffered_cost_must_be_strictly_exceeded(system, evaluator, bridge_adapter):
    system.chains.set_thresholds(OWNER, POLYGON, yield_threshold_bps=0)
    _quote(system, ETH, 400)
    _quote(system, POLYGON, 500, gas=2)

    # 40150 * 100bps * 30 / (365 * 10000) == 33 == (28 + 2) * 1.1
    bridge_adapter.fee = 28
    result = evaluator.evaluate(ETH, POLYGON, PAIR, 40_150)
    assert result.expected_yield == Decimal(33)
    assert not result.profitable

    bridge_adapter.fee = 27
    assert evaluator.evaluate(ETH, POLYGON, PAIR, 40_150).profitable


@pytest.mark.parametrize("value", [0, -5])
def test_zero_value_not_profitable(system, evaluator, value):
    _quote(system, ETH, 400)
    _quote(system, POLYGON, 800)
    result = evaluator.evaluate(ETH, POLYGON, PAIR, value)
    assert not result.profitable
    assert result.expected_yield == 0
    assert result.estimated_cost == 0


def test_same_chain_not_profitable(system, evaluator):
    _quote(system, ETH, 400)
    assert not evaluator.evaluate(ETH, ETH, PAIR, 10_000).profitable


def test_unknown_and_inactive_destinations(system, evaluator):
    _quote(system, ETH, 400)
    _quote(system, POLYGON, 800)
    _quote(system, 999, 900)

    assert "unsupported" in evaluator.evaluate(ETH, 999, PAIR, 10_000).reason

    system.chains.deregister_chain(OWNER, POLYGON)
    result = evaluator.evaluate(ETH, POLYGON, PAIR, 10_000)
    assert not result.profitable
    assert "unsupported" in result.reason


def test_stale_data_not_profitable(system, evaluator, clock):
    _quote(system, ETH, 400)
    _quote(system, POLYGON, 800, now=clock.now - 7_200)
    result = evaluator.evaluate(ETH, POLYGON, PAIR, 10_000)
    assert not result.profitable
    assert f"chain {POLYGON}" in result.reason


def test_missing_source_data_not_profitable(system, evaluator):
    _quote(system, ARBITRUM, 800)
    result = evaluator.evaluate(ETH, ARBITRUM, PAIR, 10_000)
    assert not result.profitable
    assert f"chain {ETH}" in result.reason


def test_bridge_quote_failure_is_a_verdict(system, evaluator, bridge_adapter):
    _quote(system, ETH, 400)
    _quote(system, POLYGON, 800)
    bridge_adapter.fail_quote = "relayer offline"

    result = evaluator.evaluate(ETH, POLYGON, PAIR, 10_000)

    assert not result.profitable
    assert "relayer offline" in result.reason
    assert result.apy_to_bps == 800


def test_pair_override_changes_horizon(system, evaluator):
    evaluator.policy = PolicyConfig(pair_overrides={PAIR: PairPolicy(horizon_days=365)})
    _quote(system, ETH, 400)
    _quote(system, POLYGON, 800)

    result = evaluator.evaluate(ETH, POLYGON, PAIR, 10_000)
    assert result.expected_yield == Decimal(400)


def test_evaluation_to_dict_serializes_decimals(system, evaluator):
    _quote(system, ETH, 400)
    _quote(system, POLYGON, 800)
    data = evaluator.evaluate(ETH, POLYGON, PAIR, 10_000).to_dict()
    assert data["profitable"] is True
    assert data["estimated_cost"] == "7"
