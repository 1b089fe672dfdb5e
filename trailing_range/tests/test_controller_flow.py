"""End-to-end price event handling through the wired controller."""

from __future__ import annotations

import pytest

from trailing_range.controller import RangeController
from trailing_range.core.config import set_config
from trailing_range.core.constants.chains import SPOKE_POOLS
from trailing_range.core.models import MigrationStatus
from trailing_range.testing.fakes import FakeBridgeAdapter, FakePoolAdapter
from trailing_range.testing.fixtures import OWNER, PAIR, POOL_ID, RELAYER, UPDATER

ETH, POLYGON = 1, 137
FUNDING = 10**18
HEIGHT = 100


@pytest.fixture
def opened(system):
    return system.range_manager.open_position(OWNER, POOL_ID, FUNDING, FUNDING, HEIGHT)


def _publish_yields(system, *, current=400, polygon=800):
    system.yields.update(UPDATER, ETH, PAIR, current, 5_000_000, 1)
    system.yields.update(UPDATER, POLYGON, PAIR, polygon, 5_000_000, 2)


def test_skips_without_position(system):
    outcome = system.on_price_event(POOL_ID, PAIR, HEIGHT)
    assert outcome.skipped_reason == "no active position"


def test_skips_while_paused(system, opened):
    system.pause.pause(OWNER)
    outcome = system.on_price_event(POOL_ID, PAIR, HEIGHT + 20)
    assert outcome.skipped_reason == "paused"
    assert system.get_position(POOL_ID) == opened


def test_rebalances_on_drift(system, opened, pool_adapter):
    pool_adapter.set_tick(POOL_ID, 600)
    outcome = system.on_price_event(POOL_ID, PAIR, HEIGHT + 10)

    assert outcome.rebalanced
    assert outcome.current_tick == 600
    assert outcome.best_chain == ETH
    assert outcome.evaluation is None
    assert system.get_position(POOL_ID).lower_tick == 540


def test_no_rebalance_inside_cooldown(system, opened, pool_adapter):
    pool_adapter.set_tick(POOL_ID, 600)
    outcome = system.on_price_event(POOL_ID, PAIR, HEIGHT + 1)
    assert not outcome.rebalanced
    assert outcome.errors == []
    assert system.get_position(POOL_ID) == opened


def test_rebalance_failure_is_reported(system, opened, pool_adapter):
    pool_adapter.set_tick(POOL_ID, 600)
    pool_adapter.fail_on.add("remove")
    outcome = system.on_price_event(POOL_ID, PAIR, HEIGHT + 10)
    assert not outcome.rebalanced
    assert outcome.errors[0].startswith("rebalance_aborted")


def test_evaluates_better_chain_without_migrating(system, opened):
    _publish_yields(system)
    outcome = system.on_price_event(POOL_ID, PAIR, HEIGHT + 1)

    assert (outcome.best_chain, outcome.yield_delta_bps) == (POLYGON, 400)
    assert outcome.evaluation.profitable
    assert outcome.migration_id is None
    assert system.get_position(POOL_ID).active


def test_cross_chain_disabled_stops_after_rebalance(system, opened):
    system.range_manager.configure_pool(
        OWNER,
        POOL_ID,
        rebalance_threshold_bps=100,
        range_width_ticks=60,
        cross_chain_enabled=False,
    )
    _publish_yields(system)
    outcome = system.on_price_event(POOL_ID, PAIR, HEIGHT + 1)
    assert outcome.best_chain is None


def test_auto_migration_moves_position(system, opened, bridge_adapter):
    _publish_yields(system)
    outcome = system.on_price_event(
        POOL_ID, PAIR, HEIGHT + 1, auto_migrate=True, operator=OWNER
    )

    migration = system.get_migration(outcome.migration_id)
    assert migration.status is MigrationStatus.IN_PROGRESS
    assert migration.to_chain == POLYGON
    assert migration.total_amount > 0
    assert not system.get_position(POOL_ID).active
    assert system.balances.balance_of(OWNER, PAIR) == (0, 0)
    assert len(bridge_adapter.transfers) == 1

    system.orchestrator.on_receive(
        RELAYER, bridge_adapter.transfers[0].payload, migration.amount0, migration.amount1
    )
    assert system.get_migration(migration.id).status is MigrationStatus.COMPLETED


def test_auto_migration_requires_operator(system, opened):
    _publish_yields(system)
    outcome = system.on_price_event(POOL_ID, PAIR, HEIGHT + 1, auto_migrate=True)
    assert outcome.migration_id is None
    assert outcome.errors == ["auto migration requires an operator"]
    assert system.get_position(POOL_ID).active


def test_auto_migration_rejected_reopens_position(system, opened):
    _publish_yields(system)
    system.orchestrator.set_migration_bounds(OWNER, 1, 10**6)

    outcome = system.on_price_event(
        POOL_ID, PAIR, HEIGHT + 1, auto_migrate=True, operator=OWNER
    )

    assert outcome.migration_id is None
    assert any(e.startswith("validation") for e in outcome.errors)
    position = system.get_position(POOL_ID)
    assert position.active
    assert position.liquidity > 0
    assert system.balances.balance_of(OWNER, PAIR) == (0, 0)


def test_failed_reopen_leaves_funds_with_operator(system, opened, pool_adapter, monkeypatch):
    _publish_yields(system)
    system.orchestrator.set_migration_bounds(OWNER, 1, 10)
    original = pool_adapter.read_current_tick
    reads = []

    def flaky_tick(pool_id):
        reads.append(pool_id)
        if len(reads) > 1:
            raise RuntimeError("pool unavailable")
        return original(pool_id)

    monkeypatch.setattr(pool_adapter, "read_current_tick", flaky_tick)

    outcome = system.on_price_event(
        POOL_ID, PAIR, HEIGHT + 1, auto_migrate=True, operator=OWNER
    )

    assert outcome.migration_id is None
    assert len(outcome.errors) == 2
    assert outcome.errors[0].startswith("validation")
    assert outcome.errors[1].startswith("rebalance_aborted")
    position = system.get_position(POOL_ID)
    assert not position.active
    assert position.liquidity == 0
    released = system.balances.balance_of(OWNER, PAIR)
    assert sum(released) > 0
    assert system.escrow.held_totals() == (0, 0)


def test_report_summarizes_state(system, opened):
    _publish_yields(system)
    system.on_price_event(POOL_ID, PAIR, HEIGHT + 1, auto_migrate=True, operator=OWNER)

    report = system.report()
    assert report["positions"] == {"total": 1, "active": 0}
    assert report["migrations"]["IN_PROGRESS"] == 1
    assert report["escrow_held"] == [0, 0]
    assert report["active_chains"] == [1, 137, 42161]
    assert report["events"]["MIGRATION_CREATED"] == 1


def test_yield_comparison_and_estimate(system):
    _publish_yields(system)
    rows = system.yield_comparison(PAIR)
    assert [r["chain_id"] for r in rows] == [POLYGON, ETH]
    assert system.estimate_migration(POLYGON, PAIR, 10_000).profitable


def test_from_config_bootstraps_chains(clock):
    set_config(
        {
            "policy": {"cooldown_blocks": 2},
            "chains": [
                {"chain_id": 10, "bridge_endpoint": SPOKE_POOLS[10], "base_gas_units": 1}
            ],
        }
    )
    try:
        with RangeController.from_config(
            chain_id=ETH,
            owner=OWNER,
            pool_adapter=FakePoolAdapter(),
            bridge_adapter=FakeBridgeAdapter(),
            clock=clock,
        ) as controller:
            assert controller.policy.cooldown_blocks == 2
            assert controller.chains.active_chains() == [10]
    finally:
        set_config({})


def test_events_are_stamped_with_controller_clock(system, opened, clock):
    clock.advance(30)
    system.pause.pause(OWNER)

    opened_event = system.events.history("POSITION_OPENED")[-1]
    assert opened_event.emitted_at == clock.now - 30
    assert system.events.history()[-1].emitted_at == clock.now
