import pytest

from trailing_range.core.constants.chains import SPOKE_POOLS
from trailing_range.core.errors import AccessDenied, ValidationError
from trailing_range.testing.fixtures import OWNER, STRANGER

OPTIMISM = 10


def test_register_requires_admin(system):
    with pytest.raises(AccessDenied):
        system.chains.register_chain(STRANGER, OPTIMISM, SPOKE_POOLS[OPTIMISM])
    assert system.chains.get(OPTIMISM) is None


def test_register_and_deregister(system):
    link = system.chains.register_chain(
        OWNER, OPTIMISM, SPOKE_POOLS[OPTIMISM], yield_threshold_bps=150
    )
    assert link.active
    assert link.yield_threshold_bps == 150
    assert OPTIMISM in system.chains.active_chains()

    system.chains.deregister_chain(OWNER, OPTIMISM)
    assert not system.chains.is_active(OPTIMISM)
    # kept for history, only deactivated
    assert system.chains.get(OPTIMISM) is not None


def test_register_rejects_bad_endpoint(system):
    with pytest.raises(ValidationError):
        system.chains.register_chain(OWNER, OPTIMISM, "not-an-address")


def test_set_thresholds(system):
    link = system.chains.set_thresholds(
        OWNER, 137, gas_price_threshold=7, yield_threshold_bps=0
    )
    assert link.gas_price_threshold == 7
    assert link.yield_threshold_bps == 0
    assert link.base_gas_units == 1


def test_set_thresholds_unknown_chain(system):
    with pytest.raises(ValidationError):
        system.chains.set_thresholds(OWNER, 999_999, gas_price_threshold=1)


def test_set_thresholds_rejects_negative(system):
    with pytest.raises(ValidationError):
        system.chains.set_thresholds(OWNER, 137, yield_threshold_bps=-1)


def test_bootstrap_from_config_entries(system):
    links = system.chains.bootstrap(
        OWNER,
        [
            {
                "chain_id": OPTIMISM,
                "bridge_endpoint": SPOKE_POOLS[OPTIMISM],
                "base_gas_units": 200_000,
            }
        ],
    )
    assert links[0].base_gas_units == 200_000
    assert system.chains.is_active(OPTIMISM)
