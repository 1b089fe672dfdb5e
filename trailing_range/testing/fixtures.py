import pytest

from trailing_range.controller import RangeController
from trailing_range.core.access import Role
from trailing_range.core.config import PolicyConfig
from trailing_range.core.constants.chains import (
    CHAIN_ID_ARBITRUM,
    CHAIN_ID_ETHEREUM,
    CHAIN_ID_POLYGON,
    SPOKE_POOLS,
)
from trailing_range.testing.fakes import FakeBridgeAdapter, FakeClock, FakePoolAdapter

OWNER = "0x1111111111111111111111111111111111111111"
UPDATER = "0x2222222222222222222222222222222222222222"
RELAYER = "0x3333333333333333333333333333333333333333"
ALICE = "0x4444444444444444444444444444444444444444"
BOB = "0x5555555555555555555555555555555555555555"
STRANGER = "0x6666666666666666666666666666666666666666"

PAIR = "USDC/WETH"
POOL_ID = "0xpool-usdc-weth"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def pool_adapter():
    adapter = FakePoolAdapter(chain_id=CHAIN_ID_ETHEREUM)
    adapter.add_pool(POOL_ID, tick=0, tick_spacing=60)
    return adapter


@pytest.fixture
def bridge_adapter():
    return FakeBridgeAdapter(fee=5)


@pytest.fixture
def policy():
    return PolicyConfig()


@pytest.fixture
def system(clock, pool_adapter, bridge_adapter, policy):
    """Controller on Ethereum with Polygon and Arbitrum as destinations.

    Destination chains use one gas unit so gas cost equals the gas price.
    """
    controller = RangeController(
        chain_id=CHAIN_ID_ETHEREUM,
        owner=OWNER,
        pool_adapter=pool_adapter,
        bridge_adapter=bridge_adapter,
        policy=policy,
        clock=clock,
    )
    controller.access.grant(OWNER, Role.YIELD_UPDATER, UPDATER)
    controller.access.grant(OWNER, Role.BRIDGE_CALLER, RELAYER)
    for chain_id in (CHAIN_ID_ETHEREUM, CHAIN_ID_POLYGON, CHAIN_ID_ARBITRUM):
        controller.chains.register_chain(
            OWNER, chain_id, SPOKE_POOLS[chain_id], base_gas_units=1
        )
    yield controller
    controller.close()
