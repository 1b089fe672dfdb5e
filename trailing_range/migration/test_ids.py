import pytest
from eth_abi.exceptions import DecodingError

from trailing_range.migration.ids import (
    NonceTracker,
    decode_payload,
    derive_migration_id,
    encode_payload,
)

ALICE = "0x4444444444444444444444444444444444444444"
BOB = "0x5555555555555555555555555555555555555555"
BASE_ARGS = (ALICE, 1, 137, "USDC/WETH", 6_000, 4_000, 0)


def test_id_is_deterministic():
    assert derive_migration_id(*BASE_ARGS) == derive_migration_id(*BASE_ARGS)


def test_id_accepts_lowercase_initiator():
    lower = (ALICE.lower(), *BASE_ARGS[1:])
    assert derive_migration_id(*lower) == derive_migration_id(*BASE_ARGS)


@pytest.mark.parametrize(
    "index, value",
    [(0, BOB), (2, 42161), (3, "USDC/WBTC"), (4, 6_001), (6, 1)],
)
def test_id_changes_with_any_field(index, value):
    args = list(BASE_ARGS)
    args[index] = value
    assert derive_migration_id(*args) != derive_migration_id(*BASE_ARGS)


def test_payload_carries_id_and_recipient():
    migration_id = derive_migration_id(*BASE_ARGS)
    payload = encode_payload(migration_id, BOB)
    assert len(payload) == 64
    assert decode_payload(payload) == (migration_id, BOB)


def test_truncated_payload_fails_to_decode():
    with pytest.raises(DecodingError):
        decode_payload(b"\x00" * 10)


def test_nonces_are_per_initiator():
    nonces = NonceTracker()
    assert nonces.consume(ALICE) == 0
    assert nonces.consume(ALICE) == 1
    assert nonces.consume(BOB) == 0
