from __future__ import annotations

import threading

from eth_abi import decode, encode
from eth_utils import keccak, to_checksum_address

_ID_TYPES = ["address", "uint256", "uint256", "string", "uint256", "uint256", "uint256"]
_PAYLOAD_TYPES = ["bytes32", "address"]


def derive_migration_id(
    initiator: str,
    from_chain: int,
    to_chain: int,
    token_pair_id: str,
    amount0: int,
    amount1: int,
    nonce: int,
) -> str:
    preimage = encode(
        _ID_TYPES,
        [
            to_checksum_address(initiator),
            int(from_chain),
            int(to_chain),
            token_pair_id,
            int(amount0),
            int(amount1),
            int(nonce),
        ],
    )
    return "0x" + keccak(preimage).hex()


def encode_payload(migration_id: str, recipient: str) -> bytes:
    return encode(
        _PAYLOAD_TYPES,
        [bytes.fromhex(migration_id.removeprefix("0x")), to_checksum_address(recipient)],
    )


def decode_payload(payload: bytes) -> tuple[str, str]:
    raw_id, recipient = decode(_PAYLOAD_TYPES, payload)
    return "0x" + bytes(raw_id).hex(), to_checksum_address(recipient)


class NonceTracker:
    """Monotonic per-initiator counter feeding migration id derivation."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._next: dict[str, int] = {}

    def consume(self, initiator: str) -> int:
        with self._lock:
            nonce = self._next.get(initiator, 0)
            self._next[initiator] = nonce + 1
            return nonce
