ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

ADAPTER_POOL = "POOL"
ADAPTER_BRIDGE = "BRIDGE"
