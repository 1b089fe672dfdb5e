CHAIN_ID_ETHEREUM = 1
CHAIN_ID_OPTIMISM = 10
CHAIN_ID_POLYGON = 137
CHAIN_ID_BASE = 8453
CHAIN_ID_ARBITRUM = 42161

# Across spoke pools used as the bridge endpoint on each chain.
SPOKE_POOLS: dict[int, str] = {
    CHAIN_ID_ETHEREUM: "0x5c7BCd6E7De5423a257D81B442095A1a6ced35C5",
    CHAIN_ID_OPTIMISM: "0x6f26Bf09B1C792e3228e5467807a900A503c0281",
    CHAIN_ID_POLYGON: "0x9295ee1d8C5b022Be115A2AD3c30C72E34e7F096",
    CHAIN_ID_BASE: "0x09aea4b2242abC8bb4BB78D537A67a245A7bEC64",
    CHAIN_ID_ARBITRUM: "0xe35e9842fceaCA96570B734083f4a58e8F7C5f2A",
}
