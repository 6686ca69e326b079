# MIT License
# Copyright (c) 2025 Hashborn

import os
from typing import Dict

# Global Constants
DENOM = "eth"
DECIMALS = 18

# Host operation costs
GAS_COSTS: Dict[str, int] = {
    "tx_base":        21_000,
    "call":              700,
    "call_value":      9_000,
    "sload":             800,
    "sstore":          5_000,
    "ecrecover":       3_000,
    "log":               375,
}

# Canonical v0.6 EntryPoint address
DEFAULT_ENTRY_POINT = "0x5ff137d4b0fdcd49dca30c7cf57e578a026d2789"

class NetworkConfig:
    def __init__(self,
                 network_id: str,
                 chain_id: int,
                 entry_point_address: str = DEFAULT_ENTRY_POINT,
                 tx_gas_limit: int = 30_000_000,
                 genesis_premine: int = 0,
                 # UserOperation defaults used by the client CLI
                 call_gas_limit: int = 200_000,
                 verification_gas_limit: int = 150_000,
                 pre_verification_gas: int = 50_000,
                 max_fee_per_gas: int = 1_000_000_000,
                 max_priority_fee_per_gas: int = 1_000_000_000,
                 # Devnet specific deterministic keys (hex strings)
                 faucet_priv_key: str = None):
        self.network_id = network_id
        self.chain_id = chain_id
        self.entry_point_address = entry_point_address
        self.tx_gas_limit = tx_gas_limit
        self.genesis_premine = genesis_premine
        self.call_gas_limit = call_gas_limit
        self.verification_gas_limit = verification_gas_limit
        self.pre_verification_gas = pre_verification_gas
        self.max_fee_per_gas = max_fee_per_gas
        self.max_priority_fee_per_gas = max_priority_fee_per_gas
        self.faucet_priv_key = faucet_priv_key

NETWORKS: Dict[str, NetworkConfig] = {
    "devnet": NetworkConfig(
        network_id="devnet",
        chain_id=1337,
        genesis_premine=1_000_000 * 10**DECIMALS,
        # Deterministic Faucet Key for Devnet
        faucet_priv_key="4f3edf982522b4e51b7e8b5f2f9c4d1d7a9e5f8c2b6d4e1a3c5b7d9e0f1a2b3c"
    ),
    "testnet": NetworkConfig(
        network_id="testnet",
        chain_id=11155111,
        tx_gas_limit=15_000_000,
        max_fee_per_gas=5_000_000_000,
        max_priority_fee_per_gas=1_000_000_000,
    ),
}

def get_network(name: str) -> NetworkConfig:
    if name not in NETWORKS:
        raise ValueError(f"Unknown network '{name}' (known: {', '.join(NETWORKS)})")
    return NETWORKS[name]

CURRENT_NETWORK = get_network(os.environ.get("AAWALLET_NETWORK", "devnet"))
