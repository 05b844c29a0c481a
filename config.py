"""
CloakSwap Configuration
=======================
Central configuration for the eligibility backend and CLI.
"""

from dataclasses import dataclass, field
from typing import Dict

import os

# ============================================================================
# Mode / Network Selection
# ============================================================================

# demo: simulated ledger on a local store; production: deployed contracts
CLOAKSWAP_MODE: str = os.getenv("CLOAKSWAP_MODE", "demo").lower()
if CLOAKSWAP_MODE not in ("demo", "production"):
    CLOAKSWAP_MODE = "demo"

CLOAKSWAP_NETWORK: str = os.getenv("CLOAKSWAP_NETWORK", "sepolia").lower()
if CLOAKSWAP_NETWORK not in ("sepolia", "mainnet"):
    CLOAKSWAP_NETWORK = "sepolia"

# Demo pool: bytes32 with every byte 0x11
DEMO_POOL_ID = "0x" + "11" * 32


@dataclass
class StorageConfig:
    """Local persistence."""

    # SQLite file for the simulated ledger (":memory:" keeps it in-process)
    database_path: str = os.getenv("CLOAKSWAP_DB", "cloakswap.db")


@dataclass
class ComplianceConfig:
    """Hook / registry behaviour of the simulated backend."""

    # Audit entries kept per identity
    audit_cap: int = 20

    # Simulated swap settlement (seconds)
    settlement_delay: float = 1.2

    # Lifetime of credentials issued by the CLI (days)
    default_expiry_days: int = 30

    default_pool_id: str = DEMO_POOL_ID


@dataclass
class ChainConfig:
    """Deployed contracts (production mode only)."""

    mode: str = CLOAKSWAP_MODE
    network: str = CLOAKSWAP_NETWORK
    rpc_url: str = os.getenv("RPC_URL", "")
    private_key: str = os.getenv("WALLET_PRIVATE_KEY", "")
    registry_address: str = os.getenv("USER_REGISTRY_ADDRESS", "")
    hook_address: str = os.getenv("COMPLIANCE_HOOK_ADDRESS", "")


@dataclass
class Config:
    """Root configuration."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    compliance: ComplianceConfig = field(default_factory=ComplianceConfig)
    chain: ChainConfig = field(default_factory=ChainConfig)


# Global configuration instance
config = Config()


def get_current_network() -> Dict[str, object]:
    """Return the active network preset."""
    from compliance.chain import NETWORKS

    preset = NETWORKS[config.chain.network]
    return {
        "key": config.chain.network,
        "name": preset.name,
        "chain_id": preset.chain_id,
        "rpc_url": config.chain.rpc_url or preset.rpc_url,
        "explorer_url": preset.explorer_url,
    }
