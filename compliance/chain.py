"""
Compliance Contract Client
==========================

[CHAIN] Python interface to the deployed UserRegistry and ComplianceHook
contracts. Used by LiveBackend; the demo backend never touches it.

Networks:
- Sepolia: ChainID 11155111 (demo deployments)
- Mainnet: ChainID 1

[USAGE]
    chain = ComplianceChain(
        rpc_url="https://ethereum-sepolia-rpc.publicnode.com",
        private_key="0x...",
        registry_address="0x...",
        hook_address="0x...",
    )

    eligible, reason_code = chain.check(user, pool_id)
    tx_hash = chain.set_pool_rule_mask(pool_id, 2051)

[ERRORS] RPC/transport failures surface as StorageError. Contract reverts
that mirror registry preconditions are mapped to AlreadyRegistered /
NotRegistered.
"""

import os
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from eth_account import Account

from core.storage import StorageError

from .errors import AlreadyRegistered, NotRegistered

logger = logging.getLogger(__name__)

# Lazy import
Web3 = None


def _ensure_web3():
    global Web3
    if Web3 is None:
        from web3 import Web3 as _Web3
        Web3 = _Web3
    return Web3


def _rpc_errors() -> Tuple[type, ...]:
    from web3.exceptions import Web3Exception
    return (Web3Exception, OSError)


# ============================================================================
# Network Configuration
# ============================================================================

@dataclass
class ChainNetwork:
    """EVM network the contracts are deployed on."""
    name: str
    chain_id: int
    rpc_url: str
    explorer_url: str


SEPOLIA = ChainNetwork(
    name="Sepolia",
    chain_id=11155111,
    rpc_url="https://ethereum-sepolia-rpc.publicnode.com",
    explorer_url="https://sepolia.etherscan.io",
)

MAINNET = ChainNetwork(
    name="Ethereum Mainnet",
    chain_id=1,
    rpc_url="https://ethereum-rpc.publicnode.com",
    explorer_url="https://etherscan.io",
)

NETWORKS = {
    "sepolia": SEPOLIA,
    "mainnet": MAINNET,
}


# ============================================================================
# Contract ABIs (only what the backend calls)
# ============================================================================

USER_REGISTRY_ABI = [
    {"inputs": [{"name": "encryptedProfileBitMap", "type": "bytes"}, {"name": "expiry", "type": "uint64"}], "name": "selfRegister", "outputs": [], "stateMutability": "nonpayable", "type": "function"},
    {"inputs": [{"name": "encryptedProfileBitMap", "type": "bytes"}, {"name": "expiry", "type": "uint64"}], "name": "selfUpdateProfile", "outputs": [], "stateMutability": "nonpayable", "type": "function"},
    {"inputs": [{"name": "user", "type": "address"}, {"name": "encryptedProfileBitMap", "type": "bytes"}, {"name": "expiry", "type": "uint64"}], "name": "setEncryptedProfileFor", "outputs": [], "stateMutability": "nonpayable", "type": "function"},
    {"inputs": [{"name": "user", "type": "address"}], "name": "revokeProfile", "outputs": [], "stateMutability": "nonpayable", "type": "function"},
    {"inputs": [{"name": "user", "type": "address"}], "name": "getEncryptedProfile", "outputs": [{"type": "bytes"}, {"type": "uint64"}], "stateMutability": "view", "type": "function"},
    {"inputs": [{"name": "user", "type": "address"}], "name": "isProfileValid", "outputs": [{"type": "bool"}, {"type": "bool"}], "stateMutability": "view", "type": "function"},
]

COMPLIANCE_HOOK_ABI = [
    {"inputs": [{"name": "user", "type": "address"}, {"name": "poolId", "type": "bytes32"}], "name": "check", "outputs": [{"type": "bool"}, {"type": "uint8"}], "stateMutability": "view", "type": "function"},
    {"inputs": [{"name": "poolId", "type": "bytes32"}, {"name": "mask", "type": "uint256"}], "name": "setPoolRuleMask", "outputs": [], "stateMutability": "nonpayable", "type": "function"},
    {"inputs": [{"name": "poolId", "type": "bytes32"}], "name": "poolRuleMask", "outputs": [{"type": "uint256"}], "stateMutability": "view", "type": "function"},

    # Events
    {"anonymous": False, "inputs": [{"indexed": True, "name": "user", "type": "address"}, {"indexed": True, "name": "poolId", "type": "bytes32"}, {"indexed": False, "name": "eligible", "type": "bool"}, {"indexed": False, "name": "reasonCode", "type": "uint8"}], "name": "ComplianceCheck", "type": "event"},
]


def pool_id_to_bytes32(pool_id: str) -> bytes:
    """'0x11..11' -> 32 raw bytes (left-padded)."""
    raw = bytes.fromhex(pool_id[2:] if pool_id.startswith("0x") else pool_id)
    if len(raw) > 32:
        raise ValueError(f"Pool id longer than 32 bytes: {pool_id}")
    return raw.rjust(32, b"\x00")


def ciphertext_to_bytes(ciphertext: str) -> bytes:
    return bytes.fromhex(ciphertext[2:] if ciphertext.startswith("0x") else ciphertext)


# ============================================================================
# Compliance Chain Client
# ============================================================================

class ComplianceChain:
    """
    Reads and writes the registry and hook contracts.

    [WRITES] Each write builds, signs and broadcasts a transaction with the
    configured key and returns the transaction hash without waiting.
    Use wait_for_receipt() when confirmation matters.
    """

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        private_key: Optional[str] = None,
        registry_address: Optional[str] = None,
        hook_address: Optional[str] = None,
        network: Optional[ChainNetwork] = None,
        w3: Any = None,
    ):
        """
        Args:
            rpc_url: RPC endpoint (or from RPC_URL env)
            private_key: Signer key (or from WALLET_PRIVATE_KEY env)
            registry_address: UserRegistry address (or from USER_REGISTRY_ADDRESS env)
            hook_address: ComplianceHook address (or from COMPLIANCE_HOOK_ADDRESS env)
            network: Network preset (default: Sepolia)
            w3: Pre-built Web3 instance (tests inject a mock here)
        """
        Web3 = _ensure_web3()

        self.network = network or SEPOLIA
        self.rpc_url = rpc_url or os.getenv("RPC_URL", self.network.rpc_url)
        self.private_key = private_key or os.getenv("WALLET_PRIVATE_KEY", "")
        registry_address = registry_address or os.getenv("USER_REGISTRY_ADDRESS", "")
        hook_address = hook_address or os.getenv("COMPLIANCE_HOOK_ADDRESS", "")

        if not registry_address or not hook_address:
            raise ValueError("Registry and hook contract addresses are required")

        self.w3 = w3 if w3 is not None else Web3(Web3.HTTPProvider(self.rpc_url))

        if self.private_key:
            self.account = Account.from_key(self.private_key)
            self.address = self.account.address
        else:
            self.account = None
            self.address = None

        self.registry = self.w3.eth.contract(
            address=Web3.to_checksum_address(registry_address),
            abi=USER_REGISTRY_ABI,
        )
        self.hook = self.w3.eth.contract(
            address=Web3.to_checksum_address(hook_address),
            abi=COMPLIANCE_HOOK_ABI,
        )
        logger.info(f"[CHAIN] Using {self.network.name} registry={registry_address} hook={hook_address}")

    # ========================================================================
    # Plumbing
    # ========================================================================

    @staticmethod
    def _checksum(address: str) -> str:
        Web3 = _ensure_web3()
        return Web3.to_checksum_address(address)

    def _call(self, fn) -> Any:
        try:
            return fn.call()
        except _rpc_errors() as e:
            raise StorageError(f"RPC call failed: {e}") from e

    def _send(self, fn, subject: str = "", gas: int = 300_000) -> str:
        if not self.account:
            raise ValueError("Private key required for transactions")

        try:
            tx = fn.build_transaction({
                "from": self.address,
                "nonce": self.w3.eth.get_transaction_count(self.address),
                "gas": gas,
                "gasPrice": self.w3.eth.gas_price,
                "chainId": self.network.chain_id,
            })
            signed = self.account.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except _rpc_errors() as e:
            message = str(e)
            if "Already registered" in message:
                raise AlreadyRegistered(subject) from e
            if "Not registered" in message:
                raise NotRegistered(subject) from e
            raise StorageError(f"Transaction failed: {e}") from e

        tx_hex = tx_hash.hex()
        return tx_hex if tx_hex.startswith("0x") else "0x" + tx_hex

    # ========================================================================
    # UserRegistry
    # ========================================================================

    def get_encrypted_profile(self, user: str) -> Tuple[str, int]:
        """Returns (ciphertext hex, expiry). Absent users read as ("0x", 0)."""
        ciphertext, expiry = self._call(
            self.registry.functions.getEncryptedProfile(self._checksum(user))
        )
        return "0x" + bytes(ciphertext).hex(), int(expiry)

    def is_profile_valid(self, user: str) -> Tuple[bool, bool]:
        exists, valid = self._call(
            self.registry.functions.isProfileValid(self._checksum(user))
        )
        return bool(exists), bool(valid)

    def self_register(self, ciphertext: str, expiry: int) -> str:
        tx_hash = self._send(
            self.registry.functions.selfRegister(ciphertext_to_bytes(ciphertext), int(expiry)),
            subject=self.address or "",
        )
        logger.info(f"[CHAIN] selfRegister: {tx_hash}")
        return tx_hash

    def self_update_profile(self, ciphertext: str, expiry: int) -> str:
        tx_hash = self._send(
            self.registry.functions.selfUpdateProfile(ciphertext_to_bytes(ciphertext), int(expiry)),
            subject=self.address or "",
        )
        logger.info(f"[CHAIN] selfUpdateProfile: {tx_hash}")
        return tx_hash

    def set_encrypted_profile_for(self, user: str, ciphertext: str, expiry: int) -> str:
        tx_hash = self._send(
            self.registry.functions.setEncryptedProfileFor(
                self._checksum(user), ciphertext_to_bytes(ciphertext), int(expiry)
            ),
            subject=user,
        )
        logger.info(f"[CHAIN] setEncryptedProfileFor {user}: {tx_hash}")
        return tx_hash

    def revoke_profile(self, user: str) -> str:
        tx_hash = self._send(
            self.registry.functions.revokeProfile(self._checksum(user)),
            subject=user,
        )
        logger.info(f"[CHAIN] revokeProfile {user}: {tx_hash}")
        return tx_hash

    # ========================================================================
    # ComplianceHook
    # ========================================================================

    def check(self, user: str, pool_id: str) -> Tuple[bool, int]:
        eligible, reason_code = self._call(
            self.hook.functions.check(self._checksum(user), pool_id_to_bytes32(pool_id))
        )
        return bool(eligible), int(reason_code)

    def pool_rule_mask(self, pool_id: str) -> int:
        return int(self._call(self.hook.functions.poolRuleMask(pool_id_to_bytes32(pool_id))))

    def set_pool_rule_mask(self, pool_id: str, mask: int) -> str:
        tx_hash = self._send(
            self.hook.functions.setPoolRuleMask(pool_id_to_bytes32(pool_id), int(mask)),
            subject=pool_id,
        )
        logger.info(f"[CHAIN] setPoolRuleMask {pool_id[:10]}... = {hex(mask)}: {tx_hash}")
        return tx_hash

    def compliance_check_events(
        self,
        user: str,
        pool_id: Optional[str] = None,
        from_block: int = 0,
    ) -> List[Dict[str, Any]]:
        """
        ComplianceCheck logs for a user, newest first.

        Returns:
            List of dicts with block_number, pool_id, eligible, reason_code, tx_hash
        """
        filters: Dict[str, Any] = {"user": self._checksum(user)}
        if pool_id:
            filters["poolId"] = pool_id_to_bytes32(pool_id)

        try:
            logs = self.hook.events.ComplianceCheck.get_logs(
                from_block=from_block,
                argument_filters=filters,
            )
        except _rpc_errors() as e:
            raise StorageError(f"Log query failed: {e}") from e

        events = []
        for log in logs:
            args = log["args"]
            tx_hash = log["transactionHash"]
            tx_hex = tx_hash.hex() if isinstance(tx_hash, (bytes, bytearray)) else str(tx_hash)
            events.append({
                "block_number": int(log["blockNumber"]),
                "pool_id": "0x" + bytes(args["poolId"]).hex(),
                "eligible": bool(args["eligible"]),
                "reason_code": int(args["reasonCode"]),
                "tx_hash": tx_hex if tx_hex.startswith("0x") else "0x" + tx_hex,
            })
        events.sort(key=lambda e: e["block_number"], reverse=True)
        return events

    # ========================================================================
    # Utilities
    # ========================================================================

    def wait_for_receipt(self, tx_hash: str, timeout: int = 120) -> Dict[str, Any]:
        """Block until the transaction is mined."""
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(
                bytes.fromhex(tx_hash.replace("0x", "")), timeout=timeout
            )
        except _rpc_errors() as e:
            raise StorageError(f"Receipt wait failed for {tx_hash}: {e}") from e
        return dict(receipt)

    def block_timestamp(self, block_number: int) -> int:
        try:
            block = self.w3.eth.get_block(block_number)
        except _rpc_errors() as e:
            raise StorageError(f"Block {block_number} unavailable: {e}") from e
        return int(block["timestamp"])

    def get_explorer_url(self, tx_hash: str) -> str:
        if not self.network.explorer_url:
            return ""
        return f"{self.network.explorer_url}/tx/{tx_hash}"
