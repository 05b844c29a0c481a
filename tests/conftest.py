"""
CloakSwap Test Configuration
============================

[QA] Central pytest configuration with fixtures for all test types:
- Unit tests: Isolated, in-memory stores, no settlement delay
- E2E tests: Full backend over a temp SQLite file, CLI entry point

[FIXTURES]
- memory_store / sqlite_store: Per-test KV stores
- credentials, pool_rules, audit_log, balance_ledger, evaluator, swapper
- simulated_backend: SimulatedBackend with zero settlement delay
- mock_chain: Fake web3 + registry/hook contracts for LiveBackend tests

Usage:
    pytest tests/unit/          # Fast unit tests
    pytest tests/e2e/           # End-to-end tests
"""

import os
import sys
import inspect
import tempfile
import shutil
import logging
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional, Tuple
from unittest.mock import MagicMock

import pytest
import pytest_asyncio

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

# Keep tests independent of a developer .env
os.environ["CLOAKSWAP_MODE"] = "demo"


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests (I/O, slower)")
    config.addinivalue_line("markers", "e2e: End-to-end tests (full stack)")
    config.addinivalue_line("markers", "slow: Slow tests (skip with -m 'not slow')")


def pytest_collection_modifyitems(config, items):
    """Auto-mark tests based on their path."""
    for item in items:
        if "/unit/" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "/e2e/" in str(item.fspath):
            item.add_marker(pytest.mark.e2e)

        if inspect.iscoroutinefunction(getattr(item, "obj", None)):
            item.add_marker(pytest.mark.asyncio)


# ============================================================================
# Logging Configuration
# ============================================================================

@pytest.fixture(scope="session", autouse=True)
def configure_logging():
    """Configure logging for tests."""
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("web3").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


# ============================================================================
# Constants
# ============================================================================

NOW = 1_700_000_000
DAY = 24 * 60 * 60

POOL_ID = "0x" + "11" * 32
OTHER_POOL_ID = "0x" + "22" * 32

USER_A = "0x1111111111111111111111111111111111111111"
USER_B = "0x2222222222222222222222222222222222222222"
USER_C = "0x3333333333333333333333333333333333333333"

# Well-known throwaway key (eth-account docs); never funded anywhere
TEST_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"

REGISTRY_ADDRESS = "0x" + "a" * 40
HOOK_ADDRESS = "0x" + "b" * 40


@pytest.fixture(scope="function")
def now() -> int:
    """Fixed evaluation clock."""
    return NOW


@pytest.fixture(scope="function")
def eligible_ciphertext() -> str:
    """Accredited, EU, bucket 1000: satisfies the default rule mask."""
    from compliance.bitmap import Bucket, Region, build_bitmap
    from compliance.fhe import encrypt_bitmap

    return encrypt_bitmap(build_bitmap(True, Region.EU, Bucket.B1K))


@pytest.fixture(scope="function")
def ineligible_ciphertext() -> str:
    """Not accredited, US, bucket 100."""
    from compliance.bitmap import Bucket, Region, build_bitmap
    from compliance.fhe import encrypt_bitmap

    return encrypt_bitmap(build_bitmap(False, Region.US, Bucket.B100))


# ============================================================================
# Temporary Directory Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    temp_path = Path(tempfile.mkdtemp(prefix="cloakswap_test_"))
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture(scope="function")
def isolated_db_file(temp_dir: Path) -> Generator[Path, None, None]:
    """Create isolated database file for persistence tests."""
    db_path = temp_dir / "test_cloakswap.db"
    yield db_path
    if db_path.exists():
        db_path.unlink()


# ============================================================================
# Store Fixtures (Isolated)
# ============================================================================

@pytest.fixture(scope="function")
def memory_store():
    """Fresh in-memory KV store."""
    from core.storage import MemoryKVStore
    return MemoryKVStore()


@pytest.fixture(scope="function")
def failing_balances_store():
    """Memory store whose balance writes fail once `fail_writes` is set."""
    from core.storage import MemoryKVStore, StorageError

    class FailingBalancesStore(MemoryKVStore):
        fail_writes = False

        async def _write(self, namespace, key, raw):
            if self.fail_writes and namespace == "balances":
                raise StorageError("disk I/O error")
            await super()._write(namespace, key, raw)

    return FailingBalancesStore()


@pytest_asyncio.fixture(scope="function")
async def sqlite_store(isolated_db_file: Path):
    """Initialized SQLite KV store on a temp file."""
    from core.storage import SQLiteKVStore

    store = SQLiteKVStore(str(isolated_db_file))
    await store.initialize()
    yield store
    await store.close()


# ============================================================================
# Component Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def credentials(memory_store):
    from compliance.credentials import CredentialStore
    return CredentialStore(memory_store)


@pytest.fixture(scope="function")
def pool_rules(memory_store):
    from compliance.pool_rules import PoolRuleStore
    return PoolRuleStore(memory_store)


@pytest.fixture(scope="function")
def audit_log(memory_store):
    from compliance.audit import AuditLog
    return AuditLog(memory_store)


@pytest.fixture(scope="function")
def balance_ledger(memory_store):
    from compliance.balances import BalanceLedger
    return BalanceLedger(memory_store)


@pytest.fixture(scope="function")
def evaluator(credentials, pool_rules, audit_log):
    from compliance.evaluator import EligibilityEvaluator
    return EligibilityEvaluator(credentials, pool_rules, audit_log)


@pytest.fixture(scope="function")
def swapper(evaluator, balance_ledger):
    """SwapSimulator without settlement delay."""
    from compliance.swap import SwapSimulator
    return SwapSimulator(evaluator, balance_ledger, settlement_delay=0)


@pytest_asyncio.fixture(scope="function")
async def simulated_backend(memory_store):
    """SimulatedBackend over an in-memory store, no settlement delay."""
    from compliance.backend import SimulatedBackend

    backend = SimulatedBackend(memory_store, settlement_delay=0)
    yield backend
    await backend.close()


@pytest_asyncio.fixture(scope="function")
async def seeded_backend(simulated_backend, eligible_ciphertext, ineligible_ciphertext, now):
    """
    Demo scenario on the simulated backend.

    - USER_A eligible, USER_B ineligible, both valid for 30 days
    - POOL_ID requires the default mask (2051)
    - USER_A holds 1000 USDC
    """
    from compliance.bitmap import default_rule_mask

    expiry = now + 30 * DAY
    await simulated_backend.issue_profile(USER_A, eligible_ciphertext, expiry)
    await simulated_backend.issue_profile(USER_B, ineligible_ciphertext, expiry)
    await simulated_backend.set_pool_rule(POOL_ID, default_rule_mask())
    await simulated_backend.credit(USER_A, "USDC", 1000)
    return simulated_backend


# ============================================================================
# Mock Blockchain / Web3 Fixtures
# ============================================================================

class _MockFunction:
    """Bound contract call: .call() for views, .build_transaction() for writes."""

    def __init__(self, contract: "MockContract", name: str, args: Tuple[Any, ...]):
        self.contract = contract
        self.name = name
        self.args = args

    def call(self) -> Any:
        return self.contract.view(self.name, *self.args)

    def build_transaction(self, tx: Dict[str, Any]) -> Dict[str, Any]:
        # Reverts surface here, like gas estimation on a real node.
        # The write is applied immediately.
        from web3 import Web3

        self.contract.write(self.name, tx["from"], *self.args)
        built = dict(tx)
        built.update({"to": Web3.to_checksum_address(self.contract.address), "data": "0x", "value": 0})
        return built


class _MockFunctions:
    def __init__(self, contract: "MockContract"):
        self._contract = contract

    def __getattr__(self, name: str):
        return lambda *args: _MockFunction(self._contract, name, args)


class MockContract:
    """Base for in-memory contract doubles."""

    def __init__(self, address: str):
        self.address = address
        self.functions = _MockFunctions(self)

    def view(self, name: str, *args) -> Any:
        return getattr(self, f"_view_{name}")(*args)

    def write(self, name: str, sender: str, *args) -> None:
        getattr(self, f"_write_{name}")(sender, *args)

    @staticmethod
    def revert(message: str):
        from web3.exceptions import ContractLogicError
        raise ContractLogicError(f"execution reverted: {message}")


class MockUserRegistry(MockContract):
    """UserRegistry double: address -> (ciphertext bytes, expiry)."""

    def __init__(self, address: str, clock):
        super().__init__(address)
        self.clock = clock
        self.profiles: Dict[str, Tuple[bytes, int]] = {}

    def _view_getEncryptedProfile(self, user):
        return self.profiles.get(user.lower(), (b"", 0))

    def _view_isProfileValid(self, user):
        if user.lower() not in self.profiles:
            return (False, False)
        ciphertext, expiry = self.profiles[user.lower()]
        return (True, bool(ciphertext) and expiry > self.clock())

    def _write_selfRegister(self, sender, ciphertext, expiry):
        if sender.lower() in self.profiles:
            self.revert("Already registered")
        self.profiles[sender.lower()] = (ciphertext, expiry)

    def _write_selfUpdateProfile(self, sender, ciphertext, expiry):
        if sender.lower() not in self.profiles:
            self.revert("Not registered")
        self.profiles[sender.lower()] = (ciphertext, expiry)

    def _write_setEncryptedProfileFor(self, sender, user, ciphertext, expiry):
        self.profiles[user.lower()] = (ciphertext, expiry)

    def _write_revokeProfile(self, sender, user):
        if user.lower() not in self.profiles:
            self.revert("Not registered")
        self.profiles[user.lower()] = (b"", self.profiles[user.lower()][1])


class MockComplianceHook(MockContract):
    """ComplianceHook double evaluating against a MockUserRegistry."""

    def __init__(self, address: str, registry: MockUserRegistry, clock):
        super().__init__(address)
        self.registry = registry
        self.clock = clock
        self.masks: Dict[bytes, int] = {}
        self.logs: List[Dict[str, Any]] = []
        self.events = MagicMock()
        self.events.ComplianceCheck.get_logs = self._get_logs

    def _view_poolRuleMask(self, pool_id):
        return self.masks.get(pool_id, 0)

    def _view_check(self, user, pool_id):
        mask = self.masks.get(pool_id, 0)
        if mask == 0:
            return (False, 4)
        if user.lower() not in self.registry.profiles:
            return (False, 1)
        ciphertext, expiry = self.registry.profiles[user.lower()]
        if expiry <= self.clock():
            return (False, 2)
        bitmap = int.from_bytes(ciphertext, "big") if ciphertext else 0
        if (bitmap & mask) != mask:
            return (False, 3)
        return (True, 0)

    def _write_setPoolRuleMask(self, sender, pool_id, mask):
        self.masks[pool_id] = mask

    def emit_check(self, user: str, pool_id: bytes, block_number: int) -> None:
        """Record a ComplianceCheck log as a swap through the hook would."""
        eligible, code = self._view_check(user, pool_id)
        self.logs.append({
            "args": {"user": user, "poolId": pool_id, "eligible": eligible, "reasonCode": code},
            "blockNumber": block_number,
            "transactionHash": bytes([block_number % 256]) * 32,
        })

    def _get_logs(self, from_block=0, argument_filters=None):
        user = (argument_filters or {}).get("user", "")
        return [
            log for log in self.logs
            if log["blockNumber"] >= from_block and log["args"]["user"].lower() == user.lower()
        ]


class MockWeb3:
    """
    Mock Web3 provider for testing without a real chain.

    [FEATURES]
    - Registry and hook contract doubles sharing one clock
    - Tracks sent raw transactions
    - Sepolia chainId
    """

    def __init__(self, chain_id: int = 11155111, clock_start: int = NOW):
        self.chain_id = chain_id
        self.timestamp = clock_start
        self.sent: List[bytes] = []
        self.nonces: Dict[str, int] = {}

        clock = lambda: self.timestamp
        self.registry = MockUserRegistry(REGISTRY_ADDRESS, clock)
        self.hook = MockComplianceHook(HOOK_ADDRESS, self.registry, clock)

        self.eth = MagicMock()
        self.eth.chain_id = chain_id
        self.eth.gas_price = 1_000_000_000  # 1 Gwei
        self.eth.contract = self._contract
        self.eth.get_transaction_count = self._get_nonce
        self.eth.send_raw_transaction = self._send_transaction
        self.eth.wait_for_transaction_receipt = self._wait_receipt
        self.eth.get_block = lambda number: {"number": number, "timestamp": clock_start + number * 12}

    def is_connected(self) -> bool:
        return True

    def _contract(self, address: Optional[str] = None, abi: Optional[List[Dict[str, Any]]] = None):
        names = {item.get("name") for item in abi or []}
        return self.hook if "check" in names else self.registry

    def _get_nonce(self, address: str) -> int:
        return self.nonces.get(address.lower(), 0)

    def _send_transaction(self, raw_tx: bytes) -> bytes:
        self.sent.append(bytes(raw_tx))
        return bytes.fromhex(f"{len(self.sent):064x}")

    def _wait_receipt(self, tx_hash: bytes, **kwargs) -> Dict[str, Any]:
        return {"transactionHash": tx_hash, "status": 1, "blockNumber": len(self.sent)}


@pytest.fixture(scope="function")
def mock_chain() -> MockWeb3:
    """
    Mock blockchain for live backend tests.

    [USAGE]
        def test_live(mock_chain):
            mock_chain.timestamp += 31 * DAY   # advance block time
    """
    return MockWeb3()


@pytest.fixture(scope="function")
def compliance_chain(mock_chain: MockWeb3):
    """ComplianceChain bound to the mock provider."""
    from compliance.chain import ComplianceChain, SEPOLIA

    return ComplianceChain(
        rpc_url="http://localhost:8545",
        private_key=TEST_PRIVATE_KEY,
        registry_address=REGISTRY_ADDRESS,
        hook_address=HOOK_ADDRESS,
        network=SEPOLIA,
        w3=mock_chain,
    )


@pytest_asyncio.fixture(scope="function")
async def live_backend(compliance_chain, memory_store):
    from compliance.backend import LiveBackend

    backend = LiveBackend(compliance_chain, memory_store)
    yield backend
    await backend.close()
