"""
Eligibility Backends
====================

[BACKEND] One capability interface, two implementations, chosen once at
startup by create_backend():

- SimulatedBackend (mode=demo): every store runs over a local KVStore.
  Swaps and balances are simulated.
- LiveBackend (mode=production): profiles and pool rules live in the
  UserRegistry / ComplianceHook contracts; the audit trail is rebuilt
  from ComplianceCheck event logs. Swaps and demo balances have no
  on-chain counterpart and raise UnsupportedOperation.

Callers never branch on the mode.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from functools import partial
from typing import Dict, List, Optional, Tuple

from core.receipts import fake_tx_hash
from core.storage import KVStore, MemoryKVStore, SQLiteKVStore

from .audit import AuditEntry, AuditLog, DEFAULT_AUDIT_CAP
from .balances import BalanceLedger
from .chain import ComplianceChain, NETWORKS
from .credentials import Credential, CredentialStore
from .errors import UnsupportedOperation
from .evaluator import CheckResult, EligibilityEvaluator, EMPTY_BITMAP_REF, ReasonCode
from .fhe import MockVerifier, check_ciphertext
from .identity import normalize_identity
from .pool_rules import PoolRuleStore
from .preferences import PreferenceStore
from .swap import DEFAULT_SETTLEMENT_DELAY, SwapReceipt, SwapSimulator

logger = logging.getLogger(__name__)


class EligibilityBackend(ABC):
    """Operations available to the CLI and any other front end."""

    name = "base"

    def __init__(self, store: KVStore):
        self.store = store
        self.preferences = PreferenceStore(store)

    # Registry
    @abstractmethod
    async def register_profile(self, identity: str, ciphertext: str, expiry: int) -> str: ...

    @abstractmethod
    async def update_profile(self, identity: str, ciphertext: str, expiry: int) -> str: ...

    @abstractmethod
    async def issue_profile(self, identity: str, ciphertext: str, expiry: int) -> str: ...

    @abstractmethod
    async def revoke_profile(self, identity: str) -> str: ...

    @abstractmethod
    async def get_profile(self, identity: str) -> Optional[Credential]: ...

    @abstractmethod
    async def is_profile_valid(self, identity: str, now: Optional[int] = None) -> Tuple[bool, bool]: ...

    # Pools
    @abstractmethod
    async def set_pool_rule(self, pool_id: str, mask: int) -> str: ...

    @abstractmethod
    async def get_pool_rule(self, pool_id: str) -> int: ...

    # Hook
    @abstractmethod
    async def check(self, identity: str, pool_id: str, now: Optional[int] = None) -> CheckResult: ...

    @abstractmethod
    async def get_audit(self, identity: str) -> List[AuditEntry]: ...

    # Ledger
    @abstractmethod
    async def simulate_swap(
        self,
        identity: str,
        pool_id: str,
        from_token: str,
        to_token: str,
        amount: float,
        now: Optional[int] = None,
    ) -> SwapReceipt: ...

    @abstractmethod
    async def get_balances(self, identity: str) -> Dict[str, float]: ...

    @abstractmethod
    async def credit(self, identity: str, token: str, amount: float) -> float: ...

    @abstractmethod
    async def debit(self, identity: str, token: str, amount: float) -> float: ...

    async def reset(self) -> None:
        """Wipe all local state."""
        await self.store.clear()
        logger.warning(f"[BACKEND] {self.name}: local state cleared")

    async def close(self) -> None:
        await self.store.close()


# ============================================================================
# Simulated
# ============================================================================

class SimulatedBackend(EligibilityBackend):
    """All state in one KVStore; swaps settle on the simulated ledger."""

    name = "simulated"

    def __init__(
        self,
        store: KVStore,
        audit_cap: int = DEFAULT_AUDIT_CAP,
        settlement_delay: float = DEFAULT_SETTLEMENT_DELAY,
        verifier: Optional[MockVerifier] = None,
    ):
        super().__init__(store)
        self.credentials = CredentialStore(store)
        self.pool_rules = PoolRuleStore(store)
        self.audit_log = AuditLog(store, cap=audit_cap)
        self.ledger = BalanceLedger(store)
        self.evaluator = EligibilityEvaluator(
            self.credentials, self.pool_rules, self.audit_log, verifier=verifier
        )
        self.swapper = SwapSimulator(self.evaluator, self.ledger, settlement_delay=settlement_delay)

    async def register_profile(self, identity: str, ciphertext: str, expiry: int) -> str:
        return await self.credentials.register(identity, ciphertext, expiry)

    async def update_profile(self, identity: str, ciphertext: str, expiry: int) -> str:
        return await self.credentials.update(identity, ciphertext, expiry)

    async def issue_profile(self, identity: str, ciphertext: str, expiry: int) -> str:
        return await self.credentials.issue_for(identity, ciphertext, expiry)

    async def revoke_profile(self, identity: str) -> str:
        return await self.credentials.revoke(identity)

    async def get_profile(self, identity: str) -> Optional[Credential]:
        return await self.credentials.get(identity)

    async def is_profile_valid(self, identity: str, now: Optional[int] = None) -> Tuple[bool, bool]:
        return await self.credentials.is_valid(identity, now=now)

    async def set_pool_rule(self, pool_id: str, mask: int) -> str:
        return await self.pool_rules.set_rule(pool_id, mask)

    async def get_pool_rule(self, pool_id: str) -> int:
        return await self.pool_rules.get_rule(pool_id)

    async def check(self, identity: str, pool_id: str, now: Optional[int] = None) -> CheckResult:
        return await self.evaluator.check(identity, pool_id, now=now)

    async def get_audit(self, identity: str) -> List[AuditEntry]:
        return await self.audit_log.list(identity)

    async def simulate_swap(
        self,
        identity: str,
        pool_id: str,
        from_token: str,
        to_token: str,
        amount: float,
        now: Optional[int] = None,
    ) -> SwapReceipt:
        return await self.swapper.simulate_swap(identity, pool_id, from_token, to_token, amount, now=now)

    async def get_balances(self, identity: str) -> Dict[str, float]:
        return await self.ledger.get_balances(identity)

    async def credit(self, identity: str, token: str, amount: float) -> float:
        return await self.ledger.credit(identity, token, amount)

    async def debit(self, identity: str, token: str, amount: float) -> float:
        return await self.ledger.debit(identity, token, amount)


# ============================================================================
# Live
# ============================================================================

class LiveBackend(EligibilityBackend):
    """
    Contract-backed registry and hook.

    [BLOCKING] web3 HTTP calls are synchronous; they run in the default
    executor so the event loop keeps serving other tasks.

    [CLOCK] Validity and expiry are judged by the chain's block time, so
    the `now` arguments are ignored here.
    """

    name = "live"

    def __init__(self, chain: ComplianceChain, store: KVStore, audit_cap: int = DEFAULT_AUDIT_CAP):
        super().__init__(store)
        self.chain = chain
        self.audit_cap = audit_cap

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(fn, *args))

    def _is_signer(self, identity: str) -> bool:
        return bool(self.chain.address) and normalize_identity(identity) == self.chain.address.lower()

    async def register_profile(self, identity: str, ciphertext: str, expiry: int) -> str:
        if not self._is_signer(identity):
            raise ValueError(f"selfRegister signs as {self.chain.address}, not {identity}")
        return await self._run(self.chain.self_register, check_ciphertext(ciphertext), expiry)

    async def update_profile(self, identity: str, ciphertext: str, expiry: int) -> str:
        if not self._is_signer(identity):
            raise ValueError(f"selfUpdateProfile signs as {self.chain.address}, not {identity}")
        return await self._run(self.chain.self_update_profile, check_ciphertext(ciphertext), expiry)

    async def issue_profile(self, identity: str, ciphertext: str, expiry: int) -> str:
        return await self._run(self.chain.set_encrypted_profile_for, identity, check_ciphertext(ciphertext), expiry)

    async def revoke_profile(self, identity: str) -> str:
        return await self._run(self.chain.revoke_profile, identity)

    async def get_profile(self, identity: str) -> Optional[Credential]:
        exists, _valid = await self._run(self.chain.is_profile_valid, identity)
        if not exists:
            return None
        ciphertext, expiry = await self._run(self.chain.get_encrypted_profile, identity)
        return Credential(ciphertext="" if ciphertext == "0x" else ciphertext, expiry=expiry)

    async def is_profile_valid(self, identity: str, now: Optional[int] = None) -> Tuple[bool, bool]:
        return await self._run(self.chain.is_profile_valid, identity)

    async def set_pool_rule(self, pool_id: str, mask: int) -> str:
        if mask < 0:
            raise ValueError(f"Rule mask must be non-negative: {mask}")
        return await self._run(self.chain.set_pool_rule_mask, pool_id, mask)

    async def get_pool_rule(self, pool_id: str) -> int:
        return await self._run(self.chain.pool_rule_mask, pool_id)

    async def check(self, identity: str, pool_id: str, now: Optional[int] = None) -> CheckResult:
        key = normalize_identity(identity)
        allowed, code = await self._run(self.chain.check, key, pool_id)
        reason = ReasonCode(code)

        mask = await self._run(self.chain.pool_rule_mask, pool_id)
        profile = await self.get_profile(key)
        user_ref = profile.ciphertext if profile and profile.ciphertext else EMPTY_BITMAP_REF

        logger.info(f"[HOOK] live check {key} on {pool_id[:10]}... -> {reason.name}")
        # check() is a view call: the receipt only identifies this evaluation locally
        return CheckResult(
            allowed=allowed,
            reason=reason,
            user_bitmap_ref=user_ref,
            rule_mask_ref=hex(mask) if mask else EMPTY_BITMAP_REF,
            receipt_id=fake_tx_hash(f"check_{key}_{pool_id}_{reason.name}"),
        )

    async def get_audit(self, identity: str) -> List[AuditEntry]:
        events = await self._run(self.chain.compliance_check_events, identity)
        masks: Dict[str, int] = {}
        entries = []
        for event in events[:self.audit_cap]:
            pool_id = event["pool_id"]
            if pool_id not in masks:
                masks[pool_id] = await self._run(self.chain.pool_rule_mask, pool_id)
            entries.append(AuditEntry(
                timestamp=await self._run(self.chain.block_timestamp, event["block_number"]),
                pool_id=pool_id,
                allowed=event["eligible"],
                reason=ReasonCode(event["reason_code"]).name,
                user_bitmap_ref=EMPTY_BITMAP_REF,
                rule_mask_ref=hex(masks[pool_id]) if masks[pool_id] else EMPTY_BITMAP_REF,
                receipt_id=event["tx_hash"],
            ))
        return entries

    async def simulate_swap(
        self,
        identity: str,
        pool_id: str,
        from_token: str,
        to_token: str,
        amount: float,
        now: Optional[int] = None,
    ) -> SwapReceipt:
        raise UnsupportedOperation("Swap simulation is only available in demo mode")

    async def get_balances(self, identity: str) -> Dict[str, float]:
        raise UnsupportedOperation("Demo balances are only available in demo mode")

    async def credit(self, identity: str, token: str, amount: float) -> float:
        raise UnsupportedOperation("Demo balances are only available in demo mode")

    async def debit(self, identity: str, token: str, amount: float) -> float:
        raise UnsupportedOperation("Demo balances are only available in demo mode")


# ============================================================================
# Factory
# ============================================================================

async def create_backend(cfg=None, store: Optional[KVStore] = None) -> EligibilityBackend:
    """
    Build the backend selected by configuration.

    Args:
        cfg: Config instance (default: module-level config)
        store: Pre-built store; otherwise a SQLiteKVStore at cfg.storage.database_path

    Returns:
        Initialized backend; call close() when done
    """
    if cfg is None:
        from config import config as cfg

    if store is None:
        if cfg.storage.database_path == ":memory:":
            store = MemoryKVStore()
        else:
            store = SQLiteKVStore(cfg.storage.database_path)
            await store.initialize()

    if cfg.chain.mode == "production":
        network = NETWORKS.get(cfg.chain.network)
        if network is None:
            raise ValueError(f"Unknown network: {cfg.chain.network}")
        chain = ComplianceChain(
            rpc_url=cfg.chain.rpc_url or None,
            private_key=cfg.chain.private_key or None,
            registry_address=cfg.chain.registry_address or None,
            hook_address=cfg.chain.hook_address or None,
            network=network,
        )
        backend: EligibilityBackend = LiveBackend(chain, store, audit_cap=cfg.compliance.audit_cap)
    else:
        backend = SimulatedBackend(
            store,
            audit_cap=cfg.compliance.audit_cap,
            settlement_delay=cfg.compliance.settlement_delay,
        )

    logger.info(f"[BACKEND] Using {backend.name} backend (mode={cfg.chain.mode})")
    return backend
