"""
Eligibility Evaluator (Compliance Hook)
=======================================

[HOOK] Simulates ComplianceHook.check(user, poolId). Rules are evaluated
in strict order, first match wins:

    1. POOL_NOT_CONFIGURED  pool rule mask is 0
    2. NOT_REGISTERED       no credential for the identity
    3. EXPIRED              expiry <= now
    4. NOT_ELIGIBLE         verifier rejects the ciphertext against the mask
    5. OK

[AUDIT] Every call appends exactly one AuditEntry, allowed or not, with a
fresh receipt id.

[ERRORS] Ineligibility is returned as a ReasonCode, never raised. Only
StorageError (infrastructure) propagates.
"""

import time
import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional

from core.receipts import fake_tx_hash

from .audit import AuditEntry, AuditLog
from .credentials import CredentialStore
from .fhe import MockVerifier
from .identity import normalize_identity
from .pool_rules import PoolRuleStore

logger = logging.getLogger(__name__)

EMPTY_BITMAP_REF = "0x0"


class ReasonCode(IntEnum):
    """Hook reason codes (numeric values match the contract's uint8)."""

    OK = 0
    NOT_REGISTERED = 1
    EXPIRED = 2
    NOT_ELIGIBLE = 3
    POOL_NOT_CONFIGURED = 4

    @property
    def message(self) -> str:
        return REASON_TEXT[self]


REASON_TEXT = {
    ReasonCode.OK: "OK",
    ReasonCode.NOT_REGISTERED: "No credential found. Go to Get Verified.",
    ReasonCode.EXPIRED: "Credential expired. Re-verify to trade.",
    ReasonCode.NOT_ELIGIBLE: "Not eligible for this market.",
    ReasonCode.POOL_NOT_CONFIGURED: "Pool not configured.",
}


@dataclass(frozen=True)
class CheckResult:
    allowed: bool
    reason: ReasonCode
    user_bitmap_ref: str
    rule_mask_ref: str
    receipt_id: str


class EligibilityEvaluator:
    """Reads the credential and pool stores, decides, and audits."""

    def __init__(
        self,
        credentials: CredentialStore,
        pool_rules: PoolRuleStore,
        audit_log: AuditLog,
        verifier: Optional[MockVerifier] = None,
    ):
        self.credentials = credentials
        self.pool_rules = pool_rules
        self.audit_log = audit_log
        self.verifier = verifier or MockVerifier()

    async def _decide(self, identity: str, pool_id: str, now: int):
        rule_mask = await self.pool_rules.get_rule(pool_id)
        if rule_mask == 0:
            return ReasonCode.POOL_NOT_CONFIGURED, EMPTY_BITMAP_REF, EMPTY_BITMAP_REF

        mask_ref = hex(rule_mask)
        credential = await self.credentials.get(identity)
        if credential is None:
            return ReasonCode.NOT_REGISTERED, EMPTY_BITMAP_REF, mask_ref

        if credential.expiry <= now:
            return ReasonCode.EXPIRED, credential.ciphertext, mask_ref

        if not self.verifier.verify(credential.ciphertext, rule_mask):
            return ReasonCode.NOT_ELIGIBLE, credential.ciphertext, mask_ref

        return ReasonCode.OK, credential.ciphertext, mask_ref

    async def check(
        self,
        identity: str,
        pool_id: str,
        now: Optional[int] = None,
    ) -> CheckResult:
        """
        Evaluate an identity against a pool.

        Args:
            identity: Wallet-like address string
            pool_id: Pool identifier (bytes32 hex in the demo)
            now: Unix seconds used for the expiry comparison (default: wall clock)

        Returns:
            CheckResult with allowed flag, reason and receipt id
        """
        now = int(time.time()) if now is None else now
        key = normalize_identity(identity)

        reason, user_ref, mask_ref = await self._decide(key, pool_id, now)
        allowed = reason is ReasonCode.OK
        receipt_id = fake_tx_hash(f"check_{key}_{pool_id}_{reason.name}")

        await self.audit_log.append(key, AuditEntry(
            timestamp=now,
            pool_id=pool_id,
            allowed=allowed,
            reason=reason.name,
            user_bitmap_ref=user_ref or EMPTY_BITMAP_REF,
            rule_mask_ref=mask_ref,
            receipt_id=receipt_id,
        ))

        logger.info(f"[HOOK] check {key} on {pool_id[:10]}... -> {reason.name}")
        return CheckResult(
            allowed=allowed,
            reason=reason,
            user_bitmap_ref=user_ref or EMPTY_BITMAP_REF,
            rule_mask_ref=mask_ref,
            receipt_id=receipt_id,
        )
