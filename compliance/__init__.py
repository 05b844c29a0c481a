"""
Compliance Module
=================
Gated swap eligibility:
- Bitmap: eligibility attributes packed into an integer bitmap
- Registry: encrypted profiles per wallet (CredentialStore)
- Hook: per-pool rule masks, ordered evaluation, audit trail
- Ledger: simulated balances and hook-gated swaps
- Backend: simulated (local store) or live (deployed contracts)
"""

from .bitmap import Region, Bucket, build_bitmap, build_rule_mask, default_rule_mask, evaluate
from .errors import (
    ComplianceError,
    AlreadyRegistered,
    NotRegistered,
    InvalidAmount,
    DecryptionForbidden,
    UnsupportedOperation,
    HookBlocked,
    InfrastructureError,
)
from .credentials import Credential, CredentialStore
from .pool_rules import PoolRuleStore
from .audit import AuditEntry, AuditLog
from .balances import BalanceLedger
from .evaluator import ReasonCode, CheckResult, EligibilityEvaluator
from .swap import SwapReceipt, SwapSimulator
from .preferences import PreferenceStore
from .backend import EligibilityBackend, SimulatedBackend, LiveBackend, create_backend

__all__ = [
    # Bitmap
    "Region",
    "Bucket",
    "build_bitmap",
    "build_rule_mask",
    "default_rule_mask",
    "evaluate",
    # Errors
    "ComplianceError",
    "AlreadyRegistered",
    "NotRegistered",
    "InvalidAmount",
    "DecryptionForbidden",
    "UnsupportedOperation",
    "HookBlocked",
    "InfrastructureError",
    # Stores
    "Credential",
    "CredentialStore",
    "PoolRuleStore",
    "AuditEntry",
    "AuditLog",
    "BalanceLedger",
    "PreferenceStore",
    # Hook / swap
    "ReasonCode",
    "CheckResult",
    "EligibilityEvaluator",
    "SwapReceipt",
    "SwapSimulator",
    # Backend
    "EligibilityBackend",
    "SimulatedBackend",
    "LiveBackend",
    "create_backend",
]
