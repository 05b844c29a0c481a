"""
Hook Audit Log
==============

[AUDIT] Append-only trail of compliance checks, per identity.
- Newest entry first
- Capped at the most recent 20 entries (oldest dropped)
- list() returns a snapshot; later appends do not show up in it
"""

import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, List

from core.storage import KVStore, Namespace, StorageError

from .identity import normalize_identity

logger = logging.getLogger(__name__)

NAMESPACE = "hookAudit"
DEFAULT_AUDIT_CAP = 20


@dataclass(frozen=True)
class AuditEntry:
    """One evaluation outcome."""

    timestamp: int
    pool_id: str
    allowed: bool
    reason: str
    user_bitmap_ref: str
    rule_mask_ref: str
    receipt_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ts": self.timestamp,
            "poolId": self.pool_id,
            "allowed": self.allowed,
            "reason": self.reason,
            "userBmp": self.user_bitmap_ref,
            "ruleMask": self.rule_mask_ref,
            "txHash": self.receipt_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditEntry":
        try:
            return cls(
                timestamp=data["ts"],
                pool_id=data["poolId"],
                allowed=bool(data["allowed"]),
                reason=data["reason"],
                user_bitmap_ref=data["userBmp"],
                rule_mask_ref=data["ruleMask"],
                receipt_id=data["txHash"],
            )
        except (KeyError, TypeError) as e:
            raise StorageError(f"Corrupt audit entry: {data!r}") from e

    def as_row(self) -> Dict[str, Any]:
        return asdict(self)


class AuditLog:
    """Per-identity capped audit trail."""

    def __init__(self, store: KVStore, cap: int = DEFAULT_AUDIT_CAP):
        if cap < 1:
            raise ValueError("Audit cap must be at least 1")
        self._ns = Namespace(store, NAMESPACE)
        self.cap = cap

    async def append(self, identity: str, entry: AuditEntry) -> None:
        key = normalize_identity(identity)

        def _prepend(current):
            entries = list(current or [])
            entries.insert(0, entry.to_dict())
            return entries[:self.cap]

        await self._ns.update(key, _prepend)
        logger.debug(f"[AUDIT] {key}: {entry.reason} on {entry.pool_id[:10]}...")

    async def list(self, identity: str) -> List[AuditEntry]:
        """Entries for an identity, most recent first."""
        raw = await self._ns.get(normalize_identity(identity)) or []
        return [AuditEntry.from_dict(item) for item in raw]
