"""
Credential Store
================

[REGISTRY] One encrypted profile per identity:
    {bitmapCiphertext: "0x...", expiry: <unix seconds>}

Lifecycle:
    Absent --register/issue--> Valid | Expired
    Valid | Expired --update/issue--> Valid | Expired
    Valid | Expired --revoke--> RevokedButExists

[PATHS]
- register(): self-service, fails if a record exists
- update(): self-service, fails if no record exists
- issue_for(): issuer/admin path, overwrites unconditionally
- revoke(): clears the ciphertext, the record itself stays

A credential is VALID iff its ciphertext is non-empty and expiry > now.
"""

import time
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from core.receipts import fake_tx_hash
from core.storage import KVStore, Namespace, StorageError

from .errors import AlreadyRegistered, NotRegistered
from .fhe import check_ciphertext
from .identity import normalize_identity, user_id_for

logger = logging.getLogger(__name__)

NAMESPACE = "profiles"


@dataclass
class Credential:
    """Encrypted eligibility profile."""

    ciphertext: str
    expiry: int

    @property
    def revoked(self) -> bool:
        return not self.ciphertext

    def is_valid(self, now: int) -> bool:
        return bool(self.ciphertext) and self.expiry > now

    def to_dict(self) -> Dict[str, Any]:
        return {"bitmapCiphertext": self.ciphertext, "expiry": self.expiry}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Credential":
        try:
            return cls(ciphertext=data.get("bitmapCiphertext", ""), expiry=int(data["expiry"]))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise StorageError(f"Corrupt profile record: {data!r}") from e


class CredentialStore:
    """Persistent identity -> Credential mapping."""

    def __init__(self, store: KVStore):
        self._ns = Namespace(store, NAMESPACE)

    async def register(self, identity: str, ciphertext: str, expiry: int) -> str:
        """
        Self-register a new profile.

        Raises:
            AlreadyRegistered: a record exists for this identity (even a revoked one)
            ValueError: ciphertext is not bytes32 hex

        Returns:
            Receipt id of the write
        """
        key = normalize_identity(identity)
        record = Credential(ciphertext=check_ciphertext(ciphertext), expiry=int(expiry))

        def _create(current: Optional[Dict[str, Any]]) -> Dict[str, Any]:
            if current is not None:
                raise AlreadyRegistered(key)
            return record.to_dict()

        await self._ns.update(key, _create)
        logger.info(f"[REGISTRY] Registered {key} (expiry={record.expiry})")
        return fake_tx_hash(f"register_{key}_{ciphertext}")

    async def update(self, identity: str, ciphertext: str, expiry: int) -> str:
        """
        Overwrite an existing profile in place. No history is kept.

        Raises:
            NotRegistered: no record exists for this identity
        """
        key = normalize_identity(identity)
        record = Credential(ciphertext=check_ciphertext(ciphertext), expiry=int(expiry))

        def _replace(current: Optional[Dict[str, Any]]) -> Dict[str, Any]:
            if current is None:
                raise NotRegistered(key)
            return record.to_dict()

        await self._ns.update(key, _replace)
        logger.info(f"[REGISTRY] Updated {key} (expiry={record.expiry})")
        return fake_tx_hash(f"update_{key}_{ciphertext}")

    async def issue_for(self, identity: str, ciphertext: str, expiry: int) -> str:
        """Issuer path: create or overwrite without checking prior state."""
        key = normalize_identity(identity)
        record = Credential(ciphertext=check_ciphertext(ciphertext), expiry=int(expiry))
        await self._ns.update(key, lambda _current: record.to_dict())
        logger.info(f"[REGISTRY] Issued credential for {key} (expiry={record.expiry})")
        return fake_tx_hash(f"issue_{key}_{ciphertext}")

    async def revoke(self, identity: str) -> str:
        """
        Clear the ciphertext of an existing profile.

        Raises:
            NotRegistered: no record exists for this identity
        """
        key = normalize_identity(identity)

        def _clear(current: Optional[Dict[str, Any]]) -> Dict[str, Any]:
            if current is None:
                raise NotRegistered(key)
            revoked = Credential.from_dict(current)
            revoked.ciphertext = ""
            return revoked.to_dict()

        await self._ns.update(key, _clear)
        logger.info(f"[REGISTRY] Revoked {key}")
        return fake_tx_hash(f"revoke_{key}")

    @staticmethod
    def user_id(identity: str) -> str:
        """bytes32 user id of an identity (same id for every spelling of an address)."""
        return user_id_for(identity)

    async def get(self, identity: str) -> Optional[Credential]:
        data = await self._ns.get(normalize_identity(identity))
        return Credential.from_dict(data) if data is not None else None

    async def is_valid(self, identity: str, now: Optional[int] = None) -> Tuple[bool, bool]:
        """
        Returns:
            (exists, valid)
        """
        now = int(time.time()) if now is None else now
        credential = await self.get(identity)
        if credential is None:
            return (False, False)
        return (True, credential.is_valid(now))
