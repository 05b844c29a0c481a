"""
Identity preference records (ENS text-record stand-in).

Keyed by a human-readable name ("alice.eth"), each record maps text keys
to string values. Writes are transaction-like and return a receipt id.
"""

import logging
from typing import Dict, Optional

from core.receipts import fake_tx_hash
from core.storage import KVStore, Namespace

logger = logging.getLogger(__name__)

NAMESPACE = "preferences"

# com.cloakswap.* prefix to avoid collisions with other apps' records
PREFERENCE_KEYS = {
    "CREDENTIAL_REF": "com.cloakswap.credentialRef",
    "DEFAULT_ASSET": "com.cloakswap.defaultAsset",
    "SLIPPAGE": "com.cloakswap.slippage",
    "PREFERRED_CHAIN": "com.cloakswap.preferredChain",
    "PREFERRED_TOKEN": "com.cloakswap.preferredToken",
    "DISPLAY_NAME": "com.cloakswap.displayName",
}


def _normalize_name(name: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValueError("Name must be a non-empty string")
    return name.strip().lower()


class PreferenceStore:
    def __init__(self, store: KVStore):
        self._ns = Namespace(store, NAMESPACE)

    async def get_text(self, name: str, key: str) -> Optional[str]:
        record = await self._ns.get(_normalize_name(name)) or {}
        return record.get(key)

    async def get_all(self, name: str) -> Dict[str, str]:
        return dict(await self._ns.get(_normalize_name(name)) or {})

    async def set_text(self, name: str, key: str, value: str) -> str:
        if not isinstance(value, str):
            raise TypeError(f"Text record values must be strings, got {type(value).__name__}")
        record_name = _normalize_name(name)

        def _put(current):
            record = dict(current or {})
            record[key] = value
            return record

        await self._ns.update(record_name, _put)
        logger.info(f"[PREFS] {record_name}: {key} updated")
        return fake_tx_hash(f"setText_{record_name}_{key}_{value}")
