"""
Pool Rule Store
===============

[POOL] Per-pool required bitmask, stored as a hex string.
An absent pool reads as 0, which the evaluator reports as
POOL_NOT_CONFIGURED. Writes are owner-only by design intent; the demo does
not enforce access control.
"""

import logging
from typing import Dict

from core.receipts import fake_tx_hash
from core.storage import KVStore, Namespace, StorageError

logger = logging.getLogger(__name__)

NAMESPACE = "poolRules"


def _decode_mask(pool_id: str, raw) -> int:
    if raw is None:
        return 0
    try:
        mask = int(str(raw), 0)
    except ValueError as e:
        raise StorageError(f"Corrupt rule mask for pool {pool_id}: {raw!r}") from e
    if mask < 0:
        raise StorageError(f"Corrupt rule mask for pool {pool_id}: {raw!r}")
    return mask


class PoolRuleStore:
    """Persistent pool id -> rule mask mapping."""

    def __init__(self, store: KVStore):
        self._ns = Namespace(store, NAMESPACE)

    async def set_rule(self, pool_id: str, mask: int) -> str:
        """
        Set (or overwrite) the rule mask of a pool.

        Returns:
            Receipt id of the write
        """
        if mask < 0:
            raise ValueError(f"Rule mask must be non-negative: {mask}")
        await self._ns.set(pool_id, hex(mask))
        logger.info(f"[POOL] Rule for {pool_id[:10]}... set to {hex(mask)}")
        return fake_tx_hash(f"setPoolRule_{pool_id}_{hex(mask)}")

    async def get_rule(self, pool_id: str) -> int:
        """Rule mask of a pool, 0 if not configured."""
        return _decode_mask(pool_id, await self._ns.get(pool_id))

    async def list_rules(self) -> Dict[str, int]:
        rules = {}
        for pool_id in await self._ns.keys():
            rules[pool_id] = await self.get_rule(pool_id)
        return rules
