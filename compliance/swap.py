"""
Swap Simulator
==============

[SWAP] Hook-gated trade against the simulated ledger:
    1. Validate amount (finite, > 0) before touching any store
    2. Run the compliance hook; a rejection raises HookBlocked, nothing moves
    3. Wait the simulated settlement delay
    4. Debit from_token (floored at 0) and credit to_token 1:1 in one
       ledger write (no price model)

[CANCELLATION] The delay is an asyncio.sleep, so cancelling the task during
settlement leaves both balances untouched.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from core.receipts import fake_tx_hash

from .balances import BalanceLedger, check_amount, normalize_token
from .errors import HookBlocked
from .evaluator import EligibilityEvaluator
from .identity import normalize_identity

logger = logging.getLogger(__name__)

DEFAULT_SETTLEMENT_DELAY = 1.2


@dataclass
class SwapReceipt:
    receipt_id: str
    check_receipt_id: str
    identity: str
    pool_id: str
    from_token: str
    to_token: str
    amount: float
    success: bool = True
    balances: Dict[str, float] = field(default_factory=dict)


class SwapSimulator:
    """Runs the hook, then settles on the BalanceLedger."""

    def __init__(
        self,
        evaluator: EligibilityEvaluator,
        ledger: BalanceLedger,
        settlement_delay: float = DEFAULT_SETTLEMENT_DELAY,
    ):
        self.evaluator = evaluator
        self.ledger = ledger
        self.settlement_delay = settlement_delay

    async def simulate_swap(
        self,
        identity: str,
        pool_id: str,
        from_token: str,
        to_token: str,
        amount: float,
        now: Optional[int] = None,
    ) -> SwapReceipt:
        """
        Simulate a gated swap.

        Raises:
            InvalidAmount: amount is not a finite positive number
            HookBlocked: the compliance hook rejected the identity
        """
        value = check_amount(amount, allow_zero=False)
        key = normalize_identity(identity)
        src = normalize_token(from_token)
        dst = normalize_token(to_token)

        check = await self.evaluator.check(key, pool_id, now=now)
        if not check.allowed:
            logger.warning(f"[SWAP] Blocked {key}: {check.reason.name}")
            raise HookBlocked(check.reason)

        if self.settlement_delay > 0:
            await asyncio.sleep(self.settlement_delay)

        balances = await self.ledger.transfer(key, src, dst, value)

        receipt_id = fake_tx_hash(f"swap_{key}_{pool_id}_{src}_{dst}_{value}")
        logger.info(f"[SWAP] {key} swapped {value} {src} -> {dst}: {receipt_id[:18]}...")

        return SwapReceipt(
            receipt_id=receipt_id,
            check_receipt_id=check.receipt_id,
            identity=key,
            pool_id=pool_id,
            from_token=src,
            to_token=dst,
            amount=value,
            balances=balances,
        )
