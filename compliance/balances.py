"""
Balance Ledger
==============

[LEDGER] Simulated per-identity token balances:
    identity -> {"USDC": 0.0, "ETH": 0.0, "gGOLD": 0.0, ...}

- Amounts are non-negative floats
- Debits floor at zero (no borrowing)
- "GOLD" is an alias of the gGOLD wrapper token
"""

import math
import logging
from decimal import Decimal
from numbers import Real
from typing import Dict

from core.storage import KVStore, Namespace

from .errors import InvalidAmount
from .identity import normalize_identity

logger = logging.getLogger(__name__)

NAMESPACE = "balances"

DEFAULT_TOKENS = ("USDC", "ETH", "gGOLD")

TOKEN_ALIASES = {
    "GOLD": "gGOLD",
    "GGOLD": "gGOLD",
}


def normalize_token(symbol: str) -> str:
    upper = symbol.strip().upper()
    return TOKEN_ALIASES.get(upper, upper)


def check_amount(amount, allow_zero: bool = True) -> float:
    """Validate a token amount and return it as float."""
    if isinstance(amount, bool) or not isinstance(amount, (Real, Decimal)):
        raise InvalidAmount(amount)
    value = float(amount)
    if not math.isfinite(value) or value < 0 or (value == 0 and not allow_zero):
        raise InvalidAmount(amount)
    return value


def _checked_sum(balance: float, value: float) -> float:
    total = balance + value
    if not math.isfinite(total):
        raise InvalidAmount(value)
    return total


def _empty_balances() -> Dict[str, float]:
    return {token: 0.0 for token in DEFAULT_TOKENS}


class BalanceLedger:
    """Persistent per-identity token balances."""

    def __init__(self, store: KVStore):
        self._ns = Namespace(store, NAMESPACE)

    async def get_balances(self, identity: str) -> Dict[str, float]:
        balances = _empty_balances()
        balances.update(await self._ns.get(normalize_identity(identity)) or {})
        return balances

    async def get_balance(self, identity: str, token: str) -> float:
        balances = await self.get_balances(identity)
        return balances.get(normalize_token(token), 0.0)

    async def credit(self, identity: str, token: str, amount: float) -> float:
        """
        Add `amount` of `token`.

        Returns:
            New balance of the token
        """
        value = check_amount(amount)
        key = normalize_identity(identity)
        symbol = normalize_token(token)

        def _add(current):
            balances = _empty_balances()
            balances.update(current or {})
            balances[symbol] = _checked_sum(balances.get(symbol, 0.0), value)
            return balances

        result = await self._ns.update(key, _add)
        logger.info(f"[LEDGER] Credit {value} {symbol} -> {key}")
        return result[symbol]

    async def debit(self, identity: str, token: str, amount: float) -> float:
        """
        Remove `amount` of `token`, flooring at zero.

        Returns:
            New balance of the token
        """
        value = check_amount(amount)
        key = normalize_identity(identity)
        symbol = normalize_token(token)

        def _sub(current):
            balances = _empty_balances()
            balances.update(current or {})
            balances[symbol] = max(0.0, balances.get(symbol, 0.0) - value)
            return balances

        result = await self._ns.update(key, _sub)
        logger.info(f"[LEDGER] Debit {value} {symbol} <- {key}")
        return result[symbol]

    async def transfer(self, identity: str, from_token: str, to_token: str, amount: float) -> Dict[str, float]:
        """
        Debit `from_token` (floored at zero) and credit `to_token` 1:1 in a
        single write, so a failed write leaves both balances as they were.

        Returns:
            All balances after the transfer
        """
        value = check_amount(amount)
        key = normalize_identity(identity)
        src = normalize_token(from_token)
        dst = normalize_token(to_token)

        def _move(current):
            balances = _empty_balances()
            balances.update(current or {})
            balances[src] = max(0.0, balances.get(src, 0.0) - value)
            balances[dst] = _checked_sum(balances.get(dst, 0.0), value)
            return balances

        result = await self._ns.update(key, _move)
        logger.info(f"[LEDGER] Transfer {value} {src} -> {dst} for {key}")
        return result
