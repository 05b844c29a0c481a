"""
Receipt identifiers for simulated on-chain writes.

[DEMO] Stands in for a transaction hash. SHA-256 over the caller's input,
a nanosecond timestamp, a process-local counter and a random nonce, so two
calls with the same input never collide.
"""

import hashlib
import itertools
import secrets
import time

_counter = itertools.count()


def fake_tx_hash(data: str) -> str:
    """
    Build an opaque receipt id for a simulated write.

    Args:
        data: Free-form description of the write (e.g. "register_0xabc_0x...")

    Returns:
        "0x" followed by 64 lowercase hex characters
    """
    material = f"{data}|{time.time_ns()}|{next(_counter)}|{secrets.token_hex(8)}"
    return "0x" + hashlib.sha256(material.encode("utf-8")).hexdigest()


def is_receipt_id(value: str) -> bool:
    """Check the 0x + 64 hex shape of a receipt id."""
    if not isinstance(value, str) or len(value) != 66 or not value.startswith("0x"):
        return False
    try:
        int(value[2:], 16)
    except ValueError:
        return False
    return True
