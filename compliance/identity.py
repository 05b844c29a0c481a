"""
Identity helpers.

The core treats an identity as an opaque wallet-like string. Addresses are
lowercased so that checksum and plain spellings map to one record; no
format validation happens here.
"""

import hashlib


def normalize_identity(identity: str) -> str:
    if not isinstance(identity, str) or not identity.strip():
        raise ValueError("Identity must be a non-empty string")
    return identity.strip().lower()


def user_id_for(identity: str) -> str:
    """Deterministic bytes32 user id for an identity."""
    digest = hashlib.sha256(normalize_identity(identity).encode("utf-8")).hexdigest()
    return "0x" + digest
