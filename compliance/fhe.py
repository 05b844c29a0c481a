"""
Mock FHE Encryption
===================

[DEMO] The bitmap is "encrypted" into a bytes32 hex string. This is a
reversible placeholder, not cryptography. A real deployment would replace
`encrypt_bitmap` with an FHE client and `MockVerifier` with the on-chain
verifier contract.

[PRIVACY] Nothing outside the verifier may read a ciphertext back.
`decrypt_bitmap` exists only to fail loudly.
"""

import re

from core.storage import StorageError

from .bitmap import evaluate
from .errors import DecryptionForbidden


# bytes32 hex: "0x" and up to 64 hex digits, never negative
CIPHERTEXT_RE = re.compile(r"0x[0-9a-fA-F]{1,64}")


def is_ciphertext(value) -> bool:
    return isinstance(value, str) and CIPHERTEXT_RE.fullmatch(value) is not None


def check_ciphertext(ciphertext: str) -> str:
    """Reject anything that is not a bytes32 hex ciphertext."""
    if not is_ciphertext(ciphertext):
        raise ValueError(f"Ciphertext must be 0x-prefixed bytes32 hex: {ciphertext!r}")
    return ciphertext


def encrypt_bitmap(bitmap: int) -> str:
    """Encode a bitmap as a bytes32 hex string ("0x" + 64 hex chars)."""
    if bitmap < 0 or bitmap >> 256:
        raise ValueError(f"Bitmap must fit in bytes32: {bitmap}")
    return "0x" + format(bitmap, "064x")


def decrypt_bitmap(ciphertext: str):
    raise DecryptionForbidden("Decryption not allowed - privacy preserved")


class MockVerifier:
    """
    Stand-in for the FHE verifier contract.

    verify() answers "does this ciphertext satisfy the mask" without handing
    the plaintext bitmap to the caller.
    """

    @staticmethod
    def _open(ciphertext: str) -> int:
        if not ciphertext:
            # Revoked profile: nothing is set
            return 0
        if not is_ciphertext(ciphertext):
            raise StorageError(f"Corrupt profile ciphertext: {ciphertext!r}")
        return int(ciphertext, 16)

    def verify(self, ciphertext: str, rule_mask: int) -> bool:
        return evaluate(self._open(ciphertext), rule_mask)
