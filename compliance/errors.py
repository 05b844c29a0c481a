"""
Compliance error taxonomy.

Ineligibility is never an exception: it is a ReasonCode returned by the
evaluator. The classes here cover precondition violations, blocked actions,
and (through StorageError) infrastructure failures.
"""

from core.storage import StorageError

# Persistence (local store or chain RPC) unreachable or corrupt.
# The only error kind a caller may retry blindly.
InfrastructureError = StorageError


class ComplianceError(Exception):
    """Base class for precondition failures raised by the compliance core."""


class AlreadyRegistered(ComplianceError):
    def __init__(self, identity: str):
        super().__init__(f"Already registered: {identity}")
        self.identity = identity


class NotRegistered(ComplianceError):
    def __init__(self, identity: str):
        super().__init__(f"Not registered: {identity}")
        self.identity = identity


class InvalidAmount(ComplianceError):
    def __init__(self, amount):
        super().__init__(f"Amount must be a finite positive number, got {amount!r}")
        self.amount = amount


class DecryptionForbidden(ComplianceError):
    """Raised by any attempt to decrypt a profile ciphertext."""


class UnsupportedOperation(ComplianceError):
    """The selected backend has no counterpart for this operation."""


class HookBlocked(ComplianceError):
    """The compliance hook rejected a swap. Carries the ReasonCode."""

    def __init__(self, reason):
        super().__init__(f"HookBlocked: {reason.name}")
        self.reason = reason
