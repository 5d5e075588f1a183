"""
Error taxonomy for the XrayCryst analysis ledger.

Every failure the core can surface is a subclass of XrayCrystError.
Only LedgerIndexError and per-record fetch/decode failures are absorbed
(inside RecordStore.list); everything else reaches the caller unchanged.
"""

from typing import Optional


class XrayCrystError(Exception):
    """Base class for all XrayCryst errors."""


# ============================================================
# Codec / Store
# ============================================================

class RecordDecodeError(XrayCrystError):
    """Raised when ledger bytes cannot be decoded into a record."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        if field:
            message = f"{field}: {message}"
        super().__init__(message)


class RecordNotFoundError(XrayCrystError):
    """Raised when no bytes are stored under a record's derived key."""

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Analysis not found: {record_id}")


class LedgerIndexError(XrayCrystError):
    """Raised when the record index cannot be fetched or decoded."""


class RecordStoreError(XrayCrystError):
    """Raised when the store cannot complete a create (e.g. id exhaustion)."""


class RecordUpdateError(XrayCrystError):
    """Raised when a mutator produces a record that may not be persisted."""

    def __init__(self, record_id: str, message: str):
        self.record_id = record_id
        super().__init__(f"{record_id}: {message}")


class ImmutableFieldError(RecordUpdateError):
    """Raised when a mutator changes a field fixed at creation time."""

    def __init__(self, record_id: str, field: str):
        self.field = field
        super().__init__(record_id, f"field '{field}' is immutable")


class IllegalTransitionError(RecordUpdateError):
    """Raised when a mutator attempts a status change the state machine forbids."""

    def __init__(self, record_id: str, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(record_id, f"illegal transition {current} -> {requested}")


# ============================================================
# Workflow
# ============================================================

class WorkflowError(XrayCrystError):
    """Base class for workflow rejections."""

    def __init__(self, record_id: str, message: str):
        self.record_id = record_id
        super().__init__(message)


class UnauthorizedError(WorkflowError):
    """Raised when someone other than the owner tries to advance a record."""

    def __init__(self, record_id: str, caller: str):
        self.caller = caller
        super().__init__(record_id, f"{caller} is not the owner of analysis {record_id}")


class AlreadyTerminalError(WorkflowError):
    """Raised when advancing a record that is already completed or failed."""

    def __init__(self, record_id: str, status: str):
        self.status = status
        super().__init__(record_id, f"analysis {record_id} is already {status}")


# ============================================================
# Collaborators
# ============================================================

class LedgerError(XrayCrystError):
    """Transport or authorization failure reported by a LedgerClient."""


class LedgerAuthorizationError(LedgerError):
    """Raised when a write is attempted without (or rejected by) an authenticated session."""


class LedgerUnavailableError(LedgerError):
    """Raised when the ledger reports itself unavailable."""


class ComputeError(XrayCrystError):
    """Raised by a ComputeBackend when processing fails."""
