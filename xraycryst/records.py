"""
Analysis record model and processing state machine.

A record moves PROCESSING -> COMPLETED or PROCESSING -> FAILED, and never
leaves a terminal state. Derived artifacts exist only on COMPLETED records.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, FrozenSet, Tuple

from .util import shorten


class RecordStatus(str, Enum):
    """
    Processing states.

    PROCESSING: Submitted; awaiting confidential computation (initial)
    COMPLETED: Computation succeeded; artifacts attached (terminal)
    FAILED: Computation failed; no artifacts (terminal)
    """
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self is not RecordStatus.PROCESSING


# Legal status changes. Same-state "transitions" are not listed: an update
# that keeps the status is always allowed as long as it stays consistent.
TRANSITIONS: Dict[RecordStatus, FrozenSet[RecordStatus]] = {
    RecordStatus.PROCESSING: frozenset({RecordStatus.COMPLETED, RecordStatus.FAILED}),
    RecordStatus.COMPLETED: frozenset(),
    RecordStatus.FAILED: frozenset(),
}


def can_transition(current: RecordStatus, requested: RecordStatus) -> bool:
    """Return True if moving from current to requested is legal (or a no-op)."""
    return current == requested or requested in TRANSITIONS[current]


IMMUTABLE_FIELDS = ("id", "owner", "payload", "created_at")


@dataclass(frozen=True)
class AnalysisRecord:
    """
    One analysis submission stored on the ledger.

    Fields:
    - id: unique record identifier, never reused
    - owner: identity of the submitting principal
    - payload: encrypted input (opaque ciphertext)
    - created_at: epoch seconds, fixed at creation
    - status: current RecordStatus
    - artifacts: derived ciphertexts, populated on completion
    """
    id: str
    owner: str
    payload: bytes
    created_at: int
    status: RecordStatus = RecordStatus.PROCESSING
    artifacts: Tuple[bytes, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not isinstance(self.id, str) or not self.id:
            raise ValueError("id must be a non-empty string")
        if not isinstance(self.owner, str) or not self.owner:
            raise ValueError("owner must be a non-empty string")
        if not isinstance(self.payload, bytes) or not self.payload:
            raise ValueError("payload must be non-empty bytes")
        if isinstance(self.created_at, bool) or not isinstance(self.created_at, int):
            raise ValueError("created_at must be an integer")
        # Accept raw strings for status and any iterable for artifacts
        object.__setattr__(self, "status", RecordStatus(self.status))
        object.__setattr__(self, "artifacts", tuple(self.artifacts))
        for blob in self.artifacts:
            if not isinstance(blob, bytes):
                raise ValueError("artifacts must be bytes")
        if self.artifacts and self.status != RecordStatus.COMPLETED:
            raise ValueError(f"artifacts are only allowed on completed records, not {self.status.value}")

    @property
    def is_terminal(self) -> bool:
        return self.status.terminal

    def completed(self, artifacts: Tuple[bytes, ...]) -> "AnalysisRecord":
        """Return a copy moved to COMPLETED with the given artifacts."""
        return replace(self, status=RecordStatus.COMPLETED, artifacts=tuple(artifacts))

    def failed(self) -> "AnalysisRecord":
        """Return a copy moved to FAILED."""
        return replace(self, status=RecordStatus.FAILED, artifacts=())

    def short_id(self) -> str:
        return self.id[:6]

    def short_owner(self) -> str:
        return shorten(self.owner)
