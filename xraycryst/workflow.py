"""
Workflow engine: drives analysis records through their processing states.

    submit  -> PROCESSING
    advance -> COMPLETED (artifacts from the compute backend)
            -> FAILED    (compute backend raised ComputeError)

Only the owner may advance a record, and only while it is PROCESSING.
A compute failure is a legal outcome: advance() returns the FAILED record
instead of raising, and the record is never retried.
"""

import logging
from typing import Callable, Optional

from .compute import ComputeBackend, seal_submission
from .errors import AlreadyTerminalError, ComputeError, UnauthorizedError
from .logging_config import WorkflowAuditLogger
from .records import AnalysisRecord, RecordStatus
from .store import RecordStore

logger = logging.getLogger(__name__)

TransitionObserver = Callable[[AnalysisRecord, AnalysisRecord], None]


def same_identity(a: str, b: str) -> bool:
    """Wallet-style identity comparison (case-insensitive)."""
    return a.lower() == b.lower()


class WorkflowEngine:
    """
    Runs the processing state machine over a RecordStore.

    Args:
        store: Record store the transitions are persisted through
        backend: Confidential-computation backend
        observer: Called with (before, after) for every persisted transition
    """

    def __init__(
        self,
        store: RecordStore,
        backend: ComputeBackend,
        observer: Optional[TransitionObserver] = None,
    ):
        self.store = store
        self.backend = backend
        self.observer = observer

    @property
    def audit(self) -> WorkflowAuditLogger:
        return self.store.audit

    def submit(self, owner: str, payload: bytes) -> AnalysisRecord:
        """Create a new PROCESSING record owned by owner."""
        return self.store.create(owner, payload)

    def submit_image(self, owner: str, image_name: str, description: str = "") -> AnalysisRecord:
        """
        Seal a diffraction image submission and create a record for it.

        Raises:
            ValueError: image_name is empty
        """
        if not image_name or not image_name.strip():
            raise ValueError("image_name is required")
        return self.submit(owner, seal_submission(image_name, description))

    def advance(self, record_id: str, caller: str) -> AnalysisRecord:
        """
        Run the computation for a PROCESSING record and persist the outcome.

        Returns:
            The record as stored after the transition (COMPLETED or FAILED)

        Raises:
            RecordNotFoundError, RecordDecodeError: record cannot be fetched
            UnauthorizedError: caller is not the owner
            AlreadyTerminalError: record is not PROCESSING (checked again at write time)
            LedgerError: the transition could not be written
        """
        record = self.store.get(record_id)

        if not same_identity(record.owner, caller):
            self.audit.advance_rejected(record_id, caller, "caller is not the owner")
            raise UnauthorizedError(record_id, caller)
        if record.status != RecordStatus.PROCESSING:
            self.audit.advance_rejected(record_id, caller, f"already {record.status.value}")
            raise AlreadyTerminalError(record_id, record.status.value)

        try:
            result = self.backend.run(record.payload)
        except ComputeError as e:
            logger.warning("computation for %s failed: %s", record_id, e)
            outcome: Callable[[AnalysisRecord], AnalysisRecord] = lambda r: r.failed()
        else:
            artifacts = tuple(result.artifacts)
            outcome = lambda r: r.completed(artifacts)

        def mutate(current: AnalysisRecord) -> AnalysisRecord:
            # Another advance may have finished while the backend ran
            if current.status != RecordStatus.PROCESSING:
                raise AlreadyTerminalError(record_id, current.status.value)
            return outcome(current)

        try:
            updated = self.store.update(record_id, mutate)
        except AlreadyTerminalError as e:
            self.audit.advance_rejected(record_id, caller, f"already {e.status}")
            raise

        self.audit.record_transition(
            record_id,
            record.status.value,
            updated.status.value,
            artifact_count=len(updated.artifacts),
        )
        if self.observer is not None:
            self.observer(record, updated)
        return updated
