"""
Record store: create, get, list and update analysis records on the ledger.

Combines the codec, the index and a LedgerClient. Creation writes the
record first and registers its id second; a crash in between leaves an
orphan record that listings never see. Updates are last-writer-wins.
"""

import logging
from collections import Counter
from typing import Callable, Dict, List, Optional

from . import codec
from .errors import (
    IllegalTransitionError,
    ImmutableFieldError,
    LedgerError,
    LedgerIndexError,
    LedgerUnavailableError,
    RecordDecodeError,
    RecordNotFoundError,
    RecordStoreError,
    RecordUpdateError,
)
from .index import IndexManager
from .ledger import LedgerClient
from .logging_config import WorkflowAuditLogger, audit_log
from .records import IMMUTABLE_FIELDS, AnalysisRecord, RecordStatus, can_transition
from .util import RecordIdFactory, now_epoch

logger = logging.getLogger(__name__)

MAX_ID_ATTEMPTS = 5

Mutator = Callable[[AnalysisRecord], AnalysisRecord]


class RecordStore:
    """
    Analysis records kept in a flat ledger key space.

    Args:
        ledger: Byte-level ledger client
        index: Index manager (defaults to one over the same ledger)
        clock: Returns the current epoch seconds for created_at
        id_factory: Returns fresh record ids
        audit: Audit logger
    """

    def __init__(
        self,
        ledger: LedgerClient,
        index: Optional[IndexManager] = None,
        clock: Callable[[], int] = now_epoch,
        id_factory: Optional[Callable[[], str]] = None,
        audit: Optional[WorkflowAuditLogger] = None,
    ):
        self.ledger = ledger
        self.audit = audit or audit_log
        self.index = index or IndexManager(ledger, audit=self.audit)
        self.clock = clock
        self.id_factory = id_factory or RecordIdFactory()

    def create(self, owner: str, payload: bytes) -> AnalysisRecord:
        """
        Store a new PROCESSING record and register it in the index.

        Raises:
            ValueError: empty owner or payload
            RecordStoreError: no unused id could be drawn
            LedgerIndexError: the index is unreadable (the record is already written)
            LedgerError: a ledger write failed
        """
        if not isinstance(owner, str) or not owner:
            raise ValueError("owner is required")
        if not isinstance(payload, bytes) or not payload:
            raise ValueError("payload must be non-empty bytes")

        record_id = self._fresh_id()
        record = AnalysisRecord(
            id=record_id,
            owner=owner,
            payload=payload,
            created_at=self.clock(),
        )
        self.ledger.set(codec.record_key(record_id), codec.encode(record))
        self.audit.record_created(record_id, owner, record.created_at)
        self.index.register_key(record_id)
        return record

    def _fresh_id(self) -> str:
        for _ in range(MAX_ID_ATTEMPTS):
            record_id = self.id_factory()
            if not self.ledger.get(codec.record_key(record_id)):
                return record_id
            logger.warning("record id %s already in use, drawing another", record_id)
        raise RecordStoreError(f"could not allocate an unused record id after {MAX_ID_ATTEMPTS} attempts")

    def get(self, record_id: str) -> AnalysisRecord:
        """
        Fetch and decode one record.

        Raises:
            RecordNotFoundError: nothing stored under the record's key
            RecordDecodeError: stored bytes are not a valid record
            LedgerError: transport failure
        """
        raw = self.ledger.get(codec.record_key(record_id))
        if not raw:
            raise RecordNotFoundError(record_id)
        record = codec.decode(raw)
        if record.id != record_id:
            raise RecordDecodeError(f"stored under {record_id} but carries id {record.id}", field="id")
        return record

    def list(self, owner: Optional[str] = None, status: Optional[RecordStatus] = None) -> List[AnalysisRecord]:
        """
        Return every fetchable indexed record, newest first.

        Records that fail to fetch or decode are logged and skipped; an
        unreadable index is logged and listed as empty.

        Args:
            owner: Only records owned by this identity (case-insensitive)
            status: Only records in this status

        Raises:
            LedgerUnavailableError: the ledger reports itself unavailable
        """
        if not self.ledger.is_available():
            raise LedgerUnavailableError("ledger is unavailable; cannot list analyses")

        try:
            ids = self.index.list_keys()
        except LedgerIndexError as e:
            self.audit.index_unreadable(str(e))
            return []

        wanted_status = RecordStatus(status) if status is not None else None
        wanted_owner = owner.lower() if owner else None

        records = []
        for record_id in ids:
            try:
                record = self.get(record_id)
            except (RecordNotFoundError, RecordDecodeError, LedgerError) as e:
                self.audit.listing_skipped(record_id, str(e))
                continue
            if wanted_owner and record.owner.lower() != wanted_owner:
                continue
            if wanted_status and record.status != wanted_status:
                continue
            records.append(record)

        # created_at descending, id ascending on ties
        records.sort(key=lambda r: r.id)
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records

    def update(self, record_id: str, mutator: Mutator) -> AnalysisRecord:
        """
        Apply mutator to the stored record and write the result back.

        Only status and artifacts may change, and only along legal
        transitions. No concurrency control: the last write wins.

        Raises:
            RecordNotFoundError, RecordDecodeError: fetch failed
            ImmutableFieldError: mutator changed id, owner, payload or created_at
            IllegalTransitionError: mutator requested a forbidden status change
            LedgerError: write failed
        """
        current = self.get(record_id)
        updated = mutator(current)
        if not isinstance(updated, AnalysisRecord):
            raise RecordUpdateError(record_id, f"mutator returned {type(updated).__name__}, expected AnalysisRecord")
        self._validate_update(current, updated)
        self.ledger.set(codec.record_key(record_id), codec.encode(updated))
        return updated

    @staticmethod
    def _validate_update(current: AnalysisRecord, updated: AnalysisRecord) -> None:
        for name in IMMUTABLE_FIELDS:
            if getattr(current, name) != getattr(updated, name):
                raise ImmutableFieldError(current.id, name)
        if not can_transition(current.status, updated.status):
            raise IllegalTransitionError(current.id, current.status.value, updated.status.value)
        if current.status.terminal and current.artifacts != updated.artifacts:
            raise IllegalTransitionError(current.id, current.status.value, updated.status.value)

    def stats(self) -> Dict[str, int]:
        """Counts of listed records per status, plus the total."""
        counts = Counter(r.status.value for r in self.list())
        result = {s.value: counts.get(s.value, 0) for s in RecordStatus}
        result["total"] = sum(counts.values())
        return result

    def is_available(self) -> bool:
        return self.ledger.is_available()
