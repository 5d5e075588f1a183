"""
Index of known analysis ids.

The ledger has no listing primitive, so the set of record ids is kept as a
JSON list under one reserved key (INDEX_KEY). Registration is a plain
read-modify-write:

    keys = get(INDEX_KEY); keys.append(id); set(INDEX_KEY, keys)

Two registrations racing on different ledger sessions can both read the
same list and the second write drops the first id. The record itself is
still on the ledger (it is written before registration) but it will not
show up in listings. This lost update is accepted; there is no retry or
compare-and-swap emulation.
"""

import json
import logging
from typing import List, Optional

from .canonicalization import canonicalize
from .codec import INDEX_KEY
from .errors import LedgerError, LedgerIndexError
from .ledger import LedgerClient
from .logging_config import WorkflowAuditLogger, audit_log

logger = logging.getLogger(__name__)


class IndexManager:
    """Maintains the ordered list of record ids under a reserved ledger key."""

    def __init__(self, ledger: LedgerClient, index_key: str = INDEX_KEY, audit: Optional[WorkflowAuditLogger] = None):
        self.ledger = ledger
        self.index_key = index_key
        self.audit = audit or audit_log

    def list_keys(self) -> List[str]:
        """
        Return every registered id in insertion order, without duplicates.

        Raises:
            LedgerIndexError: the index entry cannot be fetched or is malformed
        """
        try:
            raw = self.ledger.get(self.index_key)
        except LedgerError as e:
            raise LedgerIndexError(f"failed to fetch index: {e}") from e
        return self._parse(raw)

    def register_key(self, record_id: str) -> None:
        """
        Append record_id to the index if it is not already present.

        A second call for the same id does not write. A malformed index is
        reported, never overwritten.

        Raises:
            LedgerIndexError: the current index cannot be read
            LedgerError: the write-back failed
        """
        keys = self.list_keys()
        if record_id in keys:
            logger.debug("id %s already indexed", record_id)
            return
        keys.append(record_id)
        self.ledger.set(self.index_key, canonicalize(keys))
        self.audit.index_registered(record_id, len(keys))

    def _parse(self, raw: bytes) -> List[str]:
        if not raw:
            return []
        try:
            value = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise LedgerIndexError(f"index is not valid JSON: {e}") from e
        if not isinstance(value, list):
            raise LedgerIndexError(f"index must be a list, got {type(value).__name__}")

        keys: List[str] = []
        seen = set()
        for item in value:
            if not isinstance(item, str):
                raise LedgerIndexError(f"index entries must be strings, got {type(item).__name__}")
            if item not in seen:
                seen.add(item)
                keys.append(item)
        return keys
