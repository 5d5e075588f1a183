"""
Record codec.

Maps AnalysisRecord <-> ledger bytes using canonical JSON:

    {"artifacts":[b64,...],"created_at":1700000000,"id":"...",
     "owner":"0x...","payload":b64,"status":"processing"}

Required fields: id, owner, created_at, payload. A missing "status" is
read as "processing" (records written before status tracking existed);
a missing "artifacts" is read as empty. Anything else missing or
mistyped is a RecordDecodeError.
"""

import json
from typing import Any, Dict

from .canonicalization import canonicalize
from .errors import RecordDecodeError
from .records import AnalysisRecord, RecordStatus
from .util import b64d, b64e

INDEX_KEY = "analysis_keys"
RECORD_KEY_PREFIX = "analysis_"


def record_key(record_id: str) -> str:
    """Ledger key holding the record with the given id."""
    return f"{RECORD_KEY_PREFIX}{record_id}"


def encode(record: AnalysisRecord) -> bytes:
    """Encode a record to its canonical ledger bytes."""
    return canonicalize({
        "id": record.id,
        "owner": record.owner,
        "payload": b64e(record.payload),
        "artifacts": [b64e(a) for a in record.artifacts],
        "created_at": record.created_at,
        "status": record.status.value,
    })


def decode(data: bytes) -> AnalysisRecord:
    """
    Decode ledger bytes into a record.

    Raises:
        RecordDecodeError: on malformed bytes, missing required fields,
            wrong field types or an inconsistent status/artifacts pair
    """
    try:
        obj = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise RecordDecodeError(f"malformed record bytes: {e}") from e

    if not isinstance(obj, dict):
        raise RecordDecodeError("record must be a JSON object")

    record_id = _require(obj, "id", str)
    owner = _require(obj, "owner", str)
    created_at = _require(obj, "created_at", int)
    payload = _decode_blob(_require(obj, "payload", str), "payload")

    raw_status = obj.get("status", RecordStatus.PROCESSING.value)
    try:
        status = RecordStatus(raw_status)
    except ValueError:
        raise RecordDecodeError(f"unknown status {raw_status!r}", field="status")

    raw_artifacts = obj.get("artifacts", [])
    if not isinstance(raw_artifacts, list):
        raise RecordDecodeError("must be a list", field="artifacts")
    artifacts = []
    for item in raw_artifacts:
        if not isinstance(item, str):
            raise RecordDecodeError(f"must contain base64 strings, got {type(item).__name__}", field="artifacts")
        artifacts.append(_decode_blob(item, "artifacts"))

    try:
        return AnalysisRecord(
            id=record_id,
            owner=owner,
            payload=payload,
            created_at=created_at,
            status=status,
            artifacts=artifacts,
        )
    except ValueError as e:
        raise RecordDecodeError(str(e)) from e


def _require(obj: Dict[str, Any], name: str, kind: type) -> Any:
    if name not in obj:
        raise RecordDecodeError("is required", field=name)
    value = obj[name]
    # bool is an int subclass; a boolean timestamp is still corruption
    if isinstance(value, bool) or not isinstance(value, kind):
        raise RecordDecodeError(f"must be {kind.__name__}", field=name)
    if kind is str and not value:
        raise RecordDecodeError("must not be empty", field=name)
    return value


def _decode_blob(value: str, name: str) -> bytes:
    try:
        return b64d(value)
    except ValueError as e:
        raise RecordDecodeError(str(e), field=name) from e
