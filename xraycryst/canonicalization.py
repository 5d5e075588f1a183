"""
Canonical JSON encoding for ledger values.

Every value XrayCryst writes to the ledger (records, the key index,
signed write envelopes) goes through canonicalize() so that equal values
always produce identical bytes.
"""

import json
from typing import Any, Dict, List, Union


def canonicalize(obj: Any) -> bytes:
    """
    Convert an object to canonical JSON bytes.

    Rules:
    - Object keys sorted lexicographically (Unicode code point order)
    - No whitespace between tokens
    - UTF-8 encoding, no BOM, no ASCII escaping
    - Arrays (lists and tuples) preserve order
    - Floats are rejected; ledger values use integers and strings only

    Returns:
        UTF-8 encoded bytes of canonical JSON
    """
    canonical = _canonicalize_value(obj)
    return json.dumps(canonical, separators=(',', ':'), ensure_ascii=False).encode('utf-8')


def _canonicalize_value(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    elif isinstance(value, float):
        raise ValueError("Cannot canonicalize float; encode as int or str")
    elif isinstance(value, dict):
        return _canonicalize_object(value)
    elif isinstance(value, (list, tuple)):
        return _canonicalize_array(value)
    else:
        raise ValueError(f"Cannot canonicalize type: {type(value)}")


def _canonicalize_object(obj: Dict[str, Any]) -> Dict[str, Any]:
    for k in obj:
        if not isinstance(k, str):
            raise ValueError(f"Object keys must be strings, got {type(k)}")
    return {k: _canonicalize_value(obj[k]) for k in sorted(obj)}


def _canonicalize_array(arr: Union[List, tuple]) -> List:
    return [_canonicalize_value(item) for item in arr]
