"""
Hashing helpers.

All hashes are SHA-256 with lowercase hexadecimal output. The journal
chain and wallet addresses are built on these.
"""

import hashlib
from typing import Optional, Union


def sha256_hex(data: Union[bytes, str]) -> str:
    """Compute SHA-256 hash and return as hex string."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).hexdigest()


def chain_entry_hash(prev_entry_hash: Optional[str], value_hash: str, key: str) -> str:
    """
    Compute the hash linking a journal entry to its predecessor.

    entry_hash = SHA-256(prev_entry_hash || value_hash || key)

    The first entry uses an empty string for prev_entry_hash.
    """
    data = (prev_entry_hash or "").encode("utf-8") + value_hash.encode("utf-8") + key.encode("utf-8")
    return sha256_hex(data)
