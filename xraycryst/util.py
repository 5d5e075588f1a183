"""
Utility functions for XrayCryst.

Encoding, time and identifier helpers shared by the codec, store and ledgers.
"""

import base64
import binascii
import secrets
import string
import threading
import time


def now_epoch() -> int:
    """Get current Unix timestamp as integer."""
    return int(time.time())


def b64e(b: bytes) -> str:
    """Base64 encode bytes to string."""
    return base64.b64encode(b).decode('ascii')


def b64d(s: str) -> bytes:
    """
    Strictly base64 decode a string to bytes.

    Raises:
        ValueError: if s is not valid base64
    """
    try:
        return base64.b64decode(s.encode('ascii'), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError(f"invalid base64: {e}") from e


_BASE36 = string.digits + string.ascii_lowercase


def random_suffix(length: int = 7) -> str:
    """Cryptographically random base-36 string."""
    return ''.join(secrets.choice(_BASE36) for _ in range(length))


class RecordIdFactory:
    """
    Generates record ids of the form "<millis>-<base36 suffix>".

    The millisecond component is strictly increasing within one factory,
    so ids from one process sort by creation order. The random suffix keeps
    ids from concurrent processes apart.
    """

    def __init__(self, suffix_length: int = 7, clock=time.time):
        self._suffix_length = suffix_length
        self._clock = clock
        self._last_millis = 0
        self._lock = threading.Lock()

    def __call__(self) -> str:
        with self._lock:
            millis = int(self._clock() * 1000)
            if millis <= self._last_millis:
                millis = self._last_millis + 1
            self._last_millis = millis
        return f"{millis}-{random_suffix(self._suffix_length)}"


def shorten(value: str, head: int = 6, tail: int = 4) -> str:
    """Shorten an identifier for display, e.g. 0x1234...abcd."""
    if len(value) <= head + tail + 3:
        return value
    return f"{value[:head]}...{value[-tail:]}"
