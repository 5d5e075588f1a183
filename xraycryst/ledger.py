"""
Ledger client interface and in-memory implementation.

The ledger is a flat byte-oriented key/value store:

    get(key) -> bytes          empty bytes when absent, never raises for absence
    set(key, value) -> None    requires an authenticated session

There is no listing, no transaction and no compare-and-swap. Anything built
on top (the record index in particular) has to live with lost updates
between concurrent read-modify-write sequences.
"""

import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional

from .errors import LedgerAuthorizationError, LedgerUnavailableError
from .wallet import WalletSigner, signed_write, verify_entry_signature


class LedgerClient(ABC):
    """Abstract byte-level ledger capability."""

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Return the bytes stored under key, or b"" if absent."""
        pass

    @abstractmethod
    def set(self, key: str, value: bytes) -> None:
        """
        Store value under key, replacing any previous value.

        Raises:
            LedgerAuthorizationError: session is read-only or the write was rejected
            LedgerError: transport failure
        """
        pass

    def is_available(self) -> bool:
        """Whether the ledger is currently able to serve requests."""
        return True


class _MemoryState:
    """Storage shared between sessions opened on the same InMemoryLedger."""

    def __init__(self):
        self.entries: Dict[str, bytes] = {}
        self.writers: Dict[str, str] = {}
        self.available = True
        self.writes = 0
        self.lock = threading.Lock()


class InMemoryLedger(LedgerClient):
    """
    In-memory ledger for development/testing.

    A ledger opened without a signer is read-only, like a contract handle
    obtained without a wallet: get() works, set() raises
    LedgerAuthorizationError. with_signer() opens an authenticated session
    over the same storage.

    Args:
        signer: Wallet authorizing writes (None = read-only session)
        authorize: Optional callback (key, value) -> bool; returning False
            simulates the user declining the transaction
    """

    def __init__(
        self,
        signer: Optional[WalletSigner] = None,
        authorize: Optional[Callable[[str, bytes], bool]] = None,
        _state: Optional[_MemoryState] = None,
    ):
        self.signer = signer
        self.authorize = authorize
        self._state = _state or _MemoryState()

    def with_signer(self, signer: WalletSigner, authorize: Optional[Callable[[str, bytes], bool]] = None) -> "InMemoryLedger":
        """Open an authenticated session sharing this ledger's storage."""
        return InMemoryLedger(signer=signer, authorize=authorize, _state=self._state)

    def read_only(self) -> "InMemoryLedger":
        """Open a read-only session sharing this ledger's storage."""
        return InMemoryLedger(_state=self._state)

    def get(self, key: str) -> bytes:
        with self._state.lock:
            if not self._state.available:
                raise LedgerUnavailableError("ledger is unavailable")
            return self._state.entries.get(key, b"")

    def set(self, key: str, value: bytes) -> None:
        if self.signer is None:
            raise LedgerAuthorizationError("Ledger session is read-only; connect a wallet to write")
        if self.authorize is not None and not self.authorize(key, value):
            raise LedgerAuthorizationError("Transaction rejected by user")

        address, public_key_b64, signature_b64 = signed_write(self.signer, key, value)
        if not verify_entry_signature(signature_b64, key, value, public_key_b64):
            raise LedgerAuthorizationError(f"Invalid write signature from {address}")

        with self._state.lock:
            if not self._state.available:
                raise LedgerUnavailableError("ledger is unavailable")
            self._state.entries[key] = bytes(value)
            self._state.writers[key] = address
            self._state.writes += 1

    def is_available(self) -> bool:
        with self._state.lock:
            return self._state.available

    # ------------------------------------------------------------
    # Test / inspection helpers
    # ------------------------------------------------------------

    def set_available(self, available: bool) -> None:
        with self._state.lock:
            self._state.available = available

    @property
    def write_count(self) -> int:
        with self._state.lock:
            return self._state.writes

    def writer_of(self, key: str) -> Optional[str]:
        with self._state.lock:
            return self._state.writers.get(key)

    def keys(self):
        with self._state.lock:
            return sorted(self._state.entries)
