"""
XrayCryst Analysis Ledger

Version: 0.3.0

Tracks confidential X-ray crystallography analyses on a flat key/value
ledger. Each submission is an encrypted diffraction payload stored as one
record; a secondary index kept in the same key space makes the full set
listable even though the ledger itself only offers:

    get(key) -> bytes
    set(key, value) -> None

Records move through a small state machine:

    processing -> completed   (artifacts attached)
    processing -> failed      (no artifacts)

Usage:
    from xraycryst import (
        InMemoryLedger,
        LocalWalletSigner,
        RecordStore,
        SimulatedFheBackend,
        WorkflowEngine,
    )

    wallet = LocalWalletSigner.generate()
    ledger = InMemoryLedger(signer=wallet)

    engine = WorkflowEngine(RecordStore(ledger), SimulatedFheBackend())

    record = engine.submit_image(wallet.address, "lysozyme_01.mtz", "hen egg-white")
    record = engine.advance(record.id, caller=wallet.address)

    for r in engine.store.list():
        print(r.short_id(), r.status.value, len(r.artifacts))
"""

__version__ = "0.3.0"

# Records and errors
from .records import AnalysisRecord, RecordStatus, can_transition
from .errors import (
    XrayCrystError,
    RecordDecodeError,
    RecordNotFoundError,
    LedgerIndexError,
    RecordStoreError,
    RecordUpdateError,
    ImmutableFieldError,
    IllegalTransitionError,
    WorkflowError,
    UnauthorizedError,
    AlreadyTerminalError,
    LedgerError,
    LedgerAuthorizationError,
    LedgerUnavailableError,
    ComputeError,
)

# Codec
from .codec import INDEX_KEY, encode, decode, record_key

# Ledger clients
from .ledger import LedgerClient, InMemoryLedger
from .ledger_backends import (
    SqliteJournalLedger,
    RedisLedger,
    S3Ledger,
    HttpLedger,
    JournalVerification,
    verify_journal_entries,
    get_ledger_client,
)

# Wallets
from .wallet import (
    WalletSigner,
    LocalWalletSigner,
    FileWalletSigner,
    generate_wallet,
    request_headers,
    verify_entry_signature,
    verify_signature,
)

# Compute
from .compute import (
    ComputeBackend,
    ComputeResult,
    SimulatedFheBackend,
    HttpComputeBackend,
    seal_submission,
    get_compute_backend,
)

# Core
from .index import IndexManager
from .store import RecordStore
from .workflow import WorkflowEngine


__all__ = [
    "__version__",

    # Records
    "AnalysisRecord",
    "RecordStatus",
    "can_transition",

    # Errors
    "XrayCrystError",
    "RecordDecodeError",
    "RecordNotFoundError",
    "LedgerIndexError",
    "RecordStoreError",
    "RecordUpdateError",
    "ImmutableFieldError",
    "IllegalTransitionError",
    "WorkflowError",
    "UnauthorizedError",
    "AlreadyTerminalError",
    "LedgerError",
    "LedgerAuthorizationError",
    "LedgerUnavailableError",
    "ComputeError",

    # Codec
    "INDEX_KEY",
    "encode",
    "decode",
    "record_key",

    # Ledgers
    "LedgerClient",
    "InMemoryLedger",
    "SqliteJournalLedger",
    "RedisLedger",
    "S3Ledger",
    "HttpLedger",
    "JournalVerification",
    "verify_journal_entries",
    "get_ledger_client",

    # Wallets
    "WalletSigner",
    "LocalWalletSigner",
    "FileWalletSigner",
    "generate_wallet",
    "request_headers",
    "verify_entry_signature",
    "verify_signature",

    # Compute
    "ComputeBackend",
    "ComputeResult",
    "SimulatedFheBackend",
    "HttpComputeBackend",
    "seal_submission",
    "get_compute_backend",

    # Core
    "IndexManager",
    "RecordStore",
    "WorkflowEngine",
]
