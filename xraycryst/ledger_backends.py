"""
Concrete LedgerClient backends.

- SqliteJournalLedger: append-only journal with a hash chain (local/dev, CLI)
- RedisLedger: wraps an injected redis client
- S3Ledger: one S3 object per key
- HttpLedger: REST gateway in front of the ledger

None of these add atomicity across get/set pairs. Each single write is
atomic; read-modify-write sequences built on top remain racy.
"""

import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from .config import Settings
from .errors import LedgerAuthorizationError, LedgerError
from .hashing import chain_entry_hash, sha256_hex
from .ledger import InMemoryLedger, LedgerClient
from .util import b64d, b64e, now_epoch
from .wallet import WalletSigner, address_from_verify_key, signed_write, verify_entry_signature


# ============================================================
# SQLite append-only journal
# ============================================================

@dataclass
class JournalVerification:
    """Result of recomputing the journal hash chain."""
    ok: bool
    entries: int
    head_entry_hash: Optional[str]
    first_bad_seq: Optional[int] = None
    reason: Optional[str] = None


def verify_journal_entries(entries: List[Dict[str, Any]]) -> JournalVerification:
    """
    Recompute the hash chain over exported journal entries (ordered by seq).

    Each entry must carry: seq, key, value_b64, writer, public_key_b64,
    signature_b64, value_hash, prev_entry_hash, entry_hash.
    """
    prev = None
    for entry in entries:
        seq = entry.get("seq")
        try:
            value = b64d(entry["value_b64"])
        except (KeyError, ValueError):
            return JournalVerification(False, len(entries), prev, seq, "unreadable value")
        if sha256_hex(value) != entry.get("value_hash"):
            return JournalVerification(False, len(entries), prev, seq, "value hash mismatch")
        if entry.get("prev_entry_hash") != prev:
            return JournalVerification(False, len(entries), prev, seq, "broken link")
        if chain_entry_hash(prev, entry["value_hash"], entry["key"]) != entry.get("entry_hash"):
            return JournalVerification(False, len(entries), prev, seq, "entry hash mismatch")
        public_key = entry.get("public_key_b64", "")
        try:
            derived = address_from_verify_key(b64d(public_key))
        except ValueError:
            return JournalVerification(False, len(entries), prev, seq, "unreadable public key")
        if derived != entry.get("writer"):
            return JournalVerification(False, len(entries), prev, seq, "writer does not match key")
        if not verify_entry_signature(entry.get("signature_b64", ""), entry["key"], value, public_key):
            return JournalVerification(False, len(entries), prev, seq, "bad signature")
        prev = entry["entry_hash"]
    return JournalVerification(True, len(entries), prev)


class SqliteJournalLedger(LedgerClient):
    """
    Ledger persisted as an append-only SQLite journal.

    Every set() appends a row; get() returns the newest row for the key.
    Rows are hash-chained (entry_hash = H(prev || value_hash || key)) and
    carry the writer's address, public key and signature, so the whole
    history can be audited with verify_journal().

    Connections are thread-local. Use a file path; ":memory:" would give
    each thread its own empty database.
    """

    def __init__(self, path: str, signer: Optional[WalletSigner] = None):
        self.path = Path(path)
        self.signer = signer
        self._local = threading.local()
        self.init_schema()

    def with_signer(self, signer: WalletSigner) -> "SqliteJournalLedger":
        return SqliteJournalLedger(str(self.path), signer=signer)

    def _get_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.path), check_same_thread=False, timeout=10)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
        return conn

    @contextmanager
    def _transaction(self):
        """
        Exclusive write transaction.

        BEGIN IMMEDIATE takes the write lock up front so reading the chain
        head and appending the next entry cannot interleave with another writer.
        """
        conn = self._get_connection()
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def init_schema(self) -> None:
        """Create the journal table. Safe to call multiple times."""
        conn = self._get_connection()
        conn.execute("""
        CREATE TABLE IF NOT EXISTS ledger_entries (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            entry_key TEXT NOT NULL,
            value BLOB NOT NULL,
            writer TEXT NOT NULL,
            public_key_b64 TEXT NOT NULL,
            signature_b64 TEXT NOT NULL,
            written_at INTEGER NOT NULL,
            value_hash TEXT NOT NULL,
            prev_entry_hash TEXT,
            entry_hash TEXT NOT NULL
        );""")
        conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_ledger_entries_key
        ON ledger_entries(entry_key, seq);""")
        conn.commit()

    def get(self, key: str) -> bytes:
        try:
            cur = self._get_connection().execute(
                "SELECT value FROM ledger_entries WHERE entry_key=? ORDER BY seq DESC LIMIT 1",
                (key,)
            )
            row = cur.fetchone()
        except sqlite3.Error as e:
            raise LedgerError(f"journal read failed for {key}: {e}") from e
        return bytes(row["value"]) if row else b""

    def set(self, key: str, value: bytes) -> None:
        if self.signer is None:
            raise LedgerAuthorizationError("Ledger session is read-only; connect a wallet to write")
        address, public_key_b64, signature_b64 = signed_write(self.signer, key, value)
        if not verify_entry_signature(signature_b64, key, value, public_key_b64):
            raise LedgerAuthorizationError(f"Invalid write signature from {address}")

        value_hash = sha256_hex(value)
        try:
            with self._transaction() as conn:
                row = conn.execute(
                    "SELECT entry_hash FROM ledger_entries ORDER BY seq DESC LIMIT 1"
                ).fetchone()
                prev = row["entry_hash"] if row else None
                conn.execute(
                    "INSERT INTO ledger_entries(entry_key, value, writer, public_key_b64, signature_b64, "
                    "written_at, value_hash, prev_entry_hash, entry_hash) VALUES(?,?,?,?,?,?,?,?,?)",
                    (key, bytes(value), address, public_key_b64, signature_b64, now_epoch(),
                     value_hash, prev, chain_entry_hash(prev, value_hash, key))
                )
        except sqlite3.Error as e:
            raise LedgerError(f"journal write failed for {key}: {e}") from e

    def is_available(self) -> bool:
        try:
            self._get_connection().execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error:
            return False

    def export_journal(self) -> List[Dict[str, Any]]:
        """Export the complete journal, oldest first, JSON-serializable."""
        cur = self._get_connection().execute(
            "SELECT seq, entry_key, value, writer, public_key_b64, signature_b64, written_at, "
            "value_hash, prev_entry_hash, entry_hash FROM ledger_entries ORDER BY seq ASC"
        )
        return [
            {
                "seq": row["seq"],
                "key": row["entry_key"],
                "value_b64": b64e(bytes(row["value"])),
                "writer": row["writer"],
                "public_key_b64": row["public_key_b64"],
                "signature_b64": row["signature_b64"],
                "written_at": row["written_at"],
                "value_hash": row["value_hash"],
                "prev_entry_hash": row["prev_entry_hash"],
                "entry_hash": row["entry_hash"],
            }
            for row in cur.fetchall()
        ]

    def verify_journal(self) -> JournalVerification:
        return verify_journal_entries(self.export_journal())

    def history(self, key: str) -> List[bytes]:
        """Every value ever written under key, oldest first."""
        cur = self._get_connection().execute(
            "SELECT value FROM ledger_entries WHERE entry_key=? ORDER BY seq ASC", (key,)
        )
        return [bytes(row["value"]) for row in cur.fetchall()]

    def close(self) -> None:
        """Close this thread's connection."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None


# ============================================================
# Redis
# ============================================================

class RedisLedger(LedgerClient):
    """
    Redis-backed ledger.

    Takes an already-configured redis-py client so the dependency stays
    optional. Each key is a Redis hash under key_prefix + key holding the
    value and the signed write that produced it:

        value, writer, public_key_b64, signature_b64, written_at
    """

    def __init__(self, redis_client, key_prefix: str = "xraycryst:", signer: Optional[WalletSigner] = None):
        self.redis = redis_client
        self.key_prefix = key_prefix
        self.signer = signer

    def get(self, key: str) -> bytes:
        try:
            value = self.redis.hget(f"{self.key_prefix}{key}", "value")
        except Exception as e:
            raise LedgerError(f"redis read failed for {key}: {e}") from e
        return bytes(value) if value is not None else b""

    def set(self, key: str, value: bytes) -> None:
        if self.signer is None:
            raise LedgerAuthorizationError("Ledger session is read-only; connect a wallet to write")
        address, public_key_b64, signature_b64 = signed_write(self.signer, key, value)
        if not verify_entry_signature(signature_b64, key, value, public_key_b64):
            raise LedgerAuthorizationError(f"Invalid write signature from {address}")
        try:
            # One HSET so value and signature are replaced together
            self.redis.hset(f"{self.key_prefix}{key}", mapping={
                "value": bytes(value),
                "writer": address,
                "public_key_b64": public_key_b64,
                "signature_b64": signature_b64,
                "written_at": str(now_epoch()),
            })
        except Exception as e:
            raise LedgerError(f"redis write failed for {key}: {e}") from e

    def write_metadata(self, key: str) -> Optional[Dict[str, str]]:
        """Writer, public key and signature of the current value, or None if absent."""
        try:
            raw = self.redis.hgetall(f"{self.key_prefix}{key}")
        except Exception as e:
            raise LedgerError(f"redis read failed for {key}: {e}") from e
        if not raw:
            return None
        fields = {_text(k): v for k, v in raw.items()}
        return {name: _text(fields[name]) for name in ("writer", "public_key_b64", "signature_b64", "written_at") if name in fields}

    def verify_entry(self, key: str) -> bool:
        """Check the stored value against its recorded writer and signature."""
        meta = self.write_metadata(key)
        if not meta or "signature_b64" not in meta or "public_key_b64" not in meta:
            return False
        try:
            writer = address_from_verify_key(b64d(meta["public_key_b64"]))
        except ValueError:
            return False
        if writer.lower() != meta.get("writer", "").lower():
            return False
        return verify_entry_signature(meta["signature_b64"], key, self.get(key), meta["public_key_b64"])

    def is_available(self) -> bool:
        try:
            return bool(self.redis.ping())
        except Exception:
            return False


def _text(value) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


# ============================================================
# S3
# ============================================================

class S3Ledger(LedgerClient):
    """
    Stores each ledger key as an S3 object under prefix.

    The writer address and signature travel as object metadata.
    """

    def __init__(self, bucket: str, prefix: str, signer: Optional[WalletSigner] = None, client=None):
        self.bucket = bucket
        self.prefix = prefix.rstrip("/") + "/"
        self.signer = signer
        self._client = client

    def _get_client(self):
        """Lazy-load boto3 client."""
        if self._client is None:
            try:
                import boto3
            except ImportError as e:
                raise RuntimeError("boto3 required for the S3 ledger backend. Install with: pip install boto3") from e
            self._client = boto3.client("s3")
        return self._client

    def _object_key(self, key: str) -> str:
        return f"{self.prefix}{quote(key, safe='')}"

    def get(self, key: str) -> bytes:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            resp = self._get_client().get_object(Bucket=self.bucket, Key=self._object_key(key))
            return resp["Body"].read()
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return b""
            raise LedgerError(f"s3 read failed for {key}: {e}") from e
        except BotoCoreError as e:
            raise LedgerError(f"s3 read failed for {key}: {e}") from e

    def set(self, key: str, value: bytes) -> None:
        from botocore.exceptions import BotoCoreError, ClientError

        if self.signer is None:
            raise LedgerAuthorizationError("Ledger session is read-only; connect a wallet to write")
        address, public_key_b64, signature_b64 = signed_write(self.signer, key, value)
        try:
            self._get_client().put_object(
                Bucket=self.bucket,
                Key=self._object_key(key),
                Body=bytes(value),
                ContentType="application/octet-stream",
                Metadata={"writer": address, "public-key": public_key_b64, "signature": signature_b64},
            )
        except (ClientError, BotoCoreError) as e:
            raise LedgerError(f"s3 write failed for {key}: {e}") from e

    def is_available(self) -> bool:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            self._get_client().head_bucket(Bucket=self.bucket)
            return True
        except (ClientError, BotoCoreError):
            return False


# ============================================================
# HTTP gateway
# ============================================================

class HttpLedger(LedgerClient):
    """
    Ledger reached through a REST gateway.

        GET  {base}/entries/{key}   -> 200 raw bytes | 404 absent
        PUT  {base}/entries/{key}   <- raw bytes, signed via X-Wallet-* headers
        GET  {base}/health          -> 200 when available
    """

    def __init__(self, base_url: str, signer: Optional[WalletSigner] = None, timeout: float = 10.0, session=None):
        import requests

        self.base_url = base_url.rstrip("/")
        self.signer = signer
        self.timeout = timeout
        self.session = session or requests.Session()

    def _url(self, key: str) -> str:
        return f"{self.base_url}/entries/{quote(key, safe='')}"

    def get(self, key: str) -> bytes:
        import requests

        try:
            r = self.session.get(self._url(key), timeout=self.timeout)
        except requests.RequestException as e:
            raise LedgerError(f"ledger gateway unreachable: {e}") from e
        if r.status_code == 404:
            return b""
        if r.status_code != 200:
            raise LedgerError(f"ledger gateway returned {r.status_code} for {key}")
        return r.content

    def set(self, key: str, value: bytes) -> None:
        import requests

        if self.signer is None:
            raise LedgerAuthorizationError("Ledger session is read-only; connect a wallet to write")
        address, public_key_b64, signature_b64 = signed_write(self.signer, key, value)
        headers = {
            "Content-Type": "application/octet-stream",
            "X-Wallet-Address": address,
            "X-Wallet-Public-Key": public_key_b64,
            "X-Wallet-Signature": signature_b64,
        }
        try:
            r = self.session.put(self._url(key), data=bytes(value), headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise LedgerError(f"ledger gateway unreachable: {e}") from e
        if r.status_code in (401, 403):
            raise LedgerAuthorizationError(f"ledger gateway rejected write to {key}")
        if r.status_code not in (200, 201, 204):
            raise LedgerError(f"ledger gateway returned {r.status_code} for {key}")

    def is_available(self) -> bool:
        import requests

        try:
            return self.session.get(f"{self.base_url}/health", timeout=self.timeout).status_code == 200
        except requests.RequestException:
            return False


# ============================================================
# Factory
# ============================================================

def get_ledger_client(settings: Settings, signer: Optional[WalletSigner] = None) -> LedgerClient:
    """
    Build the ledger client selected by settings.ledger_backend.

    Args:
        settings: Runtime configuration
        signer: Wallet for authenticated writes (None = read-only)
    """
    backend = settings.ledger_backend
    if backend == "sqlite":
        return SqliteJournalLedger(settings.sqlite_path, signer=signer)
    if backend == "s3":
        if not settings.s3_bucket:
            raise ValueError("XRAYCRYST_S3_BUCKET required for s3 ledger backend")
        return S3Ledger(settings.s3_bucket, settings.s3_prefix, signer=signer)
    if backend == "http":
        if not settings.http_ledger_url:
            raise ValueError("XRAYCRYST_HTTP_LEDGER_URL required for http ledger backend")
        return HttpLedger(settings.http_ledger_url, signer=signer)
    return InMemoryLedger(signer=signer)
