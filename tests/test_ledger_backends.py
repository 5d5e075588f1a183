"""
Ledger client tests: in-memory sessions, the SQLite journal and the
remote backends (with injected fake clients).
"""

import os
import sqlite3
import tempfile
import unittest

from botocore.exceptions import ClientError

from xraycryst.compute import SimulatedFheBackend
from xraycryst.config import Settings
from xraycryst.errors import LedgerAuthorizationError, LedgerError, LedgerUnavailableError
from xraycryst.ledger import InMemoryLedger
from xraycryst.ledger_backends import (
    HttpLedger,
    RedisLedger,
    S3Ledger,
    SqliteJournalLedger,
    get_ledger_client,
    verify_journal_entries,
)
from xraycryst.records import RecordStatus
from xraycryst.store import RecordStore
from xraycryst.wallet import LocalWalletSigner, verify_entry_signature
from xraycryst.workflow import WorkflowEngine


class TestInMemoryLedger(unittest.TestCase):
    """Read-only vs authenticated sessions."""

    def setUp(self):
        self.wallet = LocalWalletSigner.generate()
        self.ledger = InMemoryLedger()

    def test_absent_key_is_empty(self):
        self.assertEqual(self.ledger.get("missing"), b"")

    def test_read_only_session_rejects_writes(self):
        with self.assertRaises(LedgerAuthorizationError):
            self.ledger.set("k", b"v")

    def test_sessions_share_storage(self):
        session = self.ledger.with_signer(self.wallet)
        session.set("k", b"v")
        self.assertEqual(self.ledger.get("k"), b"v")
        self.assertEqual(session.read_only().get("k"), b"v")
        self.assertEqual(self.ledger.writer_of("k"), self.wallet.address)
        self.assertEqual(self.ledger.keys(), ["k"])

    def test_user_declines_transaction(self):
        session = self.ledger.with_signer(self.wallet, authorize=lambda key, value: False)
        with self.assertRaises(LedgerAuthorizationError):
            session.set("k", b"v")
        self.assertEqual(self.ledger.get("k"), b"")

    def test_unavailable(self):
        self.ledger.set_available(False)
        self.assertFalse(self.ledger.is_available())
        with self.assertRaises(LedgerUnavailableError):
            self.ledger.get("k")


class SqliteTestCase(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self._tmp.name, "ledger.db")
        self.wallet = LocalWalletSigner.generate()
        self.ledger = SqliteJournalLedger(self.path, signer=self.wallet)

    def tearDown(self):
        self.ledger.close()
        self._tmp.cleanup()

    def tamper(self, sql, params=()):
        conn = sqlite3.connect(self.path)
        conn.execute(sql, params)
        conn.commit()
        conn.close()


class TestSqliteJournalLedger(SqliteTestCase):
    """Append-only journal semantics."""

    def test_latest_value_wins(self):
        self.ledger.set("k", b"v1")
        self.ledger.set("k", b"v2")
        self.assertEqual(self.ledger.get("k"), b"v2")
        self.assertEqual(self.ledger.history("k"), [b"v1", b"v2"])

    def test_absent_key_is_empty(self):
        self.assertEqual(self.ledger.get("missing"), b"")

    def test_read_only_rejects_writes(self):
        reader = SqliteJournalLedger(self.path)
        with self.assertRaises(LedgerAuthorizationError):
            reader.set("k", b"v")
        reader.close()

    def test_persists_across_instances(self):
        self.ledger.set("k", b"v")
        other = SqliteJournalLedger(self.path)
        self.assertEqual(other.get("k"), b"v")
        other.close()

    def test_journal_records_writer(self):
        self.ledger.set("k", b"v")
        entry = self.ledger.export_journal()[0]
        self.assertEqual(entry["writer"], self.wallet.address)
        self.assertEqual(entry["key"], "k")
        self.assertIsNone(entry["prev_entry_hash"])

    def test_store_and_workflow_on_journal(self):
        engine = WorkflowEngine(RecordStore(self.ledger), SimulatedFheBackend())
        r = engine.submit(self.wallet.address, b"P")
        done = engine.advance(r.id, self.wallet.address)
        self.assertEqual(done.status, RecordStatus.COMPLETED)

        reader = RecordStore(SqliteJournalLedger(self.path))
        self.assertEqual(reader.list(), [done])
        self.assertTrue(self.ledger.verify_journal().ok)


class TestJournalVerification(SqliteTestCase):
    """Hash chain detects tampering."""

    def setUp(self):
        super().setUp()
        for i in range(3):
            self.ledger.set(f"k{i}", f"v{i}".encode())

    def test_untampered_journal_verifies(self):
        result = self.ledger.verify_journal()
        self.assertTrue(result.ok)
        self.assertEqual(result.entries, 3)
        self.assertEqual(result.head_entry_hash, self.ledger.export_journal()[-1]["entry_hash"])

    def test_exported_journal_verifies(self):
        self.assertTrue(verify_journal_entries(self.ledger.export_journal()).ok)

    def test_modified_value_detected(self):
        self.tamper("UPDATE ledger_entries SET value=? WHERE seq=2", (b"forged",))
        result = self.ledger.verify_journal()
        self.assertFalse(result.ok)
        self.assertEqual(result.first_bad_seq, 2)
        self.assertEqual(result.reason, "value hash mismatch")

    def test_rewritten_value_hash_detected(self):
        from xraycryst.hashing import sha256_hex

        self.tamper(
            "UPDATE ledger_entries SET value=?, value_hash=? WHERE seq=2",
            (b"forged", sha256_hex(b"forged")),
        )
        result = self.ledger.verify_journal()
        self.assertFalse(result.ok)
        self.assertEqual(result.first_bad_seq, 2)
        self.assertEqual(result.reason, "entry hash mismatch")

    def test_deleted_entry_detected(self):
        self.tamper("DELETE FROM ledger_entries WHERE seq=2")
        result = self.ledger.verify_journal()
        self.assertFalse(result.ok)
        self.assertEqual(result.first_bad_seq, 3)
        self.assertEqual(result.reason, "broken link")

    def test_forged_writer_detected(self):
        self.tamper("UPDATE ledger_entries SET writer=? WHERE seq=1", ("0x" + "0" * 40,))
        result = self.ledger.verify_journal()
        self.assertFalse(result.ok)
        self.assertEqual(result.first_bad_seq, 1)

    def test_forged_signature_detected(self):
        entries = self.ledger.export_journal()
        entries[0]["signature_b64"] = entries[1]["signature_b64"]
        result = verify_journal_entries(entries)
        self.assertFalse(result.ok)
        self.assertEqual(result.reason, "bad signature")


class FakeRedis:
    def __init__(self):
        self.data = {}

    def hget(self, name, field):
        return self.data.get(name, {}).get(field)

    def hgetall(self, name):
        return {k.encode(): v if isinstance(v, bytes) else str(v).encode() for k, v in self.data.get(name, {}).items()}

    def hset(self, name, mapping):
        self.data.setdefault(name, {}).update(mapping)

    def ping(self):
        return True


class TestRedisLedger(unittest.TestCase):

    def setUp(self):
        self.client = FakeRedis()
        self.wallet = LocalWalletSigner.generate()
        self.ledger = RedisLedger(self.client, key_prefix="t:", signer=self.wallet)

    def test_prefixed_keys(self):
        self.ledger.set("k", b"v")
        self.assertEqual(list(self.client.data), ["t:k"])
        self.assertEqual(self.client.data["t:k"]["value"], b"v")
        self.assertEqual(self.ledger.get("k"), b"v")
        self.assertEqual(self.ledger.get("missing"), b"")
        self.assertTrue(self.ledger.is_available())

    def test_write_is_signed(self):
        self.ledger.set("k", b"v")
        meta = self.ledger.write_metadata("k")
        self.assertEqual(meta["writer"], self.wallet.address)
        self.assertEqual(meta["public_key_b64"], self.wallet.public_key_b64())
        self.assertTrue(verify_entry_signature(meta["signature_b64"], "k", b"v", meta["public_key_b64"]))
        self.assertTrue(self.ledger.verify_entry("k"))
        self.assertIsNone(self.ledger.write_metadata("missing"))

    def test_tampered_value_fails_verification(self):
        self.ledger.set("k", b"v")
        self.client.data["t:k"]["value"] = b"forged"
        self.assertFalse(self.ledger.verify_entry("k"))

    def test_forged_writer_fails_verification(self):
        self.ledger.set("k", b"v")
        self.client.data["t:k"]["writer"] = LocalWalletSigner.generate().address
        self.assertFalse(self.ledger.verify_entry("k"))

    def test_read_only(self):
        with self.assertRaises(LedgerAuthorizationError):
            RedisLedger(FakeRedis()).set("k", b"v")


class FakeBody:
    def __init__(self, data):
        self.data = data

    def read(self):
        return self.data


class FakeS3:
    def __init__(self):
        self.objects = {}

    def get_object(self, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "gone"}}, "GetObject")
        return {"Body": FakeBody(self.objects[(Bucket, Key)]["Body"])}

    def put_object(self, Bucket, Key, **kwargs):
        self.objects[(Bucket, Key)] = kwargs

    def head_bucket(self, Bucket):
        raise ClientError({"Error": {"Code": "403", "Message": "denied"}}, "HeadBucket")


class TestS3Ledger(unittest.TestCase):

    def setUp(self):
        self.client = FakeS3()
        self.wallet = LocalWalletSigner.generate()
        self.ledger = S3Ledger("bucket", "ledger", signer=self.wallet, client=self.client)

    def test_round_trip_with_metadata(self):
        self.ledger.set("analysis_keys", b"[]")
        stored = self.client.objects[("bucket", "ledger/analysis_keys")]
        self.assertEqual(stored["Metadata"]["writer"], self.wallet.address)
        self.assertEqual(self.ledger.get("analysis_keys"), b"[]")

    def test_missing_object_is_empty(self):
        self.assertEqual(self.ledger.get("missing"), b"")

    def test_unavailable_bucket(self):
        self.assertFalse(self.ledger.is_available())


class FakeResponse:
    def __init__(self, status_code, content=b""):
        self.status_code = status_code
        self.content = content


class FakeSession:
    def __init__(self, responses):
        self.responses = responses
        self.requests = []

    def get(self, url, timeout=None):
        self.requests.append(("GET", url, None))
        return self.responses.pop(0)

    def put(self, url, data=None, headers=None, timeout=None):
        self.requests.append(("PUT", url, headers))
        return self.responses.pop(0)


class TestHttpLedger(unittest.TestCase):

    def setUp(self):
        self.wallet = LocalWalletSigner.generate()

    def test_get_maps_404_to_empty(self):
        ledger = HttpLedger("http://gw/", session=FakeSession([FakeResponse(404), FakeResponse(200, b"v")]))
        self.assertEqual(ledger.get("k"), b"")
        self.assertEqual(ledger.get("k"), b"v")

    def test_put_is_signed(self):
        session = FakeSession([FakeResponse(204)])
        HttpLedger("http://gw", signer=self.wallet, session=session).set("analysis_1-a", b"v")
        method, url, headers = session.requests[0]
        self.assertEqual((method, url), ("PUT", "http://gw/entries/analysis_1-a"))
        self.assertEqual(headers["X-Wallet-Address"], self.wallet.address)
        self.assertIn("X-Wallet-Signature", headers)

    def test_rejected_write(self):
        ledger = HttpLedger("http://gw", signer=self.wallet, session=FakeSession([FakeResponse(403)]))
        with self.assertRaises(LedgerAuthorizationError):
            ledger.set("k", b"v")

    def test_server_error(self):
        ledger = HttpLedger("http://gw", session=FakeSession([FakeResponse(500)]))
        with self.assertRaises(LedgerError):
            ledger.get("k")


class TestLedgerFactory(unittest.TestCase):

    def test_default_is_memory(self):
        self.assertIsInstance(get_ledger_client(Settings()), InMemoryLedger)

    def test_sqlite(self):
        with tempfile.TemporaryDirectory() as tmp:
            ledger = get_ledger_client(Settings(ledger_backend="sqlite", sqlite_path=os.path.join(tmp, "l.db")))
            self.assertIsInstance(ledger, SqliteJournalLedger)
            ledger.close()

    def test_remote_backends_need_location(self):
        with self.assertRaises(ValueError):
            get_ledger_client(Settings(ledger_backend="s3"))
        with self.assertRaises(ValueError):
            get_ledger_client(Settings(ledger_backend="http"))

    def test_unknown_backend(self):
        with self.assertRaises(ValueError):
            Settings(ledger_backend="ipfs")


if __name__ == "__main__":
    unittest.main()
