"""
Wallet identity and write signature tests.
"""

import json
import os
import re
import stat
import tempfile
import unittest

from xraycryst.wallet import (
    FileWalletSigner,
    LocalWalletSigner,
    address_from_verify_key,
    generate_wallet,
    request_headers,
    request_signing_payload,
    verify_entry_signature,
    verify_signature,
)


class TestWalletSigner(unittest.TestCase):

    def setUp(self):
        self.wallet = LocalWalletSigner.generate()

    def test_address_format(self):
        self.assertRegex(self.wallet.address, re.compile(r"^0x[0-9a-f]{40}$"))

    def test_address_derived_from_public_key(self):
        from xraycryst.util import b64d

        self.assertEqual(address_from_verify_key(b64d(self.wallet.public_key_b64())), self.wallet.address)

    def test_signature_verifies(self):
        sig = self.wallet.sign_entry("analysis_1-a", b"value")
        self.assertTrue(verify_entry_signature(sig, "analysis_1-a", b"value", self.wallet.public_key_b64()))

    def test_signature_bound_to_key_and_value(self):
        sig = self.wallet.sign_entry("analysis_1-a", b"value")
        pub = self.wallet.public_key_b64()
        self.assertFalse(verify_entry_signature(sig, "analysis_2-b", b"value", pub))
        self.assertFalse(verify_entry_signature(sig, "analysis_1-a", b"other", pub))

    def test_wrong_key_or_garbage(self):
        sig = self.wallet.sign_entry("k", b"v")
        other = LocalWalletSigner.generate().public_key_b64()
        self.assertFalse(verify_entry_signature(sig, "k", b"v", other))
        self.assertFalse(verify_entry_signature("not base64!", "k", b"v", self.wallet.public_key_b64()))
        self.assertFalse(verify_entry_signature(sig, "k", b"v", "AAAA"))

    def test_request_signature(self):
        body = {"action": "advance", "analysis_id": "1-a"}
        headers = request_headers(self.wallet, body)
        self.assertEqual(headers["X-Wallet-Address"], self.wallet.address)
        pub = headers["X-Wallet-Public-Key"]
        sig = headers["X-Wallet-Signature"]
        self.assertTrue(verify_signature(sig, request_signing_payload(body), pub))
        self.assertFalse(verify_signature(sig, request_signing_payload({"action": "advance", "analysis_id": "1-b"}), pub))

    def test_request_and_entry_signatures_differ(self):
        body = {"key": "k", "value_hash": "x"}
        self.assertNotEqual(self.wallet.sign_request(body), self.wallet.sign_entry("k", b"v"))


class TestWalletFile(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self._tmp.name, "secrets", "wallet.json")

    def tearDown(self):
        self._tmp.cleanup()

    def test_generate_and_load(self):
        created = generate_wallet(self.path)
        loaded = FileWalletSigner(self.path)
        self.assertEqual(loaded.address, created.address)
        self.assertEqual(loaded.public_key_b64(), created.public_key_b64())

    @unittest.skipIf(os.name != "posix", "file modes are POSIX only")
    def test_key_file_private(self):
        generate_wallet(self.path)
        self.assertEqual(stat.S_IMODE(os.stat(self.path).st_mode), 0o600)

    def test_mismatched_address_rejected(self):
        generate_wallet(self.path)
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        data["address"] = "0x" + "0" * 40
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f)
        with self.assertRaises(ValueError):
            FileWalletSigner(self.path)


if __name__ == "__main__":
    unittest.main()
