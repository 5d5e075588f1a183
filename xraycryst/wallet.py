"""
Wallet identities for authenticated ledger sessions.

A wallet is an Ed25519 key pair. Its address (the "owner" identity
stamped on records) is derived from the public key. Authenticated ledger
sessions sign every write; ledgers that require authentication verify
the signature before accepting it.
"""

import json
import os
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Tuple

from nacl.exceptions import CryptoError
from nacl.signing import SigningKey, VerifyKey

from .canonicalization import canonicalize
from .hashing import sha256_hex
from .util import b64d, b64e


def address_from_verify_key(verify_key: bytes) -> str:
    """Derive a 0x-prefixed 40 hex char address from a raw public key."""
    return "0x" + sha256_hex(verify_key)[-40:]


def entry_signing_payload(key: str, value: bytes) -> bytes:
    """Canonical bytes signed for a ledger write of value under key."""
    return canonicalize({"key": key, "value_hash": sha256_hex(value)})


def request_signing_payload(body: Dict[str, Any]) -> bytes:
    """Canonical bytes a caller signs to authenticate an API request."""
    return canonicalize(body)


class WalletSigner(ABC):
    """Abstract interface for a wallet that can authorize ledger writes."""

    @property
    @abstractmethod
    def address(self) -> str:
        """The wallet address used as the caller/owner identity."""

    @abstractmethod
    def public_key_b64(self) -> str:
        """Base64 raw Ed25519 public key."""

    @abstractmethod
    def sign_entry(self, key: str, value: bytes) -> str:
        """
        Sign a ledger write.

        Returns:
            Base64 Ed25519 signature over entry_signing_payload(key, value)
        """

    @abstractmethod
    def sign_request(self, body: Dict[str, Any]) -> str:
        """Sign an API request body; returns a base64 Ed25519 signature."""


class LocalWalletSigner(WalletSigner):
    """Wallet backed by an in-process Ed25519 signing key."""

    def __init__(self, signing_key: SigningKey):
        self._sk = signing_key
        self._vk = bytes(signing_key.verify_key)
        self._address = address_from_verify_key(self._vk)
        self._lock = threading.Lock()

    @classmethod
    def generate(cls) -> "LocalWalletSigner":
        return cls(SigningKey.generate())

    @property
    def address(self) -> str:
        return self._address

    def public_key_b64(self) -> str:
        return b64e(self._vk)

    def sign_entry(self, key: str, value: bytes) -> str:
        with self._lock:
            sig = self._sk.sign(entry_signing_payload(key, value)).signature
        return b64e(sig)

    def sign_request(self, body: Dict[str, Any]) -> str:
        with self._lock:
            sig = self._sk.sign(request_signing_payload(body)).signature
        return b64e(sig)

    def to_json(self) -> Dict[str, Any]:
        """Serializable key file contents. Contains the private key."""
        return {
            "address": self._address,
            "public_key_b64": b64e(self._vk),
            "private_key_b64": b64e(bytes(self._sk)),
        }


class FileWalletSigner(LocalWalletSigner):
    """
    Wallet loaded from a JSON key file.

    File format (written by generate_wallet / tools/gen_wallet.py):
        {"address": "0x...", "public_key_b64": "...", "private_key_b64": "..."}
    """

    def __init__(self, path: str):
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        super().__init__(SigningKey(b64d(raw["private_key_b64"])))
        if raw.get("address") and raw["address"].lower() != self.address.lower():
            raise ValueError(f"Key file {path} address does not match its private key")
        self.path = path


def generate_wallet(path: str) -> LocalWalletSigner:
    """Generate a new wallet and write its key file (mode 0600)."""
    signer = LocalWalletSigner.generate()
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        json.dump(signer.to_json(), f, indent=2)
    return signer


def verify_entry_signature(signature_b64: str, key: str, value: bytes, public_key_b64: str) -> bool:
    """
    Verify a ledger write signature.

    Args:
        signature_b64: Base64-encoded signature
        key: Ledger key written
        value: Value written
        public_key_b64: Base64-encoded public key of the claimed writer

    Returns:
        True if signature is valid, False otherwise
    """
    return verify_signature(signature_b64, entry_signing_payload(key, value), public_key_b64)


def verify_signature(signature_b64: str, payload: bytes, public_key_b64: str) -> bool:
    """Verify a base64 Ed25519 signature over payload."""
    try:
        vk = VerifyKey(b64d(public_key_b64))
        vk.verify(payload, b64d(signature_b64))
        return True
    except (CryptoError, ValueError, TypeError):
        return False


def signed_write(signer: WalletSigner, key: str, value: bytes) -> Tuple[str, str, str]:
    """Return (address, public_key_b64, signature_b64) for a write."""
    return signer.address, signer.public_key_b64(), signer.sign_entry(key, value)


def request_headers(signer: WalletSigner, body: Dict[str, Any]) -> Dict[str, str]:
    """Headers that authenticate signer as the caller of a request with this body."""
    return {
        "X-Wallet-Address": signer.address,
        "X-Wallet-Public-Key": signer.public_key_b64(),
        "X-Wallet-Signature": signer.sign_request(body),
    }
