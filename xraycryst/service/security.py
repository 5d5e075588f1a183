"""
Request validation and caller identification for the XrayCryst service.

Callers prove they own the wallet address they claim by signing the
canonical request body:

    X-Wallet-Address:    0x... (the claimed owner identity)
    X-Wallet-Public-Key: base64 Ed25519 public key; must derive the address
    X-Wallet-Signature:  base64 signature over canonicalize(signed body)

The signed body is {"action": ..., plus the request fields that were set},
see signed_request_body().
"""

import re
from typing import Any, Dict, List, Mapping, Optional

from ..util import b64d
from ..wallet import address_from_verify_key, request_signing_payload, verify_signature

WALLET_ADDRESS_PATTERN = re.compile(r'^0x[a-fA-F0-9]{40}$')
RECORD_ID_PATTERN = re.compile(r'^[0-9]{1,16}-[a-z0-9]{1,16}$')


class ValidationError(Exception):
    """Raised when request input validation fails."""
    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class AuthenticationError(Exception):
    """Raised when a caller cannot prove ownership of the claimed wallet."""
    def __init__(self, code: str):
        self.code = code
        super().__init__(code)


def validate_wallet_address(value: Optional[str], field_name: str = "X-Wallet-Address") -> str:
    """
    Validate a 0x-prefixed 40 hex char wallet address.

    Returns:
        The stripped address (case preserved)

    Raises:
        ValidationError: missing or malformed
    """
    if not value:
        raise ValidationError(field_name, "is required")
    value = value.strip()
    if not WALLET_ADDRESS_PATTERN.match(value):
        raise ValidationError(field_name, "must be a 0x-prefixed 40 character hex address")
    return value


def validate_record_id(value: str) -> str:
    """Validate a record id of the form <millis>-<base36 suffix>."""
    if not isinstance(value, str) or not RECORD_ID_PATTERN.match(value):
        raise ValidationError("analysis_id", "invalid format")
    return value


def signed_request_body(action: str, **fields: Any) -> Dict[str, Any]:
    """
    Body a caller signs for an action.

    Fields that are None or empty are left out, so a client signs exactly
    what it sent.
    """
    body: Dict[str, Any] = {"action": action}
    body.update({k: v for k, v in fields.items() if v not in (None, "")})
    return body


def authenticate_caller(headers: Mapping[str, str], body: Dict[str, Any]) -> str:
    """
    Verify the caller owns the claimed wallet address.

    Returns:
        The claimed address (case preserved)

    Raises:
        ValidationError: address missing or malformed
        AuthenticationError: missing key or signature, key does not derive
            the address, or the signature does not cover this body
    """
    address = validate_wallet_address(headers.get("x-wallet-address"))
    public_key_b64 = headers.get("x-wallet-public-key", "")
    signature_b64 = headers.get("x-wallet-signature", "")
    if not public_key_b64 or not signature_b64:
        raise AuthenticationError("MISSING_SIGNATURE")

    try:
        derived = address_from_verify_key(b64d(public_key_b64))
    except ValueError:
        raise AuthenticationError("INVALID_PUBLIC_KEY")
    if derived.lower() != address.lower():
        raise AuthenticationError("KEY_ADDRESS_MISMATCH")

    if not verify_signature(signature_b64, request_signing_payload(body), public_key_b64):
        raise AuthenticationError("INVALID_SIGNATURE")
    return address


def extract_client_id(headers: Mapping[str, str]) -> str:
    """
    Identify the caller for rate limiting.

    Prefers the wallet address, then the forwarded IP.
    """
    wallet = headers.get("x-wallet-address", "")
    if wallet:
        return f"wallet:{wallet.lower()}"

    forwarded = headers.get("x-forwarded-for", "")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"

    return "anonymous"


def sanitize_for_logging(data: Dict[str, Any], sensitive_fields: List[str] = None) -> Dict[str, Any]:
    """
    Mask sensitive fields before logging.

    Payload and artifact ciphertexts are masked as well as key material.
    """
    if sensitive_fields is None:
        sensitive_fields = ["private_key_b64", "signature_b64", "payload_b64", "artifacts_b64", "secret", "token"]

    result = {}
    for key, value in data.items():
        if key in sensitive_fields:
            if isinstance(value, str) and len(value) > 8:
                result[key] = value[:4] + "..." + value[-4:]
            else:
                result[key] = "[REDACTED]"
        elif isinstance(value, dict):
            result[key] = sanitize_for_logging(value, sensitive_fields)
        elif isinstance(value, list):
            result[key] = [
                sanitize_for_logging(item, sensitive_fields) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            result[key] = value
    return result
