"""
Confidential-computation backends.

A ComputeBackend takes an encrypted diffraction payload and returns the
derived encrypted artifacts (density map, structure). No real homomorphic
encryption happens here: SimulatedFheBackend derives deterministic
placeholder ciphertexts from the payload hash, and HttpComputeBackend
forwards the payload to an external service.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from .canonicalization import canonicalize
from .config import Settings
from .errors import ComputeError
from .hashing import sha256_hex
from .util import b64d, b64e

SEALED_PREFIX = b"FHE-"


@dataclass(frozen=True)
class ComputeResult:
    """Artifacts produced by one successful computation."""
    artifacts: Tuple[bytes, ...]


class ComputeBackend(ABC):
    """Abstract confidential-computation step."""

    @abstractmethod
    def run(self, payload: bytes) -> ComputeResult:
        """
        Process an encrypted payload.

        Raises:
            ComputeError: processing failed
        """
        pass


class SimulatedFheBackend(ComputeBackend):
    """
    Stand-in for homomorphic processing.

    Args:
        delay_seconds: Blocking delay before returning, to mimic a slow job
        fail_on: Predicate over the payload; when it returns True the run
            raises ComputeError
    """

    def __init__(self, delay_seconds: float = 0.0, fail_on: Optional[Callable[[bytes], bool]] = None):
        if delay_seconds < 0:
            raise ValueError("delay_seconds must not be negative")
        self.delay_seconds = delay_seconds
        self.fail_on = fail_on

    def run(self, payload: bytes) -> ComputeResult:
        if self.delay_seconds:
            time.sleep(self.delay_seconds)
        if self.fail_on is not None and self.fail_on(payload):
            raise ComputeError("simulated FHE computation failed")
        digest = sha256_hex(payload)
        return ComputeResult(artifacts=(
            f"FHE-ENCRYPTED-DENSITY-MAP:{digest}".encode("ascii"),
            f"FHE-ENCRYPTED-STRUCTURE:{digest}".encode("ascii"),
        ))


class HttpComputeBackend(ComputeBackend):
    """
    Compute service reached over HTTP.

    POST {url}  {"payload_b64": "..."}  ->  {"artifacts": ["<b64>", ...]}
    """

    def __init__(self, url: str, timeout: float = 30.0, session=None):
        import requests

        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def run(self, payload: bytes) -> ComputeResult:
        import requests

        try:
            r = self.session.post(self.url, json={"payload_b64": b64e(payload)}, timeout=self.timeout)
            r.raise_for_status()
            body = r.json()
        except requests.RequestException as e:
            raise ComputeError(f"compute service request failed: {e}") from e
        except ValueError as e:
            raise ComputeError(f"compute service returned invalid JSON: {e}") from e

        items = body.get("artifacts") if isinstance(body, dict) else None
        if not isinstance(items, list) or not items:
            raise ComputeError("compute service response has no artifacts")
        try:
            return ComputeResult(artifacts=tuple(b64d(item) for item in items))
        except (ValueError, AttributeError) as e:
            raise ComputeError(f"compute service returned bad artifact encoding: {e}") from e


def seal_submission(image_name: str, description: str = "") -> bytes:
    """
    Seal a diffraction image submission into an opaque payload.

    Simulated encryption: b"FHE-" followed by base64 of the canonical JSON
    {"description", "image"}.
    """
    if not image_name:
        raise ValueError("image_name is required")
    body = canonicalize({"image": image_name, "description": description or ""})
    return SEALED_PREFIX + b64e(body).encode("ascii")


def get_compute_backend(settings: Settings) -> ComputeBackend:
    """Build the compute backend selected by settings.compute_backend."""
    if settings.compute_backend == "http":
        if not settings.compute_url:
            raise ValueError("XRAYCRYST_COMPUTE_URL required for http compute backend")
        return HttpComputeBackend(settings.compute_url)
    return SimulatedFheBackend(delay_seconds=settings.compute_delay_seconds)
