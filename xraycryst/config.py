"""
Configuration module for XrayCryst.

Centralizes configuration with environment variable support. Module-level
constants are read once at import; load_settings() takes a fresh snapshot
for callers (CLI, service, tests) that want to inject configuration.
"""

import os
from dataclasses import dataclass
from typing import Optional

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("XRAYCRYST_ENV", "dev")  # dev|stage|prod

# Rate limits (requests per minute)
SUBMIT_RPM = int(os.getenv("SUBMIT_RPM", "60"))
ADVANCE_RPM = int(os.getenv("ADVANCE_RPM", "30"))

# Ledger backend: memory|sqlite|s3|http
LEDGER_BACKEND = os.getenv("XRAYCRYST_LEDGER_BACKEND", "memory")
SQLITE_PATH = os.getenv("XRAYCRYST_SQLITE_PATH", "data/xraycryst-ledger.db")
S3_BUCKET = os.getenv("XRAYCRYST_S3_BUCKET", "")
S3_PREFIX = os.getenv("XRAYCRYST_S3_PREFIX", "xraycryst/ledger/")
HTTP_LEDGER_URL = os.getenv("XRAYCRYST_HTTP_LEDGER_URL", "")

# Compute backend: simulated|http
COMPUTE_BACKEND = os.getenv("XRAYCRYST_COMPUTE_BACKEND", "simulated")
COMPUTE_URL = os.getenv("XRAYCRYST_COMPUTE_URL", "")
COMPUTE_DELAY_SECONDS = float(os.getenv("XRAYCRYST_COMPUTE_DELAY_SECONDS", "0"))

# Wallet used for authenticated ledger writes
WALLET_PATH = os.getenv("XRAYCRYST_WALLET_PATH", "secrets/wallet.json")

# Logging
LOG_LEVEL = os.getenv("XRAYCRYST_LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("XRAYCRYST_LOG_JSON", "true").lower() in ("1", "true", "yes")

LEDGER_BACKENDS = ("memory", "sqlite", "s3", "http")
COMPUTE_BACKENDS = ("simulated", "http")


@dataclass
class Settings:
    """Snapshot of runtime configuration."""
    env: str = "dev"
    ledger_backend: str = "memory"
    sqlite_path: str = "data/xraycryst-ledger.db"
    s3_bucket: str = ""
    s3_prefix: str = "xraycryst/ledger/"
    http_ledger_url: str = ""
    compute_backend: str = "simulated"
    compute_url: str = ""
    compute_delay_seconds: float = 0.0
    wallet_path: str = "secrets/wallet.json"
    submit_rpm: int = 60
    advance_rpm: int = 30
    log_level: str = "INFO"
    log_json: bool = True

    def __post_init__(self):
        if self.ledger_backend not in LEDGER_BACKENDS:
            raise ValueError(f"Unknown ledger backend '{self.ledger_backend}': must be one of {LEDGER_BACKENDS}")
        if self.compute_backend not in COMPUTE_BACKENDS:
            raise ValueError(f"Unknown compute backend '{self.compute_backend}': must be one of {COMPUTE_BACKENDS}")
        if self.compute_delay_seconds < 0:
            raise ValueError("compute_delay_seconds must not be negative")


def load_settings(ledger_backend: Optional[str] = None) -> Settings:
    """
    Read configuration from the environment.

    Args:
        ledger_backend: Override for XRAYCRYST_LEDGER_BACKEND

    Returns:
        Validated Settings
    """
    return Settings(
        env=os.getenv("XRAYCRYST_ENV", ENV),
        ledger_backend=ledger_backend or os.getenv("XRAYCRYST_LEDGER_BACKEND", LEDGER_BACKEND),
        sqlite_path=os.getenv("XRAYCRYST_SQLITE_PATH", SQLITE_PATH),
        s3_bucket=os.getenv("XRAYCRYST_S3_BUCKET", S3_BUCKET),
        s3_prefix=os.getenv("XRAYCRYST_S3_PREFIX", S3_PREFIX),
        http_ledger_url=os.getenv("XRAYCRYST_HTTP_LEDGER_URL", HTTP_LEDGER_URL),
        compute_backend=os.getenv("XRAYCRYST_COMPUTE_BACKEND", COMPUTE_BACKEND),
        compute_url=os.getenv("XRAYCRYST_COMPUTE_URL", COMPUTE_URL),
        compute_delay_seconds=float(os.getenv("XRAYCRYST_COMPUTE_DELAY_SECONDS", str(COMPUTE_DELAY_SECONDS))),
        wallet_path=os.getenv("XRAYCRYST_WALLET_PATH", WALLET_PATH),
        submit_rpm=int(os.getenv("SUBMIT_RPM", str(SUBMIT_RPM))),
        advance_rpm=int(os.getenv("ADVANCE_RPM", str(ADVANCE_RPM))),
        log_level=os.getenv("XRAYCRYST_LOG_LEVEL", LOG_LEVEL),
        log_json=os.getenv("XRAYCRYST_LOG_JSON", "true" if LOG_JSON else "false").lower() in ("1", "true", "yes"),
    )

