"""
Configuration for the verdict ledger.

Environment variables are read once at import time; everything else receives
an explicit Settings value.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from dotenv import load_dotenv

load_dotenv()

# Ledger location and storage backend
VIPHASH_HOME = os.getenv("VIPHASH_HOME", str(Path.home() / ".viphash"))
STORE_BACKEND = os.getenv("VIPHASH_STORE_BACKEND", "sqlite")  # sqlite|file

# Replication
SYNC_TIMEOUT_SEC = float(os.getenv("VIPHASH_SYNC_TIMEOUT_SEC", "60"))
REQUEST_TIMEOUT_SEC = float(os.getenv("VIPHASH_REQUEST_TIMEOUT_SEC", "10"))
VERIFY_TLS = os.getenv("VIPHASH_VERIFY_TLS", "true").lower() == "true"

# Peer API
API_TOKENS = [t.strip() for t in os.getenv("VIPHASH_API_TOKENS", "").split(",") if t.strip()]
API_HOST = os.getenv("VIPHASH_API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("VIPHASH_API_PORT", "8000"))

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

VERSION = "0.3.0"

STORE_BACKENDS = ["sqlite", "file"]


@dataclass
class Settings:
    """Explicit configuration handed to stores, the replication engine and the API."""
    home: Path
    store_backend: str = "sqlite"
    sync_timeout: float = 60.0
    request_timeout: float = 10.0
    verify_tls: bool = True
    api_tokens: List[str] = field(default_factory=list)
    debug: bool = False

    @property
    def db_path(self) -> Path:
        return self.home / "viphash.db"

    @property
    def records_dir(self) -> Path:
        return self.home / "records"

    def ensure_home(self) -> None:
        """Ensure the ledger directory exists."""
        self.home.mkdir(parents=True, exist_ok=True)


def load_settings(home: str = None) -> Settings:
    """Build Settings from the environment, optionally overriding the ledger home."""
    return Settings(
        home=Path(home or VIPHASH_HOME).expanduser(),
        store_backend=STORE_BACKEND,
        sync_timeout=SYNC_TIMEOUT_SEC,
        request_timeout=REQUEST_TIMEOUT_SEC,
        verify_tls=VERIFY_TLS,
        api_tokens=list(API_TOKENS),
        debug=DEBUG,
    )


def validate_config(settings: Settings) -> List[str]:
    """Validate configuration and return any issues."""
    issues = []

    if settings.store_backend not in STORE_BACKENDS:
        issues.append(f"Invalid VIPHASH_STORE_BACKEND: {settings.store_backend}")

    if settings.sync_timeout <= 0:
        issues.append("VIPHASH_SYNC_TIMEOUT_SEC must be > 0")

    if settings.request_timeout <= 0:
        issues.append("VIPHASH_REQUEST_TIMEOUT_SEC must be > 0")

    return issues
