"""Content-addressed ledger of file review verdicts with peer replication."""

from .core.config import VERSION

__version__ = VERSION
