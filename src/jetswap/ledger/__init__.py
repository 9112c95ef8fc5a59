"""Ledger Record Store: durable, auditable storage of swap records."""

from jetswap.ledger.database import Database
from jetswap.ledger.fallback import FallbackLedgerStore, LocalFallbackLog
from jetswap.ledger.http_store import HttpDocumentStore
from jetswap.ledger.models import AuditLog, Base, Swap, User
from jetswap.ledger.repository import LedgerRepository
from jetswap.ledger.store import LedgerStore, SqlLedgerStore

__all__ = [
    # Models
    "AuditLog",
    "Base",
    "Swap",
    "User",
    # Database
    "Database",
    "LedgerRepository",
    # Stores
    "FallbackLedgerStore",
    "HttpDocumentStore",
    "LedgerStore",
    "LocalFallbackLog",
    "SqlLedgerStore",
]
