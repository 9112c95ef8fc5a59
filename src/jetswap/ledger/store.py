"""Ledger Record Store interface and the SQL backend.

Every backend signals failures as ``LedgerUnavailable`` (transient, retry),
``LedgerPermissionDenied`` or ``LedgerNotFound`` so that the orchestrator can
decide what to retry without knowing the storage technology.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.exc import (
    DisconnectionError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from jetswap.errors import LedgerError, LedgerUnavailable
from jetswap.identity import AuthMethod, Role, UserProfile
from jetswap.ledger.database import Database
from jetswap.ledger.repository import LedgerRepository, audit_to_entry, swap_to_record
from jetswap.models import AuditEntry, SwapRecord, SwapStatus

logger = logging.getLogger(__name__)

_TRANSIENT_DB_ERRORS = (OperationalError, InterfaceError, DisconnectionError, PoolTimeoutError)


class LedgerStore(ABC):
    """Durable, key-path addressed store of swap records.

    Implementations must be safe to share between concurrent swaps.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend identifier."""
        pass

    @abstractmethod
    async def create(self, user_id: str, record: SwapRecord) -> str:
        """Durably store a new record and return its id.

        Creating a record whose id already exists returns the id unchanged,
        so a retried create never duplicates a swap.
        """
        pass

    @abstractmethod
    async def list(self, user_id: str, limit: int = 10) -> list[SwapRecord]:
        """A user's records, newest first."""
        pass

    @abstractmethod
    async def list_all(self, limit: int = 200) -> list[SwapRecord]:
        """Records across all users, newest first (admin aggregate)."""
        pass

    @abstractmethod
    async def get(self, id_or_path: str) -> SwapRecord | None:
        """Fetch one record by id or key-path locator."""
        pass

    @abstractmethod
    async def update_status(self, id_or_path: str, status: SwapStatus) -> bool:
        """Set a record's status. Returns False if the record does not exist."""
        pass

    @abstractmethod
    async def append_audit(self, entry: AuditEntry) -> None:
        """Append an audit entry."""
        pass

    @abstractmethod
    async def list_audit(self, record_id: str) -> list[AuditEntry]:
        """Audit entries for a record, oldest first."""
        pass

    @abstractmethod
    async def upsert_profile(self, profile: UserProfile) -> None:
        """Create or update a user profile."""
        pass

    @abstractmethod
    async def list_profiles(self, limit: int = 100) -> list[UserProfile]:
        """Profiles, most recently seen first."""
        pass

    async def abandon(self, record_id: str) -> None:
        """Forget a create that was never acknowledged.

        Backends that only write on acknowledgement have nothing to undo.
        """
        pass

    async def close(self) -> None:
        """Release backend resources."""
        pass


class SqlLedgerStore(LedgerStore):
    """Ledger backed by SQLAlchemy (aiosqlite by default)."""

    def __init__(self, database: Database):
        self.database = database

    @property
    def name(self) -> str:
        return "sql"

    @asynccontextmanager
    async def _repo(self, operation: str) -> AsyncGenerator[LedgerRepository, None]:
        try:
            async with self.database.session() as session:
                yield LedgerRepository(session)
        except _TRANSIENT_DB_ERRORS as e:
            raise LedgerUnavailable(f"{operation}: database unavailable: {e}") from e
        except SQLAlchemyError as e:
            raise LedgerError(f"{operation}: {type(e).__name__}: {e}") from e

    async def create(self, user_id: str, record: SwapRecord) -> str:
        if record.user_id != user_id:
            raise LedgerError(f"Record {record.id} belongs to {record.user_id}, not {user_id}")
        async with self._repo("create") as repo:
            existing = await repo.get_swap(record.id)
            if existing is not None:
                logger.info(f"Swap record {record.id} already stored; create is a no-op")
                return existing.id
            row = await repo.create_swap(record)
            return row.id

    async def list(self, user_id: str, limit: int = 10) -> list[SwapRecord]:
        async with self._repo("list") as repo:
            return [swap_to_record(row) for row in await repo.get_user_swaps(user_id, limit)]

    async def list_all(self, limit: int = 200) -> list[SwapRecord]:
        async with self._repo("list_all") as repo:
            return [swap_to_record(row) for row in await repo.get_all_swaps(limit)]

    async def get(self, id_or_path: str) -> SwapRecord | None:
        async with self._repo("get") as repo:
            row = await repo.get_swap(id_or_path)
            return swap_to_record(row) if row is not None else None

    async def update_status(self, id_or_path: str, status: SwapStatus) -> bool:
        async with self._repo("update_status") as repo:
            return await repo.update_swap_status(id_or_path, status) is not None

    async def append_audit(self, entry: AuditEntry) -> None:
        async with self._repo("append_audit") as repo:
            await repo.add_audit_log(entry)

    async def list_audit(self, record_id: str) -> list[AuditEntry]:
        async with self._repo("list_audit") as repo:
            return [audit_to_entry(row) for row in await repo.get_audit_logs(record_id)]

    async def upsert_profile(self, profile: UserProfile) -> None:
        async with self._repo("upsert_profile") as repo:
            await repo.upsert_user(profile)

    async def list_profiles(self, limit: int = 100) -> list[UserProfile]:
        async with self._repo("list_profiles") as repo:
            return [
                UserProfile(
                    id=user.id,
                    auth_method=AuthMethod(user.auth_method),
                    identifier=user.identifier,
                    display_name=user.display_name,
                    role=Role(user.role),
                )
                for user in await repo.get_all_users(limit)
            ]

    async def close(self) -> None:
        await self.database.close()
