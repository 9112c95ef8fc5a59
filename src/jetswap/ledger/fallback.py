"""Degraded-durability tier: a bounded local log behind the Ledger interface.

The local log is written before the primary store on every create, but it is
never a durable acknowledgement: primary errors still propagate to the
caller. Reads merge records whose primary write never succeeded, and fall back
to the local log alone while the primary is unavailable.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Optional

from jetswap.errors import LedgerUnavailable
from jetswap.identity import UserProfile
from jetswap.ledger.store import LedgerStore
from jetswap.models import AuditEntry, SwapRecord, SwapStatus, utcnow

logger = logging.getLogger(__name__)


class LocalFallbackLog:
    """Log of the last ``max_entries`` swap records, newest first, one entry per id.

    With ``path=None`` the log lives in memory only. File reads and writes run
    in a worker thread so the event loop never blocks on disk.
    """

    def __init__(self, path: Optional[str] = None, max_entries: int = 20):
        self.path = Path(path) if path else None
        self.max_entries = max_entries
        self._entries: Optional[list[dict]] = None
        self._lock = asyncio.Lock()

    def _read(self) -> list[dict]:
        if self.path is None or not self.path.exists():
            return []
        try:
            return json.loads(self.path.read_text())
        except (OSError, ValueError) as e:
            logger.warning(f"Local history at {self.path} unreadable, starting empty: {e}")
            return []

    def _write(self, data: str) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(data)
        except OSError as e:
            logger.warning(f"Could not write local history to {self.path}: {e}")

    async def _load(self) -> list[dict]:
        # Caller holds self._lock
        if self._entries is None:
            self._entries = await asyncio.to_thread(self._read)
        return self._entries

    async def _save(self) -> None:
        # Caller holds self._lock
        if self.path is not None:
            await asyncio.to_thread(self._write, json.dumps(self._entries))

    async def append(self, record: SwapRecord) -> None:
        """Put a record at the head of the log, replacing any entry with the same id.

        The oldest entries beyond the bound are dropped.
        """
        async with self._lock:
            entries = await self._load()
            entries[:] = [entry for entry in entries if entry["record"]["id"] != record.id]
            entries.insert(0, {"record": replace(record, is_local=True).to_dict(), "synced": False})
            del entries[self.max_entries:]
            await self._save()

    async def mark_synced(self, record_id: str) -> None:
        """Note that the primary store acknowledged a record."""
        async with self._lock:
            for entry in await self._load():
                if entry["record"]["id"] == record_id:
                    entry["synced"] = True
            await self._save()

    async def discard(self, record_id: str) -> bool:
        """Drop a record the primary never acknowledged. Synced entries are kept."""
        async with self._lock:
            entries = await self._load()
            kept = [
                entry for entry in entries
                if entry["synced"] or entry["record"]["id"] != record_id
            ]
            if len(kept) == len(entries):
                return False
            entries[:] = kept
            await self._save()
        return True

    async def set_status(self, id_or_path: str, status: SwapStatus) -> None:
        """Keep the local copy's status in step with the primary."""
        async with self._lock:
            for entry in await self._load():
                record = entry["record"]
                if id_or_path in (record["id"], record.get("path")):
                    record["status"] = status.value
                    record["updated_at"] = utcnow().isoformat()
            await self._save()

    async def records(self, user_id: Optional[str] = None, unsynced_only: bool = False) -> list[SwapRecord]:
        """Logged records, newest first, optionally filtered."""
        async with self._lock:
            entries = list(await self._load())
        return [
            SwapRecord.from_dict(entry["record"])
            for entry in entries
            if (user_id is None or entry["record"]["user_id"] == user_id)
            and (not unsynced_only or not entry["synced"])
        ]

    def __len__(self) -> int:
        return len(self._entries or [])


def _merge(primary: list[SwapRecord], local: list[SwapRecord], limit: int) -> list[SwapRecord]:
    seen = {record.id for record in primary}
    merged = primary + [record for record in local if record.id not in seen]
    merged.sort(key=lambda record: record.created_at, reverse=True)
    return merged[:limit]


class FallbackLedgerStore(LedgerStore):
    """Primary Ledger with a local fallback log for reads."""

    def __init__(self, primary: LedgerStore, local: LocalFallbackLog):
        self.primary = primary
        self.local = local

    @property
    def name(self) -> str:
        return f"{self.primary.name}+local"

    async def create(self, user_id: str, record: SwapRecord) -> str:
        await self.local.append(record)
        record_id = await self.primary.create(user_id, record)
        await self.local.mark_synced(record.id)
        return record_id

    async def abandon(self, record_id: str) -> None:
        if await self.local.discard(record_id):
            logger.info(f"Dropped unacknowledged local entry for swap record {record_id}")

    async def list(self, user_id: str, limit: int = 10) -> list[SwapRecord]:
        try:
            primary = await self.primary.list(user_id, limit)
        except LedgerUnavailable as e:
            logger.warning(f"Primary ledger unavailable, serving local history for {user_id}: {e}")
            return (await self.local.records(user_id=user_id))[:limit]
        return _merge(primary, await self.local.records(user_id=user_id, unsynced_only=True), limit)

    async def list_all(self, limit: int = 200) -> list[SwapRecord]:
        try:
            primary = await self.primary.list_all(limit)
        except LedgerUnavailable as e:
            logger.warning(f"Primary ledger unavailable, serving local history: {e}")
            return (await self.local.records())[:limit]
        return _merge(primary, await self.local.records(unsynced_only=True), limit)

    async def get(self, id_or_path: str) -> SwapRecord | None:
        return await self.primary.get(id_or_path)

    async def update_status(self, id_or_path: str, status: SwapStatus) -> bool:
        updated = await self.primary.update_status(id_or_path, status)
        await self.local.set_status(id_or_path, status)
        return updated

    async def append_audit(self, entry: AuditEntry) -> None:
        await self.primary.append_audit(entry)

    async def list_audit(self, record_id: str) -> list[AuditEntry]:
        return await self.primary.list_audit(record_id)

    async def upsert_profile(self, profile: UserProfile) -> None:
        await self.primary.upsert_profile(profile)

    async def list_profiles(self, limit: int = 100) -> list[UserProfile]:
        return await self.primary.list_profiles(limit)

    async def close(self) -> None:
        await self.primary.close()
