"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
import os
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DEBUG"] = "true"
os.environ["DRY_RUN"] = "true"

from jetswap.crypto import EncryptionService, MemoryKeyEscrow
from jetswap.errors import LedgerUnavailable
from jetswap.identity import UserProfile
from jetswap.ledger.database import Database
from jetswap.ledger.repository import LedgerRepository
from jetswap.ledger.store import LedgerStore, SqlLedgerStore
from jetswap.models import AuditEntry, SwapIntent, SwapRecord, SwapStatus, utcnow
from jetswap.quotes import QuoteEngine, StaticRateTable
from jetswap.swap.authorization import AutoApproveAuthorizer
from jetswap.swap.orchestrator import OrchestratorConfig, SwapOrchestrator
from jetswap.swap.relay import DryRunRelay
from jetswap.utils.retry import RetryPolicy

CUSTODIAN = "jet-admin-0x9922-secure-vault"


class MemoryLedgerStore(LedgerStore):
    """In-process ledger with fault injection and an event log."""

    def __init__(self, events: Optional[list] = None):
        self.records: dict[str, SwapRecord] = {}
        self.audit: list[AuditEntry] = []
        self.profiles: dict[str, UserProfile] = {}
        self.events = events if events is not None else []
        self.create_failures = 0  # number of upcoming creates that fail
        self.create_calls = 0
        self.update_failures = 0
        self.unavailable = False

    @property
    def name(self) -> str:
        return "memory"

    def _check(self) -> None:
        if self.unavailable:
            raise LedgerUnavailable("ledger offline")

    async def create(self, user_id: str, record: SwapRecord) -> str:
        self.create_calls += 1
        self._check()
        if self.create_failures > 0:
            self.create_failures -= 1
            raise LedgerUnavailable("injected create failure")
        self.records.setdefault(record.id, record)
        self.events.append(("create_ack", record.id))
        return record.id

    async def list(self, user_id: str, limit: int = 10) -> list[SwapRecord]:
        self._check()
        records = [r for r in self.records.values() if r.user_id == user_id]
        return sorted(records, key=lambda r: r.created_at, reverse=True)[:limit]

    async def list_all(self, limit: int = 200) -> list[SwapRecord]:
        self._check()
        return sorted(self.records.values(), key=lambda r: r.created_at, reverse=True)[:limit]

    async def get(self, id_or_path: str) -> Optional[SwapRecord]:
        self._check()
        for record in self.records.values():
            if id_or_path in (record.id, record.path):
                return record
        return None

    async def update_status(self, id_or_path: str, status: SwapStatus) -> bool:
        self._check()
        if self.update_failures > 0:
            self.update_failures -= 1
            raise LedgerUnavailable("injected update failure")
        record = await self.get(id_or_path)
        if record is None:
            return False
        self.records[record.id] = record.with_status(status)
        self.events.append(("status", record.id, status))
        return True

    async def append_audit(self, entry: AuditEntry) -> None:
        self._check()
        self.audit.append(entry)
        self.events.append(("audit", entry.record_id, entry.to_status))

    async def list_audit(self, record_id: str) -> list[AuditEntry]:
        self._check()
        return [e for e in self.audit if e.record_id == record_id]

    async def upsert_profile(self, profile: UserProfile) -> None:
        self._check()
        self.profiles[profile.id] = profile

    async def list_profiles(self, limit: int = 100) -> list[UserProfile]:
        self._check()
        return list(self.profiles.values())[:limit]


class RecordingRelay(DryRunRelay):
    """Dry-run relay that logs each attempt into a shared event list."""

    def __init__(self, events: list, latency: float = 0.0):
        super().__init__(latency=latency)
        self.events = events
        self.attempts = 0

    async def relay(self, request):
        self.attempts += 1
        self.events.append(("relay_attempt", request.idempotency_key))
        return await super().relay(request)


def fast_config(**overrides) -> OrchestratorConfig:
    """Orchestrator config with tiny timeouts and backoffs."""
    values = dict(
        confirm_timeout=1.0,
        ledger_retry=RetryPolicy(max_attempts=5, initial_delay=0.001, max_delay=0.005, jitter=0.0),
        relay_retry=RetryPolicy(max_attempts=3, initial_delay=0.001, max_delay=0.005, jitter=0.0),
        relay_attempt_timeout=0.5,
        relay_deadline=2.0,
        max_residency=300.0,
        watchdog_interval=0.05,
    )
    values.update(overrides)
    return OrchestratorConfig(**values)


def make_intent(
    user_id: str = "u1",
    source_chain: str = "ethereum",
    source_token: str = "ETH",
    dest_chain: str = "arbitrum",
    dest_token: str = "ARB",
    amount: str = "1.5",
) -> SwapIntent:
    return SwapIntent.create(user_id, source_chain, source_token, dest_chain, dest_token, amount)


@pytest.fixture
def events() -> list:
    """Shared event log for ordering assertions."""
    return []


@pytest.fixture
def escrow() -> MemoryKeyEscrow:
    return MemoryKeyEscrow()


@pytest.fixture
def encryption(escrow: MemoryKeyEscrow) -> EncryptionService:
    return EncryptionService(CUSTODIAN, escrow=escrow)


@pytest.fixture
def quote_engine() -> QuoteEngine:
    return QuoteEngine(StaticRateTable())


@pytest.fixture
def memory_ledger(events: list) -> MemoryLedgerStore:
    return MemoryLedgerStore(events)


@pytest.fixture
def relay(events: list) -> RecordingRelay:
    return RecordingRelay(events)


@pytest_asyncio.fixture
async def orchestrator(
    quote_engine: QuoteEngine,
    encryption: EncryptionService,
    memory_ledger: MemoryLedgerStore,
    relay: RecordingRelay,
) -> AsyncGenerator[SwapOrchestrator, None]:
    """Orchestrator over the in-memory ledger and recording relay."""
    orch = SwapOrchestrator(
        quote_engine=quote_engine,
        encryption=encryption,
        ledger=memory_ledger,
        authorizer=AutoApproveAuthorizer(),
        relay=relay,
        config=fast_config(),
    )
    yield orch
    await orch.shutdown()


@pytest_asyncio.fixture
async def database(tmp_path) -> AsyncGenerator[Database, None]:
    """File-backed SQLite database with tables created."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await db.init()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def sql_store(database: Database) -> SqlLedgerStore:
    return SqlLedgerStore(database)


@pytest_asyncio.fixture
async def ledger_repo(database: Database) -> AsyncGenerator[LedgerRepository, None]:
    """Repository bound to one session (committed on exit)."""
    async with database.session() as session:
        yield LedgerRepository(session)


def make_record(
    encryption: EncryptionService,
    record_id: str = "rec1",
    user_id: str = "u1",
    status: SwapStatus = SwapStatus.LOCKED_PENDING_RELAY,
    amount: str = "1.5",
    created_at=None,
) -> SwapRecord:
    """A ledger record with a real encrypted bundle."""
    now = created_at or utcnow()
    return SwapRecord(
        id=record_id,
        user_id=user_id,
        route="Ethereum -> Arbitrum",
        source_token="ETH",
        dest_token="ARB",
        amount=amount,
        expected_output=str(Decimal(amount) * Decimal("3092")),
        status=status,
        bundle=encryption.encrypt({"swap_id": record_id, "amount": amount}),
        created_at=now,
        updated_at=now,
    )


async def wait_for_status(orch: SwapOrchestrator, swap_id: str, status: SwapStatus, timeout: float = 2.0):
    """Poll until a swap has entered a (possibly non-terminal) status."""

    async def poll():
        while not any(change.current is status for change in orch.get_history(swap_id)):
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout=timeout)
