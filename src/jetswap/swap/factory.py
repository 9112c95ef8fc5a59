"""Factory for wiring the orchestrator and its collaborators from settings.

Uses simulated collaborators (auto-approve authorizer, dry-run relay) when
``dry_run`` is set or no real implementation is configured.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from jetswap.advice import AdviceService, HttpTextGenerator
from jetswap.config import Settings, get_settings
from jetswap.crypto import EncryptionService, FernetKeyEscrow
from jetswap.identity import AllowListRolePolicy, SessionRegistry
from jetswap.ledger.database import Database
from jetswap.ledger.fallback import FallbackLedgerStore, LocalFallbackLog
from jetswap.ledger.http_store import HttpDocumentStore
from jetswap.ledger.store import LedgerStore, SqlLedgerStore
from jetswap.quotes import HaircutFeeModel, QuoteEngine, StaticRateTable
from jetswap.swap.admin import AdminService
from jetswap.swap.authorization import Authorizer, AutoApproveAuthorizer, SessionAuthorizer
from jetswap.swap.orchestrator import OrchestratorConfig, SwapOrchestrator
from jetswap.swap.relay import DryRunRelay, RelayClient

logger = logging.getLogger(__name__)


def create_ledger(settings: Settings) -> tuple[LedgerStore, Optional[Database]]:
    """Create the primary Ledger backend wrapped with the local fallback log."""
    database = None
    if settings.ledger_backend == "http":
        if not settings.document_store_url:
            raise ValueError("LEDGER_BACKEND=http requires DOCUMENT_STORE_URL")
        primary: LedgerStore = HttpDocumentStore(
            settings.document_store_url, token=settings.document_store_token
        )
    elif settings.ledger_backend == "sql":
        database = Database(settings.database_url, echo=settings.debug and not settings.is_production)
        primary = SqlLedgerStore(database)
    else:
        raise ValueError(f"Unknown ledger backend: {settings.ledger_backend}")

    local = LocalFallbackLog(settings.local_history_path, max_entries=settings.local_history_size)
    logger.info(f"Ledger backend: {primary.name} (local history: {settings.local_history_path})")
    return FallbackLedgerStore(primary, local), database


def create_encryption(settings: Settings) -> EncryptionService:
    escrow = None
    if settings.escrow_master_key:
        escrow = FernetKeyEscrow(settings.escrow_master_key)
    return EncryptionService(settings.custodian_id, escrow=escrow)


def create_quote_engine(settings: Settings) -> QuoteEngine:
    return QuoteEngine(
        StaticRateTable(ttl_seconds=settings.quote_ttl_seconds),
        fee_model=HaircutFeeModel(Decimal(settings.slippage_haircut)),
        ttl=timedelta(seconds=settings.quote_ttl_seconds),
    )


def create_authorizer(settings: Settings, sessions: SessionRegistry) -> Authorizer:
    if settings.dry_run:
        return AutoApproveAuthorizer()
    return SessionAuthorizer(sessions)


def create_relay(settings: Settings) -> RelayClient:
    if not settings.dry_run:
        logger.warning("No live relay configured; using simulated relay")
    return DryRunRelay()


def create_advice(settings: Settings) -> AdviceService:
    if not settings.text_generation_url:
        return AdviceService()
    return AdviceService(
        HttpTextGenerator(settings.text_generation_url, timeout_s=settings.text_generation_timeout)
    )


@dataclass
class SwapServices:
    """Everything the HTTP surface needs, built from one settings object."""

    settings: Settings
    orchestrator: SwapOrchestrator
    admin: AdminService
    ledger: LedgerStore
    sessions: SessionRegistry
    role_policy: AllowListRolePolicy
    advice: AdviceService
    database: Optional[Database] = None
    started: bool = field(default=False, init=False)

    async def start(self) -> None:
        if self.database is not None:
            await self.database.init()
        self.orchestrator.start_watchdog()
        self.started = True

    async def stop(self) -> None:
        await self.orchestrator.shutdown()
        await self.ledger.close()
        self.started = False


def build_orchestrator(
    settings: Optional[Settings] = None,
    ledger: Optional[LedgerStore] = None,
    sessions: Optional[SessionRegistry] = None,
) -> SwapOrchestrator:
    """Create an orchestrator wired from settings."""
    settings = settings or get_settings()
    if ledger is None:
        ledger, _ = create_ledger(settings)
    return SwapOrchestrator(
        quote_engine=create_quote_engine(settings),
        encryption=create_encryption(settings),
        ledger=ledger,
        authorizer=create_authorizer(settings, sessions or SessionRegistry()),
        relay=create_relay(settings),
        config=OrchestratorConfig.from_settings(settings),
    )


def build_services(settings: Optional[Settings] = None) -> SwapServices:
    settings = settings or get_settings()
    ledger, database = create_ledger(settings)
    sessions = SessionRegistry()
    orchestrator = build_orchestrator(settings, ledger=ledger, sessions=sessions)
    return SwapServices(
        settings=settings,
        orchestrator=orchestrator,
        admin=AdminService(ledger, orchestrator),
        ledger=ledger,
        sessions=sessions,
        role_policy=AllowListRolePolicy(settings.admin_identifier_set),
        advice=create_advice(settings),
        database=database,
    )
