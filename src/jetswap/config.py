"""Application configuration using pydantic-settings.

Every timeout, retry budget and fee parameter of the swap core is configurable
here; runtime components receive the values explicitly (see
``jetswap.swap.orchestrator.OrchestratorConfig``) instead of reading globals.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=True, description="Enable debug mode")
    dry_run: bool = Field(default=True, description="Use simulated authorizer and relay")

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8000, description="API server port")

    # ======================
    # Admin
    # ======================
    admin_token: str = Field(default="", description="Admin API token for protected endpoints")
    admin_identifiers: str = Field(
        default="", description="Comma-separated emails/addresses granted the admin role"
    )

    # ======================
    # Ledger Record Store
    # ======================
    ledger_backend: str = Field(default="sql", description="Ledger backend: sql or http")
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/jetswap.db",
        description="Database connection URL (sql backend)",
    )
    document_store_url: str = Field(
        default="", description="Base URL of the key-path document store (http backend)"
    )
    document_store_token: str = Field(default="", description="Bearer token for the document store")
    local_history_path: str = Field(
        default="./data/local_history.json", description="Local fallback log file"
    )
    local_history_size: int = Field(default=20, description="Records kept in the local fallback log")

    ledger_max_attempts: int = Field(default=5, description="Ledger write attempts before failing closed")
    ledger_initial_backoff: float = Field(default=0.2, description="First ledger retry delay (seconds)")
    ledger_max_backoff: float = Field(default=5.0, description="Ledger retry delay cap (seconds)")
    backoff_jitter: float = Field(default=0.1, description="Retry jitter as a fraction of the delay")

    # ======================
    # Encryption
    # ======================
    custodian_id: str = Field(
        default="jet-admin-0x9922-secure-vault", description="Custodian identifier on bundles"
    )
    escrow_master_key: Optional[str] = Field(
        default=None, description="Fernet key used to escrow per-payload keys"
    )

    # ======================
    # Quotes
    # ======================
    quote_ttl_seconds: float = Field(default=30.0, description="Quote validity window")
    slippage_haircut: str = Field(default="0.005", description="Fee/slippage haircut (0.5%)")

    # ======================
    # Orchestration
    # ======================
    confirm_timeout_seconds: float = Field(default=1.5, description="Authorization step timeout")
    relay_max_attempts: int = Field(default=5, description="Relay attempts before flagging")
    relay_attempt_timeout: float = Field(default=10.0, description="Per-attempt relay timeout")
    relay_deadline_seconds: float = Field(default=60.0, description="Overall relay deadline")
    relay_initial_backoff: float = Field(default=0.5, description="First relay retry delay")
    relay_max_backoff: float = Field(default=10.0, description="Relay retry delay cap")
    max_residency_seconds: float = Field(
        default=300.0, description="Longest time a swap may sit in a non-terminal state"
    )
    watchdog_interval_seconds: float = Field(default=15.0, description="Stale swap sweep interval")
    completed_retention_seconds: float = Field(
        default=300.0, description="How long settled or failed swaps stay tracked in memory"
    )

    # ======================
    # Text generation
    # ======================
    text_generation_url: str = Field(default="", description="Advice/chat service base URL")
    text_generation_timeout: float = Field(default=15.0, description="Advice/chat request timeout")

    @property
    def admin_identifier_set(self) -> frozenset[str]:
        """Parse admin identifiers into a normalized set."""
        if not self.admin_identifiers:
            return frozenset()
        return frozenset(
            ident.strip().lower() for ident in self.admin_identifiers.split(",") if ident.strip()
        )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "dry_run": self.dry_run,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "ledger": {
                "backend": self.ledger_backend,
                "database_url": self._redact_url(self.database_url),
                "document_store_url": self.document_store_url or "(not set)",
                "document_store_token": "***" if self.document_store_token else "(not set)",
                "local_history_size": self.local_history_size,
                "max_attempts": self.ledger_max_attempts,
            },
            "admin_token": "***" if self.admin_token else "(not set)",
            "admin_identifiers": len(self.admin_identifier_set),
            "escrow_configured": bool(self.escrow_master_key),
            "timeouts": {
                "confirm": self.confirm_timeout_seconds,
                "relay_attempt": self.relay_attempt_timeout,
                "relay_deadline": self.relay_deadline_seconds,
                "max_residency": self.max_residency_seconds,
            },
            "quotes": {
                "ttl_seconds": self.quote_ttl_seconds,
                "slippage_haircut": self.slippage_haircut,
            },
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact sensitive parts of database URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
