"""Database connection and session management."""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from jetswap.ledger.models import Base


def normalize_url(url: str) -> str:
    """Convert sqlite:/// to sqlite+aiosqlite:/// if needed."""
    if url.startswith("sqlite:///") and "aiosqlite" not in url:
        return url.replace("sqlite:///", "sqlite+aiosqlite:///")
    return url


class Database:
    """Owns one async engine and its session factory.

    The engine is created lazily so that constructing a ``Database`` never
    touches the network.
    """

    def __init__(self, url: str, echo: bool = False, engine: Optional[AsyncEngine] = None):
        self.url = normalize_url(url)
        self.echo = echo
        self._engine = engine
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def engine(self) -> AsyncEngine:
        """Get or create the database engine."""
        if self._engine is None:
            self._engine = create_async_engine(self.url, echo=self.echo, future=True)
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        """Get or create the session factory."""
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
        return self._session_factory

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session context manager that commits on success and rolls back on error."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def init(self) -> None:
        """Initialize the database by creating all tables."""
        self._ensure_sqlite_dir()
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    def _ensure_sqlite_dir(self) -> None:
        if not self.url.startswith("sqlite") or ":memory:" in self.url:
            return
        _, _, db_path = self.url.partition(":///")
        if db_path:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    async def close(self) -> None:
        """Close database connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
