"""
Async SQLAlchemy engine and session lifecycle for the Invites Service.
"""

from datetime import datetime, timezone
from typing import Dict, Optional

from sqlalchemy import DateTime, text
from sqlalchemy.exc import InterfaceError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.types import TypeDecorator

from shared.logging import get_logger
from shared.errors import ServiceError, TransientStorageError

# Storage failures that callers may treat as transient.
TRANSIENT_DB_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError)


class TZDateTime(TypeDecorator):
    """Stores naive UTC and hands back aware UTC datetimes on every backend."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime passed to a UTC column")
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def dialect_insert(dialect_name: str, table):
    """Return the INSERT construct that supports ON CONFLICT for ``dialect_name``."""
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise ServiceError(f"Unsupported database dialect: {dialect_name}")
    return insert(table)


class Database:
    """Owns the async engine and hands out sessions."""

    def __init__(self, url: str, echo: bool = False, pool_size: int = 10, busy_timeout: float = 30.0):
        self.url = url
        self.echo = echo
        self.pool_size = pool_size
        self.busy_timeout = busy_timeout
        self.logger = get_logger("invites.persistence.database")
        self.engine: Optional[AsyncEngine] = None
        self._sessionmaker: Optional[async_sessionmaker] = None

    async def start(self, create_tables: bool = True):
        """Create the engine and, optionally, the schema."""
        kwargs: Dict = {"echo": self.echo}
        if self.url.startswith("sqlite"):
            # Writers queue on the file lock instead of failing fast.
            kwargs["connect_args"] = {"timeout": self.busy_timeout}
        else:
            kwargs["pool_size"] = self.pool_size
            kwargs["pool_pre_ping"] = True

        self.engine = create_async_engine(self.url, **kwargs)
        self._sessionmaker = async_sessionmaker(self.engine, expire_on_commit=False)

        if create_tables:
            await self._create_tables()

        self.logger.info("Database started", dialect=self.dialect_name)

    async def stop(self):
        """Dispose of the engine and its pool."""
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None
            self._sessionmaker = None
            self.logger.info("Database stopped")

    async def _create_tables(self):
        from .models import Base

        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except TRANSIENT_DB_ERRORS as e:
            self.logger.error("Failed to create tables", error_type=type(e).__name__)
            raise TransientStorageError("Could not initialise storage")

    @property
    def dialect_name(self) -> str:
        if self.engine is None:
            raise ServiceError("Database not started")
        return self.engine.dialect.name

    def session(self) -> AsyncSession:
        """Open a new session; use as ``async with db.session() as session``."""
        if self._sessionmaker is None:
            raise ServiceError("Database not started")
        return self._sessionmaker()

    async def ping(self) -> bool:
        """Run a trivial query to confirm the database is reachable."""
        if self.engine is None:
            return False
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except TRANSIENT_DB_ERRORS:
            return False
