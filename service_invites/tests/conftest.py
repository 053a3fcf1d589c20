"""
Shared fixtures for Invites Service tests.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.config import get_config
from service_invites.app.adapters.properties import PropertyDirectory, PropertyLinker
from service_invites.app.domain.clock import Clock
from service_invites.app.persistence import Database, InviteToken, Property, RateLimitBucket
from service_invites.app.ratelimit.token_bucket import TokenBucketRateLimiter
from service_invites.app.tokens import (
    TokenAcceptor,
    TokenCleaner,
    TokenHasher,
    TokenIssuer,
    TokenRevoker,
    TokenValidator,
)

HASH_KEY = "test-invite-hash-key"
OWNER_ID = "owner-1"
OTHER_OWNER_ID = "owner-2"
PROPERTY_ID = "prop-maple"
OTHER_PROPERTY_ID = "prop-birch"

SESSIONS = {
    "owner-session": OWNER_ID,
    "other-owner-session": OTHER_OWNER_ID,
    "tenant-a-session": "tenant-a",
    "tenant-b-session": "tenant-b",
}


class ManualClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 0, days: float = 0):
        self._now += timedelta(days=days, seconds=seconds)


async def seed_properties(database: Database):
    async with database.session() as session:
        session.add_all([
            Property(id=PROPERTY_ID, owner_id=OWNER_ID, owner_name="Olivia Owner",
                     name="Maple Court", address="12 Maple Street"),
            Property(id=OTHER_PROPERTY_ID, owner_id=OTHER_OWNER_ID, owner_name="Oscar Owner",
                     name="Birch House", address="4 Birch Lane"),
        ])
        await session.commit()


async def insert_token(database: Database, **fields) -> InviteToken:
    """Insert a token row directly, bypassing issuance."""
    now = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)
    values = {
        "selector": fields.pop("selector", None) or TokenHasher(HASH_KEY).generate().selector,
        "token_hash": "0" * 64,
        "salt": "0" * 32,
        "property_id": PROPERTY_ID,
        "issuer_id": OWNER_ID,
        "max_uses": 1,
        "use_count": 0,
        "expires_at": now + timedelta(days=7),
        "created_at": now,
    }
    values.update(fields)
    row = InviteToken(**values)
    async with database.session() as session:
        session.add(row)
        await session.commit()
    return row


async def insert_bucket(database: Database, bucket_key: str, last_refill: float, tokens: float = 1.0):
    async with database.session() as session:
        session.add(RateLimitBucket(
            bucket_key=bucket_key,
            tokens=tokens,
            capacity=10.0,
            refill_rate=1.0,
            last_refill=last_refill,
            allowed=True,
        ))
        await session.commit()


async def fetch_token(database: Database, token_id: str) -> Optional[InviteToken]:
    async with database.session() as session:
        return await session.get(InviteToken, token_id)


@pytest.fixture
def clock():
    """Controllable clock."""
    return ManualClock()


@pytest.fixture
def database_url(tmp_path):
    """File-backed SQLite so concurrent sessions use separate connections."""
    return f"sqlite+aiosqlite:///{tmp_path / 'invites.db'}"


@pytest.fixture
def config(database_url):
    """Service configuration for tests."""
    return get_config(
        "invites",
        8020,
        database_url=database_url,
        invite_hash_key=HASH_KEY,
        cleanup_interval_seconds=0,
        allowed_origins="https://app.example.com",
        log_level="debug",
    )


@pytest.fixture
async def database(database_url):
    """Started database with seeded properties."""
    db = Database(database_url)
    await db.start()
    await seed_properties(db)
    yield db
    await db.stop()


@pytest.fixture
def hasher():
    return TokenHasher(HASH_KEY)


@pytest.fixture
def directory():
    return PropertyDirectory()


@pytest.fixture
def issuer(database, hasher, directory, config, clock):
    return TokenIssuer(database, hasher, directory, config, clock)


@pytest.fixture
def validator(database, hasher, directory, config, clock):
    return TokenValidator(database, hasher, directory, config, clock)


@pytest.fixture
def acceptor(database, hasher, directory, config, clock):
    return TokenAcceptor(database, hasher, directory, PropertyLinker(), config, clock)


@pytest.fixture
def revoker(database, directory, clock):
    return TokenRevoker(database, directory, clock)


@pytest.fixture
def cleaner(database, config, clock):
    return TokenCleaner(database, config, clock)


@pytest.fixture
def rate_limiter(database, config, clock):
    return TokenBucketRateLimiter(database, config, clock)


@pytest.fixture
def auth_client():
    """Auth collaborator that knows a fixed set of sessions."""

    async def _verify(credential: str) -> Dict:
        user_id = SESSIONS.get(credential)
        if user_id is None:
            return {"valid": False}
        return {"valid": True, "user_info": {"user_id": user_id, "name": user_id.title()}}

    client = MagicMock()
    client.verify_token = AsyncMock(side_effect=_verify)
    return client


@pytest.fixture
def seeded_database_url(database_url):
    """Database file with tables and properties in place before the app starts."""

    async def _seed():
        db = Database(database_url)
        await db.start()
        await seed_properties(db)
        await db.stop()

    asyncio.run(_seed())
    return database_url
