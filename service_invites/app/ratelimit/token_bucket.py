"""
Persistent token bucket rate limiter for the Invites Service.

Buckets live in the same database as the tokens so the limit survives
restarts and is shared by every instance. Each check is one
``INSERT ... ON CONFLICT DO UPDATE ... RETURNING`` statement: the refill,
the cap, the spend and the decision are all computed by the database
against the stored row, so concurrent checks on one key serialize on that
row and never lose an update.
"""

import math
from typing import Any, Dict, Optional

from fastapi import Request
from sqlalchemy import Float, case, false, literal, true

from shared.config import BaseConfig
from shared.errors import RateLimitError, TransientStorageError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..domain.clock import Clock
from ..persistence import Database, RateLimitBucket, TRANSIENT_DB_ERRORS, dialect_insert


class TokenBucketRateLimiter:
    """Token bucket keyed by operation and caller identity."""

    def __init__(self, database: Database, config: BaseConfig, clock: Clock,
                 metrics: Optional[MetricsCollector] = None):
        self.database = database
        self.config = config
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("invites.rate_limiter")

    def _make_key(self, operation: str, identity: str) -> str:
        """Generate rate limit key."""
        return f"{operation}:{identity}"

    def _build_statement(self, key: str, capacity: float, refill_rate: float, now: float):
        table = RateLimitBucket.__table__
        now_param = literal(now, Float)
        capacity_param = literal(capacity, Float)

        elapsed = case((now_param > table.c.last_refill, now_param - table.c.last_refill), else_=0.0)
        refilled = table.c.tokens + elapsed * literal(refill_rate, Float)
        capped = case((refilled > capacity_param, capacity_param), else_=refilled)

        stmt = dialect_insert(self.database.dialect_name, table).values(
            bucket_key=key,
            tokens=capacity - 1,
            capacity=capacity,
            refill_rate=refill_rate,
            last_refill=now,
            allowed=True,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["bucket_key"],
            set_={
                "tokens": case((capped >= 1, capped - 1), else_=capped),
                "allowed": case((capped >= 1, true()), else_=false()),
                "capacity": capacity_param,
                "refill_rate": literal(refill_rate, Float),
                "last_refill": case((now_param > table.c.last_refill, now_param), else_=table.c.last_refill),
            },
        )
        return stmt.returning(table.c.tokens, table.c.allowed)

    async def check_rate_limit(self, operation: str, identity: str) -> Dict[str, Any]:
        """Spend one unit from the bucket for ``(operation, identity)`` if one is available."""
        capacity, refill_rate = self.config.rate_limit_for(operation)
        capacity = float(capacity)
        key = self._make_key(operation, identity)
        stmt = self._build_statement(key, capacity, refill_rate, self.clock.timestamp())

        try:
            async with self.database.session() as session:
                row = (await session.execute(stmt)).one()
                await session.commit()
        except TRANSIENT_DB_ERRORS as e:
            if not self.config.rate_limit_fail_open:
                self.logger.error("Rate limit check error", operation=operation, error_type=type(e).__name__)
                raise TransientStorageError("Rate limiter unavailable")
            self.logger.warning("Rate limit check error, allowing request", operation=operation,
                                error_type=type(e).__name__)
            self._record(operation, "error")
            return {
                "allowed": True,
                "limit": capacity,
                "remaining": capacity,
                "retry_after": 0,
                "error": "storage unavailable",
            }

        tokens = float(row.tokens)
        allowed = bool(row.allowed)
        self._record(operation, "allowed" if allowed else "denied")

        if not allowed:
            retry_after = max(1, math.ceil((1 - tokens) / refill_rate))
            self.logger.warning(
                "Rate limit exceeded",
                operation=operation,
                bucket_key=key,
                tokens_remaining=tokens,
                retry_after=retry_after,
            )
            return {
                "allowed": False,
                "limit": capacity,
                "remaining": 0,
                "retry_after": retry_after,
            }

        return {
            "allowed": True,
            "limit": capacity,
            "remaining": int(tokens),
            "retry_after": 0,
        }

    async def enforce(self, operation: str, identity: str) -> Dict[str, Any]:
        """Like :meth:`check_rate_limit` but raises RateLimitError when denied."""
        decision = await self.check_rate_limit(operation, identity)
        if not decision["allowed"]:
            raise RateLimitError(
                "Too many requests, please try again later",
                retry_after_seconds=decision["retry_after"],
                details={"operation": operation},
            )
        return decision

    def _record(self, operation: str, decision: str):
        if self.metrics:
            self.metrics.increment_counter("rate_limit_decisions_total", operation=operation, decision=decision)


def get_client_ip(request: Request) -> str:
    """Best-effort caller address, honouring the usual proxy headers."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop

    for header in ("CF-Connecting-IP", "X-Real-IP", "X-Client-IP"):
        value = request.headers.get(header)
        if value and value.strip():
            return value.strip()

    return request.client.host if request.client else "unknown"


def caller_identity(request: Request, principal_id: Optional[str] = None) -> str:
    """Rate limit identity: the principal when authenticated, otherwise the caller IP."""
    if principal_id:
        return f"user:{principal_id}"
    return f"ip:{get_client_ip(request)}"
