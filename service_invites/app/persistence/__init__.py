"""
Persistence package for the Invites Service.

Holds the async engine lifecycle and the ORM tables. Token and bucket rows
are only ever mutated through single conditional statements issued by the
token and rate-limit packages.
"""

from .database import Database, TZDateTime, dialect_insert, TRANSIENT_DB_ERRORS
from .models import Base, InviteToken, RedemptionRecord, RateLimitBucket, Property, TenantPropertyLink

__all__ = [
    "Database",
    "TZDateTime",
    "dialect_insert",
    "TRANSIENT_DB_ERRORS",
    "Base",
    "InviteToken",
    "RedemptionRecord",
    "RateLimitBucket",
    "Property",
    "TenantPropertyLink",
]
