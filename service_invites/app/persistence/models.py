"""
ORM tables for invite tokens, redemptions, rate-limit buckets and the
property-domain tables the service reads from and links into.
"""

import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

from .database import TZDateTime, utcnow

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


class InviteToken(Base):
    __tablename__ = "invite_tokens"
    __table_args__ = (
        CheckConstraint("max_uses >= 1", name="ck_invite_tokens_max_uses"),
        CheckConstraint("use_count >= 0 AND use_count <= max_uses", name="ck_invite_tokens_use_count"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    # Public half of the token, used only to find the row.
    selector = Column(String(16), nullable=False, unique=True, index=True)
    token_hash = Column(String(64), nullable=False)
    salt = Column(String(32), nullable=False)
    property_id = Column(String(64), nullable=False, index=True)
    issuer_id = Column(String(64), nullable=False)
    max_uses = Column(Integer, nullable=False, default=1)
    use_count = Column(Integer, nullable=False, default=0)
    expires_at = Column(TZDateTime, nullable=False, index=True)
    revoked_at = Column(TZDateTime, nullable=True)
    revoked_by = Column(String(64), nullable=True)
    created_at = Column(TZDateTime, nullable=False, default=utcnow)
    last_used_at = Column(TZDateTime, nullable=True)


class RedemptionRecord(Base):
    __tablename__ = "invite_redemptions"
    __table_args__ = (
        UniqueConstraint("token_id", "principal_id", name="uq_invite_redemptions_token_principal"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    token_id = Column(String(36), ForeignKey("invite_tokens.id", ondelete="CASCADE"), nullable=False, index=True)
    principal_id = Column(String(64), nullable=False)
    property_id = Column(String(64), nullable=False)
    redeemed_at = Column(TZDateTime, nullable=False, default=utcnow)


class RateLimitBucket(Base):
    __tablename__ = "rate_limit_buckets"
    __table_args__ = (
        CheckConstraint("tokens >= 0 AND tokens <= capacity", name="ck_rate_limit_buckets_tokens"),
    )

    bucket_key = Column(String(255), primary_key=True)
    tokens = Column(Float, nullable=False)
    capacity = Column(Float, nullable=False)
    refill_rate = Column(Float, nullable=False)
    # Epoch seconds; kept numeric so refill arithmetic runs in SQL on any backend.
    last_refill = Column(Float, nullable=False, index=True)
    allowed = Column(Boolean, nullable=False, default=True)


class Property(Base):
    __tablename__ = "properties"

    id = Column(String(64), primary_key=True, default=_new_id)
    owner_id = Column(String(64), nullable=False, index=True)
    owner_name = Column(String(255), nullable=True)
    name = Column(String(255), nullable=False)
    address = Column(String(512), nullable=True)


class TenantPropertyLink(Base):
    __tablename__ = "tenant_property_links"
    __table_args__ = (
        UniqueConstraint("tenant_id", "property_id", name="uq_tenant_property_links_tenant_property"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    property_id = Column(String(64), nullable=False, index=True)
    status = Column(String(16), nullable=False, default="active")
    linked_at = Column(TZDateTime, nullable=False, default=utcnow)
