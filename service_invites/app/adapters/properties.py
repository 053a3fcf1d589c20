"""
Property-domain collaborators used by the token operations.

The property and tenancy tables belong to the property domain. This service
reads property ownership and writes exactly one side effect: the
tenant/property link created when an invite is redeemed.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.logging import get_logger
from ..persistence import Property, TenantPropertyLink, dialect_insert


@dataclass(frozen=True)
class PropertyRecord:
    id: str
    owner_id: str
    owner_name: Optional[str]
    name: str
    address: Optional[str]


class PropertyDirectory:
    """Read access to properties and their owners."""

    def __init__(self):
        self.logger = get_logger("invites.adapters.properties")

    async def get_property(self, session: AsyncSession, property_id: str) -> Optional[PropertyRecord]:
        row = (await session.execute(
            select(Property).where(Property.id == property_id)
        )).scalar_one_or_none()
        if row is None:
            return None
        return PropertyRecord(
            id=row.id,
            owner_id=row.owner_id,
            owner_name=row.owner_name,
            name=row.name,
            address=row.address,
        )

    async def is_owner(self, session: AsyncSession, property_id: str, principal_id: str) -> bool:
        record = await self.get_property(session, property_id)
        return record is not None and record.owner_id == principal_id


class PropertyLinker:
    """Creates or re-activates the tenant/property link.

    Runs on the caller's session so the link commits or rolls back together
    with the redemption that produced it.
    """

    def __init__(self):
        self.logger = get_logger("invites.adapters.linker")

    async def link(self, session: AsyncSession, property_id: str, tenant_id: str, now: datetime) -> None:
        dialect_name = session.get_bind().dialect.name
        stmt = dialect_insert(dialect_name, TenantPropertyLink).values(
            tenant_id=tenant_id,
            property_id=property_id,
            status="active",
            linked_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["tenant_id", "property_id"],
            set_={"status": "active", "linked_at": stmt.excluded.linked_at},
        )
        await session.execute(stmt)
        self.logger.info("Tenant linked to property", property_id=property_id, tenant_id=tenant_id)
