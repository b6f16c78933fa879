from __future__ import annotations

import logging

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tenantmigrate.core.errors import DuplicateTenantError
from tenantmigrate.domain.models import TenantRecord
from tenantmigrate.domain.state import StorageCoordinates
from tenantmigrate.persistence.repos.owners import OwnerSnapshot


logger = logging.getLogger(__name__)


async def find_tenant_record(session: AsyncSession, owner_id: int) -> TenantRecord | None:
    result = await session.execute(select(TenantRecord).where(TenantRecord.source_owner_id == owner_id))
    return result.scalar_one_or_none()


async def create_tenant_record(
    session: AsyncSession,
    owner: OwnerSnapshot,
    coordinates: StorageCoordinates,
) -> TenantRecord:
    # Insert-only: an existing row for the owner, its email or its database is a duplicate.
    existing = await session.execute(
        select(TenantRecord.id).where(
            or_(
                TenantRecord.source_owner_id == owner.id,
                TenantRecord.email == owner.email,
                TenantRecord.db_name == coordinates.database_name,
            )
        )
    )
    if existing.first() is not None:
        raise DuplicateTenantError(owner.id)

    record = TenantRecord(
        source_owner_id=owner.id,
        email=owner.email,
        name=owner.name,
        # Copied verbatim; the hash stays valid for the existing login flow.
        password=owner.password,
        is_active=owner.is_active,
        subscription_id=owner.subscription_id,
        subscription_start_date=owner.subscription_start_date,
        subscription_end_date=owner.subscription_end_date,
        db_name=coordinates.database_name,
        db_host=coordinates.host,
        db_port=coordinates.port,
        db_user=coordinates.principal_name,
        db_password=coordinates.principal_secret,
    )
    session.add(record)
    try:
        await session.commit()
    except IntegrityError as exc:
        # A concurrent writer registered the same owner between the check and the insert.
        await session.rollback()
        raise DuplicateTenantError(owner.id) from exc
    logger.info("tenant_registered owner_id=%s database=%s", owner.id, coordinates.database_name)
    return record


async def list_tenant_records(session: AsyncSession) -> list[TenantRecord]:
    result = await session.execute(select(TenantRecord).order_by(TenantRecord.source_owner_id))
    return list(result.scalars().all())


async def count_tenant_records(session: AsyncSession) -> int:
    return int((await session.execute(select(func.count()).select_from(TenantRecord))).scalar_one())


def coordinates_for(record: TenantRecord) -> StorageCoordinates:
    return StorageCoordinates(
        database_name=record.db_name,
        host=record.db_host,
        port=record.db_port,
        principal_name=record.db_user,
        principal_secret=record.db_password,
    )
