from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Sequence, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tenantmigrate.domain.models import SourceUser


RowT = TypeVar("RowT")


@dataclass(frozen=True)
class OwnerSnapshot:
    # Detached copy of a source user so pipelines never hold source ORM state.
    id: int
    email: str
    name: str
    password: str
    is_active: bool
    subscription_id: int | None
    subscription_start_date: datetime | None
    subscription_end_date: datetime | None

    @classmethod
    def from_row(cls, user: SourceUser) -> "OwnerSnapshot":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            password=user.password,
            is_active=user.is_active,
            subscription_id=user.subscription_id,
            subscription_start_date=user.subscription_start_date,
            subscription_end_date=user.subscription_end_date,
        )


async def list_owners(session: AsyncSession, owner_ids: Sequence[int] | None = None) -> list[OwnerSnapshot]:
    # Source ordering by id; callers may narrow the run to specific owners.
    stmt = select(SourceUser)
    if owner_ids:
        stmt = stmt.where(SourceUser.id.in_(list(owner_ids)))
    result = await session.execute(stmt.order_by(SourceUser.id))
    return [OwnerSnapshot.from_row(user) for user in result.scalars().all()]


async def list_owned_rows(session: AsyncSession, model: type[RowT], owner_id: int) -> list[RowT]:
    # Every source collection carries user_id; this is the only owner predicate.
    result = await session.execute(
        select(model).where(model.user_id == owner_id).order_by(model.id)  # type: ignore[attr-defined]
    )
    return list(result.scalars().all())


async def count_owned_rows(session: AsyncSession, model: type[Any]) -> dict[int, int]:
    result = await session.execute(
        select(model.user_id, func.count()).group_by(model.user_id)
    )
    return {int(owner_id): int(count) for owner_id, count in result.all()}


async def count_owners(session: AsyncSession) -> int:
    return int((await session.execute(select(func.count()).select_from(SourceUser))).scalar_one())
