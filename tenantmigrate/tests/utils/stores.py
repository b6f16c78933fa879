from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from tenantmigrate.domain.models import (
    SourceBase,
    SourceContact,
    SourceGroup,
    SourceMessage,
    SourceUser,
)
from tenantmigrate.persistence.db import create_engine_for
from tenantmigrate.services.provisioning import SqliteAdmin


@dataclass
class RecordingAdmin(SqliteAdmin):
    # SQLite admin that records every DDL call and can refuse chosen (operation, database) pairs.
    calls: list[tuple[str, str]] = field(default_factory=list)
    fail_on: set[tuple[str, str]] = field(default_factory=set)

    def _record(self, operation: str, name: str) -> None:
        self.calls.append((operation, name))
        if (operation, name) in self.fail_on:
            raise OSError(f"{operation} refused for {name}")

    def operations(self, operation: str) -> list[str]:
        return [name for op, name in self.calls if op == operation]

    async def create_database(self, name: str) -> None:
        self._record("create_database", name)
        await super().create_database(name)

    async def create_principal(self, name: str, secret: str) -> None:
        self._record("create_principal", name)
        await super().create_principal(name, secret)

    async def set_principal_secret(self, name: str, secret: str) -> None:
        self._record("set_principal_secret", name)
        await super().set_principal_secret(name, secret)

    async def grant_all(self, database_name: str, principal_name: str) -> None:
        self._record("grant_all", database_name)
        await super().grant_all(database_name, principal_name)


async def create_source_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(SourceBase.metadata.create_all)


async def seed_owner(session: AsyncSession, owner_id: int, **overrides: Any) -> SourceUser:
    values: dict[str, Any] = {
        "id": owner_id,
        "email": f"user{owner_id}@example.com",
        "name": f"User {owner_id}",
        "password": f"$2b$10$hash-for-{owner_id}",
        "is_active": True,
        "subscription_id": None,
        "subscription_start_date": None,
        "subscription_end_date": None,
    }
    values.update(overrides)
    user = SourceUser(**values)
    session.add(user)
    await session.commit()
    return user


async def seed_group(session: AsyncSession, owner_id: int, name: str) -> SourceGroup:
    group = SourceGroup(name=name, user_id=owner_id)
    session.add(group)
    await session.commit()
    return group


async def seed_contacts(
    session: AsyncSession,
    owner_id: int,
    count: int,
    *,
    group: SourceGroup | None = None,
    prefix: str = "contact",
) -> list[SourceContact]:
    contacts = [
        SourceContact(
            name=f"{prefix}-{owner_id}-{index}",
            email=f"{prefix}{index}@example.com",
            phone=f"+1555{owner_id:03d}{index:04d}",
            place="Lisbon" if index % 2 else None,
            last_message_date=datetime(2024, 3, 1, 9, 30),
            dob=datetime(1990, 5, 17),
            anniversary=None,
            group_id=group.id if group is not None else None,
            user_id=owner_id,
        )
        for index in range(count)
    ]
    session.add_all(contacts)
    await session.commit()
    return contacts


async def seed_messages(session: AsyncSession, owner_id: int, count: int) -> list[SourceMessage]:
    messages = [
        SourceMessage(
            message_id=f"wamid.{owner_id}.{index}",
            to=f"+1555000{index:04d}",
            from_="+15559990000",
            message=f"hello {index}",
            media_type=None,
            media_url=None,
            direction="outgoing",
            status="delivered",
            user_id=owner_id,
        )
        for index in range(count)
    ]
    session.add_all(messages)
    await session.commit()
    return messages


def tenant_url(admin: SqliteAdmin, database_name: str) -> str:
    return f"sqlite+aiosqlite:///{admin.base_dir / f'{database_name}.db'}"


async def tenant_rows(admin: SqliteAdmin, database_name: str, model: type[Any]) -> Sequence[Any]:
    engine = create_engine_for(tenant_url(admin, database_name))
    try:
        async with async_sessionmaker(engine, expire_on_commit=False)() as session:
            result = await session.execute(select(model).order_by(model.id))
            return list(result.scalars().all())
    finally:
        await engine.dispose()


async def count_rows(session: AsyncSession, model: type[Any]) -> int:
    return int((await session.execute(select(func.count()).select_from(model))).scalar_one())
