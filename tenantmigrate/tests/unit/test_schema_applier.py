from __future__ import annotations

from pathlib import Path

import pytest
import sqlalchemy as sa
from sqlalchemy import text

from tenantmigrate.core.errors import ConnectivityError, SchemaError
from tenantmigrate.domain.models import CentralBase, TenantBase
from tenantmigrate.persistence.db import create_engine_for
from tenantmigrate.services.schema import apply_schema


def _url(path: Path) -> str:
    return f"sqlite+aiosqlite:///{path}"


async def _tables(engine) -> set[str]:
    async with engine.connect() as conn:
        return set(await conn.run_sync(lambda sync_conn: sa.inspect(sync_conn).get_table_names()))


@pytest.mark.asyncio
async def test_apply_schema_creates_tables_then_is_a_noop(tmp_path: Path) -> None:
    engine = create_engine_for(_url(tmp_path / "tenant_1.db"))
    try:
        first = await apply_schema(engine, TenantBase.metadata)
        assert set(first.created_tables) == set(TenantBase.metadata.tables)
        assert await _tables(engine) >= set(TenantBase.metadata.tables)

        second = await apply_schema(engine, TenantBase.metadata)
        assert not second.changed
        assert second.created_tables == []
        assert second.added_columns == []
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_apply_schema_adds_missing_nullable_column(tmp_path: Path) -> None:
    engine = create_engine_for(_url(tmp_path / "tenant_2.db"))
    try:
        async with engine.begin() as conn:
            await conn.execute(
                text(
                    "CREATE TABLE whatsapp_messages ("
                    "id INTEGER NOT NULL PRIMARY KEY, message_id VARCHAR, \"to\" VARCHAR, "
                    "\"from\" VARCHAR, message TEXT, media_type VARCHAR, direction VARCHAR NOT NULL, "
                    "status VARCHAR, created_at DATETIME DEFAULT CURRENT_TIMESTAMP NOT NULL, "
                    "updated_at DATETIME DEFAULT CURRENT_TIMESTAMP NOT NULL)"
                )
            )
        changes = await apply_schema(engine, TenantBase.metadata)
        assert "whatsapp_messages.media_url" in changes.added_columns
        assert "whatsapp_messages" not in changes.created_tables

        async with engine.connect() as conn:
            columns = await conn.run_sync(
                lambda sync_conn: {col["name"] for col in sa.inspect(sync_conn).get_columns("whatsapp_messages")}
            )
        assert "media_url" in columns
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_apply_schema_rejects_unreconcilable_structure_before_changing_anything(tmp_path: Path) -> None:
    engine = create_engine_for(_url(tmp_path / "tenant_3.db"))
    try:
        async with engine.begin() as conn:
            await conn.execute(text("CREATE TABLE groups (id INTEGER NOT NULL PRIMARY KEY, title VARCHAR)"))
        with pytest.raises(SchemaError) as exc_info:
            await apply_schema(engine, TenantBase.metadata)
        assert any("groups.name" in conflict for conflict in exc_info.value.conflicts)
        assert await _tables(engine) == {"groups"}
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_apply_schema_reports_unreachable_store(tmp_path: Path) -> None:
    engine = create_engine_for(_url(tmp_path / "missing-dir" / "central.db"))
    try:
        with pytest.raises(ConnectivityError):
            await apply_schema(engine, CentralBase.metadata)
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_apply_schema_rejects_groups_table_without_unique_names(tmp_path: Path) -> None:
    engine = create_engine_for(_url(tmp_path / "tenant_4.db"))
    try:
        async with engine.begin() as conn:
            await conn.execute(
                text(
                    "CREATE TABLE groups (id INTEGER NOT NULL PRIMARY KEY, name VARCHAR NOT NULL, "
                    "created_at DATETIME DEFAULT CURRENT_TIMESTAMP NOT NULL, "
                    "updated_at DATETIME DEFAULT CURRENT_TIMESTAMP NOT NULL)"
                )
            )
        with pytest.raises(SchemaError) as exc_info:
            await apply_schema(engine, TenantBase.metadata)
        assert exc_info.value.conflicts == ["groups is missing UNIQUE(name)"]
        assert await _tables(engine) == {"groups"}
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_apply_schema_adds_missing_plain_index(tmp_path: Path) -> None:
    engine = create_engine_for(_url(tmp_path / "tenant_5.db"))
    try:
        async with engine.begin() as conn:
            await conn.execute(
                text(
                    "CREATE TABLE contacts (id INTEGER NOT NULL PRIMARY KEY, name VARCHAR NOT NULL, "
                    "email VARCHAR, phone VARCHAR NOT NULL, place VARCHAR, last_message_date DATETIME, "
                    "dob DATETIME, anniversary DATETIME, group_id INTEGER REFERENCES groups (id), "
                    "created_at DATETIME DEFAULT CURRENT_TIMESTAMP NOT NULL, "
                    "updated_at DATETIME DEFAULT CURRENT_TIMESTAMP NOT NULL)"
                )
            )
        changes = await apply_schema(engine, TenantBase.metadata)
        assert changes.added_indexes == ["ix_contacts_group_id"]
        assert "contacts" not in changes.created_tables

        async with engine.connect() as conn:
            indexes = await conn.run_sync(
                lambda sync_conn: {index["name"] for index in sa.inspect(sync_conn).get_indexes("contacts")}
            )
        assert "ix_contacts_group_id" in indexes
        assert not (await apply_schema(engine, TenantBase.metadata)).changed
    finally:
        await engine.dispose()
