from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from tenantmigrate.core.config import Settings, get_settings
from tenantmigrate.core.errors import ConnectivityError


def create_engine_for(url: str, settings: Settings | None = None, **overrides: Any) -> AsyncEngine:
    # Configure bounded asyncpg pools; SQLite keeps driver defaults.
    settings = settings or get_settings()
    engine_kwargs: dict[str, Any] = {"pool_pre_ping": True}
    if not url.startswith("sqlite"):
        engine_kwargs["pool_size"] = max(1, int(settings.db_pool_size))
        engine_kwargs["max_overflow"] = max(0, int(settings.db_max_overflow))
        engine_kwargs["pool_timeout"] = 30
        engine_kwargs["pool_recycle"] = 1800
        if settings.db_statement_timeout_ms > 0:
            engine_kwargs["connect_args"] = {
                "server_settings": {"statement_timeout": str(int(settings.db_statement_timeout_ms))}
            }
    engine_kwargs.update(overrides)
    return create_async_engine(url, **engine_kwargs)


@dataclass
class StoreHandles:
    """Long-lived handles passed explicitly to every migration component."""

    source_engine: AsyncEngine
    central_engine: AsyncEngine
    source: async_sessionmaker[AsyncSession]
    central: async_sessionmaker[AsyncSession]

    async def dispose(self) -> None:
        await self.source_engine.dispose()
        await self.central_engine.dispose()


def build_store_handles(settings: Settings | None = None) -> StoreHandles:
    settings = settings or get_settings()
    source_engine = create_engine_for(settings.source_database_url, settings)
    central_engine = create_engine_for(settings.central_database_url, settings)
    return StoreHandles(
        source_engine=source_engine,
        central_engine=central_engine,
        source=async_sessionmaker(source_engine, expire_on_commit=False),
        central=async_sessionmaker(central_engine, expire_on_commit=False),
    )


@asynccontextmanager
async def open_store_handles(settings: Settings | None = None) -> AsyncIterator[StoreHandles]:
    handles = build_store_handles(settings)
    try:
        yield handles
    finally:
        await handles.dispose()


@asynccontextmanager
async def tenant_session(url: str) -> AsyncIterator[AsyncSession]:
    # Each tenant store gets a private engine owned by one owner pipeline.
    engine = create_engine_for(url)
    try:
        await check_connectivity(engine, label="tenant")
        async with async_sessionmaker(engine, expire_on_commit=False)() as session:
            yield session
    finally:
        await engine.dispose()


async def check_connectivity(engine: AsyncEngine, label: str) -> None:
    # Translate driver-level connection failures into the migration error taxonomy.
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (DBAPIError, OSError) as exc:
        raise ConnectivityError(f"{label} store unreachable: {exc}") from exc
