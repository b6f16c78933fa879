from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from pathlib import Path
import re
from typing import Awaitable, ClassVar, Protocol, TypeVar

from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from tenantmigrate.core.config import (
    TENANT_DATABASE_PREFIX,
    TENANT_PRINCIPAL_PREFIX,
    Settings,
    get_settings,
)
from tenantmigrate.core.errors import ProvisionError
from tenantmigrate.domain.models import CentralBase, TenantBase
from tenantmigrate.domain.state import StorageCoordinates
from tenantmigrate.persistence.db import create_engine_for
from tenantmigrate.services.credentials import SECRET_ALPHABET, generate_secret
from tenantmigrate.services.schema import SchemaChanges, apply_schema


logger = logging.getLogger(__name__)

T = TypeVar("T")

_IDENTIFIER_RE = re.compile(r"^[a-z_][a-z0-9_]*$")


def tenant_database_name(owner_id: int) -> str:
    return f"{TENANT_DATABASE_PREFIX}{_checked_owner_id(owner_id)}"


def tenant_principal_name(owner_id: int) -> str:
    return f"{TENANT_PRINCIPAL_PREFIX}{_checked_owner_id(owner_id)}"


def _checked_owner_id(owner_id: int) -> int:
    # Names are interpolated into DDL, so only non-negative integers are accepted.
    if isinstance(owner_id, bool) or not isinstance(owner_id, int) or owner_id < 0:
        raise ValueError(f"owner id must be a non-negative integer, got {owner_id!r}")
    return owner_id


def _checked_secret(secret: str) -> str:
    if not secret or any(ch not in SECRET_ALPHABET for ch in secret):
        raise ValueError("principal secret must be alphanumeric")
    return secret


class StorageEngineAdmin(Protocol):
    # Administrative DDL surface; every operation is safe to call on a re-run.
    # SQLAlchemy backend name of the stores this admin creates (postgresql, sqlite).
    backend: str

    async def database_exists(self, name: str) -> bool:
        ...

    async def create_database(self, name: str) -> None:
        ...

    async def principal_exists(self, name: str) -> bool:
        ...

    async def create_principal(self, name: str, secret: str) -> None:
        ...

    async def set_principal_secret(self, name: str, secret: str) -> None:
        ...

    async def grant_all(self, database_name: str, principal_name: str) -> None:
        ...

    def coordinates(self, database_name: str, principal_name: str, secret: str) -> StorageCoordinates:
        ...

    def tenant_url(self, coordinates: StorageCoordinates) -> str:
        ...

    async def dispose(self) -> None:
        ...


class PostgresAdmin:
    """Administrative DDL against a PostgreSQL server over an AUTOCOMMIT connection."""

    backend = "postgresql"

    def __init__(self, engine: AsyncEngine, *, host: str, port: int, driver: str) -> None:
        self._engine = engine
        self._host = host
        self._port = port
        self._driver = driver

    @classmethod
    def from_settings(cls, settings: Settings) -> "PostgresAdmin":
        # CREATE DATABASE cannot run inside a transaction block.
        engine = create_engine_for(settings.admin_database_url, settings, isolation_level="AUTOCOMMIT")
        return cls(
            engine,
            host=settings.tenant_db_host,
            port=settings.tenant_db_port,
            driver=settings.tenant_db_driver,
        )

    def _quote(self, identifier: str) -> str:
        if not _IDENTIFIER_RE.match(identifier):
            raise ValueError(f"unsafe identifier {identifier!r}")
        return self._engine.dialect.identifier_preparer.quote(identifier)

    async def _exists(self, sql: str, name: str) -> bool:
        async with self._engine.connect() as conn:
            return (await conn.execute(text(sql), {"name": name})).first() is not None

    async def _ddl(self, sql: str) -> None:
        async with self._engine.connect() as conn:
            await conn.execute(text(sql))

    async def database_exists(self, name: str) -> bool:
        return await self._exists("SELECT 1 FROM pg_database WHERE datname = :name", name)

    async def create_database(self, name: str) -> None:
        await self._ddl(f"CREATE DATABASE {self._quote(name)}")

    async def principal_exists(self, name: str) -> bool:
        return await self._exists("SELECT 1 FROM pg_roles WHERE rolname = :name", name)

    async def create_principal(self, name: str, secret: str) -> None:
        await self._ddl(f"CREATE ROLE {self._quote(name)} WITH LOGIN PASSWORD '{_checked_secret(secret)}'")

    async def set_principal_secret(self, name: str, secret: str) -> None:
        await self._ddl(f"ALTER ROLE {self._quote(name)} WITH LOGIN PASSWORD '{_checked_secret(secret)}'")

    async def grant_all(self, database_name: str, principal_name: str) -> None:
        database = self._quote(database_name)
        principal = self._quote(principal_name)
        await self._ddl(f"GRANT ALL PRIVILEGES ON DATABASE {database} TO {principal}")
        # Ownership gives the principal CREATE on the public schema (PostgreSQL 15+).
        await self._ddl(f"ALTER DATABASE {database} OWNER TO {principal}")

    def coordinates(self, database_name: str, principal_name: str, secret: str) -> StorageCoordinates:
        return StorageCoordinates(
            database_name=database_name,
            host=self._host,
            port=self._port,
            principal_name=principal_name,
            principal_secret=secret,
        )

    def tenant_url(self, coordinates: StorageCoordinates) -> str:
        url = URL.create(
            self._driver,
            username=coordinates.principal_name,
            password=coordinates.principal_secret,
            host=coordinates.host,
            port=coordinates.port,
            database=coordinates.database_name,
        )
        return url.render_as_string(hide_password=False)

    async def dispose(self) -> None:
        await self._engine.dispose()


@dataclass
class SqliteAdmin:
    """One SQLite file per tenant; principals are recorded but not enforced."""

    base_dir: Path
    backend: ClassVar[str] = "sqlite"

    def __post_init__(self) -> None:
        self._principals: dict[str, str] = {}

    def _path(self, name: str) -> Path:
        return self.base_dir / f"{name}.db"

    async def database_exists(self, name: str) -> bool:
        return self._path(name).exists()

    async def create_database(self, name: str) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        # Opening a connection materializes the database file.
        engine = create_engine_for(f"sqlite+aiosqlite:///{self._path(name)}")
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        finally:
            await engine.dispose()

    async def principal_exists(self, name: str) -> bool:
        return name in self._principals

    async def create_principal(self, name: str, secret: str) -> None:
        self._principals[name] = _checked_secret(secret)

    async def set_principal_secret(self, name: str, secret: str) -> None:
        self._principals[name] = _checked_secret(secret)

    async def grant_all(self, database_name: str, principal_name: str) -> None:
        return None

    def coordinates(self, database_name: str, principal_name: str, secret: str) -> StorageCoordinates:
        return StorageCoordinates(
            database_name=database_name,
            host="localhost",
            port=0,
            principal_name=principal_name,
            principal_secret=secret,
        )

    def tenant_url(self, coordinates: StorageCoordinates) -> str:
        return f"sqlite+aiosqlite:///{self._path(coordinates.database_name)}"

    async def dispose(self) -> None:
        return None


def build_storage_admin(settings: Settings | None = None) -> StorageEngineAdmin:
    settings = settings or get_settings()
    backend = settings.storage_backend.strip().lower()
    if backend == "postgres":
        return PostgresAdmin.from_settings(settings)
    if backend == "sqlite":
        return SqliteAdmin(Path(settings.sqlite_tenant_dir))
    raise ValueError(f"unsupported storage backend {settings.storage_backend!r}")


@dataclass(frozen=True)
class ProvisionedStore:
    coordinates: StorageCoordinates
    url: str
    # True when the database already existed and the saga resumed it.
    resumed: bool
    schema: SchemaChanges


class StorageProvisioner:
    """Create a tenant database, its principal and grant, then apply the tenant schema.

    The three DDL steps are not transactional, so each one is checked before it
    runs and a re-run after partial completion resumes instead of failing. A
    principal that already exists gets the freshly generated secret, because
    the registry row that would have recorded the previous one is only written
    after provisioning succeeds.
    """

    def __init__(self, admin: StorageEngineAdmin, *, secret_length: int | None = None) -> None:
        self._admin = admin
        self._secret_length = secret_length
        self._ddl_lock = asyncio.Lock()

    @property
    def admin(self) -> StorageEngineAdmin:
        return self._admin

    async def _step(self, step: str, database_name: str, call: Awaitable[T]) -> T:
        try:
            return await call
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("provision_step_failed step=%s database=%s", step, database_name, exc_info=exc)
            raise ProvisionError(step, database_name, str(exc)) from exc

    async def provision(self, owner_id: int) -> ProvisionedStore:
        database_name = tenant_database_name(owner_id)
        principal_name = tenant_principal_name(owner_id)
        secret = generate_secret(self._secret_length)

        # Engine-wide DDL is issued one owner at a time even when pipelines run concurrently.
        async with self._ddl_lock:
            resumed = await self._step(
                "check_database", database_name, self._admin.database_exists(database_name)
            )
            if not resumed:
                await self._step("create_database", database_name, self._admin.create_database(database_name))
            if await self._step("check_principal", database_name, self._admin.principal_exists(principal_name)):
                await self._step(
                    "reset_principal_secret",
                    database_name,
                    self._admin.set_principal_secret(principal_name, secret),
                )
            else:
                await self._step(
                    "create_principal",
                    database_name,
                    self._admin.create_principal(principal_name, secret),
                )
            await self._step(
                "grant_privileges", database_name, self._admin.grant_all(database_name, principal_name)
            )

        coordinates = self._admin.coordinates(database_name, principal_name, secret)
        url = self._admin.tenant_url(coordinates)
        engine = create_engine_for(url)
        try:
            schema = await apply_schema(engine, TenantBase.metadata)
        finally:
            await engine.dispose()
        logger.info(
            "tenant_provisioned owner_id=%s database=%s resumed=%s", owner_id, database_name, resumed
        )
        return ProvisionedStore(coordinates=coordinates, url=url, resumed=resumed, schema=schema)


async def ensure_central_registry(admin: StorageEngineAdmin, engine: AsyncEngine) -> SchemaChanges:
    """Create the central database when absent and apply the registry schema."""
    url = engine.url
    if url.get_backend_name() == "sqlite":
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    elif admin.backend != url.get_backend_name():
        # This admin cannot create a database of another backend; it must already exist.
        logger.info(
            "central_database_create_skipped database=%s backend=%s admin_backend=%s",
            url.database,
            url.get_backend_name(),
            admin.backend,
        )
    elif url.database:
        if not await admin.database_exists(url.database):
            try:
                await admin.create_database(url.database)
            except (SQLAlchemyError, OSError) as exc:
                raise ProvisionError("create_central_database", url.database, str(exc)) from exc
            logger.info("central_database_created database=%s", url.database)
    return await apply_schema(engine, CentralBase.metadata)
