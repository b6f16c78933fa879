from __future__ import annotations

from pathlib import Path

import pytest

from tenantmigrate.core.config import get_settings
from tenantmigrate.persistence.db import StoreHandles, build_store_handles
from tenantmigrate.services.provisioning import StorageProvisioner, ensure_central_registry
from tenantmigrate.tests.utils.stores import RecordingAdmin, create_source_schema


@pytest.fixture(autouse=True)
def sqlite_stores(tmp_path: Path, monkeypatch) -> Path:
    # Point every store at per-test SQLite files so runs never share state.
    monkeypatch.setenv("SOURCE_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'source.db'}")
    monkeypatch.setenv("CENTRAL_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'central.db'}")
    monkeypatch.setenv("STORAGE_BACKEND", "sqlite")
    monkeypatch.setenv("SQLITE_TENANT_DIR", str(tmp_path / "tenants"))
    monkeypatch.setenv("MIGRATION_CONCURRENCY", "1")
    get_settings.cache_clear()
    yield tmp_path
    get_settings.cache_clear()


@pytest.fixture
async def handles(sqlite_stores: Path) -> StoreHandles:
    handles = build_store_handles(get_settings())
    await create_source_schema(handles.source_engine)
    yield handles
    await handles.dispose()


@pytest.fixture
def admin(sqlite_stores: Path) -> RecordingAdmin:
    return RecordingAdmin(sqlite_stores / "tenants")


@pytest.fixture
async def registry(handles: StoreHandles, admin: RecordingAdmin) -> StoreHandles:
    # Central schema in place, as the migration script does before the first owner.
    await ensure_central_registry(admin, handles.central_engine)
    return handles


@pytest.fixture
def provisioner(admin: RecordingAdmin) -> StorageProvisioner:
    return StorageProvisioner(admin)
