from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Literal

from tenantmigrate.core.errors import ConnectivityError, SchemaError
from tenantmigrate.domain.models import TenantBase
from tenantmigrate.persistence.db import StoreHandles, create_engine_for
from tenantmigrate.persistence.repos.tenants import coordinates_for, list_tenant_records
from tenantmigrate.services.provisioning import StorageEngineAdmin
from tenantmigrate.services.schema import SchemaChanges, apply_schema


logger = logging.getLogger(__name__)

SyncStatus = Literal["updated", "unchanged", "failed"]


@dataclass(frozen=True)
class SchemaSyncResult:
    owner_id: int
    database_name: str
    status: SyncStatus
    changes: SchemaChanges | None = None
    error: str | None = None

    def render(self) -> str:
        line = f"owner_id={self.owner_id} database={self.database_name} status={self.status}"
        if self.changes is not None and self.changes.changed:
            line += (
                f" created_tables={','.join(self.changes.created_tables) or '-'}"
                f" added_columns={','.join(self.changes.added_columns) or '-'}"
                f" added_indexes={','.join(self.changes.added_indexes) or '-'}"
            )
        if self.error:
            line += f" error={self.error}"
        return line


async def sync_tenant_schemas(handles: StoreHandles, admin: StorageEngineAdmin) -> list[SchemaSyncResult]:
    """Re-apply the tenant schema to every registered tenant store.

    Each store is reached with the credentials recorded in its registry row.
    One tenant failing does not stop the others.
    """
    async with handles.central() as central:
        records = await list_tenant_records(central)

    results: list[SchemaSyncResult] = []
    for record in records:
        engine = create_engine_for(admin.tenant_url(coordinates_for(record)))
        try:
            changes = await apply_schema(engine, TenantBase.metadata)
        except (SchemaError, ConnectivityError) as exc:
            logger.warning("tenant_schema_sync_failed database=%s", record.db_name, exc_info=exc)
            results.append(
                SchemaSyncResult(record.source_owner_id, record.db_name, "failed", error=str(exc))
            )
            continue
        finally:
            await engine.dispose()
        status: SyncStatus = "updated" if changes.changed else "unchanged"
        results.append(SchemaSyncResult(record.source_owner_id, record.db_name, status, changes=changes))
    logger.info("tenant_schema_sync_finished tenants=%s", len(results))
    return results
