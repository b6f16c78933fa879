from __future__ import annotations


class TenantMigrateError(Exception):
    """Base error for tenantmigrate."""


class ConnectivityError(TenantMigrateError):
    """A source, central, administrative or tenant store is unreachable."""


class ProvisionError(TenantMigrateError):
    """Creating the tenant database, its principal, or the grant failed."""

    def __init__(self, step: str, database_name: str, detail: str) -> None:
        super().__init__(f"{step} failed for {database_name}: {detail}")
        self.step = step
        self.database_name = database_name
        self.detail = detail


class SchemaError(TenantMigrateError):
    """The live store structure conflicts with the schema definition."""

    def __init__(self, target: str, conflicts: list[str]) -> None:
        super().__init__(f"schema conflicts on {target}: {'; '.join(conflicts)}")
        self.target = target
        self.conflicts = conflicts


class DuplicateTenantError(TenantMigrateError):
    """A directory record already exists for this owner."""

    def __init__(self, owner_id: int) -> None:
        super().__init__(f"tenant record already exists for owner {owner_id}")
        self.owner_id = owner_id


class EntityCopyError(TenantMigrateError):
    """A row (or its group lookup) could not be copied into the tenant store."""

    def __init__(self, kind: str, source_id: int | None, copied: int, detail: str) -> None:
        super().__init__(f"{kind} row {source_id} failed after {copied} copied: {detail}")
        self.kind = kind
        self.source_id = source_id
        self.copied = copied
        self.detail = detail
