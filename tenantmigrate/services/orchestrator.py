from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from sqlalchemy.exc import SQLAlchemyError

from tenantmigrate.core.config import get_settings
from tenantmigrate.core.errors import (
    ConnectivityError,
    DuplicateTenantError,
    EntityCopyError,
    ProvisionError,
    SchemaError,
)
from tenantmigrate.domain.state import OwnerStage
from tenantmigrate.persistence.db import StoreHandles, tenant_session
from tenantmigrate.persistence.repos.owners import OwnerSnapshot, list_owners
from tenantmigrate.persistence.repos.tenants import create_tenant_record, find_tenant_record
from tenantmigrate.services.entity_migration import COLLECTION_ORDER, migrate_collection
from tenantmigrate.services.provisioning import ProvisionedStore, StorageProvisioner
from tenantmigrate.services.reporting import MigrationReport, OwnerOutcome


logger = logging.getLogger(__name__)


async def _copy_collections(
    handles: StoreHandles,
    owner: OwnerSnapshot,
    store: ProvisionedStore,
    outcome: OwnerOutcome,
    collections: Sequence[str],
) -> None:
    # Kinds are independent: a failed kind keeps its partial count and the next kind still runs.
    outcome.in_progress = "data:connect"
    try:
        async with tenant_session(store.url) as target, handles.source() as source:
            for kind in collections:
                outcome.in_progress = f"data:{kind}"
                try:
                    # counts doubles as the progress map so a timeout keeps the rows already committed.
                    outcome.counts[kind] = await migrate_collection(
                        source, target, owner.id, kind, progress=outcome.counts
                    )
                except EntityCopyError as exc:
                    outcome.counts[kind] = exc.copied
                    outcome.fail(f"data:{kind}", str(exc))
    except ConnectivityError as exc:
        outcome.fail("data:connect", str(exc))
        return
    if outcome.failed_stage is None:
        outcome.advance(OwnerStage.DATA_COPIED)
        outcome.advance(OwnerStage.DONE)


async def migrate_owner(
    handles: StoreHandles,
    provisioner: StorageProvisioner,
    owner: OwnerSnapshot,
    outcome: OwnerOutcome,
    collections: Sequence[str] = COLLECTION_ORDER,
) -> OwnerOutcome:
    """Drive one owner through provision -> register -> copy, recording progress on ``outcome``."""
    outcome.in_progress = "registry"
    async with handles.central() as central:
        existing = await find_tenant_record(central, owner.id)
    if existing is not None:
        # Registered earlier: treated as done here; the earlier run's report holds its copy counts.
        outcome.state = OwnerStage.SKIPPED
        outcome.reached = OwnerStage.DONE
        outcome.database_name = existing.db_name
        logger.info("owner_skipped owner_id=%s database=%s", owner.id, existing.db_name)
        return outcome

    outcome.in_progress = "provision"
    try:
        store = await provisioner.provision(owner.id)
    except (ProvisionError, SchemaError, ConnectivityError) as exc:
        outcome.fail("provision", str(exc))
        return outcome
    outcome.database_name = store.coordinates.database_name
    outcome.advance(OwnerStage.PROVISIONED)

    outcome.in_progress = "registry"
    try:
        async with handles.central() as central:
            await create_tenant_record(central, owner, store.coordinates)
    except (DuplicateTenantError, SQLAlchemyError) as exc:
        outcome.fail("registry", str(exc))
        return outcome
    outcome.advance(OwnerStage.REGISTERED)

    await _copy_collections(handles, owner, store, outcome, collections)
    return outcome


async def _run_owner(
    handles: StoreHandles,
    provisioner: StorageProvisioner,
    owner: OwnerSnapshot,
    outcome: OwnerOutcome,
    collections: Sequence[str],
    timeout_s: float,
) -> None:
    # Per-owner boundary: nothing raised here may stop the remaining owners.
    try:
        await asyncio.wait_for(migrate_owner(handles, provisioner, owner, outcome, collections), timeout_s)
    except asyncio.TimeoutError:
        logger.warning("owner_timed_out owner_id=%s stage=%s", owner.id, outcome.in_progress)
        outcome.fail(outcome.in_progress or "provision", f"timed out after {timeout_s}s")
    except Exception as exc:  # noqa: BLE001 - recorded in the report for operator follow-up
        logger.exception("owner_migration_failed owner_id=%s stage=%s", owner.id, outcome.in_progress)
        outcome.fail(outcome.in_progress or "provision", f"{type(exc).__name__}: {exc}")
    finally:
        outcome.in_progress = None
    logger.info(
        "owner_finished owner_id=%s state=%s failed_stage=%s",
        owner.id,
        outcome.state.value,
        outcome.failed_stage,
    )


async def run_migration(
    handles: StoreHandles,
    provisioner: StorageProvisioner,
    *,
    owner_ids: Sequence[int] | None = None,
    collections: Sequence[str] = COLLECTION_ORDER,
    owner_timeout_s: float | None = None,
    concurrency: int | None = None,
) -> MigrationReport:
    """Migrate every source owner into its own tenant store and report per-owner outcomes.

    Owners already present in the central registry are skipped, so re-running
    after a partial run only acts on owners that never registered. Entity copy
    is not idempotent: an owner that registered but failed mid-copy is skipped
    too, and its tenant store must be cleared by an operator before removing
    the registry row for a retry.
    """
    settings = get_settings()
    timeout_s = owner_timeout_s if owner_timeout_s is not None else settings.owner_timeout_s
    workers = max(1, concurrency if concurrency is not None else settings.migration_concurrency)

    try:
        async with handles.source() as session:
            owners = await list_owners(session, owner_ids)
    except (SQLAlchemyError, OSError) as exc:
        raise ConnectivityError(f"source store unreachable: {exc}") from exc

    logger.info("migration_started owners=%s concurrency=%s", len(owners), workers)
    report = MigrationReport(outcomes=[OwnerOutcome(owner_id=owner.id, email=owner.email) for owner in owners])
    pairs = list(zip(owners, report.outcomes))

    if workers == 1:
        for owner, outcome in pairs:
            await _run_owner(handles, provisioner, owner, outcome, collections, timeout_s)
    else:
        semaphore = asyncio.Semaphore(workers)

        async def bounded(owner: OwnerSnapshot, outcome: OwnerOutcome) -> None:
            async with semaphore:
                await _run_owner(handles, provisioner, owner, outcome, collections, timeout_s)

        await asyncio.gather(*(bounded(owner, outcome) for owner, outcome in pairs))

    logger.info("migration_finished %s", " ".join(f"{k}={v}" for k, v in report.summary().items()))
    return report
