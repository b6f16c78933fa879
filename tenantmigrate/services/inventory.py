from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import distinct, func, select

from tenantmigrate.domain.models import SourceContact, SourceGroup
from tenantmigrate.persistence.db import StoreHandles
from tenantmigrate.persistence.repos.owners import OwnerSnapshot, count_owned_rows, list_owners
from tenantmigrate.services.entity_migration import COLLECTION_ORDER, SOURCE_MODELS


@dataclass
class SourceInventory:
    owners: list[OwnerSnapshot]
    # owner id -> collection kind -> rows; "groups" counts distinct names referenced by contacts.
    counts: dict[int, dict[str, int]] = field(default_factory=dict)

    def totals(self) -> dict[str, int]:
        totals: dict[str, int] = {}
        for per_kind in self.counts.values():
            for kind, count in per_kind.items():
                totals[kind] = totals.get(kind, 0) + count
        return totals

    def render_lines(self) -> list[str]:
        lines = [f"owners={len(self.owners)}"]
        for owner in self.owners:
            per_kind = self.counts.get(owner.id, {})
            counts = ",".join(f"{kind}:{count}" for kind, count in per_kind.items())
            lines.append(f"owner_id={owner.id} email={owner.email} counts={counts}")
        lines.append("totals " + " ".join(f"{kind}={count}" for kind, count in self.totals().items()))
        return lines


async def collect_inventory(handles: StoreHandles) -> SourceInventory:
    """Count each owner's source rows per collection kind, for comparison with a migration report."""
    async with handles.source() as session:
        owners = await list_owners(session)
        per_kind = {kind: await count_owned_rows(session, SOURCE_MODELS[kind]) for kind in COLLECTION_ORDER}
        group_rows = await session.execute(
            select(SourceContact.user_id, func.count(distinct(SourceGroup.name)))
            .join(SourceGroup, SourceContact.group_id == SourceGroup.id)
            .group_by(SourceContact.user_id)
        )
        groups = {int(owner_id): int(count) for owner_id, count in group_rows.all()}

    inventory = SourceInventory(owners=owners)
    for owner in owners:
        counts = {kind: per_kind[kind].get(owner.id, 0) for kind in COLLECTION_ORDER}
        counts["groups"] = groups.get(owner.id, 0)
        inventory.counts[owner.id] = counts
    return inventory
