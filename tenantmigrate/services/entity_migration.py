from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Any, Awaitable, Callable, Sequence

from sqlalchemy import inspect as sa_inspect, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tenantmigrate.core.errors import EntityCopyError
from tenantmigrate.domain.models import (
    AutoReply,
    ChatLabel,
    Contact,
    Document,
    Group,
    MasterConfig,
    Message,
    QuickReply,
    SourceAutoReply,
    SourceChatLabel,
    SourceContact,
    SourceDocument,
    SourceGroup,
    SourceMasterConfig,
    SourceMessage,
    SourceQuickReply,
    TenantBase,
)
from tenantmigrate.domain.state import CollectionKind
from tenantmigrate.persistence.repos.owners import list_owned_rows


logger = logging.getLogger(__name__)

CopyHandler = Callable[[AsyncSession, AsyncSession, int, dict[str, int]], Awaitable[int]]
RowBuilder = Callable[[Any], Awaitable[TenantBase]]

# Never copied: tenant keys are reassigned, ownership is implicit, group ids are translated.
_UNCOPIED_FIELDS = frozenset({"id", "user_id", "group_id"})

_ROW_ERRORS = (SQLAlchemyError, ValueError, TypeError)


def _copied_fields(target_model: type[TenantBase]) -> list[str]:
    return [attr.key for attr in sa_inspect(target_model).column_attrs if attr.key not in _UNCOPIED_FIELDS]


def _field_values(row: Any, fields: Sequence[str]) -> dict[str, Any]:
    return {field: getattr(row, field) for field in fields}


async def _load_rows(source: AsyncSession, kind: str, model: type[Any], owner_id: int) -> list[Any]:
    try:
        return await list_owned_rows(source, model, owner_id)
    except SQLAlchemyError as exc:
        raise EntityCopyError(kind, None, 0, f"source read failed: {exc}") from exc


async def _copy_rows(
    target: AsyncSession,
    kind: str,
    rows: Sequence[Any],
    build: RowBuilder,
    progress: dict[str, int],
) -> int:
    # One commit per row: a failure or cancellation leaves exactly progress[kind] rows behind.
    copied = 0
    progress[kind] = copied
    for row in rows:
        try:
            copy = await build(row)
            target.add(copy)
            await target.commit()
        except _ROW_ERRORS as exc:
            await target.rollback()
            logger.warning("entity_copy_failed kind=%s source_id=%s copied=%s", kind, row.id, copied)
            raise EntityCopyError(kind, row.id, copied, str(exc)) from exc
        target.expunge(copy)
        copied += 1
        progress[kind] = copied
    return copied


def _plain_handler(kind: str, source_model: type[Any], target_model: type[TenantBase]) -> CopyHandler:
    fields = _copied_fields(target_model)

    async def build(row: Any) -> TenantBase:
        return target_model(**_field_values(row, fields))

    async def copy(source: AsyncSession, target: AsyncSession, owner_id: int, progress: dict[str, int]) -> int:
        rows = await _load_rows(source, kind, source_model, owner_id)
        return await _copy_rows(target, kind, rows, build, progress)

    return copy


class GroupResolver:
    """Resolve-or-create tenant groups by name.

    Source group ids mean nothing in a tenant store, so groups are matched by
    name only. Ids are cached per name and each distinct name is resolved under
    its own lock, so contacts sharing a group never create duplicates.
    """

    def __init__(self, target: AsyncSession) -> None:
        self._target = target
        self._ids: dict[str, int] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self.created = 0

    async def resolve(self, name: str) -> int:
        cached = self._ids.get(name)
        if cached is not None:
            return cached
        lock = self._locks.setdefault(name, asyncio.Lock())
        async with lock:
            if name in self._ids:
                return self._ids[name]
            group_id = await self._lookup(name)
            if group_id is None:
                group_id = await self._create(name)
            self._ids[name] = group_id
            return group_id

    async def _lookup(self, name: str) -> int | None:
        result = await self._target.execute(select(Group.id).where(Group.name == name))
        return result.scalar_one_or_none()

    async def _create(self, name: str) -> int:
        group = Group(name=name)
        self._target.add(group)
        try:
            await self._target.commit()
        except IntegrityError:
            # Another writer created the name first; reuse its row.
            await self._target.rollback()
            existing = await self._lookup(name)
            if existing is None:
                raise
            return existing
        self.created += 1
        self._target.expunge(group)
        return group.id


async def _source_group_names(source: AsyncSession, group_ids: set[int]) -> dict[int, str]:
    if not group_ids:
        return {}
    result = await source.execute(
        select(SourceGroup.id, SourceGroup.name).where(SourceGroup.id.in_(sorted(group_ids)))
    )
    return {int(group_id): name for group_id, name in result.all()}


async def _copy_contacts(
    source: AsyncSession,
    target: AsyncSession,
    owner_id: int,
    progress: dict[str, int],
) -> int:
    contacts = await _load_rows(source, "contacts", SourceContact, owner_id)
    try:
        group_names = await _source_group_names(
            source, {contact.group_id for contact in contacts if contact.group_id is not None}
        )
    except SQLAlchemyError as exc:
        raise EntityCopyError("contacts", None, 0, f"source group read failed: {exc}") from exc
    fields = _copied_fields(Contact)
    resolver = GroupResolver(target)

    async def build(contact: SourceContact) -> TenantBase:
        values = _field_values(contact, fields)
        group_name = group_names.get(contact.group_id) if contact.group_id is not None else None
        if group_name is not None:
            values["group_id"] = await resolver.resolve(group_name)
        return Contact(**values)

    copied = await _copy_rows(target, "contacts", contacts, build, progress)
    if resolver.created:
        logger.info("groups_created owner_id=%s count=%s", owner_id, resolver.created)
    return copied


@dataclass(frozen=True)
class CollectionHandler:
    kind: CollectionKind
    copy: CopyHandler


# Fixed migration order; every handler shares the (source, target, owner_id, progress) -> count contract.
COLLECTION_HANDLERS: dict[str, CollectionHandler] = {
    handler.kind: handler
    for handler in (
        CollectionHandler("master_configs", _plain_handler("master_configs", SourceMasterConfig, MasterConfig)),
        CollectionHandler("contacts", _copy_contacts),
        CollectionHandler("messages", _plain_handler("messages", SourceMessage, Message)),
        CollectionHandler("auto_replies", _plain_handler("auto_replies", SourceAutoReply, AutoReply)),
        CollectionHandler("quick_replies", _plain_handler("quick_replies", SourceQuickReply, QuickReply)),
        CollectionHandler("chat_labels", _plain_handler("chat_labels", SourceChatLabel, ChatLabel)),
        CollectionHandler("documents", _plain_handler("documents", SourceDocument, Document)),
    )
}
COLLECTION_ORDER: tuple[str, ...] = tuple(COLLECTION_HANDLERS)

# Source models per kind, for inventory counts.
SOURCE_MODELS: dict[str, type[Any]] = {
    "master_configs": SourceMasterConfig,
    "contacts": SourceContact,
    "messages": SourceMessage,
    "auto_replies": SourceAutoReply,
    "quick_replies": SourceQuickReply,
    "chat_labels": SourceChatLabel,
    "documents": SourceDocument,
}


async def migrate_collection(
    source: AsyncSession,
    target: AsyncSession,
    owner_id: int,
    kind: str,
    progress: dict[str, int] | None = None,
) -> int:
    """Copy one owner's rows of ``kind`` into a tenant store and return the count.

    ``progress[kind]`` tracks committed rows as they land, so a caller that is
    cancelled mid-copy still knows how many rows the tenant store holds.
    Raises :class:`EntityCopyError` carrying the partial count when a row fails.
    """
    handler = COLLECTION_HANDLERS.get(kind)
    if handler is None:
        raise ValueError(f"unknown collection kind {kind!r}")
    copied = await handler.copy(source, target, owner_id, progress if progress is not None else {})
    logger.info("collection_migrated owner_id=%s kind=%s rows=%s", owner_id, kind, copied)
    return copied
