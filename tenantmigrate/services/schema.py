from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any

from alembic.autogenerate import compare_metadata
from alembic.migration import MigrationContext
from alembic.operations import Operations
import sqlalchemy as sa
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from tenantmigrate.core.errors import SchemaError
from tenantmigrate.persistence.db import check_connectivity


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchemaChanges:
    target: str
    created_tables: list[str] = field(default_factory=list)
    added_columns: list[str] = field(default_factory=list)
    added_indexes: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created_tables or self.added_columns or self.added_indexes)


ColumnAddition = tuple[str | None, str, sa.Column]


def _detached_column(column: sa.Column) -> sa.Column:
    # Alembic needs a column not already bound to the metadata table.
    server_default = column.server_default.arg if column.server_default is not None else None  # type: ignore[attr-defined]
    return sa.Column(column.name, column.type, nullable=column.nullable, server_default=server_default)


def _unique_columns(element: Any) -> str:
    return ",".join(column.name for column in element.columns)


def _plan(diffs: list[Any], target: str, existing: set[str]) -> tuple[list[ColumnAddition], list[sa.Index]]:
    # Split autogenerate output into additive changes and hard conflicts. Tables not yet
    # present are created whole by create_all, so only diffs against existing tables count.
    additions: list[ColumnAddition] = []
    indexes: list[sa.Index] = []
    conflicts: list[str] = []
    for diff in diffs:
        if isinstance(diff, list):
            for change in diff:
                if change[0] == "modify_nullable":
                    _, _schema, table_name, column_name, _existing, live, wanted = change
                    conflicts.append(f"{table_name}.{column_name} nullable={live}, expected nullable={wanted}")
            continue
        op = diff[0]
        if op == "add_column":
            _, schema, table_name, column = diff
            if table_name not in existing:
                continue
            if not column.nullable and column.server_default is None:
                conflicts.append(f"{table_name}.{column.name} is missing and cannot be added as NOT NULL")
                continue
            additions.append((schema, table_name, column))
        elif op == "add_constraint" and isinstance(diff[1], sa.UniqueConstraint):
            constraint = diff[1]
            if constraint.table.name in existing:
                # Existing rows may already violate it; deduplicating them is an operator decision.
                conflicts.append(f"{constraint.table.name} is missing UNIQUE({_unique_columns(constraint)})")
        elif op == "add_index":
            index = diff[1]
            if index.table.name not in existing:
                continue
            if index.unique:
                conflicts.append(f"{index.table.name} is missing unique index {index.name}")
            else:
                indexes.append(index)
        # Extra tables, columns and indexes in the live store are tolerated.
    if conflicts:
        raise SchemaError(target, conflicts)
    return additions, indexes


def _apply_sync(connection: Connection, metadata: sa.MetaData, target: str) -> SchemaChanges:
    existing = set(sa.inspect(connection).get_table_names())
    context = MigrationContext.configure(connection, opts={"compare_type": False})
    additions, indexes = _plan(compare_metadata(context, metadata), target, existing)

    created = [table.name for table in metadata.sorted_tables if table.name not in existing]
    metadata.create_all(connection, checkfirst=True)

    operations = Operations(context)
    added: list[str] = []
    for schema, table_name, column in additions:
        operations.add_column(table_name, _detached_column(column), schema=schema)
        added.append(f"{table_name}.{column.name}")
    for index in indexes:
        index.create(connection)
    return SchemaChanges(
        target=target,
        created_tables=created,
        added_columns=added,
        added_indexes=[index.name for index in indexes],
    )


async def apply_schema(engine: AsyncEngine, metadata: sa.MetaData) -> SchemaChanges:
    """Bring the store behind ``engine`` up to ``metadata``.

    Missing tables are created; missing nullable (or defaulted) columns and
    plain indexes are added. Re-applying an up-to-date schema changes nothing.
    Structure that cannot be reconciled additively raises :class:`SchemaError`
    before any change is made: a missing NOT NULL column without a default, or
    a unique constraint or unique index absent from an existing table.
    """
    target = engine.url.database or engine.url.render_as_string(hide_password=True)
    await check_connectivity(engine, label=target)
    try:
        async with engine.begin() as conn:
            changes = await conn.run_sync(_apply_sync, metadata, target)
    except SchemaError:
        raise
    except SQLAlchemyError as exc:
        raise SchemaError(target, [str(exc)]) from exc
    if changes.changed:
        logger.info(
            "schema_applied target=%s created_tables=%s added_columns=%s added_indexes=%s",
            target,
            ",".join(changes.created_tables),
            ",".join(changes.added_columns),
            ",".join(changes.added_indexes),
        )
    return changes
