"""
Generic record mapper (active record over plain rows).

A mapper is bound to one table and returns rows as plain dictionaries.
Models subclass RecordMapper and declare their policy as class attributes:

    class PostModel(RecordMapper):
        table = "posts"
        fillable = ("title", "body", "user_id")
        hidden = ()
        relations = {"author": belongs_to("users", foreign_key="user_id")}
        audit = AuditPolicy(timestamp_format="unix")

Statements are SQLAlchemy ``text()`` constructs. Identifiers are checked
against an allow-list before they are interpolated; values are always bound
parameters.
"""

import copy
import logging
import math
import re
from typing import Any, ClassVar, Iterable, Sequence

from sqlalchemy import bindparam, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection

from tessera.core.cache import Cache
from tessera.core.exceptions import InvalidIdentifierError, StorageConstraintError
from tessera.core.security import Principal
from tessera.records.audit import AuditPolicy, TimestampFormat
from tessera.records.relations import RelationDescriptor
from tessera.records.schema import get_table_columns

logger = logging.getLogger(__name__)

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")

MAX_PER_PAGE = 100
COUNT_CACHE_TTL = 300  # 5 minutes

Record = dict[str, Any]


def check_identifier(name: str, kind: str = "column name") -> str:
    """
    Validate an identifier before it is placed into SQL text.

    Raises:
        InvalidIdentifierError: If the name contains anything but letters,
            digits and underscores
    """
    if not isinstance(name, str) or not IDENTIFIER_PATTERN.match(name):
        raise InvalidIdentifierError(f"Invalid {kind}: {name!r}")
    return name


def _column_list(columns: Sequence[str]) -> str:
    if not columns:
        return "*"
    return ", ".join(col if col == "*" else check_identifier(col) for col in columns)


def count_cache_key(table: str) -> str:
    return f"table_count:{table}"


class RecordMapper:
    """
    Generic CRUD and query operations against a named table.

    Attributes (declared per model):
        table: Table name
        primary_key: Primary key column
        fillable: Columns accepted from input on write (empty: accept all)
        hidden: Columns stripped from every record returned
        relations: Relation name -> RelationDescriptor
        audit: Audit policy

    Args:
        conn: Connection to run statements on
        cache: Cache for the pagination row count (optional)
        actor: Principal stamped into created_by/updated_by
        autocommit: Commit after each write. Pass False when the connection
            is inside an explicit transaction.
        timestamp_format: Default audit timestamp format for models that do
            not set one
        count_ttl: Seconds to cache the total row count
    """

    table: ClassVar[str] = ""
    primary_key: ClassVar[str] = "id"
    fillable: ClassVar[tuple[str, ...]] = ()
    hidden: ClassVar[tuple[str, ...]] = ()
    relations: ClassVar[dict[str, RelationDescriptor]] = {}
    audit: ClassVar[AuditPolicy] = AuditPolicy()

    def __init__(
        self,
        conn: AsyncConnection,
        cache: Cache | None = None,
        actor: Principal | None = None,
        autocommit: bool = True,
        timestamp_format: TimestampFormat = "datetime",
        count_ttl: int = COUNT_CACHE_TTL,
    ):
        check_identifier(self.table, "table name")
        check_identifier(self.primary_key)
        self.conn = conn
        self.cache = cache
        self.actor = actor
        self.autocommit = autocommit
        self.timestamp_format = timestamp_format
        self.count_ttl = count_ttl
        self._with: tuple[str, ...] = ()

    # -------------------------------------------------------------------------
    # Relations
    # -------------------------------------------------------------------------

    def with_relations(self, *names: str) -> "RecordMapper":
        """
        Return a copy of this mapper that eager-loads the named relations.

        Raises:
            InvalidIdentifierError: If a relation is not declared on the model
        """
        for name in names:
            if name not in self.relations:
                raise InvalidIdentifierError(f"Unknown relation: {name!r}")
        clone = copy.copy(self)
        clone._with = tuple(dict.fromkeys(self._with + names))
        return clone

    async def _load_relations(self, rows: list[Record]) -> None:
        """
        Attach eager-loaded relations to ``rows`` in place.

        Issues one ``WHERE foreign_key IN (...)`` query per relation,
        whatever the number of rows.
        """
        for name in self._with:
            relation = self.relations[name]
            check_identifier(relation.table, "table name")
            check_identifier(relation.foreign_key)
            check_identifier(relation.local_key)

            keys = list(
                dict.fromkeys(
                    row[relation.local_key]
                    for row in rows
                    if row.get(relation.local_key) is not None
                )
            )

            grouped: dict[Any, list[Record]] = {}
            if keys:
                statement = text(
                    f"SELECT * FROM {relation.table} WHERE {relation.foreign_key} IN :keys"
                ).bindparams(bindparam("keys", expanding=True))
                result = await self._execute(statement, {"keys": keys})
                for related in result.mappings():
                    item = {k: v for k, v in related.items() if k not in relation.hidden}
                    grouped.setdefault(item[relation.foreign_key], []).append(item)

            for row in rows:
                matches = grouped.get(row.get(relation.local_key), [])
                row[name] = matches if relation.many else (matches[0] if matches else None)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def all(self, columns: Sequence[str] = ("*",)) -> list[Record]:
        """Fetch every row of the table."""
        sql = f"SELECT {_column_list(columns)} FROM {self.table}"
        return await self._fetch(text(sql), {})

    async def find(self, id: Any, columns: Sequence[str] = ("*",)) -> Record | None:
        """Fetch one row by primary key, or None."""
        sql = (
            f"SELECT {_column_list(columns)} FROM {self.table} "
            f"WHERE {self.primary_key} = :id LIMIT 1"
        )
        rows = await self._fetch(text(sql), {"id": id})
        return rows[0] if rows else None

    async def where(self, conditions: dict[str, Any], columns: Sequence[str] = ("*",)) -> list[Record]:
        """
        Fetch rows matching every condition (``column = value``; None matches NULL).

        Raises:
            InvalidIdentifierError: If a column or condition key is invalid
        """
        clauses: list[str] = []
        params: dict[str, Any] = {}
        for key, value in conditions.items():
            check_identifier(key, "condition key")
            if value is None:
                clauses.append(f"{key} IS NULL")
            else:
                clauses.append(f"{key} = :{key}")
                params[key] = value

        sql = f"SELECT {_column_list(columns)} FROM {self.table}"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        return await self._fetch(text(sql), params)

    async def first_where(self, conditions: dict[str, Any], columns: Sequence[str] = ("*",)) -> Record | None:
        rows = await self.where(conditions, columns)
        return rows[0] if rows else None

    async def count(self) -> int:
        """Count all rows (uncached)."""
        result = await self._execute(text(f"SELECT COUNT(*) AS total FROM {self.table}"), {})
        return int(result.scalar_one())

    async def paginate(self, page: int = 1, per_page: int = 10) -> dict[str, Any]:
        """
        Return one page of rows with pagination metadata.

        ``per_page`` is clamped to [1, 100] and ``page`` to >= 1. The total row
        count is cached per table and invalidated on create and delete.

        Returns:
            ``{"data": [...], "meta": {total, per_page, current_page,
            last_page, from, to}}``
        """
        page = max(1, int(page))
        per_page = min(MAX_PER_PAGE, max(1, int(per_page)))
        offset = (page - 1) * per_page

        if self.cache is not None:
            total = await self.cache.remember(count_cache_key(self.table), self.count_ttl, self.count)
        else:
            total = await self.count()
        total = int(total)

        sql = (
            f"SELECT * FROM {self.table} ORDER BY {self.primary_key} "
            "LIMIT :limit OFFSET :offset"
        )
        rows = await self._fetch(text(sql), {"limit": per_page, "offset": offset})

        return {
            "data": rows,
            "meta": {
                "total": total,
                "per_page": per_page,
                "current_page": page,
                "last_page": max(1, math.ceil(total / per_page)),
                "from": offset + 1 if rows else 0,
                "to": offset + len(rows) if rows else 0,
            },
        }

    async def query(self, sql: str, params: dict[str, Any] | None = None) -> list[Record]:
        """
        Run a raw read statement with bound parameters.

        Hidden fields are not stripped; callers own the projection.
        """
        result = await self._execute(text(sql), params or {})
        return [dict(row) for row in result.mappings()]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def create(self, data: dict[str, Any]) -> Any:
        """
        Insert a row.

        Returns:
            The new primary key, or None when ``before_save`` vetoed the write

        Raises:
            StorageConstraintError: If the insert violates a constraint
        """
        data = self.filter_fillable(data)
        if not await self.before_save(data, True):
            logger.info(f"Insert into {self.table} vetoed by before_save")
            return None

        columns = [check_identifier(key) for key in data]
        if columns:
            sql = (
                f"INSERT INTO {self.table} ({', '.join(columns)}) "
                f"VALUES ({', '.join(':' + col for col in columns)})"
            )
        else:
            sql = f"INSERT INTO {self.table} DEFAULT VALUES"

        returning = self.conn.engine.dialect.insert_returning
        if returning:
            sql += f" RETURNING {self.primary_key}"

        result = await self._write(sql, data)
        new_id = result.scalar_one() if returning else result.lastrowid
        await self._commit()

        await self._forget_count()
        data[self.primary_key] = new_id
        await self.after_save(True, data)
        return new_id

    async def update(self, id: Any, data: dict[str, Any]) -> bool:
        """
        Update a row by primary key.

        Returns:
            True if a row was updated, False when vetoed or nothing matched
        """
        data = self.filter_fillable(data)
        if not await self.before_save(data, False):
            logger.info(f"Update of {self.table}#{id} vetoed by before_save")
            return False
        if not data:
            return False

        assignments = ", ".join(f"{check_identifier(key)} = :{key}" for key in data)
        params = dict(data)
        params["__pk"] = id
        sql = f"UPDATE {self.table} SET {assignments} WHERE {self.primary_key} = :__pk"

        result = await self._write(sql, params)
        await self._commit()

        updated = result.rowcount > 0
        if updated:
            await self.after_save(False, {self.primary_key: id, **data})
        return updated

    async def delete(self, id: Any) -> bool:
        """
        Delete a row by primary key.

        Returns:
            True if a row was deleted, False when vetoed or nothing matched
        """
        if not await self.before_delete(id):
            logger.info(f"Delete of {self.table}#{id} vetoed by before_delete")
            return False

        sql = f"DELETE FROM {self.table} WHERE {self.primary_key} = :id"
        result = await self._write(sql, {"id": id})
        await self._commit()

        await self._forget_count()
        deleted = result.rowcount > 0
        if deleted:
            await self.after_delete(id)
        return deleted

    async def delete_where(self, conditions: dict[str, Any]) -> int:
        """Delete every row matching the conditions. Returns the row count."""
        if not conditions:
            raise InvalidIdentifierError("delete_where requires at least one condition")
        clauses = " AND ".join(f"{check_identifier(key, 'condition key')} = :{key}" for key in conditions)
        result = await self._write(f"DELETE FROM {self.table} WHERE {clauses}", dict(conditions))
        await self._commit()
        await self._forget_count()
        return result.rowcount

    # -------------------------------------------------------------------------
    # Lifecycle hooks
    # -------------------------------------------------------------------------

    async def before_save(self, data: dict[str, Any], insert: bool) -> bool:
        """
        Runs before create/update; return False to veto.

        The default implementation stamps audit fields for columns that
        exist on the table. Overrides should call ``super().before_save``.
        """
        if not self.audit.enabled:
            return True
        columns = await get_table_columns(self.conn, self.table)
        self.audit.stamp(
            data,
            columns,
            insert,
            actor_id=self.actor.user_id if self.actor else None,
            default_format=self.timestamp_format,
        )
        return True

    async def after_save(self, insert: bool, data: dict[str, Any]) -> None:
        """Runs after a successful create/update."""

    async def before_delete(self, id: Any) -> bool:
        """Runs before delete; return False to veto."""
        return True

    async def after_delete(self, id: Any) -> None:
        """Runs after a successful delete."""

    # -------------------------------------------------------------------------
    # Field policies
    # -------------------------------------------------------------------------

    def filter_fillable(self, data: dict[str, Any]) -> dict[str, Any]:
        """Keep only fillable fields (all fields when none are declared)."""
        if not self.fillable:
            return dict(data)
        return {key: value for key, value in data.items() if key in self.fillable}

    def hide_fields(self, rows: Iterable[Record]) -> list[Record]:
        """Strip hidden fields from every row."""
        if not self.hidden:
            return list(rows)
        return [{k: v for k, v in row.items() if k not in self.hidden} for row in rows]

    # -------------------------------------------------------------------------
    # Statement helpers
    # -------------------------------------------------------------------------

    async def _fetch(self, statement, params: dict[str, Any]) -> list[Record]:
        result = await self._execute(statement, params)
        rows = [dict(row) for row in result.mappings()]
        if self._with and rows:
            await self._load_relations(rows)
        return self.hide_fields(rows)

    async def _execute(self, statement, params: dict[str, Any]):
        logger.debug(f"Query: {statement} params={params}")
        return await self.conn.execute(statement, params)

    async def _write(self, sql: str, params: dict[str, Any]):
        try:
            return await self._execute(text(sql), params)
        except IntegrityError as e:
            logger.error(
                f"Constraint violation on {self.table}: {e.orig} "
                f"statement={sql} params={params}"
            )
            if self.autocommit:
                await self.conn.rollback()
            raise StorageConstraintError(statement=sql, params=params) from e

    async def _commit(self) -> None:
        if self.autocommit:
            await self.conn.commit()

    async def _forget_count(self) -> None:
        if self.cache is not None:
            await self.cache.delete(count_cache_key(self.table))
