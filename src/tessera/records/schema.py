"""
Process-wide table columns cache.

Columns are introspected once per table name and kept for the life of the
process. Reads take no lock; population and invalidation take a short one.
"""

import logging
import threading

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncConnection

logger = logging.getLogger(__name__)

_columns_cache: dict[str, list[str]] = {}
_lock = threading.Lock()


async def get_table_columns(conn: AsyncConnection, table: str) -> list[str]:
    """
    Return the column names of ``table``.

    Introspection is best effort: on failure an empty list is returned (and
    cached), which disables audit stamping for that table.
    """
    cached = _columns_cache.get(table)
    if cached is not None:
        return cached

    try:
        columns = await conn.run_sync(
            lambda sync_conn: [col["name"] for col in inspect(sync_conn).get_columns(table)]
        )
    except Exception as e:
        logger.warning(f"Schema introspection failed for {table}: {e}")
        columns = []

    with _lock:
        _columns_cache.setdefault(table, columns)
    return _columns_cache[table]


def forget_table_columns(table: str | None = None) -> None:
    """Invalidate one table (or every table) after a schema change."""
    with _lock:
        if table is None:
            _columns_cache.clear()
        else:
            _columns_cache.pop(table, None)
