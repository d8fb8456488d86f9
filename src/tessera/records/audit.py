"""
Audit-field policy for record mappers.

A mapper stamps created_at/updated_at and created_by/updated_by on writes,
but only for columns that exist on its table.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

TimestampFormat = Literal["datetime", "unix"]

DEFAULT_AUDIT_FIELDS = {
    "created_at": "created_at",
    "updated_at": "updated_at",
    "created_by": "created_by",
    "updated_by": "updated_by",
}


@dataclass(frozen=True)
class AuditPolicy:
    """
    Per-model audit configuration.

    Attributes:
        enabled: Turn audit automation on or off
        fields: Overrides for the four audit column names
        timestamp_format: ``datetime`` (UTC ``YYYY-mm-dd HH:MM:SS``) or ``unix``
            (integer epoch seconds); None uses the configured default
    """

    enabled: bool = True
    fields: dict[str, str] = field(default_factory=dict)
    timestamp_format: TimestampFormat | None = None

    def column(self, name: str) -> str:
        return self.fields.get(name, DEFAULT_AUDIT_FIELDS[name])

    def now(self, default_format: TimestampFormat = "datetime") -> Any:
        fmt = self.timestamp_format or default_format
        if fmt == "unix":
            return int(time.time())
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    def stamp(
        self,
        data: dict[str, Any],
        columns: list[str],
        insert: bool,
        actor_id: Any = None,
        default_format: TimestampFormat = "datetime",
    ) -> None:
        """
        Populate audit fields in ``data`` in place.

        On insert, fields already present in ``data`` are left alone. On
        update, updated_at (and updated_by when an actor is known) is always
        refreshed.
        """
        if not self.enabled:
            return

        now = self.now(default_format)
        created_at = self.column("created_at")
        updated_at = self.column("updated_at")
        created_by = self.column("created_by")
        updated_by = self.column("updated_by")

        if insert:
            if created_at in columns and data.get(created_at) is None:
                data[created_at] = now
            if updated_at in columns and data.get(updated_at) is None:
                data[updated_at] = now
            if actor_id is not None:
                if created_by in columns and data.get(created_by) is None:
                    data[created_by] = actor_id
                if updated_by in columns and data.get(updated_by) is None:
                    data[updated_by] = actor_id
        else:
            if updated_at in columns:
                data[updated_at] = now
            if updated_by in columns and actor_id is not None:
                data[updated_by] = actor_id
