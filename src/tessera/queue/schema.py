from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text


def define_jobs_table(metadata: MetaData, name: str = "jobs") -> Table:
    """
    Declare the job store table on ``metadata``.

    Timestamps are epoch seconds. ``status`` is one of pending, reserved
    or dead; completed jobs are deleted.
    """
    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("queue", String(100), nullable=False, default="default"),
        Column("handler", String(255), nullable=False),
        Column("payload", Text, nullable=False, default="{}"),
        Column("status", String(20), nullable=False, default="pending"),
        Column("attempts", Integer, nullable=False, default=0),
        Column("available_at", Integer, nullable=False),
        Column("reserved_at", Integer, nullable=True),
        Column("last_error", Text, nullable=True),
        Column("created_at", Integer, nullable=False),
        Column("failed_at", Integer, nullable=True),
        Index(f"ix_{name}_queue_status_available", "queue", "status", "available_at"),
    )
