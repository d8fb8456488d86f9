"""
Tables of the reference application.

``metadata.create_all`` builds them for tests and local runs.
"""

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
)

from tessera.queue import define_jobs_table

metadata = MetaData()

# Audit timestamps here are epoch seconds
users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("password", String(255), nullable=False),
    Column("role", String(50), nullable=False, default="user"),
    Column("status", String(20), nullable=False, default="active"),
    Column("last_login_at", Integer, nullable=True),
    Column("created_at", Integer, nullable=True),
    Column("updated_at", Integer, nullable=True),
    Column("created_by", Integer, nullable=True),
    Column("updated_by", Integer, nullable=True),
)

# Audit timestamps here are formatted datetimes; expires_at is epoch seconds
password_resets = Table(
    "password_resets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False),
    Column("token", String(255), nullable=False),
    Column("expires_at", Integer, nullable=False),
    Column("created_at", String(19), nullable=True),
    Index("ix_password_resets_email", "email"),
)

remember_tokens = Table(
    "remember_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("token_hash", String(64), nullable=False, unique=True),
    Column("expires_at", Integer, nullable=False),
    Column("created_at", Integer, nullable=True),
)

jobs = define_jobs_table(metadata)
