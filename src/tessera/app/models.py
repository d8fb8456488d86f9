"""
Record mappers of the reference application.

Passwords are hashed in ``UserModel.before_save`` so no handler ever
stores a plain password.
"""

import time
from typing import Any

from tessera.core.security import hash_password, is_password_hash
from tessera.records import AuditPolicy, RecordMapper, has_many

SEARCH_LIMIT = 100


class UserModel(RecordMapper):
    table = "users"
    fillable = ("name", "email", "password", "role", "status", "last_login_at")
    hidden = ("password",)
    relations = {
        "remember_tokens": has_many("remember_tokens", foreign_key="user_id", hidden=("token_hash",)),
    }
    audit = AuditPolicy(timestamp_format="unix")

    async def before_save(self, data: dict[str, Any], insert: bool) -> bool:
        password = data.get("password")
        if password and not is_password_hash(password):
            data["password"] = hash_password(password)
        return await super().before_save(data, insert)

    async def find_by_email(self, email: str) -> dict[str, Any] | None:
        return await self.first_where({"email": email})

    async def find_for_login(self, email: str) -> dict[str, Any] | None:
        """The user row including the password hash."""
        rows = await self.query("SELECT * FROM users WHERE email = :email LIMIT 1", {"email": email})
        return rows[0] if rows else None

    async def touch_login(self, id: Any) -> bool:
        return await self.update(id, {"last_login_at": int(time.time())})

    async def search(self, keyword: str) -> list[dict[str, Any]]:
        """Users whose name, email or status contains ``keyword``."""
        term = f"%{keyword}%"
        rows = await self.query(
            "SELECT * FROM users WHERE name LIKE :term OR email LIKE :term "
            "OR status LIKE :term ORDER BY id LIMIT :limit",
            {"term": term, "limit": SEARCH_LIMIT},
        )
        return self.hide_fields(rows)


class PasswordResetModel(RecordMapper):
    table = "password_resets"
    fillable = ("email", "token", "expires_at")
    hidden = ("token",)
    audit = AuditPolicy(timestamp_format="datetime")

    async def delete_for_email(self, email: str) -> int:
        return await self.delete_where({"email": email})

    async def find_valid(self, email: str, token: str) -> dict[str, Any] | None:
        rows = await self.query(
            "SELECT * FROM password_resets WHERE email = :email AND token = :token "
            "AND expires_at > :now ORDER BY id DESC LIMIT 1",
            {"email": email, "token": token, "now": int(time.time())},
        )
        return rows[0] if rows else None


class RememberTokenModel(RecordMapper):
    table = "remember_tokens"
    fillable = ("user_id", "token_hash", "expires_at")
    hidden = ("token_hash",)
    audit = AuditPolicy(timestamp_format="unix")

    async def find_valid(self, token_hash: str) -> dict[str, Any] | None:
        rows = await self.query(
            "SELECT * FROM remember_tokens WHERE token_hash = :token_hash AND expires_at > :now LIMIT 1",
            {"token_hash": token_hash, "now": int(time.time())},
        )
        return rows[0] if rows else None
