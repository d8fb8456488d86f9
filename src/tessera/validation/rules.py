"""
Validation rules.

Rule strings such as ``"required|min:8|unique:users,email"`` are parsed once
into frozen rule objects; evaluation never re-parses text.
"""

import logging
from dataclasses import dataclass
from typing import Any, ClassVar

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection

from tessera.core.exceptions import ConfigurationError
from tessera.records.mapper import check_identifier

logger = logging.getLogger(__name__)


def is_blank(value: Any) -> bool:
    """
    Whether a value counts as missing for ``required``.

    None, empty or whitespace-only strings and empty collections are blank.
    ``0``, ``"0"`` and ``False`` are not.
    """
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_number(value: Any) -> float | None:
    if _is_number(value):
        return value
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


@dataclass(frozen=True)
class CheckContext:
    """What a rule can see besides its own value."""

    field: str
    data: dict[str, Any]
    numeric: bool = False
    conn: AsyncConnection | None = None


class Rule:
    """Base class; ``check`` returns None on success or an error message."""

    name: ClassVar[str] = ""
    implicit: ClassVar[bool] = False  # runs even when the value is blank

    async def check(self, value: Any, ctx: CheckContext) -> str | None:
        raise NotImplementedError


@dataclass(frozen=True)
class Required(Rule):
    name: ClassVar[str] = "required"
    implicit: ClassVar[bool] = True

    async def check(self, value: Any, ctx: CheckContext) -> str | None:
        if is_blank(value):
            return f"The {ctx.field} field is required."
        return None


@dataclass(frozen=True)
class IsString(Rule):
    name: ClassVar[str] = "string"

    async def check(self, value: Any, ctx: CheckContext) -> str | None:
        if not isinstance(value, str):
            return f"The {ctx.field} must be a string."
        return None


@dataclass(frozen=True)
class IsInteger(Rule):
    name: ClassVar[str] = "integer"

    async def check(self, value: Any, ctx: CheckContext) -> str | None:
        if isinstance(value, bool):
            return f"The {ctx.field} must be an integer."
        if isinstance(value, int):
            return None
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            return None
        return f"The {ctx.field} must be an integer."


@dataclass(frozen=True)
class IsNumeric(Rule):
    name: ClassVar[str] = "numeric"

    async def check(self, value: Any, ctx: CheckContext) -> str | None:
        if isinstance(value, bool) or _as_number(value) is None:
            return f"The {ctx.field} must be a number."
        return None


@dataclass(frozen=True)
class IsBoolean(Rule):
    name: ClassVar[str] = "boolean"

    ACCEPTED: ClassVar[tuple] = (True, False, 0, 1, "0", "1", "true", "false")

    async def check(self, value: Any, ctx: CheckContext) -> str | None:
        if value not in self.ACCEPTED:
            return f"The {ctx.field} field must be true or false."
        return None


@dataclass(frozen=True)
class Email(Rule):
    name: ClassVar[str] = "email"

    async def check(self, value: Any, ctx: CheckContext) -> str | None:
        if not isinstance(value, str):
            return f"The {ctx.field} must be a valid email address."
        try:
            validate_email(value, check_deliverability=False)
        except EmailNotValidError:
            return f"The {ctx.field} must be a valid email address."
        return None


def _size(value: Any, numeric: bool) -> float | None:
    if numeric:
        return _as_number(value)
    if _is_number(value):
        return value
    if isinstance(value, (str, list, tuple, dict)):
        return len(value)
    return None


@dataclass(frozen=True)
class MinLen(Rule):
    limit: float
    name: ClassVar[str] = "min"

    async def check(self, value: Any, ctx: CheckContext) -> str | None:
        size = _size(value, ctx.numeric)
        if size is None or size >= self.limit:
            return None
        if isinstance(value, str) and not ctx.numeric:
            return f"The {ctx.field} must be at least {self.limit:g} characters."
        return f"The {ctx.field} must be at least {self.limit:g}."


@dataclass(frozen=True)
class MaxLen(Rule):
    limit: float
    name: ClassVar[str] = "max"

    async def check(self, value: Any, ctx: CheckContext) -> str | None:
        size = _size(value, ctx.numeric)
        if size is None or size <= self.limit:
            return None
        if isinstance(value, str) and not ctx.numeric:
            return f"The {ctx.field} may not be greater than {self.limit:g} characters."
        return f"The {ctx.field} may not be greater than {self.limit:g}."


@dataclass(frozen=True)
class In(Rule):
    choices: tuple[str, ...]
    name: ClassVar[str] = "in"

    async def check(self, value: Any, ctx: CheckContext) -> str | None:
        if str(value) not in self.choices:
            return f"The selected {ctx.field} is invalid."
        return None


@dataclass(frozen=True)
class Confirmed(Rule):
    name: ClassVar[str] = "confirmed"

    async def check(self, value: Any, ctx: CheckContext) -> str | None:
        if ctx.data.get(f"{ctx.field}_confirmation") != value:
            return f"The {ctx.field} confirmation does not match."
        return None


@dataclass(frozen=True)
class Unique(Rule):
    """
    ``unique:table,column[,exclude_id[,id_column]]``

    Fails when another row already holds the value. ``exclude_id`` skips the
    record being updated.
    """

    table: str
    column: str
    exclude_id: int | str | None = None
    id_column: str = "id"
    name: ClassVar[str] = "unique"

    async def check(self, value: Any, ctx: CheckContext) -> str | None:
        if ctx.conn is None:
            raise ConfigurationError("The unique rule needs a database connection")

        sql = f"SELECT 1 FROM {self.table} WHERE {self.column} = :value"
        params: dict[str, Any] = {"value": value}
        if self.exclude_id not in (None, ""):
            sql += f" AND {self.id_column} != :exclude_id"
            params["exclude_id"] = self.exclude_id
        sql += " LIMIT 1"

        result = await ctx.conn.execute(text(sql), params)
        if result.first() is not None:
            return f"The {ctx.field} has already been taken."
        return None


def _number(raw: str, rule: str) -> float:
    try:
        number = float(raw)
    except ValueError:
        raise ConfigurationError(f"Rule {rule!r} needs a numeric argument") from None
    return int(number) if number.is_integer() else number


def parse_rule(spec: str) -> Rule:
    """
    Parse one rule such as ``max:255`` into its rule object.

    Raises:
        ConfigurationError: For unknown rules or bad arguments
    """
    name, _, raw_args = spec.strip().partition(":")
    args = [arg.strip() for arg in raw_args.split(",")] if raw_args else []

    if name == "required":
        return Required()
    if name == "string":
        return IsString()
    if name == "integer":
        return IsInteger()
    if name == "numeric":
        return IsNumeric()
    if name == "boolean":
        return IsBoolean()
    if name == "email":
        return Email()
    if name == "confirmed":
        return Confirmed()
    if name in ("min", "max"):
        if len(args) != 1:
            raise ConfigurationError(f"Rule {spec!r} needs exactly one argument")
        limit = _number(args[0], spec)
        return MinLen(limit) if name == "min" else MaxLen(limit)
    if name == "in":
        if not args:
            raise ConfigurationError(f"Rule {spec!r} needs at least one choice")
        return In(tuple(args))
    if name == "unique":
        if len(args) < 2 or len(args) > 4:
            raise ConfigurationError(f"Rule {spec!r} needs table,column[,exclude_id[,id_column]]")
        table, column = check_identifier(args[0], "table name"), check_identifier(args[1])
        exclude_id: int | str | None = args[2] if len(args) > 2 and args[2] else None
        if isinstance(exclude_id, str) and exclude_id.isdigit():
            # Integer keys bind as int
            exclude_id = int(exclude_id)
        id_column = check_identifier(args[3]) if len(args) > 3 else "id"
        return Unique(table, column, exclude_id, id_column)

    raise ConfigurationError(f"Unknown validation rule: {name!r}")
