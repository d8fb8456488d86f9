"""Relation descriptors used for eager loading."""

from dataclasses import dataclass
from typing import Literal

RelationKind = Literal["has_many", "belongs_to"]


@dataclass(frozen=True)
class RelationDescriptor:
    """
    Static description of a relation between two tables.

    Attributes:
        kind: ``has_many`` attaches a list, ``belongs_to`` a single record or None
        table: Related table name
        foreign_key: Column on the related table matched against ``local_key``
        local_key: Column on the primary rows whose values are collected
        hidden: Fields stripped from related records
    """

    kind: RelationKind
    table: str
    foreign_key: str
    local_key: str = "id"
    hidden: tuple[str, ...] = ()

    @property
    def many(self) -> bool:
        return self.kind == "has_many"


def has_many(table: str, foreign_key: str, local_key: str = "id", hidden: tuple[str, ...] = ()) -> RelationDescriptor:
    """
    One-to-many: related rows whose ``foreign_key`` equals our ``local_key``.

    Example:
        relations = {"posts": has_many("posts", foreign_key="user_id")}
    """
    return RelationDescriptor("has_many", table, foreign_key, local_key, hidden)


def belongs_to(table: str, foreign_key: str, owner_key: str = "id", hidden: tuple[str, ...] = ()) -> RelationDescriptor:
    """
    Many-to-one: the related row whose ``owner_key`` equals our ``foreign_key``.

    Example:
        relations = {"author": belongs_to("users", foreign_key="user_id")}
    """
    return RelationDescriptor("belongs_to", table, foreign_key=owner_key, local_key=foreign_key, hidden=hidden)
