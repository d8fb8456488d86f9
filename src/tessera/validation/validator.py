"""
Rule interpreter.

    rules = RuleSet.parse({
        "email": "required|email|unique:users,email",
        "password": "required|min:8|confirmed",
    })
    data = await rules.validate(payload, conn=conn)

Every failing check on every field is collected before ``ValidationFailure``
is raised.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from sqlalchemy.ext.asyncio import AsyncConnection

from tessera.core.exceptions import ValidationFailure
from tessera.validation.rules import (
    CheckContext,
    IsInteger,
    IsNumeric,
    Rule,
    Unique,
    is_blank,
    parse_rule,
)

logger = logging.getLogger(__name__)

RuleSpec = str | list[str] | tuple[str, ...]


@dataclass(frozen=True)
class FieldRules:
    field: str
    rules: tuple[Rule, ...]

    @property
    def numeric(self) -> bool:
        return any(isinstance(rule, (IsInteger, IsNumeric)) for rule in self.rules)


@dataclass(frozen=True)
class RuleSet:
    """Parsed rules for a set of fields."""

    fields: tuple[FieldRules, ...] = field(default_factory=tuple)

    @classmethod
    def parse(cls, rules: Mapping[str, RuleSpec]) -> "RuleSet":
        """
        Parse ``{field: "rule|rule:arg"}`` (or a list of rule strings).

        Raises:
            ConfigurationError: If any rule is unknown or malformed
        """
        parsed = []
        for name, spec in rules.items():
            parts = spec.split("|") if isinstance(spec, str) else list(spec)
            parsed.append(
                FieldRules(name, tuple(parse_rule(part) for part in parts if part.strip()))
            )
        return cls(tuple(parsed))

    @property
    def needs_connection(self) -> bool:
        return any(isinstance(rule, Unique) for fr in self.fields for rule in fr.rules)

    async def validate(
        self, data: Mapping[str, Any], conn: AsyncConnection | None = None
    ) -> dict[str, Any]:
        """
        Check ``data`` against every rule.

        Returns:
            The fields named in the rules that are present in ``data``

        Raises:
            ValidationFailure: With ``{field: [messages]}`` for every failure
        """
        errors: dict[str, list[str]] = {}
        snapshot = dict(data)

        for field_rules in self.fields:
            value = snapshot.get(field_rules.field)
            blank = is_blank(value)
            ctx = CheckContext(
                field=field_rules.field,
                data=snapshot,
                numeric=field_rules.numeric,
                conn=conn,
            )
            for rule in field_rules.rules:
                if blank and not rule.implicit:
                    continue
                message = await rule.check(value, ctx)
                if message is not None:
                    errors.setdefault(field_rules.field, []).append(message)

        if errors:
            logger.debug(f"Validation failed for fields: {sorted(errors)}")
            raise ValidationFailure(errors=errors)

        return {
            field_rules.field: snapshot[field_rules.field]
            for field_rules in self.fields
            if field_rules.field in snapshot
        }


async def validate(
    data: Mapping[str, Any],
    rules: Mapping[str, RuleSpec] | RuleSet,
    conn: AsyncConnection | None = None,
) -> dict[str, Any]:
    """Validate ``data`` against rules given as strings or a parsed RuleSet."""
    rule_set = rules if isinstance(rules, RuleSet) else RuleSet.parse(rules)
    return await rule_set.validate(data, conn=conn)
