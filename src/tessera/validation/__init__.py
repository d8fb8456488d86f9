"""Declarative input validation."""

from tessera.validation.rules import Rule, is_blank, parse_rule
from tessera.validation.validator import RuleSet, validate

__all__ = ["Rule", "RuleSet", "is_blank", "parse_rule", "validate"]
