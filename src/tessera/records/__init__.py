"""Record mapping data layer."""

from tessera.records.audit import AuditPolicy
from tessera.records.mapper import RecordMapper, check_identifier
from tessera.records.relations import RelationDescriptor, belongs_to, has_many

__all__ = [
    "AuditPolicy",
    "RecordMapper",
    "RelationDescriptor",
    "belongs_to",
    "check_identifier",
    "has_many",
]
