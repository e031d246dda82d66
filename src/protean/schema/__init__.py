"""Schema management for Protean."""

from protean.schema.engine import SchemaEngine
from protean.schema.models import (
    EntityDefinition,
    EntityInstance,
    EntityRelation,
    FieldDefinition,
    SchemaChangelog,
)
from protean.schema.pairing import check_pair

__all__ = [
    "SchemaEngine",
    "EntityDefinition",
    "FieldDefinition",
    "EntityInstance",
    "EntityRelation",
    "SchemaChangelog",
    "check_pair",
]
