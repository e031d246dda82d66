"""Core components for Protean."""

from protean.core.config import Settings
from protean.core.connection import DatabaseConnection
from protean.core.types import (
    ChangelogEntry,
    EntityDefinitionInfo,
    EntityDefinitionSpec,
    FieldInfo,
    FieldKind,
    FieldSpec,
    InstanceRecord,
)

__all__ = [
    "DatabaseConnection",
    "Settings",
    "FieldKind",
    "FieldSpec",
    "EntityDefinitionSpec",
    "FieldInfo",
    "EntityDefinitionInfo",
    "InstanceRecord",
    "ChangelogEntry",
]
