"""SQLAlchemy ORM models for Protean meta-tables and instance data.

Entity definitions and fields are stored as rows, so new record types need no
DDL. Instance attributes live in a single JSON column keyed by each field's
storage key; relation links live in their own edge table.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# Dialect-aware JSON type: JSONB on PostgreSQL, JSON everywhere else
JSONType = JSON().with_variant(JSONB(), "postgresql")


def generate_uuid() -> str:
    """Generate a new UUID as string."""
    return str(uuid4())


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all Protean models."""

    pass


class EntityDefinition(Base):
    """A runtime-defined record type (like Post, Tag, Author)."""

    __tablename__ = "pt_entity_definitions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    project_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # Storage key; instances reference it, so it never changes after creation
    table_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(20), default="primary", nullable=False)

    create_permission: Mapped[str] = mapped_column(String(64), default="Admin", nullable=False)
    read_permission: Mapped[str] = mapped_column(String(64), default="ALL", nullable=False)
    update_permission: Mapped[str] = mapped_column(String(64), default="Admin", nullable=False)
    delete_permission: Mapped[str] = mapped_column(String(64), default="Admin", nullable=False)

    enable_pagination: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    page_size: Mapped[int] = mapped_column(Integer, default=20, nullable=False)
    enable_filters: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    filter_entity_definition_ids: Mapped[list[str]] = mapped_column(
        JSONType, default=list, nullable=False
    )
    section_titles: Mapped[list[str | None]] = mapped_column(JSONType, default=list, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    fields: Mapped[list[FieldDefinition]] = relationship(
        "FieldDefinition",
        back_populates="entity_definition",
        foreign_keys="FieldDefinition.entity_definition_id",
        order_by="[FieldDefinition.display_index, FieldDefinition.created_at]",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("project_id", "name", name="uq_pt_definition_project_name"),
        UniqueConstraint("project_id", "table_name", name="uq_pt_definition_project_table"),
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "table_name": self.table_name,
            "description": self.description,
            "type": self.type,
            "create_permission": self.create_permission,
            "read_permission": self.read_permission,
            "update_permission": self.update_permission,
            "delete_permission": self.delete_permission,
            "enable_pagination": self.enable_pagination,
            "page_size": self.page_size,
            "enable_filters": self.enable_filters,
            "filter_entity_definition_ids": list(self.filter_entity_definition_ids or []),
            "section_titles": list(self.section_titles or []),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "created_by": self.created_by,
        }


class FieldDefinition(Base):
    """One named, typed attribute or relation slot on an entity definition."""

    __tablename__ = "pt_field_definitions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    entity_definition_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("pt_entity_definitions.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # Key inside instance data; survives renames
    column_name: Mapped[str] = mapped_column(String(255), nullable=False)
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    label: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    display_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    show_on_create: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    show_on_edit: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    show_in_table: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    searchable: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    filterable: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_title_field: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    default_value: Mapped[Any] = mapped_column(JSONType, nullable=True)

    related_entity_definition_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("pt_entity_definitions.id", ondelete="CASCADE"), nullable=True
    )
    # Paired field on the other side; plain column so either side can be created first
    relation_field_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    is_relation_source: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    entity_definition: Mapped[EntityDefinition] = relationship(
        "EntityDefinition", back_populates="fields", foreign_keys=[entity_definition_id]
    )

    __table_args__ = (
        Index("ix_pt_field_definition_name", "entity_definition_id", "name", unique=True),
        Index(
            "ix_pt_field_definition_column", "entity_definition_id", "column_name", unique=True
        ),
        Index("ix_pt_field_related", "related_entity_definition_id"),
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "entity_definition_id": self.entity_definition_id,
            "name": self.name,
            "column_name": self.column_name,
            "kind": self.kind,
            "label": self.label,
            "description": self.description,
            "display_index": self.display_index,
            "required": self.required,
            "show_on_create": self.show_on_create,
            "show_on_edit": self.show_on_edit,
            "show_in_table": self.show_in_table,
            "searchable": self.searchable,
            "filterable": self.filterable,
            "is_title_field": self.is_title_field,
            "default": self.default_value,
            "related_entity_definition_id": self.related_entity_definition_id,
            "relation_field_id": self.relation_field_id,
            "is_relation_source": self.is_relation_source,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class SchemaChangelog(Base):
    """Audit trail for all schema changes."""

    __tablename__ = "pt_schema_changelog"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False, index=True
    )
    operation: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_definition_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    definition_name: Mapped[str] = mapped_column(String(255), nullable=False)
    field_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    old_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    new_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)


# === Instance data ===


class EntityInstance(Base):
    """One record of an entity definition, attributes in a JSON column."""

    __tablename__ = "pt_entity_instances"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    entity_definition_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("pt_entity_definitions.id", ondelete="CASCADE"), nullable=False
    )
    project_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Scalar attributes only, keyed by FieldDefinition.column_name
    data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        Index("ix_pt_instances_definition", "entity_definition_id", "project_id", "created_at"),
    )


class EntityRelation(Base):
    """Directed link between two instances, owned by a relation field."""

    __tablename__ = "pt_entity_relations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    source_instance_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("pt_entity_instances.id", ondelete="CASCADE"), nullable=False
    )
    target_instance_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("pt_entity_instances.id", ondelete="CASCADE"), nullable=False
    )
    relation_field_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("pt_field_definitions.id", ondelete="CASCADE"), nullable=False
    )
    reverse_field_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    relation_type: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        UniqueConstraint(
            "source_instance_id",
            "relation_field_id",
            "target_instance_id",
            name="uq_pt_relation_edge",
        ),
        Index("ix_pt_relations_field_target", "relation_field_id", "target_instance_id"),
        Index("ix_pt_relations_target_reverse", "target_instance_id", "reverse_field_id"),
        Index("ix_pt_relations_reverse_source", "reverse_field_id", "source_instance_id"),
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "source_instance_id": self.source_instance_id,
            "target_instance_id": self.target_instance_id,
            "relation_field_id": self.relation_field_id,
            "reverse_field_id": self.reverse_field_id,
            "relation_type": self.relation_type,
            "created_at": self.created_at,
        }
