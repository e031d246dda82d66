"""Protean - runtime entity store with schema-as-data.

Entity types, their fields and the relations between them are defined at
runtime and stored as rows, so new record types need no migrations.
Instances keep scalar attributes in a JSON column and relations as edges.

Example:
    from protean import ProteanDB

    db = ProteanDB("sqlite:///./blog.db")

    tag = db.create_entity_definition(
        {
            "project_id": "blog",
            "name": "Tag",
            "table_name": "tags",
            "fields": [{"name": "label", "kind": "string", "is_title_field": True}],
        }
    )
    post = db.create_entity_definition(
        {"project_id": "blog", "name": "Post", "table_name": "posts",
         "fields": [{"name": "title", "kind": "string", "required": True}]}
    )
    db.create_field(
        post.id,
        {"name": "tags", "kind": "many_to_many", "related_entity_definition_id": tag.id},
    )

    news = db.create_instance(tag.id, {"label": "news"})
    hello = db.create_instance(post.id, {"title": "Hello", "tags": [news.id]})

    # Posts tagged "news", tags expanded to {id, title}
    page = db.get_instances(
        post.id,
        include_relations=["tags"],
        filters=[{"type": "many_to_many", "field": "tags", "values": [news.id]}],
    )
"""

from protean.core.config import Settings
from protean.core.engine import ProteanDB
from protean.core.permissions import AllowAllAuthorizer, Authorizer, RolePermissionAuthorizer
from protean.core.types import (
    Action,
    Caller,
    ChangelogEntry,
    EntityDefinitionInfo,
    EntityDefinitionSpec,
    EntityDefinitionUpdate,
    EntityTier,
    FieldInfo,
    FieldKind,
    FieldSpec,
    FieldUpdate,
    FilterSpec,
    InstancePage,
    InstanceRecord,
    ManyToManyFilter,
    Pagination,
    RelationFilter,
    SimpleFilter,
    TitleOption,
    WriteEvent,
)
from protean.data.options import TitleCache
from protean.exceptions import (
    ConflictError,
    EntityDefinitionAlreadyExistsError,
    EntityDefinitionNotFoundError,
    EntityHasInstancesError,
    FieldAlreadyExistsError,
    FieldNotFoundError,
    InstanceNotFoundError,
    InvalidFieldKindError,
    NotFoundError,
    PermissionDeniedError,
    ProteanError,
    StoreError,
    UnknownFieldError,
    ValidationError,
)

__version__ = "0.1.0"

__all__ = [
    # Main classes
    "ProteanDB",
    "Settings",
    "TitleCache",
    # Authorization
    "Authorizer",
    "RolePermissionAuthorizer",
    "AllowAllAuthorizer",
    "Action",
    "Caller",
    # Types
    "FieldKind",
    "EntityTier",
    "FieldSpec",
    "FieldUpdate",
    "EntityDefinitionSpec",
    "EntityDefinitionUpdate",
    "FieldInfo",
    "EntityDefinitionInfo",
    "InstanceRecord",
    "InstancePage",
    "Pagination",
    "TitleOption",
    "ChangelogEntry",
    "WriteEvent",
    # Filters
    "FilterSpec",
    "SimpleFilter",
    "RelationFilter",
    "ManyToManyFilter",
    # Exceptions
    "ProteanError",
    "ValidationError",
    "InvalidFieldKindError",
    "UnknownFieldError",
    "NotFoundError",
    "EntityDefinitionNotFoundError",
    "FieldNotFoundError",
    "InstanceNotFoundError",
    "ConflictError",
    "EntityDefinitionAlreadyExistsError",
    "FieldAlreadyExistsError",
    "EntityHasInstancesError",
    "PermissionDeniedError",
    "StoreError",
]
