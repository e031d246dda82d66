"""Core types and specifications for Protean.

All types are JSON-serializable so callers can hand them straight to an API layer.
"""

from __future__ import annotations

import re
from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from protean.exceptions import ValidationError


class FieldKind(StrEnum):
    """Supported field kinds: scalar kinds plus the four relation kinds."""

    STRING = "string"
    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    JSON = "json"

    MANY_TO_ONE = "many_to_one"  # e.g., Post -> Author
    ONE_TO_MANY = "one_to_many"  # e.g., Author -> Posts
    ONE_TO_ONE = "one_to_one"  # e.g., User -> Profile
    MANY_TO_MANY = "many_to_many"  # e.g., Post <-> Tag

    @classmethod
    def _missing_(cls, value: object) -> FieldKind | None:
        # Accept camelCase spellings such as "manyToOne"
        if isinstance(value, str):
            snake = re.sub(r"(?<!^)(?=[A-Z])", "_", value).lower()
            for member in cls:
                if member.value == snake:
                    return member
        return None

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid kind values."""
        return [k.value for k in cls]

    @property
    def is_relation(self) -> bool:
        return self in RELATION_KINDS

    @property
    def is_single(self) -> bool:
        """True for relation kinds that hold at most one link per instance."""
        return self in (FieldKind.MANY_TO_ONE, FieldKind.ONE_TO_ONE)

    @property
    def paired_kind(self) -> FieldKind:
        """Kind of the field on the other side of a relation pair."""
        if not self.is_relation:
            raise ValueError(f"'{self.value}' is not a relation kind")
        return PAIRED_KINDS[self]


RELATION_KINDS = frozenset(
    {FieldKind.MANY_TO_ONE, FieldKind.ONE_TO_MANY, FieldKind.ONE_TO_ONE, FieldKind.MANY_TO_MANY}
)

PAIRED_KINDS: dict[FieldKind, FieldKind] = {
    FieldKind.MANY_TO_ONE: FieldKind.ONE_TO_MANY,
    FieldKind.ONE_TO_MANY: FieldKind.MANY_TO_ONE,
    FieldKind.ONE_TO_ONE: FieldKind.ONE_TO_ONE,
    FieldKind.MANY_TO_MANY: FieldKind.MANY_TO_MANY,
}


class EntityTier(StrEnum):
    """Navigation tier of an entity definition."""

    PRIMARY = "primary"
    SECONDARY = "secondary"
    TERTIARY = "tertiary"


class Action(StrEnum):
    """Actions checked by the authorizer."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    MANAGE = "manage"  # schema changes


PERMISSION_PATTERN = r"^(ALL|[A-Za-z]+(\|[A-Za-z]+)*)$"


# === Input specifications ===


class FieldSpec(BaseModel):
    """Specification for a field definition (input format)."""

    name: str = Field(..., pattern=r"^[A-Za-z_][A-Za-z0-9_]*$", description="Field name")
    kind: FieldKind = Field(default=FieldKind.STRING, description="Field kind")
    label: str | None = Field(default=None, description="Display label (defaults to name)")
    description: str | None = None
    display_index: int = 0
    required: bool = False
    show_on_create: bool = True
    show_on_edit: bool = True
    show_in_table: bool = True
    searchable: bool = False
    filterable: bool = False
    is_title_field: bool = False
    default: Any = Field(default=None, description="Default value, typed to the kind")

    # Relation kinds only
    related_entity_definition_id: str | None = None
    relation_field_id: str | None = Field(
        default=None, description="Existing field on the related type to pair with"
    )
    relation_field_name: str | None = Field(
        default=None, description="Name of the paired field to synthesize on the related type"
    )
    relation_field_label: str | None = None
    relation_field_required: bool = False
    # False leaves the field unpaired; a later field on the related type can attach to it
    create_reverse_field: bool = True


class FieldUpdate(BaseModel):
    """Partial update of a field definition. Unset attributes are left alone."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    kind: FieldKind | None = None
    label: str | None = None
    description: str | None = None
    display_index: int | None = None
    required: bool | None = None
    show_on_create: bool | None = None
    show_on_edit: bool | None = None
    show_in_table: bool | None = None
    searchable: bool | None = None
    filterable: bool | None = None
    is_title_field: bool | None = None
    default: Any = None
    related_entity_definition_id: str | None = None


class EntityDefinitionSpec(BaseModel):
    """Specification for creating an entity definition (input format)."""

    project_id: str
    name: str = Field(..., min_length=2)
    table_name: str = Field(..., pattern=r"^[a-z_]+$", description="Immutable storage key")
    description: str | None = None
    type: EntityTier = EntityTier.PRIMARY
    create_permission: str = Field(default="Admin", pattern=PERMISSION_PATTERN)
    read_permission: str = Field(default="ALL", pattern=PERMISSION_PATTERN)
    update_permission: str = Field(default="Admin", pattern=PERMISSION_PATTERN)
    delete_permission: str = Field(default="Admin", pattern=PERMISSION_PATTERN)
    enable_pagination: bool = True
    page_size: int = Field(default=20, ge=1, le=100)
    enable_filters: bool = False
    filter_entity_definition_ids: list[str] = Field(default_factory=list)
    section_titles: list[str | None] = Field(default_factory=list, max_length=4)
    fields: list[FieldSpec] = Field(default_factory=list)


class EntityDefinitionUpdate(BaseModel):
    """Partial update of an entity definition."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=2)
    # Accepted only when unchanged; the storage key is immutable
    table_name: str | None = None
    project_id: str | None = None
    description: str | None = None
    type: EntityTier | None = None
    create_permission: str | None = Field(default=None, pattern=PERMISSION_PATTERN)
    read_permission: str | None = Field(default=None, pattern=PERMISSION_PATTERN)
    update_permission: str | None = Field(default=None, pattern=PERMISSION_PATTERN)
    delete_permission: str | None = Field(default=None, pattern=PERMISSION_PATTERN)
    enable_pagination: bool | None = None
    page_size: int | None = Field(default=None, ge=1, le=100)
    enable_filters: bool | None = None
    filter_entity_definition_ids: list[str] | None = None
    section_titles: list[str | None] | None = Field(default=None, max_length=4)


class Caller(BaseModel):
    """The identity performing an operation."""

    id: str | None = None
    roles: set[str] = Field(default_factory=set)


# === Output formats ===


class FieldInfo(BaseModel):
    """Information about an existing field (output format)."""

    id: str
    entity_definition_id: str
    name: str
    column_name: str
    kind: str
    label: str
    description: str | None = None
    display_index: int
    required: bool
    show_on_create: bool
    show_on_edit: bool
    show_in_table: bool
    searchable: bool
    filterable: bool
    is_title_field: bool
    default: Any = None
    related_entity_definition_id: str | None = None
    relation_field_id: str | None = None
    is_relation_source: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def field_kind(self) -> FieldKind:
        return FieldKind(self.kind)

    @property
    def is_relation(self) -> bool:
        return self.field_kind.is_relation


class EntityDefinitionInfo(BaseModel):
    """Information about an existing entity definition (output format)."""

    id: str
    project_id: str
    name: str
    table_name: str
    description: str | None = None
    type: str
    create_permission: str
    read_permission: str
    update_permission: str
    delete_permission: str
    enable_pagination: bool
    page_size: int
    enable_filters: bool
    filter_entity_definition_ids: list[str] = Field(default_factory=list)
    section_titles: list[str | None] = Field(default_factory=list)
    fields: list[FieldInfo] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str | None = None

    def permission_for(self, action: Action | str) -> str | None:
        """Return the permission expression guarding an action, if any."""
        return {
            Action.CREATE: self.create_permission,
            Action.READ: self.read_permission,
            Action.UPDATE: self.update_permission,
            Action.DELETE: self.delete_permission,
        }.get(Action(action))


class TitleOption(BaseModel):
    """An instance reference with its human-readable title."""

    id: str
    title: str


class InstanceRecord(BaseModel):
    """An entity instance as returned by the read paths.

    ``data`` only ever holds scalar field values; relation fields appear in
    ``relations`` as id lists or ``TitleOption`` lists.
    """

    id: str
    entity_definition_id: str
    project_id: str
    data: dict[str, Any] = Field(default_factory=dict)
    relations: dict[str, list[str] | list[TitleOption]] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str | None = None


class Pagination(BaseModel):
    """Pagination metadata for list reads."""

    page: int
    limit: int
    total: int
    total_pages: int
    has_previous_page: bool
    has_next_page: bool


class InstancePage(BaseModel):
    """A page of instances plus pagination metadata."""

    data: list[InstanceRecord]
    pagination: Pagination


class ChangelogEntry(BaseModel):
    """A schema change log entry."""

    id: str
    timestamp: datetime
    operation: str
    definition_name: str
    field_name: str | None = None
    old_value: Any = None
    new_value: Any = None
    created_by: str | None = None


class WriteEvent(BaseModel):
    """Delivered to write hooks after a successful write."""

    action: Action
    entity_definition_id: str
    instance_id: str | None = None
    field_id: str | None = None
    caller_id: str | None = None


# === Filter specifications ===

FilterOperator = Literal["eq", "neq", "gt", "lt", "gte", "lte", "like", "ilike", "in"]


class SimpleFilter(BaseModel):
    """Direct predicate on a scalar attribute or system column."""

    type: Literal["simple"] = "simple"
    field: str
    operator: FilterOperator = "eq"
    value: Any


class RelationFilter(BaseModel):
    """Exact match on a single-edge relation's current target."""

    type: Literal["relation"] = "relation"
    field: str
    value: str


class ManyToManyFilter(BaseModel):
    """Set-membership filter on a relation field (OR = any, AND = all)."""

    type: Literal["many_to_many", "many-to-many"] = "many_to_many"
    field: str
    values: list[str]
    mode: Literal["or", "and"] = "or"

    @field_validator("values", mode="before")
    @classmethod
    def _split_csv(cls, v: Any) -> Any:
        # "a,b,c" as it arrives from query strings
        if isinstance(v, str):
            return [part for part in v.split(",") if part]
        return v


FilterSpec = Annotated[SimpleFilter | RelationFilter | ManyToManyFilter, Field(discriminator="type")]


_filter_adapter: TypeAdapter[FilterSpec] = TypeAdapter(FilterSpec)

M = TypeVar("M", bound=BaseModel)


def _field_errors(error: PydanticValidationError) -> dict[str, str]:
    return {".".join(str(p) for p in e["loc"]) or "__root__": e["msg"] for e in error.errors()}


def validate_input(model: type[M], data: M | dict[str, Any]) -> M:
    """Validate caller input into a model, raising Protean's ValidationError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        field_errors = _field_errors(e)
        raise ValidationError(
            f"Invalid {model.__name__}: "
            + "; ".join(f"{k}: {v}" for k, v in field_errors.items()),
            field_errors,
        ) from e


def parse_filters(filters: list[Any] | None) -> list[SimpleFilter | RelationFilter | ManyToManyFilter]:
    """Validate a list of filter specs (dicts or models)."""
    parsed = []
    for raw in filters or []:
        try:
            parsed.append(_filter_adapter.validate_python(raw))
        except PydanticValidationError as e:
            field_errors = _field_errors(e)
            raise ValidationError(
                "Invalid filter: " + "; ".join(f"{k}: {v}" for k, v in field_errors.items()),
                field_errors,
            ) from e
    return parsed
