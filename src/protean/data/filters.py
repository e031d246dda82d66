"""Filter compiler: declarative filter specs to SQLAlchemy clauses.

Scalar filters read instance attributes out of the JSON ``data`` column using
each field's storage key. Relation filters compile to ``id IN (subquery)``
over the edge table so matching happens inside the store rather than in
memory. All clauses are combined with AND by the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import ColumnElement, func, or_, select

from protean.core.types import (
    FieldKind,
    ManyToManyFilter,
    RelationFilter,
    SimpleFilter,
    parse_filters,
)
from protean.core.values import CoercionError, coerce_value
from protean.data.relations import links_subquery
from protean.exceptions import UnknownFieldError, ValidationError
from protean.schema.engine import title_field_of
from protean.schema.models import EntityDefinition, EntityInstance, FieldDefinition

logger = logging.getLogger(__name__)

# System columns available on all instances
SYSTEM_COLUMNS = {
    "id": EntityInstance.id,
    "created_at": EntityInstance.created_at,
    "updated_at": EntityInstance.updated_at,
}


def json_value(field: FieldDefinition) -> Any:
    """Expression extracting a field's value from instance data, typed by kind."""
    element = EntityInstance.data[field.column_name]
    kind = FieldKind(field.kind)
    if kind == FieldKind.NUMBER:
        return element.as_float()
    if kind == FieldKind.BOOLEAN:
        return element.as_boolean()
    # string, text, date, datetime: dates are ISO strings and compare lexically
    return element.as_string()


class FilterCompiler:
    """Compiles filter specs for one entity definition.

    Args:
        definition: Definition whose instances are filtered
        fields: Its field definitions
    """

    def __init__(self, definition: EntityDefinition, fields: Iterable[FieldDefinition]) -> None:
        self._definition = definition
        self._fields = {f.name: f for f in fields}

    def _get_field(self, name: str) -> FieldDefinition:
        if name not in self._fields:
            raise UnknownFieldError(
                name, self._definition.name, sorted([*self._fields, *SYSTEM_COLUMNS])
            )
        return self._fields[name]

    def compile(self, filters: list[Any] | None) -> list[ColumnElement[bool]]:
        """Compile filter specs (dicts or models) into boolean clauses.

        Raises:
            ValidationError: On malformed specs, unknown fields, or relation
                filters the definition does not allow
        """
        clauses: list[ColumnElement[bool]] = []
        for spec in parse_filters(filters):
            if isinstance(spec, SimpleFilter):
                clause = self._simple(spec)
            elif isinstance(spec, RelationFilter):
                clause = self._relation(spec)
            else:
                clause = self._many_to_many(spec)
            if clause is not None:
                clauses.append(clause)
        if clauses:
            logger.debug(f"Compiled {len(clauses)} filter clause(s) for '{self._definition.name}'")
        return clauses

    # === Scalar filters ===

    def _coerce(self, field: FieldDefinition, value: Any) -> Any:
        try:
            return coerce_value(field.kind, value)
        except CoercionError as e:
            raise ValidationError(
                f"Filter value for '{field.name}' does not match kind '{field.kind}': {e}",
                {field.name: str(e)},
            ) from e

    def _simple(self, spec: SimpleFilter) -> ColumnElement[bool]:
        if spec.field in SYSTEM_COLUMNS:
            return self._system(spec)

        field = self._get_field(spec.field)
        kind = FieldKind(field.kind)
        if kind.is_relation:
            raise ValidationError(
                f"'{field.name}' is a relation field. Use a 'relation' or 'many_to_many' filter.",
                {field.name: "relation field in simple filter"},
            )
        if kind == FieldKind.JSON:
            raise ValidationError(
                f"'{field.name}' holds JSON and cannot be filtered.",
                {field.name: "json fields are not filterable"},
            )

        op = spec.operator
        if op in ("like", "ilike"):
            column = EntityInstance.data[field.column_name].as_string()
            pattern = f"%{spec.value}%"
            return column.like(pattern) if op == "like" else column.ilike(pattern)

        column = json_value(field)
        if op == "in":
            values = spec.value if isinstance(spec.value, list) else [spec.value]
            return column.in_([self._coerce(field, v) for v in values])

        value = self._coerce(field, spec.value)
        return self._compare(column, op, value)

    def _system(self, spec: SimpleFilter) -> ColumnElement[bool]:
        column = SYSTEM_COLUMNS[spec.field]
        op = spec.operator

        def convert(value: Any) -> Any:
            if spec.field == "id" or isinstance(value, datetime):
                return value
            try:
                return datetime.fromisoformat(str(value))
            except ValueError as e:
                raise ValidationError(
                    f"'{spec.field}' filter needs an ISO datetime, got {value!r}",
                    {spec.field: "invalid datetime"},
                ) from e

        if op in ("like", "ilike"):
            pattern = f"%{spec.value}%"
            return column.like(pattern) if op == "like" else column.ilike(pattern)
        if op == "in":
            values = spec.value if isinstance(spec.value, list) else [spec.value]
            return column.in_([convert(v) for v in values])
        return self._compare(column, op, convert(spec.value))

    def _compare(self, column: Any, op: str, value: Any) -> ColumnElement[bool]:
        if op == "eq":
            return column.is_(None) if value is None else column == value
        elif op == "neq":
            # Instances without the attribute count as "not equal"
            if value is None:
                return column.isnot(None)
            return or_(column != value, column.is_(None))
        elif op == "gt":
            return column > value
        elif op == "gte":
            return column >= value
        elif op == "lt":
            return column < value
        elif op == "lte":
            return column <= value
        raise ValidationError(f"Unknown operator '{op}'", {"operator": op})

    # === Relation filters ===

    def _relation_field(self, name: str) -> FieldDefinition:
        field = self._get_field(name)
        if not FieldKind(field.kind).is_relation:
            raise ValidationError(
                f"'{name}' is not a relation field. Use a 'simple' filter.",
                {name: "not a relation field"},
            )
        allowed = self._definition.filter_entity_definition_ids or []
        if allowed and field.related_entity_definition_id not in allowed:
            raise ValidationError(
                f"Filtering '{self._definition.name}' by '{name}' is not enabled.",
                {name: "related definition not in filter whitelist"},
            )
        return field

    def _relation(self, spec: RelationFilter) -> ColumnElement[bool]:
        field = self._relation_field(spec.field)
        if not FieldKind(field.kind).is_single:
            raise ValidationError(
                f"'{field.name}' is {field.kind}; 'relation' filters need a single-link field. "
                "Use a 'many_to_many' filter instead.",
                {field.name: "multi-link field in relation filter"},
            )
        links = links_subquery(field.id)
        return EntityInstance.id.in_(
            select(links.c.owner_id).where(links.c.other_id == spec.value)
        )

    def _many_to_many(self, spec: ManyToManyFilter) -> ColumnElement[bool] | None:
        field = self._relation_field(spec.field)
        values = list(dict.fromkeys(spec.values))
        if not values:
            return None

        links = links_subquery(field.id)
        owners = select(links.c.owner_id).where(links.c.other_id.in_(values))
        if spec.mode == "and":
            owners = owners.group_by(links.c.owner_id).having(
                func.count(links.c.other_id.distinct()) == len(values)
            )
        return EntityInstance.id.in_(owners)

    # === Search and ordering ===

    def search(self, term: str) -> ColumnElement[bool]:
        """Case-insensitive substring match across searchable fields.

        Falls back to the title field, then to the instance id.
        """
        searchable = [
            f
            for f in self._fields.values()
            if f.searchable and not FieldKind(f.kind).is_relation
        ]
        if not searchable:
            title = title_field_of(self._fields.values())
            searchable = [title] if title else []
        pattern = f"%{term}%"
        if not searchable:
            return EntityInstance.id.ilike(pattern)
        return or_(
            *(EntityInstance.data[f.column_name].as_string().ilike(pattern) for f in searchable)
        )

    def sort_column(self, name: str) -> Any:
        """Column expression to order by: a system column or a scalar field."""
        if name in SYSTEM_COLUMNS:
            return SYSTEM_COLUMNS[name]
        field = self._get_field(name)
        if FieldKind(field.kind).is_relation:
            raise ValidationError(
                f"Cannot sort by relation field '{name}'.", {name: "relation field"}
            )
        return json_value(field)
