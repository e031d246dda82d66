"""Instance storage: create, read, update and delete entity instances.

Scalar attributes are stored in the instance's JSON ``data`` under each
field's storage key. Relation values never enter ``data``; they are split off
on write and reconciled as edges through the RelationStore.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING, Any, Literal

from sqlalchemy.orm import Session

from protean.core.config import Settings
from protean.core.types import (
    FieldKind,
    InstancePage,
    InstanceRecord,
    Pagination,
    TitleOption,
)
from protean.core.values import CoercionError, coerce_value
from protean.data.filters import FilterCompiler
from protean.data.options import OptionResolver
from protean.data.relations import RelationStore
from protean.exceptions import (
    EntityDefinitionNotFoundError,
    InstanceNotFoundError,
    UnknownFieldError,
    ValidationError,
)
from protean.schema.models import EntityDefinition, EntityInstance, FieldDefinition, utc_now

if TYPE_CHECKING:
    from protean.core.connection import DatabaseConnection

logger = logging.getLogger(__name__)

# Payload keys owned by the store, silently ignored on write
RESERVED_KEYS = frozenset(
    {"id", "created_at", "updated_at", "created_by", "entity_definition_id", "project_id"}
)


def normalize_targets(field_name: str, value: Any) -> list[str]:
    """Turn a relation value into a de-duplicated list of target ids.

    Accepts None or "" (no targets), a single id, a list of ids, or the
    ``{id, title}`` options returned by titled reads.
    """
    if value is None or value == "":
        return []
    items = value if isinstance(value, list | tuple) else [value]
    ids: list[str] = []
    for item in items:
        if isinstance(item, TitleOption):
            item = item.id
        elif isinstance(item, dict) and "id" in item:
            item = item["id"]
        if not isinstance(item, str) or not item:
            raise ValidationError(
                f"'{field_name}' expects instance ids, got {item!r}",
                {field_name: "invalid target id"},
            )
        if item not in ids:
            ids.append(item)
    return ids


class _Schema:
    """A definition and its fields, indexed the ways the store needs them."""

    def __init__(self, definition: EntityDefinition, fields: Iterable[FieldDefinition]) -> None:
        self.definition = definition
        self.fields = list(fields)
        self.by_name = {f.name: f for f in self.fields}
        self.scalars = [f for f in self.fields if not FieldKind(f.kind).is_relation]
        self.relations = [f for f in self.fields if FieldKind(f.kind).is_relation]

    def relation(self, name: str) -> FieldDefinition:
        field = self.by_name.get(name)
        if field is None:
            raise UnknownFieldError(name, self.definition.name, sorted(self.by_name))
        if not FieldKind(field.kind).is_relation:
            raise ValidationError(
                f"'{name}' is not a relation field of '{self.definition.name}'.",
                {name: "not a relation field"},
            )
        return field


class InstanceStore:
    """Reads and writes instances of runtime-defined entity types."""

    def __init__(
        self,
        connection: DatabaseConnection,
        relations: RelationStore,
        options: OptionResolver,
        settings: Settings | None = None,
    ) -> None:
        self._connection = connection
        self._relations = relations
        self._options = options
        self._settings = settings or Settings()

    # === Helpers ===

    def _load_schema(self, session: Session, definition_id: str) -> _Schema:
        definition = session.get(EntityDefinition, definition_id)
        if definition is None:
            raise EntityDefinitionNotFoundError(definition_id)
        return _Schema(definition, definition.fields)

    def _load_instance(self, session: Session, instance_id: str) -> EntityInstance:
        instance = session.get(EntityInstance, instance_id)
        if instance is None:
            raise InstanceNotFoundError(instance_id)
        return instance

    def _paired(self, session: Session, field: FieldDefinition) -> FieldDefinition | None:
        if not field.relation_field_id:
            return None
        return session.get(FieldDefinition, field.relation_field_id)

    def _partition(
        self,
        schema: _Schema,
        data: dict[str, Any] | None,
        relations: dict[str, Any] | None,
    ) -> tuple[dict[str, Any], dict[str, list[str]]]:
        """Split a payload into coerced scalar values and relation targets, by field name."""
        scalars: dict[str, Any] = {}
        targets: dict[str, list[str]] = {}
        unknown: list[str] = []
        errors: dict[str, str] = {}

        for key, value in {**(data or {}), **(relations or {})}.items():
            if key in RESERVED_KEYS:
                continue
            field = schema.by_name.get(key)
            if field is None:
                unknown.append(key)
                continue
            if FieldKind(field.kind).is_relation:
                targets[key] = normalize_targets(key, value)
                continue
            try:
                scalars[key] = coerce_value(field.kind, value)
            except CoercionError as e:
                errors[key] = str(e)

        if unknown:
            if self._settings.strict_attributes:
                raise UnknownFieldError(unknown[0], schema.definition.name, sorted(schema.by_name))
            logger.warning(
                f"Dropping unknown attributes {sorted(unknown)} for '{schema.definition.name}'"
            )
        if errors:
            raise ValidationError(
                f"Invalid values for '{schema.definition.name}': "
                + "; ".join(f"{k}: {v}" for k, v in errors.items()),
                errors,
            )
        return scalars, targets

    def _check_targets(
        self,
        session: Session,
        schema: _Schema,
        targets: dict[str, list[str]],
        project_id: str,
        errors: dict[str, str],
    ) -> None:
        for name, ids in targets.items():
            field = schema.by_name[name]
            if FieldKind(field.kind).is_single and len(ids) > 1:
                errors[name] = f"{field.kind} field accepts at most one target, got {len(ids)}"
                continue
            if not ids:
                continue
            found = {
                row.id
                for row in session.query(EntityInstance.id).filter(
                    EntityInstance.id.in_(ids),
                    EntityInstance.entity_definition_id == field.related_entity_definition_id,
                    EntityInstance.project_id == project_id,
                )
            }
            missing = [i for i in ids if i not in found]
            if missing:
                errors[name] = f"no such target instance(s): {', '.join(missing)}"

    def _record(
        self,
        instance: EntityInstance,
        schema: _Schema,
        relations: dict[str, list[str]] | dict[str, list[TitleOption]] | None = None,
    ) -> InstanceRecord:
        stored = instance.data or {}
        return InstanceRecord(
            id=instance.id,
            entity_definition_id=instance.entity_definition_id,
            project_id=instance.project_id,
            data={f.name: stored[f.column_name] for f in schema.scalars if f.column_name in stored},
            relations=relations or {},
            created_at=instance.created_at,
            updated_at=instance.updated_at,
            created_by=instance.created_by,
        )

    # === Write path ===

    def create_instance(
        self,
        definition_id: str,
        project_id: str,
        data: dict[str, Any] | None = None,
        relations: dict[str, Any] | None = None,
        created_by: str | None = None,
    ) -> InstanceRecord:
        """Create an instance and its relation edges.

        Relation targets may be passed in ``data`` or ``relations``.

        Returns:
            The instance with every relation field as an id list

        Raises:
            EntityDefinitionNotFoundError: If the definition doesn't exist
            ValidationError: On unknown keys, bad values, missing required
                fields or invalid targets
        """
        with self._connection.transaction(
            "create_instance", definition_id=definition_id
        ) as session:
            schema = self._load_schema(session, definition_id)
            scalars, targets = self._partition(schema, data, relations)

            errors: dict[str, str] = {}
            stored: dict[str, Any] = {}
            for field in schema.scalars:
                value = scalars.get(field.name)
                if value is None:
                    value = field.default_value
                if value is None:
                    if field.required:
                        errors[field.name] = "required"
                    continue
                stored[field.column_name] = value
            for field in schema.relations:
                if field.required and not targets.get(field.name):
                    errors[field.name] = "required: at least one target"
            self._check_targets(session, schema, targets, project_id, errors)
            if errors:
                raise ValidationError(
                    f"Cannot create '{schema.definition.name}': "
                    + "; ".join(f"{k}: {v}" for k, v in errors.items()),
                    errors,
                )

            instance = EntityInstance(
                entity_definition_id=definition_id,
                project_id=project_id,
                data=stored,
                created_by=created_by,
            )
            session.add(instance)
            session.flush()

            for name, ids in targets.items():
                field = schema.by_name[name]
                self._relations.add_links(
                    session, field, self._paired(session, field), instance.id, ids
                )

            record = self._record(
                instance, schema, {f.name: list(targets.get(f.name, [])) for f in schema.relations}
            )

        logger.debug(
            f"Created instance {record.id} of '{schema.definition.name}' "
            f"with {sum(len(v) for v in targets.values())} link(s)"
        )
        return record

    def update_instance(
        self,
        instance_id: str,
        data: dict[str, Any] | None = None,
        relations: dict[str, Any] | None = None,
    ) -> InstanceRecord:
        """Partially update an instance.

        Scalar values are merged into the stored data; None clears a value.
        Each relation field in the payload is reconciled to exactly the given
        targets. Fields absent from the payload are untouched. The merge and
        all reconciliation commit together.

        Raises:
            InstanceNotFoundError: If the instance doesn't exist
            ValidationError: On unknown keys, bad values or invalid targets
        """
        with self._connection.transaction("update_instance", instance_id=instance_id) as session:
            instance = self._load_instance(session, instance_id)
            schema = self._load_schema(session, instance.entity_definition_id)
            scalars, targets = self._partition(schema, data, relations)

            errors: dict[str, str] = {}
            merged = dict(instance.data or {})
            for name, value in scalars.items():
                field = schema.by_name[name]
                if value is None:
                    if field.required:
                        errors[name] = "required"
                    merged.pop(field.column_name, None)
                else:
                    merged[field.column_name] = value
            for name, ids in targets.items():
                if schema.by_name[name].required and not ids:
                    errors[name] = "required: at least one target"
            self._check_targets(session, schema, targets, instance.project_id, errors)
            if errors:
                raise ValidationError(
                    f"Cannot update '{schema.definition.name}' instance {instance_id}: "
                    + "; ".join(f"{k}: {v}" for k, v in errors.items()),
                    errors,
                )

            instance.data = merged
            instance.updated_at = utc_now()

            for name, ids in targets.items():
                field = schema.by_name[name]
                self._relations.reconcile(
                    session, field, self._paired(session, field), instance.id, ids
                )
            session.flush()

            links = {
                f.name: self._relations.get_links(session, f, instance.id) for f in schema.relations
            }
            record = self._record(instance, schema, links)

        return record

    def delete_instance(self, instance_id: str) -> bool:
        """Delete an instance and every edge touching it, edges first.

        Raises:
            InstanceNotFoundError: If the instance doesn't exist
        """
        with self._connection.transaction("delete_instance", instance_id=instance_id) as session:
            instance = self._load_instance(session, instance_id)
            edges = self._relations.delete_for_instance(session, instance_id)
            session.delete(instance)

        logger.debug(f"Deleted instance {instance_id} and {edges} edge(s)")
        return True

    # === Read path ===

    def get_definition_id(self, instance_id: str) -> str:
        """Id of the definition an instance belongs to."""
        with self._connection.get_session() as session:
            return self._load_instance(session, instance_id).entity_definition_id

    def _resolve(
        self,
        schema: _Schema,
        links: dict[str, dict[str, list[str]]],
        as_ids: bool,
    ) -> dict[str, dict[str, list[str]] | dict[str, list[TitleOption]]]:
        """Turn per-field link maps into id lists or titled options.

        Titles are fetched once per related definition for the whole batch.
        """
        if as_ids:
            return links  # type: ignore[return-value]

        wanted: dict[str, list[str]] = {}
        for name, per_owner in links.items():
            related = schema.by_name[name].related_entity_definition_id
            bucket = wanted.setdefault(related, [])
            for ids in per_owner.values():
                bucket.extend(ids)

        titles: dict[str, dict[str, TitleOption]] = {}
        for related_id, ids in wanted.items():
            titles[related_id] = {o.id: o for o in self._options.resolve_titles(related_id, ids)}

        resolved: dict[str, dict[str, list[TitleOption]]] = {}
        for name, per_owner in links.items():
            lookup = titles[schema.by_name[name].related_entity_definition_id]
            resolved[name] = {
                owner: [lookup.get(i, TitleOption(id=i, title=i)) for i in ids]
                for owner, ids in per_owner.items()
            }
        return resolved  # type: ignore[return-value]

    def get_instance_by_id(
        self,
        instance_id: str,
        relation_field_names: Sequence[str] | None = None,
        relations_as_ids: bool = False,
    ) -> InstanceRecord:
        """Load one instance with the links of the requested relation fields.

        Args:
            instance_id: Instance to load
            relation_field_names: Relation fields to include (None means all)
            relations_as_ids: Return target id lists instead of ``{id, title}``

        Raises:
            InstanceNotFoundError: If the instance doesn't exist
            ValidationError: If a name is not a relation field
        """
        with self._connection.get_session() as session:
            instance = self._load_instance(session, instance_id)
            schema = self._load_schema(session, instance.entity_definition_id)
            if relation_field_names is None:
                fields = schema.relations
            else:
                fields = [schema.relation(name) for name in relation_field_names]
            links = {
                f.name: {instance.id: self._relations.get_links(session, f, instance.id)}
                for f in fields
            }

        resolved = self._resolve(schema, links, relations_as_ids)
        return self._record(
            instance, schema, {name: per_owner[instance.id] for name, per_owner in resolved.items()}
        )

    def get_instances(
        self,
        definition_id: str,
        project_id: str,
        limit: int | None = None,
        offset: int = 0,
        include_relations: Sequence[str] | None = None,
        relations_as_ids: bool = False,
        filters: list[Any] | None = None,
        search: str | None = None,
        sort_by: str | None = None,
        sort_order: Literal["asc", "desc"] = "desc",
    ) -> InstancePage:
        """List instances of a definition, one page at a time.

        Filters are ANDed; ``search`` is a case-insensitive substring match
        ORed across searchable fields. Ordering defaults to newest first and
        always ends with the id so pages never overlap.

        Args:
            definition_id: Definition to list
            project_id: Project scope
            limit: Page size (defaults to the definition's page_size)
            offset: Instances to skip
            include_relations: Relation fields to load for every instance
            relations_as_ids: Return target id lists instead of ``{id, title}``
            filters: Filter specs (see FilterCompiler)
            search: Substring to search for
            sort_by: Scalar field name or created_at/updated_at/id
            sort_order: "asc" or "desc"

        Raises:
            EntityDefinitionNotFoundError: If the definition doesn't exist
            ValidationError: On bad paging values, filters or field names
        """
        if sort_order not in ("asc", "desc"):
            raise ValidationError(
                f"sort_order must be 'asc' or 'desc', got {sort_order!r}",
                {"sort_order": "invalid"},
            )
        if offset < 0:
            raise ValidationError("offset must be >= 0", {"offset": "negative"})

        with self._connection.get_session() as session:
            schema = self._load_schema(session, definition_id)
            page_size = limit if limit is not None else schema.definition.page_size
            if page_size is None:
                page_size = self._settings.default_page_size
            if not 1 <= page_size <= self._settings.max_page_size:
                raise ValidationError(
                    f"limit must be between 1 and {self._settings.max_page_size}, got {page_size}",
                    {"limit": "out of range"},
                )
            include = [schema.relation(name) for name in include_relations or []]

            compiler = FilterCompiler(schema.definition, schema.fields)
            query = session.query(EntityInstance).filter(
                EntityInstance.entity_definition_id == definition_id,
                EntityInstance.project_id == project_id,
                *compiler.compile(filters),
            )
            if search:
                query = query.filter(compiler.search(search))

            total = query.count()

            column = compiler.sort_column(sort_by or "created_at")
            if sort_order == "desc":
                query = query.order_by(column.desc(), EntityInstance.id.desc())
            else:
                query = query.order_by(column.asc(), EntityInstance.id.asc())
            instances = query.offset(offset).limit(page_size).all()

            ids = [i.id for i in instances]
            links = {f.name: self._relations.get_links_batch(session, f, ids) for f in include}

        resolved = self._resolve(schema, links, relations_as_ids)
        records = [
            self._record(
                instance,
                schema,
                {name: per_owner.get(instance.id, []) for name, per_owner in resolved.items()},
            )
            for instance in instances
        ]
        pagination = Pagination(
            page=offset // page_size + 1,
            limit=page_size,
            total=total,
            total_pages=math.ceil(total / page_size),
            has_previous_page=offset > 0,
            has_next_page=offset + len(records) < total,
        )
        return InstancePage(data=records, pagination=pagination)
