"""Schema Engine for managing entity definitions and their fields."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session

from protean.core.types import (
    ChangelogEntry,
    EntityDefinitionInfo,
    EntityDefinitionSpec,
    EntityDefinitionUpdate,
    FieldInfo,
    FieldKind,
    FieldSpec,
    FieldUpdate,
    validate_input,
)
from protean.core.values import CoercionError, coerce_value
from protean.exceptions import (
    EntityDefinitionAlreadyExistsError,
    EntityDefinitionNotFoundError,
    EntityHasInstancesError,
    FieldAlreadyExistsError,
    FieldNotFoundError,
    InvalidFieldKindError,
    ValidationError,
)
from protean.schema.models import (
    Base,
    EntityDefinition,
    EntityInstance,
    EntityRelation,
    FieldDefinition,
    SchemaChangelog,
)
from protean.schema.pairing import check_pair

if TYPE_CHECKING:
    from protean.core.connection import DatabaseConnection

logger = logging.getLogger(__name__)


def field_info(field: FieldDefinition) -> FieldInfo:
    return FieldInfo(**field.to_dict())


def definition_info(
    definition: EntityDefinition, fields: Iterable[FieldDefinition] | None = None
) -> EntityDefinitionInfo:
    return EntityDefinitionInfo(
        **definition.to_dict(),
        fields=[field_info(f) for f in (fields or [])],
    )


def title_field_of(fields: Iterable[FieldDefinition]) -> FieldDefinition | None:
    """Pick the title field: the flagged one, else the first scalar by display order."""
    ordered = sorted(fields, key=lambda f: (f.display_index, f.created_at))
    for field in ordered:
        if field.is_title_field:
            return field
    for field in ordered:
        if not FieldKind(field.kind).is_relation:
            return field
    return None


class SchemaEngine:
    """Manages schema definitions stored in meta-tables.

    This engine handles CRUD operations on EntityDefinition and FieldDefinition
    rows, including the paired fields that make up a relation. Instance data is
    touched only where a schema change requires it (cascades, dropped keys).
    """

    def __init__(
        self,
        connection: DatabaseConnection,
        on_fields_changed: Callable[[str], None] | None = None,
    ) -> None:
        """Initialize the schema engine.

        Args:
            connection: Database connection to use
            on_fields_changed: Called with a definition id after its fields change
        """
        self._connection = connection
        self._on_fields_changed = on_fields_changed
        self._initialized = False

    def initialize(self) -> None:
        """Create meta-tables if they don't exist."""
        if not self._initialized:
            Base.metadata.create_all(self._connection.engine)
            self._initialized = True

    def _get_session(self) -> Session:
        """Get a new database session."""
        return self._connection.get_session()

    def _validate_field_kind(self, kind: str) -> FieldKind:
        """Validate and return a FieldKind enum value."""
        try:
            return FieldKind(kind)
        except ValueError as e:
            raise InvalidFieldKindError(kind, FieldKind.values()) from e

    def _log_change(
        self,
        session: Session,
        operation: str,
        definition: EntityDefinition,
        field_name: str | None = None,
        old_value: Any = None,
        new_value: Any = None,
        created_by: str | None = None,
    ) -> None:
        """Log a schema change to the changelog."""
        entry = SchemaChangelog(
            operation=operation,
            entity_definition_id=definition.id,
            definition_name=definition.name,
            field_name=field_name,
            old_value=json.dumps(old_value, default=str) if old_value is not None else None,
            new_value=json.dumps(new_value, default=str) if new_value is not None else None,
            created_by=created_by,
        )
        session.add(entry)

    def _fields_changed(self, *definition_ids: str) -> None:
        if self._on_fields_changed is None:
            return
        for definition_id in dict.fromkeys(definition_ids):
            self._on_fields_changed(definition_id)

    def _load_definition(self, session: Session, definition_id: str) -> EntityDefinition:
        definition = session.get(EntityDefinition, definition_id)
        if definition is None:
            raise EntityDefinitionNotFoundError(definition_id)
        return definition

    def _load_field(self, session: Session, field_id: str) -> FieldDefinition:
        field = session.get(FieldDefinition, field_id)
        if field is None:
            raise FieldNotFoundError(field_id)
        return field

    def _check_definition_unique(
        self,
        session: Session,
        project_id: str,
        attribute: str,
        value: str,
        exclude_id: str | None = None,
    ) -> None:
        query = session.query(EntityDefinition.id).filter(
            EntityDefinition.project_id == project_id,
            getattr(EntityDefinition, attribute) == value,
        )
        if exclude_id is not None:
            query = query.filter(EntityDefinition.id != exclude_id)
        if query.first() is not None:
            raise EntityDefinitionAlreadyExistsError(attribute, value, project_id)

    def _free_column_name(self, session: Session, definition_id: str, base: str) -> str:
        """Storage key for a new field: the name, suffixed when a renamed field holds it."""
        taken = {
            row[0]
            for row in session.query(FieldDefinition.column_name).filter(
                FieldDefinition.entity_definition_id == definition_id
            )
        }
        column_name = base
        suffix = 2
        while column_name in taken:
            column_name = f"{base}_{suffix}"
            suffix += 1
        return column_name

    def _check_field_name_free(
        self,
        session: Session,
        definition: EntityDefinition,
        name: str,
        exclude_id: str | None = None,
    ) -> None:
        query = session.query(FieldDefinition.id).filter(
            FieldDefinition.entity_definition_id == definition.id,
            FieldDefinition.name == name,
        )
        if exclude_id is not None:
            query = query.filter(FieldDefinition.id != exclude_id)
        if query.first() is not None:
            raise FieldAlreadyExistsError(name, definition.name)

    def _coerce_default(self, name: str, kind: FieldKind, default: Any) -> Any:
        if default is None:
            return None
        if kind.is_relation:
            raise ValidationError(
                f"Relation field '{name}' cannot have a default value.",
                {name: "relation fields have no default"},
            )
        try:
            return coerce_value(kind, default)
        except CoercionError as e:
            raise ValidationError(
                f"Default for '{name}' does not match kind '{kind.value}': {e}",
                {name: str(e)},
            ) from e

    def _clear_title_flag(self, session: Session, definition_id: str, keep_id: str) -> None:
        session.execute(
            update(FieldDefinition)
            .where(
                FieldDefinition.entity_definition_id == definition_id,
                FieldDefinition.id != keep_id,
                FieldDefinition.is_title_field.is_(True),
            )
            .values(is_title_field=False)
        )

    # === Entity definitions ===

    def list_entity_definitions(self, project_id: str | None = None) -> list[EntityDefinitionInfo]:
        """List entity definitions, optionally limited to one project.

        Returns:
            Definitions (with fields) ordered by name
        """
        with self._get_session() as session:
            query = session.query(EntityDefinition)
            if project_id is not None:
                query = query.filter(EntityDefinition.project_id == project_id)
            return [definition_info(d, d.fields) for d in query.order_by(EntityDefinition.name)]

    def get_entity_definition(self, definition_id: str) -> EntityDefinitionInfo:
        """Get an entity definition without its fields.

        Raises:
            EntityDefinitionNotFoundError: If the definition doesn't exist
        """
        with self._get_session() as session:
            return definition_info(self._load_definition(session, definition_id))

    def get_entity_definition_with_fields(self, definition_id: str) -> EntityDefinitionInfo:
        """Get an entity definition with its fields sorted by display index.

        Raises:
            EntityDefinitionNotFoundError: If the definition doesn't exist
        """
        with self._get_session() as session:
            definition = self._load_definition(session, definition_id)
            return definition_info(definition, definition.fields)

    def find_entity_definition(self, project_id: str, name: str) -> EntityDefinitionInfo | None:
        """Look up a definition by name or storage key within a project."""
        with self._get_session() as session:
            definition = (
                session.query(EntityDefinition)
                .filter(
                    EntityDefinition.project_id == project_id,
                    or_(EntityDefinition.name == name, EntityDefinition.table_name == name),
                )
                .first()
            )
            return definition_info(definition, definition.fields) if definition else None

    def create_entity_definition(
        self,
        spec: EntityDefinitionSpec | dict[str, Any],
        created_by: str | None = None,
    ) -> EntityDefinitionInfo:
        """Create a new entity definition, with any scalar fields it lists.

        Relation fields need the related definition to exist, so they are
        created afterwards through create_field().

        Args:
            spec: Definition specification
            created_by: Who is creating this definition

        Returns:
            The created definition with its fields

        Raises:
            ValidationError: If the spec is invalid
            EntityDefinitionAlreadyExistsError: If the name or storage key is taken
        """
        spec = validate_input(EntityDefinitionSpec, spec)
        relation_specs = [f for f in spec.fields if f.kind.is_relation]
        if relation_specs:
            raise ValidationError(
                "Relation fields cannot be declared inline. "
                "Create the definition first, then call create_field().",
                {f.name: "relation field declared inline" for f in relation_specs},
            )

        with self._connection.transaction("create_entity_definition", name=spec.name) as session:
            self._check_definition_unique(session, spec.project_id, "name", spec.name)
            self._check_definition_unique(session, spec.project_id, "table_name", spec.table_name)

            definition = EntityDefinition(
                project_id=spec.project_id,
                name=spec.name,
                table_name=spec.table_name,
                description=spec.description,
                type=spec.type.value,
                create_permission=spec.create_permission,
                read_permission=spec.read_permission,
                update_permission=spec.update_permission,
                delete_permission=spec.delete_permission,
                enable_pagination=spec.enable_pagination,
                page_size=spec.page_size,
                enable_filters=spec.enable_filters,
                filter_entity_definition_ids=list(spec.filter_entity_definition_ids),
                section_titles=list(spec.section_titles),
                created_by=created_by,
            )
            session.add(definition)
            session.flush()

            seen: set[str] = set()
            fields: list[FieldDefinition] = []
            for field_spec in spec.fields:
                if field_spec.name in seen:
                    raise FieldAlreadyExistsError(field_spec.name, definition.name)
                seen.add(field_spec.name)
                field = self._new_field(definition, field_spec)
                session.add(field)
                fields.append(field)
            session.flush()

            title = next((f for f in fields if f.is_title_field), None)
            if title is not None:
                self._clear_title_flag(session, definition.id, title.id)

            self._log_change(
                session,
                "create_entity_definition",
                definition,
                new_value={
                    "table_name": definition.table_name,
                    "fields": [f.name for f in fields],
                },
                created_by=created_by,
            )
            info = definition_info(definition, fields)

        logger.info(f"Created entity definition '{info.name}' ({info.id}) in '{info.project_id}'")
        return info

    def update_entity_definition(
        self,
        definition_id: str,
        changes: EntityDefinitionUpdate | dict[str, Any],
        updated_by: str | None = None,
    ) -> EntityDefinitionInfo:
        """Update attributes of an entity definition.

        Raises:
            EntityDefinitionNotFoundError: If the definition doesn't exist
            ValidationError: On an attempt to change the storage key or project
            EntityDefinitionAlreadyExistsError: If the new name is taken
        """
        update_spec = validate_input(EntityDefinitionUpdate, changes)
        values = update_spec.model_dump(exclude_unset=True)

        with self._connection.transaction(
            "update_entity_definition", definition_id=definition_id
        ) as session:
            definition = self._load_definition(session, definition_id)

            for immutable in ("table_name", "project_id"):
                if immutable in values and values[immutable] != getattr(definition, immutable):
                    raise ValidationError(
                        f"'{immutable}' of '{definition.name}' cannot be changed after creation.",
                        {immutable: "immutable"},
                    )
                values.pop(immutable, None)

            if values.get("name") and values["name"] != definition.name:
                self._check_definition_unique(
                    session, definition.project_id, "name", values["name"], definition.id
                )

            old: dict[str, Any] = {}
            for key, value in values.items():
                if value is None and key not in ("description",):
                    continue
                if key == "type":
                    value = value.value
                old[key] = getattr(definition, key)
                setattr(definition, key, value)

            self._log_change(
                session,
                "update_entity_definition",
                definition,
                old_value=old,
                new_value={k: getattr(definition, k) for k in old},
                created_by=updated_by,
            )
            session.flush()
            info = definition_info(definition, definition.fields)

        logger.info(f"Updated entity definition '{info.name}': {sorted(old)}")
        return info

    def delete_entity_definition(
        self,
        definition_id: str,
        cascade: bool = False,
        deleted_by: str | None = None,
    ) -> bool:
        """Delete an entity definition.

        Relation fields on other definitions that point here are removed along
        with their pairs. With instances present the call fails unless
        ``cascade`` is set, in which case edges go first, then instances, then
        fields and the definition, all in one transaction.

        Raises:
            EntityDefinitionNotFoundError: If the definition doesn't exist
            EntityHasInstancesError: If instances exist and cascade is False
        """
        with self._connection.transaction(
            "delete_entity_definition", definition_id=definition_id, cascade=cascade
        ) as session:
            definition = self._load_definition(session, definition_id)

            instance_count = (
                session.query(func.count(EntityInstance.id))
                .filter(EntityInstance.entity_definition_id == definition_id)
                .scalar()
            ) or 0
            if instance_count and not cascade:
                raise EntityHasInstancesError(definition.name, instance_count)

            instance_ids = select(EntityInstance.id).where(
                EntityInstance.entity_definition_id == definition_id
            )
            edges = session.execute(
                delete(EntityRelation).where(
                    or_(
                        EntityRelation.source_instance_id.in_(instance_ids),
                        EntityRelation.target_instance_id.in_(instance_ids),
                    )
                )
            ).rowcount
            session.execute(
                delete(EntityInstance).where(EntityInstance.entity_definition_id == definition_id)
            )

            # Own fields plus relation fields elsewhere that point at this definition
            doomed = (
                session.query(FieldDefinition)
                .filter(
                    or_(
                        FieldDefinition.entity_definition_id == definition_id,
                        FieldDefinition.related_entity_definition_id == definition_id,
                    )
                )
                .all()
            )
            doomed_ids = [f.id for f in doomed]
            touched = {f.entity_definition_id for f in doomed} - {definition_id}
            if doomed_ids:
                session.execute(
                    delete(EntityRelation).where(
                        or_(
                            EntityRelation.relation_field_id.in_(doomed_ids),
                            EntityRelation.reverse_field_id.in_(doomed_ids),
                        )
                    )
                )
                session.execute(delete(FieldDefinition).where(FieldDefinition.id.in_(doomed_ids)))

            self._log_change(
                session,
                "delete_entity_definition",
                definition,
                old_value={
                    "table_name": definition.table_name,
                    "instances": instance_count,
                    "edges": edges,
                },
                created_by=deleted_by,
            )
            name = definition.name
            session.execute(delete(EntityDefinition).where(EntityDefinition.id == definition_id))

        logger.info(
            f"Deleted entity definition '{name}' ({instance_count} instances, {edges} edges)"
        )
        self._fields_changed(definition_id, *touched)
        return True

    # === Fields ===

    def _new_field(
        self,
        definition: EntityDefinition,
        spec: FieldSpec,
        is_relation_source: bool = False,
        column_name: str | None = None,
    ) -> FieldDefinition:
        kind = self._validate_field_kind(spec.kind)
        return FieldDefinition(
            entity_definition_id=definition.id,
            name=spec.name,
            column_name=column_name or spec.name,
            kind=kind.value,
            label=spec.label or spec.name,
            description=spec.description,
            display_index=spec.display_index,
            required=spec.required,
            show_on_create=spec.show_on_create,
            show_on_edit=spec.show_on_edit,
            show_in_table=spec.show_in_table,
            searchable=spec.searchable,
            filterable=spec.filterable,
            is_title_field=spec.is_title_field and not kind.is_relation,
            default_value=self._coerce_default(spec.name, kind, spec.default),
            related_entity_definition_id=spec.related_entity_definition_id,
            is_relation_source=is_relation_source,
        )

    def get_field(self, field_id: str) -> FieldInfo:
        """Get a field by id.

        Raises:
            FieldNotFoundError: If the field doesn't exist
        """
        with self._get_session() as session:
            return field_info(self._load_field(session, field_id))

    def get_fields(self, definition_id: str) -> list[FieldInfo]:
        """Get all fields of a definition, sorted by display index."""
        with self._get_session() as session:
            definition = self._load_definition(session, definition_id)
            return [field_info(f) for f in definition.fields]

    def get_title_field(self, definition_id: str) -> FieldInfo | None:
        """Get the field used as the human-readable title.

        Returns:
            The flagged title field, else the first scalar field, else None
            (callers then use the instance id).
        """
        with self._get_session() as session:
            definition = self._load_definition(session, definition_id)
            title = title_field_of(definition.fields)
            return field_info(title) if title else None

    def create_field(
        self,
        definition_id: str,
        spec: FieldSpec | dict[str, Any],
        created_by: str | None = None,
    ) -> FieldInfo:
        """Add a field to an entity definition.

        For relation kinds the paired field on the related definition is
        attached (``relation_field_id``) or synthesized (``relation_field_name``,
        defaulting to this definition's storage key) in the same transaction.

        Returns:
            The created field

        Raises:
            EntityDefinitionNotFoundError: If the definition doesn't exist
            FieldAlreadyExistsError: If the name is taken on either side
            ValidationError: If the relation cannot be paired
        """
        spec = validate_input(FieldSpec, spec)

        with self._connection.transaction(
            "create_field", definition_id=definition_id, field=spec.name
        ) as session:
            definition = self._load_definition(session, definition_id)
            self._check_field_name_free(session, definition, spec.name)

            if spec.kind.is_relation:
                field, paired = self._create_relation_field(session, definition, spec)
            else:
                field = self._new_field(
                    definition,
                    spec,
                    column_name=self._free_column_name(session, definition.id, spec.name),
                )
                session.add(field)
                session.flush()
                paired = None

            if field.is_title_field:
                self._clear_title_flag(session, definition.id, field.id)

            self._log_change(
                session,
                "create_field",
                definition,
                field_name=field.name,
                new_value={
                    "kind": field.kind,
                    "related_entity_definition_id": field.related_entity_definition_id,
                    "relation_field_id": field.relation_field_id,
                },
                created_by=created_by,
            )
            info = field_info(field)
            touched = [definition.id]
            if paired is not None:
                touched.append(paired.entity_definition_id)

        logger.info(f"Created field '{info.name}' ({info.kind}) on '{definition_id}'")
        self._fields_changed(*touched)
        return info

    def _create_relation_field(
        self, session: Session, definition: EntityDefinition, spec: FieldSpec
    ) -> tuple[FieldDefinition, FieldDefinition | None]:
        if not spec.related_entity_definition_id:
            raise ValidationError(
                f"Relation field '{spec.name}' needs related_entity_definition_id.",
                {spec.name: "missing related_entity_definition_id"},
            )
        related = self._load_definition(session, spec.related_entity_definition_id)
        if related.project_id != definition.project_id:
            raise ValidationError(
                f"'{definition.name}' and '{related.name}' belong to different projects.",
                {spec.name: "related definition is in another project"},
            )

        if spec.relation_field_id:
            paired = self._load_field(session, spec.relation_field_id)
            self._check_attachable(spec, definition, related, paired)
            field = self._new_field(
                definition,
                spec,
                is_relation_source=not paired.is_relation_source,
                column_name=self._free_column_name(session, definition.id, spec.name),
            )
            session.add(field)
            session.flush()
            field.relation_field_id = paired.id
            paired.relation_field_id = field.id
            # Edges written while the pair was incomplete now read from both sides
            session.execute(
                update(EntityRelation)
                .where(EntityRelation.relation_field_id == paired.id)
                .values(reverse_field_id=field.id)
            )
            session.flush()
            check_pair(field, paired)
            logger.debug(f"Attached '{spec.name}' to existing field '{paired.name}'")
            return field, paired

        field = self._new_field(
            definition,
            spec,
            is_relation_source=True,
            column_name=self._free_column_name(session, definition.id, spec.name),
        )
        session.add(field)
        session.flush()
        if not spec.create_reverse_field:
            return field, None

        reverse_name = spec.relation_field_name or definition.table_name
        self._check_field_name_free(session, related, reverse_name)
        paired = FieldDefinition(
            entity_definition_id=related.id,
            name=reverse_name,
            column_name=self._free_column_name(session, related.id, reverse_name),
            kind=spec.kind.paired_kind.value,
            label=spec.relation_field_label or definition.name,
            display_index=len(related.fields),
            required=spec.relation_field_required,
            related_entity_definition_id=definition.id,
            relation_field_id=field.id,
            is_relation_source=False,
        )
        session.add(paired)
        session.flush()
        field.relation_field_id = paired.id
        session.flush()
        check_pair(field, paired)
        self._log_change(
            session,
            "create_field",
            related,
            field_name=paired.name,
            new_value={"kind": paired.kind, "relation_field_id": field.id},
        )
        logger.debug(f"Synthesized reverse field '{related.name}.{paired.name}' ({paired.kind})")
        return field, paired

    def _check_attachable(
        self,
        spec: FieldSpec,
        definition: EntityDefinition,
        related: EntityDefinition,
        paired: FieldDefinition,
    ) -> None:
        problems: dict[str, str] = {}
        if paired.entity_definition_id != related.id:
            problems["relation_field_id"] = f"field '{paired.name}' is not on '{related.name}'"
        elif FieldKind(paired.kind) != spec.kind.paired_kind:
            problems["relation_field_id"] = (
                f"'{paired.name}' is {paired.kind}; {spec.kind.value} pairs with "
                f"{spec.kind.paired_kind.value}"
            )
        elif paired.relation_field_id is not None:
            problems["relation_field_id"] = f"'{paired.name}' is already paired"
        elif paired.related_entity_definition_id != definition.id:
            problems["relation_field_id"] = f"'{paired.name}' does not point at '{definition.name}'"
        if problems:
            raise ValidationError(
                f"Cannot pair '{spec.name}' with field '{spec.relation_field_id}': "
                + problems["relation_field_id"],
                problems,
            )

    def update_field(
        self,
        field_id: str,
        changes: FieldUpdate | dict[str, Any],
        updated_by: str | None = None,
    ) -> FieldInfo:
        """Update a field: rename, flags, label, display index or default.

        The storage key never changes, so a rename keeps existing data. Kind
        changes are allowed between scalar kinds only; existing values are
        not migrated.

        Raises:
            FieldNotFoundError: If the field doesn't exist
            FieldAlreadyExistsError: If the new name is taken
            ValidationError: On relation kind or target changes
        """
        update_spec = validate_input(FieldUpdate, changes)
        values = update_spec.model_dump(exclude_unset=True)

        with self._connection.transaction("update_field", field_id=field_id) as session:
            field = self._load_field(session, field_id)
            definition = self._load_definition(session, field.entity_definition_id)
            current_kind = FieldKind(field.kind)
            old: dict[str, Any] = {}

            new_kind = values.pop("kind", None)
            if new_kind is not None and new_kind != current_kind:
                if current_kind.is_relation or new_kind.is_relation:
                    raise ValidationError(
                        f"Cannot change '{field.name}' from {current_kind.value} to "
                        f"{new_kind.value}. Delete the field and create a new one.",
                        {"kind": "relation kinds cannot change"},
                    )
                old["kind"] = field.kind
                field.kind = new_kind.value
                current_kind = new_kind

            if "related_entity_definition_id" in values:
                target = values.pop("related_entity_definition_id")
                if target != field.related_entity_definition_id:
                    raise ValidationError(
                        f"Cannot retarget relation '{field.name}'. "
                        "Delete the field and create a new one.",
                        {"related_entity_definition_id": "immutable"},
                    )

            if values.get("name") and values["name"] != field.name:
                self._check_field_name_free(session, definition, values["name"], field.id)

            if "default" in values:
                old["default"] = field.default_value
                field.default_value = self._coerce_default(
                    field.name, current_kind, values.pop("default")
                )
            elif "kind" in old and field.default_value is not None:
                field.default_value = self._coerce_default(
                    field.name, current_kind, field.default_value
                )

            if values.get("is_title_field") and current_kind.is_relation:
                raise ValidationError(
                    f"Relation field '{field.name}' cannot be the title field.",
                    {"is_title_field": "relation fields have no title value"},
                )

            for key, value in values.items():
                if value is None and key != "description":
                    continue
                old[key] = getattr(field, key)
                setattr(field, key, value)

            if field.is_title_field:
                self._clear_title_flag(session, definition.id, field.id)

            touched = [definition.id]
            if current_kind.is_relation and field.relation_field_id:
                paired = self._load_field(session, field.relation_field_id)
                check_pair(field, paired)
                touched.append(paired.entity_definition_id)

            self._log_change(
                session,
                "update_field",
                definition,
                field_name=field.name,
                old_value=old,
                new_value={k: getattr(field, "default_value" if k == "default" else k) for k in old},
                created_by=updated_by,
            )
            session.flush()
            info = field_info(field)

        logger.info(f"Updated field '{info.name}' on '{definition.name}': {sorted(old)}")
        self._fields_changed(*touched)
        return info

    def delete_field(self, field_id: str, deleted_by: str | None = None) -> bool:
        """Delete a field.

        Deleting a relation source also deletes its paired field and every
        edge owned by either. Deleting a scalar field strips its key from the
        data of every instance.

        Raises:
            FieldNotFoundError: If the field doesn't exist
            ValidationError: If the field is the non-source side of a pair
        """
        with self._connection.transaction("delete_field", field_id=field_id) as session:
            field = self._load_field(session, field_id)
            definition = self._load_definition(session, field.entity_definition_id)
            kind = FieldKind(field.kind)
            touched = [definition.id]

            if kind.is_relation:
                if field.relation_field_id and not field.is_relation_source:
                    raise ValidationError(
                        f"'{field.name}' is the reverse side of a relation. "
                        "Delete the source field on the related definition instead.",
                        {field.name: "reverse relation field"},
                    )
                field_ids = [field.id]
                paired = (
                    session.get(FieldDefinition, field.relation_field_id)
                    if field.relation_field_id
                    else None
                )
                if paired is not None:
                    field_ids.append(paired.id)
                    touched.append(paired.entity_definition_id)
                edges = session.execute(
                    delete(EntityRelation).where(
                        or_(
                            EntityRelation.relation_field_id.in_(field_ids),
                            EntityRelation.reverse_field_id.in_(field_ids),
                        )
                    )
                ).rowcount
                session.execute(delete(FieldDefinition).where(FieldDefinition.id.in_(field_ids)))
                logger.debug(f"Removed {edges} edges with relation field '{field.name}'")
            else:
                stripped = self._strip_data_key(session, definition.id, field.column_name)
                session.delete(field)
                logger.debug(f"Stripped '{field.column_name}' from {stripped} instances")

            self._log_change(
                session,
                "delete_field",
                definition,
                field_name=field.name,
                old_value={"kind": field.kind, "column_name": field.column_name},
                created_by=deleted_by,
            )

        logger.info(f"Deleted field '{field.name}' from '{definition.name}'")
        self._fields_changed(*touched)
        return True

    def _strip_data_key(self, session: Session, definition_id: str, key: str) -> int:
        count = 0
        instances = session.query(EntityInstance).filter(
            EntityInstance.entity_definition_id == definition_id
        )
        for instance in instances:
            if key in (instance.data or {}):
                instance.data = {k: v for k, v in instance.data.items() if k != key}
                count += 1
        return count

    # === Changelog ===

    def get_changelog(
        self,
        definition_id: str | None = None,
        limit: int = 50,
    ) -> list[ChangelogEntry]:
        """Get schema changelog entries, newest first.

        Args:
            definition_id: Filter by definition (optional)
            limit: Maximum entries to return
        """
        with self._get_session() as session:
            query = session.query(SchemaChangelog).order_by(
                SchemaChangelog.timestamp.desc(), SchemaChangelog.id
            )
            if definition_id:
                query = query.filter(SchemaChangelog.entity_definition_id == definition_id)
            return [
                ChangelogEntry(
                    id=entry.id,
                    timestamp=entry.timestamp,
                    operation=entry.operation,
                    definition_name=entry.definition_name,
                    field_name=entry.field_name,
                    old_value=json.loads(entry.old_value) if entry.old_value else None,
                    new_value=json.loads(entry.new_value) if entry.new_value else None,
                    created_by=entry.created_by,
                )
                for entry in query.limit(limit)
            ]
