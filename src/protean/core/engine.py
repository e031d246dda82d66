"""Main ProteanDB engine."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from typing import Any, Literal

from protean.core.config import Settings
from protean.core.connection import DatabaseConnection
from protean.core.permissions import Authorizer, RolePermissionAuthorizer
from protean.core.types import (
    Action,
    Caller,
    ChangelogEntry,
    EntityDefinitionInfo,
    EntityDefinitionSpec,
    EntityDefinitionUpdate,
    FieldInfo,
    FieldSpec,
    FieldUpdate,
    InstancePage,
    InstanceRecord,
    TitleOption,
    WriteEvent,
)
from protean.data.instances import InstanceStore
from protean.data.options import DEFAULT_OPTIONS_LIMIT, OptionResolver, TitleCache
from protean.data.relations import RelationStore
from protean.exceptions import PermissionDeniedError, ValidationError
from protean.schema.engine import SchemaEngine

logger = logging.getLogger(__name__)

# Identity used when a call names no caller: the embedding process itself
SYSTEM_CALLER = Caller(id="system", roles={"Admin"})

WriteHook = Callable[[WriteEvent], None]


class ProteanDB:
    """Runtime entity store.

    Operators define entity types and their fields at runtime; instances of
    those types are created, read, filtered and paginated without migrations.
    All results are pydantic models that serialize straight to JSON.

    Example:
        db = ProteanDB("sqlite:///:memory:")
        tag = db.create_entity_definition(
            {"project_id": "blog", "name": "Tag", "table_name": "tags",
             "fields": [{"name": "label", "kind": "string", "is_title_field": True}]}
        )
        post = db.create_entity_definition(
            {"project_id": "blog", "name": "Post", "table_name": "posts",
             "fields": [{"name": "title", "kind": "string"}]}
        )
        db.create_field(post.id, {"name": "tags", "kind": "many_to_many",
                                  "related_entity_definition_id": tag.id})
        news = db.create_instance(tag.id, {"label": "news"})
        db.create_instance(post.id, {"title": "Hello", "tags": [news.id]})
    """

    def __init__(
        self,
        url: str | None = None,
        echo: bool | None = None,
        settings: Settings | None = None,
        authorizer: Authorizer | None = None,
        caller: Caller | None = None,
        project_resolver: Callable[[], str] | None = None,
        write_hooks: Iterable[WriteHook] | None = None,
        title_cache: TitleCache | None = None,
    ) -> None:
        """Initialize ProteanDB.

        Args:
            url: Database connection URL (defaults to settings, then PROTEAN_URL)
            echo: Whether to echo SQL statements (for debugging)
            settings: Store-wide policy; read from PROTEAN_* variables if omitted
            authorizer: Permission check run before reads and writes
            caller: Default identity for calls that pass none
            project_resolver: Supplies the active project when a call omits it
            write_hooks: Called with a WriteEvent after every successful write
            title_cache: Cache for resolved titles (one is created if omitted)
        """
        self.settings = settings or Settings.from_env(url)
        if url:
            self.settings = self.settings.model_copy(update={"database_url": url})
        if echo is not None:
            self.settings = self.settings.model_copy(update={"echo": echo})

        self._connection = DatabaseConnection(self.settings.database_url, echo=self.settings.echo)
        self._authorizer: Authorizer = authorizer or RolePermissionAuthorizer()
        self._caller = caller or SYSTEM_CALLER
        self._project_resolver = project_resolver
        self._write_hooks: list[WriteHook] = list(write_hooks or [])

        if title_cache is None:
            title_cache = TitleCache(self.settings.title_cache_ttl_seconds)
        self._title_cache = title_cache
        self._schema_engine = SchemaEngine(
            self._connection, on_fields_changed=self._title_cache.invalidate
        )
        self._relations = RelationStore()
        self._options = OptionResolver(self._connection, self._title_cache)
        self._instances = InstanceStore(
            self._connection, self._relations, self._options, self.settings
        )

        # Initialize meta-tables
        self._schema_engine.initialize()

    @property
    def connection(self) -> DatabaseConnection:
        return self._connection

    @property
    def title_cache(self) -> TitleCache:
        return self._title_cache

    def close(self) -> None:
        """Close the database connection."""
        self._connection.close()

    def __enter__(self) -> ProteanDB:
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        """Context manager exit."""
        self.close()

    def add_write_hook(self, hook: WriteHook) -> None:
        """Register a callable to receive a WriteEvent after each write."""
        self._write_hooks.append(hook)

    # === Plumbing ===

    def _authorize(
        self,
        action: Action,
        definition: EntityDefinitionInfo | None,
        caller: Caller | None,
    ) -> Caller:
        who = caller or self._caller
        if not self._authorizer.can_perform(action, definition, who):
            name = definition.name if definition else "schema"
            logger.info(f"Denied {action.value} on '{name}' for caller {who.id!r}")
            raise PermissionDeniedError(action.value, name, who.id)
        return who

    def _authorize_definition(
        self, action: Action, definition_id: str, caller: Caller | None
    ) -> tuple[EntityDefinitionInfo, Caller]:
        definition = self._schema_engine.get_entity_definition(definition_id)
        return definition, self._authorize(action, definition, caller)

    def _resolve_project(self, project_id: str | None, definition: EntityDefinitionInfo) -> str:
        if project_id:
            return project_id
        if self._project_resolver is not None:
            return self._project_resolver()
        return definition.project_id

    def _emit(self, action: Action, definition_id: str, caller: Caller, **ids: str | None) -> None:
        event = WriteEvent(
            action=action, entity_definition_id=definition_id, caller_id=caller.id, **ids
        )
        for hook in self._write_hooks:
            hook(event)

    # === Entity definitions ===

    def list_entity_definitions(self, project_id: str | None = None) -> list[EntityDefinitionInfo]:
        """List entity definitions (with fields), optionally for one project."""
        return self._schema_engine.list_entity_definitions(project_id)

    def get_entity_definition(self, definition_id: str) -> EntityDefinitionInfo:
        """Get an entity definition without its fields."""
        return self._schema_engine.get_entity_definition(definition_id)

    def get_entity_definition_with_fields(self, definition_id: str) -> EntityDefinitionInfo:
        """Get an entity definition with fields sorted by display index."""
        return self._schema_engine.get_entity_definition_with_fields(definition_id)

    def find_entity_definition(
        self, name: str, project_id: str | None = None
    ) -> EntityDefinitionInfo | None:
        """Look up a definition by name or storage key."""
        if project_id is None and self._project_resolver is not None:
            project_id = self._project_resolver()
        if project_id is None:
            matches = [
                d
                for d in self._schema_engine.list_entity_definitions()
                if name in (d.name, d.table_name)
            ]
            return matches[0] if matches else None
        return self._schema_engine.find_entity_definition(project_id, name)

    def create_entity_definition(
        self,
        spec: EntityDefinitionSpec | dict[str, Any],
        caller: Caller | None = None,
    ) -> EntityDefinitionInfo:
        """Create an entity definition.

        Raises:
            PermissionDeniedError: If the caller may not change schema
            ValidationError: If the spec is invalid
            ConflictError: If the name or storage key is taken
        """
        who = self._authorize(Action.MANAGE, None, caller)
        if isinstance(spec, dict) and not spec.get("project_id") and self._project_resolver:
            spec = {**spec, "project_id": self._project_resolver()}
        info = self._schema_engine.create_entity_definition(spec, created_by=who.id)
        self._emit(Action.MANAGE, info.id, who)
        return info

    def update_entity_definition(
        self,
        definition_id: str,
        changes: EntityDefinitionUpdate | dict[str, Any],
        caller: Caller | None = None,
    ) -> EntityDefinitionInfo:
        """Update an entity definition. The storage key cannot change."""
        _, who = self._authorize_definition(Action.MANAGE, definition_id, caller)
        info = self._schema_engine.update_entity_definition(definition_id, changes, who.id)
        self._emit(Action.MANAGE, definition_id, who)
        return info

    def delete_entity_definition(
        self,
        definition_id: str,
        cascade: bool = False,
        caller: Caller | None = None,
    ) -> bool:
        """Delete an entity definition.

        Raises:
            EntityHasInstancesError: If instances exist and cascade is False
        """
        _, who = self._authorize_definition(Action.MANAGE, definition_id, caller)
        result = self._schema_engine.delete_entity_definition(definition_id, cascade, who.id)
        self._emit(Action.MANAGE, definition_id, who)
        return result

    # === Fields ===

    def get_field(self, field_id: str) -> FieldInfo:
        return self._schema_engine.get_field(field_id)

    def get_fields(self, definition_id: str) -> list[FieldInfo]:
        return self._schema_engine.get_fields(definition_id)

    def get_title_field(self, definition_id: str) -> FieldInfo | None:
        return self._schema_engine.get_title_field(definition_id)

    def create_field(
        self,
        definition_id: str,
        spec: FieldSpec | dict[str, Any],
        caller: Caller | None = None,
    ) -> FieldInfo:
        """Add a field; relation kinds are paired in the same transaction."""
        _, who = self._authorize_definition(Action.MANAGE, definition_id, caller)
        info = self._schema_engine.create_field(definition_id, spec, who.id)
        self._emit(Action.MANAGE, definition_id, who, field_id=info.id)
        return info

    def update_field(
        self,
        field_id: str,
        changes: FieldUpdate | dict[str, Any],
        caller: Caller | None = None,
    ) -> FieldInfo:
        """Update a field (rename, flags, label, order, default)."""
        field = self._schema_engine.get_field(field_id)
        _, who = self._authorize_definition(Action.MANAGE, field.entity_definition_id, caller)
        info = self._schema_engine.update_field(field_id, changes, who.id)
        self._emit(Action.MANAGE, info.entity_definition_id, who, field_id=field_id)
        return info

    def delete_field(self, field_id: str, caller: Caller | None = None) -> bool:
        """Delete a field (and its pair, for relation sources)."""
        field = self._schema_engine.get_field(field_id)
        _, who = self._authorize_definition(Action.MANAGE, field.entity_definition_id, caller)
        result = self._schema_engine.delete_field(field_id, who.id)
        self._emit(Action.MANAGE, field.entity_definition_id, who, field_id=field_id)
        return result

    def get_changelog(
        self, definition_id: str | None = None, limit: int = 50
    ) -> list[ChangelogEntry]:
        """Schema changes, newest first."""
        return self._schema_engine.get_changelog(definition_id, limit)

    # === Instances ===

    def create_instance(
        self,
        definition_id: str,
        data: dict[str, Any] | None = None,
        relations: dict[str, Any] | None = None,
        project_id: str | None = None,
        caller: Caller | None = None,
    ) -> InstanceRecord:
        """Create an instance; relation targets may be in data or relations.

        Returns:
            The instance with every relation field as an id list
        """
        definition, who = self._authorize_definition(Action.CREATE, definition_id, caller)
        record = self._instances.create_instance(
            definition_id,
            self._resolve_project(project_id, definition),
            data,
            relations,
            created_by=who.id,
        )
        self._emit(Action.CREATE, definition_id, who, instance_id=record.id)
        return record

    def update_instance(
        self,
        instance_id: str,
        data: dict[str, Any] | None = None,
        relations: dict[str, Any] | None = None,
        caller: Caller | None = None,
    ) -> InstanceRecord:
        """Merge scalar values and reconcile the relation fields given."""
        definition_id = self._instances.get_definition_id(instance_id)
        _, who = self._authorize_definition(Action.UPDATE, definition_id, caller)
        record = self._instances.update_instance(instance_id, data, relations)
        self._emit(Action.UPDATE, definition_id, who, instance_id=instance_id)
        return record

    def delete_instance(self, instance_id: str, caller: Caller | None = None) -> bool:
        """Delete an instance and every edge touching it."""
        definition_id = self._instances.get_definition_id(instance_id)
        _, who = self._authorize_definition(Action.DELETE, definition_id, caller)
        result = self._instances.delete_instance(instance_id)
        self._emit(Action.DELETE, definition_id, who, instance_id=instance_id)
        return result

    def get_instance_by_id(
        self,
        instance_id: str,
        relation_field_names: Sequence[str] | None = None,
        relations_as_ids: bool = False,
        caller: Caller | None = None,
    ) -> InstanceRecord:
        """Load an instance with ids or ``{id, title}`` options per relation."""
        definition_id = self._instances.get_definition_id(instance_id)
        self._authorize_definition(Action.READ, definition_id, caller)
        return self._instances.get_instance_by_id(
            instance_id, relation_field_names, relations_as_ids
        )

    def get_instances(
        self,
        definition_id: str,
        project_id: str | None = None,
        limit: int | None = None,
        offset: int = 0,
        include_relations: Sequence[str] | None = None,
        relations_as_ids: bool = False,
        filters: list[Any] | None = None,
        search: str | None = None,
        sort_by: str | None = None,
        sort_order: Literal["asc", "desc"] = "desc",
        caller: Caller | None = None,
    ) -> InstancePage:
        """List a page of instances. See InstanceStore.get_instances."""
        definition, _ = self._authorize_definition(Action.READ, definition_id, caller)
        return self._instances.get_instances(
            definition_id,
            self._resolve_project(project_id, definition),
            limit=limit,
            offset=offset,
            include_relations=include_relations,
            relations_as_ids=relations_as_ids,
            filters=filters,
            search=search,
            sort_by=sort_by,
            sort_order=sort_order,
        )

    # === Options ===

    def resolve_titles(
        self,
        definition_id: str,
        ids: Sequence[str],
        caller: Caller | None = None,
    ) -> list[TitleOption]:
        """Resolve instance ids of a definition to ``{id, title}`` in input order."""
        self._authorize_definition(Action.READ, definition_id, caller)
        return self._options.resolve_titles(definition_id, ids)

    def list_options(
        self,
        definition_id: str,
        project_id: str | None = None,
        limit: int = DEFAULT_OPTIONS_LIMIT,
        caller: Caller | None = None,
    ) -> list[TitleOption]:
        """All instances of a definition as selector options."""
        if limit < 1:
            raise ValidationError("limit must be >= 1", {"limit": "out of range"})
        definition, _ = self._authorize_definition(Action.READ, definition_id, caller)
        return self._options.list_options(
            definition_id, self._resolve_project(project_id, definition), limit
        )
