"""Option resolution: instance ids to human-readable titles.

Titles come from the related definition's title field. Resolved titles are
kept in a ``TitleCache`` per definition for a fixed TTL. Instance writes do
not invalidate it, so a renamed instance can show its old title until the
entry expires or a caller invalidates it explicitly.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

from sqlalchemy.orm import Session

from protean.core.types import TitleOption
from protean.exceptions import EntityDefinitionNotFoundError
from protean.schema.engine import title_field_of
from protean.schema.models import EntityDefinition, EntityInstance, FieldDefinition

if TYPE_CHECKING:
    from protean.core.connection import DatabaseConnection

logger = logging.getLogger(__name__)

DEFAULT_OPTIONS_LIMIT = 1000


class TitleCache:
    """Titles per related definition, expiring after ``ttl_seconds``.

    A TTL of 0 disables caching.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, dict[str, str]]] = {}

    def _live(self, definition_id: str) -> dict[str, str] | None:
        entry = self._entries.get(definition_id)
        if entry is None:
            return None
        expires_at, titles = entry
        if self._clock() >= expires_at:
            del self._entries[definition_id]
            return None
        return titles

    def get(self, definition_id: str, instance_ids: Sequence[str]) -> dict[str, str]:
        """Return the cached titles among ``instance_ids``."""
        titles = self._live(definition_id)
        if not titles:
            return {}
        return {i: titles[i] for i in instance_ids if i in titles}

    def put(self, definition_id: str, titles: dict[str, str]) -> None:
        if self.ttl_seconds <= 0 or not titles:
            return
        current = self._live(definition_id)
        if current is None:
            self._entries[definition_id] = (self._clock() + self.ttl_seconds, dict(titles))
        else:
            current.update(titles)

    def invalidate(self, definition_id: str | None = None) -> None:
        """Drop the entry for one definition, or everything."""
        if definition_id is None:
            self._entries.clear()
        else:
            self._entries.pop(definition_id, None)

    def __len__(self) -> int:
        return len(self._entries)


def _title_of(instance_id: str, data: dict[str, Any], title: FieldDefinition | None) -> str:
    if title is None:
        return instance_id
    value = (data or {}).get(title.column_name)
    if value is None or value == "":
        return instance_id
    return str(value)


class OptionResolver:
    """Resolves instance ids of one definition to ``{id, title}`` options."""

    def __init__(self, connection: DatabaseConnection, cache: TitleCache | None = None) -> None:
        self._connection = connection
        self._cache = cache if cache is not None else TitleCache()

    @property
    def cache(self) -> TitleCache:
        return self._cache

    def _load_definition(self, session: Session, definition_id: str) -> EntityDefinition:
        definition = session.get(EntityDefinition, definition_id)
        if definition is None:
            raise EntityDefinitionNotFoundError(definition_id)
        return definition

    def resolve_titles(
        self, related_definition_id: str, target_ids: Sequence[str]
    ) -> list[TitleOption]:
        """Resolve ids to titles in input order, one query for all cache misses.

        Ids without a title (or without an instance) fall back to the id string.
        """
        ids = list(dict.fromkeys(target_ids))
        if not ids:
            return []

        titles = self._cache.get(related_definition_id, ids)
        missing = [i for i in ids if i not in titles]
        if missing:
            with self._connection.get_session() as session:
                definition = self._load_definition(session, related_definition_id)
                title = title_field_of(definition.fields)
                rows = (
                    session.query(EntityInstance.id, EntityInstance.data)
                    .filter(
                        EntityInstance.entity_definition_id == related_definition_id,
                        EntityInstance.id.in_(missing),
                    )
                    .all()
                )
            fetched = {row.id: _title_of(row.id, row.data, title) for row in rows}
            self._cache.put(related_definition_id, fetched)
            titles = {**titles, **fetched}
            logger.debug(
                f"Resolved {len(fetched)} title(s) for '{definition.name}' "
                f"({len(ids) - len(missing)} cached)"
            )

        return [TitleOption(id=i, title=titles.get(i, i)) for i in ids]

    def list_options(
        self,
        definition_id: str,
        project_id: str | None = None,
        limit: int = DEFAULT_OPTIONS_LIMIT,
    ) -> list[TitleOption]:
        """Every instance of a definition as an option, newest first."""
        with self._connection.get_session() as session:
            definition = self._load_definition(session, definition_id)
            title = title_field_of(definition.fields)
            rows = (
                session.query(EntityInstance.id, EntityInstance.data)
                .filter(
                    EntityInstance.entity_definition_id == definition_id,
                    EntityInstance.project_id == (project_id or definition.project_id),
                )
                .order_by(EntityInstance.created_at.desc(), EntityInstance.id)
                .limit(limit)
                .all()
            )
        options = [TitleOption(id=row.id, title=_title_of(row.id, row.data, title)) for row in rows]
        self._cache.put(definition_id, {o.id: o.title for o in options})
        return options
