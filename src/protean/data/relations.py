"""Relation edge storage.

Every link between two instances is one row in ``pt_entity_relations``, owned
by the source field of its relation pair and tagged with the reverse field.
The links of a field F on an instance X are the outgoing edges
``(source=X, field=F)`` plus the incoming edges ``(target=X, reverse=F)``, so
both sides of a pair read the same row.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from sqlalchemy import and_, delete, or_, select, union_all
from sqlalchemy.orm import Session
from sqlalchemy.sql.expression import Subquery

from protean.core.types import FieldKind
from protean.schema.models import EntityRelation, FieldDefinition

logger = logging.getLogger(__name__)


def links_subquery(field_id: str) -> Subquery:
    """Select ``(owner_id, other_id, created_at)`` rows for every link of a field."""
    outgoing = select(
        EntityRelation.source_instance_id.label("owner_id"),
        EntityRelation.target_instance_id.label("other_id"),
        EntityRelation.created_at.label("created_at"),
    ).where(EntityRelation.relation_field_id == field_id)
    incoming = select(
        EntityRelation.target_instance_id.label("owner_id"),
        EntityRelation.source_instance_id.label("other_id"),
        EntityRelation.created_at.label("created_at"),
    ).where(EntityRelation.reverse_field_id == field_id)
    return union_all(outgoing, incoming).subquery()


def _link_clause(field_id: str, owner_id: str, others: Iterable[str] | None = None):
    """Match the edge rows behind links of a field on one owner."""
    outgoing = and_(
        EntityRelation.relation_field_id == field_id,
        EntityRelation.source_instance_id == owner_id,
    )
    incoming = and_(
        EntityRelation.reverse_field_id == field_id,
        EntityRelation.target_instance_id == owner_id,
    )
    if others is not None:
        others = list(others)
        outgoing = and_(outgoing, EntityRelation.target_instance_id.in_(others))
        incoming = and_(incoming, EntityRelation.source_instance_id.in_(others))
    return or_(outgoing, incoming)


class RelationStore:
    """Reads and reconciles relation edges inside a caller's session."""

    def _edge(
        self,
        field: FieldDefinition,
        paired: FieldDefinition | None,
        instance_id: str,
        target_id: str,
    ) -> EntityRelation:
        if paired is None or field.is_relation_source:
            return EntityRelation(
                source_instance_id=instance_id,
                target_instance_id=target_id,
                relation_field_id=field.id,
                reverse_field_id=paired.id if paired else None,
                relation_type=field.kind,
            )
        # Written from the reverse side: store it the way the source side would
        return EntityRelation(
            source_instance_id=target_id,
            target_instance_id=instance_id,
            relation_field_id=paired.id,
            reverse_field_id=field.id,
            relation_type=paired.kind,
        )

    def get_links(self, session: Session, field: FieldDefinition, instance_id: str) -> list[str]:
        """Target ids linked through a field, oldest link first."""
        return self.get_links_batch(session, field, [instance_id]).get(instance_id, [])

    def get_links_batch(
        self, session: Session, field: FieldDefinition, instance_ids: Sequence[str]
    ) -> dict[str, list[str]]:
        """Target ids per owner for many instances in one query."""
        if not instance_ids:
            return {}
        links = links_subquery(field.id)
        rows = session.execute(
            select(links.c.owner_id, links.c.other_id)
            .where(links.c.owner_id.in_(list(instance_ids)))
            .order_by(links.c.owner_id, links.c.created_at, links.c.other_id)
        ).all()
        result: dict[str, list[str]] = {instance_id: [] for instance_id in instance_ids}
        for owner_id, other_id in rows:
            if other_id not in result[owner_id]:
                result[owner_id].append(other_id)
        return result

    def add_links(
        self,
        session: Session,
        field: FieldDefinition,
        paired: FieldDefinition | None,
        instance_id: str,
        target_ids: Sequence[str],
    ) -> int:
        """Create edges from an instance to each target.

        When the paired field holds a single link, each target first drops the
        link it had to any other instance.
        """
        if not target_ids:
            return 0
        if paired is not None and FieldKind(paired.kind).is_single:
            for target_id in target_ids:
                displaced = session.execute(
                    delete(EntityRelation).where(
                        _link_clause(paired.id, target_id),
                        EntityRelation.source_instance_id != instance_id,
                        EntityRelation.target_instance_id != instance_id,
                    )
                ).rowcount
                if displaced:
                    logger.debug(f"Moved '{target_id}' off {displaced} previous link(s)")
        session.add_all(self._edge(field, paired, instance_id, t) for t in target_ids)
        session.flush()
        return len(target_ids)

    def remove_links(
        self,
        session: Session,
        field: FieldDefinition,
        instance_id: str,
        target_ids: Sequence[str],
    ) -> int:
        """Delete the edges from an instance to the given targets."""
        if not target_ids:
            return 0
        return session.execute(
            delete(EntityRelation).where(_link_clause(field.id, instance_id, target_ids))
        ).rowcount

    def reconcile(
        self,
        session: Session,
        field: FieldDefinition,
        paired: FieldDefinition | None,
        instance_id: str,
        target_ids: Sequence[str],
    ) -> tuple[int, int]:
        """Make the field's links on an instance equal ``target_ids``.

        Only the difference is written: removed targets lose their edge, new
        targets gain one, unchanged targets are left alone.

        Returns:
            (added, removed) counts
        """
        current = self.get_links(session, field, instance_id)
        wanted = set(target_ids)
        to_remove = [t for t in current if t not in wanted]
        to_add = [t for t in target_ids if t not in set(current)]

        removed = self.remove_links(session, field, instance_id, to_remove)
        added = self.add_links(session, field, paired, instance_id, to_add)
        if added or removed:
            logger.debug(
                f"Reconciled '{field.name}' on {instance_id}: +{added} -{removed} edges"
            )
        return added, removed

    def delete_for_instance(self, session: Session, instance_id: str) -> int:
        """Delete every edge where the instance is source or target."""
        return session.execute(
            delete(EntityRelation).where(
                or_(
                    EntityRelation.source_instance_id == instance_id,
                    EntityRelation.target_instance_id == instance_id,
                )
            )
        ).rowcount

