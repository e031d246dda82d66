"""Relation pair checks.

A relation between two entity definitions is two field rows, one on each
side, that point at each other. ``check_pair`` validates that two-node graph
after any create or update touching either side.
"""

from __future__ import annotations

from protean.core.types import FieldKind
from protean.exceptions import ValidationError
from protean.schema.models import FieldDefinition


def pair_problems(field: FieldDefinition, paired: FieldDefinition) -> list[str]:
    """Return every way the two fields fail to form a valid relation pair."""
    problems: list[str] = []
    kind = FieldKind(field.kind)
    paired_kind = FieldKind(paired.kind)

    if not kind.is_relation or not paired_kind.is_relation:
        return [f"'{field.name}' and '{paired.name}' must both be relation fields"]

    if kind.paired_kind != paired_kind:
        problems.append(
            f"'{field.name}' is {kind.value} so its pair must be {kind.paired_kind.value}, "
            f"got {paired_kind.value}"
        )
    if field.related_entity_definition_id != paired.entity_definition_id:
        problems.append(f"'{field.name}' does not point at the definition owning '{paired.name}'")
    if paired.related_entity_definition_id != field.entity_definition_id:
        problems.append(f"'{paired.name}' does not point at the definition owning '{field.name}'")
    if field.relation_field_id != paired.id:
        problems.append(f"'{field.name}' does not reference '{paired.name}' as its pair")
    if paired.relation_field_id != field.id:
        problems.append(f"'{paired.name}' does not reference '{field.name}' as its pair")
    if field.is_relation_source == paired.is_relation_source:
        problems.append(
            f"exactly one of '{field.name}' and '{paired.name}' must be the relation source"
        )
    return problems


def check_pair(field: FieldDefinition, paired: FieldDefinition) -> None:
    """Raise ValidationError unless the two fields form a valid pair."""
    problems = pair_problems(field, paired)
    if problems:
        raise ValidationError(
            f"Invalid relation pair '{field.name}' / '{paired.name}': " + "; ".join(problems),
            {field.name: problems[0]},
        )
