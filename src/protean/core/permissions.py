"""Authorization for entity operations.

Each entity definition carries one permission expression per action, such as
``ALL``, ``Admin`` or ``Admin|User``. The store asks an ``Authorizer`` before
every read and write; the default one evaluates those expressions against the
caller's roles.
"""

from __future__ import annotations

from typing import Protocol

from protean.core.types import Action, Caller, EntityDefinitionInfo

ALL = "ALL"
ADMIN_ROLE = "Admin"


def parse_permission(expression: str) -> set[str]:
    """Split a permission expression into the set of allowed roles.

    ``ALL`` yields ``{"ALL"}``.
    """
    return {part.strip() for part in expression.split("|") if part.strip()}


class Authorizer(Protocol):
    """Decides whether a caller may perform an action on a definition."""

    def can_perform(
        self, action: Action, definition: EntityDefinitionInfo | None, caller: Caller | None
    ) -> bool: ...


class RolePermissionAuthorizer:
    """Evaluates the definition's permission expressions against caller roles.

    Schema changes (``Action.MANAGE``) always require the Admin role.
    """

    def __init__(self, admin_role: str = ADMIN_ROLE) -> None:
        self._admin_role = admin_role

    def can_perform(
        self, action: Action, definition: EntityDefinitionInfo | None, caller: Caller | None
    ) -> bool:
        roles = caller.roles if caller else set()
        if action == Action.MANAGE or definition is None:
            return self._admin_role in roles

        expression = definition.permission_for(action)
        if expression is None:
            return False
        allowed = parse_permission(expression)
        if ALL in allowed:
            return True
        return bool(allowed & roles)


class AllowAllAuthorizer:
    """Permits everything. For trusted embedding and tests."""

    def can_perform(
        self, action: Action, definition: EntityDefinitionInfo | None, caller: Caller | None
    ) -> bool:
        return True
