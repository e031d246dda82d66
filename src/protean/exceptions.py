"""Custom exceptions for Protean.

Errors are meant to be surfaced to callers as-is:
- Messages say what went wrong AND how to fix the request
- Context carries the identifiers a caller needs to act on the error
"""

from __future__ import annotations

from typing import Any


class ProteanError(Exception):
    """Base exception for all Protean errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Return error as JSON-serializable dict."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
        }


class ConnectionError(ProteanError):
    """Failed to connect to the database."""

    pass


class StoreError(ProteanError):
    """The underlying store failed. Not retried automatically."""

    def __init__(self, operation: str, reason: str, context: dict[str, Any] | None = None) -> None:
        message = f"Store operation '{operation}' failed: {reason}"
        super().__init__(message, {"operation": operation, **(context or {})})
        self.operation = operation


class PermissionDeniedError(ProteanError):
    """The caller may not perform the action on this entity definition."""

    def __init__(self, action: str, definition_name: str, caller_id: str | None = None) -> None:
        who = f"Caller '{caller_id}'" if caller_id else "Anonymous caller"
        message = f"{who} is not allowed to {action} on '{definition_name}'."
        super().__init__(
            message,
            {"action": action, "definition_name": definition_name, "caller_id": caller_id},
        )
        self.action = action
        self.definition_name = definition_name


# === Validation ===


class ValidationError(ProteanError):
    """Request data failed validation."""

    def __init__(self, message: str, field_errors: dict[str, str] | None = None) -> None:
        super().__init__(message, {"field_errors": field_errors or {}})
        self.field_errors = field_errors or {}


class InvalidFieldKindError(ValidationError):
    """Invalid field kind specified."""

    def __init__(self, kind: str, valid_kinds: list[str]) -> None:
        message = f"Invalid field kind '{kind}'. Valid kinds: {', '.join(valid_kinds)}"
        super().__init__(message, {"kind": message})
        self.context["valid_kinds"] = valid_kinds
        self.kind = kind


class UnknownFieldError(ValidationError):
    """A payload or filter references a field the definition does not have."""

    def __init__(self, field_name: str, definition_name: str, available_fields: list[str]) -> None:
        if available_fields:
            message = (
                f"Unknown field '{field_name}' on '{definition_name}'. "
                f"Available fields: {', '.join(available_fields)}"
            )
        else:
            message = f"Unknown field '{field_name}' on '{definition_name}'. No fields defined."
        super().__init__(message, {field_name: "unknown field"})
        self.context["available_fields"] = available_fields
        self.field_name = field_name
        self.definition_name = definition_name


# === Not found ===


class NotFoundError(ProteanError):
    """Base class for missing definitions, fields and instances."""

    pass


class EntityDefinitionNotFoundError(NotFoundError):
    """Entity definition does not exist."""

    def __init__(self, definition_id: str) -> None:
        message = (
            f"Entity definition '{definition_id}' not found. "
            "Use list_entity_definitions() to see available definitions."
        )
        super().__init__(message, {"definition_id": definition_id})
        self.definition_id = definition_id


class FieldNotFoundError(NotFoundError):
    """Field does not exist."""

    def __init__(self, field_id: str) -> None:
        message = f"Field '{field_id}' not found."
        super().__init__(message, {"field_id": field_id})
        self.field_id = field_id


class InstanceNotFoundError(NotFoundError):
    """Instance with given ID does not exist."""

    def __init__(self, instance_id: str, definition_name: str | None = None) -> None:
        where = f" in '{definition_name}'" if definition_name else ""
        message = f"Instance '{instance_id}' not found{where}."
        super().__init__(message, {"instance_id": instance_id, "definition_name": definition_name})
        self.instance_id = instance_id


# === Conflicts ===


class ConflictError(ProteanError):
    """The request conflicts with existing state."""

    pass


class EntityDefinitionAlreadyExistsError(ConflictError):
    """A definition with this name or storage key already exists in the project."""

    def __init__(self, attribute: str, value: str, project_id: str) -> None:
        message = (
            f"Entity definition with {attribute} '{value}' already exists in project "
            f"'{project_id}'. Choose a different {attribute}."
        )
        super().__init__(message, {attribute: value, "project_id": project_id})


class FieldAlreadyExistsError(ConflictError):
    """Field name already used on the definition."""

    def __init__(self, field_name: str, definition_name: str) -> None:
        message = (
            f"Field '{field_name}' already exists on '{definition_name}'. "
            "Use a different name or update the existing field."
        )
        super().__init__(message, {"field_name": field_name, "definition_name": definition_name})
        self.field_name = field_name
        self.definition_name = definition_name


class EntityHasInstancesError(ConflictError):
    """Deleting a definition that still has instances."""

    def __init__(self, definition_name: str, instance_count: int) -> None:
        message = (
            f"Cannot delete '{definition_name}': {instance_count} instance(s) exist. "
            "Delete the instances first or pass cascade=True."
        )
        super().__init__(
            message,
            {
                "definition_name": definition_name,
                "instance_count": instance_count,
                "suggestion": "delete_entity_definition(id, cascade=True)",
            },
        )
        self.definition_name = definition_name
        self.instance_count = instance_count
