"""Scalar value codecs.

Instance data is a JSON map, so every scalar kind has one codec that turns a
caller-supplied value into its stored JSON form or rejects it. Dates are
stored as ISO strings so range comparisons work lexically in both dialects.
"""

from __future__ import annotations

import json
import math
from collections.abc import Callable
from datetime import date, datetime, timezone
from typing import Any

from protean.core.types import FieldKind

_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off"}


class CoercionError(ValueError):
    """Value does not fit the field kind."""


def _string(value: Any) -> str:
    if isinstance(value, str):
        return value
    raise CoercionError(f"expected a string, got {type(value).__name__}")


def _number(value: Any) -> int | float:
    if isinstance(value, bool):
        raise CoercionError("expected a number, got bool")
    if isinstance(value, int | float):
        if isinstance(value, float) and not math.isfinite(value):
            raise CoercionError("expected a finite number")
        return value
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError as e:
            raise CoercionError(f"'{value}' is not a number") from e
        if not math.isfinite(parsed):
            raise CoercionError("expected a finite number")
        return int(parsed) if parsed.is_integer() and "." not in value else parsed
    raise CoercionError(f"expected a number, got {type(value).__name__}")


def _boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise CoercionError(f"expected a boolean, got {value!r}")


def _date(value: Any) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()).isoformat()
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(value.strip()).date().isoformat()
        except ValueError as e:
            raise CoercionError(f"'{value}' is not an ISO date (YYYY-MM-DD)") from e
    raise CoercionError(f"expected a date, got {type(value).__name__}")


def _to_utc(value: datetime) -> str:
    # Aware values share one offset so stored strings compare in time order
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.isoformat()


def _datetime(value: Any) -> str:
    if isinstance(value, datetime):
        return _to_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day).isoformat()
    if isinstance(value, str):
        try:
            return _to_utc(datetime.fromisoformat(value.strip()))
        except ValueError as e:
            raise CoercionError(f"'{value}' is not an ISO datetime") from e
    raise CoercionError(f"expected a datetime, got {type(value).__name__}")


def _json(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError) as e:
        raise CoercionError(f"value is not JSON-serializable: {e}") from e
    return value


CODECS: dict[FieldKind, Callable[[Any], Any]] = {
    FieldKind.STRING: _string,
    FieldKind.TEXT: _string,
    FieldKind.NUMBER: _number,
    FieldKind.BOOLEAN: _boolean,
    FieldKind.DATE: _date,
    FieldKind.DATETIME: _datetime,
    FieldKind.JSON: _json,
}


def coerce_value(kind: FieldKind | str, value: Any) -> Any:
    """Convert a value to the stored form for a scalar kind.

    None passes through unchanged; required-ness is checked by the caller.

    Raises:
        CoercionError: If the value does not fit the kind
    """
    if value is None:
        return None
    field_kind = FieldKind(kind)
    if field_kind.is_relation:
        raise CoercionError(f"'{field_kind.value}' fields do not hold scalar values")
    return CODECS[field_kind](value)
