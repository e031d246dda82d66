"""Input parsing utilities for CLI commands."""

import json
import re
from pathlib import Path
from typing import Any

FIELD_MODIFIERS = {
    "required": "required",
    "searchable": "searchable",
    "filterable": "filterable",
    "title": "is_title_field",
    "hidden": "show_in_table",
}


def parse_field_spec(spec: str) -> dict[str, Any]:
    """Parse field specification string.

    Format: name:kind[:modifier1][:modifier2]...

    Examples:
        "title:string:required:title" → {"name": "title", "kind": "string",
                                         "required": True, "is_title_field": True}
        "score:number:default=0" → {"name": "score", "kind": "number", "default": 0}

    Raises:
        ValueError: If spec format is invalid
    """
    parts = spec.split(":")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise ValueError(f"Invalid field spec: '{spec}'. Expected format: name:kind[:modifier]...")

    field: dict[str, Any] = {"name": parts[0], "kind": parts[1]}

    for modifier in parts[2:]:
        if "=" in modifier:
            key, value = modifier.split("=", 1)
            if key != "default":
                raise ValueError(f"Invalid modifier: '{modifier}'. Only default=value takes a value")
            # Try to parse as JSON for proper type conversion
            try:
                field["default"] = json.loads(value)
            except json.JSONDecodeError:
                field["default"] = value
        elif modifier == "hidden":
            field["show_in_table"] = False
        elif modifier in FIELD_MODIFIERS:
            field[FIELD_MODIFIERS[modifier]] = True
        else:
            raise ValueError(
                f"Invalid modifier: '{modifier}'. "
                f"Supported: {', '.join(FIELD_MODIFIERS)}, default=value"
            )

    return field


def to_table_name(name: str) -> str:
    """Derive a storage key from a display name (e.g., "BlogPost" -> "blog_post")."""
    snake = re.sub(r"(?<!^)(?=[A-Z])", "_", name.strip()).lower()
    return re.sub(r"[^a-z]+", "_", snake).strip("_")


def parse_json_object(raw: str, what: str = "data") -> dict[str, Any]:
    """Parse a JSON object given on the command line.

    Raises:
        ValueError: If the text is not a JSON object
    """
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON for {what}: {e.msg}") from e
    if not isinstance(value, dict):
        raise ValueError(f"Expected a JSON object for {what}, got {type(value).__name__}")
    return value


def read_json_file(path: str) -> dict[str, Any]:
    """Read single JSON object from file.

    Raises:
        FileNotFoundError: If file doesn't exist
        json.JSONDecodeError: If file contains invalid JSON
    """
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    with file_path.open("r") as f:
        return json.load(f)


def read_jsonl_file(path: str) -> list[dict[str, Any]]:
    """Read JSON Lines (JSONL) file, one object per line.

    Raises:
        FileNotFoundError: If file doesn't exist
        json.JSONDecodeError: If any line contains invalid JSON
    """
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    records = []
    with file_path.open("r") as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                records.append(json.loads(line))
            except json.JSONDecodeError as e:
                raise json.JSONDecodeError(
                    f"Invalid JSON on line {line_num}: {e.msg}",
                    e.doc,
                    e.pos,
                ) from e

    return records
