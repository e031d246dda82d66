"""Output formatting for CLI commands."""

import json
from typing import Any

from pydantic import BaseModel
from rich.console import Console
from rich.panel import Panel
from rich.pretty import Pretty
from rich.table import Table

from protean.core.types import EntityDefinitionInfo, InstancePage, TitleOption
from protean.exceptions import ProteanError

console = Console()


def to_jsonable(data: Any) -> Any:
    """Convert pydantic models (or lists of them) to plain JSON values."""
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    if isinstance(data, list):
        return [to_jsonable(item) for item in data]
    return data


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return ", ".join(v.title if isinstance(v, TitleOption) else str(v) for v in value)
    return str(value)


class OutputFormatter:
    """Formats output for terminal or JSON mode."""

    def __init__(self, json_mode: bool = False) -> None:
        """Initialize formatter.

        Args:
            json_mode: If True, output JSON instead of Rich formatting
        """
        self.json_mode = json_mode

    def _print_json(self, data: Any) -> None:
        print(json.dumps(to_jsonable(data), default=str, indent=2))

    def print_table(
        self,
        title: str,
        data: list[dict[str, Any]],
        columns: list[str],
    ) -> None:
        """Print data as Rich table or JSON array."""
        if self.json_mode:
            self._print_json(data)
        else:
            table = Table(title=title, show_header=True, header_style="bold magenta")
            for col in columns:
                table.add_column(col)
            for row in data:
                table.add_row(*[_cell(row.get(col)) for col in columns])
            console.print(table)

    def print_definition(self, definition: EntityDefinitionInfo) -> None:
        """Print an entity definition with its fields."""
        if self.json_mode:
            self._print_json(definition)
            return

        console.print(f"\n[bold]Entity:[/bold] {definition.name} ({definition.table_name})")
        console.print(f"ID: {definition.id}")
        console.print(f"Project: {definition.project_id}  Tier: {definition.type}")
        if definition.description:
            console.print(f"Description: {definition.description}")
        console.print(
            "Permissions: "
            f"create={definition.create_permission} read={definition.read_permission} "
            f"update={definition.update_permission} delete={definition.delete_permission}"
        )
        console.print(
            f"Page size: {definition.page_size}  "
            f"Pagination: {'on' if definition.enable_pagination else 'off'}  "
            f"Filters: {'on' if definition.enable_filters else 'off'}"
        )

        if definition.fields:
            console.print(f"\n[bold]Fields ({len(definition.fields)}):[/bold]")
            fields_table = Table(show_header=True, header_style="bold cyan")
            fields_table.add_column("#")
            fields_table.add_column("Name")
            fields_table.add_column("Kind")
            fields_table.add_column("Required")
            fields_table.add_column("Title")
            fields_table.add_column("Related")

            for field in definition.fields:
                fields_table.add_row(
                    str(field.display_index),
                    field.name,
                    field.kind,
                    "✓" if field.required else "",
                    "✓" if field.is_title_field else "",
                    field.related_entity_definition_id or "",
                )
            console.print(fields_table)

    def print_page(self, definition: EntityDefinitionInfo, page: InstancePage) -> None:
        """Print a page of instances with pagination info."""
        if self.json_mode:
            self._print_json(page)
            return

        scalar_names = [f.name for f in definition.fields if not f.is_relation and f.show_in_table]
        relation_names = sorted({name for r in page.data for name in r.relations})
        rows = [{"id": r.id, **r.data, **r.relations} for r in page.data]
        p = page.pagination
        self.print_table(
            f"{definition.name} (page {p.page}/{max(p.total_pages, 1)}, {p.total} total)",
            rows,
            ["id", *scalar_names, *relation_names],
        )

    def print_success(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Print success message."""
        if self.json_mode:
            output: dict[str, Any] = {"success": True, "message": message}
            if details:
                output.update(to_jsonable(details))
            self._print_json(output)
        else:
            console.print(f"✓ {message}", style="green")
            if details:
                for key, value in details.items():
                    console.print(f"  {key}: {value}", style="dim")

    def print_error(self, error: Exception) -> None:
        """Print error message."""
        if self.json_mode:
            if isinstance(error, ProteanError):
                print(json.dumps(error.to_dict(), default=str, indent=2))
            else:
                print(json.dumps({"error": type(error).__name__, "message": str(error)}, indent=2))
        else:
            error_text = str(error)
            # For ProteanError, include context if available
            if isinstance(error, ProteanError) and error.context:
                context_str = "\n".join(f"{k}: {v}" for k, v in error.context.items())
                error_text = f"{error_text}\n\n{context_str}"

            panel = Panel(
                error_text,
                title="[red]Error[/red]",
                border_style="red",
            )
            console.print(panel)

    def print_data(self, data: Any) -> None:
        """Print generic data (models, dicts, lists)."""
        if self.json_mode:
            self._print_json(data)
        else:
            console.print(Pretty(to_jsonable(data)))
