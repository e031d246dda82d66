"""Schema management commands."""

from typing import Annotated

import typer

from protean.cli.context import CLIContext, command_errors
from protean.cli.output import OutputFormatter
from protean.cli.parsing import (
    parse_field_spec,
    parse_json_object,
    read_json_file,
    to_table_name,
)
from protean.core.types import EntityDefinitionInfo, FieldInfo
from protean.exceptions import FieldNotFoundError

# Create schema subcommand group
app = typer.Typer(help="Manage entity definitions and their fields")


def _field_named(definition: EntityDefinitionInfo, name: str) -> FieldInfo:
    for field in definition.fields:
        if name in (field.name, field.id):
            return field
    raise FieldNotFoundError(name)


@app.command("list")
def schema_list(ctx: typer.Context) -> None:
    """List entity definitions in the active project."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    with command_errors(cli_ctx, formatter):
        definitions = cli_ctx.get_db().list_entity_definitions(cli_ctx.project_id)

        if cli_ctx.json_output:
            formatter.print_data(definitions)
        else:
            formatter.print_table(
                f"Entity definitions in '{cli_ctx.project_id}' ({len(definitions)} total)",
                [
                    {
                        "Name": d.name,
                        "Table": d.table_name,
                        "Tier": d.type,
                        "Fields": len(d.fields),
                        "ID": d.id,
                    }
                    for d in definitions
                ],
                ["Name", "Table", "Tier", "Fields", "ID"],
            )


@app.command("describe")
def schema_describe(
    ctx: typer.Context,
    entity_name: Annotated[str, typer.Argument(help="Definition name, table name or id")],
) -> None:
    """Show a definition with its fields."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    with command_errors(cli_ctx, formatter):
        formatter.print_definition(cli_ctx.definition(entity_name))


@app.command("create")
def schema_create(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Definition name (e.g., Post, Tag)")],
    fields: Annotated[
        list[str] | None,
        typer.Option(
            "--field",
            "-f",
            help="Field spec: name:kind[:modifier]. Can be repeated.",
        ),
    ] = None,
    table_name: Annotated[
        str | None,
        typer.Option("--table", "-t", help="Storage key (derived from the name if omitted)"),
    ] = None,
    from_file: Annotated[
        str | None,
        typer.Option("--from-file", help="Load the definition from a JSON file"),
    ] = None,
    description: Annotated[
        str | None,
        typer.Option("--description", help="Definition description"),
    ] = None,
) -> None:
    """Create an entity definition with scalar fields.

    Relation fields are added afterwards with add-field.

    Examples:

        protean schema create Post --field "title:string:required:title" --field "body:text"

        protean schema create Post --from-file post.json
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    with command_errors(cli_ctx, formatter):
        spec: dict = read_json_file(from_file) if from_file else {}
        spec.setdefault("name", name)
        spec.setdefault("table_name", table_name or to_table_name(spec["name"]))
        spec.setdefault("project_id", cli_ctx.project_id)
        if description is not None:
            spec["description"] = description
        if fields:
            spec["fields"] = [parse_field_spec(f) for f in fields]

        definition = cli_ctx.get_db().create_entity_definition(spec)
        formatter.print_success(
            f"Entity definition '{definition.name}' created",
            {
                "id": definition.id,
                "name": definition.name,
                "table_name": definition.table_name,
                "fields": len(definition.fields),
            },
        )


@app.command("update")
def schema_update(
    ctx: typer.Context,
    entity_name: Annotated[str, typer.Argument(help="Definition name, table name or id")],
    changes_json: Annotated[str, typer.Argument(help="Changes as a JSON object")],
) -> None:
    """Update definition attributes (the table name is immutable).

    Examples:

        protean schema update Post '{"page_size": 50, "enable_filters": true}'
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    with command_errors(cli_ctx, formatter):
        changes = parse_json_object(changes_json, "changes")
        definition = cli_ctx.definition(entity_name)
        updated = cli_ctx.get_db().update_entity_definition(definition.id, changes)
        formatter.print_success(f"Entity definition '{updated.name}' updated", {"id": updated.id})


@app.command("delete")
def schema_delete(
    ctx: typer.Context,
    entity_name: Annotated[str, typer.Argument(help="Definition name, table name or id")],
    cascade: Annotated[
        bool,
        typer.Option("--cascade", help="Also delete its instances and their edges"),
    ] = False,
    force: Annotated[
        bool,
        typer.Option("--force", help="Skip confirmation prompt"),
    ] = False,
) -> None:
    """Delete an entity definition, its fields and every relation pointing at it."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    # Confirmation prompt
    if not force and not cli_ctx.json_output:
        confirm = typer.confirm(f"Are you sure you want to delete '{entity_name}'?")
        if not confirm:
            typer.echo("Cancelled.")
            raise typer.Exit(code=0)

    with command_errors(cli_ctx, formatter):
        definition = cli_ctx.definition(entity_name)
        cli_ctx.get_db().delete_entity_definition(definition.id, cascade=cascade)
        formatter.print_success(f"Entity definition '{definition.name}' deleted")


@app.command("add-field")
def schema_add_field(
    ctx: typer.Context,
    entity_name: Annotated[str, typer.Argument(help="Definition name, table name or id")],
    field_spec: Annotated[
        str,
        typer.Argument(help="Field spec: name:kind[:modifier] (e.g., 'tags:many_to_many')"),
    ],
    related: Annotated[
        str | None,
        typer.Option("--related", "-r", help="Related definition (relation kinds)"),
    ] = None,
    reverse_name: Annotated[
        str | None,
        typer.Option("--reverse-name", help="Name of the paired field on the related definition"),
    ] = None,
    no_reverse: Annotated[
        bool,
        typer.Option("--no-reverse", help="Leave the relation unpaired"),
    ] = False,
) -> None:
    """Add a field to a definition.

    Examples:

        protean schema add-field Post "summary:text"

        protean schema add-field Post "tags:many_to_many" --related Tag --reverse-name posts
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    with command_errors(cli_ctx, formatter):
        definition = cli_ctx.definition(entity_name)
        spec = parse_field_spec(field_spec)
        if related:
            spec["related_entity_definition_id"] = cli_ctx.definition(related).id
        if reverse_name:
            spec["relation_field_name"] = reverse_name
        if no_reverse:
            spec["create_reverse_field"] = False

        field = cli_ctx.get_db().create_field(definition.id, spec)
        details = {"id": field.id, "kind": field.kind}
        if field.relation_field_id:
            details["paired_field_id"] = field.relation_field_id
        formatter.print_success(f"Field '{field.name}' added to '{definition.name}'", details)


@app.command("update-field")
def schema_update_field(
    ctx: typer.Context,
    entity_name: Annotated[str, typer.Argument(help="Definition name, table name or id")],
    field_name: Annotated[str, typer.Argument(help="Field name or id")],
    changes_json: Annotated[str, typer.Argument(help="Changes as a JSON object")],
) -> None:
    """Update a field (rename, flags, label, order, default).

    Examples:

        protean schema update-field Post title '{"name": "headline", "searchable": true}'
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    with command_errors(cli_ctx, formatter):
        changes = parse_json_object(changes_json, "changes")
        field = _field_named(cli_ctx.definition(entity_name), field_name)
        updated = cli_ctx.get_db().update_field(field.id, changes)
        formatter.print_success(f"Field '{updated.name}' updated", {"id": updated.id})


@app.command("drop-field")
def schema_drop_field(
    ctx: typer.Context,
    entity_name: Annotated[str, typer.Argument(help="Definition name, table name or id")],
    field_name: Annotated[str, typer.Argument(help="Field name or id")],
    force: Annotated[
        bool,
        typer.Option("--force", help="Skip confirmation prompt"),
    ] = False,
) -> None:
    """Drop a field. Dropping a relation also drops its pair and edges."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    if not force and not cli_ctx.json_output:
        confirm = typer.confirm(f"Drop field '{field_name}' from '{entity_name}'?")
        if not confirm:
            typer.echo("Cancelled.")
            raise typer.Exit(code=0)

    with command_errors(cli_ctx, formatter):
        field = _field_named(cli_ctx.definition(entity_name), field_name)
        cli_ctx.get_db().delete_field(field.id)
        formatter.print_success(f"Field '{field.name}' dropped")


@app.command("changelog")
def schema_changelog(
    ctx: typer.Context,
    entity_name: Annotated[
        str | None,
        typer.Argument(help="Limit to one definition"),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-n", help="Maximum entries to show"),
    ] = 50,
) -> None:
    """Show schema changes, newest first."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    with command_errors(cli_ctx, formatter):
        definition_id = cli_ctx.definition(entity_name).id if entity_name else None
        entries = cli_ctx.get_db().get_changelog(definition_id, limit)

        if cli_ctx.json_output:
            formatter.print_data(entries)
        else:
            formatter.print_table(
                f"Schema changelog ({len(entries)} entries)",
                [
                    {
                        "When": e.timestamp.isoformat(timespec="seconds"),
                        "Operation": e.operation,
                        "Definition": e.definition_name,
                        "Field": e.field_name,
                        "By": e.created_by,
                    }
                    for e in entries
                ],
                ["When", "Operation", "Definition", "Field", "By"],
            )
