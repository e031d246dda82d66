"""Instance data commands."""

from typing import Annotated

import typer

from protean.cli.context import CLIContext, command_errors
from protean.cli.output import OutputFormatter
from protean.cli.parsing import parse_json_object, read_json_file, read_jsonl_file

# Create data subcommand group
app = typer.Typer(help="Manage entity instances")


@app.command("insert")
def data_insert(
    ctx: typer.Context,
    entity_name: Annotated[str, typer.Argument(help="Definition name, table name or id")],
    data_json: Annotated[
        str | None,
        typer.Argument(help="Instance data as JSON (relation fields take id lists)"),
    ] = None,
    from_file: Annotated[
        str | None,
        typer.Option("--from-file", "-f", help="Load data from JSON/JSONL file"),
    ] = None,
    batch: Annotated[
        bool,
        typer.Option("--batch", help="Insert every line of a JSONL file"),
    ] = False,
) -> None:
    """Create instance(s).

    Examples:

        protean data insert Post '{"title": "Hello", "tags": ["<tag-id>"]}'

        protean data insert Post --from-file posts.jsonl --batch
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    with command_errors(cli_ctx, formatter):
        db = cli_ctx.get_db()
        definition = cli_ctx.definition(entity_name)

        if from_file and batch:
            ids = [db.create_instance(definition.id, row).id for row in read_jsonl_file(from_file)]
            formatter.print_success(
                f"Inserted {len(ids)} instances",
                {"count": len(ids), "ids": ids[:5]},  # Show first 5
            )
            return

        if from_file:
            data = read_json_file(from_file)
        elif data_json:
            data = parse_json_object(data_json)
        else:
            raise typer.BadParameter("Either provide data as JSON string or use --from-file")

        record = db.create_instance(definition.id, data)
        formatter.print_success("Inserted instance", {"id": record.id})


@app.command("get")
def data_get(
    ctx: typer.Context,
    instance_id: Annotated[str, typer.Argument(help="Instance ID")],
    as_ids: Annotated[
        bool,
        typer.Option("--ids", help="Show relation targets as ids instead of titles"),
    ] = False,
) -> None:
    """Get an instance with its relations."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    with command_errors(cli_ctx, formatter):
        record = cli_ctx.get_db().get_instance_by_id(instance_id, relations_as_ids=as_ids)
        formatter.print_data(record)


@app.command("list")
def data_list(
    ctx: typer.Context,
    entity_name: Annotated[str, typer.Argument(help="Definition name, table name or id")],
    limit: Annotated[
        int | None,
        typer.Option("--limit", "-n", help="Page size (defaults to the definition's)"),
    ] = None,
    offset: Annotated[int, typer.Option("--offset", help="Rows to skip")] = 0,
    filters: Annotated[
        list[str] | None,
        typer.Option(
            "--filter",
            help='Filter as JSON, e.g. \'{"type": "simple", "field": "title", '
            '"operator": "ilike", "value": "hello"}\'. Can be repeated.',
        ),
    ] = None,
    search: Annotated[
        str | None,
        typer.Option("--search", "-s", help="Free-text search over searchable fields"),
    ] = None,
    sort_by: Annotated[str | None, typer.Option("--sort-by", help="Sort field")] = None,
    ascending: Annotated[bool, typer.Option("--asc", help="Sort ascending")] = False,
    include: Annotated[
        list[str] | None,
        typer.Option("--include", "-i", help="Relation field to expand. Can be repeated."),
    ] = None,
) -> None:
    """List a page of instances.

    Examples:

        protean data list Post --search hello --include tags

        protean data list Post --filter '{"type": "many_to_many", "field": "tags", "values": "a,b", "mode": "and"}'
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    with command_errors(cli_ctx, formatter):
        definition = cli_ctx.definition(entity_name)
        page = cli_ctx.get_db().get_instances(
            definition.id,
            limit=limit,
            offset=offset,
            include_relations=include,
            filters=[parse_json_object(f, "filter") for f in filters or []],
            search=search,
            sort_by=sort_by,
            sort_order="asc" if ascending else "desc",
        )
        formatter.print_page(definition, page)


@app.command("update")
def data_update(
    ctx: typer.Context,
    instance_id: Annotated[str, typer.Argument(help="Instance ID")],
    data_json: Annotated[str, typer.Argument(help="Changes as JSON (null clears a value)")],
) -> None:
    """Update an instance.

    Examples:

        protean data update 550e8400-... '{"title": "Renamed", "tags": []}'
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    with command_errors(cli_ctx, formatter):
        record = cli_ctx.get_db().update_instance(instance_id, parse_json_object(data_json))
        formatter.print_success("Updated instance", {"id": record.id})


@app.command("delete")
def data_delete(
    ctx: typer.Context,
    instance_id: Annotated[str, typer.Argument(help="Instance ID")],
    force: Annotated[
        bool,
        typer.Option("--force", help="Skip confirmation prompt"),
    ] = False,
) -> None:
    """Delete an instance and its relation edges."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    # Confirmation prompt
    if not force and not cli_ctx.json_output:
        confirm = typer.confirm(f"Are you sure you want to delete instance {instance_id}?")
        if not confirm:
            typer.echo("Cancelled.")
            raise typer.Exit(code=0)

    with command_errors(cli_ctx, formatter):
        cli_ctx.get_db().delete_instance(instance_id)
        formatter.print_success("Deleted instance", {"id": instance_id})


@app.command("options")
def data_options(
    ctx: typer.Context,
    entity_name: Annotated[str, typer.Argument(help="Definition name, table name or id")],
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum options")] = 1000,
) -> None:
    """List instances as {id, title} selector options."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    with command_errors(cli_ctx, formatter):
        definition = cli_ctx.definition(entity_name)
        options = cli_ctx.get_db().list_options(definition.id, limit=limit)

        if cli_ctx.json_output:
            formatter.print_data(options)
        else:
            formatter.print_table(
                f"{definition.name} options ({len(options)})",
                [{"ID": o.id, "Title": o.title} for o in options],
                ["ID", "Title"],
            )
