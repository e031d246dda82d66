"""CLI command tests for Protean."""

import json
import os
import tempfile
from collections.abc import Generator

import pytest
from typer.testing import CliRunner

from protean.cli.main import app
from protean.cli.parsing import parse_field_spec, to_table_name

runner = CliRunner()


@pytest.fixture
def temp_db() -> Generator[str, None, None]:
    """Create a temporary SQLite database file."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name
    yield f"sqlite:///{db_path}"
    # Cleanup
    if os.path.exists(db_path):
        os.remove(db_path)


def invoke_json(db_url: str, *args: str) -> dict | list:
    """Run a command with --json and parse its output."""
    result = runner.invoke(app, ["-d", db_url, "--json", *args])
    assert result.exit_code == 0, f"Failed with: {result.stdout}"
    return json.loads(result.stdout)


@pytest.fixture
def blog_db(temp_db: str) -> str:
    """Tag and Post definitions linked by Post.tags."""
    invoke_json(temp_db, "schema", "create", "Tag", "-f", "label:string:required:title")
    invoke_json(
        temp_db,
        "schema",
        "create",
        "Post",
        "-f",
        "title:string:required:title:searchable",
        "-f",
        "views:number:default=0",
    )
    invoke_json(
        temp_db,
        "schema",
        "add-field",
        "Post",
        "tags:many_to_many",
        "--related",
        "Tag",
        "--reverse-name",
        "posts",
    )
    return temp_db


class TestParsing:
    """Tests for CLI input parsing."""

    def test_field_spec(self) -> None:
        """Field specs expand modifiers into flags."""
        assert parse_field_spec("title:string:required:title") == {
            "name": "title",
            "kind": "string",
            "required": True,
            "is_title_field": True,
        }

    def test_field_spec_default_and_hidden(self) -> None:
        """Defaults are parsed as JSON; hidden hides the table column."""
        assert parse_field_spec("score:number:default=5:hidden") == {
            "name": "score",
            "kind": "number",
            "default": 5,
            "show_in_table": False,
        }

    def test_field_spec_invalid(self) -> None:
        """Malformed specs are rejected."""
        with pytest.raises(ValueError):
            parse_field_spec("title")
        with pytest.raises(ValueError):
            parse_field_spec("title:string:shiny")

    def test_table_name(self) -> None:
        """Display names become snake_case storage keys."""
        assert to_table_name("BlogPost") == "blog_post"
        assert to_table_name("Order Item 2") == "order_item"


class TestVersionCommand:
    """Test the version command."""

    def test_version_output(self) -> None:
        """Test that version command shows version info."""
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "Protean v" in result.stdout


class TestSchemaCommands:
    """Test schema management commands."""

    def test_schema_list_empty(self, temp_db: str) -> None:
        """Listing an empty project prints an empty array."""
        assert invoke_json(temp_db, "schema", "list") == []

    def test_schema_list_table(self, blog_db: str) -> None:
        """The table view lists definitions."""
        result = runner.invoke(app, ["-d", blog_db, "schema", "list"])
        assert result.exit_code == 0
        assert "Post" in result.stdout
        assert "Tag" in result.stdout

    def test_schema_create(self, temp_db: str) -> None:
        """Creating a definition reports its name and storage key."""
        data = invoke_json(
            temp_db, "schema", "create", "BlogPost", "-f", "title:string", "-f", "body:text"
        )
        assert data["success"] is True
        assert data["name"] == "BlogPost"
        assert data["table_name"] == "blog_post"
        assert data["fields"] == 2

    def test_schema_create_from_file(self, temp_db: str, tmp_path) -> None:
        """Definitions can be loaded from JSON."""
        spec_file = tmp_path / "note.json"
        spec_file.write_text(
            json.dumps({"name": "Note", "table_name": "notes", "fields": [{"name": "text"}]})
        )
        data = invoke_json(temp_db, "schema", "create", "Ignored", "--from-file", str(spec_file))
        assert data["name"] == "Note"
        assert data["table_name"] == "notes"

    def test_schema_create_invalid_kind(self, temp_db: str) -> None:
        """Invalid kinds exit 1 with a JSON error."""
        result = runner.invoke(
            app, ["-d", temp_db, "--json", "schema", "create", "Bad", "-f", "x:uuid"]
        )
        assert result.exit_code == 1
        assert json.loads(result.stdout)["error"] in {"ValidationError", "InvalidFieldKindError"}

    def test_schema_describe(self, blog_db: str) -> None:
        """Describe shows fields including relations."""
        data = invoke_json(blog_db, "schema", "describe", "Post")
        assert data["name"] == "Post"
        kinds = {f["name"]: f["kind"] for f in data["fields"]}
        assert kinds == {"title": "string", "views": "number", "tags": "many_to_many"}

    def test_schema_describe_by_table_name(self, blog_db: str) -> None:
        """Definitions can be addressed by storage key."""
        assert invoke_json(blog_db, "schema", "describe", "tag")["name"] == "Tag"

    def test_schema_describe_nonexistent(self, temp_db: str) -> None:
        """Describing a missing definition fails."""
        result = runner.invoke(app, ["-d", temp_db, "--json", "schema", "describe", "Nope"])
        assert result.exit_code == 1
        assert json.loads(result.stdout)["error"] == "EntityDefinitionNotFoundError"

    def test_schema_projects_are_separate(self, blog_db: str) -> None:
        """Definitions belong to the active project."""
        result = runner.invoke(app, ["-d", blog_db, "-p", "other", "--json", "schema", "list"])
        assert json.loads(result.stdout) == []

    def test_reverse_field_created(self, blog_db: str) -> None:
        """Adding a relation creates the paired field."""
        data = invoke_json(blog_db, "schema", "describe", "Tag")
        posts = next(f for f in data["fields"] if f["name"] == "posts")
        assert posts["kind"] == "many_to_many"

    def test_update_field_and_drop_field(self, blog_db: str) -> None:
        """Fields can be renamed and dropped."""
        invoke_json(blog_db, "schema", "update-field", "Post", "views", '{"name": "hits"}')
        names = [f["name"] for f in invoke_json(blog_db, "schema", "describe", "Post")["fields"]]
        assert "hits" in names

        invoke_json(blog_db, "schema", "drop-field", "Post", "hits")
        names = [f["name"] for f in invoke_json(blog_db, "schema", "describe", "Post")["fields"]]
        assert "hits" not in names

    def test_update_definition(self, blog_db: str) -> None:
        """Definition attributes can be updated from JSON."""
        invoke_json(blog_db, "schema", "update", "Post", '{"page_size": 50}')
        assert invoke_json(blog_db, "schema", "describe", "Post")["page_size"] == 50

    def test_delete_requires_cascade(self, blog_db: str) -> None:
        """Deleting a definition with instances needs --cascade."""
        invoke_json(blog_db, "data", "insert", "Tag", '{"label": "news"}')
        result = runner.invoke(app, ["-d", blog_db, "--json", "schema", "delete", "Tag"])
        assert result.exit_code == 1
        assert json.loads(result.stdout)["error"] == "EntityHasInstancesError"

        invoke_json(blog_db, "schema", "delete", "Tag", "--cascade")
        names = [d["name"] for d in invoke_json(blog_db, "schema", "list")]
        assert names == ["Post"]

    def test_changelog(self, blog_db: str) -> None:
        """The changelog lists schema operations."""
        entries = invoke_json(blog_db, "schema", "changelog", "Post")
        assert {e["operation"] for e in entries} == {"create_entity_definition", "create_field"}


class TestDataCommands:
    """Test instance data commands."""

    def test_insert_and_get(self, blog_db: str) -> None:
        """Inserted instances can be read back with titled relations."""
        tag_id = invoke_json(blog_db, "data", "insert", "Tag", '{"label": "news"}')["id"]
        post_id = invoke_json(
            blog_db, "data", "insert", "Post", json.dumps({"title": "Hello", "tags": [tag_id]})
        )["id"]

        record = invoke_json(blog_db, "data", "get", post_id)
        assert record["data"] == {"title": "Hello", "views": 0}
        assert record["relations"]["tags"] == [{"id": tag_id, "title": "news"}]

        record = invoke_json(blog_db, "data", "get", post_id, "--ids")
        assert record["relations"]["tags"] == [tag_id]

    def test_insert_batch(self, blog_db: str, tmp_path) -> None:
        """JSONL files insert one instance per line."""
        lines = tmp_path / "tags.jsonl"
        lines.write_text('{"label": "a"}\n\n{"label": "b"}\n')
        data = invoke_json(blog_db, "data", "insert", "Tag", "--from-file", str(lines), "--batch")
        assert data["count"] == 2

    def test_insert_invalid(self, blog_db: str) -> None:
        """Validation failures exit 1 with field errors."""
        result = runner.invoke(
            app, ["-d", blog_db, "--json", "data", "insert", "Post", '{"views": 1}']
        )
        assert result.exit_code == 1
        error = json.loads(result.stdout)
        assert error["context"]["field_errors"] == {"title": "required"}

    def test_list_with_filter_and_search(self, blog_db: str) -> None:
        """Listing accepts JSON filters and search."""
        tag_id = invoke_json(blog_db, "data", "insert", "Tag", '{"label": "news"}')["id"]
        invoke_json(
            blog_db, "data", "insert", "Post", json.dumps({"title": "Hello", "tags": [tag_id]})
        )
        invoke_json(blog_db, "data", "insert", "Post", '{"title": "Other"}')

        page = invoke_json(
            blog_db,
            "data",
            "list",
            "Post",
            "--filter",
            json.dumps({"type": "many_to_many", "field": "tags", "values": [tag_id]}),
            "--include",
            "tags",
        )
        assert [r["data"]["title"] for r in page["data"]] == ["Hello"]
        assert page["pagination"]["total"] == 1

        page = invoke_json(blog_db, "data", "list", "Post", "--search", "oth")
        assert [r["data"]["title"] for r in page["data"]] == ["Other"]

    def test_list_table(self, blog_db: str) -> None:
        """The table view shows titles and pagination."""
        invoke_json(blog_db, "data", "insert", "Post", '{"title": "Hello"}')
        result = runner.invoke(app, ["-d", blog_db, "data", "list", "Post"])
        assert result.exit_code == 0
        assert "Hello" in result.stdout
        assert "1 total" in result.stdout

    def test_update_and_delete(self, blog_db: str) -> None:
        """Instances can be updated and deleted."""
        post_id = invoke_json(blog_db, "data", "insert", "Post", '{"title": "Hello"}')["id"]
        invoke_json(blog_db, "data", "update", post_id, '{"title": "Renamed"}')
        assert invoke_json(blog_db, "data", "get", post_id)["data"]["title"] == "Renamed"

        invoke_json(blog_db, "data", "delete", post_id, "--force")
        result = runner.invoke(app, ["-d", blog_db, "--json", "data", "get", post_id])
        assert result.exit_code == 1

    def test_options(self, blog_db: str) -> None:
        """Options list every instance with its title."""
        tag_id = invoke_json(blog_db, "data", "insert", "Tag", '{"label": "news"}')["id"]
        assert invoke_json(blog_db, "data", "options", "Tag") == [{"id": tag_id, "title": "news"}]
