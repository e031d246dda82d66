"""CLI context management for database connections and shared state."""

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

import typer

from protean import ProteanDB
from protean.cli.output import OutputFormatter
from protean.core.types import EntityDefinitionInfo

DEFAULT_PROJECT = "default"


@dataclass
class CLIContext:
    """Shared context for CLI commands.

    Manages database connection lifecycle, the active project and output
    preferences.
    """

    database_url: str
    project_id: str = DEFAULT_PROJECT
    echo: bool = False
    json_output: bool = False
    _db: ProteanDB | None = field(default=None, init=False, repr=False)

    def get_db(self) -> ProteanDB:
        """Get or create database connection (lazy initialization)."""
        if self._db is None:
            self._db = ProteanDB(
                self.database_url,
                echo=self.echo,
                project_resolver=lambda: self.project_id,
            )
        return self._db

    def definition(self, name_or_id: str) -> EntityDefinitionInfo:
        """Find a definition in the active project by name, storage key or id.

        Raises:
            EntityDefinitionNotFoundError: If nothing matches
        """
        db = self.get_db()
        found = db.find_entity_definition(name_or_id, self.project_id)
        if found is not None:
            return found
        return db.get_entity_definition_with_fields(name_or_id)

    def close(self) -> None:
        """Close database connection if open."""
        if self._db is not None:
            self._db.close()
            self._db = None


@contextmanager
def command_errors(cli_ctx: CLIContext, formatter: OutputFormatter) -> Iterator[None]:
    """Print any error raised by a command and exit with status 1."""
    try:
        yield
    except typer.Exit:
        raise
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1) from e
    finally:
        cli_ctx.close()
