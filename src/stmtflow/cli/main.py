"""Main CLI entry point."""

import logging
import os

import click
from stmtflow.database.factories import create_sqlite_database

# Import and register all commands at module level
from stmtflow.cli.commands import (
    mapping,
    category,
    init_categories,
    statement,
    vault,
)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(verbose: bool) -> None:
    """Configure root logging from --verbose or STMTFLOW_LOG_LEVEL."""
    if verbose:
        level = logging.DEBUG
    else:
        name = os.environ.get("STMTFLOW_LOG_LEVEL", "WARNING").upper()
        level = logging.getLevelName(name)
        if not isinstance(level, int):
            level = logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT)


@click.group()
@click.option(
    "--db-path",
    type=click.Path(),
    help="Path to database file (overrides STMTFLOW_DB_PATH environment variable)",
    envvar="STMTFLOW_DB_PATH",
)
@click.option("--verbose", "-v", is_flag=True, help="Log processing steps to stderr")
@click.pass_context
def cli(ctx, db_path: str | None, verbose: bool):
    """stmtflow - Bank statement ingestion.

    Upload bank statements (CSV, OFX, QIF or scanned PDF), normalize them
    with per-bank mapping configs, flag duplicates, and suggest categories.
    """
    ctx.ensure_object(dict)
    configure_logging(verbose)

    # Initialize database connection only when actually running a command
    # (not when showing help)
    if ctx.invoked_subcommand is not None:
        db = create_sqlite_database(database_path=db_path)
        db.connect()
        db.initialize_schema()
        ctx.obj["db"] = db
        ctx.call_on_close(db.disconnect)


# Register all commands
mapping.register_commands(cli)
category.register_commands(cli)
init_categories.register_commands(cli)
statement.register_commands(cli)
vault.register_commands(cli)


def main():
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
