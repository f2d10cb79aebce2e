"""CLI helpers for date option parsing."""

from datetime import date

import click

from stmtflow.utils.date_parser import parse_date


def resolve_cli_date(ctx: click.Context, value: str | None, label: str) -> date | None:
    """Parse a free-form date option, exiting with an error if it is invalid."""
    if not value:
        return None
    try:
        return parse_date(value)
    except ValueError as e:
        click.echo(f"Error: Invalid {label}: {e}", err=True)
        ctx.exit(1)
