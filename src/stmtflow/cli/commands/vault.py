"""Vault key management commands."""

import click
from stmtflow.domain.vault import DEFAULT_KEY_ID, generate_key


@click.group()
def vault_group():
    """Manage statement encryption keys."""
    pass


@vault_group.command("keygen")
@click.option("--key-id", default=DEFAULT_KEY_ID, show_default=True, help="Key ID the key will be stored under")
def keygen(key_id: str):
    """Generate a new AES-256 key and print the variable to export."""
    name = "STMTFLOW_VAULT_KEY" if key_id == DEFAULT_KEY_ID else f"STMTFLOW_VAULT_KEY_{key_id.upper()}"
    click.echo(f"export {name}={generate_key()}")
    click.echo("Keep this key safe: sealed statements cannot be opened without it.", err=True)


def register_commands(cli):
    """Register vault commands with main CLI."""
    cli.add_command(vault_group, name="vault")
