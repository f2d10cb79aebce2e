"""Bank mapping config management commands."""

import click
from stmtflow.cli.error_handling import handle_domain_error
from stmtflow.domain.entities import AmountFormat, BankMappingConfig, FieldMapping, FileType
from stmtflow.domain.errors import DomainError
from stmtflow.domain.mapping import MappingConfigService


@click.group()
def mapping_group():
    """Manage per-bank mapping configs."""
    pass


@mapping_group.command("create")
@click.argument("bank_id")
@click.option(
    "--type",
    "file_type",
    required=True,
    type=click.Choice([t.value for t in FileType], case_sensitive=False),
    help="Statement file type this mapping describes",
)
@click.option("--bank-name", help="Display name of the bank (default: bank ID)")
@click.option("--date-col", required=True, help="Column holding the transaction date")
@click.option("--description-col", required=True, help="Column holding the description")
@click.option("--amount-col", help="Column holding the amount")
@click.option("--debit-col", help="Column holding debits (debit_credit format)")
@click.option("--credit-col", help="Column holding credits (debit_credit format)")
@click.option("--balance-col", help="Column holding the running balance")
@click.option("--reference-col", help="Column holding the bank reference")
@click.option("--type-col", help="Column holding the debit/credit marker (single_column format)")
@click.option("--date-format", required=True, help="Date format, e.g. DD/MM/YYYY or %d/%m/%Y")
@click.option(
    "--amount-format",
    type=click.Choice([f.value for f in AmountFormat], case_sensitive=False),
    default=AmountFormat.POSITIVE_NEGATIVE.value,
    show_default=True,
    help="How amounts are encoded",
)
@click.option("--delimiter", default=",", show_default=True, help="CSV delimiter")
@click.option("--header-row", type=int, default=1, show_default=True, help="Header line number (0 = no header)")
@click.option("--skip-rows", type=int, default=0, show_default=True, help="Preamble lines to skip")
@click.option("--encoding", default="utf-8-sig", show_default=True, help="Text encoding")
@click.option("--ocr-pattern", help="Line regex with named groups for scanned statements")
@click.pass_context
def create_mapping(
    ctx,
    bank_id: str,
    file_type: str,
    bank_name: str | None,
    date_col: str,
    description_col: str,
    amount_col: str | None,
    debit_col: str | None,
    credit_col: str | None,
    balance_col: str | None,
    reference_col: str | None,
    type_col: str | None,
    date_format: str,
    amount_format: str,
    delimiter: str,
    header_row: int,
    skip_rows: int,
    encoding: str,
    ocr_pattern: str | None,
):
    """Create a mapping config for BANK_ID."""
    db = ctx.obj["db"]
    service = MappingConfigService(db)

    fields = FieldMapping(
        date=date_col,
        description=description_col,
        amount=amount_col,
        debit=debit_col,
        credit=credit_col,
        balance=balance_col,
        reference=reference_col,
        type=type_col,
    )
    try:
        mapping_id = service.create_mapping(
            bank_id=bank_id,
            file_type=file_type,
            fields=fields,
            date_format=date_format,
            amount_format=amount_format,
            bank_name=bank_name,
            delimiter=delimiter,
            header_row=header_row,
            skip_rows=skip_rows,
            encoding=encoding,
            ocr_line_pattern=ocr_pattern,
        )
    except DomainError as e:
        handle_domain_error(ctx, e)
    click.echo(f"Created mapping for '{bank_id}' ({file_type.lower()}) (ID: {mapping_id})")


@mapping_group.command("list")
@click.option("--bank", help="Filter by bank ID")
@click.option("--all", "show_all", is_flag=True, help="Include deactivated mappings")
@click.pass_context
def list_mappings(ctx, bank: str | None, show_all: bool):
    """List mapping configs."""
    db = ctx.obj["db"]
    service = MappingConfigService(db)

    mappings = service.list_mappings(bank_id=bank, active_only=not show_all)
    if not mappings:
        click.echo("No mapping configs found.")
        return

    click.echo(f"\n{'ID':<5} {'Bank':<15} {'Type':<5} {'Amounts':<18} {'Date format':<12} Active")
    click.echo("-" * 70)
    for m in mappings:
        click.echo(
            f"{m.id:<5} {m.bank_id:<15} {m.file_type.value:<5} {m.amount_format.value:<18} "
            f"{m.date_format:<12} {'yes' if m.is_active else 'no'}"
        )


@mapping_group.command("show")
@click.argument("mapping_id", type=int)
@click.pass_context
def show_mapping(ctx, mapping_id: int):
    """Show one mapping config in detail."""
    db = ctx.obj["db"]
    service = MappingConfigService(db)

    mapping = service.get_mapping(mapping_id)
    if mapping is None:
        click.echo(f"Error: Mapping config {mapping_id} not found", err=True)
        ctx.exit(1)
    _print_mapping(mapping)


@mapping_group.command("deactivate")
@click.argument("mapping_id", type=int)
@click.pass_context
def deactivate_mapping(ctx, mapping_id: int):
    """Deactivate a mapping config."""
    db = ctx.obj["db"]
    service = MappingConfigService(db)

    try:
        service.deactivate_mapping(mapping_id)
    except DomainError as e:
        handle_domain_error(ctx, e)
    click.echo(f"Deactivated mapping {mapping_id}")


def _print_mapping(mapping: BankMappingConfig) -> None:
    click.echo(f"Mapping {mapping.id}: {mapping.bank_name} ({mapping.bank_id})")
    click.echo(f"  File type:     {mapping.file_type.value}")
    click.echo(f"  Amount format: {mapping.amount_format.value}")
    click.echo(f"  Date format:   {mapping.date_format}")
    if mapping.file_type == FileType.CSV:
        click.echo(f"  Delimiter:     {mapping.delimiter!r}")
        click.echo(f"  Header row:    {mapping.header_row}")
        click.echo(f"  Skip rows:     {mapping.skip_rows}")
        click.echo(f"  Encoding:      {mapping.encoding}")
    if mapping.ocr_line_pattern:
        click.echo(f"  OCR pattern:   {mapping.ocr_line_pattern}")
    click.echo(f"  Active:        {'yes' if mapping.is_active else 'no'}")
    click.echo("  Fields:")
    for name, column in mapping.fields.items():
        click.echo(f"    {name:<12} <- {column}")


def register_commands(cli):
    """Register mapping commands with main CLI."""
    cli.add_command(mapping_group, name="mapping")
