"""Statement upload, processing and inspection commands."""

from pathlib import Path

import click
from stmtflow.cli.date_filters import resolve_cli_date
from stmtflow.cli.error_handling import handle_domain_error
from stmtflow.config import ProcessingConfig, resolve_vault_dir
from stmtflow.domain.category import CategoryService
from stmtflow.domain.entities import StatementStatus, TransactionStatus
from stmtflow.domain.errors import DomainError
from stmtflow.domain.mapping import MappingRegistry
from stmtflow.domain.pipeline import ProcessingResult, StatementPipeline
from stmtflow.domain.statement import StatementService
from stmtflow.domain.text_extraction import Recognizer
from stmtflow.domain.vault import DEFAULT_KEY_ID, Vault


def _statement_service(vault_dir: str | None, key_id: str, db) -> StatementService:
    return StatementService(db, Vault(key_id=key_id), resolve_vault_dir(vault_dir))


def _text_file_recognizer(path: str, confidence: float) -> Recognizer:
    """Recognizer that returns previously recognized text from a file."""
    text = Path(path).read_text(encoding="utf-8")

    def recognize(content: bytes) -> tuple[str, float]:
        return text, confidence

    return recognize


def _echo_result(result: ProcessingResult) -> None:
    statement = result.statement
    if statement.status == StatementStatus.COMPLETED:
        duplicates = sum(1 for txn in result.transactions if txn.is_duplicate)
        click.echo(
            f"Statement {statement.id}: completed, {statement.transaction_count} transactions "
            f"({duplicates} duplicate{'s' if duplicates != 1 else ''}), "
            f"{statement.period_start} to {statement.period_end}"
        )
        if result.errors:
            click.echo(f"  Skipped {len(result.errors)} rows:")
            for error in result.errors:
                click.echo(f"    {error}")
        for warning in result.warnings:
            click.echo(f"  Warning: {warning}")
        if statement.needs_review:
            click.echo("  Flagged for manual review")
    else:
        click.echo(f"Statement {statement.id}: {statement.status.value} - {statement.last_error}")


@click.command("upload")
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--bank", "bank_id", required=True, help="Bank ID used to look up the mapping config")
@click.option("--user", "user_id", required=True, help="Owner of the statement")
@click.option("--type", "file_type", help="File type (default: file extension)")
@click.option("--key-id", default=DEFAULT_KEY_ID, show_default=True, help="Vault key ID to seal with")
@click.option("--vault-dir", type=click.Path(file_okay=False), help="Directory for sealed files")
@click.pass_context
def upload(ctx, file_path: str, bank_id: str, user_id: str, file_type: str | None, key_id: str, vault_dir: str | None):
    """Seal FILE_PATH and register it as a pending statement."""
    db = ctx.obj["db"]
    service = _statement_service(vault_dir, key_id, db)

    path = Path(file_path)
    try:
        statement = service.register_upload(
            content=path.read_bytes(),
            file_name=path.name,
            bank_id=bank_id,
            user_id=user_id,
            file_type=file_type,
        )
    except DomainError as e:
        handle_domain_error(ctx, e)
    click.echo(f"Uploaded '{path.name}' as statement {statement.id} (pending)")


@click.command("process")
@click.argument("statement_ids", type=int, nargs=-1)
@click.option("--pending", "all_pending", is_flag=True, help="Process every pending statement")
@click.option("--ocr-text", type=click.Path(exists=True, dir_okay=False), help="Recognized text for scanned statements")
@click.option("--ocr-confidence", type=float, default=1.0, show_default=True, help="Confidence of --ocr-text")
@click.option("--date-threshold", type=int, help="Duplicate date window in days")
@click.option("--similarity-threshold", type=float, help="Duplicate description similarity (0-1)")
@click.option("--max-workers", type=int, help="Statements processed in parallel")
@click.option("--vault-dir", type=click.Path(file_okay=False), help="Directory for sealed files")
@click.pass_context
def process(
    ctx,
    statement_ids: tuple[int, ...],
    all_pending: bool,
    ocr_text: str | None,
    ocr_confidence: float,
    date_threshold: int | None,
    similarity_threshold: float | None,
    max_workers: int | None,
    vault_dir: str | None,
):
    """Process uploaded statements."""
    db = ctx.obj["db"]
    service = _statement_service(vault_dir, DEFAULT_KEY_ID, db)
    category_service = CategoryService(db)

    try:
        config = ProcessingConfig.from_env().with_overrides(
            date_threshold_days=date_threshold,
            similarity_threshold=similarity_threshold,
            max_workers=max_workers,
        )
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)

    ids = list(statement_ids)
    if all_pending:
        ids.extend(s.id for s in reversed(service.list_statements()) if s.status == StatementStatus.PENDING)
    try:
        pending = []
        for statement_id in dict.fromkeys(ids):
            statement = service.get_statement(statement_id)
            if statement.status == StatementStatus.PENDING:
                pending.append(statement_id)
            else:
                click.echo(f"Statement {statement_id} is already {statement.status.value}; skipping")
    except DomainError as e:
        handle_domain_error(ctx, e)
    if not pending:
        click.echo("No statements to process.")
        return

    recognizer = _text_file_recognizer(ocr_text, ocr_confidence) if ocr_text else None
    registry = MappingRegistry.from_database(db)

    def build_pipeline(user_id: str) -> StatementPipeline:
        # Each vault call looks up its key by the handle's key id
        return StatementPipeline(
            vault=service.vault,
            registry=registry,
            categorizer=category_service.build_categorizer(user_id),
            recognizer=recognizer,
            config=config,
        )

    try:
        results = service.process_statements(pending, build_pipeline, max_workers=config.max_workers)
    except DomainError as e:
        handle_domain_error(ctx, e)

    processed = {result.statement.id for result in results}
    for statement_id in pending:
        if statement_id not in processed:
            click.echo(f"Statement {statement_id} was claimed by another run; skipping")
    for result in results:
        _echo_result(result)
    if any(not result.succeeded for result in results):
        ctx.exit(1)


@click.command("statements")
@click.option("--user", "user_id", help="Filter by owner")
@click.option("--since", help="Only statements uploaded on or after this date (e.g. 'last month')")
@click.pass_context
def list_statements(ctx, user_id: str | None, since: str | None):
    """List uploaded statements."""
    db = ctx.obj["db"]
    service = _statement_service(None, DEFAULT_KEY_ID, db)

    since_date = resolve_cli_date(ctx, since, "since date")
    statements = service.list_statements(user_id=user_id, since=since_date)
    if not statements:
        click.echo("No statements found.")
        return

    click.echo(f"\n{'ID':<5} {'User':<12} {'Bank':<12} {'Type':<5} {'Status':<11} {'Txns':>5}  File")
    click.echo("-" * 80)
    for s in statements:
        review = " [review]" if s.needs_review else ""
        click.echo(
            f"{s.id:<5} {s.user_id[:12]:<12} {s.bank_id[:12]:<12} {s.file_type[:5]:<5} "
            f"{s.status.value:<11} {s.transaction_count:>5}  {s.file_name}{review}"
        )
        if s.status == StatementStatus.FAILED and s.last_error:
            click.echo(f"      {s.last_error}")


@click.command("transactions")
@click.argument("statement_id", type=int)
@click.option("--include-duplicates/--hide-duplicates", default=True, help="Show ignored duplicates")
@click.pass_context
def list_transactions(ctx, statement_id: int, include_duplicates: bool):
    """List transactions parsed from a statement."""
    db = ctx.obj["db"]
    service = _statement_service(None, DEFAULT_KEY_ID, db)
    categories = {c.id: c.name for c in CategoryService(db).list_categories()}

    try:
        transactions = service.list_transactions(statement_id)
    except DomainError as e:
        handle_domain_error(ctx, e)

    if not include_duplicates:
        transactions = [t for t in transactions if t.status != TransactionStatus.IGNORED]
    if not transactions:
        click.echo("No transactions found.")
        return

    click.echo(f"\n{'Date':<12} {'Amount':>12}  {'Category':<16} {'Conf':>5}  Description")
    click.echo("-" * 90)
    for txn in transactions:
        category = categories.get(txn.suggested_category_id, "-")
        confidence = f"{txn.category_confidence:.2f}" if txn.category_confidence is not None else "-"
        duplicate = " [duplicate]" if txn.is_duplicate else ""
        click.echo(
            f"{txn.date.isoformat():<12} {txn.amount:>12,.2f}  {category[:16]:<16} {confidence:>5}  "
            f"{txn.description}{duplicate}"
        )
        click.echo(f"{'':<12} id: {txn.id}")


@click.command("log")
@click.argument("statement_id", type=int)
@click.pass_context
def show_log(ctx, statement_id: int):
    """Show the processing log of a statement."""
    db = ctx.obj["db"]
    service = _statement_service(None, DEFAULT_KEY_ID, db)

    try:
        logs = service.list_logs(statement_id)
    except DomainError as e:
        handle_domain_error(ctx, e)

    for entry in logs:
        timestamp = entry.created_at.strftime("%Y-%m-%d %H:%M:%S") if entry.created_at else ""
        click.echo(
            f"{entry.sequence:>3} {timestamp} {entry.step.value:<15} {entry.status.value:<10} {entry.message}"
        )


@click.command("confirm")
@click.argument("transaction_id")
@click.argument("category")
@click.pass_context
def confirm(ctx, transaction_id: str, category: str):
    """Confirm CATEGORY for a transaction and learn from it."""
    db = ctx.obj["db"]
    service = CategoryService(db)

    try:
        learning = service.confirm_category(transaction_id, category)
    except DomainError as e:
        handle_domain_error(ctx, e)
    click.echo(
        f"Confirmed '{category}' for transaction {transaction_id} "
        f"(learned confidence {learning.confidence:.2f} after {learning.occurrences} "
        f"confirmation{'s' if learning.occurrences != 1 else ''})"
    )


def register_commands(cli):
    """Register statement commands with main CLI."""
    cli.add_command(upload)
    cli.add_command(process)
    cli.add_command(list_statements)
    cli.add_command(list_transactions)
    cli.add_command(show_log)
    cli.add_command(confirm)
