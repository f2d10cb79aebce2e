"""Initialize default categories."""

import click
from stmtflow.domain.category import CategoryService
from stmtflow.domain.errors import DomainError


# (name, type, [keyword, ...], [(field, operator, value, weight), ...])
INITIAL_CATEGORIES = [
    (
        "Groceries",
        "expense",
        ["grocery", "supermarket", "market"],
        [
            ("merchant", "contains", "woolworths", 1.0),
            ("merchant", "contains", "coles", 1.0),
            ("merchant", "contains", "aldi", 1.0),
            ("description", "contains", "supermarket", 0.5),
        ],
    ),
    (
        "Restaurants",
        "expense",
        ["restaurant", "cafe", "dining", "takeaway"],
        [
            ("description", "contains", "restaurant", 1.0),
            ("description", "contains", "cafe", 0.5),
            ("merchant", "contains", "mcdonalds", 1.0),
        ],
    ),
    (
        "Transport",
        "expense",
        ["fuel", "parking", "taxi", "toll"],
        [
            ("description", "contains", "uber", 1.0),
            ("description", "contains", "opal", 1.0),
            ("description", "regex", r"\b(shell|bp|caltex)\b", 0.8),
        ],
    ),
    (
        "Utilities",
        "expense",
        ["energy", "gas", "phone", "broadband"],
        [
            ("description", "contains", "electricity", 1.0),
            ("description", "contains", "water", 0.5),
            ("description", "contains", "internet", 1.0),
        ],
    ),
    (
        "Entertainment",
        "expense",
        ["cinema", "streaming", "music"],
        [
            ("merchant", "contains", "netflix", 1.0),
            ("merchant", "contains", "spotify", 1.0),
        ],
    ),
    (
        "Salary",
        "income",
        ["wages", "payroll"],
        [
            ("description", "contains", "salary", 1.0),
            ("description", "contains", "payroll", 1.0),
        ],
    ),
    (
        "Transfers",
        "transfer",
        ["transfer"],
        [
            ("description", "starts_with", "transfer", 1.0),
            ("description", "contains", "bpay", 0.5),
        ],
    ),
    (
        "Rent/Mortgage",
        "expense",
        ["rent", "mortgage", "real estate"],
        [
            ("description", "regex", r"\brent\b", 1.0),
            ("description", "contains", "mortgage", 1.0),
        ],
    ),
    ("Other", "expense", [], []),
]


@click.command("init-categories")
@click.pass_context
def init_categories(ctx):
    """Initialize database with default categories and rules."""
    db = ctx.obj["db"]
    service = CategoryService(db)

    # Check if categories already exist
    existing = service.list_categories()
    if existing:
        click.echo("Categories already exist. Nothing to do.")
        return

    click.echo("Creating default categories...")

    created = 0
    errors = 0
    for name, category_type, keywords, rules in INITIAL_CATEGORIES:
        try:
            service.create_category(name=name, category_type=category_type, keywords=keywords)
            for field, operator, value, weight in rules:
                service.add_rule(name, field, operator, value, weight)
            created += 1
        except DomainError as e:
            click.echo(f"Warning: Could not create category '{name}': {e}", err=True)
            errors += 1

    if errors == 0:
        click.echo(f"Successfully created {created} categories.")
    else:
        click.echo(f"Created {created} categories with {errors} errors.")


def register_commands(cli):
    """Register init-categories command with main CLI."""
    cli.add_command(init_categories)
