"""Category management commands."""

import click
from stmtflow.cli.error_handling import handle_domain_error
from stmtflow.domain.category import CategoryService
from stmtflow.domain.entities import CategoryType, RuleField, RuleOperator
from stmtflow.domain.errors import DomainError


@click.group()
def category_group():
    """Manage categories and their rules."""
    pass


@category_group.command("list")
@click.option("--rules/--no-rules", default=True, help="Show each category's rules")
@click.pass_context
def list_categories(ctx, rules: bool):
    """List all categories."""
    db = ctx.obj["db"]
    service = CategoryService(db)

    categories = service.list_categories()
    if not categories:
        click.echo("No categories found. Run 'init-categories' to create default categories.")
        return

    click.echo("\nCategories:")
    for cat in categories:
        inactive = "" if cat.is_active else " [inactive]"
        click.echo(f"{cat.name} (ID: {cat.id}, {cat.category_type.value}){inactive}")
        if cat.keywords:
            click.echo(f"  keywords: {', '.join(cat.keywords)}")
        if rules:
            for rule in cat.rules:
                click.echo(
                    f"  {rule.field.value} {rule.operator.value} '{rule.value}' (weight {rule.weight:g})"
                )


@category_group.command("create")
@click.argument("name")
@click.option(
    "--type",
    "category_type",
    type=click.Choice([t.value for t in CategoryType], case_sensitive=False),
    default=CategoryType.EXPENSE.value,
    help="Category type (default: expense)",
)
@click.option("--keyword", "-k", "keywords", multiple=True, help="Keyword hinting at this category (repeatable)")
@click.pass_context
def create_category(ctx, name: str, category_type: str, keywords: tuple[str, ...]):
    """Create a new category."""
    db = ctx.obj["db"]
    service = CategoryService(db)

    try:
        category_id = service.create_category(name=name, category_type=category_type, keywords=keywords)
        click.echo(f"Created category '{name}' (ID: {category_id})")
    except DomainError as e:
        handle_domain_error(ctx, e)


@category_group.command("add-rule")
@click.argument("category")
@click.argument("field", type=click.Choice([f.value for f in RuleField], case_sensitive=False))
@click.argument("operator", type=click.Choice([o.value for o in RuleOperator], case_sensitive=False))
@click.argument("value")
@click.option("--weight", type=float, default=1.0, show_default=True, help="Rule weight")
@click.pass_context
def add_rule(ctx, category: str, field: str, operator: str, value: str, weight: float):
    """Add a rule to CATEGORY.

    Examples:

        stmtflow category add-rule Groceries description contains woolworths

        stmtflow category add-rule Rent amount amount_range 1500:3000 --weight 0.5
    """
    db = ctx.obj["db"]
    service = CategoryService(db)

    try:
        rule_id = service.add_rule(category, field, operator, value, weight)
        click.echo(f"Added rule {rule_id} to '{category}': {field} {operator} '{value}'")
    except DomainError as e:
        handle_domain_error(ctx, e)


@category_group.command("add-keyword")
@click.argument("category")
@click.argument("keywords", nargs=-1, required=True)
@click.pass_context
def add_keyword(ctx, category: str, keywords: tuple[str, ...]):
    """Add KEYWORDS to CATEGORY.

    Keywords are weaker hints than rules: they decide the category only
    when no rule or learned pattern matches.
    """
    db = ctx.obj["db"]
    service = CategoryService(db)

    try:
        merged = service.add_keywords(category, keywords)
        click.echo(f"Keywords for '{category}': {', '.join(merged)}")
    except DomainError as e:
        handle_domain_error(ctx, e)


def register_commands(cli):
    """Register category commands with main CLI."""
    cli.add_command(category_group, name="category")
