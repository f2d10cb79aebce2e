"""Amount parsing utilities."""

from decimal import Decimal, InvalidOperation
from typing import Optional
import re


def parse_amount(amount_str: str) -> Decimal:
    """Parse an amount string into a Decimal.

    Handles various formats:
    - "123.45"
    - "$123.45"
    - "-123.45"
    - "-$123.45"
    - "+$3,500.00"
    - "1,234.56"
    - "(123.45)" (negative in parentheses)

    Args:
        amount_str: Amount string

    Returns:
        Decimal amount

    Raises:
        ValueError: If amount string cannot be parsed
    """
    if amount_str is None or not amount_str.strip():
        raise ValueError("Empty amount string")

    amount_str = amount_str.strip().strip('"')

    # Handle parentheses notation (negative)
    is_negative = False
    if amount_str.startswith("(") and amount_str.endswith(")"):
        is_negative = True
        amount_str = amount_str[1:-1]

    # Unicode minus sign shows up in PDF text
    amount_str = amount_str.replace("−", "-")

    amount_str = re.sub(r"[$€£¥]", "", amount_str)
    amount_str = amount_str.replace(",", "")
    amount_str = amount_str.replace(" ", "")

    try:
        amount = Decimal(amount_str)
    except InvalidOperation:
        raise ValueError(f"Could not parse amount '{amount_str}'")
    if not amount.is_finite():
        raise ValueError(f"Could not parse amount '{amount_str}'")
    if is_negative:
        amount = -amount
    return amount


def parse_optional_amount(amount_str: Optional[str]) -> Optional[Decimal]:
    """Parse an amount that may be blank. Blank values return None."""
    if amount_str is None or not amount_str.strip():
        return None
    return parse_amount(amount_str)
