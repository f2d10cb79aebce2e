"""Date parsing utilities."""

import re
from datetime import date, datetime, timedelta
from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta


# Longest tokens first so "MMMM" is not consumed as "MM" + "MM"
_FORMAT_TOKENS = [
    ("YYYY", "%Y"),
    ("MMMM", "%B"),
    ("MMM", "%b"),
    ("YY", "%y"),
    ("MM", "%m"),
    ("DD", "%d"),
]

_TOKEN_PATTERN = re.compile("|".join(token for token, _ in _FORMAT_TOKENS))


def to_strptime_format(date_format: str) -> str:
    """Translate a mapping date format into a strptime directive string.

    Mapping configs use bank-style tokens ("DD/MM/YYYY", "DD MMM YYYY",
    "YYYYMMDD"). A format that already contains "%" directives is returned
    unchanged.

    Args:
        date_format: Configured date format

    Returns:
        Format string usable with datetime.strptime

    Raises:
        ValueError: If the format contains no date tokens
    """
    if "%" in date_format:
        return date_format

    lookup = dict(_FORMAT_TOKENS)
    translated, count = _TOKEN_PATTERN.subn(lambda m: lookup[m.group(0)], date_format)
    if count == 0:
        raise ValueError(f"Date format '{date_format}' contains no date tokens")
    return translated


def parse_statement_date(date_str: str, date_format: str) -> date:
    """Parse a statement date using the configured format.

    Statement dates are never auto-detected: a value that does not match
    the configured format is an error.

    Args:
        date_str: Date text from the statement
        date_format: Configured date format (see to_strptime_format)

    Returns:
        Date object

    Raises:
        ValueError: If the value does not match the format
    """
    if date_str is None or not date_str.strip():
        raise ValueError("Empty date string")

    cleaned = date_str.replace('"', "").replace("'", "").strip()
    directive = to_strptime_format(date_format)
    try:
        return datetime.strptime(cleaned, directive).date()
    except ValueError:
        raise ValueError(f"Could not parse date '{cleaned}' with format '{date_format}'")


def parse_date(date_str: str) -> date:
    """Parse a free-form date string into a date object.

    Used for command-line filters, not for statement content. Supports
    relative dates as well as absolute ones:
    - Absolute dates: "2024-01-15", "January 15, 2024", etc.
    - Relative dates: "today", "yesterday", "last month", "this year", etc.

    Args:
        date_str: Date string in various formats

    Returns:
        Date object

    Raises:
        ValueError: If date string cannot be parsed
    """
    date_str = date_str.strip().lower()
    today = date.today()

    relative_dates = {
        "today": today,
        "yesterday": today - timedelta(days=1),
    }

    if date_str in relative_dates:
        return relative_dates[date_str]

    if date_str.startswith("last "):
        period = date_str[5:]
        if period == "month":
            return (today - relativedelta(months=1)).replace(day=1)
        elif period == "year":
            return today.replace(month=1, day=1) - relativedelta(years=1)
        elif period == "week":
            return today - timedelta(days=today.weekday() + 7)

    elif date_str.startswith("this "):
        period = date_str[5:]
        if period == "month":
            return today.replace(day=1)
        elif period == "year":
            return today.replace(month=1, day=1)
        elif period == "week":
            return today - timedelta(days=today.weekday())

    try:
        dt = date_parser.parse(date_str, dayfirst=True)
        return dt.date()
    except (ValueError, TypeError, OverflowError) as e:
        raise ValueError(f"Could not parse date '{date_str}': {e}")
