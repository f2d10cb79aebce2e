"""Tests for statement date formats and free-form CLI dates."""

import pytest
from datetime import date, timedelta
from stmtflow.utils.date_parser import parse_date, parse_statement_date, to_strptime_format


@pytest.mark.parametrize(
    "date_format,expected",
    [
        ("DD/MM/YYYY", "%d/%m/%Y"),
        ("YYYY-MM-DD", "%Y-%m-%d"),
        ("YYYYMMDD", "%Y%m%d"),
        ("DD MMM YYYY", "%d %b %Y"),
        ("MMMM DD, YYYY", "%B %d, %Y"),
        ("DD/MM/YY", "%d/%m/%y"),
        ("%d.%m.%Y", "%d.%m.%Y"),
    ],
)
def test_to_strptime_format(date_format, expected):
    assert to_strptime_format(date_format) == expected


def test_format_without_tokens():
    with pytest.raises(ValueError, match="no date tokens"):
        to_strptime_format("whenever")


@pytest.mark.parametrize(
    "value,date_format,expected",
    [
        ("02/01/2024", "DD/MM/YYYY", date(2024, 1, 2)),
        ("2024-01-02", "YYYY-MM-DD", date(2024, 1, 2)),
        ("20240102", "YYYYMMDD", date(2024, 1, 2)),
        ("02 Jan 2024", "DD MMM YYYY", date(2024, 1, 2)),
        ('"02/01/2024"', "DD/MM/YYYY", date(2024, 1, 2)),
    ],
)
def test_parse_statement_date(value, date_format, expected):
    assert parse_statement_date(value, date_format) == expected


def test_statement_date_is_not_guessed():
    """A value in another format is an error, not an auto-detected date."""
    with pytest.raises(ValueError, match="Could not parse date '2024-01-02' with format 'DD/MM/YYYY'"):
        parse_statement_date("2024-01-02", "DD/MM/YYYY")


def test_statement_date_rejects_impossible_day():
    with pytest.raises(ValueError):
        parse_statement_date("31/02/2024", "DD/MM/YYYY")


def test_statement_date_empty():
    with pytest.raises(ValueError, match="Empty date string"):
        parse_statement_date("  ", "DD/MM/YYYY")


def test_parse_absolute_date():
    """Test parsing absolute dates."""
    result = parse_date("2024-01-15")
    assert result == date(2024, 1, 15)


def test_parse_day_first():
    assert parse_date("02/01/2024") == date(2024, 1, 2)


def test_parse_today():
    """Test parsing 'today'."""
    assert parse_date("today") == date.today()


def test_parse_yesterday():
    """Test parsing 'yesterday'."""
    assert parse_date("Yesterday") == date.today() - timedelta(days=1)


def test_parse_last_month():
    """Test parsing 'last month'."""
    result = parse_date("last month")
    # Should be first day of last month
    today = date.today()
    if today.month == 1:
        expected = date(today.year - 1, 12, 1)
    else:
        expected = date(today.year, today.month - 1, 1)
    assert result == expected


def test_parse_last_week():
    """Test parsing 'last week'."""
    result = parse_date("last week")
    today = date.today()
    assert result == today - timedelta(days=today.weekday() + 7)
    assert result.weekday() == 0


def test_parse_this_year():
    assert parse_date("this year") == date(date.today().year, 1, 1)


def test_parse_invalid():
    with pytest.raises(ValueError, match="Could not parse date"):
        parse_date("not a date at all")
