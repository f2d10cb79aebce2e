"""Utility functions for stmtflow."""

from stmtflow.utils.date_parser import parse_date, parse_statement_date
from stmtflow.utils.amount_parser import parse_amount, parse_optional_amount

__all__ = ["parse_date", "parse_statement_date", "parse_amount", "parse_optional_amount"]
