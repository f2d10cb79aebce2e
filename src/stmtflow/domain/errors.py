"""Shared domain error messages and error types."""

from typing import Optional


class DomainError(ValueError):
    """Base class for domain-level errors.

    Subclasses provide semantic categories while preserving ValueError
    compatibility for existing error handling.
    """


class ValidationError(DomainError):
    """Invalid input or failed validation in domain logic."""


class NotFoundError(DomainError):
    """Requested domain entity does not exist."""


class ConflictError(DomainError):
    """Domain conflict, such as uniqueness violations."""


class EncryptionError(DomainError):
    """Statement bytes could not be sealed."""


class DecryptionError(DomainError):
    """Sealed statement bytes could not be opened."""


class MappingConfigMissingError(DomainError):
    """No active mapping configuration for a bank and file type."""


class UnsupportedFormatError(DomainError):
    """File type has no parser strategy."""


class TextExtractionError(DomainError):
    """The text recognizer failed permanently or exhausted its retries."""


class StatusTransitionError(DomainError):
    """Illegal statement status change."""


class ParseError(DomainError):
    """A record (or a whole document) could not be parsed.

    Row-scoped parse errors carry the 1-based source row number and are
    recoverable: the row is skipped and the statement continues.
    """

    def __init__(self, message: str, row_number: Optional[int] = None):
        super().__init__(message)
        self.row_number = row_number


class ProcessingWarning(UserWarning):
    """Base class for non-fatal processing conditions.

    Warnings are collected on processing results rather than raised.
    """


class LowConfidenceExtractionWarning(ProcessingWarning):
    """Recognized text confidence is below the review threshold."""


class DuplicateAmbiguityWarning(ProcessingWarning):
    """A new transaction matched more than one existing transaction."""


def mapping_config_missing(bank_id: str, file_type: str) -> str:
    """Return message for a missing mapping configuration."""
    return f"No active mapping configuration for bank '{bank_id}' and file type '{file_type}'"


def unsupported_format(file_type: str) -> str:
    """Return message for an unsupported file type."""
    return f"Unsupported statement format '{file_type}'. Supported formats: csv, ofx, qif, pdf"


def row_error(row_number: int, detail: str) -> str:
    """Return message for a row-level parse failure."""
    return f"Row {row_number}: {detail}"


def no_transactions_parsed(attempted: int) -> str:
    """Return message when a statement yields no usable rows."""
    if attempted == 0:
        return "Statement contains no transaction records"
    return (
        f"No transactions could be parsed from statement "
        f"({attempted} record{'s' if attempted != 1 else ''} attempted)"
    )


def low_confidence(confidence: float, threshold: float) -> str:
    """Return message for low-confidence text extraction."""
    return (
        f"Text recognition confidence {confidence:.2f} is below {threshold:.2f}; "
        "statement flagged for manual review"
    )


def ambiguous_duplicate(description: str, match_count: int) -> str:
    """Return message when a transaction matches several existing ones."""
    return (
        f"Transaction '{description}' matches {match_count} existing transactions; "
        "flagged against the first match"
    )


def statement_not_found(statement_id: int) -> str:
    """Return message for missing statement."""
    return f"Statement {statement_id} not found"


def category_not_found(category_id: int) -> str:
    """Return message for missing category by ID."""
    return f"Category {category_id} not found"


def category_name_not_found(name: str) -> str:
    """Return message for missing category by name."""
    return f"Category '{name}' not found"


def transaction_not_found(transaction_id: str) -> str:
    """Return message for missing raw transaction."""
    return f"Transaction {transaction_id} not found"
