"""Domain model entities for stmtflow.

These are pure data classes representing statement-processing concepts,
independent of database schema. Entities are immutable; pipeline stages
produce updated copies with ``dataclasses.replace``.
"""

from dataclasses import dataclass, field
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from stmtflow.domain.errors import UnsupportedFormatError, ValidationError, unsupported_format


class FileType(str, Enum):
    """Statement file types accepted on upload."""

    CSV = "csv"
    OFX = "ofx"
    QIF = "qif"
    PDF = "pdf"

    @classmethod
    def parse(cls, value: "str | FileType") -> "FileType":
        """Normalize a declared file type, raising UnsupportedFormatError."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower().lstrip("."))
        except ValueError:
            raise UnsupportedFormatError(unsupported_format(str(value)))


class AmountFormat(str, Enum):
    """How a bank encodes transaction amounts."""

    POSITIVE_NEGATIVE = "positive_negative"
    DEBIT_CREDIT = "debit_credit"
    SINGLE_COLUMN = "single_column"

    @classmethod
    def parse(cls, value: "str | AmountFormat") -> "AmountFormat":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(fmt.value for fmt in cls)
            raise ValidationError(f"Invalid amount format '{value}'. Must be one of: {valid}")


class StatementStatus(str, Enum):
    """Processing status of an uploaded statement."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (StatementStatus.COMPLETED, StatementStatus.FAILED)

    def can_transition_to(self, target: "StatementStatus") -> bool:
        """Return True if moving to target keeps the status monotonic."""
        allowed = {
            StatementStatus.PENDING: {StatementStatus.PROCESSING, StatementStatus.FAILED},
            StatementStatus.PROCESSING: {StatementStatus.COMPLETED, StatementStatus.FAILED},
            StatementStatus.COMPLETED: set(),
            StatementStatus.FAILED: set(),
        }
        return target in allowed[self]


class TransactionStatus(str, Enum):
    """Processing status of a raw transaction."""

    PENDING = "pending"
    PROCESSED = "processed"
    IGNORED = "ignored"


class ProcessingStep(str, Enum):
    """Pipeline steps recorded in the processing log."""

    UPLOAD = "upload"
    DECRYPTION = "decryption"
    MAPPING = "mapping"
    PARSING = "parsing"
    OCR = "ocr"
    DEDUPLICATION = "deduplication"
    CATEGORIZATION = "categorization"
    SAVING = "saving"


class LogStatus(str, Enum):
    """Outcome recorded for a processing step."""

    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    WARNING = "warning"


class CategoryType(str, Enum):
    EXPENSE = "expense"
    INCOME = "income"
    TRANSFER = "transfer"


class RuleField(str, Enum):
    """Transaction field a category rule inspects."""

    DESCRIPTION = "description"
    MERCHANT = "merchant"
    AMOUNT = "amount"
    REFERENCE = "reference"


class RuleOperator(str, Enum):
    CONTAINS = "contains"
    EQUALS = "equals"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    REGEX = "regex"
    AMOUNT_RANGE = "amount_range"


class SuggestionSource(str, Enum):
    """Where a category suggestion came from."""

    RULES = "rules"
    LEARNING = "learning"
    MERCHANT = "merchant"
    KEYWORDS = "keywords"
    AMOUNT = "amount"
    NONE = "none"


@dataclass(frozen=True)
class KeyHandle:
    """Key reference and nonce needed to open a sealed statement.

    The handle never contains key material, only the id used to look it up.
    """

    key_id: str
    nonce: bytes

    def to_token(self) -> str:
        """Serialize to a storable ``key_id:nonce_hex`` string."""
        return f"{self.key_id}:{self.nonce.hex()}"

    @classmethod
    def from_token(cls, token: str) -> "KeyHandle":
        key_id, sep, nonce_hex = token.rpartition(":")
        if not sep or not key_id:
            raise ValidationError(f"Malformed key handle '{token}'")
        try:
            nonce = bytes.fromhex(nonce_hex)
        except ValueError:
            raise ValidationError(f"Malformed key handle '{token}'")
        return cls(key_id=key_id, nonce=nonce)


@dataclass(frozen=True)
class FieldMapping:
    """Source column for each canonical transaction field.

    Values are column names, or 1-based column positions for headerless
    files. Debit/credit columns are used by the debit_credit amount format,
    the type column is the companion field for single_column amounts.
    """

    date: str
    description: str
    amount: Optional[str] = None
    debit: Optional[str] = None
    credit: Optional[str] = None
    balance: Optional[str] = None
    reference: Optional[str] = None
    type: Optional[str] = None

    def items(self) -> list[tuple[str, str]]:
        """Return (canonical field, source column) pairs that are mapped."""
        pairs = [
            ("date", self.date),
            ("description", self.description),
            ("amount", self.amount),
            ("debit", self.debit),
            ("credit", self.credit),
            ("balance", self.balance),
            ("reference", self.reference),
            ("type", self.type),
        ]
        return [(name, column) for name, column in pairs if column]


@dataclass(frozen=True)
class BankMappingConfig:
    """How to interpret one bank's export format."""

    id: int
    bank_id: str
    bank_name: str
    file_type: FileType
    fields: FieldMapping
    date_format: str
    amount_format: AmountFormat
    delimiter: str = ","
    header_row: int = 1
    skip_rows: int = 0
    encoding: str = "utf-8-sig"
    ocr_line_pattern: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class BankStatement:
    """One uploaded statement document."""

    id: int
    user_id: str
    bank_id: str
    file_name: str
    file_type: str
    encrypted_path: str
    key_handle: Optional[KeyHandle]
    status: StatementStatus = StatementStatus.PENDING
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    transaction_count: int = 0
    last_error: Optional[str] = None
    needs_review: bool = False
    uploaded_at: Optional[datetime] = None


@dataclass(frozen=True)
class ParsedFields:
    """Normalized transaction fields."""

    date: date
    description: str
    amount: Decimal
    balance: Optional[Decimal] = None
    reference: Optional[str] = None
    merchant: Optional[str] = None


@dataclass(frozen=True)
class RawTransaction:
    """Candidate transaction extracted from a statement."""

    id: str
    statement_id: int
    user_id: str
    parsed: ParsedFields
    raw_data: dict[str, Any] = field(default_factory=dict)
    row_number: Optional[int] = None
    is_duplicate: bool = False
    duplicate_of: Optional[str] = None
    status: TransactionStatus = TransactionStatus.PENDING
    suggested_category_id: Optional[int] = None
    category_confidence: Optional[float] = None
    created_at: Optional[datetime] = None

    @property
    def date(self) -> date:
        return self.parsed.date

    @property
    def amount(self) -> Decimal:
        return self.parsed.amount

    @property
    def description(self) -> str:
        return self.parsed.description


@dataclass(frozen=True)
class CategoryRule:
    """Weighted rule owned by a category."""

    id: int
    field: RuleField
    operator: RuleOperator
    value: str
    weight: float
    is_active: bool = True


@dataclass(frozen=True)
class TransactionCategory:
    """Spending category with its ordered rules."""

    id: int
    name: str
    category_type: CategoryType = CategoryType.EXPENSE
    rules: tuple[CategoryRule, ...] = ()
    keywords: tuple[str, ...] = ()
    is_active: bool = True
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class CategorySuggestion:
    """Suggested category for a transaction."""

    category_id: Optional[int]
    confidence: float
    matched_rules: tuple[CategoryRule, ...] = ()
    source: SuggestionSource = SuggestionSource.NONE
    reason: str = ""
    alternatives: tuple["CategorySuggestion", ...] = ()


@dataclass(frozen=True)
class MerchantMapping:
    """Learned association between a merchant and a category."""

    original_name: str
    standardized_name: str
    category_id: int
    confidence: float
    occurrences: int
    is_verified: bool = False
    id: Optional[int] = None


@dataclass(frozen=True)
class TransactionLearning:
    """Learned association between a transaction pattern and a category."""

    merchant: str
    description_pattern: str
    category_id: int
    confidence: float
    occurrences: int
    last_seen: Optional[datetime] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class ProcessingLog:
    """Append-only audit entry for one statement step transition."""

    statement_id: int
    sequence: int
    step: ProcessingStep
    status: LogStatus
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    id: Optional[int] = None
