"""Structured statement parsing (CSV, OFX, QIF)."""

import csv
import io
import logging
import re
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Iterator, Optional

from stmtflow.domain.entities import (
    AmountFormat,
    BankMappingConfig,
    FileType,
    ParsedFields,
    RawTransaction,
)
from stmtflow.domain.errors import ParseError, UnsupportedFormatError, row_error, unsupported_format
from stmtflow.utils.amount_parser import parse_amount, parse_optional_amount
from stmtflow.utils.date_parser import parse_statement_date
from stmtflow.utils.merchant import extract_merchant

logger = logging.getLogger(__name__)

CREDIT_MARKERS = {"cr", "credit", "c", "deposit", "dep", "+", "int", "div", "directdep"}

_OFX_BLOCK = re.compile(r"<STMTTRN>(.*?)</STMTTRN>", re.IGNORECASE | re.DOTALL)
_OFX_ELEMENT = re.compile(r"<([A-Za-z0-9.]+)>([^<\r\n]*)")
_SPACES = re.compile(r"\s+")


@dataclass
class SourceRecord:
    """One record located in a statement, before normalization.

    Attributes:
        row_number: 1-based row (CSV line or OFX/QIF/OCR record index)
        fields: Canonical field name -> source text
        raw_data: Record as it appeared in the source
    """

    row_number: int
    fields: dict[str, Optional[str]]
    raw_data: dict[str, Any] = field(default_factory=dict)


@dataclass
class ParseOutcome:
    """Result of parsing a statement's records."""

    transactions: list[RawTransaction] = field(default_factory=list)
    errors: list[ParseError] = field(default_factory=list)
    attempted: int = 0


def decode_content(content: bytes, encoding: str) -> str:
    """Decode statement bytes with the configured encoding.

    Raises:
        ParseError: If the bytes are not valid text in that encoding
    """
    try:
        return content.decode(encoding)
    except LookupError:
        raise ParseError(f"Unknown text encoding '{encoding}'")
    except UnicodeDecodeError as e:
        raise ParseError(f"Statement is not valid {encoding} text: {e.reason} at byte {e.start}")


def normalize_amount(fields: dict[str, Optional[str]], amount_format: AmountFormat) -> Decimal:
    """Apply the configured amount encoding to a record.

    Raises:
        ValueError: If the amount fields are missing or unparseable
    """
    if amount_format == AmountFormat.DEBIT_CREDIT:
        debit = parse_optional_amount(fields.get("debit"))
        credit = parse_optional_amount(fields.get("credit"))
        if debit is None and credit is None:
            raise ValueError("Missing both debit and credit values")
        return abs(credit or Decimal("0")) - abs(debit or Decimal("0"))

    amount_str = fields.get("amount")
    if not amount_str:
        raise ValueError("Missing amount")
    amount = parse_amount(amount_str)

    if amount_format == AmountFormat.SINGLE_COLUMN:
        marker = (fields.get("type") or "").strip().lower()
        return abs(amount) if marker in CREDIT_MARKERS else -abs(amount)
    return amount


def normalize_record(
    record: SourceRecord,
    mapping: BankMappingConfig,
    statement_id: int = 0,
    user_id: str = "",
) -> RawTransaction:
    """Turn a source record into a pending RawTransaction.

    Raises:
        ParseError: If the date, amount or balance cannot be parsed
    """
    row = record.row_number
    values = record.fields

    date_str = values.get("date")
    if not date_str:
        raise ParseError(row_error(row, "Missing date"), row)
    try:
        txn_date = parse_statement_date(date_str, mapping.date_format)
    except ValueError as e:
        raise ParseError(row_error(row, str(e)), row)

    try:
        amount = normalize_amount(values, mapping.amount_format)
    except ValueError as e:
        raise ParseError(row_error(row, str(e)), row)

    try:
        balance = parse_optional_amount(values.get("balance"))
    except ValueError as e:
        raise ParseError(row_error(row, f"Invalid balance: {e}"), row)

    description = _SPACES.sub(" ", values.get("description") or "").strip()
    reference = (values.get("reference") or "").strip() or None

    return RawTransaction(
        id=str(uuid.uuid4()),
        statement_id=statement_id,
        user_id=user_id,
        parsed=ParsedFields(
            date=txn_date,
            description=description,
            amount=amount,
            balance=balance,
            reference=reference,
            merchant=extract_merchant(description) or None,
        ),
        raw_data=dict(record.raw_data),
        row_number=row,
    )


def build_outcome(
    records: Iterable[SourceRecord],
    mapping: BankMappingConfig,
    statement_id: int = 0,
    user_id: str = "",
) -> ParseOutcome:
    """Normalize records in order, collecting row-level errors."""
    outcome = ParseOutcome()
    for record in records:
        outcome.attempted += 1
        try:
            outcome.transactions.append(normalize_record(record, mapping, statement_id, user_id))
        except ParseError as e:
            logger.warning("Statement %s: skipped %s", statement_id, e)
            outcome.errors.append(e)
    return outcome


class StructuredParser:
    """Parse delimited and tagged statement formats using a mapping config."""

    def parse(
        self,
        content: bytes,
        mapping: BankMappingConfig,
        statement_id: int = 0,
        user_id: str = "",
    ) -> ParseOutcome:
        """Parse statement bytes into raw transactions.

        Args:
            content: Decrypted statement bytes
            mapping: Mapping config for the bank and file type
            statement_id: Source statement ID attached to each transaction
            user_id: Owner attached to each transaction

        Returns:
            ParseOutcome with transactions in row order and row errors

        Raises:
            ParseError: If the document as a whole cannot be read
            UnsupportedFormatError: If the mapping is not for CSV/OFX/QIF
        """
        readers = {
            FileType.CSV: self._csv_records,
            FileType.OFX: self._ofx_records,
            FileType.QIF: self._qif_records,
        }
        reader = readers.get(mapping.file_type)
        if reader is None:
            raise UnsupportedFormatError(unsupported_format(mapping.file_type.value))

        text = decode_content(content, mapping.encoding)
        outcome = build_outcome(reader(text, mapping), mapping, statement_id, user_id)
        logger.info(
            "Parsed %s statement %s: %d of %d records",
            mapping.file_type.value,
            statement_id,
            len(outcome.transactions),
            outcome.attempted,
        )
        return outcome

    def _csv_records(self, text: str, mapping: BankMappingConfig) -> Iterator[SourceRecord]:
        lines = text.splitlines(keepends=True)[mapping.skip_rows:]
        reader = csv.reader(io.StringIO("".join(lines)), delimiter=mapping.delimiter)
        columns = mapping.fields.items()

        header_index: Optional[dict[str, int]] = None
        headers: list[str] = []
        for row in reader:
            line_number = mapping.skip_rows + reader.line_num
            if mapping.header_row and reader.line_num < mapping.header_row:
                continue  # preamble
            if mapping.header_row and reader.line_num == mapping.header_row:
                headers = [h.strip() for h in row]
                header_index = {name: i for i, name in enumerate(headers)}
                missing = [column for _, column in columns if column not in header_index]
                if missing:
                    raise ParseError(f"CSV file missing required columns: {', '.join(missing)}")
                continue
            if not any(cell.strip() for cell in row):
                continue

            if header_index is not None:
                raw_data = {
                    name: (row[i].strip() if i < len(row) else "") for i, name in enumerate(headers)
                }
                positions = {name: header_index[column] for name, column in columns}
            else:
                raw_data = {f"column_{i + 1}": cell.strip() for i, cell in enumerate(row)}
                positions = {name: int(column) - 1 for name, column in columns}

            fields = {
                name: (row[pos].strip() or None) if pos < len(row) else None
                for name, pos in positions.items()
            }
            yield SourceRecord(row_number=line_number, fields=fields, raw_data=raw_data)

    def _ofx_records(self, text: str, mapping: BankMappingConfig) -> Iterator[SourceRecord]:
        for index, match in enumerate(_OFX_BLOCK.finditer(text), start=1):
            elements = {
                tag.upper(): value.strip() for tag, value in _OFX_ELEMENT.findall(match.group(1))
            }
            posted = elements.get("DTPOSTED") or ""
            fields = {
                "date": posted[:8] or None,
                "amount": elements.get("TRNAMT") or None,
                "description": elements.get("NAME") or elements.get("MEMO") or None,
                "reference": elements.get("FITID") or elements.get("CHECKNUM") or None,
                "type": elements.get("TRNTYPE") or None,
            }
            yield SourceRecord(row_number=index, fields=fields, raw_data=elements)

    def _qif_records(self, text: str, mapping: BankMappingConfig) -> Iterator[SourceRecord]:
        current: dict[str, str] = {}
        index = 0
        for line in text.splitlines():
            line = line.strip()
            if not line or line.startswith("!"):
                continue
            code, value = line[0], line[1:].strip()
            if code == "^":
                if current:
                    index += 1
                    yield self._qif_record(index, current)
                current = {}
                continue
            # T and U both carry the amount; keep the first seen
            if code in ("T", "U") and "amount" in current:
                continue
            key = {"D": "date", "T": "amount", "U": "amount", "P": "payee", "M": "memo", "N": "number"}.get(code)
            if key is not None:
                current[key] = value
        if current:
            index += 1
            yield self._qif_record(index, current)

    def _qif_record(self, index: int, entry: dict[str, str]) -> SourceRecord:
        raw_date = entry.get("date")
        if raw_date:
            # Quicken writes years after 1999 as 1/ 2'24
            raw_date = raw_date.replace("'", "/").replace(" ", "")
        fields = {
            "date": raw_date or None,
            "amount": entry.get("amount") or None,
            "description": entry.get("payee") or entry.get("memo") or None,
            "reference": entry.get("number") or None,
        }
        return SourceRecord(row_number=index, fields=fields, raw_data=dict(entry))
