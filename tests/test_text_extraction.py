"""Tests for the text recognizer adapter."""

import threading
from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from stmtflow.domain.errors import LowConfidenceExtractionWarning, TextExtractionError
from stmtflow.domain.text_extraction import TextExtractionAdapter, TransientRecognitionError

SCANNED_TEXT = """ANZ ACCESS ADVANTAGE
Date        Description                 Amount     Balance
01/01/2024  Opening Balance                        1,000.00
02/01/2024  EFTPOS Woolworths          -85.50       914.50
05/01/2024  Salary ACME                3,500.00   4,414.50
31/01/2024  Closing Balance                        4,414.50
"""


class FlakyRecognizer:
    """Fails a set number of times before returning text."""

    def __init__(self, failures, error=TransientRecognitionError("busy"), result=(SCANNED_TEXT, 0.95)):
        self.failures = failures
        self.error = error
        self.result = result
        self.calls = 0

    def __call__(self, content):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


@pytest.fixture
def sleeps():
    return []


def make_adapter(recognizer, sleeps, **kwargs):
    return TextExtractionAdapter(recognizer, sleep=sleeps.append, **kwargs)


class TestExtract:
    def test_extracts_transaction_lines(self, pdf_mapping, sleeps):
        adapter = make_adapter(FlakyRecognizer(0), sleeps)

        outcome = adapter.extract(b"%PDF", pdf_mapping, statement_id=4, user_id="user-1")

        txns = outcome.parsed.transactions
        assert [t.description for t in txns] == ["EFTPOS Woolworths", "Salary ACME"]
        assert txns[0].date == date(2024, 1, 2)
        assert txns[0].amount == Decimal("-85.50")
        assert txns[0].parsed.balance == Decimal("914.50")
        assert txns[1].amount == Decimal("3500.00")
        assert txns[0].statement_id == 4
        assert outcome.confidence == 0.95
        assert not outcome.needs_review
        assert outcome.warnings == []
        assert outcome.attempts == 1

    def test_low_confidence_flags_review(self, pdf_mapping, sleeps):
        adapter = make_adapter(FlakyRecognizer(0, result=(SCANNED_TEXT, 0.6)), sleeps)

        outcome = adapter.extract(b"%PDF", pdf_mapping)

        assert outcome.needs_review
        assert len(outcome.warnings) == 1
        assert isinstance(outcome.warnings[0], LowConfidenceExtractionWarning)
        assert "0.60 is below 0.80" in str(outcome.warnings[0])
        # Transactions are still extracted
        assert len(outcome.parsed.transactions) == 2

    def test_unparseable_line_is_row_error(self, pdf_mapping, sleeps):
        text = "02/01/2024  Coffee  -4.50\n31/02/2024  Bad day  -1.00\n"
        adapter = make_adapter(FlakyRecognizer(0, result=(text, 0.9)), sleeps)

        outcome = adapter.extract(b"%PDF", pdf_mapping)

        assert len(outcome.parsed.transactions) == 1
        assert [e.row_number for e in outcome.parsed.errors] == [2]


class TestRecognize:
    def test_retries_transient_errors(self, sleeps):
        recognizer = FlakyRecognizer(2)
        adapter = make_adapter(recognizer, sleeps, max_attempts=3, backoff=0.5)

        (text, confidence), attempts = adapter.recognize(b"%PDF")

        assert text == SCANNED_TEXT
        assert attempts == 3
        assert recognizer.calls == 3
        assert sleeps == [0.5, 1.0]

    def test_exhausted_retries(self, sleeps):
        adapter = make_adapter(FlakyRecognizer(5), sleeps, max_attempts=3)

        with pytest.raises(TextExtractionError, match="after 3 attempts") as exc_info:
            adapter.recognize(b"%PDF")
        assert isinstance(exc_info.value.__cause__, TransientRecognitionError)
        assert len(sleeps) == 2

    def test_non_retryable_error(self, sleeps):
        recognizer = FlakyRecognizer(1, error=RuntimeError("corrupt image"))
        adapter = make_adapter(recognizer, sleeps)

        with pytest.raises(TextExtractionError, match="corrupt image"):
            adapter.recognize(b"%PDF")
        assert recognizer.calls == 1
        assert sleeps == []

    def test_timeout(self, sleeps):
        release = threading.Event()

        def stuck(content):
            release.wait(5)
            return "", 1.0

        adapter = make_adapter(stuck, sleeps, timeout=0.05, max_attempts=1)
        try:
            with pytest.raises(TextExtractionError, match="timed out"):
                adapter.recognize(b"%PDF")
        finally:
            release.set()

    def test_bad_result_shape(self, sleeps):
        adapter = make_adapter(lambda content: "just text", sleeps)
        with pytest.raises(TextExtractionError, match=r"\(text, confidence\)"):
            adapter.recognize(b"%PDF")

    def test_confidence_out_of_range(self, sleeps):
        adapter = make_adapter(lambda content: ("text", 1.5), sleeps)
        with pytest.raises(TextExtractionError, match="outside"):
            adapter.recognize(b"%PDF")


class TestExtractRecords:
    def test_skips_balance_and_header_lines(self, pdf_mapping):
        adapter = TextExtractionAdapter(lambda content: ("", 1.0))

        records = adapter.extract_records(SCANNED_TEXT, pdf_mapping)

        assert [r.fields["description"] for r in records] == ["EFTPOS Woolworths", "Salary ACME"]
        assert [r.row_number for r in records] == [1, 2]
        assert records[0].raw_data["line"].startswith("02/01/2024")

    def test_custom_pattern(self, pdf_mapping):
        mapping = replace(
            pdf_mapping,
            date_format="YYYY-MM-DD",
            ocr_line_pattern=r"^(?P<date>\d{4}-\d{2}-\d{2}) \| (?P<description>[^|]+) \| (?P<amount>\S+)$",
        )
        adapter = TextExtractionAdapter(lambda content: ("2024-02-01 | Rent | -1200.00", 0.99))

        outcome = adapter.extract(b"%PDF", mapping)

        txn = outcome.parsed.transactions[0]
        assert txn.date == date(2024, 2, 1)
        assert txn.description == "Rent"
        assert txn.amount == Decimal("-1200.00")
