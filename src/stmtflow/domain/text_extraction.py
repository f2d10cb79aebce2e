"""Text extraction from scanned statements through an injected recognizer."""

import concurrent.futures
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from stmtflow.config import ProcessingConfig
from stmtflow.domain.entities import BankMappingConfig
from stmtflow.domain.errors import (
    LowConfidenceExtractionWarning,
    ProcessingWarning,
    TextExtractionError,
    low_confidence,
)
from stmtflow.domain.parsers import ParseOutcome, SourceRecord, build_outcome

logger = logging.getLogger(__name__)

Recognizer = Callable[[bytes], tuple[str, float]]

DEFAULT_LINE_PATTERN = (
    r"(?P<date>\d{1,2}/\d{1,2}/\d{4})\s+"
    r"(?P<description>.+?)\s+"
    r"(?P<amount>[-+−]?\$?[\d,]+\.\d{2})"
    r"(?:\s+(?P<balance>[-+−]?\$?[\d,]+\.\d{2}))?\s*$"
)

_BALANCE_LINE = re.compile(r"\b(opening|closing) balance\b|balance (brought|carried) forward", re.IGNORECASE)


class TransientRecognitionError(Exception):
    """Recognizer failure that is worth retrying (rate limit, busy service)."""


RETRYABLE_ERRORS = (TransientRecognitionError, TimeoutError, ConnectionError)


@dataclass
class ExtractionOutcome:
    """Result of recognizing and extracting a scanned statement."""

    parsed: ParseOutcome
    confidence: float
    needs_review: bool = False
    attempts: int = 1
    warnings: list[ProcessingWarning] = field(default_factory=list)


class TextExtractionAdapter:
    """Wrap an external text recognizer and extract transaction lines.

    The recognizer is called with a timeout and a bounded number of
    attempts. Transient failures are retried with exponential backoff;
    anything else, or running out of attempts, raises TextExtractionError
    with the underlying error chained.
    """

    def __init__(
        self,
        recognizer: Recognizer,
        confidence_threshold: float = 0.8,
        timeout: float = 30.0,
        max_attempts: int = 3,
        backoff: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize adapter.

        Args:
            recognizer: Callable returning (text, confidence) for document bytes
            confidence_threshold: Below this, statements are flagged for review
            timeout: Seconds allowed for one recognizer call
            max_attempts: Total attempts including the first
            backoff: Base delay in seconds, doubled after each failed attempt
            sleep: Sleep function, replaceable in tests
        """
        self.recognizer = recognizer
        self.confidence_threshold = confidence_threshold
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.backoff = backoff
        self._sleep = sleep

    @classmethod
    def from_config(cls, recognizer: Recognizer, config: ProcessingConfig) -> "TextExtractionAdapter":
        return cls(
            recognizer,
            confidence_threshold=config.ocr_confidence_threshold,
            timeout=config.ocr_timeout_seconds,
            max_attempts=config.ocr_max_attempts,
            backoff=config.ocr_backoff_seconds,
        )

    def extract(
        self,
        content: bytes,
        mapping: BankMappingConfig,
        statement_id: int = 0,
        user_id: str = "",
    ) -> ExtractionOutcome:
        """Recognize a document and turn its lines into raw transactions.

        Raises:
            TextExtractionError: If recognition fails permanently
        """
        (text, confidence), attempts = self.recognize(content)

        warnings: list[ProcessingWarning] = []
        needs_review = confidence < self.confidence_threshold
        if needs_review:
            message = low_confidence(confidence, self.confidence_threshold)
            logger.warning("Statement %s: %s", statement_id, message)
            warnings.append(LowConfidenceExtractionWarning(message))

        records = self.extract_records(text, mapping)
        parsed = build_outcome(records, mapping, statement_id, user_id)
        logger.info(
            "Extracted %d transactions from %d recognized lines (confidence %.2f)",
            len(parsed.transactions),
            parsed.attempted,
            confidence,
        )
        return ExtractionOutcome(
            parsed=parsed,
            confidence=confidence,
            needs_review=needs_review,
            attempts=attempts,
            warnings=warnings,
        )

    def recognize(self, content: bytes) -> tuple[tuple[str, float], int]:
        """Call the recognizer with timeout and retries.

        Returns:
            ((text, confidence), attempts used)

        Raises:
            TextExtractionError: On a non-retryable error or exhausted retries
        """
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return self._call_once(content), attempt
            except RETRYABLE_ERRORS as e:
                last_error = e
                logger.warning(
                    "Text recognition attempt %d/%d failed: %s", attempt, self.max_attempts, e
                )
                if attempt < self.max_attempts:
                    self._sleep(self.backoff * (2 ** (attempt - 1)))
            except TextExtractionError:
                raise
            except Exception as e:
                raise TextExtractionError(f"Text recognition failed: {e}") from e

        raise TextExtractionError(
            f"Text recognition failed after {self.max_attempts} attempts: {last_error}"
        ) from last_error

    def _call_once(self, content: bytes) -> tuple[str, float]:
        executor = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="stmtflow-ocr")
        try:
            future = executor.submit(self.recognizer, content)
            try:
                result = future.result(timeout=self.timeout)
            except concurrent.futures.TimeoutError:
                future.cancel()
                raise TimeoutError(f"Text recognition timed out after {self.timeout:g}s")
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        try:
            text, confidence = result
            confidence = float(confidence)
        except (TypeError, ValueError):
            raise TextExtractionError("Recognizer must return (text, confidence)")
        if not 0.0 <= confidence <= 1.0:
            raise TextExtractionError(f"Recognizer confidence {confidence} is outside [0, 1]")
        return text or "", confidence

    def extract_records(self, text: str, mapping: BankMappingConfig) -> list[SourceRecord]:
        """Scan recognized text for transaction lines.

        Lines are matched with the mapping's OCR line pattern (or the
        default pattern). Opening/closing balance lines are skipped.
        """
        pattern = re.compile(mapping.ocr_line_pattern or DEFAULT_LINE_PATTERN)
        records = []
        for line in text.splitlines():
            line = line.strip()
            if not line:
                continue
            match = pattern.search(line)
            if match is None:
                continue
            groups = {name: (value.strip() if value else None) for name, value in match.groupdict().items()}
            if _BALANCE_LINE.search(groups.get("description") or ""):
                continue
            records.append(
                SourceRecord(
                    row_number=len(records) + 1,
                    fields={
                        "date": groups.get("date"),
                        "description": groups.get("description"),
                        "amount": groups.get("amount"),
                        "balance": groups.get("balance"),
                        "reference": groups.get("reference"),
                    },
                    raw_data={"line": line},
                )
            )
        return records
