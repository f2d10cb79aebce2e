"""Statement processing pipeline."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Any, Optional, Sequence

from stmtflow.config import ProcessingConfig
from stmtflow.domain.audit import AuditTrail
from stmtflow.domain.categorizer import Categorizer
from stmtflow.domain.dispatcher import FormatDispatcher, ParserStrategy
from stmtflow.domain.duplicates import DuplicateDetector
from stmtflow.domain.entities import (
    BankStatement,
    LogStatus,
    ProcessingLog,
    ProcessingStep,
    RawTransaction,
    StatementStatus,
)
from stmtflow.domain.errors import (
    DecryptionError,
    DomainError,
    ParseError,
    ProcessingWarning,
    StatusTransitionError,
    TextExtractionError,
    no_transactions_parsed,
    statement_not_found,
)
from stmtflow.domain.mapping import MappingRegistry
from stmtflow.domain.parsers import StructuredParser
from stmtflow.domain.text_extraction import Recognizer, TextExtractionAdapter
from stmtflow.domain.vault import Vault

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatementJob:
    """One unit of work: a pending statement, its sealed bytes, and the
    user's previously stored transactions to check for duplicates."""

    statement: BankStatement
    ciphertext: bytes
    existing: Sequence[RawTransaction] = ()


@dataclass
class ProcessingResult:
    """Everything the persistence collaborator needs after a run."""

    statement: BankStatement
    transactions: list[RawTransaction] = field(default_factory=list)
    logs: list[ProcessingLog] = field(default_factory=list)
    errors: list[ParseError] = field(default_factory=list)
    warnings: list[ProcessingWarning] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.statement.status == StatementStatus.COMPLETED


class StatementStatusTracker:
    """Holds the current snapshot of each statement being processed.

    Transitions are checked and applied under a lock, and readers always
    receive an immutable snapshot, so no reader can observe a status move
    backwards or jump between terminal states.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._statements: dict[int, BankStatement] = {}

    def track(self, statement: BankStatement) -> BankStatement:
        """Start tracking a statement; returns the tracked snapshot."""
        with self._lock:
            return self._statements.setdefault(statement.id, statement)

    def get(self, statement_id: int) -> Optional[BankStatement]:
        with self._lock:
            return self._statements.get(statement_id)

    def transition(self, statement_id: int, status: StatementStatus, **changes: Any) -> BankStatement:
        """Move a statement to a new status, applying other field changes.

        Raises:
            StatusTransitionError: If the statement is not tracked or the
                move is not monotonic
        """
        with self._lock:
            current = self._statements.get(statement_id)
            if current is None:
                raise StatusTransitionError(statement_not_found(statement_id))
            if not current.status.can_transition_to(status):
                raise StatusTransitionError(
                    f"Statement {statement_id} cannot move from {current.status.value} to {status.value}"
                )
            updated = replace(current, status=status, **changes)
            self._statements[statement_id] = updated
            return updated


class StatementPipeline:
    """Run statements through decryption, parsing, deduplication and
    categorization, recording an audit entry for every step."""

    def __init__(
        self,
        vault: Vault,
        registry: MappingRegistry,
        categorizer: Categorizer,
        recognizer: Optional[Recognizer] = None,
        config: Optional[ProcessingConfig] = None,
        tracker: Optional[StatementStatusTracker] = None,
    ):
        """Initialize pipeline.

        Args:
            vault: Vault able to open the statements' ciphertext
            registry: Mapping configs, read-only during processing
            categorizer: Categorizer with the user's categories and learning store
            recognizer: Text recognizer for scanned (PDF) statements
            config: Processing thresholds and limits
            tracker: Shared status tracker; a private one if None
        """
        self.vault = vault
        self.registry = registry
        self.categorizer = categorizer
        self.config = config or ProcessingConfig()
        self.tracker = tracker or StatementStatusTracker()
        self.dispatcher = FormatDispatcher()
        self.parser = StructuredParser()
        self.detector = DuplicateDetector.from_config(self.config)
        self.text_adapter = (
            TextExtractionAdapter.from_config(recognizer, self.config) if recognizer is not None else None
        )

    def process(self, job: StatementJob) -> ProcessingResult:
        """Process one statement.

        Statement-level errors do not propagate: the statement is marked
        failed with the error message preserved, and the failure is logged.

        Returns:
            ProcessingResult with the terminal statement snapshot
        """
        statement = self.tracker.track(job.statement)
        trail = AuditTrail(statement.id)
        result = ProcessingResult(statement=statement)

        try:
            statement = self.tracker.transition(statement.id, StatementStatus.PROCESSING)
        except StatusTransitionError as e:
            trail.failure(ProcessingStep.UPLOAD, e)
            result.statement = self.tracker.get(statement.id) or statement
            result.logs = list(trail.entries)
            return result

        trail.record(
            ProcessingStep.UPLOAD,
            LogStatus.STARTED,
            f"Processing {statement.file_type} statement from bank '{statement.bank_id}'",
            file_type=statement.file_type,
            bank_id=statement.bank_id,
        )

        step = ProcessingStep.DECRYPTION
        needs_review = False
        try:
            if statement.key_handle is None:
                raise DecryptionError("Statement has no key handle")
            content = self.vault.open(job.ciphertext, statement.key_handle)
            trail.record(step, LogStatus.COMPLETED, f"Decrypted {len(content)} bytes")

            step = ProcessingStep.MAPPING
            mapping = self.registry.resolve(statement.bank_id, statement.file_type)
            strategy = self.dispatcher.select(statement.file_type, mapping)
            trail.record(
                step,
                LogStatus.COMPLETED,
                f"Using mapping {mapping.id} for {mapping.bank_name} ({mapping.file_type.value})",
                mapping_id=mapping.id,
                strategy=strategy.value,
            )

            if strategy == ParserStrategy.TEXT_EXTRACTION:
                step = ProcessingStep.OCR
                if self.text_adapter is None:
                    raise TextExtractionError("No text recognizer configured for scanned statements")
                extraction = self.text_adapter.extract(content, mapping, statement.id, statement.user_id)
                needs_review = extraction.needs_review
                for warning in extraction.warnings:
                    trail.warning(step, warning, confidence=extraction.confidence)
                    result.warnings.append(warning)
                trail.record(
                    step,
                    LogStatus.COMPLETED,
                    f"Recognized text with confidence {extraction.confidence:.2f}",
                    confidence=extraction.confidence,
                    attempts=extraction.attempts,
                )
                outcome = extraction.parsed
                step = ProcessingStep.PARSING
            else:
                step = ProcessingStep.PARSING
                outcome = self.parser.parse(content, mapping, statement.id, statement.user_id)
            del content

            for error in outcome.errors:
                trail.record(step, LogStatus.WARNING, str(error), error_type="ParseError", row=error.row_number)
            result.errors = list(outcome.errors)
            if not outcome.transactions:
                raise ParseError(no_transactions_parsed(outcome.attempted))
            trail.record(
                step,
                LogStatus.COMPLETED,
                f"Parsed {len(outcome.transactions)} of {outcome.attempted} records",
                parsed=len(outcome.transactions),
                skipped=len(outcome.errors),
            )

            step = ProcessingStep.DEDUPLICATION
            report = self.detector.detect(outcome.transactions, job.existing)
            for warning in report.warnings:
                trail.warning(step, warning)
                result.warnings.append(warning)
            trail.record(
                step,
                LogStatus.COMPLETED,
                f"Flagged {report.duplicate_count} duplicate{'s' if report.duplicate_count != 1 else ''}",
                duplicates=report.duplicate_count,
                compared_against=len(job.existing),
            )

            step = ProcessingStep.CATEGORIZATION
            transactions = self.categorizer.categorize_all(report.transactions)
            suggested = sum(1 for txn in transactions if txn.suggested_category_id is not None)
            trail.record(
                step,
                LogStatus.COMPLETED,
                f"Suggested categories for {suggested} of {len(transactions)} transactions",
                suggested=suggested,
            )

            dates = [txn.date for txn in transactions]
            statement = self.tracker.transition(
                statement.id,
                StatementStatus.COMPLETED,
                transaction_count=len(transactions),
                period_start=min(dates),
                period_end=max(dates),
                needs_review=needs_review,
                last_error=None,
            )
            result.transactions = transactions
            trail.record(
                ProcessingStep.UPLOAD,
                LogStatus.COMPLETED,
                f"Processing completed with {len(transactions)} transactions",
                transaction_count=len(transactions),
                needs_review=needs_review,
            )
        except Exception as e:
            if not isinstance(e, DomainError):
                logger.exception("Unexpected error processing statement %s", statement.id)
            trail.failure(step, e)
            statement = self.tracker.transition(
                statement.id, StatementStatus.FAILED, last_error=str(e), needs_review=needs_review
            )
            result.transactions = []

        result.statement = statement
        result.logs = list(trail.entries)
        return result

    def process_many(self, jobs: Sequence[StatementJob]) -> list[ProcessingResult]:
        """Process independent statements in parallel.

        Concurrency is bounded by config.max_workers. Results are returned
        in job order.
        """
        if not jobs:
            return []
        workers = min(self.config.max_workers, len(jobs))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="stmtflow-worker") as pool:
            return list(pool.map(self.process, jobs))
