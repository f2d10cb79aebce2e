"""Statement domain service: upload registration and result persistence."""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, date, UTC
from pathlib import Path
from typing import Callable, Optional, Sequence

from stmtflow.database.base import Database
from stmtflow.domain.audit import AuditTrail
from stmtflow.domain.entities import (
    BankStatement,
    LogStatus,
    ProcessingLog,
    ProcessingStep,
    RawTransaction,
    StatementStatus,
)
from stmtflow.domain.errors import NotFoundError, ValidationError, statement_not_found
from stmtflow.domain.pipeline import ProcessingResult, StatementJob, StatementPipeline
from stmtflow.domain.vault import Vault, generate_secure_file_name

logger = logging.getLogger(__name__)


class StatementService:
    """Service for registering uploaded statements and storing processing results."""

    def __init__(self, db: Database, vault: Vault, vault_dir: Path):
        """Initialize statement service.

        Args:
            db: Database instance
            vault: Vault used to seal uploaded bytes
            vault_dir: Directory holding sealed statement files
        """
        self.db = db
        self.vault = vault
        self.vault_dir = Path(vault_dir)

    def register_upload(
        self,
        content: bytes,
        file_name: str,
        bank_id: str,
        user_id: str,
        file_type: Optional[str] = None,
    ) -> BankStatement:
        """Seal an uploaded statement and record it as pending.

        The plaintext is never written to disk. The file type is stored as
        declared (or taken from the file extension) and checked when the
        statement is processed.

        Args:
            content: Uploaded statement bytes
            file_name: Original file name
            bank_id: Bank identifier used to resolve the mapping config
            user_id: Owner of the statement
            file_type: Declared file type; defaults to the file extension

        Returns:
            The stored pending statement

        Raises:
            ValidationError: If required fields are missing
            EncryptionError: If the content cannot be sealed
        """
        if not bank_id or not bank_id.strip():
            raise ValidationError("Bank ID is required")
        if not user_id or not user_id.strip():
            raise ValidationError("User ID is required")
        declared = file_type or (Path(file_name).suffix or "")
        declared = declared.strip().lower().lstrip(".")
        if not declared:
            raise ValidationError(f"Cannot determine file type of '{file_name}'; pass it explicitly")

        ciphertext, handle = self.vault.seal(content)
        self.vault_dir.mkdir(parents=True, exist_ok=True)
        encrypted_path = self.vault_dir / generate_secure_file_name(file_name)
        encrypted_path.write_bytes(ciphertext)

        statement = BankStatement(
            id=0,
            user_id=user_id.strip(),
            bank_id=bank_id.strip(),
            file_name=Path(file_name).name,
            file_type=declared,
            encrypted_path=str(encrypted_path),
            key_handle=handle,
            uploaded_at=datetime.now(UTC),
        )
        statement_id = self.db.create_statement(statement)
        statement = replace(statement, id=statement_id)

        trail = AuditTrail(statement_id)
        trail.record(
            ProcessingStep.UPLOAD,
            LogStatus.COMPLETED,
            f"Uploaded {statement.file_name} ({len(content)} bytes, sealed)",
            file_type=declared,
            size=len(content),
        )
        self.db.add_processing_logs(trail.entries)
        return statement

    def get_statement(self, statement_id: int) -> BankStatement:
        """Get a statement.

        Raises:
            NotFoundError: If the statement doesn't exist
        """
        statement = self.db.get_statement(statement_id)
        if statement is None:
            raise NotFoundError(statement_not_found(statement_id))
        return statement

    def list_statements(self, user_id: Optional[str] = None, since: Optional[date] = None) -> list[BankStatement]:
        return self.db.list_statements(user_id=user_id, since=since)

    def list_transactions(self, statement_id: int) -> list[RawTransaction]:
        self.get_statement(statement_id)
        return self.db.list_raw_transactions(statement_id=statement_id)

    def list_logs(self, statement_id: int) -> list[ProcessingLog]:
        self.get_statement(statement_id)
        return self.db.list_processing_logs(statement_id)

    def existing_transactions(self, statement: BankStatement) -> list[RawTransaction]:
        """Transactions the user already has from other statements."""
        return self.db.list_raw_transactions(user_id=statement.user_id, exclude_statement_id=statement.id)

    def load_ciphertext(self, statement: BankStatement) -> bytes:
        """Read a statement's sealed bytes.

        Raises:
            NotFoundError: If the sealed file is missing
        """
        return self._sealed_path(statement).read_bytes()

    @staticmethod
    def _sealed_path(statement: BankStatement) -> Path:
        path = Path(statement.encrypted_path)
        if not path.is_file():
            raise NotFoundError(f"Sealed file for statement {statement.id} not found")
        return path

    def build_job(self, statement: BankStatement) -> StatementJob:
        return StatementJob(
            statement=statement,
            ciphertext=self.load_ciphertext(statement),
            existing=self.existing_transactions(statement),
        )

    def save_result(self, result: ProcessingResult) -> None:
        """Persist a processing result.

        The final statement snapshot, the transactions, and the processing
        log entries (numbered after the ones already stored) are written
        in one commit, so a failed write leaves none of them behind.
        """
        statement = result.statement
        offset = len(self.db.list_processing_logs(statement.id))
        logs = [replace(log, sequence=offset + log.sequence) for log in result.logs]

        trail = AuditTrail(statement.id, first_sequence=offset + len(logs) + 1)
        trail.record(
            ProcessingStep.SAVING,
            LogStatus.COMPLETED,
            f"Saved {len(result.transactions)} transaction{'s' if len(result.transactions) != 1 else ''}",
            transaction_count=len(result.transactions),
            statement_status=statement.status.value,
        )
        self.db.save_processing_result(statement, result.transactions, logs + list(trail.entries))

    def process_statements(
        self,
        statement_ids: Sequence[int],
        build_pipeline: Callable[[str], StatementPipeline],
        max_workers: Optional[int] = None,
    ) -> list[ProcessingResult]:
        """Process stored statements and persist their results.

        Each user's statements run one at a time in upload order, so every
        statement is checked for duplicates against the transactions saved
        from the ones before it. Statements of different users run in
        parallel.

        A statement is claimed in the database (pending to processing)
        before it runs. Statements already claimed by another run are
        skipped and have no result.

        Args:
            statement_ids: Statements to process
            build_pipeline: Builds a pipeline for a user ID
            max_workers: Parallel statements; the pipelines' setting if None

        Returns:
            Results in the order of statement_ids, without skipped statements

        Raises:
            NotFoundError: If a statement or its sealed file doesn't exist
        """
        statements = [self.get_statement(statement_id) for statement_id in dict.fromkeys(statement_ids)]
        for statement in statements:
            self._sealed_path(statement)
        if not statements:
            return []

        queues: dict[str, list[BankStatement]] = {}
        for statement in sorted(statements, key=lambda s: s.id):
            queues.setdefault(statement.user_id, []).append(statement)
        pipelines = {user_id: build_pipeline(user_id) for user_id in queues}
        workers = max_workers or min(pipeline.config.max_workers for pipeline in pipelines.values())

        results: dict[int, ProcessingResult] = {}
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="stmtflow-statement") as pool:
            while any(queues.values()):
                # One statement per user per round
                jobs = []
                for queue in queues.values():
                    if not queue:
                        continue
                    statement = queue.pop(0)
                    job = self.build_job(statement)
                    if self.db.claim_statement(statement.id):
                        jobs.append(job)
                    else:
                        logger.info("Statement %d was claimed by another run; skipping", statement.id)

                runs = [pool.submit(pipelines[job.statement.user_id].process, job) for job in jobs]
                for run in runs:
                    result = self._store(run.result())
                    results[result.statement.id] = result

        return [results[statement.id] for statement in statements if statement.id in results]

    def _store(self, result: ProcessingResult) -> ProcessingResult:
        try:
            self.save_result(result)
        except Exception as e:
            logger.exception("Could not save result of statement %d", result.statement.id)
            result = self._save_failure(result, e)
        logger.info(
            "Statement %d finished as %s with %d transactions",
            result.statement.id,
            result.statement.status.value,
            len(result.transactions),
        )
        return result

    def _save_failure(self, result: ProcessingResult, error: Exception) -> ProcessingResult:
        """Mark a statement failed after its result could not be saved."""
        statement = replace(
            result.statement,
            status=StatementStatus.FAILED,
            last_error=str(error),
            transaction_count=0,
            period_start=None,
            period_end=None,
        )
        trail = AuditTrail(statement.id, first_sequence=len(self.db.list_processing_logs(statement.id)) + 1)
        trail.failure(ProcessingStep.SAVING, error)
        self.db.save_processing_result(statement, [], trail.entries)
        return ProcessingResult(
            statement=statement,
            logs=list(trail.entries),
            errors=result.errors,
            warnings=result.warnings,
        )
