"""Append-only processing audit trail."""

import logging
import re
from datetime import datetime, UTC
from typing import Any, Callable, Optional

from stmtflow.domain.entities import LogStatus, ProcessingLog, ProcessingStep

logger = logging.getLogger(__name__)

_SENSITIVE_KEY = re.compile(r"password|token|key|secret|account_number", re.IGNORECASE)

_LEVELS = {
    LogStatus.STARTED: logging.DEBUG,
    LogStatus.COMPLETED: logging.INFO,
    LogStatus.WARNING: logging.WARNING,
    LogStatus.FAILED: logging.ERROR,
}


def sanitize_details(details: dict[str, Any]) -> dict[str, Any]:
    """Redact values whose keys look like credentials or account numbers."""
    return {
        key: "[REDACTED]" if _SENSITIVE_KEY.search(key) else value
        for key, value in details.items()
    }


class AuditTrail:
    """Collects ProcessingLog entries for one statement in order.

    Entries are immutable and can only be appended.
    """

    def __init__(
        self,
        statement_id: int,
        clock: Optional[Callable[[], datetime]] = None,
        first_sequence: int = 1,
    ):
        self.statement_id = statement_id
        self._clock = clock or (lambda: datetime.now(UTC))
        self._first_sequence = first_sequence
        self._entries: list[ProcessingLog] = []

    def record(
        self, step: ProcessingStep, status: LogStatus, message: str, **details: Any
    ) -> ProcessingLog:
        """Append an entry and mirror it to the module logger."""
        entry = ProcessingLog(
            statement_id=self.statement_id,
            sequence=self._first_sequence + len(self._entries),
            step=step,
            status=status,
            message=message,
            details=sanitize_details(details),
            created_at=self._clock(),
        )
        self._entries.append(entry)
        logger.log(
            _LEVELS[status], "Statement %s [%s/%s] %s", self.statement_id, step.value, status.value, message
        )
        return entry

    def failure(self, step: ProcessingStep, error: BaseException, **details: Any) -> ProcessingLog:
        """Append a failed entry carrying the error type and verbatim message."""
        return self.record(
            step, LogStatus.FAILED, str(error), error_type=type(error).__name__, **details
        )

    def warning(self, step: ProcessingStep, warning: Warning, **details: Any) -> ProcessingLog:
        """Append a warning entry for a non-fatal condition."""
        return self.record(
            step, LogStatus.WARNING, str(warning), warning_type=type(warning).__name__, **details
        )

    @property
    def entries(self) -> tuple[ProcessingLog, ...]:
        return tuple(self._entries)
