"""Processing configuration."""

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Optional


@dataclass(frozen=True)
class ProcessingConfig:
    """Tunable thresholds and limits for statement processing.

    Attributes:
        date_threshold_days: Maximum day distance for a duplicate match
        amount_tolerance: Maximum amount distance as a fraction of the
            new transaction's magnitude
        similarity_threshold: Minimum description similarity for a match
        ocr_confidence_threshold: Recognition confidence below which a
            statement is flagged for manual review
        ocr_timeout_seconds: Timeout for a single recognizer call
        ocr_max_attempts: Total recognizer attempts, including the first
        ocr_backoff_seconds: Base delay between attempts, doubled each retry
        max_workers: Worker pool limit for parallel statements
        duplicate_shards: Shards for concurrent duplicate detection
    """

    date_threshold_days: int = 1
    amount_tolerance: float = 0.01
    similarity_threshold: float = 0.8
    ocr_confidence_threshold: float = 0.8
    ocr_timeout_seconds: float = 30.0
    ocr_max_attempts: int = 3
    ocr_backoff_seconds: float = 0.5
    max_workers: int = 4
    duplicate_shards: int = 1

    def __post_init__(self):
        if self.date_threshold_days < 0:
            raise ValueError("date_threshold_days must be >= 0")
        if not 0 <= self.amount_tolerance <= 1:
            raise ValueError("amount_tolerance must be between 0 and 1")
        if not 0 <= self.similarity_threshold <= 1:
            raise ValueError("similarity_threshold must be between 0 and 1")
        if not 0 <= self.ocr_confidence_threshold <= 1:
            raise ValueError("ocr_confidence_threshold must be between 0 and 1")
        if self.ocr_timeout_seconds <= 0:
            raise ValueError("ocr_timeout_seconds must be positive")
        if self.ocr_max_attempts < 1:
            raise ValueError("ocr_max_attempts must be >= 1")
        if self.ocr_backoff_seconds < 0:
            raise ValueError("ocr_backoff_seconds must be >= 0")
        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if self.duplicate_shards < 1:
            raise ValueError("duplicate_shards must be >= 1")

    @classmethod
    def from_env(cls, environ: Optional[dict[str, str]] = None) -> "ProcessingConfig":
        """Build a config from STMTFLOW_* environment variables.

        Unset variables keep their defaults, e.g. STMTFLOW_DATE_THRESHOLD_DAYS=2.
        """
        environ = os.environ if environ is None else environ
        overrides: dict[str, Any] = {}
        for name, caster in _ENV_FIELDS.items():
            raw = environ.get(f"STMTFLOW_{name.upper()}")
            if raw is None or raw == "":
                continue
            try:
                overrides[name] = caster(raw)
            except ValueError:
                raise ValueError(f"Invalid value for STMTFLOW_{name.upper()}: '{raw}'")
        return cls(**overrides)

    def with_overrides(self, **overrides: Any) -> "ProcessingConfig":
        """Return a copy with non-None overrides applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)


_ENV_FIELDS = {
    "date_threshold_days": int,
    "amount_tolerance": float,
    "similarity_threshold": float,
    "ocr_confidence_threshold": float,
    "ocr_timeout_seconds": float,
    "ocr_max_attempts": int,
    "ocr_backoff_seconds": float,
    "max_workers": int,
    "duplicate_shards": int,
}


def default_home() -> Path:
    """Return the stmtflow data directory (~/.stmtflow), creating it."""
    home = Path.home() / ".stmtflow"
    home.mkdir(exist_ok=True)
    return home


def resolve_vault_dir(vault_dir: Optional[str] = None) -> Path:
    """Resolve the sealed-file storage directory.

    Checks the argument, then STMTFLOW_VAULT_DIR, then ~/.stmtflow/vault.
    """
    if vault_dir is None:
        vault_dir = os.environ.get("STMTFLOW_VAULT_DIR")
    path = Path(vault_dir) if vault_dir else default_home() / "vault"
    path.mkdir(parents=True, exist_ok=True)
    return path
