"""Bank mapping configurations: validation, lookup, and management."""

import logging
import re
from typing import Iterable, Optional

from stmtflow.database.base import Database
from stmtflow.domain.entities import (
    AmountFormat,
    BankMappingConfig,
    FieldMapping,
    FileType,
)
from stmtflow.domain.errors import (
    MappingConfigMissingError,
    NotFoundError,
    ValidationError,
    mapping_config_missing,
)
from stmtflow.utils.date_parser import to_strptime_format

logger = logging.getLogger(__name__)

OCR_REQUIRED_GROUPS = {"date", "description", "amount"}


def validate_mapping_config(config: BankMappingConfig) -> list[str]:
    """Check a mapping config for problems.

    Args:
        config: Mapping config to check

    Returns:
        List of problem descriptions; empty when the config is usable
    """
    problems = []
    fields = config.fields

    if not config.bank_id or not config.bank_id.strip():
        problems.append("bank_id is required")
    if not fields.date:
        problems.append("date field is required")
    if not fields.description:
        problems.append("description field is required")

    try:
        to_strptime_format(config.date_format)
    except ValueError as e:
        problems.append(str(e))

    if config.amount_format == AmountFormat.DEBIT_CREDIT:
        if fields.amount:
            problems.append("Cannot map 'amount' field for debit/credit format; map debit and credit")
        if not fields.debit or not fields.credit:
            problems.append("debit_credit format requires both debit and credit fields")
    elif not fields.amount:
        problems.append(f"{config.amount_format.value} format requires an amount field")

    if config.file_type in (FileType.OFX, FileType.QIF):
        if config.amount_format == AmountFormat.DEBIT_CREDIT:
            problems.append(f"{config.file_type.value} statements carry signed amounts; debit_credit is not supported")

    if config.file_type == FileType.CSV:
        if len(config.delimiter) != 1:
            problems.append(f"CSV delimiter must be a single character, got '{config.delimiter}'")
        if config.header_row < 0:
            problems.append("header_row must be >= 0")
        if config.skip_rows < 0:
            problems.append("skip_rows must be >= 0")
        if config.header_row == 0:
            for name, column in fields.items():
                if not column.isdigit() or int(column) < 1:
                    problems.append(
                        f"Headerless CSV requires 1-based column positions; "
                        f"field '{name}' is mapped to '{column}'"
                    )

    if config.file_type == FileType.PDF and config.ocr_line_pattern:
        try:
            pattern = re.compile(config.ocr_line_pattern)
        except re.error as e:
            problems.append(f"OCR line pattern does not compile: {e}")
        else:
            missing = OCR_REQUIRED_GROUPS - set(pattern.groupindex)
            if missing:
                problems.append(
                    f"OCR line pattern is missing named groups: {', '.join(sorted(missing))}"
                )

    return problems


class MappingRegistry:
    """In-memory lookup of active mapping configs by (bank id, file type).

    The registry is read-only during processing and safe to share between
    worker threads once built.
    """

    def __init__(self, configs: Iterable[BankMappingConfig] = ()):
        self._configs: dict[tuple[str, FileType], BankMappingConfig] = {}
        for config in configs:
            self.register(config)

    @classmethod
    def from_database(cls, db: Database) -> "MappingRegistry":
        """Build a registry from the active configs stored in a database."""
        return cls(db.list_mapping_configs(active_only=True))

    def register(self, config: BankMappingConfig) -> None:
        """Add a config, replacing an earlier one for the same bank and type.

        The config with the higher id wins; when either config is unsaved
        (id None) the later registration wins. Inactive configs are ignored.

        Raises:
            ValidationError: If the config is invalid
        """
        problems = validate_mapping_config(config)
        if problems:
            raise ValidationError(
                f"Invalid mapping for bank '{config.bank_id}' ({config.file_type.value}): "
                + "; ".join(problems)
            )
        if not config.is_active:
            return
        key = (config.bank_id.strip().lower(), config.file_type)
        current = self._configs.get(key)
        if current is None or config.id is None or current.id is None or config.id >= current.id:
            self._configs[key] = config

    def resolve(self, bank_id: str, file_type: "str | FileType") -> BankMappingConfig:
        """Find the active config for a bank and file type.

        Raises:
            MappingConfigMissingError: If no active config matches
            UnsupportedFormatError: If the file type is not recognized
        """
        ftype = FileType.parse(file_type)
        config = self._configs.get(((bank_id or "").strip().lower(), ftype))
        if config is None:
            raise MappingConfigMissingError(mapping_config_missing(bank_id, ftype.value))
        return config

    def list_configs(self) -> list[BankMappingConfig]:
        return sorted(self._configs.values(), key=lambda c: (c.bank_id, c.file_type.value))

    def __len__(self) -> int:
        return len(self._configs)


class MappingConfigService:
    """Service for managing stored mapping configurations."""

    def __init__(self, db: Database):
        """Initialize mapping config service.

        Args:
            db: Database instance
        """
        self.db = db

    def create_mapping(
        self,
        bank_id: str,
        file_type: str,
        fields: FieldMapping,
        date_format: str,
        amount_format: str = AmountFormat.POSITIVE_NEGATIVE.value,
        bank_name: Optional[str] = None,
        delimiter: str = ",",
        header_row: int = 1,
        skip_rows: int = 0,
        encoding: str = "utf-8-sig",
        ocr_line_pattern: Optional[str] = None,
    ) -> int:
        """Create a mapping config.

        A new config for a bank and file type supersedes older active ones.

        Returns:
            Mapping config ID

        Raises:
            ValidationError: If the config is invalid
            UnsupportedFormatError: If the file type is not recognized
        """
        candidate = BankMappingConfig(
            id=0,
            bank_id=bank_id.strip(),
            bank_name=bank_name or bank_id.strip(),
            file_type=FileType.parse(file_type),
            fields=fields,
            date_format=date_format,
            amount_format=AmountFormat.parse(amount_format),
            delimiter=delimiter,
            header_row=header_row,
            skip_rows=skip_rows,
            encoding=encoding,
            ocr_line_pattern=ocr_line_pattern,
        )
        problems = validate_mapping_config(candidate)
        if problems:
            raise ValidationError("; ".join(problems))

        mapping_id = self.db.create_mapping_config(candidate)
        logger.info(
            "Created mapping %d for bank '%s' (%s)", mapping_id, candidate.bank_id, candidate.file_type.value
        )
        return mapping_id

    def get_mapping(self, mapping_id: int) -> Optional[BankMappingConfig]:
        """Get mapping config by ID."""
        return self.db.get_mapping_config(mapping_id)

    def list_mappings(
        self, bank_id: Optional[str] = None, active_only: bool = False
    ) -> list[BankMappingConfig]:
        """List mapping configs.

        Args:
            bank_id: Optional bank ID to filter by
            active_only: If True, skip deactivated configs
        """
        return self.db.list_mapping_configs(bank_id=bank_id, active_only=active_only)

    def resolve(self, bank_id: str, file_type: str) -> BankMappingConfig:
        """Resolve the active mapping for a bank and file type."""
        return MappingRegistry.from_database(self.db).resolve(bank_id, file_type)

    def deactivate_mapping(self, mapping_id: int) -> None:
        """Deactivate a mapping config.

        Raises:
            NotFoundError: If the mapping doesn't exist
        """
        if self.db.get_mapping_config(mapping_id) is None:
            raise NotFoundError(f"Mapping config {mapping_id} not found")
        self.db.set_mapping_config_active(mapping_id, False)
        logger.info("Deactivated mapping %d", mapping_id)
