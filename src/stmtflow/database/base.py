"""Abstract database interface."""

from abc import ABC, abstractmethod
from typing import Optional, Sequence
from datetime import date

# Import entities directly to avoid circular import through domain/__init__.py
from stmtflow.domain.entities import (
    BankMappingConfig,
    BankStatement,
    CategoryRule,
    CategoryType,
    MerchantMapping,
    ProcessingLog,
    RawTransaction,
    RuleField,
    RuleOperator,
    TransactionCategory,
    TransactionLearning,
)


class Database(ABC):
    """Abstract database interface for stmtflow."""

    @abstractmethod
    def connect(self) -> None:
        """Connect to the database."""
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Disconnect from the database."""
        pass

    @abstractmethod
    def initialize_schema(self) -> None:
        """Initialize database schema (create tables)."""
        pass

    # Mapping config operations
    @abstractmethod
    def create_mapping_config(self, config: BankMappingConfig) -> int:
        """Store a mapping config (its id is ignored). Returns mapping ID."""
        pass

    @abstractmethod
    def get_mapping_config(self, mapping_id: int) -> Optional[BankMappingConfig]:
        """Get mapping config by ID."""
        pass

    @abstractmethod
    def list_mapping_configs(
        self, bank_id: Optional[str] = None, active_only: bool = False
    ) -> list[BankMappingConfig]:
        """List mapping configs, optionally filtered by bank and active flag."""
        pass

    @abstractmethod
    def set_mapping_config_active(self, mapping_id: int, is_active: bool) -> None:
        """Activate or deactivate a mapping config."""
        pass

    # Category operations
    @abstractmethod
    def create_category(
        self,
        name: str,
        category_type: CategoryType = CategoryType.EXPENSE,
        keywords: Sequence[str] = (),
    ) -> int:
        """Create a category. Returns category ID."""
        pass

    @abstractmethod
    def set_category_keywords(self, category_id: int, keywords: Sequence[str]) -> None:
        """Replace a category's keywords."""
        pass

    @abstractmethod
    def get_category(self, category_id: int) -> Optional[TransactionCategory]:
        """Get category (with its rules) by ID."""
        pass

    @abstractmethod
    def get_category_by_name(self, name: str) -> Optional[TransactionCategory]:
        """Get category (with its rules) by name, case-insensitively."""
        pass

    @abstractmethod
    def list_categories(self, active_only: bool = False) -> list[TransactionCategory]:
        """List categories with their rules, ordered by name."""
        pass

    @abstractmethod
    def add_category_rule(
        self,
        category_id: int,
        field: RuleField,
        operator: RuleOperator,
        value: str,
        weight: float = 1.0,
    ) -> int:
        """Add a rule to a category. Returns rule ID."""
        pass

    @abstractmethod
    def list_category_rules(self, category_id: int) -> list[CategoryRule]:
        """List a category's rules in creation order."""
        pass

    # Statement operations
    @abstractmethod
    def create_statement(self, statement: BankStatement) -> int:
        """Store a new statement (its id is ignored). Returns statement ID."""
        pass

    @abstractmethod
    def get_statement(self, statement_id: int) -> Optional[BankStatement]:
        """Get statement by ID."""
        pass

    @abstractmethod
    def claim_statement(self, statement_id: int) -> bool:
        """Move a statement from pending to processing.

        The change is conditional on the stored status, so only one caller
        can claim a statement. Returns True if this call claimed it.
        """
        pass

    @abstractmethod
    def save_processing_result(
        self,
        statement: BankStatement,
        transactions: Sequence[RawTransaction],
        logs: Sequence[ProcessingLog],
    ) -> None:
        """Store a statement snapshot, its transactions and log entries in one commit.

        Nothing is stored if any part fails.
        """
        pass

    @abstractmethod
    def list_statements(
        self,
        user_id: Optional[str] = None,
        since: Optional[date] = None,
    ) -> list[BankStatement]:
        """List statements, newest first, optionally filtered by user and upload date."""
        pass

    # Raw transaction operations
    @abstractmethod
    def get_raw_transaction(self, transaction_id: str) -> Optional[RawTransaction]:
        """Get raw transaction by ID."""
        pass

    @abstractmethod
    def list_raw_transactions(
        self,
        statement_id: Optional[int] = None,
        user_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        exclude_statement_id: Optional[int] = None,
    ) -> list[RawTransaction]:
        """List raw transactions ordered by statement and row.

        Args:
            statement_id: Optional source statement filter
            user_id: Optional owner filter
            start_date: Optional start date filter
            end_date: Optional end date filter
            exclude_statement_id: Skip transactions from this statement
        """
        pass

    @abstractmethod
    def update_transaction_category(
        self, transaction_id: str, category_id: Optional[int], confidence: Optional[float]
    ) -> None:
        """Update a raw transaction's category and confidence."""
        pass

    # Processing log operations
    @abstractmethod
    def add_processing_logs(self, logs: Sequence[ProcessingLog]) -> None:
        """Append processing log entries."""
        pass

    @abstractmethod
    def list_processing_logs(self, statement_id: int) -> list[ProcessingLog]:
        """List a statement's log entries in sequence order."""
        pass

    # Learning operations
    @abstractmethod
    def list_merchant_mappings(self, user_id: str) -> list[MerchantMapping]:
        """List a user's merchant mappings."""
        pass

    @abstractmethod
    def list_learning_entries(self, user_id: str) -> list[TransactionLearning]:
        """List a user's learned transaction patterns."""
        pass

    @abstractmethod
    def save_learning(
        self,
        user_id: str,
        learning: TransactionLearning,
        mapping: Optional[MerchantMapping] = None,
    ) -> None:
        """Insert or update a learned pattern and merchant mapping for a user."""
        pass
