"""Category domain service."""

import logging
from typing import Optional, Sequence

from stmtflow.database.base import Database
from stmtflow.domain.categorizer import Categorizer, validate_rule
from stmtflow.domain.entities import (
    CategoryType,
    RuleField,
    RuleOperator,
    TransactionCategory,
    TransactionLearning,
)
from stmtflow.domain.errors import (
    NotFoundError,
    ValidationError,
    category_name_not_found,
    transaction_not_found,
)
from stmtflow.domain.learning import LearningStore

logger = logging.getLogger(__name__)


class CategoryService:
    """Service for managing categories, their rules, and learned feedback."""

    def __init__(self, db: Database):
        """Initialize category service.

        Args:
            db: Database instance
        """
        self.db = db

    def create_category(
        self,
        name: str,
        category_type: str = CategoryType.EXPENSE.value,
        keywords: Sequence[str] = (),
    ) -> int:
        """Create a category.

        Args:
            name: Category name (unique, case-insensitive)
            category_type: One of expense, income, transfer
            keywords: Words that hint at this category in descriptions

        Returns:
            Category ID

        Raises:
            ValidationError: If the name is empty or the type is unknown
            ConflictError: If the category already exists
        """
        name = name.strip()
        if not name:
            raise ValidationError("Category name is required")
        try:
            kind = CategoryType(category_type.strip().lower())
        except ValueError:
            valid = ", ".join(t.value for t in CategoryType)
            raise ValidationError(f"Invalid category type '{category_type}'. Must be one of: {valid}")
        return self.db.create_category(name=name, category_type=kind, keywords=_clean_keywords(keywords))

    def add_keywords(self, category_name: str, keywords: Sequence[str]) -> tuple[str, ...]:
        """Add keywords to a category, keeping existing ones first.

        Returns:
            The category's keywords after the change

        Raises:
            NotFoundError: If the category doesn't exist
            ValidationError: If no non-blank keyword is given
        """
        category = self.get_category_by_name(category_name)
        if category is None:
            raise NotFoundError(category_name_not_found(category_name))
        added = _clean_keywords(keywords)
        if not added:
            raise ValidationError("At least one keyword is required")
        merged = _clean_keywords(category.keywords + added)
        self.db.set_category_keywords(category.id, merged)
        return merged

    def add_rule(
        self,
        category_name: str,
        field: str,
        operator: str,
        value: str,
        weight: float = 1.0,
    ) -> int:
        """Add a weighted rule to a category.

        Returns:
            Rule ID

        Raises:
            NotFoundError: If the category doesn't exist
            ValidationError: If the rule is malformed
        """
        category = self.get_category_by_name(category_name)
        if category is None:
            raise NotFoundError(category_name_not_found(category_name))
        try:
            rule_field = RuleField(field.strip().lower())
            rule_operator = RuleOperator(operator.strip().lower())
        except ValueError as e:
            raise ValidationError(str(e))
        validate_rule(rule_field, rule_operator, value, weight)
        return self.db.add_category_rule(category.id, rule_field, rule_operator, value, weight)

    def get_category(self, category_id: int) -> Optional[TransactionCategory]:
        return self.db.get_category(category_id)

    def get_category_by_name(self, name: str) -> Optional[TransactionCategory]:
        return self.db.get_category_by_name(name)

    def list_categories(self, active_only: bool = False) -> list[TransactionCategory]:
        return self.db.list_categories(active_only=active_only)

    def load_learning_store(self, user_id: str) -> LearningStore:
        """Load a user's stored feedback into a fresh learning store."""
        return LearningStore(
            merchant_mappings=self.db.list_merchant_mappings(user_id),
            learning_entries=self.db.list_learning_entries(user_id),
        )

    def build_categorizer(self, user_id: str) -> Categorizer:
        """Build a categorizer over active categories and the user's learning store."""
        return Categorizer(self.list_categories(active_only=True), self.load_learning_store(user_id))

    def confirm_category(self, transaction_id: str, category_name: str) -> TransactionLearning:
        """Confirm a category for a stored transaction and learn from it.

        The transaction's category is set with full confidence, and the
        updated learning entry and merchant mapping are persisted.

        Raises:
            NotFoundError: If the transaction or category doesn't exist
        """
        transaction = self.db.get_raw_transaction(transaction_id)
        if transaction is None:
            raise NotFoundError(transaction_not_found(transaction_id))
        category = self.get_category_by_name(category_name)
        if category is None:
            raise NotFoundError(category_name_not_found(category_name))

        categorizer = self.build_categorizer(transaction.user_id)
        learning = categorizer.confirm(transaction, category.id)
        mapping = categorizer.learning.find_merchant(learning.merchant) if learning.merchant else None

        self.db.save_learning(transaction.user_id, learning, mapping)
        self.db.update_transaction_category(transaction.id, category.id, 1.0)
        return learning


def _clean_keywords(keywords: Sequence[str]) -> tuple[str, ...]:
    """Strip blanks and drop case-insensitive repeats, keeping first spellings."""
    seen = set()
    cleaned = []
    for keyword in keywords:
        keyword = keyword.strip()
        if keyword and keyword.casefold() not in seen:
            seen.add(keyword.casefold())
            cleaned.append(keyword)
    return tuple(cleaned)
