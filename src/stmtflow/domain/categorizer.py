"""Rule- and feedback-based transaction categorization."""

import logging
import re
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from typing import Optional, Sequence

from stmtflow.domain.entities import (
    CategoryRule,
    CategorySuggestion,
    RawTransaction,
    RuleField,
    RuleOperator,
    SuggestionSource,
    TransactionCategory,
    TransactionLearning,
    TransactionStatus,
)
from stmtflow.domain.errors import NotFoundError, ValidationError, category_not_found
from stmtflow.domain.learning import LearningStore, learned_confidence
from stmtflow.utils.merchant import description_pattern, extract_merchant

logger = logging.getLogger(__name__)

MAX_ALTERNATIVES = 3
KEYWORD_MAX_CONFIDENCE = 0.8
COMBINED_MAX_CONFIDENCE = 0.99


@dataclass(frozen=True)
class AmountHeuristic:
    """Weak hint toward a category, by name, from the size of an expense."""

    category_name: str
    confidence: float
    reason: str
    above: Optional[Decimal] = None
    below: Optional[Decimal] = None

    def applies(self, amount: Decimal) -> bool:
        return (self.above is None or amount > self.above) and (self.below is None or amount < self.below)


DEFAULT_AMOUNT_HEURISTICS = (
    AmountHeuristic(
        "Rent/Mortgage", 0.4, "Large expense amount suggests housing payment", above=Decimal("1000")
    ),
    AmountHeuristic(
        "Streaming Services", 0.3, "Small regular amount suggests subscription", below=Decimal("50")
    ),
)


def parse_amount_range(value: str) -> tuple[Optional[Decimal], Optional[Decimal]]:
    """Parse an amount_range rule value of the form "min:max".

    Either bound may be left empty for an open range ("1000:" or ":50").

    Raises:
        ValidationError: If the value is malformed or min > max
    """
    low_text, sep, high_text = (value or "").partition(":")
    if not sep:
        raise ValidationError(f"Amount range '{value}' must look like 'min:max'")
    try:
        low = Decimal(low_text.strip()) if low_text.strip() else None
        high = Decimal(high_text.strip()) if high_text.strip() else None
    except InvalidOperation:
        raise ValidationError(f"Amount range '{value}' contains a non-numeric bound")
    if low is None and high is None:
        raise ValidationError(f"Amount range '{value}' needs at least one bound")
    if low is not None and high is not None and low > high:
        raise ValidationError(f"Amount range '{value}' has min greater than max")
    return low, high


def validate_rule(field: RuleField, operator: RuleOperator, value: str, weight: float) -> None:
    """Check that a rule can be evaluated.

    Raises:
        ValidationError: If the rule is malformed
    """
    if weight <= 0:
        raise ValidationError(f"Rule weight must be positive, got {weight}")
    if operator == RuleOperator.AMOUNT_RANGE:
        if field != RuleField.AMOUNT:
            raise ValidationError("amount_range rules must use the amount field")
        parse_amount_range(value)
    elif operator == RuleOperator.REGEX:
        try:
            re.compile(value)
        except re.error as e:
            raise ValidationError(f"Invalid regex '{value}': {e}")
    elif field == RuleField.AMOUNT:
        if operator != RuleOperator.EQUALS:
            raise ValidationError("amount rules support only equals and amount_range")
        try:
            Decimal(value)
        except InvalidOperation:
            raise ValidationError(f"Amount rule value '{value}' is not a number")
    elif not value:
        raise ValidationError("Rule value is required")


def keyword_confidence(matched: int, total: int) -> float:
    """Confidence for a category whose keywords matched.

    0.3 for any match, growing with the matched share, capped at 0.8.
    """
    return min(KEYWORD_MAX_CONFIDENCE, matched / total * 0.7 + 0.3)


class Categorizer:
    """Assign categories using weighted rules and learned feedback.

    Every active rule of every active category is evaluated on its own; a
    category's score is the sum of its matched rule weights. The highest
    score wins with ties broken by category name. A learned entry for the
    transaction's merchant and description pattern overrides the rules when
    its confidence is higher than the rule-based confidence.

    Category keywords and amount heuristics are weaker hints. They only
    decide the category when no rule or learned entry matched, but every
    source contributes to the ranked alternatives.
    """

    def __init__(
        self,
        categories: Sequence[TransactionCategory],
        learning: Optional[LearningStore] = None,
        amount_heuristics: Sequence[AmountHeuristic] = DEFAULT_AMOUNT_HEURISTICS,
    ):
        """Initialize categorizer.

        Args:
            categories: Categories with their rules and keywords
            learning: Caller-owned learning store; a fresh empty store if None
            amount_heuristics: Hints applied to expenses by amount

        Raises:
            ValidationError: If a rule cannot be evaluated
        """
        self.categories = [c for c in categories if c.is_active]
        self.learning = learning if learning is not None else LearningStore()
        self.amount_heuristics = tuple(amount_heuristics)
        self._by_id = {c.id: c for c in self.categories}
        self._by_name = {c.name.casefold(): c for c in self.categories}
        self._patterns: dict[str, re.Pattern] = {}
        for category in self.categories:
            for rule in category.rules:
                validate_rule(rule.field, rule.operator, rule.value, rule.weight)
                if rule.operator == RuleOperator.REGEX:
                    self._patterns[rule.value] = re.compile(rule.value, re.IGNORECASE)

    def categorize(self, transaction: RawTransaction) -> CategorySuggestion:
        """Suggest a category for one transaction.

        The returned suggestion carries up to three alternatives for other
        categories, best first. Never changes the learning store.
        """
        by_rules = self._rule_suggestions(transaction)
        learned = self._learned_suggestion(transaction)
        hints = self._keyword_suggestions(transaction) + self._amount_suggestions(transaction)

        if learned is not None and (not by_rules or learned.confidence > by_rules[0].confidence):
            chosen = learned
        elif by_rules:
            chosen = by_rules[0]
        else:
            ranked_hints = self._consolidate(hints)
            chosen = ranked_hints[0] if ranked_hints else CategorySuggestion(
                category_id=None,
                confidence=0.0,
                source=SuggestionSource.NONE,
                reason="No rule or learned pattern matched",
            )

        candidates = by_rules + ([learned] if learned is not None else []) + hints
        alternatives = tuple(
            s for s in self._consolidate(candidates) if s.category_id != chosen.category_id
        )[:MAX_ALTERNATIVES]
        return replace(chosen, alternatives=alternatives)

    def categorize_all(self, transactions: Sequence[RawTransaction]) -> list[RawTransaction]:
        """Attach suggestions to transactions.

        Duplicates keep their ignored status; everything else becomes
        processed.
        """
        result = []
        for txn in transactions:
            suggestion = self.categorize(txn)
            status = txn.status if txn.is_duplicate else TransactionStatus.PROCESSED
            result.append(
                replace(
                    txn,
                    suggested_category_id=suggestion.category_id,
                    category_confidence=suggestion.confidence,
                    status=status,
                )
            )
        return result

    def confirm(self, transaction: RawTransaction, category_id: int) -> TransactionLearning:
        """Record a user's confirmation of a category for a transaction.

        This is the only path that changes learning state.

        Raises:
            NotFoundError: If the category is unknown or inactive
        """
        if category_id not in self._by_id:
            raise NotFoundError(category_not_found(category_id))
        merchant = self._merchant(transaction)
        pattern = description_pattern(transaction.description)
        learning, _ = self.learning.record_confirmation(merchant, pattern, category_id)
        logger.info(
            "Learned category %d for merchant '%s' (%d occurrences, confidence %.2f)",
            category_id,
            merchant,
            learning.occurrences,
            learning.confidence,
        )
        return learning

    def evaluate_rule(self, rule: CategoryRule, transaction: RawTransaction) -> bool:
        """Return True if a single rule matches the transaction."""
        if rule.field == RuleField.AMOUNT:
            amount = abs(transaction.amount)
            if rule.operator == RuleOperator.AMOUNT_RANGE:
                low, high = parse_amount_range(rule.value)
                return (low is None or amount >= low) and (high is None or amount <= high)
            if rule.operator == RuleOperator.EQUALS:
                return amount == abs(Decimal(rule.value))
            return False

        if rule.field == RuleField.DESCRIPTION:
            text = transaction.description
        elif rule.field == RuleField.MERCHANT:
            text = self._merchant(transaction)
        else:
            text = transaction.parsed.reference or ""
        text = text.casefold()
        needle = rule.value.casefold()

        if rule.operator == RuleOperator.CONTAINS:
            return needle in text
        if rule.operator == RuleOperator.EQUALS:
            return text == needle
        if rule.operator == RuleOperator.STARTS_WITH:
            return text.startswith(needle)
        if rule.operator == RuleOperator.ENDS_WITH:
            return text.endswith(needle)
        if rule.operator == RuleOperator.REGEX:
            pattern = self._patterns.get(rule.value)
            if pattern is None:
                pattern = self._patterns.setdefault(rule.value, re.compile(rule.value, re.IGNORECASE))
            return pattern.search(text) is not None
        return False

    def _rule_suggestions(self, transaction: RawTransaction) -> list[CategorySuggestion]:
        scored = []
        for category in self.categories:
            active = [rule for rule in category.rules if rule.is_active]
            if not active:
                continue
            matched = tuple(rule for rule in active if self.evaluate_rule(rule, transaction))
            if not matched:
                continue
            score = sum(rule.weight for rule in matched)
            total = sum(rule.weight for rule in active)
            scored.append((score, total, category, matched))

        scored.sort(key=lambda item: (-item[0], item[2].name))
        return [
            CategorySuggestion(
                category_id=category.id,
                confidence=score / total,
                matched_rules=matched,
                source=SuggestionSource.RULES,
                reason=f"Matched {len(matched)} rule{'s' if len(matched) != 1 else ''} of {category.name}",
            )
            for score, total, category, matched in scored
        ]

    def _learned_suggestion(self, transaction: RawTransaction) -> Optional[CategorySuggestion]:
        merchant = self._merchant(transaction)
        pattern = description_pattern(transaction.description)

        learning = self.learning.find_learning(merchant, pattern)
        if learning is not None and learning.category_id in self._by_id:
            return CategorySuggestion(
                category_id=learning.category_id,
                confidence=learned_confidence(learning.confidence, learning.occurrences),
                source=SuggestionSource.LEARNING,
                reason=f"Learned from {learning.occurrences} confirmed transaction"
                f"{'s' if learning.occurrences != 1 else ''}",
            )

        mapping = self.learning.find_merchant(merchant)
        if mapping is not None and mapping.category_id in self._by_id:
            return CategorySuggestion(
                category_id=mapping.category_id,
                confidence=learned_confidence(mapping.confidence, mapping.occurrences),
                source=SuggestionSource.MERCHANT,
                reason=f"Merchant '{mapping.standardized_name}' is usually "
                f"{self._by_id[mapping.category_id].name}",
            )
        return None

    def _keyword_suggestions(self, transaction: RawTransaction) -> list[CategorySuggestion]:
        text = f"{transaction.description} {self._merchant(transaction)}".casefold()
        suggestions = []
        for category in self.categories:
            if not category.keywords:
                continue
            matched = [keyword for keyword in category.keywords if keyword.casefold() in text]
            if matched:
                suggestions.append(
                    CategorySuggestion(
                        category_id=category.id,
                        confidence=keyword_confidence(len(matched), len(category.keywords)),
                        source=SuggestionSource.KEYWORDS,
                        reason=f"Matched keywords: {', '.join(matched)}",
                    )
                )
        return suggestions

    def _amount_suggestions(self, transaction: RawTransaction) -> list[CategorySuggestion]:
        if transaction.amount >= 0:
            return []
        amount = abs(transaction.amount)
        suggestions = []
        for heuristic in self.amount_heuristics:
            category = self._by_name.get(heuristic.category_name.casefold())
            if category is not None and heuristic.applies(amount):
                suggestions.append(
                    CategorySuggestion(
                        category_id=category.id,
                        confidence=heuristic.confidence,
                        source=SuggestionSource.AMOUNT,
                        reason=heuristic.reason,
                    )
                )
        return suggestions

    def _consolidate(self, suggestions: Sequence[CategorySuggestion]) -> list[CategorySuggestion]:
        """Merge suggestions per category and rank them.

        A later suggestion for the same category averages its confidence
        with the merged one (capped at 0.99) and appends its reason.
        """
        merged: dict[int, CategorySuggestion] = {}
        for suggestion in suggestions:
            existing = merged.get(suggestion.category_id)
            if existing is None:
                merged[suggestion.category_id] = suggestion
                continue
            merged[suggestion.category_id] = replace(
                existing,
                confidence=min(COMBINED_MAX_CONFIDENCE, (existing.confidence + suggestion.confidence) / 2),
                matched_rules=existing.matched_rules + suggestion.matched_rules,
                reason=f"{existing.reason}, {suggestion.reason}",
            )
        return sorted(merged.values(), key=lambda s: (-s.confidence, self._by_id[s.category_id].name))

    @staticmethod
    def _merchant(transaction: RawTransaction) -> str:
        return transaction.parsed.merchant or extract_merchant(transaction.description)
