"""Caller-owned learning state for categorization feedback."""

import threading
from dataclasses import replace
from datetime import datetime, UTC
from typing import Iterable, Optional

from stmtflow.domain.entities import MerchantMapping, TransactionLearning

INITIAL_CONFIDENCE = 0.7
CONFIDENCE_STEP = 0.05
MAX_CONFIDENCE = 0.95
OCCURRENCE_BONUS = 0.01


class LearningStore:
    """Merchant mappings and transaction patterns confirmed by a user.

    The store is owned by the caller and passed explicitly to the
    categorizer; it is only changed through record_confirmation().
    Lookups and updates are guarded by a lock so one store can be shared
    by concurrent categorization runs.
    """

    def __init__(
        self,
        merchant_mappings: Iterable[MerchantMapping] = (),
        learning_entries: Iterable[TransactionLearning] = (),
    ):
        self._lock = threading.Lock()
        self._merchants: dict[str, MerchantMapping] = {m.original_name: m for m in merchant_mappings}
        self._learning: dict[tuple[str, str], TransactionLearning] = {
            (entry.merchant, entry.description_pattern): entry for entry in learning_entries
        }

    def find_learning(self, merchant: str, pattern: str) -> Optional[TransactionLearning]:
        """Return the entry for an exact (merchant, description pattern) pair."""
        with self._lock:
            return self._learning.get((merchant, pattern))

    def find_merchant(self, merchant: str) -> Optional[MerchantMapping]:
        """Return the mapping for a merchant.

        Exact names win; otherwise the first mapping (by name) whose name
        contains, or is contained in, the merchant.
        """
        if not merchant:
            return None
        with self._lock:
            exact = self._merchants.get(merchant)
            if exact is not None:
                return exact
            for name in sorted(self._merchants):
                if name and (name in merchant or merchant in name):
                    return self._merchants[name]
        return None

    def record_confirmation(
        self,
        merchant: str,
        pattern: str,
        category_id: int,
        now: Optional[datetime] = None,
    ) -> tuple[TransactionLearning, Optional[MerchantMapping]]:
        """Strengthen (or create) entries after a user confirms a category.

        Confirming the same category again adds an occurrence and raises
        confidence by 0.05 up to 0.95. Confirming a different category
        replaces the entry and starts again at 0.7.

        Returns:
            The updated learning entry and merchant mapping (None when the
            transaction has no merchant)
        """
        now = now or datetime.now(UTC)
        with self._lock:
            learning = self._learning.get((merchant, pattern))
            if learning is None or learning.category_id != category_id:
                learning = TransactionLearning(
                    merchant=merchant,
                    description_pattern=pattern,
                    category_id=category_id,
                    confidence=INITIAL_CONFIDENCE,
                    occurrences=1,
                    last_seen=now,
                    id=learning.id if learning is not None else None,
                )
            else:
                learning = replace(
                    learning,
                    occurrences=learning.occurrences + 1,
                    confidence=_strengthen(learning.confidence),
                    last_seen=now,
                )
            self._learning[(merchant, pattern)] = learning

            mapping = None
            if merchant:
                mapping = self._merchants.get(merchant)
                if mapping is None or mapping.category_id != category_id:
                    mapping = MerchantMapping(
                        original_name=merchant,
                        standardized_name=merchant,
                        category_id=category_id,
                        confidence=INITIAL_CONFIDENCE,
                        occurrences=1,
                        is_verified=True,
                        id=mapping.id if mapping is not None else None,
                    )
                else:
                    mapping = replace(
                        mapping,
                        occurrences=mapping.occurrences + 1,
                        confidence=_strengthen(mapping.confidence),
                        is_verified=True,
                    )
                self._merchants[merchant] = mapping

        return learning, mapping

    def merchant_mappings(self) -> list[MerchantMapping]:
        with self._lock:
            return sorted(self._merchants.values(), key=lambda m: m.original_name)

    def learning_entries(self) -> list[TransactionLearning]:
        with self._lock:
            return sorted(self._learning.values(), key=lambda e: (e.merchant, e.description_pattern))


def learned_confidence(confidence: float, occurrences: int) -> float:
    """Confidence of a suggestion drawn from learned feedback.

    Each confirmed occurrence adds 0.01, capped at 0.95.
    """
    return min(MAX_CONFIDENCE, confidence + occurrences * OCCURRENCE_BONUS)


def _strengthen(confidence: float) -> float:
    return min(MAX_CONFIDENCE, round(confidence + CONFIDENCE_STEP, 4))
