"""Near-duplicate detection across overlapping statements."""

import logging
import re
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Optional, Sequence

from rapidfuzz.distance import Levenshtein

from stmtflow.config import ProcessingConfig
from stmtflow.domain.entities import RawTransaction, TransactionStatus
from stmtflow.domain.errors import DuplicateAmbiguityWarning, ambiguous_duplicate

logger = logging.getLogger(__name__)

_SPACES = re.compile(r"\s+")


def description_similarity(first: str, second: str) -> float:
    """Return 1 - edit distance / length of the longer string.

    Comparison is case-sensitive and character-level with unit costs for
    insert, delete and substitute. Runs of whitespace are collapsed and
    the ends trimmed first, so "EFTPOS  Woolworths " and
    "EFTPOS Woolworths" score 1.0; layout differences between statement
    exports are not counted as edits. Two empty strings are identical (1.0).
    """
    a = _SPACES.sub(" ", first or "").strip()
    b = _SPACES.sub(" ", second or "").strip()
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - Levenshtein.distance(a, b) / longest


@dataclass
class DuplicateReport:
    """Flagged transactions plus the warnings raised while matching."""

    transactions: list[RawTransaction]
    warnings: list[DuplicateAmbiguityWarning] = field(default_factory=list)

    @property
    def duplicate_count(self) -> int:
        return sum(1 for txn in self.transactions if txn.is_duplicate)


class DuplicateDetector:
    """Flag new transactions that nearly match previously stored ones.

    A match requires all three thresholds to hold: date distance, amount
    distance relative to the new amount's magnitude, and description
    similarity. Existing transactions are bucketed by date so each new
    transaction is only compared with the date window around it. When
    several existing transactions match, the first one in the order they
    were supplied wins and a DuplicateAmbiguityWarning is recorded.
    """

    def __init__(
        self,
        date_threshold_days: int = 1,
        amount_tolerance: float = 0.01,
        similarity_threshold: float = 0.8,
        shards: int = 1,
    ):
        self.date_threshold_days = date_threshold_days
        self.amount_tolerance = Decimal(str(amount_tolerance))
        self.similarity_threshold = similarity_threshold
        self.shards = max(1, shards)

    @classmethod
    def from_config(cls, config: ProcessingConfig) -> "DuplicateDetector":
        return cls(
            date_threshold_days=config.date_threshold_days,
            amount_tolerance=config.amount_tolerance,
            similarity_threshold=config.similarity_threshold,
            shards=config.duplicate_shards,
        )

    def is_duplicate(self, new: RawTransaction, existing: RawTransaction) -> bool:
        """Return True if new is a near-duplicate of existing."""
        if abs((new.date - existing.date).days) > self.date_threshold_days:
            return False

        allowed = abs(new.amount) * self.amount_tolerance
        if abs(new.amount - existing.amount) > allowed:
            return False

        return description_similarity(new.description, existing.description) >= self.similarity_threshold

    def detect(
        self, new_transactions: Sequence[RawTransaction], existing: Sequence[RawTransaction]
    ) -> DuplicateReport:
        """Flag duplicates among new transactions.

        The existing sequence is only read. New transactions keep their
        order; flagged ones carry duplicate_of and are marked ignored so
        they stay out of totals.

        Args:
            new_transactions: Freshly parsed transactions
            existing: Previously stored transactions for the same user

        Returns:
            DuplicateReport with updated transactions and warnings
        """
        buckets: dict[int, list[tuple[int, RawTransaction]]] = defaultdict(list)
        for position, txn in enumerate(existing):
            buckets[txn.date.toordinal()].append((position, txn))

        if self.shards > 1 and len(new_transactions) > 1:
            size = -(-len(new_transactions) // self.shards)
            chunks = [new_transactions[i:i + size] for i in range(0, len(new_transactions), size)]
            with ThreadPoolExecutor(max_workers=len(chunks), thread_name_prefix="stmtflow-dedup") as pool:
                results = list(pool.map(lambda chunk: self._check_shard(chunk, buckets), chunks))
        else:
            results = [self._check_shard(new_transactions, buckets)]

        report = DuplicateReport(transactions=[])
        for transactions, warnings in results:
            report.transactions.extend(transactions)
            report.warnings.extend(warnings)

        logger.info(
            "Duplicate check: %d of %d new transactions flagged against %d existing",
            report.duplicate_count,
            len(new_transactions),
            len(existing),
        )
        return report

    def _check_shard(
        self,
        shard: Sequence[RawTransaction],
        buckets: dict[int, list[tuple[int, RawTransaction]]],
    ) -> tuple[list[RawTransaction], list[DuplicateAmbiguityWarning]]:
        checked = []
        warnings = []
        for txn in shard:
            matches = self._find_matches(txn, buckets)
            if not matches:
                checked.append(txn)
                continue
            if len(matches) > 1:
                message = ambiguous_duplicate(txn.description, len(matches))
                logger.warning(message)
                warnings.append(DuplicateAmbiguityWarning(message))
            checked.append(
                replace(
                    txn,
                    is_duplicate=True,
                    duplicate_of=matches[0].id,
                    status=TransactionStatus.IGNORED,
                )
            )
        return checked, warnings

    def _find_matches(
        self, txn: RawTransaction, buckets: dict[int, list[tuple[int, RawTransaction]]]
    ) -> list[RawTransaction]:
        day = txn.date.toordinal()
        candidates: list[tuple[int, RawTransaction]] = []
        for ordinal in range(day - self.date_threshold_days, day + self.date_threshold_days + 1):
            candidates.extend(buckets.get(ordinal, ()))
        candidates.sort(key=lambda item: item[0])
        return [existing for _, existing in candidates if self.is_duplicate(txn, existing)]

    def first_match(
        self, txn: RawTransaction, existing: Sequence[RawTransaction]
    ) -> Optional[RawTransaction]:
        """Return the first existing transaction txn duplicates, if any."""
        for candidate in existing:
            if self.is_duplicate(txn, candidate):
                return candidate
        return None
