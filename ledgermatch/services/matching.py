"""Statement matching engine.

Pairs bank-reported transactions with internally recorded ones in three
priority-ordered tiers:

1. Exact: amount within tolerance on the same day.
2. DateTolerant: amount within tolerance, dates a few days apart.
3. FuzzyDescription: amount within tolerance, a wider date window, and
   similar normalized descriptions.

Each tier runs as a full pass over the still-unmatched bank transactions
before the next tier starts, so a weaker tier never takes a candidate a
stronger tier would have used. Matching is greedy and deterministic: the
same inputs always yield the same pairs.
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from ledgermatch.logger import get_logger
from ledgermatch.models import InternalTransaction, MatchMethod
from ledgermatch.services.engine_config import (
    DEFAULT_MATCHING_CONFIG,
    MatchingConfig,
    validate_matching_config,
)
from ledgermatch.utils.similarity import normalize_description, string_similarity

logger = get_logger(__name__)

MATCH_REASON_AMOUNT_DELTA = Decimal("0.01")
MATCH_REASON_DESCRIPTION_SIMILARITY = 0.7


@dataclass(frozen=True)
class ExternalTransaction:
    """A bank-reported transaction. Ephemeral input to a matching run."""

    external_id: str
    amount: Decimal
    txn_date: date
    description: str = ""

    def snapshot(self) -> dict[str, Any]:
        """JSON-safe copy stored on unmatched-bank and matched items."""
        return {
            "external_id": self.external_id,
            "amount": str(self.amount),
            "date": self.txn_date.isoformat(),
            "description": self.description,
        }


@dataclass(frozen=True)
class MatchedPair:
    external: ExternalTransaction
    internal: InternalTransaction
    # Scores are non-monetary; floats are acceptable.
    confidence: float
    method: MatchMethod

    @property
    def reason(self) -> str:
        """Human-readable summary, e.g. "Matched on: amount, date (confidence: 95%)"."""
        reasons = []
        if abs(self.external.amount - self.internal.amount) < MATCH_REASON_AMOUNT_DELTA:
            reasons.append("amount")
        if abs((self.external.txn_date - self.internal.txn_date).days) <= 1:
            reasons.append("date")
        ext_desc = normalize_description(self.external.description)
        txn_desc = normalize_description(self.internal.description)
        if ext_desc and txn_desc and string_similarity(ext_desc, txn_desc) >= MATCH_REASON_DESCRIPTION_SIMILARITY:
            reasons.append("description")

        summary = f"Matched on: {', '.join(reasons)}" if reasons else "Partial match"
        return f"{summary} (confidence: {self.confidence:.0%})"


@dataclass
class MatchingResult:
    """Every input transaction lands in exactly one of the three lists."""

    matched_pairs: list[MatchedPair] = field(default_factory=list)
    unmatched_internal: list[InternalTransaction] = field(default_factory=list)
    unmatched_external: list[ExternalTransaction] = field(default_factory=list)

    @property
    def exact_matches(self) -> int:
        return sum(1 for pair in self.matched_pairs if pair.method == MatchMethod.EXACT)

    @property
    def fuzzy_matches(self) -> int:
        return len(self.matched_pairs) - self.exact_matches

    @property
    def unmatched_bank(self) -> int:
        return len(self.unmatched_external)

    @property
    def unmatched_app(self) -> int:
        return len(self.unmatched_internal)

    @property
    def total_items(self) -> int:
        return 2 * len(self.matched_pairs) + self.unmatched_bank + self.unmatched_app

    @property
    def overall_match_percentage(self) -> float:
        """Share of all transactions (both sides) that ended up in a pair."""
        if self.total_items == 0:
            return 0.0
        return round(2 * len(self.matched_pairs) / self.total_items * 100, 2)


@dataclass(frozen=True)
class _Candidate:
    ext: ExternalTransaction
    txn: InternalTransaction
    amount_distance: Decimal
    day_distance: int


TierScorer = Callable[[_Candidate, MatchingConfig], float | None]


def _score_exact(candidate: _Candidate, config: MatchingConfig) -> float | None:
    if candidate.day_distance == 0:
        return 1.0
    return None


def _score_date_tolerant(candidate: _Candidate, config: MatchingConfig) -> float | None:
    if candidate.day_distance > config.date_tolerance_days:
        return None
    return max(0.5, 1.0 - 0.1 * candidate.day_distance)


def _score_description(candidate: _Candidate, config: MatchingConfig) -> float | None:
    if candidate.day_distance > config.description_window_days:
        return None

    ext_desc = normalize_description(candidate.ext.description)
    txn_desc = normalize_description(candidate.txn.description)
    if not ext_desc or not txn_desc:
        return None

    similarity = string_similarity(ext_desc, txn_desc)
    if similarity < config.description_similarity_threshold:
        return None

    if config.amount_tolerance > 0:
        exactness = 1.0 - float(candidate.amount_distance / config.amount_tolerance)
    else:
        exactness = 1.0
    return 0.5 * exactness + 0.5 * similarity


def _tiers(config: MatchingConfig) -> list[tuple[MatchMethod, TierScorer]]:
    tiers: list[tuple[MatchMethod, TierScorer]] = [(MatchMethod.EXACT, _score_exact)]
    if config.use_date_range_matching:
        tiers.append((MatchMethod.DATE_TOLERANT, _score_date_tolerant))
    if config.use_description_matching:
        tiers.append((MatchMethod.FUZZY_DESCRIPTION, _score_description))
    return tiers


def match_transactions(
    internal: Sequence[InternalTransaction],
    external: Sequence[ExternalTransaction],
    config: MatchingConfig = DEFAULT_MATCHING_CONFIG,
) -> MatchingResult:
    """Partition both transaction sets into matched pairs and leftovers.

    Tie-break within a tier: smallest date distance, then smallest amount
    distance, then the earliest internal transaction (ascending date, input
    order for equal dates). A consumed transaction is never reconsidered.

    Raises:
        ValidationFailure: if the configuration is malformed.
    """
    validate_matching_config(config)

    # Stable orderings: ascending date, input position breaks ties
    internal_order = sorted(range(len(internal)), key=lambda i: (internal[i].txn_date, i))
    external_order = sorted(range(len(external)), key=lambda i: (external[i].txn_date, i))

    consumed_internal: set[int] = set()
    pairs: dict[int, MatchedPair] = {}

    for method, scorer in _tiers(config):
        for ext_index in external_order:
            if ext_index in pairs:
                continue
            ext = external[ext_index]

            best_key: tuple[int, Decimal, int] | None = None
            best: tuple[int, float] | None = None
            for rank, txn_index in enumerate(internal_order):
                if txn_index in consumed_internal:
                    continue
                txn = internal[txn_index]

                amount_distance = abs(ext.amount - txn.amount)
                if amount_distance > config.amount_tolerance:
                    continue

                candidate = _Candidate(
                    ext=ext,
                    txn=txn,
                    amount_distance=amount_distance,
                    day_distance=abs((ext.txn_date - txn.txn_date).days),
                )
                confidence = scorer(candidate, config)
                if confidence is None:
                    continue

                key = (candidate.day_distance, amount_distance, rank)
                if best_key is None or key < best_key:
                    best_key = key
                    best = (txn_index, confidence)

            if best is not None:
                txn_index, confidence = best
                consumed_internal.add(txn_index)
                pairs[ext_index] = MatchedPair(
                    external=ext,
                    internal=internal[txn_index],
                    confidence=round(min(1.0, max(0.0, confidence)), 4),
                    method=method,
                )

    result = MatchingResult(
        matched_pairs=[pairs[i] for i in external_order if i in pairs],
        unmatched_internal=[internal[i] for i in internal_order if i not in consumed_internal],
        unmatched_external=[external[i] for i in external_order if i not in pairs],
    )

    logger.debug(
        "Matching pass finished",
        internal_count=len(internal),
        external_count=len(external),
        exact_matches=result.exact_matches,
        fuzzy_matches=result.fuzzy_matches,
        unmatched_bank=result.unmatched_bank,
        unmatched_app=result.unmatched_app,
    )
    return result
