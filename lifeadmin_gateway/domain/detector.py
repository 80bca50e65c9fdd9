"""Recurring payment detection - groups statement lines by payee and scores regularity"""

import statistics
from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Sequence

from lifeadmin_gateway.config import settings
from lifeadmin_gateway.domain.matching import (
    match_category_rule,
    normalize_description,
    rule_match_score,
    similarity,
)
from lifeadmin_gateway.domain.models import (
    DetectionRuleSet,
    DetectionSettings,
    Frequency,
    FrequencyBucket,
    RecurringPaymentSuggestion,
    RuleMatch,
    SuggestedEntry,
    Transaction,
    UNCATEGORIZED,
)
from lifeadmin_gateway.domain.rules import entry_type_for_category

MIN_OCCURRENCES = 2
# Occurrence score saturates at half a year of monthly payments
OCCURRENCE_SATURATION = 6
CENT = Decimal("0.01")


@dataclass
class PayeeGroup:
    """Transactions believed to be paid to the same payee in the same direction"""

    payee_key: str
    is_debit: bool
    indexes: List[int] = field(default_factory=list)
    transactions: List[Transaction] = field(default_factory=list)

    def add(self, index: int, transaction: Transaction) -> None:
        self.indexes.append(index)
        self.transactions.append(transaction)


def group_transactions(transactions: Sequence[Transaction], threshold: float) -> List[PayeeGroup]:
    """
    Cluster transactions by normalised payee.

    Each transaction joins the first existing group of the same direction
    whose key is at least `threshold` similar; otherwise it starts a new
    group. Statement order decides which payee spelling becomes the key.
    """
    groups: List[PayeeGroup] = []

    for index, transaction in enumerate(transactions):
        key = normalize_description(transaction.description)
        target = None
        for group in groups:
            if group.is_debit == transaction.is_debit and similarity(group.payee_key, key) >= threshold:
                target = group
                break
        if target is None:
            target = PayeeGroup(payee_key=key, is_debit=transaction.is_debit)
            groups.append(target)
        target.add(index, transaction)

    return groups


def day_gaps(transactions: Sequence[Transaction]) -> List[int]:
    ordered = sorted(t.date for t in transactions)
    return [(b - a).days for a, b in zip(ordered, ordered[1:])]


def bucket_gap(gap: int, buckets: Sequence[FrequencyBucket]) -> Optional[Frequency]:
    for bucket in buckets:
        if bucket.contains(gap):
            return bucket.frequency
    return None


def infer_frequency(
    gaps: Sequence[int],
    buckets: Sequence[FrequencyBucket],
    max_variation: Optional[float] = None,
) -> Optional[Frequency]:
    """
    Mode of the bucketed gaps, or None when the group is irregular.

    The winning bucket must account for at least half of all gaps; gaps
    falling outside every bucket count against it. Independently, the gap
    standard deviation may not exceed `max_variation` times the mean gap.
    """
    if not gaps:
        return None
    if gap_variation(gaps) > (settings.max_gap_variation if max_variation is None else max_variation):
        return None

    labels = [bucket_gap(gap, buckets) for gap in gaps]
    counts = Counter(label for label in labels if label is not None)
    if not counts:
        return None

    # Ties resolve to the shorter cadence, buckets are sorted by min_days
    order = {bucket.frequency: position for position, bucket in enumerate(buckets)}
    frequency, count = max(counts.items(), key=lambda item: (item[1], -order[item[0]]))
    if count * 2 < len(gaps):
        return None
    return frequency


def gap_variation(gaps: Sequence[int]) -> float:
    """Coefficient of variation of the gaps; 0 for a single gap"""
    mean = statistics.mean(gaps)
    if len(gaps) < 2 or mean <= 0:
        return 0.0
    return statistics.pstdev(gaps) / mean


def occurrence_score(occurrences: int) -> float:
    return min(occurrences / OCCURRENCE_SATURATION, 1.0)


def regularity_score(gaps: Sequence[int]) -> float:
    """1 - coefficient of variation of the gaps, floored at 0"""
    if not gaps:
        return 0.0
    mean = statistics.mean(gaps)
    if mean <= 0:
        return 0.0
    if len(gaps) == 1:
        return 1.0
    return max(0.0, 1.0 - statistics.pstdev(gaps) / mean)


def score_confidence(
    occurrences: int,
    gaps: Sequence[int],
    match: RuleMatch,
    detection_settings: DetectionSettings,
) -> float:
    score = (
        detection_settings.occurrence_weight * occurrence_score(occurrences)
        + detection_settings.regularity_weight * regularity_score(gaps)
        + detection_settings.rule_match_weight * rule_match_score(match)
    )
    return round(min(max(score, 0.0), 1.0), 3)


def typical_amount(transactions: Sequence[Transaction]) -> Decimal:
    """Median signed amount, so debits stay negative"""
    return Decimal(statistics.median(t.amount for t in transactions)).quantize(CENT)


def display_payee(payee_key: str) -> str:
    return " ".join(word.capitalize() for word in payee_key.split())


def build_suggested_entry(payee: str, match: RuleMatch) -> SuggestedEntry:
    rule = match.rule
    if rule is None:
        return SuggestedEntry(title=f"{payee} - Recurring payment", provider=payee, type="other")

    provider = rule.provider or payee
    if rule.subcategory:
        title = f"{provider} - {rule.subcategory.replace('_', ' ').title()}"
    else:
        title = provider
    return SuggestedEntry(title=title, provider=provider, type=entry_type_for_category(rule.category))


def analyse_group(group: PayeeGroup, rule_set: DetectionRuleSet) -> Optional[RecurringPaymentSuggestion]:
    """Turn one payee group into a suggestion, or None when it is not recurring"""
    if len(group.transactions) < MIN_OCCURRENCES:
        return None

    detection_settings = rule_set.settings
    gaps = day_gaps(group.transactions)
    frequency = infer_frequency(gaps, detection_settings.frequency_buckets, detection_settings.max_gap_variation)
    if frequency is None:
        return None

    descriptions = [group.payee_key] + [t.description for t in group.transactions[:1]]
    match = match_category_rule(descriptions, rule_set.category_rules, detection_settings.fuzzy_match_threshold)
    confidence = score_confidence(len(group.transactions), gaps, match, detection_settings)
    payee = display_payee(group.payee_key)

    return RecurringPaymentSuggestion(
        payee=payee,
        category=match.rule.category if match.rule else UNCATEGORIZED,
        subcategory=match.rule.subcategory if match.rule else None,
        amount=typical_amount(group.transactions),
        frequency=frequency,
        confidence=confidence,
        low_confidence=confidence < detection_settings.min_confidence_threshold,
        occurrences=len(group.transactions),
        transaction_indexes=list(group.indexes),
        suggested_entry=build_suggested_entry(payee, match),
    )


def detect(transactions: Sequence[Transaction], rule_set: DetectionRuleSet) -> List[RecurringPaymentSuggestion]:
    """
    Main entry point: transactions + rule set snapshot -> suggestions.

    Pure over its inputs. Used both by the import pipeline and by rule
    authors testing a rule set against sample data.

    Returns:
        Suggestions sorted by confidence, highest first
    """
    groups = group_transactions(transactions, rule_set.settings.fuzzy_match_threshold)

    suggestions = []
    for group in groups:
        suggestion = analyse_group(group, rule_set)
        if suggestion is not None:
            suggestions.append(suggestion)

    # sorted() is stable, equal confidences keep statement order
    return sorted(suggestions, key=lambda s: s.confidence, reverse=True)
